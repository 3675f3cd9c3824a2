"""FastAPI application entry point."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from safelens.api.routes import router
from safelens.config import Settings, get_settings
from safelens.errors import ModelLoadError
from safelens.ml.inference import InferencePool
from safelens.ml.model_manager import OnnxModelManager
from safelens.ml.session import ClassifierSession

logger = logging.getLogger(__name__)


def build_state(app: FastAPI, settings: Settings) -> None:
    """Attach settings, inference pool and classifier session to the app."""
    app.state.settings = settings
    app.state.inference_pool = InferencePool(max_concurrent=settings.max_concurrent)
    app.state.model_manager = OnnxModelManager(settings)
    app.state.classifier = ClassifierSession(app.state.model_manager.load_classifier, app.state.inference_pool)


async def _initialize_in_background(session: ClassifierSession, model_source: str | None) -> None:
    try:
        await session.initialize(model_source)
    except ModelLoadError:
        # Already logged by the session; /health reports the failure.
        return


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan: start model loading on startup, clean up on shutdown."""
    settings = get_settings()

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    logger.info(
        "Starting SafeLens (device=%s, model=%s, resize=%s, max_concurrent=%s)",
        settings.device,
        settings.model_name,
        settings.resize_policy,
        settings.max_concurrent,
    )

    build_state(app, settings)
    load_task = asyncio.create_task(_initialize_in_background(app.state.classifier, settings.model_source))

    yield

    logger.info("Shutting down SafeLens")
    load_task.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await load_task
    app.state.inference_pool.shutdown()
    logger.info("SafeLens shutdown complete")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    application = FastAPI(
        title="SafeLens",
        description="On-device NSFW image classification API",
        version="0.1.0",
        lifespan=lifespan,
    )

    application.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    application.include_router(router)
    return application


app = create_app()
