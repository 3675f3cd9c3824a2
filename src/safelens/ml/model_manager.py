"""Model manager: resolve, download and load ONNX classifiers.

A model source is either a registry entry fetched from the HuggingFace Hub,
an http(s) URL, or a local path to a bundled ``.onnx`` file. Every failure
along the way surfaces as ``ModelLoadError``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Literal
from urllib.parse import urlparse

import httpx
from huggingface_hub import hf_hub_download
from onnxruntime import InferenceSession, SessionOptions
from onnxruntime.capi.onnxruntime_pybind11_state import ExecutionMode

from safelens.errors import ModelLoadError
from safelens.ml.image_classifier import OnnxImageClassifier

if TYPE_CHECKING:
    from safelens.config import Settings
    from safelens.ml.image_classifier import ImageClassifier
    from safelens.ml.preprocessing import TensorLayout

logger = logging.getLogger(__name__)

DOWNLOAD_TIMEOUT_SECONDS: float = 60.0


# ---------------------------------------------------------------------------
# Model registry
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ModelSpec:
    """Static metadata for a single ONNX classifier.

    ``repo_id`` is None for models that are only available from an explicit
    source (local path or URL).
    """

    name: str
    repo_id: str | None
    filename: str
    subfolder: str | None
    labels: tuple[str, ...]
    input_size: int
    layout: TensorLayout
    mean: tuple[float, float, float]
    std: tuple[float, float, float]
    activation: Literal["softmax", "sigmoid", "none"]
    license: str


MODEL_REGISTRY: dict[str, ModelSpec] = {
    "vit_base_nsfw": ModelSpec(
        name="vit_base_nsfw",
        repo_id="AdamCodd/vit-base-nsfw-detector",
        filename="model.onnx",
        subfolder="onnx",
        labels=("sfw", "nsfw"),
        input_size=384,
        layout="nchw",
        mean=(0.5, 0.5, 0.5),
        std=(0.5, 0.5, 0.5),
        activation="softmax",
        license="Apache-2.0",
    ),
    "nsfw_mobilenet_v2": ModelSpec(
        name="nsfw_mobilenet_v2",
        repo_id=None,
        filename="nsfw_mobilenet_v2.onnx",
        subfolder=None,
        labels=("Drawing", "Hentai", "Neutral", "Porn", "Sexy"),
        input_size=224,
        layout="nhwc",
        mean=(0.0, 0.0, 0.0),
        std=(1.0, 1.0, 1.0),
        activation="none",
        license="MIT",
    ),
}


def get_spec(model_name: str) -> ModelSpec:
    try:
        return MODEL_REGISTRY[model_name]
    except KeyError:
        raise KeyError(f"Unknown model: {model_name}") from None


# ---------------------------------------------------------------------------
# Concrete implementation
# ---------------------------------------------------------------------------


class OnnxModelManager:
    """Resolves model sources and builds ONNX-backed classifiers."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._spec = get_spec(settings.model_name)
        self._models_dir = Path(settings.models_dir)

        self._providers = self._build_providers()
        self._session_options = self._build_session_options()

    @property
    def spec(self) -> ModelSpec:
        return self._spec

    # -- Public API ---------------------------------------------------------

    def resolve(self, source: str | None = None) -> Path:
        """Return a local path for the model, downloading it if needed.

        Args:
            source: Local path or http(s) URL. Falls back to the configured
                ``model_source``, then to the registry's Hub location.

        Raises:
            ModelLoadError: If the model cannot be located or downloaded.
        """
        source = source or self._settings.model_source
        if source is None:
            return self._download_from_hub()

        scheme = urlparse(source).scheme
        if scheme in ("http", "https"):
            return self._download_from_url(source)

        path = Path(source).expanduser()
        if not path.is_file():
            raise ModelLoadError(f"Model file not found: {path}")
        return path

    def load_classifier(self, source: str | None = None) -> ImageClassifier:
        """Resolve the model and create an ONNX Runtime session for it.

        Raises:
            ModelLoadError: If resolving fails or the file is not a valid model.
        """
        model_path = self.resolve(source)
        try:
            session = InferenceSession(
                str(model_path),
                sess_options=self._session_options,
                providers=self._providers,
            )
        except Exception as exc:
            raise ModelLoadError(f"Failed to load {model_path}: {exc}") from exc

        logger.info("Loaded session for %s from %s", self._spec.name, model_path)
        return OnnxImageClassifier(session, self._spec, resize_policy=self._settings.resize_policy)

    # -- Internal -----------------------------------------------------------

    def _download_from_hub(self) -> Path:
        spec = self._spec
        if spec.repo_id is None:
            raise ModelLoadError(f"Model '{spec.name}' has no hub location; set SAFELENS_MODEL_SOURCE")

        try:
            downloaded = Path(
                hf_hub_download(
                    repo_id=spec.repo_id,
                    filename=spec.filename,
                    subfolder=spec.subfolder,
                    local_dir=str(self._models_dir),
                )
            )
        except Exception as exc:
            raise ModelLoadError(f"Failed to download {spec.name} from {spec.repo_id}: {exc}") from exc

        logger.info("Downloaded %s to %s", spec.name, downloaded)
        return downloaded

    def _download_from_url(self, url: str) -> Path:
        filename = Path(urlparse(url).path).name or self._spec.filename
        target = self._models_dir / filename
        if target.is_file():
            return target

        self._models_dir.mkdir(parents=True, exist_ok=True)
        partial = target.with_name(target.name + ".part")
        try:
            with (
                httpx.Client(timeout=DOWNLOAD_TIMEOUT_SECONDS, follow_redirects=True) as client,
                client.stream("GET", url) as response,
            ):
                response.raise_for_status()
                with partial.open("wb") as fh:
                    for chunk in response.iter_bytes():
                        fh.write(chunk)
            partial.replace(target)
        except (httpx.HTTPError, OSError) as exc:
            partial.unlink(missing_ok=True)
            raise ModelLoadError(f"Failed to download model from {url}: {exc}") from exc

        logger.info("Downloaded %s to %s", url, target)
        return target

    def _build_providers(self) -> list[str | tuple[str, dict[str, object]]]:
        device = self._settings.device
        if device == "cuda":
            return [
                (
                    "CUDAExecutionProvider",
                    {
                        "device_id": 0,
                        "gpu_mem_limit": self._settings.gpu_mem_limit,
                        "arena_extend_strategy": "kSameAsRequested",
                    },
                ),
                "CPUExecutionProvider",
            ]
        if device == "openvino":
            return [
                ("OpenVINOExecutionProvider", {"device_type": "CPU"}),
                "CPUExecutionProvider",
            ]
        return ["CPUExecutionProvider"]

    def _build_session_options(self) -> SessionOptions:
        opts = SessionOptions()
        opts.intra_op_num_threads = self._settings.intra_op_threads
        opts.inter_op_num_threads = self._settings.inter_op_threads
        opts.execution_mode = ExecutionMode.ORT_SEQUENTIAL
        opts.enable_mem_pattern = True
        opts.enable_mem_reuse = True

        if self._settings.device == "openvino":
            # OpenVINO does its own graph optimization
            from onnxruntime import GraphOptimizationLevel

            opts.graph_optimization_level = GraphOptimizationLevel.ORT_DISABLE_ALL
        return opts
