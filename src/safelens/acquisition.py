"""Image acquisition boundary.

An ``ImageSource`` hands out at most one file reference per pick. ``None``
means the user cancelled or permission was denied; neither is an error.
"""

from __future__ import annotations

import base64
import binascii
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Literal, Protocol

from safelens.errors import FileReadError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FileReference:
    """Handle to a local image file.

    ``encoding`` is ``base64`` when the file holds base64 text rather than
    the raw image bytes.
    """

    path: Path
    encoding: Literal["raw", "base64"] = "raw"


class ImageSource(Protocol):
    """Protocol for anything that can pick an image."""

    async def pick_image(self) -> FileReference | None:
        """Return a reference to the chosen image, or None if nothing was chosen."""
        ...


class LocalFileSource:
    """Picks a fixed local file, or nothing when constructed without one."""

    def __init__(self, path: str | Path | None, encoding: Literal["raw", "base64"] = "raw") -> None:
        self._reference = FileReference(Path(path), encoding) if path is not None else None

    async def pick_image(self) -> FileReference | None:
        if self._reference is None:
            logger.info("Image selection was cancelled")
        return self._reference


class PermissionDeniedSource:
    """Source for platforms where media-library access was refused."""

    async def pick_image(self) -> FileReference | None:
        logger.info("Permission to access images was denied")
        return None


def read_file(ref: FileReference) -> bytes:
    """Read the complete content of a referenced file.

    Raises:
        FileReadError: If the file is missing, unreadable, or holds invalid
            base64 for a base64 reference.
    """
    try:
        content = ref.path.read_bytes()
    except OSError as exc:
        raise FileReadError(f"cannot read {ref.path}: {exc.strerror or exc}") from exc

    if ref.encoding == "base64":
        try:
            return base64.b64decode(b"".join(content.split()), validate=True)
        except binascii.Error as exc:
            raise FileReadError(f"{ref.path} does not contain valid base64") from exc
    return content
