"""Image decoding: compressed bytes to an interleaved RGBA pixel grid."""

from __future__ import annotations

import io
import logging
import struct
import warnings
from dataclasses import dataclass

from PIL import Image, ImageOps, UnidentifiedImageError

from safelens.errors import DecodeError

logger = logging.getLogger(__name__)

DEFAULT_MAX_PIXELS: int = 16_777_216


@dataclass(frozen=True)
class DecodedPixelGrid:
    """Decoded image as row-major RGBA samples, origin top-left.

    ``data`` holds ``width * height * 4`` bytes.
    """

    width: int
    height: int
    data: bytes


def _apply_orientation(img: Image.Image) -> Image.Image:
    """Rotate per the EXIF orientation tag; malformed EXIF is a decode failure."""
    try:
        return ImageOps.exif_transpose(img)
    except (struct.error, KeyError, IndexError, TypeError, ValueError, SyntaxError) as exc:
        raise DecodeError(f"malformed EXIF data: {exc}") from exc


def decode_image(image_bytes: bytes, max_pixels: int = DEFAULT_MAX_PIXELS) -> DecodedPixelGrid:
    """Decode raw image bytes into an RGBA pixel grid.

    JPEG is always supported; any other format Pillow can read (PNG, WebP,
    GIF, BMP) is accepted as well. Animated formats yield their first frame.
    EXIF orientation is applied before conversion.

    Args:
        image_bytes: Raw file bytes.
        max_pixels: Upper bound on ``width * height``.

    Returns:
        The decoded grid.

    Raises:
        DecodeError: If the bytes are empty, not an image, truncated, carry
            malformed EXIF, or the image exceeds ``max_pixels``.
    """
    if not image_bytes:
        raise DecodeError("empty image data")

    try:
        with warnings.catch_warnings():
            warnings.simplefilter("error", Image.DecompressionBombWarning)
            with Image.open(io.BytesIO(image_bytes)) as img:
                width, height = img.size
                if width * height > max_pixels:
                    raise DecodeError(f"image is {width}x{height}, exceeds limit of {max_pixels} pixels")
                img.load()
                rgba = _apply_orientation(img).convert("RGBA")
    except DecodeError:
        raise
    except UnidentifiedImageError as exc:
        raise DecodeError("unrecognized image format") from exc
    except (
        OSError,
        ValueError,
        SyntaxError,
        struct.error,
        Image.DecompressionBombWarning,
        Image.DecompressionBombError,
    ) as exc:
        raise DecodeError(f"corrupt image data: {exc}") from exc

    grid = DecodedPixelGrid(width=rgba.width, height=rgba.height, data=rgba.tobytes())
    logger.debug("Decoded %dx%d image", grid.width, grid.height)
    return grid
