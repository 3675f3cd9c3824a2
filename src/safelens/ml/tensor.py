"""Pixel grid to classification tensor conversion."""

from __future__ import annotations

from typing import TYPE_CHECKING

import numpy as np

from safelens.errors import MalformedGridError

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from safelens.ml.decoder import DecodedPixelGrid

CHANNELS_IN: int = 4
CHANNELS_OUT: int = 3


def build_tensor(grid: DecodedPixelGrid) -> NDArray[np.uint8]:
    """Pack an RGBA grid into an HxWx3 RGB uint8 array, dropping alpha.

    No resizing, cropping or colour conversion happens here.

    Raises:
        MalformedGridError: If the sample buffer is not a whole number of
            RGBA pixels or does not match ``width * height``.
    """
    if grid.width <= 0 or grid.height <= 0:
        raise MalformedGridError(f"invalid grid dimensions {grid.width}x{grid.height}")

    size = len(grid.data)
    if size % CHANNELS_IN != 0:
        raise MalformedGridError(f"sample count {size} is not a multiple of {CHANNELS_IN}")

    expected = grid.width * grid.height * CHANNELS_IN
    if size != expected:
        raise MalformedGridError(f"grid {grid.width}x{grid.height} needs {expected} samples, got {size}")

    rgba = np.frombuffer(grid.data, dtype=np.uint8).reshape(grid.height, grid.width, CHANNELS_IN)
    return np.ascontiguousarray(rgba[:, :, :CHANNELS_OUT])
