"""Model-input preprocessing.

Resizes an HxWx3 RGB tensor to the fixed square resolution a model expects,
then converts it to a normalized float32 batch in the model's layout.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Literal

import numpy as np
from PIL import Image

if TYPE_CHECKING:
    from numpy.typing import NDArray

ResizePolicy = Literal["scale", "crop", "letterbox"]
TensorLayout = Literal["nhwc", "nchw"]


def resize_image(image: NDArray[np.uint8], size: int, policy: ResizePolicy = "scale") -> NDArray[np.uint8]:
    """Resize an RGB array to ``size`` x ``size``.

    Policies:
        scale: stretch to the target size, ignoring aspect ratio.
        crop: resize the shorter side to ``size``, then centre crop.
        letterbox: fit inside the target and pad with black.
    """
    img = Image.fromarray(np.ascontiguousarray(image, dtype=np.uint8))
    if policy == "scale":
        return np.asarray(img.resize((size, size), Image.Resampling.BILINEAR), dtype=np.uint8)

    width, height = img.size
    if policy == "crop":
        ratio = size / min(width, height)
        new_w, new_h = max(size, round(width * ratio)), max(size, round(height * ratio))
        img = img.resize((new_w, new_h), Image.Resampling.BILINEAR)
        left = (new_w - size) // 2
        top = (new_h - size) // 2
        return np.asarray(img.crop((left, top, left + size, top + size)), dtype=np.uint8)

    if policy == "letterbox":
        ratio = size / max(width, height)
        new_w, new_h = max(1, round(width * ratio)), max(1, round(height * ratio))
        img = img.resize((new_w, new_h), Image.Resampling.BILINEAR)
        canvas = Image.new("RGB", (size, size))
        canvas.paste(img, ((size - new_w) // 2, (size - new_h) // 2))
        return np.asarray(canvas, dtype=np.uint8)

    raise ValueError(f"Unknown resize policy: {policy}")


def to_model_input(
    image: NDArray[np.uint8],
    mean: tuple[float, float, float],
    std: tuple[float, float, float],
    layout: TensorLayout = "nhwc",
) -> NDArray[np.float32]:
    """Scale to [0, 1], normalize per channel and add a batch dimension.

    Returns:
        float32 array shaped (1, H, W, 3) or (1, 3, H, W).
    """
    arr = image.astype(np.float32) / 255.0
    arr = (arr - np.asarray(mean, dtype=np.float32)) / np.asarray(std, dtype=np.float32)
    if layout == "nchw":
        arr = arr.transpose(2, 0, 1)
    return np.expand_dims(arr, axis=0).astype(np.float32)
