from __future__ import annotations

import math
from pathlib import Path
from typing import Tuple

import imageio.v2 as imageio
import numpy as np

from .geometry import Placement

ArrayLike = np.ndarray

# Sources above ~1.2 MP are downsampled before they are warped.
SOURCE_PIXEL_BUDGET = 1200 * 1000


def to_rgba(image: ArrayLike) -> np.ndarray:
    # Promote grayscale / RGB / float rasters to uint8 RGBA.

    array = np.asarray(image)
    if array.ndim == 2:
        array = array[..., None]
    if array.ndim != 3:
        raise ValueError("Image must be a 2D or 3D array")

    if np.issubdtype(array.dtype, np.floating):
        array = np.round(np.clip(array, 0.0, 1.0) * 255.0).astype(np.uint8)
    elif array.dtype != np.uint8:
        array = np.clip(array, 0, 255).astype(np.uint8)

    channels = array.shape[2]
    height, width = array.shape[:2]
    opaque = np.full((height, width, 1), 255, dtype=np.uint8)
    if channels == 1:
        return np.concatenate([array, array, array, opaque], axis=2)
    if channels == 2:
        # luminance + alpha
        return np.concatenate([array[..., :1]] * 3 + [array[..., 1:2]], axis=2)
    if channels == 3:
        return np.concatenate([array, opaque], axis=2)
    if channels == 4:
        return np.ascontiguousarray(array)
    raise ValueError(f"Unsupported channel count: {channels}")


def limit_source_pixels(image: ArrayLike, max_pixels: int = SOURCE_PIXEL_BUDGET) -> np.ndarray:
    """Downscale ``image`` with nearest sampling so it holds at most ``max_pixels``.

    Smaller images are returned unchanged. Nearest sampling keeps hard pixel
    edges, which is what the warped preview is compared against.
    """

    height, width = image.shape[:2]
    total = width * height
    if total <= max_pixels:
        return image

    scale = math.sqrt(max_pixels / total)
    out_w = max(1, round(width * scale))
    out_h = max(1, round(height * scale))
    # Sample at the centre of each destination pixel.
    cols = np.minimum(((np.arange(out_w) + 0.5) * width / out_w).astype(int), width - 1)
    rows = np.minimum(((np.arange(out_h) + 0.5) * height / out_h).astype(int), height - 1)
    return image[rows[:, None], cols[None, :]]


def initial_placement(
    shape: Tuple[int, ...],
    stage_scale: float = 1.0,
    max_units: float = 3.0,
    x: float = 6.0,
    rotation: float = 0.0,
) -> Placement:
    # First layout pass: fit the longest side to max_units, centre on the axis.

    height, width = shape[:2]
    w_units = width / stage_scale
    h_units = height / stage_scale
    factor = min(1.0, max_units / max(w_units, h_units))
    w_units *= factor
    h_units *= factor
    return Placement(x=x, y=-h_units / 2, width=w_units, height=h_units, rotation=rotation)


def load_image(path: Path) -> ArrayLike:
    return to_rgba(imageio.imread(path))


def save_image(path: Path, image: ArrayLike) -> None:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    imageio.imwrite(path, image)


__all__ = [
    "SOURCE_PIXEL_BUDGET",
    "to_rgba",
    "limit_source_pixels",
    "initial_placement",
    "load_image",
    "save_image",
]
