# Destination buffer sizing under platform memory limits

from __future__ import annotations

import math
from dataclasses import dataclass
from functools import lru_cache
from typing import Callable, Optional, Sequence, Tuple

import numpy as np

from .bounds import WorldBounds

PROBE_SIZES: Tuple[Tuple[int, int], ...] = (
    (16384, 16384),
    (8192, 8192),
    (4096, 4096),
)


@dataclass(frozen=True)
class CanvasLimits:
    max_pixels: int
    max_side: int

    def __post_init__(self) -> None:
        if self.max_pixels < 1 or self.max_side < 1:
            raise ValueError("Canvas limits must be positive")


DEFAULT_LIMITS = CanvasLimits(max_pixels=4096 * 4096, max_side=4096)


def _allocate_rgba(width: int, height: int) -> None:
    buffer = np.zeros((height, width, 4), dtype=np.uint8)
    # Touch both ends so lazily committed pages are actually backed.
    buffer[0, 0, 0] = 1
    buffer[-1, -1, 3] = 1
    del buffer


def probe_canvas_limits(
    sizes: Sequence[Tuple[int, int]] = PROBE_SIZES,
    allocate: Callable[[int, int], None] = _allocate_rgba,
) -> CanvasLimits:
    """Largest raster size the platform will give us, tried from largest down.

    numpy allocations are committed lazily on Linux, so the first size nearly
    always succeeds there and ``max_pixels`` ends up around 268M. A wide warp
    can then allocate a destination of about 1 GiB; pass ``max_pixels`` in
    ``WarpOptions`` to cap it.
    """

    for width, height in sizes:
        try:
            allocate(width, height)
        except (MemoryError, ValueError, OverflowError):
            continue
        return CanvasLimits(max_pixels=width * height, max_side=min(width, height))
    return DEFAULT_LIMITS


@lru_cache(maxsize=1)
def get_canvas_limits() -> CanvasLimits:
    # Probed once per process; read-only afterwards.
    return probe_canvas_limits()


def destination_size(
    bounds: WorldBounds,
    pixel_w: float,
    pixel_h: float,
    limits: CanvasLimits = DEFAULT_LIMITS,
    max_pixels: Optional[int] = None,
    max_side: Optional[int] = None,
) -> Tuple[int, int]:
    """Pixel size for the destination buffer of a warp.

    Keeps the source's sampling density, then scales down uniformly to fit
    the pixel budget and clamps each side. Always at least 1x1.
    """

    budget = limits.max_pixels if max_pixels is None else max_pixels
    side = limits.max_side if max_side is None else max_side

    dest_w = max(0, math.floor(bounds.width / pixel_w))
    dest_h = max(0, math.floor(bounds.height / pixel_h))

    area = dest_w * dest_h
    if area > budget:
        scale = math.sqrt(budget / area)
        dest_w = math.floor(dest_w * scale)
        dest_h = math.floor(dest_h * scale)

    dest_w = max(1, min(dest_w, side))
    dest_h = max(1, min(dest_h, side))
    if dest_w * dest_h > budget:
        # A side floored to zero and bumped back to 1 can overshoot a tiny budget.
        dest_h = min(dest_h, budget)
        dest_w = min(dest_w, max(1, budget // dest_h))
    return dest_w, dest_h


__all__ = [
    "CanvasLimits",
    "DEFAULT_LIMITS",
    "PROBE_SIZES",
    "probe_canvas_limits",
    "get_canvas_limits",
    "destination_size",
]
