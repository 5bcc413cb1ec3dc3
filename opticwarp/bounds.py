# Bounding box discovery for warped images

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np

from .geometry import WORLD_LIMIT, OpticalTransform, Placement, map_through, placement_to_world


@dataclass(frozen=True)
class WorldBounds:
    min_x: float
    min_y: float
    max_x: float
    max_y: float

    @property
    def width(self) -> float:
        return self.max_x - self.min_x

    @property
    def height(self) -> float:
        return self.max_y - self.min_y

    @property
    def is_degenerate(self) -> bool:
        return self.width <= 0 or self.height <= 0

    def to_canvas(
        self, xs: np.ndarray, ys: np.ndarray, dest_size: Tuple[int, int]
    ) -> Tuple[np.ndarray, np.ndarray]:
        # world -> destination pixel coordinates; a collapsed axis maps to 0
        dest_w, dest_h = dest_size
        if self.width > 0:
            cx = (xs - self.min_x) / self.width * dest_w
        else:
            cx = np.where(np.isfinite(xs), 0.0, np.inf)
        if self.height > 0:
            cy = (ys - self.min_y) / self.height * dest_h
        else:
            cy = np.where(np.isfinite(ys), 0.0, np.inf)
        return cx, cy


def border_samples(px_width: int, px_height: int) -> Tuple[np.ndarray, np.ndarray]:
    """Pixel-corner lattice along the four edges of a ``px_width`` x ``px_height`` raster.

    Only the perimeter is enumerated; the optical transforms we render vary
    smoothly enough that the boundary's image carries the extremal extent.
    The corner lattice runs 0..W and 0..H so the far edges are included.
    """

    if px_width < 1 or px_height < 1:
        raise ValueError("Source raster must be at least 1x1")

    xs = np.arange(px_width + 1, dtype=np.float64)
    ys = np.arange(1, px_height, dtype=np.float64)

    top = (xs, np.zeros_like(xs))
    bottom = (xs, np.full_like(xs, float(px_height)))
    left = (np.zeros_like(ys), ys)
    right = (np.full_like(ys, float(px_width)), ys)

    sample_x = np.concatenate([top[0], bottom[0], left[0], right[0]])
    sample_y = np.concatenate([top[1], bottom[1], left[1], right[1]])
    return sample_x, sample_y


def discover_bounds(
    shape: Tuple[int, ...],
    placement: Placement,
    transform: OpticalTransform,
    world_limit: float = WORLD_LIMIT,
) -> Optional[WorldBounds]:
    # world-space bbox of the warped border, or None if nothing survives

    px_height, px_width = shape[:2]
    pixel_w, pixel_h = placement.pixel_size(shape)
    sample_x, sample_y = border_samples(px_width, px_height)
    world_x, world_y = placement_to_world(sample_x, sample_y, placement, pixel_w, pixel_h)
    tx, ty, valid = map_through(transform, world_x, world_y, world_limit)
    if not np.any(valid):
        return None

    tx = tx[valid]
    ty = ty[valid]
    return WorldBounds(
        min_x=float(tx.min()),
        min_y=float(ty.min()),
        max_x=float(tx.max()),
        max_y=float(ty.max()),
    )


__all__ = ["WorldBounds", "border_samples", "discover_bounds"]
