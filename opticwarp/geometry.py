from __future__ import annotations

import math
from dataclasses import dataclass, replace
from typing import Callable, Optional, Sequence, Tuple

import numpy as np

OpticalTransform = Callable[[float, float], Tuple[float, float]]
Point = Tuple[float, float]

# Crop window in world units; anything mapped beyond it is treated as no image.
WORLD_LIMIT = 60.0


def identity_transform(x: float, y: float) -> Tuple[float, float]:
    return x, y


@dataclass(frozen=True)
class Placement:
    # world-space placement of the source image before warping

    x: float = 0.0
    y: float = 0.0
    width: Optional[float] = None
    height: Optional[float] = None
    rotation: float = 0.0

    @property
    def is_placed(self) -> bool:
        if self.width is None or self.height is None:
            return False
        return self.width > 0 and self.height > 0

    def pixel_size(self, shape: Tuple[int, ...]) -> Tuple[float, float]:
        # World units covered by a single source pixel (before rotation).
        height, width = shape[:2]
        return self.width / width, self.height / height

    def with_changes(self, **changes) -> "Placement":
        return replace(self, **changes)


def placement_to_world(
    px: np.ndarray,
    py: np.ndarray,
    placement: Placement,
    pixel_w: float,
    pixel_h: float,
) -> Tuple[np.ndarray, np.ndarray]:
    # rotate source pixel offsets about the top-left corner, then translate

    theta = math.radians(placement.rotation or 0.0)
    cos_r = math.cos(theta)
    sin_r = math.sin(theta)
    dx = np.asarray(px, dtype=np.float64) * pixel_w
    dy = np.asarray(py, dtype=np.float64) * pixel_h
    world_x = placement.x + dx * cos_r - dy * sin_r
    world_y = placement.y + dx * sin_r + dy * cos_r
    return world_x, world_y


def _call_transform(transform: OpticalTransform, x: float, y: float) -> Tuple[float, float]:
    try:
        tx, ty = transform(x, y)
        return float(tx), float(ty)
    except (ZeroDivisionError, OverflowError, ValueError):
        # Division by zero at a focal plane, or a math domain error past the
        # critical angle: both mean no image forms here.
        return math.inf, math.inf


def map_through(
    transform: OpticalTransform,
    xs: np.ndarray,
    ys: np.ndarray,
    world_limit: float = WORLD_LIMIT,
) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Apply a pointwise optical transform to arrays of world coordinates.

    Returns the mapped coordinates and a boolean mask that is False wherever
    the transform produced a non-finite value or left the crop window.
    Invalid entries are set to infinity so they can never be drawn by mistake.
    """

    xs = np.asarray(xs, dtype=np.float64)
    ys = np.asarray(ys, dtype=np.float64)
    tx = np.empty(xs.shape, dtype=np.float64)
    ty = np.empty(ys.shape, dtype=np.float64)

    flat_x = xs.ravel()
    flat_y = ys.ravel()
    out_x = tx.reshape(-1)
    out_y = ty.reshape(-1)
    for idx in range(flat_x.size):
        out_x[idx], out_y[idx] = _call_transform(transform, float(flat_x[idx]), float(flat_y[idx]))

    with np.errstate(invalid="ignore"):
        valid = (
            np.isfinite(tx)
            & np.isfinite(ty)
            & (np.abs(tx) <= world_limit)
            & (np.abs(ty) <= world_limit)
        )
    tx[~valid] = np.inf
    ty[~valid] = np.inf
    return tx, ty, valid


def extrude_triangle(triangle: np.ndarray, amount: float) -> np.ndarray:
    # push each vertex away from the centroid to close seams between neighbours

    tri = np.asarray(triangle, dtype=np.float64)
    if amount == 0:
        return tri.copy()
    centroid = tri.mean(axis=0)
    offsets = tri - centroid
    dist = np.hypot(offsets[:, 0], offsets[:, 1])
    grown = tri.copy()
    movable = dist > 1e-6
    grown[movable] += offsets[movable] / dist[movable, None] * amount
    return grown


def solve_affine(src_tri: Sequence[Point], dst_tri: Sequence[Point]) -> Optional[np.ndarray]:
    """Return the 2x3 matrix taking the source triangle onto the destination.

    ``x = a*u + b*v + e`` and ``y = c*u + d*v + f`` with the matrix laid out as
    ``[[a, b, e], [c, d, f]]``. Returns ``None`` for a degenerate source.
    """

    (u0, v0), (u1, v1), (u2, v2) = src_tri
    (x0, y0), (x1, y1), (x2, y2) = dst_tri

    den = u0 * (v1 - v2) + u1 * (v2 - v0) + u2 * (v0 - v1)
    if abs(den) < 1e-12:
        return None

    a = (x0 * (v1 - v2) + x1 * (v2 - v0) + x2 * (v0 - v1)) / den
    b = (x0 * (u2 - u1) + x1 * (u0 - u2) + x2 * (u1 - u0)) / den
    c = (y0 * (v1 - v2) + y1 * (v2 - v0) + y2 * (v0 - v1)) / den
    d = (y0 * (u2 - u1) + y1 * (u0 - u2) + y2 * (u1 - u0)) / den
    e = (x0 * (u1 * v2 - u2 * v1) + x1 * (u2 * v0 - u0 * v2) + x2 * (u0 * v1 - u1 * v0)) / den
    f = (y0 * (u1 * v2 - u2 * v1) + y1 * (u2 * v0 - u0 * v2) + y2 * (u0 * v1 - u1 * v0)) / den
    return np.array([[a, b, e], [c, d, f]], dtype=np.float64)


def invert_affine(matrix: np.ndarray) -> Optional[np.ndarray]:
    # None when the linear part is singular (destination triangle collapsed)

    linear = matrix[:, :2]
    det = linear[0, 0] * linear[1, 1] - linear[0, 1] * linear[1, 0]
    if abs(det) < 1e-12:
        return None
    inv_linear = np.array(
        [[linear[1, 1], -linear[0, 1]], [-linear[1, 0], linear[0, 0]]],
        dtype=np.float64,
    ) / det
    inv_offset = -inv_linear @ matrix[:, 2]
    return np.hstack([inv_linear, inv_offset[:, None]])


def apply_affine(points: np.ndarray, matrix: np.ndarray) -> np.ndarray:
    # Apply a 2x3 affine matrix to an (N, 2) array of points.
    pts = np.asarray(points, dtype=np.float64)
    return pts @ matrix[:, :2].T + matrix[:, 2]


__all__ = [
    "OpticalTransform",
    "WORLD_LIMIT",
    "Placement",
    "identity_transform",
    "placement_to_world",
    "map_through",
    "extrude_triangle",
    "solve_affine",
    "invert_affine",
    "apply_affine",
]
