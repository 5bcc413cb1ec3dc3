"""Optical systems expressed as pointwise transforms for the warp engine.

Every factory returns ``f(x, y) -> (x', y')`` in world units with the optical
element at the origin and the axis along ``x``. ``(inf, inf)`` means no image
forms for that object point.
"""

from __future__ import annotations

import math
from typing import Tuple

import numpy as np

from .geometry import OpticalTransform
from .io_utils import to_rgba

ArrayLike = np.ndarray

NO_IMAGE = (math.inf, math.inf)
MIRROR_KINDS = ("concave", "convex")


def plane_mirror() -> OpticalTransform:
    def transform(x: float, y: float) -> Tuple[float, float]:
        return -x, y

    return transform


def lensmaker_focal_length(radius: float, refractive_index: float) -> float:
    # symmetric biconvex thin lens: f = R / (2 (n - 1))
    delta_n = refractive_index - 1.0
    if abs(delta_n) < 1e-6:
        return math.inf
    return radius / (2.0 * delta_n)


def thin_lens(focal_length: float) -> OpticalTransform:
    """Thin converging lens in the plane ``x = 0``.

    Objects on either side image onto the opposite side; real images come out
    inverted, virtual ones upright and on the object's side.
    """

    def transform(x: float, y: float) -> Tuple[float, float]:
        if abs(x) < 0.01:
            return x, y

        object_distance = abs(x)
        if abs(object_distance - focal_length) < 0.001:
            return NO_IMAGE

        image_distance = (focal_length * object_distance) / (object_distance - focal_length)
        magnification = -image_distance / object_distance
        image_x = image_distance if x < 0 else -image_distance
        return image_x, y * magnification

    return transform


def spherical_mirror(radius: float, kind: str = "concave") -> OpticalTransform:
    # exact (non-paraxial) spherical mirror with its vertex at the origin

    if kind not in MIRROR_KINDS:
        raise ValueError(f"Unknown mirror kind {kind!r}; expected one of {MIRROR_KINDS}")
    if radius <= 0:
        raise ValueError("Mirror radius must be positive")

    def concave(x: float, y: float) -> Tuple[float, float]:
        if x < -radius / 2:
            return NO_IMAGE
        if x < 0 and math.hypot(x, y) > radius:
            return NO_IMAGE

        m = math.tan(2 * math.atan2(y, math.hypot(radius, y)))
        den = 1 / ((y / x) + m)
        if abs(den) < 1e-9:
            return NO_IMAGE
        image_x = -(m * math.hypot(radius, y) - y) * den
        image_y = (y / x) * image_x
        return image_x, image_y

    def convex(x: float, y: float) -> Tuple[float, float]:
        if x <= 0:
            return NO_IMAGE
        if abs(y) < 1e-9:
            return -x, 0.0
        if math.hypot(x, y) < radius:
            return NO_IMAGE

        half_angle = 0.5 * math.atan2(y, x)
        k = x / math.cos(2 * half_angle)
        denom = (k / radius) - math.cos(half_angle) + (x * math.sin(half_angle)) / y
        if abs(denom) < 1e-9:
            return NO_IMAGE
        image_y = (k * math.sin(half_angle)) / denom
        image_x = (x * image_y) / y
        return image_x, image_y

    return concave if kind == "concave" else convex


def crop_to_square(image: ArrayLike) -> ArrayLike:
    # Centre crop to the shorter side.
    height, width = image.shape[:2]
    size = min(height, width)
    top = (height - size) // 2
    left = (width - size) // 2
    return image[top:top + size, left:left + size]


def anamorphic_cylinder(image: ArrayLike, rf: float = 3.0, arc_degrees: float = 90.0) -> np.ndarray:
    """Pre-distort ``image`` so a cylindrical mirror of unit radius restores it.

    Inverse polar mapping: each destination pixel in the annulus ``1 <= r <= rf``
    around the viewing point, within ``arc_degrees / 2`` of straight down, picks
    its source column from the angle and its source row from the radius.
    """

    if rf <= 1:
        raise ValueError("rf must be larger than the mirror radius (1)")
    if not 0 < arc_degrees <= 360:
        raise ValueError("arc_degrees must be in (0, 360]")

    source = to_rgba(image)
    src_h, src_w = source.shape[:2]

    scale = rf * 1.5
    dst_size = math.ceil(src_w * scale / math.sqrt(2))
    center_x = dst_size / 2
    center_y = dst_size / 2 - dst_size * 0.1
    canvas_to_world = scale / (dst_size / 2)
    star_x = 0.0
    star_y = -math.sqrt(0.5)

    xs, ys = np.meshgrid(np.arange(dst_size, dtype=np.float64), np.arange(dst_size, dtype=np.float64))
    world_x = (xs - center_x) * canvas_to_world
    world_y = -(ys - center_y) * canvas_to_world
    dx = world_x - star_x
    dy = world_y - star_y
    radius = np.hypot(dx, dy)

    # Angle measured from straight down, wrapped into [-pi, pi].
    angle_diff = np.arctan2(dy, dx) + math.pi / 2
    angle_diff = np.where(angle_diff > math.pi, angle_diff - 2 * math.pi, angle_diff)
    angle_diff = np.where(angle_diff < -math.pi, angle_diff + 2 * math.pi, angle_diff)

    arc = math.radians(arc_degrees)
    half_arc = arc / 2
    u = (angle_diff + half_arc) / arc
    v = 1 - (radius - 1) / (rf - 1)
    src_x = u * (src_w - 1)
    src_y = v * (src_h - 1)

    valid = (
        (radius >= 1)
        & (radius <= rf)
        & (np.abs(angle_diff) <= half_arc)
        & (src_x >= 0)
        & (src_x < src_w - 1)
        & (src_y >= 0)
        & (src_y < src_h - 1)
    )

    output = np.zeros((dst_size, dst_size, 4), dtype=np.uint8)
    if not np.any(valid):
        return output

    sx = src_x[valid]
    sy = src_y[valid]
    x0 = np.floor(sx).astype(int)
    y0 = np.floor(sy).astype(int)
    x1 = np.minimum(x0 + 1, src_w - 1)
    y1 = np.minimum(y0 + 1, src_h - 1)
    wx = (sx - x0)[:, None]
    wy = (sy - y0)[:, None]

    Ia = source[y0, x0].astype(np.float64)
    Ib = source[y0, x1].astype(np.float64)
    Ic = source[y1, x0].astype(np.float64)
    Id = source[y1, x1].astype(np.float64)
    interpolated = (
        Ia * (1 - wx) * (1 - wy)
        + Ib * wx * (1 - wy)
        + Ic * (1 - wx) * wy
        + Id * wx * wy
    )
    output[valid] = np.clip(np.round(interpolated), 0, 255).astype(np.uint8)
    return output


__all__ = [
    "NO_IMAGE",
    "plane_mirror",
    "lensmaker_focal_length",
    "thin_lens",
    "spherical_mirror",
    "crop_to_square",
    "anamorphic_cylinder",
]
