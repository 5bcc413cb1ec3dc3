# Mesh-based image warping through pointwise optical transforms

from __future__ import annotations

import math
from dataclasses import dataclass, replace
from typing import Generator, Optional, Tuple

import numpy as np

from .bounds import WorldBounds, discover_bounds
from .debug import DebugLogger
from .geometry import (
    WORLD_LIMIT,
    OpticalTransform,
    Placement,
    extrude_triangle,
    invert_affine,
    map_through,
    placement_to_world,
    solve_affine,
)
from .io_utils import to_rgba
from .sizing import CanvasLimits, destination_size, get_canvas_limits

ArrayLike = np.ndarray

# Below this many destination pixels on a side the image has collapsed to a point.
DEGENERATE_THRESHOLD = 2
DEGENERATE_TINT = (255, 0, 0, 0.35)

INTERPOLATIONS = ("nearest", "bilinear")


@dataclass(frozen=True)
class WarpOptions:
    smooth: float = 2.0
    subdivisions: int = 200
    chunk_rows: int = 10
    highlight_if_degenerate: bool = False
    max_pixels: Optional[int] = None
    max_side: Optional[int] = None
    world_limit: float = WORLD_LIMIT
    interpolation: str = "nearest"

    def __post_init__(self) -> None:
        if self.subdivisions < 1:
            raise ValueError("subdivisions must be at least 1")
        if self.chunk_rows < 1:
            raise ValueError("chunk_rows must be at least 1")
        if self.smooth < 0:
            raise ValueError("smooth must be non-negative")
        if self.interpolation not in INTERPOLATIONS:
            raise ValueError(f"Unknown interpolation {self.interpolation!r}; expected one of {INTERPOLATIONS}")

    @classmethod
    def mobile(cls, **overrides) -> "WarpOptions":
        # Coarser mesh for constrained devices.
        return replace(cls(subdivisions=100), **overrides)


@dataclass
class WarpResult:
    canvas: Optional[np.ndarray]
    x: float = 0.0
    y: float = 0.0
    width: float = 0.0
    height: float = 0.0

    @classmethod
    def empty(cls) -> "WarpResult":
        return cls(canvas=None)

    @property
    def has_image(self) -> bool:
        return self.canvas is not None


def tint_buffer(buffer: np.ndarray, tint: Tuple[int, int, int, float] = DEGENERATE_TINT) -> None:
    # Composite a translucent colour over every pixel (source-over), in place.

    red, green, blue, alpha = tint
    colour = np.array([red, green, blue], dtype=np.float64)
    base_alpha = buffer[..., 3:4].astype(np.float64) / 255.0
    out_alpha = alpha + base_alpha * (1.0 - alpha)
    rgb = buffer[..., :3].astype(np.float64)
    blended = (colour * alpha + rgb * base_alpha * (1.0 - alpha)) / out_alpha
    buffer[..., :3] = np.clip(np.round(blended), 0, 255).astype(np.uint8)
    buffer[..., 3] = np.clip(np.round(out_alpha[..., 0] * 255.0), 0, 255).astype(np.uint8)


def _sample_nearest(image: np.ndarray, us: np.ndarray, vs: np.ndarray) -> np.ndarray:
    # Pixel k covers [k, k + 1) so flooring picks the containing pixel.
    cols = np.floor(us).astype(int)
    rows = np.floor(vs).astype(int)
    return image[rows, cols]


def _sample_bilinear(image: np.ndarray, us: np.ndarray, vs: np.ndarray) -> np.ndarray:
    # Bilinear blend around pixel centres, clamping at the raster edge.

    height, width = image.shape[:2]
    xs = us - 0.5
    ys = vs - 0.5
    x0 = np.floor(xs).astype(int)
    y0 = np.floor(ys).astype(int)
    wx = (xs - x0)[..., None]
    wy = (ys - y0)[..., None]

    x0c = np.clip(x0, 0, width - 1)
    x1c = np.clip(x0 + 1, 0, width - 1)
    y0c = np.clip(y0, 0, height - 1)
    y1c = np.clip(y0 + 1, 0, height - 1)

    Ia = image[y0c, x0c].astype(np.float32)
    Ib = image[y0c, x1c].astype(np.float32)
    Ic = image[y1c, x0c].astype(np.float32)
    Id = image[y1c, x1c].astype(np.float32)

    interpolated = (
        Ia * (1 - wx) * (1 - wy)
        + Ib * wx * (1 - wy)
        + Ic * (1 - wx) * wy
        + Id * wx * wy
    )
    return np.clip(np.round(interpolated), 0, 255).astype(image.dtype)


class MeshWarper:
    """Warp one source raster through one optical transform.

    The source rectangle is cut into a ``subdivisions`` x ``subdivisions`` grid
    of quads. Each quad's corners go through placement and transform, and the
    quad is drawn as two affine-textured triangles into a buffer sized from the
    warped border. Quads with any corner outside the crop window are left as
    transparent holes.
    """

    def __init__(
        self,
        source: ArrayLike,
        placement: Placement,
        transform: OpticalTransform,
        options: Optional[WarpOptions] = None,
        limits: Optional[CanvasLimits] = None,
        logger: Optional[DebugLogger] = None,
    ) -> None:
        if not placement.is_placed:
            raise ValueError("Placement needs a positive width and height before warping")
        self.source = to_rgba(source)
        self.placement = placement
        self.transform = transform
        self.options = options or WarpOptions()
        self.limits = limits
        self.logger = logger

        self.bounds: Optional[WorldBounds] = None
        self.buffer: Optional[np.ndarray] = None
        self.rows_done = 0
        self.skipped_quads = 0
        self.skipped_triangles = 0

        height, width = self.source.shape[:2]
        self.pixel_w, self.pixel_h = placement.pixel_size(self.source.shape)
        self._src_size = (width, height)

    @property
    def dest_size(self) -> Tuple[int, int]:
        if self.buffer is None:
            return 0, 0
        return self.buffer.shape[1], self.buffer.shape[0]

    @property
    def done(self) -> bool:
        return self.rows_done >= self.options.subdivisions

    def prepare(self) -> bool:
        # Find the warped extent and allocate the destination; False if nothing forms.

        self.bounds = discover_bounds(
            self.source.shape, self.placement, self.transform, self.options.world_limit
        )
        if self.bounds is None:
            if self.logger is not None:
                self.logger.log("No renderable result", placement=self.placement)
            return False

        limits = self.limits if self.limits is not None else get_canvas_limits()
        dest_w, dest_h = destination_size(
            self.bounds,
            self.pixel_w,
            self.pixel_h,
            limits,
            max_pixels=self.options.max_pixels,
            max_side=self.options.max_side,
        )
        self.buffer = np.zeros((dest_h, dest_w, 4), dtype=np.uint8)
        self.rows_done = 0
        return True

    def _vertex_rows(self, start: int, stop: int) -> Tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray, np.ndarray]:
        # Mesh vertices for rows start..stop inclusive, in source and canvas pixels.

        divisions = self.options.subdivisions
        width, height = self._src_size
        cols = np.arange(divisions + 1, dtype=np.float64)
        rows = np.arange(start, stop + 1, dtype=np.float64)
        grid_i, grid_j = np.meshgrid(cols, rows)
        src_u = grid_i / divisions * width
        src_v = grid_j / divisions * height

        world_x, world_y = placement_to_world(src_u, src_v, self.placement, self.pixel_w, self.pixel_h)
        tx, ty, valid = map_through(self.transform, world_x, world_y, self.options.world_limit)
        canvas_x, canvas_y = self.bounds.to_canvas(tx, ty, self.dest_size)
        return src_u, src_v, canvas_x, canvas_y, valid

    def render_rows(self, start: int, stop: int) -> None:
        if self.buffer is None:
            raise RuntimeError("prepare() must succeed before rendering")

        divisions = self.options.subdivisions
        stop = min(stop, divisions)
        if start >= stop:
            return
        src_u, src_v, canvas_x, canvas_y, valid = self._vertex_rows(start, stop)

        for local_j in range(stop - start):
            for i in range(divisions):
                corners = ((local_j, i), (local_j, i + 1), (local_j + 1, i), (local_j + 1, i + 1))
                if not all(valid[c] for c in corners):
                    self.skipped_quads += 1
                    continue
                src = [(src_u[c], src_v[c]) for c in corners]
                dst = [(canvas_x[c], canvas_y[c]) for c in corners]
                # Standard quad diagonal: (0, 1, 2) and (1, 3, 2).
                self.draw_textured_triangle((src[0], src[1], src[2]), (dst[0], dst[1], dst[2]))
                self.draw_textured_triangle((src[1], src[3], src[2]), (dst[1], dst[3], dst[2]))
        self.rows_done = max(self.rows_done, stop)

    def draw_textured_triangle(self, src_tri, dst_tri) -> bool:
        """Paint one destination triangle with the matching source texture.

        The clip region is grown by ``smooth`` pixels so neighbouring triangles
        overlap; pixels in the overlap are sampled through this triangle's own
        affine map. Returns False when the triangle was skipped as degenerate.
        """

        # Solved on the un-extruded corners; only the clip region is extruded.
        forward = solve_affine(src_tri, dst_tri)
        inverse = invert_affine(forward) if forward is not None else None
        if inverse is None:
            self.skipped_triangles += 1
            return False

        clip = extrude_triangle(np.asarray(dst_tri, dtype=np.float64), self.options.smooth)
        dest_w, dest_h = self.dest_size
        x_lo = max(0, math.floor(clip[:, 0].min()))
        x_hi = min(dest_w, math.ceil(clip[:, 0].max()))
        y_lo = max(0, math.floor(clip[:, 1].min()))
        y_hi = min(dest_h, math.ceil(clip[:, 1].max()))
        if x_lo >= x_hi or y_lo >= y_hi:
            return True

        px, py = np.meshgrid(
            np.arange(x_lo, x_hi, dtype=np.float64) + 0.5,
            np.arange(y_lo, y_hi, dtype=np.float64) + 0.5,
        )

        (ax, ay), (bx, by), (cx, cy) = clip
        area = (bx - ax) * (cy - ay) - (by - ay) * (cx - ax)
        if area == 0:
            return True
        sign = 1.0 if area > 0 else -1.0
        eps = -1e-9
        inside = (
            (sign * ((bx - ax) * (py - ay) - (by - ay) * (px - ax)) >= eps)
            & (sign * ((cx - bx) * (py - by) - (cy - by) * (px - bx)) >= eps)
            & (sign * ((ax - cx) * (py - cy) - (ay - cy) * (px - cx)) >= eps)
        )
        if not np.any(inside):
            return True

        us = inverse[0, 0] * px + inverse[0, 1] * py + inverse[0, 2]
        vs = inverse[1, 0] * px + inverse[1, 1] * py + inverse[1, 2]
        src_w, src_h = self._src_size
        # Outside the source raster nothing is painted, as with drawImage.
        mask = inside & (us >= 0) & (us < src_w) & (vs >= 0) & (vs < src_h)
        if not np.any(mask):
            return True

        if self.options.interpolation == "bilinear":
            values = _sample_bilinear(self.source, us[mask], vs[mask])
        else:
            values = _sample_nearest(self.source, us[mask], vs[mask])
        region = self.buffer[y_lo:y_hi, x_lo:x_hi]
        region[mask] = values
        return True

    def finish(self) -> WarpResult:
        if self.buffer is None or self.bounds is None:
            return WarpResult.empty()

        dest_w, dest_h = self.dest_size
        degenerate = dest_w < DEGENERATE_THRESHOLD or dest_h < DEGENERATE_THRESHOLD
        if degenerate and self.options.highlight_if_degenerate:
            tint_buffer(self.buffer)

        if self.logger is not None:
            self.logger.log(
                "Warp finished",
                bounds=self.bounds,
                dest_size=(dest_w, dest_h),
                skipped_quads=self.skipped_quads,
                skipped_triangles=self.skipped_triangles,
                degenerate=degenerate,
            )
            self.logger.save_image(self.buffer, name="warped")

        return WarpResult(
            canvas=self.buffer,
            x=self.bounds.min_x,
            y=self.bounds.min_y,
            width=self.bounds.width,
            height=self.bounds.height,
        )

    def iter_chunks(self) -> Generator[int, None, WarpResult]:
        """Render the mesh ``chunk_rows`` rows at a time.

        Yields the number of finished rows between chunks so a caller can hand
        control back to its frame loop; the generator's return value is the
        finished ``WarpResult``.
        """

        if not self.prepare():
            return WarpResult.empty()

        divisions = self.options.subdivisions
        row = 0
        while row < divisions:
            stop = min(row + self.options.chunk_rows, divisions)
            self.render_rows(row, stop)
            row = stop
            if row < divisions:
                yield row
        return self.finish()


def warp_image(
    source: ArrayLike,
    placement: Placement,
    transform: OpticalTransform,
    options: Optional[WarpOptions] = None,
    limits: Optional[CanvasLimits] = None,
    logger: Optional[DebugLogger] = None,
) -> WarpResult:
    # Synchronous warp: drains every chunk before returning.

    chunks = MeshWarper(source, placement, transform, options, limits, logger).iter_chunks()
    while True:
        try:
            next(chunks)
        except StopIteration as stop:
            return stop.value


__all__ = [
    "DEGENERATE_THRESHOLD",
    "DEGENERATE_TINT",
    "WarpOptions",
    "WarpResult",
    "MeshWarper",
    "tint_buffer",
    "warp_image",
]
