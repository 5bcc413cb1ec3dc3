from .geometry import Placement, identity_transform, placement_to_world, map_through, solve_affine
from .bounds import WorldBounds, discover_bounds
from .sizing import CanvasLimits, DEFAULT_LIMITS, destination_size, get_canvas_limits, probe_canvas_limits
from .warping import (
    WarpOptions,
    WarpResult,
    MeshWarper,
    tint_buffer,
    warp_image,
)
from .scheduler import TransformRequest, WarpScheduler
from .pipeline import OpticsImage
from .optics import (
    plane_mirror,
    thin_lens,
    lensmaker_focal_length,
    spherical_mirror,
    anamorphic_cylinder,
    crop_to_square,
)
from .io_utils import load_image, save_image, to_rgba, limit_source_pixels, initial_placement
from .debug import DebugLogger

__all__ = [
    "Placement",
    "identity_transform",
    "placement_to_world",
    "map_through",
    "solve_affine",
    "WorldBounds",
    "discover_bounds",
    "CanvasLimits",
    "DEFAULT_LIMITS",
    "destination_size",
    "get_canvas_limits",
    "probe_canvas_limits",
    "WarpOptions",
    "WarpResult",
    "MeshWarper",
    "tint_buffer",
    "warp_image",
    "TransformRequest",
    "WarpScheduler",
    "OpticsImage",
    "plane_mirror",
    "thin_lens",
    "lensmaker_focal_length",
    "spherical_mirror",
    "anamorphic_cylinder",
    "crop_to_square",
    "load_image",
    "save_image",
    "to_rgba",
    "limit_source_pixels",
    "initial_placement",
    "DebugLogger",
]
