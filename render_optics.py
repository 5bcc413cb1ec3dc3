# Command line entry point that renders an image through one of the optical systems

from __future__ import annotations

import argparse
import json
from pathlib import Path
from typing import Dict, Optional

import matplotlib

matplotlib.use("Agg")
import matplotlib.pyplot as plt
import numpy as np

from opticwarp.debug import DebugLogger
from opticwarp.geometry import OpticalTransform, Placement
from opticwarp.io_utils import initial_placement, load_image, save_image
from opticwarp.optics import (
    anamorphic_cylinder,
    crop_to_square,
    lensmaker_focal_length,
    plane_mirror,
    spherical_mirror,
    thin_lens,
)
from opticwarp.pipeline import OpticsImage
from opticwarp.warping import WarpOptions, WarpResult

SYSTEMS = ["plane-mirror", "thin-lens", "concave-mirror", "convex-mirror", "anamorphic"]


def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Render an image as seen through an optical system.")
    parser.add_argument("--image", type=Path, required=True, help="Source image to place in front of the optics")
    parser.add_argument("--output-dir", type=Path, default=Path("renders"), help="Directory to store generated artifacts")
    parser.add_argument("--system", choices=SYSTEMS, default="thin-lens", help="Optical system to render through")
    parser.add_argument("--focal-length", type=float, help="Thin lens focal length (overrides the lensmaker estimate)")
    parser.add_argument("--radius", type=float, default=3.0, help="Radius of curvature for lenses and mirrors")
    parser.add_argument("--refractive-index", type=float, default=1.5, help="Lens refractive index")
    parser.add_argument("--rf", type=float, default=3.0, help="Anamorphic outer radius (mirror radius is 1)")
    parser.add_argument("--arc-degrees", type=float, default=90.0, help="Anamorphic arc angle")
    parser.add_argument("--x", type=float, help="World x of the image's top-left corner")
    parser.add_argument("--y", type=float, help="World y of the image's top-left corner")
    parser.add_argument("--width", type=float, help="Image width in world units")
    parser.add_argument("--height", type=float, help="Image height in world units")
    parser.add_argument("--rotation", type=float, default=0.0, help="Rotation in degrees")
    parser.add_argument("--subdivisions", type=int, help="Mesh quads per side (default 200, 100 with --mobile)")
    parser.add_argument("--smooth", type=float, default=2.0, help="Seam-closing extrusion in pixels")
    parser.add_argument("--bilinear", action="store_true", help="Bilinear texture sampling instead of nearest")
    parser.add_argument("--mobile", action="store_true", help="Use the coarser mesh preset")
    parser.add_argument("--highlight", action="store_true", help="Tint images that collapse to a point")
    parser.add_argument("--debug", action="store_true", help="Write debug logs under <output-dir>/debug")
    return parser


def build_transform(args: argparse.Namespace) -> tuple[OpticalTransform, Dict[str, float]]:
    if args.system == "plane-mirror":
        return plane_mirror(), {}
    if args.system == "thin-lens":
        focal_length = args.focal_length
        if focal_length is None:
            focal_length = lensmaker_focal_length(args.radius, args.refractive_index)
        return thin_lens(focal_length), {"focal_length": focal_length}
    kind = "concave" if args.system == "concave-mirror" else "convex"
    return spherical_mirror(args.radius, kind), {"radius": args.radius}


def build_placement(args: argparse.Namespace, shape) -> Placement:
    placement = initial_placement(shape)
    changes = {
        name: getattr(args, name)
        for name in ("x", "y", "width", "height")
        if getattr(args, name) is not None
    }
    return placement.with_changes(rotation=args.rotation, **changes)


def save_overlay(
    source: np.ndarray,
    placement: Placement,
    result: WarpResult,
    output_path: Path,
    title: str,
) -> None:
    # Both images in world coordinates, the way the optics bench shows them.

    fig, ax = plt.subplots(figsize=(8, 6))
    if placement.rotation:
        corners = np.array([[0, 0], [1, 0], [1, 1], [0, 1], [0, 0]], dtype=np.float64)
        theta = np.radians(placement.rotation)
        dx = corners[:, 0] * placement.width
        dy = corners[:, 1] * placement.height
        xs = placement.x + dx * np.cos(theta) - dy * np.sin(theta)
        ys = placement.y + dx * np.sin(theta) + dy * np.cos(theta)
        ax.plot(xs, ys, "-", color="tab:blue", linewidth=1.5, label="object")
    else:
        ax.imshow(
            source,
            extent=(placement.x, placement.x + placement.width, placement.y + placement.height, placement.y),
        )
    if result.has_image and result.width > 0 and result.height > 0:
        ax.imshow(
            result.canvas,
            extent=(result.x, result.x + result.width, result.y + result.height, result.y),
            alpha=0.5,
        )
    ax.axhline(0.0, color="gray", linewidth=0.8)
    ax.axvline(0.0, color="gray", linewidth=0.8, linestyle="--")
    ax.set_aspect("equal")
    ax.autoscale()
    if not ax.yaxis_inverted():
        # World y grows downwards, as on screen.
        ax.invert_yaxis()
    ax.set_title(title)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    fig.savefig(output_path, bbox_inches="tight", dpi=150)
    plt.close(fig)


def render_anamorphic(args: argparse.Namespace, source: np.ndarray) -> None:
    square = crop_to_square(source)
    print(f"Anamorphic warp rf={args.rf} arc={args.arc_degrees}")
    warped = anamorphic_cylinder(square, args.rf, args.arc_degrees)
    output_path = args.output_dir / f"{args.image.stem}_anamorphic.png"
    save_image(output_path, warped)
    write_metadata(
        args.output_dir / f"{args.image.stem}_anamorphic.json",
        {"system": args.system, "rf": args.rf, "arc_degrees": args.arc_degrees, "output": str(output_path)},
    )


def write_metadata(path: Path, metadata: Dict) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as fh:
        json.dump(metadata, fh, indent=2)


def main(argv: Optional[list[str]] = None) -> None:
    parser = create_parser()
    args = parser.parse_args(argv)

    args.output_dir.mkdir(parents=True, exist_ok=True)
    source = load_image(args.image)

    if args.system == "anamorphic":
        render_anamorphic(args, source)
        print("\nRender saved in", args.output_dir.resolve())
        return

    logger = DebugLogger(root=args.output_dir / "debug", context={"image": str(args.image)}) if args.debug else None
    base = WarpOptions.mobile() if args.mobile else WarpOptions()
    options = WarpOptions(
        smooth=args.smooth,
        subdivisions=args.subdivisions if args.subdivisions is not None else base.subdivisions,
        highlight_if_degenerate=args.highlight,
        interpolation="bilinear" if args.bilinear else "nearest",
    )
    transform, parameters = build_transform(args)

    image = OpticsImage(source, transform=transform, options=options, logger=logger)
    placement = build_placement(args, image.source.shape)
    image.set_placement(placement)

    ticks = 0
    while image.tick():
        ticks += 1
        if ticks % 5 == 0:
            print(f"  ... {ticks} chunks")

    result = image.result
    stem = f"{args.image.stem}_{args.system}"
    metadata = {
        "system": args.system,
        "parameters": parameters,
        "placement": {
            "x": placement.x,
            "y": placement.y,
            "width": placement.width,
            "height": placement.height,
            "rotation": placement.rotation,
        },
        "chunks": ticks,
    }

    if not result.has_image:
        print("  [warning] No image forms for this placement; nothing to save.")
        metadata["result"] = None
    else:
        output_path = args.output_dir / f"{stem}.png"
        save_image(output_path, result.canvas)
        metadata["result"] = {
            "x": result.x,
            "y": result.y,
            "width": result.width,
            "height": result.height,
            "pixels": [int(result.canvas.shape[1]), int(result.canvas.shape[0])],
            "path": str(output_path),
        }
        print(f"Saved {output_path}")

    save_overlay(image.source, placement, result, args.output_dir / f"{stem}_overlay.png", args.system)
    write_metadata(args.output_dir / f"{stem}.json", metadata)
    print("\nRender saved in", args.output_dir.resolve())


if __name__ == "__main__":
    main()
