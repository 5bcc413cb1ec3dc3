# Debugging utils for the warp engine

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from itertools import count
from pathlib import Path
from typing import Any, Dict, Optional

import imageio.v2 as imageio
import numpy as np


def _json_default(value: Any) -> Any:
    # Convert numpy scalars/arrays, paths, sets and bounds dataclasses into JSON safe data

    if isinstance(value, np.generic):
        return value.item()
    if isinstance(value, np.ndarray):
        return value.tolist()
    if isinstance(value, Path):
        return str(value)
    if isinstance(value, (set, frozenset)):
        return sorted(value)
    if hasattr(value, "__dataclass_fields__"):
        return {name: getattr(value, name) for name in value.__dataclass_fields__}
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


@dataclass
class DebugLogger:
    #Writes warp events and artifacts to disk. Supports custom root and context metadata

    root: Optional[Path] = None
    context: Dict[str, Any] = field(default_factory=dict)
    save_images: bool = False
    _sequence: Any = field(default_factory=count, init=False, repr=False)

    def __post_init__(self) -> None:
        default_root = Path(__file__).resolve().parent.parent / "debug"
        self.root = Path(self.root) if self.root is not None else default_root
        self.root.mkdir(parents=True, exist_ok=True)

    def _timestamp(self) -> str:
        return datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%fZ")

    def _filename(self, prefix: str, suffix: str) -> str:
        # The sequence number keeps names unique within one timestamp tick.
        return f"{prefix}_{self._timestamp()}_{next(self._sequence):05d}.{suffix}"

    def _write_json(self, data: Dict[str, Any], filename: str) -> Path:
        path = self.root / filename
        with path.open("w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, sort_keys=True, default=_json_default)
        return path

    def log(self, message: str, **metadata: Any) -> Path:
        # Write a log entry containing a message and metadata

        payload = {
            "timestamp": self._timestamp(),
            "message": message,
            "context": self.context,
            "metadata": metadata,
        }
        return self._write_json(payload, self._filename("log", "json"))

    def save_image(self, image: np.ndarray, name: str) -> Optional[Path]:
        # Only dumps rasters when asked to; a warp can produce many of them.
        if not self.save_images:
            return None
        path = self.root / self._filename(f"image_{name}", "png")
        imageio.imwrite(path, image)
        return path


__all__ = ["DebugLogger"]
