from __future__ import annotations

from typing import Callable, Optional

import numpy as np

from .debug import DebugLogger
from .geometry import OpticalTransform, Placement, identity_transform
from .io_utils import initial_placement, limit_source_pixels, to_rgba
from .scheduler import TransformRequest, WarpScheduler
from .sizing import CanvasLimits
from .warping import WarpOptions, WarpResult

ArrayLike = np.ndarray

MIN_SIZE = 0.1


class OpticsImage:
    # An image placed in front of an optical system plus its warped counterpart

    def __init__(
        self,
        source: ArrayLike,
        transform: OpticalTransform = identity_transform,
        options: Optional[WarpOptions] = None,
        placement: Optional[Placement] = None,
        limits: Optional[CanvasLimits] = None,
        logger: Optional[DebugLogger] = None,
        on_result: Optional[Callable[[WarpResult], None]] = None,
        on_processing_change: Optional[Callable[[bool], None]] = None,
    ) -> None:
        self.source = limit_source_pixels(to_rgba(source))
        self.transform = transform
        self.extras = ""
        self.placement = placement or Placement()
        self.version = 0
        self.logger = logger
        self.scheduler = WarpScheduler(
            options=options,
            limits=limits,
            logger=logger,
            on_result=on_result,
            on_processing_change=on_processing_change,
        )
        self._submitted_key = None
        self._refresh()

    @property
    def processing(self) -> bool:
        return self.scheduler.processing

    @property
    def result(self) -> WarpResult:
        return self.scheduler.result

    def _key(self):
        p = self.placement
        return (p.x, p.y, p.width, p.height, p.rotation, self.extras, self.transform)

    def _refresh(self) -> None:
        # Submit a new request only when something transform-relevant changed.

        if not self.placement.is_placed:
            return
        key = self._key()
        if key == self._submitted_key:
            return
        self._submitted_key = key
        self.version += 1
        self.scheduler.submit(
            TransformRequest(
                source=self.source,
                placement=self.placement,
                transform=self.transform,
                version=self.version,
            )
        )

    def place_initial(self, stage_scale: float = 1.0) -> Placement:
        # No-op once a size has been set.
        if not self.placement.is_placed:
            self.placement = initial_placement(self.source.shape, stage_scale=stage_scale)
            self._refresh()
        return self.placement

    def move(self, x: float, y: float) -> None:
        self.placement = self.placement.with_changes(x=x, y=y)
        self._refresh()

    def rotate(self, rotation: float) -> None:
        self.placement = self.placement.with_changes(rotation=rotation)
        self._refresh()

    def resize(self, width: float, height: float) -> None:
        self.placement = self.placement.with_changes(
            width=max(MIN_SIZE, width), height=max(MIN_SIZE, height)
        )
        self._refresh()

    def set_placement(self, placement: Placement) -> None:
        self.placement = placement
        self._refresh()

    def set_transform(self, transform: OpticalTransform, extras: str = "") -> None:
        # extras names the optical parameters a transform closes over
        self.transform = transform
        self.extras = extras
        self._refresh()

    def tick(self) -> bool:
        return self.scheduler.tick()

    def drain(self, max_ticks: Optional[int] = None) -> int:
        return self.scheduler.drain(max_ticks)


__all__ = ["OpticsImage", "MIN_SIZE"]
