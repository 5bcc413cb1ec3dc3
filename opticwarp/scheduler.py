# Incremental, superseding scheduler for warp requests

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Generator, Optional

import numpy as np

from .debug import DebugLogger
from .geometry import OpticalTransform, Placement
from .sizing import CanvasLimits
from .warping import MeshWarper, WarpOptions, WarpResult

ArrayLike = np.ndarray


@dataclass(frozen=True, eq=False)
class TransformRequest:
    # snapshot of what should be on screen; version grows with every change

    source: ArrayLike
    placement: Placement
    transform: OpticalTransform
    version: int


class WarpScheduler:
    """Cooperative, chunked runner for warp requests.

    At most one request is in flight. Submitting while one is running only
    replaces ``latest``; the running job always finishes its chunks, and on
    completion it is delivered only if its version is still the latest.
    Otherwise the job is thrown away and the latest request starts at once.
    Call :meth:`tick` once per frame, or :meth:`drain` to run to idle.
    """

    def __init__(
        self,
        options: Optional[WarpOptions] = None,
        limits: Optional[CanvasLimits] = None,
        logger: Optional[DebugLogger] = None,
        on_result: Optional[Callable[[WarpResult], None]] = None,
        on_processing_change: Optional[Callable[[bool], None]] = None,
    ) -> None:
        self.options = options or WarpOptions()
        self.limits = limits
        self.logger = logger
        self.on_result = on_result
        self.on_processing_change = on_processing_change

        self.pending = False
        self.latest: Optional[TransformRequest] = None
        self._active: Optional[TransformRequest] = None
        self._job: Optional[Generator[int, None, WarpResult]] = None
        self._result = WarpResult.empty()
        self._processing = False
        self.discarded = 0

    @property
    def processing(self) -> bool:
        return self._processing

    @property
    def result(self) -> WarpResult:
        return self._result

    @property
    def active_version(self) -> Optional[int]:
        return self._active.version if self._active is not None else None

    def _set_processing(self, value: bool) -> None:
        if value == self._processing:
            return
        self._processing = value
        if self.on_processing_change is not None:
            self.on_processing_change(value)

    def _deliver(self, result: WarpResult) -> None:
        self._result = result
        if self.on_result is not None:
            self.on_result(result)

    def submit(self, request: TransformRequest) -> None:
        self.latest = request
        if self.pending:
            # Picked up when the running job finishes.
            if self.logger is not None:
                self.logger.log(
                    "Request queued behind running warp",
                    version=request.version,
                    running=self.active_version,
                )
            return

        self.pending = True
        self._deliver(WarpResult.empty())
        self._set_processing(True)
        self._start(request)

    def _start(self, request: TransformRequest) -> None:
        self._active = request
        warper = MeshWarper(
            request.source,
            request.placement,
            request.transform,
            self.options,
            self.limits,
            self.logger,
        )
        self._job = warper.iter_chunks()
        if self.logger is not None:
            self.logger.log("Warp started", version=request.version, placement=request.placement)

    def tick(self) -> bool:
        # Run one chunk; True while there is still work queued.

        if self._job is None:
            return False
        try:
            next(self._job)
        except StopIteration as stop:
            self._complete(stop.value)
        except Exception as exc:
            # The failed job is finished too; a newer request still gets to run.
            if self.logger is not None:
                self.logger.log("Warp failed", version=self.active_version, error=repr(exc))
            self._complete(WarpResult.empty())
            raise
        return self._job is not None

    def drain(self, max_ticks: Optional[int] = None) -> int:
        ticks = 0
        while self._job is not None:
            if max_ticks is not None and ticks >= max_ticks:
                break
            self.tick()
            ticks += 1
        return ticks

    def _complete(self, result: WarpResult) -> None:
        finished = self._active
        self._job = None
        self._active = None

        latest = self.latest
        if latest is not None and finished is not None and latest.version != finished.version:
            # Stale: never surface it, go straight to the newest request.
            self.discarded += 1
            if self.logger is not None:
                self.logger.log("Discarded stale warp", version=finished.version, latest=latest.version)
            self._start(latest)
            return

        self.pending = False
        self._set_processing(False)
        self._deliver(result)


__all__ = ["TransformRequest", "WarpScheduler"]
