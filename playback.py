"""
Timed playback for the incremental pipeline simulator.

The controller owns the only pending trigger. Callers poll ``tick()`` (the
Streamlit app does so once per rerun); a tick steps the simulator at most once
and only after the deadline has passed, so cycles are never replayed or
skipped.
"""
from __future__ import annotations

import logging
import time
from typing import Callable, Optional

from pipeline_core import PipelineSimulator

__all__ = ["PlaybackController"]

logger = logging.getLogger(__name__)


class PlaybackController:
    DEFAULT_INTERVAL: float = 1.0
    DEFAULT_SPEED: float = 1.0

    def __init__(
        self,
        simulator: PipelineSimulator,
        interval: Optional[float] = None,
        speed: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        interval = self.DEFAULT_INTERVAL if interval is None else interval
        speed = self.DEFAULT_SPEED if speed is None else speed
        if interval <= 0:
            raise ValueError(f"interval must be positive, got {interval}")
        self.simulator = simulator
        self.interval = interval
        self._speed = 1.0
        self.speed = speed
        self._clock = clock
        self._deadline: Optional[float] = None

    @property
    def speed(self) -> float:
        return self._speed

    @speed.setter
    def speed(self, value: float) -> None:
        if value <= 0:
            raise ValueError(f"speed must be positive, got {value}")
        self._speed = float(value)

    @property
    def period(self) -> float:
        return self.interval / self._speed

    @property
    def is_running(self) -> bool:
        return self._deadline is not None

    def start(self) -> bool:
        if self.simulator.is_finished():
            return False
        if not self.is_running:
            self._deadline = self._clock() + self.period
            logger.debug("Playback started at cycle %d", self.simulator.cycle)
        return True

    def pause(self) -> None:
        """Cancel the pending trigger. Safe to call repeatedly."""
        if self._deadline is not None:
            logger.debug("Playback paused at cycle %d", self.simulator.cycle)
        self._deadline = None

    def resume(self) -> bool:
        if self.is_running or self.simulator.cycle == 0:
            return False
        return self.start()

    def reset(self) -> None:
        self.pause()
        self.simulator.reset()

    def seconds_until_due(self) -> Optional[float]:
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - self._clock())

    def tick(self) -> bool:
        """Step once if the trigger is due. Returns True when a cycle ran."""
        if self._deadline is None:
            return False
        now = self._clock()
        if now < self._deadline:
            return False
        stepped = self.simulator.step()
        if not stepped or self.simulator.is_finished():
            self.pause()
        else:
            self._deadline = now + self.period
        return stepped
