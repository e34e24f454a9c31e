from __future__ import annotations

import asyncio
import logging
import math
from typing import Optional, Tuple, Union

from sqa_scheduler.schemas import Schedule, ScheduleMode, SchedulePhase
from sqa_scheduler.services.coordinator import RunCoordinator

LOGGER = logging.getLogger("sqa.scheduler")

MS_PER_UNIT = {
    ScheduleMode.minutes: 60 * 1000,
    ScheduleMode.hours: 60 * 60 * 1000,
}


class InvalidScheduleError(ValueError):
    pass


def parse_schedule(mode: Optional[str], value: Union[str, float, int, None]) -> Tuple[ScheduleMode, float, int]:
    """Validate a (mode, value) pair and derive the interval in milliseconds."""
    usage = "Use ?mode=minutes|hours&value=<positive number>"
    try:
        parsed_mode = ScheduleMode(mode)
    except ValueError:
        raise InvalidScheduleError(usage) from None
    try:
        parsed_value = float(value) if value is not None else math.nan
    except (TypeError, ValueError):
        raise InvalidScheduleError(usage) from None
    if not math.isfinite(parsed_value) or parsed_value <= 0:
        raise InvalidScheduleError(usage)
    interval = parsed_value * MS_PER_UNIT[parsed_mode]
    if not math.isfinite(interval):
        raise InvalidScheduleError(usage)
    ms = int(round(interval))
    if ms <= 0:
        raise InvalidScheduleError(usage)
    return parsed_mode, parsed_value, ms


class RunScheduler:
    """Recurring trigger for the coordinator.

    Phases: idle (no schedule), running (waiting for the triggered cycle to finish)
    and armed (sleeping until the next tick). The next tick is armed only after the
    previous cycle finished, so a slow run never overlaps the following one.
    Cancelling never touches an in-flight runner process.
    """

    def __init__(self, coordinator: RunCoordinator) -> None:
        self._coordinator = coordinator
        self._schedule = Schedule()
        self._phase = SchedulePhase.idle
        self._task: Optional[asyncio.Task[None]] = None

    @property
    def schedule(self) -> Schedule:
        return self._schedule.model_copy()

    @property
    def phase(self) -> SchedulePhase:
        return self._phase

    def configure(self, mode: Optional[str], value: Union[str, float, int, None]) -> Schedule:
        parsed_mode, parsed_value, ms = parse_schedule(mode, value)
        self._stop_loop()
        self._schedule = Schedule(mode=parsed_mode, value=parsed_value, ms=ms)
        self._phase = SchedulePhase.running
        self._coordinator.trigger()
        self._task = asyncio.get_running_loop().create_task(self._loop(ms / 1000.0))
        LOGGER.info("Auto-run every %g %s (%s ms)", parsed_value, parsed_mode.value, ms)
        return self.schedule

    async def _loop(self, interval: float) -> None:
        while True:
            await self._coordinator.wait_idle()
            self._phase = SchedulePhase.armed
            await asyncio.sleep(interval)
            self._phase = SchedulePhase.running
            LOGGER.info("Scheduled run firing")
            self._coordinator.trigger()

    def _stop_loop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            self._task = None

    def cancel(self) -> None:
        was_active = self._task is not None
        self._stop_loop()
        self._schedule = Schedule()
        self._phase = SchedulePhase.idle
        if was_active:
            LOGGER.info("Auto-run stopped")
