from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from datetime import datetime, timezone
from typing import Optional

from sqa_scheduler.constants import RERUN_DELAY_SECONDS
from sqa_scheduler.schemas import LastRun, RunState
from sqa_scheduler.services.health import SiteHealthChecker
from sqa_scheduler.services.log_buffer import LogBuffer
from sqa_scheduler.services.supervisor import RunHandle, RunnerNotFoundError, SubprocessSupervisor

LOGGER = logging.getLogger("sqa.coordinator")


def _utcnow() -> str:
    return datetime.now(tz=timezone.utc).isoformat()


class RunCoordinator:
    """Single run slot: one runner process at a time, extra triggers collapse into one rerun.

    A cycle spans the runner process plus the post-run site sweep. ``state.running``
    is only true while the process is alive; triggers arriving at any point of the
    cycle set ``want_another_run`` and are served by one debounced rerun.
    """

    def __init__(
        self,
        supervisor: SubprocessSupervisor,
        health: Optional[SiteHealthChecker],
        log: LogBuffer,
        *,
        rerun_delay: float = RERUN_DELAY_SECONDS,
    ) -> None:
        self._supervisor = supervisor
        self._health = health
        self._log = log
        self._rerun_delay = rerun_delay
        self._state = RunState()
        self._cycle: Optional[asyncio.Task[None]] = None
        self._handle: Optional[RunHandle] = None
        self._rerun_timer: Optional[asyncio.TimerHandle] = None
        self._idle = asyncio.Event()
        self._idle.set()
        self._closed = False
        self.launch_count = 0

    @property
    def state(self) -> RunState:
        return self._state.model_copy(deep=True)

    @property
    def running(self) -> bool:
        return self._state.running

    @property
    def busy(self) -> bool:
        return (self._cycle is not None and not self._cycle.done()) or self._rerun_timer is not None

    def trigger(self) -> bool:
        """Start a run now, or queue one behind the active cycle. Returns True when queued."""
        if self._closed:
            return False
        if self.busy:
            if not self._state.want_another_run:
                LOGGER.info("Run already in progress; another run queued")
            self._state.want_another_run = True
            return True
        self._start()
        return False

    async def wait_idle(self) -> None:
        await self._idle.wait()

    async def run_and_wait(self) -> None:
        self.trigger()
        await self.wait_idle()

    def _start(self) -> None:
        self._state.running = True
        self._state.want_another_run = False
        self._idle.clear()
        self._cycle = asyncio.get_running_loop().create_task(self._run_cycle())

    async def _execute(self) -> bool:
        started_at = _utcnow()
        started = time.monotonic()
        self._state.last_run = LastRun(started_at=started_at)
        self._log.append(f"\n==== Run started at {started_at} ====\n")
        LOGGER.info("Run started at %s", started_at)

        exit_code: Optional[int] = None
        launched = False
        try:
            self._handle = await self._supervisor.launch()
            launched = True
            self.launch_count += 1
            exit_code = await self._handle.wait()
        except RunnerNotFoundError:
            LOGGER.warning("Run aborted: test runner unavailable")
        finally:
            self._handle = None
            ended_at = _utcnow()
            duration_ms = int((time.monotonic() - started) * 1000)
            self._state.last_run = LastRun(
                started_at=started_at,
                ended_at=ended_at,
                exit_code=exit_code,
                duration_ms=duration_ms,
            )
            self._state.running = False

        if launched:
            self._log.append(
                f"\n==== Run ended at {ended_at} with code {exit_code} (duration {duration_ms} ms) ====\n"
            )
            LOGGER.info("Run ended with code %s after %s ms", exit_code, duration_ms)
        return launched

    async def _sync_sites(self) -> None:
        if self._health is None:
            return
        try:
            await self._health.check_all_sites()
        except Exception as exc:
            LOGGER.warning("Post-run site sweep failed: %s", exc)

    async def _run_cycle(self) -> None:
        try:
            completed = await self._execute()
            if completed and not self._closed:
                await self._sync_sites()
        finally:
            self._finish_cycle()

    def _finish_cycle(self) -> None:
        if self._state.want_another_run and not self._closed:
            self._state.want_another_run = False
            LOGGER.info("Starting queued run in %.0f ms", self._rerun_delay * 1000)
            loop = asyncio.get_running_loop()
            self._rerun_timer = loop.call_later(self._rerun_delay, self._fire_rerun)
            return
        self._idle.set()

    def _fire_rerun(self) -> None:
        self._rerun_timer = None
        if self._closed:
            self._idle.set()
            return
        self._start()

    async def shutdown(self) -> None:
        """Drop any queued rerun and terminate the active runner process."""
        self._closed = True
        self._state.want_another_run = False
        if self._rerun_timer is not None:
            self._rerun_timer.cancel()
            self._rerun_timer = None
        if self._handle is not None:
            self._handle.cancel()
        if self._cycle is not None and not self._cycle.done():
            if self._handle is None:
                # No live process: the cycle is in its post-run site sweep.
                self._cycle.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._cycle
        self._idle.set()
