from __future__ import annotations

import asyncio

import pytest

from sqa_scheduler.schemas import Schedule, ScheduleMode, SchedulePhase
from sqa_scheduler.services.coordinator import RunCoordinator
from sqa_scheduler.services.log_buffer import LogBuffer
from sqa_scheduler.services.scheduler import InvalidScheduleError, RunScheduler, parse_schedule
from tests.stubs import StubHealth, StubSupervisor, wait_until


@pytest.mark.unit
@pytest.mark.parametrize(
    ("mode", "value", "expected_ms"),
    [
        ("minutes", "5", 300_000),
        ("hours", "1.5", 5_400_000),
        ("minutes", 2, 120_000),
    ],
)
def test_parse_schedule_derives_interval(mode, value, expected_ms) -> None:
    parsed_mode, parsed_value, ms = parse_schedule(mode, value)
    assert parsed_mode == ScheduleMode(mode)
    assert parsed_value == float(value)
    assert ms == expected_ms


@pytest.mark.unit
@pytest.mark.parametrize(
    ("mode", "value"),
    [
        ("minutes", "0"),
        ("minutes", "-3"),
        ("hours", "abc"),
        ("hours", "nan"),
        ("days", "1"),
        (None, "5"),
        ("minutes", None),
        ("hours", "1e308"),
    ],
)
def test_parse_schedule_rejects_bad_input(mode, value) -> None:
    with pytest.raises(InvalidScheduleError):
        parse_schedule(mode, value)


def _scheduler(rerun_delay: float = 0.01):
    supervisor = StubSupervisor()
    coordinator = RunCoordinator(supervisor, StubHealth(), LogBuffer(), rerun_delay=rerun_delay)
    return supervisor, coordinator, RunScheduler(coordinator)


@pytest.mark.asyncio
async def test_configure_runs_immediately_then_rearms_after_completion() -> None:
    supervisor, coordinator, scheduler = _scheduler()

    schedule = scheduler.configure("minutes", 0.001)

    assert schedule == Schedule(mode=ScheduleMode.minutes, value=0.001, ms=60)
    assert coordinator.running is True
    assert scheduler.phase is SchedulePhase.running
    await wait_until(lambda: len(supervisor.handles) == 1)

    # The next tick is not armed while the run is still going.
    await asyncio.sleep(0.15)
    assert len(supervisor.handles) == 1

    supervisor.handles[0].finish(0)
    await wait_until(lambda: scheduler.phase is SchedulePhase.armed)
    await wait_until(lambda: len(supervisor.handles) == 2)
    assert scheduler.phase is SchedulePhase.running

    scheduler.cancel()
    supervisor.handles[1].finish(0)
    await coordinator.wait_idle()


@pytest.mark.asyncio
async def test_invalid_configuration_leaves_schedule_untouched() -> None:
    supervisor, coordinator, scheduler = _scheduler()
    scheduler.configure("hours", "2")
    before = scheduler.schedule

    with pytest.raises(InvalidScheduleError):
        scheduler.configure("minutes", "0")

    assert scheduler.schedule == before
    assert scheduler.phase is SchedulePhase.running
    await wait_until(lambda: len(supervisor.handles) == 1)
    assert len(supervisor.handles) == 1

    scheduler.cancel()
    supervisor.handles[0].finish(0)
    await coordinator.wait_idle()


@pytest.mark.asyncio
async def test_cancel_does_not_interrupt_the_running_process() -> None:
    supervisor, coordinator, scheduler = _scheduler()
    scheduler.configure("minutes", 0.001)
    await wait_until(lambda: len(supervisor.handles) == 1)

    scheduler.cancel()

    assert scheduler.schedule == Schedule()
    assert scheduler.phase is SchedulePhase.idle
    assert coordinator.running is True
    assert supervisor.handles[0].cancelled is False

    supervisor.handles[0].finish(0)
    await coordinator.wait_idle()
    await asyncio.sleep(0.15)
    assert len(supervisor.handles) == 1


@pytest.mark.asyncio
async def test_cancel_while_armed_stops_future_ticks() -> None:
    supervisor, coordinator, scheduler = _scheduler()
    scheduler.configure("hours", 1)
    await wait_until(lambda: len(supervisor.handles) == 1)
    supervisor.handles[0].finish(0)
    await wait_until(lambda: scheduler.phase is SchedulePhase.armed)

    scheduler.cancel()
    scheduler.cancel()

    assert scheduler.phase is SchedulePhase.idle
    assert scheduler.schedule == Schedule()


@pytest.mark.asyncio
async def test_reconfigure_replaces_the_previous_timer() -> None:
    supervisor, coordinator, scheduler = _scheduler()
    scheduler.configure("hours", 1)
    await wait_until(lambda: len(supervisor.handles) == 1)

    schedule = scheduler.configure("minutes", 10)

    assert schedule.ms == 600_000
    # The run in progress absorbs the immediate run of the new schedule.
    assert coordinator.state.want_another_run is True
    supervisor.handles[0].finish(0)
    await wait_until(lambda: len(supervisor.handles) == 2)
    supervisor.handles[1].finish(0)
    await coordinator.wait_idle()
    await wait_until(lambda: scheduler.phase is SchedulePhase.armed)
    assert len(supervisor.handles) == 2

    scheduler.cancel()
