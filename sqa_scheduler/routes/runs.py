from __future__ import annotations

from typing import Optional

from fastapi import APIRouter
from fastapi.responses import JSONResponse, PlainTextResponse

from sqa_scheduler.constants import REPORT_HTML_URL, REPORT_JSON_URL
from sqa_scheduler.schemas import RunTriggerResponse, ScheduleResponse, StatusResponse
from sqa_scheduler.services.runtime import SchedulerService, ServiceDep
from sqa_scheduler.services.scheduler import InvalidScheduleError

router = APIRouter(tags=["runs"])


@router.post("/run", response_model=RunTriggerResponse)
async def trigger_run(service: SchedulerService = ServiceDep) -> RunTriggerResponse:
    queued = service.coordinator.trigger()
    return RunTriggerResponse(queued=queued, msg="Queued to run" if queued else "Run started")


@router.post("/start", response_model=ScheduleResponse)
async def start_schedule(
    mode: Optional[str] = None,
    value: Optional[str] = None,
    service: SchedulerService = ServiceDep,
):
    try:
        schedule = service.scheduler.configure(mode, value)
    except InvalidScheduleError as exc:
        return JSONResponse(status_code=400, content={"ok": False, "msg": str(exc)})
    return ScheduleResponse(schedule=schedule)


@router.post("/stop")
async def stop_schedule(service: SchedulerService = ServiceDep) -> dict:
    service.scheduler.cancel()
    return {"ok": True, "msg": "Auto-run stopped"}


@router.get("/status", response_model=StatusResponse)
async def read_status(service: SchedulerService = ServiceDep) -> StatusResponse:
    state = service.coordinator.state
    return StatusResponse(
        running=state.running,
        schedule=service.scheduler.schedule,
        last_run=state.last_run,
        report_html=REPORT_HTML_URL,
        report_json=REPORT_JSON_URL,
    )


@router.get("/logs", response_class=PlainTextResponse)
async def read_logs(service: SchedulerService = ServiceDep) -> str:
    return service.logs.text or "No logs yet."


@router.get("/healthz")
async def healthz() -> dict:
    return {"ok": True}
