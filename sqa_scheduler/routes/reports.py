from __future__ import annotations

from fastapi import APIRouter
from fastapi.concurrency import run_in_threadpool

from sqa_scheduler.schemas import FailureSummary
from sqa_scheduler.services.runtime import SchedulerService, ServiceDep

router = APIRouter(prefix="/pw", tags=["reports"])


@router.get("/summary", response_model=FailureSummary)
async def failure_summary(service: SchedulerService = ServiceDep) -> FailureSummary:
    return await run_in_threadpool(service.reconciler.summarize)
