from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from sqa_scheduler.services.health import UnknownSiteError
from sqa_scheduler.services.runtime import SchedulerService, ServiceDep

LOGGER = logging.getLogger("sqa.routes.sites")

router = APIRouter(prefix="/site", tags=["sites"])


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"ok": False, "msg": message})


def _dump(model) -> dict:
    return model.model_dump(mode="json", by_alias=True)


@router.get("/list")
async def list_sites(service: SchedulerService = ServiceDep) -> dict:
    sites = [_dump(site) for site in service.health.list_sites()]
    return {"ok": True, "sites": sites}


@router.post("/check")
async def check_site(site: Optional[str] = None, service: SchedulerService = ServiceDep):
    try:
        result = await service.health.check_site(site)
    except UnknownSiteError as exc:
        return _error(400, str(exc))
    except Exception as exc:
        LOGGER.exception("Site check for %s failed", site)
        return _error(500, str(exc) or type(exc).__name__)
    return {"ok": True, "result": _dump(result)}


@router.post("/check-all")
async def check_all_sites(service: SchedulerService = ServiceDep) -> dict:
    outcomes = await service.health.check_all_sites()
    return {"ok": True, "results": [_dump(outcome) for outcome in outcomes]}


@router.get("/status")
async def site_status(site: Optional[str] = None, service: SchedulerService = ServiceDep):
    try:
        status = service.health.status(site)
    except UnknownSiteError as exc:
        return _error(400, str(exc))
    return {"ok": True, "status": _dump(status) if status is not None else None}


@router.get("/logs")
async def site_logs(site: Optional[str] = None, service: SchedulerService = ServiceDep):
    try:
        logs = service.health.logs(site)
    except UnknownSiteError as exc:
        return _error(400, str(exc))
    return {"ok": True, "logs": [_dump(entry) for entry in logs]}
