from __future__ import annotations

from fastapi import APIRouter, HTTPException
from fastapi.responses import FileResponse

from sqa_scheduler.services.artifacts import ArtifactAccessError
from sqa_scheduler.services.runtime import SchedulerService, ServiceDep

router = APIRouter(tags=["artifacts"])


@router.get("/artifacts/{dir_name}/{artifact_path:path}")
async def read_artifact(dir_name: str, artifact_path: str, service: SchedulerService = ServiceDep) -> FileResponse:
    try:
        target = service.artifacts.resolve(dir_name, artifact_path)
    except ArtifactAccessError:
        raise HTTPException(status_code=403, detail="Forbidden") from None
    except FileNotFoundError:
        raise HTTPException(status_code=404, detail="Artifact not found") from None
    return FileResponse(path=target)
