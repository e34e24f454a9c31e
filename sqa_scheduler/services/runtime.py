from __future__ import annotations

import logging
from typing import Iterable, Optional

import httpx
from fastapi import Depends

from sqa_scheduler.schemas import SiteConfig
from sqa_scheduler.services.artifacts import ArtifactStore
from sqa_scheduler.services.coordinator import RunCoordinator
from sqa_scheduler.services.health import SiteHealthChecker
from sqa_scheduler.services.log_buffer import LogBuffer
from sqa_scheduler.services.reconciler import FailureReportReconciler
from sqa_scheduler.services.scheduler import RunScheduler
from sqa_scheduler.services.settings import Settings, load_sites
from sqa_scheduler.services.supervisor import Resolver, SubprocessSupervisor

LOGGER = logging.getLogger("sqa.runtime")


class SchedulerService:
    """Owns the run slot, schedule, log buffer and site state for one server instance."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        *,
        sites: Optional[Iterable[SiteConfig]] = None,
        resolver: Optional[Resolver] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.settings = settings or Settings()
        self.logs = LogBuffer(self.settings.log_limit)
        self.artifacts = ArtifactStore(root=self.settings.workdir)
        self.health = SiteHealthChecker(
            sites if sites is not None else load_sites(self.settings),
            timeout=self.settings.http_timeout_seconds,
            log_limit=self.settings.site_log_limit,
            transport=transport,
        )
        self.supervisor = SubprocessSupervisor(
            self.logs,
            self.settings.workdir,
            args=self.settings.playwright_args,
            resolver=resolver,
        )
        self.coordinator = RunCoordinator(
            self.supervisor,
            self.health,
            self.logs,
            rerun_delay=self.settings.rerun_delay_seconds,
        )
        self.scheduler = RunScheduler(self.coordinator)
        self.reconciler = FailureReportReconciler(self.artifacts, self.logs)

    async def shutdown(self) -> None:
        self.scheduler.cancel()
        await self.coordinator.shutdown()
        LOGGER.info("Scheduler service stopped")


_service: Optional[SchedulerService] = None


def get_service() -> SchedulerService:
    global _service
    if _service is None:
        _service = SchedulerService()
    return _service


ServiceDep = Depends(get_service)


async def shutdown_service() -> None:
    global _service
    if _service is not None:
        await _service.shutdown()
        _service = None
