from __future__ import annotations

import logging
import re
from collections import deque
from datetime import datetime, timezone
from typing import Deque, Dict, Iterable, List, Optional

import httpx

from sqa_scheduler.constants import HTTP_TIMEOUT_SECONDS, SITE_LOG_LIMIT
from sqa_scheduler.schemas import (
    CheckItem,
    SiteCheck,
    SiteCheckOutcome,
    SiteCheckResult,
    SiteConfig,
)
from sqa_scheduler.services.fetcher import FetchTimeout, fetch

LOGGER = logging.getLogger("sqa.health")

USER_AGENT = "SQA Scheduler Health Check"


def _utcnow() -> str:
    return datetime.now(tz=timezone.utc).isoformat()


class UnknownSiteError(KeyError):
    def __init__(self, key: str) -> None:
        super().__init__(key)
        self.key = key

    def __str__(self) -> str:
        return f"Unknown site: {self.key}"


def evaluate_check(check: SiteCheck, status: int, content_type: str, size: Optional[int]) -> List[str]:
    """Return the list of violated expectations; empty means the check passed."""
    expect = check.expect
    notes: List[str] = []
    if status not in expect.ok:
        allowed = "/".join(str(code) for code in expect.ok)
        notes.append(f"Expected HTTP {allowed}, got {status}")
    if expect.content_type and not re.search(expect.content_type, content_type or "", re.IGNORECASE):
        notes.append(f"Content-Type '{content_type or '-'}' does not match /{expect.content_type}/")
    if expect.min_bytes is not None and (size or 0) < expect.min_bytes:
        notes.append(f"Body {size or 0} bytes < required {expect.min_bytes}")
    return notes


class SiteHealthChecker:
    """Run each site's ordered HTTP checks and keep a bounded history per site."""

    def __init__(
        self,
        sites: Iterable[SiteConfig],
        *,
        timeout: float = HTTP_TIMEOUT_SECONDS,
        log_limit: int = SITE_LOG_LIMIT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._sites: Dict[str, SiteConfig] = {site.key: site for site in sites}
        self._timeout = timeout
        self._transport = transport
        self._status: Dict[str, Optional[SiteCheckResult]] = {key: None for key in self._sites}
        self._logs: Dict[str, Deque[SiteCheckResult]] = {
            key: deque(maxlen=log_limit) for key in self._sites
        }

    def list_sites(self) -> List[SiteConfig]:
        return list(self._sites.values())

    def get_site(self, key: Optional[str]) -> SiteConfig:
        site = self._sites.get(key or "")
        if site is None:
            raise UnknownSiteError(key or "")
        return site

    def status(self, key: Optional[str]) -> Optional[SiteCheckResult]:
        site = self.get_site(key)
        return self._status[site.key]

    def logs(self, key: Optional[str]) -> List[SiteCheckResult]:
        site = self.get_site(key)
        return list(self._logs[site.key])

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            headers={"User-Agent": USER_AGENT},
            timeout=self._timeout,
            transport=self._transport,
        )

    async def _run_check(self, client: httpx.AsyncClient, site: SiteConfig, check: SiteCheck) -> CheckItem:
        url = site.url_for(check)
        try:
            response = await fetch(
                client,
                url,
                timeout=self._timeout,
                read_body=check.expect.min_bytes is not None,
            )
        except FetchTimeout:
            return CheckItem(label=check.label, url=url, ok=False, note="Timeout")
        except (httpx.HTTPError, OSError) as exc:
            note = str(exc) or type(exc).__name__
            return CheckItem(label=check.label, url=url, ok=False, note=note)

        notes = evaluate_check(check, response.status, response.content_type, response.size)
        return CheckItem(
            label=check.label,
            url=url,
            http=response.status,
            content_type=response.content_type or None,
            size=response.size,
            ok=not notes,
            note="; ".join(notes) if notes else "OK",
        )

    async def check_site(self, key: Optional[str]) -> SiteCheckResult:
        site = self.get_site(key)
        items: List[CheckItem] = []
        async with self._client() as client:
            for check in site.checks:
                items.append(await self._run_check(client, site, check))

        result = SiteCheckResult(
            site=site.key,
            name=site.name,
            base=site.base,
            ok=all(item.ok for item in items),
            items=items,
            ts=_utcnow(),
        )
        self._logs[site.key].append(result)
        self._status[site.key] = result
        failed = [item.label for item in items if not item.ok]
        if failed:
            LOGGER.warning("Site %s failed %s/%s checks: %s", site.key, len(failed), len(items), ", ".join(failed))
        else:
            LOGGER.info("Site %s passed %s checks", site.key, len(items))
        return result

    async def check_all_sites(self) -> List[SiteCheckOutcome]:
        outcomes: List[SiteCheckOutcome] = []
        for key in list(self._sites):
            try:
                result = await self.check_site(key)
            except Exception as exc:
                LOGGER.warning("Health check for site %s aborted: %s", key, exc)
                outcomes.append(SiteCheckOutcome(site=key, ok=False, error=str(exc) or type(exc).__name__))
                continue
            outcomes.append(SiteCheckOutcome(site=key, ok=result.ok, result=result))
        return outcomes
