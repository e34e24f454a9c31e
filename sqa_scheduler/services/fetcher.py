from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Optional

import httpx

from sqa_scheduler.constants import HTTP_TIMEOUT_SECONDS


class FetchTimeout(Exception):
    """The request did not complete within its time budget."""


@dataclass
class FetchResult:
    url: str
    status: int
    content_type: str
    size: Optional[int]


async def _get(client: httpx.AsyncClient, url: str, read_body: bool) -> FetchResult:
    async with client.stream("GET", url, follow_redirects=True) as resp:
        content_type = resp.headers.get("content-type", "")
        if read_body:
            body = await resp.aread()
            size: Optional[int] = len(body)
        else:
            header = resp.headers.get("content-length")
            try:
                size = int(header) if header is not None else None
            except ValueError:
                size = None
        return FetchResult(url=url, status=resp.status_code, content_type=content_type, size=size)


async def fetch(
    client: httpx.AsyncClient,
    url: str,
    *,
    timeout: float = HTTP_TIMEOUT_SECONDS,
    read_body: bool = False,
) -> FetchResult:
    """Issue one GET, aborting the whole exchange (headers and body) after ``timeout`` seconds.

    Raises :class:`FetchTimeout` on abort; transport failures surface as ``httpx.HTTPError``.
    """
    try:
        return await asyncio.wait_for(_get(client, url, read_body), timeout=timeout)
    except (asyncio.TimeoutError, httpx.TimeoutException) as exc:
        raise FetchTimeout(f"GET {url} timed out after {timeout:g}s") from exc
