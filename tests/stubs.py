from __future__ import annotations

import asyncio
from typing import Callable, List, Optional

from sqa_scheduler.services.supervisor import RunnerNotFoundError


class StubHandle:
    def __init__(self) -> None:
        self._done: asyncio.Future[int] = asyncio.get_running_loop().create_future()
        self.cancelled = False

    async def wait(self) -> int:
        return await asyncio.shield(self._done)

    def finish(self, code: int = 0) -> None:
        if not self._done.done():
            self._done.set_result(code)

    def cancel(self) -> None:
        self.cancelled = True
        self.finish(143)


class StubSupervisor:
    def __init__(self, available: bool = True) -> None:
        self.available = available
        self.handles: List[StubHandle] = []

    async def launch(self, args=None) -> StubHandle:
        if not self.available:
            raise RunnerNotFoundError("runner missing")
        handle = StubHandle()
        self.handles.append(handle)
        return handle


class StubHealth:
    def __init__(self, error: Optional[Exception] = None) -> None:
        self.calls = 0
        self.error = error

    async def check_all_sites(self):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return []


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.005)
