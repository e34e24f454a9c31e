from __future__ import annotations

from typing import Union

from sqa_scheduler.constants import LOG_LIMIT_CHARS


class LogBuffer:
    """Tail of the runner output, trimmed from the front once it exceeds ``limit`` characters."""

    def __init__(self, limit: int = LOG_LIMIT_CHARS) -> None:
        if limit <= 0:
            raise ValueError("Log buffer limit must be positive.")
        self._limit = limit
        self._text = ""

    @property
    def text(self) -> str:
        return self._text

    def append(self, chunk: Union[str, bytes, None]) -> None:
        if not chunk:
            return
        if isinstance(chunk, bytes):
            chunk = chunk.decode("utf-8", errors="replace")
        combined = self._text + chunk
        if len(combined) > self._limit:
            combined = combined[-self._limit :]
        self._text = combined

    def __len__(self) -> int:
        return len(self._text)
