from __future__ import annotations

import json
import os
import shlex
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Tuple

from sqa_scheduler.constants import (
    DEFAULT_PLAYWRIGHT_ARGS,
    DEFAULT_SITES,
    HTTP_TIMEOUT_SECONDS,
    LOG_LIMIT_CHARS,
    RERUN_DELAY_SECONDS,
    SITE_LOG_LIMIT,
)
from sqa_scheduler.schemas import SiteConfig


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return int(default)
    try:
        return int(str(raw).strip())
    except ValueError:
        return int(default)


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return float(default)
    try:
        return float(str(raw).strip())
    except ValueError:
        return float(default)


def _env_str(name: str, default: str) -> str:
    raw = os.getenv(name)
    if raw is None:
        return str(default)
    s = str(raw).strip()
    return s if s else str(default)


def _env_args(name: str, default: List[str]) -> Tuple[str, ...]:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return tuple(default)
    return tuple(shlex.split(raw))


@dataclass(frozen=True)
class Settings:
    workdir: Path = field(default_factory=lambda: Path(_env_str("SQA_WORKDIR", os.getcwd())).resolve())
    playwright_args: Tuple[str, ...] = field(
        default_factory=lambda: _env_args("SQA_PLAYWRIGHT_ARGS", DEFAULT_PLAYWRIGHT_ARGS)
    )
    log_limit: int = field(default_factory=lambda: max(1, _env_int("SQA_LOG_LIMIT", LOG_LIMIT_CHARS)))
    site_log_limit: int = field(default_factory=lambda: max(1, _env_int("SQA_SITE_LOG_LIMIT", SITE_LOG_LIMIT)))
    http_timeout_seconds: float = field(
        default_factory=lambda: _env_float("SQA_HTTP_TIMEOUT_SECONDS", HTTP_TIMEOUT_SECONDS)
    )
    rerun_delay_seconds: float = field(
        default_factory=lambda: max(0.0, _env_int("SQA_RERUN_DELAY_MS", int(RERUN_DELAY_SECONDS * 1000)) / 1000.0)
    )
    sites_file: Optional[str] = field(default_factory=lambda: os.getenv("SQA_SITES_FILE") or None)
    host: str = field(default_factory=lambda: _env_str("SQA_HOST", "0.0.0.0"))
    port: int = field(default_factory=lambda: _env_int("PORT", 3000))


def load_sites(settings: Settings) -> List[SiteConfig]:
    """Load the monitored sites; a configured sites file replaces the built-in list."""
    if settings.sites_file:
        raw = json.loads(Path(settings.sites_file).read_text(encoding="utf-8"))
    else:
        raw = DEFAULT_SITES
    sites = [SiteConfig.model_validate(item) for item in raw]
    keys = [site.key for site in sites]
    if len(keys) != len(set(keys)):
        raise ValueError(f"Duplicate site keys in configuration: {keys}")
    return sites
