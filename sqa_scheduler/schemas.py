from __future__ import annotations

import re
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class ApiModel(BaseModel):
    """Snake-case attributes, camelCase on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ScheduleMode(str, Enum):
    minutes = "minutes"
    hours = "hours"


class SchedulePhase(str, Enum):
    idle = "idle"
    armed = "armed"
    running = "running"


class Schedule(ApiModel):
    mode: Optional[ScheduleMode] = None
    value: Optional[float] = None
    ms: Optional[int] = None


class LastRun(ApiModel):
    started_at: Optional[str] = None
    ended_at: Optional[str] = None
    exit_code: Optional[int] = None
    duration_ms: Optional[int] = None


class RunState(ApiModel):
    running: bool = False
    want_another_run: bool = False
    last_run: LastRun = Field(default_factory=LastRun)


class StatusResponse(ApiModel):
    running: bool
    schedule: Schedule
    last_run: LastRun
    report_html: str
    report_json: str


class RunTriggerResponse(ApiModel):
    ok: bool = True
    queued: bool
    msg: str


class ScheduleResponse(ApiModel):
    ok: bool = True
    schedule: Schedule


class CheckExpectation(ApiModel):
    ok: List[int] = Field(default_factory=lambda: [200])
    content_type: Optional[str] = None
    min_bytes: Optional[int] = Field(default=None, ge=0)

    @field_validator("content_type")
    @classmethod
    def validate_pattern(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return value
        try:
            re.compile(value)
        except re.error as exc:
            raise ValueError(f"Invalid content-type pattern: {exc}") from exc
        return value

    @field_validator("ok")
    @classmethod
    def validate_statuses(cls, value: List[int]) -> List[int]:
        if not value:
            raise ValueError("At least one accepted status code is required.")
        return value


class SiteCheck(ApiModel):
    label: str
    path: str
    expect: CheckExpectation = Field(default_factory=CheckExpectation)


class SiteConfig(ApiModel):
    key: str
    name: str
    base: str
    checks: List[SiteCheck] = Field(default_factory=list)

    @field_validator("base")
    @classmethod
    def strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    def url_for(self, check: SiteCheck) -> str:
        path = check.path if check.path.startswith("/") else f"/{check.path}"
        return f"{self.base}{path}"


class CheckItem(ApiModel):
    label: str
    url: str
    http: Optional[int] = None
    content_type: Optional[str] = None
    size: Optional[int] = Field(default=None, alias="bytes")
    ok: bool
    note: str = ""


class SiteCheckResult(ApiModel):
    site: str
    name: str
    base: str
    ok: bool
    items: List[CheckItem] = Field(default_factory=list)
    ts: str


class AttachmentKind(str, Enum):
    trace = "trace"
    screenshot = "screenshot"
    video = "video"
    file = "file"


class Attachment(ApiModel):
    name: str
    kind: AttachmentKind
    href: str


class FailureRecord(ApiModel):
    title: str
    file: Optional[str] = None
    line: Optional[int] = None
    project: Optional[str] = None
    error: Optional[str] = None
    attachments: List[Attachment] = Field(default_factory=list)


class ReportSummary(ApiModel):
    total: int = 0
    passed: int = 0
    failed: int = 0
    skipped: int = 0
    flaky: int = 0


class FailureSummary(ApiModel):
    summary: ReportSummary = Field(default_factory=ReportSummary)
    failures: List[FailureRecord] = Field(default_factory=list)


class SiteCheckOutcome(ApiModel):
    site: str
    ok: bool
    result: Optional[SiteCheckResult] = None
    error: Optional[str] = None
