from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence

from sqa_scheduler.constants import PROJECT_TEST_DIRS
from sqa_scheduler.schemas import (
    Attachment,
    AttachmentKind,
    FailureRecord,
    FailureSummary,
    ReportSummary,
)
from sqa_scheduler.services.artifacts import ArtifactStore
from sqa_scheduler.services.log_buffer import LogBuffer

LOGGER = logging.getLogger("sqa.reconciler")

TITLE_SEPARATOR = " › "
SCAN_MAX_DEPTH = 3

FAILED_STATUSES = {"failed", "timedout", "interrupted"}
STATUS_BUCKETS = {
    "passed": "passed",
    "failed": "failed",
    "timedout": "failed",
    "interrupted": "failed",
    "skipped": "skipped",
    "flaky": "flaky",
}

ANSI_RE = re.compile(r"\x1b\[[0-9;?]*[A-Za-z]")
FAILURE_HINT_RE = re.compile(r"\b[1-9]\d*\s+failed\b|[✘✗×]|\bFAILED\b")
COUNT_RES = {name: re.compile(rf"\b(\d+)\s+{name}\b") for name in ("passed", "failed", "skipped", "flaky")}
FAILURE_HEADER_RE = re.compile(
    r"^\s*\d+\)\s+\[(?P<project>[^\]]+)\]\s+›\s+(?P<file>[^›]+?):(?P<line>\d+):(?P<col>\d+)\s+›\s+(?P<title>.+?)[\s─]*$"
)
LOCATION_RE = re.compile(r":\d+:\d+$")
RETRY_SUFFIX_RE = re.compile(r"-retry\d+$")

IMAGE_SUFFIXES = {".png", ".jpg", ".jpeg"}
VIDEO_SUFFIXES = {".webm", ".mp4"}

HrefResolver = Callable[[Optional[str]], Optional[str]]


@dataclass(frozen=True)
class ReportSources:
    """Everything a reconciliation tier may look at."""

    report: Optional[bytes]
    log_text: str
    results_dir: Path
    href: HrefResolver


Strategy = Callable[[ReportSources], Optional[FailureSummary]]


def strip_ansi(text: str) -> str:
    return ANSI_RE.sub("", text)


def failure_indicated(log_text: str) -> bool:
    return bool(FAILURE_HINT_RE.search(strip_ansi(log_text or "")))


def infer_project(file: Optional[str]) -> Optional[str]:
    """Guess the Playwright project from a spec path; best effort, None when nothing matches."""
    if not file:
        return None
    normalized = file.replace("\\", "/").lower()
    for project, fragments in PROJECT_TEST_DIRS.items():
        for fragment in fragments:
            if normalized.startswith(fragment) or f"/{fragment}" in normalized:
                return project
    return None


def classify_attachment(name: str, content_type: str = "", path: str = "") -> AttachmentKind:
    name = (name or "").lower()
    content_type = (content_type or "").lower()
    path = (path or "").replace("\\", "/").lower()
    filename = path.rsplit("/", 1)[-1]
    if "trace" in name or ("trace" in filename and filename.endswith(".zip")):
        return AttachmentKind.trace
    if content_type.startswith("image/") or "screenshot" in name:
        return AttachmentKind.screenshot
    if content_type.startswith("video/") or name == "video" or Path(filename).suffix in VIDEO_SUFFIXES:
        return AttachmentKind.video
    return AttachmentKind.file


def estimate_counts(log_text: str, min_failed: int = 0) -> ReportSummary:
    """Read the most recent "N passed / N failed / ..." figures out of runner output."""
    text = strip_ansi(log_text or "")
    counts: Dict[str, int] = {}
    for name, pattern in COUNT_RES.items():
        matches = pattern.findall(text)
        counts[name] = int(matches[-1]) if matches else 0
    counts["failed"] = max(counts["failed"], min_failed)
    return ReportSummary(total=sum(counts.values()), **counts)


# Tier 1: structured JSON report -------------------------------------------------


def _as_int(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def _summary_from_stats(stats: Dict[str, Any]) -> ReportSummary:
    passed = _as_int(stats.get("passed", stats.get("expected")))
    failed = _as_int(stats.get("failed", stats.get("unexpected")))
    skipped = _as_int(stats.get("skipped"))
    flaky = _as_int(stats.get("flaky"))
    total = _as_int(stats.get("total")) or passed + failed + skipped + flaky
    return ReportSummary(total=total, passed=passed, failed=failed, skipped=skipped, flaky=flaky)


def _error_text(error: Any) -> Optional[str]:
    if not isinstance(error, dict):
        return None
    message = error.get("message") or error.get("value") or error.get("stack")
    if not message:
        return None
    return strip_ansi(str(message)).strip()


def _attempt_error(result: Dict[str, Any]) -> Dict[str, Any]:
    error = result.get("error")
    if isinstance(error, dict):
        return error
    for candidate in result.get("errors") or []:
        if isinstance(candidate, dict):
            return candidate
    return {}


def _attachments(result: Dict[str, Any], href: HrefResolver) -> List[Attachment]:
    attachments: List[Attachment] = []
    for item in result.get("attachments") or []:
        if not isinstance(item, dict):
            continue
        link = href(item.get("path"))
        if not link:
            continue
        name = str(item.get("name") or "attachment")
        kind = classify_attachment(name, str(item.get("contentType") or ""), str(item.get("path") or ""))
        attachments.append(Attachment(name=name, kind=kind, href=link))
    return attachments


def _failure_from_attempt(
    title: str,
    spec: Dict[str, Any],
    test: Dict[str, Any],
    result: Dict[str, Any],
    href: HrefResolver,
) -> FailureRecord:
    location = test.get("location") if isinstance(test.get("location"), dict) else {}
    error = _attempt_error(result)
    error_location = error.get("location") if isinstance(error.get("location"), dict) else {}
    file = location.get("file") or spec.get("file") or error_location.get("file")
    line = location.get("line") or spec.get("line") or error_location.get("line")
    project = test.get("projectName") or test.get("projectId") or infer_project(file)
    messages = [_error_text(error)] if error else []
    if not any(messages):
        messages = [_error_text(item) for item in result.get("errors") or []]
    text = "\n\n".join(message for message in messages if message) or None
    return FailureRecord(
        title=title,
        file=file,
        line=_as_int(line) or None,
        project=project or None,
        error=text,
        attachments=_attachments(result, href),
    )


def _walk_spec(
    spec: Dict[str, Any],
    titles: List[str],
    counts: Dict[str, int],
    failures: List[FailureRecord],
    href: HrefResolver,
) -> None:
    title = TITLE_SEPARATOR.join(part for part in [*titles, str(spec.get("title") or "")] if part)
    tests = spec.get("tests")
    if tests is None and "results" in spec:
        tests = [spec]
    for test in tests or []:
        for result in test.get("results") or []:
            status = str(result.get("status") or "").lower()
            bucket = STATUS_BUCKETS.get(status)
            if bucket:
                counts[bucket] += 1
            if status in FAILED_STATUSES:
                failures.append(_failure_from_attempt(title, spec, test, result, href))


def _walk_suite(
    suite: Dict[str, Any],
    titles: List[str],
    counts: Dict[str, int],
    failures: List[FailureRecord],
    href: HrefResolver,
) -> None:
    title = str(suite.get("title") or "")
    # File-level suites are titled with the spec file name; leave those out of the title path.
    if title and title != suite.get("file"):
        titles = [*titles, title]
    for spec in suite.get("specs") or []:
        _walk_spec(spec, titles, counts, failures, href)
    for child in suite.get("suites") or []:
        _walk_suite(child, titles, counts, failures, href)


def _global_failure(error: Dict[str, Any]) -> FailureRecord:
    text = _error_text(error)
    location = error.get("location") if isinstance(error.get("location"), dict) else {}
    headline = text.splitlines()[0][:160] if text else ""
    return FailureRecord(
        title=headline or "Global error",
        file=location.get("file"),
        line=_as_int(location.get("line")) or None,
        error=text,
    )


def structured_report(sources: ReportSources) -> Optional[FailureSummary]:
    if sources.report is None:
        return None
    data = json.loads(sources.report)
    if not isinstance(data, dict):
        raise ValueError("Report root is not an object")

    counts = {"passed": 0, "failed": 0, "skipped": 0, "flaky": 0}
    failures: List[FailureRecord] = []
    for suite in data.get("suites") or []:
        _walk_suite(suite, [], counts, failures, sources.href)
    for error in data.get("errors") or []:
        if isinstance(error, dict):
            failures.append(_global_failure(error))

    stats = data.get("stats")
    if isinstance(stats, dict):
        summary = _summary_from_stats(stats)
    else:
        summary = ReportSummary(total=sum(counts.values()), **counts)
    return FailureSummary(summary=summary, failures=failures)


# Tier 2: artifact directory scan ------------------------------------------------


def _walk_files(folder: Path, depth: int = 1) -> Iterator[Path]:
    for child in sorted(folder.iterdir()):
        if child.is_file():
            yield child
        elif child.is_dir() and depth < SCAN_MAX_DEPTH:
            yield from _walk_files(child, depth + 1)


def _artifact_kind(path: Path) -> Optional[AttachmentKind]:
    name = path.name.lower()
    suffix = path.suffix.lower()
    if suffix == ".zip" and "trace" in name:
        return AttachmentKind.trace
    if suffix in IMAGE_SUFFIXES:
        return AttachmentKind.screenshot
    if suffix in VIDEO_SUFFIXES:
        return AttachmentKind.video
    return None


def title_from_error_context(text: str) -> Optional[str]:
    """Pull "Suite › test" out of the first "› ..." line, dropping project and location parts."""
    for raw_line in strip_ansi(text).splitlines():
        if "›" not in raw_line:
            continue
        parts = [part.strip(" -#*\t") for part in raw_line.split("›")[1:]]
        parts = [
            part
            for part in parts
            if part and not LOCATION_RE.search(part) and not (part.startswith("[") and part.endswith("]"))
        ]
        if parts:
            return TITLE_SEPARATOR.join(parts)
    return None


def project_from_folder(name: str) -> Optional[str]:
    stripped = RETRY_SUFFIX_RE.sub("", name.lower())
    for project in PROJECT_TEST_DIRS:
        if stripped.endswith(f"-{project}"):
            return project
    return None


def artifact_scan(sources: ReportSources) -> Optional[FailureSummary]:
    if not failure_indicated(sources.log_text) or not sources.results_dir.is_dir():
        return None

    failures: List[FailureRecord] = []
    for folder in sorted(path for path in sources.results_dir.iterdir() if path.is_dir()):
        attachments: List[Attachment] = []
        title: Optional[str] = None
        for path in _walk_files(folder):
            if "error-context" in path.name.lower() and title is None:
                title = title_from_error_context(path.read_text(encoding="utf-8", errors="replace"))
                continue
            kind = _artifact_kind(path)
            link = sources.href(str(path)) if kind else None
            if kind and link:
                attachments.append(Attachment(name=path.name, kind=kind, href=link))
        if not attachments:
            continue
        failures.append(
            FailureRecord(
                title=title or folder.name,
                project=project_from_folder(folder.name),
                attachments=attachments,
            )
        )

    if not failures:
        return None
    return FailureSummary(summary=estimate_counts(sources.log_text, len(failures)), failures=failures)


# Tier 3: raw runner output ------------------------------------------------------


def log_text(sources: ReportSources) -> Optional[FailureSummary]:
    if not failure_indicated(sources.log_text):
        return None

    seen = set()
    failures: List[FailureRecord] = []
    for line in strip_ansi(sources.log_text).splitlines():
        match = FAILURE_HEADER_RE.match(line)
        if not match:
            continue
        key = (match["project"], match["file"], match["line"], match["title"])
        if key in seen:
            continue
        seen.add(key)
        failures.append(
            FailureRecord(
                title=match["title"],
                file=match["file"].strip(),
                line=int(match["line"]),
                project=match["project"],
            )
        )
    return FailureSummary(summary=estimate_counts(sources.log_text, len(failures)), failures=failures)


DEFAULT_STRATEGIES: Sequence[Strategy] = (structured_report, artifact_scan, log_text)


def reconcile(sources: ReportSources, strategies: Sequence[Strategy] = DEFAULT_STRATEGIES) -> FailureSummary:
    """Return the first tier result carrying failures.

    With no failures anywhere, the last tier that produced a result wins: lower tiers
    only run when the log reports failures, so their counts are the fresher ones.
    """
    fallback: Optional[FailureSummary] = None
    for strategy in strategies:
        try:
            result = strategy(sources)
        except (OSError, ValueError, TypeError, KeyError, AttributeError) as exc:
            LOGGER.debug("Reconciliation tier %s skipped: %s", getattr(strategy, "__name__", strategy), exc)
            continue
        if result is None:
            continue
        if result.failures:
            return result
        fallback = result
    return fallback or FailureSummary()


class FailureReportReconciler:
    """Build the failure summary from the report file, the run log and test-results on disk."""

    def __init__(
        self,
        artifacts: ArtifactStore,
        log: LogBuffer,
        strategies: Sequence[Strategy] = DEFAULT_STRATEGIES,
    ) -> None:
        self._artifacts = artifacts
        self._log = log
        self._strategies = tuple(strategies)

    def _read_report(self) -> Optional[bytes]:
        for candidate in self._artifacts.report_candidates():
            try:
                return candidate.read_bytes()
            except OSError:
                continue
        return None

    def sources(self) -> ReportSources:
        return ReportSources(
            report=self._read_report(),
            log_text=self._log.text,
            results_dir=self._artifacts.results_dir,
            href=self._artifacts.href,
        )

    def summarize(self) -> FailureSummary:
        return reconcile(self.sources(), self._strategies)
