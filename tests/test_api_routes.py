from __future__ import annotations

import time
from typing import Generator, Tuple

import httpx
import pytest
from fastapi.testclient import TestClient

from sqa_scheduler.main import app
from sqa_scheduler.schemas import SiteConfig
from sqa_scheduler.services.runtime import SchedulerService, get_service
from sqa_scheduler.services.settings import Settings


def _routes(request: httpx.Request) -> httpx.Response:
    if request.url.path == "/":
        return httpx.Response(200, headers={"content-type": "text/html"}, content=b"<html></html>")
    return httpx.Response(404, headers={"content-type": "text/html"}, content=b"missing")


SITES = [
    SiteConfig.model_validate(
        {
            "key": "jr",
            "name": "Jasa Raharja",
            "base": "https://jr.test",
            "checks": [
                {"label": "Home", "path": "/", "expect": {"ok": [200], "contentType": "text/html"}},
                {"label": "Manual", "path": "/manual.pdf", "expect": {"ok": [200, 206], "minBytes": 10000}},
            ],
        }
    ),
    SiteConfig.model_validate(
        {"key": "spjr", "name": "SP Jasa Raharja", "base": "https://spjr.test", "checks": [{"label": "Home", "path": "/"}]}
    ),
]


@pytest.fixture
def client(tmp_path) -> Generator[Tuple[TestClient, SchedulerService], None, None]:
    """Provide an isolated TestClient with a fresh service that cannot find a runner."""
    service = SchedulerService(
        settings=Settings(workdir=tmp_path, rerun_delay_seconds=0.01),
        sites=SITES,
        resolver=lambda: None,
        transport=httpx.MockTransport(_routes),
    )

    def override_service() -> SchedulerService:
        return service

    app.dependency_overrides[get_service] = override_service
    with TestClient(app) as test_client:
        yield test_client, service
        test_client.portal.call(service.shutdown)
    app.dependency_overrides.clear()


def _wait_idle(api: TestClient, timeout: float = 5.0) -> dict:
    deadline = time.monotonic() + timeout
    while True:
        status = api.get("/status").json()
        if not status["running"]:
            return status
        if time.monotonic() > deadline:
            raise AssertionError("run did not finish in time")
        time.sleep(0.01)


def test_status_reports_idle_service(client: Tuple[TestClient, SchedulerService]) -> None:
    api, _service = client

    resp = api.get("/status")

    assert resp.status_code == 200
    body = resp.json()
    assert body["running"] is False
    assert body["schedule"] == {"mode": None, "value": None, "ms": None}
    assert body["lastRun"] == {"startedAt": None, "endedAt": None, "exitCode": None, "durationMs": None}
    assert body["reportHtml"] == "/playwright-report/index.html"
    assert body["reportJson"] == "/playwright-report/report.json"


def test_logs_placeholder_then_run_banner(client: Tuple[TestClient, SchedulerService]) -> None:
    api, _service = client

    resp = api.get("/logs")
    assert resp.status_code == 200
    assert resp.text == "No logs yet."

    resp = api.post("/run")
    assert resp.status_code == 200
    assert resp.json() == {"ok": True, "queued": False, "msg": "Run started"}

    status = _wait_idle(api)
    assert status["lastRun"]["endedAt"] is not None
    assert status["lastRun"]["exitCode"] is None

    logs = api.get("/logs").text
    assert "==== Run started at" in logs
    assert "[runner] Playwright runner not found" in logs


def test_start_rejects_invalid_schedule(client: Tuple[TestClient, SchedulerService]) -> None:
    api, _service = client

    for params in (
        {"mode": "minutes", "value": "0"},
        {"mode": "days", "value": "1"},
        {"mode": "hours"},
        {"mode": "hours", "value": "1e308"},
    ):
        resp = api.post("/start", params=params)
        assert resp.status_code == 400
        body = resp.json()
        assert body["ok"] is False
        assert body["msg"]

    assert api.get("/status").json()["schedule"]["mode"] is None


def test_start_then_stop_schedule(client: Tuple[TestClient, SchedulerService]) -> None:
    api, service = client

    resp = api.post("/start", params={"mode": "hours", "value": "2"})
    assert resp.status_code == 200
    body = resp.json()
    assert body["ok"] is True
    assert body["schedule"] == {"mode": "hours", "value": 2.0, "ms": 7_200_000}
    assert api.get("/status").json()["schedule"]["ms"] == 7_200_000

    _wait_idle(api)
    assert "==== Run started at" in service.logs.text

    resp = api.post("/stop")
    assert resp.status_code == 200
    assert resp.json() == {"ok": True, "msg": "Auto-run stopped"}
    assert api.get("/status").json()["schedule"] == {"mode": None, "value": None, "ms": None}


def test_site_list_and_unknown_site(client: Tuple[TestClient, SchedulerService]) -> None:
    api, _service = client

    resp = api.get("/site/list")
    assert resp.status_code == 200
    sites = resp.json()["sites"]
    assert [site["key"] for site in sites] == ["jr", "spjr"]
    assert sites[0]["checks"][1]["expect"]["minBytes"] == 10000

    for method, path in (("post", "/site/check"), ("get", "/site/status"), ("get", "/site/logs")):
        resp = getattr(api, method)(path, params={"site": "nope"})
        assert resp.status_code == 400
        assert resp.json() == {"ok": False, "msg": "Unknown site: nope"}

    resp = api.post("/site/check")
    assert resp.status_code == 400


def test_site_check_records_status_and_logs(client: Tuple[TestClient, SchedulerService]) -> None:
    api, _service = client

    resp = api.get("/site/status", params={"site": "jr"})
    assert resp.status_code == 200
    assert resp.json() == {"ok": True, "status": None}

    resp = api.post("/site/check", params={"site": "jr"})
    assert resp.status_code == 200
    result = resp.json()["result"]
    assert result["site"] == "jr"
    assert result["ok"] is False
    home, manual = result["items"]
    assert home["ok"] is True
    assert home["http"] == 200
    assert "bytes" in home
    assert manual["ok"] is False
    assert manual["http"] == 404

    status = api.get("/site/status", params={"site": "jr"}).json()["status"]
    assert status["ts"] == result["ts"]

    logs = api.get("/site/logs", params={"site": "jr"}).json()["logs"]
    assert len(logs) == 1


def test_check_all_sites(client: Tuple[TestClient, SchedulerService]) -> None:
    api, _service = client

    resp = api.post("/site/check-all")

    assert resp.status_code == 200
    results = resp.json()["results"]
    assert [(r["site"], r["ok"]) for r in results] == [("jr", False), ("spjr", True)]
    assert results[1]["error"] is None


def test_failure_summary_without_artifacts(client: Tuple[TestClient, SchedulerService]) -> None:
    api, _service = client

    resp = api.get("/pw/summary")

    assert resp.status_code == 200
    body = resp.json()
    assert body["summary"] == {"total": 0, "passed": 0, "failed": 0, "skipped": 0, "flaky": 0}
    assert body["failures"] == []


def test_failure_summary_from_log(client: Tuple[TestClient, SchedulerService]) -> None:
    api, service = client
    service.logs.append("  1) [jr] › tests/jr/smoke.spec.ts:12:3 › Home 2xx\n  1 failed\n  4 passed\n")

    body = api.get("/pw/summary").json()

    assert body["summary"]["failed"] == 1
    assert body["summary"]["total"] == 5
    assert body["failures"][0]["project"] == "jr"
    assert body["failures"][0]["attachments"] == []


def test_artifact_files_are_served(client: Tuple[TestClient, SchedulerService]) -> None:
    api, service = client
    folder = service.settings.workdir / "artifacts-2"
    folder.mkdir()
    (folder / "trace.zip").write_bytes(b"PK\x03\x04")

    resp = api.get("/artifacts/artifacts-2/trace.zip")
    assert resp.status_code == 200
    assert resp.content == b"PK\x03\x04"

    assert api.get("/artifacts/artifacts-2/missing.zip").status_code == 404
    assert api.get("/artifacts/uploads/trace.zip").status_code == 404


def test_healthz(client: Tuple[TestClient, SchedulerService]) -> None:
    api, _service = client

    resp = api.get("/healthz")

    assert resp.status_code == 200
    assert resp.json() == {"ok": True}
