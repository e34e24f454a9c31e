from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.staticfiles import StaticFiles

from sqa_scheduler.constants import REPORT_DIR_NAME, RESULTS_DIR_NAME
from sqa_scheduler.routes import artifacts, reports, runs, sites
from sqa_scheduler.services.runtime import shutdown_service
from sqa_scheduler.services.settings import Settings


settings = Settings()


@asynccontextmanager
async def lifespan(_app: FastAPI):
    # StaticFiles refuses to serve from a directory that does not exist yet.
    for name in (REPORT_DIR_NAME, RESULTS_DIR_NAME):
        (settings.workdir / name).mkdir(parents=True, exist_ok=True)
    yield
    await shutdown_service()

app = FastAPI(title="SQA Playwright Scheduler", lifespan=lifespan)
app.include_router(runs.router)
app.include_router(sites.router)
app.include_router(reports.router)
app.include_router(artifacts.router)
app.mount(
    f"/{REPORT_DIR_NAME}",
    StaticFiles(directory=settings.workdir / REPORT_DIR_NAME, html=True, check_dir=False),
    name="playwright-report",
)
app.mount(
    f"/{RESULTS_DIR_NAME}",
    StaticFiles(directory=settings.workdir / RESULTS_DIR_NAME, check_dir=False),
    name="test-results",
)
