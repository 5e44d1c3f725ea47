from __future__ import annotations

import threading
import time
from typing import Optional

from fastapi import FastAPI

from ..config import Settings, get_settings
from ..logging_config import get_logger, setup_logging
from ..services.job_orchestrator import JobOrchestrator
from .routers import render as render_router
from .routers import system as system_router


logger = get_logger(__name__)


def _cleanup_loop(orchestrator: JobOrchestrator, interval: float) -> None:
    while True:
        time.sleep(interval)
        try:
            orchestrator.sweep()
        except Exception as exc:
            logger.error("Job sweep failed", error=str(exc))


def create_app(
    settings: Optional[Settings] = None,
    orchestrator: Optional[JobOrchestrator] = None,
    start_sweeper: bool = True,
) -> FastAPI:
    settings = settings or get_settings()
    setup_logging(settings)

    app = FastAPI(title="Narrated Video Render Service", version="0.1.0")
    app.state.orchestrator = orchestrator or JobOrchestrator(settings)

    app.include_router(system_router.router)
    app.include_router(render_router.router)

    if start_sweeper:
        threading.Thread(
            target=_cleanup_loop,
            args=(app.state.orchestrator, settings.sweep_interval_seconds),
            daemon=True,
            name="job-sweeper",
        ).start()
    return app
