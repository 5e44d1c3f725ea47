from __future__ import annotations

from fastapi import Request

from ..services.job_orchestrator import JobOrchestrator


def get_orchestrator(request: Request) -> JobOrchestrator:
    return request.app.state.orchestrator
