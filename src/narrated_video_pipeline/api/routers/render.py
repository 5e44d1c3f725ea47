from __future__ import annotations

import re
from typing import List, Optional, Tuple

from fastapi import APIRouter, Depends, File, HTTPException, Request, UploadFile
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import FileResponse
from starlette.background import BackgroundTask
from starlette.datastructures import UploadFile as StarletteUploadFile

from ...exceptions import (
    JobNotFoundError,
    JobNotReadyError,
    MediaProcessingError,
    PipelineError,
    PlanValidationError,
    SynthesisConfigError,
)
from ...logging_config import get_logger
from ...models import JobRequest, RenderPlan
from ...services.job_orchestrator import JobOrchestrator
from ...utils.file_utils import remove_directory
from ..deps import get_orchestrator
from ..schemas import JobStatusResponse, StartResponse


router = APIRouter(tags=["render"])
logger = get_logger(__name__)

_BG_FIELD = re.compile(r"^bg(\d+)$", re.IGNORECASE)


def _background_order(field_name: str) -> Tuple[int, int]:
    if field_name.lower() == "image":
        return (0, 0)
    match = _BG_FIELD.match(field_name)
    return (1, int(match.group(1)) if match else 0)


def _is_background_field(field_name: str) -> bool:
    return field_name.lower() == "image" or bool(_BG_FIELD.match(field_name))


@router.post("/render10min/start", response_model=StartResponse)
async def start_render(request: Request, orchestrator: JobOrchestrator = Depends(get_orchestrator)) -> StartResponse:
    form = await request.form()

    backgrounds: List[Tuple[Tuple[int, int], bytes]] = []
    cta: Optional[bytes] = None
    plan_raw: Optional[str] = None
    for name, value in form.multi_items():
        if isinstance(value, StarletteUploadFile):
            data = await value.read()
            if not data:
                continue
            if name.lower() == "cta":
                cta = data
            elif _is_background_field(name):
                backgrounds.append((_background_order(name), data))
        elif name == "plan":
            plan_raw = value

    if not backgrounds:
        raise HTTPException(status_code=400, detail="Missing image files. Send bg1..bgN (or image).")
    if not plan_raw:
        raise HTTPException(status_code=400, detail="Missing plan field")

    backgrounds.sort(key=lambda item: item[0])
    try:
        plan = RenderPlan.from_json(plan_raw)
        job_request = JobRequest(
            background_images=[data for _, data in backgrounds],
            plan=plan,
            cta_image=cta,
        )
        job = await run_in_threadpool(orchestrator.submit, job_request)
    except PlanValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except SynthesisConfigError as exc:
        logger.error("Speech backend not configured", error=str(exc))
        raise HTTPException(status_code=500, detail=str(exc)) from exc

    return StartResponse(job_id=job.job_id, bg_count=len(backgrounds), cta=cta is not None)


@router.get(
    "/render10min/status/{job_id}",
    response_model=JobStatusResponse,
    response_model_exclude_none=True,
)
def job_status(job_id: str, orchestrator: JobOrchestrator = Depends(get_orchestrator)) -> JobStatusResponse:
    try:
        return JobStatusResponse(**orchestrator.get_status(job_id))
    except JobNotFoundError as exc:
        raise HTTPException(status_code=404, detail="job_not_found") from exc


@router.get("/render10min/result/{job_id}")
def job_result(job_id: str, orchestrator: JobOrchestrator = Depends(get_orchestrator)) -> FileResponse:
    try:
        path = orchestrator.get_result_path(job_id)
    except JobNotFoundError as exc:
        raise HTTPException(status_code=404, detail="job_not_found") from exc
    except JobNotReadyError as exc:
        raise HTTPException(status_code=409, detail="job_not_done") from exc
    except PipelineError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc

    return FileResponse(path=path, media_type="video/mp4", filename=f"output_{job_id}.mp4")


@router.post("/render/single")
async def render_single(
    image: UploadFile = File(...),
    audio: UploadFile = File(...),
    orchestrator: JobOrchestrator = Depends(get_orchestrator),
) -> FileResponse:
    image_bytes = await image.read()
    audio_bytes = await audio.read()
    try:
        output_path, temp_dir = await run_in_threadpool(orchestrator.render_single, image_bytes, audio_bytes)
    except PlanValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except MediaProcessingError as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc

    return FileResponse(
        path=output_path,
        media_type="video/mp4",
        filename="output.mp4",
        background=BackgroundTask(remove_directory, temp_dir),
    )
