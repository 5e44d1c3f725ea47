from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class HealthResponse(BaseModel):
    ok: bool = True


class StartResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    job_id: str = Field(serialization_alias="jobId")
    bg_count: int = Field(serialization_alias="bgCount")
    cta: bool


class JobStatusResponse(BaseModel):
    status: str
    stage: str
    error: Optional[str] = None
