"""
Narrated Video Pipeline

Renders narrated videos from background images and a plan of synthesized and
pre-recorded audio segments, as asynchronous jobs behind a small HTTP API.
"""

__version__ = "0.1.0"

from .models import (
    JobStatusEnum,
    ClipKind,
    EffectParams,
    PlanSegment,
    RenderPlan,
    ClipSpec,
    Manifest,
    AudioFormat,
    JobRequest,
)

__all__ = [
    "JobStatusEnum",
    "ClipKind",
    "EffectParams",
    "PlanSegment",
    "RenderPlan",
    "ClipSpec",
    "Manifest",
    "AudioFormat",
    "JobRequest",
]
