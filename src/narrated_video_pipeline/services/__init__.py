"""
Service modules for the narrated video pipeline.
"""

from .media_runner import MediaRunner
from .tts import (
    SpeechSynthesizer,
    SpeechBackend,
    GoogleCloudBackend,
    EdgeTTSBackend,
    EspeakBackend,
    create_backend,
)
from .audio_fetcher import RemoteAudioFetcher
from .audio_normalizer import AudioNormalizer
from .segment_assembler import SegmentAssembler, build_clip_plan
from .audio_finisher import AudioFinisher
from .video_compositor import VideoCompositor
from .job_store import JobStore, JobRecord
from .job_orchestrator import JobOrchestrator

__all__ = [
    "MediaRunner",
    "SpeechSynthesizer",
    "SpeechBackend",
    "GoogleCloudBackend",
    "EdgeTTSBackend",
    "EspeakBackend",
    "create_backend",
    "RemoteAudioFetcher",
    "AudioNormalizer",
    "SegmentAssembler",
    "build_clip_plan",
    "AudioFinisher",
    "VideoCompositor",
    "JobStore",
    "JobRecord",
    "JobOrchestrator",
]
