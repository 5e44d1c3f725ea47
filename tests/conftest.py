"""
Pytest configuration and fixtures for the narrated video pipeline tests.

Nothing here touches the network, ffmpeg or cloud credentials: media stages
run through FakeMediaRunner and speech through FakeSpeechBackend.
"""

import shutil
import subprocess
import tempfile
import threading
import time
from pathlib import Path
from typing import Dict, Generator, List, Optional

import numpy as np
import pytest

from narrated_video_pipeline.config import Settings
from narrated_video_pipeline.exceptions import MediaProcessingError, SynthesisConfigError
from narrated_video_pipeline.models import AudioFormat, JobStatusEnum
from narrated_video_pipeline.services.job_orchestrator import JobOrchestrator
from narrated_video_pipeline.services.tts import PcmAudio, SpeechBackend, SpeechSynthesizer
from narrated_video_pipeline.utils.file_utils import write_bytes_safe
from narrated_video_pipeline.utils.retry import BackoffPolicy


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    temp_path = Path(tempfile.mkdtemp())
    try:
        yield temp_path
    finally:
        shutil.rmtree(temp_path, ignore_errors=True)


@pytest.fixture
def test_settings(temp_dir: Path) -> Settings:
    """Create test settings with temporary directories and no fallbacks."""
    return Settings(
        work_root=temp_dir / "work",
        logs_dir=temp_dir / "logs",
        assets_dir=temp_dir / "assets",
        tts_backend="google",
        gcp_tts_key_b64=None,
        cta_image_path=None,
        cta_image_url=None,
        rate_limit_base_delay=0.0,
        rate_limit_max_delay=0.0,
        fetch_error_body_chars=20,
        max_concurrent_jobs=2,
        log_level="DEBUG",
    )


class FakeMediaRunner:
    """Records ffmpeg invocations and writes a placeholder output file."""

    def __init__(self, durations: Optional[Dict[str, float]] = None, default_duration: float = 12.0):
        self.calls: List[tuple] = []
        self.durations = durations or {}
        self.default_duration = default_duration
        self.fail_stages: Dict[str, str] = {}
        self._lock = threading.Lock()

    def run(self, stage, args, input_bytes=None):
        args = [str(arg) for arg in args]
        with self._lock:
            self.calls.append((stage, args))
        if stage in self.fail_stages:
            raise MediaProcessingError(stage, 1, self.fail_stages[stage])
        output = args[-1] if args else ""
        if output and output != "pipe:1":
            write_bytes_safe(Path(output), b"media:" + stage.encode("utf-8"))
        return subprocess.CompletedProcess(args=args, returncode=0, stdout=b"", stderr=b"")

    def probe_duration(self, path):
        return self.durations.get(Path(path).name, self.default_duration)

    def probe_audio_format(self, path):
        return AudioFormat(sample_rate=48000, channels=1, codec="pcm_s16le", bits_per_sample=16)

    def stages(self) -> List[str]:
        with self._lock:
            return [stage for stage, _ in self.calls]

    def args_for(self, stage: str) -> List[str]:
        with self._lock:
            for name, args in self.calls:
                if name == stage:
                    return args
        raise AssertionError(f"stage {stage} was not run")


class FakeSpeechBackend(SpeechBackend):
    """Speech backend producing a short tone, optionally failing first."""

    name = "fake"

    def __init__(self, settings=None, failures=None, configured: bool = True, gate: Optional[threading.Event] = None):
        super().__init__(settings)
        self.failures = list(failures or [])
        self.configured = configured
        self.gate = gate
        self.calls: List[str] = []

    def ensure_configured(self) -> None:
        if not self.configured:
            raise SynthesisConfigError("GCP_TTS_KEY_B64 is missing")

    def synthesize_chunk(self, text: str) -> PcmAudio:
        self.calls.append(text)
        if self.gate is not None:
            self.gate.wait(timeout=10)
        if self.failures:
            raise self.failures.pop(0)
        return PcmAudio(samples=np.full(2400, 1000, dtype=np.int16), sample_rate=24000)


class FakeFetcher:
    """Stands in for RemoteAudioFetcher; writes bytes or raises per URL."""

    def __init__(self, errors: Optional[Dict[str, Exception]] = None):
        self.errors = errors or {}
        self.urls: List[str] = []

    def fetch(self, url, output_path):
        self.urls.append(url)
        if url in self.errors:
            raise self.errors[url]
        return write_bytes_safe(Path(output_path), b"remote:" + url.encode("utf-8"))


@pytest.fixture
def fake_runner() -> FakeMediaRunner:
    return FakeMediaRunner()


@pytest.fixture
def fake_backend(test_settings) -> FakeSpeechBackend:
    return FakeSpeechBackend(test_settings)


@pytest.fixture
def fake_fetcher() -> FakeFetcher:
    return FakeFetcher()


def make_synthesizer(backend, settings, sleeps: Optional[list] = None) -> SpeechSynthesizer:
    sleeps = sleeps if sleeps is not None else []
    return SpeechSynthesizer(
        backend,
        settings=settings,
        policy=BackoffPolicy(max_attempts=6, base_delay=0.8, max_delay=15.0),
        sleep=sleeps.append,
    )


@pytest.fixture
def make_orchestrator(test_settings, fake_runner, fake_fetcher):
    """Factory building an orchestrator over fakes; shut down after the test."""
    created = []

    def factory(backend=None, runner=None, fetcher=None, settings=None, sleeps=None):
        settings = settings or test_settings
        backend = backend or FakeSpeechBackend(settings)
        orchestrator = JobOrchestrator(
            settings=settings,
            runner=runner or fake_runner,
            synthesizer=make_synthesizer(backend, settings, sleeps),
            fetcher=fetcher or fake_fetcher,
        )
        created.append(orchestrator)
        return orchestrator

    yield factory
    for orchestrator in created:
        orchestrator.shutdown(wait=True)


def wait_for_job(orchestrator, job_id: str, timeout: float = 10.0) -> dict:
    """Poll a job until it leaves processing."""
    deadline = time.time() + timeout
    while time.time() < deadline:
        status = orchestrator.get_status(job_id)
        if status["status"] != JobStatusEnum.PROCESSING.value:
            return status
        time.sleep(0.02)
    raise AssertionError(f"job {job_id} still processing after {timeout}s")
