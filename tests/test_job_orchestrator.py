"""Tests for JobOrchestrator: submission, pipeline scenarios, status and reclamation."""

import threading
import time

import pytest

from narrated_video_pipeline.exceptions import (
    AudioFetchError,
    JobNotFoundError,
    JobNotReadyError,
    MediaProcessingError,
    OutputVerificationError,
    PipelineError,
    PlanValidationError,
    RateLimitedError,
    SynthesisConfigError,
)
from narrated_video_pipeline.models import JobRequest, RenderPlan
from narrated_video_pipeline.services import job_orchestrator as job_orchestrator_module
from narrated_video_pipeline.services import job_store as job_store_module

from conftest import FakeFetcher, FakeMediaRunner, FakeSpeechBackend, wait_for_job


PNG = b"\x89PNG\r\n\x1a\nfake-image"


def make_request(plan: dict, images: int = 1, cta: bytes = None) -> JobRequest:
    return JobRequest(
        background_images=[PNG + bytes([i]) for i in range(images)],
        plan=RenderPlan.model_validate(plan),
        cta_image=cta,
    )


def three_segments(missing: int = None) -> list:
    segments = []
    for n in (1, 2, 3):
        segment = {"spokenText": f"Narration {n}", "orderKey": n}
        if n != missing:
            segment["externalAudioUrl"] = f"https://cdn.example.com/{n}.mp3"
        segments.append(segment)
    return segments


class TestSubmit:

    def test_returns_processing_job(self, make_orchestrator):
        orchestrator = make_orchestrator()

        job = orchestrator.submit(make_request({"introText": "Hello"}))

        assert job.job_id
        assert job.work_dir.parent == orchestrator.work_root
        wait_for_job(orchestrator, job.job_id)

    def test_writes_background_images_in_order(self, make_orchestrator):
        orchestrator = make_orchestrator()

        job = orchestrator.submit(make_request({"introText": "Hello"}, images=3))

        assert [p.name for p in sorted(job.work_dir.glob("bg_*.png"))] == ["bg_01.png", "bg_02.png", "bg_03.png"]
        assert (job.work_dir / "bg_02.png").read_bytes() == PNG + bytes([1])
        wait_for_job(orchestrator, job.job_id)

    @pytest.mark.parametrize("images", [[], [b""]])
    def test_missing_images_rejected_without_job(self, make_orchestrator, images):
        orchestrator = make_orchestrator()

        with pytest.raises(PlanValidationError, match="Missing image files"):
            orchestrator.submit(JobRequest(background_images=images, plan=RenderPlan()))
        assert len(orchestrator.store) == 0

    def test_oversized_upload_rejected(self, make_orchestrator, test_settings):
        settings = test_settings.model_copy(update={"max_upload_bytes": 8})
        orchestrator = make_orchestrator(settings=settings)

        with pytest.raises(PlanValidationError, match="exceeds 8 bytes"):
            orchestrator.submit(make_request({"introText": "Hello"}))
        assert len(orchestrator.store) == 0

    def test_write_failure_leaves_no_job(self, make_orchestrator, monkeypatch):
        orchestrator = make_orchestrator()

        def disk_full(path, data):
            raise OSError(28, "No space left on device")

        monkeypatch.setattr(job_orchestrator_module, "write_bytes_safe", disk_full)

        with pytest.raises(OSError, match="No space left"):
            orchestrator.submit(make_request({"introText": "Hello"}))
        assert len(orchestrator.store) == 0
        assert list(orchestrator.work_root.iterdir()) == []

    def test_unconfigured_backend_rejected_without_job(self, make_orchestrator, test_settings):
        orchestrator = make_orchestrator(backend=FakeSpeechBackend(test_settings, configured=False))

        with pytest.raises(SynthesisConfigError):
            orchestrator.submit(make_request({"introText": "Hello"}))
        assert len(orchestrator.store) == 0


class TestPipeline:

    def test_single_intro_renders(self, make_orchestrator, fake_runner):
        orchestrator = make_orchestrator()

        job = orchestrator.submit(make_request({"introText": "Hello", "segments": []}))
        status = wait_for_job(orchestrator, job.job_id)

        assert status == {"status": "done", "stage": "done"}
        manifest = (job.work_dir / "list.txt").read_text(encoding="utf-8").splitlines()
        assert len(manifest) == 1 and manifest[0].endswith("000_intro.wav'")
        assert orchestrator.get_result_path(job.job_id) == job.work_dir / "output.mp4"
        assert fake_runner.stages()[-4:] == ["concat", "trim_silence", "encode_audio", "render_mp4"]

    def test_two_images_split_the_duration(self, make_orchestrator, fake_runner):
        orchestrator = make_orchestrator()

        job = orchestrator.submit(make_request({"introText": "Hi", "segments": three_segments()}, images=2))
        wait_for_job(orchestrator, job.job_id)

        args = fake_runner.args_for("render_mp4")
        graph = args[args.index("-filter_complex") + 1]
        assert "concat=n=2:v=1:a=0" in graph
        assert graph.count("trim=end_frame=180") == 2
        manifest = (job.work_dir / "list.txt").read_text(encoding="utf-8").splitlines()
        assert len(manifest) == 7

    def test_incomplete_segment_contributes_nothing(self, make_orchestrator, fake_fetcher):
        orchestrator = make_orchestrator()

        job = orchestrator.submit(make_request({"segments": three_segments(missing=2)}))
        wait_for_job(orchestrator, job.job_id)

        manifest = (job.work_dir / "list.txt").read_text(encoding="utf-8")
        assert "seg1_1_ext" in manifest and "seg1_1_tts" in manifest
        assert "seg3_3_ext" in manifest and "seg3_3_tts" in manifest
        assert "seg2" not in manifest
        assert fake_fetcher.urls == ["https://cdn.example.com/1.mp3", "https://cdn.example.com/3.mp3"]

    def test_rate_limited_synthesis_still_completes(self, make_orchestrator, test_settings):
        backend = FakeSpeechBackend(test_settings, failures=[RateLimitedError("429 Too Many Requests")] * 3)
        sleeps = []
        orchestrator = make_orchestrator(backend=backend, sleeps=sleeps)

        job = orchestrator.submit(make_request({"introText": "Hello"}))
        status = wait_for_job(orchestrator, job.job_id)

        assert status["status"] == "done"
        assert len(backend.calls) == 4
        assert len(sleeps) == 3

    def test_fetch_error_recorded_verbatim(self, make_orchestrator):
        error = AudioFetchError(
            "Download failed 404: https://cdn.example.com/2.mp3: Not Found",
            url="https://cdn.example.com/2.mp3",
            status_code=404,
        )
        orchestrator = make_orchestrator(fetcher=FakeFetcher(errors={"https://cdn.example.com/2.mp3": error}))

        job = orchestrator.submit(make_request({"segments": three_segments()}))
        status = wait_for_job(orchestrator, job.job_id)

        assert status == {
            "status": "error",
            "stage": "error",
            "error": "Download failed 404: https://cdn.example.com/2.mp3: Not Found",
        }
        record = orchestrator.store.get_job(job.job_id)
        assert record.output_path is None

    def test_media_failure_stops_pipeline(self, make_orchestrator, fake_runner):
        fake_runner.fail_stages["encode_audio"] = "Unknown encoder 'aac'"
        orchestrator = make_orchestrator()

        job = orchestrator.submit(make_request({"introText": "Hello"}))
        status = wait_for_job(orchestrator, job.job_id)

        assert status["status"] == "error"
        assert status["error"].startswith("encode_audio failed (code=1)")
        assert "render_mp4" not in fake_runner.stages()

    def test_short_output_fails_verification(self, make_orchestrator):
        runner = FakeMediaRunner(durations={"output.mp4": 0.5})
        orchestrator = make_orchestrator(runner=runner)

        job = orchestrator.submit(make_request({"introText": "Hello"}))
        status = wait_for_job(orchestrator, job.job_id)

        assert status["status"] == "error"
        assert status["error"].startswith("Video duration too short: 0.50s")

    def test_target_duration_adds_fit_stage(self, make_orchestrator, fake_runner):
        orchestrator = make_orchestrator()

        job = orchestrator.submit(make_request({"introText": "Hello", "effects": {"targetDurationSeconds": 12}}))
        wait_for_job(orchestrator, job.job_id)

        assert "fit_duration" in fake_runner.stages()

    def test_uploaded_cta_is_overlaid(self, make_orchestrator, fake_runner):
        orchestrator = make_orchestrator()

        job = orchestrator.submit(make_request({"introText": "Hello"}, cta=PNG))
        wait_for_job(orchestrator, job.job_id)

        args = fake_runner.args_for("render_mp4")
        assert str(job.work_dir / "cta.png") in args
        assert "[cta]overlay=" in args[args.index("-filter_complex") + 1]


class TestVerifyOutput:

    def test_floor_follows_audio_duration(self, make_orchestrator, temp_dir):
        runner = FakeMediaRunner(durations={"output.mp4": 100.0, "audio.m4a": 120.0})
        orchestrator = make_orchestrator(runner=runner)

        with pytest.raises(OutputVerificationError, match="expected at least 108.00s"):
            orchestrator.verify_output(temp_dir / "output.mp4", temp_dir / "audio.m4a")

    def test_accepts_full_length(self, make_orchestrator, temp_dir):
        runner = FakeMediaRunner(durations={"output.mp4": 119.9, "audio.m4a": 120.0})
        orchestrator = make_orchestrator(runner=runner)

        assert orchestrator.verify_output(temp_dir / "output.mp4", temp_dir / "audio.m4a") == 119.9


class TestResolveCta:

    def test_none_configured(self, make_orchestrator, temp_dir):
        assert make_orchestrator().resolve_cta(temp_dir) is None

    def test_local_file(self, make_orchestrator, test_settings, temp_dir):
        local = temp_dir / "assets" / "cta.png"
        local.parent.mkdir(parents=True, exist_ok=True)
        local.write_bytes(PNG)
        orchestrator = make_orchestrator(settings=test_settings.model_copy(update={"cta_image_path": local}))

        assert orchestrator.resolve_cta(temp_dir) == local

    def test_default_file_in_assets_dir(self, make_orchestrator, test_settings, temp_dir):
        local = test_settings.assets_dir / "cta.png"
        local.parent.mkdir(parents=True, exist_ok=True)
        local.write_bytes(PNG)

        assert make_orchestrator().resolve_cta(temp_dir) == local

    def test_remote_url(self, make_orchestrator, test_settings, fake_fetcher, temp_dir):
        settings = test_settings.model_copy(update={
            "cta_image_path": temp_dir / "missing.png",
            "cta_image_url": "https://cdn.example.com/cta.png",
        })
        orchestrator = make_orchestrator(settings=settings)

        path = orchestrator.resolve_cta(temp_dir)

        assert path == temp_dir / "cta_download.png"
        assert fake_fetcher.urls == ["https://cdn.example.com/cta.png"]


class TestQueries:

    def test_unknown_job(self, make_orchestrator):
        orchestrator = make_orchestrator()

        with pytest.raises(JobNotFoundError):
            orchestrator.get_status("nope")
        with pytest.raises(JobNotFoundError):
            orchestrator.get_result_path("nope")

    def test_result_not_ready_while_processing(self, make_orchestrator, test_settings):
        gate = threading.Event()
        orchestrator = make_orchestrator(backend=FakeSpeechBackend(test_settings, gate=gate))

        job = orchestrator.submit(make_request({"introText": "Hello"}))
        try:
            with pytest.raises(JobNotReadyError):
                orchestrator.get_result_path(job.job_id)
            assert orchestrator.get_status(job.job_id)["status"] == "processing"
        finally:
            gate.set()
        assert wait_for_job(orchestrator, job.job_id)["status"] == "done"

    def test_failed_job_result_carries_error(self, make_orchestrator, fake_runner):
        fake_runner.fail_stages["concat"] = "No such file"
        orchestrator = make_orchestrator()

        job = orchestrator.submit(make_request({"introText": "Hello"}))
        wait_for_job(orchestrator, job.job_id)

        with pytest.raises(PipelineError, match="concat failed"):
            orchestrator.get_result_path(job.job_id)

    def test_soft_timeout_on_status_read(self, make_orchestrator, test_settings, fake_runner, monkeypatch):
        gate = threading.Event()
        orchestrator = make_orchestrator(backend=FakeSpeechBackend(test_settings, gate=gate))
        started = time.time() - test_settings.job_timeout_seconds - 10
        monkeypatch.setattr(job_store_module, "_now", lambda: started)

        job = orchestrator.submit(make_request({"introText": "Hello"}))
        try:
            status = orchestrator.get_status(job.job_id)
        finally:
            gate.set()

        assert status["status"] == "error"
        assert status["error"].startswith("Job timed out after")
        orchestrator.shutdown(wait=True)
        assert orchestrator.get_status(job.job_id)["status"] == "error"
        assert "concat" not in fake_runner.stages()
        assert "render_mp4" not in fake_runner.stages()


class TestSweep:

    def test_sweep_removes_expired_jobs(self, make_orchestrator, test_settings, monkeypatch):
        orchestrator = make_orchestrator()
        job = orchestrator.submit(make_request({"introText": "Hello"}))
        wait_for_job(orchestrator, job.job_id)
        assert job.work_dir.exists()

        later = time.time() + test_settings.job_ttl_seconds + 5
        monkeypatch.setattr(job_store_module, "_now", lambda: later)

        assert orchestrator.sweep() == 1
        assert not job.work_dir.exists()
        with pytest.raises(JobNotFoundError):
            orchestrator.get_status(job.job_id)

    def test_sweep_during_run_stops_worker_and_removes_directory(
        self, make_orchestrator, test_settings, fake_runner, monkeypatch
    ):
        gate = threading.Event()
        orchestrator = make_orchestrator(backend=FakeSpeechBackend(test_settings, gate=gate))
        job = orchestrator.submit(make_request({"introText": "Hello"}))

        later = time.time() + test_settings.job_ttl_seconds + 5
        monkeypatch.setattr(job_store_module, "_now", lambda: later)
        try:
            assert orchestrator.sweep() == 1
        finally:
            gate.set()
        orchestrator.shutdown(wait=True)

        assert not job.work_dir.exists()
        assert "render_mp4" not in fake_runner.stages()

    def test_sweep_keeps_recent_jobs(self, make_orchestrator):
        orchestrator = make_orchestrator()
        job = orchestrator.submit(make_request({"introText": "Hello"}))
        wait_for_job(orchestrator, job.job_id)

        assert orchestrator.sweep() == 0
        assert orchestrator.get_status(job.job_id)["status"] == "done"


class TestRenderSingle:

    def test_renders_one_image_against_uploaded_audio(self, make_orchestrator, fake_runner):
        orchestrator = make_orchestrator()

        output, temp_dir = orchestrator.render_single(PNG, b"ID3audio")

        assert output == temp_dir / "output.mp4" and output.exists()
        assert temp_dir.name.startswith("single_")
        assert fake_runner.stages() == ["render_mp4"]
        args = fake_runner.args_for("render_mp4")
        assert [args[i + 1] for i, arg in enumerate(args) if arg == "-i"] == [
            str(temp_dir / "image.png"),
            str(temp_dir / "audio.input"),
        ]
        assert "overlay" not in args[args.index("-filter_complex") + 1]

    def test_missing_audio(self, make_orchestrator):
        with pytest.raises(PlanValidationError, match="Missing image or audio"):
            make_orchestrator().render_single(PNG, b"")

    def test_failure_removes_temp_dir(self, make_orchestrator, fake_runner):
        fake_runner.fail_stages["render_mp4"] = "Conversion failed!"
        orchestrator = make_orchestrator()

        with pytest.raises(MediaProcessingError, match="Conversion failed"):
            orchestrator.render_single(PNG, b"ID3audio")

        assert list(orchestrator.work_root.glob("single_*")) == []
