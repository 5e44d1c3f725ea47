"""Job orchestration for narrated video renders.

A submission is validated and recorded synchronously; the render itself runs
on a bounded worker pool. Each job walks the pipeline strictly in sequence:

    prepare -> resolve_cta -> clip stages (tts_intro, ..., seg_N_ext,
    seg_N_tts, ..., tts_outro) -> concat -> trim_silence [-> fit_duration]
    -> encode_audio -> render_mp4 -> verify -> done

The first exception stops the job and its message is recorded verbatim.
"""

import functools
import time
import uuid
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from ..config import get_settings
from ..exceptions import (
    JobAbandonedError,
    JobNotFoundError,
    JobNotReadyError,
    OutputVerificationError,
    PipelineError,
    PlanValidationError,
)
from ..logging_config import LoggerMixin, job_context
from ..models import EffectParams, JobRequest, JobStatusEnum
from ..utils.file_utils import ensure_directory, remove_directory, write_bytes_safe
from .audio_fetcher import RemoteAudioFetcher
from .audio_finisher import AudioFinisher
from .audio_normalizer import AudioNormalizer
from .job_store import JobRecord, JobStore
from .media_runner import MediaRunner
from .segment_assembler import SegmentAssembler
from .tts import SpeechSynthesizer, create_backend
from .video_compositor import VideoCompositor


class JobOrchestrator(LoggerMixin):
    """
    Owns the job lifecycle: submission, background execution, status,
    results and TTL reclamation.

    All collaborators are injectable; by default they are built from settings.
    """

    def __init__(
        self,
        settings=None,
        store: Optional[JobStore] = None,
        runner: Optional[MediaRunner] = None,
        synthesizer: Optional[SpeechSynthesizer] = None,
        fetcher: Optional[RemoteAudioFetcher] = None,
    ):
        self.settings = settings or get_settings()
        self.store = store or JobStore()
        self.runner = runner or MediaRunner(self.settings)
        self.synthesizer = synthesizer or SpeechSynthesizer(
            create_backend(self.settings, runner=self.runner), settings=self.settings
        )
        self.fetcher = fetcher or RemoteAudioFetcher(self.settings)
        self.normalizer = AudioNormalizer(self.settings, runner=self.runner)
        self.assembler = SegmentAssembler(self.synthesizer, self.fetcher, self.normalizer, settings=self.settings)
        self.finisher = AudioFinisher(self.settings, runner=self.runner)
        self.compositor = VideoCompositor(self.settings, runner=self.runner)

        self.work_root = ensure_directory(self.settings.work_root)
        self._executor = ThreadPoolExecutor(
            max_workers=self.settings.max_concurrent_jobs,
            thread_name_prefix="render-job",
        )
        self.logger.info(
            "JobOrchestrator initialized",
            work_root=str(self.work_root),
            max_concurrent_jobs=self.settings.max_concurrent_jobs,
        )

    # ---------------------------
    # Submission
    # ---------------------------

    def submit(self, request: JobRequest) -> JobRecord:
        """
        Validate a request, record the job and schedule its pipeline.

        Returns immediately with the new job in ``processing`` state.

        Raises:
            PlanValidationError: Missing or oversized files
            SynthesisConfigError: Speech backend is not configured
            OSError: Uploads could not be written; no job is kept
        """
        self._validate_request(request)
        self.synthesizer.ensure_configured()

        job = self.store.create_job(self.work_root)
        try:
            work_dir = ensure_directory(job.work_dir)
            image_paths = []
            for i, blob in enumerate(request.background_images, start=1):
                image_paths.append(write_bytes_safe(work_dir / f"bg_{i:02d}.png", blob))

            uploaded_cta = None
            if request.cta_image:
                uploaded_cta = write_bytes_safe(work_dir / "cta.png", request.cta_image)
        except OSError:
            self.store.delete(job.job_id)
            raise

        self.logger.info(
            "Job submitted",
            job_id=job.job_id,
            backgrounds=len(image_paths),
            segments=len(request.plan.segments),
            uploaded_cta=uploaded_cta is not None,
        )
        self._executor.submit(self._run_pipeline, job.job_id, work_dir, image_paths, request, uploaded_cta)
        return job

    def _validate_request(self, request: JobRequest) -> None:
        images = [blob for blob in request.background_images if blob]
        if not images:
            raise PlanValidationError("Missing image files. Send bg1..bgN (or image).")
        if request.plan is None:
            raise PlanValidationError("Missing plan field")

        limit = self.settings.max_upload_bytes
        blobs = list(images) + ([request.cta_image] if request.cta_image else [])
        for blob in blobs:
            if len(blob) > limit:
                raise PlanValidationError(f"Uploaded file exceeds {limit} bytes")
        request.background_images = images

    # ---------------------------
    # Pipeline
    # ---------------------------

    def _run_pipeline(
        self,
        job_id: str,
        work_dir: Path,
        image_paths,
        request: JobRequest,
        uploaded_cta: Optional[Path],
    ) -> None:
        with job_context(job_id):
            self._execute(job_id, work_dir, image_paths, request, uploaded_cta)

    def _execute(
        self,
        job_id: str,
        work_dir: Path,
        image_paths,
        request: JobRequest,
        uploaded_cta: Optional[Path],
    ) -> None:
        started = time.time()
        stage = functools.partial(self._set_stage, job_id)

        try:
            stage("prepare")
            plan = request.plan
            effects = plan.effects

            stage("resolve_cta")
            cta_path = uploaded_cta or self.resolve_cta(work_dir)

            manifest = self.assembler.assemble(
                plan,
                clips_dir=work_dir / "clips",
                manifest_path=work_dir / "list.txt",
                on_stage=stage,
            )

            audio_path = self.finisher.finish(
                manifest.path,
                work_dir,
                target_duration=effects.target_duration_seconds,
                on_stage=stage,
            )

            stage("render_mp4")
            output_path = self.compositor.compose(
                image_paths,
                audio_path,
                work_dir / "output.mp4",
                cta_path=cta_path,
                effects=effects,
            )

            stage("verify")
            self.verify_output(output_path, audio_path)

            self.store.mark_done(job_id, output_path)
            self.logger.info(
                "Job completed",
                job_id=job_id,
                duration_seconds=round(time.time() - started, 2),
                output=str(output_path),
            )
        except JobAbandonedError as exc:
            self.logger.warning("Job abandoned", job_id=job_id, reason=str(exc))
        except Exception as exc:
            self.store.mark_error(job_id, str(exc))
            self.logger.error(
                "Job failed",
                job_id=job_id,
                error=str(exc),
                error_type=type(exc).__name__,
            )
        finally:
            # Swept mid-run; no untracked directory may remain
            if self.store.get_job(job_id) is None:
                remove_directory(work_dir)

    def _set_stage(self, job_id: str, stage: str) -> None:
        job = self.store.get_job(job_id)
        if job is None:
            raise JobAbandonedError(f"Job {job_id} was reclaimed before {stage}")
        if job.status != JobStatusEnum.PROCESSING:
            raise JobAbandonedError(f"Job {job_id} is {job.status.value}, skipping {stage}")
        self.store.set_stage(job_id, stage)
        self.logger.info("Stage started", job_id=job_id, stage=stage)

    def resolve_cta(self, work_dir: Path) -> Optional[Path]:
        """
        Find a call-to-action image when none was uploaded.

        Tries the configured local file (``<assets_dir>/cta.png`` unless set),
        then the configured URL, downloaded into the job directory. Returns
        None when neither is available.
        """
        local = Path(self.settings.cta_image_path or Path(self.settings.assets_dir) / "cta.png")
        if local.is_file():
            return local

        url = self.settings.cta_image_url
        if url:
            return self.fetcher.fetch(url, Path(work_dir) / "cta_download.png")
        return None

    def verify_output(self, output_path: Path, audio_path: Path) -> float:
        """
        Check that the rendered video is not implausibly short.

        Raises:
            OutputVerificationError: If the video is below the duration floor
        """
        video_duration = self.runner.probe_duration(output_path)
        audio_duration = self.runner.probe_duration(audio_path)
        floor = max(self.settings.min_output_seconds, self.settings.verify_duration_ratio * audio_duration)
        if video_duration < floor:
            raise OutputVerificationError(
                f"Video duration too short: {video_duration:.2f}s (expected at least {floor:.2f}s)"
            )
        return video_duration

    # ---------------------------
    # Queries
    # ---------------------------

    def get_status(self, job_id: str) -> Dict[str, Any]:
        """
        Report a job's status and stage.

        A job still processing past ``job_timeout_seconds`` is moved to
        ``error`` here; the worker keeps running but its result is ignored.

        Raises:
            JobNotFoundError: Unknown or reclaimed job id
        """
        job = self._require(job_id)
        if job.status == JobStatusEnum.PROCESSING:
            elapsed = time.time() - job.created_at
            if elapsed > self.settings.job_timeout_seconds:
                self.store.mark_error(job_id, f"Job timed out after {int(elapsed)}s")
                self.logger.warning("Job timed out", job_id=job_id, stage=job.stage, elapsed_seconds=int(elapsed))
                job = self._require(job_id)

        status: Dict[str, Any] = {"status": job.status.value, "stage": job.stage}
        if job.error:
            status["error"] = job.error
        return status

    def get_result_path(self, job_id: str) -> Path:
        """
        Path of a finished job's video.

        Raises:
            JobNotFoundError: Unknown or reclaimed job id
            JobNotReadyError: Job is still processing
            PipelineError: Job failed; the message is the recorded error
        """
        self.get_status(job_id)
        job = self._require(job_id)
        if job.status == JobStatusEnum.PROCESSING:
            raise JobNotReadyError(f"Job {job_id} is not done (stage: {job.stage})")
        if job.status == JobStatusEnum.ERROR:
            raise PipelineError(job.error)
        if job.output_path is None or not job.output_path.exists():
            raise JobNotFoundError(f"Output of job {job_id} is no longer available")
        return job.output_path

    def _require(self, job_id: str) -> JobRecord:
        job = self.store.get_job(job_id)
        if job is None:
            raise JobNotFoundError(f"Job not found: {job_id}")
        return job

    # ---------------------------
    # Reclamation
    # ---------------------------

    def sweep(self) -> int:
        """Remove jobs older than the TTL, whatever their status."""
        removed = self.store.cleanup(self.settings.job_ttl_seconds)
        if removed:
            self.logger.info("Sweep removed expired jobs", count=len(removed))
        return len(removed)

    def shutdown(self, wait: bool = False) -> None:
        self._executor.shutdown(wait=wait)

    # ---------------------------
    # Legacy single-image render
    # ---------------------------

    def render_single(
        self,
        image: bytes,
        audio: bytes,
        effects: Optional[EffectParams] = None,
    ) -> Tuple[Path, Path]:
        """
        Render one image against an uploaded audio file, synchronously.

        No synthesis, no finishing and no call-to-action. The caller owns the
        returned temporary directory and must remove it.

        Returns:
            (output_path, temp_dir)

        Raises:
            PlanValidationError: Missing image or audio
            MediaProcessingError: If rendering fails
        """
        if not image or not audio:
            raise PlanValidationError("Missing image or audio file")
        limit = self.settings.max_upload_bytes
        if len(image) > limit or len(audio) > limit:
            raise PlanValidationError(f"Uploaded file exceeds {limit} bytes")

        temp_dir = ensure_directory(self.work_root / f"single_{uuid.uuid4().hex}")
        try:
            image_path = write_bytes_safe(temp_dir / "image.png", image)
            audio_path = write_bytes_safe(temp_dir / "audio.input", audio)
            output_path = self.compositor.compose(
                [image_path],
                audio_path,
                temp_dir / "output.mp4",
                effects=effects,
            )
        except Exception:
            remove_directory(temp_dir)
            raise
        return output_path, temp_dir
