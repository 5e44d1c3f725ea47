"""Audio finishing: concat, trailing-silence trim, duration policy, encode."""

from pathlib import Path
from typing import Callable, Optional

from ..config import get_settings
from ..logging_config import LoggerMixin
from ..utils.file_utils import ensure_directory
from .media_runner import MediaRunner


class AudioFinisher(LoggerMixin):
    """
    Turn a concat manifest into the final compressed narration track.

    Every step is its own ffmpeg stage and writes its own file, so a failure
    names exactly the step that broke. Nothing here is retried.
    """

    def __init__(self, settings=None, runner: MediaRunner = None):
        self.settings = settings or get_settings()
        self.runner = runner or MediaRunner(self.settings)

    def finish(
        self,
        manifest_path: Path,
        work_dir: Path,
        target_duration: Optional[float] = None,
        on_stage: Optional[Callable[[str], None]] = None,
    ) -> Path:
        """
        Run all finishing stages.

        Args:
            manifest_path: Concat list written by the segment assembler
            work_dir: Directory for intermediate and final audio files
            target_duration: Exact output length in seconds, or None to keep
                the natural narration length
            on_stage: Called with each stage label before it starts

        Returns:
            Path to the encoded audio file

        Raises:
            MediaProcessingError: If any stage fails
        """
        work_dir = ensure_directory(work_dir)

        def stage(name: str) -> None:
            if on_stage:
                on_stage(name)

        stage("concat")
        track = self.concatenate(manifest_path, work_dir / "narration.wav")

        stage("trim_silence")
        track = self.trim_trailing_silence(track, work_dir / "narration_trimmed.wav")

        if target_duration:
            stage("fit_duration")
            track = self.fit_duration(track, work_dir / "narration_fitted.wav", target_duration)

        stage("encode_audio")
        return self.encode(track, work_dir / "audio.m4a")

    def concatenate(self, manifest_path: Path, output_path: Path) -> Path:
        """Join all manifest entries into one PCM track."""
        self.runner.run(
            "concat",
            [
                "-f", "concat",
                "-safe", "0",
                "-i", str(manifest_path),
                "-c:a", "pcm_s16le",
                str(output_path),
            ],
        )
        self.logger.info("Clips concatenated", output=str(output_path))
        return Path(output_path)

    def trim_trailing_silence(self, input_path: Path, output_path: Path) -> Path:
        """
        Remove the low-level tail of a track without touching its start.

        The track is reversed so the trailing silence becomes leading silence,
        stripped up to the first stretch of signal, then reversed back. A short
        pad of the original silence is kept so speech does not end abruptly.
        """
        threshold = f"{self.settings.silence_threshold_db:g}dB"
        silence_filter = (
            "areverse,"
            "silenceremove="
            "start_periods=1:"
            f"start_duration={self.settings.silence_min_signal_seconds:g}:"
            f"start_threshold={threshold}:"
            f"start_silence={self.settings.silence_keep_seconds:g},"
            "areverse"
        )
        self.runner.run(
            "trim_silence",
            [
                "-i", str(input_path),
                "-af", silence_filter,
                "-c:a", "pcm_s16le",
                str(output_path),
            ],
        )
        return Path(output_path)

    def fit_duration(self, input_path: Path, output_path: Path, target_duration: float) -> Path:
        """Pad with silence and/or truncate to exactly ``target_duration`` seconds."""
        target = f"{target_duration:.3f}"
        self.runner.run(
            "fit_duration",
            [
                "-i", str(input_path),
                "-af", f"apad=whole_dur={target},atrim=0:{target}",
                "-c:a", "pcm_s16le",
                str(output_path),
            ],
        )
        self.logger.info("Narration fitted to target duration", target_seconds=target_duration)
        return Path(output_path)

    def encode(self, input_path: Path, output_path: Path) -> Path:
        """Compress the finished track to AAC."""
        self.runner.run(
            "encode_audio",
            [
                "-i", str(input_path),
                "-c:a", "aac",
                "-b:a", self.settings.audio_bitrate,
                str(output_path),
            ],
        )
        self.logger.info("Narration encoded", output=str(output_path), bitrate=self.settings.audio_bitrate)
        return Path(output_path)
