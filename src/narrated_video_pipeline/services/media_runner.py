"""Thin wrapper around the ffmpeg/ffprobe binaries.

All media computation in the pipeline is delegated to ffmpeg. This module is
the single place where those processes are spawned, so the rest of the code
deals only in stage names, argument lists and MediaProcessingError.
"""

import json
import subprocess
from pathlib import Path
from typing import List, Optional, Sequence

from ..config import get_settings
from ..exceptions import MediaProcessingError
from ..logging_config import LoggerMixin
from ..models import AudioFormat


class MediaRunner(LoggerMixin):
    """Run ffmpeg stages and probe media files."""

    def __init__(self, settings=None):
        self.settings = settings or get_settings()
        self.ffmpeg = self.settings.ffmpeg_binary
        self.ffprobe = self.settings.ffprobe_binary
        self.ffmpeg_log_level = self.settings.ffmpeg_log_level

    def run(
        self,
        stage: str,
        args: Sequence[str],
        input_bytes: Optional[bytes] = None,
    ) -> subprocess.CompletedProcess:
        """
        Run ffmpeg with the given arguments.

        Args:
            stage: Label used in logs and in the raised error
            args: ffmpeg arguments (inputs, filters, outputs)
            input_bytes: Optional data fed to stdin (for ``-i pipe:0``)

        Returns:
            The completed process; stdout is bytes

        Raises:
            MediaProcessingError: If ffmpeg is missing or exits non-zero
        """
        command: List[str] = [
            self.ffmpeg,
            "-hide_banner",
            "-loglevel", self.ffmpeg_log_level,
            "-y",
            *[str(arg) for arg in args],
        ]
        self.logger.debug("Running ffmpeg", stage=stage, command=" ".join(command))

        result = self._execute(stage, command, input_bytes)
        if result.returncode != 0:
            stderr = result.stderr.decode("utf-8", errors="ignore")
            self.logger.error("ffmpeg stage failed", stage=stage, returncode=result.returncode, stderr=stderr[-2000:])
            raise MediaProcessingError(stage, result.returncode, stderr)
        return result

    def probe_duration(self, path: Path) -> float:
        """Return the container duration in seconds, or 0.0 if unknown."""
        command = [
            self.ffprobe,
            "-v", "error",
            "-show_entries", "format=duration",
            "-of", "default=noprint_wrappers=1:nokey=1",
            str(path),
        ]
        result = self._execute("probe_duration", command)
        if result.returncode != 0:
            raise MediaProcessingError("probe_duration", result.returncode, result.stderr.decode("utf-8", errors="ignore"))

        try:
            return float(result.stdout.decode("utf-8", errors="ignore").strip())
        except ValueError:
            return 0.0

    def probe_audio_format(self, path: Path) -> AudioFormat:
        """Describe the first audio stream of a file."""
        command = [
            self.ffprobe,
            "-v", "error",
            "-select_streams", "a:0",
            "-show_entries", "stream=sample_rate,channels,codec_name,bits_per_sample",
            "-of", "json",
            str(path),
        ]
        result = self._execute("probe_audio_format", command)
        if result.returncode != 0:
            raise MediaProcessingError(
                "probe_audio_format", result.returncode, result.stderr.decode("utf-8", errors="ignore")
            )

        try:
            streams = json.loads(result.stdout.decode("utf-8", errors="ignore")).get("streams", [])
        except json.JSONDecodeError as exc:
            raise MediaProcessingError("probe_audio_format", result.returncode, f"invalid ffprobe output: {exc}") from exc
        if not streams:
            raise MediaProcessingError("probe_audio_format", result.returncode, f"no audio stream in {path}")

        stream = streams[0]
        return AudioFormat(
            sample_rate=int(stream.get("sample_rate", 0)),
            channels=int(stream.get("channels", 0)),
            codec=str(stream.get("codec_name", "")),
            bits_per_sample=int(stream.get("bits_per_sample", 0) or 0),
        )

    def _execute(
        self,
        stage: str,
        command: List[str],
        input_bytes: Optional[bytes] = None,
    ) -> subprocess.CompletedProcess:
        try:
            return subprocess.run(command, input=input_bytes, capture_output=True, check=False)
        except OSError as exc:
            raise MediaProcessingError(stage, None, f"cannot execute {command[0]}: {exc}") from exc
