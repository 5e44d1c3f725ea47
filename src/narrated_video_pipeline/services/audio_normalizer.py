"""Audio normalization to the canonical concat format.

Every clip, synthesized or downloaded, is converted to the same sample rate,
channel count and uncompressed codec before concatenation so that the
concat demuxer can join them without re-timing or codec mismatches.
"""

from pathlib import Path

from ..config import get_settings
from ..logging_config import LoggerMixin
from ..models import AudioFormat
from ..utils.file_utils import ensure_directory
from .media_runner import MediaRunner


CANONICAL_CODEC = "pcm_s16le"


class AudioNormalizer(LoggerMixin):
    """Convert any decodable audio file to canonical WAV (48 kHz mono s16le by default)."""

    def __init__(self, settings=None, runner: MediaRunner = None):
        self.settings = settings or get_settings()
        self.runner = runner or MediaRunner(self.settings)
        self.sample_rate = self.settings.canonical_sample_rate
        self.channels = self.settings.canonical_channels

    @property
    def canonical_format(self) -> AudioFormat:
        return AudioFormat(
            sample_rate=self.sample_rate,
            channels=self.channels,
            codec=CANONICAL_CODEC,
            bits_per_sample=16,
        )

    def normalize(self, input_path: Path, output_path: Path, stage: str = "normalize") -> Path:
        """
        Re-encode ``input_path`` into the canonical format at ``output_path``.

        Normalizing an already canonical file yields an equivalent file.

        Raises:
            MediaProcessingError: If the input cannot be decoded
        """
        ensure_directory(Path(output_path).parent)
        self.runner.run(
            stage,
            [
                "-i", str(input_path),
                "-vn",
                "-ar", str(self.sample_rate),
                "-ac", str(self.channels),
                "-c:a", CANONICAL_CODEC,
                str(output_path),
            ],
        )
        self.logger.debug("Audio normalized", input=str(input_path), output=str(output_path))
        return Path(output_path)

    def is_canonical(self, path: Path) -> bool:
        """Check a file's stream parameters against the canonical format."""
        fmt = self.runner.probe_audio_format(path)
        expected = self.canonical_format
        return (
            fmt.sample_rate == expected.sample_rate
            and fmt.channels == expected.channels
            and fmt.codec == expected.codec
        )
