"""
Configuration management for the narrated video pipeline.
"""

import tempfile
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Load environment variables from .env file
load_dotenv()


class Settings(BaseSettings):
    """Application settings with environment variable support."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Paths
    work_root: Path = Field(
        default_factory=lambda: Path(tempfile.gettempdir()) / "narrated_video_pipeline",
        description="Parent directory of per-job working directories",
    )
    logs_dir: Path = Field(default_factory=lambda: Path("logs"))
    assets_dir: Path = Field(default_factory=lambda: Path("assets"))

    # Job lifecycle
    max_concurrent_jobs: int = Field(default=2, ge=1, le=20)
    job_ttl_seconds: int = Field(default=2 * 60 * 60, ge=60)
    sweep_interval_seconds: float = Field(default=60.0, gt=0)
    job_timeout_seconds: int = Field(default=45 * 60, ge=60, description="Soft timeout checked on status reads")
    max_upload_bytes: int = Field(default=25 * 1024 * 1024)
    min_output_seconds: float = Field(default=1.0, ge=0)
    verify_duration_ratio: float = Field(default=0.9, ge=0, le=1)

    # Speech synthesis
    tts_backend: str = Field(default="google", description="google, edge or espeak")
    gcp_tts_key_b64: Optional[str] = Field(default=None, description="Base64 encoded service-account JSON")
    gcp_tts_voice: str = Field(default="tr-TR-Wavenet-E")
    gcp_tts_language_code: str = Field(default="tr-TR")
    tts_speaking_rate: float = Field(default=0.92, gt=0)
    tts_pitch: float = Field(default=0.0)
    tts_sample_rate: int = Field(default=24000)
    tts_max_chunk_bytes: int = Field(default=4500, ge=100)
    tts_chunk_gap_seconds: float = Field(default=0.15, ge=0)
    edge_tts_voice: str = Field(default="tr-TR-EmelNeural")
    espeak_binary: str = Field(default="espeak-ng")
    espeak_voice: str = Field(default="tr")

    # Rate limit backoff
    rate_limit_max_attempts: int = Field(default=6, ge=1)
    rate_limit_base_delay: float = Field(default=0.8, ge=0)
    rate_limit_max_delay: float = Field(default=15.0, ge=0)

    # Remote audio
    fetch_timeout_seconds: int = Field(default=60)
    fetch_error_body_chars: int = Field(default=300)

    # Media tools
    ffmpeg_binary: str = Field(default="ffmpeg")
    ffprobe_binary: str = Field(default="ffprobe")
    ffmpeg_log_level: str = Field(default="error")
    canonical_sample_rate: int = Field(default=48000, description="Audio sample rate in Hz")
    canonical_channels: int = Field(default=1)
    silence_threshold_db: float = Field(default=-45.0)
    silence_min_signal_seconds: float = Field(default=0.05, ge=0)
    silence_keep_seconds: float = Field(default=0.25, ge=0)
    audio_bitrate: str = Field(default="192k")

    # Call-to-action fallbacks
    cta_image_path: Optional[Path] = Field(default=None, description="Defaults to <assets_dir>/cta.png")
    cta_image_url: Optional[str] = Field(default=None)

    # HTTP server
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8080)

    # Logging settings
    log_level: str = Field(default="INFO", description="Logging level")
    log_format: str = Field(default="json", description="Log format: json or text")


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get the global settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
