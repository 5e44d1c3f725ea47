"""
Core data models for the narrated video pipeline.
"""

import json
import math
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import List, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel

from .exceptions import PlanValidationError


class JobStatusEnum(str, Enum):
    """Externally observable job states."""
    PROCESSING = "processing"
    DONE = "done"
    ERROR = "error"


class ClipKind(str, Enum):
    """How a clip's raw audio is produced."""
    SPEECH = "speech"
    REMOTE = "remote"


class EffectParams(BaseModel):
    """Visual and audio overrides a plan may carry under ``effects``.

    Field names are accepted in snake_case or camelCase.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    width: int = Field(default=1920, ge=16, le=7680)
    height: int = Field(default=1080, ge=16, le=4320)
    fps: int = Field(default=30, ge=1, le=120)
    overscan: float = Field(default=1.12, gt=1.0, le=1.5)

    zoom_base: float = Field(default=1.0, ge=1.0, le=2.0)
    zoom_amplitude: float = Field(default=0.06, ge=0.0, le=1.0)
    zoom_period_seconds: float = Field(default=12.0, gt=0.0)

    crf: int = Field(default=22, ge=0, le=51)
    preset: str = Field(default="veryfast")
    video_maxrate: str = Field(default="5M")
    video_bufsize: str = Field(default="10M")
    keyframe_seconds: int = Field(default=2, ge=1, le=10)
    audio_bitrate: str = Field(default="160k")

    cta_max_width: int = Field(default=720, ge=16)
    cta_bottom_margin: int = Field(default=60, ge=0)
    cta_start_seconds: float = Field(default=8.0, ge=0.0)
    cta_end_seconds: float = Field(default=12.0, ge=0.0)

    sparkles: bool = False
    target_duration_seconds: Optional[float] = Field(default=None, gt=0.0)

    @field_validator("width", "height")
    @classmethod
    def _even_dimension(cls, value: int) -> int:
        if value % 2:
            raise ValueError("dimensions must be even for yuv420p output")
        return value

    @field_validator("preset")
    @classmethod
    def _known_preset(cls, value: str) -> str:
        presets = ["ultrafast", "superfast", "veryfast", "faster", "fast", "medium", "slow", "slower", "veryslow"]
        if value not in presets:
            raise ValueError(f"Invalid preset: {value}")
        return value

    @property
    def zoom_max(self) -> float:
        return self.zoom_base + self.zoom_amplitude

    @property
    def keyframe_interval(self) -> int:
        """GOP length in frames."""
        return self.keyframe_seconds * self.fps

    @property
    def canvas_size(self) -> tuple:
        """Overscanned canvas (even dimensions) the zoom operates on."""
        return (_even_ceil(self.width * self.overscan), _even_ceil(self.height * self.overscan))


def _even_ceil(value: float) -> int:
    rounded = math.ceil(value)
    return rounded + (rounded % 2)


class PlanSegment(BaseModel):
    """One paired unit: external audio followed by its spoken narration."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    external_audio_url: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("externalAudioUrl", "external_audio_url", "arabicAudioUrl"),
    )
    spoken_text: str = Field(
        default="",
        validation_alias=AliasChoices("spokenText", "spoken_text", "trText"),
    )
    order_key: Optional[Union[int, str]] = Field(
        default=None,
        validation_alias=AliasChoices("orderKey", "order_key", "ayah"),
    )

    @field_validator("spoken_text", mode="before")
    @classmethod
    def _none_text(cls, value):
        return "" if value is None else value

    @property
    def is_complete(self) -> bool:
        """A segment without external audio is skipped as a whole."""
        return bool(self.external_audio_url and self.external_audio_url.strip())


class RenderPlan(BaseModel):
    """Structured description of the narration a job renders."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    intro_text: Optional[str] = Field(default=None, validation_alias=AliasChoices("introText", "intro_text"))
    announcement_text: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("surahAnnouncementText", "announcementText", "announcement_text"),
    )
    outro_text: Optional[str] = Field(default=None, validation_alias=AliasChoices("outroText", "outro_text"))
    use_fixed_clip: bool = Field(
        default=False,
        validation_alias=AliasChoices("useFixedClip", "use_fixed_clip", "useBismillahClip"),
    )
    fixed_clip_url: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("fixedClipUrl", "fixed_clip_url", "bismillahAudioUrl"),
    )
    segments: List[PlanSegment] = Field(default_factory=list)
    effects: EffectParams = Field(default_factory=EffectParams)

    @field_validator("segments", mode="before")
    @classmethod
    def _drop_null_segments(cls, value):
        if value is None:
            return []
        if isinstance(value, list):
            return [item for item in value if item is not None]
        return value

    @field_validator("effects", mode="before")
    @classmethod
    def _default_effects(cls, value):
        return {} if value is None else value

    @classmethod
    def from_json(cls, raw: Union[str, bytes]) -> "RenderPlan":
        """Parse the string-encoded plan field of a submission."""
        try:
            data = json.loads(raw)
        except (TypeError, ValueError) as exc:
            raise PlanValidationError("Plan JSON parse error") from exc
        if not isinstance(data, dict):
            raise PlanValidationError("Plan must be a JSON object")
        try:
            return cls.model_validate(data)
        except ValidationError as exc:
            raise PlanValidationError(f"Invalid plan: {exc.errors()[0]['msg']}") from exc


@dataclass
class ClipSpec:
    """A single audio clip in assembly order."""
    index: int
    kind: ClipKind
    name: str
    stage: str
    text: Optional[str] = None
    url: Optional[str] = None

    @property
    def prefix(self) -> str:
        """Zero-padded sequence prefix that fixes concatenation order."""
        return f"{self.index:03d}_{self.name}"


@dataclass
class Manifest:
    """Ordered normalized clips plus the concat list file that lists them."""
    path: Path
    clips: List[Path] = field(default_factory=list)


@dataclass
class AudioFormat:
    """Stream parameters reported by ffprobe."""
    sample_rate: int
    channels: int
    codec: str
    bits_per_sample: int = 0


@dataclass
class JobRequest:
    """A validated submission: background images, optional CTA and a plan."""
    background_images: List[bytes]
    plan: RenderPlan
    cta_image: Optional[bytes] = None
