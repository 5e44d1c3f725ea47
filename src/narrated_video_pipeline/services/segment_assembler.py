"""Segment assembly: expand a render plan into ordered, normalized clips.

Features:
- Deterministic clip order: intro, announcement, fixed clip, paired
  segments (external audio first, narration second), outro
- Incomplete segments (no external audio URL) are skipped as a whole
- Each clip gets a zero-padded sequence prefix; the concat manifest written
  in that order is the only ordering contract for concatenation
"""

from pathlib import Path
from typing import Callable, List, Optional

from ..config import get_settings
from ..exceptions import PipelineError
from ..logging_config import LoggerMixin
from ..models import ClipKind, ClipSpec, Manifest, RenderPlan
from ..utils.file_utils import concat_list_entry, ensure_directory, safe_filename
from .audio_fetcher import RemoteAudioFetcher
from .audio_normalizer import AudioNormalizer
from .tts import SpeechSynthesizer


StageCallback = Callable[[str], None]


def build_clip_plan(plan: RenderPlan) -> List[ClipSpec]:
    """
    Expand a plan into the flat, ordered list of clips to produce.

    Optional parts whose content is absent are left out. Segment numbers in
    names and stages are 1-based plan positions, so a skipped segment leaves
    a gap rather than renumbering the ones after it.
    """
    clips: List[ClipSpec] = []

    def add(kind: ClipKind, name: str, stage: str, text: Optional[str] = None, url: Optional[str] = None):
        clips.append(ClipSpec(index=len(clips), kind=kind, name=name, stage=stage, text=text, url=url))

    if plan.intro_text:
        add(ClipKind.SPEECH, "intro", "tts_intro", text=plan.intro_text)
    if plan.announcement_text:
        add(ClipKind.SPEECH, "announce", "tts_announce", text=plan.announcement_text)
    if plan.use_fixed_clip and plan.fixed_clip_url and plan.fixed_clip_url.strip():
        add(ClipKind.REMOTE, "fixed", "fixed_clip", url=plan.fixed_clip_url.strip())

    for position, segment in enumerate(plan.segments, start=1):
        if not segment.is_complete:
            continue
        label = f"seg{position}"
        if segment.order_key is not None and str(segment.order_key).strip():
            label = f"{label}_{safe_filename(str(segment.order_key), max_length=24)}"
        add(ClipKind.REMOTE, f"{label}_ext", f"seg_{position}_ext", url=segment.external_audio_url.strip())
        add(ClipKind.SPEECH, f"{label}_tts", f"seg_{position}_tts", text=segment.spoken_text)

    if plan.outro_text:
        add(ClipKind.SPEECH, "outro", "tts_outro", text=plan.outro_text)

    return clips


class SegmentAssembler(LoggerMixin):
    """Produce one normalized clip per ClipSpec and write the concat manifest."""

    def __init__(
        self,
        synthesizer: SpeechSynthesizer,
        fetcher: RemoteAudioFetcher,
        normalizer: AudioNormalizer,
        settings=None,
    ):
        self.settings = settings or get_settings()
        self.synthesizer = synthesizer
        self.fetcher = fetcher
        self.normalizer = normalizer

    def assemble(
        self,
        plan: RenderPlan,
        clips_dir: Path,
        manifest_path: Path,
        on_stage: Optional[StageCallback] = None,
    ) -> Manifest:
        """
        Synthesize/fetch and normalize every clip of ``plan`` in order.

        Args:
            plan: Validated render plan
            clips_dir: Directory receiving raw and normalized clip files
            manifest_path: Concat list to write
            on_stage: Called with each clip's stage label before it starts

        Returns:
            Manifest listing the normalized clips in concatenation order

        Raises:
            PipelineError: If the plan yields no clips at all, or any
                synthesis, fetch or normalization error from a clip
        """
        specs = build_clip_plan(plan)
        if not specs:
            raise PipelineError("Plan produced no audio clips")

        clips_dir = ensure_directory(clips_dir)
        self.logger.info("Assembling clips", clips=len(specs), clips_dir=str(clips_dir))

        normalized: List[Path] = []
        for spec in specs:
            if on_stage:
                on_stage(spec.stage)
            normalized.append(self._produce(spec, clips_dir))

        manifest = self.write_manifest(normalized, manifest_path)
        self.logger.info("Manifest written", manifest=str(manifest.path), clips=len(manifest.clips))
        return manifest

    def _produce(self, spec: ClipSpec, clips_dir: Path) -> Path:
        if spec.kind == ClipKind.SPEECH:
            raw_path = clips_dir / f"{spec.prefix}_raw.wav"
            self.synthesizer.synthesize(spec.text, raw_path)
        else:
            raw_path = clips_dir / f"{spec.prefix}_raw.audio"
            self.fetcher.fetch(spec.url, raw_path)

        output_path = clips_dir / f"{spec.prefix}.wav"
        self.normalizer.normalize(raw_path, output_path, stage=f"normalize_{spec.name}")
        self.logger.debug("Clip ready", index=spec.index, name=spec.name, path=str(output_path))
        return output_path

    @staticmethod
    def write_manifest(clips: List[Path], manifest_path: Path) -> Manifest:
        """Write the newline-delimited concat list in the given order."""
        manifest_path = Path(manifest_path)
        ensure_directory(manifest_path.parent)
        lines = [concat_list_entry(path) for path in clips]
        manifest_path.write_text("\n".join(lines) + "\n", encoding="utf-8")
        return Manifest(path=manifest_path, clips=list(clips))
