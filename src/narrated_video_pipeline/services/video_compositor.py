"""Video composition: animated background images muxed with a narration track.

Features:
- Each image is scaled and cropped to an overscanned canvas before zooming,
  so the zoom window never samples outside the source pixels
- Periodic (cosine) zoom driven by a global frame index, continuous across
  image boundaries
- Pan offsets centered and rounded down to even pixels
- Image durations partitioned by whole frames from the measured audio length
- Optional call-to-action overlay limited to an opening and a closing window
- H.264 with a fixed GOP aligned to the frame rate, AAC audio, faststart
"""

import math
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

from ..config import get_settings
from ..exceptions import MediaProcessingError
from ..logging_config import LoggerMixin
from ..models import EffectParams
from ..utils.file_utils import ensure_directory
from .media_runner import MediaRunner


# Extra input length per looped image so trim, not the input, ends each segment
INPUT_PAD_SECONDS = 0.5


def period_frames(effects: EffectParams) -> float:
    """Zoom period expressed in frames."""
    return effects.zoom_period_seconds * effects.fps


def zoom_at(frame: float, effects: EffectParams) -> float:
    """
    Zoom factor at a global frame index.

    Rises from ``zoom_base`` to ``zoom_base + zoom_amplitude`` and back once
    per period, so ``zoom_at(0) == zoom_at(period)``.
    """
    phase = 2 * math.pi * frame / period_frames(effects)
    return effects.zoom_base + effects.zoom_amplitude * (1 - math.cos(phase)) / 2


def pan_offset(zoom: float, canvas_width: int, canvas_height: int) -> Tuple[int, int]:
    """
    Top-left corner of the centered zoom window, rounded down to even pixels.

    Rounding down keeps the window inside the canvas for any zoom >= 1.
    """
    x = 2 * math.floor((canvas_width - canvas_width / zoom) / 4)
    y = 2 * math.floor((canvas_height - canvas_height / zoom) / 4)
    return x, y


def partition_frames(total_seconds: float, fps: int, count: int) -> List[int]:
    """
    Split ``ceil(total_seconds * fps)`` frames across ``count`` images.

    Segment lengths differ by at most one frame and always sum to the total.
    """
    if count < 1:
        raise ValueError("At least one image is required")
    total_frames = max(1, math.ceil(total_seconds * fps))
    return [
        (i + 1) * total_frames // count - i * total_frames // count
        for i in range(count)
    ]


def cta_windows(total_seconds: float, start_seconds: float, end_seconds: float) -> List[Tuple[float, float]]:
    """
    Time windows during which the call-to-action is visible.

    The opening window is capped at the first third of the video and the
    closing window at the last third, so the overlay is never shown for the
    whole duration. Empty windows are dropped.
    """
    windows: List[Tuple[float, float]] = []
    opening = (0.0, min(start_seconds, total_seconds / 3))
    closing = (max(total_seconds - end_seconds, 2 * total_seconds / 3), total_seconds)
    for begin, end in (opening, closing):
        begin, end = round(begin, 3), round(end, 3)
        if end > begin:
            windows.append((begin, end))
    return windows


def _seconds(value: float) -> str:
    return f"{value:.3f}".rstrip("0").rstrip(".")


def _zoom_expression(effects: EffectParams, frame_offset: int) -> str:
    return (
        f"{effects.zoom_base:.6f}+{effects.zoom_amplitude:.6f}"
        f"*(1-cos(2*PI*(on+{frame_offset})/{period_frames(effects):.6f}))/2"
    )


class VideoCompositor(LoggerMixin):
    """Render background images and a finished audio track into an MP4."""

    def __init__(self, settings=None, runner: MediaRunner = None):
        self.settings = settings or get_settings()
        self.runner = runner or MediaRunner(self.settings)

    def compose(
        self,
        images: Sequence[Path],
        audio_path: Path,
        output_path: Path,
        cta_path: Optional[Path] = None,
        effects: Optional[EffectParams] = None,
    ) -> Path:
        """
        Compose the final video.

        Args:
            images: Background images in display order (at least one)
            audio_path: Finished audio track; its length sets the video length
            output_path: Destination MP4
            cta_path: Optional call-to-action image
            effects: Visual parameters (defaults when omitted)

        Returns:
            Path to the rendered MP4

        Raises:
            MediaProcessingError: If the audio has no duration or ffmpeg fails
        """
        if not images:
            raise ValueError("No images provided")
        effects = effects or EffectParams()

        total = self.runner.probe_duration(audio_path)
        if total <= 0:
            raise MediaProcessingError("render_mp4", None, f"audio track has no measurable duration: {audio_path}")

        ensure_directory(Path(output_path).parent)
        args = self.build_arguments(images, audio_path, output_path, total, cta_path, effects)

        self.logger.info(
            "Rendering video",
            images=len(images),
            duration_seconds=round(total, 2),
            cta=cta_path is not None,
            resolution=f"{effects.width}x{effects.height}",
            fps=effects.fps,
        )
        self.runner.run("render_mp4", args)
        self.logger.info("Video rendered", output=str(output_path))
        return Path(output_path)

    def build_arguments(
        self,
        images: Sequence[Path],
        audio_path: Path,
        output_path: Path,
        total_seconds: float,
        cta_path: Optional[Path],
        effects: EffectParams,
    ) -> List[str]:
        """Build the complete ffmpeg argument list for one render."""
        fps = effects.fps
        frames = partition_frames(total_seconds, fps, len(images))

        args: List[str] = []
        for image, count in zip(images, frames):
            args += [
                "-loop", "1",
                "-framerate", str(fps),
                "-t", f"{count / fps + INPUT_PAD_SECONDS:.3f}",
                "-i", str(image),
            ]

        audio_index = len(images)
        args += ["-i", str(audio_path)]

        cta_index = None
        if cta_path is not None:
            cta_index = audio_index + 1
            args += [
                "-loop", "1",
                "-framerate", str(fps),
                "-t", f"{total_seconds + INPUT_PAD_SECONDS:.3f}",
                "-i", str(cta_path),
            ]

        filter_graph = self.build_filter_graph(frames, total_seconds, effects, cta_index)

        keyframes = str(effects.keyframe_interval)
        args += [
            "-filter_complex", filter_graph,
            "-map", "[vout]",
            "-map", f"{audio_index}:a:0",
            "-c:v", "libx264",
            "-preset", effects.preset,
            "-crf", str(effects.crf),
            "-maxrate", effects.video_maxrate,
            "-bufsize", effects.video_bufsize,
            "-g", keyframes,
            "-keyint_min", keyframes,
            "-sc_threshold", "0",
            "-pix_fmt", "yuv420p",
            "-r", str(fps),
            "-c:a", "aac",
            "-b:a", effects.audio_bitrate,
            "-movflags", "+faststart",
            "-shortest",
            str(output_path),
        ]
        return args

    def build_filter_graph(
        self,
        frames: List[int],
        total_seconds: float,
        effects: EffectParams,
        cta_index: Optional[int] = None,
    ) -> str:
        """
        Build the ``-filter_complex`` graph.

        Inputs ``0..N-1`` are the looped images; ``cta_index`` (if any) is the
        looped call-to-action image. The graph ends in ``[vout]``.
        """
        width, height = effects.width, effects.height
        canvas_w, canvas_h = effects.canvas_size
        fps = effects.fps

        parts: List[str] = []
        offset = 0
        for i, count in enumerate(frames):
            parts.append(
                f"[{i}:v]"
                f"scale={canvas_w}:{canvas_h}:force_original_aspect_ratio=increase,"
                f"crop={canvas_w}:{canvas_h},"
                "setsar=1,"
                f"zoompan=z='{_zoom_expression(effects, offset)}':"
                "x='2*floor((iw-iw/zoom)/4)':"
                "y='2*floor((ih-ih/zoom)/4)':"
                f"d=1:s={width}x{height}:fps={fps},"
                f"trim=end_frame={count},"
                "setpts=PTS-STARTPTS,"
                "format=yuv420p"
                f"[v{i}]"
            )
            offset += count

        label = "bg"
        if len(frames) > 1:
            inputs = "".join(f"[v{i}]" for i in range(len(frames)))
            parts.append(f"{inputs}concat=n={len(frames)}:v=1:a=0[bg]")
        else:
            label = "v0"

        if effects.sparkles:
            duration = f"{total_seconds:.3f}"
            parts.append(
                f"nullsrc=s={width}x{height}:d={duration}:r={fps},"
                "noise=alls=40:allf=t+u,"
                "format=gray,"
                "lut=y='if(gt(val,253),255,0)',"
                "boxblur=2:1[mask]"
            )
            parts.append(f"color=c=white:s={width}x{height}:d={duration}:r={fps}[white]")
            parts.append("[white][mask]alphamerge,format=rgba,colorchannelmixer=aa=0.28[sparks]")
            parts.append(f"[{label}][sparks]overlay=shortest=1:format=auto,format=yuv420p[sparkled]")
            label = "sparkled"

        windows = cta_windows(total_seconds, effects.cta_start_seconds, effects.cta_end_seconds)
        if cta_index is not None and windows:
            enable = "+".join(f"between(t,{_seconds(begin)},{_seconds(end)})" for begin, end in windows)
            parts.append(f"[{cta_index}:v]scale='min({effects.cta_max_width},iw)':-2,format=rgba[cta]")
            parts.append(
                f"[{label}][cta]overlay="
                f"x=(W-w)/2:y=H-h-{effects.cta_bottom_margin}:"
                f"enable='{enable}':shortest=1,"
                "format=yuv420p[vout]"
            )
        else:
            parts.append(f"[{label}]null[vout]")

        return ";".join(parts)
