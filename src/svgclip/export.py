"""svgclip.export — still, video and GIF export of a project.

Video export is two-phase:

  1. Prefetch: every video source's needed frames are pulled in batches
     through a FrameExtractor into a FrameCache.
  2. Render: render_frame() runs once per output frame on a bounded
     thread pool, writing numbered PNGs to a temporary directory, which a
     VideoEncoder turns into the output file.

The project is deep-copied once at export start, so later edits to the
caller's objects are never observed. Cancellation (CancelToken) is checked
between batches and frames. Temporary files are removed on every path.
"""

import copy
import json
import logging
import subprocess
import tempfile
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path

import imageio_ffmpeg
import requests
from PIL import Image

from .common import is_url, resolve_reference, to_data_uri
from .errors import CollaboratorError, ExportCancelled
from .fonts import FontRegistry
from .frames import FrameCache, FrameExtractor, prefetch_video_frames, total_frames
from .model import Project
from .render import DEFAULT_BACKGROUND, MediaLibrary, render_frame

logger = logging.getLogger(__name__)

_FFMPEG = imageio_ffmpeg.get_ffmpeg_exe()

DEFAULT_FPS = 30
DEFAULT_GIF_FPS = 10
DEFAULT_WORKERS = 4
GIF_MAX_DIMENSION = 640
DEFAULT_ENCODE_TIMEOUT = 300.0
FRAME_PATTERN = "frame-%05d.png"


class CancelToken:
    """Cooperative cancellation flag shared with a running export."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise ExportCancelled("Export cancelled")


@dataclass
class ExportResult:
    path: Path
    frame_count: int
    width: int
    height: int
    skipped_clips: dict[int, list[str]] = field(default_factory=dict)
    failed_sources: dict[str, str] = field(default_factory=dict)


def output_size(project: Project, width: int | None = None) -> tuple[int, int]:
    """Even (width, height) keeping the project's aspect ratio.

    libx264 with yuv420p needs even dimensions.
    """
    width = width or project.canvas_width
    width = max(2, int(round(width / 2)) * 2)
    height = max(2, int(round(width / project.aspect_ratio / 2)) * 2)
    return width, height


def audio_tracks(project: Project) -> list[dict]:
    """Audio clips in the encoder's audioTracks shape."""
    return [
        {
            "src": clip.src,
            "start": clip.start,
            "duration": clip.duration,
            "mediaStart": clip.media_start,
            "volume": clip.volume,
        }
        for clip in project.timeline.clips()
        if clip.type == "audio" and clip.src
    ]


# ── Stills ─────────────────────────────────────────────────────────

def render_still(project: Project, time: float, size: tuple[int, int], *,
                 frame_index: int | None = None, frame_cache: FrameCache | None = None,
                 media: MediaLibrary | None = None,
                 fonts: FontRegistry | None = None,
                 background=DEFAULT_BACKGROUND) -> tuple[Image.Image, list[str]]:
    surface = Image.new("RGBA", size, (0, 0, 0, 255))
    skipped = render_frame(
        surface, time, (project.canvas_width, project.canvas_height),
        project.timeline, frame_index, frame_cache, media=media, fonts=fonts,
        background=background,
    )
    return surface, skipped


def export_image(project: Project, output: str | Path, time: float = 0.0, *,
                 width: int | None = None, fonts: FontRegistry | None = None,
                 background=DEFAULT_BACKGROUND,
                 base=None) -> ExportResult:
    """Render the frame at ``time`` to a PNG (or JPEG, by suffix)."""
    project = copy.deepcopy(project)
    output = Path(output)
    output.parent.mkdir(parents=True, exist_ok=True)
    size = output_size(project, width)
    with MediaLibrary(fonts, base) as media:
        image, skipped = render_still(project, time, size, media=media, fonts=media.fonts,
                                      background=background)
    if output.suffix.lower() in (".jpg", ".jpeg"):
        image = image.convert("RGB")
    image.save(output)
    return ExportResult(output, 1, size[0], size[1], {0: skipped} if skipped else {})


# ── Frame sequences ────────────────────────────────────────────────

def render_frames(project: Project, fps: float, size: tuple[int, int], frame_dir: Path, *,
                  workers: int = DEFAULT_WORKERS, frame_cache: FrameCache | None = None,
                  media: MediaLibrary | None = None, fonts: FontRegistry | None = None,
                  background=DEFAULT_BACKGROUND,
                  cancel: CancelToken | None = None, progress=None) -> tuple[list[Path], dict]:
    """Render every output frame to ``frame_dir`` as numbered PNGs.

    Returns:
        (frame paths in order, {frame index: skipped clip ids}).

    Raises:
        ExportCancelled: If ``cancel`` fires before all frames are done.
    """
    count = total_frames(project.total_duration, fps)
    cancel = cancel or CancelToken()
    skipped: dict[int, list[str]] = {}
    done = 0
    lock = threading.Lock()

    def _render(i: int) -> Path:
        nonlocal done
        cancel.raise_if_cancelled()
        image, failed = render_still(project, i / fps, size, frame_index=i,
                                     frame_cache=frame_cache, media=media, fonts=fonts,
                                     background=background)
        path = frame_dir / (FRAME_PATTERN % i)
        image.convert("RGB").save(path)
        with lock:
            if failed:
                skipped[i] = failed
            done += 1
            if progress is not None:
                progress(done, count)
        return path

    pool = ThreadPoolExecutor(max_workers=max(1, workers))
    try:
        futures = [pool.submit(_render, i) for i in range(count)]
        paths = [f.result() for f in futures]
    finally:
        pool.shutdown(wait=True, cancel_futures=True)
    return paths, skipped


# ── Encoders ───────────────────────────────────────────────────────

class VideoEncoder:
    """Turns a numbered PNG sequence (plus audio) into a video file."""

    service = "render_video"

    def encode(self, frames: list[Path], fps: float, audio: list[dict], output: Path) -> Path:
        raise NotImplementedError


class LocalVideoEncoder(VideoEncoder):
    """H.264/AAC encoding with the bundled ffmpeg binary."""

    def __init__(self, base=None, timeout: float = DEFAULT_ENCODE_TIMEOUT):
        self.base = base
        self.timeout = timeout

    def _audio_inputs(self, audio: list[dict]) -> list[dict]:
        usable = []
        for track in audio:
            src = track.get("src") or ""
            if src.startswith(("blob:", "data:")) or is_url(src):
                logger.warning("Skipping audio track with non-local source: %s", src[:80])
                continue
            path = Path(resolve_reference(src, self.base))
            if not path.exists():
                logger.warning("Skipping audio track, file not found: %s", path)
                continue
            usable.append({**track, "path": str(path)})
        return usable

    def build_command(self, frame_dir: Path, fps: float, audio: list[dict], output: Path) -> list[str]:
        cmd = [_FFMPEG, "-y", "-framerate", f"{fps:g}", "-i", str(frame_dir / FRAME_PATTERN)]
        filters, labels = [], []
        for i, track in enumerate(audio):
            cmd += ["-i", track["path"]]
            delay = int(round(float(track.get("start", 0)) * 1000))
            filters.append(
                f"[{i + 1}:a]atrim=start={float(track.get('mediaStart', 0)):g}"
                f":duration={float(track.get('duration', 1)):g},asetpts=PTS-STARTPTS,"
                f"adelay={delay}|{delay},volume={float(track.get('volume', 1)):g}[a{i}]"
            )
            labels.append(f"[a{i}]")
        if len(labels) > 1:
            filters.append(f"{''.join(labels)}amix=inputs={len(labels)}:duration=longest[outa]")
        elif labels:
            filters[0] = filters[0][: -len("[a0]")] + "[outa]"
        if filters:
            cmd += ["-filter_complex", ";".join(filters), "-map", "0:v", "-map", "[outa]"]
        cmd += ["-c:v", "libx264", "-pix_fmt", "yuv420p", "-crf", "18", "-tune", "stillimage"]
        if labels:
            cmd += ["-c:a", "aac", "-b:a", "192k", "-shortest"]
        cmd.append(str(output))
        return cmd

    def encode(self, frames, fps, audio, output):
        """Encode ``frames`` (all in one directory, FRAME_PATTERN names).

        Raises:
            CollaboratorError: If ffmpeg fails.
        """
        if not frames:
            raise CollaboratorError(self.service, "No frames provided")
        output = Path(output)
        output.parent.mkdir(parents=True, exist_ok=True)
        cmd = self.build_command(frames[0].parent, fps, self._audio_inputs(audio), output)
        logger.debug("ffmpeg: %s", " ".join(cmd))
        try:
            subprocess.run(cmd, check=True, capture_output=True, timeout=self.timeout)
        except subprocess.CalledProcessError as exc:
            lines = exc.stderr.decode("utf-8", "replace").strip().splitlines()
            raise CollaboratorError(self.service, lines[-1] if lines else str(exc)) from exc
        except subprocess.TimeoutExpired as exc:
            raise CollaboratorError(self.service, f"ffmpeg timed out after {self.timeout:g}s") from exc
        return output


class HttpVideoEncoder(VideoEncoder):
    """Encoding through an HTTP service taking a multipart frame upload."""

    def __init__(self, url: str, timeout: float = DEFAULT_ENCODE_TIMEOUT,
                 session: requests.Session | None = None):
        self.url = url
        self.timeout = timeout
        self.session = session or requests.Session()

    def build_form(self, frames: list[Path], fps: float, audio: list[dict]) -> dict[str, str]:
        form = {"fps": f"{fps:g}", "frameCount": str(len(frames))}
        for i, path in enumerate(frames):
            form[f"frame-{i}"] = to_data_uri(path.read_bytes(), "image/png")
        if audio:
            form["audioTracks"] = json.dumps(audio)
        return form

    def encode(self, frames, fps, audio, output):
        """Upload the frames and write the returned media stream.

        Raises:
            CollaboratorError: Transport failure or an error response.
        """
        form = self.build_form(frames, fps, audio)
        # Multipart with no file parts: send each field as a filename-less part.
        files = {key: (None, value) for key, value in form.items()}
        try:
            response = self.session.post(self.url, files=files, timeout=self.timeout)
        except requests.RequestException as exc:
            raise CollaboratorError(self.service, f"request failed: {exc}") from exc
        if not response.ok:
            message = "Failed to render video"
            try:
                message = response.json().get("error") or message
            except (ValueError, AttributeError):
                message = response.text.strip() or message
            raise CollaboratorError(self.service, message)
        output = Path(output)
        output.parent.mkdir(parents=True, exist_ok=True)
        output.write_bytes(response.content)
        return output


# ── Video & GIF ────────────────────────────────────────────────────

def export_video(project: Project, output: str | Path, *, fps: float = DEFAULT_FPS,
                 width: int | None = None, workers: int = DEFAULT_WORKERS,
                 extractor: FrameExtractor | None = None,
                 encoder: VideoEncoder | None = None,
                 batch_size: int = 30, fonts: FontRegistry | None = None, base=None,
                 background=DEFAULT_BACKGROUND,
                 cancel: CancelToken | None = None, progress=None) -> ExportResult:
    """Render the whole timeline and encode it.

    Args:
        project: Project to export; deep-copied before any work starts.
        output: Destination video path.
        fps: Output frame rate.
        width: Output width (height follows the aspect ratio); defaults to
            the canvas width.
        workers: Frame render threads.
        extractor: Frame prefetch collaborator; None seeks sources directly.
        encoder: Encoding collaborator; defaults to LocalVideoEncoder.
        batch_size: Timestamps per extraction request.
        cancel: Token checked between batches and frames.
        progress: Optional callable(done, total) per rendered frame.

    Raises:
        CollaboratorError: If the encoder fails.
        ExportCancelled: If ``cancel`` fires.
    """
    if fps <= 0:
        raise ValueError(f"fps must be > 0, got {fps}")
    project = copy.deepcopy(project)
    cancel = cancel or CancelToken()
    encoder = encoder or LocalVideoEncoder(base)
    size = output_size(project, width)
    output = Path(output)

    with tempfile.TemporaryDirectory(prefix="svgclip-export-") as tmp, \
            MediaLibrary(fonts, base) as media:
        cache = FrameCache()
        if extractor is not None:
            cache = prefetch_video_frames(
                project.timeline, fps, project.total_duration, extractor,
                batch_size=batch_size, cancel=cancel,
            )
        cancel.raise_if_cancelled()
        frames, skipped = render_frames(
            project, fps, size, Path(tmp), workers=workers, frame_cache=cache,
            media=media, fonts=media.fonts, background=background,
            cancel=cancel, progress=progress,
        )
        cancel.raise_if_cancelled()
        logger.info("Encoding %d frames at %g fps -> %s", len(frames), fps, output)
        encoder.encode(frames, fps, audio_tracks(project), output)

    return ExportResult(output, len(frames), size[0], size[1], skipped, dict(cache.failed_sources))


def gif_size(size: tuple[int, int], max_dimension: int = GIF_MAX_DIMENSION) -> tuple[int, int]:
    w, h = size
    scale = min(1.0, max_dimension / max(w, h))
    return max(1, int(round(w * scale))), max(1, int(round(h * scale)))


def export_gif(project: Project, output: str | Path, *, fps: float = DEFAULT_GIF_FPS,
               max_dimension: int = GIF_MAX_DIMENSION, workers: int = DEFAULT_WORKERS,
               extractor: FrameExtractor | None = None, batch_size: int = 30,
               fonts: FontRegistry | None = None, base=None,
               background=DEFAULT_BACKGROUND,
               cancel: CancelToken | None = None, progress=None) -> ExportResult:
    """Render the timeline to a looping GIF no larger than ``max_dimension``."""
    if fps <= 0:
        raise ValueError(f"fps must be > 0, got {fps}")
    project = copy.deepcopy(project)
    cancel = cancel or CancelToken()
    size = gif_size(output_size(project), max_dimension)
    output = Path(output)
    output.parent.mkdir(parents=True, exist_ok=True)

    with tempfile.TemporaryDirectory(prefix="svgclip-gif-") as tmp, \
            MediaLibrary(fonts, base) as media:
        cache = FrameCache()
        if extractor is not None:
            cache = prefetch_video_frames(
                project.timeline, fps, project.total_duration, extractor,
                batch_size=batch_size, cancel=cancel,
            )
        frames, skipped = render_frames(
            project, fps, size, Path(tmp), workers=workers, frame_cache=cache,
            media=media, fonts=media.fonts, background=background,
            cancel=cancel, progress=progress,
        )
        cancel.raise_if_cancelled()
        images = []
        for path in frames:
            with Image.open(path) as im:
                images.append(im.convert("RGB").quantize(colors=256))
        images[0].save(
            output, save_all=True, append_images=images[1:],
            duration=int(round(1000 / fps)), loop=0,
        )

    return ExportResult(output, len(frames), size[0], size[1], skipped, dict(cache.failed_sources))
