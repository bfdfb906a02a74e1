"""svgclip.frames — batched video frame prefetch for export.

Before rendering an export, every video-backed mask clip's source is
sampled once per output frame it is active in. Source timestamps are
deduplicated per source and requested from a frame extractor in
size-bounded batches; the decoded frames land in a FrameCache keyed by
(source, output frame index), which render_frame() consults before
falling back to seeking.

Extractors:
    HttpFrameExtractor: POSTs {videoPath, timestamps, fps, size} to an
        extraction service; expects {"images": [data URI, ...]} ordered by
        ascending timestamp.
    LocalFrameExtractor: runs the bundled ffmpeg (imageio-ffmpeg) once
        per timestamp.
"""

import logging
import math
import subprocess
import tempfile
import threading
from dataclasses import dataclass, field
from pathlib import Path

import imageio_ffmpeg
import requests
from PIL import Image

from .common import decode_data_uri, fetch_bytes, is_url, open_image, resolve_reference
from .errors import CollaboratorError
from .model import Timeline, source_time

logger = logging.getLogger(__name__)

_FFMPEG = imageio_ffmpeg.get_ffmpeg_exe()

DEFAULT_BATCH_SIZE = 30
DEFAULT_EXTRACT_TIMEOUT = 120.0
# Source timestamps are rounded to this many places before deduplication.
TIMESTAMP_DIGITS = 6


@dataclass
class FrameRequest:
    """Distinct source timestamps one video source must provide."""

    source: str
    timestamps: list[float]
    frame_indices: dict[float, list[int]] = field(default_factory=dict)


def total_frames(duration: float, fps: float) -> int:
    return max(1, math.ceil(duration * fps))


def plan_frame_requests(tracks, fps: float, duration: float) -> list[FrameRequest]:
    """Work out which source timestamps each video source must provide.

    For every output frame i (time i / fps) and every video source, the
    first active clip using that source decides the source timestamp
    ``time - clip.start + clip.media_start``.
    """
    if isinstance(tracks, Timeline):
        tracks = tracks.tracks
    video_clips = [
        clip for track in tracks for clip in track.clips
        if clip.type == "mask" and clip.src and clip.is_video
    ]
    sources = list(dict.fromkeys(clip.src for clip in video_clips))
    count = total_frames(duration, fps)

    requests_ = []
    for src in sources:
        clips = [c for c in video_clips if c.src == src]
        indices: dict[float, list[int]] = {}
        for i in range(count):
            t = i / fps
            active = next((c for c in clips if c.is_active(t)), None)
            if active is None:
                continue
            ts = round(source_time(active, t), TIMESTAMP_DIGITS)
            indices.setdefault(ts, []).append(i)
        if indices:
            requests_.append(FrameRequest(src, sorted(indices), indices))
    return requests_


class FrameCache:
    """Decoded frames keyed by (source, output frame index). Thread-safe."""

    def __init__(self):
        self._frames: dict[tuple[str, int], Image.Image] = {}
        self._lock = threading.Lock()
        self.failed_sources: dict[str, str] = {}

    def put(self, source: str, frame_index: int, image: Image.Image) -> None:
        with self._lock:
            self._frames[(source, frame_index)] = image

    def get(self, source: str, frame_index: int) -> Image.Image | None:
        with self._lock:
            return self._frames.get((source, frame_index))

    def __contains__(self, key) -> bool:
        with self._lock:
            return key in self._frames

    def __len__(self) -> int:
        with self._lock:
            return len(self._frames)


# ── Extractors ─────────────────────────────────────────────────────

class FrameExtractor:
    """Returns one decoded frame per requested timestamp, in order."""

    service = "extract_frames"

    def extract(self, source: str, timestamps: list[float], fps: float,
                size: str | None = None) -> list[Image.Image]:
        raise NotImplementedError


class HttpFrameExtractor(FrameExtractor):
    """Frame extraction through an HTTP service."""

    def __init__(self, url: str, timeout: float = DEFAULT_EXTRACT_TIMEOUT,
                 session: requests.Session | None = None):
        self.url = url
        self.timeout = timeout
        self.session = session or requests.Session()

    def extract(self, source, timestamps, fps, size=None):
        """POST one batch and decode the returned frames.

        Raises:
            CollaboratorError: Transport failure, non-2xx status, or a
                malformed response.
        """
        payload = {"videoPath": source, "timestamps": list(timestamps), "fps": fps}
        if size:
            payload["size"] = size
        try:
            response = self.session.post(self.url, json=payload, timeout=self.timeout)
        except requests.RequestException as exc:
            raise CollaboratorError(self.service, f"request failed: {exc}") from exc
        if not response.ok:
            raise CollaboratorError(self.service, f"HTTP {response.status_code}: {_error_text(response)}")
        try:
            images = response.json()["images"]
        except (ValueError, KeyError, TypeError) as exc:
            raise CollaboratorError(self.service, f"malformed response: {exc}") from exc
        if not isinstance(images, list) or len(images) != len(timestamps):
            got = len(images) if isinstance(images, list) else type(images).__name__
            raise CollaboratorError(
                self.service, f"expected {len(timestamps)} frames, got {got}"
            )
        try:
            return [open_image(decode_data_uri(uri)[1]) for uri in images]
        except (ValueError, OSError) as exc:
            raise CollaboratorError(self.service, f"undecodable frame: {exc}") from exc


def _error_text(response) -> str:
    try:
        data = response.json()
    except ValueError:
        return response.text.strip() or response.reason or "unknown error"
    if isinstance(data, dict) and data.get("error"):
        return str(data["error"])
    return response.text.strip() or "unknown error"


class LocalFrameExtractor(FrameExtractor):
    """Frame extraction with the bundled ffmpeg binary."""

    def __init__(self, base=None, timeout: float = DEFAULT_EXTRACT_TIMEOUT):
        self.base = base
        self.timeout = timeout

    def extract(self, source, timestamps, fps, size=None):
        """Seek and grab one frame per timestamp.

        Raises:
            CollaboratorError: If ffmpeg fails or the source is unreadable.
        """
        with tempfile.TemporaryDirectory(prefix="svgclip-frames-") as tmp:
            tmp_dir = Path(tmp)
            try:
                video = self._local_source(source, tmp_dir)
            except (OSError, ValueError, requests.RequestException) as exc:
                raise CollaboratorError(self.service, f"cannot read '{source[:80]}': {exc}") from exc

            frames = []
            for i, ts in enumerate(timestamps):
                out = tmp_dir / f"frame-{i:05d}.png"
                cmd = [_FFMPEG, "-y", "-ss", f"{ts:.3f}", "-i", video, "-frames:v", "1"]
                if size:
                    cmd += ["-s", size]
                cmd.append(str(out))
                try:
                    subprocess.run(cmd, check=True, capture_output=True, timeout=self.timeout)
                except subprocess.CalledProcessError as exc:
                    stderr = exc.stderr.decode("utf-8", "replace").strip().splitlines()
                    raise CollaboratorError(
                        self.service, f"ffmpeg failed at {ts:.3f}s: {stderr[-1] if stderr else exc}"
                    ) from exc
                except subprocess.TimeoutExpired as exc:
                    raise CollaboratorError(self.service, f"ffmpeg timed out at {ts:.3f}s") from exc
                if not out.exists():
                    raise CollaboratorError(self.service, f"no frame at {ts:.3f}s (past the end?)")
                frames.append(open_image(out.read_bytes()))
            return frames

    def _local_source(self, source: str, tmp_dir: Path) -> str:
        if source.startswith("data:") or is_url(source):
            path = tmp_dir / "source"
            path.write_bytes(fetch_bytes(source))
            return str(path)
        path = Path(resolve_reference(source, self.base))
        if not path.exists():
            raise FileNotFoundError(f"Video not found: {path}")
        return str(path)


# ── Prefetch ───────────────────────────────────────────────────────

def prefetch_video_frames(tracks, fps: float, duration: float, extractor: FrameExtractor,
                          batch_size: int = DEFAULT_BATCH_SIZE, size: str | None = None,
                          cancel=None) -> FrameCache:
    """Fill a FrameCache for every video source used by ``tracks``.

    A failing source is recorded in ``cache.failed_sources`` and its
    remaining batches are skipped; other sources continue. ``cancel`` (a
    CancelToken) is checked between batches.
    """
    if batch_size < 1:
        raise ValueError(f"batch_size must be >= 1, got {batch_size}")
    cache = FrameCache()
    for request in plan_frame_requests(tracks, fps, duration):
        batches = math.ceil(len(request.timestamps) / batch_size)
        for b in range(batches):
            if cancel is not None:
                cancel.raise_if_cancelled()
            batch = request.timestamps[b * batch_size:(b + 1) * batch_size]
            logger.info("Extracting %s: batch %d/%d (%d frames)",
                        request.source[:60], b + 1, batches, len(batch))
            try:
                images = extractor.extract(request.source, batch, fps, size)
            except CollaboratorError as exc:
                logger.warning("Frame prefetch failed for '%s': %s", request.source[:60], exc)
                cache.failed_sources[request.source] = str(exc)
                break
            for ts, image in zip(batch, images):
                for index in request.frame_indices[ts]:
                    cache.put(request.source, index, image)
    return cache
