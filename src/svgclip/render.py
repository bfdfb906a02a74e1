"""svgclip.render — deterministic frame compositing.

render_frame() draws every clip active at a project time onto a Pillow
RGBA surface, back track first so track 0 ends up on top. Each clip is
rendered into its own box-sized layer:

    content (mask media / icon SVG / shape / text)
      -> crop zoom -> flip -> region mask (shapes or crop window)
      -> filter -> opacity -> rotation about the box centre
      -> composited onto the surface

A failure while drawing one clip is logged and that clip is skipped; the
frame always completes.
"""

import logging
import math
import tempfile
import threading
from pathlib import Path
from urllib.parse import urlparse

import requests
from PIL import Image, ImageChops, ImageDraw, ImageEnhance, ImageFilter

from .common import (
    decode_data_uri,
    fetch_bytes,
    guess_mime,
    is_url,
    load_clip,
    open_image,
    parse_color,
    resolve_reference,
)
from .errors import DrawError
from .fonts import FontRegistry, line_height, synthetic_bold_width
from .geometry import IDENTITY, Matrix, flatten_path
from .model import Clip, Timeline, active_clips, source_time
from .shapes import PRIMITIVE_SHAPES, STROKED_PRIMITIVES, ellipse_path, primitive_path, rect_path
from .vector import fill_coverage, render_svg, stroke_coverage

logger = logging.getLogger(__name__)


DEFAULT_BACKGROUND = (0, 0, 0)
DEFAULT_TEXT_SIZE = 120
DEFAULT_TEXT = "Text"
DEFAULT_FILL = "white"
ARROW_LINE_WIDTH = 5


# ── Geometry helpers ───────────────────────────────────────────────

def mask_path_matrix(clip: Clip, width: float | None = None,
                     height: float | None = None) -> Matrix:
    """Map a clip's viewBox coordinates onto its box.

    scale(width / viewBox width, height / viewBox height) after
    translate(-viewBox x, -viewBox y). ``width``/``height`` default to the
    clip's own size.
    """
    vx, vy, vw, vh = clip.view_box_values()
    width = clip.width if width is None else width
    height = clip.height if height is None else height
    return Matrix.scale(width / vw, height / vh) @ Matrix.translate(-vx, -vy)


def _shape_d(shape) -> str:
    if shape.d:
        return shape.d
    if shape.kind in ("circle", "ellipse"):
        return ellipse_path(shape.x, shape.y, shape.width, shape.height)
    return rect_path(shape.x, shape.y, shape.width, shape.height)


def _mapped(d: str, m: Matrix):
    return [([m.apply(x, y) for x, y in pts], closed) for pts, closed in flatten_path(d)]


def shape_region(clip: Clip, size: tuple[int, int]) -> Image.Image | None:
    """Union of the clip's mask shapes as an "L" mask over its box."""
    if not clip.shapes:
        return None
    m = mask_path_matrix(clip, size[0], size[1])
    region = Image.new("L", size, 0)
    for shape in clip.shapes:
        d = _shape_d(shape)
        if d:
            region = ImageChops.lighter(region, fill_coverage(_mapped(d, m), size))
    return region


def crop_region(clip: Clip, size: tuple[int, int]) -> Image.Image | None:
    """Ellipse or rounded-rect mask for the crop window; None for a plain rect."""
    crop = clip.crop
    if crop is None:
        return None
    w, h = size
    if crop.shape == "circle":
        region = Image.new("L", size, 0)
        ImageDraw.Draw(region).ellipse((0, 0, w - 1, h - 1), fill=255)
        return region
    if crop.corner_radius:
        radius = crop.corner_radius / 100 * min(w, h)
        region = Image.new("L", size, 0)
        ImageDraw.Draw(region).rounded_rectangle((0, 0, w - 1, h - 1), radius=radius, fill=255)
        return region
    return None


def crop_zoom(render_content, clip: Clip, size: tuple[int, int]) -> Image.Image:
    """Render content so the crop window's sub-rectangle fills ``size``.

    ``render_content(full_size)`` draws the whole content at the zoomed
    size; the window at (crop.x%, crop.y%) of it is cut out.
    """
    crop = clip.crop
    if crop is None:
        return render_content(size)
    w, h = size
    full = (max(1, math.ceil(w * 100 / crop.width)), max(1, math.ceil(h * 100 / crop.height)))
    content = render_content(full)
    left = int(round(crop.x / 100 * full[0]))
    top = int(round(crop.y / 100 * full[1]))
    return content.crop((left, top, left + w, top + h))


def composite_at(surface: Image.Image, layer: Image.Image, x: int, y: int) -> None:
    """alpha_composite ``layer`` at (x, y), clipping to the surface."""
    left, top = max(0, -x), max(0, -y)
    right = min(layer.width, surface.width - x)
    bottom = min(layer.height, surface.height - y)
    if right <= left or bottom <= top:
        return
    surface.alpha_composite(layer, dest=(x + left, y + top), source=(left, top, right, bottom))


# ── Media ──────────────────────────────────────────────────────────

class MediaLibrary:
    """Loads clip sources for drawing: video seeks and still images.

    Seeking one video is sequential, so each source has its own lock;
    different sources can be read from different threads. Use as a
    context manager, or call close(), to release readers.
    """

    def __init__(self, fonts: FontRegistry | None = None, base=None):
        self.fonts = fonts or FontRegistry()
        self.base = base
        self._videos: dict = {}
        self._stills: dict[str, bytes] = {}
        self._locks: dict[str, threading.Lock] = {}
        self._lock = threading.Lock()
        self._tempdir: tempfile.TemporaryDirectory | None = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False

    def _source_lock(self, src: str) -> threading.Lock:
        with self._lock:
            return self._locks.setdefault(src, threading.Lock())

    def _video_path(self, src: str) -> str:
        if not src.startswith("data:") and not is_url(src):
            return resolve_reference(src, self.base)
        # moviepy reads files, so inline and remote video is spilled to disk once.
        if src.startswith("data:"):
            mime, data = decode_data_uri(src)
            suffix = mime.split("/")[-1]
        else:
            data = fetch_bytes(src)
            suffix = Path(urlparse(src).path).suffix.lstrip(".") or "mp4"
        with self._lock:
            if self._tempdir is None:
                self._tempdir = tempfile.TemporaryDirectory(prefix="svgclip-media-")
            path = Path(self._tempdir.name) / f"video-{len(self._videos)}.{suffix}"
        path.write_bytes(data)
        return str(path)

    def video_frame(self, src: str, t: float) -> Image.Image:
        """Decoded frame of ``src`` at source time ``t`` seconds.

        Raises:
            OSError: If the video cannot be opened or decoded.
        """
        with self._source_lock(src):
            clip = self._videos.get(src)
            if clip is None:
                clip = load_clip(self._video_path(src))
                self._videos[src] = clip
            fps = clip.fps or 30
            t = max(0.0, min(t, clip.duration - 1.0 / fps))
            frame = clip.get_frame(t)
        return Image.fromarray(frame).convert("RGBA")

    def still(self, src: str, size: tuple[int, int]) -> Image.Image:
        """Image or SVG source rendered to ``size``."""
        with self._source_lock(src):
            data = self._stills.get(src)
            if data is None:
                data = fetch_bytes(src, self.base)
                self._stills[src] = data
        if guess_mime(src, data) == "image/svg+xml":
            return render_svg(data, size[0], size[1], fonts=self.fonts, base=self.base)
        return open_image(data).resize(size, Image.LANCZOS)

    def close(self) -> None:
        with self._lock:
            videos, self._videos = self._videos, {}
            tempdir, self._tempdir = self._tempdir, None
        for clip in videos.values():
            clip.close()
        if tempdir is not None:
            tempdir.cleanup()


# ── Per-type drawing ───────────────────────────────────────────────

def draw_mask(clip: Clip, size, time: float, media: MediaLibrary,
              frame_index=None, frame_cache=None) -> Image.Image:
    """Media content of a mask clip at ``size``.

    Video frames come from the prefetch cache, then a seek through
    ``media``; if neither yields a frame the source is tried as a still
    image.

    Raises:
        DrawError: If no source resolves.
    """
    if not clip.src:
        raise DrawError(f"Clip '{clip.id}' has no source")
    frame = None
    if clip.is_video:
        if frame_index is not None and frame_cache is not None:
            frame = frame_cache.get(clip.src, frame_index)
        if frame is None:
            try:
                frame = media.video_frame(clip.src, source_time(clip, time))
            except (OSError, ValueError, requests.RequestException) as exc:
                logger.warning("Clip '%s': video seek failed: %s", clip.id, exc)
    if frame is not None:
        return frame.convert("RGBA").resize(size, Image.LANCZOS)
    try:
        return media.still(clip.src, size)
    except (OSError, ValueError, requests.RequestException) as exc:
        raise DrawError(f"Clip '{clip.id}': no drawable source: {exc}") from exc


def draw_icon(clip: Clip, size, media: MediaLibrary) -> Image.Image:
    if not clip.src:
        raise DrawError(f"Clip '{clip.id}' has no source")
    data = clip.src if clip.src.startswith("data:") else fetch_bytes(clip.src, media.base)
    return render_svg(data, size[0], size[1], color=clip.color,
                      overrides=clip.overrides, fonts=media.fonts, base=media.base)


def draw_shape(clip: Clip, size, media: MediaLibrary) -> Image.Image:
    """Primitive, custom-path or sourced shape content at ``size``."""
    w, h = size
    if not clip.custom_path and clip.src not in PRIMITIVE_SHAPES:
        if not clip.src:
            raise DrawError(f"Clip '{clip.id}' has no shape or source")
        try:
            return media.still(clip.src, size)
        except (OSError, ValueError, requests.RequestException) as exc:
            raise DrawError(f"Clip '{clip.id}': cannot load shape source: {exc}") from exc

    color = parse_color(clip.color or DEFAULT_FILL, (255, 255, 255, 255))
    layer = Image.new("RGBA", size, (0, 0, 0, 0))
    if color is None:
        return layer
    if clip.custom_path:
        m = mask_path_matrix(clip, w, h)
        mask = fill_coverage(_mapped(clip.custom_path, m), size)
    elif clip.src in STROKED_PRIMITIVES:
        _, _, vw, vh = clip.view_box_values()
        width = ARROW_LINE_WIDTH * math.sqrt((w / vw) * (h / vh))
        mask = stroke_coverage(_mapped(primitive_path(clip.src, w, h), IDENTITY), size, width)
    else:
        d = primitive_path(clip.src, w, h, clip.sides)
        mask = fill_coverage(_mapped(d, IDENTITY), size)
    solid = Image.new("RGBA", size, color[:3] + (255,))
    solid.putalpha(mask.point(lambda v: v * color[3] // 255))
    layer.alpha_composite(solid)
    return layer


def draw_text(clip: Clip, size, fonts: FontRegistry | None = None,
              scale: float = 1.0) -> Image.Image:
    """Bold text lines centred in the box, one font line-height apart."""
    fonts = fonts or FontRegistry()
    font_size = (clip.font_size or DEFAULT_TEXT_SIZE) * scale
    font, synthetic = fonts.load(clip.font_family, font_size, bold=True)
    stroke = synthetic_bold_width(font_size) if synthetic else 0
    color = parse_color(clip.color or DEFAULT_FILL, (255, 255, 255, 255))
    layer = Image.new("RGBA", size, (0, 0, 0, 0))
    if color is None:
        return layer
    draw = ImageDraw.Draw(layer)
    lines = (clip.text if clip.text is not None else DEFAULT_TEXT).split("\n")
    lh = line_height(font)
    total = lh * len(lines)
    w, h = size
    for i, line in enumerate(lines):
        y = h / 2 + i * lh - total / 2 + lh / 2
        draw.text((w / 2, y), line, font=font, fill=color, anchor="mm",
                  stroke_width=stroke, stroke_fill=color if stroke else None)
    return layer


# ── Clip layer ─────────────────────────────────────────────────────

def apply_filter(layer: Image.Image, clip: Clip, scale: float = 1.0) -> Image.Image:
    f = clip.filter
    if f is None or f.is_neutral:
        return layer
    alpha = layer.getchannel("A")
    rgb = layer.convert("RGB")
    if f.brightness != 1.0:
        rgb = ImageEnhance.Brightness(rgb).enhance(f.brightness)
    if f.contrast != 1.0:
        rgb = ImageEnhance.Contrast(rgb).enhance(f.contrast)
    if f.saturate != 1.0:
        rgb = ImageEnhance.Color(rgb).enhance(f.saturate)
    out = rgb.convert("RGBA")
    out.putalpha(alpha)
    if f.blur > 0:
        out = out.filter(ImageFilter.GaussianBlur(radius=f.blur * scale))
    return out


def render_clip(clip: Clip, time: float, scale: tuple[float, float] = (1.0, 1.0),
                frame_index=None, frame_cache=None, *,
                media: MediaLibrary,
                fonts: FontRegistry | None = None) -> tuple[Image.Image, int, int] | None:
    """Render one clip; returns (layer, left, top) on the surface, or None.

    Sources are loaded through ``media``; text falls back to its fonts.

    Raises:
        DrawError: If the clip's content cannot be drawn.
    """
    sx, sy = scale
    w = int(round(clip.width * sx))
    h = int(round(clip.height * sy))
    if w <= 0 or h <= 0 or clip.type == "audio":
        return None
    size = (w, h)
    fonts = fonts or media.fonts

    if clip.type == "mask":
        def content(s):
            return draw_mask(clip, s, time, media, frame_index, frame_cache)
    elif clip.type == "icon":
        def content(s):
            return draw_icon(clip, s, media)
    elif clip.type == "shape":
        def content(s):
            return draw_shape(clip, s, media)
    else:
        def content(s):
            return draw_text(clip, s, fonts, sy)

    region = shape_region(clip, size)
    if region is None:
        layer = crop_zoom(content, clip, size)
        region = crop_region(clip, size)
    else:
        layer = content(size)

    if clip.flip_h:
        layer = layer.transpose(Image.FLIP_LEFT_RIGHT)
    if clip.flip_v:
        layer = layer.transpose(Image.FLIP_TOP_BOTTOM)
    if region is not None:
        layer.putalpha(ImageChops.multiply(layer.getchannel("A"), region))

    layer = apply_filter(layer, clip, min(sx, sy))
    if clip.opacity < 1.0:
        opacity = clip.opacity
        layer.putalpha(layer.getchannel("A").point(lambda v: int(v * opacity)))

    cx, cy = (clip.x + clip.width / 2) * sx, (clip.y + clip.height / 2) * sy
    if clip.rotation % 360:
        layer = layer.rotate(-clip.rotation, resample=Image.BICUBIC, expand=True)
    left = int(round(cx - layer.width / 2))
    top = int(round(cy - layer.height / 2))
    return layer, left, top


# ── Frame ──────────────────────────────────────────────────────────

def render_frame(surface: Image.Image, time: float, canvas_size: tuple[int, int],
                 tracks, frame_index: int | None = None, frame_cache=None, *,
                 media: MediaLibrary | None = None,
                 fonts: FontRegistry | None = None,
                 background=DEFAULT_BACKGROUND) -> list[str]:
    """Draw the frame at project ``time`` onto ``surface`` in place.

    Args:
        surface: RGBA image; may differ in size from ``canvas_size``, in
            which case clip geometry is scaled to it.
        time: Project time in seconds.
        canvas_size: Logical (width, height) the clip geometry is in.
        tracks: A Timeline or a sequence of Tracks (index 0 is front).
        frame_index: Output frame number, used to look up prefetched
            video frames in ``frame_cache``.
        frame_cache: Object with ``get(src, frame_index)`` (FrameCache).
        media: Shared MediaLibrary; when omitted one is opened for this
            frame and closed afterwards.
        background: RGB(A) fill, or None to keep the surface contents.

    Returns:
        Ids of clips that failed to draw and were skipped.
    """
    if surface.mode != "RGBA":
        raise ValueError(f"Surface must be RGBA, got {surface.mode}")
    if isinstance(tracks, Timeline):
        tracks = tracks.tracks
    canvas_w, canvas_h = canvas_size
    scale = (surface.width / canvas_w, surface.height / canvas_h)

    if background is not None:
        fill = tuple(background) + ((255,) if len(background) == 3 else ())
        surface.paste(fill, (0, 0, surface.width, surface.height))

    if media is None:
        with MediaLibrary(fonts) as owned:
            return _draw_clips(surface, time, scale, tracks, frame_index, frame_cache,
                               owned, fonts)
    return _draw_clips(surface, time, scale, tracks, frame_index, frame_cache, media, fonts)


def _draw_clips(surface, time, scale, tracks, frame_index, frame_cache, media, fonts):
    skipped = []
    for _index, clip in active_clips(tracks, time):
        try:
            placed = render_clip(clip, time, scale, frame_index, frame_cache,
                                 media=media, fonts=fonts)
        except Exception as exc:
            logger.warning("Skipping clip '%s' (%s) at t=%.3f: %s", clip.id, clip.type, time, exc)
            skipped.append(clip.id)
            continue
        if placed is not None:
            composite_at(surface, *placed)
    return skipped
