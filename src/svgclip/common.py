"""svgclip.common — shared utilities.

Contains: color parsing, path variable resolution, data-URI helpers,
asset fetching (local paths, http(s) via requests, data URIs), and
image/video clip loading.
"""

import base64
import io
import mimetypes
import re
from pathlib import Path
from urllib.parse import unquote_to_bytes, urljoin, urlparse

import requests
from PIL import Image, ImageColor
from moviepy import VideoFileClip


DEFAULT_FETCH_TIMEOUT = 10.0


# ── Color utilities ────────────────────────────────────────────────

def parse_hex_color(hex_str: str) -> tuple[int, int, int]:
    """Convert '#RRGGBB', 'RRGGBB' or '#RGB' to an (R, G, B) tuple."""
    hex_str = hex_str.lstrip("#")
    if len(hex_str) == 3:
        hex_str = "".join(ch * 2 for ch in hex_str)
    return (int(hex_str[0:2], 16), int(hex_str[2:4], 16), int(hex_str[4:6], 16))


def parse_color(
    value: str | None, default: tuple[int, int, int, int] | None = None,
) -> tuple[int, int, int, int] | None:
    """Parse an SVG/CSS color into RGBA.

    'none' and 'transparent' give None. Unparseable values (including
    'url(#gradient)' paints, which callers resolve themselves) give
    ``default``.
    """
    if value is None:
        return default
    value = value.strip()
    if value in ("none", "transparent"):
        return None
    if not value or value.startswith("url(") or value == "currentColor":
        return default
    if re.fullmatch(r"[0-9a-fA-F]{6}", value):
        return (*parse_hex_color(value), 255)
    try:
        rgb = ImageColor.getrgb(value)
    except ValueError:
        return default
    if len(rgb) == 3:
        return (*rgb, 255)
    return rgb


# ── Path utilities ─────────────────────────────────────────────────

def resolve_path_vars(text: str, paths: dict[str, str]) -> str:
    """Replace ${name} variables in a string using the paths dict."""
    def _replace(match):
        key = match.group(1)
        if key not in paths:
            raise ValueError(f"Unknown path variable: ${{{key}}}")
        return paths[key]
    return re.sub(r"\$\{(\w+)\}", _replace, text)


def is_url(ref: str) -> bool:
    return urlparse(ref).scheme in ("http", "https")


def resolve_reference(ref: str, base: str | Path | None = None) -> str:
    """Make ``ref`` absolute against ``base`` (a URL or a directory/file).

    Data URIs and absolute URLs are returned unchanged.
    """
    if ref.startswith("data:") or is_url(ref) or base is None:
        return ref
    base = str(base)
    if is_url(base):
        return urljoin(base, ref)
    base_path = Path(base)
    if base_path.suffix:
        base_path = base_path.parent
    ref_path = Path(ref)
    if ref_path.is_absolute():
        return str(ref_path)
    return str(base_path / ref_path)


# ── Data URIs ──────────────────────────────────────────────────────

def to_data_uri(data: bytes, mime: str) -> str:
    return f"data:{mime};base64,{base64.b64encode(data).decode('ascii')}"


def decode_data_uri(uri: str) -> tuple[str, bytes]:
    """Split a data URI into (mime type, payload bytes).

    Raises:
        ValueError: If ``uri`` is not a well-formed data URI.
    """
    if not uri.startswith("data:") or "," not in uri:
        raise ValueError(f"Not a data URI: {uri[:40]}...")
    header, payload = uri[5:].split(",", 1)
    parts = header.split(";")
    mime = parts[0] or "text/plain"
    if "base64" in parts[1:]:
        try:
            return mime, base64.b64decode(payload)
        except ValueError as exc:
            raise ValueError(f"Malformed base64 data URI: {exc}") from exc
    return mime, unquote_to_bytes(payload)


def guess_mime(ref: str, data: bytes | None = None) -> str:
    if data is not None:
        head = data[:512].lstrip()
        if head.startswith(b"<svg") or (head.startswith(b"<?xml") and b"<svg" in data[:2048]):
            return "image/svg+xml"
        if head.startswith(b"\x89PNG"):
            return "image/png"
        if head.startswith(b"\xff\xd8"):
            return "image/jpeg"
    mime, _ = mimetypes.guess_type(urlparse(ref).path if is_url(ref) else ref)
    return mime or "application/octet-stream"


# ── Fetching ───────────────────────────────────────────────────────

def fetch_bytes(
    ref: str, base: str | Path | None = None,
    timeout: float = DEFAULT_FETCH_TIMEOUT,
) -> bytes:
    """Read an asset from a data URI, an http(s) URL or a local path.

    Raises:
        ValueError: Malformed data URI.
        requests.RequestException: HTTP failure (including non-2xx).
        FileNotFoundError: Missing local file.
    """
    ref = resolve_reference(ref, base)
    if ref.startswith("data:"):
        return decode_data_uri(ref)[1]
    if is_url(ref):
        response = requests.get(ref, timeout=timeout)
        response.raise_for_status()
        return response.content
    path = Path(ref)
    if not path.exists():
        raise FileNotFoundError(f"Asset not found: {path}")
    return path.read_bytes()


# ── Image / clip loading ───────────────────────────────────────────

def open_image(data: bytes) -> Image.Image:
    """Decode raster bytes into an RGBA image."""
    img = Image.open(io.BytesIO(data))
    img.load()
    return img.convert("RGBA")


def load_clip(path: str | Path, fps: int | None = None) -> VideoFileClip:
    """Load a video clip, optionally resampling to ``fps``."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Clip not found: {path}")
    clip = VideoFileClip(str(path))
    if fps is not None:
        clip = clip.with_fps(fps)
    return clip
