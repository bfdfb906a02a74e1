"""svgclip.fonts — font lookup, loading and text metrics.

Template fonts are looked up by family name in configured directories
(``<family>.ttf``, ``<family>-Bold.woff`` ...). When a family is missing,
Inter/DejaVu from the system are used, then Pillow's default font.
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor, wait
from pathlib import Path

from PIL import Image, ImageDraw, ImageFont

logger = logging.getLogger(__name__)


# ── Font paths ─────────────────────────────────────────────────────
# Inter preferred, DejaVu Sans as fallback.

FONT_PATHS = [
    Path.home() / ".local/share/fonts/Inter.ttc",
    Path("/usr/share/fonts/truetype/dejavu/DejaVuSans.ttf"),
]
BOLD_FONT_PATHS = [
    Path("/usr/share/fonts/truetype/dejavu/DejaVuSans-Bold.ttf"),
]
FONT_EXTENSIONS = (".ttf", ".otf", ".ttc", ".woff")
DEFAULT_FONT_SIZE = 120


def _normalize(name: str) -> str:
    return "".join(ch for ch in name.lower() if ch.isalnum())


class FontRegistry:
    """Resolves template font families to files and caches loaded faces."""

    def __init__(self, font_dirs=()):
        self.font_dirs = [Path(d) for d in font_dirs]
        self._index: dict[str, Path] | None = None
        self._cache: dict[tuple, tuple] = {}
        self._lock = threading.Lock()

    def _build_index(self) -> dict[str, Path]:
        index: dict[str, Path] = {}
        for directory in self.font_dirs:
            if not directory.is_dir():
                logger.warning("Font directory not found: %s", directory)
                continue
            for path in sorted(directory.iterdir()):
                if path.suffix.lower() in FONT_EXTENSIONS:
                    index.setdefault(_normalize(path.stem), path)
        return index

    def resolve(self, family: str | None, bold: bool = False) -> Path | None:
        """Font file for ``family``, or None if no configured file matches."""
        if not family:
            return None
        with self._lock:
            if self._index is None:
                self._index = self._build_index()
            index = self._index
        name = _normalize(family.split(",")[0].strip().strip("'\""))
        if bold:
            return index.get(name + "bold")
        return index.get(name) or index.get(name + "regular")

    def load(self, family: str | None, size: float, bold: bool = True,
             ) -> tuple[ImageFont.FreeTypeFont | ImageFont.ImageFont, bool]:
        """Load a face; returns (font, synthetic_bold).

        ``synthetic_bold`` is True when bold was requested but only a
        regular face was available, so callers should embolden it.
        """
        size = max(1, int(round(size)))
        key = (family, size, bold)
        with self._lock:
            if key in self._cache:
                return self._cache[key]

        candidates: list[tuple[Path, bool]] = []
        if bold:
            bold_path = self.resolve(family, bold=True)
            if bold_path is not None:
                candidates.append((bold_path, False))
        regular = self.resolve(family)
        if regular is not None:
            candidates.append((regular, bold))
        if bold:
            candidates.extend((p, False) for p in BOLD_FONT_PATHS)
        candidates.extend((p, bold) for p in FONT_PATHS)

        result = None
        for path, synthetic in candidates:
            if not path.exists():
                continue
            try:
                result = (ImageFont.truetype(str(path), size=size), synthetic)
                break
            except OSError:
                logger.debug("Could not load font %s", path)
                continue
        if result is None:
            # Last resort: Pillow default font.
            result = (ImageFont.load_default(size=size), bold)

        with self._lock:
            self._cache[key] = result
        return result

    def _preload(self, family: str) -> bool:
        path = self.resolve(family)
        if path is None:
            logger.warning("Font family '%s' not found in %s; using fallback",
                           family, [str(d) for d in self.font_dirs])
            return False
        ImageFont.truetype(str(path), size=DEFAULT_FONT_SIZE)
        return True

    def wait_until_loaded(self, families, timeout: float = 3.0) -> set[str]:
        """Load every family concurrently, bounded by ``timeout`` seconds.

        Returns the families still loading when the timeout expired.
        Families that fail to load are logged and fall back to the default
        face; they are not reported as pending.
        """
        families = sorted(set(f for f in families if f))
        if not families:
            return set()
        pool = ThreadPoolExecutor(max_workers=min(4, len(families)))
        try:
            futures = {pool.submit(self._preload, fam): fam for fam in families}
            done, not_done = wait(futures, timeout=timeout)
            for future in done:
                exc = future.exception()
                if exc is not None:
                    logger.warning("Font '%s' failed to load: %s", futures[future], exc)
            return {futures[f] for f in not_done}
        finally:
            pool.shutdown(wait=False, cancel_futures=True)


# ── Text metrics ───────────────────────────────────────────────────

def line_height(font) -> int:
    """Per-line advance from the face's ascent + descent."""
    if hasattr(font, "getmetrics"):
        ascent, descent = font.getmetrics()
        return ascent + descent
    left, top, right, bottom = font.getbbox("Ag")
    return bottom - top


def text_width(text: str, font, stroke_width: int = 0) -> float:
    draw = ImageDraw.Draw(Image.new("L", (1, 1)))
    return draw.textlength(text, font=font) + 2 * stroke_width


def synthetic_bold_width(size: float) -> int:
    """Stroke width used to embolden a regular face."""
    return max(1, int(round(size / 40)))
