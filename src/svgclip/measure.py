"""svgclip.measure — bounding-box measurement behind a small capability.

A GeometryMeasurer is attached to a hidden host document (the template's
defs and styles), waits for fonts and images, measures elements appended
to that host, and is detached when done. Use it as a context manager so
the host is torn down even on error:

    with GeometricMeasurer(fonts) as measurer:
        measurer.attach(host)
        measurer.wait_until_ready(families, hrefs, timeout=3.0)
        box = measurer.measure(element, stroked=True)

Boxes are in host-document user units and include the measured element's
own transform.

Two implementations:
    GeometricMeasurer: pure computation from parsed geometry and font
        metrics. Curves use loose control-point bounds.
    RasterMeasurer: rasterizes the element offscreen and reads the alpha
        bounding box, like a rendering host would.
"""

import logging
import math
import time
from concurrent.futures import ThreadPoolExecutor, wait

from PIL import ImageFont

from .common import fetch_bytes, open_image
from .errors import GeometryMeasurementError
from .fonts import FontRegistry, line_height, text_width
from .geometry import (
    IDENTITY,
    BoundingBox,
    Matrix,
    bounds_of_points,
    parse_transform,
    path_points,
    transform_box,
)
from .vector import (
    CONTAINER_TAGS,
    NON_RENDERED_TAGS,
    SHAPE_TAGS,
    Rasterizer,
    StyleSheet,
    ancestor_style,
    computed_style,
    element_path,
    fit_view_box,
    href_of,
    local_name,
    parse_length,
    text_runs,
)

logger = logging.getLogger(__name__)


DEFAULT_READY_TIMEOUT = 3.0


class GeometryMeasurer:
    """Attach-measure-detach capability; subclasses implement measure()."""

    def __init__(self, fonts: FontRegistry | None = None):
        self.fonts = fonts or FontRegistry()
        self.host = None
        self.sheet = StyleSheet()
        self.base = None
        self.pending: set[str] = set()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.detach()
        return False

    @property
    def attached(self) -> bool:
        return self.host is not None

    def attach(self, host, base=None) -> None:
        self.host = host
        self.sheet = StyleSheet(host)
        self.base = base
        self.pending = set()

    def detach(self) -> None:
        self.host = None
        self.sheet = StyleSheet()
        self.pending = set()

    def refresh(self) -> None:
        """Re-read stylesheets after elements were appended to the host."""
        if self.host is not None:
            self.sheet = StyleSheet(self.host)

    def wait_until_ready(self, fonts=(), images=(),
                         timeout: float = DEFAULT_READY_TIMEOUT) -> set[str]:
        """Block until fonts and images are loaded, at most ``timeout`` s.

        Returns the font families and image hrefs still pending; elements
        depending on them cannot be measured.
        """
        deadline = time.monotonic() + timeout
        pending = set(self.fonts.wait_until_loaded(fonts, timeout))

        hrefs = sorted(set(h for h in images if h and not h.startswith("data:")))
        if hrefs:
            remaining = max(0.0, deadline - time.monotonic())
            pool = ThreadPoolExecutor(max_workers=min(4, len(hrefs)))
            try:
                futures = {
                    pool.submit(lambda h: open_image(fetch_bytes(h, self.base)), h): h
                    for h in hrefs
                }
                done, not_done = wait(futures, timeout=remaining)
                for future in done:
                    exc = future.exception()
                    if exc is not None:
                        logger.warning("Image '%s' failed to load: %s", futures[future], exc)
                pending |= {futures[f] for f in not_done}
            finally:
                pool.shutdown(wait=False, cancel_futures=True)

        self.pending = pending
        if pending:
            logger.warning("Assets still loading after %.1fs: %s", timeout, sorted(pending))
        return pending

    def _check_ready(self, element) -> None:
        if not self.pending:
            return
        for node in element.iter():
            tag = local_name(node)
            if tag == "image" and href_of(node) in self.pending:
                raise GeometryMeasurementError(f"Image '{href_of(node)}' has not loaded")
            if tag in ("text", "tspan"):
                family = computed_style(node, ancestor_style(node, self.sheet), self.sheet).get("font-family")
                if family in self.pending:
                    raise GeometryMeasurementError(f"Font '{family}' has not loaded")

    def measure(self, element, stroked: bool = False) -> BoundingBox:
        """Bounding box of ``element`` (appended to the host) in host units.

        Raises:
            GeometryMeasurementError: If measurement fails or the element
                depends on an asset that is still loading.
        """
        if not self.attached:
            raise GeometryMeasurementError("Measurer is not attached to a host document")
        self._check_ready(element)
        try:
            box = self._measure(element, stroked)
        except GeometryMeasurementError:
            raise
        except (ValueError, OSError, ArithmeticError) as exc:
            raise GeometryMeasurementError(f"Measurement failed: {exc}") from exc
        if box is None:
            raise GeometryMeasurementError(
                f"Element '{element.get('id')}' has no measurable geometry"
            )
        return box

    def _measure(self, element, stroked: bool) -> BoundingBox | None:
        raise NotImplementedError


def _extend(points: list, box: BoundingBox) -> None:
    points.append((box.x, box.y))
    points.append((box.right, box.bottom))


class GeometricMeasurer(GeometryMeasurer):
    """Bounds computed from parsed geometry, font metrics and image rects."""

    def _measure(self, element, stroked):
        points: list[tuple[float, float]] = []
        ids = {el.get("id"): el for el in self.host.iter()
               if isinstance(el.tag, str) and el.get("id")}
        style = ancestor_style(element, self.sheet)
        self._collect(element, IDENTITY, style, stroked, ids, points, depth=0)
        if not points:
            return None
        return bounds_of_points(points)

    def _collect(self, el, matrix, parent_style, stroked, ids, points, depth):
        tag = local_name(el)
        if not tag or tag in NON_RENDERED_TAGS or depth > 32:
            return
        style = computed_style(el, parent_style, self.sheet)
        if style.get("display") == "none":
            return
        m = matrix @ parse_transform(el.get("transform"))

        if tag in CONTAINER_TAGS:
            for child in el:
                self._collect(child, m, style, stroked, ids, points, depth + 1)
        elif tag == "use":
            ref = ids.get((href_of(el) or "").lstrip("#"))
            if ref is not None:
                m = m @ Matrix.translate(parse_length(el.get("x")), parse_length(el.get("y")))
                children = list(ref) if local_name(ref) == "symbol" else [ref]
                for child in children:
                    self._collect(child, m, style, stroked, ids, points, depth + 1)
        elif tag in SHAPE_TAGS:
            raw = path_points(element_path(el))
            if not raw:
                return
            pad = 0.0
            if stroked and style.get("stroke", "none") != "none":
                pad = parse_length(style.get("stroke-width"), 1.0) / 2
            box = bounds_of_points(raw)
            _extend(points, transform_box(box.x - pad, box.y - pad,
                                          box.width + 2 * pad, box.height + 2 * pad, m))
        elif tag == "text":
            for run in text_runs(el, style, self.sheet):
                font, _ = self.fonts.load(run.font_family, run.font_size, run.bold)
                width = text_width(run.text, font)
                if isinstance(font, ImageFont.FreeTypeFont):
                    ascent, descent = font.getmetrics()
                else:
                    ascent, descent = line_height(font), 0
                left = run.x - {"middle": width / 2, "end": width}.get(run.anchor, 0.0)
                _extend(points, transform_box(left, run.y - ascent, width, ascent + descent, m))
        elif tag == "image":
            x, y = parse_length(el.get("x")), parse_length(el.get("y"))
            w, h = parse_length(el.get("width")), parse_length(el.get("height"))
            _extend(points, transform_box(x, y, w, h, m))


class RasterMeasurer(GeometryMeasurer):
    """Bounds read back from an offscreen rasterization.

    The element is drawn into a window around its geometric estimate at
    ``resolution`` pixels along the longer side; the alpha bounding box is
    mapped back to user units.
    """

    def __init__(self, fonts: FontRegistry | None = None, resolution: int = 1024):
        super().__init__(fonts)
        self.resolution = resolution
        self._estimator = GeometricMeasurer(self.fonts)

    def attach(self, host, base=None) -> None:
        super().attach(host, base)
        self._estimator.attach(host, base)

    def detach(self) -> None:
        super().detach()
        self._estimator.detach()

    def refresh(self) -> None:
        super().refresh()
        self._estimator.refresh()

    def _measure(self, element, stroked):
        estimate = self._estimator._measure(element, True)
        if estimate is None:
            return None
        pad_x = max(estimate.width * 0.25, 1.0)
        pad_y = max(estimate.height * 0.25, 1.0)
        window = (estimate.x - pad_x, estimate.y - pad_y,
                  estimate.width + 2 * pad_x, estimate.height + 2 * pad_y)
        longest = max(window[2], window[3])
        scale = self.resolution / longest
        size = (max(1, math.ceil(window[2] * scale)), max(1, math.ceil(window[3] * scale)))

        raster = Rasterizer(self.host, size, fonts=self.fonts, base=self.base)
        raster.paint_strokes = stroked
        view = fit_view_box(window, size[0], size[1], "none")
        raster.draw(element, view, ancestor_style(element, self.sheet))
        bbox = raster.canvas.getchannel("A").getbbox()
        if bbox is None:
            return None
        left, top, right, bottom = bbox
        inverse = view.inverse()
        x0, y0 = inverse.apply(left, top)
        x1, y1 = inverse.apply(right, bottom)
        return BoundingBox(x0, y0, x1 - x0, y1 - y0)


MEASURERS = {
    "geometric": GeometricMeasurer,
    "raster": RasterMeasurer,
}


def make_measurer(name: str, fonts: FontRegistry | None = None) -> GeometryMeasurer:
    """Build a measurer by config name.

    Raises:
        ValueError: Unknown measurer name.
    """
    if name not in MEASURERS:
        raise ValueError(f"Unknown measurer: '{name}'. Valid: {sorted(MEASURERS)}")
    return MEASURERS[name](fonts)
