"""svgclip.template — decompose an annotated SVG template into clips.

A template is an SVG document plus a JSON annotation:

    {
      "item": {"<element id>": {"nodeName": "g", "image_id": "...",
                                "shapes_id": "...", "editor_move": "true",
                                "max_length": "20", ...}},
      "font-list": {"<family>": ["<element id>", ...]},
      "image-list": {"<url>": ["<element id>", ...]}
    }

Every annotated element becomes one Clip on its own track. Nested
transforms are folded into each element's geometry (rotation is kept as
the clip's rotation), the flattened element is measured to size the clip,
and mask clips get their clip-path shape re-expressed in clip-local
coordinates.

The input document is never mutated; decomposing the same template twice
gives identical geometry.
"""

import copy
import json
import logging
import uuid
from dataclasses import dataclass, field
from pathlib import Path

import requests
from lxml import etree

from .common import (
    DEFAULT_FETCH_TIMEOUT,
    fetch_bytes,
    guess_mime,
    is_url,
    resolve_reference,
    to_data_uri,
)
from .errors import (
    AssetEmbedError,
    GeometryMeasurementError,
    TemplateParseError,
    UnresolvedReferenceError,
)
from .fonts import FontRegistry
from .geometry import (
    DEFAULT_PRECISION,
    BoundingBox,
    Matrix,
    bounds_of_path,
    decompose_transform,
    format_number,
    parse_numbers,
    parse_transform,
    transform_path,
)
from .measure import DEFAULT_READY_TIMEOUT, GeometricMeasurer, GeometryMeasurer
from .model import Clip, Project, ShapeDescriptor, Timeline, parse_flag
from .vector import (
    INHERITED_PROPERTIES,
    SHAPE_TAGS,
    SVG_NS,
    XLINK_NS,
    StyleSheet,
    url_id,
    ancestor_matrix,
    ancestor_style,
    computed_style,
    document_view_box,
    element_path,
    href_of,
    local_name,
    parse_length,
    parse_style_attribute,
    parse_svg,
)

logger = logging.getLogger(__name__)


# Output canvas per template category: full (landscape), side (portrait)
# and top (banner strip).
CANVAS_PRESETS = {
    "F": (1920, 1080),
    "S": (1080, 1920),
    "T": (1820, 118),
}
DEFAULT_DURATION = 10.0
DEFAULT_CLIP_SIZE = (200.0, 200.0)
DEFAULT_TEXT_MAX_LENGTH = 15
DEFAULT_FONT_SIZE = 24.0
DEFAULT_FONT_FAMILY = "sans-serif"

# Elements carried into every clip's standalone SVG.
GLOBAL_DEF_TAGS = {
    "defs", "style", "clipPath", "linearGradient", "radialGradient",
    "pattern", "symbol", "mask", "filter", "marker",
}
# Box-like elements whose x/y/width/height are folded directly.
BOX_TAGS = {"rect", "image", "foreignObject", "video"}


@dataclass
class Template:
    """A parsed template pair. ``base`` resolves relative asset hrefs."""

    root: etree._Element
    annotation: dict
    base: str | None = None

    @property
    def items(self) -> dict:
        return self.annotation.get("item") or {}


@dataclass
class DecomposeResult:
    clips: list[Clip]
    timeline: Timeline
    aspect_ratio: float
    canvas_width: int
    canvas_height: int
    font_manifest: dict[str, list[str]] = field(default_factory=dict)
    image_manifest: dict[str, list[str]] = field(default_factory=dict)

    def to_project(self, duration: float | None = None) -> Project:
        return Project(
            timeline=self.timeline,
            canvas_width=self.canvas_width,
            canvas_height=self.canvas_height,
            duration=duration,
            font_manifest=self.font_manifest,
            image_manifest=self.image_manifest,
        )


# ── Loading ────────────────────────────────────────────────────────

def _read_source(source, what: str, timeout: float):
    """Return (content, base location) for a path, URL, text or bytes."""
    if isinstance(source, bytes):
        return source, None
    if isinstance(source, Path):
        source = str(source)
    if isinstance(source, str):
        stripped = source.lstrip()
        if stripped.startswith(("<", "{")):
            return source, None
        try:
            if is_url(source):
                response = requests.get(source, timeout=timeout)
                response.raise_for_status()
                return response.content, source
            path = Path(source)
            if not path.exists():
                raise FileNotFoundError(f"{path} does not exist")
            return path.read_bytes(), str(path.resolve())
        except (OSError, requests.RequestException) as exc:
            raise TemplateParseError(f"Cannot read template {what} '{source}': {exc}") from exc
    raise TemplateParseError(f"Unsupported template {what} source: {type(source).__name__}")


def load_template(svg, annotation, base: str | None = None,
                  timeout: float = DEFAULT_FETCH_TIMEOUT) -> Template:
    """Read and parse a template pair.

    Args:
        svg: Markup text/bytes, a local path or an http(s) URL.
        annotation: A dict, JSON text, a local path or an http(s) URL.
        base: Location for resolving relative hrefs; defaults to the SVG's
            own location when it was read from a path or URL.

    Raises:
        TemplateParseError: If either side cannot be read or parsed.
    """
    content, svg_base = _read_source(svg, "markup", timeout)
    try:
        root = parse_svg(content)
    except etree.XMLSyntaxError as exc:
        raise TemplateParseError(f"Malformed template markup: {exc}") from exc
    if local_name(root) != "svg":
        raise TemplateParseError(f"Template root must be <svg>, got <{local_name(root)}>")

    if isinstance(annotation, dict):
        data = annotation
    else:
        text, _ = _read_source(annotation, "annotation", timeout)
        try:
            data = json.loads(text)
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise TemplateParseError(f"Malformed template annotation: {exc}") from exc
    if not isinstance(data, dict) or not isinstance(data.get("item"), dict):
        raise TemplateParseError("Template annotation must be an object with an 'item' mapping")

    return Template(root=root, annotation=data, base=base or svg_base)


def canvas_size(category: str) -> tuple[int, int]:
    """Canvas (width, height) for a template category.

    Raises:
        ValueError: Unknown category.
    """
    if category not in CANVAS_PRESETS:
        raise ValueError(
            f"Unknown template category: '{category}'. Valid: {sorted(CANVAS_PRESETS)}"
        )
    return CANVAS_PRESETS[category]


# ── Asset embedding ────────────────────────────────────────────────

def embed_asset(href: str, base=None, timeout: float = DEFAULT_FETCH_TIMEOUT) -> str:
    """Fetch an asset and return it as a data URI.

    Raises:
        AssetEmbedError: If the asset cannot be fetched.
    """
    if href.startswith("data:"):
        return href
    try:
        data = fetch_bytes(href, base, timeout)
    except (OSError, ValueError, requests.RequestException) as exc:
        raise AssetEmbedError(f"Cannot embed '{href}': {exc}") from exc
    return to_data_uri(data, guess_mime(href, data))


def embed_assets(root, base=None, timeout: float = DEFAULT_FETCH_TIMEOUT) -> dict[str, str]:
    """Inline every <image> href of ``root`` in place.

    On failure the href is rewritten to its absolute reference instead.
    Returns {data-uri-or-reference: original href} for manifest building.
    """
    originals: dict[str, str] = {}
    cache: dict[str, str] = {}
    for el in root.iter():
        if local_name(el) != "image":
            continue
        href = href_of(el)
        if not href or href.startswith("data:"):
            continue
        if href not in cache:
            try:
                cache[href] = embed_asset(href, base, timeout)
            except AssetEmbedError as exc:
                logger.warning("%s; keeping reference", exc)
                cache[href] = resolve_reference(href, base)
        embedded = cache[href]
        originals[embedded] = href
        for attr in (f"{{{XLINK_NS}}}href", "href"):
            if el.get(attr) is not None:
                el.set(attr, embedded)
    return originals


# ── Classification & ordering ──────────────────────────────────────

def classify(element, item_id: str, item: dict) -> str | None:
    """Clip type for an annotated element, or None to skip it."""
    tag = local_name(element)
    if tag == "text":
        return "text"
    if tag == "image":
        return "mask" if item.get("image_id") == item_id else None
    if tag == "g" and item.get("image_id"):
        return "mask"
    if tag in SHAPE_TAGS and item.get("shapes_id") == item_id:
        return "shape"
    return "icon"


def document_order(root) -> dict:
    """Element -> position in a depth-first walk of the document."""
    return {el: index for index, el in enumerate(root.iter())}


# ── Flattening ─────────────────────────────────────────────────────

def _num(value: float, precision: int | None) -> str:
    return format_number(value, precision)


def _set_style_value(el, name: str, value: str) -> bool:
    """Replace ``name`` in the inline style; False if it is not there."""
    style = parse_style_attribute(el.get("style"))
    if name not in style:
        return False
    style[name] = value
    el.set("style", "; ".join(f"{k}: {v}" for k, v in style.items()))
    return True


def _scale_property(el, name: str, factor: float, precision) -> None:
    inline = parse_style_attribute(el.get("style")).get(name)
    if inline is not None:
        _set_style_value(el, name, _num(parse_length(inline) * factor, precision))
    elif el.get(name) is not None:
        el.set(name, _num(parse_length(el.get(name)) * factor, precision))


def _fold_text(el, m: Matrix, precision) -> None:
    sx, sy = m.a, m.d
    for attr, scale, offset in (("x", sx, m.e), ("y", sy, m.f)):
        if el.get(attr) is not None:
            values = parse_numbers(el.get(attr))
            el.set(attr, " ".join(_num(v * scale + offset, precision) for v in values))
    for attr, scale in (("dx", sx), ("dy", sy)):
        if el.get(attr) is not None:
            values = parse_numbers(el.get(attr))
            el.set(attr, " ".join(_num(v * scale, precision) for v in values))
    _scale_property(el, "font-size", abs(sy), precision)
    for child in el:
        if local_name(child) == "tspan":
            _fold_text(child, m, precision)


def _fold_geometry(el, m: Matrix, precision) -> None:
    tag = local_name(el)
    sx, sy = abs(m.a), abs(m.d)
    if tag in BOX_TAGS:
        x, y = parse_length(el.get("x")), parse_length(el.get("y"))
        w, h = parse_length(el.get("width")), parse_length(el.get("height"))
        x0, y0 = m.apply(x, y)
        x1, y1 = m.apply(x + w, y + h)
        el.set("x", _num(min(x0, x1), precision))
        el.set("y", _num(min(y0, y1), precision))
        el.set("width", _num(abs(x1 - x0), precision))
        el.set("height", _num(abs(y1 - y0), precision))
        for attr, scale in (("rx", sx), ("ry", sy)):
            if el.get(attr) is not None:
                el.set(attr, _num(parse_length(el.get(attr)) * scale, precision))
    elif tag in ("circle", "ellipse"):
        cx, cy = m.apply(parse_length(el.get("cx")), parse_length(el.get("cy")))
        el.set("cx", _num(cx, precision))
        el.set("cy", _num(cy, precision))
        if tag == "circle":
            r = parse_length(el.get("r"))
            if abs(sx - sy) < 1e-9:
                el.set("r", _num(r * sx, precision))
            else:
                namespace = etree.QName(el).namespace
                el.tag = f"{{{namespace}}}ellipse" if namespace else "ellipse"
                del el.attrib["r"]
                el.set("rx", _num(r * sx, precision))
                el.set("ry", _num(r * sy, precision))
        else:
            el.set("rx", _num(parse_length(el.get("rx")) * sx, precision))
            el.set("ry", _num(parse_length(el.get("ry")) * sy, precision))
    elif tag == "line":
        for xa, ya in (("x1", "y1"), ("x2", "y2")):
            px, py = m.apply(parse_length(el.get(xa)), parse_length(el.get(ya)))
            el.set(xa, _num(px, precision))
            el.set(ya, _num(py, precision))
    elif tag in ("polygon", "polyline"):
        nums = parse_numbers(el.get("points"))
        mapped = [m.apply(nums[i], nums[i + 1]) for i in range(0, len(nums) - 1, 2)]
        el.set("points", " ".join(f"{_num(x, precision)},{_num(y, precision)}" for x, y in mapped))
    elif tag == "path":
        el.set("d", transform_path(el.get("d", ""), m, precision))
    elif tag == "text":
        _fold_text(el, m, precision)


def _flatten(el, m: Matrix, precision, top: bool = False) -> None:
    """Fold the scale+translate matrix ``m`` into ``el``'s geometry.

    Descendants with their own non-rotating transform are folded too.
    A rotating descendant, an element whose clip/mask/filter is defined in
    its user space, and <use>/<svg> references keep the accumulated
    transform instead.
    """
    tag = local_name(el)
    if not tag:
        return
    if not top:
        local = parse_transform(el.get("transform"))
        if el.get("transform") is not None:
            del el.attrib["transform"]
        if not local.is_identity():
            if decompose_transform(local).has_rotation:
                combined = m @ local
                if not combined.is_identity():
                    el.set("transform", combined.to_svg())
                return
            m = m @ local

    factor = abs(m.determinant) ** 0.5
    if factor and abs(factor - 1.0) > 1e-12:
        _scale_property(el, "stroke-width", factor, precision)

    style = parse_style_attribute(el.get("style"))
    keeps_space = any(
        el.get(attr) is not None or attr in style
        for attr in ("clip-path", "mask", "filter")
    )
    if keeps_space or tag in ("use", "svg"):
        if not m.is_identity():
            el.set("transform", m.to_svg())
        return
    if tag in ("g", "a", "switch"):
        for child in el:
            _flatten(child, m, precision)
        return
    if m.is_identity():
        return
    _fold_geometry(el, m, precision)


@dataclass
class FlattenedElement:
    element: etree._Element
    rotation: float
    fold: Matrix
    ctm: Matrix


def flatten_element(element, sheet: StyleSheet,
                    precision: int | None = DEFAULT_PRECISION) -> FlattenedElement:
    """Detached, flattened copy of ``element``.

    The element's full transform (ancestors included) is split into a
    rotation, returned separately, and a scale+translate part folded into
    the copy. Inherited presentation properties are copied onto the copy
    so it renders the same outside the document.
    """
    ctm = ancestor_matrix(element) @ parse_transform(element.get("transform"))
    parts = decompose_transform(ctm)
    fold = Matrix(parts.scale_x, 0.0, 0.0, parts.scale_y, parts.translate_x, parts.translate_y)

    flat = copy.deepcopy(element)
    flat.tail = None
    inline = parse_style_attribute(flat.get("style"))
    for key, value in ancestor_style(element, sheet).items():
        if key in INHERITED_PROPERTIES and flat.get(key) is None and key not in inline:
            flat.set(key, value)
    if local_name(flat) == "text" and flat.get("font-size") is None and "font-size" not in inline:
        flat.set("font-size", "16")
    if flat.get("transform") is not None:
        del flat.attrib["transform"]
    _flatten(flat, fold, precision, top=True)
    return FlattenedElement(flat, parts.angle, fold, ctm)


# ── Mask shapes ────────────────────────────────────────────────────

def find_clip_path_reference(element) -> tuple[str | None, object]:
    """(clipPath id, referencing element) for a mask element, if any."""
    for node in element.iter():
        if not isinstance(node.tag, str):
            continue
        value = node.get("clip-path")
        if value:
            return (url_id(value) or value.strip().lstrip("#")), node
    value = parse_style_attribute(element.get("style")).get("clip-path")
    if value and url_id(value):
        return url_id(value), element
    return None, None


def resolve_clip_shape(ids: dict, clip_id: str):
    """Follow clipPath -> <use> -> shape. Returns (shape, chain matrix).

    Raises:
        UnresolvedReferenceError: If any link of the chain is missing.
    """
    clip = ids.get(clip_id)
    if clip is None or local_name(clip) != "clipPath":
        raise UnresolvedReferenceError(f"clipPath '#{clip_id}' not found")
    chain = parse_transform(clip.get("transform"))
    for child in clip:
        tag = local_name(child)
        if tag == "use":
            ref_id = (href_of(child) or "").lstrip("#")
            shape = ids.get(ref_id)
            if shape is None:
                raise UnresolvedReferenceError(f"Shape '#{ref_id}' used by clipPath '#{clip_id}' not found")
            chain = chain @ parse_transform(child.get("transform")) @ Matrix.translate(
                parse_length(child.get("x")), parse_length(child.get("y")))
            return shape, chain
        if tag in SHAPE_TAGS:
            return child, chain
    raise UnresolvedReferenceError(f"clipPath '#{clip_id}' has no shape")


_EDITOR_KINDS = {"rect": "rect", "circle": "circle", "ellipse": "circle",
                 "polygon": "polygon", "path": "path"}
_GEOMETRY_ATTRS = {"x", "y", "width", "height", "d", "cx", "cy", "r", "rx", "ry",
                   "transform", "points", "id", "x1", "y1", "x2", "y2",
                   "href", f"{{{XLINK_NS}}}href"}


def extract_mask_shape(element, ids: dict, flat: FlattenedElement,
                       bbox: BoundingBox | None, scale: float,
                       precision: int | None = DEFAULT_PRECISION) -> ShapeDescriptor | None:
    """The clip-path shape of a mask element in clip-local coordinates.

    The shape's own transform is applied first, then the project scale,
    then the offset to the clip's measured origin. Returns None when the
    element has no clip-path or the reference chain dangles.
    """
    clip_id, referrer = find_clip_path_reference(element)
    if clip_id is None:
        return None
    try:
        shape, chain = resolve_clip_shape(ids, clip_id)
    except UnresolvedReferenceError as exc:
        logger.debug("Mask '%s': %s", element.get("id"), exc)
        return None

    raw = element_path(shape)
    if not raw:
        return None
    ctm_referrer = ancestor_matrix(referrer) @ parse_transform(referrer.get("transform"))
    try:
        to_flat = flat.fold @ flat.ctm.inverse() @ ctm_referrer @ chain
    except ValueError as exc:
        logger.warning("Mask '%s': degenerate transform: %s", element.get("id"), exc)
        return None

    origin_x, origin_y = (bbox.x, bbox.y) if bbox is not None else (0.0, 0.0)
    to_clip = (Matrix.translate(-origin_x * scale, -origin_y * scale)
               @ Matrix.scale(scale) @ to_flat)
    shape_local = parse_transform(shape.get("transform"))
    d = transform_path(raw, to_clip @ shape_local, precision)
    box = bounds_of_path(d)

    tag = local_name(shape)
    kind = tag if tag in _EDITOR_KINDS else "path"
    editor_kind = "path" if not shape_local.is_identity() else _EDITOR_KINDS[kind]
    sides = None
    if tag == "polygon":
        sides = len(parse_numbers(shape.get("points"))) // 2
    attributes = tuple(
        (key, value) for key, value in shape.attrib.items()
        if key not in _GEOMETRY_ATTRS and not key.startswith("{")
    )
    return ShapeDescriptor(
        id=shape.get("id") or f"{clip_id}-shape",
        kind=kind,
        d=d,
        x=box.x, y=box.y, width=box.width, height=box.height,
        editor_kind=editor_kind,
        sides=sides,
        fill=shape.get("fill") or "white",
        attributes=tuple((k, v) for k, v in attributes if k != "fill"),
    )


# ── Decomposition ──────────────────────────────────────────────────

def global_defs(root) -> list:
    """Definition and style elements not nested inside another one."""
    found = []
    for el in root.iter():
        if local_name(el) not in GLOBAL_DEF_TAGS:
            continue
        parent = el.getparent()
        nested = False
        while parent is not None:
            if local_name(parent) in GLOBAL_DEF_TAGS:
                nested = True
                break
            parent = parent.getparent()
        if not nested:
            found.append(el)
    return found


def _svg_element(view_box: str | None = None):
    el = etree.Element(f"{{{SVG_NS}}}svg", nsmap={None: SVG_NS, "xlink": XLINK_NS})
    if view_box:
        el.set("viewBox", view_box)
    return el


def standalone_svg(flat_element, defs, view_box: str) -> str:
    """Data URI of an SVG holding ``defs`` and the flattened element."""
    doc = _svg_element(view_box)
    for d in defs:
        doc.append(copy.deepcopy(d))
    doc.append(copy.deepcopy(flat_element))
    return to_data_uri(etree.tostring(doc), "image/svg+xml")


def _text_content(el) -> str:
    tspans = [c for c in el if local_name(c) == "tspan"]
    if len(tspans) > 1 and all(t.get("y") is not None or t.get("dy") is not None for t in tspans[1:]):
        return "\n".join(" ".join("".join(t.itertext()).split()) for t in tspans)
    return " ".join("".join(el.itertext()).split())


def _family(value: str | None) -> str | None:
    if not value:
        return None
    return value.split(",")[0].strip().strip("'\"") or None


def decompose(template: Template, category: str, duration: float = DEFAULT_DURATION, *,
              measurer: GeometryMeasurer | None = None,
              fonts: FontRegistry | None = None,
              timeout: float = DEFAULT_READY_TIMEOUT,
              precision: int | None = DEFAULT_PRECISION,
              embed: bool = True,
              fetch_timeout: float = DEFAULT_FETCH_TIMEOUT) -> DecomposeResult:
    """Turn a template into clips, one track per clip.

    Args:
        template: Parsed template pair (see ``load_template``).
        category: Canvas preset key ("F", "S" or "T").
        duration: Duration given to every clip, in seconds.
        measurer: Bounding-box measurer; defaults to GeometricMeasurer.
        fonts: Font registry shared with the measurer.
        timeout: Seconds to wait for fonts and images before measuring.
        precision: Decimal places kept in rewritten path data.
        embed: Inline referenced images as data URIs.

    Returns:
        DecomposeResult with clips ordered front-most first.

    Raises:
        ValueError: Unknown category or non-positive duration.
    """
    canvas_width, canvas_height = canvas_size(category)
    if not duration > 0:
        raise ValueError(f"Duration must be > 0, got {duration}")
    fonts = fonts or (measurer.fonts if measurer is not None else FontRegistry())
    measurer = measurer or GeometricMeasurer(fonts)

    root = copy.deepcopy(template.root)
    originals = embed_assets(root, template.base, fetch_timeout) if embed else {}
    vx, vy, vw, _vh = document_view_box(root)
    scale = canvas_width / vw
    sheet = StyleSheet(root)
    ids = {el.get("id"): el for el in root.iter() if isinstance(el.tag, str) and el.get("id")}

    # Classify annotated elements.
    entries = []
    for item_id, item in template.items.items():
        item = item if isinstance(item, dict) else {}
        element = ids.get(item_id)
        if element is None:
            logger.debug("Skipping annotated id '%s': %s", item_id,
                         UnresolvedReferenceError(f"no element with id '{item_id}'"))
            continue
        clip_type = classify(element, item_id, item)
        if clip_type is None:
            logger.debug("Skipping annotated id '%s': unclassifiable <%s>",
                         item_id, local_name(element))
            continue
        entries.append((element, clip_type, item_id, item))

    # Later in the document paints on top, so it goes first (track 0).
    order = document_order(root)
    entries.sort(key=lambda entry: order[entry[0]])
    entries.reverse()

    families = set(template.annotation.get("font-list") or {})
    for element, clip_type, _, _ in entries:
        if clip_type == "text":
            family = _family(computed_style(element, ancestor_style(element, sheet), sheet).get("font-family"))
            if family:
                families.add(family)
    image_hrefs = [href_of(el) for el in root.iter() if local_name(el) == "image"]

    defs = global_defs(root)
    root_view_box = " ".join(format_number(v, None) for v in document_view_box(root))
    host = _svg_element(root_view_box)
    for d in defs:
        host.append(copy.deepcopy(d))

    clips: list[Clip] = []
    element_clip_ids: dict[str, str] = {}
    with measurer:
        measurer.attach(host, template.base)
        measurer.wait_until_ready(families, image_hrefs, timeout=timeout)
        for element, clip_type, item_id, item in entries:
            flat = flatten_element(element, sheet, precision)
            tag = local_name(element)

            host.append(flat.element)
            measurer.refresh()
            try:
                bbox = measurer.measure(flat.element, stroked=(tag == "g" or tag in SHAPE_TAGS))
            except GeometryMeasurementError as exc:
                logger.warning("Clip '%s': %s; using default size", item_id, exc)
                bbox = None
            finally:
                host.remove(flat.element)

            if bbox is not None:
                width, height = bbox.width * scale, bbox.height * scale
                try:
                    center = (flat.ctm @ flat.fold.inverse()).apply(*bbox.center)
                except ValueError:
                    center = bbox.center
                x = (center[0] - vx) * scale - width / 2
                y = (center[1] - vy) * scale - height / 2
                view_box = bbox.to_view_box()
            else:
                width, height = DEFAULT_CLIP_SIZE
                x = y = 0.0
                view_box = root_view_box

            style = computed_style(flat.element, None, sheet)
            kwargs = {}
            if clip_type == "text":
                font_size = parse_length(style.get("font-size"), DEFAULT_FONT_SIZE)
                kwargs.update(
                    text=_text_content(flat.element),
                    font_family=_family(style.get("font-family")) or DEFAULT_FONT_FAMILY,
                    font_size=font_size * scale,
                    color=style.get("fill") or "#000000",
                )
            else:
                kwargs["src"] = standalone_svg(flat.element, defs, view_box)
                if clip_type == "shape":
                    fill = style.get("fill") or "#000000"
                    shapes_id = item.get("shapes_id")
                    if shapes_id:
                        inner = next((n for n in flat.element.iter()
                                      if isinstance(n.tag, str) and n.get("id") == shapes_id), None)
                        if inner is not None and inner.get("fill"):
                            fill = inner.get("fill")
                    kwargs["color"] = fill
            if clip_type == "mask":
                shape = extract_mask_shape(element, ids, flat, bbox, scale, precision)
                kwargs["shapes"] = (shape,) if shape is not None else ()
                has_image = tag == "image" or any(local_name(n) == "image" for n in element.iter())
                kwargs["media_type"] = "image" if has_image else None

            max_length = item.get("max_length")
            try:
                max_length = int(max_length) if max_length not in (None, "") else None
            except (TypeError, ValueError):
                max_length = None
            if max_length is None and clip_type == "text":
                max_length = DEFAULT_TEXT_MAX_LENGTH

            opacity = parse_length(element.get("opacity"), 1.0)
            clip = Clip(
                id=str(uuid.uuid4()),
                type=clip_type,
                start=0.0,
                duration=duration,
                x=x, y=y, width=width, height=height,
                rotation=flat.rotation,
                opacity=max(0.0, min(1.0, opacity)),
                view_box=f"0 0 {format_number(width, None)} {format_number(height, None)}",
                name=item_id,
                editor_move=parse_flag(item.get("editor_move", "false")),
                editor_scale=parse_flag(item.get("editor_scale", "false")),
                editor_rotate=parse_flag(item.get("editor_rotate", "false")),
                attr_rock=parse_flag(item.get("attr_rock", "false")),
                image_id=item.get("image_id"),
                shapes_id=item.get("shapes_id"),
                max_length=max_length,
                **kwargs,
            )
            clips.append(clip)
            element_clip_ids[item_id] = clip.id

    timeline = Timeline.from_clips(clips)
    clips = list(timeline.clips())
    return DecomposeResult(
        clips=clips,
        timeline=timeline,
        aspect_ratio=canvas_width / canvas_height,
        canvas_width=canvas_width,
        canvas_height=canvas_height,
        font_manifest=_font_manifest(template.annotation, clips, element_clip_ids),
        image_manifest=_image_manifest(template.annotation, root, originals, element_clip_ids, ids),
    )


def _font_manifest(annotation, clips, element_clip_ids) -> dict[str, list[str]]:
    manifest: dict[str, list[str]] = {}
    for family, element_ids in (annotation.get("font-list") or {}).items():
        ids = [element_clip_ids[e] for e in (element_ids or []) if e in element_clip_ids]
        manifest[family] = ids
    for clip in clips:
        if clip.type == "text" and clip.font_family:
            bucket = manifest.setdefault(clip.font_family, [])
            if clip.id not in bucket:
                bucket.append(clip.id)
    return manifest


def _image_manifest(annotation, root, originals, element_clip_ids, ids) -> dict[str, list[str]]:
    manifest: dict[str, list[str]] = {}
    for url, element_ids in (annotation.get("image-list") or {}).items():
        manifest[url] = [element_clip_ids[e] for e in (element_ids or []) if e in element_clip_ids]
    for item_id, clip_id in element_clip_ids.items():
        element = ids.get(item_id)
        for node in element.iter():
            if local_name(node) != "image":
                continue
            href = href_of(node)
            url = originals.get(href, href)
            if not url or url.startswith("data:"):
                continue
            bucket = manifest.setdefault(url, [])
            if clip_id not in bucket:
                bucket.append(clip_id)
    return manifest
