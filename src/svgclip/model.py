"""svgclip.model — clip/track entities and timeline edit operations.

All entities are frozen dataclasses. A Timeline is an immutable snapshot:
every edit returns a new Timeline, so renderers and exporters can hold a
snapshot without observing concurrent edits.

Track index 0 is the front-most track (drawn last). Clip ids are unique
across all tracks.

The JSON interchange form uses the editor's camelCase keys; see
``clip_to_dict`` / ``clip_from_dict`` and ``read_project`` /
``write_project``.
"""

import json
import re
import uuid
from dataclasses import dataclass, field, fields, replace
from pathlib import Path

from .shapes import rect_path


CLIP_TYPES = {"text", "shape", "icon", "mask", "audio"}
TRACK_TYPES = CLIP_TYPES | {"mixed"}
SHAPE_KINDS = {"rect", "circle", "ellipse", "polygon", "path"}
EDITOR_SHAPE_KINDS = {"rect", "circle", "polygon", "path"}
CROP_SHAPES = {"rect", "circle"}
MEDIA_TYPES = {"video", "image"}

DEFAULT_VIEW_BOX = (0.0, 0.0, 100.0, 100.0)
DEFAULT_MASK_SIZE = 500.0
DEFAULT_MASK_SHAPE_ID = "shape-1"

_VIDEO_RE = re.compile(r"\.(mp4|webm|mov|m4v)(?:[?#]|$)", re.IGNORECASE)


# ── Shape & override records ───────────────────────────────────────

@dataclass(frozen=True)
class ShapeDescriptor:
    """One mask shape, in the coordinate space of its clip's viewBox.

    ``kind`` is the source element kind; ``editor_kind`` is how the mask
    editor treats it (``data-shape-type``). ``d`` is always present and is
    what gets drawn.
    """

    id: str
    kind: str
    d: str
    x: float = 0.0
    y: float = 0.0
    width: float = 0.0
    height: float = 0.0
    editor_kind: str = "path"
    sides: int | None = None
    fill: str = "white"
    attributes: tuple[tuple[str, str], ...] = ()

    def __post_init__(self):
        if self.kind not in SHAPE_KINDS:
            raise ValueError(
                f"Shape '{self.id}': invalid kind '{self.kind}'. "
                f"Valid: {sorted(SHAPE_KINDS)}"
            )
        if self.editor_kind not in EDITOR_SHAPE_KINDS:
            raise ValueError(
                f"Shape '{self.id}': invalid editor kind '{self.editor_kind}'. "
                f"Valid: {sorted(EDITOR_SHAPE_KINDS)}"
            )

    def to_dict(self) -> dict:
        data = dict(self.attributes)
        data.update({
            "id": self.id,
            "type": self.kind,
            "d": self.d,
            "x": self.x,
            "y": self.y,
            "width": self.width,
            "height": self.height,
            "data-shape-type": self.editor_kind,
            "fill": self.fill,
        })
        if self.sides is not None:
            data["sides"] = self.sides
        return data

    @classmethod
    def from_dict(cls, shape_id: str, data: dict) -> "ShapeDescriptor":
        known = {"id", "type", "d", "x", "y", "width", "height",
                 "data-shape-type", "fill", "sides"}
        kind = data.get("type", "path")
        return cls(
            id=data.get("id", shape_id),
            kind=kind if kind in SHAPE_KINDS else "path",
            d=data.get("d", ""),
            x=float(data.get("x", 0) or 0),
            y=float(data.get("y", 0) or 0),
            width=float(data.get("width", 0) or 0),
            height=float(data.get("height", 0) or 0),
            editor_kind=data.get("data-shape-type", "path"),
            sides=int(data["sides"]) if data.get("sides") is not None else None,
            fill=data.get("fill", "white"),
            attributes=tuple(
                (k, str(v)) for k, v in data.items() if k not in known
            ),
        )


# SVG attribute name for each geometric/paint override field.
_OVERRIDE_ATTRS = {
    "fill": "fill",
    "stroke": "stroke",
    "stroke_width": "stroke-width",
    "opacity": "opacity",
    "x": "x", "y": "y", "width": "width", "height": "height",
    "rx": "rx", "ry": "ry", "r": "r", "cx": "cx", "cy": "cy", "d": "d",
}
_OVERRIDE_JSON = {"stroke_width": "strokeWidth"}


@dataclass(frozen=True)
class ElementOverride:
    """Per-element edits applied to an icon's markup at render time."""

    id: str
    text: str | None = None
    fill: str | None = None
    stroke: str | None = None
    stroke_width: float | None = None
    opacity: float | None = None
    x: float | None = None
    y: float | None = None
    width: float | None = None
    height: float | None = None
    rx: float | None = None
    ry: float | None = None
    r: float | None = None
    cx: float | None = None
    cy: float | None = None
    d: str | None = None

    def svg_attributes(self) -> dict[str, str]:
        """Overridden attributes, keyed by SVG attribute name."""
        attrs = {}
        for name, attr in _OVERRIDE_ATTRS.items():
            value = getattr(self, name)
            if value is not None:
                attrs[attr] = str(value)
        return attrs

    def to_dict(self) -> dict:
        data = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if value is not None and f.name != "id":
                data[_OVERRIDE_JSON.get(f.name, f.name)] = value
        return data

    @classmethod
    def from_dict(cls, element_id: str, data: dict) -> "ElementOverride":
        kwargs = {}
        for f in fields(cls):
            if f.name == "id":
                continue
            key = _OVERRIDE_JSON.get(f.name, f.name)
            if key in data and data[key] is not None:
                value = data[key]
                if f.name not in ("text", "fill", "stroke", "d"):
                    value = float(value)
                kwargs[f.name] = value
        return cls(id=element_id, **kwargs)


@dataclass(frozen=True)
class CropWindow:
    """Percentage crop of the clip's content (0-100 on each axis)."""

    x: float = 0.0
    y: float = 0.0
    width: float = 100.0
    height: float = 100.0
    shape: str = "rect"
    corner_radius: float = 0.0

    def __post_init__(self):
        if self.width <= 0 or self.height <= 0:
            raise ValueError(
                f"Crop window must have positive size, got {self.width}x{self.height}"
            )
        if self.shape not in CROP_SHAPES:
            raise ValueError(
                f"Invalid crop shape '{self.shape}'. Valid: {sorted(CROP_SHAPES)}"
            )

    def to_dict(self) -> dict:
        return {
            "x": self.x, "y": self.y, "width": self.width, "height": self.height,
            "shape": self.shape, "cornerRadius": self.corner_radius,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "CropWindow":
        return cls(
            x=float(data.get("x", 0)),
            y=float(data.get("y", 0)),
            width=float(data.get("width", 100)),
            height=float(data.get("height", 100)),
            shape=data.get("shape") or "rect",
            corner_radius=float(data.get("cornerRadius", 0) or 0),
        )


@dataclass(frozen=True)
class ClipFilter:
    """Colour adjustments; 1.0 is neutral for the factors, 0 for blur."""

    brightness: float = 1.0
    contrast: float = 1.0
    saturate: float = 1.0
    blur: float = 0.0

    @property
    def is_neutral(self) -> bool:
        return (self.brightness, self.contrast, self.saturate, self.blur) == (1.0, 1.0, 1.0, 0.0)


# ── Clip ───────────────────────────────────────────────────────────

@dataclass(frozen=True)
class Clip:
    """One timed, positioned unit of content.

    The clip occupies ``[start, start + duration)`` on the timeline and the
    box ``(x, y, width, height)`` on the canvas. ``rotation`` pivots on the
    box centre. ``shapes`` are expressed in ``view_box`` coordinates.
    """

    id: str
    type: str
    start: float = 0.0
    duration: float = 5.0
    x: float = 0.0
    y: float = 0.0
    width: float = 0.0
    height: float = 0.0
    rotation: float = 0.0
    opacity: float = 1.0
    flip_h: bool = False
    flip_v: bool = False
    color: str | None = None
    crop: CropWindow | None = None
    filter: ClipFilter | None = None
    shapes: tuple[ShapeDescriptor, ...] = ()
    overrides: tuple[ElementOverride, ...] = ()
    src: str | None = None
    media_start: float = 0.0
    media_type: str | None = None
    volume: float = 1.0
    text: str | None = None
    font_family: str | None = None
    font_size: float | None = None
    view_box: str | None = None
    custom_path: str | None = None
    sides: int | None = None
    name: str = ""
    track_id: str = ""
    editor_move: bool = True
    editor_scale: bool = True
    editor_rotate: bool = True
    attr_rock: bool = False
    image_id: str | None = None
    shapes_id: str | None = None
    max_length: int | None = None

    def __post_init__(self):
        if self.type not in CLIP_TYPES:
            raise ValueError(
                f"Clip '{self.id}': invalid type '{self.type}'. "
                f"Valid: {sorted(CLIP_TYPES)}"
            )
        if not self.duration > 0:
            raise ValueError(f"Clip '{self.id}': duration must be > 0, got {self.duration}")
        if self.width < 0 or self.height < 0:
            raise ValueError(
                f"Clip '{self.id}': size must be >= 0, got {self.width}x{self.height}"
            )
        if not 0.0 <= self.opacity <= 1.0:
            raise ValueError(f"Clip '{self.id}': opacity must be in [0, 1], got {self.opacity}")
        if self.media_type is not None and self.media_type not in MEDIA_TYPES:
            raise ValueError(
                f"Clip '{self.id}': invalid media type '{self.media_type}'. "
                f"Valid: {sorted(MEDIA_TYPES)}"
            )

    @property
    def end(self) -> float:
        return self.start + self.duration

    def is_active(self, time: float) -> bool:
        return self.start <= time < self.end

    @property
    def center(self) -> tuple[float, float]:
        return (self.x + self.width / 2, self.y + self.height / 2)

    @property
    def is_video(self) -> bool:
        if self.media_type == "video":
            return True
        if not self.src:
            return False
        return self.src.startswith(("data:video/", "blob:video/")) or bool(_VIDEO_RE.search(self.src))

    def view_box_values(self) -> tuple[float, float, float, float]:
        """Parsed ``view_box``; falls back to 0 0 100 100 when invalid."""
        if not self.view_box:
            return DEFAULT_VIEW_BOX
        parts = self.view_box.replace(",", " ").split()
        if len(parts) != 4:
            return DEFAULT_VIEW_BOX
        try:
            vx, vy, vw, vh = (float(p) for p in parts)
        except ValueError:
            return DEFAULT_VIEW_BOX
        if vw <= 0 or vh <= 0:
            return DEFAULT_VIEW_BOX
        return (vx, vy, vw, vh)

    def override_map(self) -> dict[str, ElementOverride]:
        return {o.id: o for o in self.overrides}


def source_time(clip: Clip, time: float) -> float:
    """Media timestamp sampled for project time ``time``."""
    return time - clip.start + clip.media_start


def default_mask_shape(width: float, height: float) -> ShapeDescriptor:
    return ShapeDescriptor(
        id=DEFAULT_MASK_SHAPE_ID,
        kind="path",
        d=rect_path(0, 0, width, height),
        x=0.0, y=0.0, width=width, height=height,
        editor_kind="rect",
    )


# ── Track & Timeline ───────────────────────────────────────────────

@dataclass(frozen=True)
class Track:
    id: str
    type: str = "mixed"
    clips: tuple[Clip, ...] = ()

    def __post_init__(self):
        if self.type not in TRACK_TYPES:
            raise ValueError(
                f"Track '{self.id}': invalid type '{self.type}'. "
                f"Valid: {sorted(TRACK_TYPES)}"
            )


def active_clips(tracks, time: float) -> list[tuple[int, Clip]]:
    """Clips active at ``time`` as (track_index, clip), back-most first.

    Sorted by descending track index so track 0 is drawn last.
    """
    active = []
    for index, track in enumerate(tracks):
        for clip in track.clips:
            if clip.is_active(time):
                active.append((index, clip))
    active.sort(key=lambda item: -item[0])
    return active


@dataclass(frozen=True)
class Timeline:
    """Ordered tracks; every mutation returns a new Timeline."""

    tracks: tuple[Track, ...] = ()

    def __post_init__(self):
        seen: set[str] = set()
        for track in self.tracks:
            for clip in track.clips:
                if clip.id in seen:
                    raise ValueError(f"Duplicate clip id: '{clip.id}'")
                seen.add(clip.id)

    @classmethod
    def from_clips(cls, clips) -> "Timeline":
        """One track per clip, in order; track ids are ``track-<i>``."""
        tracks = []
        for index, clip in enumerate(clips):
            track_id = f"track-{index}"
            tracks.append(Track(
                id=track_id,
                type=clip.type,
                clips=(replace(clip, track_id=track_id),),
            ))
        return cls(tuple(tracks))

    # ── Queries ──

    def clips(self):
        for track in self.tracks:
            yield from track.clips

    def find_clip(self, clip_id: str) -> Clip | None:
        for clip in self.clips():
            if clip.id == clip_id:
                return clip
        return None

    def track_index(self, track_id: str) -> int:
        for index, track in enumerate(self.tracks):
            if track.id == track_id:
                return index
        raise ValueError(f"Unknown track: '{track_id}'")

    def active_clips(self, time: float) -> list[tuple[int, Clip]]:
        return active_clips(self.tracks, time)

    @property
    def duration(self) -> float:
        return max((clip.end for clip in self.clips()), default=0.0)

    # ── Edits ──

    def add_clip(self, track_id: str, clip: Clip) -> "Timeline":
        """Append ``clip`` to a track.

        A mask clip without shapes gets a full-box rectangle shape and a
        matching viewBox, so it always has a clip region to edit.
        """
        index = self.track_index(track_id)
        if clip.type == "mask" and not clip.shapes:
            w = clip.width or DEFAULT_MASK_SIZE
            h = clip.height or DEFAULT_MASK_SIZE
            clip = replace(
                clip,
                shapes=(default_mask_shape(w, h),),
                view_box=f"0 0 {w:g} {h:g}",
            )
        clip = replace(clip, track_id=track_id)
        track = self.tracks[index]
        return self._with_track(index, replace(track, clips=track.clips + (clip,)))

    def remove_clip(self, clip_id: str) -> "Timeline":
        return Timeline(tuple(
            replace(t, clips=tuple(c for c in t.clips if c.id != clip_id))
            for t in self.tracks
        ))

    def update_clip(self, clip_id: str, **changes) -> "Timeline":
        """Apply field changes to one clip; unknown ids are a no-op."""
        return Timeline(tuple(
            replace(t, clips=tuple(
                replace(c, **changes) if c.id == clip_id else c for c in t.clips
            ))
            for t in self.tracks
        ))

    def move_clip(self, clip_id: str, track_id: str, **changes) -> "Timeline":
        """Move a clip to another track, optionally updating fields."""
        target = self.track_index(track_id)
        moved = None
        tracks = []
        for track in self.tracks:
            kept = []
            for clip in track.clips:
                if clip.id == clip_id:
                    moved = replace(clip, track_id=track_id, **changes)
                else:
                    kept.append(clip)
            tracks.append(replace(track, clips=tuple(kept)))
        if moved is None:
            return self
        tracks[target] = replace(tracks[target], clips=tracks[target].clips + (moved,))
        return Timeline(tuple(tracks))

    def add_track(self, type: str = "mixed", index: int | None = None) -> "Timeline":
        """Insert an empty track at ``index`` (front-most by default)."""
        count = sum(1 for t in self.tracks if t.type == type) + 1
        track = Track(id=f"{type}-{count}-{uuid.uuid4().hex[:8]}", type=type)
        tracks = list(self.tracks)
        if index is not None and 0 <= index <= len(tracks):
            tracks.insert(index, track)
        else:
            tracks.insert(0, track)
        return Timeline(tuple(tracks))

    def swap_track_contents(self, track_id_1: str, track_id_2: str) -> "Timeline":
        """Exchange the clips of two tracks, keeping track order."""
        i = self.track_index(track_id_1)
        j = self.track_index(track_id_2)
        t1, t2 = self.tracks[i], self.tracks[j]
        tracks = list(self.tracks)
        tracks[i] = replace(t1, clips=tuple(replace(c, track_id=t1.id) for c in t2.clips))
        tracks[j] = replace(t2, clips=tuple(replace(c, track_id=t2.id) for c in t1.clips))
        return Timeline(tuple(tracks))

    def _with_track(self, index: int, track: Track) -> "Timeline":
        tracks = list(self.tracks)
        tracks[index] = track
        return Timeline(tuple(tracks))


# ── JSON interchange ───────────────────────────────────────────────

# (field name, JSON key) for scalar clip fields.
_CLIP_KEYS = [
    ("id", "id"), ("track_id", "trackId"), ("type", "type"),
    ("start", "start"), ("duration", "duration"), ("name", "name"),
    ("src", "src"), ("volume", "volume"),
    ("font_family", "fontFamily"), ("font_size", "fontSize"), ("text", "text"),
    ("width", "width"), ("height", "height"), ("x", "x"), ("y", "y"),
    ("color", "color"), ("opacity", "opacity"), ("rotation", "rotation"),
    ("flip_h", "flipH"), ("flip_v", "flipV"),
    ("media_start", "mediaStart"), ("media_type", "mediaType"),
    ("custom_path", "customPath"), ("view_box", "viewBox"), ("sides", "sides"),
    ("editor_move", "editor_move"), ("editor_scale", "editor_scale"),
    ("editor_rotate", "editor_rotate"), ("attr_rock", "attr_rock"),
    ("image_id", "image_id"), ("shapes_id", "shapes_id"),
    ("max_length", "max_length"),
]


def clip_to_dict(clip: Clip) -> dict:
    data = {}
    for name, key in _CLIP_KEYS:
        value = getattr(clip, name)
        if value is not None:
            data[key] = value
    if clip.crop is not None:
        data["mask"] = clip.crop.to_dict()
    if clip.filter is not None:
        data["filter"] = {
            "brightness": clip.filter.brightness,
            "contrast": clip.filter.contrast,
            "saturate": clip.filter.saturate,
            "blur": clip.filter.blur,
        }
    if clip.shapes or clip.overrides:
        template_data = {s.id: s.to_dict() for s in clip.shapes}
        for override in clip.overrides:
            template_data[override.id] = override.to_dict()
        data["templateData"] = template_data
    return data


def clip_from_dict(data: dict) -> Clip:
    """Build a Clip from its camelCase JSON form.

    ``templateData`` entries carrying a shape ``type`` become shapes; the
    rest are per-element overrides.

    Raises:
        ValueError: On missing ``id``/``type`` or invalid field values.
    """
    for required in ("id", "type"):
        if required not in data:
            raise ValueError(f"Clip is missing required key '{required}'")
    kwargs = {}
    for name, key in _CLIP_KEYS:
        if key in data and data[key] is not None:
            kwargs[name] = data[key]
    for name in ("editor_move", "editor_scale", "editor_rotate", "attr_rock"):
        if name in kwargs:
            kwargs[name] = parse_flag(kwargs[name])
    if data.get("mask"):
        kwargs["crop"] = CropWindow.from_dict(data["mask"])
    if data.get("filter"):
        f = data["filter"]
        kwargs["filter"] = ClipFilter(
            brightness=float(f.get("brightness", 1.0)),
            contrast=float(f.get("contrast", 1.0)),
            saturate=float(f.get("saturate", 1.0)),
            blur=float(f.get("blur", 0.0)),
        )
    shapes, overrides = [], []
    for key, entry in (data.get("templateData") or {}).items():
        if not isinstance(entry, dict):
            continue
        if entry.get("type"):
            shapes.append(ShapeDescriptor.from_dict(key, entry))
        else:
            overrides.append(ElementOverride.from_dict(key, entry))
    kwargs["shapes"] = tuple(shapes)
    kwargs["overrides"] = tuple(overrides)
    return Clip(**kwargs)


def parse_flag(value) -> bool:
    """Annotation flags arrive as "true"/"false" strings or booleans."""
    if isinstance(value, str):
        return value.strip().lower() == "true"
    return bool(value)


def timeline_to_dict(timeline: Timeline) -> list[dict]:
    return [
        {"id": t.id, "type": t.type, "clips": [clip_to_dict(c) for c in t.clips]}
        for t in timeline.tracks
    ]


def timeline_from_dict(data: list[dict]) -> Timeline:
    tracks = []
    for entry in data:
        tracks.append(Track(
            id=entry["id"],
            type=entry.get("type", "mixed"),
            clips=tuple(clip_from_dict(c) for c in entry.get("clips", [])),
        ))
    return Timeline(tuple(tracks))


@dataclass(frozen=True)
class Project:
    """A timeline plus the canvas it is composited onto."""

    timeline: Timeline
    canvas_width: int = 1920
    canvas_height: int = 1080
    duration: float | None = None
    font_manifest: dict = field(default_factory=dict, hash=False)
    image_manifest: dict = field(default_factory=dict, hash=False)

    @property
    def aspect_ratio(self) -> float:
        return self.canvas_width / self.canvas_height

    @property
    def total_duration(self) -> float:
        return self.duration if self.duration is not None else self.timeline.duration


def write_project(path: str | Path, project: Project) -> None:
    data = {
        "canvasWidth": project.canvas_width,
        "canvasHeight": project.canvas_height,
        "aspectRatio": project.aspect_ratio,
        "duration": project.total_duration,
        "fontList": project.font_manifest,
        "imageList": project.image_manifest,
        "tracks": timeline_to_dict(project.timeline),
    }
    Path(path).write_text(json.dumps(data, indent=2))


def read_project(path: str | Path) -> Project:
    """Load a project JSON written by ``write_project``.

    Raises:
        FileNotFoundError: If the file does not exist.
        ValueError: If the document is malformed.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Project not found: {path}")
    try:
        data = json.loads(path.read_text())
    except json.JSONDecodeError as exc:
        raise ValueError(f"{path}: invalid JSON: {exc}") from exc
    if not isinstance(data, dict) or "tracks" not in data:
        raise ValueError(f"{path}: project must be a mapping with a 'tracks' key")
    return Project(
        timeline=timeline_from_dict(data["tracks"]),
        canvas_width=int(data.get("canvasWidth", 1920)),
        canvas_height=int(data.get("canvasHeight", 1080)),
        duration=data.get("duration"),
        font_manifest=data.get("fontList") or {},
        image_manifest=data.get("imageList") or {},
    )
