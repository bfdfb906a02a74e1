"""svgclip.geometry — affine matrices, path parsing, transformation and bounds.

Pure functions, no I/O. Everything here works on the SVG path mini-language:
paths are parsed into PathCommand tuples, normalized to absolute
M/L/C/Q/Z, mapped through a Matrix and serialized back to strings.

Malformed input never raises: unparseable paths yield empty results and
non-numeric operands are filtered out, so NaN never enters the geometry.
"""

import math
import re
from dataclasses import dataclass
from typing import NamedTuple


NEAR_ZERO = 1e-14
ANGLE_EPSILON = 1e-10

# Decimal places kept when serializing transformed paths. Callers that
# re-transform the same path many times can pass a higher precision (or
# None) to avoid accumulated drift.
DEFAULT_PRECISION = 2


# ── Matrix ─────────────────────────────────────────────────────────

@dataclass(frozen=True)
class Matrix:
    """2D affine transform [a c e; b d f; 0 0 1].

    ``m1 @ m2`` is the standard matrix product: the result applies ``m2``
    first, then ``m1`` (same order as an SVG transform list).
    """

    a: float = 1.0
    b: float = 0.0
    c: float = 0.0
    d: float = 1.0
    e: float = 0.0
    f: float = 0.0

    @classmethod
    def identity(cls) -> "Matrix":
        return cls()

    @classmethod
    def translate(cls, tx: float, ty: float = 0.0) -> "Matrix":
        return cls(1.0, 0.0, 0.0, 1.0, tx, ty)

    @classmethod
    def scale(cls, sx: float, sy: float | None = None) -> "Matrix":
        return cls(sx, 0.0, 0.0, sx if sy is None else sy, 0.0, 0.0)

    @classmethod
    def rotate(cls, degrees: float, cx: float = 0.0, cy: float = 0.0) -> "Matrix":
        rad = math.radians(degrees)
        cos, sin = math.cos(rad), math.sin(rad)
        rot = cls(cos, sin, -sin, cos, 0.0, 0.0)
        if cx or cy:
            return cls.translate(cx, cy) @ rot @ cls.translate(-cx, -cy)
        return rot

    @classmethod
    def skew_x(cls, degrees: float) -> "Matrix":
        return cls(1.0, 0.0, math.tan(math.radians(degrees)), 1.0, 0.0, 0.0)

    @classmethod
    def skew_y(cls, degrees: float) -> "Matrix":
        return cls(1.0, math.tan(math.radians(degrees)), 0.0, 1.0, 0.0, 0.0)

    def multiply(self, other: "Matrix") -> "Matrix":
        return Matrix(
            self.a * other.a + self.c * other.b,
            self.b * other.a + self.d * other.b,
            self.a * other.c + self.c * other.d,
            self.b * other.c + self.d * other.d,
            self.a * other.e + self.c * other.f + self.e,
            self.b * other.e + self.d * other.f + self.f,
        )

    def __matmul__(self, other: "Matrix") -> "Matrix":
        return self.multiply(other)

    def apply(self, x: float, y: float) -> tuple[float, float]:
        return (self.a * x + self.c * y + self.e, self.b * x + self.d * y + self.f)

    def apply_vector(self, x: float, y: float) -> tuple[float, float]:
        """Apply only the linear part (no translation)."""
        return (self.a * x + self.c * y, self.b * x + self.d * y)

    @property
    def determinant(self) -> float:
        return self.a * self.d - self.b * self.c

    @property
    def linear(self) -> "Matrix":
        return Matrix(self.a, self.b, self.c, self.d, 0.0, 0.0)

    def inverse(self) -> "Matrix":
        """Return the inverse transform.

        Raises:
            ValueError: If the matrix is singular.
        """
        det = self.determinant
        if abs(det) < NEAR_ZERO:
            raise ValueError(f"Matrix is not invertible (determinant {det})")
        return Matrix(
            self.d / det,
            -self.b / det,
            -self.c / det,
            self.a / det,
            (self.c * self.f - self.d * self.e) / det,
            (self.b * self.e - self.a * self.f) / det,
        )

    def is_identity(self) -> bool:
        return (
            abs(self.a - 1.0) < NEAR_ZERO
            and abs(self.b) < NEAR_ZERO
            and abs(self.c) < NEAR_ZERO
            and abs(self.d - 1.0) < NEAR_ZERO
            and abs(self.e) < NEAR_ZERO
            and abs(self.f) < NEAR_ZERO
        )

    def to_svg(self, precision: int | None = 6) -> str:
        values = " ".join(
            format_number(v, precision)
            for v in (self.a, self.b, self.c, self.d, self.e, self.f)
        )
        return f"matrix({values})"


IDENTITY = Matrix()

_TRANSFORM_RE = re.compile(
    r"(matrix|translate|scale|rotate|skewX|skewY)\s*\(([^)]*)\)"
)
_NUMBER_RE = re.compile(r"[-+]?(?:\d+\.?\d*|\.\d+)(?:[eE][-+]?\d+)?")


def parse_numbers(text: str | None) -> list[float]:
    """Extract every finite number from a string, ignoring junk tokens."""
    if not text:
        return []
    values = []
    for token in _NUMBER_RE.findall(text):
        value = float(token)
        if math.isfinite(value):
            values.append(value)
    return values


def parse_transform(attr: str | None) -> Matrix:
    """Parse an SVG ``transform`` attribute into a single Matrix.

    Unknown or malformed entries are ignored.
    """
    result = IDENTITY
    if not attr:
        return result
    for name, args in _TRANSFORM_RE.findall(attr):
        nums = parse_numbers(args)
        if name == "matrix":
            if len(nums) < 6:
                continue
            m = Matrix(*nums[:6])
        elif name == "translate":
            if not nums:
                continue
            m = Matrix.translate(nums[0], nums[1] if len(nums) > 1 else 0.0)
        elif name == "scale":
            if not nums:
                continue
            m = Matrix.scale(nums[0], nums[1] if len(nums) > 1 else None)
        elif name == "rotate":
            if not nums:
                continue
            if len(nums) >= 3:
                m = Matrix.rotate(nums[0], nums[1], nums[2])
            else:
                m = Matrix.rotate(nums[0])
        elif name == "skewX":
            if not nums:
                continue
            m = Matrix.skew_x(nums[0])
        else:
            if not nums:
                continue
            m = Matrix.skew_y(nums[0])
        result = result @ m
    return result


class TransformParts(NamedTuple):
    scale_x: float
    scale_y: float
    translate_x: float
    translate_y: float
    angle: float  # degrees

    @property
    def has_rotation(self) -> bool:
        return self.angle != 0.0


def decompose_transform(m: Matrix) -> TransformParts:
    """Split a matrix into scale, translation and rotation.

    A reflection (negative determinant) is carried by negating the smaller
    of the two scales. Angles within 1e-10 rad of zero are reported as 0.
    """
    scale_x = math.hypot(m.a, m.b)
    scale_y = math.hypot(m.c, m.d)
    if m.determinant < 0:
        if scale_x < scale_y:
            scale_x = -scale_x
        else:
            scale_y = -scale_y
    angle = 0.0
    if scale_x:
        rad = math.atan2(m.b / scale_x, m.a / scale_x)
        if abs(rad) >= ANGLE_EPSILON:
            angle = math.degrees(rad)
    return TransformParts(scale_x, scale_y, m.e, m.f, angle)


# ── Bounding boxes ─────────────────────────────────────────────────

@dataclass(frozen=True)
class BoundingBox:
    x: float = 0.0
    y: float = 0.0
    width: float = 0.0
    height: float = 0.0

    @property
    def right(self) -> float:
        return self.x + self.width

    @property
    def bottom(self) -> float:
        return self.y + self.height

    @property
    def center(self) -> tuple[float, float]:
        return (self.x + self.width / 2, self.y + self.height / 2)

    @property
    def is_empty(self) -> bool:
        return self.width <= 0 and self.height <= 0

    def contains(self, x: float, y: float, tolerance: float = 1e-9) -> bool:
        return (
            self.x - tolerance <= x <= self.right + tolerance
            and self.y - tolerance <= y <= self.bottom + tolerance
        )

    def union(self, other: "BoundingBox") -> "BoundingBox":
        return bounds_of_points([
            (self.x, self.y), (self.right, self.bottom),
            (other.x, other.y), (other.right, other.bottom),
        ])

    def to_view_box(self) -> str:
        return " ".join(
            format_number(v, 3) for v in (self.x, self.y, self.width, self.height)
        )


def bounds_of_points(points) -> BoundingBox:
    """Axis-aligned box around a sequence of (x, y) points."""
    points = list(points)
    if not points:
        return BoundingBox()
    xs = [p[0] for p in points]
    ys = [p[1] for p in points]
    return BoundingBox(min(xs), min(ys), max(xs) - min(xs), max(ys) - min(ys))


def transform_box(x: float, y: float, width: float, height: float,
                  m: Matrix) -> BoundingBox:
    """Axis-aligned box of a rectangle mapped through ``m``."""
    corners = [
        m.apply(x, y), m.apply(x + width, y),
        m.apply(x + width, y + height), m.apply(x, y + height),
    ]
    return bounds_of_points(corners)


# ── Path parsing ───────────────────────────────────────────────────

class PathCommand(NamedTuple):
    command: str
    params: tuple[float, ...]


_COMMANDS = "MmLlHhVvCcSsQqTtAaZz"
_COMMAND_RE = re.compile(r"([MmLlHhVvCcSsQqTtAaZz])([^MmLlHhVvCcSsQqTtAaZz]*)")
_ARITY = {"M": 2, "L": 2, "H": 1, "V": 1, "C": 6, "S": 4, "Q": 4, "T": 2, "A": 7, "Z": 0}
_ARC_FLAG_RE = re.compile(r"[\s,]*([01])")
_ARC_NUMBER_RE = re.compile(r"[\s,]*(" + _NUMBER_RE.pattern + ")")


def _arc_numbers(text: str) -> list[float]:
    # Arc flags may be packed without separators ("a5 5 0 01 10 10").
    values: list[float] = []
    pos = 0
    while pos < len(text):
        slot = len(values) % 7
        if slot in (3, 4):
            match = _ARC_FLAG_RE.match(text, pos)
        else:
            match = _ARC_NUMBER_RE.match(text, pos)
        if not match:
            break
        value = float(match.group(1))
        if not math.isfinite(value):
            break
        values.append(value)
        pos = match.end()
    return values


def parse_path(d: str | None) -> list[PathCommand]:
    """Parse path data into one PathCommand per segment.

    Repeated parameter groups are split into separate commands (extra
    pairs after a moveto become lineto). Incomplete trailing groups are
    dropped. Input that does not start with a command letter yields [].
    """
    if not d:
        return []
    stripped = d.strip()
    if not stripped or stripped[0] not in _COMMANDS:
        return []

    commands: list[PathCommand] = []
    for cmd, args in _COMMAND_RE.findall(stripped):
        upper = cmd.upper()
        arity = _ARITY[upper]
        if arity == 0:
            commands.append(PathCommand(cmd, ()))
            continue
        nums = _arc_numbers(args) if upper == "A" else parse_numbers(args)
        for i in range(0, len(nums) - arity + 1, arity):
            group = tuple(nums[i:i + arity])
            if i and upper == "M":
                commands.append(PathCommand("l" if cmd == "m" else "L", group))
            else:
                commands.append(PathCommand(cmd, group))
    return commands


def _vector_angle(ux: float, uy: float, vx: float, vy: float) -> float:
    return math.atan2(ux * vy - uy * vx, ux * vx + uy * vy)


def _arc_to_cubics(x1, y1, rx, ry, angle, large_arc, sweep, x2, y2):
    """Convert an endpoint-parameterized arc into cubic Bézier segments."""
    if x1 == x2 and y1 == y2:
        return []
    rx, ry = abs(rx), abs(ry)
    if rx == 0 or ry == 0:
        return [PathCommand("L", (x2, y2))]

    phi = math.radians(angle)
    cos_phi, sin_phi = math.cos(phi), math.sin(phi)
    dx, dy = (x1 - x2) / 2, (y1 - y2) / 2
    x1p = cos_phi * dx + sin_phi * dy
    y1p = -sin_phi * dx + cos_phi * dy

    lam = (x1p * x1p) / (rx * rx) + (y1p * y1p) / (ry * ry)
    if lam > 1:
        root = math.sqrt(lam)
        rx, ry = rx * root, ry * root

    num = rx * rx * ry * ry - rx * rx * y1p * y1p - ry * ry * x1p * x1p
    den = rx * rx * y1p * y1p + ry * ry * x1p * x1p
    coef = math.sqrt(max(0.0, num / den)) if den else 0.0
    if bool(large_arc) == bool(sweep):
        coef = -coef
    cxp = coef * rx * y1p / ry
    cyp = -coef * ry * x1p / rx
    cx = cos_phi * cxp - sin_phi * cyp + (x1 + x2) / 2
    cy = sin_phi * cxp + cos_phi * cyp + (y1 + y2) / 2

    ux, uy = (x1p - cxp) / rx, (y1p - cyp) / ry
    vx, vy = (-x1p - cxp) / rx, (-y1p - cyp) / ry
    theta1 = _vector_angle(1.0, 0.0, ux, uy)
    dtheta = _vector_angle(ux, uy, vx, vy)
    if not sweep and dtheta > 0:
        dtheta -= 2 * math.pi
    elif sweep and dtheta < 0:
        dtheta += 2 * math.pi

    segments = max(1, math.ceil(abs(dtheta) / (math.pi / 2) - 1e-9))
    delta = dtheta / segments
    t = 4.0 / 3.0 * math.tan(delta / 4)

    def _map(px, py):
        return (
            cx + rx * px * cos_phi - ry * py * sin_phi,
            cy + rx * px * sin_phi + ry * py * cos_phi,
        )

    cubics = []
    for i in range(segments):
        a1 = theta1 + i * delta
        a2 = a1 + delta
        cos1, sin1 = math.cos(a1), math.sin(a1)
        cos2, sin2 = math.cos(a2), math.sin(a2)
        c1 = _map(cos1 - t * sin1, sin1 + t * cos1)
        c2 = _map(cos2 + t * sin2, sin2 - t * cos2)
        end = (x2, y2) if i == segments - 1 else _map(cos2, sin2)
        cubics.append(PathCommand("C", (*c1, *c2, *end)))
    return cubics


def normalize_path(path: str | list[PathCommand]) -> list[PathCommand]:
    """Convert a path to absolute M/L/C/Q/Z commands only.

    H/V become L, S/T become C/Q with reflected control points, and arcs
    are approximated with cubic curves.
    """
    commands = parse_path(path) if isinstance(path, str) else list(path)
    out: list[PathCommand] = []
    x = y = 0.0
    start_x = start_y = 0.0
    last_cubic: tuple[float, float] | None = None
    last_quad: tuple[float, float] | None = None

    for cmd, params in commands:
        upper = cmd.upper()
        rel = cmd != upper
        ox, oy = (x, y) if rel else (0.0, 0.0)
        p = list(params)
        next_cubic = next_quad = None

        if upper == "Z":
            out.append(PathCommand("Z", ()))
            x, y = start_x, start_y
        elif upper == "M":
            x, y = p[0] + ox, p[1] + oy
            start_x, start_y = x, y
            out.append(PathCommand("M", (x, y)))
        elif upper == "L":
            x, y = p[0] + ox, p[1] + oy
            out.append(PathCommand("L", (x, y)))
        elif upper == "H":
            x = p[0] + ox
            out.append(PathCommand("L", (x, y)))
        elif upper == "V":
            y = p[0] + oy
            out.append(PathCommand("L", (x, y)))
        elif upper == "C":
            x1, y1 = p[0] + ox, p[1] + oy
            x2, y2 = p[2] + ox, p[3] + oy
            x, y = p[4] + ox, p[5] + oy
            out.append(PathCommand("C", (x1, y1, x2, y2, x, y)))
            next_cubic = (x2, y2)
        elif upper == "S":
            if last_cubic is not None:
                x1, y1 = 2 * x - last_cubic[0], 2 * y - last_cubic[1]
            else:
                x1, y1 = x, y
            x2, y2 = p[0] + ox, p[1] + oy
            x, y = p[2] + ox, p[3] + oy
            out.append(PathCommand("C", (x1, y1, x2, y2, x, y)))
            next_cubic = (x2, y2)
        elif upper == "Q":
            x1, y1 = p[0] + ox, p[1] + oy
            x, y = p[2] + ox, p[3] + oy
            out.append(PathCommand("Q", (x1, y1, x, y)))
            next_quad = (x1, y1)
        elif upper == "T":
            if last_quad is not None:
                x1, y1 = 2 * x - last_quad[0], 2 * y - last_quad[1]
            else:
                x1, y1 = x, y
            x, y = p[0] + ox, p[1] + oy
            out.append(PathCommand("Q", (x1, y1, x, y)))
            next_quad = (x1, y1)
        elif upper == "A":
            ex, ey = p[5] + ox, p[6] + oy
            out.extend(_arc_to_cubics(x, y, p[0], p[1], p[2], p[3], p[4], ex, ey))
            x, y = ex, ey

        last_cubic, last_quad = next_cubic, next_quad
    return out


# ── Serialization ──────────────────────────────────────────────────

def format_number(value: float, precision: int | None = DEFAULT_PRECISION) -> str:
    """Serialize a number compactly ("10", "1.5", "-0.25").

    ``precision=None`` keeps 12 significant digits instead of rounding to
    a fixed number of decimals.
    """
    if precision is None:
        text = f"{value:.12g}"
    else:
        text = f"{value:.{precision}f}"
        if "." in text:
            text = text.rstrip("0").rstrip(".")
    if text in ("-0", ""):
        text = "0"
    return text


def serialize_path(commands: list[PathCommand],
                   precision: int | None = DEFAULT_PRECISION) -> str:
    parts = []
    for cmd, params in commands:
        if params:
            parts.append(cmd + " " + " ".join(format_number(v, precision) for v in params))
        else:
            parts.append(cmd)
    return " ".join(parts)


# ── Transform & bounds ─────────────────────────────────────────────

def transform_path(path: str, matrix: Matrix,
                   precision: int | None = DEFAULT_PRECISION) -> str:
    """Map every anchor and control point of ``path`` through ``matrix``.

    The path is normalized first, so horizontal/vertical segments survive
    rotation. Returns "" for unparseable input.
    """
    out = []
    for cmd, params in normalize_path(path):
        mapped: list[float] = []
        for i in range(0, len(params), 2):
            mapped.extend(matrix.apply(params[i], params[i + 1]))
        out.append(PathCommand(cmd, tuple(mapped)))
    return serialize_path(out, precision)


def path_points(path: str | list[PathCommand]) -> list[tuple[float, float]]:
    """Every anchor and control point of the normalized path."""
    points = []
    for _, params in normalize_path(path):
        for i in range(0, len(params), 2):
            points.append((params[i], params[i + 1]))
    return points


def bounds_of_path(path: str | list[PathCommand]) -> BoundingBox:
    """Loose bounds over all anchors and control points.

    Control points are included, so curves are never exceeded but the box
    may be larger than the drawn shape. Empty or unparseable input gives a
    zero box.
    """
    return bounds_of_points(path_points(path))


def flatten_path(path: str | list[PathCommand], curve_segments: int = 16,
                 ) -> list[tuple[list[tuple[float, float]], bool]]:
    """Approximate a path with polylines, one per subpath.

    Returns a list of ``(points, closed)`` pairs. Subpaths with fewer than
    two points are dropped.
    """
    subpaths: list[tuple[list[tuple[float, float]], bool]] = []
    points: list[tuple[float, float]] = []
    x = y = 0.0
    start = (0.0, 0.0)
    quad_segments = max(2, (curve_segments * 3) // 4)

    def _flush(closed: bool):
        if len(points) >= 2:
            subpaths.append((points, closed))

    for cmd, p in normalize_path(path):
        if cmd == "M":
            _flush(False)
            x, y = p
            start = (x, y)
            points = [start]
            continue
        if not points:
            points = [(x, y)]
        if cmd == "L":
            x, y = p
            points.append((x, y))
        elif cmd == "C":
            x0, y0 = x, y
            for i in range(1, curve_segments + 1):
                t = i / curve_segments
                mt = 1 - t
                points.append((
                    mt ** 3 * x0 + 3 * mt * mt * t * p[0] + 3 * mt * t * t * p[2] + t ** 3 * p[4],
                    mt ** 3 * y0 + 3 * mt * mt * t * p[1] + 3 * mt * t * t * p[3] + t ** 3 * p[5],
                ))
            x, y = p[4], p[5]
        elif cmd == "Q":
            x0, y0 = x, y
            for i in range(1, quad_segments + 1):
                t = i / quad_segments
                mt = 1 - t
                points.append((
                    mt * mt * x0 + 2 * mt * t * p[0] + t * t * p[2],
                    mt * mt * y0 + 2 * mt * t * p[1] + t * t * p[3],
                ))
            x, y = p[2], p[3]
        elif cmd == "Z":
            _flush(True)
            x, y = start
            points = [start]
    _flush(False)
    return subpaths
