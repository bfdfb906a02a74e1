"""svgclip.shapes — closed-form path generators for primitive shapes.

Every generator is a pure function of the box it fills and returns
absolute path data. The named primitives used by shape clips are in
PRIMITIVE_SHAPES.
"""

import math

from .geometry import Matrix, format_number, transform_path


KAPPA = 0.5522848
STAR_INNER_RATIO = 0.382


def _fmt(*values: float) -> str:
    return " ".join(format_number(v, 4) for v in values)


def points_path(points, closed: bool = True) -> str:
    """M/L path through a list of (x, y) points."""
    points = list(points)
    if not points:
        return ""
    parts = [f"M {_fmt(*points[0])}"]
    parts.extend(f"L {_fmt(*p)}" for p in points[1:])
    if closed:
        parts.append("Z")
    return " ".join(parts)


def rect_path(x: float, y: float, width: float, height: float,
              rx: float = 0.0, ry: float | None = None) -> str:
    """Rectangle, optionally with quadratic rounded corners.

    ``ry`` defaults to ``rx``. Radii are clamped to half the side length.
    """
    if ry is None:
        ry = rx
    rx = max(0.0, min(rx, width / 2))
    ry = max(0.0, min(ry, height / 2))
    if rx == 0 or ry == 0:
        return points_path([
            (x, y), (x + width, y), (x + width, y + height), (x, y + height),
        ])
    right, bottom = x + width, y + height
    return " ".join([
        f"M {_fmt(x + rx, y)}",
        f"L {_fmt(right - rx, y)}",
        f"Q {_fmt(right, y, right, y + ry)}",
        f"L {_fmt(right, bottom - ry)}",
        f"Q {_fmt(right, bottom, right - rx, bottom)}",
        f"L {_fmt(x + rx, bottom)}",
        f"Q {_fmt(x, bottom, x, bottom - ry)}",
        f"L {_fmt(x, y + ry)}",
        f"Q {_fmt(x, y, x + rx, y)}",
        "Z",
    ])


def ellipse_path(x: float, y: float, width: float, height: float) -> str:
    """Ellipse inscribed in the box, as four cubic curves."""
    ox = width / 2 * KAPPA
    oy = height / 2 * KAPPA
    xe, ye = x + width, y + height
    xm, ym = x + width / 2, y + height / 2
    return " ".join([
        f"M {_fmt(x, ym)}",
        f"C {_fmt(x, ym - oy, xm - ox, y, xm, y)}",
        f"C {_fmt(xm + ox, y, xe, ym - oy, xe, ym)}",
        f"C {_fmt(xe, ym + oy, xm + ox, ye, xm, ye)}",
        f"C {_fmt(xm - ox, ye, x, ym + oy, x, ym)}",
        "Z",
    ])


def triangle_path(x: float, y: float, width: float, height: float) -> str:
    """Isosceles triangle pointing up."""
    return points_path([(x + width / 2, y), (x + width, y + height), (x, y + height)])


def star_path(x: float, y: float, width: float, height: float,
              points: int = 5) -> str:
    """Regular star centred in the box, first point at the top."""
    cx, cy = x + width / 2, y + height / 2
    outer = min(width, height) / 2
    inner = outer * STAR_INNER_RATIO
    step = math.pi / points
    vertices = []
    for i in range(points * 2):
        radius = outer if i % 2 == 0 else inner
        angle = step * i - math.pi / 2
        vertices.append((cx + radius * math.cos(angle), cy + radius * math.sin(angle)))
    return points_path(vertices)


def polygon_path(x: float, y: float, width: float, height: float,
                 sides: int = 5) -> str:
    """Regular polygon centred in the box, first vertex at the top."""
    sides = max(3, int(sides))
    cx, cy = x + width / 2, y + height / 2
    radius = min(width, height) / 2
    vertices = []
    for i in range(sides):
        angle = 2 * math.pi * i / sides - math.pi / 2
        vertices.append((cx + radius * math.cos(angle), cy + radius * math.sin(angle)))
    return points_path(vertices)


# ── Named primitives ───────────────────────────────────────────────
# Templates authored on a 100x100 grid, stretched to the clip box.

_UNIT_TEMPLATES = {
    "Arrow Right": "M 0 20 L 60 20 L 60 0 L 100 50 L 60 100 L 60 80 L 0 80 Z",
    "Heart": (
        "M 50 90 L 48 88 C 10 55 0 35 0 20 C 0 10 10 0 25 0 "
        "C 35 0 45 10 50 20 C 55 10 65 0 75 0 C 90 0 100 10 100 20 "
        "C 100 35 90 55 52 88 L 50 90 Z"
    ),
    "Arrow": "M 50 0 L 50 70 M 50 70 L 20 40 M 50 70 L 80 40",
}

PRIMITIVE_SHAPES = {
    "Rectangle", "Circle", "Triangle", "Star", "Polygon", "Hexagon",
    "Arrow Right", "Heart", "Arrow",
}

# Primitives drawn as an outline rather than filled.
STROKED_PRIMITIVES = {"Arrow"}


def primitive_path(name: str, width: float, height: float,
                   sides: int | None = None) -> str:
    """Path for a named primitive filling a ``width`` x ``height`` box.

    Raises:
        ValueError: If ``name`` is not a known primitive.
    """
    if name == "Rectangle":
        return rect_path(0, 0, width, height)
    if name == "Circle":
        return ellipse_path(0, 0, width, height)
    if name == "Triangle":
        return triangle_path(0, 0, width, height)
    if name == "Star":
        return star_path(0, 0, width, height)
    if name == "Polygon":
        return polygon_path(0, 0, width, height, sides or 5)
    if name == "Hexagon":
        return polygon_path(0, 0, width, height, sides or 6)
    if name in _UNIT_TEMPLATES:
        return transform_path(
            _UNIT_TEMPLATES[name],
            Matrix.scale(width / 100, height / 100),
            precision=4,
        )
    raise ValueError(
        f"Unknown primitive shape: '{name}'. "
        f"Valid: {sorted(PRIMITIVE_SHAPES)}"
    )
