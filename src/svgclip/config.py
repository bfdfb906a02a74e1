"""Config loader for svgclip.

Parses a YAML config, resolves ${path} variables, fills defaults and
validates values. Every section is optional:

    paths:     {assets: /data/templates}
    project:   {category: F, duration: 10, background: "#000000"}
    template:  {svg: ${assets}/a.svg, json: ${assets}/a.json}
    decompose: {measurer: geometric, timeout: 3.0, precision: 2}
    fonts:     {dirs: [${assets}/font]}
    export:    {fps: 30, workers: 4, batch_size: 30, gif_max_dimension: 640}
    services:  {extract_frames: null, render_video: null, timeout: 300}

``services`` URLs select the HTTP collaborators; null means the local
ffmpeg implementations.
"""

import copy
import logging
from pathlib import Path

import yaml

from .common import parse_hex_color, resolve_path_vars
from .measure import MEASURERS
from .template import CANVAS_PRESETS


# ── Defaults ───────────────────────────────────────────────────────

DEFAULTS = {
    "project": {"category": "F", "duration": 10.0, "background": "#000000"},
    "template": {"svg": None, "json": None},
    "decompose": {"measurer": "geometric", "timeout": 3.0, "precision": 2},
    "fonts": {"dirs": []},
    "export": {"fps": 30, "workers": 4, "batch_size": 30, "gif_max_dimension": 640},
    "services": {"extract_frames": None, "render_video": None, "timeout": 300.0},
}


# ── Config loading ─────────────────────────────────────────────────

def default_config() -> dict:
    """Validated defaults, as load_config would return for an empty file."""
    return _normalize({}, {})


def load_config(config_path: str | Path) -> dict:
    """Load, validate and normalize an svgclip YAML config.

    Processing pipeline:
      1. Parse YAML.
      2. Resolve ${path} variables in every string value.
      3. Merge each section over DEFAULTS.
      4. Validate enums and numeric ranges; parse the background colour.

    Args:
        config_path: Path to the YAML config file.

    Returns:
        Normalized config dict.

    Raises:
        ValueError: Unknown section or key, or an invalid value.
        FileNotFoundError: Missing config file.
    """
    with open(config_path) as f:
        raw = yaml.safe_load(f) or {}
    if not isinstance(raw, dict):
        raise ValueError(f"{config_path}: config must be a mapping")
    paths = raw.pop("paths", None) or {}
    return _normalize(raw, paths)


def _normalize(raw: dict, paths: dict) -> dict:
    unknown = set(raw) - set(DEFAULTS)
    if unknown:
        raise ValueError(f"Unknown config section(s): {sorted(unknown)}. Valid: {sorted(DEFAULTS)}")

    config = copy.deepcopy(DEFAULTS)
    for section, values in raw.items():
        if values is None:
            continue
        if not isinstance(values, dict):
            raise ValueError(f"Config section '{section}' must be a mapping")
        bad = set(values) - set(DEFAULTS[section])
        if bad:
            raise ValueError(
                f"{section}: unknown key(s) {sorted(bad)}. Valid: {sorted(DEFAULTS[section])}"
            )
        config[section].update(_resolve_paths(values, paths))
    config["paths"] = dict(paths)

    _validate(config)
    config["project"]["background"] = parse_hex_color(config["project"]["background"])
    return config


def _resolve_paths(obj, paths: dict):
    """Recursively resolve ${var} in all string values."""
    if isinstance(obj, str):
        return resolve_path_vars(obj, paths)
    elif isinstance(obj, dict):
        return {k: _resolve_paths(v, paths) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [_resolve_paths(item, paths) for item in obj]
    return obj


def _positive(section: dict, key: str, name: str, integer: bool = False) -> None:
    value = section[key]
    kind = int if integer else (int, float)
    if isinstance(value, bool) or not isinstance(value, kind) or value <= 0:
        expected = "a positive integer" if integer else "a positive number"
        raise ValueError(f"{name}.{key} must be {expected}, got {value!r}")


def _validate(config: dict) -> None:
    project = config["project"]
    if project["category"] not in CANVAS_PRESETS:
        raise ValueError(
            f"project.category: unknown category '{project['category']}'. "
            f"Valid: {sorted(CANVAS_PRESETS)}"
        )
    _positive(project, "duration", "project")
    background = project["background"]
    if not isinstance(background, str) or len(background.lstrip("#")) not in (3, 6):
        raise ValueError(f"project.background must be a hex colour, got {background!r}")

    decompose = config["decompose"]
    if decompose["measurer"] not in MEASURERS:
        raise ValueError(
            f"decompose.measurer: unknown measurer '{decompose['measurer']}'. "
            f"Valid: {sorted(MEASURERS)}"
        )
    _positive(decompose, "timeout", "decompose")
    precision = decompose["precision"]
    if precision is not None and (isinstance(precision, bool) or not isinstance(precision, int) or precision < 0):
        raise ValueError(f"decompose.precision must be a non-negative integer or null, got {precision!r}")

    dirs = config["fonts"]["dirs"]
    if not isinstance(dirs, list) or not all(isinstance(d, str) for d in dirs):
        raise ValueError(f"fonts.dirs must be a list of paths, got {dirs!r}")

    export = config["export"]
    _positive(export, "fps", "export")
    for key in ("workers", "batch_size", "gif_max_dimension"):
        _positive(export, key, "export", integer=True)

    services = config["services"]
    for key in ("extract_frames", "render_video"):
        url = services[key]
        if url is not None and not (isinstance(url, str) and url.startswith(("http://", "https://"))):
            raise ValueError(f"services.{key} must be an http(s) URL or null, got {url!r}")
    _positive(services, "timeout", "services")


def config_for(config_path: str | Path | None) -> dict:
    """load_config(config_path), or the defaults when no path is given."""
    return load_config(config_path) if config_path else default_config()


def setup_logging(verbose: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
