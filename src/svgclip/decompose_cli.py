"""CLI for template decomposition.

Usage:
    svgclip decompose --svg card.svg --json card.json --category F --output project.json
    svgclip decompose --config svgclip.yaml --output project.json
"""

import argparse
from pathlib import Path

from .config import config_for, setup_logging
from .fonts import FontRegistry
from .measure import MEASURERS, make_measurer
from .model import write_project
from .template import CANVAS_PRESETS, decompose, load_template


def main(args=None):
    parser = argparse.ArgumentParser(
        description="Decompose an SVG template into a timeline of clips.",
    )
    parser.add_argument("--svg", default=None, help="Template SVG (path or URL)")
    parser.add_argument("--json", default=None, help="Template annotation JSON (path or URL)")
    parser.add_argument(
        "--category", choices=sorted(CANVAS_PRESETS), default=None,
        help="Canvas preset: F (1920x1080), S (1080x1920), T (1820x118)",
    )
    parser.add_argument("--duration", type=float, default=None, help="Clip duration in seconds")
    parser.add_argument("--output", required=True, help="Output project JSON path")
    parser.add_argument("--config", default=None, help="Path to svgclip YAML config")
    parser.add_argument(
        "--measurer", choices=sorted(MEASURERS), default=None,
        help="Bounding-box measurer (default from config)",
    )
    parser.add_argument("--verbose", action="store_true", help="Debug logging")
    parsed = parser.parse_args(args)

    setup_logging(parsed.verbose)
    config = config_for(parsed.config)

    # CLI args override config values.
    svg = parsed.svg or config["template"]["svg"]
    annotation = parsed.json or config["template"]["json"]
    if svg is None or annotation is None:
        parser.error("Template requires --svg and --json (or template.svg/json in --config)")
    category = parsed.category or config["project"]["category"]
    duration = parsed.duration if parsed.duration is not None else config["project"]["duration"]
    if duration <= 0:
        parser.error(f"--duration must be > 0, got {duration}")
    options = config["decompose"]

    fonts = FontRegistry(config["fonts"]["dirs"])
    measurer = make_measurer(parsed.measurer or options["measurer"], fonts)

    print(f"Decomposing {svg}  [{category}, {duration:g}s]")
    template = load_template(svg, annotation)
    result = decompose(
        template, category, duration,
        measurer=measurer, fonts=fonts,
        timeout=options["timeout"], precision=options["precision"],
    )

    output = Path(parsed.output)
    output.parent.mkdir(parents=True, exist_ok=True)
    write_project(output, result.to_project(duration))
    print(f"Done: {len(result.clips)} clips -> {output}")


if __name__ == "__main__":
    main()
