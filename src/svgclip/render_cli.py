"""CLI for rendering a single timeline frame.

Usage:
    svgclip render --timeline project.json --time 2.5 --output frame.png
"""

import argparse
from pathlib import Path

from .config import config_for, setup_logging
from .export import export_image
from .fonts import FontRegistry
from .model import read_project


def main(args=None):
    parser = argparse.ArgumentParser(
        description="Render the timeline frame at a given time to PNG or JPEG.",
    )
    parser.add_argument("--timeline", required=True, help="Project JSON from 'svgclip decompose'")
    parser.add_argument("--time", type=float, default=0.0, help="Timeline time in seconds")
    parser.add_argument("--output", required=True, help="Output image path (.png or .jpg)")
    parser.add_argument("--width", type=int, default=None, help="Output width (default: canvas width)")
    parser.add_argument("--config", default=None, help="Path to svgclip YAML config")
    parser.add_argument("--verbose", action="store_true", help="Debug logging")
    parsed = parser.parse_args(args)

    if parsed.time < 0:
        parser.error(f"--time must be >= 0, got {parsed.time}")
    if parsed.width is not None and parsed.width <= 0:
        parser.error(f"--width must be > 0, got {parsed.width}")

    setup_logging(parsed.verbose)
    config = config_for(parsed.config)
    project = read_project(parsed.timeline)

    result = export_image(
        project, parsed.output, parsed.time,
        width=parsed.width,
        fonts=FontRegistry(config["fonts"]["dirs"]),
        background=config["project"]["background"],
        base=str(Path(parsed.timeline).resolve().parent),
    )
    for frame, clip_ids in result.skipped_clips.items():
        print(f"  Skipped clips at frame {frame}: {', '.join(clip_ids)}")
    print(f"Done: {result.path} ({result.width}x{result.height})")


if __name__ == "__main__":
    main()
