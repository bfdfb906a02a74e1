"""CLI for exporting a timeline to MP4 or GIF.

Usage:
    svgclip export --timeline project.json --output out.mp4 --fps 30
    svgclip export --timeline project.json --output out.gif

Frame extraction and encoding use the HTTP services named under
``services`` in the config when set, the bundled ffmpeg otherwise.
"""

import argparse
from pathlib import Path

from .config import config_for, setup_logging
from .export import (
    DEFAULT_GIF_FPS,
    HttpVideoEncoder,
    LocalVideoEncoder,
    export_gif,
    export_video,
)
from .fonts import FontRegistry
from .frames import HttpFrameExtractor, LocalFrameExtractor
from .model import read_project


def _progress(done: int, total: int) -> None:
    if done == total or done % 30 == 0:
        print(f"  Rendered {done}/{total} frames")


def main(args=None):
    parser = argparse.ArgumentParser(
        description="Export a timeline to MP4 video or animated GIF.",
    )
    parser.add_argument("--timeline", required=True, help="Project JSON from 'svgclip decompose'")
    parser.add_argument("--output", required=True, help="Output path (.mp4 or .gif)")
    parser.add_argument("--fps", type=float, default=None, help="Frame rate (default from config; GIF: 10)")
    parser.add_argument("--workers", type=int, default=None, help="Frame render threads")
    parser.add_argument("--width", type=int, default=None, help="Output width (MP4 only)")
    parser.add_argument("--config", default=None, help="Path to svgclip YAML config")
    parser.add_argument("--verbose", action="store_true", help="Debug logging")
    parsed = parser.parse_args(args)

    suffix = Path(parsed.output).suffix.lower()
    if suffix not in (".mp4", ".gif"):
        parser.error(f"--output must end in .mp4 or .gif, got '{suffix or parsed.output}'")
    if parsed.fps is not None and parsed.fps <= 0:
        parser.error(f"--fps must be > 0, got {parsed.fps}")
    if parsed.workers is not None and parsed.workers < 1:
        parser.error(f"--workers must be >= 1, got {parsed.workers}")
    if parsed.width is not None and parsed.width <= 0:
        parser.error(f"--width must be > 0, got {parsed.width}")

    setup_logging(parsed.verbose)
    config = config_for(parsed.config)
    export_cfg = config["export"]
    services = config["services"]
    project = read_project(parsed.timeline)
    base = str(Path(parsed.timeline).resolve().parent)

    if services["extract_frames"]:
        extractor = HttpFrameExtractor(services["extract_frames"], timeout=services["timeout"])
    else:
        extractor = LocalFrameExtractor(base, timeout=services["timeout"])

    common = dict(
        workers=parsed.workers or export_cfg["workers"],
        extractor=extractor,
        batch_size=export_cfg["batch_size"],
        fonts=FontRegistry(config["fonts"]["dirs"]),
        base=base,
        background=config["project"]["background"],
        progress=_progress,
    )

    print(f"Exporting {parsed.timeline}  ({project.total_duration:g}s) -> {parsed.output}")
    if suffix == ".gif":
        result = export_gif(
            project, parsed.output,
            fps=parsed.fps or DEFAULT_GIF_FPS,
            max_dimension=export_cfg["gif_max_dimension"],
            **common,
        )
    else:
        if services["render_video"]:
            encoder = HttpVideoEncoder(services["render_video"], timeout=services["timeout"])
        else:
            encoder = LocalVideoEncoder(base, timeout=services["timeout"])
        result = export_video(
            project, parsed.output,
            fps=parsed.fps or export_cfg["fps"],
            width=parsed.width, encoder=encoder,
            **common,
        )

    for source, error in result.failed_sources.items():
        print(f"  Frame prefetch failed for {source[:60]}: {error}")
    if result.skipped_clips:
        print(f"  {len(result.skipped_clips)} frame(s) rendered with skipped clips")
    print(f"Done: {result.path} ({result.frame_count} frames, {result.width}x{result.height})")


if __name__ == "__main__":
    main()
