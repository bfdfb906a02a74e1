"""Subcommand dispatcher for svgclip.

Usage:
    svgclip decompose --svg template.svg --json template.json --output project.json
    svgclip render    --timeline project.json --time 2.5 --output frame.png
    svgclip export    --timeline project.json --output out.mp4
"""

import argparse
import sys


def main(args=None):
    parser = argparse.ArgumentParser(
        prog="svgclip",
        description="Decompose SVG templates into timelines and render them to images and video.",
    )
    subparsers = parser.add_subparsers(dest="command")

    # Register subcommands. Each delegates to its own module's main().
    subparsers.add_parser("decompose", help="Turn an SVG template pair into a project JSON")
    subparsers.add_parser("render", help="Render one timeline frame to an image")
    subparsers.add_parser("export", help="Export a timeline to MP4 or GIF")

    # Parse only the subcommand name, pass the rest to the subcommand's parser.
    parsed, remaining = parser.parse_known_args(args)

    if parsed.command is None:
        parser.print_help()
        sys.exit(1)

    known_commands = {"decompose", "render", "export"}
    if parsed.command not in known_commands:
        parser.print_help()
        sys.exit(1)

    if parsed.command == "decompose":
        from .decompose_cli import main as decompose_main
        decompose_main(remaining)
    elif parsed.command == "render":
        from .render_cli import main as render_main
        render_main(remaining)
    elif parsed.command == "export":
        from .export_cli import main as export_main
        export_main(remaining)


if __name__ == "__main__":
    main()
