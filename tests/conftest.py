"""Shared test fixtures for svgclip tests."""

import io
import json
import subprocess

import pytest
import imageio_ffmpeg
from PIL import Image

from svgclip.common import to_data_uri

_FFMPEG = imageio_ffmpeg.get_ffmpeg_exe()


@pytest.fixture
def source_video(tmp_path):
    """Create a 5-second test video (320x240, 10fps) with audio using ffmpeg.

    Shared across test_common.py, test_frames.py and test_render.py.
    """
    out = tmp_path / "source.mp4"
    subprocess.run(
        [
            _FFMPEG, "-y",
            "-f", "lavfi", "-i", "color=c=blue:s=320x240:d=5:r=10",
            "-f", "lavfi", "-i", "anullsrc=r=44100:cl=mono",
            "-shortest",
            "-c:v", "libx264", "-crf", "28", "-pix_fmt", "yuv420p",
            "-c:a", "aac", "-b:a", "32k",
            str(out),
        ],
        check=True,
        capture_output=True,
    )
    return out


@pytest.fixture
def png_data_uri():
    """A 4x2 solid green PNG as a data URI."""
    buf = io.BytesIO()
    Image.new("RGB", (4, 2), (0, 255, 0)).save(buf, format="PNG")
    return to_data_uri(buf.getvalue(), "image/png")


# Half-size (960x540) template: category F doubles every coordinate.
TEMPLATE_SVG = """\
<svg xmlns="http://www.w3.org/2000/svg" viewBox="0 0 960 540">
  <rect id="bg" x="10" y="20" width="100" height="50" fill="#ff0000"/>
  <g transform="translate(50 0)">
    <path id="logo" d="M 200 100 L 250 100 L 250 150 Z" fill="#00ff00"/>
  </g>
  <text id="title" x="400" y="300" font-size="20" font-family="Arial">Hello</text>
</svg>
"""

TEMPLATE_ANNOTATION = {
    "item": {
        "bg": {"nodeName": "rect", "shapes_id": "bg", "editor_move": "true"},
        "logo": {"nodeName": "path"},
        "title": {"nodeName": "text", "max_length": "20"},
        "missing": {"nodeName": "rect"},
    },
    "font-list": {"Arial": ["title"]},
}


@pytest.fixture
def template_files(tmp_path):
    """(svg path, annotation path) for TEMPLATE_SVG / TEMPLATE_ANNOTATION."""
    svg = tmp_path / "template.svg"
    svg.write_text(TEMPLATE_SVG)
    annotation = tmp_path / "template.json"
    annotation.write_text(json.dumps(TEMPLATE_ANNOTATION))
    return svg, annotation


@pytest.fixture
def template():
    from svgclip.template import load_template
    return load_template(TEMPLATE_SVG, TEMPLATE_ANNOTATION)
