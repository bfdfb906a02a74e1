"""Tests for the subcommand dispatcher and the CLI commands."""

import json

import pytest
import yaml
from PIL import Image

from svgclip.main import main
from svgclip.model import read_project


class TestMainDispatcher:
    def test_no_subcommand_shows_help(self, capsys):
        with pytest.raises(SystemExit) as exc_info:
            main([])
        assert exc_info.value.code != 0  # should error without subcommand
        assert "decompose" in capsys.readouterr().out

    def test_decompose_subcommand_exists(self):
        """Subcommand is recognized; its own parser fails on missing --output."""
        with pytest.raises(SystemExit):
            main(["decompose"])

    def test_render_subcommand_exists(self):
        with pytest.raises(SystemExit):
            main(["render"])

    def test_export_subcommand_exists(self):
        with pytest.raises(SystemExit):
            main(["export"])

    def test_invalid_subcommand_errors(self):
        with pytest.raises(SystemExit) as exc_info:
            main(["nonexistent"])
        assert exc_info.value.code != 0


# ── decompose ──────────────────────────────────────────────────────

@pytest.fixture
def project_file(tmp_path, template_files):
    svg, annotation = template_files
    out = tmp_path / "out" / "project.json"
    main(["decompose", "--svg", str(svg), "--json", str(annotation),
          "--duration", "0.5", "--output", str(out)])
    return out


class TestDecomposeCommand:
    def test_writes_project(self, project_file):
        project = read_project(project_file)
        assert (project.canvas_width, project.canvas_height) == (1920, 1080)
        assert project.total_duration == 0.5
        names = [c.name for c in project.timeline.clips()]
        assert names == ["title", "logo", "bg"]

    def test_prints_progress(self, tmp_path, template_files, capsys):
        svg, annotation = template_files
        out = tmp_path / "project.json"
        main(["decompose", "--svg", str(svg), "--json", str(annotation),
              "--output", str(out)])
        printed = capsys.readouterr().out
        assert "Decomposing" in printed
        assert "Done: 3 clips" in printed
        assert out.exists()

    def test_camel_case_json(self, project_file):
        data = json.loads(project_file.read_text())
        assert data["aspectRatio"] == pytest.approx(16 / 9)
        assert "fontList" in data

    def test_template_from_config(self, tmp_path, template_files):
        svg, annotation = template_files
        config = tmp_path / "svgclip.yaml"
        config.write_text(yaml.dump({
            "paths": {"assets": str(svg.parent)},
            "project": {"category": "S", "duration": 2},
            "template": {"svg": "${assets}/" + svg.name, "json": "${assets}/" + annotation.name},
        }))
        out = tmp_path / "p.json"
        main(["decompose", "--config", str(config), "--output", str(out)])
        project = read_project(out)
        assert (project.canvas_width, project.canvas_height) == (1080, 1920)
        assert project.total_duration == 2

    def test_requires_template(self, tmp_path):
        with pytest.raises(SystemExit) as exc_info:
            main(["decompose", "--output", str(tmp_path / "p.json")])
        assert exc_info.value.code == 2

    def test_rejects_bad_duration(self, tmp_path, template_files):
        svg, annotation = template_files
        with pytest.raises(SystemExit):
            main(["decompose", "--svg", str(svg), "--json", str(annotation),
                  "--duration", "0", "--output", str(tmp_path / "p.json")])

    def test_rejects_unknown_category(self, tmp_path, template_files):
        svg, annotation = template_files
        with pytest.raises(SystemExit):
            main(["decompose", "--svg", str(svg), "--json", str(annotation),
                  "--category", "Q", "--output", str(tmp_path / "p.json")])


# ── render ─────────────────────────────────────────────────────────

class TestRenderCommand:
    def test_renders_frame(self, tmp_path, project_file, capsys):
        out = tmp_path / "frame.png"
        main(["render", "--timeline", str(project_file), "--time", "0.1",
              "--width", "320", "--output", str(out)])
        with Image.open(out) as im:
            assert im.size == (320, 180)
        assert "Done:" in capsys.readouterr().out

    def test_rejects_negative_time(self, tmp_path, project_file):
        with pytest.raises(SystemExit):
            main(["render", "--timeline", str(project_file), "--time", "-1",
                  "--output", str(tmp_path / "f.png")])


# ── export ─────────────────────────────────────────────────────────

class TestExportCommand:
    def test_gif(self, tmp_path, project_file, capsys):
        out = tmp_path / "out.gif"
        main(["export", "--timeline", str(project_file), "--output", str(out)])
        with Image.open(out) as im:
            assert im.n_frames >= 1
            assert max(im.size) <= 640
        assert "Rendered 5/5 frames" in capsys.readouterr().out

    def test_mp4(self, tmp_path, project_file):
        out = tmp_path / "out.mp4"
        main(["export", "--timeline", str(project_file), "--output", str(out),
              "--fps", "4", "--width", "320", "--workers", "2"])
        assert out.exists() and out.stat().st_size > 0

    def test_rejects_unknown_format(self, tmp_path, project_file):
        with pytest.raises(SystemExit):
            main(["export", "--timeline", str(project_file), "--output", str(tmp_path / "o.avi")])

    def test_rejects_bad_fps(self, tmp_path, project_file):
        with pytest.raises(SystemExit):
            main(["export", "--timeline", str(project_file), "--output", str(tmp_path / "o.mp4"),
                  "--fps", "0"])
