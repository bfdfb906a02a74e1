"""Tests for svgclip.config: YAML loading, defaults and validation."""

import pytest
import yaml

from svgclip.config import DEFAULTS, config_for, default_config, load_config


def _write(tmp_path, data):
    path = tmp_path / "svgclip.yaml"
    path.write_text(yaml.dump(data) if not isinstance(data, str) else data)
    return path


class TestDefaults:
    def test_default_config(self):
        config = default_config()
        assert config["project"]["category"] == "F"
        assert config["project"]["background"] == (0, 0, 0)
        assert config["decompose"]["precision"] == 2
        assert config["export"]["fps"] == 30
        assert config["services"]["render_video"] is None
        assert config["paths"] == {}

    def test_defaults_not_shared(self):
        default_config()["fonts"]["dirs"].append("/tmp")
        assert DEFAULTS["fonts"]["dirs"] == []

    def test_config_for_none(self):
        assert config_for(None) == default_config()

    def test_empty_file(self, tmp_path):
        assert load_config(_write(tmp_path, "")) == default_config()


class TestLoadConfig:
    def test_sections_merged_over_defaults(self, tmp_path):
        config = load_config(_write(tmp_path, {
            "project": {"category": "S", "background": "#ff8000"},
            "export": {"fps": 24},
        }))
        assert config["project"]["category"] == "S"
        assert config["project"]["duration"] == 10.0
        assert config["project"]["background"] == (255, 128, 0)
        assert config["export"] == {"fps": 24, "workers": 4, "batch_size": 30,
                                    "gif_max_dimension": 640}

    def test_path_variables(self, tmp_path):
        config = load_config(_write(tmp_path, {
            "paths": {"assets": "/data/tpl"},
            "template": {"svg": "${assets}/card.svg", "json": "${assets}/card.json"},
            "fonts": {"dirs": ["${assets}/font"]},
        }))
        assert config["template"]["svg"] == "/data/tpl/card.svg"
        assert config["fonts"]["dirs"] == ["/data/tpl/font"]
        assert config["paths"] == {"assets": "/data/tpl"}

    def test_unknown_path_variable(self, tmp_path):
        with pytest.raises(ValueError, match="Unknown path variable"):
            load_config(_write(tmp_path, {"template": {"svg": "${nope}/a.svg"}}))

    def test_null_section_ignored(self, tmp_path):
        config = load_config(_write(tmp_path, "export:\n"))
        assert config["export"]["workers"] == 4

    def test_services(self, tmp_path):
        config = load_config(_write(tmp_path, {
            "services": {"extract_frames": "http://svc/extract", "timeout": 60},
        }))
        assert config["services"]["extract_frames"] == "http://svc/extract"
        assert config["services"]["timeout"] == 60

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "nope.yaml")


class TestValidation:
    @pytest.mark.parametrize("data, message", [
        ({"render": {}}, "Unknown config section"),
        ({"export": {"codec": "h264"}}, "unknown key"),
        ({"export": []}, "must be a mapping"),
        ({"project": {"category": "X"}}, "unknown category 'X'"),
        ({"project": {"duration": 0}}, "project.duration must be a positive number"),
        ({"project": {"background": "#12345"}}, "hex colour"),
        ({"decompose": {"measurer": "browser"}}, "unknown measurer 'browser'"),
        ({"decompose": {"precision": -1}}, "non-negative integer"),
        ({"fonts": {"dirs": "/fonts"}}, "fonts.dirs must be a list"),
        ({"export": {"workers": 1.5}}, "export.workers must be a positive integer"),
        ({"export": {"fps": True}}, "export.fps must be a positive number"),
        ({"services": {"render_video": "ftp://x"}}, "http\\(s\\) URL"),
    ])
    def test_invalid(self, tmp_path, data, message):
        with pytest.raises(ValueError, match=message):
            load_config(_write(tmp_path, data))

    def test_top_level_must_be_mapping(self, tmp_path):
        with pytest.raises(ValueError, match="config must be a mapping"):
            load_config(_write(tmp_path, "- a\n- b\n"))

    def test_precision_may_be_null(self, tmp_path):
        config = load_config(_write(tmp_path, {"decompose": {"precision": None}}))
        assert config["decompose"]["precision"] is None
