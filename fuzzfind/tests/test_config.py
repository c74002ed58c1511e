"""Tests for configuration and run options."""

import os

import pytest
import yaml
from pydantic import ValidationError

from fuzzfind.daemon.config import FinderConfig, FinderOptions, collapse_home, expand_path
from fuzzfind.daemon.errors import ErrorSeverity, ErrorTracker, OptionsError


def test_config_defaults():
    config = FinderConfig()
    assert config.flush_interval_ms == 50
    assert config.flush_interval == pytest.approx(0.05)
    assert config.stall_timeout == pytest.approx(1.0)
    assert config.max_display_length == 200
    assert config.default_max == 20
    assert config.shell == "bash"


def test_config_rejects_non_positive():
    with pytest.raises(ValidationError):
        FinderConfig(flush_interval_ms=0)
    with pytest.raises(ValidationError):
        FinderConfig(default_max=-1)


def test_config_load_and_save(tmp_path):
    path = tmp_path / "conf" / "fuzzfind.yaml"
    FinderConfig(flush_interval_ms=25, shell="sh").save(path)

    data = yaml.safe_load(path.read_text())
    assert data["flush_interval_ms"] == 25

    loaded = FinderConfig.load(path)
    assert loaded.flush_interval_ms == 25
    assert loaded.shell == "sh"
    assert loaded.stall_timeout_ms == 1000


def test_config_load_empty_file(tmp_path):
    path = tmp_path / "empty.yaml"
    path.write_text("")
    assert FinderConfig.load(path) == FinderConfig()


def test_config_load_missing_explicit_path(tmp_path):
    with pytest.raises(FileNotFoundError):
        FinderConfig.load(tmp_path / "missing.yaml")


def test_options_defaults():
    options = FinderOptions.parse({})
    assert options.source is None
    assert options.type == "plain"
    assert options.dir == ""
    assert options.base_dir == "."
    assert not options.remote


def test_options_ignore_unknown_keys():
    options = FinderOptions.parse({"source": ["a"], "colour": "blue", "type": "line"})
    assert options.source == ["a"]
    assert options.type == "line"
    assert "colour" not in options.to_dict()


def test_options_source_forms():
    assert FinderOptions.parse({"source": "rg --files"}).source == "rg --files"
    # Non-string list items are skipped
    assert FinderOptions.parse({"source": ["a", 1, None, "b"]}).source == ["a", "b"]


def test_options_expand_home():
    options = FinderOptions.parse({"dir": "~/src", "pwd": None})
    assert options.dir == os.path.join(os.path.expanduser("~"), "src")
    assert options.pwd == ""


def test_options_empty_type_is_plain():
    assert FinderOptions.parse({"type": ""}).type == "plain"
    assert FinderOptions.parse({"type": None}).type == "plain"


@pytest.mark.parametrize("raw", [
    None,
    "source",
    ["a", "b"],
    {"type": "bogus"},
    {"dir": 3},
    {"source": 12},
])
def test_options_invalid(raw):
    with pytest.raises(OptionsError):
        FinderOptions.parse(raw)


def test_expand_and_collapse_home():
    assert expand_path("") == ""
    assert expand_path("/abs") == "/abs"
    assert collapse_home("/home/u/src/a.go", "/home/u") == "~/src/a.go"
    assert collapse_home("/home/u", "/home/u/") == "~"
    assert collapse_home("/home/user2/a.go", "/home/u") == "/home/user2/a.go"
    assert collapse_home("rel/a.go", "/home/u") == "rel/a.go"
    assert collapse_home("/a.go", "") == "/a.go"


def test_error_tracker():
    errors = ErrorTracker(max_events=2)
    errors.record("source.filesystem", PermissionError("denied"), path="/x")
    errors.record("source.filesystem", FileNotFoundError("gone"))
    errors.record("confirm", RuntimeError("boom"), ErrorSeverity.HIGH)

    assert errors.get_stats() == {"source.filesystem": 2, "confirm": 1}
    recent = errors.recent()
    assert len(recent) == 2
    assert errors.recent("confirm")[0].to_dict()["severity"] == 3
    assert recent[0].error_type == "FileNotFoundError"

    errors.clear()
    assert errors.get_stats() == {}
