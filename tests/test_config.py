"""Tests for the configuration management subsystem."""

from pathlib import Path
from typing import Any
from unittest.mock import MagicMock

import pytest

from repodash.config import Config, parse_size, parse_time


@pytest.fixture(autouse=True)
def clear_config_cache() -> Any:
    """Ensures every test starts with a clean config cache."""
    Config._global_cache = None
    yield
    Config._global_cache = None


def test_config_defaults() -> None:
    """Verifies that the configuration initializes with sensible defaults."""
    conf = Config()
    assert conf.cache.ttl == 90
    assert conf.cache.load_timeout == 12
    assert conf.cache.list_limit == 20
    assert conf.signature.time_bucket == 60
    assert conf.signature.activity_window == 10
    assert conf.local.worktree_folder_name == ".work"
    assert conf.local.access_root is None
    assert conf.logging.max_log_size == 5 * 1024 * 1024


def test_config_load_global_file(tmp_path: Path, mocker: MagicMock) -> None:
    """Verifies that the global config file is merged over the defaults.

    Args:
        tmp_path (Path): Pytest fixture for a temporary directory.
        mocker (MagicMock): Pytest fixture for mocking.
    """
    global_config_path = tmp_path / "config.toml"
    global_config_path.write_text(
        '[cache]\nttl = "2m"\nlist_limit = 10\n'
        '[signature]\ntime_bucket = "30s"\n'
        '[local]\nworktree_folder_name = "trees"\n'
        '[logging]\nmax_log_size = "1MB"\nlevel = "DEBUG"\n'
    )
    mocker.patch("repodash.config.CONFIG_FILE", global_config_path)

    conf = Config.load()

    assert conf.cache.ttl == 120
    assert conf.cache.list_limit == 10
    assert conf.signature.time_bucket == 30
    assert conf.local.worktree_folder_name == "trees"
    assert conf.logging.max_log_size == 1024 * 1024
    assert conf.logging.level == "DEBUG"


def test_config_load_is_cached(tmp_path: Path, mocker: MagicMock) -> None:
    """Verifies that the global file is read once and later edits are not seen."""
    global_config_path = tmp_path / "config.toml"
    global_config_path.write_text("[cache]\nttl = 30\n")
    mocker.patch("repodash.config.CONFIG_FILE", global_config_path)

    first = Config.load()
    global_config_path.write_text("[cache]\nttl = 45\n")
    second = Config.load()

    assert first.cache.ttl == 30
    assert second.cache.ttl == 30


def test_config_explicit_path_bypasses_cache(tmp_path: Path, mocker: MagicMock) -> None:
    """Verifies that an explicit path is read directly."""
    mocker.patch("repodash.config.CONFIG_FILE", tmp_path / "missing.toml")
    explicit = tmp_path / "explicit.toml"
    explicit.write_text("[cache]\nload_timeout = 5\n")

    assert Config.load(explicit).cache.load_timeout == 5
    assert Config.load().cache.load_timeout == 12


def test_kind_ttl_overrides(tmp_path: Path) -> None:
    """Verifies per-kind TTL overrides and the fallback to the default TTL."""
    path = tmp_path / "config.toml"
    path.write_text('[cache]\nttl = 60\n[cache.kind_ttl]\nci_runs = "15s"\ntags = "bad"\n')

    conf = Config.load(path)

    assert conf.cache.ttl_for("ci_runs") == 15
    assert conf.cache.ttl_for("issues") == 60
    assert "tags" not in conf.cache.kind_ttl


def test_unknown_keys_warn(tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
    """Verifies that typos in config keys are reported and ignored."""
    path = tmp_path / "config.toml"
    path.write_text("[cache]\nttl = 10\nttll = 20\n")

    conf = Config.load(path)

    assert conf.cache.ttl == 10
    assert "Unknown config keys in [cache]: ttll" in caplog.text


def test_invalid_value_falls_back(tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
    """Verifies that an unparseable value keeps the default and logs a warning."""
    path = tmp_path / "config.toml"
    path.write_text('[cache]\nload_timeout = "soon"\n')

    conf = Config.load(path)

    assert conf.cache.load_timeout == 12
    assert "Config error in [cache].load_timeout" in caplog.text


def test_syntax_error_is_logged(tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
    """Verifies that a malformed TOML file leaves defaults in place."""
    path = tmp_path / "config.toml"
    path.write_text("[cache\nttl = 1\n")

    conf = Config.load(path)

    assert conf.cache.ttl == 90
    assert "Config syntax error" in caplog.text


@pytest.mark.parametrize(
    "value, expected",
    [(90, 90), ("90s", 90), ("2m", 120), ("1.5 min", 90), ("1h", 3600)],
)
def test_parse_time(value: Any, expected: int) -> None:
    assert parse_time(value) == expected


def test_parse_size() -> None:
    assert parse_size("5MB") == 5 * 1024 * 1024
    assert parse_size("512k") == 512 * 1024
    with pytest.raises(ValueError):
        parse_size("lots")
