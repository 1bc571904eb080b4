"""
Tests for configuration loading
"""
import logging

import pytest

from cronclaw.config import (
    CronclawConfig,
    get_config_path,
    invalidate_config_cache,
    load_config,
    resolve_cron_store_path,
)
from cronclaw.cron.jobs import STUCK_RUN_MS


@pytest.fixture(autouse=True)
def isolated_config(tmp_path, monkeypatch):
    state_dir = tmp_path / "state"
    state_dir.mkdir()
    monkeypatch.setenv("CRONCLAW_STATE_DIR", str(state_dir))
    monkeypatch.chdir(tmp_path)
    invalidate_config_cache()
    yield state_dir
    invalidate_config_cache()


def test_defaults_without_file(isolated_config):
    config = load_config()
    assert config.cron.enabled is True
    assert config.cron.store is None
    assert config.cron.stuckRunMs == STUCK_RUN_MS
    assert get_config_path() == isolated_config.resolve() / "config.json"


def test_json5_file_in_state_dir(isolated_config):
    (isolated_config / "config.json5").write_text("""
    {
      // scheduler
      cron: {
        enabled: false,
        runLog: { maxBytes: 4096, keepLines: 50, },
      },
    }
    """)
    config = load_config()
    assert config.cron.enabled is False
    assert config.cron.runLog.maxBytes == 4096
    assert config.cron.runLog.keepLines == 50


def test_cwd_file_wins(tmp_path, isolated_config):
    (isolated_config / "config.json").write_text('{"cron": {"enabled": false}}')
    (tmp_path / "cronclaw.json").write_text('{"cron": {"enabled": true}}')
    assert get_config_path() == tmp_path.resolve() / "cronclaw.json"
    assert load_config().cron.enabled is True


def test_env_substitution(tmp_path, monkeypatch):
    monkeypatch.setenv("CRON_STORE_DIR", str(tmp_path / "jobs"))
    path = tmp_path / "custom.json"
    path.write_text('{"cron": {"store": "${CRON_STORE_DIR}/jobs.json"}}')
    assert load_config(path).cron.store == f"{tmp_path / 'jobs'}/jobs.json"


def test_include(tmp_path):
    (tmp_path / "cron.json5").write_text("{enabled: false, stuckRunMs: 1000}")
    path = tmp_path / "main.json"
    path.write_text('{"cron": {"$include": "./cron.json5"}, "other": {"kept": true}}')
    config = load_config(path)
    assert config.cron.enabled is False
    assert config.cron.stuckRunMs == 1000
    assert config.model_extra["other"] == {"kept": True}


def test_circular_include_falls_back_to_defaults(tmp_path, caplog):
    (tmp_path / "a.json").write_text('{"$include": "./b.json"}')
    (tmp_path / "b.json").write_text('{"$include": "./a.json"}')
    with caplog.at_level(logging.WARNING):
        config = load_config(tmp_path / "a.json")
    assert config == CronclawConfig()
    assert "depth" in caplog.text


def test_malformed_file_falls_back_to_defaults(tmp_path, caplog):
    path = tmp_path / "broken.json"
    path.write_text("{cron: ")
    with caplog.at_level(logging.WARNING):
        config = load_config(path)
    assert config.cron.enabled is True
    assert "Failed to load config" in caplog.text


def test_invalid_values_fall_back_to_defaults(tmp_path, caplog):
    path = tmp_path / "invalid.json"
    path.write_text('{"cron": {"stuckRunMs": -5}}')
    with caplog.at_level(logging.WARNING):
        config = load_config(path)
    assert config.cron.stuckRunMs == STUCK_RUN_MS
    assert "Invalid config" in caplog.text


def test_null_cron_and_blank_store(tmp_path):
    path = tmp_path / "c.json"
    path.write_text('{"cron": null}')
    assert load_config(path).cron.enabled is True
    path.write_text('{"cron": {"store": "   "}}')
    assert load_config(path).cron.store is None


def test_cache(isolated_config):
    path = isolated_config / "config.json"
    path.write_text('{"cron": {"enabled": false}}')
    assert load_config().cron.enabled is False

    path.write_text('{"cron": {"enabled": true}}')
    assert load_config().cron.enabled is False
    invalidate_config_cache()
    assert load_config().cron.enabled is True


def test_store_path_resolution(isolated_config, tmp_path):
    assert resolve_cron_store_path() == isolated_config.resolve() / "cron" / "jobs.json"
    assert resolve_cron_store_path("  ") == isolated_config.resolve() / "cron" / "jobs.json"
    assert resolve_cron_store_path(str(tmp_path / "x.json")) == (tmp_path / "x.json").resolve()
