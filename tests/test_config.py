"""Tests for configuration file support."""

import json
import os
import tempfile
from pathlib import Path
from unittest import mock

from agent_wake import config
from agent_wake.config import _get_config_value, _load_config_file, load_settings


def test_get_config_value_env_precedence():
    """Verify environment variables take precedence over config file."""
    cfg = {"delivery": {"debounce": 20}}

    with mock.patch.dict(os.environ, {"AGENT_WAKE_DEBOUNCE": "30"}):
        value = _get_config_value("AGENT_WAKE_DEBOUNCE", ["delivery", "debounce"], 10.0, cfg, float)
        assert value == 30.0


def test_get_config_value_config_file():
    """Verify config file values are used when env var not set."""
    cfg = {"delivery": {"debounce": 20}}

    with mock.patch.dict(os.environ, {}, clear=True):
        value = _get_config_value("AGENT_WAKE_DEBOUNCE", ["delivery", "debounce"], 10.0, cfg, float)
        assert value == 20.0


def test_get_config_value_default():
    """Verify default is used when neither env var nor config file has value."""
    with mock.patch.dict(os.environ, {}, clear=True):
        value = _get_config_value("AGENT_WAKE_DEBOUNCE", ["delivery", "debounce"], 10.0, {}, float)
        assert value == 10.0


def test_get_config_value_missing_nested_key():
    """Verify missing nested keys return default."""
    cfg = {"delivery": {}}

    with mock.patch.dict(os.environ, {}, clear=True):
        value = _get_config_value("AGENT_WAKE_AUTO_PROMPT", ["delivery", "auto"], True, cfg, bool)
        assert value is True


def test_get_config_value_bool_coercion():
    """Verify boolean string coercion works."""
    for true_val in ["true", "True", "TRUE", "1", "yes", "YES"]:
        with mock.patch.dict(os.environ, {"TEST_BOOL": true_val}):
            value = _get_config_value("TEST_BOOL", ["test"], False, {}, bool)
            assert value is True, f"Failed for '{true_val}'"

    for false_val in ["false", "False", "0", "no", ""]:
        with mock.patch.dict(os.environ, {"TEST_BOOL": false_val}):
            value = _get_config_value("TEST_BOOL", ["test"], True, {}, bool)
            assert value is False, f"Failed for '{false_val}'"


def test_get_config_value_int_coercion():
    """Verify integer coercion works for string values."""
    with mock.patch.dict(os.environ, {"TEST_INT": "42"}):
        value = _get_config_value("TEST_INT", ["test"], 0, {}, int)
        assert value == 42
        assert isinstance(value, int)

    with mock.patch.dict(os.environ, {}, clear=True):
        assert _get_config_value("TEST_INT", ["test"], 0, {"test": "99"}, int) == 99
        assert _get_config_value("TEST_INT", ["test"], 0, {"test": 77}, int) == 77


def test_get_config_value_invalid_falls_back_to_default():
    with mock.patch.dict(os.environ, {"TEST_INT": "many"}):
        assert _get_config_value("TEST_INT", ["test"], 3, {}, int) == 3

    with mock.patch.dict(os.environ, {}, clear=True):
        assert _get_config_value("TEST_INT", ["test"], 3, {"test": "lots"}, int) == 3


def test_get_config_value_list_coercion():
    with mock.patch.dict(os.environ, {"TEST_LIST": "claude,--input-format,stream-json"}):
        value = _get_config_value("TEST_LIST", ["cmd"], [], {}, list)
        assert value == ["claude", "--input-format", "stream-json"]

    with mock.patch.dict(os.environ, {}, clear=True):
        assert _get_config_value("TEST_LIST", ["cmd"], [], {"cmd": ["a", 1]}, list) == ["a", "1"]


def test_load_config_file_not_exists():
    """Verify _load_config_file returns empty dict when file doesn't exist."""
    with mock.patch.object(config, "CONFIG_FILE", Path("/nonexistent/config.json")):
        assert _load_config_file() == {}


def test_load_config_file_valid():
    """Verify _load_config_file loads valid JSON."""
    with tempfile.NamedTemporaryFile(mode="w", suffix=".json", delete=False) as f:
        json.dump({"poll_interval": 2, "log_level": "DEBUG"}, f)

    try:
        with mock.patch.object(config, "CONFIG_FILE", Path(f.name)):
            assert _load_config_file() == {"poll_interval": 2, "log_level": "DEBUG"}
    finally:
        os.unlink(f.name)


def test_load_config_file_invalid_json():
    """Verify _load_config_file returns empty dict for invalid JSON."""
    with tempfile.NamedTemporaryFile(mode="w", suffix=".json", delete=False) as f:
        f.write("not valid json {{{")

    try:
        with mock.patch.object(config, "CONFIG_FILE", Path(f.name)):
            assert _load_config_file() == {}
    finally:
        os.unlink(f.name)


def test_load_config_file_non_object():
    with tempfile.NamedTemporaryFile(mode="w", suffix=".json", delete=False) as f:
        f.write("[1, 2, 3]")

    try:
        with mock.patch.object(config, "CONFIG_FILE", Path(f.name)):
            assert _load_config_file() == {}
    finally:
        os.unlink(f.name)


# ---------------------------------------------------------------------------
# load_settings
# ---------------------------------------------------------------------------


def test_load_settings_defaults(tmp_path):
    with mock.patch.dict(os.environ, {"AGENT_WAKE_DATA_DIR": str(tmp_path)}, clear=True):
        settings = load_settings({})

    assert settings.data_dir == tmp_path
    assert settings.debounce == 10.0
    assert settings.idle_threshold == 3.0
    assert settings.cooldown == 10.0
    assert settings.retry_backoff == 15.0
    assert settings.max_attempts == 3
    assert settings.signal_ttl == 300.0
    assert settings.startup_grace == 3.0
    assert settings.auto_prompt is True
    assert settings.communication_mode == "cognitive"
    assert settings.activity_markers == ('"stream_event"', '"assistant"')
    assert settings.target_command == ()
    assert settings.default_agent is None


def test_load_settings_from_config(tmp_path):
    cfg = {
        "workspace": str(tmp_path),
        "communication_mode": "inbox",
        "default_agent": "solo",
        "delivery": {"debounce": 5, "max_retry_rounds": 2},
        "target": {"command": ["claude", "-p"], "signature": "mycli"},
        "signals": {"ttl": 60},
        "engine": {"binary": "/opt/engine", "auto_start": False},
    }
    with mock.patch.dict(os.environ, {"AGENT_WAKE_DATA_DIR": str(tmp_path)}, clear=True):
        settings = load_settings(cfg)

    assert settings.workspace == tmp_path
    assert settings.communication_mode == "inbox"
    assert settings.default_agent == "solo"
    assert settings.debounce == 5.0
    assert settings.max_retry_rounds == 2
    assert settings.target_command == ("claude", "-p")
    assert settings.target_signature == "mycli"
    assert settings.signal_ttl == 60.0
    assert settings.engine_bin == "/opt/engine"
    assert settings.auto_start_engine is False


def test_load_settings_unknown_mode_falls_back(tmp_path):
    env = {"AGENT_WAKE_DATA_DIR": str(tmp_path), "AGENT_WAKE_MODE": "telepathy"}
    with mock.patch.dict(os.environ, env, clear=True):
        assert load_settings({}).communication_mode == "cognitive"


def test_load_settings_log_level_upper(tmp_path):
    env = {"AGENT_WAKE_DATA_DIR": str(tmp_path), "AGENT_WAKE_LOG_LEVEL": "debug"}
    with mock.patch.dict(os.environ, env, clear=True):
        assert load_settings({}).log_level == "DEBUG"
