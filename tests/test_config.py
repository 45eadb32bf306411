"""Tests for exporter configuration loading."""

import pytest

from broker.errors import ConfigError, ExporterError
from utils.config import ExporterCfg, load_config


def test_defaults():
    cfg = load_config(env={})
    assert isinstance(cfg, ExporterCfg)
    assert cfg.poll_seconds == 300
    assert cfg.server.port == 8080
    assert cfg.server.host == "0.0.0.0"
    assert cfg.server.path == "/metrics"
    assert cfg.api.base_url == "https://api.production.wealthsimple.com/v1/"
    assert cfg.api.username is None
    assert cfg.general.log_level == "INFO"


def test_yaml_file(tmp_path):
    p = tmp_path / "exporter.yaml"
    p.write_text(
        "poll_seconds: 60\n"
        "server:\n  port: 9100\n"
        "api:\n  username: me@example.com\n  request_timeout: 5\n"
        "general:\n  log_level: DEBUG\n"
    )
    cfg = load_config(str(p), env={})
    assert cfg.poll_seconds == 60
    assert cfg.server.port == 9100
    assert cfg.server.path == "/metrics"
    assert cfg.api.username == "me@example.com"
    assert cfg.api.request_timeout == 5
    assert cfg.general.log_level == "DEBUG"


def test_env_overrides_file(tmp_path):
    p = tmp_path / "exporter.yaml"
    p.write_text("server:\n  port: 9100\n")
    env = {
        "WS_EXPORTER_PORT": "9200",
        "WS_EXPORTER_POLL_SECONDS": "30",
        "WS_EXPORTER_USERNAME": "env@example.com",
        "WS_EXPORTER_LOG_LEVEL": "warning",
        "WS_EXPORTER_HOST": "",
    }
    cfg = load_config(str(p), env=env)
    assert cfg.server.port == 9200
    assert cfg.server.host == "0.0.0.0"
    assert cfg.poll_seconds == 30.0
    assert cfg.api.username == "env@example.com"
    assert cfg.general.log_level == "warning"


def test_empty_yaml_file(tmp_path):
    p = tmp_path / "empty.yaml"
    p.write_text("")
    assert load_config(str(p), env={}) == ExporterCfg()


def test_bad_env_value():
    with pytest.raises(ConfigError, match="WS_EXPORTER_PORT"):
        load_config(env={"WS_EXPORTER_PORT": "eighty"})


def test_config_error_is_exporter_error():
    assert issubclass(ConfigError, ExporterError)


def test_yaml_strings_coerced_to_field_types(tmp_path):
    """Quoted YAML scalars take the type of the field they land in."""
    p = tmp_path / "exporter.yaml"
    p.write_text(
        'poll_seconds: "45"\n'
        'server:\n  port: "8080"\n'
        'api:\n  request_timeout: "2.5"\n  username: null\n'
    )
    cfg = load_config(str(p), env={})
    assert cfg.server.port == 8080 and isinstance(cfg.server.port, int)
    assert cfg.api.request_timeout == 2.5
    assert cfg.api.username is None
    assert cfg.poll_seconds == 45.0


@pytest.mark.parametrize("text, where", [
    ("server:\n  port: eighty\n", "server.port"),
    ("poll_seconds: soon\n", "poll_seconds"),
    ("api:\n  request_timeout: [1, 2]\n", "api.request_timeout"),
    ("server: 8080\n", "server"),
    ("- just\n- a list\n", "top level"),
])
def test_bad_yaml_value(tmp_path, text, where):
    p = tmp_path / "exporter.yaml"
    p.write_text(text)
    with pytest.raises(ConfigError, match=where):
        load_config(str(p), env={})


def test_missing_or_broken_file(tmp_path):
    with pytest.raises(ConfigError, match="cannot read config"):
        load_config(str(tmp_path / "nope.yaml"), env={})
    p = tmp_path / "broken.yaml"
    p.write_text("server: [unclosed\n")
    with pytest.raises(ConfigError, match="cannot read config"):
        load_config(str(p), env={})
