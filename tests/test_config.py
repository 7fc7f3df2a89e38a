import json

import pytest
from pydantic import ValidationError

from plugin_service.config import ConfigSource, ServiceSettings
from plugin_service.constants import DEFAULT_PORT, PLUGIN_HOOK_TIMEOUT


def test_defaults_without_environment():
    settings = ServiceSettings.from_env({})
    assert settings.port == DEFAULT_PORT
    assert settings.hook_timeout == PLUGIN_HOOK_TIMEOUT
    assert settings.source == ConfigSource.DEFAULT


def test_environment_overrides():
    settings = ServiceSettings.from_env({
        "PLUGINS_DIR": "/srv/plugins",
        "PLUGIN_HOOK_TIMEOUT": "2.5",
        "PLUGIN_SERVICE_PORT": "9090",
        "LOG_LEVEL": "debug",
    })
    assert settings.plugins_dir == "/srv/plugins"
    assert settings.hook_timeout == 2.5
    assert settings.port == 9090
    assert settings.log_level == "DEBUG"
    assert settings.source == ConfigSource.ENV


def test_yaml_file_with_env_on_top(tmp_path):
    config_file = tmp_path / "service.yaml"
    config_file.write_text(
        "plugins_dir: /opt/plugins\n"
        "load_timeout: 10\n"
        "plugin_configs:\n"
        "  echo:\n"
        "    greeting: hello\n"
        "    repeat: 3\n"
        "    loud: true\n",
        encoding="utf-8",
    )

    settings = ServiceSettings.from_env({
        "PLUGIN_SERVICE_CONFIG": str(config_file),
        "PLUGIN_LOAD_TIMEOUT": "20",
    })

    assert settings.plugins_dir == "/opt/plugins"
    assert settings.load_timeout == 20
    assert settings.plugin_configs == {"echo": {"greeting": "hello", "repeat": "3", "loud": "True"}}


def test_json_file(tmp_path):
    config_file = tmp_path / "service.json"
    config_file.write_text(json.dumps({"port": 8181, "host": "127.0.0.1"}), encoding="utf-8")

    settings = ServiceSettings.from_file(str(config_file))

    assert settings.port == 8181
    assert settings.host == "127.0.0.1"
    assert settings.source == ConfigSource.FILE


def test_invalid_timeout_is_rejected():
    with pytest.raises(ValidationError):
        ServiceSettings.from_env({"PLUGIN_HOOK_TIMEOUT": "0"})


def test_config_file_must_be_a_mapping(tmp_path):
    config_file = tmp_path / "service.yaml"
    config_file.write_text("- just\n- a list\n", encoding="utf-8")
    with pytest.raises(ValueError):
        ServiceSettings.from_file(str(config_file))


def test_missing_config_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        ServiceSettings.from_env({"PLUGIN_SERVICE_CONFIG": str(tmp_path / "absent.yaml")})
