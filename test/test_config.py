"""Unit tests for configuration loading and command line overrides."""

import pytest

from robot_bridge.config import BridgeConfig, ConfigError
from robot_bridge.main import load_config, parse_args


def test_defaults_with_only_broker_host():
    config = BridgeConfig.from_env({"MQTT_HOST": "192.168.0.10"})

    assert config.mqtt_host == "192.168.0.10"
    assert config.mqtt_port == 1883
    assert config.port == 3000
    assert config.broker_start_cmd == "docker start mosquitto"
    assert config.broker_stop_cmd == "docker stop mosquitto"
    assert config.log_level == "INFO"


@pytest.mark.parametrize("host", ["", "   "])
def test_broker_host_is_required(host):
    with pytest.raises(ConfigError):
        BridgeConfig.from_env({"MQTT_HOST": host})


def test_missing_broker_host_is_rejected():
    with pytest.raises(ConfigError, match="MQTT_HOST"):
        BridgeConfig.from_env({})


@pytest.mark.parametrize(
    "env",
    [
        {"MQTT_PORT": "abc"},
        {"MQTT_PORT": "70000"},
        {"PORT": "0"},
        {"LOG_LEVEL": "verbose"},
        {"MQTT_KEEPALIVE": "-1"},
        {"MQTT_KEEPALIVE": "65536"},
    ],
)
def test_invalid_values_are_rejected(env):
    with pytest.raises(ConfigError):
        BridgeConfig.from_env({"MQTT_HOST": "broker", **env})


def test_command_line_overrides_environment(monkeypatch):
    monkeypatch.setenv("MQTT_HOST", "from-env")
    monkeypatch.setenv("PORT", "3000")

    config = load_config(parse_args(["--mqtt-host", "from-cli", "--port", "8080", "--log-level", "debug"]))

    assert config.mqtt_host == "from-cli"
    assert config.port == 8080
    assert config.log_level == "DEBUG"


def test_empty_start_command_is_kept():
    config = BridgeConfig.from_env({"MQTT_HOST": "broker", "BROKER_START_CMD": ""})

    assert config.broker_start_cmd == ""


def test_log_level_is_normalised_once():
    config = BridgeConfig(mqtt_host="broker", log_level="warning", mqtt_keepalive=0)

    assert config.log_level == "WARNING"
    assert config.mqtt_keepalive == 0
