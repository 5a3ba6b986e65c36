"""
Bridge configuration from environment variables.

Environment Variables:
    MQTT_HOST: MQTT broker host (required)
    MQTT_PORT: MQTT broker port (default: 1883)
    MQTT_KEEPALIVE: Keepalive in seconds (default: 60)
    HOST: HTTP/WebSocket bind address (default: 0.0.0.0)
    PORT: HTTP/WebSocket port (default: 3000)
    FRONTEND_DIR: Static page directory (default: frontend)
    BROKER_START_CMD: Broker start command (default: docker start mosquitto)
    BROKER_STOP_CMD: Broker stop command (default: docker stop mosquitto)
    LOG_LEVEL: Log level (default: INFO)
"""

import os
from dataclasses import dataclass
from typing import Mapping, Optional

from .lifecycle import DEFAULT_START_COMMAND, DEFAULT_STOP_COMMAND

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class ConfigError(ValueError):
    """Invalid or missing configuration value."""


def _int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from None


@dataclass
class BridgeConfig:
    mqtt_host: str
    mqtt_port: int = 1883
    mqtt_keepalive: int = 60
    host: str = "0.0.0.0"
    port: int = 3000
    frontend_dir: str = "frontend"
    broker_start_cmd: str = DEFAULT_START_COMMAND
    broker_stop_cmd: str = DEFAULT_STOP_COMMAND
    log_level: str = "INFO"

    def __post_init__(self):
        if not self.mqtt_host or not self.mqtt_host.strip():
            raise ConfigError("MQTT_HOST is required")
        self.mqtt_host = self.mqtt_host.strip()
        for name in ("mqtt_port", "port"):
            value = getattr(self, name)
            if not 0 < value < 65536:
                raise ConfigError(f"{name} out of range: {value}")
        # MQTT keepalive is a 16-bit field, 0 disables it
        if not 0 <= self.mqtt_keepalive < 65536:
            raise ConfigError(f"mqtt_keepalive out of range: {self.mqtt_keepalive}")
        # Names understood by both logging and uvicorn
        self.log_level = self.log_level.upper()
        if self.log_level not in LOG_LEVELS:
            raise ConfigError(f"LOG_LEVEL must be one of {', '.join(LOG_LEVELS)}")

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> 'BridgeConfig':
        """Load configuration, by default from os.environ."""
        env = os.environ if env is None else env
        return cls(
            mqtt_host=env.get("MQTT_HOST", ""),
            mqtt_port=_int(env, "MQTT_PORT", 1883),
            mqtt_keepalive=_int(env, "MQTT_KEEPALIVE", 60),
            host=env.get("HOST", "0.0.0.0"),
            port=_int(env, "PORT", 3000),
            frontend_dir=env.get("FRONTEND_DIR", "frontend"),
            broker_start_cmd=env.get("BROKER_START_CMD", DEFAULT_START_COMMAND),
            broker_stop_cmd=env.get("BROKER_STOP_CMD", DEFAULT_STOP_COMMAND),
            log_level=env.get("LOG_LEVEL", "INFO"),
        )
