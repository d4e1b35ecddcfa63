"""
Bus Configuration

Environment-based settings for the bus. Values can come from a .env file
in the project root (loaded by the app module).

Environment variables:
- TRIPBUS_WS_PATH: WebSocket endpoint path (default: "/ws")
- TRIPBUS_MAX_QUEUE_SIZE: Outbound queue depth per channel (default: 200)
- TRIPBUS_HEARTBEAT_TIMEOUT: Seconds of client silence before a channel
  is closed; 0 disables (default: 60)
- TRIPBUS_CHAT_TIMEOUT: Seconds to wait for the chat collaborator (default: 30)
- TRIPBUS_ECHO_CHAT: Publish user chat lines to chat.<id> watchers as
  well as replies (default: false)
- TRIPBUS_LOG_LEVEL: Logging level (default: "INFO")
- TRIPBUS_HOST / TRIPBUS_PORT: Bind address for the server (default: 0.0.0.0:8080)
- TRIPBUS_LLM_*: see tripbus.llm.factory.llm_config_from_env
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field

from tripbus.llm import LLMConfig, llm_config_from_env


class ConfigError(ValueError):
    """Raised when an environment variable holds an unusable value."""


@dataclass
class BusSettings:
    """
    Configuration for the bus.

    Attributes:
        ws_path: Path of the single WebSocket endpoint
        max_queue_size: Outbound queue depth per channel before eviction
        heartbeat_timeout_seconds: Client silence tolerated (0 = never close)
        chat_timeout_seconds: Max wait for a chat reply
        echo_chat: Publish user chat lines as well as replies
        log_level: Root logging level
        host: Bind host for the bundled server
        port: Bind port for the bundled server
        llm: Chat model settings
    """
    ws_path: str = "/ws"
    max_queue_size: int = 200
    heartbeat_timeout_seconds: float = 60.0
    chat_timeout_seconds: float = 30.0
    echo_chat: bool = False
    log_level: str = "INFO"
    host: str = "0.0.0.0"
    port: int = 8080
    llm: LLMConfig = field(default_factory=LLMConfig)

    def __post_init__(self) -> None:
        if not self.ws_path.startswith("/"):
            raise ConfigError(f"ws_path must start with '/': {self.ws_path!r}")
        if self.max_queue_size < 1:
            raise ConfigError(f"max_queue_size must be >= 1: {self.max_queue_size}")
        if self.heartbeat_timeout_seconds < 0:
            raise ConfigError("heartbeat_timeout_seconds must be >= 0")
        if self.chat_timeout_seconds <= 0:
            raise ConfigError("chat_timeout_seconds must be > 0")
        self.log_level = self.log_level.upper()


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {raw!r}")


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigError(f"{name} must be a number, got {raw!r}")


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    value = raw.strip().lower()
    if value in ("1", "true", "yes", "on"):
        return True
    if value in ("0", "false", "no", "off"):
        return False
    raise ConfigError(f"{name} must be a boolean, got {raw!r}")


def settings_from_env() -> BusSettings:
    """
    Build settings from environment variables.

    Raises:
        ConfigError: If a variable cannot be parsed or is out of range
    """
    try:
        llm = llm_config_from_env()
    except ValueError as e:
        raise ConfigError(f"Invalid LLM settings: {e}") from e

    return BusSettings(
        ws_path=os.getenv("TRIPBUS_WS_PATH", "/ws"),
        max_queue_size=_env_int("TRIPBUS_MAX_QUEUE_SIZE", 200),
        heartbeat_timeout_seconds=_env_float("TRIPBUS_HEARTBEAT_TIMEOUT", 60.0),
        chat_timeout_seconds=_env_float("TRIPBUS_CHAT_TIMEOUT", 30.0),
        echo_chat=_env_bool("TRIPBUS_ECHO_CHAT", False),
        log_level=os.getenv("TRIPBUS_LOG_LEVEL", "INFO"),
        host=os.getenv("TRIPBUS_HOST", "0.0.0.0"),
        port=_env_int("TRIPBUS_PORT", 8080),
        llm=llm,
    )
