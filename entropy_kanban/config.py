"""Configuration loading for the task board server."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

ENV_PREFIX = "ENTROPY_KANBAN_"


class ConfigError(RuntimeError):
    """Raised when configuration is invalid."""


@dataclass(frozen=True)
class AppConfig:
    heartbeat_interval: float = 2.0
    corruption_interval: float = 10.0
    stale_threshold: float = 30.0
    corruption_seed: int | None = None
    broadcast_send_timeout: float = 5.0
    cors_origins: tuple[str, ...] = ("http://localhost:3000",)
    enable_background: bool = True
    log_level: str = "INFO"
    host: str = "127.0.0.1"
    port: int = 3001


def _read_dotenv_value(dotenv_path: Path, key: str) -> str | None:
    """Read a single key from a .env file without mutating the environment."""
    if not dotenv_path.is_file():
        return None
    try:
        content = dotenv_path.read_text(encoding="utf-8")
    except OSError:
        return None

    for line in content.splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue
        if stripped.startswith("export "):
            stripped = stripped[len("export ") :].strip()
        if "=" not in stripped:
            continue
        name, value = stripped.split("=", 1)
        name = name.strip()
        if name != key:
            continue
        value = value.strip()
        if len(value) >= 2 and value[0] == value[-1] and value[0] in {"'", '"'}:
            value = value[1:-1]
        return value or None
    return None


def _read_bool(raw_value: str | None, *, default: bool, key: str) -> bool:
    if raw_value is None:
        return default
    normalized = raw_value.strip().lower()
    if not normalized:
        return default
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    raise ConfigError(f"{key} must be a boolean value.")


def _read_positive_float(raw_value: str | None, *, default: float, key: str) -> float:
    if raw_value is None or not raw_value.strip():
        return default
    try:
        value = float(raw_value)
    except ValueError:
        raise ConfigError(f"{key} must be a number.") from None
    if value <= 0:
        raise ConfigError(f"{key} must be greater than zero.")
    return value


def _read_int(raw_value: str | None, *, default: int | None, key: str) -> int | None:
    if raw_value is None or not raw_value.strip():
        return default
    try:
        return int(raw_value.strip())
    except ValueError:
        raise ConfigError(f"{key} must be an integer.") from None


def load_config() -> AppConfig:
    """Load configuration from the environment, falling back to ./.env."""
    dotenv_path = Path.cwd() / ".env"
    defaults = AppConfig()

    def raw(name: str) -> str | None:
        key = ENV_PREFIX + name
        value = os.environ.get(key)
        if value is None:
            value = _read_dotenv_value(dotenv_path, key)
        return value

    cors_raw = raw("CORS_ORIGINS")
    if cors_raw is None or not cors_raw.strip():
        cors_origins = defaults.cors_origins
    else:
        cors_origins = tuple(
            origin.strip() for origin in cors_raw.split(",") if origin.strip()
        )

    log_level = (raw("LOG_LEVEL") or defaults.log_level).strip().upper()
    if log_level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
        raise ConfigError(f"{ENV_PREFIX}LOG_LEVEL must be a logging level name.")

    port = _read_int(raw("PORT"), default=defaults.port, key=ENV_PREFIX + "PORT")
    if port is None or not 0 < port < 65536:
        raise ConfigError(f"{ENV_PREFIX}PORT must be a valid TCP port.")

    return AppConfig(
        heartbeat_interval=_read_positive_float(
            raw("HEARTBEAT_SECONDS"),
            default=defaults.heartbeat_interval,
            key=ENV_PREFIX + "HEARTBEAT_SECONDS",
        ),
        corruption_interval=_read_positive_float(
            raw("CORRUPTION_INTERVAL_SECONDS"),
            default=defaults.corruption_interval,
            key=ENV_PREFIX + "CORRUPTION_INTERVAL_SECONDS",
        ),
        stale_threshold=_read_positive_float(
            raw("STALE_THRESHOLD_SECONDS"),
            default=defaults.stale_threshold,
            key=ENV_PREFIX + "STALE_THRESHOLD_SECONDS",
        ),
        corruption_seed=_read_int(
            raw("CORRUPTION_SEED"),
            default=None,
            key=ENV_PREFIX + "CORRUPTION_SEED",
        ),
        broadcast_send_timeout=_read_positive_float(
            raw("BROADCAST_SEND_TIMEOUT_SECONDS"),
            default=defaults.broadcast_send_timeout,
            key=ENV_PREFIX + "BROADCAST_SEND_TIMEOUT_SECONDS",
        ),
        cors_origins=cors_origins,
        enable_background=_read_bool(
            raw("ENABLE_BACKGROUND"),
            default=defaults.enable_background,
            key=ENV_PREFIX + "ENABLE_BACKGROUND",
        ),
        log_level=log_level,
        host=(raw("HOST") or defaults.host).strip(),
        port=port,
    )
