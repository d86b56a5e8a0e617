from __future__ import annotations

import os
from dataclasses import dataclass, field


class SettingsError(ValueError):
    pass


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return bool(default)
    s = str(raw).strip().lower()
    if s in {"1", "true", "yes", "y", "on"}:
        return True
    if s in {"0", "false", "no", "n", "off"}:
        return False
    return bool(default)


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return int(default)
    try:
        return int(str(raw).strip())
    except Exception:
        return int(default)


def _env_str(name: str, default: str) -> str:
    raw = os.getenv(name)
    if raw is None:
        return str(default)
    s = str(raw).strip()
    return s if s else str(default)


def _env_optional(name: str) -> str | None:
    raw = os.getenv(name)
    if raw is None:
        return None
    s = str(raw).strip()
    return s or None


def _env_csv(name: str) -> tuple[str, ...]:
    raw = os.getenv(name)
    if raw is None:
        return ()
    out: list[str] = []
    for part in str(raw).split(","):
        item = part.strip().lower()
        if item:
            out.append(item)
    return tuple(out)


@dataclass(frozen=True)
class Settings:
    # Idle sessions are torn down after this many milliseconds without activity.
    session_timeout_ms: int = field(default_factory=lambda: _env_int("SESSION_TIMEOUT", 600_000))
    # Upper bound for one start/status/shutdown command.
    command_timeout_ms: int = field(default_factory=lambda: _env_int("COMMAND_TIMEOUT", 30_000))

    # When set, this is the only command path sessions may execute.
    server_command_path: str | None = field(default_factory=lambda: _env_optional("SERVER_COMMAND_PATH"))
    # Optional navigation allowlist (comma-separated, supports "*.domain").
    allowed_hosts: tuple[str, ...] = field(default_factory=lambda: _env_csv("ALLOWED_HOSTS"))
    # Optional containment root for server log reads.
    log_allowed_dir: str | None = field(default_factory=lambda: _env_optional("LOG_ALLOWED_DIR"))

    browser_headless: bool = field(default_factory=lambda: _env_bool("BROWSER_HEADLESS", True))
    browser_timeout_ms: int = field(default_factory=lambda: _env_int("BROWSER_TIMEOUT", 30_000))

    rate_limit_session_max: int = field(default_factory=lambda: _env_int("RATE_LIMIT_SESSION_MAX", 10))
    rate_limit_session_window_ms: int = field(default_factory=lambda: _env_int("RATE_LIMIT_SESSION_WINDOW_MS", 60_000))
    rate_limit_tool_max: int = field(default_factory=lambda: _env_int("RATE_LIMIT_TOOL_MAX", 300))
    rate_limit_tool_window_ms: int = field(default_factory=lambda: _env_int("RATE_LIMIT_TOOL_WINDOW_MS", 60_000))

    log_level: str = field(default_factory=lambda: _env_str("LOG_LEVEL", "INFO").upper())
    log_format: str = field(default_factory=lambda: _env_str("LOG_FORMAT", "json").lower())

    health_host: str = field(default_factory=lambda: _env_str("HEALTH_HOST", "127.0.0.1"))
    health_port: int = field(default_factory=lambda: _env_int("HEALTH_PORT", 3000))


def validate_settings(settings: Settings) -> Settings:
    if settings.session_timeout_ms <= 0:
        raise SettingsError("SESSION_TIMEOUT must be a positive number")
    if settings.command_timeout_ms <= 0:
        raise SettingsError("COMMAND_TIMEOUT must be a positive number")
    if settings.browser_timeout_ms <= 0:
        raise SettingsError("BROWSER_TIMEOUT must be a positive number")
    if not (1 <= settings.health_port <= 65535):
        raise SettingsError("HEALTH_PORT must be between 1 and 65535")
    if settings.server_command_path and not os.path.isabs(settings.server_command_path):
        raise SettingsError("SERVER_COMMAND_PATH must be an absolute path")
    if settings.log_format not in {"json", "console"}:
        raise SettingsError("LOG_FORMAT must be 'json' or 'console'")
    return settings


def load_settings() -> Settings:
    return validate_settings(Settings())
