from __future__ import annotations

import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv


class ConfigError(RuntimeError):
    pass


@dataclass(slots=True)
class DiscordConfig:
    token: str
    prefix: str = "!"
    application_id: int | None = None
    sync_commands_on_start: bool = True
    status_text: str = "Watching tickets"
    activity_type: str = "watching"
    allowed_mentions_everyone: bool = False


@dataclass(slots=True)
class DatabaseConfig:
    url: str = "sqlite:///./data/tickets.db"
    pool_min_size: int = 2
    pool_max_size: int = 10
    timeout_seconds: int = 30


@dataclass(slots=True)
class RedisConfig:
    enabled: bool = False
    url: str = "redis://localhost:6379/0"


@dataclass(slots=True)
class LoggingConfig:
    level: str = "INFO"
    directory: str = "logs"
    file_name: str = "bot.log"
    max_bytes: int = 10_000_000
    backup_count: int = 10
    json_console: bool = False


@dataclass(slots=True)
class TicketConfig:
    default_ticket_limit: int = 1
    default_cooldown_seconds: int = 0
    close_delay_seconds: float = 5.0
    autoclose_delete_delay_seconds: float = 0.5
    channel_prefix: str = "ticket"


@dataclass(slots=True)
class SchedulerConfig:
    priority_lease_ttl_seconds: int = 86_400
    urgent_interval_seconds: int = 3600
    high_interval_seconds: int = 3600
    low_interval_seconds: int = 7200
    escalation_sweep_seconds: int = 3600
    escalation_ping_seconds: int = 3600
    autoclose_sweep_seconds: int = 60
    reminder_sweep_seconds: int = 30
    edit_session_ttl_seconds: int = 600

    def interval_for(self, priority: str) -> int | None:
        return {
            "urgent": self.urgent_interval_seconds,
            "high": self.high_interval_seconds,
            "low": self.low_interval_seconds,
        }.get(priority)


@dataclass(slots=True)
class TranscriptConfig:
    html_enabled: bool = True
    txt_enabled: bool = True
    storage_directory: str = "artifacts/transcripts"


@dataclass(slots=True)
class FastApiConfig:
    enabled: bool = False
    host: str = "0.0.0.0"
    port: int = 8000
    api_key: str = ""


DEFAULT_EXTENSIONS = [
    "cogs.events",
    "cogs.tickets",
    "cogs.admin",
    "cogs.automation",
    "cogs.tags",
]


@dataclass(slots=True)
class AppConfig:
    discord: DiscordConfig
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    redis: RedisConfig = field(default_factory=RedisConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    tickets: TicketConfig = field(default_factory=TicketConfig)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    transcripts: TranscriptConfig = field(default_factory=TranscriptConfig)
    fastapi: FastApiConfig = field(default_factory=FastApiConfig)
    enabled_extensions: list[str] = field(default_factory=lambda: list(DEFAULT_EXTENSIONS))


def _get_env_str(key: str, fallback: str | None = None) -> str | None:
    value = os.getenv(key)
    if value is None:
        return fallback
    cleaned = value.strip()
    return cleaned if cleaned else fallback


def _as_bool(value: Any, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in {"1", "true", "yes", "on"}


def _as_int(value: Any, default: int) -> int:
    if value is None:
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _as_float(value: Any, default: float) -> float:
    if value is None:
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def _deep_get(data: dict[str, Any], *keys: str, default: Any = None) -> Any:
    node: Any = data
    for key in keys:
        if not isinstance(node, dict):
            return default
        node = node.get(key)
        if node is None:
            return default
    return node


def _load_yaml(path: Path) -> dict[str, Any]:
    if not path.exists():
        raise ConfigError(f"Missing config file: {path}")
    with path.open("r", encoding="utf-8") as handle:
        raw = yaml.safe_load(handle) or {}
    if not isinstance(raw, dict):
        raise ConfigError("Config root must be a mapping")
    return raw


def _positive(name: str, value: int) -> int:
    if value <= 0:
        raise ConfigError(f"{name} must be a positive number of seconds")
    return value


def _load_scheduler(raw: dict[str, Any]) -> SchedulerConfig:
    defaults = SchedulerConfig()
    values: dict[str, int] = {}
    for item in fields(SchedulerConfig):
        name = item.name
        values[name] = _positive(
            f"scheduler.{name}",
            _as_int(_deep_get(raw, "scheduler", name), getattr(defaults, name)),
        )
    return SchedulerConfig(**values)


def load_config(config_path: Path) -> AppConfig:
    env_path = config_path.parent.parent / ".env"
    load_dotenv(env_path)
    raw = _load_yaml(config_path)

    discord_token = _get_env_str("DISCORD_TOKEN", _deep_get(raw, "discord", "token"))
    if not discord_token or "${" in discord_token:
        raise ConfigError("DISCORD_TOKEN is required")

    discord_cfg = DiscordConfig(
        token=discord_token,
        prefix=str(_get_env_str("BOT_PREFIX", _deep_get(raw, "discord", "prefix", default="!"))),
        application_id=(
            int(_get_env_str("DISCORD_APPLICATION_ID"))
            if _get_env_str("DISCORD_APPLICATION_ID")
            else _deep_get(raw, "discord", "application_id")
        ),
        sync_commands_on_start=_as_bool(
            _get_env_str("SYNC_COMMANDS"),
            _as_bool(_deep_get(raw, "discord", "sync_commands_on_start"), True),
        ),
        status_text=str(_deep_get(raw, "discord", "status_text", default="Watching tickets")),
        activity_type=str(_deep_get(raw, "discord", "activity_type", default="watching")),
        allowed_mentions_everyone=_as_bool(
            _deep_get(raw, "discord", "allowed_mentions_everyone"), False
        ),
    )

    database_cfg = DatabaseConfig(
        url=str(_get_env_str("DATABASE_URL", _deep_get(raw, "database", "url", default="sqlite:///./data/tickets.db"))),
        pool_min_size=_as_int(
            _get_env_str("DB_POOL_MIN", None),
            _as_int(_deep_get(raw, "database", "pool_min_size"), 2),
        ),
        pool_max_size=_as_int(
            _get_env_str("DB_POOL_MAX", None),
            _as_int(_deep_get(raw, "database", "pool_max_size"), 10),
        ),
        timeout_seconds=_as_int(
            _get_env_str("DB_TIMEOUT_SECONDS", None),
            _as_int(_deep_get(raw, "database", "timeout_seconds"), 30),
        ),
    )

    redis_cfg = RedisConfig(
        enabled=_as_bool(_get_env_str("REDIS_ENABLED"), _as_bool(_deep_get(raw, "redis", "enabled"), False)),
        url=str(_get_env_str("REDIS_URL", _deep_get(raw, "redis", "url", default="redis://localhost:6379/0"))),
    )

    logging_cfg = LoggingConfig(
        level=str(_get_env_str("LOG_LEVEL", _deep_get(raw, "logging", "level", default="INFO"))),
        directory=str(_deep_get(raw, "logging", "directory", default="logs")),
        file_name=str(_deep_get(raw, "logging", "file_name", default="bot.log")),
        max_bytes=_as_int(_deep_get(raw, "logging", "max_bytes"), 10_000_000),
        backup_count=_as_int(_deep_get(raw, "logging", "backup_count"), 10),
        json_console=_as_bool(_deep_get(raw, "logging", "json_console"), False),
    )

    tickets_cfg = TicketConfig(
        default_ticket_limit=max(1, _as_int(_deep_get(raw, "tickets", "default_ticket_limit"), 1)),
        default_cooldown_seconds=max(0, _as_int(_deep_get(raw, "tickets", "default_cooldown_seconds"), 0)),
        close_delay_seconds=_as_float(_deep_get(raw, "tickets", "close_delay_seconds"), 5.0),
        autoclose_delete_delay_seconds=_as_float(
            _deep_get(raw, "tickets", "autoclose_delete_delay_seconds"), 0.5
        ),
        channel_prefix=str(_deep_get(raw, "tickets", "channel_prefix", default="ticket")),
    )

    transcript_cfg = TranscriptConfig(
        html_enabled=_as_bool(_deep_get(raw, "transcripts", "html_enabled"), True),
        txt_enabled=_as_bool(_deep_get(raw, "transcripts", "txt_enabled"), True),
        storage_directory=str(
            _deep_get(raw, "transcripts", "storage_directory", default="artifacts/transcripts")
        ),
    )

    fastapi_cfg = FastApiConfig(
        enabled=_as_bool(_deep_get(raw, "fastapi", "enabled"), False),
        host=str(_deep_get(raw, "fastapi", "host", default="0.0.0.0")),
        port=_as_int(_deep_get(raw, "fastapi", "port"), 8000),
        api_key=str(_get_env_str("STATUS_API_KEY", _deep_get(raw, "fastapi", "api_key", default=""))),
    )

    enabled_extensions = [
        str(ext)
        for ext in list(_deep_get(raw, "enabled_extensions", default=DEFAULT_EXTENSIONS))
    ]

    return AppConfig(
        discord=discord_cfg,
        database=database_cfg,
        redis=redis_cfg,
        logging=logging_cfg,
        tickets=tickets_cfg,
        scheduler=_load_scheduler(raw),
        transcripts=transcript_cfg,
        fastapi=fastapi_cfg,
        enabled_extensions=enabled_extensions,
    )
