from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

DEFAULT_TIMEZONE = "Asia/Bangkok"
DEFAULT_DB_PATH = "voice_logger.db"


@dataclass(frozen=True, slots=True)
class Config:
    discord_token: str
    guild_id: int
    tracked_voice_channel_id: int
    join_log_channel_id: int
    leave_log_channel_id: int
    total_time_channel_id: int | None
    timezone: ZoneInfo
    database_path: Path


def _required_env(name: str) -> str:
    value = os.getenv(name)
    if not value:
        raise ValueError(f"Missing required environment variable: {name}")
    return value.strip()


def _parse_positive_int(name: str, value: str) -> int:
    try:
        parsed = int(value)
    except ValueError as exc:
        raise ValueError(f"Environment variable {name} must be an integer") from exc

    if parsed <= 0:
        raise ValueError(f"Environment variable {name} must be positive")
    return parsed


def _required_int_env(name: str) -> int:
    return _parse_positive_int(name, _required_env(name))


def _optional_int_env(name: str) -> int | None:
    value = os.getenv(name, "").strip()
    if not value:
        return None
    return _parse_positive_int(name, value)


def _timezone_from_env(name: str) -> ZoneInfo:
    tz_name = os.getenv(name, "").strip() or DEFAULT_TIMEZONE
    try:
        return ZoneInfo(tz_name)
    except ZoneInfoNotFoundError as exc:
        raise ValueError(f"Invalid timezone in {name}: {tz_name}") from exc


def load_config() -> Config:
    return Config(
        discord_token=_required_env("DISCORD_TOKEN"),
        guild_id=_required_int_env("GUILD_ID"),
        tracked_voice_channel_id=_required_int_env("TRACKED_VOICE_CHANNEL_ID"),
        join_log_channel_id=_required_int_env("JOIN_LOG_CHANNEL_ID"),
        leave_log_channel_id=_required_int_env("LEAVE_LOG_CHANNEL_ID"),
        total_time_channel_id=_optional_int_env("TOTAL_TIME_CHANNEL_ID"),
        timezone=_timezone_from_env("TIMEZONE"),
        database_path=Path(os.getenv("DATABASE_PATH", "").strip() or DEFAULT_DB_PATH),
    )
