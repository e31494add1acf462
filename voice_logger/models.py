from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum


class DeviceCategory(str, Enum):
    DESKTOP = "desktop"
    WEB = "web"
    MOBILE = "mobile"


# Serialization order for device sets.
DEVICE_ORDER: tuple[DeviceCategory, ...] = (
    DeviceCategory.DESKTOP,
    DeviceCategory.WEB,
    DeviceCategory.MOBILE,
)


class ToggleKind(str, Enum):
    MUTE = "Mute"
    UNMUTE = "Unmute"
    DEAF = "Deaf"
    UNDEAF = "Undeaf"
    START_STREAM = "Start Streaming"
    STOP_STREAM = "Stop Streaming"
    START_VIDEO = "Start Sharing Video"
    STOP_VIDEO = "Stop Sharing Video"
    SERVER_DEAF = "Server Deaf"
    SERVER_UNDEAF = "Server Undeaf"


class JoinResult(str, Enum):
    STARTED = "started"
    DUPLICATE = "duplicate"
    UNCLASSIFIED = "unclassified"
    IGNORED = "ignored"


@dataclass(frozen=True, slots=True)
class PresenceSnapshot:
    """Per-client online indicators; True means the client is not offline."""

    desktop: bool = False
    web: bool = False
    mobile: bool = False


@dataclass(frozen=True, slots=True)
class VoiceSnapshot:
    user_id: str
    username: str
    guild_id: int
    guild_name: str | None
    channel_id: int | None
    self_mute: bool = False
    self_deaf: bool = False
    self_video: bool = False
    streaming: bool = False
    server_deaf: bool = False
    is_bot: bool = False
    presence: PresenceSnapshot | None = None


@dataclass(frozen=True, slots=True)
class ActiveSession:
    user_id: str
    username: str
    joined_at: datetime
    devices: frozenset[DeviceCategory]


@dataclass(frozen=True, slots=True)
class EndedSession:
    user_id: str
    username: str
    devices: frozenset[DeviceCategory]
    joined_at: datetime
    duration: timedelta


@dataclass(frozen=True, slots=True)
class JoinRecord:
    user_id: str
    username: str
    server_name: str
    timestamp: datetime
    devices: frozenset[DeviceCategory]


@dataclass(frozen=True, slots=True)
class LeaveRecord:
    user_id: str
    username: str
    server_name: str
    timestamp: datetime


@dataclass(frozen=True, slots=True)
class ToggleEvent:
    event: ToggleKind
    timestamp: datetime


@dataclass(frozen=True, slots=True)
class SessionDuration:
    hours: int
    minutes: int
    seconds: int

    def as_timedelta(self) -> timedelta:
        return timedelta(hours=self.hours, minutes=self.minutes, seconds=self.seconds)


@dataclass(frozen=True, slots=True)
class SessionEntry:
    devices: frozenset[DeviceCategory]
    duration: SessionDuration
    adjusted_join_time: datetime


@dataclass(frozen=True, slots=True)
class DailyTotalRecord:
    discord_id: str
    discord_name: str
    server_name: str
    day: str
    created_at: datetime
    join_method: tuple[SessionEntry, ...]
    record_id: int | None = None
