from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import timedelta, timezone
from zoneinfo import ZoneInfo

from voice_logger.aggregator import DurationAggregator
from voice_logger.db import Database
from voice_logger.errors import ErrorReporter
from voice_logger.models import PresenceSnapshot, VoiceSnapshot
from voice_logger.notifier import NotificationDispatcher
from voice_logger.status_log import StatusEventLogger
from voice_logger.tracker import SessionTracker

BANGKOK = ZoneInfo("Asia/Bangkok")
PLUS_7 = timezone(timedelta(hours=7))

GUILD_ID = 1000
VOICE_CHANNEL_ID = 2000
JOIN_CHANNEL_ID = 3001
LEAVE_CHANNEL_ID = 3002
TOTAL_CHANNEL_ID = 3003


class FakeChannel:
    def __init__(self, delay_steps: int = 0) -> None:
        self.messages: list[str] = []
        self.kwargs: list[dict] = []
        self.delay_steps = delay_steps

    async def send(self, content: str, **kwargs):
        # Yield to the loop so concurrent handlers can interleave here.
        for _ in range(self.delay_steps):
            await asyncio.sleep(0)
        self.messages.append(content)
        self.kwargs.append(kwargs)


@dataclass
class Harness:
    db: Database
    channels: dict[int, FakeChannel]
    notifier: NotificationDispatcher
    aggregator: DurationAggregator
    status_logger: StatusEventLogger
    tracker: SessionTracker
    errors: ErrorReporter = field(default_factory=ErrorReporter)

    def messages(self, channel_id: int) -> list[str]:
        return self.channels[channel_id].messages


def build_harness(errors: ErrorReporter | None = None, delay_steps: int = 0) -> Harness:
    errors = errors or ErrorReporter()
    db = Database(":memory:")
    db.initialize()
    channels = {
        channel_id: FakeChannel(delay_steps)
        for channel_id in (JOIN_CHANNEL_ID, LEAVE_CHANNEL_ID, TOTAL_CHANNEL_ID)
    }
    notifier = NotificationDispatcher(
        channels.get,
        join_channel_id=JOIN_CHANNEL_ID,
        leave_channel_id=LEAVE_CHANNEL_ID,
        total_time_channel_id=TOTAL_CHANNEL_ID,
        tz=BANGKOK,
        errors=errors,
    )
    aggregator = DurationAggregator(db, notifier, BANGKOK, errors=errors)
    status_logger = StatusEventLogger(db, errors=errors)
    tracker = SessionTracker(
        db,
        aggregator,
        status_logger,
        notifier,
        guild_id=GUILD_ID,
        channel_id=VOICE_CHANNEL_ID,
        errors=errors,
    )
    return Harness(db, channels, notifier, aggregator, status_logger, tracker, errors)


def voice_state(
    user_id: str = "42",
    *,
    channel_id: int | None = VOICE_CHANNEL_ID,
    guild_id: int = GUILD_ID,
    guild_name: str | None = "Study Hall",
    username: str = "alice",
    presence: PresenceSnapshot | None = PresenceSnapshot(web=True),
    **flags,
) -> VoiceSnapshot:
    return VoiceSnapshot(
        user_id=user_id,
        username=username,
        guild_id=guild_id,
        guild_name=guild_name,
        channel_id=channel_id,
        presence=presence,
        **flags,
    )

