from __future__ import annotations

import logging
import math
from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo

from .db import Database
from .errors import ErrorReporter, PersistenceError
from .models import DailyTotalRecord, DeviceCategory, EndedSession, SessionDuration, SessionEntry
from .notifier import NotificationDispatcher

# Baseline adjusted join time for the first session entry of a day.
EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def split_duration(duration: timedelta) -> SessionDuration:
    """Split into whole hours, whole minutes and half-up rounded seconds."""
    total = max(0.0, duration.total_seconds())
    hours = int(total // 3600)
    remainder = total - hours * 3600
    minutes = int(remainder // 60)
    seconds = math.floor(remainder - minutes * 60 + 0.5)
    return SessionDuration(hours=hours, minutes=minutes, seconds=seconds)


def local_day_key(dt: datetime, tz: ZoneInfo) -> str:
    return dt.astimezone(tz).date().isoformat()


class DurationAggregator:
    def __init__(
        self,
        db: Database,
        notifier: NotificationDispatcher,
        tz: ZoneInfo,
        errors: ErrorReporter | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.db = db
        self.notifier = notifier
        self.tz = tz
        self.errors = errors or ErrorReporter()
        self.logger = logger or logging.getLogger(__name__)
        # user_id -> minutes of the session being announced. Overwritten, never summed,
        # and dropped once the total-time message has gone out.
        self._last_session_minutes: dict[str, float] = {}

    def last_session_minutes(self, user_id: str) -> float | None:
        return self._last_session_minutes.get(user_id)

    async def record(self, ended: EndedSession, server_name: str, now: datetime) -> DailyTotalRecord | None:
        """Merge an ended session into today's record and announce its duration."""
        if ended.duration < timedelta(0):
            self.logger.warning(
                "Negative session duration for user=%s (%s); recording zero", ended.user_id, ended.duration
            )

        minutes = max(0.0, ended.duration.total_seconds()) / 60
        self._last_session_minutes[ended.user_id] = minutes
        duration = split_duration(ended.duration)

        stored: DailyTotalRecord | None = None
        with self.errors.guard("save total time", PersistenceError, user_id=ended.user_id):
            stored = self._merge(ended, duration, server_name, now)

        devices = self._latest_devices(ended)
        cached = self._last_session_minutes[ended.user_id]
        try:
            await self.notifier.total_time(ended.username, split_duration(timedelta(minutes=cached)), devices)
        finally:
            self._last_session_minutes.pop(ended.user_id, None)
        return stored

    def _merge(
        self,
        ended: EndedSession,
        duration: SessionDuration,
        server_name: str,
        now: datetime,
    ) -> DailyTotalRecord:
        day = local_day_key(now, self.tz)
        existing = self.db.find_daily_total(ended.user_id, day)

        if existing is None:
            entry = SessionEntry(devices=ended.devices, duration=duration, adjusted_join_time=EPOCH)
            record = self.db.insert_daily_total(
                DailyTotalRecord(
                    discord_id=ended.user_id,
                    discord_name=ended.username,
                    server_name=server_name,
                    day=day,
                    created_at=now,
                    join_method=(entry,),
                )
            )
            self.logger.info(
                "Total time for user %s on %s on server %s saved: %d hours, %d minutes, %d seconds",
                ended.username,
                day,
                server_name,
                duration.hours,
                duration.minutes,
                duration.seconds,
            )
            return record

        # Running offset: the previous entry's adjusted time plus this session's length.
        previous = existing.join_method[-1].adjusted_join_time if existing.join_method else EPOCH
        entry = SessionEntry(
            devices=ended.devices,
            duration=duration,
            adjusted_join_time=previous + duration.as_timedelta(),
        )
        record = DailyTotalRecord(
            discord_id=existing.discord_id,
            discord_name=existing.discord_name,
            server_name=server_name,
            day=existing.day,
            created_at=existing.created_at,
            join_method=existing.join_method + (entry,),
            record_id=existing.record_id,
        )
        self.db.update_daily_total(record)
        self.logger.info(
            "Total time for user %s on %s on server %s updated with %d hours, %d minutes, %d seconds",
            ended.username,
            day,
            server_name,
            duration.hours,
            duration.minutes,
            duration.seconds,
        )
        return record

    def _latest_devices(self, ended: EndedSession) -> frozenset[DeviceCategory]:
        devices = ended.devices
        with self.errors.guard("find latest join", PersistenceError, user_id=ended.user_id):
            latest = self.db.find_latest_join(ended.user_id)
            if latest is not None:
                devices = latest.devices
        return devices
