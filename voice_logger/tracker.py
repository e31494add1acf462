from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncIterator

from .aggregator import DurationAggregator
from .db import Database
from .devices import classify_devices
from .errors import ErrorReporter, InvalidTimestampError, MissingContextError, PersistenceError
from .models import (
    ActiveSession,
    EndedSession,
    JoinRecord,
    JoinResult,
    LeaveRecord,
    ToggleKind,
    VoiceSnapshot,
)
from .notifier import NotificationDispatcher
from .status_log import StatusEventLogger


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class KeyedLock:
    """One asyncio.Lock per key, discarded once nobody holds or waits on it."""

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: defaultdict[str, int] = defaultdict(int)

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] += 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if self._users[key] == 0:
                del self._users[key]
                self._locks.pop(key, None)

    def __len__(self) -> int:
        return len(self._locks)


class SessionTable:
    """Active sessions keyed by user id, guarded by a single lock."""

    def __init__(self) -> None:
        self._sessions: dict[str, ActiveSession] = {}
        self._lock = asyncio.Lock()

    async def get(self, user_id: str) -> ActiveSession | None:
        async with self._lock:
            return self._sessions.get(user_id)

    async def add(self, session: ActiveSession) -> bool:
        async with self._lock:
            if session.user_id in self._sessions:
                return False
            self._sessions[session.user_id] = session
            return True

    async def pop(self, user_id: str) -> ActiveSession | None:
        async with self._lock:
            return self._sessions.pop(user_id, None)

    async def clear(self) -> int:
        async with self._lock:
            count = len(self._sessions)
            self._sessions.clear()
            return count

    def peek(self, user_id: str) -> ActiveSession | None:
        return self._sessions.get(user_id)

    def __len__(self) -> int:
        return len(self._sessions)


class SessionTracker:
    """Join/leave state machine for members of the tracked voice channel.

    Work for one user (session lookup, record writes and the daily merge) runs
    under that user's lock; different users are processed concurrently.
    """

    def __init__(
        self,
        db: Database,
        aggregator: DurationAggregator,
        status_logger: StatusEventLogger,
        notifier: NotificationDispatcher,
        *,
        guild_id: int,
        channel_id: int,
        errors: ErrorReporter | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.db = db
        self.aggregator = aggregator
        self.status_logger = status_logger
        self.notifier = notifier
        self.guild_id = guild_id
        self.channel_id = channel_id
        self.errors = errors or ErrorReporter()
        self.logger = logger or logging.getLogger(__name__)

        self._sessions = SessionTable()
        self._locks = KeyedLock()

    def active_session(self, user_id: str) -> ActiveSession | None:
        return self._sessions.peek(user_id)

    def active_count(self) -> int:
        return len(self._sessions)

    def is_target(self, guild_id: int, channel_id: int | None) -> bool:
        return guild_id == self.guild_id and channel_id == self.channel_id

    async def on_join(self, state: VoiceSnapshot, now: datetime) -> JoinResult:
        if not self.is_target(state.guild_id, state.channel_id):
            return JoinResult.IGNORED

        if not self._valid_timestamp(now, "start session", state.user_id):
            return JoinResult.IGNORED

        async with self._locks.hold(state.user_id):
            if await self._sessions.get(state.user_id) is not None:
                self.logger.debug("Ignoring duplicate join for user %s", state.user_id)
                return JoinResult.DUPLICATE

            if state.guild_name is None:
                self.errors.report(
                    MissingContextError("Guild information not available"),
                    "start session",
                    user_id=state.user_id,
                )
                return JoinResult.UNCLASSIFIED

            devices = classify_devices(state.presence)
            if devices is None:
                self.errors.report(
                    MissingContextError("Device information not available"),
                    "start session",
                    user_id=state.user_id,
                )
                return JoinResult.UNCLASSIFIED

            session = ActiveSession(
                user_id=state.user_id,
                username=state.username,
                joined_at=now,
                devices=devices,
            )
            await self._sessions.add(session)
            self.logger.info("Session started: user=%s", state.user_id)

            with self.errors.guard("log join", PersistenceError, user_id=state.user_id):
                self.db.insert_join(
                    JoinRecord(
                        user_id=state.user_id,
                        username=state.username,
                        server_name=state.guild_name,
                        timestamp=now,
                        devices=devices,
                    )
                )

            await self.notifier.joined(state.username, now, state.guild_name, devices)
            return JoinResult.STARTED

    async def on_leave(self, before: VoiceSnapshot, after: VoiceSnapshot, now: datetime) -> EndedSession | None:
        if not self.is_target(before.guild_id, before.channel_id) or after.channel_id is not None:
            return None

        if not self._valid_timestamp(now, "end session", before.user_id):
            return None

        server_name = before.guild_name or after.guild_name
        if server_name is None:
            self.errors.report(
                MissingContextError("Guild information not available"),
                "end session",
                user_id=before.user_id,
            )
            return None

        async with self._locks.hold(before.user_id):
            with self.errors.guard("log leave", PersistenceError, user_id=before.user_id):
                self.db.insert_leave(
                    LeaveRecord(
                        user_id=before.user_id,
                        username=before.username,
                        server_name=server_name,
                        timestamp=now,
                    )
                )

            await self.notifier.left(before.username, now, server_name)

            session = await self._sessions.pop(before.user_id)
            if session is None:
                self.logger.info("No active session for user %s; skipping total time", before.user_id)
                return None

            ended = EndedSession(
                user_id=session.user_id,
                username=before.username,
                devices=session.devices,
                joined_at=session.joined_at,
                duration=now - session.joined_at,
            )
            self.logger.info("Session ended: user=%s tracked=%ss", ended.user_id, int(ended.duration.total_seconds()))
            await self.aggregator.record(ended, server_name, now)
            return ended

    async def on_toggle(self, state: VoiceSnapshot, kind: ToggleKind, now: datetime) -> None:
        if not self._valid_timestamp(now, "log voice event", state.user_id):
            return

        async with self._locks.hold(state.user_id):
            self.status_logger.append(state.user_id, state.username, kind, now)

    async def shutdown(self) -> int:
        lost = await self._sessions.clear()
        if lost:
            self.logger.warning("Dropping %d active sessions on shutdown", lost)
        return lost

    def _valid_timestamp(self, now: datetime, action: str, user_id: str) -> bool:
        if now.tzinfo is None or now.utcoffset() is None:
            self.errors.report(InvalidTimestampError(f"Naive timestamp {now.isoformat()}"), action, user_id=user_id)
            return False
        return True
