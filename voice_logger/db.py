from __future__ import annotations

import json
import sqlite3
from datetime import datetime, timezone
from pathlib import Path

from .devices import format_devices, parse_devices
from .models import (
    DailyTotalRecord,
    JoinRecord,
    LeaveRecord,
    SessionDuration,
    SessionEntry,
    ToggleEvent,
    ToggleKind,
)


class Database:
    """SQLite-backed document store for join/leave logs, toggle events and daily totals."""

    def __init__(self, db_path: str | Path) -> None:
        self._conn = sqlite3.connect(str(db_path))
        self._conn.row_factory = sqlite3.Row
        self._closed = False

    def close(self) -> None:
        if self._closed:
            return
        self._conn.close()
        self._closed = True

    def initialize(self) -> None:
        # join_log / leave_log: append-only membership history.
        # voice_events: one document per (user_id, username) holding a JSON list of toggles.
        # daily_totals: one document per user and local day with a JSON list of session entries.
        self._conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS join_log (
              id INTEGER PRIMARY KEY AUTOINCREMENT,
              user_id TEXT NOT NULL,
              username TEXT NOT NULL,
              server_name TEXT NOT NULL,
              timestamp_utc TEXT NOT NULL,
              devices TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_join_log_user
              ON join_log(user_id, timestamp_utc);

            CREATE TABLE IF NOT EXISTS leave_log (
              id INTEGER PRIMARY KEY AUTOINCREMENT,
              user_id TEXT NOT NULL,
              username TEXT NOT NULL,
              server_name TEXT NOT NULL,
              timestamp_utc TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS voice_events (
              user_id TEXT NOT NULL,
              username TEXT NOT NULL,
              events TEXT NOT NULL DEFAULT '[]',
              PRIMARY KEY (user_id, username)
            );

            CREATE TABLE IF NOT EXISTS daily_totals (
              id INTEGER PRIMARY KEY AUTOINCREMENT,
              discord_id TEXT NOT NULL,
              discord_name TEXT NOT NULL,
              server_name TEXT NOT NULL,
              day_local TEXT NOT NULL,
              created_at_utc TEXT NOT NULL,
              join_method TEXT NOT NULL DEFAULT '[]',
              UNIQUE (discord_id, day_local)
            );
            """
        )
        self._conn.commit()

    def insert_join(self, record: JoinRecord) -> None:
        self._conn.execute(
            """
            INSERT INTO join_log (user_id, username, server_name, timestamp_utc, devices)
            VALUES (?, ?, ?, ?, ?)
            """,
            (
                record.user_id,
                record.username,
                record.server_name,
                _to_utc(record.timestamp).isoformat(),
                format_devices(record.devices),
            ),
        )
        self._conn.commit()

    def find_latest_join(self, user_id: str) -> JoinRecord | None:
        row = self._conn.execute(
            """
            SELECT user_id, username, server_name, timestamp_utc, devices
            FROM join_log
            WHERE user_id = ?
            ORDER BY timestamp_utc DESC, id DESC
            LIMIT 1
            """,
            (user_id,),
        ).fetchone()
        if row is None:
            return None
        return _join_from_row(row)

    def list_joins(self, user_id: str) -> list[JoinRecord]:
        rows = self._conn.execute(
            """
            SELECT user_id, username, server_name, timestamp_utc, devices
            FROM join_log
            WHERE user_id = ?
            ORDER BY id ASC
            """,
            (user_id,),
        ).fetchall()
        return [_join_from_row(row) for row in rows]

    def insert_leave(self, record: LeaveRecord) -> None:
        self._conn.execute(
            """
            INSERT INTO leave_log (user_id, username, server_name, timestamp_utc)
            VALUES (?, ?, ?, ?)
            """,
            (record.user_id, record.username, record.server_name, _to_utc(record.timestamp).isoformat()),
        )
        self._conn.commit()

    def list_leaves(self, user_id: str) -> list[LeaveRecord]:
        rows = self._conn.execute(
            """
            SELECT user_id, username, server_name, timestamp_utc
            FROM leave_log
            WHERE user_id = ?
            ORDER BY id ASC
            """,
            (user_id,),
        ).fetchall()
        return [
            LeaveRecord(
                user_id=row["user_id"],
                username=row["username"],
                server_name=row["server_name"],
                timestamp=datetime.fromisoformat(row["timestamp_utc"]),
            )
            for row in rows
        ]

    def push_voice_event(self, user_id: str, username: str, event: ToggleEvent) -> None:
        """Create the user's event document if needed and append ``event`` to it."""
        payload = {"event": event.event.value, "timestamp": _to_utc(event.timestamp).isoformat()}
        with self._conn:
            row = self._conn.execute(
                "SELECT events FROM voice_events WHERE user_id = ? AND username = ?",
                (user_id, username),
            ).fetchone()
            if row is None:
                self._conn.execute(
                    "INSERT INTO voice_events (user_id, username, events) VALUES (?, ?, ?)",
                    (user_id, username, json.dumps([payload])),
                )
                return

            events = json.loads(row["events"])
            events.append(payload)
            self._conn.execute(
                "UPDATE voice_events SET events = ? WHERE user_id = ? AND username = ?",
                (json.dumps(events), user_id, username),
            )

    def get_voice_events(self, user_id: str, username: str) -> list[ToggleEvent]:
        row = self._conn.execute(
            "SELECT events FROM voice_events WHERE user_id = ? AND username = ?",
            (user_id, username),
        ).fetchone()
        if row is None:
            return []
        return [
            ToggleEvent(event=ToggleKind(item["event"]), timestamp=datetime.fromisoformat(item["timestamp"]))
            for item in json.loads(row["events"])
        ]

    def find_daily_total(self, discord_id: str, day_local: str) -> DailyTotalRecord | None:
        row = self._conn.execute(
            """
            SELECT id, discord_id, discord_name, server_name, day_local, created_at_utc, join_method
            FROM daily_totals
            WHERE discord_id = ? AND day_local = ?
            """,
            (discord_id, day_local),
        ).fetchone()
        if row is None:
            return None
        return _daily_total_from_row(row)

    def insert_daily_total(self, record: DailyTotalRecord) -> DailyTotalRecord:
        cursor = self._conn.execute(
            """
            INSERT INTO daily_totals
              (discord_id, discord_name, server_name, day_local, created_at_utc, join_method)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                record.discord_id,
                record.discord_name,
                record.server_name,
                record.day,
                _to_utc(record.created_at).isoformat(),
                _dump_entries(record.join_method),
            ),
        )
        self._conn.commit()
        return DailyTotalRecord(
            discord_id=record.discord_id,
            discord_name=record.discord_name,
            server_name=record.server_name,
            day=record.day,
            created_at=record.created_at,
            join_method=record.join_method,
            record_id=cursor.lastrowid,
        )

    def update_daily_total(self, record: DailyTotalRecord) -> None:
        if record.record_id is None:
            raise ValueError("Cannot update a daily total that was never stored")

        self._conn.execute(
            "UPDATE daily_totals SET join_method = ?, server_name = ? WHERE id = ?",
            (_dump_entries(record.join_method), record.server_name, record.record_id),
        )
        self._conn.commit()

    def list_daily_totals(self, discord_id: str) -> list[DailyTotalRecord]:
        rows = self._conn.execute(
            """
            SELECT id, discord_id, discord_name, server_name, day_local, created_at_utc, join_method
            FROM daily_totals
            WHERE discord_id = ?
            ORDER BY day_local ASC
            """,
            (discord_id,),
        ).fetchall()
        return [_daily_total_from_row(row) for row in rows]


def _to_utc(value: datetime) -> datetime:
    """Normalize a timezone-aware datetime to UTC for storage."""
    if value.tzinfo is None:
        raise ValueError("Datetime must be timezone-aware")
    return value.astimezone(timezone.utc)


def _join_from_row(row: sqlite3.Row) -> JoinRecord:
    return JoinRecord(
        user_id=row["user_id"],
        username=row["username"],
        server_name=row["server_name"],
        timestamp=datetime.fromisoformat(row["timestamp_utc"]),
        devices=parse_devices(row["devices"]),
    )


def _dump_entries(entries: tuple[SessionEntry, ...]) -> str:
    return json.dumps(
        [
            {
                "devices": format_devices(entry.devices),
                "duration": {
                    "hours": entry.duration.hours,
                    "minutes": entry.duration.minutes,
                    "seconds": entry.duration.seconds,
                },
                "adjusted_join_time": _to_utc(entry.adjusted_join_time).isoformat(),
            }
            for entry in entries
        ]
    )


def _daily_total_from_row(row: sqlite3.Row) -> DailyTotalRecord:
    entries = tuple(
        SessionEntry(
            devices=parse_devices(item["devices"]),
            duration=SessionDuration(**item["duration"]),
            adjusted_join_time=datetime.fromisoformat(item["adjusted_join_time"]),
        )
        for item in json.loads(row["join_method"])
    )
    return DailyTotalRecord(
        discord_id=row["discord_id"],
        discord_name=row["discord_name"],
        server_name=row["server_name"],
        day=row["day_local"],
        created_at=datetime.fromisoformat(row["created_at_utc"]),
        join_method=entries,
        record_id=row["id"],
    )
