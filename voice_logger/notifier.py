from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Protocol
from zoneinfo import ZoneInfo

import discord

from .devices import format_devices
from .errors import ErrorReporter, NotificationError
from .models import DeviceCategory, SessionDuration


class TextChannelLike(Protocol):
    async def send(self, content: str, **kwargs): ...


ChannelResolver = Callable[[int], "TextChannelLike | None"]


def describe_devices(devices: frozenset[DeviceCategory]) -> str:
    return format_devices(devices) or "no visible client"


def format_join_message(
    username: str,
    joined_at: datetime,
    server_name: str,
    devices: frozenset[DeviceCategory],
    tz: ZoneInfo,
) -> str:
    return (
        f"User {username} joined the voice channel at {joined_at.astimezone(tz).isoformat()} "
        f"on server {server_name} using {describe_devices(devices)}"
    )


def format_leave_message(username: str, left_at: datetime, server_name: str, tz: ZoneInfo) -> str:
    return f"User {username} left the voice channel at {left_at.astimezone(tz).isoformat()} on server {server_name}"


def format_total_time_message(
    username: str,
    duration: SessionDuration,
    devices: frozenset[DeviceCategory] | None = None,
) -> str:
    message = (
        f"User {username} spent a total of {duration.hours} hours, {duration.minutes} minutes, "
        f"{duration.seconds} seconds in the voice channel."
    )
    if devices:
        message = f"{message} Devices: {format_devices(devices)}"
    return message


class NotificationDispatcher:
    """Fire-and-forget text notifications for join, leave and total-time events."""

    def __init__(
        self,
        resolve_channel: ChannelResolver,
        *,
        join_channel_id: int,
        leave_channel_id: int,
        total_time_channel_id: int | None,
        tz: ZoneInfo,
        errors: ErrorReporter | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.resolve_channel = resolve_channel
        self.join_channel_id = join_channel_id
        self.leave_channel_id = leave_channel_id
        self.total_time_channel_id = total_time_channel_id
        self.tz = tz
        self.errors = errors or ErrorReporter()
        self.logger = logger or logging.getLogger(__name__)

    async def joined(
        self,
        username: str,
        joined_at: datetime,
        server_name: str,
        devices: frozenset[DeviceCategory],
    ) -> None:
        text = format_join_message(username, joined_at, server_name, devices, self.tz)
        await self._send(self.join_channel_id, text)

    async def left(self, username: str, left_at: datetime, server_name: str) -> None:
        await self._send(self.leave_channel_id, format_leave_message(username, left_at, server_name, self.tz))

    async def total_time(
        self,
        username: str,
        duration: SessionDuration,
        devices: frozenset[DeviceCategory] | None = None,
    ) -> None:
        if self.total_time_channel_id is None:
            return
        await self._send(self.total_time_channel_id, format_total_time_message(username, duration, devices))

    async def _send(self, channel_id: int, text: str) -> None:
        with self.errors.guard("send notification", NotificationError, channel_id=channel_id):
            channel = self.resolve_channel(channel_id)
            if channel is None:
                raise NotificationError(f"Channel with ID {channel_id} not found")

            # Never ping users from activity logs.
            await channel.send(f"```{text}```", allowed_mentions=discord.AllowedMentions.none())
            self.logger.debug("Sent notification to channel %s", channel_id)
