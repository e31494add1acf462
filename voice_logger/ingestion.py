from __future__ import annotations

import logging
from datetime import datetime

import discord

from .models import PresenceSnapshot, ToggleKind, VoiceSnapshot
from .tracker import SessionTracker

# (attribute, kind when turned on, kind when turned off), in logging order.
TOGGLE_FLAGS: tuple[tuple[str, ToggleKind, ToggleKind], ...] = (
    ("self_deaf", ToggleKind.DEAF, ToggleKind.UNDEAF),
    ("self_mute", ToggleKind.MUTE, ToggleKind.UNMUTE),
    ("streaming", ToggleKind.START_STREAM, ToggleKind.STOP_STREAM),
    ("self_video", ToggleKind.START_VIDEO, ToggleKind.STOP_VIDEO),
    ("server_deaf", ToggleKind.SERVER_DEAF, ToggleKind.SERVER_UNDEAF),
)


def diff_toggles(before: VoiceSnapshot, after: VoiceSnapshot) -> list[ToggleKind]:
    changes: list[ToggleKind] = []
    for attr, on_kind, off_kind in TOGGLE_FLAGS:
        old_value = getattr(before, attr)
        new_value = getattr(after, attr)
        if old_value == new_value:
            continue
        changes.append(on_kind if new_value else off_kind)
    return changes


def presence_from_member(member: discord.Member | None) -> PresenceSnapshot | None:
    # discord.py reports a member without presence data as offline everywhere, so only
    # a member missing from the cache is treated as unknown.
    if member is None:
        return None
    return PresenceSnapshot(
        desktop=member.desktop_status is not discord.Status.offline,
        web=member.web_status is not discord.Status.offline,
        mobile=member.mobile_status is not discord.Status.offline,
    )


def snapshot_from_discord(member: discord.Member, state: discord.VoiceState) -> VoiceSnapshot:
    guild = member.guild
    # The gateway payload may carry a partial member; presence lives on the cached one.
    cached = guild.get_member(member.id) if guild is not None else None
    return VoiceSnapshot(
        user_id=str(member.id),
        username=member.name,
        guild_id=guild.id if guild is not None else 0,
        guild_name=guild.name if guild is not None else None,
        channel_id=state.channel.id if state.channel else None,
        self_mute=state.self_mute,
        self_deaf=state.self_deaf,
        self_video=state.self_video,
        streaming=state.self_stream,
        server_deaf=state.deaf,
        is_bot=member.bot,
        presence=presence_from_member(cached),
    )


class VoiceEventAdapter:
    """Routes voice state updates for the tracked channel into the tracker."""

    def __init__(self, tracker: SessionTracker, logger: logging.Logger | None = None) -> None:
        self.tracker = tracker
        self.logger = logger or logging.getLogger(__name__)

    async def handle(self, before: VoiceSnapshot, after: VoiceSnapshot, now: datetime) -> None:
        if after.is_bot:
            return

        if after.guild_id != self.tracker.guild_id:
            return

        target = self.tracker.channel_id

        # In the tracked channel => ensure a session, then record any flag changes.
        if after.channel_id == target:
            await self.tracker.on_join(after, now)
            for kind in diff_toggles(before, after):
                await self.tracker.on_toggle(after, kind, now)
            return

        # Disconnected from the tracked channel => close the session.
        if before.channel_id == target and after.channel_id is None:
            await self.tracker.on_leave(before, after, now)
            return

        self.logger.debug(
            "Ignoring voice update for user %s: %s -> %s", after.user_id, before.channel_id, after.channel_id
        )
