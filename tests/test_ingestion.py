import asyncio
from datetime import datetime, timedelta
from types import SimpleNamespace

import discord
from helpers import GUILD_ID, PLUS_7, VOICE_CHANNEL_ID, voice_state

from voice_logger.ingestion import VoiceEventAdapter, diff_toggles, presence_from_member, snapshot_from_discord
from voice_logger.models import PresenceSnapshot, ToggleKind

T0 = datetime(2024, 1, 1, 10, 0, tzinfo=PLUS_7)


def test_diff_toggles_reports_changes_in_order() -> None:
    before = voice_state(self_mute=False, self_deaf=False, streaming=True)
    after = voice_state(self_mute=True, self_deaf=True, streaming=False, server_deaf=True)

    assert diff_toggles(before, after) == [
        ToggleKind.DEAF,
        ToggleKind.MUTE,
        ToggleKind.STOP_STREAM,
        ToggleKind.SERVER_DEAF,
    ]


def test_diff_toggles_ignores_unchanged_flags() -> None:
    state = voice_state(self_mute=True, self_video=True)

    assert diff_toggles(state, state) == []


def test_mute_unmute_while_in_channel(harness) -> None:
    adapter = VoiceEventAdapter(harness.tracker)
    outside = voice_state(channel_id=None)
    inside = voice_state()
    muted = voice_state(self_mute=True)

    async def run():
        await adapter.handle(outside, inside, T0)
        await adapter.handle(inside, muted, T0 + timedelta(minutes=1))
        await adapter.handle(muted, inside, T0 + timedelta(minutes=2))

    asyncio.run(run())

    events = harness.db.get_voice_events("42", "alice")
    assert [event.event for event in events] == [ToggleKind.MUTE, ToggleKind.UNMUTE]
    assert harness.tracker.active_session("42").joined_at == T0
    assert len(harness.db.list_joins("42")) == 1


def test_disconnect_closes_session(harness) -> None:
    adapter = VoiceEventAdapter(harness.tracker)

    async def run():
        await adapter.handle(voice_state(channel_id=None), voice_state(), T0)
        await adapter.handle(voice_state(), voice_state(channel_id=None), T0 + timedelta(minutes=10))

    asyncio.run(run())

    assert harness.tracker.active_count() == 0
    assert len(harness.db.list_leaves("42")) == 1
    assert len(harness.db.list_daily_totals("42")) == 1


def test_moving_to_another_channel_is_not_a_leave(harness) -> None:
    adapter = VoiceEventAdapter(harness.tracker)

    async def run():
        await adapter.handle(voice_state(channel_id=None), voice_state(), T0)
        await adapter.handle(voice_state(), voice_state(channel_id=VOICE_CHANNEL_ID + 1), T0 + timedelta(minutes=1))

    asyncio.run(run())

    assert harness.tracker.active_count() == 1
    assert harness.db.list_leaves("42") == []


def test_other_guilds_and_bots_are_ignored(harness) -> None:
    adapter = VoiceEventAdapter(harness.tracker)

    async def run():
        await adapter.handle(voice_state(channel_id=None, guild_id=1), voice_state(guild_id=1), T0)
        await adapter.handle(voice_state(channel_id=None, is_bot=True), voice_state(is_bot=True), T0)

    asyncio.run(run())

    assert harness.tracker.active_count() == 0


def _member(**statuses):
    defaults = {
        "desktop_status": discord.Status.offline,
        "web_status": discord.Status.offline,
        "mobile_status": discord.Status.offline,
    }
    defaults.update(statuses)
    return SimpleNamespace(**defaults)


def test_presence_from_member() -> None:
    member = _member(web_status=discord.Status.online, mobile_status=discord.Status.idle)

    assert presence_from_member(member) == PresenceSnapshot(desktop=False, web=True, mobile=True)
    assert presence_from_member(None) is None


def test_snapshot_from_discord_reads_cached_presence() -> None:
    cached = _member(desktop_status=discord.Status.dnd)
    guild = SimpleNamespace(id=GUILD_ID, name="Study Hall", get_member=lambda user_id: cached)
    member = SimpleNamespace(id=42, name="alice", bot=False, guild=guild)
    state = SimpleNamespace(
        channel=SimpleNamespace(id=VOICE_CHANNEL_ID),
        self_mute=True,
        self_deaf=False,
        self_video=False,
        self_stream=True,
        deaf=False,
    )

    snapshot = snapshot_from_discord(member, state)

    assert snapshot.user_id == "42"
    assert snapshot.guild_name == "Study Hall"
    assert snapshot.channel_id == VOICE_CHANNEL_ID
    assert snapshot.self_mute is True
    assert snapshot.streaming is True
    assert snapshot.presence == PresenceSnapshot(desktop=True)


def test_snapshot_without_cached_member_has_unknown_presence() -> None:
    guild = SimpleNamespace(id=GUILD_ID, name="Study Hall", get_member=lambda user_id: None)
    member = SimpleNamespace(id=42, name="alice", bot=False, guild=guild)
    state = SimpleNamespace(channel=None, self_mute=False, self_deaf=False, self_video=False, self_stream=False, deaf=False)

    snapshot = snapshot_from_discord(member, state)

    assert snapshot.channel_id is None
    assert snapshot.presence is None


def test_cached_member_without_presence_reads_as_all_offline() -> None:
    # discord.py fills missing presence with offline statuses; the join still starts a session.
    snapshot = presence_from_member(_member())

    assert snapshot == PresenceSnapshot()
    assert snapshot is not None
