from __future__ import annotations

import logging

import discord
from discord.ext import commands
from dotenv import load_dotenv

from .aggregator import DurationAggregator
from .config import Config, load_config
from .db import Database
from .errors import ErrorReporter
from .ingestion import VoiceEventAdapter, snapshot_from_discord
from .notifier import NotificationDispatcher
from .status_log import StatusEventLogger
from .tracker import SessionTracker, utc_now


class VoiceLoggerBot(commands.Bot):
    def __init__(self, config: Config, db: Database) -> None:
        intents = discord.Intents.none()
        intents.guilds = True
        intents.members = True
        intents.presences = True
        intents.voice_states = True

        super().__init__(command_prefix="!", intents=intents)

        self.config = config
        self.db = db
        self.logger = logging.getLogger("voice-logger-bot")

        errors = ErrorReporter()
        notifier = NotificationDispatcher(
            self.get_channel,
            join_channel_id=config.join_log_channel_id,
            leave_channel_id=config.leave_log_channel_id,
            total_time_channel_id=config.total_time_channel_id,
            tz=config.timezone,
            errors=errors,
        )
        aggregator = DurationAggregator(db, notifier, config.timezone, errors=errors)
        status_logger = StatusEventLogger(db, errors=errors)
        self.tracker = SessionTracker(
            db,
            aggregator,
            status_logger,
            notifier,
            guild_id=config.guild_id,
            channel_id=config.tracked_voice_channel_id,
            errors=errors,
        )
        self.adapter = VoiceEventAdapter(self.tracker)

        # runtime_ready prevents event handlers from running before the guild/channel checks pass.
        self.runtime_ready = False

    async def on_ready(self) -> None:
        self.logger.info("Connected as %s (%s)", self.user, self.user.id if self.user else "unknown")
        if self.runtime_ready:
            return

        if await self._validate_runtime_resources():
            self.runtime_ready = True
            self.logger.info("Runtime checks passed")

    async def _validate_runtime_resources(self) -> bool:
        guild = self.get_guild(self.config.guild_id)
        if guild is None:
            self.logger.error("Configured guild %s not found", self.config.guild_id)
            await self.close()
            return False

        tracked = guild.get_channel(self.config.tracked_voice_channel_id)
        if not isinstance(tracked, discord.VoiceChannel):
            self.logger.error(
                "Tracked channel %s is missing or not a voice channel", self.config.tracked_voice_channel_id
            )
            await self.close()
            return False

        # Log channels are resolved per message; a missing one only costs that message.
        for channel_id in (
            self.config.join_log_channel_id,
            self.config.leave_log_channel_id,
            self.config.total_time_channel_id,
        ):
            if channel_id is not None and guild.get_channel(channel_id) is None:
                self.logger.warning("Log channel %s not found in guild %s", channel_id, guild.id)

        return True

    async def on_voice_state_update(
        self,
        member: discord.Member,
        before: discord.VoiceState,
        after: discord.VoiceState,
    ) -> None:
        if not self.runtime_ready:
            return

        now = utc_now()
        try:
            await self.adapter.handle(
                snapshot_from_discord(member, before),
                snapshot_from_discord(member, after),
                now,
            )
        except Exception:  # pragma: no cover - runtime safety
            self.logger.exception("Error handling voice state update for user %s", member.id)

    async def close(self) -> None:
        await self.tracker.shutdown()
        self.db.close()
        await super().close()


def configure_logging() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )


def main() -> None:
    load_dotenv()
    configure_logging()

    config = load_config()
    db = Database(config.database_path)
    db.initialize()

    bot = VoiceLoggerBot(config=config, db=db)
    bot.run(config.discord_token, log_handler=None)


if __name__ == "__main__":
    main()
