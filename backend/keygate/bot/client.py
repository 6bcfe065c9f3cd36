# keygate/bot/client.py
import asyncio
import datetime as dt
import logging

import discord
from discord.ext import commands

from keygate.config import settings as default_settings
from keygate.services.cooldown import CooldownPolicy
from keygate.services.ephemeral import IssueCooldown, PendingResetRegister
from keygate.services.lifecycle import KeyLifecycleEngine
from keygate.services.store_factory import build_storage
from .cog import KeyCommands
from .interactions import PanelView
from .presenters import GENERIC_FAILURE
from .privileges import is_operator, resolve_tiers

logger = logging.getLogger(__name__)


class KeyBot(commands.Bot):
    """
    Discord front-end for the key lifecycle engine.

    Holds the engine plus the two pieces of short-lived in-process state:
    pending HWID-reset confirmations and the !getkey issue cooldown.
    """

    def __init__(self, engine: KeyLifecycleEngine, settings, pending=None, issue_gate=None):
        intents = discord.Intents.default()
        intents.message_content = True
        intents.members = True
        super().__init__(command_prefix="!", intents=intents)
        self.engine = engine
        self.settings = settings
        self.pending = pending or PendingResetRegister(
            ttl=dt.timedelta(seconds=settings.pending_reset_ttl_seconds)
        )
        self.issue_gate = issue_gate or IssueCooldown(
            window=dt.timedelta(seconds=settings.trial_key_cooldown_seconds)
        )

    async def setup_hook(self):
        await self.add_cog(KeyCommands(self))
        self.add_view(PanelView(self))  # Persistent panel buttons survive restarts
        if self.settings.discord_guild_id:
            guild = discord.Object(id=self.settings.discord_guild_id)
            self.tree.copy_global_to(guild=guild)
            await self.tree.sync(guild=guild)
            logger.info("Commands synced to guild ID: %s", self.settings.discord_guild_id)
        else:
            await self.tree.sync()
            logger.info("Commands synced globally")

    async def on_ready(self):
        logger.info("Bot logged in as %s", self.user)

    async def on_command_error(self, ctx: commands.Context, error: commands.CommandError):
        if isinstance(error, commands.CommandNotFound):
            return
        logger.error("Command %s failed", ctx.command, exc_info=error)
        try:
            await ctx.reply(GENERIC_FAILURE)
        except discord.HTTPException as e:
            logger.warning("Could not report failure to user: %s", e)

    # ---------------- helpers used by the flows ----------------
    def tiers_for(self, member):
        return resolve_tiers(member, self.settings)

    def is_operator(self, member) -> bool:
        return is_operator(member, self.settings)

    async def grant_premium(self, member) -> bool:
        """Give member the premium role; False if it could not be granted"""
        guild = getattr(member, "guild", None)
        if guild is None:
            return False
        role = discord.utils.get(guild.roles, name=self.settings.role_premium)
        if role is None:
            logger.warning("Premium role %r not found in guild %s", self.settings.role_premium, guild.id)
            return False
        if role in member.roles:
            return True
        try:
            await member.add_roles(role, reason="License key redeemed")
        except discord.HTTPException as e:
            logger.warning("Could not grant premium role to %s: %s", member.id, e)
            return False
        return True

    async def log_event(self, text: str) -> None:
        """Post to the staff log channel when one is configured"""
        if not self.settings.log_channel_id:
            return
        channel = self.get_channel(self.settings.log_channel_id)
        if channel is None:
            logger.warning("Log channel %s not found", self.settings.log_channel_id)
            return
        try:
            await channel.send(text)
        except discord.HTTPException as e:
            logger.warning("Could not post to log channel: %s", e)


def build_bot(engine: KeyLifecycleEngine, settings=None) -> KeyBot:
    return KeyBot(engine, settings or default_settings)


async def _run(settings) -> None:
    storage = build_storage(settings.database_url, settings.generate_schemas)
    engine = KeyLifecycleEngine(
        storage,
        policy=CooldownPolicy.from_settings(settings),
        max_batch=settings.api_max_batch,
    )
    await storage.connect()
    bot = build_bot(engine, settings)
    try:
        await bot.start(settings.discord_token)
    finally:
        if not bot.is_closed():
            await bot.close()
        await storage.close()


def main() -> None:
    """Run the bot on its own, without the HTTP API"""
    logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    if not default_settings.discord_token:
        logger.critical("Missing DISCORD_TOKEN environment variable!")
        raise SystemExit(1)
    asyncio.run(_run(default_settings))


if __name__ == "__main__":
    main()
