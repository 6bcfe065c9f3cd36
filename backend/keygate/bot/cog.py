# keygate/bot/cog.py
import datetime as dt
import io
import logging

import discord
from discord import app_commands
from discord.ext import commands

from keygate.services.lifecycle import MAX_DURATION_DAYS
from . import interactions
from .presenters import BLACKLIST_MESSAGES, GENERIC_FAILURE, format_duration

logger = logging.getLogger(__name__)


class KeyCommands(commands.Cog):
    """Slash commands plus the legacy !panel / !getkey text commands"""

    def __init__(self, bot):
        self.bot = bot

    # ---------------- staff ----------------
    @app_commands.command(name="stats", description="Show key and user counts (staff)")
    async def stats(self, interaction: discord.Interaction):
        await interactions.show_stats(self.bot, interaction)

    @app_commands.command(name="blacklist", description="Permanently disable a key (staff)")
    @app_commands.describe(key="The key to blacklist")
    async def blacklist(self, interaction: discord.Interaction, key: str):
        if not self.bot.is_operator(interaction.user):
            await interaction.response.send_message(interactions.OPERATOR_ONLY, ephemeral=True)
            return
        await interaction.response.defer(ephemeral=True, thinking=True)
        result = await self.bot.engine.blacklist(key, str(interaction.user.id))
        if result.ok:
            await self.bot.log_event(f"⛔ <@{interaction.user.id}> blacklisted `{key.strip().upper()}`")
        await interaction.followup.send(BLACKLIST_MESSAGES[result.outcome], ephemeral=True)

    @app_commands.command(name="addkey", description="Create a batch of keys (staff)")
    @app_commands.describe(quantity="How many keys to create", duration="Days until expiry, 0 for lifetime")
    async def addkey(self, interaction: discord.Interaction, quantity: int, duration: int = 0):
        if not self.bot.is_operator(interaction.user):
            await interaction.response.send_message(interactions.OPERATOR_ONLY, ephemeral=True)
            return
        cap = self.bot.settings.chat_max_batch
        if quantity < 1 or quantity > cap:
            await interaction.response.send_message(f"❌ Quantity must be between 1 and {cap}.", ephemeral=True)
            return
        if duration < 0 or duration > MAX_DURATION_DAYS:
            await interaction.response.send_message(
                f"❌ Duration must be between 0 and {MAX_DURATION_DAYS} days.", ephemeral=True
            )
            return

        await interaction.response.defer(ephemeral=True, thinking=True)
        created = await self.bot.engine.create_keys(
            quantity, duration_days=duration, created_by=str(interaction.user.id), max_quantity=cap
        )
        expiry = f"{duration} day(s)" if duration else "lifetime"
        body = "\n".join(c.key for c in created)
        keys_file = discord.File(io.BytesIO(body.encode("utf-8")), filename="keys.txt")
        await interaction.followup.send(
            f"✅ Created **{len(created)}** key(s) · {expiry}", file=keys_file, ephemeral=True
        )
        await self.bot.log_event(f"🆕 <@{interaction.user.id}> created {len(created)} key(s) · {expiry}")

    # ---------------- members ----------------
    @app_commands.command(name="redeem", description="Redeem a license key")
    @app_commands.describe(key="Your license key")
    async def redeem(self, interaction: discord.Interaction, key: str):
        await interaction.response.defer(ephemeral=True, thinking=True)
        text = await interactions.redeem_for_member(self.bot, interaction.user, key)
        await interaction.followup.send(text, ephemeral=True)

    @app_commands.command(name="resethwid", description="Reset the HWID bound to one of your keys")
    async def resethwid(self, interaction: discord.Interaction):
        await interactions.open_reset_menu(self.bot, interaction)

    @app_commands.command(name="managekey", description="List your keys")
    async def managekey(self, interaction: discord.Interaction):
        await interactions.show_user_keys(self.bot, interaction)

    # ---------------- legacy text commands ----------------
    @commands.command(name="panel")
    async def panel(self, ctx: commands.Context):
        if not self.bot.is_operator(ctx.author):
            await ctx.reply(interactions.OPERATOR_ONLY)
            return
        embed = discord.Embed(
            title="🔑 Key Panel",
            description="Redeem a key, reset your HWID or check your keys.",
            color=discord.Color.blurple(),
        )
        await ctx.send(embed=embed, view=interactions.PanelView(self.bot))

    @commands.command(name="getkey")
    async def getkey(self, ctx: commands.Context):
        """Self-service short-lived key, one per user per cooldown window"""
        user_id = str(ctx.author.id)
        remaining = self.bot.issue_gate.remaining(user_id)
        if remaining is not None:
            await ctx.reply(f"⏳ Please wait **{format_duration(remaining)}** before requesting another key.")
            return

        # Marked before the engine call so a second !getkey in flight is refused
        self.bot.issue_gate.mark(user_id)
        lifetime = dt.timedelta(minutes=self.bot.settings.trial_key_minutes)
        try:
            created = await self.bot.engine.issue_keys(1, lifetime, created_by=user_id)
        except Exception:
            self.bot.issue_gate.clear(user_id)
            raise
        try:
            await ctx.author.send(f"🔑 Your key:\n```{created[0].key}```\n(valid for {format_duration(lifetime)})")
        except discord.Forbidden:
            logger.warning("Could not DM trial key to %s", user_id)
            await ctx.reply("❌ I couldn't DM you. Enable DMs from server members and try again later.")
            return
        await ctx.reply("📬 Check your DMs!")

    # ---------------- errors ----------------
    async def cog_app_command_error(self, interaction: discord.Interaction, error: app_commands.AppCommandError):
        logger.error("Slash command %s failed", getattr(interaction.command, "name", "?"), exc_info=error)
        try:
            if interaction.response.is_done():
                await interaction.followup.send(GENERIC_FAILURE, ephemeral=True)
            else:
                await interaction.response.send_message(GENERIC_FAILURE, ephemeral=True)
        except discord.HTTPException as e:
            logger.warning("Could not report failure to user: %s", e)
