# keygate/bot/interactions.py
"""
Interaction flows shared by slash commands and the button panel.

Each flow resolves the caller, runs exactly one engine operation and
renders the result. The HWID reset is two-phase: selecting a key stores a
pending entry in bot.pending; confirming consumes it. An entry older than
the pending TTL is refused, so a stale confirm never mutates a key.
"""
import asyncio
import logging
from typing import List

import discord

from keygate.core.security import looks_like_token
from keygate.services.lifecycle import RedeemOutcome, ResetOutcome, normalize_key
from keygate.services.store_base import KeyRecord
from .presenters import (
    PENDING_EXPIRED,
    PROMPT_TIMEOUT,
    REDEEM_MESSAGES,
    RESET_MESSAGES,
    key_list,
    reset_confirmation,
    reset_message,
    stats_message,
)

logger = logging.getLogger(__name__)

OPERATOR_ONLY = "🔒 Only staff can use this."


# ----------------------------------------------------------------------
# Redeem
# ----------------------------------------------------------------------
async def redeem_for_member(bot, member, raw_key: str) -> str:
    """Redeem raw_key for member and grant the premium role on success"""
    key = normalize_key(raw_key)
    if not looks_like_token(key):
        return REDEEM_MESSAGES[RedeemOutcome.INVALID_KEY]
    result = await bot.engine.redeem_key(key, str(member.id))
    text = REDEEM_MESSAGES[result.outcome]
    if result.ok:
        if not await bot.grant_premium(member):
            text += "\n⚠️ I couldn't give you the Premium role. Please contact staff."
        await bot.log_event(f"🔑 <@{member.id}> redeemed `{result.record.key}`")
    return text


async def prompt_and_redeem(bot, interaction: discord.Interaction) -> None:
    """
    Ask for a key, then wait for one message from the same user in the same
    channel. Gives up after key_prompt_timeout_seconds without calling the engine.
    """
    timeout = bot.settings.key_prompt_timeout_seconds
    await interaction.response.send_message(
        f"Paste your key in this channel within {timeout} seconds.", ephemeral=True
    )

    def check(message) -> bool:
        return message.author.id == interaction.user.id and message.channel.id == interaction.channel_id

    try:
        message = await bot.wait_for("message", check=check, timeout=timeout)
    except asyncio.TimeoutError:
        await interaction.followup.send(PROMPT_TIMEOUT, ephemeral=True)
        return

    try:
        await message.delete()  # Keys are bearer tokens; keep them out of the channel
    except discord.HTTPException as e:
        logger.warning("Could not delete key message %s: %s", message.id, e)

    text = await redeem_for_member(bot, interaction.user, message.content)
    await interaction.followup.send(text, ephemeral=True)


# ----------------------------------------------------------------------
# HWID reset
# ----------------------------------------------------------------------
class ResetKeySelect(discord.ui.Select):
    def __init__(self, bot, records: List[KeyRecord]):
        options = [
            discord.SelectOption(label=r.key, value=r.key, description=f"HWID {r.hwid[:40]}")
            for r in records[:25]
        ]
        super().__init__(placeholder="Select the key to reset", min_values=1, max_values=1, options=options)
        self.bot = bot

    async def callback(self, interaction: discord.Interaction):
        await select_reset_key(self.bot, interaction, self.values[0])


class ResetSelectView(discord.ui.View):
    def __init__(self, bot, records: List[KeyRecord]):
        super().__init__(timeout=bot.settings.pending_reset_ttl_seconds)
        self.add_item(ResetKeySelect(bot, records))


class ResetConfirmView(discord.ui.View):
    def __init__(self, bot, user_id: int, key: str):
        super().__init__(timeout=bot.settings.pending_reset_ttl_seconds)
        self.bot = bot
        self.user_id = user_id
        self.key = key  # The selection this message asked about

    async def interaction_check(self, interaction: discord.Interaction) -> bool:
        return interaction.user.id == self.user_id

    @discord.ui.button(label="Confirm", style=discord.ButtonStyle.danger)
    async def confirm(self, interaction: discord.Interaction, button: discord.ui.Button):
        await confirm_reset(self.bot, interaction, self.key)

    @discord.ui.button(label="Cancel", style=discord.ButtonStyle.secondary)
    async def cancel(self, interaction: discord.Interaction, button: discord.ui.Button):
        await cancel_reset(self.bot, interaction)


async def open_reset_menu(bot, interaction: discord.Interaction) -> None:
    """Step 1: list the caller's keys that currently have an HWID bound"""
    tiers = bot.tiers_for(interaction.user)
    if bot.engine.policy.resolve(tiers) is None:
        await interaction.response.send_message(RESET_MESSAGES[ResetOutcome.INSUFFICIENT_PRIVILEGE], ephemeral=True)
        return

    records = [r for r in await bot.engine.list_user_keys(str(interaction.user.id)) if r.active and r.hwid]
    if not records:
        await interaction.response.send_message("You have no keys with a bound HWID.", ephemeral=True)
        return
    await interaction.response.send_message(
        "Which key do you want to reset?", view=ResetSelectView(bot, records), ephemeral=True
    )


async def select_reset_key(bot, interaction: discord.Interaction, key: str) -> None:
    """Step 2: dry-run the reset and ask for confirmation"""
    user_id = str(interaction.user.id)
    result = await bot.engine.check_reset(key, user_id, bot.tiers_for(interaction.user))
    if not result.ok:
        await interaction.response.edit_message(content=reset_message(result), view=None)
        return
    bot.pending.put(user_id, key)
    await interaction.response.edit_message(
        content=reset_confirmation(key, result), view=ResetConfirmView(bot, interaction.user.id, key)
    )


async def confirm_reset(bot, interaction: discord.Interaction, key: str) -> None:
    """
    Step 3: commit the pending selection if it is still fresh and is the key
    this confirmation was shown for. A confirm from an older message leaves
    the newer selection pending.
    """
    user_id = str(interaction.user.id)
    pending = bot.pending.peek(user_id)
    if pending is None or pending.selected_key != key:
        await interaction.response.edit_message(content=PENDING_EXPIRED, view=None)
        return
    bot.pending.take(user_id)
    result = await bot.engine.reset_hwid(pending.selected_key, user_id, bot.tiers_for(interaction.user))
    if result.ok:
        await bot.log_event(f"🔄 <@{user_id}> reset HWID on `{pending.selected_key}`")
    await interaction.response.edit_message(content=reset_message(result), view=None)


async def cancel_reset(bot, interaction: discord.Interaction) -> None:
    bot.pending.cancel(str(interaction.user.id))
    await interaction.response.edit_message(content="Reset cancelled.", view=None)


# ----------------------------------------------------------------------
# Read-only
# ----------------------------------------------------------------------
async def show_user_keys(bot, interaction: discord.Interaction) -> None:
    records = await bot.engine.list_user_keys(str(interaction.user.id))
    await interaction.response.send_message(key_list(records, bot.engine.now()), ephemeral=True)


async def show_stats(bot, interaction: discord.Interaction) -> None:
    if not bot.is_operator(interaction.user):
        await interaction.response.send_message(OPERATOR_ONLY, ephemeral=True)
        return
    stats = await bot.engine.stats()
    await interaction.response.send_message(stats_message(stats), ephemeral=True)


# ----------------------------------------------------------------------
# Panel
# ----------------------------------------------------------------------
class PanelView(discord.ui.View):
    """
    Persistent button panel posted by the !panel text command.
    Custom ids are fixed so the buttons keep working after a restart.
    """

    def __init__(self, bot):
        super().__init__(timeout=None)
        self.bot = bot

    @discord.ui.button(label="Redeem Key", style=discord.ButtonStyle.success, emoji="🔑", custom_id="keygate:redeem")
    async def redeem(self, interaction: discord.Interaction, button: discord.ui.Button):
        await prompt_and_redeem(self.bot, interaction)

    @discord.ui.button(label="Reset HWID", style=discord.ButtonStyle.primary, emoji="🔄", custom_id="keygate:reset")
    async def reset(self, interaction: discord.Interaction, button: discord.ui.Button):
        await open_reset_menu(self.bot, interaction)

    @discord.ui.button(label="My Keys", style=discord.ButtonStyle.secondary, emoji="📋", custom_id="keygate:manage")
    async def manage(self, interaction: discord.Interaction, button: discord.ui.Button):
        await show_user_keys(self.bot, interaction)

    @discord.ui.button(label="Stats", style=discord.ButtonStyle.secondary, emoji="📊", custom_id="keygate:stats")
    async def stats(self, interaction: discord.Interaction, button: discord.ui.Button):
        await show_stats(self.bot, interaction)
