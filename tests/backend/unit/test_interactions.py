"""
Unit tests for the Discord interaction flows with mocked Discord objects.
The engine is real (in-memory storage), so each test checks the key state
the flow leaves behind.
"""
import asyncio
import datetime as dt
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from keygate.bot import interactions
from keygate.bot.presenters import (
    PENDING_EXPIRED,
    PROMPT_TIMEOUT,
    REDEEM_MESSAGES,
    RESET_MESSAGES,
)
from keygate.bot.privileges import is_operator, resolve_tiers
from keygate.services.ephemeral import PendingResetRegister
from keygate.services.lifecycle import RedeemOutcome, ResetOutcome


pytestmark = pytest.mark.asyncio

USER_ID = 42


@pytest.fixture
def bot(engine, settings, clock):
    """Stand-in for KeyBot exposing exactly what the flows use"""
    return SimpleNamespace(
        engine=engine,
        settings=settings,
        pending=PendingResetRegister(ttl=dt.timedelta(seconds=settings.pending_reset_ttl_seconds), clock=clock),
        tiers_for=lambda member: resolve_tiers(member, settings),
        is_operator=lambda member: is_operator(member, settings),
        grant_premium=AsyncMock(return_value=True),
        log_event=AsyncMock(),
        wait_for=AsyncMock(),
    )


def _member(settings, *roles, member_id=USER_ID):
    names = [getattr(settings, f"role_{r}") for r in roles]
    return SimpleNamespace(id=member_id, roles=[SimpleNamespace(name=n) for n in names], premium_since=None)


def _interaction(user):
    interaction = MagicMock()
    interaction.user = user
    interaction.channel_id = 7
    interaction.response.send_message = AsyncMock()
    interaction.response.edit_message = AsyncMock()
    interaction.response.defer = AsyncMock()
    interaction.followup.send = AsyncMock()
    return interaction


async def _bound_key(engine, hwid="HWID-A") -> str:
    key = (await engine.create_keys(1))[0].key
    await engine.redeem_key(key, str(USER_ID))
    await engine.verify_hwid(key, hwid)
    return key


def _edited_content(interaction) -> str:
    return interaction.response.edit_message.call_args.kwargs["content"]


class TestRedeemFlow:

    async def test_success_grants_role_and_logs(self, bot, engine, settings):
        key = (await engine.create_keys(1))[0].key
        member = _member(settings)

        text = await interactions.redeem_for_member(bot, member, key)

        assert text == REDEEM_MESSAGES[RedeemOutcome.SUCCESS]
        bot.grant_premium.assert_awaited_once_with(member)
        bot.log_event.assert_awaited_once()
        assert (await engine.get_key(key)).owner_user_id == str(USER_ID)

    async def test_role_failure_is_reported_but_redeem_stands(self, bot, engine, settings):
        key = (await engine.create_keys(1))[0].key
        bot.grant_premium.return_value = False

        text = await interactions.redeem_for_member(bot, _member(settings), key)

        assert text.startswith(REDEEM_MESSAGES[RedeemOutcome.SUCCESS])
        assert "Premium role" in text
        assert (await engine.get_key(key)).owner_user_id == str(USER_ID)

    async def test_failure_does_not_grant(self, bot, settings):
        text = await interactions.redeem_for_member(bot, _member(settings), "NOT-A-KEY")
        assert text == REDEEM_MESSAGES[RedeemOutcome.INVALID_KEY]
        bot.grant_premium.assert_not_awaited()

    @pytest.mark.parametrize("raw", ["abc", "G" * 32, "A" * 33, ""])
    async def test_malformed_key_skips_the_store(self, bot, settings, raw):
        bot.engine = SimpleNamespace(redeem_key=AsyncMock())

        text = await interactions.redeem_for_member(bot, _member(settings), raw)

        assert text == REDEEM_MESSAGES[RedeemOutcome.INVALID_KEY]
        bot.engine.redeem_key.assert_not_awaited()

    async def test_lowercase_key_with_whitespace_is_accepted(self, bot, engine, settings):
        key = (await engine.create_keys(1))[0].key
        text = await interactions.redeem_for_member(bot, _member(settings), f"  {key.lower()}\n")
        assert text == REDEEM_MESSAGES[RedeemOutcome.SUCCESS]

    async def test_prompt_times_out_without_engine_call(self, bot, engine, settings):
        key = (await engine.create_keys(1))[0].key
        bot.wait_for.side_effect = asyncio.TimeoutError
        interaction = _interaction(_member(settings))

        await interactions.prompt_and_redeem(bot, interaction)

        assert bot.wait_for.call_args.kwargs["timeout"] == settings.key_prompt_timeout_seconds
        interaction.followup.send.assert_awaited_once_with(PROMPT_TIMEOUT, ephemeral=True)
        assert (await engine.get_key(key)).owner_user_id is None

    async def test_prompt_redeems_and_deletes_message(self, bot, engine, settings):
        key = (await engine.create_keys(1))[0].key
        message = SimpleNamespace(id=1, content=key, delete=AsyncMock())
        bot.wait_for.return_value = message
        interaction = _interaction(_member(settings))

        await interactions.prompt_and_redeem(bot, interaction)

        message.delete.assert_awaited_once()
        interaction.followup.send.assert_awaited_once_with(REDEEM_MESSAGES[RedeemOutcome.SUCCESS], ephemeral=True)
        assert (await engine.get_key(key)).owner_user_id == str(USER_ID)


class TestResetFlow:

    async def test_menu_denied_without_tier(self, bot, settings):
        interaction = _interaction(_member(settings))
        await interactions.open_reset_menu(bot, interaction)
        interaction.response.send_message.assert_awaited_once_with(
            RESET_MESSAGES[ResetOutcome.INSUFFICIENT_PRIVILEGE], ephemeral=True
        )

    async def test_menu_lists_bound_keys(self, bot, engine, settings):
        await _bound_key(engine)
        interaction = _interaction(_member(settings, "premium"))

        await interactions.open_reset_menu(bot, interaction)

        view = interaction.response.send_message.call_args.kwargs["view"]
        assert isinstance(view, interactions.ResetSelectView)

    async def test_menu_without_bound_keys(self, bot, settings):
        interaction = _interaction(_member(settings, "premium"))
        await interactions.open_reset_menu(bot, interaction)
        assert "no keys with a bound HWID" in interaction.response.send_message.call_args.args[0]

    async def test_select_then_confirm_resets(self, bot, engine, settings):
        key = await _bound_key(engine)
        member = _member(settings, "premium")

        select = _interaction(member)
        await interactions.select_reset_key(bot, select, key)

        assert bot.pending.peek(str(USER_ID)).selected_key == key
        assert isinstance(select.response.edit_message.call_args.kwargs["view"], interactions.ResetConfirmView)
        assert select.response.edit_message.call_args.kwargs["view"].key == key
        assert (await engine.get_key(key)).hwid == "HWID-A"

        confirm = _interaction(member)
        await interactions.confirm_reset(bot, confirm, key)

        assert _edited_content(confirm).startswith(RESET_MESSAGES[ResetOutcome.SUCCESS])
        assert (await engine.get_key(key)).hwid is None
        assert len(bot.pending) == 0

    async def test_stale_confirmation_mutates_nothing(self, bot, engine, settings, clock):
        key = await _bound_key(engine)
        member = _member(settings, "premium")
        await interactions.select_reset_key(bot, _interaction(member), key)

        clock.advance(seconds=settings.pending_reset_ttl_seconds + 1)
        confirm = _interaction(member)
        await interactions.confirm_reset(bot, confirm, key)

        confirm.response.edit_message.assert_awaited_once_with(content=PENDING_EXPIRED, view=None)
        assert (await engine.get_key(key)).hwid == "HWID-A"

    async def test_confirm_from_older_message_keeps_newer_selection(self, bot, engine, settings):
        first = await _bound_key(engine)
        second = await _bound_key(engine, hwid="HWID-Z")
        member = _member(settings, "premium")
        await interactions.select_reset_key(bot, _interaction(member), first)
        await interactions.select_reset_key(bot, _interaction(member), second)

        confirm = _interaction(member)
        await interactions.confirm_reset(bot, confirm, first)

        assert _edited_content(confirm) == PENDING_EXPIRED
        assert (await engine.get_key(first)).hwid == "HWID-A"
        assert (await engine.get_key(second)).hwid == "HWID-Z"
        assert bot.pending.peek(str(USER_ID)).selected_key == second

        latest = _interaction(member)
        await interactions.confirm_reset(bot, latest, second)
        assert _edited_content(latest).startswith(RESET_MESSAGES[ResetOutcome.SUCCESS])
        assert (await engine.get_key(second)).hwid is None

    async def test_confirm_without_selection(self, bot, settings):
        confirm = _interaction(_member(settings, "premium"))
        await interactions.confirm_reset(bot, confirm, "0" * 32)
        assert _edited_content(confirm) == PENDING_EXPIRED

    async def test_cancel_discards_selection(self, bot, engine, settings):
        key = await _bound_key(engine)
        member = _member(settings, "premium")
        await interactions.select_reset_key(bot, _interaction(member), key)

        await interactions.cancel_reset(bot, _interaction(member))
        confirm = _interaction(member)
        await interactions.confirm_reset(bot, confirm, key)

        assert _edited_content(confirm) == PENDING_EXPIRED
        assert (await engine.get_key(key)).hwid == "HWID-A"

    async def test_select_during_cooldown_stores_nothing(self, bot, engine, settings):
        key = await _bound_key(engine)
        await engine.reset_hwid(key, str(USER_ID), bot.tiers_for(_member(settings, "premium")))
        await engine.verify_hwid(key, "HWID-B")
        select = _interaction(_member(settings, "premium"))

        await interactions.select_reset_key(bot, select, key)

        assert _edited_content(select).startswith(RESET_MESSAGES[ResetOutcome.COOLDOWN_ACTIVE])
        assert bot.pending.peek(str(USER_ID)) is None


class TestReadOnlyFlows:

    async def test_stats_requires_operator(self, bot, settings):
        interaction = _interaction(_member(settings, "premium"))
        await interactions.show_stats(bot, interaction)
        interaction.response.send_message.assert_awaited_once_with(interactions.OPERATOR_ONLY, ephemeral=True)

    async def test_stats_for_operator(self, bot, engine, settings):
        await engine.create_keys(3)
        interaction = _interaction(_member(settings, "operator"))
        await interactions.show_stats(bot, interaction)
        assert "**3**" in interaction.response.send_message.call_args.args[0]

    async def test_user_keys(self, bot, engine, settings):
        key = await _bound_key(engine)
        interaction = _interaction(_member(settings))
        await interactions.show_user_keys(bot, interaction)
        assert key in interaction.response.send_message.call_args.args[0]
