# keygate/bot/presenters.py
"""
Text rendering for engine results shown in Discord.
Pure functions so the wording can be tested without a gateway connection.
"""
import datetime as dt
import math
from typing import Iterable, List

from keygate.services.lifecycle import (
    BlacklistOutcome,
    RedeemOutcome,
    ResetOutcome,
    ResetResult,
    Stats,
)
from keygate.services.store_base import KeyRecord

REDEEM_MESSAGES = {
    RedeemOutcome.SUCCESS: "✅ Key redeemed. Welcome to Premium!",
    RedeemOutcome.INVALID_KEY: "❌ That key does not exist.",
    RedeemOutcome.BLACKLISTED: "⛔ That key has been blacklisted.",
    RedeemOutcome.ALREADY_REDEEMED: "❌ That key has already been redeemed.",
    RedeemOutcome.EXPIRED: "⌛ That key has expired.",
}

BLACKLIST_MESSAGES = {
    BlacklistOutcome.SUCCESS: "⛔ Key blacklisted.",
    BlacklistOutcome.NOT_FOUND: "❌ Key not found.",
    BlacklistOutcome.ALREADY_INACTIVE: "ℹ️ Key is already blacklisted.",
}

RESET_MESSAGES = {
    ResetOutcome.SUCCESS: "✅ HWID reset. You can bind a new device on next launch.",
    ResetOutcome.INVALID_KEY: "❌ That key does not exist.",
    ResetOutcome.BLACKLISTED: "⛔ That key has been blacklisted.",
    ResetOutcome.NOT_OWNER: "❌ You do not own that key.",
    ResetOutcome.NO_HWID: "ℹ️ That key has no HWID bound yet.",
    ResetOutcome.COOLDOWN_ACTIVE: "⏳ You are on cooldown.",
    ResetOutcome.INSUFFICIENT_PRIVILEGE: "🔒 You need a Premium, Booster or Reset Access role to reset your HWID.",
    ResetOutcome.CONFLICT: "⚠️ The key changed while you were confirming. Please start again.",
}

PENDING_EXPIRED = "⌛ This confirmation expired. Start the reset again."
PROMPT_TIMEOUT = "⌛ Timed out waiting for your key. Press Redeem again when ready."
GENERIC_FAILURE = "⚠️ Something went wrong. Please try again later."


def format_duration(value: dt.timedelta) -> str:
    """Render a duration as `1d 2h 3m 4s`, rounding partial seconds up"""
    total = max(0, math.ceil(value.total_seconds()))
    days, rest = divmod(total, 86400)
    hours, rest = divmod(rest, 3600)
    minutes, seconds = divmod(rest, 60)
    parts = []
    if days:
        parts.append(f"{days}d")
    if hours:
        parts.append(f"{hours}h")
    if minutes:
        parts.append(f"{minutes}m")
    if seconds or not parts:
        parts.append(f"{seconds}s")
    return " ".join(parts)


def reset_message(result: ResetResult) -> str:
    text = RESET_MESSAGES[result.outcome]
    if result.outcome is ResetOutcome.COOLDOWN_ACTIVE and result.remaining is not None:
        text += f" Try again in **{format_duration(result.remaining)}**."
    elif result.outcome is ResetOutcome.SUCCESS and result.cooldown is not None:
        text += f" Next reset available in {format_duration(result.cooldown)}."
    return text


def reset_confirmation(key: str, result: ResetResult) -> str:
    return (
        f"Reset HWID for `{key}`?\n"
        f"Current HWID: `{result.hwid}`\n"
        f"After this you will have to wait **{format_duration(result.cooldown)}** before resetting again."
    )


def key_status(rec: KeyRecord, now: dt.datetime) -> str:
    if not rec.active:
        return "blacklisted"
    if rec.is_expired(now):
        return "expired"
    return "active"


def key_line(rec: KeyRecord, now: dt.datetime) -> str:
    expiry = rec.expires_at.strftime("%Y-%m-%d %H:%M UTC") if rec.expires_at else "lifetime"
    hwid = "HWID bound" if rec.hwid else "no HWID"
    return f"`{rec.key}` · {key_status(rec, now)} · {hwid} · {expiry}"


def key_list(records: Iterable[KeyRecord], now: dt.datetime) -> str:
    lines: List[str] = [key_line(r, now) for r in records]
    if not lines:
        return "You don't own any keys yet. Use `/redeem` to redeem one."
    return "**Your keys**\n" + "\n".join(lines)


def stats_message(stats: Stats) -> str:
    return (
        f"🔑 Keys: **{stats.total_keys}** "
        f"(active {stats.active_keys}, redeemed {stats.redeemed_keys})\n"
        f"👤 Users: **{stats.total_users}**"
    )
