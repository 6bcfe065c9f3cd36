"""
Unit tests for chat text rendering.
"""
import datetime as dt

import pytest

from keygate.bot.presenters import (
    RESET_MESSAGES,
    format_duration,
    key_list,
    key_status,
    reset_message,
    stats_message,
)
from keygate.services.lifecycle import ResetOutcome, ResetResult, Stats
from keygate.services.store_base import KeyRecord

NOW = dt.datetime(2026, 1, 1, tzinfo=dt.timezone.utc)


@pytest.mark.parametrize(
    "value, expected",
    [
        (dt.timedelta(0), "0s"),
        (dt.timedelta(seconds=1.2), "2s"),
        (dt.timedelta(minutes=5), "5m"),
        (dt.timedelta(hours=60), "2d 12h"),
        (dt.timedelta(days=1, hours=2, minutes=3, seconds=4), "1d 2h 3m 4s"),
        (dt.timedelta(seconds=-5), "0s"),
    ],
)
def test_format_duration(value, expected):
    assert format_duration(value) == expected


def test_cooldown_message_shows_remaining():
    result = ResetResult(ResetOutcome.COOLDOWN_ACTIVE, dt.timedelta(hours=60), remaining=dt.timedelta(hours=3))
    text = reset_message(result)
    assert text.startswith(RESET_MESSAGES[ResetOutcome.COOLDOWN_ACTIVE])
    assert "3h" in text


def test_success_message_shows_next_cooldown():
    result = ResetResult(ResetOutcome.SUCCESS, dt.timedelta(hours=12), hwid="H1")
    assert "12h" in reset_message(result)


def test_key_status():
    assert key_status(KeyRecord(key="A", created_at=NOW), NOW) == "active"
    assert key_status(KeyRecord(key="A", created_at=NOW, active=False), NOW) == "blacklisted"
    expired = KeyRecord(key="A", created_at=NOW, expires_at=NOW - dt.timedelta(days=1))
    assert key_status(expired, NOW) == "expired"


def test_key_list():
    assert "don't own any keys" in key_list([], NOW)
    text = key_list([KeyRecord(key="ABC", created_at=NOW, hwid="H1")], NOW)
    assert "`ABC`" in text
    assert "HWID bound" in text
    assert "lifetime" in text


def test_stats_message():
    text = stats_message(Stats(total_keys=10, active_keys=9, redeemed_keys=4, total_users=3))
    assert "**10**" in text
    assert "redeemed 4" in text
    assert "**3**" in text
