"""
HWID reset cooldown policy

Maps the privilege tiers a requester holds to the minimum time between two
of their HWID resets. Precedence is fixed: FAST_TRACK > BOOSTER > PREMIUM;
a requester holding several tiers gets the cooldown of the highest one.
Holding none of them denies the reset outright.
"""
import datetime as dt
from enum import Enum
from typing import Dict, Iterable, Optional, Tuple


class PrivilegeTier(str, Enum):
    OPERATOR = "operator"      # May create and blacklist keys; no reset cooldown of its own
    FAST_TRACK = "fast_track"  # Staff / testing
    BOOSTER = "booster"
    PREMIUM = "premium"


# Highest privilege first
RESET_TIER_PRECEDENCE: Tuple[PrivilegeTier, ...] = (
    PrivilegeTier.FAST_TRACK,
    PrivilegeTier.BOOSTER,
    PrivilegeTier.PREMIUM,
)


class CooldownPolicy:
    def __init__(
        self,
        fast_track: dt.timedelta = dt.timedelta(seconds=1),
        booster: dt.timedelta = dt.timedelta(hours=12),
        premium: dt.timedelta = dt.timedelta(hours=60),
    ):
        self._durations: Dict[PrivilegeTier, dt.timedelta] = {
            PrivilegeTier.FAST_TRACK: fast_track,
            PrivilegeTier.BOOSTER: booster,
            PrivilegeTier.PREMIUM: premium,
        }

    @classmethod
    def from_settings(cls, settings) -> "CooldownPolicy":
        return cls(
            fast_track=dt.timedelta(seconds=settings.fast_track_cooldown_seconds),
            booster=dt.timedelta(hours=settings.booster_cooldown_hours),
            premium=dt.timedelta(hours=settings.premium_cooldown_hours),
        )

    def winning_tier(self, tiers: Iterable[PrivilegeTier]) -> Optional[PrivilegeTier]:
        held = set(tiers)
        for tier in RESET_TIER_PRECEDENCE:
            if tier in held:
                return tier
        return None

    def resolve(self, tiers: Iterable[PrivilegeTier]) -> Optional[dt.timedelta]:
        """
        Resolve the reset cooldown for a set of tiers.

        Returns:
            The cooldown of the highest tier held, or None when no tier
            qualifies (reset denied).
        """
        tier = self.winning_tier(tiers)
        if tier is None:
            return None
        return self._durations[tier]
