"""
Short-lived in-process state for the chat front-end.

Nothing here is persisted and nothing runs on a timer: entries are checked
against the clock when they are read.
"""
import datetime as dt
from dataclasses import dataclass
from typing import Callable, Dict, Optional

Clock = Callable[[], dt.datetime]


def utc_now() -> dt.datetime:
    """
    Get current UTC datetime with timezone information.
    """
    return dt.datetime.now(dt.timezone.utc)


@dataclass
class PendingReset:
    selected_key: str
    created_at: dt.datetime


class PendingResetRegister:
    """
    Bridges the select -> confirm/cancel steps of an HWID reset.

    Keyed by requester id; a newer selection replaces an older one. A
    selection older than `ttl` is treated as absent when confirmed, so a
    stale confirm can never reset a key that changed in the meantime.
    """

    def __init__(self, ttl: dt.timedelta = dt.timedelta(minutes=5), clock: Clock = utc_now):
        self.ttl = ttl
        self._clock = clock
        self._entries: Dict[str, PendingReset] = {}

    def put(self, user_id: str, key: str) -> PendingReset:
        entry = PendingReset(selected_key=key, created_at=self._clock())
        self._entries[user_id] = entry
        return entry

    def _live(self, user_id: str) -> Optional[PendingReset]:
        entry = self._entries.get(user_id)
        if entry is None:
            return None
        if self._clock() - entry.created_at > self.ttl:
            del self._entries[user_id]
            return None
        return entry

    def peek(self, user_id: str) -> Optional[PendingReset]:
        return self._live(user_id)

    def take(self, user_id: str) -> Optional[PendingReset]:
        """Consume the pending selection; None if missing or expired"""
        entry = self._live(user_id)
        if entry is not None:
            del self._entries[user_id]
        return entry

    def cancel(self, user_id: str) -> bool:
        return self._entries.pop(user_id, None) is not None

    def __len__(self) -> int:
        return len(self._entries)


class IssueCooldown:
    """Per-user gate for self-service key issuance (!getkey)"""

    def __init__(self, window: dt.timedelta = dt.timedelta(seconds=60), clock: Clock = utc_now):
        self.window = window
        self._clock = clock
        self._last: Dict[str, dt.datetime] = {}

    def remaining(self, user_id: str) -> Optional[dt.timedelta]:
        """Time left before user_id may request again, or None if allowed now"""
        last = self._last.get(user_id)
        if last is None:
            return None
        left = self.window - (self._clock() - last)
        if left <= dt.timedelta(0):
            del self._last[user_id]
            return None
        return left

    def mark(self, user_id: str) -> None:
        self._last[user_id] = self._clock()

    def clear(self, user_id: str) -> None:
        """Give back a mark whose issuance did not go through"""
        self._last.pop(user_id, None)
