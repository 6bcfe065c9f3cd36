"""
Storage Abstract Interface

Provides the storage contract the key lifecycle engine depends on, so the
engine stays storage-agnostic (in-memory for tests, Tortoise ORM in
production).

Every mutation is scoped to a single key or user document. Transitions that
can race (owner assignment, first HWID binding, HWID clear, deactivation)
are conditional updates: they report whether the precondition still held at
write time instead of overwriting blindly.
"""
import datetime as dt
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


class StorageError(RuntimeError):
    """Store unreachable or a write failed for reasons other than a precondition."""


class DuplicateKeyError(StorageError):
    """Insert hit an existing key token."""

    def __init__(self, key: str):
        super().__init__(f"key already exists: {key}")
        self.key = key


@dataclass
class KeyRecord:
    """Key document"""
    key: str
    created_at: dt.datetime
    expires_at: Optional[dt.datetime] = None  # None means lifetime
    owner_user_id: Optional[str] = None
    hwid: Optional[str] = None
    active: bool = True
    redeemed_at: Optional[dt.datetime] = None
    created_by: Optional[str] = None
    blacklisted_by: Optional[str] = None
    blacklisted_at: Optional[dt.datetime] = None

    def is_expired(self, now: dt.datetime) -> bool:
        """Derived on read, never stored"""
        return self.expires_at is not None and now > self.expires_at

    @property
    def is_redeemed(self) -> bool:
        return self.owner_user_id is not None


@dataclass
class UserRecord:
    """User aggregate document"""
    user_id: str
    created_at: dt.datetime
    keys: List[str] = field(default_factory=list)
    hwid_last_reset_at: Optional[dt.datetime] = None
    hwid_reset_count: int = 0


@dataclass
class AuditEntry:
    event: str
    key: Optional[str]
    user_id: Optional[str]
    created_at: dt.datetime
    detail: Optional[Dict[str, Any]] = None


class KeyStore(ABC):
    """Key collection"""

    @abstractmethod
    async def insert_many(self, records: List[KeyRecord]) -> None:
        """
        Insert a batch of new keys, all or nothing.

        Raises:
        - DuplicateKeyError: if any token already exists (nothing is written)
        """

    @abstractmethod
    async def get(self, key: str) -> Optional[KeyRecord]:
        pass

    @abstractmethod
    async def find_by_owner(self, user_id: str) -> List[KeyRecord]:
        """Keys owned by a user, oldest redemption first"""

    @abstractmethod
    async def list_all(self) -> List[KeyRecord]:
        """Every key, ordered by creation time"""

    @abstractmethod
    async def count(self, active: Optional[bool] = None, redeemed: Optional[bool] = None) -> int:
        pass

    @abstractmethod
    async def claim_owner(self, key: str, user_id: str, at: dt.datetime) -> bool:
        """
        Set owner and redemption time only if the key is active and unowned.

        Returns:
        - True if this call performed the assignment
        """

    @abstractmethod
    async def bind_hwid(self, key: str, hwid: str) -> bool:
        """Set hwid only if the key is active, owned and currently unbound"""

    @abstractmethod
    async def clear_hwid(self, key: str, expected_hwid: str) -> bool:
        """Clear hwid only if the key is active and still bound to expected_hwid"""

    @abstractmethod
    async def deactivate(self, key: str, actor: str, at: dt.datetime) -> bool:
        """Blacklist only if the key is currently active"""


class UserStore(ABC):
    """User collection"""

    @abstractmethod
    async def get(self, user_id: str) -> Optional[UserRecord]:
        pass

    @abstractmethod
    async def append_key(self, user_id: str, key: str, at: dt.datetime) -> UserRecord:
        """
        Append a key to the user's list, creating the user if absent.
        Appending a key already in the list is a no-op.

        Read-modify-write: two concurrent appends for the same user may lose
        one entry. The key document remains authoritative and the engine's
        reconcile operation repairs the list.
        """

    @abstractmethod
    async def record_reset(self, user_id: str, at: dt.datetime, expected_count: int) -> Optional[UserRecord]:
        """
        Set hwid_last_reset_at and increment hwid_reset_count, creating the
        user if absent.

        Conditional on hwid_reset_count still being expected_count (the value
        read when the cooldown was checked; 0 for a user never seen). Returns
        None when another reset got there first.
        """

    @abstractmethod
    async def release_reset(self, user_id: str, count: int, restore_to: Optional[dt.datetime]) -> bool:
        """
        Undo a record_reset that left hwid_reset_count at count: put
        hwid_last_reset_at back to restore_to and decrement the counter.
        A no-op returning False once any later reset has been recorded.
        """

    @abstractmethod
    async def count(self) -> int:
        pass


class AuditLog(ABC):
    """Append-only audit trail, never read back by the engine"""

    @abstractmethod
    async def append(self, entry: AuditEntry) -> None:
        pass

    @abstractmethod
    async def recent(self, limit: int = 50) -> List[AuditEntry]:
        """Newest first; for operators and tests"""


class Storage(ABC):
    """Bundle of the three collections with an explicit lifecycle"""

    keys: KeyStore
    users: UserStore
    audit: AuditLog

    @abstractmethod
    async def connect(self) -> None:
        pass

    @abstractmethod
    async def close(self) -> None:
        pass

    @property
    @abstractmethod
    def name(self) -> str:
        """Backend name (e.g., "memory", "tortoise")"""
