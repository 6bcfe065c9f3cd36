"""
In-memory storage

Dict-backed implementation of the storage contract. Used by the test-suite
and for throwaway local runs (DATABASE_URL=memory). Each call yields to the
event loop once, like a real store round trip, so concurrent callers
interleave the same way they would against a database.
"""
import asyncio
import datetime as dt
from dataclasses import replace
from typing import Dict, List, Optional

from .store_base import (
    AuditEntry,
    AuditLog,
    DuplicateKeyError,
    KeyRecord,
    KeyStore,
    Storage,
    UserRecord,
    UserStore,
)


async def _io() -> None:
    await asyncio.sleep(0)


class MemoryKeyStore(KeyStore):
    def __init__(self):
        self._rows: Dict[str, KeyRecord] = {}
        self._lock = asyncio.Lock()  # Serializes conditional updates

    async def insert_many(self, records: List[KeyRecord]) -> None:
        await _io()
        async with self._lock:
            seen = set()
            for r in records:
                if r.key in self._rows or r.key in seen:
                    raise DuplicateKeyError(r.key)
                seen.add(r.key)
            for r in records:
                self._rows[r.key] = replace(r)

    async def get(self, key: str) -> Optional[KeyRecord]:
        await _io()
        row = self._rows.get(key)
        return replace(row) if row else None

    async def find_by_owner(self, user_id: str) -> List[KeyRecord]:
        await _io()
        rows = [r for r in self._rows.values() if r.owner_user_id == user_id]
        rows.sort(key=lambda r: r.redeemed_at or r.created_at)
        return [replace(r) for r in rows]

    async def list_all(self) -> List[KeyRecord]:
        await _io()
        rows = sorted(self._rows.values(), key=lambda r: r.created_at)
        return [replace(r) for r in rows]

    async def count(self, active: Optional[bool] = None, redeemed: Optional[bool] = None) -> int:
        await _io()
        n = 0
        for r in self._rows.values():
            if active is not None and r.active != active:
                continue
            if redeemed is not None and r.is_redeemed != redeemed:
                continue
            n += 1
        return n

    async def claim_owner(self, key: str, user_id: str, at: dt.datetime) -> bool:
        await _io()
        async with self._lock:
            row = self._rows.get(key)
            if row is None or not row.active or row.owner_user_id is not None:
                return False
            row.owner_user_id = user_id
            row.redeemed_at = at
            return True

    async def bind_hwid(self, key: str, hwid: str) -> bool:
        await _io()
        async with self._lock:
            row = self._rows.get(key)
            if row is None or not row.active or row.owner_user_id is None or row.hwid is not None:
                return False
            row.hwid = hwid
            return True

    async def clear_hwid(self, key: str, expected_hwid: str) -> bool:
        await _io()
        async with self._lock:
            row = self._rows.get(key)
            if row is None or not row.active or row.hwid is None or row.hwid != expected_hwid:
                return False
            row.hwid = None
            return True

    async def deactivate(self, key: str, actor: str, at: dt.datetime) -> bool:
        await _io()
        async with self._lock:
            row = self._rows.get(key)
            if row is None or not row.active:
                return False
            row.active = False
            row.blacklisted_by = actor
            row.blacklisted_at = at
            return True


class MemoryUserStore(UserStore):
    def __init__(self):
        self._rows: Dict[str, UserRecord] = {}
        self._lock = asyncio.Lock()

    async def get(self, user_id: str) -> Optional[UserRecord]:
        await _io()
        row = self._rows.get(user_id)
        return replace(row, keys=list(row.keys)) if row else None

    def _get_or_create(self, user_id: str, at: dt.datetime) -> UserRecord:
        row = self._rows.get(user_id)
        if row is None:
            row = UserRecord(user_id=user_id, created_at=at)
            self._rows[user_id] = row
        return row

    async def append_key(self, user_id: str, key: str, at: dt.datetime) -> UserRecord:
        await _io()
        row = self._get_or_create(user_id, at)
        if key not in row.keys:
            row.keys.append(key)
        return replace(row, keys=list(row.keys))

    async def record_reset(self, user_id: str, at: dt.datetime, expected_count: int) -> Optional[UserRecord]:
        await _io()
        async with self._lock:
            row = self._get_or_create(user_id, at)
            if row.hwid_reset_count != expected_count:
                return None
            row.hwid_last_reset_at = at
            row.hwid_reset_count += 1
            return replace(row, keys=list(row.keys))

    async def release_reset(self, user_id: str, count: int, restore_to: Optional[dt.datetime]) -> bool:
        await _io()
        async with self._lock:
            row = self._rows.get(user_id)
            if row is None or row.hwid_reset_count != count:
                return False
            row.hwid_last_reset_at = restore_to
            row.hwid_reset_count -= 1
            return True

    async def count(self) -> int:
        await _io()
        return len(self._rows)


class MemoryAuditLog(AuditLog):
    def __init__(self):
        self._entries: List[AuditEntry] = []

    async def append(self, entry: AuditEntry) -> None:
        await _io()
        self._entries.append(entry)

    async def recent(self, limit: int = 50) -> List[AuditEntry]:
        await _io()
        return list(reversed(self._entries))[:limit]


class MemoryStorage(Storage):
    def __init__(self):
        self.keys = MemoryKeyStore()
        self.users = MemoryUserStore()
        self.audit = MemoryAuditLog()

    async def connect(self) -> None:
        pass

    async def close(self) -> None:
        pass

    @property
    def name(self) -> str:
        return "memory"
