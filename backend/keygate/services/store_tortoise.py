"""
Tortoise ORM storage

Durable implementation of the storage contract on top of the models in
keygate.models. Conditional transitions are single UPDATE ... WHERE
statements whose affected-row count tells the caller whether it won.
"""
import datetime as dt
import functools
import logging
from typing import List, Optional

from tortoise.exceptions import BaseORMException, IntegrityError
from tortoise.expressions import F
from tortoise.transactions import in_transaction

from keygate.core.db import build_tortoise_config, close_db, init_db
from keygate.models.audit_log import AuditLog as AuditLogRow
from keygate.models.key_user import KeyUser
from keygate.models.license_key import LicenseKey

from .store_base import (
    AuditEntry,
    AuditLog,
    DuplicateKeyError,
    KeyRecord,
    KeyStore,
    Storage,
    StorageError,
    UserRecord,
    UserStore,
)

logger = logging.getLogger(__name__)


def _utc(value: Optional[dt.datetime]) -> Optional[dt.datetime]:
    """Normalize driver output to aware UTC (SQLite may hand back naive values)"""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=dt.timezone.utc)
    return value.astimezone(dt.timezone.utc)


def _storage_errors(fn):
    """Re-raise ORM and driver failures as StorageError"""
    @functools.wraps(fn)
    async def wrapper(*args, **kwargs):
        try:
            return await fn(*args, **kwargs)
        except StorageError:
            raise
        except (BaseORMException, OSError) as e:
            raise StorageError(f"{fn.__qualname__} failed: {e}") from e
    return wrapper


def _key_record(row: LicenseKey) -> KeyRecord:
    return KeyRecord(
        key=row.key,
        created_at=_utc(row.created_at),
        expires_at=_utc(row.expires_at),
        owner_user_id=row.owner_user_id,
        hwid=row.hwid,
        active=row.active,
        redeemed_at=_utc(row.redeemed_at),
        created_by=row.created_by,
        blacklisted_by=row.blacklisted_by,
        blacklisted_at=_utc(row.blacklisted_at),
    )


def _user_record(row: KeyUser) -> UserRecord:
    return UserRecord(
        user_id=row.user_id,
        created_at=_utc(row.created_at),
        keys=list(row.keys or []),
        hwid_last_reset_at=_utc(row.hwid_last_reset_at),
        hwid_reset_count=row.hwid_reset_count,
    )


class TortoiseKeyStore(KeyStore):

    @_storage_errors
    async def insert_many(self, records: List[KeyRecord]) -> None:
        tokens = [r.key for r in records]
        if len(set(tokens)) != len(tokens):
            raise DuplicateKeyError(next(t for t in tokens if tokens.count(t) > 1))
        existing = await LicenseKey.filter(key__in=tokens).values_list("key", flat=True)
        if existing:
            raise DuplicateKeyError(existing[0])
        rows = [
            LicenseKey(
                key=r.key,
                owner_user_id=r.owner_user_id,
                hwid=r.hwid,
                active=r.active,
                created_at=r.created_at,
                expires_at=r.expires_at,
                redeemed_at=r.redeemed_at,
                created_by=r.created_by,
            )
            for r in records
        ]
        try:
            async with in_transaction() as conn:
                await LicenseKey.bulk_create(rows, using_db=conn)
        except IntegrityError as e:
            # Lost a race with a concurrent insert of the same token
            raise DuplicateKeyError(tokens[0]) from e

    @_storage_errors
    async def get(self, key: str) -> Optional[KeyRecord]:
        row = await LicenseKey.get_or_none(key=key)
        return _key_record(row) if row else None

    @_storage_errors
    async def find_by_owner(self, user_id: str) -> List[KeyRecord]:
        rows = await LicenseKey.filter(owner_user_id=user_id).order_by("redeemed_at")
        return [_key_record(r) for r in rows]

    @_storage_errors
    async def list_all(self) -> List[KeyRecord]:
        rows = await LicenseKey.all().order_by("created_at")
        return [_key_record(r) for r in rows]

    @_storage_errors
    async def count(self, active: Optional[bool] = None, redeemed: Optional[bool] = None) -> int:
        qs = LicenseKey.all()
        if active is not None:
            qs = qs.filter(active=active)
        if redeemed is not None:
            qs = qs.filter(owner_user_id__isnull=not redeemed)
        return await qs.count()

    @_storage_errors
    async def claim_owner(self, key: str, user_id: str, at: dt.datetime) -> bool:
        updated = await LicenseKey.filter(
            key=key, active=True, owner_user_id__isnull=True
        ).update(owner_user_id=user_id, redeemed_at=at)
        return updated == 1

    @_storage_errors
    async def bind_hwid(self, key: str, hwid: str) -> bool:
        updated = await LicenseKey.filter(
            key=key, active=True, owner_user_id__isnull=False, hwid__isnull=True
        ).update(hwid=hwid)
        return updated == 1

    @_storage_errors
    async def clear_hwid(self, key: str, expected_hwid: str) -> bool:
        updated = await LicenseKey.filter(key=key, active=True, hwid=expected_hwid).update(hwid=None)
        return updated == 1

    @_storage_errors
    async def deactivate(self, key: str, actor: str, at: dt.datetime) -> bool:
        updated = await LicenseKey.filter(key=key, active=True).update(
            active=False, blacklisted_by=actor, blacklisted_at=at
        )
        return updated == 1


class TortoiseUserStore(UserStore):

    @_storage_errors
    async def get(self, user_id: str) -> Optional[UserRecord]:
        row = await KeyUser.get_or_none(user_id=user_id)
        return _user_record(row) if row else None

    @_storage_errors
    async def append_key(self, user_id: str, key: str, at: dt.datetime) -> UserRecord:
        row, _ = await KeyUser.get_or_create(
            user_id=user_id, defaults={"created_at": at, "keys": []}
        )
        keys = list(row.keys or [])
        if key not in keys:
            row.keys = keys + [key]
            await row.save(update_fields=["keys"])
        return _user_record(row)

    @_storage_errors
    async def record_reset(self, user_id: str, at: dt.datetime, expected_count: int) -> Optional[UserRecord]:
        await KeyUser.get_or_create(user_id=user_id, defaults={"created_at": at, "keys": []})
        # The counter doubles as a version: only one reset per observed value wins
        updated = await KeyUser.filter(user_id=user_id, hwid_reset_count=expected_count).update(
            hwid_last_reset_at=at, hwid_reset_count=F("hwid_reset_count") + 1
        )
        if updated != 1:
            return None
        row = await KeyUser.get(user_id=user_id)
        return _user_record(row)

    @_storage_errors
    async def release_reset(self, user_id: str, count: int, restore_to: Optional[dt.datetime]) -> bool:
        updated = await KeyUser.filter(user_id=user_id, hwid_reset_count=count).update(
            hwid_last_reset_at=restore_to, hwid_reset_count=F("hwid_reset_count") - 1
        )
        return updated == 1

    @_storage_errors
    async def count(self) -> int:
        return await KeyUser.all().count()


class TortoiseAuditLog(AuditLog):

    @_storage_errors
    async def append(self, entry: AuditEntry) -> None:
        await AuditLogRow.create(
            event=entry.event,
            key=entry.key,
            user_id=entry.user_id,
            detail=entry.detail,
            created_at=entry.created_at,
        )

    @_storage_errors
    async def recent(self, limit: int = 50) -> List[AuditEntry]:
        rows = await AuditLogRow.all().order_by("-id").limit(limit)
        return [
            AuditEntry(
                event=r.event,
                key=r.key,
                user_id=r.user_id,
                created_at=_utc(r.created_at),
                detail=r.detail,
            )
            for r in rows
        ]


class TortoiseStorage(Storage):
    """
    Storage bound to a Tortoise ORM connection.

    connect() initializes Tortoise for the given URL; close() releases every
    connection. Nothing is initialized at import time.
    """

    def __init__(self, db_url: str, generate_schemas: bool = False):
        self.db_url = db_url
        self.generate_schemas = generate_schemas
        self.keys = TortoiseKeyStore()
        self.users = TortoiseUserStore()
        self.audit = TortoiseAuditLog()

    async def connect(self) -> None:
        await init_db(build_tortoise_config(self.db_url), generate_schemas=self.generate_schemas)
        logger.info("Tortoise storage connected (schemas generated: %s)", self.generate_schemas)

    async def close(self) -> None:
        await close_db()

    @property
    def name(self) -> str:
        return "tortoise"
