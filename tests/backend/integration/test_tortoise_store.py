"""
Tortoise ORM storage against in-memory SQLite: the same contract as the
in-memory store, with real UPDATE ... WHERE conditional writes.
"""
import datetime as dt

import pytest

from keygate.models.license_key import LicenseKey
from keygate.services.cooldown import CooldownPolicy, PrivilegeTier
from keygate.services.lifecycle import KeyLifecycleEngine, RedeemOutcome, ResetOutcome, VerifyOutcome
from keygate.services.store_base import AuditEntry, DuplicateKeyError, KeyRecord


pytestmark = pytest.mark.asyncio


def _rec(key, clock, **kw) -> KeyRecord:
    return KeyRecord(key=key, created_at=clock(), **kw)


async def test_round_trip_keeps_aware_utc_timestamps(tortoise_storage, clock):
    expires = clock() + dt.timedelta(days=3)
    await tortoise_storage.keys.insert_many([_rec("A" * 32, clock, expires_at=expires, created_by="api")])

    rec = await tortoise_storage.keys.get("A" * 32)

    assert rec.created_at == clock()
    assert rec.expires_at == expires
    assert rec.created_at.tzinfo is not None
    assert rec.created_by == "api"
    assert rec.active is True


async def test_insert_many_is_all_or_nothing(tortoise_storage, clock):
    keys = tortoise_storage.keys
    await keys.insert_many([_rec("A", clock)])

    with pytest.raises(DuplicateKeyError):
        await keys.insert_many([_rec("B", clock), _rec("A", clock)])

    assert await keys.get("B") is None
    assert await LicenseKey.all().count() == 1


async def test_conditional_transitions(tortoise_storage, clock):
    keys = tortoise_storage.keys
    await keys.insert_many([_rec("A", clock)])

    assert await keys.bind_hwid("A", "H1") is False
    assert await keys.claim_owner("A", "42", clock()) is True
    assert await keys.claim_owner("A", "7", clock()) is False
    assert await keys.bind_hwid("A", "H1") is True
    assert await keys.bind_hwid("A", "H2") is False
    assert await keys.clear_hwid("A", "H2") is False
    assert await keys.clear_hwid("A", "H1") is True
    assert await keys.deactivate("A", "staff", clock()) is True
    assert await keys.deactivate("A", "staff", clock()) is False

    rec = await keys.get("A")
    assert rec.owner_user_id == "42"
    assert rec.hwid is None
    assert rec.active is False
    assert rec.blacklisted_by == "staff"


async def test_counts_and_owner_lookup(tortoise_storage, clock):
    keys = tortoise_storage.keys
    await keys.insert_many([_rec("A", clock), _rec("B", clock), _rec("C", clock)])
    await keys.claim_owner("B", "42", clock())
    await keys.claim_owner("C", "42", clock.advance(minutes=1))
    await keys.deactivate("A", "staff", clock())

    assert await keys.count() == 3
    assert await keys.count(active=True) == 2
    assert await keys.count(redeemed=True) == 2
    assert [r.key for r in await keys.find_by_owner("42")] == ["B", "C"]
    assert len(await keys.list_all()) == 3


async def test_user_store(tortoise_storage, clock):
    users = tortoise_storage.users
    await users.append_key("42", "A", clock())
    user = await users.append_key("42", "A", clock())
    assert user.keys == ["A"]

    await users.record_reset("42", clock(), expected_count=0)
    later = clock.advance(hours=2)
    user = await users.record_reset("42", later, expected_count=1)

    assert user.hwid_reset_count == 2
    assert user.hwid_last_reset_at == later
    assert user.keys == ["A"]
    assert await users.count() == 1


async def test_record_reset_creates_missing_user(tortoise_storage, clock):
    user = await tortoise_storage.users.record_reset("7", clock(), expected_count=0)
    assert user.hwid_reset_count == 1
    assert user.keys == []


async def test_record_reset_is_conditional_on_count(tortoise_storage, clock):
    users = tortoise_storage.users
    stamped = clock()
    await users.record_reset("42", stamped, expected_count=0)

    clock.advance(minutes=5)
    assert await users.record_reset("42", clock(), expected_count=0) is None

    user = await users.get("42")
    assert user.hwid_reset_count == 1
    assert user.hwid_last_reset_at == stamped


async def test_release_reset(tortoise_storage, clock):
    users = tortoise_storage.users
    await users.record_reset("42", clock(), expected_count=0)

    assert await users.release_reset("42", 1, None) is True
    user = await users.get("42")
    assert user.hwid_reset_count == 0
    assert user.hwid_last_reset_at is None
    assert await users.release_reset("42", 1, None) is False


async def test_audit_log(tortoise_storage, clock):
    await tortoise_storage.audit.append(
        AuditEntry(event="created", key=None, user_id="api", created_at=clock(), detail={"count": 2})
    )
    await tortoise_storage.audit.append(AuditEntry(event="redeemed", key="A", user_id="42", created_at=clock()))

    recent = await tortoise_storage.audit.recent()

    assert [e.event for e in recent] == ["redeemed", "created"]
    assert recent[1].detail == {"count": 2}


async def test_engine_lifecycle_on_tortoise(tortoise_storage, clock):
    engine = KeyLifecycleEngine(tortoise_storage, policy=CooldownPolicy(), clock=clock)
    key = (await engine.create_keys(1, duration_days=30))[0].key

    assert (await engine.redeem_key(key, "42")).outcome is RedeemOutcome.SUCCESS
    assert (await engine.redeem_key(key, "7")).outcome is RedeemOutcome.ALREADY_REDEEMED
    assert (await engine.verify_hwid(key, "HWID-A")).outcome is VerifyOutcome.REGISTERED
    assert (await engine.verify_hwid(key, "HWID-B")).outcome is VerifyOutcome.MISMATCH

    assert (await engine.reset_hwid(key, "42", {PrivilegeTier.PREMIUM})).ok
    again = await engine.reset_hwid(key, "42", {PrivilegeTier.PREMIUM})
    assert again.outcome is ResetOutcome.NO_HWID
    assert (await engine.verify_hwid(key, "HWID-B")).outcome is VerifyOutcome.REGISTERED

    clock.advance(days=31)
    assert (await engine.verify_hwid(key, "HWID-B")).outcome is VerifyOutcome.EXPIRED

    stats = await engine.stats()
    assert (stats.total_keys, stats.redeemed_keys, stats.total_users) == (1, 1, 1)
