"""
Key lifecycle engine

The state machine behind every front-end: create -> redeem -> HWID bind ->
reset / blacklist, with expiry derived at read time.

State-precondition failures are returned as named outcomes; only invalid
input (InvalidRequest) and storage failures (StorageError) raise. Nothing is
retried here: each call makes at most one attempt at each mutation and the
caller decides whether to try again.

Write ordering keeps every intermediate state valid:
- redeem claims the key (conditional on owner being null) before touching
  the user document, so a crash in between leaves an owned key that is
  merely missing from the owner's list (see reconcile_user);
- HWID binding is conditional on the key being owned and unbound;
- reset stamps the user's cooldown (conditional on the reset count read
  during the checks) before clearing the key's HWID, and hands the stamp
  back if the clear loses; a crash in between leaves the user on cooldown
  with the HWID still bound.
"""
import datetime as dt
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Iterable, List, Optional

from keygate.core.security import generate_token
from .cooldown import CooldownPolicy, PrivilegeTier
from .ephemeral import utc_now
from .store_base import (
    AuditEntry,
    DuplicateKeyError,
    KeyRecord,
    Storage,
    StorageError,
)

logger = logging.getLogger(__name__)


class InvalidRequest(ValueError):
    """Input the engine refuses before touching the store"""


class RedeemOutcome(str, Enum):
    SUCCESS = "SUCCESS"
    INVALID_KEY = "INVALID_KEY"
    BLACKLISTED = "BLACKLISTED"
    ALREADY_REDEEMED = "ALREADY_REDEEMED"
    EXPIRED = "EXPIRED"


class VerifyOutcome(str, Enum):
    INVALID_KEY = "INVALID_KEY"
    BLACKLISTED = "BLACKLISTED"
    EXPIRED = "EXPIRED"
    NOT_REDEEMED = "NOT_REDEEMED"
    REGISTERED = "REGISTERED"
    ACCESS_GRANTED = "ACCESS_GRANTED"
    MISMATCH = "MISMATCH"


class ResetOutcome(str, Enum):
    SUCCESS = "SUCCESS"
    INVALID_KEY = "INVALID_KEY"
    BLACKLISTED = "BLACKLISTED"
    NOT_OWNER = "NOT_OWNER"
    NO_HWID = "NO_HWID"
    COOLDOWN_ACTIVE = "COOLDOWN_ACTIVE"
    INSUFFICIENT_PRIVILEGE = "INSUFFICIENT_PRIVILEGE"
    CONFLICT = "CONFLICT"  # Lost to a concurrent write between read and update; nothing kept


class BlacklistOutcome(str, Enum):
    SUCCESS = "SUCCESS"
    NOT_FOUND = "NOT_FOUND"
    ALREADY_INACTIVE = "ALREADY_INACTIVE"


@dataclass
class CreatedKey:
    key: str
    expires_at: Optional[dt.datetime]


@dataclass
class RedeemResult:
    outcome: RedeemOutcome
    record: Optional[KeyRecord] = None

    @property
    def ok(self) -> bool:
        return self.outcome is RedeemOutcome.SUCCESS


@dataclass
class VerifyResult:
    outcome: VerifyOutcome

    @property
    def granted(self) -> bool:
        return self.outcome in (VerifyOutcome.REGISTERED, VerifyOutcome.ACCESS_GRANTED)


@dataclass
class ResetResult:
    outcome: ResetOutcome
    cooldown: Optional[dt.timedelta] = None   # Cooldown that applies (or will apply) to the requester
    remaining: Optional[dt.timedelta] = None  # Only for COOLDOWN_ACTIVE
    hwid: Optional[str] = None                # HWID that is (or was) bound

    @property
    def ok(self) -> bool:
        return self.outcome is ResetOutcome.SUCCESS


@dataclass
class BlacklistResult:
    outcome: BlacklistOutcome

    @property
    def ok(self) -> bool:
        return self.outcome is BlacklistOutcome.SUCCESS


@dataclass
class Stats:
    total_keys: int
    active_keys: int
    redeemed_keys: int
    total_users: int


@dataclass
class _ResetCheck:
    result: ResetResult
    record: Optional[KeyRecord] = None
    reset_count: int = 0
    last_reset: Optional[dt.datetime] = None


# Longest finite key lifetime (about a century); longer requests are refused
MAX_DURATION_DAYS = 36500


def normalize_key(raw: str) -> str:
    return (raw or "").strip().upper()


class KeyLifecycleEngine:
    """
    Transport-agnostic key lifecycle operations.

    Args:
        storage: Connected storage bundle (keys, users, audit)
        policy: Cooldown policy for HWID resets
        clock: Returns the current aware UTC datetime; injectable for tests
        max_batch: Default upper bound for create_keys
        max_create_attempts: Regeneration attempts when a batch collides
    """

    def __init__(
        self,
        storage: Storage,
        policy: Optional[CooldownPolicy] = None,
        clock: Callable[[], dt.datetime] = utc_now,
        max_batch: int = 100,
        max_create_attempts: int = 10,
    ):
        self.storage = storage
        self.policy = policy or CooldownPolicy()
        self._clock = clock
        self.max_batch = max_batch
        self.max_create_attempts = max_create_attempts

    def now(self) -> dt.datetime:
        return self._clock()

    async def _audit(self, event: str, key: Optional[str], user_id: Optional[str], **detail) -> None:
        # Side channel: a failed audit write must not undo the mutation it describes
        try:
            await self.storage.audit.append(
                AuditEntry(event=event, key=key, user_id=user_id, created_at=self.now(), detail=detail or None)
            )
        except StorageError:
            logger.exception("Audit write failed: event=%s key=%s user=%s", event, key, user_id)

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------
    async def create_keys(
        self,
        quantity: int,
        duration_days: Optional[int] = None,
        created_by: Optional[str] = None,
        max_quantity: Optional[int] = None,
    ) -> List[CreatedKey]:
        """
        Create a batch of unredeemed keys, all or nothing.

        duration_days of None or 0 creates lifetime keys; a positive value
        sets expires_at = now + duration_days. max_quantity overrides the
        engine-wide cap (chat-issued batches use a smaller one).
        """
        cap = max_quantity if max_quantity is not None else self.max_batch
        if isinstance(quantity, bool) or not isinstance(quantity, int):
            raise InvalidRequest("quantity must be an integer")
        if quantity < 1 or quantity > cap:
            raise InvalidRequest(f"quantity must be between 1 and {cap}")
        if duration_days is not None:
            if isinstance(duration_days, bool) or not isinstance(duration_days, int) or duration_days < 0:
                raise InvalidRequest("duration must be a non-negative number of days")
            if duration_days > MAX_DURATION_DAYS:
                raise InvalidRequest(f"duration must be at most {MAX_DURATION_DAYS} days")
        lifetime = dt.timedelta(days=duration_days) if duration_days else None
        return await self.issue_keys(quantity, lifetime, created_by)

    async def issue_keys(
        self,
        quantity: int,
        lifetime: Optional[dt.timedelta],
        created_by: Optional[str] = None,
    ) -> List[CreatedKey]:
        """Lower-level creation with an arbitrary lifetime (trial keys use minutes)"""
        now = self.now()
        try:
            expires_at = now + lifetime if lifetime else None
        except OverflowError:
            raise InvalidRequest("lifetime out of range") from None

        for attempt in range(1, self.max_create_attempts + 1):
            tokens = set()
            while len(tokens) < quantity:
                tokens.add(generate_token())
            records = [
                KeyRecord(key=t, created_at=now, expires_at=expires_at, created_by=created_by)
                for t in tokens
            ]
            try:
                await self.storage.keys.insert_many(records)
            except DuplicateKeyError as e:
                logger.warning("Key collision on attempt %d (%s), regenerating batch", attempt, e.key)
                continue
            break
        else:
            raise StorageError("KEY_GENERATION_COLLISION")

        created = [CreatedKey(key=r.key, expires_at=r.expires_at) for r in records]
        logger.info("Created %d key(s) by=%s expires_at=%s", len(created), created_by, expires_at)
        await self._audit(
            "created", None, created_by,
            count=len(created), keys=[c.key for c in created],
            expires_at=expires_at.isoformat() if expires_at else None,
        )
        return created

    # ------------------------------------------------------------------
    # Redemption
    # ------------------------------------------------------------------
    async def redeem_key(self, key: str, user_id: str) -> RedeemResult:
        """
        Assign an unowned key to user_id.

        Checks, first failure wins: exists, active, unowned, not expired.
        """
        key = normalize_key(key)
        rec = await self.storage.keys.get(key)
        if rec is None:
            return RedeemResult(RedeemOutcome.INVALID_KEY)
        if not rec.active:
            return RedeemResult(RedeemOutcome.BLACKLISTED, rec)
        if rec.owner_user_id is not None:
            return RedeemResult(RedeemOutcome.ALREADY_REDEEMED, rec)
        now = self.now()
        if rec.is_expired(now):
            return RedeemResult(RedeemOutcome.EXPIRED, rec)

        if not await self.storage.keys.claim_owner(key, user_id, now):
            # Someone else got there between our read and write
            latest = await self.storage.keys.get(key)
            if latest is not None and not latest.active:
                return RedeemResult(RedeemOutcome.BLACKLISTED, latest)
            return RedeemResult(RedeemOutcome.ALREADY_REDEEMED, latest)

        rec.owner_user_id = user_id
        rec.redeemed_at = now
        await self.storage.users.append_key(user_id, key, now)
        logger.info("Key redeemed: key=%s user=%s", key, user_id)
        await self._audit("redeemed", key, user_id)
        return RedeemResult(RedeemOutcome.SUCCESS, rec)

    # ------------------------------------------------------------------
    # HWID verification (trust on first use)
    # ------------------------------------------------------------------
    async def verify_hwid(self, key: str, hwid: str) -> VerifyResult:
        if not hwid:
            raise InvalidRequest("hwid required")
        key = normalize_key(key)
        rec = await self.storage.keys.get(key)
        if rec is None:
            return VerifyResult(VerifyOutcome.INVALID_KEY)
        if not rec.active:
            return VerifyResult(VerifyOutcome.BLACKLISTED)
        if rec.is_expired(self.now()):
            return VerifyResult(VerifyOutcome.EXPIRED)
        if rec.owner_user_id is None:
            return VerifyResult(VerifyOutcome.NOT_REDEEMED)

        if rec.hwid is None:
            if await self.storage.keys.bind_hwid(key, hwid):
                logger.info("HWID bound: key=%s user=%s", key, rec.owner_user_id)
                await self._audit("hwid_bound", key, rec.owner_user_id, hwid=hwid)
                return VerifyResult(VerifyOutcome.REGISTERED)
            # Another device bound first; judge against whatever won
            rec = await self.storage.keys.get(key)
            if rec is None or not rec.active:
                return VerifyResult(VerifyOutcome.BLACKLISTED)

        if rec.hwid == hwid:
            return VerifyResult(VerifyOutcome.ACCESS_GRANTED)
        return VerifyResult(VerifyOutcome.MISMATCH)

    # ------------------------------------------------------------------
    # HWID reset
    # ------------------------------------------------------------------
    async def _check_reset(self, key: str, user_id: str, tiers: Iterable[PrivilegeTier]) -> _ResetCheck:
        cooldown = self.policy.resolve(tiers)
        if cooldown is None:
            return _ResetCheck(ResetResult(ResetOutcome.INSUFFICIENT_PRIVILEGE))

        rec = await self.storage.keys.get(key)
        if rec is None:
            return _ResetCheck(ResetResult(ResetOutcome.INVALID_KEY, cooldown))
        if not rec.active:
            return _ResetCheck(ResetResult(ResetOutcome.BLACKLISTED, cooldown), rec)
        if rec.owner_user_id != user_id:
            return _ResetCheck(ResetResult(ResetOutcome.NOT_OWNER, cooldown), rec)
        if rec.hwid is None:
            return _ResetCheck(ResetResult(ResetOutcome.NO_HWID, cooldown), rec)

        user = await self.storage.users.get(user_id)
        if user is None:
            return _ResetCheck(ResetResult(ResetOutcome.SUCCESS, cooldown, hwid=rec.hwid), rec)
        remaining = self._cooldown_left(user.hwid_last_reset_at, cooldown)
        if remaining is not None:
            return _ResetCheck(
                ResetResult(ResetOutcome.COOLDOWN_ACTIVE, cooldown, remaining=remaining, hwid=rec.hwid), rec
            )
        return _ResetCheck(
            ResetResult(ResetOutcome.SUCCESS, cooldown, hwid=rec.hwid),
            rec,
            reset_count=user.hwid_reset_count,
            last_reset=user.hwid_last_reset_at,
        )

    def _cooldown_left(self, last_reset: Optional[dt.datetime], cooldown: dt.timedelta) -> Optional[dt.timedelta]:
        if last_reset is None:
            return None
        elapsed = self.now() - last_reset
        return cooldown - elapsed if elapsed < cooldown else None

    async def check_reset(self, key: str, user_id: str, tiers: Iterable[PrivilegeTier]) -> ResetResult:
        """
        Dry run of reset_hwid for the confirmation step: same checks, no
        mutation. SUCCESS means a confirm issued now would go through.
        """
        check = await self._check_reset(normalize_key(key), user_id, tiers)
        return check.result

    async def reset_hwid(self, key: str, user_id: str, tiers: Iterable[PrivilegeTier]) -> ResetResult:
        """
        Unbind the key's HWID on behalf of its owner, subject to the
        per-user cooldown resolved from tiers. A requester with no
        qualifying tier is denied regardless of cooldown state.
        """
        key = normalize_key(key)
        check = await self._check_reset(key, user_id, tiers)
        if not check.result.ok:
            return check.result

        previous = check.record.hwid
        cooldown = check.result.cooldown
        now = self.now()
        user = await self.storage.users.record_reset(user_id, now, check.reset_count)
        if user is None:
            # Another reset for this user stamped first
            latest_user = await self.storage.users.get(user_id)
            remaining = self._cooldown_left(latest_user.hwid_last_reset_at if latest_user else None, cooldown)
            if remaining is not None:
                return ResetResult(ResetOutcome.COOLDOWN_ACTIVE, cooldown, remaining=remaining, hwid=previous)
            return ResetResult(ResetOutcome.CONFLICT, cooldown, hwid=previous)

        if not await self.storage.keys.clear_hwid(key, previous):
            if not await self.storage.users.release_reset(user_id, user.hwid_reset_count, check.last_reset):
                logger.warning("Could not release reset stamp for user=%s after a lost clear", user_id)
            latest = await self.storage.keys.get(key)
            if latest is None or not latest.active:
                return ResetResult(ResetOutcome.BLACKLISTED, cooldown)
            if latest.hwid is None:
                return ResetResult(ResetOutcome.NO_HWID, cooldown)
            return ResetResult(ResetOutcome.CONFLICT, cooldown, hwid=latest.hwid)

        if key not in user.keys:
            await self.storage.users.append_key(user_id, key, now)
        logger.info("HWID reset: key=%s user=%s count=%d", key, user_id, user.hwid_reset_count)
        await self._audit("hwid_reset", key, user_id, previous_hwid=previous)
        return ResetResult(ResetOutcome.SUCCESS, cooldown, hwid=previous)

    # ------------------------------------------------------------------
    # Blacklist
    # ------------------------------------------------------------------
    async def blacklist(self, key: str, actor_user_id: str) -> BlacklistResult:
        """Terminal deactivation; there is no way back"""
        key = normalize_key(key)
        rec = await self.storage.keys.get(key)
        if rec is None:
            return BlacklistResult(BlacklistOutcome.NOT_FOUND)
        if not rec.active:
            return BlacklistResult(BlacklistOutcome.ALREADY_INACTIVE)
        if not await self.storage.keys.deactivate(key, actor_user_id, self.now()):
            return BlacklistResult(BlacklistOutcome.ALREADY_INACTIVE)
        logger.info("Key blacklisted: key=%s by=%s", key, actor_user_id)
        await self._audit("blacklisted", key, actor_user_id)
        return BlacklistResult(BlacklistOutcome.SUCCESS)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    async def get_key(self, key: str) -> Optional[KeyRecord]:
        return await self.storage.keys.get(normalize_key(key))

    async def list_keys(self) -> List[KeyRecord]:
        return await self.storage.keys.list_all()

    async def list_user_keys(self, user_id: str) -> List[KeyRecord]:
        return await self.storage.keys.find_by_owner(user_id)

    async def stats(self) -> Stats:
        return Stats(
            total_keys=await self.storage.keys.count(),
            active_keys=await self.storage.keys.count(active=True),
            redeemed_keys=await self.storage.keys.count(redeemed=True),
            total_users=await self.storage.users.count(),
        )

    async def reconcile_user(self, user_id: str) -> List[str]:
        """
        Append to the user's list every key they own that is missing from
        it. Returns the keys that were added.
        """
        owned = await self.storage.keys.find_by_owner(user_id)
        user = await self.storage.users.get(user_id)
        listed = set(user.keys) if user else set()
        added = []
        for rec in owned:
            if rec.key not in listed:
                await self.storage.users.append_key(user_id, rec.key, self.now())
                added.append(rec.key)
        if added:
            logger.warning("Reconciled user %s: re-listed %d owned key(s)", user_id, len(added))
        return added
