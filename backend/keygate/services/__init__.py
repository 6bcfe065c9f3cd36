"""
Services Module

Provides the key lifecycle and the infrastructure it depends on:
- Storage: abstract contract, in-memory and Tortoise ORM implementations
- Cooldown: privilege tier -> HWID reset cooldown
- Lifecycle: the key state machine (create / redeem / verify / reset / blacklist)
- Ephemeral: pending reset confirmations and self-service issue cooldowns
"""

# Storage
from .store_base import (
    AuditEntry,
    DuplicateKeyError,
    KeyRecord,
    Storage,
    StorageError,
    UserRecord,
)
from .store_factory import build_storage
from .store_memory import MemoryStorage
from .store_tortoise import TortoiseStorage

# Policy
from .cooldown import CooldownPolicy, PrivilegeTier

# Engine
from .lifecycle import (
    BlacklistOutcome,
    InvalidRequest,
    KeyLifecycleEngine,
    RedeemOutcome,
    ResetOutcome,
    VerifyOutcome,
)

# Front-end session state
from .ephemeral import IssueCooldown, PendingResetRegister, utc_now

__all__ = [
    # Storage
    "AuditEntry",
    "DuplicateKeyError",
    "KeyRecord",
    "Storage",
    "StorageError",
    "UserRecord",
    "build_storage",
    "MemoryStorage",
    "TortoiseStorage",
    # Policy
    "CooldownPolicy",
    "PrivilegeTier",
    # Engine
    "BlacklistOutcome",
    "InvalidRequest",
    "KeyLifecycleEngine",
    "RedeemOutcome",
    "ResetOutcome",
    "VerifyOutcome",
    # Session state
    "IssueCooldown",
    "PendingResetRegister",
    "utc_now",
]
