# keygate/schemas/license_key.py
"""
Pydantic schemas for the license key REST endpoints.
Defines request/response models for creation, lookup, blacklisting and HWID verification.
"""
from __future__ import annotations
from pydantic import BaseModel, Field, StrictInt, constr
from typing import List, Optional

from keygate.services.lifecycle import MAX_DURATION_DAYS

__all__ = [
    "CreateKeysIn",
    "CreatedKeyItem",
    "CreateKeysOut",
    "KeyDetailOut",
    "KeyListOut",
    "BlacklistIn",
    "BlacklistOut",
    "VerifyIn",
    "VerifyOut",
]


class CreateKeysIn(BaseModel):
    """
    Request model for bulk key creation.
    The upper bound on quantity is enforced by the route against settings.api_max_batch.
    """
    duration: Optional[StrictInt] = Field(
        default=None, ge=0, le=MAX_DURATION_DAYS, description="Days until expiration; 0 or omitted means lifetime"
    )
    quantity: StrictInt = Field(ge=1, description="Number of keys to create")


class CreatedKeyItem(BaseModel):
    key: str  # Plain key token
    expires: Optional[str] = None  # ISO timestamp, None for lifetime keys


class CreateKeysOut(BaseModel):
    success: bool
    count: int
    keys: List[CreatedKeyItem]


class KeyDetailOut(BaseModel):
    """
    Full key record as exposed to operators.
    """
    key: str
    ownerUserId: Optional[str] = None
    hwid: Optional[str] = None
    active: bool
    createdAt: str
    expiresAt: Optional[str] = None
    redeemedAt: Optional[str] = None
    createdBy: Optional[str] = None
    blacklistedBy: Optional[str] = None
    blacklistedAt: Optional[str] = None
    isExpired: bool


class KeyListOut(BaseModel):
    success: bool
    total: int
    keys: List[KeyDetailOut]


class BlacklistIn(BaseModel):
    key: constr(strip_whitespace=True, min_length=1, max_length=64)
    actor: Optional[str] = None  # Recorded as blacklistedBy; defaults to "api"


class BlacklistOut(BaseModel):
    success: bool
    key: str


class VerifyIn(BaseModel):
    """
    Request model for HWID verification by the external application.
    """
    key: constr(strip_whitespace=True, min_length=1, max_length=64)
    hwid: constr(min_length=1, max_length=256)  # Compared case-sensitively, never trimmed


class VerifyOut(BaseModel):
    success: bool  # True for REGISTERED and ACCESS_GRANTED
    status: str  # Engine outcome code
    message: str
