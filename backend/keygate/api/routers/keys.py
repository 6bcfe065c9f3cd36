# keygate/api/routers/keys.py
from __future__ import annotations

import datetime as dt

from fastapi import APIRouter, Depends, HTTPException, Request, status

from keygate.api.deps import get_engine, require_api_key
from keygate.schemas.license_key import (
    BlacklistIn,
    BlacklistOut,
    CreateKeysIn,
    CreateKeysOut,
    CreatedKeyItem,
    KeyDetailOut,
    KeyListOut,
)
from keygate.services.lifecycle import BlacklistOutcome, KeyLifecycleEngine
from keygate.services.store_base import KeyRecord

router = APIRouter(prefix="/keys", tags=["keys"], dependencies=[Depends(require_api_key)])


def _iso(value: dt.datetime | None) -> str | None:
    return value.isoformat() if value else None


def _key_to_dict(r: KeyRecord, now: dt.datetime) -> dict:
    """
    Convert a key record to the dictionary format used in API responses.

    Args:
        r: Key record from the store
        now: Reference time for the derived isExpired flag

    Returns:
        dict: camelCase fields plus isExpired
    """
    return {
        "key": r.key,
        "ownerUserId": r.owner_user_id,
        "hwid": r.hwid,
        "active": r.active,
        "createdAt": _iso(r.created_at),
        "expiresAt": _iso(r.expires_at),
        "redeemedAt": _iso(r.redeemed_at),
        "createdBy": r.created_by,
        "blacklistedBy": r.blacklisted_by,
        "blacklistedAt": _iso(r.blacklisted_at),
        "isExpired": r.is_expired(now),
    }


@router.post("/create", response_model=CreateKeysOut)
async def create_keys(
    body: CreateKeysIn,
    request: Request,
    engine: KeyLifecycleEngine = Depends(get_engine),
):
    """
    Bulk-create keys.

    Args:
        body: Request body containing:
            - duration: int | None (days; 0 or omitted = lifetime)
            - quantity: int (1 .. API_MAX_BATCH)

    Returns:
        CreateKeysOut: {success, count, keys: [{key, expires}]}

    Raises:
        HTTPException (400): If quantity exceeds the configured cap
        HTTPException (401): If the x-api-key header is invalid

    Note:
        Creation is all-or-nothing: either every key is stored or none is.
    """
    cap = request.app.state.api_max_batch
    if body.quantity > cap:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"QUANTITY_OVER_CAP:{cap}")

    created = await engine.create_keys(
        body.quantity, duration_days=body.duration, created_by="api", max_quantity=cap
    )
    items = [CreatedKeyItem(key=c.key, expires=_iso(c.expires_at)) for c in created]
    return {"success": True, "count": len(items), "keys": items}


@router.get("/check/{key}", response_model=KeyDetailOut)
async def check_key(key: str, engine: KeyLifecycleEngine = Depends(get_engine)):
    """
    Get one key record with its derived expiry flag.

    Raises:
        HTTPException (404): If the key does not exist
    """
    r = await engine.get_key(key)
    if not r:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="KEY_NOT_FOUND")
    return _key_to_dict(r, engine.now())


@router.get("/list", response_model=KeyListOut)
async def list_keys(engine: KeyLifecycleEngine = Depends(get_engine)):
    """
    List every key record, oldest first.
    """
    rows = await engine.list_keys()
    now = engine.now()
    return {"success": True, "total": len(rows), "keys": [_key_to_dict(r, now) for r in rows]}


@router.post("/blacklist", response_model=BlacklistOut)
async def blacklist_key(body: BlacklistIn, engine: KeyLifecycleEngine = Depends(get_engine)):
    """
    Blacklist a key (terminal).

    Raises:
        HTTPException (404): If the key does not exist (KEY_NOT_FOUND)
        HTTPException (409): If the key is already blacklisted (KEY_ALREADY_INACTIVE)
    """
    result = await engine.blacklist(body.key, body.actor or "api")
    if result.outcome is BlacklistOutcome.NOT_FOUND:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="KEY_NOT_FOUND")
    if result.outcome is BlacklistOutcome.ALREADY_INACTIVE:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="KEY_ALREADY_INACTIVE")
    return {"success": True, "key": body.key.upper()}
