# keygate/api/routers/verify.py
from fastapi import APIRouter, Depends

from keygate.api.deps import get_engine
from keygate.schemas.license_key import VerifyIn, VerifyOut
from keygate.services.lifecycle import KeyLifecycleEngine, VerifyOutcome

router = APIRouter(tags=["verify"])

MESSAGES = {
    VerifyOutcome.INVALID_KEY: "Invalid key",
    VerifyOutcome.BLACKLISTED: "Key is blacklisted",
    VerifyOutcome.EXPIRED: "Key has expired",
    VerifyOutcome.NOT_REDEEMED: "Key has not been redeemed",
    VerifyOutcome.REGISTERED: "HWID registered",
    VerifyOutcome.ACCESS_GRANTED: "Access granted",
    VerifyOutcome.MISMATCH: "HWID mismatch",
}


@router.post("/verify", response_model=VerifyOut)
async def verify(body: VerifyIn, engine: KeyLifecycleEngine = Depends(get_engine)):
    """
    HWID check for the external application (no API key required).

    The first call for a redeemed key binds the supplied HWID; later calls
    only compare. Every engine outcome is answered with HTTP 200 so the
    client can branch on `status`; only malformed bodies get a 400.

    Returns:
        VerifyOut: {success, status, message}; success is True only for
        REGISTERED and ACCESS_GRANTED
    """
    result = await engine.verify_hwid(body.key, body.hwid)
    return {
        "success": result.granted,
        "status": result.outcome.value,
        "message": MESSAGES[result.outcome],
    }
