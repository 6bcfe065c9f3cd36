# keygate/api/deps.py
from fastapi import Header, HTTPException, Request, status

from keygate.core.security import verify_api_secret
from keygate.services.lifecycle import KeyLifecycleEngine


def get_engine(request: Request) -> KeyLifecycleEngine:
    """
    FastAPI dependency returning the lifecycle engine bound to this app.

    The engine is built by create_app() and stored on app.state, so tests
    can run several apps with different storages side by side.
    """
    return request.app.state.engine


async def require_api_key(
    request: Request,
    x_api_key: str | None = Header(default=None),
) -> None:
    """
    FastAPI dependency enforcing the static shared secret.

    Args:
        request: Used to reach the configured secret on app.state
        x_api_key: Value of the x-api-key header

    Raises:
        HTTPException (401): If the header is missing, wrong, or no secret
            is configured (AUTH_INVALID_API_KEY)

    Usage:
        @router.get("/keys/list", dependencies=[Depends(require_api_key)])
    """
    expected = request.app.state.api_secret_key
    if not verify_api_secret(x_api_key, expected):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="AUTH_INVALID_API_KEY")
