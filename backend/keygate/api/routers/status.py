# keygate/api/routers/status.py
import time

from fastapi import APIRouter, Request

router = APIRouter(tags=["status"])


def _uptime(request: Request) -> float:
    return round(time.monotonic() - request.app.state.started_monotonic, 3)


@router.get("/")
async def root(request: Request):
    """
    Public status summary.
    """
    state = request.app.state
    bot = getattr(state, "bot", None)
    return {
        "status": "online",
        "service": request.app.title,
        "storage": state.storage.name,
        "bot": "running" if bot is not None and bot.is_ready() else "offline",
    }


@router.get("/api/health")
async def health(request: Request):
    """
    Liveness probe with process uptime in seconds.
    """
    return {"ok": True, "uptimeSeconds": _uptime(request)}
