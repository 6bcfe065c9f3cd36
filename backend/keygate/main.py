# keygate/main.py
import asyncio
import datetime as dt
import logging
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from keygate.config import Settings, settings as default_settings
from keygate.api.routers import keys, status as status_router, verify
from keygate.services.cooldown import CooldownPolicy
from keygate.services.lifecycle import InvalidRequest, KeyLifecycleEngine
from keygate.services.store_base import Storage, StorageError
from keygate.services.store_factory import build_storage

logger = logging.getLogger("uvicorn.error")


def _install_error_handlers(app: FastAPI) -> None:
    """Every error leaves the API as {"error": <code>}"""

    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException):
        return JSONResponse({"error": exc.detail}, status_code=exc.status_code, headers=getattr(exc, "headers", None))

    @app.exception_handler(RequestValidationError)
    async def validation_error(request: Request, exc: RequestValidationError):
        fields = [".".join(str(p) for p in e.get("loc", ()) if p != "body") for e in exc.errors()]
        return JSONResponse({"error": "BAD_REQUEST", "fields": fields}, status_code=status.HTTP_400_BAD_REQUEST)

    @app.exception_handler(InvalidRequest)
    async def invalid_request(request: Request, exc: InvalidRequest):
        return JSONResponse({"error": "BAD_REQUEST", "message": str(exc)}, status_code=status.HTTP_400_BAD_REQUEST)

    @app.exception_handler(StorageError)
    async def storage_error(request: Request, exc: StorageError):
        logger.exception("[storage] %s %s failed", request.method, request.url.path, exc_info=exc)
        return JSONResponse({"error": "STORAGE_UNAVAILABLE"}, status_code=status.HTTP_503_SERVICE_UNAVAILABLE)

    @app.exception_handler(Exception)
    async def unhandled_error(request: Request, exc: Exception):
        logger.exception("[api] unhandled error on %s %s", request.method, request.url.path, exc_info=exc)
        return JSONResponse({"error": "INTERNAL_ERROR"}, status_code=status.HTTP_500_INTERNAL_SERVER_ERROR)


def _log_bot_exit(task: asyncio.Task) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error("[bot] stopped with error: %r", exc)


def create_app(
    storage: Storage | None = None,
    settings: Settings | None = None,
    clock=None,
    run_bot: bool = True,
) -> FastAPI:
    """
    Build the FastAPI application and its engine.

    Args:
        storage: Storage bundle; built from DATABASE_URL when omitted
        settings: Settings override (tests)
        clock: Clock override for the engine (tests)
        run_bot: Start the Discord bot on startup when a token is configured
    """
    settings = settings or default_settings
    storage = storage or build_storage(settings.database_url, settings.generate_schemas)

    engine_kwargs = {"clock": clock} if clock else {}
    engine = KeyLifecycleEngine(
        storage,
        policy=CooldownPolicy.from_settings(settings),
        max_batch=settings.api_max_batch,
        **engine_kwargs,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Startup: open storage, then start the bot on the same loop
        await storage.connect()
        logger.info("[storage] %s connected", storage.name)
        if not settings.api_secret_key:
            logger.warning("[auth] API_SECRET_KEY not set -> every /api/keys route will answer 401")
        if run_bot and settings.discord_token:
            from keygate.bot.client import build_bot

            bot = build_bot(engine, settings)
            app.state.bot = bot
            app.state.bot_task = asyncio.create_task(bot.start(settings.discord_token))
            app.state.bot_task.add_done_callback(_log_bot_exit)
            logger.info("[bot] starting")
        try:
            yield
        finally:
            # Shutdown: bot before storage
            if app.state.bot is not None:
                await app.state.bot.close()
            await storage.close()
            logger.info("[storage] %s closed at %s", storage.name, dt.datetime.now(dt.timezone.utc).isoformat())

    app = FastAPI(title=settings.APP_NAME, lifespan=lifespan)
    app.state.settings = settings
    app.state.storage = storage
    app.state.engine = engine
    app.state.api_secret_key = settings.api_secret_key
    app.state.api_max_batch = settings.api_max_batch
    app.state.started_monotonic = time.monotonic()
    app.state.bot = None

    if settings.CORS_ORIGINS:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.CORS_ORIGINS,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    _install_error_handlers(app)

    # REST
    app.include_router(status_router.router)
    app.include_router(keys.router, prefix="/api")
    app.include_router(verify.router, prefix="/api")

    return app


app = create_app()
