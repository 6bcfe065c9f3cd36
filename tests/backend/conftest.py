import datetime as dt

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from keygate.config import Settings
from keygate.main import create_app
from keygate.services.cooldown import CooldownPolicy
from keygate.services.lifecycle import KeyLifecycleEngine
from keygate.services.store_memory import MemoryStorage
from keygate.services.store_tortoise import TortoiseStorage


TEST_DB_URL = "sqlite://:memory:"
API_SECRET = "test-secret"


class FakeClock:
    """
    Controllable clock injected into the engine and the ephemeral registers.
    Call it to read the time; advance() moves it forward.
    """

    def __init__(self, start: dt.datetime | None = None):
        self.current = start or dt.datetime(2026, 1, 1, 12, 0, tzinfo=dt.timezone.utc)

    def __call__(self) -> dt.datetime:
        return self.current

    def advance(self, **kwargs) -> dt.datetime:
        self.current += dt.timedelta(**kwargs)
        return self.current


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def settings() -> Settings:
    """
    Settings isolated from the developer's .env: fixed secret, no bot.
    """
    return Settings(
        api_secret_key=API_SECRET,
        discord_token=None,
        discord_owner_id=None,
        database_url=TEST_DB_URL,
        api_max_batch=100,
        chat_max_batch=50,
        pending_reset_ttl_seconds=300,
        CORS_ORIGINS=[],
    )


@pytest_asyncio.fixture
async def memory_storage():
    storage = MemoryStorage()
    await storage.connect()
    yield storage
    await storage.close()


@pytest_asyncio.fixture
async def tortoise_storage():
    """
    Fresh in-memory SQLite database for every test; tables are generated on connect.
    """
    storage = TortoiseStorage(TEST_DB_URL, generate_schemas=True)
    await storage.connect()
    yield storage
    await storage.close()


@pytest.fixture
def engine(memory_storage, clock) -> KeyLifecycleEngine:
    return KeyLifecycleEngine(memory_storage, policy=CooldownPolicy(), clock=clock)


@pytest.fixture
def app(tortoise_storage, settings, clock):
    # Startup hooks do not run under ASGITransport; the storage fixture is already connected
    return create_app(storage=tortoise_storage, settings=settings, clock=clock, run_bot=False)


@pytest_asyncio.fixture
async def client(app):
    """
    Provide an HTTPX AsyncClient bound to the FastAPI app.
    """
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as async_client:
        yield async_client


@pytest.fixture
def auth_headers() -> dict[str, str]:
    return {"x-api-key": API_SECRET}
