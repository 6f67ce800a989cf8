import asyncio
import os
import tempfile
import time
import pytest

_tmpdir = tempfile.mkdtemp(prefix="aarath-tests-")
os.environ["IDENTITY_SECRET"] = "test-secret"
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_tmpdir}/test.db"
os.environ["RATE_LIMIT_REQUESTS"] = "100000"
os.environ["BID_RATE_LIMIT"] = "100000"

from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import NullPool
from aarath.core.db import Base, get_db
from aarath.core import redis as app_redis
from aarath.core.config import Settings
from aarath.auth.utils import create_identity_token
from aarath.realtime.store import RealtimeStore
from main import app

engine = create_async_engine(os.environ["DATABASE_URL"], echo=False, poolclass=NullPool)
AsyncSessionLocal = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


class FakePipeline:
    def __init__(self, redis):
        self.redis = redis
        self.ops = []
    def zremrangebyscore(self, key, low, high):
        self.ops.append(lambda: self.redis.zremrangebyscore(key, low, high))
    def zadd(self, key, mapping):
        self.ops.append(lambda: self.redis.zadd(key, mapping))
    def zcard(self, key):
        self.ops.append(lambda: self.redis.zcard(key))
    def expire(self, key, ttl):
        self.ops.append(lambda: True)
    async def execute(self):
        return [op() for op in self.ops]


class FakeRedis:
    def __init__(self):
        self.store = {}
        self.zsets = {}
    async def setex(self, key, ttl, value):
        self.store[key] = value
    async def exists(self, key):
        return 1 if key in self.store else 0
    def pipeline(self):
        return FakePipeline(self)
    def zremrangebyscore(self, key, low, high):
        members = self.zsets.setdefault(key, {})
        for m in [m for m, s in members.items() if low <= s <= high]:
            del members[m]
    def zadd(self, key, mapping):
        self.zsets.setdefault(key, {}).update(mapping)
    def zcard(self, key):
        return len(self.zsets.get(key, {}))


class FakeClock:
    """Hand-driven server clock in epoch ms."""
    def __init__(self, start=1_700_000_000_000):
        self.now = start
    def __call__(self):
        return self.now
    def advance(self, ms):
        self.now += ms


async def override_get_db():
    async with AsyncSessionLocal() as session:
        yield session


@pytest.fixture(scope="session", autouse=True)
def setup_db():
    async def init_models():
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
    asyncio.run(init_models())
    app.dependency_overrides[get_db] = override_get_db
    app_redis.redis_client = FakeRedis()
    yield
    app.dependency_overrides.clear()

@pytest.fixture(scope="session")
def client():
    with TestClient(app) as c:
        yield c

@pytest.fixture
def clock():
    return FakeClock()

@pytest.fixture
def store(clock):
    return RealtimeStore(clock=clock)

@pytest.fixture
def make_settings():
    def factory(**overrides):
        return Settings(identity_secret="test-secret", **overrides)
    return factory

@pytest.fixture
def auth_headers():
    def factory(uid, **profile):
        token = create_identity_token({"sub": uid, **profile})
        return {"Authorization": f"Bearer {token}"}
    return factory

def wait_for(predicate, timeout=2.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()

@pytest.fixture
def wait_until():
    return wait_for
