import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
import pytest_asyncio
from fakeredis.aioredis import FakeRedis

# Ensure backend package is importable when tests run from repo root
BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
	sys.path.insert(0, str(BACKEND_ROOT))

from postguard.infra.documents import InMemoryDatabase
from postguard.infra.locks import LocalKeyedLock
from postguard.integrity.domain.abuse_tracker import AbuseTracker, TrackerPolicy
from postguard.integrity.domain.image_registry import ImageRegistryService


class FakeClock:
	def __init__(self, start: datetime | None = None) -> None:
		self.now = start or datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)

	def __call__(self) -> datetime:
		return self.now

	def advance(self, **kwargs: float) -> None:
		self.now += timedelta(**kwargs)


@pytest.fixture
def clock() -> FakeClock:
	return FakeClock()


@pytest.fixture
def database(clock: FakeClock) -> InMemoryDatabase:
	return InMemoryDatabase(clock=clock)


@pytest.fixture
def registry(database: InMemoryDatabase) -> ImageRegistryService:
	return ImageRegistryService(database, lock=LocalKeyedLock())


@pytest.fixture
def tracker(database: InMemoryDatabase, clock: FakeClock) -> AbuseTracker:
	return AbuseTracker(database, policy=TrackerPolicy(), lock=LocalKeyedLock(), clock=clock)


@pytest_asyncio.fixture
async def fake_redis():
	from postguard.infra.redis import redis_client, set_redis_client

	original = redis_client.client
	client = FakeRedis(decode_responses=True)
	set_redis_client(client)
	try:
		yield client
	finally:
		set_redis_client(original)
		await client.flushall()
