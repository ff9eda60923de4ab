import sys
from pathlib import Path

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from fakeredis.aioredis import FakeRedis

# Ensure the package is importable when tests run from the repo root without an install
REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
	sys.path.insert(0, str(REPO_ROOT))

from fitcircle.infra import postgres
from fitcircle.main import app
from fitcircle.settings import settings


@pytest_asyncio.fixture(autouse=True)
async def fake_redis():
	from fitcircle.infra.redis import redis_client, set_redis_client
	original = redis_client.client
	client = FakeRedis(decode_responses=True)
	set_redis_client(client)
	try:
		yield client
	finally:
		set_redis_client(original)
		await client.flushall()


@pytest.fixture(autouse=True)
def patch_postgres(monkeypatch):
	async def _noop():
		return None

	monkeypatch.setattr(postgres, "init_pool", _noop)
	monkeypatch.setattr(postgres, "close_pool", _noop)


@pytest.fixture(autouse=True)
def force_test_settings():
	"""Pin throttle and lock settings so tests do not depend on the local .env."""
	original = (settings.environment, settings.ranking_throttle_seconds, settings.ranking_lock_ttl_seconds)
	settings.environment = "dev"
	settings.ranking_throttle_seconds = 60
	settings.ranking_lock_ttl_seconds = 120
	try:
		yield
	finally:
		settings.environment, settings.ranking_throttle_seconds, settings.ranking_lock_ttl_seconds = original


@pytest_asyncio.fixture
async def api_client():
	transport = ASGITransport(app=app)
	async with AsyncClient(transport=transport, base_url="http://testserver") as client:
		yield client
