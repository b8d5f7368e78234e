import asyncio
import sys
from pathlib import Path
from typing import Dict, List, Optional

import pytest
import pytest_asyncio
from fakeredis.aioredis import FakeRedis
from httpx import ASGITransport, AsyncClient

# Ensure backend package is importable when tests run from repo root
BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
	sys.path.insert(0, str(BACKEND_ROOT))

from liveradar.domain.radar.models import LiveLocation, LocationRecord, ProfileSummary
from liveradar.domain.radar.position_source import PositionError, PositionErrorCode, WatchOptions
from liveradar.infra import postgres
from liveradar.settings import settings


@pytest_asyncio.fixture(autouse=True)
async def fake_redis():
	from liveradar.infra.redis import redis_client, set_redis_client
	original = redis_client._client
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
	"""Dev mode accepts the synthetic `uid:...;sid:...` socket tokens."""
	original_env = settings.environment
	settings.environment = "dev"
	try:
		yield
	finally:
		settings.environment = original_env


class FakeClock:
	def __init__(self, start: float = 1_000.0) -> None:
		self.now = start

	def __call__(self) -> float:
		return self.now

	def advance(self, seconds: float) -> None:
		self.now += seconds


class FakePositionSource:
	"""Records watches and lets tests drive position callbacks by hand."""

	def __init__(self, available: bool = True) -> None:
		self.available = available
		self.watch_calls = 0
		self.options: Optional[WatchOptions] = None
		self._on_position = None
		self._on_error = None
		self.next_position: Optional[LiveLocation] = None

	@property
	def watching(self) -> bool:
		return self._on_position is not None

	def is_available(self) -> bool:
		return self.available

	def watch(self, on_position, on_error, options):
		self.watch_calls += 1
		self.options = options
		self._on_position = on_position
		self._on_error = on_error

		def cancel() -> None:
			self._on_position = None
			self._on_error = None

		return cancel

	async def current_position(self, options):
		if self.next_position is None:
			raise PositionError(PositionErrorCode.TIMEOUT)
		return self.next_position

	def emit(self, latitude: float, longitude: float, accuracy: float = 5.0) -> None:
		if self._on_position is not None:
			self._on_position(LiveLocation(latitude=latitude, longitude=longitude, accuracy=accuracy))

	def fail(self, code: PositionErrorCode) -> None:
		if self._on_error is not None:
			self._on_error(PositionError(code))


class FakeFeed:
	def __init__(self, on_change) -> None:
		self.on_change = on_change
		self.closed = False

	def close(self) -> None:
		self.closed = True


class RecordingStore:
	"""In-memory location store that records writes and can hold queries open."""

	def __init__(self) -> None:
		self.writes: List[tuple] = []
		self.records: List[LocationRecord] = []
		self.feeds: List[FakeFeed] = []
		self.gate: Optional[asyncio.Event] = None
		self.queries = 0
		self.fail_writes = False

	async def upsert(self, user_id, location, *, ttl_seconds):
		if self.fail_writes:
			raise ConnectionError("store offline")
		self.writes.append(("upsert", user_id, location))

	async def mark_invisible(self, user_id, *, ttl_seconds):
		if self.fail_writes:
			raise ConnectionError("store offline")
		self.writes.append(("invisible", user_id, None))

	async def query_box(self, box, *, limit=1000):
		self.queries += 1
		if self.gate is not None:
			await self.gate.wait()
		return [record for record in self.records if box.contains(record.latitude, record.longitude)]

	def subscribe_changes(self, on_change):
		feed = FakeFeed(on_change)
		self.feeds.append(feed)
		return feed

	def announce(self, *user_ids: str) -> None:
		changed = frozenset(user_ids or ("someone-else",))
		for feed in self.feeds:
			if not feed.closed:
				feed.on_change(changed)


class StaticProfiles:
	def __init__(self, profiles: Optional[Dict[str, ProfileSummary]] = None) -> None:
		self.profiles = dict(profiles or {})

	def add(self, user_id: str, **fields) -> ProfileSummary:
		profile = ProfileSummary(user_id=user_id, handle=fields.pop("handle", user_id), **fields)
		self.profiles[user_id] = profile
		return profile

	async def get_profiles(self, user_ids):
		return {uid: self.profiles[uid] for uid in user_ids if uid in self.profiles}


@pytest.fixture
def clock():
	return FakeClock()


@pytest.fixture
def position_source():
	return FakePositionSource()


@pytest.fixture
def recording_store():
	return RecordingStore()


@pytest.fixture
def profiles():
	return StaticProfiles()


@pytest.fixture
def radar_settings():
	"""Settings copy with the stock radar constants, isolated per test."""
	return settings.model_copy(
		update={
			"radar_interval_high_seconds": 5.0,
			"radar_interval_balanced_seconds": 10.0,
			"radar_interval_low_seconds": 30.0,
			"radar_movement_threshold_m": 5.0,
			"radar_query_timeout_seconds": 1.0,
		}
	)


@pytest_asyncio.fixture
async def api_client():
	from liveradar.main import app

	transport = ASGITransport(app=app)
	async with AsyncClient(transport=transport, base_url="http://testserver") as client:
		yield client
