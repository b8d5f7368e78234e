"""Location store contract and its Redis implementation.

Each published position lives in a hash ``radar:loc:{user_id}`` that expires
unless refreshed, plus a member in the ``radar:geo`` index used for range
queries. Every write is announced on the ``radar:changes`` channel so that
subscribed trackers can re-run discovery.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import suppress
from datetime import datetime, timezone
from typing import AbstractSet, Callable, Dict, List, Optional, Protocol

from liveradar.domain.radar.geodesy import BoundingBox
from liveradar.domain.radar.models import LiveLocation, LocationRecord
from liveradar.infra.redis import redis_client
from liveradar.obs import metrics as obs_metrics

logger = logging.getLogger(__name__)

GEO_KEY = "radar:geo"
CHANGES_CHANNEL = "radar:changes"
# Redis rejects GEO coordinates beyond the Web Mercator latitude limit.
GEO_MAX_LATITUDE = 85.05112878
DEFAULT_CANDIDATE_LIMIT = 1000
SWEEP_BATCH_SIZE = 500
# Candidate searches re-run after trimming dead members that filled the limit.
_MAX_SEARCH_ROUNDS = 4

# Receives the ids announced in one batch of changes.
ChangeCallback = Callable[[AbstractSet[str]], None]


def _location_key(user_id: str) -> str:
	return f"radar:loc:{user_id}"


def _to_ms(value: datetime) -> int:
	return int(value.timestamp() * 1000)


def _from_ms(raw: Optional[str]) -> Optional[datetime]:
	if raw in (None, ""):
		return None
	return datetime.fromtimestamp(int(raw) / 1000, tz=timezone.utc)


class StoreSubscription(Protocol):
	def close(self) -> None: ...


class LocationStore(Protocol):
	async def upsert(self, user_id: str, location: LiveLocation, *, ttl_seconds: int) -> None: ...

	async def mark_invisible(self, user_id: str, *, ttl_seconds: int) -> None: ...

	async def query_box(self, box: BoundingBox, *, limit: int = DEFAULT_CANDIDATE_LIMIT) -> List[LocationRecord]: ...

	def subscribe_changes(self, on_change: ChangeCallback) -> StoreSubscription: ...


def parse_record(user_id: str, raw: Dict[str, str]) -> Optional[LocationRecord]:
	"""Build a record from a location hash; returns None for markers without a position."""
	if not raw or "lat" not in raw or "lon" not in raw:
		return None
	try:
		return LocationRecord(
			user_id=user_id,
			latitude=float(raw["lat"]),
			longitude=float(raw["lon"]),
			accuracy=float(raw.get("accuracy") or 0.0),
			updated_at=_from_ms(raw.get("updated_at")) or datetime.fromtimestamp(0, tz=timezone.utc),
			expires_at=_from_ms(raw.get("expires_at")),
			visible=raw.get("visible") == "1",
			active=raw.get("active") == "1",
		)
	except (TypeError, ValueError):
		logger.debug("unparseable location record user=%s", user_id, exc_info=True)
		return None


class RedisChangeFeed:
	"""Pub/sub listener that reports each batch of store changes once."""

	def __init__(self, on_change: ChangeCallback, *, channel: str = CHANGES_CHANNEL, poll_timeout: float = 1.0) -> None:
		self._on_change = on_change
		self._channel = channel
		self._poll_timeout = poll_timeout
		self._ready = asyncio.Event()
		self._task: Optional[asyncio.Task] = asyncio.get_running_loop().create_task(
			self._run(), name=f"radar-change-feed:{channel}"
		)

	async def wait_ready(self) -> None:
		await self._ready.wait()

	def close(self) -> None:
		task, self._task = self._task, None
		if task is not None and not task.done():
			task.cancel()

	@property
	def closed(self) -> bool:
		return self._task is None

	async def _run(self) -> None:
		while True:
			pubsub = redis_client.pubsub()
			try:
				await pubsub.subscribe(self._channel)
				self._ready.set()
				while True:
					message = await pubsub.get_message(ignore_subscribe_messages=True, timeout=self._poll_timeout)
					if message is None:
						continue
					changed = {str(message.get("data"))}
					# Fold everything already queued into the same batch.
					while True:
						queued = await pubsub.get_message(ignore_subscribe_messages=True, timeout=0.0)
						if queued is None:
							break
						changed.add(str(queued.get("data")))
					try:
						self._on_change(frozenset(changed))
					except Exception:
						logger.exception("radar change callback failed")
			except asyncio.CancelledError:
				raise
			except Exception:
				logger.warning("radar change feed failed; resubscribing", exc_info=True)
				await asyncio.sleep(self._poll_timeout)
			finally:
				with suppress(Exception):
					await pubsub.unsubscribe(self._channel)
				with suppress(Exception):
					await pubsub.aclose()


class RedisLocationStore:
	def __init__(self, *, channel: str = CHANGES_CHANNEL) -> None:
		self._channel = channel

	async def upsert(self, user_id: str, location: LiveLocation, *, ttl_seconds: int) -> None:
		now = datetime.now(timezone.utc)
		mapping: Dict[str, str] = {
			"lat": repr(float(location.latitude)),
			"lon": repr(float(location.longitude)),
			"accuracy": repr(float(location.accuracy)),
			"captured_at": str(_to_ms(location.timestamp)),
			"updated_at": str(_to_ms(now)),
			"expires_at": str(_to_ms(now) + ttl_seconds * 1000),
			"visible": "1",
			"active": "1",
		}
		for name in ("altitude", "heading", "speed"):
			value = getattr(location, name)
			if value is not None:
				mapping[name] = repr(float(value))
		key = _location_key(user_id)
		async with redis_client.pipeline(transaction=True) as pipe:
			pipe.delete(key)
			pipe.hset(key, mapping=mapping)
			pipe.expire(key, ttl_seconds)
			await pipe.execute()
		await redis_client.geoadd(GEO_KEY, {user_id: (float(location.longitude), float(location.latitude))})
		await redis_client.publish(self._channel, user_id)

	async def mark_invisible(self, user_id: str, *, ttl_seconds: int) -> None:
		now_ms = _to_ms(datetime.now(timezone.utc))
		key = _location_key(user_id)
		async with redis_client.pipeline(transaction=True) as pipe:
			pipe.hset(key, mapping={"visible": "0", "active": "0", "updated_at": str(now_ms)})
			pipe.expire(key, ttl_seconds)
			pipe.zrem(GEO_KEY, user_id)
			await pipe.execute()
		await redis_client.publish(self._channel, user_id)

	async def query_box(self, box: BoundingBox, *, limit: int = DEFAULT_CANDIDATE_LIMIT) -> List[LocationRecord]:
		center_lat = max(-GEO_MAX_LATITUDE, min(GEO_MAX_LATITUDE, box.center_lat))
		records: List[LocationRecord] = []
		for _ in range(_MAX_SEARCH_ROUNDS):
			members = await redis_client.geosearch(
				GEO_KEY,
				longitude=box.center_lon,
				latitude=center_lat,
				radius=box.circumscribed_radius_m(),
				unit="m",
				sort="ASC",
				count=limit,
			)
			if not members:
				return []
			member_ids = [str(member) for member in members]
			async with redis_client.pipeline(transaction=False) as pipe:
				for member_id in member_ids:
					pipe.hgetall(_location_key(member_id))
				rows = await pipe.execute()
			records = []
			expired: List[str] = []
			for member_id, raw in zip(member_ids, rows):
				if not raw:
					# Hash expired through its TTL; the geo member outlived it.
					expired.append(member_id)
					continue
				record = parse_record(member_id, raw)
				if record is None:
					continue
				if not box.contains(record.latitude, record.longitude):
					continue
				records.append(record)
			if not expired:
				break
			await redis_client.zrem(GEO_KEY, *expired)
			obs_metrics.geo_index_trimmed("query", len(expired))
			logger.debug("trimmed %s expired members from %s during query", len(expired), GEO_KEY)
			if len(member_ids) < limit:
				break
		return records

	def subscribe_changes(self, on_change: ChangeCallback) -> RedisChangeFeed:
		return RedisChangeFeed(on_change, channel=self._channel)


async def run_geo_sweeper(client=redis_client, interval_s: float = 60.0) -> None:
	"""Periodically drops ``radar:geo`` members whose location hash has expired."""
	interval = max(1.0, float(interval_s))
	while True:
		await asyncio.sleep(interval)
		try:
			trimmed = await sweep_geo_index(client)
		except asyncio.CancelledError:
			raise
		except Exception:
			logger.warning("radar geo sweeper iteration failed", exc_info=True)
			continue
		if trimmed:
			logger.info("radar geo sweeper removed %s stale members", trimmed)


async def sweep_geo_index(client=redis_client, *, batch_size: int = SWEEP_BATCH_SIZE) -> int:
	trimmed_total = 0
	batch: List[str] = []
	async for member, _score in client.zscan_iter(GEO_KEY, count=batch_size):
		batch.append(str(member))
		if len(batch) >= batch_size:
			trimmed_total += await _trim_expired(client, batch)
			batch = []
	if batch:
		trimmed_total += await _trim_expired(client, batch)
	return trimmed_total


async def _trim_expired(client, member_ids: List[str]) -> int:
	async with client.pipeline(transaction=False) as pipe:
		for member_id in member_ids:
			pipe.exists(_location_key(member_id))
		found = await pipe.execute()
	missing = [member_id for member_id, exists in zip(member_ids, found) if not exists]
	if missing:
		await client.zrem(GEO_KEY, *missing)
		obs_metrics.geo_index_trimmed("sweeper", len(missing))
	return len(missing)


__all__ = [
	"CHANGES_CHANNEL",
	"GEO_KEY",
	"LocationStore",
	"RedisChangeFeed",
	"RedisLocationStore",
	"StoreSubscription",
	"parse_record",
	"run_geo_sweeper",
	"sweep_geo_index",
]
