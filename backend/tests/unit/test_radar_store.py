import asyncio

import pytest

from liveradar.domain.radar import geodesy
from liveradar.domain.radar.models import LiveLocation
from liveradar.domain.radar.store import GEO_KEY, RedisChangeFeed, RedisLocationStore, parse_record, sweep_geo_index


@pytest.mark.asyncio
async def test_upsert_writes_hash_ttl_and_geo_member(fake_redis):
	store = RedisLocationStore()

	await store.upsert(
		"user-1",
		LiveLocation(latitude=52.52, longitude=13.405, accuracy=8.0, heading=90.0),
		ttl_seconds=900,
	)

	raw = await fake_redis.hgetall("radar:loc:user-1")
	assert raw["lat"] == "52.52"
	assert raw["lon"] == "13.405"
	assert raw["accuracy"] == "8.0"
	assert raw["heading"] == "90.0"
	assert raw["visible"] == "1"
	assert int(raw["expires_at"]) - int(raw["updated_at"]) == 900_000
	assert 0 < await fake_redis.ttl("radar:loc:user-1") <= 900
	position = await fake_redis.geopos(GEO_KEY, "user-1")
	assert position[0][0] == pytest.approx(13.405, abs=1e-4)
	assert position[0][1] == pytest.approx(52.52, abs=1e-4)


@pytest.mark.asyncio
async def test_upsert_replaces_previous_fields(fake_redis):
	store = RedisLocationStore()
	await store.upsert("user-1", LiveLocation(latitude=1.0, longitude=2.0, accuracy=5.0, speed=3.0), ttl_seconds=60)

	await store.upsert("user-1", LiveLocation(latitude=1.5, longitude=2.5, accuracy=5.0), ttl_seconds=60)

	raw = await fake_redis.hgetall("radar:loc:user-1")
	assert raw["lat"] == "1.5"
	assert "speed" not in raw


@pytest.mark.asyncio
async def test_mark_invisible_retracts_from_geo_index(fake_redis):
	store = RedisLocationStore()
	await store.upsert("user-1", LiveLocation(latitude=52.52, longitude=13.405, accuracy=5.0), ttl_seconds=900)

	await store.mark_invisible("user-1", ttl_seconds=900)

	raw = await fake_redis.hgetall("radar:loc:user-1")
	assert raw["visible"] == "0"
	assert raw["active"] == "0"
	assert await fake_redis.geopos(GEO_KEY, "user-1") == [None]
	assert parse_record("user-1", raw).visible is False


@pytest.mark.asyncio
async def test_mark_invisible_without_position_leaves_marker_only(fake_redis):
	store = RedisLocationStore()

	await store.mark_invisible("ghost", ttl_seconds=900)

	raw = await fake_redis.hgetall("radar:loc:ghost")
	assert raw["visible"] == "0"
	assert parse_record("ghost", raw) is None


@pytest.mark.asyncio
async def test_query_box_filters_to_the_rectangle(fake_redis):
	store = RedisLocationStore()
	await store.upsert("inside", LiveLocation(latitude=52.521, longitude=13.406, accuracy=5.0), ttl_seconds=900)
	await store.upsert("outside", LiveLocation(latitude=52.60, longitude=13.405, accuracy=5.0), ttl_seconds=900)
	# Geo member whose hash has expired.
	await fake_redis.geoadd(GEO_KEY, [13.405, 52.5201, "expired"])

	records = await store.query_box(geodesy.bounding_box(52.52, 13.405, 1_000))

	assert [record.user_id for record in records] == ["inside"]
	assert records[0].latitude == pytest.approx(52.521)
	assert records[0].visible is True
	assert await fake_redis.zscore(GEO_KEY, "expired") is None


async def _add_expired_members(fake_redis, count):
	flat = []
	for index in range(count):
		flat.extend([13.405, 52.52 + index * 1e-6, f"gone-{index}"])
	await fake_redis.geoadd(GEO_KEY, flat)


@pytest.mark.asyncio
async def test_query_box_sees_past_expired_members_filling_the_limit(fake_redis):
	store = RedisLocationStore()
	await _add_expired_members(fake_redis, 1000)
	await store.upsert("alive", LiveLocation(latitude=52.52 + 1_100 / 111_195, longitude=13.405, accuracy=5.0), ttl_seconds=900)

	records = await store.query_box(geodesy.bounding_box(52.52, 13.405, 5_000))

	assert [record.user_id for record in records] == ["alive"]
	assert await fake_redis.zcard(GEO_KEY) == 1


@pytest.mark.asyncio
async def test_sweep_trims_members_without_location(fake_redis):
	store = RedisLocationStore()
	await store.upsert("alive", LiveLocation(latitude=52.52, longitude=13.405, accuracy=5.0), ttl_seconds=900)
	await _add_expired_members(fake_redis, 12)

	trimmed = await sweep_geo_index(fake_redis, batch_size=5)

	assert trimmed == 12
	assert await fake_redis.zrange(GEO_KEY, 0, -1) == ["alive"]
	assert await sweep_geo_index(fake_redis) == 0


def test_parse_record_rejects_garbage():
	assert parse_record("user-1", {}) is None
	assert parse_record("user-1", {"lat": "north", "lon": "1.0"}) is None


@pytest.mark.asyncio
async def test_change_feed_reports_published_changes(fake_redis):
	store = RedisLocationStore()
	calls = []
	feed = RedisChangeFeed(calls.append, poll_timeout=0.05)
	await asyncio.wait_for(feed.wait_ready(), timeout=1)

	await store.upsert("user-1", LiveLocation(latitude=1.0, longitude=1.0, accuracy=5.0), ttl_seconds=60)
	await store.upsert("user-2", LiveLocation(latitude=1.0, longitude=1.0, accuracy=5.0), ttl_seconds=60)
	for _ in range(40):
		if set().union(*calls) == {"user-1", "user-2"}:
			break
		await asyncio.sleep(0.025)

	assert set().union(*calls) == {"user-1", "user-2"}
	assert 1 <= len(calls) <= 2
	feed.close()
	assert feed.closed is True
