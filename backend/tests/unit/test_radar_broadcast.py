import asyncio

import pytest

from liveradar.domain.radar.broadcast import ListenerSet


def test_notify_reaches_every_listener_in_order():
	listeners = ListenerSet("test")
	seen = []
	listeners.add(lambda value: seen.append(("a", value)))
	listeners.add(lambda value: seen.append(("b", value)))

	listeners.notify(1)

	assert seen == [("a", 1), ("b", 1)]


def test_unsubscribe_is_idempotent_and_fires_on_empty_once():
	emptied = []
	listeners = ListenerSet("test", on_empty=lambda: emptied.append(True))
	unsubscribe = listeners.add(lambda value: None)

	unsubscribe()
	unsubscribe()

	assert len(listeners) == 0
	assert emptied == [True]


def test_failing_listener_does_not_block_others():
	listeners = ListenerSet("test")
	seen = []

	def broken(value):
		raise RuntimeError("boom")

	listeners.add(broken)
	listeners.add(seen.append)

	listeners.notify("update")

	assert seen == ["update"]


@pytest.mark.asyncio
async def test_coroutine_listeners_are_scheduled():
	listeners = ListenerSet("test")
	seen = []

	async def listener(value):
		seen.append(value)

	async def broken(value):
		raise RuntimeError("boom")

	listeners.add(broken)
	listeners.add(listener)
	listeners.notify("update")
	await asyncio.sleep(0)
	await asyncio.sleep(0)

	assert seen == ["update"]


def test_clear_without_listeners_does_not_fire_on_empty():
	emptied = []
	listeners = ListenerSet("test", on_empty=lambda: emptied.append(True))

	listeners.clear()

	assert emptied == []
