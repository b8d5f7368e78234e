"""Fire-and-forget persistence of the tracker's position."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional, Set

from liveradar.domain.radar.models import LiveLocation
from liveradar.domain.radar.store import LocationStore
from liveradar.obs import metrics as obs_metrics

logger = logging.getLogger(__name__)


class LocationSync:
	"""Publishes a user's position to the location store without blocking callers.

	Writes run as background tasks chained one after another, so a slow write
	never holds up the caller yet an older write can never land after a newer
	one (an invisibility marker is not overwritten by a stale position).
	Failures are logged and counted, never raised.
	"""

	def __init__(self, store: LocationStore, user_id: str, *, ttl_seconds: int) -> None:
		self._store = store
		self._user_id = user_id
		self._ttl_seconds = ttl_seconds
		self._tail: Optional[asyncio.Task] = None
		self._pending: Set[asyncio.Task] = set()

	@property
	def pending(self) -> int:
		return len(self._pending)

	def sync(self, location: LiveLocation) -> asyncio.Task:
		return self._enqueue(
			"position",
			lambda: self._store.upsert(self._user_id, location, ttl_seconds=self._ttl_seconds),
		)

	def mark_invisible(self) -> asyncio.Task:
		return self._enqueue(
			"invisible",
			lambda: self._store.mark_invisible(self._user_id, ttl_seconds=self._ttl_seconds),
		)

	async def drain(self) -> None:
		"""Wait for every write issued so far."""
		while self._pending:
			await asyncio.wait(list(self._pending))

	def _enqueue(self, kind: str, write: Callable[[], Awaitable[None]]) -> asyncio.Task:
		previous = self._tail
		task = asyncio.get_running_loop().create_task(
			self._write(kind, write, previous), name=f"radar-sync:{kind}:{self._user_id}"
		)
		self._tail = task
		self._pending.add(task)
		task.add_done_callback(self._pending.discard)
		return task

	async def _write(self, kind: str, write: Callable[[], Awaitable[None]], previous: Optional[asyncio.Task]) -> None:
		if previous is not None and not previous.done():
			await asyncio.wait([previous])
		obs_metrics.sync_write(kind)
		try:
			await write()
		except Exception:
			obs_metrics.sync_failure(kind)
			logger.warning("radar %s write failed user=%s", kind, self._user_id, exc_info=True)


__all__ = ["LocationSync"]
