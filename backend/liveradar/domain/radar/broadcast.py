"""Listener sets used to fan tracker updates out to subscribers."""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Callable, Generic, List, Optional, Set, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")
Listener = Callable[[T], Any]
Unsubscribe = Callable[[], None]


class ListenerSet(Generic[T]):
	"""Ordered set of callbacks.

	Listeners may be plain functions or coroutine functions; coroutines are
	scheduled as tasks on the running loop. A failing listener is logged and
	does not stop delivery to the others. ``on_empty`` fires when the last
	listener unsubscribes.
	"""

	def __init__(self, name: str, *, on_empty: Optional[Callable[[], None]] = None) -> None:
		self._name = name
		self._listeners: List[Listener] = []
		self._on_empty = on_empty
		self._tasks: Set[asyncio.Task] = set()

	def __len__(self) -> int:
		return len(self._listeners)

	def __bool__(self) -> bool:
		return bool(self._listeners)

	def add(self, listener: Listener) -> Unsubscribe:
		self._listeners.append(listener)
		removed = False

		def unsubscribe() -> None:
			nonlocal removed
			if removed:
				return
			removed = True
			self.discard(listener)

		return unsubscribe

	def discard(self, listener: Listener) -> None:
		try:
			self._listeners.remove(listener)
		except ValueError:
			return
		if not self._listeners and self._on_empty is not None:
			self._on_empty()

	def clear(self) -> None:
		had_listeners = bool(self._listeners)
		self._listeners.clear()
		if had_listeners and self._on_empty is not None:
			self._on_empty()

	def notify(self, value: T) -> None:
		for listener in list(self._listeners):
			self.deliver(listener, value)

	def deliver(self, listener: Listener, value: T) -> None:
		try:
			result = listener(value)
		except Exception:
			logger.exception("%s listener failed", self._name)
			return
		if inspect.isawaitable(result):
			task = asyncio.ensure_future(result)
			self._tasks.add(task)
			task.add_done_callback(self._finish)

	def _finish(self, task: asyncio.Task) -> None:
		self._tasks.discard(task)
		if task.cancelled():
			return
		exc = task.exception()
		if exc is not None:
			logger.error("%s listener failed", self._name, exc_info=exc)


__all__ = ["ListenerSet", "Unsubscribe"]
