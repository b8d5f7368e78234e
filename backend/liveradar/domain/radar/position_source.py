"""Position source contract and the push-fed implementation used by the socket layer."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import IntEnum
from typing import Callable, Dict, Optional, Protocol

from liveradar.domain.radar.models import LiveLocation

logger = logging.getLogger(__name__)

PositionCallback = Callable[[LiveLocation], None]
ErrorCallback = Callable[["PositionError"], None]
CancelWatch = Callable[[], None]


class PositionErrorCode(IntEnum):
	"""Codes follow the browser Geolocation API so clients can forward them verbatim."""

	UNKNOWN = 0
	PERMISSION_DENIED = 1
	POSITION_UNAVAILABLE = 2
	TIMEOUT = 3

	@classmethod
	def coerce(cls, raw: object) -> "PositionErrorCode":
		try:
			return cls(int(raw))  # type: ignore[arg-type]
		except (TypeError, ValueError):
			return cls.UNKNOWN


_MESSAGES: Dict[PositionErrorCode, str] = {
	PositionErrorCode.PERMISSION_DENIED: "Location permission denied",
	PositionErrorCode.POSITION_UNAVAILABLE: "Location unavailable",
	PositionErrorCode.TIMEOUT: "Location request timed out",
	PositionErrorCode.UNKNOWN: "Unknown location error",
}


class PositionError(Exception):
	"""Acquisition failure reported by a position source."""

	def __init__(self, code: PositionErrorCode, detail: Optional[str] = None) -> None:
		self.code = code
		self.detail = detail
		super().__init__(detail or _MESSAGES[code])

	@property
	def user_message(self) -> str:
		return _MESSAGES[self.code]


def classify_error(error: BaseException) -> PositionError:
	"""Fold any acquisition failure into one of the four known classes."""
	if isinstance(error, PositionError):
		return error
	if isinstance(error, (asyncio.TimeoutError, TimeoutError)):
		return PositionError(PositionErrorCode.TIMEOUT, str(error) or None)
	if isinstance(error, PermissionError):
		return PositionError(PositionErrorCode.PERMISSION_DENIED, str(error) or None)
	return PositionError(PositionErrorCode.UNKNOWN, str(error) or None)


@dataclass(frozen=True, slots=True)
class WatchOptions:
	high_accuracy: bool = True
	timeout_seconds: float = 15.0
	maximum_age_seconds: float = 0.0


class PositionSource(Protocol):
	def is_available(self) -> bool: ...

	def watch(self, on_position: PositionCallback, on_error: ErrorCallback, options: WatchOptions) -> CancelWatch: ...

	async def current_position(self, options: WatchOptions) -> LiveLocation: ...


class _Watch:
	__slots__ = ("on_position", "on_error", "options", "timer", "cancelled")

	def __init__(self, on_position: PositionCallback, on_error: ErrorCallback, options: WatchOptions) -> None:
		self.on_position = on_position
		self.on_error = on_error
		self.options = options
		self.timer: Optional[asyncio.TimerHandle] = None
		self.cancelled = False


class PushPositionSource:
	"""Position source fed by readings that arrive from the client device.

	Each watch arms an acquisition timer; when no reading arrives within the
	watch timeout a TIMEOUT error is delivered and the timer is re-armed, so the
	watch keeps waiting for the device to recover.
	"""

	def __init__(self) -> None:
		self._watches: list[_Watch] = []
		self._waiters: list[asyncio.Future] = []
		self._available = True
		self._last: Optional[LiveLocation] = None
		self._last_at = 0.0

	def is_available(self) -> bool:
		return self._available

	def close(self) -> None:
		"""Detach the device; pending one-shot requests fail as unavailable."""
		self._available = False
		for watch in list(self._watches):
			self._cancel(watch)
		for waiter in self._waiters:
			if not waiter.done():
				waiter.set_exception(PositionError(PositionErrorCode.POSITION_UNAVAILABLE))
		self._waiters.clear()

	def watch(self, on_position: PositionCallback, on_error: ErrorCallback, options: WatchOptions) -> CancelWatch:
		watch = _Watch(on_position, on_error, options)
		self._watches.append(watch)
		self._arm(watch)

		def cancel() -> None:
			self._cancel(watch)

		return cancel

	async def current_position(self, options: WatchOptions) -> LiveLocation:
		if not self._available:
			raise PositionError(PositionErrorCode.POSITION_UNAVAILABLE)
		loop = asyncio.get_running_loop()
		if self._last is not None and options.maximum_age_seconds > 0:
			if loop.time() - self._last_at <= options.maximum_age_seconds:
				return self._last
		waiter: asyncio.Future = loop.create_future()
		self._waiters.append(waiter)
		try:
			return await asyncio.wait_for(waiter, timeout=options.timeout_seconds)
		except asyncio.TimeoutError:
			raise PositionError(PositionErrorCode.TIMEOUT) from None
		finally:
			if waiter in self._waiters:
				self._waiters.remove(waiter)

	def push(self, location: LiveLocation) -> None:
		"""Deliver a raw reading to every active watch and pending one-shot request."""
		self._last = location
		self._last_at = asyncio.get_running_loop().time()
		for waiter in self._waiters:
			if not waiter.done():
				waiter.set_result(location)
		self._waiters.clear()
		for watch in list(self._watches):
			if watch.cancelled:
				continue
			self._arm(watch)
			watch.on_position(location)

	def fail(self, code: PositionErrorCode, detail: Optional[str] = None) -> None:
		"""Deliver an acquisition failure reported by the device."""
		error = PositionError(code, detail)
		for waiter in self._waiters:
			if not waiter.done():
				waiter.set_exception(error)
		self._waiters.clear()
		for watch in list(self._watches):
			if not watch.cancelled:
				watch.on_error(error)

	def _arm(self, watch: _Watch) -> None:
		if watch.timer is not None:
			watch.timer.cancel()
		if watch.options.timeout_seconds <= 0:
			watch.timer = None
			return
		loop = asyncio.get_running_loop()
		watch.timer = loop.call_later(watch.options.timeout_seconds, self._on_timeout, watch)

	def _on_timeout(self, watch: _Watch) -> None:
		if watch.cancelled:
			return
		logger.debug("position watch timed out after %.1fs", watch.options.timeout_seconds)
		self._arm(watch)
		watch.on_error(PositionError(PositionErrorCode.TIMEOUT))

	def _cancel(self, watch: _Watch) -> None:
		watch.cancelled = True
		if watch.timer is not None:
			watch.timer.cancel()
			watch.timer = None
		if watch in self._watches:
			self._watches.remove(watch)


__all__ = [
	"PositionError",
	"PositionErrorCode",
	"PositionSource",
	"PushPositionSource",
	"WatchOptions",
	"classify_error",
]
