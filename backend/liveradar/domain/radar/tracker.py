"""Live radar tracker: position acquisition lifecycle, sync cadence and subscriptions.

The tracker runs on a single asyncio loop. Every callback (position, error,
timer, store change) builds a complete new ``TrackerState`` before any
listener is notified, so subscribers never observe a half-applied update.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import AbstractSet, Any, Callable, List, Optional

from liveradar.domain.radar import geodesy
from liveradar.domain.radar.broadcast import ListenerSet, Unsubscribe
from liveradar.domain.radar.discovery import NearbyDiscovery
from liveradar.domain.radar.models import (
	AccessTier,
	CadenceMode,
	LiveLocation,
	PrivilegedMode,
	RadiusConfiguration,
	TrackerState,
)
from liveradar.domain.radar.position_source import PositionError, PositionSource, WatchOptions, classify_error
from liveradar.domain.radar.profiles import ProfileLookup, get_profile
from liveradar.domain.radar.schemas import RadarUser
from liveradar.domain.radar.store import LocationStore, StoreSubscription
from liveradar.domain.radar.sync import LocationSync
from liveradar.obs import metrics as obs_metrics
from liveradar.settings import settings as default_settings

logger = logging.getLogger(__name__)

StateListener = Callable[[TrackerState], Any]
NearbyListener = Callable[[List[RadarUser]], Any]


class LiveRadarTracker:
	def __init__(
		self,
		user_id: str,
		*,
		source: PositionSource,
		store: LocationStore,
		profiles: ProfileLookup,
		access_tier: AccessTier = AccessTier.STANDARD,
		config: Optional[RadiusConfiguration] = None,
		settings: Any = None,
		clock: Callable[[], float] = time.monotonic,
	) -> None:
		self._settings = settings or default_settings
		self._user_id = user_id
		self._source = source
		self._store = store
		self._profiles = profiles
		self._config = config or RadiusConfiguration.from_settings(self._settings)
		self._clock = clock
		self._sync = LocationSync(store, user_id, ttl_seconds=int(self._settings.radar_location_ttl_seconds))
		self._discovery = NearbyDiscovery(
			store,
			profiles,
			config=self._config,
			privileged_roles=self._settings.radar_privileged_roles,
			timeout_seconds=float(self._settings.radar_query_timeout_seconds),
			active_window=timedelta(seconds=int(self._settings.radar_active_window_seconds)),
		)
		self.max_results = int(self._settings.radar_max_results)

		self._backgrounded = False
		self._state = TrackerState(
			access_tier=access_tier,
			cadence=self._cadence_for(access_tier),
			privileged=PrivilegedMode(global_reach=access_tier is AccessTier.PRIVILEGED),
		)
		self._state_listeners: ListenerSet[TrackerState] = ListenerSet("radar state")
		self._nearby_listeners: ListenerSet[List[RadarUser]] = ListenerSet("radar nearby", on_empty=self._detach_feed)

		self._cancel_watch: Optional[Callable[[], None]] = None
		self._sync_task: Optional[asyncio.Task] = None
		self._feed: Optional[StoreSubscription] = None
		self._last_accepted: Optional[LiveLocation] = None
		self._last_accepted_at: Optional[float] = None

		self._query_seq = 0
		self._query_task: Optional[asyncio.Task] = None
		self._refresh_pending = False
		self._nearby: List[RadarUser] = []

	# ------------------------------------------------------------------ accessors

	@property
	def user_id(self) -> str:
		return self._user_id

	@property
	def state(self) -> TrackerState:
		return self._state

	@property
	def nearby(self) -> List[RadarUser]:
		"""Result of the most recent delivered discovery query."""
		return list(self._nearby)

	@property
	def sync(self) -> LocationSync:
		return self._sync

	def get_search_radius(self) -> float:
		return self._config.radius_for(self._state.access_tier, global_reach=self._state.privileged.global_reach)

	def cadence_interval(self) -> float:
		cadence = self._state.cadence
		if cadence is CadenceMode.HIGH:
			return float(self._settings.radar_interval_high_seconds)
		if cadence is CadenceMode.LOW:
			return float(self._settings.radar_interval_low_seconds)
		return float(self._settings.radar_interval_balanced_seconds)

	# ------------------------------------------------------------------ lifecycle

	async def initialize(self) -> TrackerState:
		"""Resolve the access tier from the viewer's own profile."""
		profile = await get_profile(self._profiles, self._user_id)
		tier = profile.access_tier(self._settings.radar_privileged_roles) if profile else AccessTier.STANDARD
		self._apply_tier(tier)
		return self._state

	def start(self) -> None:
		if self._state.is_tracking:
			logger.debug("radar already tracking user=%s", self._user_id)
			return
		if not self._source.is_available():
			logger.warning("radar position source unavailable user=%s", self._user_id)
			return
		options = WatchOptions(
			high_accuracy=True,
			timeout_seconds=float(self._settings.radar_acquisition_timeout_seconds),
			maximum_age_seconds=0.0,
		)
		self._state = replace(self._state, is_tracking=True, error=None)
		self._cancel_watch = self._source.watch(self._handle_position, self._handle_error, options)
		self._arm_sync_timer()
		if self._nearby_listeners:
			self._attach_feed()
			self._request_refresh()
		obs_metrics.RADAR_TRACKERS_ACTIVE.inc()
		logger.info("radar tracking started user=%s tier=%s", self._user_id, self._state.access_tier.value)
		self._state_listeners.notify(self._state)

	def stop(self) -> None:
		was_tracking = self._state.is_tracking
		if self._cancel_watch is not None:
			cancel, self._cancel_watch = self._cancel_watch, None
			cancel()
		if self._sync_task is not None:
			self._sync_task.cancel()
			self._sync_task = None
		self._detach_feed()
		# Results of queries already in flight are dropped when they land.
		self._query_seq += 1
		self._refresh_pending = False
		self._state = replace(self._state, is_tracking=False)
		if was_tracking:
			obs_metrics.RADAR_TRACKERS_ACTIVE.dec()
			logger.info("radar tracking stopped user=%s", self._user_id)
		self._state_listeners.notify(self._state)

	async def close(self) -> None:
		"""Stop, drop all listeners and wait for outstanding writes."""
		self.stop()
		self._state_listeners.clear()
		self._nearby_listeners.clear()
		query = self._query_task
		if query is not None and not query.done():
			await asyncio.wait([query])
		await self._sync.drain()

	async def current_position(self) -> LiveLocation:
		"""One-shot high accuracy reading; failures land on ``state.error`` and are re-raised."""
		options = WatchOptions(
			high_accuracy=True,
			timeout_seconds=float(self._settings.radar_acquisition_timeout_seconds),
			maximum_age_seconds=0.0,
		)
		try:
			return await self._source.current_position(options)
		except Exception as exc:
			error = classify_error(exc)
			self._record_error(error)
			if error is exc:
				raise
			raise error from exc

	# ------------------------------------------------------------------ modes

	def set_invisible(self, enabled: bool) -> bool:
		"""Hide the user from everyone else's radar; only privileged users may do so."""
		if self._state.access_tier is not AccessTier.PRIVILEGED:
			logger.warning("radar invisibility refused for non-privileged user=%s", self._user_id)
			return False
		if self._state.privileged.invisible == enabled:
			return True
		self._state = replace(self._state, privileged=replace(self._state.privileged, invisible=enabled))
		if enabled:
			self._sync.mark_invisible()
		elif self._state.is_tracking and self._state.current_location is not None:
			self._sync.sync(self._state.current_location)
		logger.info("radar invisibility=%s user=%s", enabled, self._user_id)
		self._state_listeners.notify(self._state)
		return True

	def set_backgrounded(self, backgrounded: bool) -> None:
		if self._backgrounded == backgrounded:
			return
		self._backgrounded = backgrounded
		self._state = replace(self._state, cadence=self._cadence_for(self._state.access_tier))
		if self._state.is_tracking:
			self._arm_sync_timer()
		self._state_listeners.notify(self._state)

	# ------------------------------------------------------------------ subscriptions

	def subscribe_state(self, listener: StateListener) -> Unsubscribe:
		unsubscribe = self._state_listeners.add(listener)
		self._state_listeners.deliver(listener, self._state)
		return unsubscribe

	def subscribe_nearby(self, listener: NearbyListener) -> Unsubscribe:
		unsubscribe = self._nearby_listeners.add(listener)
		if not self._state.is_tracking:
			self._nearby_listeners.deliver(listener, [])
			return unsubscribe
		self._attach_feed()
		self._request_refresh()
		return unsubscribe

	def refresh_nearby(self) -> None:
		"""Force a discovery pass for the current subscribers."""
		self._request_refresh()

	# ------------------------------------------------------------------ callbacks

	def _handle_position(self, location: LiveLocation) -> None:
		if not self._state.is_tracking:
			return
		now = self._clock()
		if self._last_accepted is not None and self._last_accepted_at is not None:
			moved = geodesy.distance(
				self._last_accepted.latitude,
				self._last_accepted.longitude,
				location.latitude,
				location.longitude,
			)
			elapsed = now - self._last_accepted_at
			if moved < float(self._settings.radar_movement_threshold_m) and elapsed < self.cadence_interval():
				obs_metrics.position_handled("suppressed")
				return

		self._last_accepted = location
		self._last_accepted_at = now
		self._state = replace(
			self._state,
			current_location=location,
			last_update=datetime.now(timezone.utc),
			error=None,
		)
		if not self._state.privileged.invisible:
			self._sync.sync(location)
		obs_metrics.position_handled("accepted")
		logger.debug("radar position accepted user=%s accuracy=%.0f", self._user_id, location.accuracy)
		self._state_listeners.notify(self._state)
		self._request_refresh()

	def _handle_error(self, error: BaseException) -> None:
		if not self._state.is_tracking:
			return
		self._record_error(classify_error(error))

	def _record_error(self, error: PositionError) -> None:
		obs_metrics.acquisition_error(error.code.name.lower())
		logger.warning("radar acquisition error user=%s code=%s", self._user_id, error.code.name)
		self._state = replace(self._state, error=error.user_message)
		self._state_listeners.notify(self._state)

	def _on_store_change(self, changed: AbstractSet[str]) -> None:
		# Our own writes already refreshed when the position was accepted.
		if changed and changed <= {self._user_id}:
			return
		self._request_refresh()

	# ------------------------------------------------------------------ internals

	def _cadence_for(self, tier: AccessTier) -> CadenceMode:
		if self._backgrounded:
			return CadenceMode.LOW
		if tier in (AccessTier.PREMIUM, AccessTier.PRIVILEGED):
			return CadenceMode.HIGH
		return CadenceMode.BALANCED

	def _apply_tier(self, tier: AccessTier) -> None:
		privileged = tier is AccessTier.PRIVILEGED
		self._state = replace(
			self._state,
			access_tier=tier,
			cadence=self._cadence_for(tier),
			privileged=PrivilegedMode(
				invisible=self._state.privileged.invisible and privileged,
				global_reach=privileged,
			),
		)
		if self._state.is_tracking:
			self._arm_sync_timer()
		self._state_listeners.notify(self._state)

	def _arm_sync_timer(self) -> None:
		if self._sync_task is not None:
			self._sync_task.cancel()
		self._sync_task = asyncio.get_running_loop().create_task(
			self._sync_loop(self.cadence_interval()), name=f"radar-sync-timer:{self._user_id}"
		)

	async def _sync_loop(self, interval: float) -> None:
		while True:
			await asyncio.sleep(interval)
			state = self._state
			if not state.is_tracking:
				return
			if state.current_location is not None and not state.privileged.invisible:
				self._sync.sync(state.current_location)

	def _attach_feed(self) -> None:
		if self._feed is None:
			self._feed = self._store.subscribe_changes(self._on_store_change)

	def _detach_feed(self) -> None:
		if self._feed is not None:
			feed, self._feed = self._feed, None
			feed.close()

	def _request_refresh(self) -> None:
		if not self._state.is_tracking or not self._nearby_listeners:
			return
		if self._query_task is not None and not self._query_task.done():
			# One query at a time; the trailing run picks up the newest position.
			self._refresh_pending = True
			return
		self._start_query()

	def _start_query(self) -> None:
		self._refresh_pending = False
		self._query_seq += 1
		self._query_task = asyncio.get_running_loop().create_task(
			self._run_query(self._query_seq, self._state.current_location, self.get_search_radius()),
			name=f"radar-nearby:{self._user_id}",
		)

	async def _run_query(self, seq: int, origin: Optional[LiveLocation], radius_m: float) -> None:
		users = await self._discovery.query(self._user_id, origin, radius_m, max_results=self.max_results)
		if seq == self._query_seq and self._state.is_tracking:
			self._nearby = users
			self._nearby_listeners.notify(users)
		else:
			obs_metrics.discovery_query("discarded")
		if self._refresh_pending and self._state.is_tracking and self._nearby_listeners:
			self._start_query()


__all__ = ["LiveRadarTracker"]
