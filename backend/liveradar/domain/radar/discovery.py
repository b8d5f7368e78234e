"""Nearby discovery: prefilter by bounding box, recompute exact geometry, rank."""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Sequence, Tuple

from liveradar.domain.radar import geodesy, visibility
from liveradar.domain.radar.models import (
	AccessTier,
	LiveLocation,
	LocationRecord,
	ProfileSummary,
	RadiusConfiguration,
	VisibilityTier,
)
from liveradar.domain.radar.profiles import ProfileLookup
from liveradar.domain.radar.schemas import RadarPosition, RadarUser
from liveradar.domain.radar.store import DEFAULT_CANDIDATE_LIMIT, LocationStore
from liveradar.obs import metrics as obs_metrics

logger = logging.getLogger(__name__)

DEFAULT_ACTIVE_WINDOW = timedelta(minutes=5)

# (record, distance, bearing)
Measured = Tuple[LocationRecord, float, float]


def measure_candidates(
	records: Sequence[LocationRecord],
	*,
	viewer_id: str,
	origin: LiveLocation,
	radius_m: float,
	thresholds: Sequence[float],
	now: datetime,
) -> List[Measured]:
	"""Recompute distance and bearing for every candidate and drop the ineligible ones."""
	measured: List[Measured] = []
	for record in records:
		if record.user_id == viewer_id:
			continue
		if not record.visible or record.is_expired(now):
			continue
		distance = geodesy.distance(origin.latitude, origin.longitude, record.latitude, record.longitude)
		if not distance <= radius_m:
			continue
		if visibility.tier(distance, thresholds) is VisibilityTier.HIDDEN:
			continue
		heading = geodesy.bearing(origin.latitude, origin.longitude, record.latitude, record.longitude)
		measured.append((record, distance, heading))
	return measured


def project(
	record: LocationRecord,
	distance: float,
	heading: float,
	profile: ProfileSummary,
	*,
	radius_m: float,
	thresholds: Sequence[float],
	config: RadiusConfiguration,
	privileged_roles: Sequence[str],
	now: datetime,
	active_window: timedelta = DEFAULT_ACTIVE_WINDOW,
) -> RadarUser:
	x, y = visibility.radar_position(distance, heading, radius_m)
	return RadarUser(
		id=record.user_id,
		handle=profile.handle,
		display_name=profile.display_name,
		avatar_url=profile.avatar_url,
		distance=distance,
		bearing=heading,
		distance_label=visibility.distance_label(distance),
		compass=geodesy.compass_label(heading),
		blur_level=visibility.blur(distance, radius_m, config.immediate_floor_m),
		opacity=visibility.opacity(distance, radius_m),
		tier=visibility.tier(distance, thresholds).label,
		is_active=record.active and (now - record.updated_at) < active_window,
		is_premium=profile.is_premium,
		is_verified=profile.is_verified,
		is_privileged=profile.access_tier(privileged_roles) is AccessTier.PRIVILEGED,
		level=profile.level,
		last_seen=record.updated_at,
		position=RadarPosition(x=x, y=y),
	)


def rank(users: List[RadarUser]) -> List[RadarUser]:
	"""Privileged users first, then nearest first; ties keep their input order."""
	return sorted(users, key=lambda user: (not user.is_privileged, user.distance))


class NearbyDiscovery:
	"""Runs the nearby query against the store and degrades to an empty result on failure."""

	def __init__(
		self,
		store: LocationStore,
		profiles: ProfileLookup,
		*,
		config: RadiusConfiguration,
		privileged_roles: Sequence[str] = ("founder", "admin"),
		timeout_seconds: float = 5.0,
		active_window: timedelta = DEFAULT_ACTIVE_WINDOW,
		candidate_limit: int = DEFAULT_CANDIDATE_LIMIT,
	) -> None:
		self._store = store
		self._profiles = profiles
		self._config = config
		self._privileged_roles = tuple(privileged_roles)
		self._timeout_seconds = timeout_seconds
		self._active_window = active_window
		self._candidate_limit = candidate_limit

	async def query(
		self,
		viewer_id: str,
		origin: Optional[LiveLocation],
		radius_m: float,
		*,
		max_results: int,
		now: Optional[datetime] = None,
	) -> List[RadarUser]:
		if origin is None or max_results <= 0:
			return []
		started = time.perf_counter()
		try:
			users = await asyncio.wait_for(
				self._run(viewer_id, origin, radius_m, max_results=max_results, now=now),
				timeout=self._timeout_seconds,
			)
		except asyncio.TimeoutError:
			obs_metrics.discovery_query("timeout")
			logger.warning("nearby query timed out viewer=%s radius=%s", viewer_id, radius_m)
			return []
		except Exception:
			obs_metrics.discovery_query("error")
			logger.warning("nearby query failed viewer=%s radius=%s", viewer_id, radius_m, exc_info=True)
			return []
		obs_metrics.discovery_query("ok")
		obs_metrics.RADAR_DISCOVERY_LATENCY.observe(time.perf_counter() - started)
		obs_metrics.RADAR_DISCOVERY_RESULTS.observe(len(users))
		return users

	async def _run(
		self,
		viewer_id: str,
		origin: LiveLocation,
		radius_m: float,
		*,
		max_results: int,
		now: Optional[datetime],
	) -> List[RadarUser]:
		now = now or datetime.now(timezone.utc)
		thresholds = self._config.thresholds_for(radius_m)
		box = geodesy.bounding_box(origin.latitude, origin.longitude, radius_m)
		records = await self._store.query_box(box, limit=self._candidate_limit)
		measured = measure_candidates(
			records,
			viewer_id=viewer_id,
			origin=origin,
			radius_m=radius_m,
			thresholds=thresholds,
			now=now,
		)
		if not measured:
			return []
		profiles: Dict[str, ProfileSummary] = await self._profiles.get_profiles(
			[record.user_id for record, _, _ in measured]
		)
		users: List[RadarUser] = []
		for record, distance, heading in measured:
			profile = profiles.get(record.user_id)
			if profile is None:
				continue
			users.append(
				project(
					record,
					distance,
					heading,
					profile,
					radius_m=radius_m,
					thresholds=thresholds,
					config=self._config,
					privileged_roles=self._privileged_roles,
					now=now,
					active_window=self._active_window,
				)
			)
		if logger.isEnabledFor(logging.DEBUG):
			logger.debug(
				"nearby query viewer=%s radius=%s candidates=%s kept=%s",
				viewer_id,
				radius_m,
				len(records),
				len(users),
			)
		return rank(users)[:max_results]


__all__ = ["NearbyDiscovery", "measure_candidates", "project", "rank"]
