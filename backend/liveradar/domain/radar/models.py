"""Domain models used by the live radar."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum, IntEnum
from typing import Any, Dict, Optional, Sequence, Tuple


class AccessTier(str, Enum):
	STANDARD = "standard"
	PREMIUM = "premium"
	PRIVILEGED = "privileged"


class CadenceMode(str, Enum):
	"""Acquisition cadence; `low` is used while the client is backgrounded."""

	HIGH = "high"
	BALANCED = "balanced"
	LOW = "low"


class VisibilityTier(IntEnum):
	IMMEDIATE = 0
	NEAR = 1
	MEDIUM = 2
	FAR = 3
	EDGE = 4
	HIDDEN = 5

	@property
	def label(self) -> str:
		return self.name.lower()


def _utcnow() -> datetime:
	return datetime.now(timezone.utc)


@dataclass(frozen=True, slots=True)
class LiveLocation:
	"""A single position reading. Superseded by the next reading, never mutated."""

	latitude: float
	longitude: float
	accuracy: float
	altitude: Optional[float] = None
	heading: Optional[float] = None
	speed: Optional[float] = None
	timestamp: datetime = field(default_factory=_utcnow)

	def to_dict(self) -> Dict[str, Any]:
		return {
			"latitude": self.latitude,
			"longitude": self.longitude,
			"accuracy": self.accuracy,
			"altitude": self.altitude,
			"heading": self.heading,
			"speed": self.speed,
			"timestamp": self.timestamp.isoformat(),
		}


@dataclass(frozen=True, slots=True)
class PrivilegedMode:
	invisible: bool = False
	global_reach: bool = False


@dataclass(frozen=True, slots=True)
class TrackerState:
	"""Snapshot of a tracker. Replaced wholesale on every transition."""

	is_tracking: bool = False
	current_location: Optional[LiveLocation] = None
	last_update: Optional[datetime] = None
	error: Optional[str] = None
	cadence: CadenceMode = CadenceMode.BALANCED
	access_tier: AccessTier = AccessTier.STANDARD
	privileged: PrivilegedMode = field(default_factory=PrivilegedMode)

	def to_dict(self) -> Dict[str, Any]:
		return {
			"is_tracking": self.is_tracking,
			"current_location": self.current_location.to_dict() if self.current_location else None,
			"last_update": self.last_update.isoformat() if self.last_update else None,
			"error": self.error,
			"cadence": self.cadence.value,
			"access_tier": self.access_tier.value,
			"invisible": self.privileged.invisible,
			"global_reach": self.privileged.global_reach,
		}


@dataclass(frozen=True, slots=True)
class RadiusConfiguration:
	"""Search radii per access tier and the distance ceilings of each visibility tier.

	``thresholds`` holds the ceilings of immediate, near, medium, far and edge in
	ascending order; anything at or beyond the last one is hidden. The edge ceiling
	stretches to the effective radius for tiers that see further than it.
	"""

	standard_radius_m: float = 5_000.0
	premium_radius_m: float = 15_000.0
	global_radius_m: float = 40_000_000.0
	thresholds: Tuple[float, ...] = (150.0, 500.0, 1_000.0, 3_000.0, 5_000.0)

	def __post_init__(self) -> None:
		if len(self.thresholds) != VisibilityTier.HIDDEN:
			raise ValueError(f"expected {int(VisibilityTier.HIDDEN)} tier thresholds, got {len(self.thresholds)}")
		if any(value <= 0 for value in self.thresholds):
			raise ValueError("tier thresholds must be positive")
		if any(b <= a for a, b in zip(self.thresholds, self.thresholds[1:])):
			raise ValueError("tier thresholds must be strictly increasing")
		if not 0 < self.standard_radius_m <= self.premium_radius_m <= self.global_radius_m:
			raise ValueError("radii must satisfy 0 < standard <= premium <= global")

	@property
	def immediate_floor_m(self) -> float:
		return self.thresholds[0]

	def radius_for(self, tier: AccessTier, *, global_reach: bool = False) -> float:
		if tier is AccessTier.PRIVILEGED or global_reach:
			return self.global_radius_m
		if tier is AccessTier.PREMIUM:
			return self.premium_radius_m
		return self.standard_radius_m

	def thresholds_for(self, radius_m: float) -> Tuple[float, ...]:
		ceiling = max(self.thresholds[-1], radius_m)
		return self.thresholds[:-1] + (ceiling,)

	@classmethod
	def from_settings(cls, settings: Any) -> "RadiusConfiguration":
		return cls(
			standard_radius_m=float(settings.radar_radius_standard_m),
			premium_radius_m=float(settings.radar_radius_premium_m),
			global_radius_m=float(settings.radar_radius_global_m),
			thresholds=tuple(float(value) for value in settings.radar_tier_thresholds_m),
		)


@dataclass(frozen=True, slots=True)
class LocationRecord:
	"""A published position as read back from the location store."""

	user_id: str
	latitude: float
	longitude: float
	accuracy: float
	updated_at: datetime
	expires_at: Optional[datetime] = None
	visible: bool = True
	active: bool = True

	def is_expired(self, now: datetime) -> bool:
		return self.expires_at is not None and self.expires_at <= now


@dataclass(frozen=True, slots=True)
class ProfileSummary:
	"""Display metadata joined onto discovered candidates."""

	user_id: str
	handle: str = "unknown"
	display_name: str = "Anonymous"
	avatar_url: Optional[str] = None
	role: str = "member"
	is_premium: bool = False
	is_verified: bool = False
	level: int = 1

	def access_tier(self, privileged_roles: Sequence[str]) -> AccessTier:
		if self.role in privileged_roles:
			return AccessTier.PRIVILEGED
		if self.is_premium:
			return AccessTier.PREMIUM
		return AccessTier.STANDARD
