"""Live proximity radar: tracking, visibility policy and nearby discovery."""

from liveradar.domain.radar.models import (
	AccessTier,
	CadenceMode,
	LiveLocation,
	RadiusConfiguration,
	TrackerState,
	VisibilityTier,
)
from liveradar.domain.radar.schemas import RadarUser
from liveradar.domain.radar.tracker import LiveRadarTracker

__all__ = [
	"AccessTier",
	"CadenceMode",
	"LiveLocation",
	"LiveRadarTracker",
	"RadarUser",
	"RadiusConfiguration",
	"TrackerState",
	"VisibilityTier",
]
