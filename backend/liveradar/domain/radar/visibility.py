"""Distance-based visibility policy: tier, blur, opacity and radar placement."""

from __future__ import annotations

import math
from typing import Sequence, Tuple

from liveradar.domain.radar.models import VisibilityTier

BLUR_EXPONENT = 0.7
FADE_START_RATIO = 0.6
OPACITY_FLOOR = 0.3
RADAR_MAX_RADIUS = 0.45
RADAR_CENTER = 0.5


def tier(distance_m: float, thresholds: Sequence[float]) -> VisibilityTier:
	"""Return the first tier whose ceiling the distance falls under, else hidden."""
	for index, ceiling in enumerate(thresholds[: VisibilityTier.HIDDEN]):
		if distance_m < ceiling:
			return VisibilityTier(index)
	return VisibilityTier.HIDDEN


def blur(distance_m: float, max_radius_m: float, floor_m: float) -> float:
	"""0 inside the immediate floor, then a sub-linear climb towards 1 at the radius."""
	if distance_m < floor_m:
		return 0.0
	if max_radius_m <= 0:
		return 1.0
	return min(1.0, math.pow(distance_m / max_radius_m, BLUR_EXPONENT))


def opacity(distance_m: float, max_radius_m: float) -> float:
	"""Fully opaque up to 60% of the radius, then fade linearly to the 0.3 floor."""
	fade_start = max_radius_m * FADE_START_RATIO
	if distance_m < fade_start:
		return 1.0
	span = max_radius_m - fade_start
	if span <= 0:
		return OPACITY_FLOOR
	progress = (distance_m - fade_start) / span
	return max(OPACITY_FLOOR, 1.0 - progress * (1.0 - OPACITY_FLOOR))


def radar_position(distance_m: float, bearing_deg: float, max_radius_m: float) -> Tuple[float, float]:
	"""Map distance/bearing to a point on a unit radar centred at (0.5, 0.5).

	Bearing 0 points up (smaller y) and the radius is capped at 0.45 to keep a
	margin at the rim.
	"""
	if max_radius_m <= 0:
		scaled = RADAR_MAX_RADIUS
	else:
		scaled = min(RADAR_MAX_RADIUS, (distance_m / max_radius_m) * RADAR_MAX_RADIUS)
	radians = math.radians(bearing_deg - 90.0)
	x = RADAR_CENTER + scaled * math.cos(radians)
	y = RADAR_CENTER + scaled * math.sin(radians)
	return (min(1.0, max(0.0, x)), min(1.0, max(0.0, y)))


def _round_half_up(value: float) -> int:
	return int(math.floor(value + 0.5))


def distance_label(meters: float) -> str:
	if meters < 50:
		return "here"
	if meters < 100:
		return f"{_round_half_up(meters)}m"
	if meters < 1000:
		return f"{_round_half_up(meters / 10) * 10}m"
	if meters < 10_000:
		return f"{meters / 1000:.1f}km"
	return f"{_round_half_up(meters / 1000)}km"


__all__ = [
	"blur",
	"distance_label",
	"opacity",
	"radar_position",
	"tier",
]
