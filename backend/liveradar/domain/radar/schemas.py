"""Pydantic schemas for radar payloads."""

from __future__ import annotations

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field

TierLabel = Literal["immediate", "near", "medium", "far", "edge", "hidden"]

# 9999-12-31T23:59:59.999Z, the last instant a datetime can hold.
MAX_CLIENT_TIMESTAMP_MS = 253_402_300_799_999


class RadarPosition(BaseModel):
	x: float = Field(..., ge=0.0, le=1.0)
	y: float = Field(..., ge=0.0, le=1.0)


class RadarUser(BaseModel):
	"""A discovered candidate projected for the radar display."""

	id: str
	handle: str
	display_name: str
	avatar_url: Optional[str] = None
	distance: float = Field(..., ge=0.0)
	bearing: float = Field(..., ge=0.0, lt=360.0)
	distance_label: str
	compass: str
	blur_level: float = Field(..., ge=0.0, le=1.0)
	opacity: float = Field(..., ge=0.0, le=1.0)
	tier: TierLabel
	is_active: bool
	is_premium: bool = False
	is_verified: bool = False
	is_privileged: bool = False
	level: int = 1
	last_seen: datetime
	position: RadarPosition


class PositionPayload(BaseModel):
	"""Payload emitted by the client for each raw geolocation callback."""

	lat: float = Field(..., ge=-90.0, le=90.0)
	lon: float = Field(..., ge=-180.0, le=180.0)
	accuracy: float = Field(..., ge=0.0)
	altitude: Optional[float] = None
	heading: Optional[float] = Field(default=None, ge=0.0, le=360.0)
	speed: Optional[float] = Field(default=None, ge=0.0)
	ts_client: Optional[int] = Field(
		default=None, ge=0, le=MAX_CLIENT_TIMESTAMP_MS, description="Epoch milliseconds from the client device"
	)


class PositionErrorPayload(BaseModel):
	"""Geolocation failure reported by the client, using the browser error codes."""

	code: int = Field(..., ge=0)
	message: Optional[str] = None


class TogglePayload(BaseModel):
	enabled: bool
