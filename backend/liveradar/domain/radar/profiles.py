"""Profile lookup used to decorate discovered candidates and resolve access tiers."""

from __future__ import annotations

import logging
from typing import Dict, Optional, Protocol, Sequence

from liveradar.domain.radar.models import ProfileSummary
from liveradar.infra.postgres import get_pool

logger = logging.getLogger(__name__)


class ProfileLookup(Protocol):
	async def get_profiles(self, user_ids: Sequence[str]) -> Dict[str, ProfileSummary]: ...


def _row_to_profile(row) -> ProfileSummary:
	return ProfileSummary(
		user_id=str(row["id"]),
		handle=row["handle"] or "unknown",
		display_name=row["display_name"] or "Anonymous",
		avatar_url=row["avatar_url"] or None,
		role=row["role"] or "member",
		is_premium=bool(row["is_premium"]),
		is_verified=bool(row["is_verified"]),
		level=int(row["level"] or 1),
	)


class PostgresProfileLookup:
	"""Reads display metadata from the `users` table."""

	async def get_profiles(self, user_ids: Sequence[str]) -> Dict[str, ProfileSummary]:
		if not user_ids:
			return {}
		pool = await get_pool()
		# Cast parameter to uuid[] to avoid mismatched comparisons when passing string IDs
		rows = await pool.fetch(
			"""
			SELECT u.id, u.handle, u.display_name, u.avatar_url, u.role,
			       u.is_premium, u.is_verified, u.level
			FROM users u
			WHERE u.id = ANY($1::uuid[]) AND u.deleted_at IS NULL
			""",
			list({uid for uid in user_ids}),
		)
		return {str(row["id"]): _row_to_profile(row) for row in rows}


async def get_profile(lookup: ProfileLookup, user_id: str) -> Optional[ProfileSummary]:
	profiles = await lookup.get_profiles([user_id])
	return profiles.get(user_id)
