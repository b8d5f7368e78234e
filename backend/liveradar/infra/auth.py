"""Socket authentication helpers."""

from __future__ import annotations

from typing import Dict, Optional

from liveradar.infra import jwt as jwt_helper
from liveradar.settings import settings


def parse_token(token: str) -> Dict[str, Optional[str]]:
	"""Parse either a JWT or, in development, the synthetic `uid:...;sid:...` token."""
	token = (token or "").strip()
	if not token:
		raise ValueError("empty_token")
	if token.count(".") == 2:
		claims = jwt_helper.decode_access(token)
		sid = claims.get("sid")
		if not sid:
			raise ValueError("missing_session")
		return {
			"user_id": str(claims["sub"]),
			"session_id": str(sid),
			"handle": str(claims["handle"]) if claims.get("handle") else None,
		}
	if not settings.is_dev():
		raise ValueError("invalid_token")
	parts: Dict[str, str] = {}
	for chunk in token.split(";"):
		chunk = chunk.strip()
		if not chunk or ":" not in chunk:
			continue
		key, value = chunk.split(":", 1)
		parts[key.strip().lower()] = value.strip()
	uid = parts.get("uid") or parts.get("user_id")
	session = parts.get("sid") or parts.get("session") or parts.get("session_id")
	if not uid or not session:
		raise ValueError("invalid_token")
	return {
		"user_id": uid,
		"session_id": session,
		"handle": parts.get("handle"),
	}
