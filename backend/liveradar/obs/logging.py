"""Structured JSON logging for the radar backend.

Records carry the socket context bound with :func:`bind_context` and any
``extra=`` fields. Field names that look like credentials or coordinates are
redacted before they are serialised.
"""

from __future__ import annotations

import json
import logging
import random
from contextvars import ContextVar, Token
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from liveradar.settings import settings

_LOGGER_NAME = "liveradar"

_CONTEXT: Dict[str, ContextVar[Optional[str]]] = {
	"user_id": ContextVar("obs_user_id", default=None),
	"sid": ContextVar("obs_sid", default=None),
	"namespace": ContextVar("obs_namespace", default=None),
}

# Raw coordinates never leave the process through logs.
_REDACTED_KEYS = ("token", "secret", "authorization", "password", "lat", "lon", "geo", "coord")
_REDACTED = "[redacted]"

_MAX_STRING = 256
_MAX_ITEMS = 10

# Attributes every LogRecord has; anything else came in through `extra=`.
_RECORD_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime"}

_QUIET_LOGGERS = ("engineio.server", "socketio.server")


def bind_context(
	*,
	user_id: Optional[str] = None,
	sid: Optional[str] = None,
	namespace: Optional[str] = None,
) -> Dict[str, Token]:
	"""Bind socket context for the current task; pass the result to :func:`reset_context`."""
	values = {"user_id": user_id, "sid": sid, "namespace": namespace}
	return {name: _CONTEXT[name].set(value) for name, value in values.items() if value is not None}


def reset_context(tokens: Dict[str, Token]) -> None:
	for name, token in tokens.items():
		_CONTEXT[name].reset(token)


def _scrub(key: str, value: Any) -> Any:
	if any(marker in key.lower() for marker in _REDACTED_KEYS):
		return _REDACTED
	if isinstance(value, str):
		return value if len(value) <= _MAX_STRING else value[:_MAX_STRING] + "…"
	if isinstance(value, dict):
		items = list(value.items())
		scrubbed = {str(k): _scrub(str(k), v) for k, v in items[:_MAX_ITEMS]}
		if len(items) > _MAX_ITEMS:
			scrubbed["…"] = f"+{len(items) - _MAX_ITEMS} keys"
		return scrubbed
	if isinstance(value, (list, tuple, set)):
		items = [_scrub(key, item) for item in list(value)[:_MAX_ITEMS]]
		if len(value) > _MAX_ITEMS:
			items.append("…")
		return items
	return value


class JSONLogFormatter(logging.Formatter):
	"""One JSON object per record."""

	def format(self, record: logging.LogRecord) -> str:  # noqa: A003 (match logging api)
		payload: Dict[str, object] = {
			"ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
			"level": record.levelname.lower(),
			"msg": record.getMessage(),
			"logger": record.name,
			"service": settings.service_name,
			"env": settings.environment,
			"commit": settings.git_commit,
		}
		for name, var in _CONTEXT.items():
			value = var.get()
			if value:
				payload[name] = value
		if record.exc_info:
			payload["exc_info"] = self.formatException(record.exc_info)
		for key, value in record.__dict__.items():
			if key in _RECORD_ATTRS or key in payload:
				continue
			payload[key] = _scrub(key, value)
		return json.dumps(payload, separators=(",", ":"), default=str)


class InfoSamplingFilter(logging.Filter):
	"""Sample INFO records at ``obs_log_sampling_rate_info``; other levels always pass."""

	def filter(self, record: logging.LogRecord) -> bool:  # noqa: A003
		if record.levelno != logging.INFO:
			return True
		rate = max(0.0, min(1.0, settings.obs_log_sampling_rate_info))
		return rate >= 1.0 or random.random() < rate


def configure_logging() -> logging.Logger:
	root = logging.getLogger()
	root.handlers.clear()
	handler = logging.StreamHandler()
	handler.setFormatter(JSONLogFormatter())
	handler.addFilter(InfoSamplingFilter())
	root.addHandler(handler)
	root.setLevel(settings.obs_log_level)
	# Per-packet engine logs would drown the radar's own records.
	for name in _QUIET_LOGGERS:
		logging.getLogger(name).setLevel(logging.WARNING)
	return logging.getLogger(_LOGGER_NAME)


def get_logger(name: Optional[str] = None) -> logging.Logger:
	return logging.getLogger(name or _LOGGER_NAME)


__all__ = [
	"InfoSamplingFilter",
	"JSONLogFormatter",
	"bind_context",
	"configure_logging",
	"get_logger",
	"reset_context",
]
