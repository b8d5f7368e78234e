import json
import logging

from liveradar.obs import logging as obs_logging


def _record(**extra) -> logging.LogRecord:
	record = logging.LogRecord("liveradar.test", logging.INFO, __file__, 1, "radar %s", ("tick",), None)
	for key, value in extra.items():
		setattr(record, key, value)
	return record


def test_formatter_redacts_coordinates():
	formatter = obs_logging.JSONLogFormatter()

	payload = json.loads(formatter.format(_record(lat=52.52, lon=13.405, radius_m=5000)))

	assert payload["msg"] == "radar tick"
	assert payload["lat"] == "[redacted]"
	assert payload["lon"] == "[redacted]"
	assert payload["radius_m"] == 5000


def test_formatter_includes_bound_context():
	formatter = obs_logging.JSONLogFormatter()
	tokens = obs_logging.bind_context(user_id="user-1", sid="sid-1", namespace="/radar")
	try:
		payload = json.loads(formatter.format(_record()))
	finally:
		obs_logging.reset_context(tokens)

	assert payload["user_id"] == "user-1"
	assert payload["sid"] == "sid-1"
	assert payload["namespace"] == "/radar"
	assert "user_id" not in json.loads(formatter.format(_record()))
