"""Central registry for Prometheus metrics used by the radar backend."""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram, Summary


SOCKET_CLIENTS = Gauge(
	"liveradar_socketio_clients",
	"Active Socket.IO clients per namespace",
	["namespace"],
)

SOCKET_EVENTS = Counter(
	"liveradar_socketio_events_total",
	"Socket.IO events received per namespace",
	["namespace", "event"],
)

RADAR_TRACKERS_ACTIVE = Gauge(
	"liveradar_trackers_active",
	"Trackers currently acquiring positions",
)

RADAR_POSITIONS = Counter(
	"liveradar_positions_total",
	"Raw position readings handled by trackers",
	["result"],
)

RADAR_ACQUISITION_ERRORS = Counter(
	"liveradar_acquisition_errors_total",
	"Position acquisition errors by classification",
	["code"],
)

RADAR_SYNC_WRITES = Counter(
	"liveradar_sync_writes_total",
	"Location store writes issued by the sync adapter",
	["kind"],
)

RADAR_SYNC_FAILURES = Counter(
	"liveradar_sync_failures_total",
	"Location store writes that failed",
	["kind"],
)

RADAR_DISCOVERY_QUERIES = Counter(
	"liveradar_discovery_queries_total",
	"Nearby discovery queries by outcome",
	["outcome"],
)

RADAR_DISCOVERY_LATENCY = Histogram(
	"liveradar_discovery_duration_seconds",
	"Nearby discovery query latency in seconds",
	buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0),
)

RADAR_DISCOVERY_RESULTS = Summary(
	"liveradar_discovery_results",
	"Nearby discovery result sizes",
)

RADAR_GEO_TRIMS = Counter(
	"liveradar_geo_index_trim_total",
	"radar:geo members removed after their location hash expired",
	["source"],
)


def socket_connected(namespace: str) -> None:
	SOCKET_CLIENTS.labels(namespace=namespace).inc()


def socket_disconnected(namespace: str) -> None:
	SOCKET_CLIENTS.labels(namespace=namespace).dec()


def socket_event(namespace: str, event: str) -> None:
	SOCKET_EVENTS.labels(namespace=namespace, event=event).inc()


def position_handled(result: str) -> None:
	RADAR_POSITIONS.labels(result=result).inc()


def acquisition_error(code: str) -> None:
	RADAR_ACQUISITION_ERRORS.labels(code=code).inc()


def sync_write(kind: str) -> None:
	RADAR_SYNC_WRITES.labels(kind=kind).inc()


def sync_failure(kind: str) -> None:
	RADAR_SYNC_FAILURES.labels(kind=kind).inc()


def discovery_query(outcome: str) -> None:
	RADAR_DISCOVERY_QUERIES.labels(outcome=outcome).inc()


def geo_index_trimmed(source: str, count: int) -> None:
	RADAR_GEO_TRIMS.labels(source=source).inc(count)
