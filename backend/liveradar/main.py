"""ASGI entrypoint: health/metrics over HTTP and the radar Socket.IO namespace."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager, suppress

import socketio
from fastapi import FastAPI, Response
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from liveradar import obs
from liveradar.domain.radar.sockets import RadarNamespace
from liveradar.domain.radar.store import run_geo_sweeper
from liveradar.infra import postgres
from liveradar.infra.redis import redis_client
from liveradar.settings import settings

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
	obs.init()
	try:
		await postgres.init_pool()
	except Exception:
		logger.warning("postgres pool unavailable at startup; profiles load lazily", exc_info=True)
	sweeper = asyncio.create_task(
		run_geo_sweeper(interval_s=settings.radar_geo_sweep_interval_seconds),
		name="radar-geo-sweeper",
	)
	app.state.geo_sweeper = sweeper
	try:
		yield
	finally:
		sweeper.cancel()
		with suppress(asyncio.CancelledError):
			await sweeper
		for sid in list(radar_namespace.sessions):
			await radar_namespace.on_disconnect(sid)
		await postgres.close_pool()


app = FastAPI(title="Live Radar", lifespan=lifespan)


@app.get("/health/live")
async def health_live() -> dict:
	return {"ok": True, "service": settings.service_name, "commit": settings.git_commit}


@app.get("/health/ready")
async def health_ready() -> JSONResponse:
	try:
		await asyncio.wait_for(redis_client.ping(), timeout=0.5)
	except Exception as exc:
		logger.warning("Redis readiness check failed", exc_info=True)
		return JSONResponse({"ok": False, "redis": {"ok": False, "error": str(exc)}}, status_code=503)
	return JSONResponse({"ok": True, "redis": {"ok": True}})


@app.get("/metrics")
async def metrics() -> Response:
	return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)


allow_origins = list(settings.cors_allow_origins) or ("*" if settings.is_dev() else [])
sio = socketio.AsyncServer(async_mode="asgi", cors_allowed_origins=allow_origins)
radar_namespace = RadarNamespace()
sio.register_namespace(radar_namespace)
socket_app = socketio.ASGIApp(sio, other_asgi_app=app)
