"""Socket.IO namespace binding one live radar tracker to each connected client."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional

import socketio
from pydantic import ValidationError

from liveradar.domain.radar.models import LiveLocation, TrackerState
from liveradar.domain.radar.position_source import PositionErrorCode, PushPositionSource
from liveradar.domain.radar.profiles import PostgresProfileLookup, ProfileLookup
from liveradar.domain.radar.schemas import PositionErrorPayload, PositionPayload, RadarUser, TogglePayload
from liveradar.domain.radar.store import LocationStore, RedisLocationStore
from liveradar.domain.radar.tracker import LiveRadarTracker
from liveradar.infra.auth import parse_token
from liveradar.obs import logging as obs_logging
from liveradar.obs import metrics as obs_metrics

logger = logging.getLogger(__name__)


def _header(scope: dict, name: str) -> Optional[str]:
    target = name.encode().lower()
    for key, value in scope.get("headers", []):
        if key.lower() == target:
            return value.decode()
    return None


@dataclass
class RadarSession:
    user_id: str
    session_id: str
    source: PushPositionSource
    tracker: LiveRadarTracker
    unsubscribe_state: Optional[Callable[[], None]] = None
    unsubscribe_nearby: Optional[Callable[[], None]] = None
    extra: Dict[str, Optional[str]] = field(default_factory=dict)


class RadarNamespace(socketio.AsyncNamespace):
    def __init__(
        self,
        *,
        store: Optional[LocationStore] = None,
        profiles: Optional[ProfileLookup] = None,
        namespace: str = "/radar",
    ) -> None:
        super().__init__(namespace)
        self.store: LocationStore = store or RedisLocationStore()
        self.profiles: ProfileLookup = profiles or PostgresProfileLookup()
        self.sessions: Dict[str, RadarSession] = {}

    async def on_connect(self, sid: str, environ: dict, auth: Optional[dict] = None) -> None:
        obs_metrics.socket_connected(self.namespace)
        try:
            ctx = self._authorise(environ, auth)
        except ValueError:
            obs_metrics.socket_disconnected(self.namespace)
            raise ConnectionRefusedError("unauthorized") from None
        source = PushPositionSource()
        tracker = LiveRadarTracker(ctx["user_id"], source=source, store=self.store, profiles=self.profiles)
        session = RadarSession(
            user_id=str(ctx["user_id"]),
            session_id=str(ctx["session_id"]),
            source=source,
            tracker=tracker,
            extra={"handle": ctx.get("handle")},
        )
        self.sessions[sid] = session
        tokens = obs_logging.bind_context(user_id=session.user_id, sid=sid, namespace=self.namespace)
        try:
            await tracker.initialize()
            session.unsubscribe_state = tracker.subscribe_state(self._state_emitter(sid))
            logger.info("radar connect tier=%s", tracker.state.access_tier.value)
        finally:
            obs_logging.reset_context(tokens)
        await self.emit(
            "sys.ok",
            {"me": {"id": session.user_id, "search_radius_m": tracker.get_search_radius()}},
            room=sid,
        )

    async def on_disconnect(self, sid: str, *args) -> None:
        obs_metrics.socket_disconnected(self.namespace)
        session = self.sessions.pop(sid, None)
        if not session:
            return
        session.source.close()
        await session.tracker.close()
        logger.info("radar disconnect sid=%s user=%s", sid, session.user_id)

    async def on_radar_start(self, sid: str, data: Optional[dict] = None) -> None:
        obs_metrics.socket_event(self.namespace, "radar_start")
        session = await self._session(sid)
        if session:
            session.tracker.start()

    async def on_radar_stop(self, sid: str, data: Optional[dict] = None) -> None:
        obs_metrics.socket_event(self.namespace, "radar_stop")
        session = await self._session(sid)
        if session:
            session.tracker.stop()

    async def on_radar_position(self, sid: str, data: dict) -> None:
        obs_metrics.socket_event(self.namespace, "radar_position")
        session = await self._session(sid)
        if not session:
            return
        try:
            payload = PositionPayload.model_validate(data or {})
        except ValidationError:
            await self.emit("sys.warn", {"code": "invalid_payload"}, room=sid)
            return
        try:
            captured = (
                datetime.fromtimestamp(payload.ts_client / 1000, tz=timezone.utc)
                if payload.ts_client
                else datetime.now(timezone.utc)
            )
        except (OverflowError, ValueError, OSError):
            logger.debug("radar position timestamp out of range sid=%s", sid)
            await self.emit("sys.warn", {"code": "invalid_payload"}, room=sid)
            return
        session.source.push(
            LiveLocation(
                latitude=payload.lat,
                longitude=payload.lon,
                accuracy=payload.accuracy,
                altitude=payload.altitude,
                heading=payload.heading,
                speed=payload.speed,
                timestamp=captured,
            )
        )

    async def on_radar_error(self, sid: str, data: dict) -> None:
        obs_metrics.socket_event(self.namespace, "radar_error")
        session = await self._session(sid)
        if not session:
            return
        try:
            payload = PositionErrorPayload.model_validate(data or {})
        except ValidationError:
            await self.emit("sys.warn", {"code": "invalid_payload"}, room=sid)
            return
        session.source.fail(PositionErrorCode.coerce(payload.code), payload.message)

    async def on_radar_invisible(self, sid: str, data: dict) -> None:
        obs_metrics.socket_event(self.namespace, "radar_invisible")
        session = await self._session(sid)
        if not session:
            return
        try:
            payload = TogglePayload.model_validate(data or {})
        except ValidationError:
            await self.emit("sys.warn", {"code": "invalid_payload"}, room=sid)
            return
        if not session.tracker.set_invisible(payload.enabled):
            await self.emit("sys.warn", {"code": "forbidden"}, room=sid)

    async def on_radar_background(self, sid: str, data: dict) -> None:
        obs_metrics.socket_event(self.namespace, "radar_background")
        session = await self._session(sid)
        if not session:
            return
        try:
            payload = TogglePayload.model_validate(data or {})
        except ValidationError:
            await self.emit("sys.warn", {"code": "invalid_payload"}, room=sid)
            return
        session.tracker.set_backgrounded(payload.enabled)

    async def on_radar_nearby_subscribe(self, sid: str, data: Optional[dict] = None) -> None:
        obs_metrics.socket_event(self.namespace, "radar_nearby_subscribe")
        session = await self._session(sid)
        if not session or session.unsubscribe_nearby is not None:
            return
        session.unsubscribe_nearby = session.tracker.subscribe_nearby(self._nearby_emitter(sid))

    async def on_radar_nearby_unsubscribe(self, sid: str, data: Optional[dict] = None) -> None:
        obs_metrics.socket_event(self.namespace, "radar_nearby_unsubscribe")
        session = await self._session(sid)
        if not session or session.unsubscribe_nearby is None:
            return
        unsubscribe, session.unsubscribe_nearby = session.unsubscribe_nearby, None
        unsubscribe()

    def _state_emitter(self, sid: str):
        async def emit_state(state: TrackerState) -> None:
            await self.emit("radar.state", state.to_dict(), room=sid)

        return emit_state

    def _nearby_emitter(self, sid: str):
        async def emit_nearby(users: List[RadarUser]) -> None:
            await self.emit("radar.nearby", {"users": [user.model_dump(mode="json") for user in users]}, room=sid)

        return emit_nearby

    async def _session(self, sid: str) -> Optional[RadarSession]:
        session = self.sessions.get(sid)
        if session is None:
            await self.emit("sys.warn", {"code": "unauthorized"}, room=sid)
        return session

    def _authorise(self, environ: dict, auth: Optional[dict]) -> Dict[str, Optional[str]]:
        scope = environ.get("asgi.scope", environ)
        auth_payload = auth or environ.get("auth") or scope.get("auth") or {}
        token = auth_payload.get("token")
        if not token:
            auth_header = _header(scope, "authorization")
            if auth_header and auth_header.lower().startswith("bearer "):
                token = auth_header.split(" ", 1)[1]
        if not token:
            raise ValueError("missing_token")
        ctx = parse_token(str(token))
        if not ctx.get("user_id") or not ctx.get("session_id"):
            raise ValueError("missing_claims")
        return ctx


__all__ = ["RadarNamespace", "RadarSession"]
