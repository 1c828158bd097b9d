"""Read-model HTTP server — serves engine snapshots as JSON.

Routes:
- ``GET /``              → index of available read models
- ``GET /healthz``       → liveness, never behind auth
- ``GET /api/{name}``    → one read model, e.g. ``series``, ``alarms``,
  ``jobs`` or ``capacity``
"""

from __future__ import annotations

import hmac
import json
import time
from collections.abc import Awaitable, Callable, Mapping
from datetime import datetime
from typing import Any

import aiohttp
import structlog
from aiohttp import web
from pydantic import BaseModel

logger = structlog.get_logger(__name__)

SnapshotFn = Callable[[], object]
Handler = Callable[[web.Request], Awaitable[web.StreamResponse]]

SNAPSHOTS_KEY = web.AppKey("snapshots", dict)
STARTED_AT_KEY = web.AppKey("started_at", float)

_PUBLIC_PATHS = frozenset({"/healthz"})


def _basic_auth_middleware(username: str, password: str) -> Callable[..., Any]:
    """Reject requests whose Basic credentials don't match."""

    def _authorized(request: web.Request) -> bool:
        header = request.headers.get("Authorization", "")
        try:
            creds = aiohttp.BasicAuth.decode(header)
        except ValueError:
            return False
        return hmac.compare_digest(creds.login, username) and hmac.compare_digest(
            creds.password, password
        )

    @web.middleware
    async def middleware(request: web.Request, handler: Handler) -> web.StreamResponse:
        if request.path in _PUBLIC_PATHS or _authorized(request):
            return await handler(request)
        return web.json_response(
            {"error": "unauthorized"},
            status=401,
            headers={"WWW-Authenticate": 'Basic realm="clusterwatch"'},
        )

    return middleware


class _ReadModelEncoder(json.JSONEncoder):
    def default(self, o: Any) -> Any:
        if isinstance(o, BaseModel):
            return o.model_dump(mode="json")
        if isinstance(o, datetime):
            return o.isoformat()
        if isinstance(o, (set, frozenset, tuple)):
            return list(o)
        return super().default(o)


def _dumps(obj: object) -> str:
    return json.dumps(obj, cls=_ReadModelEncoder)


async def _handle_index(request: web.Request) -> web.Response:
    names = request.app[SNAPSHOTS_KEY]
    return web.json_response({
        "timestamp": time.time(),
        "read_models": [f"/api/{name}" for name in names],
    })


async def _handle_health(request: web.Request) -> web.Response:
    return web.json_response({
        "status": "ok",
        "uptime_secs": round(time.monotonic() - request.app[STARTED_AT_KEY], 3),
    })


async def _handle_read_model(request: web.Request) -> web.Response:
    name = request.match_info["name"]
    snapshot_fn = request.app[SNAPSHOTS_KEY].get(name)
    if snapshot_fn is None:
        return web.json_response({"error": f"unknown read model {name!r}"}, status=404)
    try:
        snapshot = snapshot_fn()
    except Exception:
        logger.exception("read_model_error", read_model=name)
        return web.json_response({"error": f"read model {name!r} unavailable"}, status=500)
    return web.json_response({"timestamp": time.time(), name: snapshot}, dumps=_dumps)


def create_web_app(
    snapshots: Mapping[str, SnapshotFn],
    username: str | None = None,
    password: str | None = None,
) -> web.Application:
    """Build the app. *snapshots* maps read-model names to zero-arg callables.

    Basic auth is enforced only when both *username* and *password* are set.
    """
    middlewares = []
    if username and password:
        middlewares.append(_basic_auth_middleware(username, password))
    app = web.Application(middlewares=middlewares)
    app[SNAPSHOTS_KEY] = dict(snapshots)
    app[STARTED_AT_KEY] = time.monotonic()
    app.router.add_get("/", _handle_index)
    app.router.add_get("/healthz", _handle_health)
    app.router.add_get("/api/{name}", _handle_read_model)
    return app


async def start_web_dashboard(
    snapshots: Mapping[str, SnapshotFn],
    host: str = "127.0.0.1",
    port: int = 8090,
    username: str | None = None,
    password: str | None = None,
) -> web.AppRunner:
    """Serve the read models on *host*:*port*. Returns the runner for cleanup."""
    runner = web.AppRunner(create_web_app(snapshots, username=username, password=password))
    await runner.setup()
    await web.TCPSite(runner, host, port).start()
    logger.info("read_model_server_listening", host=host, port=port, auth=bool(username and password))
    return runner
