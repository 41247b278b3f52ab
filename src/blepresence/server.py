"""HTTP query API over a :class:`PresenceTracker`.

Routes::

    GET    /api/ble/data                          whole registry
    GET    /api/ble/esp-c3-beacons                tagged beacons currently seen
    GET    /api/ble/beacon/{identity}/receivers   ranked receivers for one beacon
    GET    /api/ble/status                        aggregate counts
    GET    /api/ble/statistics                    counts, coverage and RSSI spread
    POST   /api/ble/report                        ingest one receiver report
    DELETE /api/ble/data                          reset (bearer token required)
"""

from __future__ import annotations

import json
import logging
import secrets
from typing import Any

from aiohttp import web

from blepresence.tracker import PresenceTracker

_logger = logging.getLogger(__name__)

TRACKER_KEY = web.AppKey("tracker", PresenceTracker)


def _tracker(request: web.Request) -> PresenceTracker:
    return request.app[TRACKER_KEY]


def _error(status: int, message: str) -> web.Response:
    return web.json_response({"success": False, "message": message}, status=status)


def _is_authorized(request: web.Request, token: str | None) -> bool:
    if not token:
        return False
    header = request.headers.get("Authorization", "")
    scheme, _, value = header.partition(" ")
    if scheme.lower() != "bearer" or not value:
        return False
    return secrets.compare_digest(value.strip().encode(), token.encode())


async def get_data(request: web.Request) -> web.Response:
    tracker = _tracker(request)
    data = tracker.list_all()
    if not data["devices"] and not data["beacons"]:
        return web.json_response({"success": True, "data": data, "message": "no data"})
    return web.json_response({"success": True, "data": data, "timestamp": tracker.now()})


async def get_tagged_beacons(request: web.Request) -> web.Response:
    tracker = _tracker(request)
    prefix = request.query.get("prefix") or None
    beacons = [view.model_dump(mode="json") for view in tracker.tagged_beacons(prefix)]
    return web.json_response({"success": True, "data": beacons, "timestamp": tracker.now()})


async def get_beacon_receivers(request: web.Request) -> web.Response:
    tracker = _tracker(request)
    identity = request.match_info["identity"]
    view = tracker.beacon_receivers(identity)
    if view is None:
        return _error(404, "beacon not found")
    return web.json_response({"success": True, "data": view.model_dump(mode="json")})


async def get_status(request: web.Request) -> web.Response:
    summary = _tracker(request).status()
    return web.json_response(
        {
            "success": True,
            "status": {
                "receivers": {"total": summary.receiver_total, "active": summary.receiver_active},
                "beacons": {"total": summary.beacon_total, "active": summary.beacon_active},
                "active_window": summary.active_window,
                "timestamp": summary.timestamp,
            },
        }
    )


async def get_statistics(request: web.Request) -> web.Response:
    stats = _tracker(request).statistics()
    return web.json_response({"success": True, "data": stats.model_dump(mode="json")})


async def post_report(request: web.Request) -> web.Response:
    tracker = _tracker(request)
    try:
        payload: Any = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return _error(400, "body must be JSON")
    result = await tracker.ingest_payload(payload, source=request.remote or "http")
    if not result.accepted:
        return _error(400, result.reason or "report rejected")
    return web.json_response({"success": True, "data": result.model_dump(mode="json")})


async def delete_data(request: web.Request) -> web.Response:
    tracker = _tracker(request)
    if not _is_authorized(request, tracker.config.api_token):
        _logger.warning("Refused unauthorized reset from %s", request.remote)
        return _error(403, "unauthorized")
    result = await tracker.reset()
    if not result.persisted:
        return web.json_response(
            {"success": False, "message": f"registry cleared but not persisted: {result.error}"},
            status=500,
        )
    return web.json_response({"success": True, "message": "registry reset"})


def create_app(tracker: PresenceTracker) -> web.Application:
    """Build the aiohttp application serving *tracker*.

    The tracker's lifecycle is owned by the caller.
    """
    app = web.Application()
    app[TRACKER_KEY] = tracker
    app.router.add_get("/api/ble/data", get_data)
    app.router.add_delete("/api/ble/data", delete_data)
    app.router.add_get("/api/ble/esp-c3-beacons", get_tagged_beacons)
    app.router.add_get("/api/ble/beacon/{identity}/receivers", get_beacon_receivers)
    app.router.add_get("/api/ble/status", get_status)
    app.router.add_get("/api/ble/statistics", get_statistics)
    app.router.add_post("/api/ble/report", post_report)
    return app
