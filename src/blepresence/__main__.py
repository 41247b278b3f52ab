"""Run the presence tracker with its HTTP query API.

Usage::

    export BLE_PRESENCE_DATA_FILE=/var/lib/blepresence/ble_data.json
    export BLE_PRESENCE_API_TOKEN=change-me
    python -m blepresence --port 8080 --mqtt
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import logging
import signal
from typing import Any

from aiohttp import web

from blepresence.config import TrackerConfig
from blepresence.exceptions import PresenceConfigError
from blepresence.server import create_app
from blepresence.tracker import PresenceTracker

_LOG = logging.getLogger("blepresence")


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="blepresence", description="BLE beacon presence tracker")
    parser.add_argument("--data-file", help="Registry JSON document (default: env or data/ble_data.json)")
    parser.add_argument("--host", help="HTTP bind address")
    parser.add_argument("--port", type=int, help="HTTP port")
    parser.add_argument("--mqtt", action="store_true", help="Enable the MQTT report listener")
    parser.add_argument("--mqtt-host", help="MQTT broker host")
    parser.add_argument("--mqtt-port", type=int, help="MQTT broker port")
    parser.add_argument("--log-level", default="INFO", help="Logging level (default: INFO)")
    return parser.parse_args(argv)


def _build_config(args: argparse.Namespace) -> TrackerConfig:
    overrides: dict[str, Any] = {}
    if args.data_file:
        overrides["data_file"] = args.data_file
    if args.host:
        overrides["http_host"] = args.host
    if args.port is not None:
        overrides["http_port"] = args.port

    mqtt_overrides: dict[str, Any] = {}
    if args.mqtt:
        mqtt_overrides["enabled"] = True
    if args.mqtt_host:
        mqtt_overrides["host"] = args.mqtt_host
    if args.mqtt_port is not None:
        mqtt_overrides["port"] = args.mqtt_port
    if mqtt_overrides:
        overrides["mqtt"] = mqtt_overrides

    return TrackerConfig.from_env(**overrides)


async def serve(config: TrackerConfig) -> None:
    """Run tracker and HTTP API until SIGINT/SIGTERM."""
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(sig, stop.set)

    async with PresenceTracker(config) as tracker:
        runner = web.AppRunner(create_app(tracker))
        await runner.setup()
        try:
            site = web.TCPSite(runner, config.http_host, config.http_port)
            await site.start()
            _LOG.info("HTTP API listening on %s:%s", config.http_host, config.http_port)
            await stop.wait()
        finally:
            await runner.cleanup()
    _LOG.info("Tracker stopped")


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, str(args.log_level).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        config = _build_config(args)
    except PresenceConfigError as exc:
        _LOG.error("Invalid configuration: %s", exc)
        return 2
    asyncio.run(serve(config))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
