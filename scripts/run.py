#!/usr/bin/env python3
"""Engine entrypoint — watches the given series and runs the alarm/job pollers.

Usage::

    # Run with default config
    python scripts/run.py --watch node1:mongodb:system/cpu:1h

    # Custom config file, several series, job polling and the read-model server
    python scripts/run.py --config config/settings.yaml \\
        --watch node1:mongodb:system/cpu:1h --watch node1:mongodb:system/disk:7d \\
        --jobs --dashboard

    # Override log level
    python scripts/run.py --log-level DEBUG
"""

from __future__ import annotations

import argparse
import asyncio
import signal
import sys

import structlog

from clusterwatch.core.config import load_settings
from clusterwatch.core.logging import setup_logging
from clusterwatch.core.types import SeriesKey
from clusterwatch.engine import create_engine
from clusterwatch.telemetry.growth import disk_remaining
from clusterwatch.telemetry.monitor import SeriesSpec

logger = structlog.get_logger(__name__)

WATCH_OWNER = "cli"


def parse_watch(value: str) -> SeriesSpec:
    """Parse ``entity:system:category:range`` into a SeriesSpec.

    The agent id follows the dashboard convention ``agent_<entity>``; the
    dataset name is ``<system>-<last category segment>``.
    """
    parts = value.split(":")
    if len(parts) != 4 or not all(parts):
        raise argparse.ArgumentTypeError(
            f"expected entity:system:category:range, got {value!r}"
        )
    entity, system, category, range_ = parts
    dataset = f"{system}-{category.rsplit('/', 1)[-1]}"
    return SeriesSpec(
        key=SeriesKey(entity=entity, dataset=dataset, range=range_),
        system=system,
        category=category,
        agent_id=f"agent_{entity}",
    )


async def run(args: argparse.Namespace) -> int:
    """Start the engine and run until interrupted."""
    settings = load_settings(args.config)
    setup_logging(level=args.log_level)

    if args.dashboard:
        settings.dashboard.enabled = True

    logger.info(
        "engine_starting",
        base_url=settings.api.base_url,
        series=len(args.watch),
        jobs=args.jobs,
        dashboard=settings.dashboard.enabled,
    )

    engine = create_engine(settings)
    await engine.start(watch_jobs=args.jobs)

    # ── Series ───────────────────────────────────────────────────
    for spec in args.watch:
        engine.series.watch(spec, owner=WATCH_OWNER)
        if spec.category.endswith("disk"):
            await engine.series.watch_capacity(spec.key, "used_disk", disk_remaining)

    if not args.watch and not args.jobs:
        logger.warning("no_series_watched")
        print(
            "No series watched; only alarms are polled. "
            "Pass --watch entity:system:category:range to add series.",
            file=sys.stderr,
        )

    await engine.start_dashboard()

    # ── Wait for shutdown signal ─────────────────────────────────
    stop_event = asyncio.Event()

    def _signal_handler() -> None:
        logger.info("shutdown_signal_received")
        stop_event.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _signal_handler)
        except NotImplementedError:
            # Windows: signal handlers not supported on ProactorEventLoop
            pass

    try:
        await stop_event.wait()
    except KeyboardInterrupt:
        logger.info("keyboard_interrupt")

    # ── Graceful shutdown ────────────────────────────────────────
    logger.info("engine_shutting_down")
    counts = engine.badge.counts
    await engine.close()

    logger.info(
        "engine_summary",
        alarms_surfaced=len(engine.alarms.surfaced),
        badge=counts.level,
        jobs_tracked=len(engine.reconciler.statuses()),
    )
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Run the clusterwatch telemetry and alerting engine.",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to settings YAML (default: config/settings.yaml)",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help="Log level override: DEBUG, INFO, WARNING, ERROR",
    )
    parser.add_argument(
        "--watch",
        action="append",
        default=[],
        type=parse_watch,
        metavar="ENTITY:SYSTEM:CATEGORY:RANGE",
        help="Series to poll, e.g. node1:mongodb:system/cpu:1h (repeatable)",
    )
    parser.add_argument(
        "--jobs",
        action="store_true",
        help="Poll the background job list",
    )
    parser.add_argument(
        "--dashboard",
        action="store_true",
        help="Serve read models over HTTP (overrides dashboard.enabled)",
    )
    args = parser.parse_args()

    code = asyncio.run(run(args))
    sys.exit(code)


if __name__ == "__main__":
    main()
