"""Structured logging setup.

Everything goes through structlog and ends in one stderr handler on the
root stdlib logger, so library logs (httpx, aiohttp) share the format.
"""

from __future__ import annotations

import logging
import sys
from collections.abc import Sequence

import structlog

from clusterwatch.core.config import get_settings


def _renderer(fmt: str) -> structlog.types.Processor:
    if fmt == "json":
        return structlog.processors.JSONRenderer()
    if fmt == "console":
        return structlog.dev.ConsoleRenderer()
    raise ValueError(f"unknown log format {fmt!r}; expected 'json' or 'console'")


def setup_logging(
    level: str | None = None,
    fmt: str | None = None,
    quiet: Sequence[str] | None = None,
) -> None:
    """Configure structlog and the root logger.

    Args:
        level: Log level override (e.g. "DEBUG"). Uses config if None.
        fmt: "json" or "console". Uses config if None.
        quiet: Loggers held at WARNING or above. Uses
            ``logging.quiet_loggers`` from config if None.
    """
    cfg = get_settings().logging
    log_level = logging.getLevelNamesMapping().get((level or cfg.level).upper(), logging.INFO)

    pre_chain: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    structlog.configure(
        processors=[*pre_chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=pre_chain,
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                _renderer(fmt or cfg.format),
            ],
        )
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(log_level)

    # Poll traffic is logged per request by httpx at INFO.
    for name in cfg.quiet_loggers if quiet is None else quiet:
        logging.getLogger(name).setLevel(max(log_level, logging.WARNING))
