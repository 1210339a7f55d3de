"""structlog setup for the emulator.

Production renders one JSON object per event, development uses the console
renderer. Output goes to stderr so that CLI payloads on stdout stay
parseable. The tenant id is carried in contextvars once the
``set_tenant_context`` rpc (or a repository) binds it::

    {"event": "store.update", "level": "info", "tenant_id": "demo-tenant-001",
     "logger": "compliance_emulator.database.mutations", "table": "...",
     "timestamp": "2026-03-16T12:00:00.000000Z"}
"""

from __future__ import annotations

import logging
import sys

import structlog
from structlog.types import Processor

_PROCESSORS: list[Processor] = [
    structlog.contextvars.merge_contextvars,
    structlog.stdlib.add_log_level,
    structlog.stdlib.add_logger_name,
    structlog.processors.TimeStamper(fmt="iso", utc=True),
    structlog.processors.StackInfoRenderer(),
]


def _renderers(json_logs: bool) -> list[Processor]:
    if json_logs:
        return [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    return [structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())]


def configure_logging(*, json_logs: bool = False, log_level: str = "INFO") -> None:
    """(Re)configure structlog and the stdlib root logger.

    Safe to call more than once; the last call wins.
    """
    level = logging.getLevelName(log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO
    logging.basicConfig(format="%(message)s", stream=sys.stderr, level=level, force=True)

    structlog.configure(
        processors=[*_PROCESSORS, *_renderers(json_logs)],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=False,
    )


def bind_tenant_context(tenant_id: str) -> None:
    structlog.contextvars.bind_contextvars(tenant_id=str(tenant_id))


def clear_context() -> None:
    structlog.contextvars.clear_contextvars()
