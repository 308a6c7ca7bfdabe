"""Structured logging for refresh-guard processes.

Library modules log through ``logging.getLogger(__name__)``. ``setup_logging``
routes those records through structlog so every line carries the service
name, the process id and any context bound with
``structlog.contextvars.bound_contextvars`` (the refresh coordinator binds
``dataset`` and ``lock_key``). Several processes usually share one log sink,
which is why the pid is always present.
"""

from __future__ import annotations

import logging
import os
import sys
from typing import TYPE_CHECKING, Any

import structlog

if TYPE_CHECKING:
    from refresh_guard.core.config import ObservabilityConfig

# Third-party loggers that are noisy below INFO.
_CHATTY_LOGGERS = ("botocore", "boto3", "urllib3")


def _static_fields(service_name: str) -> structlog.types.Processor:
    pid = os.getpid()

    def add_static_fields(_logger: Any, _method: str, event_dict: dict[str, Any]) -> dict[str, Any]:
        event_dict.setdefault("service", service_name)
        event_dict.setdefault("pid", pid)
        return event_dict

    return add_static_fields


def _use_json(config: ObservabilityConfig) -> bool:
    if config.json_logs is not None:
        return config.json_logs
    return not sys.stderr.isatty()


def setup_logging(config: ObservabilityConfig) -> None:
    """Configure structlog and the root logger for the whole process."""
    level = getattr(logging, config.log_level.upper(), logging.INFO)

    pre_chain: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        _static_fields(config.service_name),
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]
    if _use_json(config):
        # The console renderer formats tracebacks itself.
        pre_chain.append(structlog.processors.format_exc_info)
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[*pre_chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    # foreign_pre_chain enriches stdlib records, which is all this package emits.
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=pre_chain,
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
        )
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    logging.getLogger("refresh_guard").setLevel(level)
    for name in _CHATTY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.INFO))
