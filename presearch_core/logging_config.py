"""Structured logging setup for the search core.

``configure_logging()`` installs one structlog pipeline and routes the stdlib
root logger (aiohttp, asyncio) through the same processors, so every record
comes out as one JSON object, or as console lines when ``LOG_PRETTY=1``.

Secrets never reach a handler: API keys, ``Authorization`` values and the
node key embedded in node-status URLs are masked by :func:`redact_secrets`
before rendering.

Library modules only call ``structlog.get_logger(__name__)``; configuring is
left to the embedding application (or a test).
"""

from __future__ import annotations

import logging
import os
import re
from typing import Any, Dict, MutableMapping, Optional

import structlog

__all__ = [
    "configure_logging",
    "bind_request_context",
    "clear_request_context",
    "redact_secrets",
]

SERVICE_NAME = "presearch-core"
REDACTED = "***"

_SECRET_KEYS = frozenset({"api_key", "node_api_key", "authorization", "headers"})
_NODE_KEY_IN_PATH = re.compile(r"(/api/nodes/status/)[^/?#\s]+")
_NOISY_LOGGERS = ("aiohttp.access", "asyncio")

_configured = False


def redact_secrets(_logger: Any, _method: str, event_dict: MutableMapping[str, Any]) -> MutableMapping[str, Any]:
    """Mask credential fields and node keys carried in URL paths."""
    for key in list(event_dict):
        value = event_dict[key]
        if key.lower() in _SECRET_KEYS and value:
            event_dict[key] = REDACTED
        elif isinstance(value, str) and "/api/nodes/status/" in value:
            event_dict[key] = _NODE_KEY_IN_PATH.sub(r"\1" + REDACTED, value)
    return event_dict


def _add_service(_logger: Any, _method: str, event_dict: MutableMapping[str, Any]) -> MutableMapping[str, Any]:
    event_dict.setdefault("service", SERVICE_NAME)
    return event_dict


def _env_flag(name: str) -> bool:
    return os.getenv(name, "0").strip().lower() in {"1", "true", "yes"}


def configure_logging(
    level: Optional[str] = None,
    *,
    pretty: Optional[bool] = None,
    force: bool = False,
) -> None:
    """Install the structlog pipeline once per process.

    Args:
        level: Root level name; defaults to ``LOG_LEVEL`` (then ``INFO``)
        pretty: Console renderer instead of JSON; defaults to ``LOG_PRETTY``
        force: Reconfigure even if already configured (tests, scripts)
    """
    global _configured
    if _configured and not force:
        return

    level_name = (level or os.getenv("LOG_LEVEL") or "INFO").upper()
    use_console = _env_flag("LOG_PRETTY") if pretty is None else pretty
    renderer = (
        structlog.dev.ConsoleRenderer()
        if use_console
        else structlog.processors.JSONRenderer()
    )

    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        _add_service,
        structlog.processors.TimeStamper(fmt="iso"),
        redact_secrets,
    ]

    # Records from structlog arrive pre-processed; stdlib records get the shared chain
    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.processors.format_exc_info,
            renderer,
        ],
    )

    root_logger = logging.getLogger()
    for h in list(root_logger.handlers):
        root_logger.removeHandler(h)
    handler = logging.StreamHandler()
    handler.setFormatter(formatter)
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, level_name, logging.INFO))

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    structlog.configure(
        processors=[structlog.stdlib.filter_by_level]
        + shared_processors
        + [
            structlog.processors.StackInfoRenderer(),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
    _configured = True


def bind_request_context(
    request_id: Optional[str] = None,
    operation: Optional[str] = None,
    **extra: Any,
) -> None:
    """Bind correlation fields into structlog contextvars.

    Only provided keys are updated, so nested operations (search inside
    search-and-scrape) keep the outer request id unless they pass a new one.
    """
    payload: Dict[str, Any] = {k: v for k, v in extra.items() if v is not None}
    if request_id:
        payload["request_id"] = request_id
    if operation:
        payload["operation"] = operation
    if payload:
        structlog.contextvars.bind_contextvars(**payload)


def clear_request_context() -> None:
    structlog.contextvars.clear_contextvars()
