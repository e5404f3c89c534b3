from __future__ import annotations

"""
Logging for permaweb-storage.

Package modules log structured events through a module-level logger::

    log = get_logger(__name__)
    log.info("tarball.uploaded", package="lodash", size=1024)

``get_logger`` hands out lazy proxies: nothing is resolved until the first
event, so a ``setup_logging`` call made after import (the CLI callback, a
host's startup hook) governs every package logger.

``setup_logging`` is meant for standalone processes. It sends structlog events
and stdlib records (httpx, httpcore) through one stderr handler, so stdout
stays free for command output, and picks level and renderer from
:class:`~permaweb_storage.config.Settings`. Rendering happens in the handler,
not in the logger chain, so calling it again switches the format of loggers
that were already used.

Fields named like JWK members or secrets are masked before any renderer sees
them.
"""

import logging
import sys
from typing import Any, Dict, List, Optional, Union

import structlog

from .config import Settings, get_settings
from .version import APP_NAME

MASKED = "***"
SENSITIVE_FIELDS = frozenset(
    {"jwk", "secret", "private_key", "d", "p", "q", "dp", "dq", "qi", "authorization", "token"}
)
# Client libraries stay at WARNING; gateway traffic is logged by the adapter itself.
QUIET_LIBRARIES = ("httpx", "httpcore")


def mask_key_material(_logger: Any, _method: str, event: Dict[str, Any]) -> Dict[str, Any]:
    for key in [k for k, v in event.items() if v is not None and k.lower() in SENSITIVE_FIELDS]:
        event[key] = MASKED
    return event


def _pre_chain(service_name: str, render_tracebacks: bool) -> List[Any]:
    def add_service(_logger: Any, _method: str, event: Dict[str, Any]) -> Dict[str, Any]:
        event.setdefault("service", service_name)
        return event

    chain: List[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        add_service,
        mask_key_material,
    ]
    if render_tracebacks:
        chain.append(structlog.processors.format_exc_info)
    return chain


def _renderer(log_format: str) -> Any:
    if log_format == "json":
        return structlog.processors.JSONRenderer(sort_keys=True)
    return structlog.dev.ConsoleRenderer(colors=False)


def setup_logging(
    settings: Optional[Settings] = None,
    *,
    level: Optional[Union[str, int]] = None,
    log_format: Optional[str] = None,
    service_name: str = APP_NAME,
) -> None:
    """
    Route structlog and stdlib logging to stderr.

    ``level`` and ``log_format`` override ``settings.log_level`` and
    ``settings.log_format``. A repeated call replaces the previous handler.
    """
    settings = settings or get_settings()
    fmt = (log_format or settings.log_format).lower()
    threshold = level or settings.log_level
    if isinstance(threshold, str):
        threshold = threshold.upper()

    pre_chain = _pre_chain(service_name, render_tracebacks=fmt == "json")
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            *pre_chain,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=pre_chain,
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, _renderer(fmt)],
        )
    )
    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(threshold)
    for name in QUIET_LIBRARIES:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: Optional[str] = None) -> structlog.stdlib.BoundLogger:
    """Lazy logger; ``name`` becomes the stdlib logger name once logging is set up."""
    return structlog.get_logger(name) if name else structlog.get_logger()


def bind_package_context(**kv: Any) -> None:
    """Attach package/file to every event emitted from the current context."""
    structlog.contextvars.bind_contextvars(**kv)


def clear_package_context(*keys: str) -> None:
    if keys:
        structlog.contextvars.unbind_contextvars(*keys)
    else:
        structlog.contextvars.clear_contextvars()


__all__ = [
    "setup_logging",
    "get_logger",
    "mask_key_material",
    "bind_package_context",
    "clear_package_context",
]
