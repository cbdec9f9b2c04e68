"""
Structured logging configuration for clientauth.
"""

import logging
import sys
from contextvars import ContextVar
from typing import Any, Dict, Optional

import structlog

# Correlates every event of one login attempt (set by the web layer)
attempt_id_var: ContextVar[Optional[str]] = ContextVar("attempt_id", default=None)

# Never let these reach a log line, whatever a caller binds
_REDACTED_KEYS = {"secret", "sealed", "key", "token", "paseto", "secret_key"}


def configure_logging(service_name: str, log_level: str = "info") -> None:
    """Configure structured JSON logging for a service."""

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            _service_context(service_name),
            add_attempt_context,
            redact_secrets,
            structlog.processors.JSONRenderer(),
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper()),
    )


def _service_context(service_name: str):
    def add_service_context(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
        event_dict.setdefault("service", service_name)
        return event_dict

    return add_service_context


def add_attempt_context(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    attempt_id = attempt_id_var.get()
    if attempt_id:
        event_dict["attempt_id"] = attempt_id
    return event_dict


def redact_secrets(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    for k in _REDACTED_KEYS & set(event_dict):
        event_dict[k] = "<redacted>"
    return event_dict


def get_logger(name: str) -> structlog.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)
