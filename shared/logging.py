"""
Structured logging for the Budget Ledger API.

Every event carries the service name plus whatever request correlation is
bound in the current context: request id, authenticated user and, on
budget-scoped routes, the budget id.
"""

import logging
import sys
import uuid
from contextvars import ContextVar
from typing import Any, Callable, Dict, Optional

import structlog

request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)
user_id_var: ContextVar[Optional[str]] = ContextVar("user_id", default=None)
budget_id_var: ContextVar[Optional[str]] = ContextVar("budget_id", default=None)

CORRELATION_VARS = {
    "request_id": request_id_var,
    "user_id": user_id_var,
    "budget_id": budget_id_var,
}

Processor = Callable[[Any, str, Dict[str, Any]], Dict[str, Any]]


def configure_logging(service_name: str, log_level: str = "info", json_logs: bool = True) -> None:
    """Configure structlog and the stdlib root logger for a service.

    ``json_logs=False`` switches to the human-readable console renderer.
    """
    renderer = structlog.processors.JSONRenderer() if json_logs else structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            service_context(service_name),
            add_correlation_context,
            renderer,
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


def service_context(service_name: str) -> Processor:
    """Build a processor stamping ``service`` onto every event."""

    def add_service(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
        event_dict.setdefault("service", service_name)
        return event_dict

    return add_service


def add_correlation_context(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Copy bound correlation ids into the event; explicit keys win."""
    for key, var in CORRELATION_VARS.items():
        value = var.get()
        if value and key not in event_dict:
            event_dict[key] = value
    return event_dict


def set_request_id(request_id: Optional[str] = None) -> str:
    """Bind a request id, generating one when the caller sent none."""
    request_id = request_id or str(uuid.uuid4())
    request_id_var.set(request_id)
    return request_id


def set_user_context(user_id: Optional[str] = None):
    if user_id:
        user_id_var.set(user_id)


def set_budget_context(budget_id: Optional[str] = None):
    if budget_id:
        budget_id_var.set(budget_id)


def clear_context():
    """Unbind all correlation ids."""
    for var in CORRELATION_VARS.values():
        var.set(None)


def get_logger(name: str) -> structlog.BoundLogger:
    return structlog.get_logger(name)
