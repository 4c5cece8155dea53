"""Structured logging configuration.

Features:
- JSON formatted logs for aggregation
- Request correlation IDs
- Aggregate id tagging for write-side operations
"""

from __future__ import annotations

import json
import logging
import sys
import traceback
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, Optional

request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)
aggregate_id_var: ContextVar[Optional[str]] = ContextVar("aggregate_id", default=None)

# Attributes passed through ``extra=`` that are copied into the JSON entry
_EXTRA_FIELDS = (
    "event_type",
    "aggregate_type",
    "class_id",
    "create_status",
    "update_status",
    "verifier",
    "is_valid",
    "events_committed",
    "lock_key",
    "fencing_token",
    "pattern",
    "payload",
    "queues",
)


class StructuredFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def __init__(
        self,
        service_name: str = "class-session-service",
        environment: str = "production",
        include_stack_trace: bool = True,
    ):
        super().__init__()
        self.service_name = service_name
        self.environment = environment
        self.include_stack_trace = include_stack_trace

    def format(self, record: logging.LogRecord) -> str:
        log_entry: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "service": self.service_name,
            "environment": self.environment,
        }

        if request_id := request_id_var.get():
            log_entry["request_id"] = request_id
        if aggregate_id := aggregate_id_var.get():
            log_entry["aggregate_id"] = aggregate_id

        for attr in _EXTRA_FIELDS:
            if hasattr(record, attr):
                log_entry[attr] = getattr(record, attr)

        if record.exc_info and self.include_stack_trace:
            log_entry["exception"] = {
                "type": record.exc_info[0].__name__ if record.exc_info[0] else None,
                "message": str(record.exc_info[1]) if record.exc_info[1] else None,
                "stacktrace": traceback.format_exception(*record.exc_info),
            }

        return json.dumps(log_entry, default=str)


def setup_structured_logging(
    service_name: str = "class-session-service",
    environment: str = "production",
    level: int | str = logging.INFO,
    json_output: bool = True,
) -> None:
    """Configure structured logging for the application."""
    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)

    if json_output:
        formatter: logging.Formatter = StructuredFormatter(
            service_name=service_name,
            environment=environment,
        )
    else:
        formatter = logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        )

    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)


def set_request_context(request_id: Optional[str] = None) -> str:
    """Set request context for logging."""
    req_id = request_id or str(uuid.uuid4())
    request_id_var.set(req_id)
    return req_id


@contextmanager
def bind_aggregate_id(aggregate_id: str) -> Iterator[None]:
    """Tag log records emitted inside the block with an aggregate id."""
    token = aggregate_id_var.set(aggregate_id)
    try:
        yield
    finally:
        aggregate_id_var.reset(token)
