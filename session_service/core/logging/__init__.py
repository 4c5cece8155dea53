from session_service.core.logging.structured import (
    StructuredFormatter,
    aggregate_id_var,
    bind_aggregate_id,
    request_id_var,
    set_request_context,
    setup_structured_logging,
)

__all__ = [
    "StructuredFormatter",
    "aggregate_id_var",
    "bind_aggregate_id",
    "request_id_var",
    "set_request_context",
    "setup_structured_logging",
]
