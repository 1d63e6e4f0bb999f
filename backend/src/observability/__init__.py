"""Observability module for RescueRanger.

Provides structured logging, request correlation, Prometheus metrics and
health checks. Health checks and the HTTP middleware are imported from their
modules directly.
"""

from .logging_config import configure_logging, get_logger
from .request_id import request_id_var, get_request_id, set_request_id, generate_request_id

__all__ = [
    # Logging
    "configure_logging",
    "get_logger",
    # Request ID
    "request_id_var",
    "get_request_id",
    "set_request_id",
    "generate_request_id",
]
