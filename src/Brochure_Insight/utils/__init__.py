"""Shared utilities for logging and error reporting."""

from __future__ import annotations

from .errors import FoundationError, ProblemDetail
from .logging import (
    bind_correlation_id,
    configure_logging,
    configure_tracing,
    reset_correlation_id,
)

__all__ = [
    "FoundationError",
    "ProblemDetail",
    "bind_correlation_id",
    "configure_logging",
    "configure_tracing",
    "reset_correlation_id",
]
