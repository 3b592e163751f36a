"""HTTP gateway exposing job submission, status, cancellation and progress streams."""

from __future__ import annotations

from .app import create_app
from .services import IntakeService, build_intake_service

__all__ = ["IntakeService", "build_intake_service", "create_app"]
