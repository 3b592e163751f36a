"""RFC 7807 problem details shared by the job routes and the pipeline errors."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import asdict, dataclass, field
from typing import Any, ClassVar

PROBLEM_TYPE_PREFIX = "urn:brochure-insight:"


@dataclass(slots=True)
class ProblemDetail:
    title: str
    status: int
    detail: str | None = None
    type: str = "about:blank"
    extra: Mapping[str, Any] = field(default_factory=dict)

    def model_dump(self) -> dict[str, Any]:
        """Dictionary form with unset ``detail`` and empty ``extra`` left out."""
        payload = {key: value for key, value in asdict(self).items() if value is not None}
        if not payload.get("extra"):
            payload.pop("extra", None)
        return payload


class FoundationError(RuntimeError):
    """Exception carrying a :class:`ProblemDetail` typed by ``problem_type``.

    Subclasses set ``problem_type``; the detail's ``type`` becomes
    ``urn:brochure-insight:<problem_type>``.
    """

    problem_type: ClassVar[str | None] = None

    def __init__(
        self,
        message: str,
        *,
        status: int = 500,
        detail: str | None = None,
        extra: Mapping[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.problem = ProblemDetail(
            title=message,
            status=status,
            detail=detail,
            type=f"{PROBLEM_TYPE_PREFIX}{self.problem_type}" if self.problem_type else "about:blank",
            extra=dict(extra or {}),
        )


__all__ = ["FoundationError", "PROBLEM_TYPE_PREFIX", "ProblemDetail"]
