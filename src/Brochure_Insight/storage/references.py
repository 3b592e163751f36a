"""Rewrite internal asset paths in delivered payloads to public references."""

from __future__ import annotations

import re
from collections.abc import Mapping
from typing import Any

import structlog

logger = structlog.get_logger(__name__)

_DRIVE_LETTER = re.compile(r"^[A-Za-z]:")
_LOCAL_SCHEMES = ("local://", "file://")


class AssetReferenceResolver:
    """Turns cache keys into externally resolvable URLs.

    A reference is delivered unchanged when it is already an ``https`` URL.
    Cache keys are joined onto the configured public base URL. Anything that
    cannot be resolved (insecure URLs, filesystem paths, or keys without a
    configured base URL) becomes an empty string so that no internal path
    leaks to the client.
    """

    def __init__(self, public_base_url: str | None) -> None:
        self._base_url = public_base_url.rstrip("/") if public_base_url else None

    def resolve(self, reference: str | None) -> str:
        if not reference:
            return ""
        if reference.startswith("https://"):
            return reference
        if reference.startswith("http://"):
            logger.warning("storage.reference.insecure", reference=reference)
            return ""
        if self._is_local_path(reference):
            logger.warning("storage.reference.local_path", reference=reference)
            return ""
        if self._base_url is None:
            logger.error(
                "storage.reference.unconfigured",
                reference=reference,
                hint="set BI_OBJECT_STORAGE__PUBLIC_BASE_URL",
            )
            return ""
        return f"{self._base_url}/{reference.lstrip('/')}"

    def resolve_payload(self, payload: Mapping[str, Any]) -> dict[str, Any]:
        """Return a copy of ``payload`` with every asset reference resolved."""
        resolved = dict(payload)
        if "media" in resolved:
            resolved["media"] = [value for value in map(self.resolve, resolved["media"] or []) if value]
        if "units" in resolved:
            units: list[dict[str, Any]] = []
            for unit in resolved["units"] or []:
                unit = dict(unit)
                if unit.get("floor_plan_image"):
                    unit["floor_plan_image"] = self.resolve(unit["floor_plan_image"]) or None
                units.append(unit)
            resolved["units"] = units
        return resolved

    @staticmethod
    def _is_local_path(reference: str) -> bool:
        return (
            "\\" in reference
            or bool(_DRIVE_LETTER.match(reference))
            or reference.startswith("/")
            or reference.startswith(_LOCAL_SCHEMES)
        )


__all__ = ["AssetReferenceResolver"]
