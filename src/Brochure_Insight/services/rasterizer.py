"""PyMuPDF page renderer used by the ingestion stage."""

from __future__ import annotations

import asyncio

import fitz  # PyMuPDF
import structlog

logger = structlog.get_logger(__name__)


class PyMuPDFRasterizer:
    """Renders PDF pages to PNG at a fixed DPI, off the event loop."""

    def __init__(self, *, dpi: int = 150) -> None:
        self._zoom = dpi / 72.0

    async def page_count(self, data: bytes) -> int:
        return await asyncio.to_thread(self._count, data)

    async def render(self, data: bytes, start: int, stop: int) -> list[bytes]:
        return await asyncio.to_thread(self._render, data, start, stop)

    @staticmethod
    def _count(data: bytes) -> int:
        with fitz.open(stream=data, filetype="pdf") as document:
            return document.page_count

    def _render(self, data: bytes, start: int, stop: int) -> list[bytes]:
        matrix = fitz.Matrix(self._zoom, self._zoom)
        images: list[bytes] = []
        with fitz.open(stream=data, filetype="pdf") as document:
            for number in range(start, min(stop, document.page_count)):
                pixmap = document[number].get_pixmap(matrix=matrix)
                images.append(pixmap.tobytes("png"))
        logger.debug("rasterizer.rendered", start=start, stop=stop, images=len(images))
        return images


__all__ = ["PyMuPDFRasterizer"]
