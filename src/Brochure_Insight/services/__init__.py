"""Adapters for external collaborators: rasterizer and model gateway."""

from __future__ import annotations

from .extraction import GatewayPageExtractor
from .insight import GatewayInsightProvider
from .model_client import ModelGatewayClient, ModelServiceError
from .rasterizer import PyMuPDFRasterizer

__all__ = [
    "GatewayInsightProvider",
    "GatewayPageExtractor",
    "ModelGatewayClient",
    "ModelServiceError",
    "PyMuPDFRasterizer",
]
