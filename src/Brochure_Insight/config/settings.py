"""Configuration system for the brochure insight service."""

from __future__ import annotations

import os
from collections.abc import Mapping, Sequence
from enum import Enum
from functools import lru_cache
from typing import Any, Literal

from pydantic import BaseModel, Field, SecretStr, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(str, Enum):
    """Deployment environments supported by the service."""

    DEV = "dev"
    STAGING = "staging"
    PROD = "prod"


class TelemetrySettings(BaseModel):
    """Configuration block for OpenTelemetry export."""

    enabled: bool = Field(default=False, description="Install a tracer provider at startup")
    exporter: str = Field(default="console", description="Target exporter type")
    endpoint: str | None = Field(default=None, description="Exporter endpoint")
    sample_ratio: float = Field(default=0.1, ge=0.0, le=1.0)


class LoggingSettings(BaseModel):
    """Structured logging configuration."""

    level: str = Field(default="INFO", description="Log level for application output")
    scrub_fields: Sequence[str] = Field(
        default_factory=lambda: ["password", "token", "secret", "authorization", "api_key"],
        description="Fields that should be redacted in logs",
    )


class MetricsSettings(BaseModel):
    """Prometheus metrics configuration."""

    enabled: bool = True
    path: str = Field(default="/metrics", description="HTTP path for Prometheus metrics")


class ObservabilitySettings(BaseModel):
    """Aggregate observability configuration."""

    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    metrics: MetricsSettings = Field(default_factory=MetricsSettings)


class ObjectStorageSettings(BaseModel):
    """Object storage backing the content-addressed asset cache."""

    backend: Literal["memory", "s3"] = Field(default="memory", description="Storage backend")
    bucket: str = Field(default="brochure-assets", description="Bucket for derived page images")
    region: str | None = Field(default=None, description="Region (leave blank for S3-compatible stores)")
    endpoint_url: str | None = Field(default=None, description="Custom S3 endpoint (R2, MinIO)")
    access_key_id: str | None = Field(default=None, description="Access key ID")
    secret_access_key: SecretStr | None = Field(default=None, description="Secret access key")
    key_prefix: str = Field(default="pdf-cache", description="Key prefix for cached assets")
    public_base_url: str | None = Field(
        default=None,
        description="Public URL that cache keys are joined onto when building asset references",
    )
    write_attempts: int = Field(default=3, ge=1, description="Attempts per object write")


class PipelineSettings(BaseModel):
    """Extraction pipeline tuning."""

    max_retries: int = Field(default=2, ge=0, description="Quality gate retry cap")
    pages_per_chunk: int = Field(default=5, ge=1, description="Pages rasterized per chunk")
    batch_size: int = Field(default=10, ge=1, description="Concurrent page tasks per batch")
    batch_delay_ms: int = Field(default=1000, ge=0, description="Pause between batches")
    page_timeout_seconds: float | None = Field(
        default=120.0, gt=0, description="Per-page extraction timeout"
    )
    quality_threshold: float = Field(default=60.0, ge=0.0, le=100.0)
    max_failed_page_ratio: float = Field(default=0.5, ge=0.0, le=1.0)
    max_transitions: int = Field(default=64, ge=1, description="Stage transition limit per job")


class ProgressSettings(BaseModel):
    """Progress channel behaviour."""

    replay_last_event: bool = Field(
        default=False, description="Deliver the most recent event to a newly registered subscriber"
    )
    heartbeat_seconds: float = Field(default=15.0, gt=0, description="SSE keep-alive interval")


class ModelServiceSettings(BaseModel):
    """Model gateway used for page extraction and insight generation."""

    base_url: str = Field(default="http://model-gateway:8080", description="Gateway base URL")
    api_key: SecretStr | None = Field(default=None, description="Bearer token for the gateway")
    timeout_seconds: float = Field(default=60.0, gt=0)
    retry_attempts: int = Field(default=3, ge=1)
    extraction_model: str = Field(default="vision-extractor")
    insight_model: str = Field(default="insight-writer")


class UploadSettings(BaseModel):
    """Submission limits."""

    max_files: int = Field(default=5, ge=1)
    max_bytes: int = Field(default=100 * 1024 * 1024, ge=1, description="Maximum bytes per file")


class AppSettings(BaseSettings):
    """Top-level application settings."""

    environment: Environment = Environment.DEV
    debug: bool = False
    service_name: str = "brochure-insight"
    telemetry: TelemetrySettings = Field(default_factory=TelemetrySettings)
    observability: ObservabilitySettings = Field(default_factory=ObservabilitySettings)
    object_storage: ObjectStorageSettings = Field(default_factory=ObjectStorageSettings)
    pipeline: PipelineSettings = Field(default_factory=PipelineSettings)
    progress: ProgressSettings = Field(default_factory=ProgressSettings)
    model_service: ModelServiceSettings = Field(default_factory=ModelServiceSettings)
    uploads: UploadSettings = Field(default_factory=UploadSettings)

    model_config = SettingsConfigDict(env_prefix="BI_", env_nested_delimiter="__")


ENVIRONMENT_DEFAULTS: Mapping[Environment, dict[str, Any]] = {
    Environment.DEV: {
        "debug": True,
        "telemetry": {"exporter": "console"},
        "object_storage": {"backend": "memory"},
    },
    Environment.STAGING: {
        "telemetry": {"enabled": True, "exporter": "otlp", "sample_ratio": 0.25},
        "object_storage": {"backend": "s3"},
    },
    Environment.PROD: {
        "telemetry": {"enabled": True, "exporter": "otlp", "sample_ratio": 0.05},
        "object_storage": {"backend": "s3"},
    },
}


def _deep_update(base: dict[str, Any], updates: Mapping[str, Any]) -> dict[str, Any]:
    result = dict(base)
    for key, value in updates.items():
        if isinstance(value, Mapping) and isinstance(result.get(key), Mapping):
            result[key] = _deep_update(dict(result[key]), value)
        else:
            result[key] = value
    return result


def load_settings(environment: str | None = None) -> AppSettings:
    """Load application settings with environment specific defaults applied.

    Environment defaults sit underneath explicitly configured values, so a
    ``BI_OBJECT_STORAGE__BACKEND=memory`` override still wins in staging.
    """
    env_value = (environment or os.getenv("BI_ENV", "dev")).lower()
    env = Environment(env_value)
    defaults = ENVIRONMENT_DEFAULTS.get(env, {})
    try:
        base_settings = AppSettings()
    except ValidationError as err:
        raise RuntimeError(f"Invalid configuration: {err}") from err
    explicit = base_settings.model_dump(exclude_unset=True)
    merged = _deep_update(_deep_update(base_settings.model_dump(), defaults), explicit)
    merged["environment"] = env
    return AppSettings.model_validate(merged)


@lru_cache(maxsize=1)
def get_settings() -> AppSettings:
    """Cached accessor used by production code."""
    return load_settings()


__all__ = [
    "AppSettings",
    "Environment",
    "LoggingSettings",
    "MetricsSettings",
    "ModelServiceSettings",
    "ObjectStorageSettings",
    "ObservabilitySettings",
    "PipelineSettings",
    "ProgressSettings",
    "TelemetrySettings",
    "UploadSettings",
    "get_settings",
    "load_settings",
]
