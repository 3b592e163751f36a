"""Request and response models for the gateway."""

from __future__ import annotations

from pydantic import BaseModel, Field


class SubmitJobResponse(BaseModel):
    job_id: str
    documents: int = Field(ge=1)
    stream_url: str
    status_url: str


class JobStatusResponse(BaseModel):
    job_id: str
    is_active: bool


class CancelJobResponse(BaseModel):
    job_id: str
    cancelled: bool


__all__ = ["CancelJobResponse", "JobStatusResponse", "SubmitJobResponse"]
