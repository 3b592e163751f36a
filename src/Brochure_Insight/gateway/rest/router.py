"""REST endpoints for submitting, inspecting and cancelling jobs."""

from __future__ import annotations

from typing import Annotated

import structlog
from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile, status

from Brochure_Insight.utils.errors import ProblemDetail

from ..models import CancelJobResponse, JobStatusResponse, SubmitJobResponse
from ..services import IntakeService, get_intake_service

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/v1", tags=["jobs"])

PDF_CONTENT_TYPES = frozenset({"application/pdf", "application/x-pdf"})


def _problem(status_code: int, title: str, detail: str | None = None) -> HTTPException:
    problem = ProblemDetail(title=title, status=status_code, detail=detail)
    return HTTPException(status_code=status_code, detail=problem.model_dump())


def _is_pdf(upload: UploadFile) -> bool:
    filename = (upload.filename or "").lower()
    return upload.content_type in PDF_CONTENT_TYPES or filename.endswith(".pdf")


@router.post("/jobs", response_model=SubmitJobResponse, status_code=status.HTTP_202_ACCEPTED)
async def submit_job(
    files: Annotated[list[UploadFile], File(description="PDF documents to process")],
    pages_per_chunk: Annotated[int | None, Form(ge=1)] = None,
    batch_size: Annotated[int | None, Form(ge=1)] = None,
    batch_delay_ms: Annotated[int | None, Form(ge=0)] = None,
    service: IntakeService = Depends(get_intake_service),
) -> SubmitJobResponse:
    limits = service.settings.uploads
    if not files:
        raise _problem(status.HTTP_400_BAD_REQUEST, "No documents submitted")
    if len(files) > limits.max_files:
        raise _problem(
            status.HTTP_400_BAD_REQUEST,
            "Too many documents",
            f"At most {limits.max_files} files per job",
        )
    documents: list[tuple[str, bytes]] = []
    for upload in files:
        name = upload.filename or f"document-{len(documents) + 1}.pdf"
        if not _is_pdf(upload):
            raise _problem(status.HTTP_400_BAD_REQUEST, "Unsupported document type", f"'{name}' is not a PDF")
        data = await upload.read()
        if not data:
            raise _problem(status.HTTP_400_BAD_REQUEST, "Empty document", f"'{name}' is empty")
        if len(data) > limits.max_bytes:
            raise _problem(
                status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
                "Document too large",
                f"'{name}' exceeds {limits.max_bytes} bytes",
            )
        documents.append((name, data))

    job_id = service.submit(
        documents,
        pages_per_chunk=pages_per_chunk,
        batch_size=batch_size,
        batch_delay_ms=batch_delay_ms,
    )
    return SubmitJobResponse(
        job_id=job_id,
        documents=len(documents),
        stream_url=f"/v1/jobs/{job_id}/events",
        status_url=f"/v1/jobs/{job_id}/status",
    )


@router.get("/jobs/{job_id}/status", response_model=JobStatusResponse)
async def job_status(
    job_id: str,
    service: IntakeService = Depends(get_intake_service),
) -> JobStatusResponse:
    return JobStatusResponse(job_id=job_id, is_active=service.is_active(job_id))


@router.post(
    "/jobs/{job_id}/cancel",
    response_model=CancelJobResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def cancel_job(
    job_id: str,
    service: IntakeService = Depends(get_intake_service),
) -> CancelJobResponse:
    if not service.cancel(job_id):
        raise _problem(status.HTTP_404_NOT_FOUND, "Job not found", f"No active job '{job_id}'")
    return CancelJobResponse(job_id=job_id, cancelled=True)


__all__ = ["router"]
