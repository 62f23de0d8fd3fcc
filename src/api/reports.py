"""FastAPI report lifecycle endpoints.

GET    /v1/reports                     - list visible reports
POST   /v1/reports                     - create draft (returns upload target)
GET    /v1/reports/{report_id}         - report + validation history
PUT    /v1/reports/{report_id}/file    - upload the draft's file
DELETE /v1/reports/{report_id}         - delete a draft
POST   /v1/reports/{report_id}/submit  - submit for validation (202)
POST   /v1/reports/{report_id}/dispute - internal dispute of validation errors
POST   /v1/reports/{report_id}/reopen  - back to DRAFT after a failed attempt

Lifecycle errors are mapped to HTTP statuses by the app-level handler.
Submit and delete commit before returning; their side effects (queueing
validation, removing the stored file) run only after that commit.
"""

from uuid import UUID

from fastapi import APIRouter, Depends, File, Query, Response, UploadFile
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from src.api.dependencies import get_current_actor, get_lifecycle_manager
from src.db.session import commit_unit_of_work, get_async_session
from src.models.report import (
    FileDescriptor,
    Report,
    ReportStatus,
    ValidationAttempt,
    ValidationAttemptStatus,
)
from src.reporting.access import Actor
from src.reporting.lifecycle import ReportLifecycleManager
from src.reporting.store import ReportQuery

router = APIRouter(prefix="/v1/reports", tags=["reports"])


# ---------------------------------------------------------------------------
# Request / Response schemas
# ---------------------------------------------------------------------------


class CreateReportRequest(BaseModel):
    subject_id: int
    period: str
    register_code: str = Field(alias="register")
    file_name: str
    original_name: str | None = None
    content_type: str = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
    size_bytes: int
    corrects_report_id: UUID | None = None


class UploadTargetResponse(BaseModel):
    storage_key: str
    method: str
    url: str


class CreateReportResponse(BaseModel):
    id: str
    status: ReportStatus
    upload: UploadTargetResponse


class ReportResponse(BaseModel):
    id: str
    subject_id: int
    period: str
    register_code: str = Field(alias="register")
    file: FileDescriptor
    status: ReportStatus
    corrects_report_id: str | None = None
    created_by: str
    version: int
    created_at: str
    updated_at: str

    @classmethod
    def from_report(cls, report: Report) -> "ReportResponse":
        return cls(
            id=str(report.report_id),
            subject_id=report.subject_id,
            period=report.period,
            register=report.register_code,
            file=report.file,
            status=report.status,
            corrects_report_id=(
                str(report.corrects_report_id) if report.corrects_report_id else None
            ),
            created_by=str(report.created_by),
            version=report.version,
            created_at=report.created_at.isoformat(),
            updated_at=report.updated_at.isoformat(),
        )


class ValidationAttemptResponse(BaseModel):
    id: str
    status: ValidationAttemptStatus
    outcome: str | None = None
    errors: list[dict] = Field(default_factory=list)
    error_message: str | None = None
    created_at: str
    deadline_at: str
    completed_at: str | None = None

    @classmethod
    def from_attempt(cls, attempt: ValidationAttempt) -> "ValidationAttemptResponse":
        return cls(
            id=str(attempt.attempt_id),
            status=attempt.status,
            outcome=attempt.outcome.value if attempt.outcome else None,
            errors=[e.model_dump() for e in attempt.errors],
            error_message=attempt.error_message,
            created_at=attempt.created_at.isoformat(),
            deadline_at=attempt.deadline_at.isoformat(),
            completed_at=attempt.completed_at.isoformat() if attempt.completed_at else None,
        )


class ReportDetailResponse(ReportResponse):
    validations: list[ValidationAttemptResponse] = Field(default_factory=list)


class ReportListResponse(BaseModel):
    items: list[ReportResponse]
    total: int
    page: int
    page_size: int


class UploadFileResponse(BaseModel):
    id: str
    storage_key: str
    hash_sha256: str


class SubmitResponse(BaseModel):
    validation_id: str
    status: ReportStatus
    deadline_at: str


class DisputeRequest(BaseModel):
    reason: str


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@router.get("", response_model=ReportListResponse)
async def list_reports(
    status: ReportStatus | None = Query(default=None),
    period: str | None = Query(default=None),
    subject_id: int | None = Query(default=None),
    register: str | None = Query(default=None),
    page: int = Query(default=1),
    page_size: int = Query(default=20),
    sort_by: str = Query(default="created_at"),
    sort_order: str = Query(default="desc"),
    actor: Actor = Depends(get_current_actor),
    manager: ReportLifecycleManager = Depends(get_lifecycle_manager),
) -> ReportListResponse:
    reports, total = await manager.list_reports(actor, ReportQuery(
        status=status, period=period, subject_id=subject_id, register=register,
        page=page, page_size=page_size, sort_by=sort_by, sort_order=sort_order,
    ))
    return ReportListResponse(
        items=[ReportResponse.from_report(r) for r in reports],
        total=total, page=page, page_size=page_size,
    )


@router.post("", status_code=201, response_model=CreateReportResponse)
async def create_report(
    body: CreateReportRequest,
    actor: Actor = Depends(get_current_actor),
    manager: ReportLifecycleManager = Depends(get_lifecycle_manager),
) -> CreateReportResponse:
    """Register a draft. The client then PUTs the file to ``upload.url``."""
    created = await manager.create_draft(
        subject_id=body.subject_id,
        period=body.period,
        register=body.register_code,
        file_name=body.file_name,
        original_name=body.original_name or body.file_name,
        content_type=body.content_type,
        size_bytes=body.size_bytes,
        actor=actor,
        corrects_report_id=body.corrects_report_id,
    )
    return CreateReportResponse(
        id=str(created.report.report_id),
        status=created.report.status,
        upload=UploadTargetResponse(
            storage_key=created.upload.storage_key,
            method=created.upload.method,
            url=created.upload.url,
        ),
    )


@router.get("/{report_id}", response_model=ReportDetailResponse)
async def get_report(
    report_id: UUID,
    actor: Actor = Depends(get_current_actor),
    manager: ReportLifecycleManager = Depends(get_lifecycle_manager),
) -> ReportDetailResponse:
    report = await manager.get_report(report_id, actor)
    attempts = await manager.list_validation_attempts(report_id, actor)
    base = ReportResponse.from_report(report)
    return ReportDetailResponse(
        **base.model_dump(by_alias=True),
        validations=[ValidationAttemptResponse.from_attempt(a) for a in attempts],
    )


@router.put("/{report_id}/file", response_model=UploadFileResponse)
async def upload_report_file(
    report_id: UUID,
    file: UploadFile = File(...),
    actor: Actor = Depends(get_current_actor),
    manager: ReportLifecycleManager = Depends(get_lifecycle_manager),
) -> UploadFileResponse:
    content = await file.read()
    digest = await manager.upload_file(report_id, actor, content)
    report = await manager.get_report(report_id, actor)
    return UploadFileResponse(
        id=str(report_id), storage_key=report.file.storage_key, hash_sha256=digest,
    )


@router.delete("/{report_id}", status_code=204)
async def delete_report(
    report_id: UUID,
    actor: Actor = Depends(get_current_actor),
    manager: ReportLifecycleManager = Depends(get_lifecycle_manager),
    session: AsyncSession = Depends(get_async_session),
) -> Response:
    await manager.delete(report_id, actor)
    await commit_unit_of_work(session)
    return Response(status_code=204)


@router.post("/{report_id}/submit", status_code=202, response_model=SubmitResponse)
async def submit_report(
    report_id: UUID,
    actor: Actor = Depends(get_current_actor),
    manager: ReportLifecycleManager = Depends(get_lifecycle_manager),
    session: AsyncSession = Depends(get_async_session),
) -> SubmitResponse:
    """Accept the draft for validation. The outcome arrives asynchronously.

    Commits before returning so the queued validation job sees the attempt.
    """
    attempt = await manager.submit(report_id, actor)
    await commit_unit_of_work(session)
    return SubmitResponse(
        validation_id=str(attempt.attempt_id),
        status=ReportStatus.PROCESSING,
        deadline_at=attempt.deadline_at.isoformat(),
    )


@router.post("/{report_id}/dispute", response_model=ReportResponse)
async def dispute_report(
    report_id: UUID,
    body: DisputeRequest,
    actor: Actor = Depends(get_current_actor),
    manager: ReportLifecycleManager = Depends(get_lifecycle_manager),
) -> ReportResponse:
    report = await manager.dispute(report_id, actor, body.reason)
    return ReportResponse.from_report(report)


@router.post("/{report_id}/reopen", response_model=ReportResponse)
async def reopen_report(
    report_id: UUID,
    actor: Actor = Depends(get_current_actor),
    manager: ReportLifecycleManager = Depends(get_lifecycle_manager),
) -> ReportResponse:
    report = await manager.reopen(report_id, actor)
    return ReportResponse.from_report(report)
