"""FastAPI validation callback for external runners.

POST /v1/validations/{attempt_id}/outcome - report the result of one attempt

The first outcome for an attempt wins; later calls (or calls after the
timeout sweep) get 409.
"""

from uuid import UUID

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from src.api.dependencies import get_current_actor, get_lifecycle_manager
from src.api.reports import ReportResponse
from src.models.common import Permission
from src.models.report import ValidationErrorItem, ValidationOutcome
from src.reporting.access import Actor
from src.reporting.errors import AccessDeniedError
from src.reporting.lifecycle import ReportLifecycleManager

router = APIRouter(prefix="/v1/validations", tags=["validations"])


class OutcomeRequest(BaseModel):
    outcome: ValidationOutcome
    errors: list[ValidationErrorItem] = Field(default_factory=list)
    error_message: str | None = None


@router.post("/{attempt_id}/outcome", response_model=ReportResponse)
async def record_outcome(
    attempt_id: UUID,
    body: OutcomeRequest,
    actor: Actor = Depends(get_current_actor),
    manager: ReportLifecycleManager = Depends(get_lifecycle_manager),
) -> ReportResponse:
    if not actor.has_permission(Permission.REPORTS_VALIDATE):
        raise AccessDeniedError(f"Missing permission {Permission.REPORTS_VALIDATE}.")
    report = await manager.record_validation_outcome(
        attempt_id, body.outcome, body.errors, error_message=body.error_message,
    )
    return ReportResponse.from_report(report)
