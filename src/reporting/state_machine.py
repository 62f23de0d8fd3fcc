"""Report status state machine.

DRAFT → SUBMITTED → PROCESSING → {SUCCESS | VALIDATION_ERRORS | TECH_ERROR | TIMEOUT}
VALIDATION_ERRORS → DISPUTED_BY_UKNF (internal staff only)
VALIDATION_ERRORS | TECH_ERROR | TIMEOUT → DRAFT (explicit reopen)

SUCCESS and DISPUTED_BY_UKNF are terminal. The table below is the single
source of truth; the lifecycle manager consults it before every write.
"""

from src.models.report import ReportStatus, ValidationAttemptStatus, ValidationOutcome
from src.reporting.errors import InvalidStateError

VALID_REPORT_TRANSITIONS: dict[ReportStatus, frozenset[ReportStatus]] = {
    ReportStatus.DRAFT: frozenset({ReportStatus.SUBMITTED}),
    ReportStatus.SUBMITTED: frozenset({ReportStatus.PROCESSING}),
    ReportStatus.PROCESSING: frozenset({
        ReportStatus.SUCCESS,
        ReportStatus.VALIDATION_ERRORS,
        ReportStatus.TECH_ERROR,
        ReportStatus.TIMEOUT,
    }),
    ReportStatus.VALIDATION_ERRORS: frozenset({
        ReportStatus.DISPUTED_BY_UKNF,
        ReportStatus.DRAFT,
    }),
    ReportStatus.TECH_ERROR: frozenset({ReportStatus.DRAFT}),
    ReportStatus.TIMEOUT: frozenset({ReportStatus.DRAFT}),
    ReportStatus.SUCCESS: frozenset(),
    ReportStatus.DISPUTED_BY_UKNF: frozenset(),
}

TERMINAL_STATES: frozenset[ReportStatus] = frozenset(
    s for s, targets in VALID_REPORT_TRANSITIONS.items() if not targets
)

REOPENABLE_STATES: frozenset[ReportStatus] = frozenset({
    ReportStatus.VALIDATION_ERRORS,
    ReportStatus.TECH_ERROR,
    ReportStatus.TIMEOUT,
})

# Runner outcome → (attempt status, report status)
OUTCOME_RESOLUTION: dict[ValidationOutcome, tuple[ValidationAttemptStatus, ReportStatus]] = {
    ValidationOutcome.SUCCESS: (ValidationAttemptStatus.COMPLETED, ReportStatus.SUCCESS),
    ValidationOutcome.VALIDATION_ERRORS: (
        ValidationAttemptStatus.COMPLETED,
        ReportStatus.VALIDATION_ERRORS,
    ),
    ValidationOutcome.TECH_ERROR: (ValidationAttemptStatus.FAILED, ReportStatus.TECH_ERROR),
}


def can_transition(current: ReportStatus, target: ReportStatus) -> bool:
    return target in VALID_REPORT_TRANSITIONS.get(current, frozenset())


def require_transition(current: ReportStatus, target: ReportStatus) -> None:
    """Raise InvalidStateError unless ``current → target`` is in the table."""
    if not can_transition(current, target):
        allowed = sorted(s.value for s in VALID_REPORT_TRANSITIONS.get(current, frozenset()))
        msg = (
            f"Cannot transition report from {current} to {target}. "
            f"Allowed: {allowed}."
        )
        raise InvalidStateError(msg)


def parse_status(value: str) -> ReportStatus:
    """Coerce a stored status string, rejecting anything outside the enum."""
    try:
        return ReportStatus(value)
    except ValueError:
        msg = f"Unknown report status {value!r}."
        raise InvalidStateError(msg) from None

