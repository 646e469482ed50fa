"""Status registry: allowed transitions and round monotonicity checks.

The caller chooses the target status (a round-2 "passed" can mean either
quiz_approved or selected); the registry only decides whether that target is
reachable from where the application is now.
"""

from src.core.errors import InvalidTransition
from src.core.schemas import ApplicationRecord, ApplicationStatus

S = ApplicationStatus

TERMINAL_STATUSES: frozenset[ApplicationStatus] = frozenset(
    {S.SELECTED, S.OFFER_ACCEPTED, S.REJECTED},
)

# Targets reachable from each non-terminal status via a round evaluation.
# A same-status target is always allowed and is not listed.
ALLOWED_TRANSITIONS: dict[ApplicationStatus, frozenset[ApplicationStatus]] = {
    S.FORM_PENDING: frozenset(
        {S.FORM_SUBMITTED, S.FORM_APPROVED, S.FORM_REJECTED, S.REJECTED},
    ),
    S.FORM_SUBMITTED: frozenset({S.FORM_APPROVED, S.FORM_REJECTED, S.REJECTED}),
    S.FORM_APPROVED: frozenset(
        {
            S.FORM_REJECTED,
            S.TEST_ASSIGNED,
            S.TEST_SUBMITTED,
            S.QUIZ_COMPLETED,
            S.REJECTED,
        },
    ),
    S.FORM_REJECTED: frozenset({S.FORM_APPROVED, S.REJECTED}),
    S.TEST_ASSIGNED: frozenset({S.TEST_SUBMITTED, S.QUIZ_COMPLETED, S.REJECTED}),
    S.TEST_SUBMITTED: frozenset(
        {S.QUIZ_COMPLETED, S.QUIZ_APPROVED, S.QUIZ_REJECTED, S.SELECTED, S.REJECTED},
    ),
    S.QUIZ_COMPLETED: frozenset(
        {S.QUIZ_APPROVED, S.QUIZ_REJECTED, S.SELECTED, S.REJECTED},
    ),
    S.QUIZ_APPROVED: frozenset({S.QUIZ_REJECTED, S.SELECTED, S.REJECTED}),
    S.QUIZ_REJECTED: frozenset({S.QUIZ_APPROVED, S.SELECTED, S.REJECTED}),
}

_PENDING_REVIEW_LABELS: dict[ApplicationStatus, str] = {
    S.FORM_SUBMITTED: "Pending Review for Round 1",
    S.TEST_SUBMITTED: "Pending Review for Round 2",
}


def is_terminal(status: ApplicationStatus) -> bool:
    """Return True if no round transition may move the application out of status."""
    return status in TERMINAL_STATUSES


def can_transition(current: ApplicationStatus, target: ApplicationStatus) -> bool:
    if current == target:
        return True
    if is_terminal(current):
        return False
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


def validate_transition(
    record: ApplicationRecord,
    target_status: ApplicationStatus,
    round_number: int,
) -> None:
    """Raise InvalidTransition unless the evaluation may be applied to record.

    Rules:
      - target must be reachable from the current status (terminal statuses
        only accept themselves);
      - round_number must be the next round (current_round + 1) or the current
        round, which is then corrected in place. Earlier rounds are closed.
    """
    current = record.status
    if not can_transition(current, target_status):
        msg = (
            f"Application {record.id}: cannot move from '{current.value}' "
            f"to '{target_status.value}'"
        )
        raise InvalidTransition(msg)

    if round_number < 1:
        msg = f"Application {record.id}: round number must be >= 1, got {round_number}"
        raise InvalidTransition(msg)

    if round_number == record.current_round + 1:
        return
    if record.current_round >= 1 and round_number == record.current_round:
        return
    msg = (
        f"Application {record.id}: round {round_number} is out of order "
        f"(current round is {record.current_round})"
    )
    raise InvalidTransition(msg)


def status_label(status: ApplicationStatus | str | None) -> str:
    """Human-readable label for a status, e.g. 'Quiz Approved'."""
    if not status:
        return "Unknown"
    try:
        status = ApplicationStatus(status)
    except ValueError:
        return str(status).replace("_", " ").title()
    if status in _PENDING_REVIEW_LABELS:
        return _PENDING_REVIEW_LABELS[status]
    return status.value.replace("_", " ").title()
