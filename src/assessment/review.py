"""Faculty review of quiz submissions.

Each decision maps to one round-2 evaluation:
  approve → quiz_approved / passed
  reject  → quiz_rejected / failed
  select  → selected / passed
"""

import logging
import sqlite3
from collections.abc import Callable
from datetime import datetime
from enum import Enum

from src.assessment.service import ASSESSMENT_ROUND
from src.core.db import get_submission, update_submission
from src.core.errors import NotFound
from src.core.schemas import ApplicationStatus, RoundOutcome, SubmissionArtifact
from src.lifecycle.coordinator import RoundTransitionCoordinator

logger = logging.getLogger(__name__)


class ReviewDecision(str, Enum):
    APPROVE = "approve"
    REJECT = "reject"
    SELECT = "select"


_DECISIONS: dict[ReviewDecision, tuple[ApplicationStatus, RoundOutcome, str]] = {
    ReviewDecision.APPROVE: (ApplicationStatus.QUIZ_APPROVED, RoundOutcome.PASSED, "approved"),
    ReviewDecision.REJECT: (ApplicationStatus.QUIZ_REJECTED, RoundOutcome.FAILED, "rejected"),
    ReviewDecision.SELECT: (ApplicationStatus.SELECTED, RoundOutcome.PASSED, "approved"),
}


class SubmissionReviewer:
    def __init__(
        self,
        conn: sqlite3.Connection,
        coordinator: RoundTransitionCoordinator,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._conn = conn
        self._coordinator = coordinator
        self._clock = clock

    def review_submission(
        self,
        submission_id: int,
        decision: ReviewDecision | str,
        feedback: str,
        evaluator_id: str,
    ) -> SubmissionArtifact:
        """Record a reviewer's verdict on a submission and advance the application.

        Feedback is mandatory. The application is updated first so an illegal
        transition leaves the submission untouched.
        """
        decision = ReviewDecision(decision)
        if not feedback.strip():
            msg = "Feedback is required to review a submission"
            raise ValueError(msg)

        artifact = get_submission(self._conn, submission_id)
        if artifact is None:
            msg = f"Submission not found: {submission_id}"
            raise NotFound(msg)

        target, outcome, submission_status = _DECISIONS[decision]
        self._coordinator.apply_round_outcome(
            artifact.application_id,
            target,
            ASSESSMENT_ROUND,
            outcome,
            feedback,
            evaluator_id,
        )

        reviewed = artifact.model_copy(
            update={
                "status": submission_status,
                "feedback": feedback,
                "evaluated_at": self._clock(),
                "evaluated_by": evaluator_id,
            },
        )
        update_submission(self._conn, submission_id, reviewed)
        logger.info(
            "Submission %d %s by %s (application %s)",
            submission_id, submission_status, evaluator_id, artifact.application_id,
        )
        return reviewed
