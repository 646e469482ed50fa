"""Assessment service: starts sessions and turns their submissions into round outcomes.

Submission flow:
  1. Session scores itself (exactly once)
  2. Round-2 transition checked against the current record
  3. Artifact persisted to the submissions table
  4. Coordinator applies (test_submitted, round 2, policy outcome)
  5. Session discarded; only the submission id is kept
"""

import logging
import random
import sqlite3
import time
import uuid
from collections.abc import Callable

from src.assessment.session import AssessmentSession, SessionState
from src.collaborators.base import InternshipCatalog, QuestionBank
from src.core.config import AssessmentConfig
from src.core.db import count_submissions, insert_submission
from src.core.errors import InvalidTransition, NotFound
from src.core.schemas import (
    ApplicationStatus,
    CurrentUser,
    RoundOutcome,
    SessionHandle,
    SubmissionArtifact,
)
from src.lifecycle.coordinator import RoundTransitionCoordinator
from src.lifecycle.registry import validate_transition

logger = logging.getLogger(__name__)

ASSESSMENT_ROUND = 2

STARTABLE_STATUSES = frozenset({ApplicationStatus.FORM_APPROVED, ApplicationStatus.TEST_ASSIGNED})

# Maps a percentage to the round outcome recorded at submission time.
OutcomePolicy = Callable[[int], RoundOutcome]


def pending_policy(percentage: int) -> RoundOutcome:
    """Leave the decision to a human reviewer."""
    return RoundOutcome.PENDING


def threshold_policy(pass_percentage: int) -> OutcomePolicy:
    """Pass at or above pass_percentage, fail below it."""

    def policy(percentage: int) -> RoundOutcome:
        return RoundOutcome.PASSED if percentage >= pass_percentage else RoundOutcome.FAILED

    return policy


class AssessmentService:
    """Owns the running sessions, at most one per application."""

    def __init__(
        self,
        conn: sqlite3.Connection,
        coordinator: RoundTransitionCoordinator,
        question_bank: QuestionBank,
        catalog: InternshipCatalog,
        config: AssessmentConfig | None = None,
        outcome_policy: OutcomePolicy | None = None,
        rng: random.Random | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._conn = conn
        self._coordinator = coordinator
        self._question_bank = question_bank
        self._catalog = catalog
        self._config = config or AssessmentConfig()
        if outcome_policy is None:
            pass_at = self._config.auto_pass_percentage
            outcome_policy = pending_policy if pass_at is None else threshold_policy(pass_at)
        self._policy = outcome_policy
        self._rng = rng or random.Random()
        self._clock = clock
        self._sessions: dict[str, AssessmentSession] = {}
        self._handles: dict[str, SessionHandle] = {}
        self._submission_ids: dict[str, int] = {}

    def start_assessment(self, application_id: str, student: CurrentUser) -> SessionHandle:
        """Create (or return the running) session for an application.

        Raises:
            NotFound: application or its assigned test does not exist.
            InvalidTransition: not the applicant, a submission already exists,
                or the application is not waiting for its assessment.
        """
        running = self._handles.get(application_id)
        if running is not None:
            current = self._sessions[running.session_id]
            if current.is_active or current.state == SessionState.DISCLAIMER:
                return running

        record = self._coordinator.get_application(application_id)
        if record.student_id != student.id:
            msg = f"Application {application_id} does not belong to student {student.id}"
            raise InvalidTransition(msg)
        if count_submissions(self._conn, application_id) > 0:
            msg = f"Application {application_id}: the Round 2 quiz was already completed"
            raise InvalidTransition(msg)
        if record.status not in STARTABLE_STATUSES:
            msg = (
                f"Application {application_id} is not ready for the assessment "
                f"(status '{record.status.value}')"
            )
            raise InvalidTransition(msg)

        test = self._question_bank.get_for_application(record)
        if test is None:
            msg = f"No test assigned for application {application_id}"
            raise NotFound(msg)
        internship = self._catalog.get(record.internship_id)

        session = AssessmentSession(
            record,
            test,
            student,
            on_submit=self._persist,
            config=self._config,
            internship_title=internship.title if internship else "Unknown Internship",
            rng=self._rng,
            clock=self._clock,
        )
        handle = SessionHandle(session_id=uuid.uuid4().hex, application_id=application_id)
        self._sessions[handle.session_id] = session
        self._handles[application_id] = handle
        logger.info("Session %s opened for application %s", handle.session_id, application_id)
        return handle

    def session(self, handle: SessionHandle) -> AssessmentSession:
        try:
            return self._sessions[handle.session_id]
        except KeyError as e:
            msg = f"Unknown assessment session: {handle.session_id}"
            raise NotFound(msg) from e

    async def submit_assessment(self, handle: SessionHandle) -> SubmissionArtifact | None:
        """Explicit submit from the student. Duplicate calls are no-ops."""
        session = self._sessions.get(handle.session_id)
        if session is None and handle.application_id in self._submission_ids:
            logger.debug(
                "Session %s already submitted for application %s",
                handle.session_id, handle.application_id,
            )
            return None
        return await self.session(handle).submit()

    def submission_id(self, application_id: str) -> int | None:
        """Row id of the artifact persisted for an application in this service."""
        return self._submission_ids.get(application_id)

    async def _persist(self, artifact: SubmissionArtifact) -> None:
        application_id = artifact.application_id
        try:
            # No artifact is stored for an application that cannot reach round 2.
            record = self._coordinator.get_application(application_id)
            validate_transition(record, ApplicationStatus.TEST_SUBMITTED, ASSESSMENT_ROUND)

            submission_id = insert_submission(self._conn, artifact)
            self._submission_ids[application_id] = submission_id
            outcome = self._policy(artifact.percentage)
            self._coordinator.apply_round_outcome(
                application_id,
                ApplicationStatus.TEST_SUBMITTED,
                ASSESSMENT_ROUND,
                outcome,
                "",
                None,
            )
        finally:
            self._discard(application_id)
        logger.info(
            "Submission %d stored for application %s (%s, %d%%, outcome %s)",
            submission_id, application_id, artifact.submission_reason.value,
            artifact.percentage, outcome.value,
        )

    def _discard(self, application_id: str) -> None:
        handle = self._handles.pop(application_id, None)
        if handle is not None:
            self._sessions.pop(handle.session_id, None)
            logger.debug("Session %s closed for application %s", handle.session_id, application_id)
