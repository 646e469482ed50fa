"""Tests for SubmissionReviewer decisions."""

import sqlite3
from datetime import datetime
from pathlib import Path

import pytest

from src.assessment.review import ReviewDecision, SubmissionReviewer
from src.core.db import get_application, get_submission, init_db, insert_submission
from src.core.errors import InvalidTransition, NotFound
from src.core.schemas import ApplicationStatus, RoundOutcome, SubmissionArtifact
from src.lifecycle.coordinator import RoundTransitionCoordinator

REVIEWED_AT = datetime(2024, 3, 2, 14, 30)


@pytest.fixture
def db(tmp_path: Path) -> sqlite3.Connection:
    return init_db(tmp_path / "test.db")


@pytest.fixture
def coordinator(db: sqlite3.Connection) -> RoundTransitionCoordinator:
    coordinator = RoundTransitionCoordinator(db)
    coordinator.create_application("s1", "i1", application_id="a1")
    coordinator.apply_round_outcome("a1", ApplicationStatus.FORM_APPROVED, 1, RoundOutcome.PASSED)
    coordinator.apply_round_outcome("a1", ApplicationStatus.TEST_SUBMITTED, 2,
                                    RoundOutcome.PENDING)
    return coordinator


@pytest.fixture
def submission_id(db: sqlite3.Connection) -> int:
    return insert_submission(db, SubmissionArtifact(
        application_id="a1", student_id="s1", test_id="t1", internship_id="i1",
        score=3, total_possible_points=4, percentage=75,
    ))


@pytest.fixture
def reviewer(db: sqlite3.Connection, coordinator: RoundTransitionCoordinator) -> SubmissionReviewer:
    return SubmissionReviewer(db, coordinator, clock=lambda: REVIEWED_AT)


class TestReviewSubmission:
    def test_approve(
        self, db: sqlite3.Connection, reviewer: SubmissionReviewer, submission_id: int,
    ) -> None:
        reviewed = reviewer.review_submission(submission_id, ReviewDecision.APPROVE,
                                              "Solid answers", "f1")
        assert reviewed.status == "approved"
        assert reviewed.evaluated_by == "f1"
        assert reviewed.evaluated_at == REVIEWED_AT

        stored = get_submission(db, submission_id)
        assert stored is not None
        assert stored.feedback == "Solid answers"

        record = get_application(db, "a1")
        assert record is not None
        assert record.status == ApplicationStatus.QUIZ_APPROVED
        round_two = record.get_round(2)
        assert round_two is not None
        assert round_two.status == RoundOutcome.PASSED
        assert round_two.feedback == "Solid answers"

    def test_reject_from_string(
        self, db: sqlite3.Connection, reviewer: SubmissionReviewer, submission_id: int,
    ) -> None:
        reviewed = reviewer.review_submission(submission_id, "reject", "Too many gaps", "f1")
        assert reviewed.status == "rejected"
        record = get_application(db, "a1")
        assert record.status == ApplicationStatus.QUIZ_REJECTED  # type: ignore[union-attr]

    def test_select(
        self, db: sqlite3.Connection, reviewer: SubmissionReviewer, submission_id: int,
    ) -> None:
        reviewer.review_submission(submission_id, ReviewDecision.SELECT, "Welcome aboard", "f1")
        record = get_application(db, "a1")
        assert record is not None
        assert record.status == ApplicationStatus.SELECTED
        assert record.selected_at is not None

    def test_feedback_required(self, reviewer: SubmissionReviewer, submission_id: int) -> None:
        with pytest.raises(ValueError, match="Feedback is required"):
            reviewer.review_submission(submission_id, ReviewDecision.APPROVE, "  ", "f1")

    def test_unknown_decision(self, reviewer: SubmissionReviewer, submission_id: int) -> None:
        with pytest.raises(ValueError):
            reviewer.review_submission(submission_id, "maybe", "hmm", "f1")

    def test_missing_submission(self, reviewer: SubmissionReviewer) -> None:
        with pytest.raises(NotFound, match="Submission not found"):
            reviewer.review_submission(404, ReviewDecision.APPROVE, "ok", "f1")

    def test_illegal_transition_leaves_submission_pending(
        self,
        db: sqlite3.Connection,
        coordinator: RoundTransitionCoordinator,
        reviewer: SubmissionReviewer,
        submission_id: int,
    ) -> None:
        coordinator.apply_round_outcome("a1", ApplicationStatus.REJECTED, 2, RoundOutcome.FAILED)
        with pytest.raises(InvalidTransition):
            reviewer.review_submission(submission_id, ReviewDecision.APPROVE, "late", "f1")
        assert get_submission(db, submission_id).status == "pending"  # type: ignore[union-attr]
