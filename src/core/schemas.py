"""Core data models for the application lifecycle engine."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class ApplicationStatus(str, Enum):
    """Closed vocabulary of application statuses."""

    FORM_PENDING = "form_pending"
    FORM_SUBMITTED = "form_submitted"
    FORM_APPROVED = "form_approved"
    FORM_REJECTED = "form_rejected"
    TEST_ASSIGNED = "test_assigned"
    TEST_SUBMITTED = "test_submitted"
    QUIZ_COMPLETED = "quiz_completed"
    QUIZ_APPROVED = "quiz_approved"
    QUIZ_REJECTED = "quiz_rejected"
    SELECTED = "selected"
    OFFER_ACCEPTED = "offer_accepted"
    REJECTED = "rejected"


class RoundOutcome(str, Enum):
    """Verdict for a single round."""

    PENDING = "pending"
    PASSED = "passed"
    FAILED = "failed"


class RoundRecord(BaseModel):
    """One evaluated round of an application, unique by round_number."""

    round_number: int = Field(ge=1)
    status: RoundOutcome = RoundOutcome.PENDING
    feedback: str = ""
    evaluated_at: datetime | None = None
    evaluated_by: str | None = None


class ApplicationRecord(BaseModel):
    """Canonical record for one (student, internship) application."""

    id: str
    student_id: str
    internship_id: str
    status: ApplicationStatus = ApplicationStatus.FORM_PENDING
    current_round: int = Field(default=0, ge=0)
    rounds: list[RoundRecord] = Field(default_factory=list)
    applied_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)
    selected_at: datetime | None = None
    rejected_at: datetime | None = None
    offer_accepted_at: datetime | None = None

    def get_round(self, round_number: int) -> RoundRecord | None:
        """Return the RoundRecord for round_number, or None if never evaluated."""
        for r in self.rounds:
            if r.round_number == round_number:
                return r
        return None


class RoundResult(BaseModel):
    """Reduced {round, status} pair kept in the student summary."""

    round: int
    status: RoundOutcome


class SummaryView(BaseModel):
    """Read-optimized per-student projection of one application.

    Display fields are copied at first write so the summary renders even if
    the internship is later deleted.
    """

    student_id: str
    internship_id: str
    internship_title: str = ""
    company_name: str = ""
    current_round: int = 0
    status: ApplicationStatus
    round_results: list[RoundResult] = Field(default_factory=list)
    last_updated: datetime = Field(default_factory=datetime.now)


class RoundCounter(BaseModel):
    """Aggregate tallies for one (internship, round)."""

    internship_id: str
    round_number: int
    total_applicants: int = 0
    passed: int = 0
    rejected: int = 0
    pending: int = 0
    last_updated: datetime | None = None


class RoundOutcomeEvent(BaseModel):
    """Emitted by the coordinator after the canonical record is written.

    Frozen: listeners receive the same event instance.
    """

    model_config = ConfigDict(frozen=True)

    application_id: str
    student_id: str
    internship_id: str
    status: ApplicationStatus
    round_number: int
    outcome: RoundOutcome
    previous_outcome: RoundOutcome | None = None
    feedback: str = ""
    evaluator_id: str | None = None


class InternshipInfo(BaseModel):
    """Display fields of an internship, as served by the catalog."""

    id: str
    title: str
    company_name: str = ""


class CurrentUser(BaseModel):
    """Authenticated user as reported by the identity provider."""

    model_config = ConfigDict(frozen=True)

    id: str
    email: str = ""
    name: str = ""


# ---------------------------------------------------------------------------
# Assessment
# ---------------------------------------------------------------------------


class QuestionType(str, Enum):
    MULTIPLE_CHOICE = "multiple_choice"
    TEXT = "text"


class Question(BaseModel):
    """A single assessment question.

    For multiple choice, correct_answer is the option text (or its index in
    options); correct_answers lists further accepted options or phrasings.
    """

    id: str
    text: str
    type: QuestionType = QuestionType.MULTIPLE_CHOICE
    options: list[str] = Field(default_factory=list)
    correct_answer: str | int | None = None
    correct_answers: list[str] = Field(default_factory=list)
    points: float = Field(default=1.0, ge=0.0)


class AssessmentTest(BaseModel):
    """A question bank assigned to an internship's Round 2."""

    id: str
    name: str
    internship_id: str
    duration_minutes: int | None = Field(default=None, ge=1)
    questions: list[Question] = Field(default_factory=list)


class SubmissionReason(str, Enum):
    MANUAL = "manual"
    TIMED_OUT = "timed_out"
    AUTO_SUBMITTED_INTEGRITY = "auto_submitted_integrity"


class _ArtifactModel(BaseModel):
    """Persisted in camelCase, the shape review tooling reads."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class QuestionDetail(_ArtifactModel):
    id: str
    question: str
    type: QuestionType
    options: list[str] = Field(default_factory=list)
    correct_answer: str | int | None = None
    correct_answer_index: int | None = None
    points: float = 1.0
    user_answer: str | None = None
    is_correct: bool = False


class SubmissionArtifact(_ArtifactModel):
    """The single persisted output of an assessment session."""

    application_id: str
    student_id: str
    student_name: str = "Unknown Student"
    student_email: str = "Unknown Email"
    test_id: str
    test_name: str = "Unknown Test"
    internship_id: str
    internship_title: str = "Unknown Internship"
    question_data: list[QuestionDetail] = Field(default_factory=list)
    score: float = 0.0
    total_possible_points: float = 0.0
    percentage: int = Field(default=0, ge=0, le=100)
    submitted_at: datetime = Field(default_factory=datetime.now)
    status: str = "pending"
    submission_reason: SubmissionReason = SubmissionReason.MANUAL
    elapsed_seconds: float = 0.0
    feedback: str = ""
    evaluated_at: datetime | None = None
    evaluated_by: str | None = None


class SessionHandle(BaseModel):
    """Opaque reference to a running assessment session."""

    model_config = ConfigDict(frozen=True)

    session_id: str
    application_id: str
