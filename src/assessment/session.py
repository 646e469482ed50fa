"""Proctored, time-boxed assessment session.

State machine::

    DISCLAIMER --acknowledge--> RUNNING <--> WARNED
    RUNNING/WARNED --submit / last question / timer zero--> FINISHED
    RUNNING/WARNED --visibility loss past max_warnings--> BLOCKED

Submission runs at most once per session. Timer ticks, focus-loss events and
clicks can all race to submit; the first caller flips the reentrancy flag
before its first await, later callers get the same artifact.
"""

import asyncio
import logging
import random
import time
from collections.abc import Awaitable, Callable
from datetime import datetime
from enum import Enum

from src.assessment.scoring import score_answers, shuffle_questions
from src.core.config import AssessmentConfig
from src.core.errors import IntegrityBlock, LifecycleError, SessionReentry
from src.core.schemas import (
    ApplicationRecord,
    AssessmentTest,
    CurrentUser,
    Question,
    SubmissionArtifact,
    SubmissionReason,
)

logger = logging.getLogger(__name__)

SubmitCallback = Callable[[SubmissionArtifact], Awaitable[None]]

INTEGRITY_MESSAGE = (
    "Quiz auto-submitted: you switched tabs or windows too many times."
)
TIMEOUT_MESSAGE = "Time expired. Your answers were submitted automatically."
SUBMITTED_MESSAGE = "Quiz submitted successfully."


class SessionState(str, Enum):
    DISCLAIMER = "disclaimer"
    RUNNING = "running"
    WARNED = "warned"
    FINISHED = "finished"
    BLOCKED = "blocked"


_ACTIVE = frozenset({SessionState.RUNNING, SessionState.WARNED})


class AssessmentSession:
    """One student's in-progress Round-2 quiz. Never persisted; only its artifact is.

    Usage::

        session = AssessmentSession(application, test, student, on_submit=persist)
        session.acknowledge()
        session.answer("q1", "Paris")
        await session.submit()
    """

    def __init__(
        self,
        application: ApplicationRecord,
        test: AssessmentTest,
        student: CurrentUser,
        on_submit: SubmitCallback,
        config: AssessmentConfig | None = None,
        internship_title: str = "Unknown Internship",
        rng: random.Random | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._application = application
        self._test = test
        self._student = student
        self._on_submit = on_submit
        self._config = config or AssessmentConfig()
        self._internship_title = internship_title
        self._rng = rng or random.Random()
        self._clock = clock

        minutes = test.duration_minutes or self._config.default_duration_minutes
        self._duration_s = minutes * 60
        self._time_remaining = self._duration_s

        self._state = SessionState.DISCLAIMER
        self._questions: list[Question] = []
        self._answers: dict[str, str | None] = {}
        self._index = 0
        self._warnings = 0
        self._warning_message = ""
        self._started_at: float | None = None

        self._clock_task: asyncio.Task[None] | None = None
        self._submitting = False
        self._done = asyncio.Event()
        self._artifact: SubmissionArtifact | None = None
        self._reason: SubmissionReason | None = None
        self._error: LifecycleError | None = None

    # --- read-only views -------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def application_id(self) -> str:
        return self._application.id

    @property
    def questions(self) -> list[Question]:
        return list(self._questions)

    @property
    def current_question(self) -> Question | None:
        if not self._questions:
            return None
        return self._questions[self._index]

    @property
    def answers(self) -> dict[str, str | None]:
        return dict(self._answers)

    @property
    def time_remaining(self) -> int:
        return self._time_remaining

    @property
    def warnings(self) -> int:
        return self._warnings

    @property
    def warning_message(self) -> str:
        return self._warning_message

    @property
    def is_active(self) -> bool:
        return self._state in _ACTIVE

    @property
    def artifact(self) -> SubmissionArtifact | None:
        return self._artifact

    @property
    def submission_reason(self) -> SubmissionReason | None:
        return self._reason

    @property
    def submission_error(self) -> LifecycleError | None:
        """Why the submit callback refused the artifact, if it did."""
        return self._error

    @property
    def message(self) -> str:
        """User-facing outcome message once the session has ended."""
        if self._reason == SubmissionReason.AUTO_SUBMITTED_INTEGRITY:
            return INTEGRITY_MESSAGE
        if self._reason == SubmissionReason.TIMED_OUT:
            return TIMEOUT_MESSAGE
        if self._reason == SubmissionReason.MANUAL:
            return SUBMITTED_MESSAGE
        return ""

    # --- lifecycle -------------------------------------------------------

    def acknowledge(self, run_clock: bool = True) -> None:
        """Accept the disclaimer: fix the question order and start the countdown.

        With run_clock the countdown runs as a task on the current event loop.
        """
        if self._state != SessionState.DISCLAIMER:
            msg = f"Session for {self.application_id} already started"
            raise RuntimeError(msg)

        if self._config.shuffle_questions:
            self._questions = shuffle_questions(self._test.questions, self._rng)
        else:
            self._questions = list(self._test.questions)
        self._answers = {q.id: None for q in self._questions}
        self._started_at = self._clock()
        self._state = SessionState.RUNNING
        logger.info(
            "Assessment started for application %s: %d questions, %ds",
            self.application_id, len(self._questions), self._duration_s,
        )
        if run_clock:
            self._clock_task = asyncio.get_running_loop().create_task(self._run_clock())

    def answer(self, question_id: str, value: str | None) -> bool:
        """Record an answer. Returns False once the session has ended."""
        self._require_started()
        if not self.is_active:
            logger.debug("Ignoring answer for %s: session %s", question_id, self._state.value)
            return False
        if question_id not in self._answers:
            msg = f"Unknown question id: {question_id}"
            raise ValueError(msg)
        self._answers[question_id] = value
        return True

    async def next_question(self) -> bool:
        """Advance to the next question; on the last one, submit.

        Returns True if the session moved to another question.
        """
        self._require_started()
        if not self.is_active:
            return False
        if self._index < len(self._questions) - 1:
            self._index += 1
            return True
        await self.submit(SubmissionReason.MANUAL)
        return False

    def previous_question(self) -> bool:
        self._require_started()
        if not self.is_active or self._index == 0:
            return False
        self._index -= 1
        return True

    def dismiss_warning(self) -> None:
        if self._state == SessionState.WARNED:
            self._state = SessionState.RUNNING
            self._warning_message = ""

    async def record_visibility_loss(self) -> str | None:
        """Handle loss of foreground focus.

        Returns the warning shown to the student. Past max_warnings the session
        is blocked, submitted, and IntegrityBlock is raised.
        """
        if not self.is_active:
            return None

        self._warnings += 1
        limit = self._config.max_warnings
        if self._warnings <= limit:
            self._state = SessionState.WARNED
            self._warning_message = (
                f"Warning {self._warnings}/{limit}: Do not switch tabs or windows "
                "during the quiz."
            )
            logger.info(
                "Application %s: focus lost (%d/%d)",
                self.application_id, self._warnings, limit,
            )
            return self._warning_message

        self._warning_message = (
            "Error: You have switched tabs or windows too many times. "
            "Your quiz is being submitted."
        )
        logger.warning(
            "Application %s: focus lost %d times, blocking session",
            self.application_id, self._warnings,
        )
        try:
            artifact = await self._submit(
                SubmissionReason.AUTO_SUBMITTED_INTEGRITY, SessionState.BLOCKED,
            )
        except LifecycleError as e:
            raise IntegrityBlock(INTEGRITY_MESSAGE, self._artifact) from e
        raise IntegrityBlock(INTEGRITY_MESSAGE, artifact)

    async def tick(self) -> None:
        """One second of countdown. Submits as timed_out when time runs out."""
        if not self.is_active:
            return
        self._time_remaining = max(0, self._time_remaining - 1)
        if self._time_remaining == 0:
            logger.info("Application %s: time expired", self.application_id)
            await self._submit(SubmissionReason.TIMED_OUT, SessionState.FINISHED)

    async def submit(
        self,
        reason: SubmissionReason = SubmissionReason.MANUAL,
    ) -> SubmissionArtifact | None:
        """Submit the session. Safe to call repeatedly; only the first call scores."""
        self._require_started()
        return await self._submit(reason, SessionState.FINISHED)

    async def wait_submitted(self) -> SubmissionArtifact | None:
        """Block until a submission (from any trigger) has completed."""
        await self._done.wait()
        return self._artifact

    def close(self) -> None:
        """Stop the countdown without submitting (e.g. on shutdown)."""
        if self._clock_task is not None and not self._clock_task.done():
            self._clock_task.cancel()

    # --- internals -------------------------------------------------------

    async def _run_clock(self) -> None:
        while self.is_active:
            await asyncio.sleep(self._config.tick_seconds)
            try:
                await self.tick()
            except LifecycleError:
                # Already logged; wait_submitted callers read submission_error.
                return

    def _require_started(self) -> None:
        if self._state == SessionState.DISCLAIMER:
            msg = "Assessment not started: acknowledge the disclaimer first"
            raise RuntimeError(msg)

    def _begin_submission(self, final_state: SessionState) -> None:
        if self._submitting:
            msg = f"Session for {self.application_id} already submitting"
            raise SessionReentry(msg)
        self._submitting = True
        self._state = final_state
        if self._clock_task is not None and self._clock_task is not asyncio.current_task():
            self._clock_task.cancel()

    async def _submit(
        self,
        reason: SubmissionReason,
        final_state: SessionState,
    ) -> SubmissionArtifact | None:
        try:
            self._begin_submission(final_state)
        except SessionReentry as e:
            logger.debug("%s (%s ignored)", e, reason.value)
            await self._done.wait()
            return self._artifact

        try:
            elapsed = self._clock() - (self._started_at or self._clock())
            if (
                reason == SubmissionReason.MANUAL
                and elapsed > self._duration_s + self._config.grace_seconds
            ):
                logger.warning(
                    "Application %s: manual submit after %.0fs (limit %ds), recording as timed out",
                    self.application_id, elapsed, self._duration_s,
                )
                reason = SubmissionReason.TIMED_OUT
            self._reason = reason

            result = score_answers(self._questions, self._answers)
            artifact = SubmissionArtifact(
                application_id=self._application.id,
                student_id=self._student.id,
                student_name=self._student.name or "Unknown Student",
                student_email=self._student.email or "Unknown Email",
                test_id=self._test.id,
                test_name=self._test.name or "Unknown Test",
                internship_id=self._application.internship_id,
                internship_title=self._internship_title,
                question_data=result.details,
                score=result.score,
                total_possible_points=result.total_possible_points,
                percentage=result.percentage,
                submitted_at=datetime.now(),
                submission_reason=reason,
                elapsed_seconds=round(elapsed, 3),
            )
            # Kept even when the callback refuses it; see submission_error.
            self._artifact = artifact
            try:
                await self._on_submit(artifact)
            except LifecycleError as e:
                self._error = e
                logger.warning(
                    "Application %s: submission (%s) not recorded: %s",
                    self.application_id, reason.value, e,
                )
                raise
            logger.info(
                "Application %s submitted (%s): %s/%s points, %d%%",
                self.application_id, reason.value, result.score,
                result.total_possible_points, result.percentage,
            )
            return artifact
        finally:
            self._done.set()
