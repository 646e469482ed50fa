"""Round transition coordinator: the single writer of canonical application records.

Data flow for one evaluation:
  1. Load the application (NotFound)
  2. Validate against the status registry (InvalidTransition)
  3. Upsert the RoundRecord for the round
  4. Derive status, current_round, and one-shot timestamps
  5. Write the record (exactly one canonical write)
  6. Publish a RoundOutcomeEvent to listeners (summary, counters)

Listeners run after the write. Their ProjectionError / CounterError is logged
and does not roll back step 5: projections may lag the canonical record.
Two evaluations of the same round racing each other resolve last-write-wins.
"""

import logging
import sqlite3
import uuid
from collections.abc import Callable
from datetime import datetime
from enum import Enum
from typing import TypeVar

from src.core.db import get_application, insert_application, put_application
from src.core.errors import CounterError, InvalidTransition, NotFound, ProjectionError
from src.core.schemas import (
    ApplicationRecord,
    ApplicationStatus,
    RoundOutcome,
    RoundOutcomeEvent,
    RoundRecord,
)
from src.lifecycle.registry import validate_transition

logger = logging.getLogger(__name__)

# A listener receives every event after the canonical write.
Listener = Callable[[RoundOutcomeEvent], None]

E = TypeVar("E", bound=Enum)


class RoundTransitionCoordinator:
    """Applies round outcomes to applications and fans the result out.

    Usage::

        coordinator = RoundTransitionCoordinator(
            conn, listeners=[SummaryProjector(conn, catalog), AggregateCounter(conn)],
        )
        coordinator.apply_round_outcome(app_id, "form_approved", 1, "passed", "", "faculty-1")
    """

    def __init__(
        self,
        conn: sqlite3.Connection,
        listeners: list[Listener] | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._conn = conn
        self._listeners: list[Listener] = list(listeners or [])
        self._clock = clock

    def subscribe(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def get_application(self, application_id: str) -> ApplicationRecord:
        record = get_application(self._conn, application_id)
        if record is None:
            msg = f"Application not found: {application_id}"
            raise NotFound(msg)
        return record

    def create_application(
        self,
        student_id: str,
        internship_id: str,
        application_id: str | None = None,
    ) -> ApplicationRecord:
        """Create the canonical record in form_pending.

        Raises ValueError if the student already applied to this internship.
        """
        now = self._clock()
        record = ApplicationRecord(
            id=application_id or uuid.uuid4().hex,
            student_id=student_id,
            internship_id=internship_id,
            status=ApplicationStatus.FORM_PENDING,
            applied_at=now,
            updated_at=now,
        )
        if not insert_application(self._conn, record):
            msg = f"Student {student_id} already applied to internship {internship_id}"
            raise ValueError(msg)
        logger.info(
            "Created application %s (student %s, internship %s)",
            record.id, student_id, internship_id,
        )
        return record

    def apply_round_outcome(
        self,
        application_id: str,
        target_status: ApplicationStatus | str,
        round_number: int,
        round_outcome: RoundOutcome | str,
        feedback: str = "",
        evaluator_id: str | None = None,
    ) -> ApplicationRecord:
        """Apply one round evaluation and return the updated canonical record.

        Raises:
            NotFound: the application does not exist.
            InvalidTransition: unknown status/outcome, unreachable target, or a
                round number that skips ahead or reopens an earlier round.
        """
        target = _coerce(ApplicationStatus, target_status)
        outcome = _coerce(RoundOutcome, round_outcome)

        record = self.get_application(application_id)
        validate_transition(record, target, round_number)

        now = self._clock()
        previous = record.get_round(round_number)
        previous_outcome = previous.status if previous is not None else None

        # A pending round has not been evaluated yet.
        decided = outcome != RoundOutcome.PENDING
        round_record = RoundRecord(
            round_number=round_number,
            status=outcome,
            feedback=feedback or "",
            evaluated_at=now if decided else None,
            evaluated_by=evaluator_id if decided else None,
        )
        rounds = [r for r in record.rounds if r.round_number != round_number]
        rounds.append(round_record)
        rounds.sort(key=lambda r: r.round_number)

        update: dict[str, object] = {
            "status": target,
            "rounds": rounds,
            "current_round": max(record.current_round, round_number),
            "updated_at": now,
        }
        if target == ApplicationStatus.SELECTED and record.selected_at is None:
            update["selected_at"] = now
        elif target == ApplicationStatus.REJECTED and record.rejected_at is None:
            update["rejected_at"] = now
        updated = record.model_copy(update=update)

        put_application(self._conn, updated)
        logger.info(
            "Application %s: round %d %s, status %s -> %s",
            application_id, round_number, outcome.value,
            record.status.value, target.value,
        )

        self._publish(
            RoundOutcomeEvent(
                application_id=updated.id,
                student_id=updated.student_id,
                internship_id=updated.internship_id,
                status=target,
                round_number=round_number,
                outcome=outcome,
                previous_outcome=previous_outcome,
                feedback=round_record.feedback,
                evaluator_id=evaluator_id,
            ),
        )
        return updated

    def accept_offer(self, application_id: str, student_id: str) -> ApplicationRecord:
        """Move a selected application to offer_accepted on behalf of its student.

        Not a round transition: rounds and counters are untouched, the summary
        picks up the new status.
        """
        record = self.get_application(application_id)
        if record.student_id != student_id:
            msg = f"Application {application_id} does not belong to student {student_id}"
            raise InvalidTransition(msg)
        if record.status != ApplicationStatus.SELECTED:
            msg = (
                f"Application {application_id}: only a selected application can accept "
                f"an offer (status is '{record.status.value}')"
            )
            raise InvalidTransition(msg)

        now = self._clock()
        updated = record.model_copy(
            update={
                "status": ApplicationStatus.OFFER_ACCEPTED,
                "offer_accepted_at": now,
                "updated_at": now,
            },
        )
        put_application(self._conn, updated)
        logger.info("Application %s: offer accepted by %s", application_id, student_id)

        latest = updated.get_round(updated.current_round)
        if latest is not None:
            # Same outcome as before, so counters see a no-op.
            self._publish(
                RoundOutcomeEvent(
                    application_id=updated.id,
                    student_id=updated.student_id,
                    internship_id=updated.internship_id,
                    status=updated.status,
                    round_number=latest.round_number,
                    outcome=latest.status,
                    previous_outcome=latest.status,
                    feedback=latest.feedback,
                    evaluator_id=student_id,
                ),
            )
        return updated

    def _publish(self, event: RoundOutcomeEvent) -> None:
        for listener in self._listeners:
            try:
                listener(event)
            except (ProjectionError, CounterError) as e:
                logger.warning(
                    "Listener %s failed for application %s round %d: %s",
                    type(listener).__name__, event.application_id, event.round_number, e,
                )


def _coerce(enum_cls: type[E], value: object) -> E:
    try:
        return enum_cls(value)
    except ValueError as e:
        msg = f"Unknown {enum_cls.__name__} value: {value!r}"
        raise InvalidTransition(msg) from e
