"""Tests for RoundTransitionCoordinator: canonical writes and listener fan-out."""

import logging
import sqlite3
from datetime import datetime
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from src.collaborators.sqlite import SqliteInternshipCatalog
from src.core.db import get_application, get_counter, get_summary, init_db, put_internship
from src.core.errors import CounterError, InvalidTransition, NotFound, ProjectionError
from src.core.schemas import (
    ApplicationStatus,
    InternshipInfo,
    RoundOutcome,
    RoundOutcomeEvent,
)
from src.lifecycle.coordinator import RoundTransitionCoordinator
from src.lifecycle.counter import AggregateCounter
from src.lifecycle.projector import SummaryProjector

S = ApplicationStatus


class FakeClock:
    def __init__(self) -> None:
        self.now = datetime(2024, 3, 1, 9, 0, 0)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, minutes: int) -> None:
        self.now = self.now.replace(minute=self.now.minute + minutes)


@pytest.fixture
def db(tmp_path: Path) -> sqlite3.Connection:
    conn = init_db(tmp_path / "test.db")
    put_internship(conn, InternshipInfo(id="i1", title="Backend Intern", company_name="Acme"))
    return conn


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def coordinator(db: sqlite3.Connection, clock: FakeClock) -> RoundTransitionCoordinator:
    return RoundTransitionCoordinator(
        db,
        listeners=[SummaryProjector(db, SqliteInternshipCatalog(db)), AggregateCounter(db)],
        clock=clock,
    )


@pytest.fixture
def app_id(coordinator: RoundTransitionCoordinator) -> str:
    return coordinator.create_application("s1", "i1", application_id="a1").id


class TestCreateApplication:
    def test_starts_form_pending(self, coordinator: RoundTransitionCoordinator) -> None:
        record = coordinator.create_application("s1", "i1")
        assert record.status == S.FORM_PENDING
        assert record.current_round == 0
        assert len(record.id) == 32

    def test_duplicate_rejected(self, coordinator: RoundTransitionCoordinator, app_id: str) -> None:
        with pytest.raises(ValueError, match="already applied"):
            coordinator.create_application("s1", "i1")


class TestApplyRoundOutcome:
    def test_two_round_flow(
        self, db: sqlite3.Connection, coordinator: RoundTransitionCoordinator, app_id: str,
    ) -> None:
        coordinator.apply_round_outcome(app_id, S.FORM_APPROVED, 1, RoundOutcome.PASSED,
                                        "Good profile", "f1")
        record = coordinator.apply_round_outcome(app_id, S.QUIZ_COMPLETED, 2,
                                                 RoundOutcome.PENDING)
        assert record.status == S.QUIZ_COMPLETED
        assert record.current_round == 2
        assert [(r.round_number, r.status) for r in record.rounds] == [
            (1, RoundOutcome.PASSED),
            (2, RoundOutcome.PENDING),
        ]
        assert record.rounds[0].feedback == "Good profile"
        assert record.rounds[0].evaluated_by == "f1"

        summary = get_summary(db, "s1", "i1")
        assert summary is not None
        assert summary.status == S.QUIZ_COMPLETED
        assert summary.current_round == 2
        assert summary.internship_title == "Backend Intern"

        r1 = get_counter(db, "i1", 1)
        r2 = get_counter(db, "i1", 2)
        assert r1 is not None and r2 is not None
        assert (r1.total_applicants, r1.passed) == (1, 1)
        assert (r2.total_applicants, r2.pending) == (1, 1)

    def test_evaluation_stamped_only_when_round_decided(
        self, coordinator: RoundTransitionCoordinator, clock: FakeClock, app_id: str,
    ) -> None:
        coordinator.apply_round_outcome(app_id, S.FORM_APPROVED, 1, RoundOutcome.PASSED)
        pending = coordinator.apply_round_outcome(app_id, S.QUIZ_COMPLETED, 2,
                                                  RoundOutcome.PENDING, "", "f1")
        round_two = pending.get_round(2)
        assert round_two is not None
        assert round_two.evaluated_at is None
        assert round_two.evaluated_by is None

        decided = coordinator.apply_round_outcome(app_id, S.QUIZ_APPROVED, 2,
                                                  RoundOutcome.PASSED, "Good", "f2")
        round_two = decided.get_round(2)
        assert round_two is not None
        assert round_two.evaluated_at == clock.now
        assert round_two.evaluated_by == "f2"

    def test_accepts_string_values(
        self, coordinator: RoundTransitionCoordinator, app_id: str,
    ) -> None:
        record = coordinator.apply_round_outcome(app_id, "form_approved", 1, "passed")
        assert record.status == S.FORM_APPROVED
        assert record.rounds[0].status == RoundOutcome.PASSED

    def test_unknown_status_string(
        self, coordinator: RoundTransitionCoordinator, app_id: str,
    ) -> None:
        with pytest.raises(InvalidTransition, match="Unknown ApplicationStatus"):
            coordinator.apply_round_outcome(app_id, "hired", 1, "passed")

    def test_unknown_outcome_string(
        self, coordinator: RoundTransitionCoordinator, app_id: str,
    ) -> None:
        with pytest.raises(InvalidTransition, match="Unknown RoundOutcome"):
            coordinator.apply_round_outcome(app_id, "form_approved", 1, "maybe")

    def test_missing_application(self, coordinator: RoundTransitionCoordinator) -> None:
        with pytest.raises(NotFound, match="Application not found"):
            coordinator.apply_round_outcome("ghost", S.FORM_APPROVED, 1, RoundOutcome.PASSED)

    def test_round_skip_rejected_without_write(
        self, db: sqlite3.Connection, coordinator: RoundTransitionCoordinator, app_id: str,
    ) -> None:
        with pytest.raises(InvalidTransition):
            coordinator.apply_round_outcome(app_id, S.FORM_APPROVED, 2, RoundOutcome.PASSED)
        record = get_application(db, app_id)
        assert record is not None
        assert record.status == S.FORM_PENDING
        assert record.rounds == []
        assert get_summary(db, "s1", "i1") is None

    def test_earlier_round_rejected_after_next_round(
        self, db: sqlite3.Connection, coordinator: RoundTransitionCoordinator, app_id: str,
    ) -> None:
        coordinator.apply_round_outcome(app_id, S.FORM_APPROVED, 1, RoundOutcome.PASSED)
        coordinator.apply_round_outcome(app_id, S.QUIZ_COMPLETED, 2, RoundOutcome.PENDING)
        with pytest.raises(InvalidTransition, match="out of order"):
            coordinator.apply_round_outcome(app_id, S.REJECTED, 1, RoundOutcome.FAILED)
        record = get_application(db, app_id)
        assert record is not None
        assert record.status == S.QUIZ_COMPLETED
        assert [(r.round_number, r.status) for r in record.rounds] == [
            (1, RoundOutcome.PASSED),
            (2, RoundOutcome.PENDING),
        ]

    def test_terminal_status_rejects_further_rounds(
        self, coordinator: RoundTransitionCoordinator, app_id: str,
    ) -> None:
        coordinator.apply_round_outcome(app_id, S.REJECTED, 1, RoundOutcome.FAILED)
        with pytest.raises(InvalidTransition):
            coordinator.apply_round_outcome(app_id, S.FORM_APPROVED, 1, RoundOutcome.PASSED)

    def test_re_evaluation_replaces_round_and_compensates_counter(
        self, db: sqlite3.Connection, coordinator: RoundTransitionCoordinator, app_id: str,
    ) -> None:
        coordinator.apply_round_outcome(app_id, S.FORM_APPROVED, 1, RoundOutcome.PASSED)
        record = coordinator.apply_round_outcome(app_id, S.FORM_REJECTED, 1, RoundOutcome.FAILED,
                                                 "Missing documents")
        assert len(record.rounds) == 1
        assert record.rounds[0].status == RoundOutcome.FAILED
        assert record.current_round == 1

        c = get_counter(db, "i1", 1)
        assert c is not None
        assert (c.total_applicants, c.passed, c.rejected) == (1, 0, 1)

    def test_selected_at_set_once(
        self, coordinator: RoundTransitionCoordinator, clock: FakeClock, app_id: str,
    ) -> None:
        coordinator.apply_round_outcome(app_id, S.FORM_APPROVED, 1, RoundOutcome.PASSED)
        coordinator.apply_round_outcome(app_id, S.QUIZ_COMPLETED, 2, RoundOutcome.PENDING)
        first = coordinator.apply_round_outcome(app_id, S.SELECTED, 2, RoundOutcome.PASSED)
        assert first.selected_at == clock.now
        selected_at = first.selected_at

        clock.advance(5)
        again = coordinator.apply_round_outcome(app_id, S.SELECTED, 2, RoundOutcome.PASSED,
                                                "Confirmed")
        assert again.selected_at == selected_at
        assert again.updated_at == clock.now

    def test_rejected_at_set(
        self, coordinator: RoundTransitionCoordinator, clock: FakeClock, app_id: str,
    ) -> None:
        record = coordinator.apply_round_outcome(app_id, S.REJECTED, 1, RoundOutcome.FAILED)
        assert record.rejected_at == clock.now
        assert record.selected_at is None


class TestListeners:
    def test_event_carries_previous_outcome(self, db: sqlite3.Connection) -> None:
        events: list[RoundOutcomeEvent] = []
        coordinator = RoundTransitionCoordinator(db, listeners=[events.append])
        coordinator.create_application("s1", "i1", application_id="a1")
        coordinator.apply_round_outcome("a1", S.FORM_APPROVED, 1, RoundOutcome.PASSED)
        coordinator.apply_round_outcome("a1", S.FORM_REJECTED, 1, RoundOutcome.FAILED)
        assert [e.previous_outcome for e in events] == [None, RoundOutcome.PASSED]
        assert events[1].outcome == RoundOutcome.FAILED

    def test_subscribe(self, db: sqlite3.Connection) -> None:
        listener = MagicMock()
        coordinator = RoundTransitionCoordinator(db)
        coordinator.subscribe(listener)
        coordinator.create_application("s1", "i1", application_id="a1")
        coordinator.apply_round_outcome("a1", S.FORM_APPROVED, 1, RoundOutcome.PASSED)
        listener.assert_called_once()

    def test_projection_failure_logged_not_rolled_back(
        self, db: sqlite3.Connection, caplog: pytest.LogCaptureFixture,
    ) -> None:
        failing = MagicMock(side_effect=ProjectionError("summary store down"))
        counter = MagicMock()
        coordinator = RoundTransitionCoordinator(db, listeners=[failing, counter])
        coordinator.create_application("s1", "i1", application_id="a1")

        with caplog.at_level(logging.WARNING, logger="src.lifecycle.coordinator"):
            record = coordinator.apply_round_outcome("a1", S.FORM_APPROVED, 1,
                                                     RoundOutcome.PASSED)

        assert record.status == S.FORM_APPROVED
        stored = get_application(db, "a1")
        assert stored is not None
        assert stored.status == S.FORM_APPROVED
        counter.assert_called_once()
        assert "summary store down" in caplog.text

    def test_counter_failure_logged(
        self, db: sqlite3.Connection, caplog: pytest.LogCaptureFixture,
    ) -> None:
        failing = MagicMock(side_effect=CounterError("locked"))
        coordinator = RoundTransitionCoordinator(db, listeners=[failing])
        coordinator.create_application("s1", "i1", application_id="a1")
        with caplog.at_level(logging.WARNING, logger="src.lifecycle.coordinator"):
            coordinator.apply_round_outcome("a1", S.FORM_APPROVED, 1, RoundOutcome.PASSED)
        assert "locked" in caplog.text

    def test_unexpected_listener_error_propagates(self, db: sqlite3.Connection) -> None:
        coordinator = RoundTransitionCoordinator(
            db, listeners=[MagicMock(side_effect=RuntimeError("bug"))],
        )
        coordinator.create_application("s1", "i1", application_id="a1")
        with pytest.raises(RuntimeError):
            coordinator.apply_round_outcome("a1", S.FORM_APPROVED, 1, RoundOutcome.PASSED)
        # canonical write already happened
        assert get_application(db, "a1").status == S.FORM_APPROVED  # type: ignore[union-attr]


class TestAcceptOffer:
    def _select(self, coordinator: RoundTransitionCoordinator, app_id: str) -> None:
        coordinator.apply_round_outcome(app_id, S.FORM_APPROVED, 1, RoundOutcome.PASSED)
        coordinator.apply_round_outcome(app_id, S.QUIZ_COMPLETED, 2, RoundOutcome.PENDING)
        coordinator.apply_round_outcome(app_id, S.SELECTED, 2, RoundOutcome.PASSED)

    def test_accepts_selected(
        self, db: sqlite3.Connection, coordinator: RoundTransitionCoordinator,
        clock: FakeClock, app_id: str,
    ) -> None:
        self._select(coordinator, app_id)
        record = coordinator.accept_offer(app_id, "s1")
        assert record.status == S.OFFER_ACCEPTED
        assert record.offer_accepted_at == clock.now
        assert len(record.rounds) == 2

        summary = get_summary(db, "s1", "i1")
        assert summary is not None
        assert summary.status == S.OFFER_ACCEPTED
        c = get_counter(db, "i1", 2)
        assert c is not None
        assert (c.total_applicants, c.passed) == (1, 1)

    def test_wrong_student(self, coordinator: RoundTransitionCoordinator, app_id: str) -> None:
        self._select(coordinator, app_id)
        with pytest.raises(InvalidTransition, match="does not belong"):
            coordinator.accept_offer(app_id, "s2")

    def test_not_selected(self, coordinator: RoundTransitionCoordinator, app_id: str) -> None:
        with pytest.raises(InvalidTransition, match="only a selected"):
            coordinator.accept_offer(app_id, "s1")

    def test_offer_accepted_is_terminal(
        self, coordinator: RoundTransitionCoordinator, app_id: str,
    ) -> None:
        self._select(coordinator, app_id)
        coordinator.accept_offer(app_id, "s1")
        with pytest.raises(InvalidTransition):
            coordinator.apply_round_outcome(app_id, S.REJECTED, 2, RoundOutcome.FAILED)
