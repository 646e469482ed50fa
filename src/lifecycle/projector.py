"""Summary projector: the per-student applications overview.

The summary is a denormalized copy of the canonical record: display fields are
fetched from the internship catalog once, on first write, and never joined
again. Failures surface as ProjectionError so the coordinator can log them
without undoing the canonical update.
"""

import logging
import sqlite3
from datetime import datetime

from src.collaborators.base import InternshipCatalog
from src.core.db import get_summary, put_summary
from src.core.errors import ProjectionError
from src.core.schemas import (
    ApplicationStatus,
    RoundOutcome,
    RoundOutcomeEvent,
    RoundResult,
    SummaryView,
)

logger = logging.getLogger(__name__)


def merge_round_result(
    results: list[RoundResult],
    round_number: int,
    outcome: RoundOutcome,
) -> list[RoundResult]:
    """Replace the entry for round_number, or append it. Returns a new list."""
    merged = [r for r in results if r.round != round_number]
    merged.append(RoundResult(round=round_number, status=outcome))
    merged.sort(key=lambda r: r.round)
    return merged


class SummaryProjector:
    """Keeps SummaryView rows in step with round outcome events."""

    def __init__(self, conn: sqlite3.Connection, catalog: InternshipCatalog) -> None:
        self._conn = conn
        self._catalog = catalog

    def __call__(self, event: RoundOutcomeEvent) -> None:
        self.project(
            event.student_id,
            event.internship_id,
            event.status,
            event.round_number,
            event.outcome,
        )

    def project(
        self,
        student_id: str,
        internship_id: str,
        status: ApplicationStatus,
        round_number: int,
        round_outcome: RoundOutcome,
    ) -> SummaryView:
        try:
            existing = get_summary(self._conn, student_id, internship_id)
        except sqlite3.Error as e:
            msg = f"Summary {student_id}/{internship_id} could not be read: {e}"
            raise ProjectionError(msg) from e

        if existing is None:
            summary = self._new_summary(student_id, internship_id, status)
        else:
            summary = existing

        round_results = merge_round_result(summary.round_results, round_number, round_outcome)
        summary = summary.model_copy(
            update={
                "status": status,
                "round_results": round_results,
                "current_round": max(r.round for r in round_results),
                "last_updated": datetime.now(),
            },
        )

        try:
            put_summary(self._conn, summary)
        except sqlite3.Error as e:
            msg = f"Summary {student_id}/{internship_id} could not be written: {e}"
            raise ProjectionError(msg) from e

        logger.debug(
            "Projected summary %s/%s: round %d %s, status %s",
            student_id, internship_id, round_number, round_outcome.value, status.value,
        )
        return summary

    def _new_summary(
        self,
        student_id: str,
        internship_id: str,
        status: ApplicationStatus,
    ) -> SummaryView:
        try:
            internship = self._catalog.get(internship_id)
        except sqlite3.Error as e:
            msg = f"Internship {internship_id} could not be read: {e}"
            raise ProjectionError(msg) from e
        if internship is None:
            msg = f"Internship not found: {internship_id}"
            raise ProjectionError(msg)
        return SummaryView(
            student_id=student_id,
            internship_id=internship_id,
            internship_title=internship.title,
            company_name=internship.company_name,
            status=status,
        )
