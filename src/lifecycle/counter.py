"""Aggregate counter: per-(internship, round) pass/fail/pending tallies.

Every update is a single upsert statement, so concurrent evaluators acting on
different applications for the same internship never lose an increment.
Re-evaluations move one unit between buckets instead of counting twice.
"""

import logging
import sqlite3
import time

from src.core.config import CounterConfig
from src.core.db import increment_counter
from src.core.errors import CounterError
from src.core.schemas import RoundOutcome, RoundOutcomeEvent

logger = logging.getLogger(__name__)

# Round outcome → counter column
BUCKETS: dict[RoundOutcome, str] = {
    RoundOutcome.PASSED: "passed",
    RoundOutcome.FAILED: "rejected",
    RoundOutcome.PENDING: "pending",
}


def outcome_deltas(
    outcome: RoundOutcome,
    previous_outcome: RoundOutcome | None = None,
) -> dict[str, int]:
    """Compute counter deltas for an evaluation.

    First evaluation of an application+round counts a new applicant; a changed
    re-evaluation decrements the old bucket and increments the new one; an
    unchanged re-evaluation is a no-op (empty dict).
    """
    if previous_outcome is None:
        return {"total": 1, BUCKETS[outcome]: 1}
    if previous_outcome == outcome:
        return {}
    return {BUCKETS[previous_outcome]: -1, BUCKETS[outcome]: 1}


class AggregateCounter:
    """Maintains round tallies. Registered as a coordinator listener.

    Usage::

        counter = AggregateCounter(conn, settings.counters)
        counter.record_outcome("intern-1", 2, RoundOutcome.PASSED)
    """

    def __init__(self, conn: sqlite3.Connection, config: CounterConfig | None = None) -> None:
        self._conn = conn
        self._config = config or CounterConfig()

    def __call__(self, event: RoundOutcomeEvent) -> None:
        self.record_outcome(
            event.internship_id,
            event.round_number,
            event.outcome,
            previous_outcome=event.previous_outcome,
        )

    def record_outcome(
        self,
        internship_id: str,
        round_number: int,
        outcome: RoundOutcome,
        previous_outcome: RoundOutcome | None = None,
    ) -> None:
        """Atomically fold one evaluation into the (internship, round) counter.

        Raises CounterError when the store stays locked past max_retries.
        """
        deltas = outcome_deltas(outcome, previous_outcome)
        if not deltas:
            logger.debug(
                "Counter %s/%d: outcome unchanged (%s), nothing to record",
                internship_id, round_number, outcome.value,
            )
            return

        attempts = self._config.max_retries
        for attempt in range(1, attempts + 1):
            try:
                increment_counter(
                    self._conn,
                    internship_id,
                    round_number,
                    total_delta=deltas.get("total", 0),
                    passed_delta=deltas.get("passed", 0),
                    rejected_delta=deltas.get("rejected", 0),
                    pending_delta=deltas.get("pending", 0),
                )
            except sqlite3.OperationalError as e:
                self._conn.rollback()
                if attempt == attempts:
                    msg = (
                        f"Counter {internship_id}/{round_number} not updated "
                        f"after {attempts} attempts: {e}"
                    )
                    raise CounterError(msg) from e
                logger.debug(
                    "Counter %s/%d busy (attempt %d/%d): %s",
                    internship_id, round_number, attempt, attempts, e,
                )
                time.sleep(self._config.retry_delay_s * attempt)
            except sqlite3.Error as e:
                msg = f"Counter {internship_id}/{round_number} update failed: {e}"
                raise CounterError(msg) from e
            else:
                logger.debug(
                    "Counter %s/%d updated: %s", internship_id, round_number, deltas,
                )
                return
