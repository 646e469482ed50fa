"""SQLite record store for applications, summaries, counters, and submissions.

Records are stored as JSON documents keyed by their natural key; counters are
plain integer columns so they can be incremented atomically in one statement.
"""

import sqlite3
from datetime import datetime
from pathlib import Path

from src.core.schemas import (
    ApplicationRecord,
    AssessmentTest,
    InternshipInfo,
    RoundCounter,
    SubmissionArtifact,
    SummaryView,
)

_APPLICATIONS_TABLE = """
CREATE TABLE IF NOT EXISTS applications (
    id              TEXT PRIMARY KEY,
    student_id      TEXT NOT NULL,
    internship_id   TEXT NOT NULL,
    status          TEXT NOT NULL,
    doc             TEXT NOT NULL,
    updated_at      TEXT NOT NULL,
    UNIQUE(student_id, internship_id)
);
"""

_SUMMARIES_TABLE = """
CREATE TABLE IF NOT EXISTS summaries (
    student_id      TEXT NOT NULL,
    internship_id   TEXT NOT NULL,
    doc             TEXT NOT NULL,
    PRIMARY KEY (student_id, internship_id)
);
"""

_ROUND_COUNTERS_TABLE = """
CREATE TABLE IF NOT EXISTS round_counters (
    internship_id    TEXT    NOT NULL,
    round_number     INTEGER NOT NULL,
    total_applicants INTEGER NOT NULL DEFAULT 0,
    passed           INTEGER NOT NULL DEFAULT 0,
    rejected         INTEGER NOT NULL DEFAULT 0,
    pending          INTEGER NOT NULL DEFAULT 0,
    last_updated     TEXT    NOT NULL,
    PRIMARY KEY (internship_id, round_number)
);
"""

_INTERNSHIPS_TABLE = """
CREATE TABLE IF NOT EXISTS internships (
    id              TEXT PRIMARY KEY,
    title           TEXT NOT NULL,
    company_name    TEXT NOT NULL DEFAULT ''
);
"""

_TESTS_TABLE = """
CREATE TABLE IF NOT EXISTS tests (
    id              TEXT PRIMARY KEY,
    internship_id   TEXT NOT NULL,
    doc             TEXT NOT NULL
);
"""

_SUBMISSIONS_TABLE = """
CREATE TABLE IF NOT EXISTS submissions (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    application_id  TEXT NOT NULL,
    status          TEXT NOT NULL DEFAULT 'pending',
    doc             TEXT NOT NULL,
    submitted_at    TEXT NOT NULL
);
"""


def connect(path: str | Path, timeout: float = 5.0) -> sqlite3.Connection:
    """Open a connection to an existing database (one per thread)."""
    conn = sqlite3.connect(str(path), timeout=timeout)
    conn.row_factory = sqlite3.Row
    return conn


def init_db(path: str | Path) -> sqlite3.Connection:
    """Create the database and tables, returning a connection."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = connect(path)
    conn.execute("PRAGMA journal_mode=WAL")
    for ddl in (
        _APPLICATIONS_TABLE,
        _SUMMARIES_TABLE,
        _ROUND_COUNTERS_TABLE,
        _INTERNSHIPS_TABLE,
        _TESTS_TABLE,
        _SUBMISSIONS_TABLE,
    ):
        conn.execute(ddl)
    conn.commit()
    return conn


# ---------------------------------------------------------------------------
# Applications
# ---------------------------------------------------------------------------


def get_application(conn: sqlite3.Connection, application_id: str) -> ApplicationRecord | None:
    row = conn.execute(
        "SELECT doc FROM applications WHERE id = ?", (application_id,),
    ).fetchone()
    if row is None:
        return None
    return ApplicationRecord.model_validate_json(row["doc"])


def find_application(
    conn: sqlite3.Connection,
    student_id: str,
    internship_id: str,
) -> ApplicationRecord | None:
    """Look up the application for a (student, internship) pair."""
    row = conn.execute(
        "SELECT doc FROM applications WHERE student_id = ? AND internship_id = ?",
        (student_id, internship_id),
    ).fetchone()
    if row is None:
        return None
    return ApplicationRecord.model_validate_json(row["doc"])


def insert_application(conn: sqlite3.Connection, record: ApplicationRecord) -> bool:
    """Insert a new application.

    Returns False if the id or the (student, internship) pair already exists.
    """
    try:
        conn.execute(
            """
            INSERT INTO applications (id, student_id, internship_id, status, doc, updated_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                record.id,
                record.student_id,
                record.internship_id,
                record.status.value,
                record.model_dump_json(),
                record.updated_at.isoformat(),
            ),
        )
        conn.commit()
        return True
    except sqlite3.IntegrityError:
        return False


def put_application(conn: sqlite3.Connection, record: ApplicationRecord) -> None:
    """Overwrite the stored application document (last write wins)."""
    conn.execute(
        """
        UPDATE applications SET status = ?, doc = ?, updated_at = ?
        WHERE id = ?
        """,
        (record.status.value, record.model_dump_json(), record.updated_at.isoformat(), record.id),
    )
    conn.commit()


def list_applications(
    conn: sqlite3.Connection,
    internship_id: str,
    status: str | None = None,
) -> list[ApplicationRecord]:
    """Return applications for an internship, optionally filtered by status."""
    if status is None:
        rows = conn.execute(
            "SELECT doc FROM applications WHERE internship_id = ? ORDER BY id",
            (internship_id,),
        ).fetchall()
    else:
        rows = conn.execute(
            "SELECT doc FROM applications WHERE internship_id = ? AND status = ? ORDER BY id",
            (internship_id, status),
        ).fetchall()
    return [ApplicationRecord.model_validate_json(r["doc"]) for r in rows]


# ---------------------------------------------------------------------------
# Summaries
# ---------------------------------------------------------------------------


def get_summary(
    conn: sqlite3.Connection,
    student_id: str,
    internship_id: str,
) -> SummaryView | None:
    row = conn.execute(
        "SELECT doc FROM summaries WHERE student_id = ? AND internship_id = ?",
        (student_id, internship_id),
    ).fetchone()
    if row is None:
        return None
    return SummaryView.model_validate_json(row["doc"])


def put_summary(conn: sqlite3.Connection, summary: SummaryView) -> None:
    conn.execute(
        """
        INSERT INTO summaries (student_id, internship_id, doc)
        VALUES (?, ?, ?)
        ON CONFLICT(student_id, internship_id) DO UPDATE SET doc = excluded.doc
        """,
        (summary.student_id, summary.internship_id, summary.model_dump_json()),
    )
    conn.commit()


def list_summaries(conn: sqlite3.Connection, student_id: str) -> list[SummaryView]:
    """Return every application summary for a student (dashboard view)."""
    rows = conn.execute(
        "SELECT doc FROM summaries WHERE student_id = ? ORDER BY internship_id",
        (student_id,),
    ).fetchall()
    return [SummaryView.model_validate_json(r["doc"]) for r in rows]


# ---------------------------------------------------------------------------
# Round counters
# ---------------------------------------------------------------------------


def get_counter(
    conn: sqlite3.Connection,
    internship_id: str,
    round_number: int,
) -> RoundCounter | None:
    row = conn.execute(
        """
        SELECT internship_id, round_number, total_applicants, passed, rejected,
               pending, last_updated
        FROM round_counters WHERE internship_id = ? AND round_number = ?
        """,
        (internship_id, round_number),
    ).fetchone()
    if row is None:
        return None
    return RoundCounter.model_validate(dict(row))


def increment_counter(
    conn: sqlite3.Connection,
    internship_id: str,
    round_number: int,
    total_delta: int = 0,
    passed_delta: int = 0,
    rejected_delta: int = 0,
    pending_delta: int = 0,
) -> None:
    """Apply deltas to a round counter in one statement. Creates the row if needed.

    Counters never go below zero.
    """
    conn.execute(
        """
        INSERT INTO round_counters
            (internship_id, round_number, total_applicants, passed, rejected,
             pending, last_updated)
        VALUES (:internship_id, :round_number, MAX(0, :total), MAX(0, :passed),
                MAX(0, :rejected), MAX(0, :pending), :now)
        ON CONFLICT(internship_id, round_number)
        DO UPDATE SET
            total_applicants = MAX(0, total_applicants + :total),
            passed = MAX(0, passed + :passed),
            rejected = MAX(0, rejected + :rejected),
            pending = MAX(0, pending + :pending),
            last_updated = :now
        """,
        {
            "internship_id": internship_id,
            "round_number": round_number,
            "total": total_delta,
            "passed": passed_delta,
            "rejected": rejected_delta,
            "pending": pending_delta,
            "now": datetime.now().isoformat(),
        },
    )
    conn.commit()


# ---------------------------------------------------------------------------
# Internships and tests
# ---------------------------------------------------------------------------


def put_internship(conn: sqlite3.Connection, internship: InternshipInfo) -> None:
    conn.execute(
        """
        INSERT INTO internships (id, title, company_name) VALUES (?, ?, ?)
        ON CONFLICT(id) DO UPDATE SET
            title = excluded.title,
            company_name = excluded.company_name
        """,
        (internship.id, internship.title, internship.company_name),
    )
    conn.commit()


def get_internship(conn: sqlite3.Connection, internship_id: str) -> InternshipInfo | None:
    row = conn.execute(
        "SELECT id, title, company_name FROM internships WHERE id = ?",
        (internship_id,),
    ).fetchone()
    if row is None:
        return None
    return InternshipInfo.model_validate(dict(row))


def delete_internship(conn: sqlite3.Connection, internship_id: str) -> bool:
    cursor = conn.execute("DELETE FROM internships WHERE id = ?", (internship_id,))
    conn.commit()
    return cursor.rowcount > 0


def put_test(conn: sqlite3.Connection, test: AssessmentTest) -> None:
    conn.execute(
        """
        INSERT INTO tests (id, internship_id, doc) VALUES (?, ?, ?)
        ON CONFLICT(id) DO UPDATE SET
            internship_id = excluded.internship_id,
            doc = excluded.doc
        """,
        (test.id, test.internship_id, test.model_dump_json()),
    )
    conn.commit()


def get_test_for_internship(
    conn: sqlite3.Connection,
    internship_id: str,
) -> AssessmentTest | None:
    """Return the test assigned to an internship (first by id if several)."""
    row = conn.execute(
        "SELECT doc FROM tests WHERE internship_id = ? ORDER BY id LIMIT 1",
        (internship_id,),
    ).fetchone()
    if row is None:
        return None
    return AssessmentTest.model_validate_json(row["doc"])


# ---------------------------------------------------------------------------
# Submissions
# ---------------------------------------------------------------------------


def insert_submission(conn: sqlite3.Connection, artifact: SubmissionArtifact) -> int:
    """Persist a submission artifact. Returns the row ID."""
    cursor = conn.execute(
        """
        INSERT INTO submissions (application_id, status, doc, submitted_at)
        VALUES (?, ?, ?, ?)
        """,
        (
            artifact.application_id,
            artifact.status,
            artifact.model_dump_json(by_alias=True),
            artifact.submitted_at.isoformat(),
        ),
    )
    conn.commit()
    return cursor.lastrowid or 0


def get_submission(conn: sqlite3.Connection, submission_id: int) -> SubmissionArtifact | None:
    row = conn.execute(
        "SELECT doc FROM submissions WHERE id = ?", (submission_id,),
    ).fetchone()
    if row is None:
        return None
    return SubmissionArtifact.model_validate_json(row["doc"])


def update_submission(
    conn: sqlite3.Connection,
    submission_id: int,
    artifact: SubmissionArtifact,
) -> None:
    conn.execute(
        "UPDATE submissions SET status = ?, doc = ? WHERE id = ?",
        (artifact.status, artifact.model_dump_json(by_alias=True), submission_id),
    )
    conn.commit()


def count_submissions(conn: sqlite3.Connection, application_id: str) -> int:
    row = conn.execute(
        "SELECT COUNT(*) FROM submissions WHERE application_id = ?",
        (application_id,),
    ).fetchone()
    return int(row[0])
