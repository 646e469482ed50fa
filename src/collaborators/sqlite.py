"""SQLite-backed and static collaborator implementations."""

import sqlite3

from src.collaborators.base import IdentityProvider, InternshipCatalog, QuestionBank
from src.core.db import get_internship, get_test_for_internship
from src.core.schemas import ApplicationRecord, AssessmentTest, CurrentUser, InternshipInfo


class SqliteInternshipCatalog(InternshipCatalog):
    """Reads internships from the same database as the engine."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn

    def get(self, internship_id: str) -> InternshipInfo | None:
        return get_internship(self._conn, internship_id)


class SqliteQuestionBank(QuestionBank):
    """Looks up the test assigned to the application's internship."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn

    def get_for_application(self, application: ApplicationRecord) -> AssessmentTest | None:
        return get_test_for_internship(self._conn, application.internship_id)


class StaticIdentityProvider(IdentityProvider):
    """Returns a fixed user, e.g. from CLI flags."""

    def __init__(self, user: CurrentUser) -> None:
        self._user = user

    def current_user(self) -> CurrentUser:
        return self._user
