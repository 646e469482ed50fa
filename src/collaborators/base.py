"""Abstract contracts for the collaborators the engine consumes."""

from abc import ABC, abstractmethod

from src.core.schemas import ApplicationRecord, AssessmentTest, CurrentUser, InternshipInfo


class InternshipCatalog(ABC):
    """Read-only source of internship display fields."""

    @abstractmethod
    def get(self, internship_id: str) -> InternshipInfo | None:
        """Return title and company for an internship, or None if it does not exist."""


class IdentityProvider(ABC):
    """Authentication collaborator. Ids are threaded explicitly from here on."""

    @abstractmethod
    def current_user(self) -> CurrentUser:
        """Return the signed-in user."""


class QuestionBank(ABC):
    """Source of the Round-2 test assigned to an application."""

    @abstractmethod
    def get_for_application(self, application: ApplicationRecord) -> AssessmentTest | None:
        """Return the test assigned to this application, or None."""
