"""Error taxonomy for the lifecycle engine.

NotFound and InvalidTransition abort the requested operation and reach the
caller. ProjectionError and CounterError are raised by listeners and recovered
by the coordinator. SessionReentry never leaves the assessment session.
"""

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from src.core.schemas import SubmissionArtifact


class LifecycleError(Exception):
    """Base class for all lifecycle engine errors."""


class NotFound(LifecycleError):
    """A referenced application, internship, test or submission does not exist."""


class InvalidTransition(LifecycleError):
    """The requested status or round change is not allowed."""


class ProjectionError(LifecycleError):
    """The student summary could not be written."""


class CounterError(LifecycleError):
    """The aggregate counter could not be updated after retries."""


class SessionReentry(LifecycleError):
    """A second submission was attempted for the same assessment session."""


class IntegrityBlock(LifecycleError):
    """The assessment was terminated for excess focus loss and auto-submitted."""

    def __init__(self, message: str, artifact: "SubmissionArtifact | None" = None) -> None:
        super().__init__(message)
        self.artifact = artifact
