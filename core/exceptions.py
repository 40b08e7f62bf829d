"""Application-wide exception classes."""

from __future__ import annotations

from typing import Optional, Sequence


class ApplicationError(Exception):
    """Base exception for all application errors."""
    pass


class ConfigurationError(ApplicationError):
    """Raised when configuration is invalid."""
    pass


class DatabaseError(ApplicationError):
    """Base exception for database-related errors."""
    pass


class ConnectionPoolError(DatabaseError):
    """Raised when database connection pool has issues."""
    pass


class ResultCommitError(DatabaseError):
    """Raised when the lottery result set could not be committed."""
    pass


class ServiceError(ApplicationError):
    """Base exception for service-level errors."""
    pass


class LotteryError(ServiceError):
    """Base exception for lottery operations."""
    pass


class LotteryAlreadyRunningError(LotteryError):
    """Raised when a job is already RUNNING for the event."""

    def __init__(self, event_id: int) -> None:
        super().__init__(f"A lottery is already running for event {event_id}")
        self.event_id = event_id


class LotteryStateError(LotteryError):
    """Raised when an operation does not fit the job's current state."""
    pass


class SnapshotError(LotteryError):
    """Raised when the lottery input snapshot is malformed."""

    def __init__(self, problems: Sequence[str]) -> None:
        self.problems = list(problems)
        summary = "; ".join(self.problems[:5])
        if len(self.problems) > 5:
            summary += f"; and {len(self.problems) - 5} more"
        super().__init__(f"Invalid lottery snapshot: {summary}")


class ValidationError(ApplicationError):
    """Raised when data validation fails."""
    pass


class NotFoundError(ApplicationError):
    """Raised when a referenced entity does not exist."""

    def __init__(self, entity: str, entity_id: Optional[object] = None) -> None:
        message = f"{entity} not found" if entity_id is None else f"{entity} {entity_id} not found"
        super().__init__(message)
        self.entity = entity
        self.entity_id = entity_id


class AuthenticationError(ApplicationError):
    """Raised when authentication fails."""
    pass


class AuthorizationError(ApplicationError):
    """Raised when authorization fails."""
    pass
