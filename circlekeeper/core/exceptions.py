"""CircleKeeper Exception Hierarchy.

All custom exceptions inherit from CircleKeeperError.
Every error here is an expected, recoverable condition: callers can
retry, pick a different action, or show the offending id to the user.

Exception Hierarchy:
    CircleKeeperError (base)
    ├── ConfigurationError
    ├── ValidationError
    │   ├── InvalidTier
    │   └── BatchValidationError
    ├── DatabaseError
    │   └── ConcurrentModificationError
    ├── ContactNotFound
    ├── SessionNotFound
    └── PartialBatchFailure
"""

from typing import Any, Iterable, Optional


class CircleKeeperError(Exception):
    """Base exception for all CircleKeeper errors.

    All custom exceptions inherit from this class,
    allowing for broad exception handling when needed.
    """

    pass


class ConfigurationError(CircleKeeperError):
    """Configuration is invalid or missing.

    Raised when:
        - Configuration value cannot be parsed
        - Path is not writable
    """

    pass


class ValidationError(CircleKeeperError):
    """Data validation failed.

    Raised when:
        - Required argument is missing for the requested action
        - Session is no longer active
        - Business rule validation fails
    """

    pass


class InvalidTier(ValidationError):
    """Tier value is not one of the four circles."""

    def __init__(self, value: Any) -> None:
        self.value = value
        super().__init__(f"Invalid tier: {value!r}")


class BatchValidationError(ValidationError):
    """Batch commit aborted before any write.

    Attributes:
        missing_ids: Contact ids that do not exist for the owner
    """

    def __init__(self, missing_ids: Iterable[int]) -> None:
        self.missing_ids = list(missing_ids)
        ids = ", ".join(str(i) for i in self.missing_ids)
        super().__init__(f"Batch aborted, contacts not found: {ids}")


class DatabaseError(CircleKeeperError):
    """Database operation failed.

    Raised when:
        - Database file cannot be opened
        - Database is locked
        - Query execution fails
    """

    pass


class ConcurrentModificationError(DatabaseError):
    """A tier write lost a race with another writer.

    The contact changed between read and write. Nothing was persisted;
    the caller should re-read and retry.
    """

    def __init__(self, contact_id: int) -> None:
        self.contact_id = contact_id
        super().__init__(f"Contact {contact_id} was modified concurrently, retry the commit")


class ContactNotFound(CircleKeeperError):
    """Contact does not exist or is not owned by the caller."""

    def __init__(self, contact_id: Any) -> None:
        self.contact_id = contact_id
        super().__init__(f"Contact {contact_id} not found")


class SessionNotFound(CircleKeeperError):
    """Review session does not exist or is not owned by the caller."""

    def __init__(self, session_id: Any) -> None:
        self.session_id = session_id
        super().__init__(f"Review session {session_id} not found")


class PartialBatchFailure(CircleKeeperError):
    """Some items of a best-effort bulk operation failed.

    Successful items are NOT rolled back.

    Attributes:
        succeeded: Ids that were processed
        failures: Mapping of failed id -> reason
    """

    def __init__(
        self,
        succeeded: Iterable[int],
        failures: dict[int, str],
        message: Optional[str] = None,
    ) -> None:
        self.succeeded = list(succeeded)
        self.failures = dict(failures)
        if message is None:
            failed = ", ".join(f"{cid} ({reason})" for cid, reason in self.failures.items())
            message = f"{len(self.failures)} item(s) failed: {failed}"
        super().__init__(message)
