"""Core package - Configuration, logging, exceptions, clock.

This package provides foundational infrastructure used by all other layers.

Modules:
    - config: Environment and configuration management
    - logging: Structured JSON logging
    - exceptions: Custom exception hierarchy
    - clock: Injectable UTC clock
"""

from circlekeeper.core.exceptions import (
    BatchValidationError,
    CircleKeeperError,
    ConcurrentModificationError,
    ConfigurationError,
    ContactNotFound,
    DatabaseError,
    InvalidTier,
    PartialBatchFailure,
    SessionNotFound,
    ValidationError,
)

__all__ = [
    "CircleKeeperError",
    "ConfigurationError",
    "ValidationError",
    "InvalidTier",
    "BatchValidationError",
    "DatabaseError",
    "ConcurrentModificationError",
    "ContactNotFound",
    "SessionNotFound",
    "PartialBatchFailure",
]
