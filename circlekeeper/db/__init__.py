"""Database package - SQLite database, models, storage interfaces.

This package provides all storage functionality:
    - models: Dataclasses and enumerations
    - store: Abstract interfaces the engine depends on
    - database: SQLite implementation of those interfaces
"""

from circlekeeper.db.models import (
    ActorKind,
    AssignmentRecord,
    CapacityStatus,
    Channel,
    Contact,
    FrequencyPreference,
    InteractionEvent,
    ReviewAction,
    ReviewItem,
    ReviewSession,
    ReviewType,
    Tier,
    TierDefinition,
    TierOverride,
    TIER_DEFINITIONS,
    TIER_ORDER,
)

__all__ = [
    # Enums
    "Tier",
    "Channel",
    "ActorKind",
    "ReviewType",
    "ReviewAction",
    "CapacityStatus",
    "FrequencyPreference",
    # Tier metadata
    "TierDefinition",
    "TIER_DEFINITIONS",
    "TIER_ORDER",
    # Dataclasses
    "Contact",
    "InteractionEvent",
    "AssignmentRecord",
    "TierOverride",
    "ReviewItem",
    "ReviewSession",
]
