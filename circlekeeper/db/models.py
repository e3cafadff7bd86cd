"""Data models and enumerations for CircleKeeper.

All enums stored as TEXT in SQLite.
Dataclasses use frozen=False for mutability during processing.

This module defines:
    - Enumerations for all categorical fields
    - Tier definitions (names, sizes, default cadence)
    - Dataclasses for database records
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional

# =============================================================================
# ENUMERATIONS
# =============================================================================


class Tier(str, Enum):
    """Engagement circle a contact belongs to.

    Ordered smallest (closest) to largest.

    Values:
        INNER: Inner circle, the handful of people talked to constantly
        CLOSE: Close friends
        ACTIVE: Active friends, regular but not constant contact
        CASUAL: Casual network, occasional contact
    """

    INNER = "inner"
    CLOSE = "close"
    ACTIVE = "active"
    CASUAL = "casual"


class Channel(str, Enum):
    """How an interaction happened."""

    MESSAGE = "message"
    CALL = "call"
    IN_PERSON = "in_person"
    CALENDAR = "calendar"


class ActorKind(str, Enum):
    """Who caused a tier change.

    USER: The owner picked the tier
    AUTOMATIC: Accepted engine suggestion
    SYSTEM: Maintenance jobs such as rebalancing
    """

    USER = "user"
    AUTOMATIC = "automatic"
    SYSTEM = "system"


class ReviewType(str, Enum):
    """Why a contact is in a review session."""

    CATEGORIZE = "categorize"
    MAINTAIN = "maintain"
    PRUNE = "prune"


class ReviewAction(str, Enum):
    """What the owner decided for a reviewed contact."""

    KEEP = "keep"
    ARCHIVE = "archive"
    UPDATE_CIRCLE = "update_circle"
    SET_PREFERENCE = "set_preference"


class CapacityStatus(str, Enum):
    """Population of a tier relative to its target size."""

    UNDER = "under"
    OPTIMAL = "optimal"
    OVER = "over"


class FrequencyPreference(str, Enum):
    """How often the owner wants to be in touch with a contact."""

    DAILY = "daily"
    WEEKLY = "weekly"
    BIWEEKLY = "biweekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    YEARLY = "yearly"
    FLEXIBLE = "flexible"
    NA = "na"


# =============================================================================
# TIER DEFINITIONS
# =============================================================================


@dataclass(frozen=True)
class TierDefinition:
    """Display metadata and capacity targets for one tier.

    Attributes:
        tier: The tier
        name: Display name
        description: One-line description
        recommended_size: Target population
        max_size: Upper bound of the optimal band
        default_frequency: Suggested contact cadence
    """

    tier: Tier
    name: str
    description: str
    recommended_size: int
    max_size: int
    default_frequency: FrequencyPreference


TIER_ORDER: tuple[Tier, ...] = (Tier.INNER, Tier.CLOSE, Tier.ACTIVE, Tier.CASUAL)

TIER_DEFINITIONS: dict[Tier, TierDefinition] = {
    Tier.INNER: TierDefinition(
        tier=Tier.INNER,
        name="Inner Circle",
        description="Closest relationships, people you talk to constantly",
        recommended_size=10,
        max_size=10,
        default_frequency=FrequencyPreference.WEEKLY,
    ),
    Tier.CLOSE: TierDefinition(
        tier=Tier.CLOSE,
        name="Close Friends",
        description="Good friends you keep up with regularly",
        recommended_size=25,
        max_size=25,
        default_frequency=FrequencyPreference.BIWEEKLY,
    ),
    Tier.ACTIVE: TierDefinition(
        tier=Tier.ACTIVE,
        name="Active Friends",
        description="Friends you see or message now and then",
        recommended_size=50,
        max_size=50,
        default_frequency=FrequencyPreference.MONTHLY,
    ),
    Tier.CASUAL: TierDefinition(
        tier=Tier.CASUAL,
        name="Casual Network",
        description="Acquaintances and the wider network",
        recommended_size=100,
        max_size=100,
        default_frequency=FrequencyPreference.QUARTERLY,
    ),
}


def tier_rank(tier: Tier) -> int:
    """Return position of tier in TIER_ORDER (0 = inner)."""
    return TIER_ORDER.index(tier)


def next_larger_tier(tier: Tier) -> Optional[Tier]:
    """Return the next larger tier, or None for the largest one.

    Examples:
        >>> next_larger_tier(Tier.INNER).value
        'close'
        >>> next_larger_tier(Tier.CASUAL) is None
        True
    """
    rank = tier_rank(tier)
    if rank + 1 >= len(TIER_ORDER):
        return None
    return TIER_ORDER[rank + 1]


# =============================================================================
# DATACLASSES
# =============================================================================


@dataclass
class Contact:
    """Contact record, as far as the engine cares.

    Attributes:
        id: Primary key
        owner_id: Account that owns the contact
        name: Display name
        tier: Current circle (None = uncategorized)
        tier_assigned_at: When the current tier was committed
        tier_confidence: Confidence of the committed tier, if any
        last_interaction_at: Latest recorded interaction
        archived: Pruned from active circles
        frequency_preference: Owner's preferred cadence
        created_at: Record creation time
        updated_at: Last update time
    """

    id: Optional[int] = None
    owner_id: str = ""
    name: str = ""
    tier: Optional[Tier] = None
    tier_assigned_at: Optional[datetime] = None
    tier_confidence: Optional[float] = None
    last_interaction_at: Optional[datetime] = None
    archived: bool = False
    frequency_preference: Optional[FrequencyPreference] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass
class InteractionEvent:
    """One interaction with a contact. Immutable once recorded."""

    id: Optional[int] = None
    owner_id: str = ""
    contact_id: int = 0
    channel: Channel = Channel.MESSAGE
    occurred_at: Optional[datetime] = None


@dataclass
class AssignmentRecord:
    """Ledger entry for one tier change.

    Never updated or deleted. The latest record per contact is the
    contact's current tier.

    Attributes:
        id: Primary key
        owner_id: Account that owns the contact
        contact_id: Contact that moved
        from_tier: Tier before the change (None = uncategorized)
        to_tier: Tier after the change
        actor: Who caused the change
        confidence: Engine confidence, if the change came from a suggestion
        reason: Free-text reason
        assigned_at: When the change happened
    """

    id: Optional[int] = None
    owner_id: str = ""
    contact_id: int = 0
    from_tier: Optional[Tier] = None
    to_tier: Tier = Tier.CASUAL
    actor: ActorKind = ActorKind.USER
    confidence: Optional[float] = None
    reason: Optional[str] = None
    assigned_at: Optional[datetime] = None


@dataclass
class TierOverride:
    """The owner disagreed with a suggestion.

    Attributes:
        factors: Factor snapshot at the time of the override
    """

    id: Optional[int] = None
    owner_id: str = ""
    contact_id: int = 0
    suggested_tier: Optional[Tier] = None
    actual_tier: Tier = Tier.CASUAL
    factors: list[dict[str, Any]] = field(default_factory=list)
    recorded_at: Optional[datetime] = None


@dataclass
class ReviewItem:
    """One contact queued for review."""

    contact_id: int
    review_type: ReviewType
    last_interaction_at: Optional[datetime] = None
    suggested_action: str = ""

    def to_dict(self) -> dict[str, Any]:
        """Serialize for JSON storage."""
        return {
            "contact_id": self.contact_id,
            "review_type": self.review_type.value,
            "last_interaction_at": (
                self.last_interaction_at.isoformat() if self.last_interaction_at else None
            ),
            "suggested_action": self.suggested_action,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ReviewItem":
        """Deserialize from JSON storage."""
        last = data.get("last_interaction_at")
        return cls(
            contact_id=int(data["contact_id"]),
            review_type=ReviewType(data["review_type"]),
            last_interaction_at=datetime.fromisoformat(last) if last else None,
            suggested_action=data.get("suggested_action") or "",
        )


@dataclass
class ReviewSession:
    """Weekly review queue.

    At most one row per (owner_id, iso_year, iso_week).

    Attributes:
        id: Primary key
        owner_id: Account that owns the session
        iso_year: ISO year of the week
        iso_week: ISO week number
        items: Ordered review items
        reviewed: Contact ids reviewed so far, in review order
        started_at: When the item list was generated
        completed_at: When the session was completed
        skipped: Session was skipped, unreviewed items carry over
    """

    id: Optional[int] = None
    owner_id: str = ""
    iso_year: int = 0
    iso_week: int = 0
    items: list[ReviewItem] = field(default_factory=list)
    reviewed: list[int] = field(default_factory=list)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    skipped: bool = False

    @property
    def is_active(self) -> bool:
        """Neither completed nor skipped."""
        return self.completed_at is None and not self.skipped

    @property
    def contact_ids(self) -> list[int]:
        """Contact ids of all items, in order."""
        return [item.contact_id for item in self.items]

    def unreviewed_items(self) -> list[ReviewItem]:
        """Items not yet reviewed, in order."""
        done = set(self.reviewed)
        return [item for item in self.items if item.contact_id not in done]
