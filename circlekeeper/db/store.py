"""Storage interfaces the engine depends on.

The engine never talks to SQLite directly. It takes objects implementing
these interfaces, so a test can hand it any store. ``Database`` in
circlekeeper.db.database is the production implementation of both.

Every lookup is scoped by owner: a contact owned by someone else is
indistinguishable from a contact that does not exist.
"""

from abc import ABC, abstractmethod
from contextlib import AbstractContextManager
from datetime import datetime
from typing import Any, Iterable, Optional

from circlekeeper.db.models import (
    AssignmentRecord,
    Contact,
    FrequencyPreference,
    InteractionEvent,
    ReviewItem,
    ReviewSession,
    Tier,
    TierOverride,
)


class InteractionHistoryProvider(ABC):
    """Supplies interaction history for scoring."""

    @abstractmethod
    def get_interactions(self, owner_id: str, contact_id: int) -> list[InteractionEvent]:
        """Return all interactions for a contact, oldest first."""
        pass


class RelationshipStore(ABC):
    """Durable storage for contacts, the tier ledger and review sessions.

    Subclasses must implement every abstract method. Methods that write
    join an open ``transaction()`` and commit on their own otherwise.
    """

    @abstractmethod
    def transaction(self) -> AbstractContextManager[Any]:
        """Context manager grouping writes into one atomic unit.

        Nested use joins the outer transaction.
        """
        pass

    # -------------------------------------------------------------------------
    # Contacts
    # -------------------------------------------------------------------------

    @abstractmethod
    def get_contact(self, owner_id: str, contact_id: int) -> Optional[Contact]:
        """Point lookup. None if missing or owned by someone else."""
        pass

    @abstractmethod
    def get_contacts(self, owner_id: str, contact_ids: Iterable[int]) -> dict[int, Contact]:
        """Batch lookup. Missing ids are absent from the result."""
        pass

    @abstractmethod
    def get_contacts_by_tier(self, owner_id: str, tier: Tier) -> list[Contact]:
        """Non-archived members of a tier, earliest-assigned first."""
        pass

    @abstractmethod
    def get_tier_counts(self, owner_id: str) -> dict[Optional[Tier], int]:
        """Non-archived contact counts per tier (None = uncategorized)."""
        pass

    @abstractmethod
    def get_uncategorized_contacts(
        self, owner_id: str, limit: Optional[int] = None
    ) -> list[Contact]:
        """Non-archived contacts with no tier, oldest first."""
        pass

    @abstractmethod
    def get_stale_contacts(
        self,
        owner_id: str,
        interacted_before: datetime,
        include_never: bool = False,
        limit: Optional[int] = None,
    ) -> list[Contact]:
        """Tiered, non-archived contacts whose last interaction is old.

        Args:
            owner_id: Owner
            interacted_before: Last interaction strictly before this
            include_never: Also return contacts with no interaction at all
            limit: Max rows

        Returns:
            Contacts, never-interacted first, then oldest interaction first
        """
        pass

    @abstractmethod
    def get_archived_contacts(self, owner_id: str) -> list[Contact]:
        """Archived contacts, most recently updated first."""
        pass

    @abstractmethod
    def compare_and_set_tier(
        self,
        owner_id: str,
        contact_id: int,
        expected_tier: Optional[Tier],
        expected_assigned_at: Optional[datetime],
        tier: Tier,
        assigned_at: datetime,
        confidence: Optional[float] = None,
    ) -> bool:
        """Write tier fields only if they still hold the expected values.

        Returns:
            False if another writer changed the tier first
        """
        pass

    @abstractmethod
    def set_tier_for_contacts(
        self,
        owner_id: str,
        contact_ids: list[int],
        tier: Tier,
        assigned_at: datetime,
        confidence: Optional[float] = None,
    ) -> int:
        """Grouped tier update sharing one confidence. Returns rows changed."""
        pass

    @abstractmethod
    def set_archived(self, owner_id: str, contact_id: int, archived: bool) -> bool:
        """Set archived flag. Returns True if the contact exists."""
        pass

    @abstractmethod
    def set_frequency_preference(
        self, owner_id: str, contact_id: int, preference: FrequencyPreference
    ) -> bool:
        """Set frequency preference. Returns True if the contact exists."""
        pass

    # -------------------------------------------------------------------------
    # Ledger
    # -------------------------------------------------------------------------

    @abstractmethod
    def append_assignment(self, record: AssignmentRecord) -> int:
        """Insert a ledger record. Returns its id."""
        pass

    @abstractmethod
    def get_assignments(self, owner_id: str, contact_id: int) -> list[AssignmentRecord]:
        """Full ledger history of a contact, oldest first."""
        pass

    @abstractmethod
    def latest_assignment(self, owner_id: str, contact_id: int) -> Optional[AssignmentRecord]:
        """Most recent ledger record of a contact."""
        pass

    @abstractmethod
    def recent_assignments(self, owner_id: str, limit: int = 50) -> list[AssignmentRecord]:
        """Most recent ledger records across the owner's contacts, newest first."""
        pass

    @abstractmethod
    def insert_override(self, override: TierOverride) -> int:
        """Insert an override log entry. Returns its id."""
        pass

    @abstractmethod
    def get_overrides(self, owner_id: str, limit: int = 50) -> list[TierOverride]:
        """Override log, newest first."""
        pass

    # -------------------------------------------------------------------------
    # Review sessions
    # -------------------------------------------------------------------------

    @abstractmethod
    def upsert_session(
        self,
        owner_id: str,
        iso_year: int,
        iso_week: int,
        items: list[ReviewItem],
        started_at: datetime,
    ) -> ReviewSession:
        """Create or regenerate the session row for a week.

        An existing row gets the new items, an empty reviewed set, and
        its completed/skipped state cleared.
        """
        pass

    @abstractmethod
    def get_session(self, owner_id: str, session_id: int) -> Optional[ReviewSession]:
        """Point lookup."""
        pass

    @abstractmethod
    def get_session_for_week(
        self, owner_id: str, iso_year: int, iso_week: int
    ) -> Optional[ReviewSession]:
        """Session of a given ISO week, if any."""
        pass

    @abstractmethod
    def get_sessions_before(
        self, owner_id: str, iso_year: int, iso_week: int, limit: int
    ) -> list[ReviewSession]:
        """Sessions of weeks before the given one, newest first."""
        pass

    @abstractmethod
    def update_session_reviewed(self, owner_id: str, session_id: int, reviewed: list[int]) -> bool:
        """Replace the reviewed set."""
        pass

    @abstractmethod
    def close_session(
        self,
        owner_id: str,
        session_id: int,
        completed_at: Optional[datetime] = None,
        skipped: bool = False,
    ) -> bool:
        """Complete or skip an active session.

        Returns:
            False if the session was not active
        """
        pass
