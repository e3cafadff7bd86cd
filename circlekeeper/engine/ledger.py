"""Tier assignment ledger.

Every tier change goes through here. The contact's tier fields and the
append-only ledger record are written in one transaction, so the latest
record's to_tier always equals the contact's stored tier.

Single commits use compare-and-set on the tier fields read at the start.
Batch commits validate every tier and every id before the first write.

Usage:
    from circlekeeper.engine.ledger import AssignmentLedger

    ledger = AssignmentLedger(db)
    ledger.commit_tier("alice", contact_id, Tier.CLOSE, ActorKind.USER)
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any, Iterable, Optional, Union

from circlekeeper.core.clock import Clock, utc_now
from circlekeeper.core.exceptions import (
    BatchValidationError,
    ConcurrentModificationError,
    ContactNotFound,
    InvalidTier,
    ValidationError,
)
from circlekeeper.core.logging import get_logger
from circlekeeper.db.models import ActorKind, AssignmentRecord, Contact, Tier
from circlekeeper.db.store import RelationshipStore

if TYPE_CHECKING:
    from circlekeeper.engine.suggestion_cache import SuggestionCache

logger = get_logger(__name__)

TICK = timedelta(microseconds=1)


def parse_tier(value: Any) -> Tier:
    """Coerce a Tier or its string value.

    Raises:
        InvalidTier: Value is not one of the four tiers
    """
    if isinstance(value, Tier):
        return value
    try:
        return Tier(value)
    except ValueError as e:
        raise InvalidTier(value) from e


def parse_actor(value: Any) -> ActorKind:
    if isinstance(value, ActorKind):
        return value
    try:
        return ActorKind(value)
    except ValueError as e:
        raise ValidationError(f"Invalid actor: {value!r}") from e


@dataclass
class TierAssignment:
    """One requested move in a batch commit."""

    contact_id: int
    tier: Union[Tier, str]
    confidence: Optional[float] = None
    reason: Optional[str] = None


def _later_than(candidate: datetime, latest: Optional[datetime]) -> datetime:
    """Return candidate, nudged forward if it does not follow latest."""
    if latest is not None and candidate <= latest:
        return latest + TICK
    return candidate


class AssignmentLedger:
    """Commit tiers and query the assignment history."""

    def __init__(
        self,
        store: RelationshipStore,
        clock: Clock = utc_now,
        cache: Optional["SuggestionCache"] = None,
    ):
        self.store = store
        self.clock = clock
        self.cache = cache

    def _latest_stamp(self, owner_id: str, contact: Contact) -> Optional[datetime]:
        assert contact.id is not None
        record = self.store.latest_assignment(owner_id, contact.id)
        stamps = [s for s in (contact.tier_assigned_at, record and record.assigned_at) if s]
        return max(stamps) if stamps else None

    def commit_tier(
        self,
        owner_id: str,
        contact_id: int,
        to_tier: Union[Tier, str],
        actor: Union[ActorKind, str],
        confidence: Optional[float] = None,
        reason: Optional[str] = None,
    ) -> Contact:
        """Set a contact's tier and append a ledger record.

        Args:
            owner_id: Owner
            contact_id: Contact to move
            to_tier: Target tier
            actor: Who caused the change
            confidence: Engine confidence, if from a suggestion
            reason: Free-text reason

        Returns:
            Updated contact

        Raises:
            InvalidTier: to_tier is not a tier
            ContactNotFound: Unknown contact
            ConcurrentModificationError: Tier changed since it was read
        """
        tier = parse_tier(to_tier)
        actor_kind = parse_actor(actor)

        with self.store.transaction():
            contact = self.store.get_contact(owner_id, contact_id)
            if contact is None:
                raise ContactNotFound(contact_id)

            from_tier = contact.tier
            assigned_at = _later_than(self.clock(), self._latest_stamp(owner_id, contact))

            if not self.store.compare_and_set_tier(
                owner_id,
                contact_id,
                contact.tier,
                contact.tier_assigned_at,
                tier,
                assigned_at,
                confidence,
            ):
                raise ConcurrentModificationError(contact_id)

            self.store.append_assignment(
                AssignmentRecord(
                    owner_id=owner_id,
                    contact_id=contact_id,
                    from_tier=from_tier,
                    to_tier=tier,
                    actor=actor_kind,
                    confidence=confidence,
                    reason=reason,
                    assigned_at=assigned_at,
                )
            )
            updated = self.store.get_contact(owner_id, contact_id)

        if self.cache is not None:
            self.cache.invalidate(contact_id)

        logger.info(
            "Tier committed",
            owner_id=owner_id,
            contact_id=contact_id,
            from_tier=from_tier.value if from_tier else None,
            to_tier=tier.value,
            actor=actor_kind.value,
        )
        assert updated is not None
        return updated

    def batch_commit_tier(
        self,
        owner_id: str,
        assignments: Iterable[Union[TierAssignment, tuple[int, Union[Tier, str]]]],
        actor: Union[ActorKind, str],
    ) -> list[AssignmentRecord]:
        """Commit many tiers, all or nothing.

        Every tier value and every contact id is checked before the first
        write. Contacts are then updated with one statement per target
        tier and confidence, and one ledger record is appended per input
        assignment. If a contact appears more than once, its last
        assignment wins, confidence included.

        Args:
            owner_id: Owner
            assignments: TierAssignment objects or (contact_id, tier) pairs
            actor: Who caused the changes

        Returns:
            Appended ledger records, in input order

        Raises:
            InvalidTier: Any tier value is invalid (nothing written)
            BatchValidationError: Any contact is missing (nothing written)
        """
        actor_kind = parse_actor(actor)
        requested: list[TierAssignment] = []
        for item in assignments:
            if not isinstance(item, TierAssignment):
                contact_id, tier_value = item
                item = TierAssignment(contact_id, tier_value)
            requested.append(
                TierAssignment(item.contact_id, parse_tier(item.tier), item.confidence, item.reason)
            )

        if not requested:
            return []

        ids = list(dict.fromkeys(a.contact_id for a in requested))

        with self.store.transaction():
            contacts = self.store.get_contacts(owner_id, ids)
            missing = [cid for cid in ids if cid not in contacts]
            if missing:
                logger.warning(
                    "Batch tier commit rejected", owner_id=owner_id, missing_ids=missing
                )
                raise BatchValidationError(missing)

            # One stamp for the whole batch, later than every contact's history
            stamp = self.clock()
            for contact in contacts.values():
                stamp = _later_than(stamp, self._latest_stamp(owner_id, contact))

            current: dict[int, Optional[Tier]] = {cid: contacts[cid].tier for cid in ids}
            last_stamp: dict[int, Optional[datetime]] = {}
            last_confidence: dict[int, Optional[float]] = {}
            records: list[AssignmentRecord] = []
            for assignment in requested:
                cid = assignment.contact_id
                assigned_at = _later_than(stamp, last_stamp.get(cid))
                tier = parse_tier(assignment.tier)
                records.append(
                    AssignmentRecord(
                        owner_id=owner_id,
                        contact_id=cid,
                        from_tier=current[cid],
                        to_tier=tier,
                        actor=actor_kind,
                        confidence=assignment.confidence,
                        reason=assignment.reason,
                        assigned_at=assigned_at,
                    )
                )
                current[cid] = tier
                last_stamp[cid] = assigned_at
                last_confidence[cid] = assignment.confidence

            groups: dict[tuple[Tier, datetime, Optional[float]], list[int]] = {}
            for cid in ids:
                final_tier = current[cid]
                final_stamp = last_stamp[cid]
                assert final_tier is not None and final_stamp is not None
                key = (final_tier, final_stamp, last_confidence[cid])
                groups.setdefault(key, []).append(cid)

            for (tier, assigned_at, confidence), group_ids in groups.items():
                self.store.set_tier_for_contacts(
                    owner_id, group_ids, tier, assigned_at, confidence
                )

            for record in records:
                record.id = self.store.append_assignment(record)

        if self.cache is not None:
            for cid in ids:
                self.cache.invalidate(cid)

        logger.info(
            "Batch tier commit",
            owner_id=owner_id,
            contacts=len(ids),
            records=len(records),
            actor=actor_kind.value,
        )
        return records

    def history(self, owner_id: str, contact_id: int) -> list[AssignmentRecord]:
        """Full ledger of a contact, oldest first.

        Raises:
            ContactNotFound: Unknown contact
        """
        if self.store.get_contact(owner_id, contact_id) is None:
            raise ContactNotFound(contact_id)
        return self.store.get_assignments(owner_id, contact_id)

    def current_tier(self, owner_id: str, contact_id: int) -> Optional[Tier]:
        """Tier according to the latest ledger record (None = never assigned).

        Raises:
            ContactNotFound: Unknown contact
        """
        if self.store.get_contact(owner_id, contact_id) is None:
            raise ContactNotFound(contact_id)
        record = self.store.latest_assignment(owner_id, contact_id)
        return record.to_tier if record else None

    def recent_assignments(self, owner_id: str, limit: int = 50) -> list[AssignmentRecord]:
        """Latest ledger records across the owner's contacts, newest first."""
        return self.store.recent_assignments(owner_id, limit)
