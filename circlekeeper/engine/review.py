"""Weekly review sessions.

One session per owner per ISO week, holding at most 15 contacts to look
at, in priority order:
    1. Carry-over: unreviewed items of recently skipped sessions
    2. Categorize: contacts without a tier
    3. Maintain: tiered contacts out of touch for more than 30 days,
       or never contacted; never-contacted first, then oldest first
    4. Prune: tiered contacts out of touch for more than 180 days,
       topping the list up while it has fewer than 10 items

Archived contacts never appear and no contact appears twice.

Usage:
    from circlekeeper.engine.review import ReviewScheduler

    scheduler = ReviewScheduler(db, ledger, pruner)
    session = scheduler.start_session("alice")
    item = scheduler.next_unreviewed_item("alice", session.id)
    scheduler.mark_reviewed("alice", session.id, item.contact_id, ReviewAction.KEEP)
"""

import math
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional, Union

from circlekeeper.core.clock import Clock, iso_week, utc_now
from circlekeeper.core.exceptions import ContactNotFound, SessionNotFound, ValidationError
from circlekeeper.core.logging import get_logger
from circlekeeper.db.models import (
    ActorKind,
    Contact,
    FrequencyPreference,
    ReviewAction,
    ReviewItem,
    ReviewSession,
    ReviewType,
    Tier,
)
from circlekeeper.db.store import RelationshipStore
from circlekeeper.engine.ledger import AssignmentLedger, parse_tier
from circlekeeper.engine.pruning import ContactPruner
from circlekeeper.engine.templates import render_suggested_action

logger = get_logger(__name__)

MAX_ITEMS = 15
PRUNE_ITEM_CAP = 10
CARRY_OVER_LOOKBACK = 5
MINUTES_PER_ITEM = 2

DEFAULT_MAINTAIN_AFTER_DAYS = 30
DEFAULT_PRUNE_AFTER_DAYS = 180


@dataclass
class ReviewProgress:
    """How far along a session is.

    Attributes:
        total_contacts: Items in the session
        reviewed_contacts: Items reviewed
        percent_complete: 0-100, rounded; 100 for an empty session
        estimated_minutes_remaining: Unreviewed items x MINUTES_PER_ITEM
    """

    total_contacts: int
    reviewed_contacts: int
    percent_complete: int
    estimated_minutes_remaining: int


class ReviewScheduler:
    """Build and walk through weekly review sessions."""

    def __init__(
        self,
        store: RelationshipStore,
        ledger: AssignmentLedger,
        pruner: ContactPruner,
        clock: Clock = utc_now,
        maintain_after_days: int = DEFAULT_MAINTAIN_AFTER_DAYS,
        prune_after_days: int = DEFAULT_PRUNE_AFTER_DAYS,
    ) -> None:
        self.store = store
        self.ledger = ledger
        self.pruner = pruner
        self.clock = clock
        self.maintain_after = timedelta(days=maintain_after_days)
        self.prune_after = timedelta(days=prune_after_days)
        self._session_locks: dict[int, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _lock_for(self, session_id: int) -> threading.Lock:
        with self._locks_guard:
            lock = self._session_locks.get(session_id)
            if lock is None:
                lock = self._session_locks[session_id] = threading.Lock()
            return lock

    def _drop_lock(self, session_id: int) -> None:
        """Forget the lock of a session that takes no more mutations."""
        with self._locks_guard:
            self._session_locks.pop(session_id, None)

    def _require_session(self, owner_id: str, session_id: int) -> ReviewSession:
        session = self.store.get_session(owner_id, session_id)
        if session is None:
            raise SessionNotFound(session_id)
        return session

    # =========================================================================
    # SESSION CREATION
    # =========================================================================

    def start_session(self, owner_id: str) -> ReviewSession:
        """Return this week's session, generating it if needed.

        An active or completed session for the current week is returned
        unchanged. A skipped one is regenerated, and its unreviewed items
        are carried into the new list.
        """
        now = self.clock()
        year, week = iso_week(now)

        with self.store.transaction():
            existing = self.store.get_session_for_week(owner_id, year, week)
            if existing is not None and not existing.skipped:
                return existing

            items = self._generate_items(owner_id, now, existing)
            session = self.store.upsert_session(owner_id, year, week, items, now)

        logger.info(
            "Review session started",
            owner_id=owner_id,
            session_id=session.id,
            week=f"{year}-W{week:02d}",
            items=len(items),
        )
        return session

    def _carry_over_sources(
        self, owner_id: str, now: datetime, current: Optional[ReviewSession]
    ) -> list[ReviewSession]:
        """Skipped sessions whose leftovers carry over, newest first.

        Walks back from this week and stops at the first session that was
        not skipped, since that session already resurfaced the leftovers.
        """
        year, week = iso_week(now)
        sources: list[ReviewSession] = []
        if current is not None and current.skipped:
            sources.append(current)
        for session in self.store.get_sessions_before(owner_id, year, week, CARRY_OVER_LOOKBACK):
            if not session.skipped:
                break
            sources.append(session)
        return sources

    def _generate_items(
        self, owner_id: str, now: datetime, current: Optional[ReviewSession]
    ) -> list[ReviewItem]:
        items: list[ReviewItem] = []
        seen: set[int] = set()

        def add(contact: Contact, review_type: ReviewType) -> None:
            assert contact.id is not None
            if contact.id in seen or contact.archived:
                return
            seen.add(contact.id)
            items.append(
                ReviewItem(
                    contact_id=contact.id,
                    review_type=review_type,
                    last_interaction_at=contact.last_interaction_at,
                    suggested_action=render_suggested_action(review_type, contact, now),
                )
            )

        # 1. Carry-over
        carried: list[ReviewItem] = []
        carried_ids: set[int] = set()
        for session in self._carry_over_sources(owner_id, now, current):
            for item in session.unreviewed_items():
                if item.contact_id not in carried_ids:
                    carried_ids.add(item.contact_id)
                    carried.append(item)
        if carried:
            contacts = self.store.get_contacts(owner_id, carried_ids)
            for item in carried:
                if len(items) >= MAX_ITEMS:
                    break
                contact = contacts.get(item.contact_id)
                if contact is not None:
                    add(contact, item.review_type)

        # 2. Categorize
        if len(items) < MAX_ITEMS:
            for contact in self.store.get_uncategorized_contacts(
                owner_id, limit=MAX_ITEMS + len(seen)
            ):
                if len(items) >= MAX_ITEMS:
                    break
                add(contact, ReviewType.CATEGORIZE)

        # 3. Maintain
        if len(items) < MAX_ITEMS:
            for contact in self.store.get_stale_contacts(
                owner_id,
                interacted_before=now - self.maintain_after,
                include_never=True,
                limit=MAX_ITEMS + len(seen),
            ):
                if len(items) >= MAX_ITEMS:
                    break
                add(contact, ReviewType.MAINTAIN)

        # 4. Prune
        if len(items) < PRUNE_ITEM_CAP:
            for contact in self.store.get_stale_contacts(
                owner_id,
                interacted_before=now - self.prune_after,
                limit=PRUNE_ITEM_CAP + len(seen),
            ):
                if len(items) >= PRUNE_ITEM_CAP:
                    break
                add(contact, ReviewType.PRUNE)

        return items

    # =========================================================================
    # QUERIES
    # =========================================================================

    def current_session(self, owner_id: str) -> Optional[ReviewSession]:
        """This week's session if it is still active."""
        year, week = iso_week(self.clock())
        session = self.store.get_session_for_week(owner_id, year, week)
        if session is None or not session.is_active:
            return None
        return session

    def get_session(self, owner_id: str, session_id: int) -> ReviewSession:
        """Raises SessionNotFound if missing or not owned by owner_id."""
        return self._require_session(owner_id, session_id)

    def next_unreviewed_item(self, owner_id: str, session_id: int) -> Optional[ReviewItem]:
        """First item not reviewed yet, None when done."""
        remaining = self._require_session(owner_id, session_id).unreviewed_items()
        return remaining[0] if remaining else None

    def progress(self, owner_id: str, session_id: int) -> ReviewProgress:
        """Completion stats of a session."""
        session = self._require_session(owner_id, session_id)
        total = len(session.items)
        reviewed = total - len(session.unreviewed_items())
        percent = 100 if total == 0 else math.floor(reviewed * 100 / total + 0.5)
        return ReviewProgress(
            total_contacts=total,
            reviewed_contacts=reviewed,
            percent_complete=percent,
            estimated_minutes_remaining=(total - reviewed) * MINUTES_PER_ITEM,
        )

    # =========================================================================
    # MUTATIONS (serialized per session)
    # =========================================================================

    def mark_reviewed(
        self,
        owner_id: str,
        session_id: int,
        contact_id: int,
        action: Union[ReviewAction, str],
        tier: Optional[Union[Tier, str]] = None,
        frequency: Optional[Union[FrequencyPreference, str]] = None,
    ) -> ReviewSession:
        """Apply the owner's decision for one contact and record it reviewed.

        Args:
            owner_id: Owner
            session_id: Active session
            contact_id: Contact in the session
            action: keep / archive / update_circle / set_preference
            tier: Required for update_circle
            frequency: Required for set_preference

        Returns:
            Updated session

        Raises:
            SessionNotFound: Unknown session
            ValidationError: Session not active, contact not in session,
                or a required argument is missing or invalid
            InvalidTier: tier is not a tier
            ContactNotFound: Contact no longer exists
        """
        review_action = self._parse_action(action)
        target_tier = None
        preference = None
        if review_action == ReviewAction.UPDATE_CIRCLE:
            if tier is None:
                raise ValidationError("update_circle needs a tier")
            target_tier = parse_tier(tier)
        elif review_action == ReviewAction.SET_PREFERENCE:
            if frequency is None:
                raise ValidationError("set_preference needs a frequency")
            preference = self._parse_frequency(frequency)

        with self._lock_for(session_id), self.store.transaction():
            session = self._require_session(owner_id, session_id)
            if not session.is_active:
                self._drop_lock(session_id)
                raise ValidationError(f"Review session {session_id} is no longer active")
            if contact_id not in session.contact_ids:
                raise ValidationError(
                    f"Contact {contact_id} is not part of review session {session_id}"
                )

            if review_action == ReviewAction.ARCHIVE:
                self.pruner.archive_contact(owner_id, contact_id)
            elif review_action == ReviewAction.UPDATE_CIRCLE:
                assert target_tier is not None
                self.ledger.commit_tier(
                    owner_id, contact_id, target_tier, ActorKind.USER, reason="Weekly review"
                )
            elif review_action == ReviewAction.SET_PREFERENCE:
                assert preference is not None
                if not self.store.set_frequency_preference(owner_id, contact_id, preference):
                    raise ContactNotFound(contact_id)

            if contact_id not in session.reviewed:
                session.reviewed.append(contact_id)
                self.store.update_session_reviewed(owner_id, session_id, session.reviewed)

        logger.debug(
            "Review item handled",
            owner_id=owner_id,
            session_id=session_id,
            contact_id=contact_id,
            action=review_action.value,
        )
        return session

    def complete_session(self, owner_id: str, session_id: int) -> ReviewSession:
        """Mark an active session completed.

        Raises:
            SessionNotFound: Unknown session
            ValidationError: Session already completed or skipped
        """
        return self._close(owner_id, session_id, skipped=False)

    def skip_session(self, owner_id: str, session_id: int) -> ReviewSession:
        """Skip an active session; its unreviewed items carry over.

        Raises:
            SessionNotFound: Unknown session
            ValidationError: Session already completed or skipped
        """
        return self._close(owner_id, session_id, skipped=True)

    def _close(self, owner_id: str, session_id: int, skipped: bool) -> ReviewSession:
        try:
            with self._lock_for(session_id), self.store.transaction():
                session = self._require_session(owner_id, session_id)
                closed = session.is_active and self.store.close_session(
                    owner_id,
                    session_id,
                    completed_at=None if skipped else self.clock(),
                    skipped=skipped,
                )
                if not closed:
                    raise ValidationError(f"Review session {session_id} is no longer active")
                session = self._require_session(owner_id, session_id)
        finally:
            self._drop_lock(session_id)

        logger.info(
            "Review session skipped" if skipped else "Review session completed",
            owner_id=owner_id,
            session_id=session_id,
            reviewed=len(session.reviewed),
            items=len(session.items),
        )
        return session

    @staticmethod
    def _parse_action(value: Union[ReviewAction, str]) -> ReviewAction:
        try:
            return ReviewAction(value)
        except ValueError as e:
            raise ValidationError(f"Invalid review action: {value!r}") from e

    @staticmethod
    def _parse_frequency(value: Union[FrequencyPreference, str]) -> FrequencyPreference:
        try:
            return FrequencyPreference(value)
        except ValueError as e:
            raise ValidationError(f"Invalid frequency preference: {value!r}") from e
