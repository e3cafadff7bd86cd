"""Contact pruning: archive and reactivate.

Archiving hides a contact from tiers, capacity counts and review queues
but keeps its tier, so reactivation puts it back where it was.

Bulk archive is best-effort: each contact is archived on its own and
failures are collected, never rolled back.

Usage:
    from circlekeeper.engine.pruning import ContactPruner

    pruner = ContactPruner(db)
    result = pruner.bulk_archive("alice", [1, 2, 3])
    if result.failed:
        print(result.failed)
"""

from dataclasses import dataclass, field
from typing import Iterable

from circlekeeper.core.exceptions import (
    CircleKeeperError,
    ContactNotFound,
    PartialBatchFailure,
    ValidationError,
)
from circlekeeper.core.logging import get_logger
from circlekeeper.db.models import Contact
from circlekeeper.db.store import RelationshipStore

logger = get_logger(__name__)


@dataclass
class BulkArchiveResult:
    """Outcome of a bulk archive.

    Attributes:
        succeeded: Archived contact ids
        failed: Contact id -> reason
    """

    succeeded: list[int] = field(default_factory=list)
    failed: dict[int, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failed

    def raise_for_failures(self) -> None:
        """Raise PartialBatchFailure if anything failed."""
        if self.failed:
            raise PartialBatchFailure(self.succeeded, self.failed)


class ContactPruner:
    """Archive, reactivate and list archived contacts."""

    def __init__(self, store: RelationshipStore):
        self.store = store

    def archive_contact(self, owner_id: str, contact_id: int) -> Contact:
        """Archive a contact. Archiving twice is a no-op.

        Raises:
            ContactNotFound: Unknown contact
        """
        with self.store.transaction():
            if not self.store.set_archived(owner_id, contact_id, True):
                raise ContactNotFound(contact_id)
            contact = self.store.get_contact(owner_id, contact_id)

        logger.info("Contact archived", owner_id=owner_id, contact_id=contact_id)
        assert contact is not None
        return contact

    def reactivate_contact(self, owner_id: str, contact_id: int) -> Contact:
        """Bring an archived contact back with its previous tier.

        Raises:
            ContactNotFound: Unknown contact
            ValidationError: Contact is not archived
        """
        with self.store.transaction():
            contact = self.store.get_contact(owner_id, contact_id)
            if contact is None:
                raise ContactNotFound(contact_id)
            if not contact.archived:
                raise ValidationError(f"Contact {contact_id} is not archived")
            self.store.set_archived(owner_id, contact_id, False)
            contact.archived = False

        logger.info("Contact reactivated", owner_id=owner_id, contact_id=contact_id)
        return contact

    def archived_contacts(self, owner_id: str) -> list[Contact]:
        """Archived contacts, most recently archived first."""
        return self.store.get_archived_contacts(owner_id)

    def bulk_archive(self, owner_id: str, contact_ids: Iterable[int]) -> BulkArchiveResult:
        """Archive many contacts, continuing past failures.

        Returns:
            BulkArchiveResult with per-id outcome
        """
        result = BulkArchiveResult()
        for contact_id in dict.fromkeys(contact_ids):
            try:
                self.archive_contact(owner_id, contact_id)
            except CircleKeeperError as e:
                result.failed[contact_id] = str(e)
                continue
            result.succeeded.append(contact_id)

        if result.failed:
            logger.warning(
                "Bulk archive finished with failures",
                owner_id=owner_id,
                archived=len(result.succeeded),
                failed=sorted(result.failed),
            )
        else:
            logger.info(
                "Bulk archive complete", owner_id=owner_id, archived=len(result.succeeded)
            )
        return result
