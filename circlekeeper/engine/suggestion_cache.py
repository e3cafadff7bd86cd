"""In-process cache of tier suggestions.

An entry is valid only while the contact's fingerprint still matches:
    (contact id, last interaction timestamp, tier assigned timestamp)

A new interaction or a tier commit changes the fingerprint, so stale
entries are ignored without anybody calling invalidate(). Entries also
expire after a TTL because recency depends on the current time.

No locking. A stale read costs one recomputation at worst.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Optional

from circlekeeper.core.clock import Clock, utc_now
from circlekeeper.db.models import Contact

if TYPE_CHECKING:
    from circlekeeper.engine.scoring import TierSuggestion

Fingerprint = tuple[int, Optional[datetime], Optional[datetime]]

DEFAULT_TTL_SECONDS = 300


def fingerprint(contact: Contact) -> Fingerprint:
    """Return the cache fingerprint of a contact."""
    assert contact.id is not None, "contact without id cannot be cached"
    return (contact.id, contact.last_interaction_at, contact.tier_assigned_at)


@dataclass
class _Entry:
    fingerprint: Fingerprint
    suggestion: "TierSuggestion"
    stored_at: datetime


class SuggestionCache:
    """Suggestion memo keyed by contact id.

    Attributes:
        hits: Lookups served from the cache
        misses: Lookups that required recomputation
    """

    def __init__(self, ttl_seconds: int = DEFAULT_TTL_SECONDS, clock: Clock = utc_now):
        self.ttl = timedelta(seconds=ttl_seconds)
        self.clock = clock
        self._entries: dict[int, _Entry] = {}
        self.hits = 0
        self.misses = 0

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, contact: Contact) -> Optional["TierSuggestion"]:
        """Return the cached suggestion if fingerprint and age allow it."""
        key = fingerprint(contact)
        entry = self._entries.get(key[0])
        if entry is None or entry.fingerprint != key or self._expired(entry):
            self.misses += 1
            return None
        self.hits += 1
        return entry.suggestion

    def peek(self, contact_id: int) -> Optional["TierSuggestion"]:
        """Return whatever is stored for a contact, ignoring validity."""
        entry = self._entries.get(contact_id)
        return entry.suggestion if entry else None

    def put(self, contact: Contact, suggestion: "TierSuggestion") -> None:
        key = fingerprint(contact)
        self._entries[key[0]] = _Entry(key, suggestion, self.clock())

    def invalidate(self, contact_id: int) -> None:
        """Drop the entry for a contact, if any."""
        self._entries.pop(contact_id, None)

    def clear(self) -> None:
        self._entries.clear()

    def _expired(self, entry: _Entry) -> bool:
        return self.clock() - entry.stored_at >= self.ttl
