"""SQLite database connection and operations for CircleKeeper.

Provides:
    - Connection management with WAL mode
    - Schema creation
    - Re-entrant transactions
    - CRUD operations for contacts, interactions, the tier ledger,
      overrides and review sessions

Usage:
    from circlekeeper.db.database import Database

    db = Database()
    db.initialize()

    contact_id = db.create_contact(Contact(owner_id="alice", name="Bob"))
"""

import json
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Iterable, Iterator, Optional

from circlekeeper.core.config import get_config
from circlekeeper.core.exceptions import ContactNotFound, DatabaseError
from circlekeeper.core.logging import get_logger
from circlekeeper.db.models import (
    ActorKind,
    AssignmentRecord,
    Channel,
    Contact,
    FrequencyPreference,
    InteractionEvent,
    ReviewItem,
    ReviewSession,
    Tier,
    TierOverride,
)
from circlekeeper.db.store import InteractionHistoryProvider, RelationshipStore

logger = get_logger(__name__)


# Schema version for migrations
SCHEMA_VERSION = 1

# SQLite caps bound parameters per statement
_MAX_PARAMS = 500


def _to_db_ts(value: Optional[datetime]) -> Optional[str]:
    """Serialize a naive UTC datetime with fixed precision.

    Fixed precision keeps text ordering equal to time ordering and makes
    the compare-and-set on tier_assigned_at exact.
    """
    if value is None:
        return None
    return value.isoformat(timespec="microseconds")


def _from_db_ts(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromisoformat(value)


def _chunks(ids: list[int], size: int = _MAX_PARAMS) -> Iterator[list[int]]:
    for start in range(0, len(ids), size):
        yield ids[start : start + size]


class Database(RelationshipStore, InteractionHistoryProvider):
    """SQLite database manager.

    One connection per instance, shared across threads. An RLock
    serializes statements; ``transaction()`` holds it for the whole unit.

    Attributes:
        db_path: Path to database file
    """

    def __init__(self, db_path: Optional[str] = None):
        """Initialize database.

        Args:
            db_path: Path to database file. Use ":memory:" for in-memory.
                    Defaults to config path.
        """
        if db_path is None:
            config = get_config()
            self.db_path = str(config.db_path)
        else:
            self.db_path = db_path

        self._conn: Optional[sqlite3.Connection] = None
        self._lock = threading.RLock()
        self._tx_depth = 0

    def _get_connection(self) -> sqlite3.Connection:
        """Get or create database connection."""
        if self._conn is None:
            try:
                # Create directory if needed (unless in-memory)
                if self.db_path != ":memory:":
                    Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

                self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
                self._conn.row_factory = sqlite3.Row

                # Enable foreign keys
                self._conn.execute("PRAGMA foreign_keys = ON")

                # Enable WAL mode for better concurrency
                if self.db_path != ":memory:":
                    self._conn.execute("PRAGMA journal_mode = WAL")

            except sqlite3.Error as e:
                raise DatabaseError(f"Cannot connect to database: {e}") from e

        return self._conn

    @staticmethod
    def _lastrowid(cursor: sqlite3.Cursor) -> int:
        """Extract lastrowid from cursor (always set after INSERT in SQLite)."""
        row_id = cursor.lastrowid
        assert row_id is not None, "lastrowid was None after INSERT"
        return row_id

    def close(self) -> None:
        """Close database connection."""
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None

    def initialize(self) -> None:
        """Create schema if not exists.

        Creates all tables and indexes and records SCHEMA_VERSION.

        Raises:
            DatabaseError: Schema cannot be created, or the file was written
                by a newer schema version
        """
        with self._lock:
            conn = self._get_connection()
            try:
                conn.executescript(self._get_schema_ddl())
                row = conn.execute("SELECT MAX(version) FROM schema_version").fetchone()
                stored = row[0] if row else None
                if stored is not None and stored > SCHEMA_VERSION:
                    raise DatabaseError(
                        f"Database schema version {stored} is newer than "
                        f"supported version {SCHEMA_VERSION}"
                    )
                conn.execute(
                    "INSERT OR IGNORE INTO schema_version (version) VALUES (?)",
                    (SCHEMA_VERSION,),
                )
                conn.commit()
                logger.info(
                    "Database initialized", path=self.db_path, schema_version=SCHEMA_VERSION
                )
            except sqlite3.Error as e:
                raise DatabaseError(f"Cannot initialize database: {e}") from e

    def _get_schema_ddl(self) -> str:
        """Return complete schema DDL."""
        return """
        -- Contacts
        CREATE TABLE IF NOT EXISTS contacts (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            owner_id TEXT NOT NULL,
            name TEXT NOT NULL DEFAULT '',
            tier TEXT,
            tier_assigned_at TEXT,
            tier_confidence REAL,
            last_interaction_at TEXT,
            archived BOOLEAN NOT NULL DEFAULT 0,
            frequency_preference TEXT,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        );

        CREATE INDEX IF NOT EXISTS idx_contacts_owner_tier ON contacts(owner_id, tier);
        CREATE INDEX IF NOT EXISTS idx_contacts_last_interaction
            ON contacts(owner_id, last_interaction_at);

        -- Interactions
        CREATE TABLE IF NOT EXISTS interactions (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            owner_id TEXT NOT NULL,
            contact_id INTEGER NOT NULL,
            channel TEXT NOT NULL,
            occurred_at TEXT NOT NULL,
            FOREIGN KEY (contact_id) REFERENCES contacts(id) ON DELETE CASCADE
        );

        CREATE INDEX IF NOT EXISTS idx_interactions_contact
            ON interactions(contact_id, occurred_at);

        -- Tier ledger (append-only)
        CREATE TABLE IF NOT EXISTS tier_assignments (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            owner_id TEXT NOT NULL,
            contact_id INTEGER NOT NULL,
            from_tier TEXT,
            to_tier TEXT NOT NULL,
            actor TEXT NOT NULL,
            confidence REAL,
            reason TEXT,
            assigned_at TEXT NOT NULL,
            FOREIGN KEY (contact_id) REFERENCES contacts(id) ON DELETE CASCADE
        );

        CREATE INDEX IF NOT EXISTS idx_assignments_contact
            ON tier_assignments(contact_id, assigned_at);
        CREATE INDEX IF NOT EXISTS idx_assignments_owner
            ON tier_assignments(owner_id, assigned_at);

        -- Override log
        CREATE TABLE IF NOT EXISTS tier_overrides (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            owner_id TEXT NOT NULL,
            contact_id INTEGER NOT NULL,
            suggested_tier TEXT,
            actual_tier TEXT NOT NULL,
            factors TEXT,
            recorded_at TEXT NOT NULL,
            FOREIGN KEY (contact_id) REFERENCES contacts(id) ON DELETE CASCADE
        );

        CREATE INDEX IF NOT EXISTS idx_overrides_owner ON tier_overrides(owner_id, recorded_at);

        -- Review sessions
        CREATE TABLE IF NOT EXISTS review_sessions (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            owner_id TEXT NOT NULL,
            iso_year INTEGER NOT NULL,
            iso_week INTEGER NOT NULL,
            items TEXT NOT NULL DEFAULT '[]',
            reviewed TEXT NOT NULL DEFAULT '[]',
            started_at TEXT NOT NULL,
            completed_at TEXT,
            skipped BOOLEAN NOT NULL DEFAULT 0,
            UNIQUE(owner_id, iso_year, iso_week)
        );

        -- Schema Version
        CREATE TABLE IF NOT EXISTS schema_version (
            version INTEGER PRIMARY KEY,
            applied_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        );
        """

    # =========================================================================
    # TRANSACTIONS
    # =========================================================================

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Group writes into one atomic unit.

        Commits when the outermost block exits cleanly, rolls back if it
        raises. Nested blocks join the outer transaction.

        Yields:
            The shared connection
        """
        with self._lock:
            conn = self._get_connection()
            outermost = self._tx_depth == 0
            self._tx_depth += 1
            try:
                yield conn
            except BaseException:
                self._tx_depth -= 1
                if outermost:
                    conn.rollback()
                raise
            self._tx_depth -= 1
            if outermost:
                try:
                    conn.commit()
                except sqlite3.Error as e:
                    conn.rollback()
                    raise DatabaseError(f"Commit failed: {e}") from e

    def _fetchone(self, sql: str, params: tuple[Any, ...] = ()) -> Optional[sqlite3.Row]:
        with self._lock:
            try:
                return self._get_connection().execute(sql, params).fetchone()
            except sqlite3.Error as e:
                raise DatabaseError(f"Query failed: {e}") from e

    def _fetchall(self, sql: str, params: tuple[Any, ...] = ()) -> list[sqlite3.Row]:
        with self._lock:
            try:
                return self._get_connection().execute(sql, params).fetchall()
            except sqlite3.Error as e:
                raise DatabaseError(f"Query failed: {e}") from e

    # =========================================================================
    # ROW-TO-MODEL HELPERS
    # =========================================================================

    def _row_to_contact(self, row: sqlite3.Row) -> Contact:
        """Convert a database row to a Contact dataclass."""
        tier_val = row["tier"]
        pref_val = row["frequency_preference"]
        return Contact(
            id=row["id"],
            owner_id=row["owner_id"],
            name=row["name"],
            tier=Tier(tier_val) if tier_val else None,
            tier_assigned_at=_from_db_ts(row["tier_assigned_at"]),
            tier_confidence=row["tier_confidence"],
            last_interaction_at=_from_db_ts(row["last_interaction_at"]),
            archived=bool(row["archived"]),
            frequency_preference=FrequencyPreference(pref_val) if pref_val else None,
            created_at=_from_db_ts(row["created_at"]),
            updated_at=_from_db_ts(row["updated_at"]),
        )

    def _row_to_interaction(self, row: sqlite3.Row) -> InteractionEvent:
        """Convert a database row to an InteractionEvent dataclass."""
        return InteractionEvent(
            id=row["id"],
            owner_id=row["owner_id"],
            contact_id=row["contact_id"],
            channel=Channel(row["channel"]),
            occurred_at=_from_db_ts(row["occurred_at"]),
        )

    def _row_to_assignment(self, row: sqlite3.Row) -> AssignmentRecord:
        """Convert a database row to an AssignmentRecord dataclass."""
        from_val = row["from_tier"]
        return AssignmentRecord(
            id=row["id"],
            owner_id=row["owner_id"],
            contact_id=row["contact_id"],
            from_tier=Tier(from_val) if from_val else None,
            to_tier=Tier(row["to_tier"]),
            actor=ActorKind(row["actor"]),
            confidence=row["confidence"],
            reason=row["reason"],
            assigned_at=_from_db_ts(row["assigned_at"]),
        )

    def _row_to_override(self, row: sqlite3.Row) -> TierOverride:
        """Convert a database row to a TierOverride dataclass."""
        suggested_val = row["suggested_tier"]
        return TierOverride(
            id=row["id"],
            owner_id=row["owner_id"],
            contact_id=row["contact_id"],
            suggested_tier=Tier(suggested_val) if suggested_val else None,
            actual_tier=Tier(row["actual_tier"]),
            factors=json.loads(row["factors"]) if row["factors"] else [],
            recorded_at=_from_db_ts(row["recorded_at"]),
        )

    def _row_to_session(self, row: sqlite3.Row) -> ReviewSession:
        """Convert a database row to a ReviewSession dataclass."""
        return ReviewSession(
            id=row["id"],
            owner_id=row["owner_id"],
            iso_year=row["iso_year"],
            iso_week=row["iso_week"],
            items=[ReviewItem.from_dict(item) for item in json.loads(row["items"] or "[]")],
            reviewed=[int(cid) for cid in json.loads(row["reviewed"] or "[]")],
            started_at=_from_db_ts(row["started_at"]),
            completed_at=_from_db_ts(row["completed_at"]),
            skipped=bool(row["skipped"]),
        )

    # =========================================================================
    # CONTACT OPERATIONS
    # =========================================================================

    def create_contact(self, contact: Contact) -> int:
        """Create a contact record.

        Args:
            contact: Contact to create

        Returns:
            New contact ID
        """
        try:
            with self.transaction() as conn:
                cursor = conn.execute(
                    """INSERT INTO contacts
                       (owner_id, name, tier, tier_assigned_at, tier_confidence,
                        last_interaction_at, archived, frequency_preference)
                       VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
                    (
                        contact.owner_id,
                        contact.name,
                        contact.tier.value if contact.tier else None,
                        _to_db_ts(contact.tier_assigned_at),
                        contact.tier_confidence,
                        _to_db_ts(contact.last_interaction_at),
                        int(contact.archived),
                        (
                            contact.frequency_preference.value
                            if contact.frequency_preference
                            else None
                        ),
                    ),
                )
                contact_id = self._lastrowid(cursor)
        except sqlite3.Error as e:
            raise DatabaseError(f"Failed to create contact: {e}") from e

        logger.debug("Contact created", owner_id=contact.owner_id, contact_id=contact_id)
        return contact_id

    def get_contact(self, owner_id: str, contact_id: int) -> Optional[Contact]:
        """Get contact by ID, scoped to owner."""
        row = self._fetchone(
            "SELECT * FROM contacts WHERE id = ? AND owner_id = ?", (contact_id, owner_id)
        )
        if row is None:
            return None
        return self._row_to_contact(row)

    def get_contacts(self, owner_id: str, contact_ids: Iterable[int]) -> dict[int, Contact]:
        """Batch lookup by ID, scoped to owner."""
        ids = list(dict.fromkeys(contact_ids))
        result: dict[int, Contact] = {}
        for chunk in _chunks(ids):
            placeholders = ", ".join("?" for _ in chunk)
            rows = self._fetchall(
                f"SELECT * FROM contacts WHERE owner_id = ? AND id IN ({placeholders})",
                (owner_id, *chunk),
            )
            for row in rows:
                contact = self._row_to_contact(row)
                result[row["id"]] = contact
        return result

    def delete_contact(self, owner_id: str, contact_id: int) -> bool:
        """Delete a contact and everything hanging off it."""
        try:
            with self.transaction() as conn:
                cursor = conn.execute(
                    "DELETE FROM contacts WHERE id = ? AND owner_id = ?", (contact_id, owner_id)
                )
                return cursor.rowcount > 0
        except sqlite3.Error as e:
            raise DatabaseError(f"Failed to delete contact {contact_id}: {e}") from e

    def get_contacts_by_tier(self, owner_id: str, tier: Tier) -> list[Contact]:
        """Non-archived members of a tier, earliest-assigned first."""
        rows = self._fetchall(
            """SELECT * FROM contacts
               WHERE owner_id = ? AND tier = ? AND archived = 0
               ORDER BY tier_assigned_at IS NULL, tier_assigned_at ASC, id ASC""",
            (owner_id, tier.value),
        )
        return [self._row_to_contact(row) for row in rows]

    def get_tier_counts(self, owner_id: str) -> dict[Optional[Tier], int]:
        """Non-archived contact counts per tier. Key None = uncategorized."""
        rows = self._fetchall(
            """SELECT tier, COUNT(*) AS count FROM contacts
               WHERE owner_id = ? AND archived = 0
               GROUP BY tier""",
            (owner_id,),
        )
        counts: dict[Optional[Tier], int] = {}
        for row in rows:
            tier = Tier(row["tier"]) if row["tier"] else None
            counts[tier] = row["count"]
        return counts

    def get_uncategorized_contacts(
        self, owner_id: str, limit: Optional[int] = None
    ) -> list[Contact]:
        """Non-archived contacts with no tier, oldest first."""
        rows = self._fetchall(
            """SELECT * FROM contacts
               WHERE owner_id = ? AND tier IS NULL AND archived = 0
               ORDER BY created_at ASC, id ASC
               LIMIT ?""",
            (owner_id, -1 if limit is None else limit),
        )
        return [self._row_to_contact(row) for row in rows]

    def get_stale_contacts(
        self,
        owner_id: str,
        interacted_before: datetime,
        include_never: bool = False,
        limit: Optional[int] = None,
    ) -> list[Contact]:
        """Tiered, non-archived contacts whose last interaction is old."""
        window = "last_interaction_at < ?"
        params: list[Any] = [owner_id, _to_db_ts(interacted_before)]
        if include_never:
            window = f"(last_interaction_at IS NULL OR ({window}))"
        params.append(-1 if limit is None else limit)

        rows = self._fetchall(
            f"""SELECT * FROM contacts
                WHERE owner_id = ? AND tier IS NOT NULL AND archived = 0
                  AND {window}
                ORDER BY last_interaction_at IS NOT NULL, last_interaction_at ASC, id ASC
                LIMIT ?""",
            tuple(params),
        )
        return [self._row_to_contact(row) for row in rows]

    def get_archived_contacts(self, owner_id: str) -> list[Contact]:
        """Archived contacts, most recently updated first."""
        rows = self._fetchall(
            """SELECT * FROM contacts
               WHERE owner_id = ? AND archived = 1
               ORDER BY updated_at DESC, id DESC""",
            (owner_id,),
        )
        return [self._row_to_contact(row) for row in rows]

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
        """Write tier fields only if they still hold the expected values."""
        try:
            with self.transaction() as conn:
                cursor = conn.execute(
                    """UPDATE contacts SET
                       tier = ?, tier_assigned_at = ?, tier_confidence = ?,
                       updated_at = CURRENT_TIMESTAMP
                       WHERE id = ? AND owner_id = ?
                         AND tier IS ? AND tier_assigned_at IS ?""",
                    (
                        tier.value,
                        _to_db_ts(assigned_at),
                        confidence,
                        contact_id,
                        owner_id,
                        expected_tier.value if expected_tier else None,
                        _to_db_ts(expected_assigned_at),
                    ),
                )
                return cursor.rowcount > 0
        except sqlite3.Error as e:
            raise DatabaseError(f"Failed to update tier of contact {contact_id}: {e}") from e

    def set_tier_for_contacts(
        self,
        owner_id: str,
        contact_ids: list[int],
        tier: Tier,
        assigned_at: datetime,
        confidence: Optional[float] = None,
    ) -> int:
        """Grouped tier update; every contact gets the same confidence."""
        updated = 0
        try:
            with self.transaction() as conn:
                for chunk in _chunks(list(contact_ids)):
                    placeholders = ", ".join("?" for _ in chunk)
                    cursor = conn.execute(
                        f"""UPDATE contacts SET
                            tier = ?, tier_assigned_at = ?, tier_confidence = ?,
                            updated_at = CURRENT_TIMESTAMP
                            WHERE owner_id = ? AND id IN ({placeholders})""",
                        (tier.value, _to_db_ts(assigned_at), confidence, owner_id, *chunk),
                    )
                    updated += cursor.rowcount
        except sqlite3.Error as e:
            raise DatabaseError(f"Failed to move contacts to {tier.value}: {e}") from e
        return updated

    def set_archived(self, owner_id: str, contact_id: int, archived: bool) -> bool:
        """Set archived flag. Tier is left untouched."""
        try:
            with self.transaction() as conn:
                cursor = conn.execute(
                    """UPDATE contacts SET archived = ?, updated_at = CURRENT_TIMESTAMP
                       WHERE id = ? AND owner_id = ?""",
                    (int(archived), contact_id, owner_id),
                )
                return cursor.rowcount > 0
        except sqlite3.Error as e:
            raise DatabaseError(f"Failed to archive contact {contact_id}: {e}") from e

    def set_frequency_preference(
        self, owner_id: str, contact_id: int, preference: FrequencyPreference
    ) -> bool:
        """Set frequency preference."""
        try:
            with self.transaction() as conn:
                cursor = conn.execute(
                    """UPDATE contacts SET frequency_preference = ?,
                       updated_at = CURRENT_TIMESTAMP
                       WHERE id = ? AND owner_id = ?""",
                    (preference.value, contact_id, owner_id),
                )
                return cursor.rowcount > 0
        except sqlite3.Error as e:
            raise DatabaseError(
                f"Failed to set frequency preference of contact {contact_id}: {e}"
            ) from e

    # =========================================================================
    # INTERACTION OPERATIONS
    # =========================================================================

    def record_interaction(self, event: InteractionEvent) -> int:
        """Record an interaction and advance the contact's last_interaction_at.

        Raises:
            ContactNotFound: If the contact is not owned by event.owner_id
        """
        if event.occurred_at is None:
            raise DatabaseError("Interaction needs occurred_at")
        occurred = _to_db_ts(event.occurred_at)
        try:
            with self.transaction() as conn:
                cursor = conn.execute(
                    """UPDATE contacts SET last_interaction_at = ?,
                       updated_at = CURRENT_TIMESTAMP
                       WHERE id = ? AND owner_id = ?
                         AND (last_interaction_at IS NULL OR last_interaction_at < ?)""",
                    (occurred, event.contact_id, event.owner_id, occurred),
                )
                if cursor.rowcount == 0:
                    # Either the event is older than last_interaction_at or the contact is gone
                    if self.get_contact(event.owner_id, event.contact_id) is None:
                        raise ContactNotFound(event.contact_id)
                cursor = conn.execute(
                    """INSERT INTO interactions (owner_id, contact_id, channel, occurred_at)
                       VALUES (?, ?, ?, ?)""",
                    (event.owner_id, event.contact_id, event.channel.value, occurred),
                )
                return self._lastrowid(cursor)
        except sqlite3.Error as e:
            raise DatabaseError(f"Failed to record interaction: {e}") from e

    def get_interactions(self, owner_id: str, contact_id: int) -> list[InteractionEvent]:
        """All interactions of a contact, oldest first."""
        rows = self._fetchall(
            """SELECT * FROM interactions
               WHERE owner_id = ? AND contact_id = ?
               ORDER BY occurred_at ASC, id ASC""",
            (owner_id, contact_id),
        )
        return [self._row_to_interaction(row) for row in rows]

    # =========================================================================
    # LEDGER OPERATIONS
    # =========================================================================

    def append_assignment(self, record: AssignmentRecord) -> int:
        """Insert a ledger record."""
        try:
            with self.transaction() as conn:
                cursor = conn.execute(
                    """INSERT INTO tier_assignments
                       (owner_id, contact_id, from_tier, to_tier, actor,
                        confidence, reason, assigned_at)
                       VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
                    (
                        record.owner_id,
                        record.contact_id,
                        record.from_tier.value if record.from_tier else None,
                        record.to_tier.value,
                        record.actor.value,
                        record.confidence,
                        record.reason,
                        _to_db_ts(record.assigned_at),
                    ),
                )
                return self._lastrowid(cursor)
        except sqlite3.Error as e:
            raise DatabaseError(f"Failed to append tier assignment: {e}") from e

    def get_assignments(self, owner_id: str, contact_id: int) -> list[AssignmentRecord]:
        """Ledger history of a contact, oldest first."""
        rows = self._fetchall(
            """SELECT * FROM tier_assignments
               WHERE owner_id = ? AND contact_id = ?
               ORDER BY assigned_at ASC, id ASC""",
            (owner_id, contact_id),
        )
        return [self._row_to_assignment(row) for row in rows]

    def latest_assignment(self, owner_id: str, contact_id: int) -> Optional[AssignmentRecord]:
        """Most recent ledger record of a contact."""
        row = self._fetchone(
            """SELECT * FROM tier_assignments
               WHERE owner_id = ? AND contact_id = ?
               ORDER BY assigned_at DESC, id DESC
               LIMIT 1""",
            (owner_id, contact_id),
        )
        if row is None:
            return None
        return self._row_to_assignment(row)

    def recent_assignments(self, owner_id: str, limit: int = 50) -> list[AssignmentRecord]:
        """Most recent ledger records for the owner, newest first."""
        rows = self._fetchall(
            """SELECT * FROM tier_assignments
               WHERE owner_id = ?
               ORDER BY assigned_at DESC, id DESC
               LIMIT ?""",
            (owner_id, limit),
        )
        return [self._row_to_assignment(row) for row in rows]

    def insert_override(self, override: TierOverride) -> int:
        """Insert an override log entry."""
        try:
            with self.transaction() as conn:
                cursor = conn.execute(
                    """INSERT INTO tier_overrides
                       (owner_id, contact_id, suggested_tier, actual_tier, factors, recorded_at)
                       VALUES (?, ?, ?, ?, ?, ?)""",
                    (
                        override.owner_id,
                        override.contact_id,
                        override.suggested_tier.value if override.suggested_tier else None,
                        override.actual_tier.value,
                        json.dumps(override.factors, default=str),
                        _to_db_ts(override.recorded_at),
                    ),
                )
                return self._lastrowid(cursor)
        except sqlite3.Error as e:
            raise DatabaseError(f"Failed to record override: {e}") from e

    def get_overrides(self, owner_id: str, limit: int = 50) -> list[TierOverride]:
        """Override log, newest first."""
        rows = self._fetchall(
            """SELECT * FROM tier_overrides
               WHERE owner_id = ?
               ORDER BY recorded_at DESC, id DESC
               LIMIT ?""",
            (owner_id, limit),
        )
        return [self._row_to_override(row) for row in rows]

    # =========================================================================
    # REVIEW SESSION OPERATIONS
    # =========================================================================

    def upsert_session(
        self,
        owner_id: str,
        iso_year: int,
        iso_week: int,
        items: list[ReviewItem],
        started_at: datetime,
    ) -> ReviewSession:
        """Create or regenerate the session row for a week."""
        items_json = json.dumps([item.to_dict() for item in items])
        try:
            with self.transaction() as conn:
                conn.execute(
                    """INSERT INTO review_sessions
                       (owner_id, iso_year, iso_week, items, reviewed, started_at,
                        completed_at, skipped)
                       VALUES (?, ?, ?, ?, '[]', ?, NULL, 0)
                       ON CONFLICT(owner_id, iso_year, iso_week) DO UPDATE SET
                           items = excluded.items,
                           reviewed = '[]',
                           started_at = excluded.started_at,
                           completed_at = NULL,
                           skipped = 0""",
                    (owner_id, iso_year, iso_week, items_json, _to_db_ts(started_at)),
                )
                session = self.get_session_for_week(owner_id, iso_year, iso_week)
        except sqlite3.Error as e:
            raise DatabaseError(f"Failed to save review session: {e}") from e

        assert session is not None, "session row missing after upsert"
        return session

    def get_session(self, owner_id: str, session_id: int) -> Optional[ReviewSession]:
        """Get review session by ID, scoped to owner."""
        row = self._fetchone(
            "SELECT * FROM review_sessions WHERE id = ? AND owner_id = ?",
            (session_id, owner_id),
        )
        if row is None:
            return None
        return self._row_to_session(row)

    def get_session_for_week(
        self, owner_id: str, iso_year: int, iso_week: int
    ) -> Optional[ReviewSession]:
        """Session of a given ISO week."""
        row = self._fetchone(
            """SELECT * FROM review_sessions
               WHERE owner_id = ? AND iso_year = ? AND iso_week = ?""",
            (owner_id, iso_year, iso_week),
        )
        if row is None:
            return None
        return self._row_to_session(row)

    def get_sessions_before(
        self, owner_id: str, iso_year: int, iso_week: int, limit: int
    ) -> list[ReviewSession]:
        """Sessions of earlier weeks, newest first."""
        rows = self._fetchall(
            """SELECT * FROM review_sessions
               WHERE owner_id = ?
                 AND (iso_year < ? OR (iso_year = ? AND iso_week < ?))
               ORDER BY iso_year DESC, iso_week DESC
               LIMIT ?""",
            (owner_id, iso_year, iso_year, iso_week, limit),
        )
        return [self._row_to_session(row) for row in rows]

    def update_session_reviewed(self, owner_id: str, session_id: int, reviewed: list[int]) -> bool:
        """Replace the reviewed set."""
        try:
            with self.transaction() as conn:
                cursor = conn.execute(
                    "UPDATE review_sessions SET reviewed = ? WHERE id = ? AND owner_id = ?",
                    (json.dumps(list(reviewed)), session_id, owner_id),
                )
                return cursor.rowcount > 0
        except sqlite3.Error as e:
            raise DatabaseError(f"Failed to update review session {session_id}: {e}") from e

    def close_session(
        self,
        owner_id: str,
        session_id: int,
        completed_at: Optional[datetime] = None,
        skipped: bool = False,
    ) -> bool:
        """Complete or skip an active session."""
        try:
            with self.transaction() as conn:
                cursor = conn.execute(
                    """UPDATE review_sessions SET completed_at = ?, skipped = ?
                       WHERE id = ? AND owner_id = ?
                         AND completed_at IS NULL AND skipped = 0""",
                    (_to_db_ts(completed_at), int(skipped), session_id, owner_id),
                )
                return cursor.rowcount > 0
        except sqlite3.Error as e:
            raise DatabaseError(f"Failed to close review session {session_id}: {e}") from e
