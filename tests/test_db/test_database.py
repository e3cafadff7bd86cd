"""Tests for database operations."""

from datetime import datetime, timedelta
from pathlib import Path

import pytest

from circlekeeper.core.exceptions import ContactNotFound, DatabaseError
from circlekeeper.db.database import SCHEMA_VERSION, Database
from circlekeeper.db.models import (
    ActorKind,
    AssignmentRecord,
    Channel,
    Contact,
    FrequencyPreference,
    InteractionEvent,
    ReviewItem,
    ReviewType,
    Tier,
    TierOverride,
)

NOW = datetime(2026, 3, 11, 12, 0, 0)
OWNER = "alice"


class TestDatabaseConnection:
    """Test database connection management."""

    def test_connect_creates_file(self, tmp_path: Path):
        """Connecting creates database file."""
        db_path = tmp_path / "new.db"
        db = Database(str(db_path))
        db.initialize()
        assert db_path.exists()
        db.close()

    def test_initialize_schema(self, memory_db: Database):
        """Schema initialization creates all required tables."""
        conn = memory_db._get_connection()
        tables = conn.execute(
            "SELECT name FROM sqlite_master WHERE type='table' ORDER BY name"
        ).fetchall()
        table_names = [t[0] for t in tables]
        for expected in [
            "contacts",
            "interactions",
            "review_sessions",
            "schema_version",
            "tier_assignments",
            "tier_overrides",
        ]:
            assert expected in table_names

    def test_initialize_is_idempotent(self, temp_db: Database):
        """Running initialize twice does not fail."""
        temp_db.initialize()

    def test_initialize_records_schema_version(self, temp_db: Database):
        """The current schema version is stored once."""
        temp_db.initialize()
        rows = temp_db._get_connection().execute("SELECT version FROM schema_version").fetchall()
        assert [r[0] for r in rows] == [SCHEMA_VERSION]

    def test_newer_schema_is_rejected(self, temp_db: Database):
        """A file written by a newer schema refuses to open."""
        conn = temp_db._get_connection()
        conn.execute("INSERT INTO schema_version (version) VALUES (?)", (SCHEMA_VERSION + 1,))
        conn.commit()
        with pytest.raises(DatabaseError, match="newer than supported"):
            temp_db.initialize()


class TestTransactions:
    """Test re-entrant transactions."""

    def test_rollback_on_error(self, memory_db: Database):
        """An exception inside the block undoes every write."""
        with pytest.raises(RuntimeError):
            with memory_db.transaction():
                memory_db.create_contact(Contact(owner_id=OWNER, name="Ghost"))
                raise RuntimeError("boom")
        assert memory_db.get_tier_counts(OWNER) == {}

    def test_nested_blocks_join_outer(self, memory_db: Database):
        """A nested block does not commit on its own."""
        with pytest.raises(RuntimeError):
            with memory_db.transaction():
                with memory_db.transaction():
                    memory_db.create_contact(Contact(owner_id=OWNER, name="Inner"))
                raise RuntimeError("boom")
        assert memory_db.get_tier_counts(OWNER) == {}


class TestContactOperations:
    """Test contact reads and writes."""

    def test_create_and_get(self, memory_db: Database):
        """Created contact round-trips with its timestamps."""
        contact_id = memory_db.create_contact(
            Contact(
                owner_id=OWNER,
                name="Bob",
                tier=Tier.CLOSE,
                tier_assigned_at=NOW,
                last_interaction_at=NOW - timedelta(days=3),
            )
        )
        contact = memory_db.get_contact(OWNER, contact_id)
        assert contact is not None
        assert contact.name == "Bob"
        assert contact.tier == Tier.CLOSE
        assert contact.tier_assigned_at == NOW
        assert contact.last_interaction_at == NOW - timedelta(days=3)
        assert contact.created_at is not None

    def test_owner_scoping(self, memory_db: Database):
        """Another owner's contact is invisible."""
        contact_id = memory_db.create_contact(Contact(owner_id="bob", name="Carol"))
        assert memory_db.get_contact(OWNER, contact_id) is None
        assert memory_db.get_contacts(OWNER, [contact_id]) == {}

    def test_get_contacts_skips_unknown(self, memory_db: Database):
        """Batch lookup returns only ids that exist."""
        a = memory_db.create_contact(Contact(owner_id=OWNER, name="A"))
        result = memory_db.get_contacts(OWNER, [a, 999, a])
        assert list(result) == [a]

    def test_tier_counts_exclude_archived(self, memory_db: Database):
        """Archived contacts are not counted; None key is uncategorized."""
        memory_db.create_contact(Contact(owner_id=OWNER, name="A", tier=Tier.INNER))
        memory_db.create_contact(Contact(owner_id=OWNER, name="B", tier=Tier.INNER))
        memory_db.create_contact(Contact(owner_id=OWNER, name="C"))
        memory_db.create_contact(
            Contact(owner_id=OWNER, name="D", tier=Tier.INNER, archived=True)
        )
        assert memory_db.get_tier_counts(OWNER) == {Tier.INNER: 2, None: 1}

    def test_contacts_by_tier_ordered_by_assignment(self, memory_db: Database):
        """Earliest-assigned members come first."""
        late = memory_db.create_contact(
            Contact(owner_id=OWNER, name="Late", tier=Tier.ACTIVE, tier_assigned_at=NOW)
        )
        early = memory_db.create_contact(
            Contact(
                owner_id=OWNER,
                name="Early",
                tier=Tier.ACTIVE,
                tier_assigned_at=NOW - timedelta(days=10),
            )
        )
        ids = [c.id for c in memory_db.get_contacts_by_tier(OWNER, Tier.ACTIVE)]
        assert ids == [early, late]

    def test_stale_contacts_window(self, memory_db: Database):
        """Cutoff, never-contacted first, then oldest first."""
        never = memory_db.create_contact(Contact(owner_id=OWNER, name="N", tier=Tier.CASUAL))
        old = memory_db.create_contact(
            Contact(
                owner_id=OWNER,
                name="O",
                tier=Tier.CASUAL,
                last_interaction_at=NOW - timedelta(days=300),
            )
        )
        mid = memory_db.create_contact(
            Contact(
                owner_id=OWNER,
                name="M",
                tier=Tier.CASUAL,
                last_interaction_at=NOW - timedelta(days=60),
            )
        )
        memory_db.create_contact(
            Contact(
                owner_id=OWNER,
                name="R",
                tier=Tier.CASUAL,
                last_interaction_at=NOW - timedelta(days=2),
            )
        )

        maintain = memory_db.get_stale_contacts(
            OWNER,
            interacted_before=NOW - timedelta(days=30),
            include_never=True,
        )
        assert [c.id for c in maintain] == [never, old, mid]

        prune = memory_db.get_stale_contacts(OWNER, interacted_before=NOW - timedelta(days=180))
        assert [c.id for c in prune] == [old]

    def test_compare_and_set_tier(self, memory_db: Database):
        """Write succeeds only against the expected state."""
        contact_id = memory_db.create_contact(Contact(owner_id=OWNER, name="A"))
        assert memory_db.compare_and_set_tier(OWNER, contact_id, None, None, Tier.CLOSE, NOW, 80.0)
        # Stale expectation loses
        assert not memory_db.compare_and_set_tier(
            OWNER, contact_id, None, None, Tier.INNER, NOW, None
        )
        contact = memory_db.get_contact(OWNER, contact_id)
        assert contact.tier == Tier.CLOSE
        assert contact.tier_confidence == 80.0

    def test_set_archived_and_preference(self, memory_db: Database):
        """Flags update without touching tier."""
        contact_id = memory_db.create_contact(
            Contact(owner_id=OWNER, name="A", tier=Tier.CASUAL, tier_assigned_at=NOW)
        )
        assert memory_db.set_archived(OWNER, contact_id, True)
        assert memory_db.set_frequency_preference(OWNER, contact_id, FrequencyPreference.YEARLY)
        contact = memory_db.get_contact(OWNER, contact_id)
        assert contact.archived is True
        assert contact.tier == Tier.CASUAL
        assert contact.frequency_preference == FrequencyPreference.YEARLY
        assert [c.id for c in memory_db.get_archived_contacts(OWNER)] == [contact_id]


class TestInteractionOperations:
    """Test interaction recording."""

    def test_last_interaction_only_moves_forward(self, memory_db: Database):
        """An older event does not rewind last_interaction_at."""
        contact_id = memory_db.create_contact(Contact(owner_id=OWNER, name="A"))
        for days in (1, 5):
            memory_db.record_interaction(
                InteractionEvent(
                    owner_id=OWNER,
                    contact_id=contact_id,
                    channel=Channel.CALL,
                    occurred_at=NOW - timedelta(days=days),
                )
            )
        assert memory_db.get_contact(OWNER, contact_id).last_interaction_at == NOW - timedelta(
            days=1
        )
        events = memory_db.get_interactions(OWNER, contact_id)
        assert [e.occurred_at for e in events] == [
            NOW - timedelta(days=5),
            NOW - timedelta(days=1),
        ]

    def test_unknown_contact_raises(self, memory_db: Database):
        """Recording against a missing contact fails."""
        with pytest.raises(ContactNotFound):
            memory_db.record_interaction(
                InteractionEvent(owner_id=OWNER, contact_id=99, occurred_at=NOW)
            )


class TestLedgerOperations:
    """Test ledger and override storage."""

    def test_latest_and_recent(self, memory_db: Database):
        """Latest is by assigned_at; recent is newest first."""
        contact_id = memory_db.create_contact(Contact(owner_id=OWNER, name="A"))
        for i, tier in enumerate([Tier.CASUAL, Tier.ACTIVE]):
            memory_db.append_assignment(
                AssignmentRecord(
                    owner_id=OWNER,
                    contact_id=contact_id,
                    to_tier=tier,
                    actor=ActorKind.USER,
                    assigned_at=NOW + timedelta(seconds=i),
                )
            )
        assert memory_db.latest_assignment(OWNER, contact_id).to_tier == Tier.ACTIVE
        assert [r.to_tier for r in memory_db.recent_assignments(OWNER)] == [
            Tier.ACTIVE,
            Tier.CASUAL,
        ]
        assert len(memory_db.get_assignments(OWNER, contact_id)) == 2

    def test_override_factors_stored_as_json(self, memory_db: Database):
        """Factor snapshot survives storage."""
        contact_id = memory_db.create_contact(Contact(owner_id=OWNER, name="A"))
        memory_db.insert_override(
            TierOverride(
                owner_id=OWNER,
                contact_id=contact_id,
                suggested_tier=Tier.CASUAL,
                actual_tier=Tier.INNER,
                factors=[{"kind": "frequency", "value": 12.0}],
                recorded_at=NOW,
            )
        )
        (override,) = memory_db.get_overrides(OWNER)
        assert override.factors == [{"kind": "frequency", "value": 12.0}]
        assert override.suggested_tier == Tier.CASUAL


class TestSessionOperations:
    """Test review session storage."""

    def _items(self) -> list[ReviewItem]:
        return [ReviewItem(contact_id=1, review_type=ReviewType.CATEGORIZE, suggested_action="x")]

    def test_upsert_is_unique_per_week(self, memory_db: Database):
        """Upserting the same week keeps one row and resets state."""
        first = memory_db.upsert_session(OWNER, 2026, 11, self._items(), NOW)
        memory_db.update_session_reviewed(OWNER, first.id, [1])
        memory_db.close_session(OWNER, first.id, skipped=True)

        second = memory_db.upsert_session(OWNER, 2026, 11, [], NOW + timedelta(hours=1))
        assert second.id == first.id
        assert second.items == []
        assert second.reviewed == []
        assert second.is_active

    def test_close_only_active(self, memory_db: Database):
        """A closed session cannot be closed again."""
        session = memory_db.upsert_session(OWNER, 2026, 11, self._items(), NOW)
        assert memory_db.close_session(OWNER, session.id, completed_at=NOW)
        assert not memory_db.close_session(OWNER, session.id, skipped=True)
        assert memory_db.get_session(OWNER, session.id).completed_at == NOW

    def test_sessions_before_cross_year(self, memory_db: Database):
        """Earlier weeks are newest first, across ISO years."""
        memory_db.upsert_session(OWNER, 2025, 52, [], NOW)
        memory_db.upsert_session(OWNER, 2026, 1, [], NOW)
        memory_db.upsert_session(OWNER, 2026, 2, [], NOW)
        earlier = memory_db.get_sessions_before(OWNER, 2026, 2, limit=5)
        assert [(s.iso_year, s.iso_week) for s in earlier] == [(2026, 1), (2025, 52)]
