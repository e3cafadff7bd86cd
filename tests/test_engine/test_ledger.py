"""Tests for the tier assignment ledger.

Covers:
    - Single commits and the contact/ledger lockstep
    - Compare-and-set conflicts
    - All-or-nothing batch commits
    - Ledger queries
"""

import threading
from datetime import datetime, timedelta

import pytest

from circlekeeper.core.exceptions import (
    BatchValidationError,
    ConcurrentModificationError,
    ContactNotFound,
    InvalidTier,
    ValidationError,
)
from circlekeeper.db.models import ActorKind, Tier
from circlekeeper.engine.ledger import TICK, TierAssignment, parse_tier

NOW = datetime(2026, 3, 11, 12, 0, 0)
OWNER = "alice"


def _assert_lockstep(services, contact_id):
    contact = services.store.get_contact(OWNER, contact_id)
    latest = services.store.latest_assignment(OWNER, contact_id)
    assert latest is not None
    assert contact.tier == latest.to_tier
    assert contact.tier_assigned_at == latest.assigned_at


class TestParseTier:
    """Test tier coercion."""

    def test_accepts_enum_and_value(self):
        """Tier members and their values both work."""
        assert parse_tier(Tier.ACTIVE) == Tier.ACTIVE
        assert parse_tier("inner") == Tier.INNER

    def test_rejects_unknown(self):
        """Anything else raises InvalidTier."""
        with pytest.raises(InvalidTier):
            parse_tier("INNER")


class TestCommitTier:
    """Test single commits."""

    def test_first_commit(self, services, make_contact):
        """From uncategorized to a tier, stamped with now."""
        contact_id = make_contact()
        contact = services.ledger.commit_tier(
            OWNER, contact_id, Tier.CLOSE, ActorKind.AUTOMATIC, confidence=78.5
        )
        assert contact.tier == Tier.CLOSE
        assert contact.tier_assigned_at == NOW
        assert contact.tier_confidence == 78.5

        (record,) = services.ledger.history(OWNER, contact_id)
        assert record.from_tier is None
        assert record.to_tier == Tier.CLOSE
        assert record.actor == ActorKind.AUTOMATIC
        _assert_lockstep(services, contact_id)

    def test_same_instant_commits_stay_ordered(self, services, make_contact):
        """Two commits at the same clock reading get increasing stamps."""
        contact_id = make_contact()
        services.ledger.commit_tier(OWNER, contact_id, Tier.CLOSE, "user")
        services.ledger.commit_tier(OWNER, contact_id, Tier.INNER, "user")
        first, second = services.ledger.history(OWNER, contact_id)
        assert second.assigned_at == first.assigned_at + TICK
        assert second.from_tier == Tier.CLOSE
        assert services.ledger.current_tier(OWNER, contact_id) == Tier.INNER
        _assert_lockstep(services, contact_id)

    def test_clock_behind_existing_stamp(self, services, make_contact):
        """A stamp from the future on the contact is never undercut."""
        future = NOW + timedelta(days=1)
        contact_id = make_contact(tier=Tier.CASUAL, tier_assigned_at=future)
        contact = services.ledger.commit_tier(OWNER, contact_id, Tier.ACTIVE, "system")
        assert contact.tier_assigned_at == future + TICK

    def test_invalid_inputs(self, services, make_contact):
        """Bad tier, bad actor, unknown contact."""
        contact_id = make_contact()
        with pytest.raises(InvalidTier):
            services.ledger.commit_tier(OWNER, contact_id, "bestie", "user")
        with pytest.raises(ValidationError):
            services.ledger.commit_tier(OWNER, contact_id, Tier.CLOSE, "robot")
        with pytest.raises(ContactNotFound):
            services.ledger.commit_tier(OWNER, 999, Tier.CLOSE, "user")
        assert services.ledger.history(OWNER, contact_id) == []

    def test_lost_race_writes_nothing(self, services, make_contact, monkeypatch):
        """A failed compare-and-set raises and appends no record."""
        contact_id = make_contact()
        monkeypatch.setattr(services.store, "compare_and_set_tier", lambda *a, **k: False)
        with pytest.raises(ConcurrentModificationError):
            services.ledger.commit_tier(OWNER, contact_id, Tier.CLOSE, "user")
        assert services.ledger.history(OWNER, contact_id) == []

    def test_commit_invalidates_cache(self, services, make_contact):
        """Committing drops the cached suggestion."""
        contact_id = make_contact()
        services.scorer.classify(OWNER, contact_id)
        assert len(services.cache) == 1
        services.ledger.commit_tier(OWNER, contact_id, Tier.CASUAL, "automatic")
        assert len(services.cache) == 0

    def test_concurrent_commits_keep_lockstep(self, services, make_contact):
        """Parallel commits serialize; the latest record matches the contact."""
        contact_id = make_contact()
        errors = []

        def commit(tier):
            try:
                services.ledger.commit_tier(OWNER, contact_id, tier, "user")
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=commit, args=(t,)) for t in list(Tier) * 3]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert errors == []
        assert len(services.ledger.history(OWNER, contact_id)) == 12
        _assert_lockstep(services, contact_id)


class TestBatchCommitTier:
    """Test all-or-nothing batch commits."""

    def test_commits_all(self, services, make_contact):
        """Every contact moves and gets one record."""
        a = make_contact()
        b = make_contact(tier=Tier.CASUAL)
        records = services.ledger.batch_commit_tier(
            OWNER, [(a, Tier.INNER), TierAssignment(b, "close", 0.7, "Rebalance")], "system"
        )
        assert [(r.contact_id, r.from_tier, r.to_tier) for r in records] == [
            (a, None, Tier.INNER),
            (b, Tier.CASUAL, Tier.CLOSE),
        ]
        assert all(r.id is not None for r in records)
        assert records[1].reason == "Rebalance"
        _assert_lockstep(services, a)
        _assert_lockstep(services, b)

    def test_contact_keeps_its_assignment_confidence(self, services, make_contact):
        """Each contact row carries the confidence of its own last assignment."""
        a = make_contact()
        b = make_contact()
        c = make_contact()
        services.ledger.batch_commit_tier(
            OWNER,
            [
                TierAssignment(a, Tier.CLOSE, 0.7),
                TierAssignment(b, Tier.CLOSE, 0.9),
                (c, Tier.CLOSE),
                TierAssignment(c, Tier.ACTIVE, 0.4),
            ],
            "system",
        )
        confidences = {
            cid: services.store.get_contact(OWNER, cid).tier_confidence for cid in (a, b, c)
        }
        assert confidences == {a: 0.7, b: 0.9, c: 0.4}
        assert services.store.get_contact(OWNER, c).tier == Tier.ACTIVE

    def test_missing_id_aborts_everything(self, services, make_contact):
        """One unknown id means no writes at all."""
        a = make_contact()
        with pytest.raises(BatchValidationError) as exc_info:
            services.ledger.batch_commit_tier(OWNER, [(a, Tier.INNER), (999, Tier.CLOSE)], "user")
        assert exc_info.value.missing_ids == [999]
        assert services.store.get_contact(OWNER, a).tier is None
        assert services.ledger.recent_assignments(OWNER) == []

    def test_invalid_tier_aborts_everything(self, services, make_contact):
        """One bad tier means no writes at all."""
        a = make_contact()
        with pytest.raises(InvalidTier):
            services.ledger.batch_commit_tier(OWNER, [(a, Tier.INNER), (a, "nope")], "user")
        assert services.ledger.recent_assignments(OWNER) == []

    def test_other_owner_counts_as_missing(self, services, make_contact):
        """Ids of another owner are rejected."""
        theirs = make_contact(owner_id="bob")
        with pytest.raises(BatchValidationError):
            services.ledger.batch_commit_tier(OWNER, [(theirs, Tier.INNER)], "user")

    def test_duplicate_ids_last_wins(self, services, make_contact):
        """Repeated contact gets chained records; final tier is the last one."""
        a = make_contact()
        records = services.ledger.batch_commit_tier(
            OWNER, [(a, Tier.CLOSE), (a, Tier.INNER)], "user"
        )
        assert records[1].from_tier == Tier.CLOSE
        assert records[1].assigned_at == records[0].assigned_at + TICK
        assert services.store.get_contact(OWNER, a).tier == Tier.INNER
        _assert_lockstep(services, a)

    def test_empty_batch(self, services):
        """Nothing in, nothing out."""
        assert services.ledger.batch_commit_tier(OWNER, [], "user") == []


class TestLedgerQueries:
    """Test history queries."""

    def test_current_tier_none_before_any_commit(self, services, make_contact):
        """Tier set at creation is not a ledger entry."""
        contact_id = make_contact(tier=Tier.CASUAL)
        assert services.ledger.current_tier(OWNER, contact_id) is None

    def test_recent_assignments_newest_first(self, services, make_contact, clock):
        """Across contacts, newest first, limited."""
        a = make_contact()
        b = make_contact()
        services.ledger.commit_tier(OWNER, a, Tier.CLOSE, "user")
        clock.advance(minutes=1)
        services.ledger.commit_tier(OWNER, b, Tier.ACTIVE, "user")
        recent = services.ledger.recent_assignments(OWNER, limit=1)
        assert [r.contact_id for r in recent] == [b]

    def test_history_unknown_contact(self, services):
        """History of a missing contact raises."""
        with pytest.raises(ContactNotFound):
            services.ledger.history(OWNER, 999)
