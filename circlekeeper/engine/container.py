"""Explicit wiring of the engine services.

Nothing in the engine is a module-level singleton. Build one
EngineServices per store (per process, per test) and pass it around.

Usage:
    from circlekeeper.engine.container import build_services

    services = build_services(db, config)
    services.scorer.classify("alice", 42)
"""

from dataclasses import dataclass
from typing import Optional

from circlekeeper.core.clock import Clock, utc_now
from circlekeeper.core.config import Config
from circlekeeper.db.store import InteractionHistoryProvider, RelationshipStore
from circlekeeper.engine.capacity import CapacityAdvisor
from circlekeeper.engine.ledger import AssignmentLedger
from circlekeeper.engine.pruning import ContactPruner
from circlekeeper.engine.review import ReviewScheduler
from circlekeeper.engine.scoring import EngagementScorer
from circlekeeper.engine.suggestion_cache import SuggestionCache


@dataclass
class EngineServices:
    """All engine components sharing one store, cache and clock."""

    store: RelationshipStore
    cache: SuggestionCache
    ledger: AssignmentLedger
    scorer: EngagementScorer
    capacity: CapacityAdvisor
    pruner: ContactPruner
    review: ReviewScheduler


def build_services(
    store: RelationshipStore,
    config: Optional[Config] = None,
    clock: Clock = utc_now,
    history: Optional[InteractionHistoryProvider] = None,
) -> EngineServices:
    """Construct every engine component.

    Args:
        store: Persisted store
        config: Tunables (defaults used when None)
        clock: Source of "now"
        history: Interaction history; defaults to the store when it
            implements InteractionHistoryProvider

    Returns:
        EngineServices
    """
    config = config or Config()
    if history is None:
        if not isinstance(store, InteractionHistoryProvider):
            raise TypeError("store does not provide interaction history, pass history=")
        history = store

    cache = SuggestionCache(ttl_seconds=config.cache_ttl_seconds, clock=clock)
    ledger = AssignmentLedger(store, clock=clock, cache=cache)
    pruner = ContactPruner(store)

    return EngineServices(
        store=store,
        cache=cache,
        ledger=ledger,
        scorer=EngagementScorer(store, history, cache, ledger, clock=clock),
        capacity=CapacityAdvisor(store, ledger),
        pruner=pruner,
        review=ReviewScheduler(
            store,
            ledger,
            pruner,
            clock=clock,
            maintain_after_days=config.maintain_after_days,
            prune_after_days=config.prune_after_days,
        ),
    )
