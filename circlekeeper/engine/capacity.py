"""Tier capacity audit and rebalancing.

Each tier has a recommended and a maximum population (TIER_DEFINITIONS).
A tier more than 50% above its recommended size gets rebalancing
suggestions: its earliest-assigned members move one tier outward.
The largest tier has nowhere to move to and never gets suggestions.

Usage:
    from circlekeeper.engine.capacity import CapacityAdvisor

    advisor = CapacityAdvisor(db, ledger)
    for suggestion in advisor.suggest_rebalancing("alice"):
        print(suggestion.reason)
"""

import math
from dataclasses import dataclass, field
from typing import Optional, Union

from circlekeeper.core.logging import get_logger
from circlekeeper.db.models import (
    ActorKind,
    AssignmentRecord,
    CapacityStatus,
    Tier,
    TierDefinition,
    TIER_DEFINITIONS,
    TIER_ORDER,
    next_larger_tier,
)
from circlekeeper.db.store import RelationshipStore
from circlekeeper.engine.ledger import AssignmentLedger, TierAssignment, parse_tier

logger = get_logger(__name__)

# Rebalance once a tier exceeds this multiple of its recommended size
OVERLOAD_FACTOR = 1.5
REBALANCE_CONFIDENCE = 0.7


@dataclass
class TierCapacity:
    """Population of one tier against its targets.

    Attributes:
        tier: The tier
        current_size: Non-archived members
        recommended_size: Target population
        max_size: Upper bound of the optimal band
        status: under / optimal / over
        message: Explanation for the owner
    """

    tier: Tier
    current_size: int
    recommended_size: int
    max_size: int
    status: CapacityStatus
    message: str


@dataclass
class TierDistribution:
    """Contact counts per tier, archived contacts excluded."""

    counts: dict[Tier, int] = field(default_factory=dict)
    uncategorized: int = 0

    @property
    def total(self) -> int:
        return sum(self.counts.values()) + self.uncategorized

    def __getitem__(self, tier: Tier) -> int:
        return self.counts.get(tier, 0)


@dataclass
class RebalancingSuggestion:
    """Proposed move of one contact to a larger tier."""

    contact_id: int
    contact_name: str
    from_tier: Tier
    to_tier: Tier
    reason: str
    confidence: float = REBALANCE_CONFIDENCE


def evaluate_capacity(definition: TierDefinition, current_size: int) -> TierCapacity:
    """Classify a population against a tier definition."""
    recommended = definition.recommended_size
    maximum = definition.max_size

    if current_size < recommended:
        status = CapacityStatus.UNDER
        message = f"You have room for {recommended - current_size} more contacts in this circle"
    elif current_size <= maximum:
        status = CapacityStatus.OPTIMAL
        if current_size > recommended:
            message = f"This circle is slightly above the recommended size of {recommended}"
        else:
            message = "This circle is at its recommended size"
    else:
        status = CapacityStatus.OVER
        message = (
            f"This circle has {current_size - maximum} more contacts than recommended. "
            "Consider moving some to a larger circle."
        )

    return TierCapacity(
        tier=definition.tier,
        current_size=current_size,
        recommended_size=recommended,
        max_size=maximum,
        status=status,
        message=message,
    )


class CapacityAdvisor:
    """Audit tier populations and propose moves."""

    def __init__(
        self,
        store: RelationshipStore,
        ledger: AssignmentLedger,
        definitions: Optional[dict[Tier, TierDefinition]] = None,
    ):
        self.store = store
        self.ledger = ledger
        self.definitions = definitions or TIER_DEFINITIONS

    def tier_distribution(self, owner_id: str) -> TierDistribution:
        """Count non-archived contacts per tier."""
        counts = self.store.get_tier_counts(owner_id)
        return TierDistribution(
            counts={tier: counts.get(tier, 0) for tier in TIER_ORDER},
            uncategorized=counts.get(None, 0),
        )

    def capacity_status(self, owner_id: str, tier: Union[Tier, str]) -> TierCapacity:
        """Status of one tier.

        Raises:
            InvalidTier: tier is not a tier
        """
        tier = parse_tier(tier)
        distribution = self.tier_distribution(owner_id)
        return evaluate_capacity(self.definitions[tier], distribution[tier])

    def capacity_report(self, owner_id: str) -> list[TierCapacity]:
        """Status of all four tiers, smallest first."""
        distribution = self.tier_distribution(owner_id)
        return [evaluate_capacity(self.definitions[t], distribution[t]) for t in TIER_ORDER]

    def suggest_rebalancing(self, owner_id: str) -> list[RebalancingSuggestion]:
        """Propose moves out of overloaded tiers.

        For each tier above OVERLOAD_FACTOR x recommended, propose moving
        its ceil(current - recommended) earliest-assigned members to the
        next larger tier.
        """
        distribution = self.tier_distribution(owner_id)
        suggestions: list[RebalancingSuggestion] = []

        for tier in TIER_ORDER:
            definition = self.definitions[tier]
            current_size = distribution[tier]
            if current_size <= definition.recommended_size * OVERLOAD_FACTOR:
                continue

            target = next_larger_tier(tier)
            if target is None:
                logger.debug(
                    "Largest tier overloaded, nothing to move into",
                    owner_id=owner_id,
                    tier=tier.value,
                )
                continue

            move_count = math.ceil(current_size - definition.recommended_size)
            members = self.store.get_contacts_by_tier(owner_id, tier)[:move_count]
            reason = (
                f"{definition.name} is over capacity "
                f"({current_size}/{definition.recommended_size} recommended)"
            )
            for contact in members:
                assert contact.id is not None
                suggestions.append(
                    RebalancingSuggestion(
                        contact_id=contact.id,
                        contact_name=contact.name,
                        from_tier=tier,
                        to_tier=target,
                        reason=reason,
                    )
                )

        if suggestions:
            logger.info("Rebalancing suggested", owner_id=owner_id, moves=len(suggestions))
        return suggestions

    def apply_rebalancing(
        self, owner_id: str, suggestions: list[RebalancingSuggestion]
    ) -> list[AssignmentRecord]:
        """Commit suggestions as one all-or-nothing batch (actor: system)."""
        return self.ledger.batch_commit_tier(
            owner_id,
            [
                TierAssignment(s.contact_id, s.to_tier, s.confidence, s.reason)
                for s in suggestions
            ],
            ActorKind.SYSTEM,
        )
