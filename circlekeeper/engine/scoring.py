"""Engagement scoring algorithm.

Turns a contact's interaction history into a tier suggestion. The
composite 0-100 confidence is a fixed weighted sum of four factors:
    - Frequency (interactions per month over the last 90 days)
    - Recency (days since the latest interaction)
    - Consistency (regularity of the gaps between interactions)
    - Multi-channel (how many distinct channels were used)

Weights are hand-tuned, frequency and recency count most.
No trained model: every number can be explained to the owner.

Usage:
    from circlekeeper.engine.scoring import EngagementScorer

    scorer = EngagementScorer(db, db, cache, ledger)
    suggestion = scorer.classify("alice", contact_id)
"""

import statistics
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Iterable, Optional, Union

from circlekeeper.core.clock import Clock, utc_now
from circlekeeper.core.exceptions import ContactNotFound
from circlekeeper.core.logging import get_logger
from circlekeeper.db.models import (
    ActorKind,
    Channel,
    Contact,
    InteractionEvent,
    Tier,
    TierOverride,
    TIER_ORDER,
    tier_rank,
)
from circlekeeper.db.store import InteractionHistoryProvider, RelationshipStore
from circlekeeper.engine.ledger import AssignmentLedger, parse_tier
from circlekeeper.engine.suggestion_cache import SuggestionCache

logger = get_logger(__name__)


# =============================================================================
# SCORING WEIGHTS (manually tuned)
# =============================================================================


@dataclass
class ScoreWeights:
    """Factor weights.

    Total should equal 1.0.
    """

    frequency: float = 0.35
    recency: float = 0.30
    consistency: float = 0.20
    multi_channel: float = 0.15


DEFAULT_WEIGHTS = ScoreWeights()

FREQUENCY_WINDOW_DAYS = 90
DAYS_PER_MONTH = 30

# (minimum interactions per month, score), checked top down
FREQUENCY_BANDS: list[tuple[float, int]] = [
    (20, 95),
    (10, 85),
    (8, 80),
    (4, 70),
    (2, 50),
    (1, 40),
    (0.5, 25),
]
FREQUENCY_FLOOR = 10

# (days since last interaction below, score)
RECENCY_BANDS: list[tuple[int, int]] = [
    (7, 100),
    (14, 85),
    (30, 70),
    (60, 50),
    (90, 35),
    (180, 20),
    (365, 10),
]
RECENCY_FLOOR = 5

# (coefficient of variation below, score)
CONSISTENCY_BANDS: list[tuple[float, int]] = [
    (0.3, 90),
    (0.5, 75),
    (0.8, 60),
    (1.2, 45),
]
CONSISTENCY_FLOOR = 30
CONSISTENCY_MIN_EVENTS = 3
CONSISTENCY_INSUFFICIENT = 50

CHANNEL_SCORES: dict[int, int] = {0: 0, 1: 40, 2: 60, 3: 80, 4: 100}

# Lowest confidence for each tier, checked top down
TIER_THRESHOLDS: list[tuple[float, Tier]] = [
    (85, Tier.INNER),
    (70, Tier.CLOSE),
    (50, Tier.ACTIVE),
]
ALTERNATIVE_PENALTY = 15


# =============================================================================
# RESULT TYPES
# =============================================================================


class FactorKind(str, Enum):
    """Which signal a factor measures."""

    FREQUENCY = "frequency"
    RECENCY = "recency"
    CONSISTENCY = "consistency"
    MULTI_CHANNEL = "multi_channel"


@dataclass
class Factor:
    """One weighted input to the confidence.

    Attributes:
        kind: Signal measured
        value: Score 0-100
        weight: Share of the composite (0-1)
        description: Human-readable explanation
    """

    kind: FactorKind
    value: float
    weight: float
    description: str

    @property
    def contribution(self) -> float:
        """Points this factor adds to the composite."""
        return self.value * self.weight

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "value": self.value,
            "weight": self.weight,
            "description": self.description,
        }


@dataclass
class AlternativeTier:
    """A tier the contact could also fit, with its own confidence."""

    tier: Tier
    confidence: float


@dataclass
class TierSuggestion:
    """Scorer output for one contact.

    Attributes:
        contact_id: Contact scored
        tier: Suggested tier
        confidence: Composite score 0-100
        factors: Breakdown, one per FactorKind
        alternatives: The other three tiers, best first
        computed_at: When the suggestion was computed
    """

    contact_id: int
    tier: Tier
    confidence: float
    factors: list[Factor] = field(default_factory=list)
    alternatives: list[AlternativeTier] = field(default_factory=list)
    computed_at: Optional[datetime] = None


# =============================================================================
# FACTOR FUNCTIONS
# =============================================================================


def _band_score(value: float, bands: list[tuple[float, int]], floor: int, ascending: bool) -> int:
    """Look up value in a band table.

    ascending=True means the table lists upper bounds (value < bound),
    otherwise lower bounds (value >= bound).
    """
    for bound, score in bands:
        if ascending and value < bound:
            return score
        if not ascending and value >= bound:
            return score
    return floor


def score_frequency(events: list[InteractionEvent], now: datetime) -> Factor:
    """Score interactions per month in the trailing window."""
    if not events:
        return Factor(
            FactorKind.FREQUENCY, 0, DEFAULT_WEIGHTS.frequency, "No interactions recorded"
        )

    cutoff = now - timedelta(days=FREQUENCY_WINDOW_DAYS)
    in_window = sum(1 for e in events if e.occurred_at is not None and e.occurred_at >= cutoff)
    per_month = in_window / (FREQUENCY_WINDOW_DAYS / DAYS_PER_MONTH)
    value = _band_score(per_month, FREQUENCY_BANDS, FREQUENCY_FLOOR, ascending=False)

    return Factor(
        FactorKind.FREQUENCY,
        value,
        DEFAULT_WEIGHTS.frequency,
        f"{per_month:.1f} interactions per month over the last {FREQUENCY_WINDOW_DAYS} days",
    )


def score_recency(events: list[InteractionEvent], now: datetime) -> Factor:
    """Score days since the most recent interaction."""
    stamps = [e.occurred_at for e in events if e.occurred_at is not None]
    if not stamps:
        return Factor(FactorKind.RECENCY, 0, DEFAULT_WEIGHTS.recency, "Never interacted")

    days_since = max(0.0, (now - max(stamps)).total_seconds() / 86400)
    value = _band_score(days_since, RECENCY_BANDS, RECENCY_FLOOR, ascending=True)

    whole_days = int(days_since)
    if whole_days == 0:
        description = "Last interaction today"
    elif whole_days == 1:
        description = "Last interaction yesterday"
    else:
        description = f"Last interaction {whole_days} days ago"
    return Factor(FactorKind.RECENCY, value, DEFAULT_WEIGHTS.recency, description)


def score_consistency(events: list[InteractionEvent]) -> Factor:
    """Score regularity via coefficient of variation of the gaps."""
    stamps = sorted(e.occurred_at for e in events if e.occurred_at is not None)
    weight = DEFAULT_WEIGHTS.consistency

    if not stamps:
        return Factor(FactorKind.CONSISTENCY, 0, weight, "No interactions recorded")
    if len(stamps) < CONSISTENCY_MIN_EVENTS:
        return Factor(
            FactorKind.CONSISTENCY,
            CONSISTENCY_INSUFFICIENT,
            weight,
            f"Only {len(stamps)} interaction(s), not enough to judge a rhythm",
        )

    gaps = [(b - a).total_seconds() for a, b in zip(stamps, stamps[1:])]
    mean_gap = statistics.fmean(gaps)
    if mean_gap <= 0:
        return Factor(
            FactorKind.CONSISTENCY,
            CONSISTENCY_FLOOR,
            weight,
            "All interactions happened at the same moment",
        )

    cv = statistics.pstdev(gaps) / mean_gap
    value = _band_score(cv, CONSISTENCY_BANDS, CONSISTENCY_FLOOR, ascending=True)
    if value >= 75:
        label = "Regular cadence"
    elif value >= 45:
        label = "Somewhat regular cadence"
    else:
        label = "Irregular, bursty contact"
    return Factor(FactorKind.CONSISTENCY, value, weight, f"{label} (gap variation {cv:.2f})")


def score_multi_channel(events: list[InteractionEvent]) -> Factor:
    """Score number of distinct channels used."""
    channels = {e.channel for e in events}
    count = min(len(channels), len(Channel))
    return Factor(
        FactorKind.MULTI_CHANNEL,
        CHANNEL_SCORES[count],
        DEFAULT_WEIGHTS.multi_channel,
        f"{count} of {len(Channel)} channels used",
    )


def calculate_factors(
    events: list[InteractionEvent],
    now: datetime,
    weights: ScoreWeights = DEFAULT_WEIGHTS,
) -> list[Factor]:
    """Compute all four factors with the given weights."""
    factors = [
        score_frequency(events, now),
        score_recency(events, now),
        score_consistency(events),
        score_multi_channel(events),
    ]
    by_kind = {
        FactorKind.FREQUENCY: weights.frequency,
        FactorKind.RECENCY: weights.recency,
        FactorKind.CONSISTENCY: weights.consistency,
        FactorKind.MULTI_CHANNEL: weights.multi_channel,
    }
    for factor in factors:
        factor.weight = by_kind[factor.kind]
    return factors


def combine_factors(factors: Iterable[Factor]) -> float:
    """Weighted sum clamped to 0-100, one decimal."""
    raw = sum(f.contribution for f in factors)
    return round(max(0.0, min(100.0, raw)), 1)


def tier_for_confidence(confidence: float) -> Tier:
    """Map a confidence to its tier band."""
    for threshold, tier in TIER_THRESHOLDS:
        if confidence >= threshold:
            return tier
    return Tier.CASUAL


def alternative_tiers(primary: Tier, confidence: float) -> list[AlternativeTier]:
    """Score the other tiers by distance from the primary band.

    Each band step away costs ALTERNATIVE_PENALTY points.
    """
    primary_rank = tier_rank(primary)
    alternatives = [
        AlternativeTier(
            tier=tier,
            confidence=round(
                max(0.0, confidence - ALTERNATIVE_PENALTY * abs(tier_rank(tier) - primary_rank)),
                1,
            ),
        )
        for tier in TIER_ORDER
        if tier != primary
    ]
    alternatives.sort(key=lambda alt: (-alt.confidence, tier_rank(alt.tier)))
    return alternatives


def suggest_tier(
    contact_id: int,
    events: list[InteractionEvent],
    now: datetime,
    weights: ScoreWeights = DEFAULT_WEIGHTS,
) -> TierSuggestion:
    """Build a full suggestion from raw history.

    Args:
        contact_id: Contact the history belongs to
        events: Interaction history, any order
        now: Reference time for recency and the frequency window
        weights: Factor weights

    Returns:
        TierSuggestion with factors and alternatives
    """
    factors = calculate_factors(events, now, weights)
    confidence = combine_factors(factors)
    tier = tier_for_confidence(confidence)
    return TierSuggestion(
        contact_id=contact_id,
        tier=tier,
        confidence=confidence,
        factors=factors,
        alternatives=alternative_tiers(tier, confidence),
        computed_at=now,
    )


# =============================================================================
# SCORER SERVICE
# =============================================================================


class EngagementScorer:
    """Classify contacts into tiers and record owner overrides."""

    def __init__(
        self,
        store: RelationshipStore,
        history: InteractionHistoryProvider,
        cache: SuggestionCache,
        ledger: AssignmentLedger,
        clock: Clock = utc_now,
        weights: ScoreWeights = DEFAULT_WEIGHTS,
    ):
        self.store = store
        self.history = history
        self.cache = cache
        self.ledger = ledger
        self.clock = clock
        self.weights = weights

    def _require_contact(self, owner_id: str, contact_id: int) -> Contact:
        contact = self.store.get_contact(owner_id, contact_id)
        if contact is None:
            raise ContactNotFound(contact_id)
        return contact

    def _compute(self, owner_id: str, contact_id: int) -> TierSuggestion:
        events = self.history.get_interactions(owner_id, contact_id)
        return suggest_tier(contact_id, events, self.clock(), self.weights)

    def classify(self, owner_id: str, contact_id: int) -> TierSuggestion:
        """Suggest a tier for a contact.

        Served from the cache while the contact's interaction and tier
        timestamps are unchanged and the entry is fresh.

        Raises:
            ContactNotFound: Unknown contact or not owned by owner_id
        """
        log = logger.bind(owner_id=owner_id, contact_id=contact_id)
        contact = self._require_contact(owner_id, contact_id)

        cached = self.cache.get(contact)
        if cached is not None:
            log.debug("Suggestion cache hit")
            return cached

        suggestion = self._compute(owner_id, contact_id)
        self.cache.put(contact, suggestion)
        log.debug(
            "Contact classified", tier=suggestion.tier.value, confidence=suggestion.confidence
        )
        return suggestion

    def batch_classify(self, owner_id: str, contact_ids: Iterable[int]) -> list[TierSuggestion]:
        """Classify many contacts. Unknown ids are skipped with a warning."""
        suggestions: list[TierSuggestion] = []
        skipped: list[int] = []
        for contact_id in contact_ids:
            try:
                suggestions.append(self.classify(owner_id, contact_id))
            except ContactNotFound:
                skipped.append(contact_id)

        if skipped:
            logger.warning(
                "Batch classify skipped unknown contacts", owner_id=owner_id, contact_ids=skipped
            )
        return suggestions

    def record_override(
        self,
        owner_id: str,
        contact_id: int,
        suggested_tier: Optional[Union[Tier, str]],
        actual_tier: Union[Tier, str],
    ) -> Contact:
        """Commit the owner's chosen tier and log the disagreement.

        Args:
            owner_id: Owner
            contact_id: Contact
            suggested_tier: What the engine suggested (None if nothing was shown)
            actual_tier: What the owner picked

        Returns:
            Updated contact

        Raises:
            InvalidTier: Either tier value is not a tier
            ContactNotFound: Unknown contact
        """
        actual = parse_tier(actual_tier)
        suggested = parse_tier(suggested_tier) if suggested_tier is not None else None
        self._require_contact(owner_id, contact_id)

        snapshot = self.cache.peek(contact_id) or self._compute(owner_id, contact_id)
        reason = (
            f"Override of suggested {suggested.value}" if suggested else "Set by owner"
        )

        with self.store.transaction():
            contact = self.ledger.commit_tier(
                owner_id, contact_id, actual, ActorKind.USER, reason=reason
            )
            self.store.insert_override(
                TierOverride(
                    owner_id=owner_id,
                    contact_id=contact_id,
                    suggested_tier=suggested,
                    actual_tier=actual,
                    factors=[f.to_dict() for f in snapshot.factors],
                    recorded_at=self.clock(),
                )
            )

        self.cache.invalidate(contact_id)
        logger.info(
            "Tier override recorded",
            owner_id=owner_id,
            contact_id=contact_id,
            suggested=suggested.value if suggested else None,
            actual=actual.value,
        )
        return contact

    def overrides(self, owner_id: str, limit: int = 50) -> list[TierOverride]:
        """Recorded overrides, newest first."""
        return self.store.get_overrides(owner_id, limit)
