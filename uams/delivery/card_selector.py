"""
Card Selector - Prioritized Strategy Selection.

Picks the next card for a session in three steps:
1. Anti-clustering: drop cards related to (concept links, similar text) or
   shown alongside the last few selections
2. Cognitive-load ceiling: drop cards heavier than the learner can carry now
3. Strategy dispatch: the first matching strategy, in priority order, picks
   from the surviving cards

Strategies (highest priority first):
    CRISIS_INTERVENTION (100)  momentum < 0.3 and declining -> confidence booster
    CRITICAL_FATIGUE (90)      fatigue > 0.9 -> easiest card
    HIGH_PERFORMANCE (80)      momentum > 0.8, fatigue < 0.5 -> optimal challenge
    FLOW_MAINTENANCE (70)      in flow band, fatigue < 0.6 -> matched difficulty
    ENGAGEMENT_INJECTION (60)  engagement < 0.4 -> novel/interesting card
    BALANCED (1)               always -> weighted urgency score

Filters never empty the candidate set: when one would, the selector logs a
warning and continues with the filter's input.
"""
from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Callable, Optional, Sequence

from loguru import logger

from uams.core.exceptions import NoCandidatesError
from uams.core.models import (
    AdaptationLog,
    CardSelectionResult,
    ConfidenceLevel,
    MomentumTrend,
    SelectionStrategy,
    UnifiedCard,
    UnifiedSessionState,
    clamp,
)
from uams.delivery.similarity import ContentSimilarity


STRATEGY_PRIORITY = {
    SelectionStrategy.CRISIS_INTERVENTION: 100,
    SelectionStrategy.CRITICAL_FATIGUE: 90,
    SelectionStrategy.HIGH_PERFORMANCE_CHALLENGE: 80,
    SelectionStrategy.FLOW_MAINTENANCE: 70,
    SelectionStrategy.ENGAGEMENT_INJECTION: 60,
    SelectionStrategy.BALANCED: 1,
}

STRATEGY_NAMES = {
    SelectionStrategy.CRISIS_INTERVENTION: "Crisis Intervention",
    SelectionStrategy.CRITICAL_FATIGUE: "Critical Fatigue Management",
    SelectionStrategy.HIGH_PERFORMANCE_CHALLENGE: "High Performance Challenge",
    SelectionStrategy.FLOW_MAINTENANCE: "Flow State Maintenance",
    SelectionStrategy.ENGAGEMENT_INJECTION: "Engagement Injection",
    SelectionStrategy.BALANCED: "Balanced Selection",
}

STRATEGY_ORDER = sorted(STRATEGY_PRIORITY, key=STRATEGY_PRIORITY.get, reverse=True)

MAX_ALTERNATIVES = 2
SECONDS_PER_DAY = 24 * 60 * 60


@dataclass
class ClusteringConfig:
    """Anti-clustering thresholds."""
    content_similarity_threshold: float = 0.6
    time_window: timedelta = timedelta(minutes=5)
    max_recent_cards: int = 3
    novelty_window: int = 10    # History entries checked for engagement novelty


def estimate_content_complexity(card: UnifiedCard) -> float:
    """Text length heuristic, 500 characters counts as fully complex."""
    return min(1.0, card.content_length / 500)


def estimate_card_cognitive_load(card: UnifiedCard) -> float:
    load = max(card.difficulty / 10, card.cognitive_load_index)
    load += estimate_content_complexity(card) * 0.2
    load += (1 - card.retrievability) * 0.3
    return clamp(load, 0.1, 1.0)


def max_allowable_cognitive_load(session: UnifiedSessionState) -> float:
    ceiling = (
        session.cognitive_load_capacity
        * (1 - session.session_fatigue_index * 0.5)
        * session.attention_span_remaining
    )
    return max(0.3, ceiling)


def _recent_success_ratio(card: UnifiedCard, window: int = 3) -> float:
    recent = card.performance_history[-window:]
    if not recent:
        return 0.0
    return sum(1 for r in recent if r.is_success) / len(recent)


def _rating_consistency(card: UnifiedCard) -> float:
    recent = card.performance_history[-3:]
    if len(recent) < 2:
        return 1.0
    values = [r.rating.numeric for r in recent]
    mean = sum(values) / len(values)
    spread = sum((v - mean) ** 2 for v in values) / len(values)
    return max(0.0, 1 - spread / 2)


def _average_rating(card: UnifiedCard) -> float:
    if not card.performance_history:
        return 2.5
    return sum(r.rating.numeric for r in card.performance_history) / len(card.performance_history)


class CardSelector:
    """
    Strategy-based next-card selector.

    Stateless apart from the similarity vector cache; safe to share between
    sessions.
    """

    def __init__(
        self,
        config: ClusteringConfig | None = None,
        similarity: ContentSimilarity | None = None,
    ):
        self.config = config or ClusteringConfig()
        self.similarity = similarity or ContentSimilarity()

    # =========================================================================
    # Public API
    # =========================================================================

    def select_next_optimal_card(
        self,
        session: UnifiedSessionState,
        available_cards: Sequence[UnifiedCard],
        now: Optional[datetime] = None,
    ) -> CardSelectionResult:
        """
        Pick the next card for ``session``.

        Raises:
            NoCandidatesError: If ``available_cards`` is empty
        """
        if not available_cards:
            raise NoCandidatesError()

        now = now or session.last_activity()
        lookup = self._card_lookup(session, available_cards)
        return self._select(session, list(available_cards), now, lookup)

    def rank_cards(
        self,
        session: UnifiedSessionState,
        cards: Sequence[UnifiedCard],
        limit: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> list[UnifiedCard]:
        """
        Order ``cards`` by repeated selection without replacement.

        Each pick is appended to a scratch adaptation history so the
        anti-clustering filter spreads related cards across the ranking.
        """
        now = now or session.last_activity()
        remaining = list(cards)
        limit = len(remaining) if limit is None else min(limit, len(remaining))
        lookup = self._card_lookup(session, remaining)

        ranked: list[UnifiedCard] = []
        scratch = session
        while remaining and len(ranked) < limit:
            result = self._select(scratch, remaining, now, lookup, log_fallbacks=False)
            ranked.append(result.card)
            remaining = [c for c in remaining if c.id != result.card.id]
            scratch = replace(
                scratch,
                adaptation_history=scratch.adaptation_history + (
                    AdaptationLog(timestamp=now, card_id=result.card.id, reason=f"ranking: {result.strategy}"),
                ),
            )
        return ranked

    def choose_strategy(self, session: UnifiedSessionState) -> SelectionStrategy:
        """First strategy, in priority order, whose condition holds."""
        for strategy in STRATEGY_ORDER:
            if self.strategy_applies(strategy, session):
                return strategy
        return SelectionStrategy.BALANCED

    @staticmethod
    def strategy_applies(strategy: SelectionStrategy, session: UnifiedSessionState) -> bool:
        momentum = session.session_momentum_score
        fatigue = session.session_fatigue_index

        if strategy == SelectionStrategy.CRISIS_INTERVENTION:
            return momentum < 0.3 and session.momentum_trend == MomentumTrend.DECLINING
        if strategy == SelectionStrategy.CRITICAL_FATIGUE:
            return fatigue > 0.9
        if strategy == SelectionStrategy.HIGH_PERFORMANCE_CHALLENGE:
            return momentum > 0.8 and fatigue < 0.5
        if strategy == SelectionStrategy.FLOW_MAINTENANCE:
            return session.flow_state_metrics.momentum_maintenance and fatigue < 0.6
        if strategy == SelectionStrategy.ENGAGEMENT_INJECTION:
            return session.flow_state_metrics.engagement_level < 0.4
        return True

    # =========================================================================
    # Pipeline
    # =========================================================================

    def _select(
        self,
        session: UnifiedSessionState,
        cards: list[UnifiedCard],
        now: datetime,
        lookup: dict[str, UnifiedCard],
        log_fallbacks: bool = True,
    ) -> CardSelectionResult:
        candidates = self.prevent_card_clustering(cards, session, now, lookup)
        if not candidates:
            if log_fallbacks:
                logger.warning("Clustering prevention removed all cards, using unfiltered set")
            candidates = cards
        else:
            filtered = self.apply_cognitive_load_filter(candidates, session)
            if filtered:
                candidates = filtered
            elif log_fallbacks:
                logger.warning("Cognitive load filtering removed all cards, using clustered filtered set")

        strategy = self.choose_strategy(session)
        logger.debug(f"Using selection strategy: {STRATEGY_NAMES[strategy]}")
        return self._dispatch(strategy)(candidates, session, now)

    def _dispatch(
        self, strategy: SelectionStrategy
    ) -> Callable[[list[UnifiedCard], UnifiedSessionState, datetime], CardSelectionResult]:
        return {
            SelectionStrategy.CRISIS_INTERVENTION: self._select_confidence_booster,
            SelectionStrategy.CRITICAL_FATIGUE: self._select_easiest_card,
            SelectionStrategy.HIGH_PERFORMANCE_CHALLENGE: self._select_optimal_challenge,
            SelectionStrategy.FLOW_MAINTENANCE: self._maintain_optimal_flow,
            SelectionStrategy.ENGAGEMENT_INJECTION: self._select_engagement_card,
            SelectionStrategy.BALANCED: self._select_balanced_card,
        }[strategy]

    @staticmethod
    def _card_lookup(
        session: UnifiedSessionState, cards: Sequence[UnifiedCard]
    ) -> dict[str, UnifiedCard]:
        lookup = {card.id: card for card in session.all_buffered_cards()}
        lookup.update((card.id, card) for card in cards)
        return lookup

    def prevent_card_clustering(
        self,
        cards: Sequence[UnifiedCard],
        session: UnifiedSessionState,
        now: datetime,
        lookup: Optional[dict[str, UnifiedCard]] = None,
    ) -> list[UnifiedCard]:
        """Drop cards too close to the last few selections."""
        recent_entries = session.adaptation_history[-self.config.max_recent_cards:]
        if lookup is None:
            lookup = self._card_lookup(session, cards)
        recent_ids = [entry.card_id for entry in recent_entries]
        recent_cards = [lookup.get(card_id) for card_id in recent_ids]

        kept = []
        for card in cards:
            if any(card_id in card.concept_similarity for card_id in recent_ids):
                continue
            if self.similarity.max_similarity(card, recent_cards) > self.config.content_similarity_threshold:
                continue
            if self._recently_seen(card, recent_entries, now):
                continue
            kept.append(card)
        return kept

    def _recently_seen(
        self, card: UnifiedCard, recent_entries: Sequence[AdaptationLog], now: datetime
    ) -> bool:
        window = self.config.time_window
        if card.last_cluster_review is not None and now - card.last_cluster_review < window:
            return True
        return any(
            entry.card_id == card.id and now - entry.timestamp < window
            for entry in recent_entries
        )

    @staticmethod
    def apply_cognitive_load_filter(
        cards: Sequence[UnifiedCard], session: UnifiedSessionState
    ) -> list[UnifiedCard]:
        ceiling = max_allowable_cognitive_load(session)
        return [card for card in cards if estimate_card_cognitive_load(card) <= ceiling]

    # =========================================================================
    # Strategies
    # =========================================================================

    @staticmethod
    def _ranked(cards: Sequence[UnifiedCard], score: Callable[[UnifiedCard], float]) -> list[UnifiedCard]:
        # Stable: ties keep input order
        return sorted(cards, key=lambda card: -score(card))

    def _select_confidence_booster(
        self, cards: list[UnifiedCard], session: UnifiedSessionState, now: datetime
    ) -> CardSelectionResult:
        strategy = SelectionStrategy.CRISIS_INTERVENTION
        boosters = self._ranked(
            [
                c for c in cards
                if c.retrievability > 0.8
                and c.stability > 5
                and c.difficulty < 6
                and c.confidence_level != ConfidenceLevel.STRUGGLING
            ],
            self.confidence_booster_score,
        )

        if not boosters:
            easiest = sorted(cards, key=lambda c: c.difficulty)
            card = easiest[0]
            return CardSelectionResult(
                card=card,
                explanation=(
                    f"Selected easiest available card (difficulty: {card.difficulty:.1f}) "
                    "to rebuild confidence during momentum crisis"
                ),
                reasoning="Crisis intervention - no suitable confidence boosters available",
                confidence=0.6,
                alternative_options=tuple(easiest[1:1 + MAX_ALTERNATIVES]),
                strategy=strategy.value,
            )

        card = boosters[0]
        return CardSelectionResult(
            card=card,
            explanation=(
                f"Selected confidence booster: High success probability "
                f"({card.retrievability * 100:.0f}%), well-established memory "
                f"(stability: {card.stability:.1f})"
            ),
            reasoning="momentum_recovery",
            confidence=0.9,
            alternative_options=tuple(boosters[1:1 + MAX_ALTERNATIVES]),
            strategy=strategy.value,
        )

    @staticmethod
    def confidence_booster_score(card: UnifiedCard) -> float:
        score = card.retrievability * 40
        score += min(20, card.stability) * 2
        score += (10 - card.difficulty) * 3
        if card.confidence_level == ConfidenceLevel.OPTIMAL:
            score += 10
        score += _recent_success_ratio(card) * 10
        return score

    def _select_easiest_card(
        self, cards: list[UnifiedCard], session: UnifiedSessionState, now: datetime
    ) -> CardSelectionResult:
        ranked = self._ranked(cards, lambda c: c.retrievability - c.difficulty / 10)
        return CardSelectionResult(
            card=ranked[0],
            explanation=(
                f"Selected easiest card due to critical fatigue "
                f"({session.session_fatigue_index * 100:.0f}% fatigue)"
            ),
            reasoning="fatigue_management",
            confidence=0.8,
            alternative_options=tuple(ranked[1:1 + MAX_ALTERNATIVES]),
            strategy=SelectionStrategy.CRITICAL_FATIGUE.value,
        )

    @staticmethod
    def optimal_challenge_difficulty(session: UnifiedSessionState) -> float:
        capacity = session.cognitive_load_capacity * (1 - session.session_fatigue_index)
        return (4 + session.session_momentum_score * 4) * capacity

    def _select_optimal_challenge(
        self, cards: list[UnifiedCard], session: UnifiedSessionState, now: datetime
    ) -> CardSelectionResult:
        strategy = SelectionStrategy.HIGH_PERFORMANCE_CHALLENGE
        optimal = self.optimal_challenge_difficulty(session)

        challenges = self._ranked(
            [
                c for c in cards
                if abs(c.difficulty - optimal) < 1.5 and 0.3 < c.retrievability < 0.85
            ],
            lambda c: self.challenge_score(c, optimal),
        )

        if not challenges:
            closest = sorted(cards, key=lambda c: abs(c.difficulty - optimal))
            card = closest[0]
            return CardSelectionResult(
                card=card,
                explanation=(
                    f"Selected closest difficulty match ({card.difficulty:.1f} vs optimal "
                    f"{optimal:.1f}) - limited suitable challenges available"
                ),
                reasoning="engagement_optimization",
                confidence=0.6,
                alternative_options=tuple(closest[1:1 + MAX_ALTERNATIVES]),
                strategy=strategy.value,
            )

        card = challenges[0]
        return CardSelectionResult(
            card=card,
            explanation=(
                f"Optimal challenge selected: Difficulty {card.difficulty:.1f} matches your "
                f"current performance level (optimal: {optimal:.1f})"
            ),
            reasoning="engagement_optimization",
            confidence=0.85,
            alternative_options=tuple(challenges[1:1 + MAX_ALTERNATIVES]),
            strategy=strategy.value,
        )

    @staticmethod
    def challenge_score(card: UnifiedCard, optimal_difficulty: float) -> float:
        score = max(0.0, 20 - abs(card.difficulty - optimal_difficulty) * 10)
        # 60% recall is challenging but manageable
        score += max(0.0, 15 - abs(card.retrievability - 0.6) * 20)
        if card.confidence_level == ConfidenceLevel.BUILDING:
            score += 5
        elif card.confidence_level == ConfidenceLevel.STRUGGLING:
            score -= 10
        if card.stability < 10:
            score += (10 - card.stability) * 0.5
        return score

    def _maintain_optimal_flow(
        self, cards: list[UnifiedCard], session: UnifiedSessionState, now: datetime
    ) -> CardSelectionResult:
        target = session.session_momentum_score * 10

        flow_cards = self._ranked(
            [
                c for c in cards
                if abs(c.difficulty - target) <= 1.0 and 0.4 < c.retrievability < 0.9
            ],
            lambda c: self.flow_score(c, session),
        )

        if not flow_cards:
            logger.debug("No flow-matched cards, falling back to balanced selection")
            return self._select_balanced_card(cards, session, now)

        card = flow_cards[0]
        return CardSelectionResult(
            card=card,
            explanation=(
                f"Flow state maintenance: Selected card with balanced challenge "
                f"(difficulty: {card.difficulty:.1f}, success rate: {card.retrievability * 100:.0f}%)"
            ),
            reasoning="flow_maintenance",
            confidence=0.8,
            alternative_options=tuple(flow_cards[1:1 + MAX_ALTERNATIVES]),
            strategy=SelectionStrategy.FLOW_MAINTENANCE.value,
        )

    @staticmethod
    def flow_score(card: UnifiedCard, session: UnifiedSessionState) -> float:
        score = max(0.0, 15 - abs(card.difficulty - session.session_momentum_score * 10) * 2)
        score += max(0.0, 10 - abs(card.retrievability - 0.7) * 15)
        if card.confidence_level == ConfidenceLevel.OPTIMAL:
            score += 8
        elif card.confidence_level == ConfidenceLevel.BUILDING:
            score += 5
        if len(card.performance_history) >= 3:
            score += _rating_consistency(card) * 5
        return score

    def is_card_interesting(self, card: UnifiedCard, session: UnifiedSessionState) -> bool:
        recent_ids = {a.card_id for a in session.adaptation_history[-self.config.novelty_window:]}
        return (
            card.id not in recent_ids
            or bool(card.media_refs)
            or card.card_type != "basic"
        )

    def engagement_score(self, card: UnifiedCard, session: UnifiedSessionState) -> float:
        recent_ids = {a.card_id for a in session.adaptation_history[-self.config.novelty_window:]}
        score = 0.0
        if card.id not in recent_ids:
            score += 0.3
        if card.media_refs:
            score += 0.2
        if card.card_type != "basic":
            score += 0.15
        score += card.retrievability * 0.25
        score -= abs(card.difficulty - 5) * 0.05
        return score

    def _select_engagement_card(
        self, cards: list[UnifiedCard], session: UnifiedSessionState, now: datetime
    ) -> CardSelectionResult:
        strategy = SelectionStrategy.ENGAGEMENT_INJECTION
        engaging = self._ranked(
            [
                c for c in cards
                if c.difficulty < 7 and c.retrievability > 0.5 and self.is_card_interesting(c, session)
            ],
            lambda c: self.engagement_score(c, session),
        )

        if engaging:
            card = engaging[0]
            return CardSelectionResult(
                card=card,
                explanation=f"Engagement booster: Novel content with manageable difficulty ({card.difficulty:.1f})",
                reasoning="engagement_optimization",
                confidence=0.7,
                alternative_options=tuple(engaging[1:1 + MAX_ALTERNATIVES]),
                strategy=strategy.value,
            )

        moderate = [c for c in cards if 4 <= c.difficulty <= 6 and c.retrievability > 0.5]
        if moderate:
            return CardSelectionResult(
                card=moderate[0],
                explanation="Selected moderate difficulty card to boost engagement",
                reasoning="engagement_optimization",
                confidence=0.6,
                alternative_options=tuple(moderate[1:1 + MAX_ALTERNATIVES]),
                strategy=strategy.value,
            )

        logger.debug("No engaging or moderate cards, falling back to balanced selection")
        return self._select_balanced_card(cards, session, now)

    def _select_balanced_card(
        self, cards: list[UnifiedCard], session: UnifiedSessionState, now: datetime
    ) -> CardSelectionResult:
        ranked = self._ranked(cards, lambda c: self.balanced_score(c, session, now))
        card = ranked[0]
        return CardSelectionResult(
            card=card,
            explanation=(
                f"Balanced selection considering difficulty ({card.difficulty:.1f}), "
                f"retrievability ({card.retrievability * 100:.0f}%), and current session state"
            ),
            reasoning="balanced_optimization",
            confidence=0.7,
            alternative_options=tuple(ranked[1:1 + MAX_ALTERNATIVES]),
            strategy=SelectionStrategy.BALANCED.value,
        )

    @staticmethod
    def balanced_score(card: UnifiedCard, session: UnifiedSessionState, now: datetime) -> float:
        days_overdue = 0.0
        if card.next_review is not None:
            days_overdue = max(0.0, (now - card.next_review).total_seconds() / SECONDS_PER_DAY)

        score = min(20.0, days_overdue * 2)
        score += (1 - card.retrievability) * 15
        score += max(0.0, 10 - abs(card.difficulty - session.session_momentum_score * 8))
        score += max(0.0, 10 - card.stability) * 0.5
        if card.performance_history and _average_rating(card) < 2.5:
            score += 5
        return score
