"""
Adaptive Queue Manager.

Builds and refreshes a session's four card buffers:
- review_queue: front-of-line cards (first 15 of the ranked due set)
- lookahead_buffer: primary pull queue (next 10)
- emergency_buffer: easy, well-learned cards held back for fatigue crises
- challenge_reserve: hard or barely-reviewed cards held back for high momentum

A card id appears in at most one buffer. Queue generation never raises: any
internal failure degrades to a first-in-first-out slice of the input.
"""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Optional, Sequence

from loguru import logger

from uams.core.models import (
    Device,
    EnvironmentalContext,
    MomentumTrend,
    NetworkQuality,
    QueueMode,
    UnifiedCard,
    UnifiedSessionState,
    clamp,
)
from uams.delivery.card_selector import CardSelector


SECONDS_PER_DAY = 24 * 60 * 60


@dataclass
class QueueConfig:
    """Buffer sizes and reserve criteria."""
    review_queue_size: int = 15
    lookahead_size: int = 10
    emergency_size: int = 5
    challenge_size: int = 5
    fallback_review_size: int = 10
    fallback_lookahead_size: int = 5
    emergency_max_difficulty: float = 4.0
    emergency_min_stability: float = 7.0
    challenge_min_difficulty: float = 6.0
    challenge_max_reviews: int = 3      # Fewer reviews than this counts as novel
    challenge_insert_position: int = 5
    urgency_horizon_days: float = 7.0   # Full urgency after a week overdue


@dataclass
class QueueGenerationResult:
    review_queue: list[UnifiedCard] = field(default_factory=list)
    lookahead_buffer: list[UnifiedCard] = field(default_factory=list)
    emergency_buffer: list[UnifiedCard] = field(default_factory=list)
    challenge_reserve: list[UnifiedCard] = field(default_factory=list)
    adaptation_log: list[str] = field(default_factory=list)
    used_fallback: bool = False

    def all_ids(self) -> list[str]:
        return [
            card.id
            for buffer in (self.review_queue, self.lookahead_buffer, self.emergency_buffer, self.challenge_reserve)
            for card in buffer
        ]


@dataclass
class QueueEfficiency:
    diversity_score: float = 0.0
    difficulty_balance: float = 0.0
    momentum_alignment: float = 0.0

    def to_dict(self) -> dict:
        return {
            "diversity_score": self.diversity_score,
            "difficulty_balance": self.difficulty_balance,
            "momentum_alignment": self.momentum_alignment,
        }


def target_difficulty(session: UnifiedSessionState) -> float:
    """Difficulty the session can currently absorb (neutral 5.0)."""
    target = 5.0
    target += (session.session_momentum_score - 0.5) * 2
    target -= session.session_fatigue_index * 2
    target += (session.cognitive_load_capacity - 0.5) * 2
    return clamp(target, 1.0, 10.0)


def average(values: Sequence[float], default: float = 0.5) -> float:
    if not values:
        return default
    return sum(values) / len(values)


class AdaptiveQueueManager:
    """
    Populates and adjusts session buffers using the card selector.

    Usage:
        manager = AdaptiveQueueManager()
        result = manager.generate_adaptive_queue(session, cards, env, now=now)
        session = manager.apply_queue(session, result)
    """

    def __init__(
        self,
        selector: CardSelector | None = None,
        config: QueueConfig | None = None,
    ):
        self.selector = selector or CardSelector()
        self.config = config or QueueConfig()

    # =========================================================================
    # Generation
    # =========================================================================

    def generate_adaptive_queue(
        self,
        session: UnifiedSessionState,
        available_cards: Sequence[UnifiedCard],
        env_context: Optional[EnvironmentalContext] = None,
        now: Optional[datetime] = None,
    ) -> QueueGenerationResult:
        """
        Build all four buffers for ``session`` from ``available_cards``.

        Never raises. On any internal error the result is a FIFO slice of
        the input (10 review, 5 lookahead, empty reserves) with the error
        recorded in ``adaptation_log``.
        """
        now = now or session.last_activity()
        try:
            return self._generate(session, list(available_cards), env_context, now)
        except Exception as e:
            logger.warning(f"Queue generation failed, falling back to FIFO: {e}")
            return self._fifo_fallback(available_cards, e)

    def _generate(
        self,
        session: UnifiedSessionState,
        cards: list[UnifiedCard],
        env_context: Optional[EnvironmentalContext],
        now: datetime,
    ) -> QueueGenerationResult:
        cfg = self.config
        log = []

        due = [c for c in cards if c.next_review is None or c.next_review <= now]
        ranked = self.selector.rank_cards(
            session, due, limit=cfg.review_queue_size + cfg.lookahead_size, now=now
        )

        review_queue = ranked[:cfg.review_queue_size]
        lookahead = ranked[cfg.review_queue_size:cfg.review_queue_size + cfg.lookahead_size]

        placed = {c.id for c in ranked}
        remaining = [c for c in cards if c.id not in placed]
        emergency = self.select_emergency_cards(remaining)

        placed.update(c.id for c in emergency)
        remaining = [c for c in remaining if c.id not in placed]
        challenge = self.select_challenge_cards(remaining)

        log.append(f"Selected {len(ranked)} of {len(due)} due cards for review queue")
        log.append(f"Current momentum: {session.session_momentum_score:.2f}")
        log.append(f"Cognitive load capacity: {session.cognitive_load_capacity:.2f}")
        if env_context is not None:
            if env_context.device == Device.MOBILE:
                log.append("Mobile device session")
            if env_context.network_quality in (NetworkQuality.POOR, NetworkQuality.OFFLINE):
                log.append(f"Network quality: {env_context.network_quality.value}")

        logger.debug(
            f"Queue built: review={len(review_queue)} lookahead={len(lookahead)} "
            f"emergency={len(emergency)} challenge={len(challenge)}"
        )
        return QueueGenerationResult(
            review_queue=review_queue,
            lookahead_buffer=lookahead,
            emergency_buffer=emergency,
            challenge_reserve=challenge,
            adaptation_log=log,
        )

    def _fifo_fallback(self, available_cards: Sequence[UnifiedCard], error: Exception) -> QueueGenerationResult:
        cards = list(available_cards)
        review_end = self.config.fallback_review_size
        lookahead_end = review_end + self.config.fallback_lookahead_size
        return QueueGenerationResult(
            review_queue=cards[:review_end],
            lookahead_buffer=cards[review_end:lookahead_end],
            adaptation_log=[f"Fallback to simple queue due to error: {error}"],
            used_fallback=True,
        )

    def select_emergency_cards(self, cards: Sequence[UnifiedCard]) -> list[UnifiedCard]:
        """Easy, well-learned cards, most stable first."""
        cfg = self.config
        eligible = [
            c for c in cards
            if c.difficulty < cfg.emergency_max_difficulty and c.stability > cfg.emergency_min_stability
        ]
        return sorted(eligible, key=lambda c: -c.stability)[:cfg.emergency_size]

    def select_challenge_cards(self, cards: Sequence[UnifiedCard]) -> list[UnifiedCard]:
        """Hard or barely-reviewed cards, hardest first."""
        cfg = self.config
        eligible = [
            c for c in cards
            if c.difficulty > cfg.challenge_min_difficulty or c.review_count < cfg.challenge_max_reviews
        ]
        return sorted(eligible, key=lambda c: -c.difficulty)[:cfg.challenge_size]

    @staticmethod
    def apply_queue(session: UnifiedSessionState, result: QueueGenerationResult) -> UnifiedSessionState:
        """Return ``session`` with its four buffers replaced by ``result``."""
        return replace(
            session,
            review_queue=tuple(result.review_queue),
            lookahead_buffer=tuple(result.lookahead_buffer),
            emergency_buffer=tuple(result.emergency_buffer),
            challenge_reserve=tuple(result.challenge_reserve),
        )

    # =========================================================================
    # Dynamic adjustment
    # =========================================================================

    @staticmethod
    def determine_mode(
        session: UnifiedSessionState, recent_performance: Sequence[float] = ()
    ) -> QueueMode:
        """Name the buffer mode the session is in."""
        performance = average(recent_performance)
        momentum = session.session_momentum_score
        fatigue = session.session_fatigue_index

        if (performance < 0.3 and fatigue > 0.6) or (
            momentum < 0.3 and session.momentum_trend == MomentumTrend.DECLINING
        ):
            return QueueMode.CRISIS
        if momentum > 0.8 and (performance > 0.7 or fatigue < 0.5):
            return QueueMode.HIGH_PERFORMANCE
        return QueueMode.NORMAL

    def adjust_queue_dynamically(
        self,
        queue: Sequence[UnifiedCard],
        session: UnifiedSessionState,
        recent_performance: Sequence[float],
    ) -> list[UnifiedCard]:
        """
        Splice reserve cards into ``queue`` based on recent performance.

        Struggling and fatigued (average < 0.3, fatigue > 0.6): the session's
        emergency cards go to the front. Performing well (average > 0.7,
        momentum > 0.8): challenge cards go in at position 5. Otherwise the
        queue is returned unchanged. Cards already in the queue are skipped.
        """
        queue = list(queue)
        performance = average(recent_performance)
        queued = {c.id for c in queue}

        if performance < 0.3 and session.session_fatigue_index > 0.6:
            easy = [c for c in session.emergency_buffer if c.id not in queued]
            if easy:
                logger.info(f"Injecting {len(easy)} emergency cards (performance {performance:.2f})")
            return easy + queue

        if performance > 0.7 and session.session_momentum_score > 0.8:
            hard = [c for c in session.challenge_reserve if c.id not in queued]
            if hard:
                logger.info(f"Injecting {len(hard)} challenge cards (performance {performance:.2f})")
            position = self.config.challenge_insert_position
            return queue[:position] + hard + queue[position:]

        return queue

    # =========================================================================
    # Ordering & diagnostics
    # =========================================================================

    def urgency(self, card: UnifiedCard, now: datetime) -> float:
        """0-1 urgency; unscheduled cards are fully urgent."""
        if card.next_review is None:
            return 1.0
        overdue_days = max(0.0, (now - card.next_review).total_seconds() / SECONDS_PER_DAY)
        return min(1.0, overdue_days / self.config.urgency_horizon_days)

    def optimize_queue_ordering(
        self,
        cards: Sequence[UnifiedCard],
        session: UnifiedSessionState,
        now: Optional[datetime] = None,
    ) -> list[UnifiedCard]:
        """Most urgent first, then closest to the target difficulty, then least retrievable."""
        now = now or session.last_activity()
        target = target_difficulty(session)
        return sorted(
            cards,
            key=lambda c: (
                -self.urgency(c, now),
                -(1 - abs(c.difficulty - target) / 10),
                c.retrievability,
            ),
        )

    @staticmethod
    def calculate_queue_efficiency(
        result: QueueGenerationResult, session: UnifiedSessionState
    ) -> QueueEfficiency:
        """Read-only diagnostics over the review queue."""
        cards = result.review_queue
        if not cards:
            return QueueEfficiency()

        difficulties = [c.difficulty for c in cards]
        diversity = min(1.0, (max(difficulties) - min(difficulties)) / 10)

        alignment = 1 - abs(average(difficulties) - target_difficulty(session)) / 10

        return QueueEfficiency(
            diversity_score=clamp(diversity),
            difficulty_balance=clamp(alignment),
            momentum_alignment=clamp(alignment),
        )
