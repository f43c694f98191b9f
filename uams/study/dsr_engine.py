"""
DSR Engine - Context-Aware FSRS Memory Model.

Estimates a card's memory state after each answer:
1. Difficulty - rating base plus fatigue, load, time-of-day, environment and
   response-time adjustments, smoothed against the previous value
2. Stability - FSRS stability update scaled by fatigue, environment and
   rating consistency
3. Retrievability - forgetting curve scaled by load, fatigue and the recent
   performance trend

The engine is a pure function of (card, response, profile). It never mutates
its inputs and never validates them; see ``uams.core.validation`` for the
data-quality pass that runs before cards enter the scheduler.

Based on research from:
- Ye (FSRS algorithm, 21-weight variant)
- Ebbinghaus (forgetting curve)
- Kleitman (circadian performance rhythm)
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from typing import Optional, Sequence

from loguru import logger

from uams.core.models import (
    DEFAULT_FSRS_PARAMETERS,
    PERFORMANCE_HISTORY_WINDOW,
    RETRIEVABILITY_HISTORY_WINDOW,
    AmbientNoise,
    ConfidenceLevel,
    DSRUpdate,
    Device,
    EnhancedResponseLog,
    EnvironmentalContext,
    Lighting,
    NetworkQuality,
    Rating,
    StabilityTrend,
    UnifiedCard,
    UserProfile,
    clamp,
)


# =============================================================================
# CONSTANTS
# =============================================================================

# Base difficulty implied by each rating before contextual adjustment
RATING_DIFFICULTY = {
    Rating.AGAIN: 8.5,
    Rating.HARD: 6.5,
    Rating.GOOD: 4.5,
    Rating.EASY: 2.5,
}

# Hour of day -> difficulty modifier (circadian performance curve)
TIME_OF_DAY_DIFFICULTY = {
    6: -0.1, 7: -0.1,
    8: -0.2, 9: -0.2,    # Peak morning performance
    10: -0.1, 11: 0.0,
    12: 0.1, 13: 0.2,    # Post-lunch dip
    14: 0.3, 15: 0.1,
    16: -0.1, 17: -0.1,  # Second peak
    18: 0.0, 19: 0.1,
    20: 0.2, 21: 0.3,
    22: 0.4, 23: 0.5,
    0: 0.6, 1: 0.6,
    2: 0.7, 3: 0.7,      # Trough
    4: 0.6, 5: 0.4,
}

# Cognitive load signal per rating, used for the card's load index
RATING_LOAD = {
    Rating.AGAIN: 1.0,
    Rating.HARD: 0.6,
    Rating.GOOD: 0.3,
    Rating.EASY: 0.1,
}

SECONDS_PER_DAY = 24 * 60 * 60


@dataclass
class DSRConfig:
    """Tunable constants for the DSR engine."""
    difficulty_learning_rate: float = 0.3       # EMA weight of the new raw difficulty
    fatigue_difficulty_weight: float = 0.5
    load_difficulty_weight: float = 0.3
    fatigue_stability_weight: float = 0.15
    minimum_stability: float = 0.1
    retrievability_floor: float = 0.01
    retrievability_ceiling: float = 0.99
    load_retrievability_weight: float = 0.1
    fatigue_retrievability_weight: float = 0.05
    trend_retrievability_weight: float = 0.1
    consistency_window: int = 5
    consistency_minimum: int = 3
    base_confidence: float = 0.7
    stability_trend_threshold: float = 0.05     # +/-5% change flips the trend
    load_index_smoothing: float = 0.2
    target_retention: float = 0.9
    default_weights: tuple[float, ...] = field(default=DEFAULT_FSRS_PARAMETERS)


# =============================================================================
# SHARED HELPERS
# =============================================================================


def days_between(earlier: Optional[datetime], later: datetime) -> int:
    """Whole days elapsed between two instants (0 if ``earlier`` is unset)."""
    if earlier is None:
        return 0
    seconds = (later - earlier).total_seconds()
    return max(0, math.floor(seconds / SECONDS_PER_DAY))


def variance(values: Sequence[float]) -> float:
    """Population variance."""
    if not values:
        return 0.0
    mean = sum(values) / len(values)
    return sum((v - mean) ** 2 for v in values) / len(values)


def trend_slope(values: Sequence[float]) -> float:
    """Least-squares slope of ``values`` against their index."""
    n = len(values)
    if n < 2:
        return 0.0
    sum_x = sum(range(n))
    sum_y = sum(values)
    sum_xy = sum(i * v for i, v in enumerate(values))
    sum_xx = sum(i * i for i in range(n))
    denominator = n * sum_xx - sum_x * sum_x
    if denominator == 0:
        return 0.0
    return (n * sum_xy - sum_x * sum_y) / denominator


def fsrs_base_stability(
    stability: float,
    difficulty: float,
    retention: float,
    rating: Rating,
    weights: Sequence[float],
) -> float:
    """
    FSRS stability update for one review, before contextual modifiers.

    Args:
        stability: Stability before the review (days)
        difficulty: Difficulty before the review (1-10)
        retention: Recall probability at review time
        rating: Learner rating
        weights: 21-element FSRS weight vector

    Returns:
        New stability in days (not floored except for "again")
    """
    w = weights
    if rating == Rating.AGAIN:
        return max(0.1, stability * w[11])
    if rating == Rating.HARD:
        return stability * (1 + math.exp(w[5]) * (w[6] - retention) * w[7])
    if rating == Rating.GOOD:
        return stability * (
            1
            + math.exp(w[8])
            * (11 - difficulty)
            * math.pow(w[9], -retention)
            * (math.exp((1 - retention) * w[10]) - 1)
        )
    if rating == Rating.EASY:
        return stability * (1 + math.exp(w[15]) * (w[16] - retention) * w[17])
    return stability


def time_of_day_difficulty(hour: int) -> float:
    return TIME_OF_DAY_DIFFICULTY.get(hour, 0.0)


def environmental_difficulty(env: Optional[EnvironmentalContext]) -> float:
    """Additive difficulty penalty from the device and network snapshot."""
    if env is None:
        return 0.0

    modifier = 0.0
    if env.network_quality == NetworkQuality.POOR:
        modifier += 0.2
    elif env.network_quality == NetworkQuality.OFFLINE:
        modifier += 0.3

    if env.device == Device.MOBILE:
        modifier += 0.1
    elif env.device == Device.TABLET:
        modifier += 0.05

    if env.low_battery:
        modifier += 0.1
    return modifier


def environmental_stability(env: Optional[EnvironmentalContext]) -> float:
    """Multiplicative stability modifier for memory formation conditions."""
    if env is None:
        return 1.0

    modifier = 1.0
    if env.ambient_noise == AmbientNoise.QUIET:
        modifier *= 1.05
    elif env.ambient_noise == AmbientNoise.NOISY:
        modifier *= 0.95

    if env.lighting == Lighting.OPTIMAL:
        modifier *= 1.02
    elif env.non_optimal_lighting:
        modifier *= 0.98
    return modifier


def response_time_difficulty(response_time: float, average_response_time: float) -> float:
    """Slower than the card's average reads as harder, faster as easier."""
    if average_response_time == 0:
        return 0.0

    ratio = response_time / average_response_time
    if ratio > 2.0:
        return 0.5
    if ratio > 1.5:
        return 0.3
    if ratio < 0.5:
        return -0.3
    if ratio < 0.7:
        return -0.1
    return 0.0


# =============================================================================
# DSR ENGINE
# =============================================================================


class DSREngine:
    """
    Context-aware FSRS calculator.

    Computes the difficulty/stability/retrievability triple for a card after
    one response, plus the next review interval.
    """

    def __init__(self, config: DSRConfig | None = None):
        self.config = config or DSRConfig()

    def calculate_enhanced_dsr(
        self,
        card: UnifiedCard,
        response: EnhancedResponseLog,
        user_profile: Optional[UserProfile] = None,
        now: Optional[datetime] = None,
    ) -> DSRUpdate:
        """
        Compute the new memory state for ``card`` after ``response``.

        Args:
            card: Card as it was before the answer
            response: The answer event
            user_profile: Supplies personal FSRS weights when available
            now: Evaluation instant (defaults to the response timestamp)

        Returns:
            DSRUpdate with the new triple, an estimate confidence and a
            human-readable explanation
        """
        now = now or response.timestamp
        weights = self._resolve_weights(card, user_profile)

        difficulty = self._contextual_difficulty(card, response)
        stability = self._stability_with_context(card, response, weights, now)
        retrievability = self._retrievability_with_load(card, response, now)
        confidence = self._update_confidence(card, response)
        explanation = self._explain(card, response, difficulty, stability)

        logger.debug(
            f"DSR update for {card.id}: D {card.difficulty:.2f}->{difficulty:.2f}, "
            f"S {card.stability:.2f}->{stability:.2f}, R {retrievability:.3f}"
        )

        return DSRUpdate(
            difficulty=difficulty,
            stability=stability,
            retrievability=retrievability,
            confidence=confidence,
            explanation=explanation,
        )

    def calculate_optimal_interval(
        self,
        card: UnifiedCard,
        target_retention: float = 0.9,
        now: Optional[datetime] = None,
    ) -> int:
        """
        Days until the next review for the requested retention.

        Base interval is ``S * ln(1 / (1 - target))``, scaled by the card's
        contextual difficulty at ``now``, its load index and stability trend.
        """
        base_interval = card.stability * math.log(1 / (1 - target_retention))

        interval = (
            base_interval
            * self._contextual_interval_modifier(card, now or card.last_reviewed)
            * max(0.7, 1.0 - card.cognitive_load_index * 0.3)
            * self._stability_trend_modifier(card.stability_trend)
        )
        return max(1, round(interval))

    def apply_response(
        self,
        card: UnifiedCard,
        response: EnhancedResponseLog,
        user_profile: Optional[UserProfile] = None,
        now: Optional[datetime] = None,
    ) -> tuple[UnifiedCard, DSRUpdate]:
        """
        Produce the updated card record for one answer.

        Returns:
            (updated card, the DSR update that was applied)
        """
        now = now or response.timestamp
        update = self.calculate_enhanced_dsr(card, response, user_profile, now)

        history = (card.performance_history + (response,))[-PERFORMANCE_HISTORY_WINDOW:]
        previous_reviews = card.review_count
        if previous_reviews > 0 and card.average_response_time > 0:
            average_time = (
                card.average_response_time * previous_reviews + response.response_time
            ) / (previous_reviews + 1)
        else:
            average_time = float(response.response_time)

        load_signal = 0.5 * RATING_LOAD[response.rating] + 0.5 * min(1.0, response.response_time / 30000)
        smoothing = self.config.load_index_smoothing
        load_index = clamp(card.cognitive_load_index * (1 - smoothing) + load_signal * smoothing)

        updated = replace(
            card,
            difficulty=update.difficulty,
            stability=update.stability,
            retrievability=update.retrievability,
            performance_history=history,
            review_count=card.review_count + 1,
            lapse_count=card.lapse_count + (1 if response.rating == Rating.AGAIN else 0),
            last_reviewed=response.timestamp,
            average_response_time=average_time,
            cognitive_load_index=load_index,
            confidence_level=self.derive_confidence_level(history),
            stability_trend=self._stability_trend(card.stability, update.stability),
            retrievability_history=(
                card.retrievability_history + (update.retrievability,)
            )[-RETRIEVABILITY_HISTORY_WINDOW:],
        )

        interval = self.calculate_optimal_interval(updated, self.config.target_retention, now)
        updated = replace(
            updated,
            optimal_interval=interval,
            interval_days=interval,
            next_review=response.timestamp + timedelta(days=interval),
        )
        return updated, update

    @staticmethod
    def derive_confidence_level(history: Sequence[EnhancedResponseLog]) -> ConfidenceLevel:
        """Learner confidence from the success rate of the last 5 answers."""
        if len(history) < 3:
            return ConfidenceLevel.BUILDING

        recent = history[-5:]
        success_rate = sum(1 for r in recent if r.is_success) / len(recent)
        if success_rate >= 0.8:
            return ConfidenceLevel.OPTIMAL
        if success_rate <= 0.4:
            return ConfidenceLevel.STRUGGLING
        return ConfidenceLevel.BUILDING

    # -------------------------------------------------------------------------
    # Difficulty
    # -------------------------------------------------------------------------

    def _resolve_weights(
        self, card: UnifiedCard, user_profile: Optional[UserProfile]
    ) -> Sequence[float]:
        if user_profile is not None and user_profile.fsrs_parameters:
            return user_profile.fsrs_parameters
        return card.fsrs_parameters or self.config.default_weights

    def _contextual_difficulty(self, card: UnifiedCard, response: EnhancedResponseLog) -> float:
        context = response.contextual_factors
        raw = (
            RATING_DIFFICULTY[response.rating]
            + context.session_fatigue_index * self.config.fatigue_difficulty_weight
            + (1 - context.cognitive_load_at_time) * self.config.load_difficulty_weight
            + time_of_day_difficulty(context.time_of_day.hour)
            + environmental_difficulty(context.environmental_factors)
            + response_time_difficulty(response.response_time, card.average_response_time)
        )
        raw = clamp(raw, 1.0, 10.0)

        alpha = self.config.difficulty_learning_rate
        return card.difficulty * (1 - alpha) + raw * alpha

    # -------------------------------------------------------------------------
    # Stability
    # -------------------------------------------------------------------------

    def _stability_with_context(
        self,
        card: UnifiedCard,
        response: EnhancedResponseLog,
        weights: Sequence[float],
        now: datetime,
    ) -> float:
        retention = self._retention(card, now)
        base = fsrs_base_stability(
            card.stability or 1.0, card.difficulty, retention, response.rating, weights
        )

        fatigue_modifier = 1 - response.contextual_factors.session_fatigue_index * self.config.fatigue_stability_weight
        environment_modifier = environmental_stability(response.contextual_factors.environmental_factors)
        consistency_modifier = self._consistency_modifier(card)

        stability = base * fatigue_modifier * environment_modifier * consistency_modifier
        return max(self.config.minimum_stability, stability)

    def _consistency_modifier(self, card: UnifiedCard) -> float:
        recent = card.performance_history[-self.config.consistency_window:]
        if len(recent) < self.config.consistency_minimum:
            return 1.0
        ratings = [r.rating.numeric for r in recent]
        return max(0.95, 1.0 - variance(ratings) * 0.05)

    # -------------------------------------------------------------------------
    # Retrievability
    # -------------------------------------------------------------------------

    def _retention(self, card: UnifiedCard, now: datetime) -> float:
        days = days_between(card.last_reviewed, now)
        return math.exp(-days / (card.stability or 1.0))

    def _retrievability_with_load(
        self, card: UnifiedCard, response: EnhancedResponseLog, now: datetime
    ) -> float:
        context = response.contextual_factors
        load_modifier = 1 - (1 - context.cognitive_load_at_time) * self.config.load_retrievability_weight
        fatigue_modifier = 1 - context.session_fatigue_index * self.config.fatigue_retrievability_weight

        retrievability = (
            self._retention(card, now)
            * load_modifier
            * fatigue_modifier
            * self._performance_trend_modifier(card)
        )
        return clamp(
            retrievability,
            self.config.retrievability_floor,
            self.config.retrievability_ceiling,
        )

    def _performance_trend_modifier(self, card: UnifiedCard) -> float:
        recent = card.performance_history[-self.config.consistency_window:]
        if len(recent) < self.config.consistency_minimum:
            return 1.0
        slope = trend_slope([r.rating.numeric for r in recent])
        return 1.0 + slope * self.config.trend_retrievability_weight

    # -------------------------------------------------------------------------
    # Interval modifiers
    # -------------------------------------------------------------------------

    @staticmethod
    def _contextual_interval_modifier(card: UnifiedCard, now: Optional[datetime]) -> float:
        contextual = card.contextual_difficulty
        if contextual is None or now is None:
            return 1.0

        hour_modifier = contextual.time_of_day.get(str(now.hour), 0.0)
        day_modifier = contextual.day_of_week.get(now.strftime("%A"), 0.0)
        # Harder context -> shorter interval
        return max(0.5, 1.0 - (hour_modifier + day_modifier) * 0.1)

    @staticmethod
    def _stability_trend_modifier(trend: StabilityTrend) -> float:
        if trend == StabilityTrend.INCREASING:
            return 1.1
        if trend == StabilityTrend.DECREASING:
            return 0.9
        return 1.0

    def _stability_trend(self, old: float, new: float) -> StabilityTrend:
        if old <= 0:
            return StabilityTrend.STABLE
        ratio = new / old
        if ratio > 1 + self.config.stability_trend_threshold:
            return StabilityTrend.INCREASING
        if ratio < 1 - self.config.stability_trend_threshold:
            return StabilityTrend.DECREASING
        return StabilityTrend.STABLE

    # -------------------------------------------------------------------------
    # Confidence & explanation
    # -------------------------------------------------------------------------

    def _update_confidence(self, card: UnifiedCard, response: EnhancedResponseLog) -> float:
        confidence = self.config.base_confidence

        history = card.performance_history
        if len(history) > 10:
            confidence += 0.2
        elif len(history) > 5:
            confidence += 0.1

        if len(history) >= 3:
            last_three = {r.rating for r in history[-3:]}
            if len(last_three) == 1:
                confidence += 0.1

        if 1000 < response.response_time < 30000:
            confidence += 0.1

        return min(1.0, confidence)

    @staticmethod
    def _explain(
        card: UnifiedCard,
        response: EnhancedResponseLog,
        difficulty: float,
        stability: float,
    ) -> str:
        parts = []

        difficulty_change = difficulty - card.difficulty
        if abs(difficulty_change) > 0.5:
            if difficulty_change > 0:
                parts.append(
                    f"Difficulty increased due to {response.rating.value} rating and contextual factors"
                )
            else:
                parts.append("Difficulty decreased reflecting improved performance")

        if card.stability > 0:
            stability_ratio = stability / card.stability
            if stability_ratio > 1.2:
                parts.append("Memory stability improved significantly")
            elif stability_ratio < 0.8:
                parts.append("Memory stability decreased due to poor performance")

        if response.contextual_factors.session_fatigue_index > 0.7:
            parts.append("High fatigue level affected calculation")
        if response.contextual_factors.cognitive_load_at_time < 0.5:
            parts.append("Low cognitive capacity considered in adjustment")

        return "; ".join(parts) or "Standard FSRS calculation applied"
