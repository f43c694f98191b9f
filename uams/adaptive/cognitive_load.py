"""
Cognitive Load Calculator.

Estimates how hard the learner is currently working relative to what they
can sustain, and turns that into a difficulty adjustment, an alert level and
plain-language recommendations.

Six load factors, each normalized to [0, 1]:
1. Time-based fatigue (exponential attention decay)
2. Response-time variance (coefficient of variation)
3. Error rate (quadratic, so bursts dominate)
4. Difficulty accumulation (estimated from rating and speed)
5. Environmental stress (device, network, surroundings)
6. Contextual demand (time of day, session length, momentum)

Based on research from:
- Cognitive Load Theory (Sweller, 1988)
- Vigilance decrement research (Warm, Parasuraman & Matthews, 2008)
- Circadian rhythms in cognition (Schmidt et al., 2007)
"""
from __future__ import annotations

import math
from dataclasses import asdict, dataclass, field, replace
from datetime import datetime
from typing import Optional, Sequence

from loguru import logger

from uams.core.models import (
    AlertLevel,
    AmbientNoise,
    Device,
    EnhancedResponseLog,
    MomentumTrend,
    NetworkQuality,
    Rating,
    UnifiedSessionState,
    UserProfile,
    clamp,
)


# Hour of day -> capacity multiplier (circadian performance)
HOURLY_CAPACITY = {
    0: 0.4, 1: 0.3, 2: 0.3, 3: 0.3, 4: 0.4, 5: 0.5,
    6: 0.7, 7: 0.8, 8: 0.9, 9: 1.0, 10: 1.0, 11: 0.95,
    12: 0.9, 13: 0.8, 14: 0.75, 15: 0.8, 16: 0.9, 17: 0.9,
    18: 0.8, 19: 0.75, 20: 0.7, 21: 0.6, 22: 0.5, 23: 0.4,
}

# Estimated card difficulty implied by a rating
RATING_DIFFICULTY_ESTIMATE = {
    Rating.AGAIN: 8.0,
    Rating.HARD: 6.5,
    Rating.GOOD: 4.0,
    Rating.EASY: 2.0,
}

LOAD_FACTOR_WEIGHTS = {
    "time_based_fatigue": 0.25,
    "response_time_variance": 0.20,
    "error_rate": 0.20,
    "difficulty_accumulation": 0.15,
    "environmental_stress": 0.10,
    "contextual_demand": 0.10,
}

FATIGUE_HALF_LIFE_MINUTES = 45
DIFFICULTY_FATIGUE_THRESHOLD = 6.0


@dataclass
class CognitiveLoadProfile:
    """Personal cognitive parameters (defaults for the general population)."""
    base_capacity: float = 1.0
    fatigue_rate: float = 0.02          # Attention decay per minute under load
    recovery_rate: float = 0.05         # Recovery per minute at rest
    attention_span_minutes: float = 45
    optimal_load_range: tuple[float, float] = (0.3, 0.7)
    stress_threshold: float = 0.8       # Performance degrades above this utilization


@dataclass
class LoadFactors:
    time_based_fatigue: float = 0.0
    response_time_variance: float = 0.0
    error_rate: float = 0.0
    difficulty_accumulation: float = 0.0
    environmental_stress: float = 0.0
    contextual_demand: float = 0.0

    def weighted_sum(self) -> float:
        return sum(getattr(self, name) * weight for name, weight in LOAD_FACTOR_WEIGHTS.items())


@dataclass
class CognitiveLoadAnalysis:
    """
    Snapshot of the learner's cognitive load.

    Attributes:
        current_load: Weighted load (0-1)
        capacity: Currently available capacity (0.1-1)
        utilization_rate: current_load / capacity (unbounded above)
        fatigue_level: Session fatigue index at analysis time
        attention_remaining_minutes: Predicted minutes of attention left
        recommended_difficulty_adjustment: Difficulty points to add (-3..+2)
        sustainability_score: How long the current load can be kept (0-1)
        alert_level: Traffic-light summary
        recommendations: Actionable suggestions
        factors: Per-factor breakdown
    """
    current_load: float
    capacity: float
    utilization_rate: float
    fatigue_level: float
    attention_remaining_minutes: float
    recommended_difficulty_adjustment: float
    sustainability_score: float
    alert_level: AlertLevel
    recommendations: list[str] = field(default_factory=list)
    factors: LoadFactors = field(default_factory=LoadFactors)

    def to_dict(self) -> dict:
        data = asdict(self)
        data["alert_level"] = self.alert_level.value
        return data


class CognitiveLoadCalculator:
    """
    Pure calculator over (response history, session state, profile).

    Holds no state between calls; identical inputs give identical output.
    """

    def __init__(self, profile: CognitiveLoadProfile | None = None):
        self.profile = profile or CognitiveLoadProfile()

    def calculate_current_load(
        self,
        response_history: Sequence[EnhancedResponseLog],
        session_state: UnifiedSessionState,
        user_profile: Optional[UserProfile] = None,
        now: Optional[datetime] = None,
    ) -> CognitiveLoadAnalysis:
        """
        Analyze the learner's cognitive load.

        Args:
            response_history: Session responses, oldest first
            session_state: Current session aggregate
            user_profile: Optional profile with personal load settings
            now: Evaluation instant (defaults to the latest response, selection
                or session start)
        """
        now = now or session_state.last_activity(response_history)
        profile = self.resolve_profile(user_profile)
        minutes = session_state.session_minutes(now)

        factors = self.analyze_load_factors(response_history, session_state, now)
        current_load = clamp(factors.weighted_sum() * (2 - profile.base_capacity))

        capacity = self._available_capacity(session_state, profile, now.hour)
        utilization = current_load / capacity if capacity > 0 else 1.0

        sustainability = self._sustainability(utilization, session_state, profile, minutes)
        alert = self.determine_alert_level(utilization, sustainability)

        analysis = CognitiveLoadAnalysis(
            current_load=current_load,
            capacity=capacity,
            utilization_rate=utilization,
            fatigue_level=session_state.session_fatigue_index,
            attention_remaining_minutes=self.predict_remaining_attention(session_state, profile, now),
            recommended_difficulty_adjustment=self._difficulty_adjustment(utilization, profile),
            sustainability_score=sustainability,
            alert_level=alert,
            recommendations=self._recommendations(utilization, sustainability, session_state),
            factors=factors,
        )

        if alert in (AlertLevel.ORANGE, AlertLevel.RED):
            logger.info(
                f"Cognitive load {alert.value} for session {session_state.session_id}: "
                f"utilization={utilization:.2f}, sustainability={sustainability:.2f}"
            )
        return analysis

    def resolve_profile(self, user_profile: Optional[UserProfile]) -> CognitiveLoadProfile:
        """Merge personal load settings over the default profile."""
        if user_profile is None or user_profile.cognitive_load_profile is None:
            return self.profile

        settings = user_profile.cognitive_load_profile
        return replace(
            self.profile,
            base_capacity=settings.base_capacity,
            fatigue_rate=settings.fatigue_rate,
            recovery_rate=settings.recovery_rate,
        )

    # =========================================================================
    # Load factors
    # =========================================================================

    def analyze_load_factors(
        self,
        response_history: Sequence[EnhancedResponseLog],
        session_state: UnifiedSessionState,
        now: datetime,
    ) -> LoadFactors:
        minutes = session_state.session_minutes(now)
        return LoadFactors(
            time_based_fatigue=min(1.0, 1 - math.exp(-minutes / FATIGUE_HALF_LIFE_MINUTES)),
            response_time_variance=self._response_time_variance(response_history),
            error_rate=self._error_rate(response_history),
            difficulty_accumulation=self._difficulty_accumulation(response_history),
            environmental_stress=self._environmental_stress(response_history),
            contextual_demand=self._contextual_demand(session_state, now),
        )

    @staticmethod
    def _response_time_variance(history: Sequence[EnhancedResponseLog]) -> float:
        if len(history) < 3:
            return 0.0

        times = [r.response_time for r in history[-10:]]
        mean = sum(times) / len(times)
        if mean <= 0:
            return 0.0
        std = math.sqrt(sum((t - mean) ** 2 for t in times) / len(times))
        # CV above 0.5 counts as maximal variance
        return min(1.0, (std / mean) / 0.5)

    @staticmethod
    def _error_rate(history: Sequence[EnhancedResponseLog]) -> float:
        if not history:
            return 0.0

        recent = history[-10:]
        errors = sum(1 for r in recent if r.rating == Rating.AGAIN)
        return min(1.0, (errors / len(recent) * 2) ** 2)

    @staticmethod
    def _difficulty_accumulation(history: Sequence[EnhancedResponseLog]) -> float:
        if len(history) < 3:
            return 0.0

        estimates = []
        for response in history[-5:]:
            estimate = RATING_DIFFICULTY_ESTIMATE.get(response.rating, 5.0)
            if response.response_time > 15000:
                estimate += 1
            elif response.response_time < 2000:
                estimate -= 1
            estimates.append(estimate)

        average = sum(estimates) / len(estimates)
        return max(0.0, (average - DIFFICULTY_FATIGUE_THRESHOLD) / 4)

    @staticmethod
    def _environmental_stress(history: Sequence[EnhancedResponseLog]) -> float:
        if not history:
            return 0.0

        env = history[-1].contextual_factors.environmental_factors
        if env is None:
            return 0.0

        stress = 0.0
        if env.network_quality == NetworkQuality.POOR:
            stress += 0.3
        elif env.network_quality == NetworkQuality.OFFLINE:
            stress += 0.5

        if env.device == Device.MOBILE:
            stress += 0.1
            if env.low_battery:
                stress += 0.2

        if env.ambient_noise == AmbientNoise.NOISY:
            stress += 0.15
        if env.non_optimal_lighting:
            stress += 0.1

        return min(1.0, stress)

    @staticmethod
    def _contextual_demand(session_state: UnifiedSessionState, now: datetime) -> float:
        demand = 0.0

        hour = now.hour
        if hour < 8 or hour > 22:
            demand += 0.2
        elif 13 <= hour <= 15:
            demand += 0.1  # Post-lunch dip

        minutes = session_state.session_minutes(now)
        if minutes > 60:
            demand += min(0.3, (minutes - 60) / 60)

        if session_state.momentum_trend == MomentumTrend.DECLINING:
            demand += 0.15

        return min(1.0, demand)

    # =========================================================================
    # Capacity & attention
    # =========================================================================

    @staticmethod
    def _available_capacity(
        session_state: UnifiedSessionState, profile: CognitiveLoadProfile, hour: int
    ) -> float:
        capacity = profile.base_capacity - session_state.session_fatigue_index * 0.4
        capacity *= session_state.attention_span_remaining
        capacity *= HOURLY_CAPACITY.get(hour, 0.7)
        return max(0.1, capacity)

    def predict_remaining_attention(
        self,
        session_state: UnifiedSessionState,
        profile: CognitiveLoadProfile | None = None,
        now: Optional[datetime] = None,
    ) -> float:
        """Predicted minutes of useful attention left in the session."""
        profile = profile or self.profile
        minutes = session_state.session_minutes(now or session_state.last_activity())

        remaining = profile.attention_span_minutes * math.exp(-minutes * profile.fatigue_rate)
        remaining *= 1 - session_state.session_fatigue_index

        if session_state.session_momentum_score > 0.7:
            remaining *= 1.2  # Flow extends attention
        elif session_state.session_momentum_score < 0.4:
            remaining *= 0.8

        return max(0.0, remaining)

    # =========================================================================
    # Derived metrics
    # =========================================================================

    @staticmethod
    def _difficulty_adjustment(utilization: float, profile: CognitiveLoadProfile) -> float:
        low, high = profile.optimal_load_range
        if utilization < low:
            return min(2.0, (low - utilization) * 4)
        if utilization > high:
            return max(-3.0, -(utilization - high) * 5)
        return 0.0

    @staticmethod
    def adjust_difficulty_for_cognitive_load(base_difficulty: float, cognitive_load: float) -> float:
        """Shift a target difficulty down under heavy load, up under light load."""
        adjusted = base_difficulty
        if cognitive_load > 0.8:
            adjusted -= 2.0
        elif cognitive_load > 0.6:
            adjusted -= 1.0
        elif cognitive_load < 0.3:
            adjusted += 0.5
        return clamp(adjusted, 1.0, 10.0)

    @staticmethod
    def _sustainability(
        utilization: float,
        session_state: UnifiedSessionState,
        profile: CognitiveLoadProfile,
        minutes: float,
    ) -> float:
        sustainability = 1.0
        if utilization > profile.stress_threshold:
            sustainability -= (utilization - profile.stress_threshold) * 2

        sustainability *= session_state.attention_span_remaining

        if session_state.momentum_trend == MomentumTrend.DECLINING:
            sustainability *= 0.9
        elif session_state.momentum_trend == MomentumTrend.IMPROVING:
            sustainability *= 1.1

        if minutes > 45:
            sustainability *= max(0.3, 1 - (minutes - 45) / 60)

        return clamp(sustainability)

    @staticmethod
    def determine_alert_level(utilization: float, sustainability: float) -> AlertLevel:
        if utilization > 1.2 or sustainability < 0.2:
            return AlertLevel.RED
        if utilization > 0.9 or sustainability < 0.4:
            return AlertLevel.ORANGE
        if utilization > 0.7 or sustainability < 0.6:
            return AlertLevel.YELLOW
        return AlertLevel.GREEN

    @staticmethod
    def _recommendations(
        utilization: float,
        sustainability: float,
        session_state: UnifiedSessionState,
    ) -> list[str]:
        recommendations = []

        if utilization > 1.0:
            recommendations.append("Reduce card difficulty to lower cognitive demand")
            recommendations.append("Take a short break to restore cognitive capacity")
        elif utilization > 0.8:
            recommendations.append("Consider easier cards to maintain sustainable learning")

        if sustainability < 0.3:
            recommendations.append("Session approaching limits - consider ending soon")
            recommendations.append("Switch to review of well-known cards only")
        elif sustainability < 0.5:
            recommendations.append("Monitor fatigue levels closely")
            recommendations.append("Avoid introducing new difficult concepts")

        fatigue = session_state.session_fatigue_index
        if fatigue > 0.8:
            recommendations.append("High fatigue detected - take a 5-10 minute break")
        elif fatigue > 0.6:
            recommendations.append("Consider lighter review material")

        if session_state.attention_span_remaining < 0.3:
            recommendations.append("Attention span low - consider ending session")

        if 0.3 <= utilization <= 0.7 and sustainability > 0.7:
            recommendations.append("Cognitive load optimal - maintain current difficulty")
        if utilization < 0.3 and sustainability > 0.7:
            recommendations.append("Cognitive capacity available - can increase challenge")

        return recommendations
