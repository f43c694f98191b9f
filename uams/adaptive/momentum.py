"""
Momentum Manager - Session Flow State Machine.

Advances the session aggregate by one response:
- momentum: smoothed running score of how well the session is going
- fatigue: accumulated tiredness (non-decreasing except a small recovery
  on "easy" answers)
- cognitive capacity and attention span remaining
- flow metrics (challenge/skill balance, engagement, satisfaction)

Also exposes two read-only analyses over a state: a momentum verdict
(maintain / boost / ease / break) and a flow-state report.

Based on research from:
- Csikszentmihalyi (flow, challenge/skill balance)
- Hockey (compensatory control under fatigue)
"""
from __future__ import annotations

from dataclasses import asdict, dataclass, field, replace
from datetime import datetime
from typing import Optional

from loguru import logger

from uams.core.models import (
    AmbientNoise,
    ContextualFactors,
    Device,
    EnhancedResponseLog,
    FlowRecommendationType,
    FlowStateMetrics,
    MomentumTrend,
    NetworkQuality,
    Rating,
    RecommendedAction,
    UnifiedSessionState,
    clamp,
)


PERFORMANCE_VALUES = {
    Rating.AGAIN: 0.0,   # Complete failure
    Rating.HARD: 0.25,   # Struggled but succeeded
    Rating.GOOD: 0.75,
    Rating.EASY: 1.0,    # Effortless
}

FATIGUE_THRESHOLDS = {
    "low": 0.3,
    "moderate": 0.6,
    "high": 0.8,
    "critical": 0.9,
}


@dataclass
class MomentumConfig:
    """Tunable constants for the momentum state machine."""
    momentum_alpha: float = 0.65        # Weight of previous momentum
    performance_alpha: float = 0.35     # Weight of the current answer
    trend_threshold: float = 0.05
    fatigue_horizon_minutes: float = 60     # Time-decay fatigue reaches 1.0
    capacity_horizon_minutes: float = 120   # Capacity decays to its floor
    attention_horizon_minutes: float = 90
    capacity_smoothing: float = 0.1
    easy_recovery: float = 0.01
    flow_band: tuple[float, float] = (0.4, 0.8)
    optimal_challenge_ratio: tuple[float, float] = (0.7, 1.3)


@dataclass
class MomentumAnalysis:
    current_momentum: float
    trend: MomentumTrend
    sustainability_score: float
    recommended_action: RecommendedAction
    reasoning: str

    def to_dict(self) -> dict:
        return {
            "current_momentum": self.current_momentum,
            "trend": self.trend.value,
            "sustainability_score": self.sustainability_score,
            "recommended_action": self.recommended_action.value,
            "reasoning": self.reasoning,
        }


@dataclass
class FlowRecommendation:
    type: FlowRecommendationType
    reasoning: str
    confidence: float


@dataclass
class FlowStateAnalysis:
    is_in_flow_state: bool
    flow_score: float
    challenge_level: float
    skill_level: float
    recommendations: list[FlowRecommendation] = field(default_factory=list)

    def to_dict(self) -> dict:
        data = asdict(self)
        data["recommendations"] = [
            {**asdict(r), "type": r.type.value} for r in self.recommendations
        ]
        return data


class MomentumManager:
    """
    Session state transition: (state, response) -> next state.

    Never mutates the incoming state; every call returns a new aggregate.
    """

    def __init__(self, config: MomentumConfig | None = None):
        self.config = config or MomentumConfig()

    def update_session_momentum(
        self,
        state: UnifiedSessionState,
        response: EnhancedResponseLog,
        now: Optional[datetime] = None,
    ) -> UnifiedSessionState:
        """
        Advance ``state`` by one answer.

        Args:
            state: Session aggregate before the answer
            response: The answer event
            now: Evaluation instant (defaults to the response timestamp)

        Returns:
            New session state with momentum, fatigue, capacity, trend,
            attention and flow metrics recomputed
        """
        now = now or response.timestamp
        minutes = state.session_minutes(now)
        context = response.contextual_factors

        raw_momentum = (
            state.session_momentum_score * self.config.momentum_alpha
            + PERFORMANCE_VALUES[response.rating] * self.config.performance_alpha
            + self.fatigue_adjustment(state.session_fatigue_index)
            + self.contextual_modifier(context)
            + self.response_time_modifier(response.response_time)
        )
        momentum = clamp(raw_momentum)

        fatigue = self._update_fatigue(state, response, minutes)
        capacity = self._update_capacity(state, response, minutes)
        trend = self._trend(state.session_momentum_score, momentum)
        attention = self._attention_span(state, response, minutes)

        next_state = replace(
            state,
            session_momentum_score=momentum,
            session_fatigue_index=fatigue,
            cognitive_load_capacity=capacity,
            momentum_trend=trend,
            attention_span_remaining=attention,
        )
        next_state = replace(next_state, flow_state_metrics=self.calculate_flow_state_metrics(next_state, now))

        logger.debug(
            f"Momentum {state.session_momentum_score:.2f}->{momentum:.2f} ({trend.value}), "
            f"fatigue {state.session_fatigue_index:.2f}->{fatigue:.2f}"
        )
        return next_state

    # =========================================================================
    # Momentum modifiers
    # =========================================================================

    @staticmethod
    def fatigue_adjustment(fatigue: float) -> float:
        """Tiered momentum penalty by fatigue band."""
        if fatigue > FATIGUE_THRESHOLDS["critical"]:
            return -0.3
        if fatigue > FATIGUE_THRESHOLDS["high"]:
            return -0.2
        if fatigue > FATIGUE_THRESHOLDS["moderate"]:
            return -0.1
        if fatigue > FATIGUE_THRESHOLDS["low"]:
            return -0.05
        return 0.0

    @staticmethod
    def contextual_modifier(context: ContextualFactors) -> float:
        modifier = 0.0

        hour = context.time_of_day.hour
        if 8 <= hour <= 10:
            modifier += 0.05   # Morning peak
        elif 16 <= hour <= 18:
            modifier += 0.03   # Afternoon peak
        elif hour >= 22 or hour <= 6:
            modifier -= 0.1

        if context.cognitive_load_at_time > 0.8:
            modifier -= 0.05
        elif context.cognitive_load_at_time < 0.3:
            modifier -= 0.03

        env = context.environmental_factors
        if env is not None:
            if env.network_quality in (NetworkQuality.POOR, NetworkQuality.OFFLINE):
                modifier -= 0.05
            if env.device == Device.MOBILE and env.low_battery:
                modifier -= 0.03
            if env.ambient_noise == AmbientNoise.NOISY:
                modifier -= 0.02

        return modifier

    @staticmethod
    def response_time_modifier(response_time: float) -> float:
        if response_time < 1000:
            return -0.05   # Likely a guess
        if response_time > 20000:
            return -0.1    # Struggling
        if 2000 <= response_time <= 8000:
            return 0.02
        return 0.0

    # =========================================================================
    # Fatigue, capacity, attention
    # =========================================================================

    def _update_fatigue(
        self, state: UnifiedSessionState, response: EnhancedResponseLog, minutes: float
    ) -> float:
        """
        Fatigue after one answer.

        Session time acts as a floor rather than a summand: the result is
        ``max(minutes / horizon, previous + per-answer increments)``. Past
        the horizon the floor holds fatigue at 1.0, less the recovery an easy
        answer grants.
        """
        time_fatigue = min(1.0, minutes / self.config.fatigue_horizon_minutes)

        increase = 0.05 if response.response_time > 10000 else 0.0
        if response.rating == Rating.AGAIN:
            increase += 0.08
        elif response.rating == Rating.HARD:
            increase += 0.03
        increase += (1 - response.contextual_factors.cognitive_load_at_time) * 0.02
        increase += self._environmental_fatigue(response.contextual_factors)

        fatigue = min(1.0, max(time_fatigue, state.session_fatigue_index + increase))
        if response.rating == Rating.EASY:
            fatigue -= self.config.easy_recovery
        return max(0.0, fatigue)

    @staticmethod
    def _environmental_fatigue(context: ContextualFactors) -> float:
        env = context.environmental_factors
        if env is None:
            return 0.0

        fatigue = 0.0
        if env.network_quality == NetworkQuality.POOR:
            fatigue += 0.02
        elif env.network_quality == NetworkQuality.OFFLINE:
            fatigue += 0.05
        if env.device == Device.MOBILE and env.battery_level is not None and env.battery_level < 0.3:
            fatigue += 0.02
        if env.non_optimal_lighting:
            fatigue += 0.01
        if env.ambient_noise == AmbientNoise.NOISY:
            fatigue += 0.02
        return fatigue

    def _update_capacity(
        self, state: UnifiedSessionState, response: EnhancedResponseLog, minutes: float
    ) -> float:
        base = max(0.3, 1 - minutes / self.config.capacity_horizon_minutes)

        if response.rating == Rating.AGAIN:
            base -= 0.05
        elif response.rating == Rating.EASY:
            base += 0.02
        base -= state.session_fatigue_index * 0.3

        target = clamp(base, 0.1, 1.0)
        alpha = self.config.capacity_smoothing
        return clamp(state.cognitive_load_capacity * (1 - alpha) + target * alpha, 0.1, 1.0)

    def _trend(self, previous: float, current: float) -> MomentumTrend:
        change = current - previous
        if change > self.config.trend_threshold:
            return MomentumTrend.IMPROVING
        if change < -self.config.trend_threshold:
            return MomentumTrend.DECLINING
        return MomentumTrend.STABLE

    def _attention_span(
        self, state: UnifiedSessionState, response: EnhancedResponseLog, minutes: float
    ) -> float:
        base = max(0.0, 1 - minutes / self.config.attention_horizon_minutes)
        fatigue_factor = 1 - state.session_fatigue_index * 0.5

        if response.rating == Rating.AGAIN:
            rating_factor = 0.95
        elif response.rating == Rating.EASY:
            rating_factor = 1.02
        else:
            rating_factor = 1.0

        return clamp(base * fatigue_factor * rating_factor)

    # =========================================================================
    # Flow metrics
    # =========================================================================

    def in_flow_band(self, momentum: float) -> bool:
        low, high = self.config.flow_band
        return low <= momentum <= high

    def calculate_flow_state_metrics(
        self, state: UnifiedSessionState, now: Optional[datetime] = None
    ) -> FlowStateMetrics:
        return FlowStateMetrics(
            challenge_skill_balance=self._challenge_skill_ratio(state),
            engagement_level=self._engagement_level(state),
            satisfaction_prediction=self._satisfaction(state, now or state.last_activity()),
            momentum_maintenance=self.in_flow_band(state.session_momentum_score),
        )

    @staticmethod
    def _challenge_skill_ratio(state: UnifiedSessionState) -> float:
        # Momentum stands in for skill
        skill = state.session_momentum_score

        challenge = 0.5
        recent = state.adaptation_history[-3:]
        if recent:
            increases = sum(1 for a in recent if "challenge" in a.reason)
            boosters = sum(1 for a in recent if "confidence" in a.reason)
            challenge = clamp(0.5 + increases * 0.1 - boosters * 0.1, 0.1, 0.9)

        return challenge / skill if skill > 0 else 0.5

    @staticmethod
    def _engagement_level(state: UnifiedSessionState) -> float:
        engagement = 0.5
        engagement += (state.session_momentum_score - 0.5) * 0.4
        engagement += (state.attention_span_remaining - 0.5) * 0.3
        engagement -= state.session_fatigue_index * 0.3
        engagement += (state.cognitive_load_capacity - 0.5) * 0.2
        return clamp(engagement)

    def _satisfaction(self, state: UnifiedSessionState, now: datetime) -> float:
        satisfaction = 0.7
        if self.in_flow_band(state.session_momentum_score):
            satisfaction += 0.2

        if state.adaptation_history:
            successes = sum(
                1 for a in state.adaptation_history[-5:]
                if "optimal" in a.reason or "good" in a.reason
            )
            satisfaction += successes / 5 * 0.1

        satisfaction -= state.session_fatigue_index * 0.2

        minutes = state.session_minutes(now)
        if minutes < 5:
            satisfaction -= 0.1
        elif minutes > 60:
            satisfaction -= (minutes - 60) / 120

        return clamp(satisfaction)

    # =========================================================================
    # Read-only analyses
    # =========================================================================

    def analyze_momentum(self, state: UnifiedSessionState) -> MomentumAnalysis:
        """Recommend an action for the session as it stands."""
        momentum = state.session_momentum_score
        fatigue = state.session_fatigue_index
        trend = state.momentum_trend

        if fatigue > FATIGUE_THRESHOLDS["critical"]:
            action = RecommendedAction.BREAK
            reasoning = "Critical fatigue level detected. Take a break to recover."
        elif momentum < 0.3 and trend == MomentumTrend.DECLINING:
            action = RecommendedAction.BOOST
            reasoning = "Low momentum with declining trend. Need confidence boosters."
        elif momentum > 0.8 and fatigue < FATIGUE_THRESHOLDS["moderate"]:
            action = RecommendedAction.MAINTAIN
            reasoning = "High momentum with manageable fatigue. Maintain current level."
        elif momentum > 0.8 and fatigue > FATIGUE_THRESHOLDS["moderate"]:
            action = RecommendedAction.EASE
            reasoning = "High momentum but elevated fatigue. Reduce challenge slightly."
        else:
            action = RecommendedAction.MAINTAIN
            reasoning = "Momentum and fatigue levels are balanced."

        return MomentumAnalysis(
            current_momentum=momentum,
            trend=trend,
            sustainability_score=self._sustainability(state),
            recommended_action=action,
            reasoning=reasoning,
        )

    @staticmethod
    def _sustainability(state: UnifiedSessionState) -> float:
        sustainability = 0.5
        sustainability += state.session_momentum_score * (1 - state.session_fatigue_index) * 0.4
        sustainability += state.cognitive_load_capacity * 0.3
        sustainability += state.attention_span_remaining * 0.2

        if state.momentum_trend == MomentumTrend.IMPROVING:
            sustainability += 0.1
        elif state.momentum_trend == MomentumTrend.DECLINING:
            sustainability -= 0.1

        return clamp(sustainability)

    def analyze_flow_state(
        self, state: UnifiedSessionState, now: Optional[datetime] = None
    ) -> FlowStateAnalysis:
        """Flow score and recommendations for the current state."""
        ratio = state.flow_state_metrics.challenge_skill_balance
        low, high = self.config.optimal_challenge_ratio

        flow_score = clamp(
            state.session_momentum_score * 0.4
            + state.flow_state_metrics.engagement_level * 0.3
            + (1 - state.session_fatigue_index) * 0.2
            + state.attention_span_remaining * 0.1
        )

        return FlowStateAnalysis(
            is_in_flow_state=flow_score > 0.7 and low <= ratio <= high,
            flow_score=flow_score,
            challenge_level=ratio * state.session_momentum_score,
            skill_level=state.session_momentum_score,
            recommendations=self._flow_recommendations(state),
        )

    def _flow_recommendations(self, state: UnifiedSessionState) -> list[FlowRecommendation]:
        recommendations = []
        ratio = state.flow_state_metrics.challenge_skill_balance
        low, high = self.config.optimal_challenge_ratio

        if ratio < low:
            recommendations.append(FlowRecommendation(
                type=FlowRecommendationType.INCREASE_CHALLENGE,
                reasoning="Challenge level too low for current skill level. Increase difficulty to maintain engagement.",
                confidence=0.8,
            ))
        elif ratio > high:
            recommendations.append(FlowRecommendation(
                type=FlowRecommendationType.DECREASE_CHALLENGE,
                reasoning="Challenge level too high. Reduce difficulty to prevent anxiety and maintain flow.",
                confidence=0.8,
            ))

        if state.session_fatigue_index > FATIGUE_THRESHOLDS["high"]:
            recommendations.append(FlowRecommendation(
                type=FlowRecommendationType.TAKE_BREAK,
                reasoning="High fatigue detected. A short break would help restore cognitive capacity.",
                confidence=0.9,
            ))

        if self.in_flow_band(state.session_momentum_score) and state.session_fatigue_index < 0.6:
            recommendations.append(FlowRecommendation(
                type=FlowRecommendationType.MAINTAIN,
                reasoning="Currently in optimal flow state. Maintain current approach.",
                confidence=0.9,
            ))

        return recommendations
