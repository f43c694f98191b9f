"""
Domain models for the Unified Adaptive Memory Scheduler.

All records are frozen dataclasses. Engines never mutate a record in place:
every update produces a new value through ``dataclasses.replace`` so that a
session state or card can be handed between turns without aliasing.

Model groups:
- Enumerations (ratings, trends, environment descriptors)
- Response events (EnhancedResponseLog + contextual snapshot)
- Cards (UnifiedCard with the DSR memory-state bundle)
- Session state (UnifiedSessionState with the four card buffers)
- Engine results (DSRUpdate, CardSelectionResult)
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional, Sequence


# Default FSRS weight vector (21 parameters) for the general population.
DEFAULT_FSRS_PARAMETERS: tuple[float, ...] = (
    0.4, 0.6, 2.4, 5.8, 4.93, 0.94, 0.86, 0.01, 1.49, 0.14, 0.94,
    2.18, 0.05, 0.34, 1.26, 0.29, 2.61, 0.62, 0.36, 0.26, 2.4,
)

FSRS_PARAMETER_COUNT = 21

# Rolling windows kept on a card for storage efficiency
PERFORMANCE_HISTORY_WINDOW = 10
RETRIEVABILITY_HISTORY_WINDOW = 10


# =============================================================================
# Enumerations
# =============================================================================


class Rating(str, Enum):
    """Learner self-rating for one answer."""
    AGAIN = "again"
    HARD = "hard"
    GOOD = "good"
    EASY = "easy"

    @property
    def numeric(self) -> int:
        """1 (again) .. 4 (easy), used for variance and trend calculations."""
        return _RATING_NUMBERS[self]


_RATING_NUMBERS = {
    Rating.AGAIN: 1,
    Rating.HARD: 2,
    Rating.GOOD: 3,
    Rating.EASY: 4,
}


class ConfidenceLevel(str, Enum):
    """Derived learner confidence on a card (recomputed from history)."""
    BUILDING = "building"
    OPTIMAL = "optimal"
    STRUGGLING = "struggling"


class MomentumTrend(str, Enum):
    IMPROVING = "improving"
    DECLINING = "declining"
    STABLE = "stable"


class StabilityTrend(str, Enum):
    INCREASING = "increasing"
    DECREASING = "decreasing"
    STABLE = "stable"


class Device(str, Enum):
    MOBILE = "mobile"
    DESKTOP = "desktop"
    TABLET = "tablet"


class NetworkQuality(str, Enum):
    EXCELLENT = "excellent"
    GOOD = "good"
    POOR = "poor"
    OFFLINE = "offline"


class AmbientNoise(str, Enum):
    QUIET = "quiet"
    MODERATE = "moderate"
    NOISY = "noisy"


class Lighting(str, Enum):
    OPTIMAL = "optimal"
    DIM = "dim"
    BRIGHT = "bright"


class AdaptationAction(str, Enum):
    SELECTED = "selected"
    SKIPPED = "skipped"
    REORDERED = "reordered"


class AlertLevel(str, Enum):
    """Cognitive load traffic light."""
    GREEN = "green"      # Optimal range
    YELLOW = "yellow"    # Monitor closely
    ORANGE = "orange"    # Attention needed
    RED = "red"          # Immediate action needed


class RecommendedAction(str, Enum):
    """Session-level momentum recommendation."""
    MAINTAIN = "maintain"
    BOOST = "boost"
    EASE = "ease"
    BREAK = "break"


class FlowRecommendationType(str, Enum):
    INCREASE_CHALLENGE = "increase_challenge"
    DECREASE_CHALLENGE = "decrease_challenge"
    MAINTAIN = "maintain"
    TAKE_BREAK = "take_break"


class SelectionStrategy(str, Enum):
    """
    Card selection strategies in priority order.

    The value doubles as the adaptation-log reason prefix, which the flow
    metrics scan for "challenge" and "confidence" keywords.
    """
    CRISIS_INTERVENTION = "confidence_booster"
    CRITICAL_FATIGUE = "fatigue_relief"
    HIGH_PERFORMANCE_CHALLENGE = "optimal_challenge"
    FLOW_MAINTENANCE = "flow_maintenance"
    ENGAGEMENT_INJECTION = "engagement_injection"
    BALANCED = "balanced"


class QueueMode(str, Enum):
    CRISIS = "crisis"
    HIGH_PERFORMANCE = "high_performance"
    NORMAL = "normal"


# =============================================================================
# Context & Response Events
# =============================================================================


@dataclass(frozen=True)
class EnvironmentalContext:
    """Snapshot of the learner's device and surroundings."""
    device: Device = Device.DESKTOP
    network_quality: NetworkQuality = NetworkQuality.GOOD
    battery_level: Optional[float] = None  # 0-1, mobile devices only
    ambient_noise: Optional[AmbientNoise] = None
    lighting: Optional[Lighting] = None

    @property
    def low_battery(self) -> bool:
        return self.battery_level is not None and self.battery_level < 0.2

    @property
    def non_optimal_lighting(self) -> bool:
        return self.lighting in (Lighting.DIM, Lighting.BRIGHT)


@dataclass(frozen=True)
class ContextualFactors:
    """Session conditions at the moment an answer was given."""
    time_of_day: datetime
    session_time: float = 0.0  # minutes into the session
    session_fatigue_index: float = 0.0
    cognitive_load_at_time: float = 0.5
    environmental_factors: Optional[EnvironmentalContext] = None


@dataclass(frozen=True)
class EnhancedResponseLog:
    """
    Immutable record of one answer.

    Attributes:
        timestamp: When the answer was submitted
        rating: Learner rating (again/hard/good/easy)
        response_time: Milliseconds from reveal to answer
        contextual_factors: Fatigue/load/environment snapshot at answer time
        card_id: Card answered (needed to group reviews for optimization)
    """
    timestamp: datetime
    rating: Rating
    response_time: int
    contextual_factors: ContextualFactors
    card_id: Optional[str] = None
    momentum_impact: float = 0.0
    confidence_change: float = 0.0
    previous_card_similarity: float = 0.0
    clustering_context: str = ""

    @property
    def is_success(self) -> bool:
        return self.rating != Rating.AGAIN


@dataclass(frozen=True)
class ContextualDifficultyMap:
    """Per-card difficulty modifiers keyed by hour, weekday and session context."""
    time_of_day: dict[str, float] = field(default_factory=dict)
    day_of_week: dict[str, float] = field(default_factory=dict)
    session_position: dict[str, float] = field(default_factory=dict)
    cognitive_load: dict[str, float] = field(default_factory=dict)


@dataclass(frozen=True)
class CognitiveLoadSettings:
    """Personal cognitive-load overrides carried on a user profile."""
    base_capacity: float = 1.0
    fatigue_rate: float = 0.02
    recovery_rate: float = 0.05


@dataclass(frozen=True)
class UserProfile:
    """Learner profile supplied by the profile service."""
    id: str
    fsrs_parameters: Optional[tuple[float, ...]] = None
    average_session_length: Optional[float] = None  # minutes
    attention_decay_rate: Optional[float] = None
    optimal_study_times: tuple[str, ...] = ()
    cognitive_load_profile: Optional[CognitiveLoadSettings] = None


# =============================================================================
# Cards
# =============================================================================


@dataclass(frozen=True)
class UnifiedCard:
    """
    A flashcard with its FSRS-enhanced memory state.

    DSR invariants (enforced by every update path, checked by
    ``uams.core.validation``):
    - difficulty in [1, 10]
    - stability >= 0.1 days
    - retrievability in [0, 1]
    - exactly 21 FSRS parameters
    """
    id: str
    deck_id: str
    front_content: str = ""
    back_content: str = ""
    card_type: str = "basic"
    media_refs: tuple[str, ...] = ()

    # Legacy scheduling fields
    ease_factor: float = 2.5
    interval_days: int = 0
    next_review: Optional[datetime] = None
    created_at: Optional[datetime] = None
    review_count: int = 0
    lapse_count: int = 0
    last_reviewed: Optional[datetime] = None

    # DSR memory state
    difficulty: float = 5.0
    stability: float = 1.0
    retrievability: float = 0.9
    fsrs_parameters: tuple[float, ...] = DEFAULT_FSRS_PARAMETERS

    # Performance tracking
    performance_history: tuple[EnhancedResponseLog, ...] = ()
    average_response_time: float = 0.0
    cognitive_load_index: float = 0.0
    confidence_level: ConfidenceLevel = ConfidenceLevel.BUILDING

    # Clustering & context
    concept_similarity: frozenset[str] = frozenset()
    last_cluster_review: Optional[datetime] = None
    contextual_difficulty: Optional[ContextualDifficultyMap] = None

    # Derived metadata
    stability_trend: StabilityTrend = StabilityTrend.STABLE
    retrievability_history: tuple[float, ...] = ()
    optimal_interval: int = 1

    @property
    def text(self) -> str:
        return f"{self.front_content} {self.back_content}".strip()

    @property
    def content_length(self) -> int:
        return len(self.front_content or "") + len(self.back_content or "")


# =============================================================================
# Session State
# =============================================================================


@dataclass(frozen=True)
class AdaptationLog:
    """One selection decision, kept for anti-clustering and analytics."""
    timestamp: datetime
    card_id: str
    reason: str
    action: AdaptationAction = AdaptationAction.SELECTED
    algorithm_version: str = "uams-3.0"
    parameters: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ExplanationEvent:
    """Human-readable justification for one selection."""
    timestamp: datetime
    card_id: str
    explanation: str
    reasoning: str
    confidence: float
    user_visible: bool = True


@dataclass(frozen=True)
class FlowStateMetrics:
    challenge_skill_balance: float = 0.5
    engagement_level: float = 0.5
    satisfaction_prediction: float = 0.7
    momentum_maintenance: bool = True


@dataclass(frozen=True)
class SessionContext:
    """Context captured when the session started."""
    time_of_day: Optional[datetime] = None
    day_of_week: str = ""
    session_duration: float = 0.0
    study_streak: int = 0
    environmental_factors: EnvironmentalContext = field(default_factory=EnvironmentalContext)
    last_session_quality: float = 0.7


@dataclass(frozen=True)
class UnifiedSessionState:
    """
    Session-scoped aggregate mutated once per response and once per selection.

    The four buffers are disjoint by card id: a card is moved between
    buffers, never duplicated.
    """
    user_id: str
    session_id: str
    session_start_time: datetime

    # Core momentum
    session_momentum_score: float = 0.5
    momentum_trend: MomentumTrend = MomentumTrend.STABLE

    # Cognitive load awareness
    session_fatigue_index: float = 0.0
    cognitive_load_capacity: float = 1.0
    attention_span_remaining: float = 1.0

    # Buffers
    review_queue: tuple[UnifiedCard, ...] = ()
    lookahead_buffer: tuple[UnifiedCard, ...] = ()
    emergency_buffer: tuple[UnifiedCard, ...] = ()
    challenge_reserve: tuple[UnifiedCard, ...] = ()

    # Context & analytics
    contextual_factors: SessionContext = field(default_factory=SessionContext)
    adaptation_history: tuple[AdaptationLog, ...] = ()
    explanation_log: tuple[ExplanationEvent, ...] = ()
    recent_responses: tuple[EnhancedResponseLog, ...] = ()

    flow_state_metrics: FlowStateMetrics = field(default_factory=FlowStateMetrics)

    def session_minutes(self, now: datetime) -> float:
        """Minutes elapsed since the session started."""
        return max(0.0, (now - self.session_start_time).total_seconds() / 60)

    def last_activity(self, responses: Sequence[EnhancedResponseLog] = ()) -> datetime:
        """
        Latest instant recorded in the inputs: a response, a selection or the
        session start. Used as the evaluation time when none is given.
        """
        instants = [r.timestamp for r in responses or self.recent_responses]
        instants += [entry.timestamp for entry in self.adaptation_history]
        return max([self.session_start_time, *instants])

    def all_buffered_cards(self) -> tuple[UnifiedCard, ...]:
        return (
            self.review_queue
            + self.lookahead_buffer
            + self.emergency_buffer
            + self.challenge_reserve
        )


# =============================================================================
# Engine Results
# =============================================================================


@dataclass(frozen=True)
class DSRUpdate:
    """New memory-state estimate produced by the DSR engine."""
    difficulty: float
    stability: float
    retrievability: float
    confidence: float
    explanation: str


@dataclass(frozen=True)
class CardSelectionResult:
    card: UnifiedCard
    explanation: str
    reasoning: str
    confidence: float
    alternative_options: tuple[UnifiedCard, ...] = ()
    strategy: Optional[str] = None


def clamp(value: float, lower: float = 0.0, upper: float = 1.0) -> float:
    """Clamp ``value`` into [lower, upper]."""
    return max(lower, min(upper, value))
