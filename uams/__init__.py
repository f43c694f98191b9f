"""
Unified Adaptive Memory Scheduler.

Session-scoped spaced-repetition scheduling:
- DSR memory-state estimation per card
- Cognitive load and momentum tracking per session
- Strategy-based next-card selection with anti-clustering
- Adaptive four-buffer review queues

The functions below wrap default-constructed engines. Build the engines
directly (or a StudySessionService) to tune them.
"""
from __future__ import annotations

from datetime import datetime
from typing import Optional, Sequence

from uams.adaptive.cognitive_load import CognitiveLoadAnalysis, CognitiveLoadCalculator
from uams.adaptive.momentum import MomentumManager
from uams.core.models import (
    CardSelectionResult,
    DSRUpdate,
    EnhancedResponseLog,
    EnvironmentalContext,
    UnifiedCard,
    UnifiedSessionState,
    UserProfile,
)
from uams.delivery.card_selector import CardSelector
from uams.delivery.queue_manager import AdaptiveQueueManager, QueueGenerationResult
from uams.study.dsr_engine import DSREngine

__version__ = "3.0.0"


def compute_dsr(
    card: UnifiedCard,
    response: EnhancedResponseLog,
    user_profile: Optional[UserProfile] = None,
    now: Optional[datetime] = None,
) -> DSRUpdate:
    return DSREngine().calculate_enhanced_dsr(card, response, user_profile, now)


def compute_cognitive_load(
    history: Sequence[EnhancedResponseLog],
    session: UnifiedSessionState,
    user_profile: Optional[UserProfile] = None,
    now: Optional[datetime] = None,
) -> CognitiveLoadAnalysis:
    return CognitiveLoadCalculator().calculate_current_load(history, session, user_profile, now)


def advance_momentum(
    state: UnifiedSessionState,
    response: EnhancedResponseLog,
    now: Optional[datetime] = None,
) -> UnifiedSessionState:
    return MomentumManager().update_session_momentum(state, response, now)


def select_next_card(
    session: UnifiedSessionState,
    cards: Sequence[UnifiedCard],
    now: Optional[datetime] = None,
) -> CardSelectionResult:
    return CardSelector().select_next_optimal_card(session, cards, now)


def build_adaptive_queue(
    session: UnifiedSessionState,
    cards: Sequence[UnifiedCard],
    env_context: Optional[EnvironmentalContext] = None,
    now: Optional[datetime] = None,
) -> QueueGenerationResult:
    return AdaptiveQueueManager().generate_adaptive_queue(session, cards, env_context, now)


__all__ = [
    "__version__",
    "compute_dsr",
    "compute_cognitive_load",
    "advance_momentum",
    "select_next_card",
    "build_adaptive_queue",
]
