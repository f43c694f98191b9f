"""
Study Session Service - one study turn, end to end.

Turn flow:
    next_card()         queue manager keeps buffers filled, selector picks
                        from the lookahead buffer
    (learner answers)
    process_response()  DSR engine updates the card, momentum manager advances
                        the session, queue manager splices in reserve cards

Engines are injected; the service holds no per-session state. Every call
takes a session state and returns a new one, so callers serialize turns per
session and may run different sessions concurrently.
"""
from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from typing import Optional, Sequence
from uuid import uuid4

from loguru import logger

from config import Settings, get_settings
from uams.adaptive.cognitive_load import CognitiveLoadAnalysis, CognitiveLoadCalculator
from uams.adaptive.momentum import (
    PERFORMANCE_VALUES,
    FlowStateAnalysis,
    MomentumAnalysis,
    MomentumManager,
)
from uams.core.exceptions import NoCandidatesError
from uams.core.models import (
    AdaptationAction,
    AdaptationLog,
    CardSelectionResult,
    DSRUpdate,
    EnhancedResponseLog,
    EnvironmentalContext,
    ExplanationEvent,
    QueueMode,
    SessionContext,
    UnifiedCard,
    UnifiedSessionState,
    UserProfile,
)
from uams.delivery.card_selector import CardSelector
from uams.delivery.queue_manager import AdaptiveQueueManager, QueueConfig
from uams.study.dsr_engine import DSRConfig, DSREngine


@dataclass
class TurnOutcome:
    """Everything produced by processing one answer."""
    card: UnifiedCard
    dsr_update: DSRUpdate
    load_analysis: CognitiveLoadAnalysis
    state: UnifiedSessionState

    @property
    def interval_days(self) -> int:
        return self.card.optimal_interval


@dataclass
class SessionAnalysis:
    momentum: MomentumAnalysis
    flow: FlowStateAnalysis
    load: CognitiveLoadAnalysis

    def to_dict(self) -> dict:
        return {
            "momentum": self.momentum.to_dict(),
            "flow": self.flow.to_dict(),
            "load": self.load.to_dict(),
        }


class StudySessionService:
    """
    Orchestrates the scheduler engines for a study session.

    Usage:
        service = StudySessionService()
        state = service.start_session("user-1", cards)
        selection, state = service.next_card(state)
        outcome = service.process_response(state, selection.card, response)
        state = outcome.state
    """

    def __init__(
        self,
        dsr_engine: DSREngine | None = None,
        load_calculator: CognitiveLoadCalculator | None = None,
        momentum_manager: MomentumManager | None = None,
        selector: CardSelector | None = None,
        queue_manager: AdaptiveQueueManager | None = None,
        settings: Settings | None = None,
    ):
        self.settings = settings or get_settings()
        self.dsr_engine = dsr_engine or DSREngine(
            DSRConfig(target_retention=self.settings.target_retention)
        )
        self.load_calculator = load_calculator or CognitiveLoadCalculator()
        self.momentum_manager = momentum_manager or MomentumManager()
        self.selector = selector or CardSelector()
        self.queue_manager = queue_manager or AdaptiveQueueManager(
            self.selector, QueueConfig(**self.settings.get_queue_config())
        )

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def start_session(
        self,
        user_id: str,
        cards: Sequence[UnifiedCard],
        context: Optional[EnvironmentalContext] = None,
        now: Optional[datetime] = None,
        session_id: Optional[str] = None,
    ) -> UnifiedSessionState:
        """Create a fresh session with its buffers built from ``cards``."""
        now = now or datetime.now()
        environment = context or EnvironmentalContext()

        state = UnifiedSessionState(
            user_id=user_id,
            session_id=session_id or str(uuid4()),
            session_start_time=now,
            contextual_factors=SessionContext(
                time_of_day=now,
                day_of_week=now.strftime("%A"),
                environmental_factors=environment,
            ),
        )
        state = self.refresh_buffers(state, cards, now)

        logger.info(
            f"Started session {state.session_id} for {user_id}: "
            f"{len(state.review_queue)} review, {len(state.lookahead_buffer)} lookahead"
        )
        return state

    def refresh_buffers(
        self,
        state: UnifiedSessionState,
        cards: Sequence[UnifiedCard],
        now: Optional[datetime] = None,
    ) -> UnifiedSessionState:
        """Rebuild all four buffers from ``cards``."""
        result = self.queue_manager.generate_adaptive_queue(
            state, cards, state.contextual_factors.environmental_factors, now
        )
        for line in result.adaptation_log:
            logger.debug(line)
        return self.queue_manager.apply_queue(state, result)

    # =========================================================================
    # Turn
    # =========================================================================

    def recent_performance(self, state: UnifiedSessionState) -> list[float]:
        window = self.settings.performance_window
        return [PERFORMANCE_VALUES[r.rating] for r in state.recent_responses[-window:]]

    def _top_up_lookahead(self, state: UnifiedSessionState) -> UnifiedSessionState:
        if len(state.lookahead_buffer) >= self.settings.refresh_threshold or not state.review_queue:
            return state

        needed = self.settings.lookahead_size - len(state.lookahead_buffer)
        moved = state.review_queue[:needed]
        return replace(
            state,
            lookahead_buffer=state.lookahead_buffer + moved,
            review_queue=state.review_queue[needed:],
        )

    def next_card(
        self, state: UnifiedSessionState, now: Optional[datetime] = None
    ) -> tuple[CardSelectionResult, UnifiedSessionState]:
        """
        Select the next card and record the decision.

        Returns:
            (selection, new state with the card removed from its buffer and
            the adaptation and explanation logs extended)

        Raises:
            NoCandidatesError: If every buffer is empty
        """
        now = now or datetime.now()
        state = self._top_up_lookahead(state)

        mode = self.queue_manager.determine_mode(state, self.recent_performance(state))
        candidates = list(state.lookahead_buffer)
        if mode == QueueMode.CRISIS:
            candidates += state.emergency_buffer
        elif mode == QueueMode.HIGH_PERFORMANCE:
            candidates += state.challenge_reserve
        if not candidates:
            candidates = list(state.all_buffered_cards())
        if not candidates:
            raise NoCandidatesError(f"Session {state.session_id} has no cards left")

        selection = self.selector.select_next_optimal_card(state, candidates, now)
        card_id = selection.card.id

        state = replace(
            state,
            review_queue=tuple(c for c in state.review_queue if c.id != card_id),
            lookahead_buffer=tuple(c for c in state.lookahead_buffer if c.id != card_id),
            emergency_buffer=tuple(c for c in state.emergency_buffer if c.id != card_id),
            challenge_reserve=tuple(c for c in state.challenge_reserve if c.id != card_id),
            adaptation_history=state.adaptation_history + (
                AdaptationLog(
                    timestamp=now,
                    card_id=card_id,
                    reason=f"{selection.strategy}: {selection.reasoning}",
                    action=AdaptationAction.SELECTED,
                    algorithm_version=self.settings.algorithm_version,
                    parameters={
                        "mode": mode.value,
                        "momentum": state.session_momentum_score,
                        "fatigue": state.session_fatigue_index,
                        "confidence": selection.confidence,
                    },
                ),
            ),
            explanation_log=state.explanation_log + (
                ExplanationEvent(
                    timestamp=now,
                    card_id=card_id,
                    explanation=selection.explanation,
                    reasoning=selection.reasoning,
                    confidence=selection.confidence,
                ),
            ),
        )
        return selection, state

    def process_response(
        self,
        state: UnifiedSessionState,
        card: UnifiedCard,
        response: EnhancedResponseLog,
        user_profile: Optional[UserProfile] = None,
        now: Optional[datetime] = None,
    ) -> TurnOutcome:
        """Apply one answer to the card and the session."""
        now = now or response.timestamp
        if response.card_id is None:
            response = replace(response, card_id=card.id)

        updated_card, dsr_update = self.dsr_engine.apply_response(card, response, user_profile, now)
        updated_card = replace(updated_card, last_cluster_review=response.timestamp)

        next_state = self.momentum_manager.update_session_momentum(state, response, now)
        next_state = replace(
            next_state,
            recent_responses=(state.recent_responses + (response,))[-self.settings.history_window:],
        )

        load = self.load_calculator.calculate_current_load(
            next_state.recent_responses, next_state, user_profile, now
        )
        next_state = self._adjust_lookahead(next_state)

        return TurnOutcome(
            card=updated_card,
            dsr_update=dsr_update,
            load_analysis=load,
            state=next_state,
        )

    def _adjust_lookahead(self, state: UnifiedSessionState) -> UnifiedSessionState:
        """Move reserve cards spliced in by the queue manager out of their reserve."""
        adjusted = self.queue_manager.adjust_queue_dynamically(
            state.lookahead_buffer, state, self.recent_performance(state)
        )
        previous = {c.id for c in state.lookahead_buffer}
        moved = {c.id for c in adjusted} - previous
        if not moved:
            return state

        return replace(
            state,
            lookahead_buffer=tuple(adjusted),
            emergency_buffer=tuple(c for c in state.emergency_buffer if c.id not in moved),
            challenge_reserve=tuple(c for c in state.challenge_reserve if c.id not in moved),
        )

    # =========================================================================
    # Analysis
    # =========================================================================

    def analyze(
        self,
        state: UnifiedSessionState,
        user_profile: Optional[UserProfile] = None,
        now: Optional[datetime] = None,
    ) -> SessionAnalysis:
        now = now or datetime.now()
        return SessionAnalysis(
            momentum=self.momentum_manager.analyze_momentum(state),
            flow=self.momentum_manager.analyze_flow_state(state, now),
            load=self.load_calculator.calculate_current_load(
                state.recent_responses, state, user_profile, now
            ),
        )
