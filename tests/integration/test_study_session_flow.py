"""
Integration Tests for the Study Session Pipeline.

Tests the full turn loop:
1. Queue manager builds the session buffers
2. Card selector picks the next card
3. DSR engine updates the card after the answer
4. Momentum manager and load calculator advance the session
5. Session store persists the result
"""

from datetime import timedelta

import pytest

from config import Settings
from uams.core.exceptions import NoCandidatesError
from uams.core.models import MomentumTrend, Rating
from uams.study.session_store import JsonSessionStore
from uams.study.study_session import StudySessionService

pytestmark = pytest.mark.integration

RATING_CYCLE = [Rating.GOOD, Rating.GOOD, Rating.HARD, Rating.AGAIN, Rating.EASY]


@pytest.fixture
def service():
    return StudySessionService(settings=Settings())


@pytest.fixture
def deck(make_card, now):
    return [
        make_card(
            f"card-{i:02d}",
            front_content=f"topic{i} question",
            back_content=f"topic{i} answer",
            difficulty=1.5 + (i % 8),
            stability=0.5 + (i % 6) * 4,
            retrievability=0.3 + (i % 7) * 0.1,
            review_count=i % 6,
        )
        for i in range(30)
    ]


def buffer_ids(state):
    return [c.id for c in state.all_buffered_cards()]


class TestSessionLoop:
    """A full session over a thirty-card deck."""

    def test_start_session_fills_buffers(self, service, deck, now):
        state = service.start_session("user-1", deck, now=now, session_id="s-1")

        assert state.session_id == "s-1"
        assert state.contextual_factors.day_of_week == "Monday"
        assert len(state.review_queue) == 15
        assert len(state.lookahead_buffer) == 10
        assert len(buffer_ids(state)) == len(set(buffer_ids(state)))

    def test_twelve_turns(self, service, deck, make_response, now):
        state = service.start_session("user-1", deck, now=now, session_id="s-1")
        at = now

        for turn in range(12):
            selection, state = service.next_card(state, at)
            card = selection.card

            assert card.id not in buffer_ids(state)
            assert len(buffer_ids(state)) == len(set(buffer_ids(state)))

            at = at + timedelta(seconds=30)
            response = make_response(RATING_CYCLE[turn % len(RATING_CYCLE)], timestamp=at)
            outcome = service.process_response(state, card, response)
            state = outcome.state

            assert outcome.card.review_count == card.review_count + 1
            assert outcome.card.last_cluster_review == at
            assert outcome.interval_days >= 1
            assert 0.0 <= state.session_momentum_score <= 1.0
            assert 0.0 <= state.session_fatigue_index <= 1.0
            assert 0.0 <= outcome.load_analysis.current_load <= 1.0

        assert len(state.adaptation_history) == 12
        assert len(state.explanation_log) == 12
        assert len(state.recent_responses) == 10
        assert all(r.card_id for r in state.recent_responses)
        assert state.adaptation_history[0].algorithm_version == "uams-3.0"

        analysis = service.analyze(state, now=at).to_dict()
        assert set(analysis) == {"momentum", "flow", "load"}

    def test_session_persists(self, service, deck, make_response, now, tmp_path):
        state = service.start_session("user-1", deck, now=now, session_id="s-1")
        selection, state = service.next_card(state, now)
        state = service.process_response(state, selection.card, make_response(card_id=selection.card.id)).state

        store = JsonSessionStore(tmp_path)
        store.save(state)
        assert store.load("s-1") == state

    def test_deck_exhaustion(self, service, make_card, now):
        cards = [make_card("a", front_content="alpha"), make_card("b", front_content="beta")]
        state = service.start_session("user-1", cards, now=now)

        _, state = service.next_card(state, now)
        _, state = service.next_card(state, now)
        with pytest.raises(NoCandidatesError):
            service.next_card(state, now)


class TestModeAdjustments:
    """Reserve buffers feed the session when it struggles."""

    def test_crisis_draws_from_emergency_buffer(self, service, make_session, make_card, now):
        booster = make_card("anchor", front_content="anchor", retrievability=0.95, stability=12.0, difficulty=2.5)
        state = make_session(
            session_momentum_score=0.1,
            momentum_trend=MomentumTrend.DECLINING,
            lookahead_buffer=(make_card("tough", front_content="tough", difficulty=8.0, retrievability=0.4),),
            emergency_buffer=(booster,),
        )

        selection, state = service.next_card(state, now)

        assert selection.card.id == "anchor"
        assert state.emergency_buffer == ()
        assert state.adaptation_history[-1].parameters["mode"] == "crisis"

    def test_struggling_session_moves_emergency_cards_forward(
        self, service, make_session, make_card, make_response, now
    ):
        failures = tuple(make_response(Rating.AGAIN, card_id="x") for _ in range(4))
        state = make_session(
            session_fatigue_index=0.7,
            recent_responses=failures,
            lookahead_buffer=(make_card("next", front_content="next"),),
            emergency_buffer=(make_card("easy", front_content="easy", difficulty=2.0, stability=10.0),),
        )

        outcome = service.process_response(
            state, make_card("x"), make_response(Rating.AGAIN, response_time=25000)
        )

        assert [c.id for c in outcome.state.lookahead_buffer] == ["easy", "next"]
        assert outcome.state.emergency_buffer == ()
