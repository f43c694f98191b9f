"""
Unit tests for JSON session persistence.
"""
from datetime import timedelta

import pytest

from uams.core.exceptions import SessionNotFoundError
from uams.core.models import (
    AdaptationLog,
    EnvironmentalContext,
    ExplanationEvent,
    Device,
    MomentumTrend,
    QueueMode,
    Rating,
    SessionContext,
)
from uams.study.session_store import JsonSessionStore


@pytest.fixture
def store(tmp_path):
    return JsonSessionStore(tmp_path / "sessions")


@pytest.fixture
def populated_session(make_session, make_card, make_response, now):
    history = (make_response(Rating.AGAIN, card_id="c1"), make_response(Rating.EASY, card_id="c2"))
    return make_session(
        session_momentum_score=0.42,
        momentum_trend=MomentumTrend.DECLINING,
        session_fatigue_index=0.3,
        review_queue=(make_card("c1", performance_history=history[:1], concept_similarity=frozenset({"c2"})),),
        lookahead_buffer=(make_card("c2", next_review=now + timedelta(days=2)),),
        emergency_buffer=(make_card("c3", difficulty=2.0, stability=12.0),),
        contextual_factors=SessionContext(
            time_of_day=now,
            day_of_week="Monday",
            environmental_factors=EnvironmentalContext(device=Device.MOBILE, battery_level=0.4),
        ),
        adaptation_history=(
            AdaptationLog(
                timestamp=now,
                card_id="c1",
                reason="balanced: balanced_optimization",
                parameters={"mode": QueueMode.NORMAL.value, "momentum": 0.42},
            ),
        ),
        explanation_log=(
            ExplanationEvent(
                timestamp=now,
                card_id="c1",
                explanation="Balanced selection",
                reasoning="balanced_optimization",
                confidence=0.7,
            ),
        ),
        recent_responses=history,
    )


def test_round_trip(store, populated_session):
    path = store.save(populated_session)

    assert path.name == "session-1.json"
    assert store.load("session-1") == populated_session


def test_missing_session(store):
    with pytest.raises(SessionNotFoundError) as exc:
        store.load("nope")
    assert exc.value.session_id == "nope"


def test_corrupt_session_file(store):
    (store.session_dir / "broken.json").write_text('{"user_id": 3}')

    with pytest.raises(SessionNotFoundError):
        store.load("broken")
    assert store.list_sessions() == []


def test_list_filters_and_orders(store, make_session, now):
    older = make_session(session_id="old", session_start_time=now - timedelta(days=2))
    newer = make_session(session_id="new")
    other = make_session(session_id="theirs", user_id="user-2")
    for state in (older, newer, other):
        store.save(state)

    assert [s.session_id for s in store.list_sessions("user-1")] == ["new", "old"]
    assert store.get_latest("user-2").session_id == "theirs"
    assert store.get_latest("nobody") is None


def test_delete_and_cleanup(store, make_session, now):
    store.save(make_session(session_id="old", session_start_time=now - timedelta(days=40)))
    store.save(make_session(session_id="recent"))

    assert store.cleanup_older_than(now - timedelta(days=30)) == 1
    assert store.delete("recent") is True
    assert store.delete("recent") is False
    assert store.list_sessions() == []
