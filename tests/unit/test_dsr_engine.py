"""
Unit tests for the DSR engine.

Covers the difficulty/stability/retrievability update, interval calculation
and the full card update applied after each answer.
"""
import math
from datetime import timedelta

import pytest

from uams.core.models import (
    DEFAULT_FSRS_PARAMETERS,
    ConfidenceLevel,
    ContextualDifficultyMap,
    Device,
    EnvironmentalContext,
    NetworkQuality,
    Rating,
    StabilityTrend,
    UserProfile,
)
from uams.study.dsr_engine import (
    DSREngine,
    days_between,
    environmental_difficulty,
    response_time_difficulty,
    trend_slope,
    variance,
)


@pytest.fixture
def engine():
    return DSREngine()


class TestHelpers:
    def test_days_between_floors_partial_days(self, now):
        assert days_between(now - timedelta(days=2, hours=20), now) == 2

    def test_days_between_never_reviewed(self, now):
        assert days_between(None, now) == 0

    def test_variance_of_constant_series_is_zero(self):
        assert variance([3, 3, 3]) == 0.0

    def test_trend_slope_rising(self):
        assert trend_slope([1, 2, 3, 4]) == pytest.approx(1.0)

    def test_trend_slope_flat(self):
        assert trend_slope([2, 2, 2]) == 0.0

    @pytest.mark.parametrize(
        "response_time,average,expected",
        [
            (25000, 10000, 0.5),
            (16000, 10000, 0.3),
            (9000, 10000, 0.0),
            (6000, 10000, -0.1),
            (4000, 10000, -0.3),
            (4000, 0, 0.0),
        ],
    )
    def test_response_time_difficulty(self, response_time, average, expected):
        assert response_time_difficulty(response_time, average) == pytest.approx(expected)

    def test_environmental_difficulty_stacks(self):
        env = EnvironmentalContext(
            device=Device.MOBILE,
            network_quality=NetworkQuality.POOR,
            battery_level=0.1,
        )
        assert environmental_difficulty(env) == pytest.approx(0.4)

    @pytest.mark.parametrize(
        "battery_level,expected",
        [(0.0, 0.2), (0.1, 0.2), (0.5, 0.1), (None, 0.1)],
    )
    def test_dead_battery_counts_as_low(self, battery_level, expected):
        env = EnvironmentalContext(device=Device.MOBILE, battery_level=battery_level)
        assert env.low_battery is (battery_level is not None and battery_level < 0.2)
        assert environmental_difficulty(env) == pytest.approx(expected)


class TestDifficulty:
    def test_again_rating_smoothed_toward_raw(self, engine, make_card, make_response):
        card = make_card(difficulty=5.0)
        update = engine.calculate_enhanced_dsr(card, make_response(Rating.AGAIN))

        # raw = 8.5 + 0.3 * (1 - 0.5) = 8.65; 5.0 * 0.7 + 8.65 * 0.3
        assert update.difficulty == pytest.approx(6.095)

    def test_night_response_is_harder_than_midday(self, engine, make_card, make_response, now):
        card = make_card()
        midday = engine.calculate_enhanced_dsr(card, make_response(Rating.GOOD))
        night = engine.calculate_enhanced_dsr(
            card, make_response(Rating.GOOD, timestamp=now.replace(hour=3))
        )

        assert night.difficulty - midday.difficulty == pytest.approx(0.7 * 0.3)

    def test_poor_environment_raises_difficulty(self, engine, make_card, make_response):
        card = make_card()
        env = EnvironmentalContext(device=Device.MOBILE, network_quality=NetworkQuality.POOR)
        plain = engine.calculate_enhanced_dsr(card, make_response())
        degraded = engine.calculate_enhanced_dsr(card, make_response(environment=env))

        assert degraded.difficulty > plain.difficulty

    def test_difficulty_stays_in_range(self, engine, make_card, make_response):
        for difficulty in (1.0, 5.0, 10.0):
            for rating in Rating:
                update = engine.calculate_enhanced_dsr(
                    make_card(difficulty=difficulty),
                    make_response(rating, fatigue=1.0, load=0.0, response_time=60000),
                )
                assert 1.0 <= update.difficulty <= 10.0


class TestStability:
    def test_good_after_delay_grows_stability(self, engine, make_card, make_response, now):
        card = make_card(stability=2.0, last_reviewed=now - timedelta(days=3))
        update = engine.calculate_enhanced_dsr(card, make_response(Rating.GOOD))

        assert update.stability > card.stability

    def test_hard_on_fresh_card_barely_moves(self, engine, make_card, make_response):
        card = make_card(stability=1.0)
        update = engine.calculate_enhanced_dsr(card, make_response(Rating.HARD))

        expected = 1.0 * (1 + math.exp(0.94) * (0.86 - 1.0) * 0.01)
        assert update.stability == pytest.approx(expected)

    def test_profile_weights_take_precedence_and_floor_applies(
        self, engine, make_card, make_response
    ):
        weights = list(DEFAULT_FSRS_PARAMETERS)
        weights[11] = 0.001
        profile = UserProfile(id="user-1", fsrs_parameters=tuple(weights))

        update = engine.calculate_enhanced_dsr(
            make_card(stability=1.0), make_response(Rating.AGAIN), profile
        )

        assert update.stability == pytest.approx(0.1)

    def test_fatigue_reduces_stability(self, engine, make_card, make_response, now):
        card = make_card(stability=2.0, last_reviewed=now - timedelta(days=3))
        rested = engine.calculate_enhanced_dsr(card, make_response(Rating.GOOD))
        tired = engine.calculate_enhanced_dsr(card, make_response(Rating.GOOD, fatigue=1.0))

        assert tired.stability == pytest.approx(rested.stability * 0.85)


class TestRetrievability:
    def test_long_overdue_card_is_clamped_to_floor(self, engine, make_card, make_response, now):
        card = make_card(stability=1.0, last_reviewed=now - timedelta(days=14))
        update = engine.calculate_enhanced_dsr(card, make_response(Rating.GOOD))

        assert update.retrievability == pytest.approx(0.01)

    def test_fresh_card_is_clamped_to_ceiling(self, engine, make_card, make_response):
        update = engine.calculate_enhanced_dsr(make_card(), make_response(load=1.0))

        assert update.retrievability == pytest.approx(0.99)

    def test_retrievability_range(self, engine, make_card, make_response, now):
        for days in (0, 1, 5, 30, 365):
            for stability in (0.1, 1.0, 10.0, 200.0):
                card = make_card(stability=stability, last_reviewed=now - timedelta(days=days))
                update = engine.calculate_enhanced_dsr(card, make_response(fatigue=0.8, load=0.2))
                assert 0.01 <= update.retrievability <= 0.99
                assert update.stability >= 0.1


class TestConfidenceAndExplanation:
    def test_new_card_confidence(self, engine, make_card, make_response):
        update = engine.calculate_enhanced_dsr(make_card(), make_response(response_time=5000))
        assert update.confidence == pytest.approx(0.8)

    def test_confidence_capped(self, engine, make_card, make_response):
        history = tuple(make_response(Rating.GOOD) for _ in range(11))
        card = make_card(performance_history=history)
        update = engine.calculate_enhanced_dsr(card, make_response(response_time=5000))

        assert update.confidence == 1.0

    def test_standard_explanation(self, engine, make_card, make_response):
        update = engine.calculate_enhanced_dsr(make_card(), make_response())
        assert update.explanation == "Standard FSRS calculation applied"

    def test_explanation_mentions_fatigue(self, engine, make_card, make_response):
        update = engine.calculate_enhanced_dsr(make_card(), make_response(fatigue=0.9))
        assert "High fatigue level affected calculation" in update.explanation

    def test_inputs_not_mutated(self, engine, make_card, make_response):
        card = make_card()
        before = card
        engine.calculate_enhanced_dsr(card, make_response(Rating.AGAIN))
        assert card == before


class TestOptimalInterval:
    def test_neutral_modifiers(self, engine, make_card):
        card = make_card(stability=10.0, cognitive_load_index=0.0)
        assert engine.calculate_optimal_interval(card, 0.9) == round(10 * math.log(10))

    def test_increasing_trend_lengthens(self, engine, make_card):
        card = make_card(stability=10.0, stability_trend=StabilityTrend.INCREASING)
        assert engine.calculate_optimal_interval(card, 0.9) == 25

    def test_heavy_load_shortens(self, engine, make_card):
        card = make_card(stability=10.0, cognitive_load_index=1.0)
        assert engine.calculate_optimal_interval(card, 0.9) == 16

    def test_contextual_map_shortens(self, engine, make_card, now):
        card = make_card(
            stability=10.0,
            contextual_difficulty=ContextualDifficultyMap(
                time_of_day={str(now.hour): 2.0},
                day_of_week={now.strftime("%A"): 1.0},
            ),
        )
        assert engine.calculate_optimal_interval(card, 0.9, now) == 16

    def test_contextual_map_defaults_to_last_review(self, engine, make_card, now):
        contextual = ContextualDifficultyMap(time_of_day={str(now.hour): 2.0}, day_of_week={now.strftime("%A"): 1.0})
        reviewed = make_card(stability=10.0, contextual_difficulty=contextual, last_reviewed=now)
        unreviewed = make_card(stability=10.0, contextual_difficulty=contextual)

        assert engine.calculate_optimal_interval(reviewed, 0.9) == 16
        assert engine.calculate_optimal_interval(unreviewed, 0.9) == round(10 * math.log(10))

    def test_minimum_one_day(self, engine, make_card):
        assert engine.calculate_optimal_interval(make_card(stability=0.1), 0.9) == 1


class TestApplyResponse:
    def test_counters_and_schedule(self, engine, make_card, make_response, now):
        card = make_card(stability=5.0, last_reviewed=now - timedelta(days=4))
        updated, update = engine.apply_response(card, make_response(Rating.AGAIN))

        assert updated.review_count == 1
        assert updated.lapse_count == 1
        assert updated.last_reviewed == now
        assert updated.difficulty == update.difficulty
        assert updated.next_review == now + timedelta(days=updated.optimal_interval)
        assert updated.interval_days == updated.optimal_interval
        assert len(updated.retrievability_history) == 1

    def test_history_window(self, engine, make_card, make_response):
        history = tuple(make_response(Rating.HARD) for _ in range(10))
        response = make_response(Rating.EASY)
        updated, _ = engine.apply_response(make_card(performance_history=history), response)

        assert len(updated.performance_history) == 10
        assert updated.performance_history[-1] is response

    def test_confidence_level_from_recent_success(self, engine, make_card, make_response):
        card = make_card(performance_history=(make_response(), make_response()))
        updated, _ = engine.apply_response(card, make_response(Rating.GOOD))
        assert updated.confidence_level == ConfidenceLevel.OPTIMAL

        failing = make_card(
            performance_history=(make_response(Rating.AGAIN), make_response(Rating.AGAIN))
        )
        updated, _ = engine.apply_response(failing, make_response(Rating.AGAIN))
        assert updated.confidence_level == ConfidenceLevel.STRUGGLING

    def test_running_average_response_time(self, engine, make_card, make_response):
        card = make_card(review_count=3, average_response_time=4000.0)
        updated, _ = engine.apply_response(card, make_response(response_time=8000))

        assert updated.average_response_time == pytest.approx(5000.0)

    def test_load_index_moves_toward_signal(self, engine, make_card, make_response):
        card = make_card(cognitive_load_index=0.0)
        updated, _ = engine.apply_response(card, make_response(Rating.AGAIN, response_time=30000))

        assert updated.cognitive_load_index == pytest.approx(0.2)

    def test_stability_trend_recorded(self, engine, make_card, make_response, now):
        card = make_card(stability=2.0, last_reviewed=now - timedelta(days=3))
        updated, _ = engine.apply_response(card, make_response(Rating.GOOD))

        assert updated.stability_trend == StabilityTrend.INCREASING
