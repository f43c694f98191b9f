"""
Unit tests for personal FSRS weight fitting.
"""
import math
from datetime import timedelta

import pytest

from uams.core.exceptions import InsufficientDataError, ParameterValidationError
from uams.core.models import DEFAULT_FSRS_PARAMETERS, Rating
from uams.study.parameter_optimizer import (
    FSRSParameterOptimizer,
    OptimizationConfig,
    TrainingPoint,
    bounds_for,
    predict_recall,
    prepare_training_data,
    replay_stability,
)


@pytest.fixture
def optimizer():
    return FSRSParameterOptimizer(OptimizationConfig(max_iterations=3, min_data_points=10))


@pytest.fixture
def review_history(make_response, now):
    """Five cards, six reviews each, spaced further apart every time."""
    pattern = [Rating.GOOD, Rating.GOOD, Rating.AGAIN, Rating.HARD, Rating.GOOD, Rating.EASY]
    history = []
    for card in range(5):
        at = now
        for step, rating in enumerate(pattern):
            at = at + timedelta(days=step + card + 1)
            history.append(make_response(rating, timestamp=at, card_id=f"card-{card}"))
    return history


class TestTrainingData:
    def test_one_point_per_later_review(self, review_history):
        points = prepare_training_data(review_history)

        assert len(points) == 25
        assert all(p.interval_days > 0 for p in points)
        assert points[0].prior_reviews[0] == (Rating.GOOD, 0.0)

    def test_reviews_without_card_id_skipped(self, make_response, now):
        history = [make_response(timestamp=now + timedelta(days=d)) for d in range(3)]
        assert prepare_training_data(history) == []

    def test_same_instant_reviews_produce_no_point(self, make_response, now):
        history = [make_response(card_id="a"), make_response(Rating.AGAIN, card_id="a")]
        assert prepare_training_data(history) == []

    def test_failure_recorded(self, make_response, now):
        history = [
            make_response(card_id="a"),
            make_response(Rating.AGAIN, timestamp=now + timedelta(days=2), card_id="a"),
        ]
        (point,) = prepare_training_data(history)
        assert point.success is False
        assert point.interval_days == pytest.approx(2.0)


class TestPrediction:
    def test_new_card_stability(self):
        assert replay_stability((), DEFAULT_FSRS_PARAMETERS) == 1.0

    def test_successful_reviews_grow_stability(self):
        prior = ((Rating.GOOD, 0.0), (Rating.GOOD, 3.0))
        assert replay_stability(prior, DEFAULT_FSRS_PARAMETERS) > 1.0

    def test_recall_clamped(self):
        far = TrainingPoint(card_id="a", interval_days=400.0)
        near = TrainingPoint(card_id="a", interval_days=0.001)

        assert predict_recall(far, DEFAULT_FSRS_PARAMETERS) == 0.01
        assert predict_recall(near, DEFAULT_FSRS_PARAMETERS) == 0.99

    def test_cost_is_rmse_of_clamped_predictions(self, optimizer):
        points = [TrainingPoint(card_id="a", interval_days=0.001, success=True)]
        assert optimizer.evaluate_parameter_performance(DEFAULT_FSRS_PARAMETERS, points) == pytest.approx(0.01)


class TestOptimization:
    def test_insufficient_reviews(self, optimizer, make_response):
        with pytest.raises(InsufficientDataError) as exc:
            optimizer.optimize_user_parameters("user-1", [make_response(card_id="a")] * 5)
        assert exc.value.available == 5
        assert exc.value.required == 10

    def test_no_repeated_cards(self, optimizer, make_response):
        history = [make_response(card_id=f"c{i}") for i in range(12)]
        with pytest.raises(InsufficientDataError) as exc:
            optimizer.optimize_user_parameters("user-1", history)

        assert "none of the 12 reviews repeats a card" in str(exc.value)
        assert "0 data points" not in str(exc.value)
        assert exc.value.available == 12

    def test_fitted_weights_within_bounds(self, optimizer, review_history):
        start = optimizer.evaluate_parameter_performance(DEFAULT_FSRS_PARAMETERS, prepare_training_data(review_history))
        result = optimizer.optimize_user_parameters("user-1", review_history)

        assert len(result.parameters) == 21
        for i, value in enumerate(result.parameters):
            low, high = bounds_for(i)
            assert low <= value <= high
        assert 1 <= result.iterations <= 3
        assert 0.0 <= result.cost <= 1.0
        assert result.improvement_percentage == pytest.approx((start - result.cost) / start * 100)
        assert result.to_dict()["iterations"] == result.iterations


class TestValidation:
    def test_defaults_valid(self):
        assert FSRSParameterOptimizer.validate_parameters(DEFAULT_FSRS_PARAMETERS) == (True, [])

    def test_wrong_length(self):
        valid, errors = FSRSParameterOptimizer.validate_parameters(DEFAULT_FSRS_PARAMETERS[:20])
        assert not valid
        assert "expected 21, got 20" in errors[0]

    def test_non_finite_and_out_of_range(self):
        weights = list(DEFAULT_FSRS_PARAMETERS)
        weights[3] = math.nan
        weights[7] = 250.0
        valid, errors = FSRSParameterOptimizer.validate_parameters(weights)

        assert not valid
        assert len(errors) == 2

    def test_require_valid_raises(self):
        with pytest.raises(ParameterValidationError) as exc:
            FSRSParameterOptimizer.require_valid([0.0] * 21)
        assert len(exc.value.errors) == 21
