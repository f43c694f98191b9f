"""
FSRS Parameter Optimizer - personal weight fitting.

Fits a learner's 21-weight FSRS vector to their review history:
1. Group reviews by card and order them in time
2. For every review after a card's first, build a training point
   (elapsed days, the card's earlier reviews, whether it was recalled)
3. Predict recall as exp(-elapsed / S), replaying the earlier reviews through
   the engine's FSRS stability update with the candidate weights
4. Minimise RMSE by central-difference gradient descent with momentum and
   L2 regularisation, keeping each weight inside its bounds

Based on research from:
- Ye, Su & Cao (FSRS optimizer, 2022)
- Polyak (heavy-ball momentum)
"""

from __future__ import annotations

import math
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Optional, Sequence

import numpy as np
from loguru import logger

from config import Settings, get_settings
from uams.core.exceptions import InsufficientDataError, ParameterValidationError
from uams.core.models import (
    DEFAULT_FSRS_PARAMETERS,
    FSRS_PARAMETER_COUNT,
    EnhancedResponseLog,
    Rating,
)
from uams.study.dsr_engine import RATING_DIFFICULTY, SECONDS_PER_DAY, fsrs_base_stability


# Per-index weight bounds; unlisted indices use DEFAULT_BOUNDS
PARAMETER_BOUNDS = {
    0: (0.1, 2.0),    # Initial stability, new cards
    1: (0.1, 2.0),    # Initial stability, learning cards
    2: (1.0, 5.0),    # Initial difficulty
    3: (2.0, 10.0),   # Difficulty decay
}
DEFAULT_BOUNDS = (0.01, 10.0)

VALID_RANGE = (0.001, 100.0)

# Replayed stability is capped at a century to keep exp() finite
MAX_REPLAY_STABILITY = 36500.0


@dataclass
class OptimizationConfig:
    max_iterations: int = 1000
    learning_rate: float = 0.001
    tolerance: float = 1e-6
    regularization: float = 0.01
    min_data_points: int = 50
    momentum_decay: float = 0.9
    gradient_epsilon: float = 1e-5

    @classmethod
    def from_settings(cls, settings: Settings) -> "OptimizationConfig":
        return cls(
            max_iterations=settings.optimizer_max_iterations,
            min_data_points=settings.optimizer_min_data_points,
        )


@dataclass
class OptimizationResult:
    parameters: tuple[float, ...]
    cost: float                         # RMSE of recall prediction
    iterations: int
    converged: bool
    improvement_percentage: float       # vs the default weights

    def to_dict(self) -> dict:
        return {
            "parameters": list(self.parameters),
            "cost": self.cost,
            "iterations": self.iterations,
            "converged": self.converged,
            "improvement_percentage": self.improvement_percentage,
        }


@dataclass
class TrainingPoint:
    """One observed recall attempt with the reviews that preceded it."""
    card_id: str
    interval_days: float
    prior_reviews: tuple[tuple[Rating, float], ...] = field(default_factory=tuple)  # (rating, days since previous)
    success: bool = True


def bounds_for(index: int) -> tuple[float, float]:
    return PARAMETER_BOUNDS.get(index, DEFAULT_BOUNDS)


def parameter_bounds() -> tuple[np.ndarray, np.ndarray]:
    lower = np.array([bounds_for(i)[0] for i in range(FSRS_PARAMETER_COUNT)])
    upper = np.array([bounds_for(i)[1] for i in range(FSRS_PARAMETER_COUNT)])
    return lower, upper


def replay_stability(prior_reviews: Sequence[tuple[Rating, float]], weights: Sequence[float]) -> float:
    """Stability after replaying ``prior_reviews`` from a new card."""
    stability = 1.0
    difficulty = 5.0
    for rating, elapsed in prior_reviews:
        retention = math.exp(-elapsed / stability)
        stability = fsrs_base_stability(stability, difficulty, retention, rating, weights)
        stability = min(MAX_REPLAY_STABILITY, max(0.1, stability))
        difficulty = difficulty * 0.7 + RATING_DIFFICULTY[rating] * 0.3
    return stability


def predict_recall(point: TrainingPoint, weights: Sequence[float]) -> float:
    stability = replay_stability(point.prior_reviews, weights)
    return min(0.99, max(0.01, math.exp(-point.interval_days / stability)))


def prepare_training_data(review_history: Sequence[EnhancedResponseLog]) -> list[TrainingPoint]:
    """Training points from reviews that carry a card id."""
    by_card: dict[str, list[EnhancedResponseLog]] = defaultdict(list)
    for review in review_history:
        if review.card_id is not None:
            by_card[review.card_id].append(review)

    points = []
    for card_id, reviews in by_card.items():
        reviews.sort(key=lambda r: r.timestamp)
        prior: list[tuple[Rating, float]] = []
        previous = None
        for review in reviews:
            elapsed = 0.0
            if previous is not None:
                elapsed = (review.timestamp - previous.timestamp).total_seconds() / SECONDS_PER_DAY
                if elapsed > 0:
                    points.append(
                        TrainingPoint(
                            card_id=card_id,
                            interval_days=elapsed,
                            prior_reviews=tuple(prior),
                            success=review.rating != Rating.AGAIN,
                        )
                    )
            prior.append((review.rating, elapsed))
            previous = review

    return points


class FSRSParameterOptimizer:
    """
    Gradient-descent fitter for personal FSRS weights.

    Usage:
        optimizer = FSRSParameterOptimizer()
        result = optimizer.optimize_user_parameters("user-1", history)
        valid, errors = optimizer.validate_parameters(result.parameters)
    """

    def __init__(self, config: OptimizationConfig | None = None):
        self.config = config or OptimizationConfig.from_settings(get_settings())

    def evaluate_parameter_performance(
        self, weights: Sequence[float], training_data: Sequence[TrainingPoint]
    ) -> float:
        """RMSE of recall prediction over ``training_data``."""
        predicted = np.array([predict_recall(p, weights) for p in training_data])
        actual = np.array([1.0 if p.success else 0.0 for p in training_data])
        return float(np.sqrt(np.mean((predicted - actual) ** 2)))

    def _gradients(
        self, weights: np.ndarray, training_data: Sequence[TrainingPoint], eps: float
    ) -> np.ndarray:
        gradients = np.zeros_like(weights)
        for i in range(len(weights)):
            plus = weights.copy()
            minus = weights.copy()
            plus[i] += eps
            minus[i] -= eps
            gradients[i] = (
                self.evaluate_parameter_performance(plus, training_data)
                - self.evaluate_parameter_performance(minus, training_data)
            ) / (2 * eps)
        return gradients

    def optimize_user_parameters(
        self,
        user_id: str,
        review_history: Sequence[EnhancedResponseLog],
        config: Optional[OptimizationConfig] = None,
    ) -> OptimizationResult:
        """
        Fit personal weights to ``review_history``.

        Raises:
            InsufficientDataError: Fewer reviews than ``min_data_points``, or
                no card was reviewed twice
        """
        cfg = config or self.config
        if len(review_history) < cfg.min_data_points:
            raise InsufficientDataError(len(review_history), cfg.min_data_points)

        training_data = prepare_training_data(review_history)
        if not training_data:
            raise InsufficientDataError(
                len(review_history),
                cfg.min_data_points,
                f"Insufficient data for optimization: none of the {len(review_history)} "
                "reviews repeats a card, so no review intervals can be measured",
            )

        logger.info(
            f"Optimizing FSRS parameters for {user_id}: "
            f"{len(review_history)} reviews, {len(training_data)} training points"
        )

        lower, upper = parameter_bounds()
        weights = np.clip(np.array(DEFAULT_FSRS_PARAMETERS, dtype=float), lower, upper)
        velocity = np.zeros_like(weights)

        baseline = self.evaluate_parameter_performance(DEFAULT_FSRS_PARAMETERS, training_data)
        best_cost = self.evaluate_parameter_performance(weights, training_data)
        best_weights = weights.copy()
        previous_cost = best_cost
        converged = False

        iteration = 0
        for iteration in range(1, cfg.max_iterations + 1):
            gradients = self._gradients(weights, training_data, cfg.gradient_epsilon)
            velocity = cfg.momentum_decay * velocity - cfg.learning_rate * gradients
            weights = weights + velocity - cfg.learning_rate * cfg.regularization * weights
            weights = np.clip(weights, lower, upper)

            cost = self.evaluate_parameter_performance(weights, training_data)
            if cost < best_cost:
                best_cost = cost
                best_weights = weights.copy()

            if abs(previous_cost - cost) < cfg.tolerance:
                converged = True
                break
            previous_cost = cost

            if iteration % 100 == 0:
                logger.debug(f"Iteration {iteration}: cost={cost:.6f}")

        improvement = (baseline - best_cost) / baseline * 100 if baseline > 0 else 0.0

        logger.info(
            f"Optimization finished for {user_id}: {iteration} iterations, "
            f"cost={best_cost:.6f}, improvement={improvement:.2f}%"
        )
        parameters = tuple(float(w) for w in best_weights)
        self.require_valid(parameters)
        return OptimizationResult(
            parameters=parameters,
            cost=best_cost,
            iterations=iteration,
            converged=converged,
            improvement_percentage=improvement,
        )

    @staticmethod
    def validate_parameters(weights: Sequence[float]) -> tuple[bool, list[str]]:
        """Check a weight vector: 21 finite values within [0.001, 100]."""
        errors = []
        if len(weights) != FSRS_PARAMETER_COUNT:
            errors.append(
                f"Invalid parameter count: expected {FSRS_PARAMETER_COUNT}, got {len(weights)}"
            )

        low, high = VALID_RANGE
        for i, value in enumerate(weights):
            if not math.isfinite(value):
                errors.append(f"Parameter {i} is not finite: {value}")
            elif value < low or value > high:
                errors.append(f"Parameter {i} is out of reasonable bounds: {value}")

        return not errors, errors

    @classmethod
    def require_valid(cls, weights: Sequence[float]) -> None:
        """
        Raises:
            ParameterValidationError: If ``weights`` fails validate_parameters
        """
        valid, errors = cls.validate_parameters(weights)
        if not valid:
            raise ParameterValidationError(errors)
