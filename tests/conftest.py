"""
Pytest Configuration and Fixtures.

This file configures pytest and provides shared fixtures for all tests.
"""
import pytest
import sys
from datetime import datetime, timedelta
from pathlib import Path

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from uams.core.models import (  # noqa: E402
    ContextualFactors,
    EnhancedResponseLog,
    Rating,
    UnifiedCard,
    UnifiedSessionState,
)


def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests (full study session)")
    config.addinivalue_line("markers", "smoke: Smoke tests for CLI commands")
    config.addinivalue_line("markers", "slow: Slow tests")


def pytest_collection_modifyitems(config, items):
    """Automatically mark tests based on their location."""
    for item in items:
        # Mark based on test file location
        if "unit" in str(item.fspath):
            item.add_marker(pytest.mark.unit)
        elif "integration" in str(item.fspath):
            item.add_marker(pytest.mark.integration)
        elif "smoke" in str(item.fspath):
            item.add_marker(pytest.mark.smoke)


@pytest.fixture(scope="session")
def project_root():
    """Return the project root directory."""
    return PROJECT_ROOT


@pytest.fixture
def now():
    """A fixed mid-day instant (no time-of-day difficulty adjustment)."""
    return datetime(2024, 3, 4, 11, 0)


@pytest.fixture
def make_card():
    """Factory for cards with sensible defaults."""

    def _make(card_id: str = "card-1", **overrides) -> UnifiedCard:
        fields = {
            "id": card_id,
            "deck_id": "deck-1",
            "front_content": f"Question {card_id}",
            "back_content": f"Answer {card_id}",
        }
        fields.update(overrides)
        return UnifiedCard(**fields)

    return _make


@pytest.fixture
def make_response(now):
    """Factory for responses in a neutral context."""

    def _make(
        rating: Rating = Rating.GOOD,
        response_time: int = 5000,
        timestamp: datetime | None = None,
        fatigue: float = 0.0,
        load: float = 0.5,
        environment=None,
        card_id: str | None = None,
    ) -> EnhancedResponseLog:
        at = timestamp or now
        return EnhancedResponseLog(
            timestamp=at,
            rating=rating,
            response_time=response_time,
            card_id=card_id,
            contextual_factors=ContextualFactors(
                time_of_day=at,
                session_fatigue_index=fatigue,
                cognitive_load_at_time=load,
                environmental_factors=environment,
            ),
        )

    return _make


@pytest.fixture
def make_session(now):
    """Factory for session states started ten minutes before ``now``."""

    def _make(**overrides) -> UnifiedSessionState:
        fields = {
            "user_id": "user-1",
            "session_id": "session-1",
            "session_start_time": now - timedelta(minutes=10),
        }
        fields.update(overrides)
        return UnifiedSessionState(**fields)

    return _make
