"""
Pytest configuration and shared fixtures for FinPersona tests.

This file is automatically loaded by pytest and provides:
    - In-memory SQLite session fixture
    - Sample transaction fixtures
    - Common test utilities
"""

import pytest
import asyncio
import sys
from pathlib import Path
from datetime import datetime, timedelta

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from database import Base  # noqa: E402
import models  # noqa: E402,F401
from services.observability import metrics  # noqa: E402


# Fixed reference instant: a Wednesday
NOW = datetime(2025, 3, 12, 12, 0, 0)


# =============================================================================
# Database Fixtures
# =============================================================================

@pytest.fixture
def db_session():
    """In-memory SQLite session with all tables created."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    TestingSession = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = TestingSession()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture(autouse=True)
def reset_metrics():
    """Metrics are process-global; start every test from zero."""
    metrics.reset()
    yield


# =============================================================================
# Transaction Fixtures
# =============================================================================

class MockTransaction:
    """Mock transaction object for testing."""

    def __init__(self, id, amount, category, occurred_at, description="", kind="expense"):
        self.id = id
        self.amount = amount
        self.category = category
        self.occurred_at = occurred_at
        self.description = description
        self.kind = kind


@pytest.fixture
def food_history():
    """
    Four weeks of Food spending at 1000 per week, none in the current week.

    Gives weekly_average 1000, standard_deviation 0, current_week_spend 0.
    """
    return [
        MockTransaction(i + 1, 1000, "Food", NOW - timedelta(days=8 + 7 * i), "Groceries")
        for i in range(4)
    ]


@pytest.fixture
def mixed_history():
    """Two categories with uneven amounts across several weeks."""
    return [
        MockTransaction(1, 200, "Food", NOW - timedelta(days=20), "Lunch"),
        MockTransaction(2, 400, "Food", NOW - timedelta(days=10), "Dinner"),
        MockTransaction(3, 600, "Food", NOW - timedelta(days=2), "Groceries"),
        MockTransaction(4, 1500, "Transport", NOW - timedelta(days=9), "Cab"),
        MockTransaction(5, 500, "Transport", NOW - timedelta(days=40), "Metro card"),
    ]


@pytest.fixture
def fake_ai_service():
    """Factory for a configured AI service double returning a fixed text."""
    def _make(response=None, error=None, delay=0.0):
        return FakeAIService(response=response, error=error, delay=delay)
    return _make


class FakeAIService:
    """Configured AI service double with controllable output."""

    is_configured = True

    def __init__(self, response=None, error=None, delay=0.0):
        self.response = response
        self.error = error
        self.delay = delay
        self.calls = []

    async def generate(self, prompt, system=None, json_mode=False):
        self.calls.append({"prompt": prompt, "system": system, "json_mode": json_mode})
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.response


# =============================================================================
# Test Utilities
# =============================================================================

def assert_valid_severity(severity: str) -> None:
    """Assert that severity is valid."""
    assert severity in ["low", "medium", "high"], f"Invalid severity: {severity}"


def assert_valid_risk_level(risk_level: str) -> None:
    """Assert that risk level is valid."""
    assert risk_level in ["low", "medium", "high"], f"Invalid risk level: {risk_level}"
