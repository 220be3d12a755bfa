"""
Pytest Configuration and Shared Fixtures

Every test gets its own SQLite database file, a controllable clock and
queue/tracker components wired to both.
"""

import pytest
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Dict

from src.database import (
    create_db_engine,
    create_session_factory,
    init_db,
    session_scope,
    MonetizationMetric,
    OpportunityType,
    ActionType,
)
from src.monetization import ActionQueue, ImpactTracker
from src.utils.config import Settings


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now

    def set(self, now: datetime) -> datetime:
        self.now = now
        return self.now


# ============================================================================
# Store
# ============================================================================

@pytest.fixture
def engine(tmp_path):
    """Fresh SQLite database per test."""
    engine = create_db_engine(f"sqlite:///{tmp_path / 'monetization_test.db'}")
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture
def settings() -> Settings:
    """Defaults only; ignores any local .env file."""
    return Settings(_env_file=None)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2025, 1, 1))


# ============================================================================
# Components
# ============================================================================

@pytest.fixture
def queue(session_factory, clock, settings) -> ActionQueue:
    return ActionQueue(session_factory, clock=clock, settings=settings)


@pytest.fixture
def tracker(session_factory, clock, settings) -> ImpactTracker:
    return ImpactTracker(session_factory, clock=clock, settings=settings)


# ============================================================================
# Data Builders
# ============================================================================

def opportunity_payload(**overrides) -> Dict[str, Any]:
    """Detector payload for an affiliate link opportunity."""
    payload = {
        "opportunity_type": OpportunityType.ADD_AFFILIATE_LINK.value,
        "title": "Add affiliate link to mod page",
        "description": "Mod page has high traffic and no affiliate link.",
        "priority": 5,
        "confidence": Decimal("0.6"),
        "page_url": "/mods/x",
        "mod_id": "mod-x",
        "category": "tools",
        "estimated_revenue_impact": Decimal("100"),
        "actions": [
            {
                "action_type": ActionType.ADD_AFFILIATE_LINK.value,
                "action_data": {"link": "https://shop.example.com/x"},
            },
        ],
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def seed_metrics(session_factory):
    """Insert one metrics row per day for a page."""

    def _seed(page_url: str, start: datetime, days: int, **values):
        with session_scope(session_factory) as db:
            for offset in range(days):
                db.add(
                    MonetizationMetric(
                        page_url=page_url,
                        metric_date=start + timedelta(days=offset),
                        **values,
                    )
                )

    return _seed


@pytest.fixture
def executed_action(queue, clock):
    """Create, approve and execute a single-action opportunity at the current clock."""

    def _execute(**overrides):
        opportunity_id = queue.create_opportunity(opportunity_payload(**overrides))
        queue.approve_opportunity(opportunity_id, "editor@example.com")
        action_id = queue.get_opportunity(opportunity_id).actions[0].id
        queue.mark_action_executed(action_id)
        return action_id

    return _execute
