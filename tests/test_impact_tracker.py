"""
Tests for the impact tracker.

These tests verify:
- Tracking start (eligibility, windows, baseline, estimate snapshot)
- The measurement sweep (complete vs inconclusive, verified impact write-back)
- Failure isolation between measurements in one sweep
- Summaries and the recent-measurements feed
"""

from datetime import datetime
from decimal import Decimal
from uuid import uuid4

import pytest

from conftest import opportunity_payload
from src.database import (
    session_scope,
    ImpactMeasurement,
    MonetizationAction,
    MeasurementStatus,
)
from src.monetization import (
    ImpactTracker,
    MeasurementConfig,
    PageMetricsSource,
)


class FlakyMetrics:
    """Metrics source that fails for selected pages."""

    def __init__(self, inner: PageMetricsSource):
        self.inner = inner
        self.failing = set()

    def average(self, page_url, field, start, end):
        if page_url in self.failing:
            raise RuntimeError(f"warehouse timeout for {page_url}")
        return self.inner.average(page_url, field, start, end)


def _measurement(session_factory, measurement_id) -> ImpactMeasurement:
    with session_scope(session_factory) as db:
        return db.get(ImpactMeasurement, measurement_id)


def _action(session_factory, action_id) -> MonetizationAction:
    with session_scope(session_factory) as db:
        return db.get(MonetizationAction, action_id)


# =============================================================================
# START TRACKING
# =============================================================================

class TestStartTracking:
    """Test measurement creation for executed actions."""

    def test_windows_for_affiliate_link(self, tracker, session_factory, executed_action):
        """Executed 2025-01-01 with 14/14 days -> baseline Dec 18 to Jan 1, measured to Jan 15."""
        action_id = executed_action()

        measurement_id = tracker.start_tracking(action_id)

        measurement = _measurement(session_factory, measurement_id)
        assert measurement.status == MeasurementStatus.PENDING
        assert measurement.measurement_type == "affiliate_clicks"
        assert measurement.measurement_window == 14
        assert measurement.start_date == datetime(2025, 1, 1)
        assert measurement.end_date == datetime(2025, 1, 15)
        assert measurement.baseline_period_start == datetime(2024, 12, 18)
        assert measurement.baseline_period_end == datetime(2025, 1, 1)

    def test_baseline_is_average_over_baseline_period(
        self, tracker, session_factory, executed_action, seed_metrics
    ):
        seed_metrics("/mods/x", datetime(2024, 12, 18), 14, affiliate_clicks=10)
        # Outside the baseline window, must be ignored
        seed_metrics("/mods/x", datetime(2024, 12, 1), 5, affiliate_clicks=1000)
        seed_metrics("/mods/x", datetime(2025, 1, 1), 3, affiliate_clicks=1000)
        action_id = executed_action()

        measurement = _measurement(session_factory, tracker.start_tracking(action_id))

        assert measurement.baseline_value == Decimal("10")

    def test_estimate_snapshot_and_attribution(self, tracker, session_factory, executed_action):
        action_id = executed_action(estimated_revenue_impact=Decimal("250"))

        measurement = _measurement(session_factory, tracker.start_tracking(action_id))

        assert measurement.estimated_impact == Decimal("250")
        assert measurement.attribution_confidence == Decimal("0.7")

    def test_missing_estimate_is_zero(self, tracker, session_factory, executed_action):
        action_id = executed_action(estimated_revenue_impact=None)

        measurement = _measurement(session_factory, tracker.start_tracking(action_id))

        assert measurement.estimated_impact == Decimal("0")

    @pytest.mark.parametrize("action_type,measurement_type,window", [
        ("UPDATE_META_DESCRIPTION", "traffic", 21),
        ("ADD_TO_COLLECTION", "pageviews", 7),
        ("UPDATE_AD_PLACEMENT", "rpm", 14),
        ("EXPAND_CONTENT", "revenue", 14),
    ])
    def test_config_per_action_type(
        self, tracker, session_factory, executed_action, action_type, measurement_type, window
    ):
        action_id = executed_action(actions=[{"action_type": action_type, "action_data": {}}])

        measurement = _measurement(session_factory, tracker.start_tracking(action_id))

        assert measurement.measurement_type == measurement_type
        assert measurement.measurement_window == window

    def test_custom_config(self, session_factory, clock, settings, executed_action):
        tracker = ImpactTracker(
            session_factory,
            clock=clock,
            settings=settings,
            config={"DEFAULT": MeasurementConfig("pageviews", 3, 2)},
        )
        action_id = executed_action()

        measurement = _measurement(session_factory, tracker.start_tracking(action_id))

        assert measurement.measurement_type == "pageviews"
        assert measurement.end_date == datetime(2025, 1, 4)
        assert measurement.baseline_period_start == datetime(2024, 12, 30)

    def test_not_executed_returns_none(self, queue, tracker):
        opportunity_id = queue.create_opportunity(opportunity_payload())
        queue.approve_opportunity(opportunity_id, "editor")
        action_id = queue.get_opportunity(opportunity_id).actions[0].id

        assert tracker.start_tracking(action_id) is None

    def test_unknown_action_returns_none(self, tracker):
        assert tracker.start_tracking(uuid4()) is None
        assert tracker.start_tracking("not-a-uuid") is None

    def test_already_tracked_returns_existing(self, tracker, executed_action):
        action_id = executed_action()

        first = tracker.start_tracking(action_id)
        second = tracker.start_tracking(action_id)

        assert first == second
        assert tracker.get_impact_summary().total_measurements == 1


# =============================================================================
# SWEEP
# =============================================================================

class TestProcessPendingMeasurements:
    """Test the periodic measurement sweep."""

    def test_not_due_yet(self, tracker, clock, executed_action):
        tracker.start_tracking(executed_action())
        clock.set(datetime(2025, 1, 14, 23, 59))

        assert tracker.process_pending_measurements() == 0

    def test_complete_measurement(
        self, tracker, clock, session_factory, executed_action, seed_metrics
    ):
        """Baseline 10/day, measured 20/day over 14 days against a $100 estimate."""
        seed_metrics("/mods/x", datetime(2024, 12, 18), 14, affiliate_clicks=10)
        seed_metrics("/mods/x", datetime(2025, 1, 1), 14, affiliate_clicks=20)
        action_id = executed_action(estimated_revenue_impact=Decimal("100"))
        measurement_id = tracker.start_tracking(action_id)
        clock.set(datetime(2025, 1, 15))

        assert tracker.process_pending_measurements() == 1

        measurement = _measurement(session_factory, measurement_id)
        monthly = 10 / 14 * 30
        assert measurement.status == MeasurementStatus.COMPLETE
        assert measurement.completed_at == datetime(2025, 1, 15)
        assert float(measurement.measured_value) == pytest.approx(20)
        assert float(measurement.absolute_impact) == pytest.approx(10)
        assert float(measurement.percent_impact) == pytest.approx(100)
        assert float(measurement.revenue_impact) == pytest.approx(monthly, abs=1e-3)
        assert float(measurement.prediction_error) == pytest.approx((monthly - 100) / 100, abs=1e-3)
        assert float(measurement.prediction_accuracy) == pytest.approx(monthly / 100, abs=1e-3)

        action = _action(session_factory, action_id)
        assert float(action.verified_impact) == pytest.approx(monthly, abs=0.01)
        assert action.verified_at == datetime(2025, 1, 15)

    def test_zero_measured_is_inconclusive(
        self, tracker, clock, session_factory, executed_action, seed_metrics
    ):
        """Baseline 10, measured 0 -> inconclusive, not a -100% result."""
        seed_metrics("/mods/x", datetime(2024, 12, 18), 14, affiliate_clicks=10)
        action_id = executed_action()
        measurement_id = tracker.start_tracking(action_id)
        clock.set(datetime(2025, 1, 15))

        assert tracker.process_pending_measurements() == 1

        measurement = _measurement(session_factory, measurement_id)
        assert measurement.status == MeasurementStatus.INCONCLUSIVE
        assert measurement.completed_at == datetime(2025, 1, 15)
        assert _action(session_factory, action_id).verified_impact is None

    def test_terminal_rows_not_reprocessed(self, tracker, clock, executed_action, seed_metrics):
        seed_metrics("/mods/x", datetime(2025, 1, 1), 14, affiliate_clicks=5)
        tracker.start_tracking(executed_action())
        clock.set(datetime(2025, 2, 1))

        assert tracker.process_pending_measurements() == 1
        assert tracker.process_pending_measurements() == 0

    def test_one_failure_does_not_abort_the_sweep(
        self, session_factory, clock, settings, executed_action, seed_metrics
    ):
        metrics = FlakyMetrics(PageMetricsSource(session_factory))
        tracker = ImpactTracker(session_factory, metrics=metrics, clock=clock, settings=settings)
        seed_metrics("/mods/good", datetime(2025, 1, 1), 14, affiliate_clicks=5)
        seed_metrics("/mods/bad", datetime(2025, 1, 1), 14, affiliate_clicks=5)
        good_id = tracker.start_tracking(executed_action(page_url="/mods/good"))
        bad_id = tracker.start_tracking(executed_action(page_url="/mods/bad"))

        metrics.failing.add("/mods/bad")
        clock.set(datetime(2025, 1, 20))

        assert tracker.process_pending_measurements() == 1

        good = _measurement(session_factory, good_id)
        bad = _measurement(session_factory, bad_id)
        assert good.status == MeasurementStatus.COMPLETE
        assert bad.status == MeasurementStatus.INCONCLUSIVE
        assert bad.attribution_notes == "Error: warehouse timeout for /mods/bad"
        assert bad.completed_at == datetime(2025, 1, 20)

        # Failed rows report no score, scored rows do
        recent = {summary.id: summary for summary in tracker.get_recent_measurements()}
        assert recent[bad_id].status == MeasurementStatus.INCONCLUSIVE.value
        assert recent[bad_id].measured_impact is None
        assert recent[bad_id].prediction_accuracy is None
        assert recent[good_id].measured_impact is not None
        assert recent[good_id].prediction_accuracy is not None

        # Failed rows are terminal too
        metrics.failing.clear()
        assert tracker.process_pending_measurements() == 0

    def test_page_without_url_is_inconclusive(self, tracker, clock, session_factory, executed_action):
        measurement_id = tracker.start_tracking(executed_action(page_url=None))
        clock.set(datetime(2025, 2, 1))

        tracker.process_pending_measurements()

        assert _measurement(session_factory, measurement_id).status == MeasurementStatus.INCONCLUSIVE


# =============================================================================
# READS
# =============================================================================

class TestSummaries:
    """Test dashboard reads."""

    def test_empty_store(self, tracker):
        summary = tracker.get_impact_summary()

        assert summary.total_measurements == 0
        assert summary.completed_measurements == 0
        assert summary.avg_prediction_accuracy == Decimal("0")
        assert summary.total_verified_impact == Decimal("0")
        assert summary.by_action_type == {}
        assert tracker.get_recent_measurements() == []

    def test_summary_counts_and_breakdown(self, tracker, clock, executed_action, seed_metrics):
        seed_metrics("/mods/a", datetime(2025, 1, 1), 14, affiliate_clicks=7)
        tracker.start_tracking(executed_action(page_url="/mods/a"))
        tracker.start_tracking(executed_action(page_url="/mods/empty"))
        clock.set(datetime(2025, 1, 15))
        tracker.process_pending_measurements()
        clock.advance(days=1)
        tracker.start_tracking(executed_action(page_url="/mods/later"))

        summary = tracker.get_impact_summary()

        assert summary.total_measurements == 3
        assert summary.completed_measurements == 1
        assert summary.inconclusive_measurements == 1
        assert summary.pending_measurements == 1
        assert float(summary.total_verified_impact) == pytest.approx(15, abs=1e-3)
        rollup = summary.by_action_type["ADD_AFFILIATE_LINK"]
        assert rollup.count == 1
        assert float(rollup.total_impact) == pytest.approx(15, abs=1e-3)
        assert 0 <= summary.avg_prediction_accuracy <= 1

        data = summary.to_dict()
        assert data["by_action_type"]["ADD_AFFILIATE_LINK"]["count"] == 1

    def test_recent_measurements_newest_first(self, tracker, clock, executed_action):
        first = tracker.start_tracking(executed_action(page_url="/mods/1"))
        clock.advance(hours=1)
        second = tracker.start_tracking(executed_action(page_url="/mods/2"))

        recent = tracker.get_recent_measurements()

        assert [m.id for m in recent] == [second, first]
        assert recent[0].status == "pending"
        assert recent[0].measured_impact is None
        assert recent[0].prediction_accuracy is None
        assert recent[0].to_dict()["completed_at"] is None

    def test_recent_measurements_limit(self, tracker, clock, executed_action):
        for i in range(3):
            tracker.start_tracking(executed_action(page_url=f"/mods/{i}"))
            clock.advance(minutes=1)

        assert len(tracker.get_recent_measurements(limit=2)) == 2
