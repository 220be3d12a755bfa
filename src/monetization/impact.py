"""
Impact Tracker

Measures the real effect of executed actions by comparing page metrics
before and after execution, and scores the original revenue prediction.

Lifecycle of a measurement:
    start_tracking()                -> pending (baseline captured)
    process_pending_measurements()  -> complete | inconclusive (terminal)

Windows (per action type):
    baseline     [executed_at - baseline_window, executed_at)
    measurement  [executed_at, executed_at + measurement_window)
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Callable, Dict, List, Optional

from sqlalchemy import select, func
from sqlalchemy.orm import sessionmaker, joinedload

from src.database.models import (
    MonetizationAction,
    ImpactMeasurement,
    ActionStatus,
    ActionType,
    MeasurementStatus,
)
from src.database.session import session_scope
from src.utils.config import Settings, get_settings
from .metrics import PageMetricsSource, metric_field_for, to_decimal
from .queue import as_uuid
from .schemas import ImpactResult, ImpactSummary, ActionTypeImpact, MeasurementSummary

logger = logging.getLogger(__name__)

DAYS_PER_MONTH = 30


# =============================================================================
# MEASUREMENT CONFIGURATION
# =============================================================================

@dataclass(frozen=True)
class MeasurementConfig:
    """What to measure for an action type and over how many days."""
    measurement_type: str
    measurement_window: int  # Days after execution
    baseline_window: int     # Days before execution


MEASUREMENT_CONFIG: Dict[str, MeasurementConfig] = {
    ActionType.ADD_AFFILIATE_LINK.value: MeasurementConfig("affiliate_clicks", 14, 14),
    ActionType.UPDATE_META_DESCRIPTION.value: MeasurementConfig("traffic", 21, 14),  # SEO changes are slow
    ActionType.ADD_TO_COLLECTION.value: MeasurementConfig("pageviews", 7, 7),
    ActionType.UPDATE_AD_PLACEMENT.value: MeasurementConfig("rpm", 14, 14),
    "DEFAULT": MeasurementConfig("revenue", 14, 14),
}


def get_measurement_config(
    action_type: str,
    config: Optional[Dict[str, MeasurementConfig]] = None,
) -> MeasurementConfig:
    """Config for an action type, falling back to DEFAULT."""
    config = config or MEASUREMENT_CONFIG
    return config.get(action_type) or config.get("DEFAULT") or MEASUREMENT_CONFIG["DEFAULT"]


# =============================================================================
# IMPACT MATH (pure)
# =============================================================================

def calculate_impact(baseline, measured) -> ImpactResult:
    """
    Absolute and percent change from baseline to measured.

    A zero baseline yields 0 percent rather than a division error.
    """
    baseline = to_decimal(baseline)
    measured = to_decimal(measured)

    absolute_impact = measured - baseline
    if baseline != 0:
        percent_impact = absolute_impact / baseline * 100
    else:
        percent_impact = Decimal("0")

    return ImpactResult(absolute_impact=absolute_impact, percent_impact=percent_impact)


def extrapolate_to_monthly(value, days: int) -> Decimal:
    """Project an impact observed over ``days`` to a 30-day figure."""
    if days <= 0:
        return Decimal("0")
    return to_decimal(value) / Decimal(days) * DAYS_PER_MONTH


def calculate_prediction_error(actual, estimated) -> Decimal:
    """Relative error of the estimate; 0 when nothing was estimated."""
    estimated = to_decimal(estimated)
    if estimated == 0:
        return Decimal("0")
    return (to_decimal(actual) - estimated) / estimated


def calculate_prediction_accuracy(prediction_error) -> Decimal:
    """1 - |error|, clamped to [0, 1]."""
    accuracy = Decimal("1") - abs(to_decimal(prediction_error))
    return max(Decimal("0"), min(Decimal("1"), accuracy))


# =============================================================================
# TRACKER
# =============================================================================

class ImpactTracker:
    """
    Tracks the verified impact of executed actions.

    Usage:
        tracker = ImpactTracker(get_session_factory())
        tracker.start_tracking(action_id)        # right after execution
        tracker.process_pending_measurements()   # hourly / daily job
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        metrics=None,
        clock: Optional[Callable[[], datetime]] = None,
        config: Optional[Dict[str, MeasurementConfig]] = None,
        settings: Optional[Settings] = None,
    ):
        self._session_factory = session_factory
        self._metrics = metrics or PageMetricsSource(session_factory)
        self._clock = clock or datetime.utcnow
        self._config = config or MEASUREMENT_CONFIG
        self._settings = settings or get_settings()

    # =========================================================================
    # START
    # =========================================================================

    def start_tracking(self, action_id):
        """
        Capture the baseline for an executed action and schedule its measurement.

        Returns:
            Measurement id, the existing one if the action is already tracked,
            or None when the action is unknown or not executed yet.
        """
        key = as_uuid(action_id)
        if key is None:
            return None

        with session_scope(self._session_factory) as db:
            action = db.execute(
                select(MonetizationAction)
                .where(MonetizationAction.id == key)
                .options(joinedload(MonetizationAction.opportunity))
            ).scalar_one_or_none()

            if action is None or action.status != ActionStatus.EXECUTED or action.executed_at is None:
                logger.debug(f"Action {action_id} not eligible for tracking yet")
                return None

            existing_id = self._existing_measurement_id(db, key)
            if existing_id is not None:
                return existing_id

            action_type = action.action_type
            executed_at = action.executed_at
            page_url = action.opportunity.page_url
            estimated_impact = to_decimal(action.opportunity.estimated_revenue_impact)

        config = get_measurement_config(action_type, self._config)
        baseline_start = executed_at - timedelta(days=config.baseline_window)
        measurement_end = executed_at + timedelta(days=config.measurement_window)

        baseline_value = self._metrics.average(
            page_url, metric_field_for(config.measurement_type), baseline_start, executed_at
        )

        now = self._clock()
        with session_scope(self._session_factory) as db:
            # Serialize with a concurrent start_tracking for the same action
            db.execute(
                select(MonetizationAction.id)
                .where(MonetizationAction.id == key)
                .with_for_update()
            )
            existing_id = self._existing_measurement_id(db, key)
            if existing_id is not None:
                return existing_id

            measurement = ImpactMeasurement(
                action_id=key,
                measurement_type=config.measurement_type,
                measurement_window=config.measurement_window,
                start_date=executed_at,
                end_date=measurement_end,
                baseline_value=baseline_value,
                baseline_period_start=baseline_start,
                baseline_period_end=executed_at,
                estimated_impact=estimated_impact,
                attribution_confidence=Decimal(str(self._settings.ATTRIBUTION_CONFIDENCE)),
                status=MeasurementStatus.PENDING,
                created_at=now,
            )
            db.add(measurement)
            db.flush()

            logger.info(
                f"Tracking action {key} ({action_type}): {config.measurement_type} "
                f"baseline={baseline_value}, due {measurement_end:%Y-%m-%d}"
            )
            return measurement.id

    def _existing_measurement_id(self, db, action_id):
        return db.execute(
            select(ImpactMeasurement.id)
            .where(ImpactMeasurement.action_id == action_id)
            .order_by(ImpactMeasurement.created_at.desc())
            .limit(1)
        ).scalar_one_or_none()

    # =========================================================================
    # SWEEP
    # =========================================================================

    def process_pending_measurements(self) -> int:
        """
        Finalize every pending measurement whose window has closed.

        Each measurement is processed in its own transaction. A failure is
        recorded on that measurement (inconclusive + note) and the sweep
        moves on.

        Returns:
            Number of measurements finalized from metric data
        """
        now = self._clock()
        with session_scope(self._session_factory) as db:
            due = db.execute(
                select(ImpactMeasurement.id)
                .where(
                    ImpactMeasurement.status == MeasurementStatus.PENDING,
                    ImpactMeasurement.end_date <= now,
                )
                .order_by(ImpactMeasurement.end_date.asc())
            ).scalars().all()

        processed = 0
        for measurement_id in due:
            try:
                if self._finalize_measurement(measurement_id, now):
                    processed += 1
            except Exception as e:
                logger.error(f"Failed to process measurement {measurement_id}: {e}")
                self._mark_failed(measurement_id, e, now)

        logger.info(f"Processed {processed} of {len(due)} due measurement(s)")
        return processed

    def _finalize_measurement(self, measurement_id, now: datetime) -> bool:
        with session_scope(self._session_factory) as db:
            measurement = db.execute(
                select(ImpactMeasurement)
                .where(ImpactMeasurement.id == measurement_id)
                .options(
                    joinedload(ImpactMeasurement.action).joinedload(MonetizationAction.opportunity)
                )
            ).scalar_one()
            if measurement.status != MeasurementStatus.PENDING:
                return False

            page_url = measurement.action.opportunity.page_url
            measurement_type = measurement.measurement_type
            start_date = measurement.start_date
            end_date = measurement.end_date
            window = measurement.measurement_window
            baseline = to_decimal(measurement.baseline_value)
            estimated = to_decimal(measurement.estimated_impact)

        measured = self._metrics.average(
            page_url, metric_field_for(measurement_type), start_date, end_date
        )

        impact = calculate_impact(baseline, measured)
        monthly_impact = extrapolate_to_monthly(impact.absolute_impact, window)
        prediction_error = calculate_prediction_error(monthly_impact, estimated)
        prediction_accuracy = calculate_prediction_accuracy(prediction_error)

        # Zero post-execution activity points at missing data, not a -100% effect
        status = MeasurementStatus.COMPLETE if measured > 0 else MeasurementStatus.INCONCLUSIVE

        with session_scope(self._session_factory) as db:
            measurement = db.execute(
                select(ImpactMeasurement)
                .where(ImpactMeasurement.id == measurement_id)
                .with_for_update()
            ).scalar_one()
            if measurement.status != MeasurementStatus.PENDING:
                # Finalized by a concurrent sweep
                return False

            measurement.measured_value = measured
            measurement.absolute_impact = impact.absolute_impact
            measurement.percent_impact = impact.percent_impact
            measurement.revenue_impact = monthly_impact
            measurement.prediction_error = prediction_error
            measurement.prediction_accuracy = prediction_accuracy
            measurement.status = status
            measurement.completed_at = now

            # Inconclusive results are not verified impact
            if status == MeasurementStatus.COMPLETE:
                action = db.get(MonetizationAction, measurement.action_id)
                action.verified_impact = monthly_impact
                action.verified_at = now

        logger.info(
            f"Measurement {measurement_id} {status.value}: baseline={baseline} "
            f"measured={measured} monthly={monthly_impact:.2f} accuracy={prediction_accuracy:.2f}"
        )
        return True

    def _mark_failed(self, measurement_id, error: Exception, now: datetime) -> None:
        with session_scope(self._session_factory) as db:
            measurement = db.execute(
                select(ImpactMeasurement)
                .where(ImpactMeasurement.id == measurement_id)
                .with_for_update()
            ).scalar_one_or_none()
            if measurement is None or measurement.status != MeasurementStatus.PENDING:
                return
            measurement.status = MeasurementStatus.INCONCLUSIVE
            measurement.attribution_notes = f"Error: {error}"
            measurement.completed_at = now

    # =========================================================================
    # READS
    # =========================================================================

    def get_impact_summary(self) -> ImpactSummary:
        """Totals and per-action-type rollup; zero-valued when nothing is tracked."""
        with session_scope(self._session_factory) as db:
            counts = dict(
                db.execute(
                    select(ImpactMeasurement.status, func.count())
                    .group_by(ImpactMeasurement.status)
                ).all()
            )
            avg_accuracy, total_impact = db.execute(
                select(
                    func.avg(ImpactMeasurement.prediction_accuracy),
                    func.sum(ImpactMeasurement.revenue_impact),
                ).where(ImpactMeasurement.status == MeasurementStatus.COMPLETE)
            ).one()
            rows = db.execute(
                select(
                    MonetizationAction.action_type,
                    func.count(ImpactMeasurement.id),
                    func.avg(ImpactMeasurement.prediction_accuracy),
                    func.sum(ImpactMeasurement.revenue_impact),
                )
                .join(MonetizationAction, ImpactMeasurement.action_id == MonetizationAction.id)
                .where(ImpactMeasurement.status == MeasurementStatus.COMPLETE)
                .group_by(MonetizationAction.action_type)
            ).all()

        by_action_type = {
            action_type: ActionTypeImpact(
                count=count,
                avg_accuracy=to_decimal(accuracy),
                total_impact=to_decimal(impact),
            )
            for action_type, count, accuracy, impact in rows
        }

        return ImpactSummary(
            total_measurements=sum(counts.values()),
            completed_measurements=counts.get(MeasurementStatus.COMPLETE, 0),
            pending_measurements=counts.get(MeasurementStatus.PENDING, 0),
            inconclusive_measurements=counts.get(MeasurementStatus.INCONCLUSIVE, 0),
            avg_prediction_accuracy=to_decimal(avg_accuracy),
            total_verified_impact=to_decimal(total_impact),
            by_action_type=by_action_type,
        )

    def get_recent_measurements(self, limit: int = 20) -> List[MeasurementSummary]:
        """Newest measurements first."""
        with session_scope(self._session_factory) as db:
            rows = db.execute(
                select(ImpactMeasurement, MonetizationAction.action_type)
                .join(MonetizationAction, ImpactMeasurement.action_id == MonetizationAction.id)
                .order_by(ImpactMeasurement.created_at.desc())
                .limit(limit)
            ).all()

            summaries = []
            for measurement, action_type in rows:
                # Pending and error-finalized rows carry no computed result
                scored = (
                    measurement.status != MeasurementStatus.PENDING
                    and measurement.revenue_impact is not None
                )
                summaries.append(
                    MeasurementSummary(
                        id=measurement.id,
                        action_type=action_type,
                        status=measurement.status.value,
                        estimated_impact=to_decimal(measurement.estimated_impact),
                        measured_impact=(
                            to_decimal(measurement.revenue_impact) if scored else None
                        ),
                        prediction_accuracy=(
                            to_decimal(measurement.prediction_accuracy) if scored else None
                        ),
                        completed_at=measurement.completed_at,
                    )
                )
            return summaries
