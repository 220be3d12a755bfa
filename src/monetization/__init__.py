"""
Monetization Engine

Action queue (detect -> review -> execute) and impact tracking
(baseline -> measure -> score the prediction).

Usage:
    from src.database import get_session_factory
    from src.monetization import ActionQueue, ImpactTracker

    factory = get_session_factory()
    queue = ActionQueue(factory)
    tracker = ImpactTracker(factory)
"""

from .errors import (
    MonetizationError,
    OpportunityValidationError,
    OpportunityNotFoundError,
    ActionNotFoundError,
    InvalidTransitionError,
)
from .schemas import (
    CreateActionInput,
    CreateOpportunityInput,
    QueueStats,
    OpportunitySummary,
    ApprovedAction,
    ImpactResult,
    ActionTypeImpact,
    ImpactSummary,
    MeasurementSummary,
)
from .metrics import PageMetricsSource, METRIC_FIELDS, metric_field_for
from .queue import ActionQueue
from .impact import (
    ImpactTracker,
    MeasurementConfig,
    MEASUREMENT_CONFIG,
    get_measurement_config,
    calculate_impact,
    extrapolate_to_monthly,
    calculate_prediction_error,
    calculate_prediction_accuracy,
)

__all__ = [
    # Components
    "ActionQueue",
    "ImpactTracker",
    "PageMetricsSource",
    # Errors
    "MonetizationError",
    "OpportunityValidationError",
    "OpportunityNotFoundError",
    "ActionNotFoundError",
    "InvalidTransitionError",
    # Input / results
    "CreateActionInput",
    "CreateOpportunityInput",
    "QueueStats",
    "OpportunitySummary",
    "ApprovedAction",
    "ImpactResult",
    "ActionTypeImpact",
    "ImpactSummary",
    "MeasurementSummary",
    # Measurement
    "MeasurementConfig",
    "MEASUREMENT_CONFIG",
    "METRIC_FIELDS",
    "get_measurement_config",
    "metric_field_for",
    "calculate_impact",
    "extrapolate_to_monthly",
    "calculate_prediction_error",
    "calculate_prediction_accuracy",
]
