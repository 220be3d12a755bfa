"""
Input and Result Types

Detector input is validated with Pydantic before anything touches the
database. Read results are plain dataclasses so callers never hold on to
live ORM sessions.
"""

from dataclasses import dataclass, field, asdict
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, Field


# =============================================================================
# DETECTOR INPUT
# =============================================================================

class CreateActionInput(BaseModel):
    """One executable step proposed by a detector."""
    action_type: str = Field(..., min_length=1, max_length=50)
    # Opaque to the engine; only the executor for this action_type reads it
    action_data: Dict[str, Any] = Field(default_factory=dict)


class CreateOpportunityInput(BaseModel):
    """A detected opportunity together with the actions that implement it."""
    opportunity_type: str = Field(..., min_length=1, max_length=50)
    title: str = Field(..., min_length=1, max_length=255)
    description: str
    priority: Optional[int] = Field(default=None, ge=1, le=10)
    confidence: Decimal = Field(..., ge=0, le=1)
    page_url: Optional[str] = Field(default=None, max_length=500)
    mod_id: Optional[str] = Field(default=None, max_length=100)
    category: Optional[str] = Field(default=None, max_length=100)
    estimated_revenue_impact: Optional[Decimal] = None
    estimated_rpm_increase: Optional[Decimal] = None
    expires_at: Optional[datetime] = None
    actions: List[CreateActionInput] = Field(..., min_length=1)


# =============================================================================
# QUEUE RESULTS
# =============================================================================

@dataclass
class QueueStats:
    """Opportunity counts per status and the pending pipeline value."""
    pending: int = 0
    approved: int = 0
    rejected: int = 0
    implemented: int = 0
    expired: int = 0
    total_estimated_impact: Decimal = Decimal("0")

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["total_estimated_impact"] = float(self.total_estimated_impact)
        return data


@dataclass
class OpportunitySummary:
    """Parent details an executor needs alongside an action."""
    id: UUID
    title: str
    page_url: Optional[str]
    mod_id: Optional[str]


@dataclass
class ApprovedAction:
    """An approved action waiting for an executor."""
    id: UUID
    action_type: str
    action_data: Dict[str, Any]
    opportunity: OpportunitySummary


# =============================================================================
# IMPACT RESULTS
# =============================================================================

@dataclass
class ImpactResult:
    """Difference between a baseline and a measured value."""
    absolute_impact: Decimal
    percent_impact: Decimal


@dataclass
class ActionTypeImpact:
    """Completed-measurement rollup for one action type."""
    count: int = 0
    avg_accuracy: Decimal = Decimal("0")
    total_impact: Decimal = Decimal("0")


@dataclass
class ImpactSummary:
    """Dashboard rollup of all impact measurements."""
    total_measurements: int = 0
    completed_measurements: int = 0
    pending_measurements: int = 0
    inconclusive_measurements: int = 0
    avg_prediction_accuracy: Decimal = Decimal("0")
    total_verified_impact: Decimal = Decimal("0")
    by_action_type: Dict[str, ActionTypeImpact] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_measurements": self.total_measurements,
            "completed_measurements": self.completed_measurements,
            "pending_measurements": self.pending_measurements,
            "inconclusive_measurements": self.inconclusive_measurements,
            "avg_prediction_accuracy": float(self.avg_prediction_accuracy),
            "total_verified_impact": float(self.total_verified_impact),
            "by_action_type": {
                action_type: {
                    "count": rollup.count,
                    "avg_accuracy": float(rollup.avg_accuracy),
                    "total_impact": float(rollup.total_impact),
                }
                for action_type, rollup in self.by_action_type.items()
            },
        }


@dataclass
class MeasurementSummary:
    """One row of the recent-measurements feed."""
    id: UUID
    action_type: str
    status: str
    estimated_impact: Decimal
    measured_impact: Optional[Decimal]
    prediction_accuracy: Optional[Decimal]
    completed_at: Optional[datetime]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": str(self.id),
            "action_type": self.action_type,
            "status": self.status,
            "estimated_impact": float(self.estimated_impact),
            "measured_impact": float(self.measured_impact) if self.measured_impact is not None else None,
            "prediction_accuracy": (
                float(self.prediction_accuracy) if self.prediction_accuracy is not None else None
            ),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }
