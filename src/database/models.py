"""
SQLAlchemy Models for the Monetization Engine

Design Principles:
1. Opportunities, actions and measurements are historical record - never deleted
2. Money, confidence and impact figures are Numeric (Decimal), never float
3. Action payloads are opaque JSON owned by detector/executor pairs
4. Page metrics belong to the ingestion side; the engine only reads them
"""

import enum
from datetime import datetime
from uuid import uuid4

from sqlalchemy import (
    Column, String, Integer, Numeric, DateTime, Text,
    ForeignKey, Enum, Index, CheckConstraint, UniqueConstraint,
    JSON, Uuid, text,
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


# =============================================================================
# ENUMS
# =============================================================================

class OpportunityStatus(enum.Enum):
    """Lifecycle of a detected opportunity. Only PENDING is non-terminal for review."""
    PENDING = "PENDING"          # Waiting for a human decision
    APPROVED = "APPROVED"        # Approved, actions handed to executors
    REJECTED = "REJECTED"        # Rejected by a reviewer
    IMPLEMENTED = "IMPLEMENTED"  # Every action executed
    EXPIRED = "EXPIRED"          # Never reviewed before its deadline


class ActionStatus(enum.Enum):
    """Mirrors the parent's review decision, plus EXECUTED."""
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    EXECUTED = "EXECUTED"


class MeasurementStatus(enum.Enum):
    """Impact measurement lifecycle: pending -> complete | inconclusive."""
    PENDING = "pending"
    COMPLETE = "complete"
    INCONCLUSIVE = "inconclusive"


class OpportunityType(str, enum.Enum):
    """Opportunity types raised by the built-in detectors.

    Stored as plain strings so new detectors can introduce types
    without a schema change.
    """
    AFFILIATE_PLACEMENT = "AFFILIATE_PLACEMENT"
    ADD_AFFILIATE_LINK = "ADD_AFFILIATE_LINK"
    AD_LAYOUT_OPTIMIZATION = "AD_LAYOUT_OPTIMIZATION"
    CONTENT_EXPANSION = "CONTENT_EXPANSION"
    TRAFFIC_SOURCE_OPTIMIZATION = "TRAFFIC_SOURCE_OPTIMIZATION"


class ActionType(str, enum.Enum):
    """Action types understood by the built-in executors."""
    ADD_AFFILIATE_LINK = "ADD_AFFILIATE_LINK"
    UPDATE_AD_PLACEMENT = "UPDATE_AD_PLACEMENT"
    UPDATE_META_DESCRIPTION = "UPDATE_META_DESCRIPTION"
    ADD_TO_COLLECTION = "ADD_TO_COLLECTION"
    CREATE_COLLECTION = "CREATE_COLLECTION"
    EXPAND_CONTENT = "EXPAND_CONTENT"
    OPTIMIZE_SEO = "OPTIMIZE_SEO"
    AB_TEST = "AB_TEST"


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


# =============================================================================
# ACTION QUEUE
# =============================================================================

class MonetizationOpportunity(Base):
    """A detected, not yet executed candidate for a monetization change"""
    __tablename__ = "monetization_opportunities"

    id = Column(Uuid, primary_key=True, default=uuid4)

    opportunity_type = Column(String(50), nullable=False)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=False)

    status = Column(
        Enum(OpportunityStatus, values_callable=_enum_values, name="opportunitystatus"),
        nullable=False,
        default=OpportunityStatus.PENDING,
    )
    priority = Column(Integer, nullable=False, default=5)      # 1-10
    confidence = Column(Numeric(4, 3), nullable=False)         # 0-1

    # Target
    page_url = Column(String(500))
    mod_id = Column(String(100))
    category = Column(String(100))

    # Prediction (monthly figures)
    estimated_revenue_impact = Column(Numeric(12, 2))
    estimated_rpm_increase = Column(Numeric(10, 4))

    expires_at = Column(DateTime)

    # Review audit
    approved_at = Column(DateTime)
    approved_by = Column(String(255))
    rejected_at = Column(DateTime)
    rejected_by = Column(String(255))
    rejection_reason = Column(Text)
    implemented_at = Column(DateTime)

    # Timestamps
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    actions = relationship(
        "MonetizationAction",
        back_populates="opportunity",
        cascade="all, delete-orphan",
        order_by="MonetizationAction.created_at",
    )

    __table_args__ = (
        CheckConstraint("priority >= 1 AND priority <= 10", name="check_opportunity_priority"),
        CheckConstraint("confidence >= 0 AND confidence <= 1", name="check_opportunity_confidence"),
        Index("idx_opportunity_status_priority", "status", "priority"),
        Index("idx_opportunity_implemented_at", "implemented_at"),
        # One PENDING opportunity per page and type
        Index(
            "uq_opportunity_pending_page_type",
            "page_url", "opportunity_type",
            unique=True,
            postgresql_where=text("status = 'PENDING'"),
            sqlite_where=text("status = 'PENDING'"),
        ),
    )

    def __repr__(self):
        return f"<MonetizationOpportunity {self.id} {self.opportunity_type} {self.status}>"


class MonetizationAction(Base):
    """One executable step of an opportunity"""
    __tablename__ = "monetization_actions"

    id = Column(Uuid, primary_key=True, default=uuid4)
    opportunity_id = Column(
        Uuid, ForeignKey("monetization_opportunities.id", ondelete="CASCADE"), nullable=False
    )

    action_type = Column(String(50), nullable=False)
    # Opaque payload; its schema is a contract between one detector and one executor
    action_data = Column(JSON, nullable=False, default=dict)

    status = Column(
        Enum(ActionStatus, values_callable=_enum_values, name="actionstatus"),
        nullable=False,
        default=ActionStatus.PENDING,
    )

    # Review audit
    approved_at = Column(DateTime)
    approved_by = Column(String(255))
    rejected_at = Column(DateTime)
    rejected_by = Column(String(255))

    # Execution
    executed_at = Column(DateTime)
    pre_execution_metrics = Column(JSON)
    post_execution_metrics = Column(JSON)

    # Copied from the finished impact measurement
    verified_impact = Column(Numeric(12, 2))
    verified_at = Column(DateTime)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    # Relationships
    opportunity = relationship("MonetizationOpportunity", back_populates="actions")
    measurements = relationship("ImpactMeasurement", back_populates="action")

    __table_args__ = (
        Index("idx_action_opportunity", "opportunity_id"),
        Index("idx_action_status_executed", "status", "executed_at"),
    )

    def __repr__(self):
        return f"<MonetizationAction {self.id} {self.action_type} {self.status}>"


# =============================================================================
# IMPACT TRACKING
# =============================================================================

class ImpactMeasurement(Base):
    """Before/after measurement of one executed action"""
    __tablename__ = "impact_measurements"

    id = Column(Uuid, primary_key=True, default=uuid4)
    action_id = Column(Uuid, ForeignKey("monetization_actions.id"), nullable=False)

    measurement_type = Column(String(30), nullable=False)  # traffic, pageviews, affiliate_clicks, rpm, revenue
    measurement_window = Column(Integer, nullable=False)   # days

    # Post-execution observation window [start_date, end_date)
    start_date = Column(DateTime, nullable=False)
    end_date = Column(DateTime, nullable=False)

    # Pre-execution observation window [baseline_period_start, baseline_period_end)
    baseline_value = Column(Numeric(14, 4), nullable=False, default=0)
    baseline_period_start = Column(DateTime, nullable=False)
    baseline_period_end = Column(DateTime, nullable=False)

    # Results
    measured_value = Column(Numeric(14, 4), nullable=False, default=0)
    absolute_impact = Column(Numeric(14, 4), nullable=False, default=0)
    percent_impact = Column(Numeric(14, 4), nullable=False, default=0)
    revenue_impact = Column(Numeric(14, 4))  # Extrapolated monthly figure

    # Prediction scoring
    estimated_impact = Column(Numeric(12, 2), nullable=False, default=0)  # Snapshot at tracking start
    prediction_error = Column(Numeric(14, 4), nullable=False, default=0)
    prediction_accuracy = Column(Numeric(5, 4), nullable=False, default=0)
    attribution_confidence = Column(Numeric(3, 2), nullable=False, default=0.7)

    status = Column(
        Enum(MeasurementStatus, values_callable=_enum_values, name="measurementstatus"),
        nullable=False,
        default=MeasurementStatus.PENDING,
    )
    completed_at = Column(DateTime)
    attribution_notes = Column(Text)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    # Relationships
    action = relationship("MonetizationAction", back_populates="measurements")

    __table_args__ = (
        CheckConstraint("baseline_period_end <= start_date", name="check_measurement_no_overlap"),
        Index("idx_measurement_status_end", "status", "end_date"),
        Index("idx_measurement_action", "action_id"),
        Index("idx_measurement_created", "created_at"),
    )

    def __repr__(self):
        return f"<ImpactMeasurement {self.id} {self.measurement_type} {self.status}>"


class MonetizationMetric(Base):
    """
    Per-page daily metrics.

    Populated by the traffic/ad-revenue sync jobs. The engine only runs
    date-ranged aggregates over it.
    """
    __tablename__ = "monetization_metrics"

    id = Column(Uuid, primary_key=True, default=uuid4)
    page_url = Column(String(500), nullable=False)
    metric_date = Column(DateTime, nullable=False)

    pageviews = Column(Integer, nullable=False, default=0)
    affiliate_clicks = Column(Integer, nullable=False, default=0)
    ad_revenue = Column(Numeric(12, 4), nullable=False, default=0)
    rpm = Column(Numeric(10, 4), nullable=False, default=0)

    created_at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("page_url", "metric_date", name="uq_metric_page_date"),
        Index("idx_metric_page_date", "page_url", "metric_date"),
    )
