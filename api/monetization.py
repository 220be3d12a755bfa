"""
Monetization API

HTTP surface over the action queue and impact tracker.

Endpoints:
- Review queue for editors (list, view, approve/reject)
- Detector intake
- Executor polling and completion callback
- Learning dashboard (estimated vs verified impact)
- Cron sweep (expiry + impact measurement)
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Header, Query
from pydantic import BaseModel, Field

from src.database.session import get_session_factory
from src.monetization import (
    ActionQueue,
    ImpactTracker,
    CreateOpportunityInput,
    MonetizationError,
    OpportunityValidationError,
    OpportunityNotFoundError,
    ActionNotFoundError,
    InvalidTransitionError,
)
from src.utils.config import Settings, get_settings

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/monetization", tags=["Monetization"])


# =============================================================================
# DEPENDENCIES
# =============================================================================

def get_action_queue() -> ActionQueue:
    return ActionQueue(get_session_factory())


def get_impact_tracker() -> ImpactTracker:
    return ImpactTracker(get_session_factory())


def require_admin(
    x_admin_key: Optional[str] = Header(None),
    settings: Settings = Depends(get_settings),
) -> None:
    """
    Check the admin key.

    Open when ADMIN_API_KEY is unset (local development).
    """
    if settings.ADMIN_API_KEY and x_admin_key != settings.ADMIN_API_KEY:
        raise HTTPException(status_code=401, detail="Invalid admin key")


def require_cron_secret(
    authorization: Optional[str] = Header(None),
    settings: Settings = Depends(get_settings),
) -> None:
    """Scheduler calls carry `Authorization: Bearer <CRON_SECRET>`."""
    if settings.CRON_SECRET and authorization != f"Bearer {settings.CRON_SECRET}":
        raise HTTPException(status_code=401, detail="Unauthorized")


def _http_error(error: MonetizationError) -> HTTPException:
    if isinstance(error, (OpportunityNotFoundError, ActionNotFoundError)):
        return HTTPException(status_code=404, detail=str(error))
    if isinstance(error, InvalidTransitionError):
        return HTTPException(status_code=409, detail=str(error))
    if isinstance(error, OpportunityValidationError):
        return HTTPException(status_code=422, detail=str(error))
    return HTTPException(status_code=400, detail=str(error))


def _float(value) -> Optional[float]:
    return float(value) if value is not None else None


# =============================================================================
# REQUEST / RESPONSE MODELS
# =============================================================================

class ActionResponse(BaseModel):
    """One action of an opportunity."""
    id: str
    action_type: str
    action_data: Dict[str, Any] = {}
    status: str
    executed_at: Optional[datetime] = None
    verified_impact: Optional[float] = None
    pre_execution_metrics: Optional[Dict[str, Any]] = None
    post_execution_metrics: Optional[Dict[str, Any]] = None


class OpportunityResponse(BaseModel):
    """Opportunity with its actions."""
    id: str
    opportunity_type: str
    title: str
    description: str
    status: str
    priority: int
    confidence: float
    page_url: Optional[str] = None
    mod_id: Optional[str] = None
    category: Optional[str] = None
    estimated_revenue_impact: Optional[float] = None
    estimated_rpm_increase: Optional[float] = None
    expires_at: Optional[datetime] = None
    approved_by: Optional[str] = None
    rejected_by: Optional[str] = None
    rejection_reason: Optional[str] = None
    implemented_at: Optional[datetime] = None
    created_at: datetime
    actions: List[ActionResponse] = []


class QueueStatsResponse(BaseModel):
    pending: int
    approved: int
    rejected: int
    implemented: int
    expired: int
    total_estimated_impact: float


class QueueResponse(BaseModel):
    """Pending review queue."""
    opportunities: List[OpportunityResponse]
    stats: QueueStatsResponse


class ReviewRequest(BaseModel):
    """Editor decision on one opportunity."""
    opportunity_id: str
    action: Literal["approve", "reject"]
    reason: Optional[str] = None
    reviewer: str = Field(default="admin", min_length=1, max_length=255)


class ReviewResponse(BaseModel):
    success: bool
    opportunity_id: str
    status: str


class CreatedResponse(BaseModel):
    id: str


class ApprovedActionResponse(BaseModel):
    """Approved action waiting for an executor."""
    id: str
    action_type: str
    action_data: Dict[str, Any]
    opportunity_id: str
    opportunity_title: str
    page_url: Optional[str] = None
    mod_id: Optional[str] = None


class CompleteActionRequest(BaseModel):
    """Executor completion callback."""
    pre_metrics: Optional[Dict[str, Any]] = None
    post_metrics: Optional[Dict[str, Any]] = None


class CompleteActionResponse(BaseModel):
    action_id: str
    opportunity_implemented: bool
    measurement_id: Optional[str] = None


class LearningResponse(BaseModel):
    """Estimated vs verified impact."""
    summary: Dict[str, Any]
    recent_measurements: List[Dict[str, Any]]
    implemented_opportunities: List[OpportunityResponse]


class SweepResponse(BaseModel):
    expired: int
    measurements_processed: int
    timestamp: datetime = Field(default_factory=datetime.utcnow)


def _opportunity_response(opportunity) -> OpportunityResponse:
    return OpportunityResponse(
        id=str(opportunity.id),
        opportunity_type=opportunity.opportunity_type,
        title=opportunity.title,
        description=opportunity.description,
        status=opportunity.status.value,
        priority=opportunity.priority,
        confidence=float(opportunity.confidence),
        page_url=opportunity.page_url,
        mod_id=opportunity.mod_id,
        category=opportunity.category,
        estimated_revenue_impact=_float(opportunity.estimated_revenue_impact),
        estimated_rpm_increase=_float(opportunity.estimated_rpm_increase),
        expires_at=opportunity.expires_at,
        approved_by=opportunity.approved_by,
        rejected_by=opportunity.rejected_by,
        rejection_reason=opportunity.rejection_reason,
        implemented_at=opportunity.implemented_at,
        created_at=opportunity.created_at,
        actions=[
            ActionResponse(
                id=str(action.id),
                action_type=action.action_type,
                action_data=action.action_data or {},
                status=action.status.value,
                executed_at=action.executed_at,
                verified_impact=_float(action.verified_impact),
                pre_execution_metrics=action.pre_execution_metrics,
                post_execution_metrics=action.post_execution_metrics,
            )
            for action in opportunity.actions
        ],
    )


# =============================================================================
# REVIEW QUEUE
# =============================================================================

@router.get("/queue", response_model=QueueResponse, dependencies=[Depends(require_admin)])
def get_queue(
    limit: int = Query(50, ge=1, le=200),
    queue: ActionQueue = Depends(get_action_queue),
):
    """Pending opportunities, highest priority first, plus queue stats."""
    opportunities = queue.get_pending_opportunities(limit)
    stats = queue.get_queue_stats()
    return QueueResponse(
        opportunities=[_opportunity_response(o) for o in opportunities],
        stats=QueueStatsResponse(**stats.to_dict()),
    )


@router.post("/queue", response_model=ReviewResponse, dependencies=[Depends(require_admin)])
def review_opportunity(
    request: ReviewRequest,
    queue: ActionQueue = Depends(get_action_queue),
):
    """Approve or reject an opportunity."""
    try:
        if request.action == "approve":
            queue.approve_opportunity(request.opportunity_id, request.reviewer)
            status = "APPROVED"
        else:
            queue.reject_opportunity(request.opportunity_id, request.reviewer, request.reason)
            status = "REJECTED"
    except MonetizationError as e:
        raise _http_error(e)

    return ReviewResponse(success=True, opportunity_id=request.opportunity_id, status=status)


@router.get(
    "/queue/{opportunity_id}",
    response_model=OpportunityResponse,
    dependencies=[Depends(require_admin)],
)
def get_opportunity(
    opportunity_id: str,
    queue: ActionQueue = Depends(get_action_queue),
):
    opportunity = queue.get_opportunity(opportunity_id)
    if opportunity is None:
        raise HTTPException(status_code=404, detail="Opportunity not found")
    return _opportunity_response(opportunity)


# =============================================================================
# DETECTOR INTAKE
# =============================================================================

@router.post(
    "/opportunities",
    response_model=CreatedResponse,
    status_code=201,
    dependencies=[Depends(require_admin)],
)
def create_opportunity(
    request: CreateOpportunityInput,
    queue: ActionQueue = Depends(get_action_queue),
):
    """Submit a detected opportunity (deduplicated on page + type)."""
    try:
        opportunity_id = queue.create_opportunity(request)
    except MonetizationError as e:
        raise _http_error(e)
    return CreatedResponse(id=str(opportunity_id))


# =============================================================================
# EXECUTOR
# =============================================================================

@router.get(
    "/execute",
    response_model=List[ApprovedActionResponse],
    dependencies=[Depends(require_admin)],
)
def get_approved_actions(queue: ActionQueue = Depends(get_action_queue)):
    """Approved actions waiting to be executed."""
    return [
        ApprovedActionResponse(
            id=str(action.id),
            action_type=action.action_type,
            action_data=action.action_data or {},
            opportunity_id=str(action.opportunity.id),
            opportunity_title=action.opportunity.title,
            page_url=action.opportunity.page_url,
            mod_id=action.opportunity.mod_id,
        )
        for action in queue.get_approved_actions()
    ]


@router.post(
    "/execute/{action_id}/complete",
    response_model=CompleteActionResponse,
    dependencies=[Depends(require_admin)],
)
def complete_action(
    action_id: str,
    request: Optional[CompleteActionRequest] = None,
    queue: ActionQueue = Depends(get_action_queue),
    tracker: ImpactTracker = Depends(get_impact_tracker),
):
    """
    Executor callback: mark the action executed, then start measuring it.

    Tracking runs after the execution commit; a tracking failure is logged
    and leaves the action executed without a measurement.
    """
    request = request or CompleteActionRequest()
    try:
        implemented = queue.mark_action_executed(
            action_id, request.pre_metrics, request.post_metrics
        )
    except MonetizationError as e:
        raise _http_error(e)

    measurement_id = None
    try:
        measurement_id = tracker.start_tracking(action_id)
    except Exception as e:
        logger.error(f"Failed to start tracking for action {action_id}: {e}")

    return CompleteActionResponse(
        action_id=action_id,
        opportunity_implemented=implemented,
        measurement_id=str(measurement_id) if measurement_id else None,
    )


# =============================================================================
# LEARNING DASHBOARD
# =============================================================================

@router.get("/learning", response_model=LearningResponse, dependencies=[Depends(require_admin)])
def get_learning(
    limit: int = Query(20, ge=1, le=100),
    queue: ActionQueue = Depends(get_action_queue),
    tracker: ImpactTracker = Depends(get_impact_tracker),
):
    """Prediction accuracy and verified impact of executed actions."""
    return LearningResponse(
        summary=tracker.get_impact_summary().to_dict(),
        recent_measurements=[m.to_dict() for m in tracker.get_recent_measurements(limit)],
        implemented_opportunities=[
            _opportunity_response(o) for o in queue.get_implemented_opportunities()
        ],
    )


# =============================================================================
# CRON
# =============================================================================

@router.post("/cron/sweep", response_model=SweepResponse, dependencies=[Depends(require_cron_secret)])
def run_sweep(
    queue: ActionQueue = Depends(get_action_queue),
    tracker: ImpactTracker = Depends(get_impact_tracker),
):
    """Expire stale opportunities and finalize due impact measurements."""
    expired = queue.expire_old_opportunities()
    processed = tracker.process_pending_measurements()
    logger.info(f"Sweep: expired={expired} measurements_processed={processed}")
    return SweepResponse(expired=expired, measurements_processed=processed)
