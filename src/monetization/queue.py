"""
Action Queue

Human approval workflow for monetization opportunities.

Every detected opportunity waits for a reviewer. Decisions cascade to all
of the opportunity's actions, executors pick up approved actions, and the
opportunity is marked IMPLEMENTED once its last action has executed.

Concurrency: there are no in-process locks. Each operation is a single
transaction; the opportunity row is locked (SELECT ... FOR UPDATE) before
any read-modify-write so concurrent reviewers, executors and detectors
queue up on the database instead of racing.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Union
from uuid import UUID

from pydantic import ValidationError
from sqlalchemy import select, update, func, or_, and_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker, selectinload, joinedload

from src.database.models import (
    MonetizationOpportunity,
    MonetizationAction,
    OpportunityStatus,
    ActionStatus,
)
from src.database.session import session_scope
from src.utils.config import Settings, get_settings
from .errors import (
    OpportunityValidationError,
    OpportunityNotFoundError,
    ActionNotFoundError,
    InvalidTransitionError,
)
from .metrics import to_decimal
from .schemas import (
    CreateOpportunityInput,
    QueueStats,
    ApprovedAction,
    OpportunitySummary,
)

logger = logging.getLogger(__name__)

DEFAULT_PRIORITY = 5


def as_uuid(value: Union[UUID, str, None]) -> Optional[UUID]:
    """Parse an id from callers (CLI, HTTP) - None when it is not a UUID."""
    if value is None or isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except ValueError:
        return None


class ActionQueue:
    """
    Manages the monetization opportunity queue.

    Usage:
        queue = ActionQueue(get_session_factory())
        opportunity_id = queue.create_opportunity({...})
        queue.approve_opportunity(opportunity_id, "editor@example.com")
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        clock: Optional[Callable[[], datetime]] = None,
        settings: Optional[Settings] = None,
    ):
        self._session_factory = session_factory
        self._clock = clock or datetime.utcnow
        self._settings = settings or get_settings()

    # =========================================================================
    # CREATION
    # =========================================================================

    def create_opportunity(
        self, payload: Union[CreateOpportunityInput, Dict[str, Any]]
    ) -> UUID:
        """
        Create an opportunity with its actions, deduplicating on page + type.

        When a PENDING opportunity already exists for the same page_url and
        opportunity_type, it is refreshed only if the new confidence is
        strictly higher; the existing id is returned either way.

        Returns:
            UUID of the created or existing opportunity

        Raises:
            OpportunityValidationError: malformed input (nothing is written)
        """
        data = self._validate(payload)

        try:
            return self._create_or_merge(data)
        except IntegrityError:
            # A concurrent detector inserted the same PENDING page/type first
            if not data.page_url:
                raise
            logger.info(
                f"Concurrent insert for {data.page_url} ({data.opportunity_type}), merging"
            )
            existing_id = self._merge_into_pending(data)
            if existing_id is None:
                raise
            return existing_id

    def _validate(self, payload) -> CreateOpportunityInput:
        if isinstance(payload, CreateOpportunityInput):
            return payload
        try:
            return CreateOpportunityInput.model_validate(payload)
        except ValidationError as e:
            raise OpportunityValidationError(str(e)) from e

    def _create_or_merge(self, data: CreateOpportunityInput) -> UUID:
        now = self._clock()

        with session_scope(self._session_factory) as db:
            if data.page_url:
                existing = self._find_pending_duplicate(db, data)
                if existing is not None:
                    self._apply_if_more_confident(existing, data, now)
                    return existing.id

            opportunity = MonetizationOpportunity(
                opportunity_type=data.opportunity_type,
                title=data.title,
                description=data.description,
                status=OpportunityStatus.PENDING,
                priority=data.priority if data.priority is not None else DEFAULT_PRIORITY,
                confidence=data.confidence,
                page_url=data.page_url,
                mod_id=data.mod_id,
                category=data.category,
                estimated_revenue_impact=data.estimated_revenue_impact,
                estimated_rpm_increase=data.estimated_rpm_increase,
                expires_at=data.expires_at
                or now + timedelta(days=self._settings.OPPORTUNITY_TTL_DAYS),
                created_at=now,
                updated_at=now,
            )
            opportunity.actions = [
                MonetizationAction(
                    action_type=action.action_type,
                    action_data=action.action_data,
                    status=ActionStatus.PENDING,
                    created_at=now,
                )
                for action in data.actions
            ]
            db.add(opportunity)
            db.flush()

            logger.info(
                f"Created opportunity {opportunity.id} ({data.opportunity_type}) "
                f"with {len(data.actions)} action(s)"
            )
            return opportunity.id

    def _merge_into_pending(self, data: CreateOpportunityInput) -> Optional[UUID]:
        now = self._clock()
        with session_scope(self._session_factory) as db:
            existing = self._find_pending_duplicate(db, data)
            if existing is None:
                return None
            self._apply_if_more_confident(existing, data, now)
            return existing.id

    def _find_pending_duplicate(
        self, db: Session, data: CreateOpportunityInput
    ) -> Optional[MonetizationOpportunity]:
        return db.execute(
            select(MonetizationOpportunity)
            .where(
                MonetizationOpportunity.page_url == data.page_url,
                MonetizationOpportunity.opportunity_type == data.opportunity_type,
                MonetizationOpportunity.status == OpportunityStatus.PENDING,
            )
            .with_for_update()
        ).scalar_one_or_none()

    def _apply_if_more_confident(
        self,
        existing: MonetizationOpportunity,
        data: CreateOpportunityInput,
        now: datetime,
    ) -> bool:
        if data.confidence <= to_decimal(existing.confidence):
            logger.debug(
                f"Duplicate of {existing.id} with confidence {data.confidence} "
                f"<= {existing.confidence}, keeping existing"
            )
            return False

        existing.title = data.title
        existing.description = data.description
        if data.priority is not None:
            existing.priority = data.priority
        existing.confidence = data.confidence
        # Estimates the detector left out keep their stored values
        if "estimated_revenue_impact" in data.model_fields_set:
            existing.estimated_revenue_impact = data.estimated_revenue_impact
        if "estimated_rpm_increase" in data.model_fields_set:
            existing.estimated_rpm_increase = data.estimated_rpm_increase
        existing.updated_at = now

        logger.info(f"Refreshed opportunity {existing.id} with confidence {data.confidence}")
        return True

    # =========================================================================
    # REVIEW
    # =========================================================================

    def get_pending_opportunities(self, limit: int = 50) -> List[MonetizationOpportunity]:
        """
        Pending, non-expired opportunities with their actions.

        Ordered by priority (high first), estimated revenue impact (high
        first, unknown last), then age (oldest first).
        """
        now = self._clock()
        with session_scope(self._session_factory) as db:
            result = db.execute(
                select(MonetizationOpportunity)
                .where(
                    MonetizationOpportunity.status == OpportunityStatus.PENDING,
                    or_(
                        MonetizationOpportunity.expires_at.is_(None),
                        MonetizationOpportunity.expires_at > now,
                    ),
                )
                .order_by(
                    MonetizationOpportunity.priority.desc(),
                    MonetizationOpportunity.estimated_revenue_impact.desc().nulls_last(),
                    MonetizationOpportunity.created_at.asc(),
                )
                .limit(limit)
                .options(selectinload(MonetizationOpportunity.actions))
            )
            return list(result.scalars().all())

    def approve_opportunity(self, opportunity_id, approved_by: str) -> None:
        """
        Approve an opportunity and every one of its actions.

        Raises:
            OpportunityNotFoundError: unknown id
            InvalidTransitionError: opportunity is not PENDING or has expired
        """
        now = self._clock()
        with session_scope(self._session_factory) as db:
            opportunity = self._lock_opportunity(db, opportunity_id)
            self._require_reviewable(opportunity, now, "approve")

            opportunity.status = OpportunityStatus.APPROVED
            opportunity.approved_at = now
            opportunity.approved_by = approved_by
            opportunity.updated_at = now

            for action in opportunity.actions:
                action.status = ActionStatus.APPROVED
                action.approved_at = now
                action.approved_by = approved_by

            logger.info(
                f"Opportunity {opportunity.id} approved by {approved_by} "
                f"({len(opportunity.actions)} action(s))"
            )

    def reject_opportunity(
        self,
        opportunity_id,
        rejected_by: str,
        reason: Optional[str] = None,
    ) -> None:
        """
        Reject an opportunity and every one of its actions.

        Raises:
            OpportunityNotFoundError: unknown id
            InvalidTransitionError: opportunity is not PENDING
        """
        now = self._clock()
        with session_scope(self._session_factory) as db:
            opportunity = self._lock_opportunity(db, opportunity_id)
            if opportunity.status != OpportunityStatus.PENDING:
                raise InvalidTransitionError(
                    f"Cannot reject opportunity {opportunity.id}: status is {opportunity.status.value}"
                )

            opportunity.status = OpportunityStatus.REJECTED
            opportunity.rejected_at = now
            opportunity.rejected_by = rejected_by
            opportunity.rejection_reason = reason
            opportunity.updated_at = now

            for action in opportunity.actions:
                action.status = ActionStatus.REJECTED
                action.rejected_at = now
                action.rejected_by = rejected_by

            logger.info(f"Opportunity {opportunity.id} rejected by {rejected_by}: {reason or '-'}")

    def _lock_opportunity(self, db: Session, opportunity_id) -> MonetizationOpportunity:
        key = as_uuid(opportunity_id)
        opportunity = None
        if key is not None:
            opportunity = db.execute(
                select(MonetizationOpportunity)
                .where(MonetizationOpportunity.id == key)
                .with_for_update()
            ).scalar_one_or_none()
        if opportunity is None:
            raise OpportunityNotFoundError(opportunity_id)
        return opportunity

    def _require_reviewable(
        self, opportunity: MonetizationOpportunity, now: datetime, verb: str
    ) -> None:
        if opportunity.status != OpportunityStatus.PENDING:
            raise InvalidTransitionError(
                f"Cannot {verb} opportunity {opportunity.id}: status is {opportunity.status.value}"
            )
        if opportunity.expires_at is not None and opportunity.expires_at <= now:
            raise InvalidTransitionError(
                f"Cannot {verb} opportunity {opportunity.id}: expired at {opportunity.expires_at}"
            )

    # =========================================================================
    # EXECUTION
    # =========================================================================

    def get_approved_actions(self) -> List[ApprovedAction]:
        """Approved actions not yet executed - the executor's polling surface."""
        with session_scope(self._session_factory) as db:
            actions = db.execute(
                select(MonetizationAction)
                .where(
                    MonetizationAction.status == ActionStatus.APPROVED,
                    MonetizationAction.executed_at.is_(None),
                )
                .order_by(MonetizationAction.approved_at.asc(), MonetizationAction.created_at.asc())
                .options(joinedload(MonetizationAction.opportunity))
            ).scalars().all()

            return [
                ApprovedAction(
                    id=action.id,
                    action_type=action.action_type,
                    action_data=action.action_data,
                    opportunity=OpportunitySummary(
                        id=action.opportunity.id,
                        title=action.opportunity.title,
                        page_url=action.opportunity.page_url,
                        mod_id=action.opportunity.mod_id,
                    ),
                )
                for action in actions
            ]

    def mark_action_executed(
        self,
        action_id,
        pre_metrics: Optional[Dict[str, Any]] = None,
        post_metrics: Optional[Dict[str, Any]] = None,
    ) -> bool:
        """
        Record an executed action and promote its opportunity when complete.

        The sibling recount runs in the same transaction as the EXECUTED
        write, after locking the parent row, so exactly one of several
        concurrently finishing siblings sees "all executed".

        Returns:
            True if this call promoted the opportunity to IMPLEMENTED

        Raises:
            ActionNotFoundError: unknown id
            InvalidTransitionError: action is not APPROVED
        """
        key = as_uuid(action_id)
        now = self._clock()

        with session_scope(self._session_factory) as db:
            opportunity_id = None
            if key is not None:
                opportunity_id = db.execute(
                    select(MonetizationAction.opportunity_id).where(MonetizationAction.id == key)
                ).scalar_one_or_none()
            if opportunity_id is None:
                raise ActionNotFoundError(action_id)

            # Parent first, then the action: siblings always lock in the same order
            opportunity = self._lock_opportunity(db, opportunity_id)
            action = db.execute(
                select(MonetizationAction)
                .where(MonetizationAction.id == key)
                .with_for_update()
            ).scalar_one()

            if action.status != ActionStatus.APPROVED:
                raise InvalidTransitionError(
                    f"Cannot execute action {action.id}: status is {action.status.value}"
                )

            action.status = ActionStatus.EXECUTED
            action.executed_at = now
            action.pre_execution_metrics = pre_metrics
            action.post_execution_metrics = post_metrics
            db.flush()

            remaining = db.execute(
                select(func.count())
                .select_from(MonetizationAction)
                .where(
                    MonetizationAction.opportunity_id == opportunity.id,
                    MonetizationAction.status != ActionStatus.EXECUTED,
                )
            ).scalar_one()

            logger.info(f"Action {action.id} executed, {remaining} action(s) remaining")

            if remaining == 0 and opportunity.status == OpportunityStatus.APPROVED:
                opportunity.status = OpportunityStatus.IMPLEMENTED
                opportunity.implemented_at = now
                opportunity.updated_at = now
                logger.info(f"Opportunity {opportunity.id} implemented")
                return True

            return False

    # =========================================================================
    # MAINTENANCE
    # =========================================================================

    def expire_old_opportunities(self, days_old: Optional[int] = None) -> int:
        """
        Expire PENDING opportunities past their deadline.

        Expires rows whose expires_at has passed, and rows without
        expires_at created more than ``days_old`` days ago. Other statuses
        are never touched. Safe to run repeatedly.

        Returns:
            Number of opportunities expired
        """
        if days_old is None:
            days_old = self._settings.EXPIRE_AFTER_DAYS
        now = self._clock()
        cutoff = now - timedelta(days=days_old)

        with session_scope(self._session_factory) as db:
            result = db.execute(
                update(MonetizationOpportunity)
                .where(
                    MonetizationOpportunity.status == OpportunityStatus.PENDING,
                    or_(
                        MonetizationOpportunity.expires_at < now,
                        and_(
                            MonetizationOpportunity.expires_at.is_(None),
                            MonetizationOpportunity.created_at < cutoff,
                        ),
                    ),
                )
                .values(status=OpportunityStatus.EXPIRED, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            count = result.rowcount or 0

        if count:
            logger.info(f"Expired {count} opportunities")
        return count

    # =========================================================================
    # READS
    # =========================================================================

    def get_queue_stats(self) -> QueueStats:
        """Counts per status plus the estimated impact still pending review."""
        with session_scope(self._session_factory) as db:
            counts = dict(
                db.execute(
                    select(MonetizationOpportunity.status, func.count())
                    .group_by(MonetizationOpportunity.status)
                ).all()
            )
            pending_impact = db.execute(
                select(func.sum(MonetizationOpportunity.estimated_revenue_impact)).where(
                    MonetizationOpportunity.status == OpportunityStatus.PENDING
                )
            ).scalar()

        return QueueStats(
            pending=counts.get(OpportunityStatus.PENDING, 0),
            approved=counts.get(OpportunityStatus.APPROVED, 0),
            rejected=counts.get(OpportunityStatus.REJECTED, 0),
            implemented=counts.get(OpportunityStatus.IMPLEMENTED, 0),
            expired=counts.get(OpportunityStatus.EXPIRED, 0),
            total_estimated_impact=to_decimal(pending_impact),
        )

    def get_opportunity(self, opportunity_id) -> Optional[MonetizationOpportunity]:
        """Single opportunity with its actions, or None."""
        key = as_uuid(opportunity_id)
        if key is None:
            return None
        with session_scope(self._session_factory) as db:
            return db.execute(
                select(MonetizationOpportunity)
                .where(MonetizationOpportunity.id == key)
                .options(selectinload(MonetizationOpportunity.actions))
            ).scalar_one_or_none()

    def get_implemented_opportunities(self, limit: int = 100) -> List[MonetizationOpportunity]:
        """Implemented opportunities, newest first, for estimated-vs-verified review."""
        with session_scope(self._session_factory) as db:
            result = db.execute(
                select(MonetizationOpportunity)
                .where(MonetizationOpportunity.status == OpportunityStatus.IMPLEMENTED)
                .order_by(MonetizationOpportunity.implemented_at.desc())
                .limit(limit)
                .options(selectinload(MonetizationOpportunity.actions))
            )
            return list(result.scalars().all())
