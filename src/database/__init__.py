"""
Monetization Database Layer

Usage:
    from src.database import (
        # Session management
        init_db, get_session_factory, session_scope,

        # Models
        MonetizationOpportunity, MonetizationAction, ImpactMeasurement,

        # Enums
        OpportunityStatus, ActionStatus, MeasurementStatus,
    )

    # Initialize database
    init_db()

    # Hand the factory to the queue and tracker
    factory = get_session_factory()
"""

# Models
from .models import (
    Base,
    MonetizationOpportunity,
    MonetizationAction,
    ImpactMeasurement,
    MonetizationMetric,
    # Enums
    OpportunityStatus,
    ActionStatus,
    MeasurementStatus,
    OpportunityType,
    ActionType,
)

# Session management
from .session import (
    get_database_url,
    create_db_engine,
    get_engine,
    create_session_factory,
    get_session_factory,
    session_scope,
    init_db,
    get_db_info,
    check_db_connection,
)

__all__ = [
    # Models
    "Base",
    "MonetizationOpportunity",
    "MonetizationAction",
    "ImpactMeasurement",
    "MonetizationMetric",
    # Enums
    "OpportunityStatus",
    "ActionStatus",
    "MeasurementStatus",
    "OpportunityType",
    "ActionType",
    # Session
    "get_database_url",
    "create_db_engine",
    "get_engine",
    "create_session_factory",
    "get_session_factory",
    "session_scope",
    "init_db",
    "get_db_info",
    "check_db_connection",
]
