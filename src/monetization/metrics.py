"""
Page Metrics Source

Read-only, date-ranged aggregates over the per-page daily metrics table.
Ingestion is owned by the sync jobs; this module never writes.

Ranges are inclusive-start / exclusive-end: [start, end).
"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import select, func
from sqlalchemy.orm import sessionmaker

from src.database.models import MonetizationMetric
from src.database.session import session_scope

logger = logging.getLogger(__name__)

# Measurement type -> metrics column
METRIC_FIELDS = {
    "traffic": "pageviews",
    "pageviews": "pageviews",
    "affiliate_clicks": "affiliate_clicks",
    "rpm": "rpm",
    "revenue": "ad_revenue",
}

DEFAULT_METRIC_FIELD = "ad_revenue"


def metric_field_for(measurement_type: str) -> str:
    """Column aggregated for a measurement type (ad revenue when unknown)."""
    return METRIC_FIELDS.get(measurement_type, DEFAULT_METRIC_FIELD)


def to_decimal(value) -> Decimal:
    """Normalize a numeric DB/driver value to Decimal (None -> 0)."""
    if value is None:
        return Decimal("0")
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


class PageMetricsSource:
    """
    Aggregates page metrics from the monetization_metrics table.

    Any object exposing the same ``average`` signature can be handed to the
    impact tracker instead (e.g. an analytics warehouse client).
    """

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def average(
        self,
        page_url: Optional[str],
        field: str,
        start: datetime,
        end: datetime,
    ) -> Decimal:
        """
        Average daily value of ``field`` for a page over [start, end).

        Returns 0 when the page is unknown or has no rows in the range.
        """
        if not page_url:
            return Decimal("0")

        column = getattr(MonetizationMetric, field, None)
        if column is None:
            raise ValueError(f"Unknown metric field: {field}")

        with session_scope(self._session_factory) as db:
            value = db.execute(
                select(func.avg(column)).where(
                    MonetizationMetric.page_url == page_url,
                    MonetizationMetric.metric_date >= start,
                    MonetizationMetric.metric_date < end,
                )
            ).scalar()

        logger.debug(f"avg({field}) for {page_url} [{start} - {end}) = {value}")
        return to_decimal(value)
