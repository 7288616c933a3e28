"""
Model for tracking processed billing events to ensure idempotency.
"""
from typing import Optional
from datetime import datetime, timezone
from sqlmodel import Field, SQLModel


def _utc_now() -> datetime:
    """Get current UTC time (timezone-aware)."""
    return datetime.now(timezone.utc)


class ProcessedEvent(SQLModel, table=True):
    """
    Append-only record of billing events that were fully applied.

    RevenueCat retries deliveries that did not get a 2xx response, and may
    deliver the same event more than once; existence of the event_id row is
    the only gate against applying it twice. Rows are never updated or deleted.
    """
    __tablename__ = "processed_event"

    event_id: str = Field(primary_key=True)  # RevenueCat event id
    user_id: str = Field(index=True)
    event_type: Optional[str] = Field(default=None, nullable=True, index=True)  # e.g. "INITIAL_PURCHASE"
    product_id: Optional[str] = Field(default=None, nullable=True)
    source: str = Field(default="revenuecat")
    processed_at: datetime = Field(default_factory=_utc_now)
