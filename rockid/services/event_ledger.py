"""
Event Ledger: append-only record of applied billing events.
"""
import logging
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session

from rockid.models.processed_event import ProcessedEvent

logger = logging.getLogger(__name__)


def is_event_processed(event_id: str, session: Session) -> bool:
    """Check if a billing event has already been applied."""
    return session.get(ProcessedEvent, event_id) is not None


def record_event(
    event_id: str,
    user_id: str,
    session: Session,
    event_type: Optional[str] = None,
    product_id: Optional[str] = None,
) -> bool:
    """
    Record a billing event as processed.

    Returns False if another delivery of the same event recorded it first.
    """
    event = ProcessedEvent(
        event_id=event_id,
        user_id=user_id,
        event_type=event_type,
        product_id=product_id,
    )
    session.add(event)
    try:
        session.commit()
    except IntegrityError:
        session.rollback()
        logger.warning("Event recorded by a concurrent delivery", extra={"event_id": event_id})
        return False
    return True
