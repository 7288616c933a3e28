from .entitlement import UserEntitlement, TRANSFERRED_AWAY
from .processed_event import ProcessedEvent

__all__ = [
    "UserEntitlement",
    "TRANSFERRED_AWAY",
    "ProcessedEvent",
]
