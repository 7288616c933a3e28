"""
Error taxonomy for entitlement operations.

Callers branch on ``EntitlementError.kind``; the set of kinds is closed.
"""
from enum import Enum


class ErrorKind(str, Enum):
    UNAUTHENTICATED = "unauthenticated"
    NOT_FOUND = "not-found"
    FAILED_PRECONDITION = "failed-precondition"
    INTERNAL = "internal"


# HTTP status for each kind on the wire
HTTP_STATUS = {
    ErrorKind.UNAUTHENTICATED: 401,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.FAILED_PRECONDITION: 400,
    ErrorKind.INTERNAL: 500,
}

OUT_OF_TOKENS_MESSAGE = "You are out of tokens. Please subscribe for more."


class EntitlementError(Exception):
    """A failure the client can act on, tagged with its kind."""

    def __init__(self, kind: ErrorKind, message: str):
        super().__init__(message)
        self.kind = kind
        self.message = message

    @property
    def status_code(self) -> int:
        return HTTP_STATUS[self.kind]

    def to_dict(self) -> dict:
        return {"error": {"status": self.kind.value, "message": self.message}}

    @classmethod
    def unauthenticated(cls, message: str = "The function must be called while authenticated.") -> "EntitlementError":
        return cls(ErrorKind.UNAUTHENTICATED, message)

    @classmethod
    def not_found(cls, message: str = "User entitlement not found.") -> "EntitlementError":
        return cls(ErrorKind.NOT_FOUND, message)

    @classmethod
    def out_of_tokens(cls) -> "EntitlementError":
        return cls(ErrorKind.FAILED_PRECONDITION, OUT_OF_TOKENS_MESSAGE)

    @classmethod
    def internal(cls, message: str = "An internal error occurred while consuming token.") -> "EntitlementError":
        return cls(ErrorKind.INTERNAL, message)


class TransactionConflict(Exception):
    """An optimistic write lost a race with a concurrent writer."""

    def __init__(self, user_id: str):
        super().__init__(f"Concurrent modification of entitlement {user_id}")
        self.user_id = user_id


class DuplicateDelivery(Exception):
    """A billing event was applied by two deliveries that raced past the ledger check."""

    def __init__(self, event_id: str):
        super().__init__(f"Billing event {event_id} applied by concurrent deliveries")
        self.event_id = event_id
