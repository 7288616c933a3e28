"""
Entitlement endpoints for authenticated app users.
"""
import logging

from fastapi import APIRouter, Depends

from rockid.api.deps import get_current_user_id, get_store
from rockid.core.errors import capture_exception
from rockid.schemas import ConsumeResponse, EntitlementOut
from rockid.services.balance import consume_token, ensure_entitlement
from rockid.services.errors import EntitlementError
from rockid.services.store import EntitlementStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/entitlements", tags=["entitlements"])


@router.post("/consume")
def consume(
    user_id: str = Depends(get_current_user_id),
    store: EntitlementStore = Depends(get_store),
):
    """
    Consume one token before an identification.

    Errors are tagged: not-found (no record), failed-precondition (out of
    tokens, route the user to the paywall), internal (anything else).
    """
    logger.info("Token consumption request", extra={"user_id": user_id})
    try:
        remaining = consume_token(store, user_id)
    except EntitlementError:
        raise
    except Exception as e:
        capture_exception(e, context={"operation": "consume_token", "user_id": user_id})
        raise EntitlementError.internal() from e

    return ConsumeResponse(tokens_remaining=remaining).model_dump(by_alias=True)


@router.get("/me")
def read_entitlement(
    user_id: str = Depends(get_current_user_id),
    store: EntitlementStore = Depends(get_store),
):
    """Current token balance and subscription flags for the caller."""
    entitlement = store.get(user_id)
    if entitlement is None:
        raise EntitlementError.not_found()
    return EntitlementOut.from_model(entitlement).model_dump(mode="json", by_alias=True)


@router.post("/me")
def create_entitlement(
    user_id: str = Depends(get_current_user_id),
    store: EntitlementStore = Depends(get_store),
):
    """
    Create the caller's record on first sign-in with the starting grant.

    Safe to call on every sign-in; an existing record is returned unchanged.
    """
    entitlement = ensure_entitlement(store, user_id)
    return EntitlementOut.from_model(entitlement).model_dump(mode="json", by_alias=True)
