"""
Balance Mutator: the only operations that change a user's entitlement.

Grant, revoke and transfer run as optimistic store transactions; consume is
a guarded decrement. None of them is idempotent on its own (grant adds), so
webhook callers must gate them on the event ledger.
"""
import logging
from datetime import datetime, timezone
from typing import Optional

from rockid.core.config import settings
from rockid.models.entitlement import TRANSFERRED_AWAY, UserEntitlement
from rockid.services.errors import EntitlementError
from rockid.services.price_plans import tokens_for_product
from rockid.services.store import EntitlementStore, Transaction

logger = logging.getLogger(__name__)

INITIAL_PURCHASE = "INITIAL_PURCHASE"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_entitlement(store: EntitlementStore, user_id: str) -> UserEntitlement:
    """Create the user's record on first authentication with the starting grant."""
    entitlement, created = store.ensure(user_id, settings.NEW_USER_TOKENS)
    if created:
        logger.info(
            "Created entitlement for new user",
            extra={"user_id": user_id, "tokens": entitlement.tokens},
        )
    return entitlement


def grant_tokens(
    store: EntitlementStore,
    user_id: str,
    product_id: str | None,
    event_type: str,
    event_id: Optional[str] = None,
) -> int:
    """
    Add the product's tokens to the balance and mark the subscription active.

    Additive so renewals stack. Products that map to 0 tokens still activate
    premium (subscription-only products). Returns the tokens granted.
    """
    tokens_to_grant = tokens_for_product(product_id)

    if tokens_to_grant == 0 and event_type != INITIAL_PURCHASE:
        logger.info(
            "No tokens to grant, ensuring subscription is active",
            extra={"user_id": user_id, "event_id": event_id, "product_id": product_id, "event_type": event_type},
        )

    def apply(txn: Transaction) -> None:
        current = txn.get(user_id)
        balance = current.tokens if current else 0
        txn.set(
            user_id,
            tokens=balance + tokens_to_grant,
            is_premium=True,
            subscription_active=True,
            subscription_product_id=product_id,
            last_subscription_event=event_type,
            last_grant_at=_utc_now(),
        )

    store.transaction(apply)
    logger.info(
        "Granted tokens",
        extra={
            "user_id": user_id,
            "event_id": event_id,
            "event_type": event_type,
            "tokens": tokens_to_grant,
            "product_id": product_id,
        },
    )
    return tokens_to_grant


def revoke_tokens(store: EntitlementStore, user_id: str, event_type: str, event_id: Optional[str] = None) -> None:
    """Deactivate the subscription and zero the balance; tokens came with it."""

    def apply(txn: Transaction) -> None:
        txn.get(user_id)
        txn.set(
            user_id,
            tokens=0,
            is_premium=False,
            subscription_active=False,
            last_subscription_event=event_type,
            last_cancellation_at=_utc_now(),
        )

    store.transaction(apply)
    logger.info(
        "Subscription inactive, tokens set to 0",
        extra={"user_id": user_id, "event_id": event_id, "event_type": event_type},
    )


def transfer_subscription(
    store: EntitlementStore,
    from_user_id: str,
    to_user_id: str,
    event_type: str,
    event_id: Optional[str] = None,
) -> bool:
    """
    Move a subscription and its tokens from one account to another.

    The destination keeps its own tokens plus the source's; the source is
    zeroed and ``transferred_to`` points at the latest destination. Both
    writes commit together.
    Returns False when the source has no record (anonymous purchase linked to
    an account that never had one): nothing to move.
    """
    if from_user_id == to_user_id:
        raise ValueError("Cannot transfer a subscription to the same user")

    transfer_context = {
        "from_user_id": from_user_id,
        "to_user_id": to_user_id,
        "event_id": event_id,
        "event_type": event_type,
    }
    logger.info("Transferring subscription", extra=transfer_context)

    def apply(txn: Transaction) -> bool:
        source = txn.get(from_user_id)
        destination = txn.get(to_user_id)

        if source is None:
            return False

        now = _utc_now()
        destination_tokens = destination.tokens if destination else 0
        txn.set(
            to_user_id,
            is_premium=source.is_premium,
            subscription_active=source.subscription_active,
            subscription_product_id=source.subscription_product_id,
            last_subscription_event=event_type,
            last_grant_at=now,
            tokens=source.tokens + destination_tokens,
        )
        txn.set(
            from_user_id,
            tokens=0,
            is_premium=False,
            subscription_active=False,
            last_subscription_event=TRANSFERRED_AWAY,
            last_cancellation_at=now,
            transferred_to=to_user_id,
        )
        return True

    transferred = store.transaction(apply)
    if not transferred:
        logger.warning(
            "Original user not found for transfer, nothing to move",
            extra=transfer_context,
        )
    else:
        logger.info("Transferred subscription", extra=transfer_context)
    return transferred


def consume_token(store: EntitlementStore, user_id: str) -> int:
    """
    Take one token for an identification. Premium users are not exempt.

    Returns the remaining balance. Raises EntitlementError tagged NOT_FOUND
    when the user has no record, FAILED_PRECONDITION when the balance is 0.
    """
    remaining = store.decrement_token(user_id)
    if remaining is not None:
        logger.info("Consumed token", extra={"user_id": user_id, "tokens_remaining": remaining})
        return remaining

    if store.get(user_id) is None:
        logger.warning("No entitlement record for user, denying action", extra={"user_id": user_id})
        raise EntitlementError.not_found()

    logger.warning("User has no tokens, denying action", extra={"user_id": user_id})
    raise EntitlementError.out_of_tokens()
