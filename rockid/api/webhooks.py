"""
Webhook handler for RevenueCat subscription events.
"""
import hmac
import json
import logging
from typing import Any, Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import PlainTextResponse
from sqlmodel import Session
from starlette.concurrency import run_in_threadpool

from rockid.api.deps import get_store, get_webhook_secret
from rockid.core.errors import capture_exception
from rockid.db import get_session
from rockid.services.balance import grant_tokens, revoke_tokens, transfer_subscription
from rockid.services.errors import DuplicateDelivery
from rockid.services.event_ledger import is_event_processed, record_event
from rockid.services.store import EntitlementStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])

GRANT_EVENTS = frozenset({"INITIAL_PURCHASE", "RENEWAL"})
REVOKE_EVENTS = frozenset({"CANCELLATION", "EXPIRATION"})


class WebhookRejected(Exception):
    """Request refused before any processing; carries the HTTP response."""

    def __init__(self, status_code: int, message: str):
        super().__init__(message)
        self.status_code = status_code
        self.message = message


def verify_bearer_token(authorization: Optional[str], secret: str) -> None:
    """
    Check the Authorization header against the configured secret.

    Raises WebhookRejected: 500 when no secret is configured, 401 when the
    header is missing, malformed, or carries the wrong token.
    """
    if not secret:
        logger.error("CRITICAL: RevenueCat bearer token missing or not loaded (env vars/Secret Manager)")
        raise WebhookRejected(500, "Webhook authentication not configured properly.")

    if not authorization:
        logger.warning("Missing Authorization header")
        raise WebhookRejected(401, "Unauthorized: Missing Authorization header.")

    parts = authorization.split(" ")
    if len(parts) != 2 or parts[0] != "Bearer" or not parts[1]:
        logger.warning("Invalid Authorization header format")
        raise WebhookRejected(401, "Unauthorized: Invalid Authorization header format.")

    if not hmac.compare_digest(parts[1].encode("utf-8"), secret.encode("utf-8")):
        logger.warning("Invalid bearer token received")
        raise WebhookRejected(401, "Unauthorized: Invalid token.")


def extract_event(body: Any) -> dict:
    """RevenueCat wraps the event under "event"; bare events are accepted too."""
    if not isinstance(body, dict):
        raise WebhookRejected(400, "Invalid webhook payload.")
    event = body.get("event")
    if isinstance(event, dict):
        return event
    return body


def process_event(event: dict, store: EntitlementStore, session: Session) -> str:
    """
    Apply one authenticated billing event. Returns the response text.

    The event is recorded only after its mutation succeeds, so an exception
    here leaves it unrecorded and a provider retry re-applies it.
    """
    event_type = event.get("type")
    app_user_id = event.get("app_user_id")
    product_id = event.get("product_id")
    event_id = event.get("id")

    logger.info(
        "Received authenticated RevenueCat webhook",
        extra={
            "event_id": event_id,
            "event_type": event_type,
            "app_user_id": app_user_id,
            "original_app_user_id": event.get("original_app_user_id"),
            "product_id": product_id,
            "event_timestamp_ms": event.get("event_timestamp_ms"),
        },
    )

    if not app_user_id:
        logger.warning("No app_user_id provided in webhook payload", extra={"event_id": event_id})
        raise WebhookRejected(400, "Missing app_user_id.")

    if not event_id:
        logger.warning("No event ID provided, cannot ensure idempotency", extra={"app_user_id": app_user_id})
        raise WebhookRejected(400, "Missing event ID.")

    if is_event_processed(event_id, session):
        logger.info("Event already processed, skipping", extra={"event_id": event_id})
        return "Event already processed."

    if event_type in GRANT_EVENTS:
        grant_tokens(store, app_user_id, product_id, event_type, event_id=event_id)

    elif event_type in REVOKE_EVENTS:
        revoke_tokens(store, app_user_id, event_type, event_id=event_id)

    elif event_type == "TRANSFER":
        original_app_user_id = event.get("original_app_user_id")
        if original_app_user_id and original_app_user_id != app_user_id:
            transfer_subscription(store, original_app_user_id, app_user_id, event_type, event_id=event_id)
        else:
            logger.warning(
                "TRANSFER event without a valid original_app_user_id, skipping",
                extra={
                    "event_id": event_id,
                    "app_user_id": app_user_id,
                    "original_app_user_id": original_app_user_id or "not provided",
                },
            )

    elif event_type == "TEST":
        logger.info("TEST event: auth OK", extra={"event_id": event_id})

    else:
        logger.info(
            "Unhandled event type, acknowledging",
            extra={"event_id": event_id, "event_type": event_type, "app_user_id": app_user_id},
        )

    recorded = record_event(
        event_id=event_id,
        user_id=app_user_id,
        session=session,
        event_type=event_type,
        product_id=product_id,
    )
    if not recorded:
        # Another delivery recorded it first; the mutation above ran twice
        capture_exception(
            DuplicateDelivery(event_id),
            context={"event_id": event_id, "event_type": event_type, "app_user_id": app_user_id},
            fingerprint=["revenuecat-duplicate-delivery"],
        )
    return "Webhook processed successfully."


@router.post("/revenuecat", response_class=PlainTextResponse)
async def revenuecat_webhook(
    request: Request,
    secret: str = Depends(get_webhook_secret),
    store: EntitlementStore = Depends(get_store),
    session: Session = Depends(get_session),
):
    """
    Handle RevenueCat webhook events.

    Events handled:
    - INITIAL_PURCHASE, RENEWAL: grant the product's tokens, activate premium
    - CANCELLATION, EXPIRATION: revoke premium and zero tokens
    - TRANSFER: move entitlement from original_app_user_id to app_user_id
    - TEST: authentication check only
    Anything else is acknowledged without changes.
    """
    try:
        verify_bearer_token(request.headers.get("authorization"), secret)
    except WebhookRejected as e:
        return PlainTextResponse(e.message, status_code=e.status_code)

    event: dict = {}
    try:
        body = await request.body()
        try:
            payload = json.loads(body)
        except ValueError:
            logger.warning("Webhook body is not valid JSON")
            return PlainTextResponse("Invalid JSON payload.", status_code=400)

        event = extract_event(payload)
        message = await run_in_threadpool(process_event, event, store, session)
        return PlainTextResponse(message, status_code=200)

    except WebhookRejected as e:
        return PlainTextResponse(e.message, status_code=e.status_code)
    except Exception as e:
        capture_exception(
            e,
            context={
                "operation": "revenuecat_webhook",
                "event_id": event.get("id"),
                "event_type": event.get("type"),
                "app_user_id": event.get("app_user_id"),
            },
        )
        return PlainTextResponse("Internal server error while processing payload.", status_code=500)
