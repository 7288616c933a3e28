from typing import Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlmodel import Session

from rockid.db import get_session
from rockid.core.config import settings
from rockid.core.context import set_user_id
from rockid.core.jwt import decode_access_token
from rockid.services.errors import EntitlementError
from rockid.services.store import EntitlementStore

bearer_scheme = HTTPBearer(auto_error=False)


def get_store(session: Session = Depends(get_session)) -> EntitlementStore:
    """Entitlement store bound to the request's session."""
    return EntitlementStore(session)


def get_current_user_id(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> str:
    """
    Verified caller identity from the Authorization bearer token.

    Client-supplied body fields are never used as identity.
    """
    if credentials is None or not credentials.credentials:
        raise EntitlementError.unauthenticated()

    user_id = decode_access_token(credentials.credentials)
    if user_id is None:
        raise EntitlementError.unauthenticated("Could not validate credentials.")

    set_user_id(user_id)
    return user_id


def get_webhook_secret() -> str:
    """Shared secret RevenueCat sends as the webhook bearer token."""
    return settings.REVENUECAT_BEARER_TOKEN
