"""
Per-user token balance and subscription flags.
"""
from typing import Optional
from datetime import datetime, timezone
from sqlalchemy import CheckConstraint
from sqlmodel import Field, SQLModel

# lastSubscriptionEvent written on an account that donated its entitlement
TRANSFERRED_AWAY = "TRANSFERRED_AWAY"


def _utc_now() -> datetime:
    """Get current UTC time (timezone-aware)."""
    return datetime.now(timezone.utc)


class UserEntitlement(SQLModel, table=True):
    """
    One row per user. Only the balance operations in
    rockid.services.balance write to this table.
    """
    __tablename__ = "user_entitlement"
    __table_args__ = (CheckConstraint("tokens >= 0", name="ck_user_entitlement_tokens_non_negative"),)

    user_id: str = Field(primary_key=True)
    tokens: int = Field(default=0)
    is_premium: bool = Field(default=False)
    subscription_active: bool = Field(default=False)
    subscription_product_id: Optional[str] = Field(default=None, nullable=True)
    last_subscription_event: Optional[str] = Field(default=None, nullable=True)
    last_grant_at: Optional[datetime] = Field(default=None, nullable=True)
    last_cancellation_at: Optional[datetime] = Field(default=None, nullable=True)
    transferred_to: Optional[str] = Field(default=None, nullable=True, index=True)  # Latest destination, never cleared

    created_at: datetime = Field(default_factory=_utc_now)
    updated_at: datetime = Field(default_factory=_utc_now)

    # Optimistic concurrency: bumped on every write
    version: int = Field(default=1)

    @property
    def has_access(self) -> bool:
        """Whether the user can run an identification right now."""
        return self.tokens > 0
