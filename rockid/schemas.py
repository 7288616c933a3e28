import json
import re
from typing import Optional
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from rockid.models.entitlement import UserEntitlement


class EntitlementOut(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(serialization_alias="userId")
    tokens: int
    is_premium: bool = Field(serialization_alias="isPremium")
    subscription_active: bool = Field(serialization_alias="subscriptionActive")
    subscription_product_id: Optional[str] = Field(default=None, serialization_alias="subscriptionProductId")
    last_subscription_event: Optional[str] = Field(default=None, serialization_alias="lastSubscriptionEvent")
    last_grant_at: Optional[datetime] = Field(default=None, serialization_alias="lastGrantAt")
    last_cancellation_at: Optional[datetime] = Field(default=None, serialization_alias="lastCancellationAt")
    transferred_to: Optional[str] = Field(default=None, serialization_alias="transferredTo")
    has_access: bool = Field(serialization_alias="hasAccess")

    @classmethod
    def from_model(cls, entitlement: UserEntitlement) -> "EntitlementOut":
        return cls(
            user_id=entitlement.user_id,
            tokens=entitlement.tokens,
            is_premium=entitlement.is_premium,
            subscription_active=entitlement.subscription_active,
            subscription_product_id=entitlement.subscription_product_id,
            last_subscription_event=entitlement.last_subscription_event,
            last_grant_at=entitlement.last_grant_at,
            last_cancellation_at=entitlement.last_cancellation_at,
            transferred_to=entitlement.transferred_to,
            has_access=entitlement.has_access,
        )


class ConsumeResponse(BaseModel):
    success: bool = True
    tokens_remaining: int = Field(serialization_alias="tokensRemaining")


# Vision-model identification result, as rendered by the client

class RockProperties(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    color: str = Field(alias="Color")
    streak: str = Field(alias="Streak")
    hardness: str = Field(alias="Hardness")
    crystal_system: str = Field(alias="Crystal System")


class IdentificationResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    rock_name: str = Field(alias="rockName")
    confidence: float
    description: str
    properties: RockProperties
    geological_context: str = Field(alias="geologicalContext")
    fun_fact: str = Field(alias="funFact")
    market_value: str = Field(alias="marketValue")


_CODE_FENCE = re.compile(r"```(?:json)?")


def parse_identification_text(text: str) -> IdentificationResult:
    """
    Parse the model's text reply into an IdentificationResult.

    The model often wraps its JSON in Markdown code fences; those are stripped
    first. Raises ValueError (json.JSONDecodeError or pydantic ValidationError)
    on anything that is not a complete result.
    """
    cleaned = _CODE_FENCE.sub("", text).strip()
    return IdentificationResult.model_validate(json.loads(cleaned))
