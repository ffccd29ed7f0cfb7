from pydantic import BaseModel, EmailStr, Field
from typing import Optional


class CheckoutSessionRequest(BaseModel):
    priceId: str = Field(..., pattern=r"^price_[a-zA-Z0-9_]+$")
    planName: str
    userId: str
    userEmail: EmailStr


class VerifySessionRequest(BaseModel):
    sessionId: str = Field(..., min_length=1)


class CancelSubscriptionRequest(BaseModel):
    userId: Optional[str] = None
    customerId: Optional[str] = None
    subscriptionId: Optional[str] = None
