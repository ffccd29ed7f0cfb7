from pydantic import BaseModel, EmailStr, Field
from typing import Optional


class UserCreate(BaseModel):
    firebaseUid: str = Field(..., min_length=10, max_length=128)
    email: EmailStr
    displayName: Optional[str] = None


class SubscriptionUpdate(BaseModel):
    tier: str
    stripeCustomerId: Optional[str] = None
    stripeSubscriptionId: Optional[str] = None
