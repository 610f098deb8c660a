from datetime import datetime

from pydantic import BaseModel


class StripeAccountResponse(BaseModel):
    model_config = {"from_attributes": True}

    educator_id: str
    email: str | None
    stripe_account_id: str
    created_at: datetime


class AccountCreatedResponse(BaseModel):
    success: bool = True
    account: StripeAccountResponse
    onboarding_url: str


class LoginLinkResponse(BaseModel):
    success: bool = True
    url: str
