from fastapi import APIRouter

from coursepay.accounts import service
from coursepay.accounts.schemas import AccountCreatedResponse, LoginLinkResponse, StripeAccountResponse
from coursepay.config import settings
from coursepay.core.dependencies import DbSession, EducatorUser, Gateway

router = APIRouter(prefix="/accounts", tags=["accounts"])


@router.post("", response_model=AccountCreatedResponse, status_code=201)
async def create_account(db: DbSession, user: EducatorUser, gateway: Gateway) -> AccountCreatedResponse:
    account, onboarding_url = await service.create_account(db, gateway, user, settings.frontend_url)
    return AccountCreatedResponse(
        account=StripeAccountResponse.model_validate(account), onboarding_url=onboarding_url
    )


@router.get("/login-link", response_model=LoginLinkResponse)
async def login_link(db: DbSession, user: EducatorUser, gateway: Gateway) -> LoginLinkResponse:
    return LoginLinkResponse(url=await service.create_login_link(db, gateway, user.id))


@router.delete("")
async def delete_account(db: DbSession, user: EducatorUser, gateway: Gateway) -> dict:
    await service.delete_account(db, gateway, user.id)
    return {"success": True, "message": "Stripe account deleted"}
