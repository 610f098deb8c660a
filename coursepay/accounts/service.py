"""Educator payout accounts (Stripe Connect express accounts)."""
import logging

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from coursepay.accounts.models import StripeAccount
from coursepay.audit.service import AuditEvent, log_event
from coursepay.core.exceptions import AppError, ErrorKind, NotFoundError
from coursepay.core.security import AuthUser
from coursepay.gateway.base import PaymentGateway

logger = logging.getLogger(__name__)


async def get_account(db: AsyncSession, educator_id: str) -> StripeAccount | None:
    result = await db.execute(select(StripeAccount).where(StripeAccount.educator_id == educator_id))
    return result.scalar_one_or_none()


async def require_account(db: AsyncSession, educator_id: str) -> StripeAccount:
    account = await get_account(db, educator_id)
    if account is None:
        raise NotFoundError("Educator Stripe account", educator_id)
    return account


async def create_account(
    db: AsyncSession, gateway: PaymentGateway, educator: AuthUser, frontend_url: str
) -> tuple[StripeAccount, str]:
    """Create the connected account and return it with the onboarding link."""
    if await get_account(db, educator.id) is not None:
        raise AppError("Educator already has a Stripe account", kind=ErrorKind.VALIDATION)

    connected = await gateway.create_connected_account(email=educator.email)
    onboarding_url = await gateway.create_onboarding_link(
        connected.id,
        refresh_url=f"{frontend_url}/educator/stripe-account?refresh=true",
        return_url=f"{frontend_url}/educator/stripe-account?success=true",
    )

    account = StripeAccount(
        educator_id=educator.id, email=educator.email, stripe_account_id=connected.id
    )
    db.add(account)
    await db.flush()
    await log_event(
        db,
        AuditEvent.STRIPE_ACCOUNT_CREATED,
        educator.id,
        description=f"Stripe Connect account created for educator {educator.id}",
        metadata={"accountId": connected.id},
    )
    await db.commit()
    logger.info("Connected account %s created for educator %s", connected.id, educator.id)
    return account, onboarding_url


async def create_login_link(db: AsyncSession, gateway: PaymentGateway, educator_id: str) -> str:
    account = await require_account(db, educator_id)
    return await gateway.create_login_link(account.stripe_account_id)


async def delete_account(db: AsyncSession, gateway: PaymentGateway, educator_id: str) -> None:
    account = await require_account(db, educator_id)
    await gateway.delete_connected_account(account.stripe_account_id)
    await db.execute(delete(StripeAccount).where(StripeAccount.educator_id == educator_id))
    await log_event(
        db,
        AuditEvent.STRIPE_ACCOUNT_DELETED,
        educator_id,
        description=f"Stripe Connect account deleted for educator {educator_id}",
        metadata={"accountId": account.stripe_account_id},
    )
    await db.commit()
    logger.info("Connected account %s deleted for educator %s", account.stripe_account_id, educator_id)
