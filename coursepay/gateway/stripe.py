import asyncio
import json
import logging
from functools import partial
from typing import Any, Callable, TypeVar

import stripe

from coursepay.core.exceptions import (
    GatewayUnavailableError,
    PaymentDeclinedError,
    ValidationError,
)
from coursepay.gateway.base import (
    AccountBalance,
    ChargeDetails,
    ChargeResult,
    ConnectedAccount,
    PaymentGateway,
    RefundResult,
    TransferReversalResult,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


class StripeGateway(PaymentGateway):
    """Stripe Connect destination charges. SDK calls run in a worker thread."""

    def __init__(self, api_key: str, timeout_seconds: float = 10.0) -> None:
        super().__init__(timeout_seconds)
        stripe.api_key = api_key
        # Retries are the caller's decision, never the SDK's
        stripe.max_network_retries = 0

    @property
    def name(self) -> str:
        return "stripe"

    async def _call(self, operation: str, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        try:
            return await self._bounded(operation, asyncio.to_thread(partial(fn, *args, **kwargs)))
        except stripe.CardError as exc:
            logger.warning("Stripe declined %s: %s", operation, exc.user_message)
            raise PaymentDeclinedError(exc.user_message or "Card was declined") from exc
        except stripe.InvalidRequestError as exc:
            logger.warning("Stripe rejected %s: %s", operation, exc.user_message)
            raise PaymentDeclinedError(f"Payment gateway rejected the {operation} request") from exc
        except (stripe.APIConnectionError, stripe.RateLimitError, stripe.APIError) as exc:
            logger.error("Stripe unavailable during %s: %s", operation, exc)
            raise GatewayUnavailableError() from exc
        except stripe.StripeError as exc:
            logger.error("Stripe error during %s: %s", operation, exc)
            raise GatewayUnavailableError() from exc

    async def create_charge(
        self,
        *,
        amount: int,
        currency: str,
        payment_method: str,
        description: str,
        metadata: dict[str, str],
        application_fee: int,
        destination_account: str,
        idempotency_key: str,
    ) -> ChargeResult:
        intent = await self._call(
            "charge",
            stripe.PaymentIntent.create,
            amount=amount,
            currency=currency.lower(),
            payment_method=payment_method,
            confirm=True,
            description=description,
            metadata=metadata,
            application_fee_amount=application_fee,
            transfer_data={"destination": destination_account},
            automatic_payment_methods={"enabled": True, "allow_redirects": "never"},
            idempotency_key=idempotency_key,
        )
        return ChargeResult(
            id=intent.id,
            status=intent.status,
            amount=intent.amount,
            currency=intent.currency,
            latest_charge_id=getattr(intent, "latest_charge", None),
            raw=intent.to_dict(),
        )

    async def retrieve_charge(self, payment_id: str) -> ChargeDetails:
        intent = await self._call("charge lookup", stripe.PaymentIntent.retrieve, payment_id)
        charge_id = getattr(intent, "latest_charge", None)
        if not charge_id:
            raise ValidationError("Payment has no charge to refund")
        charge = await self._call("charge lookup", stripe.Charge.retrieve, charge_id)
        return ChargeDetails(charge_id=charge.id, transfer_id=getattr(charge, "transfer", None))

    async def create_refund(
        self, *, charge_id: str, amount: int, metadata: dict[str, str], idempotency_key: str
    ) -> RefundResult:
        refund = await self._call(
            "refund",
            stripe.Refund.create,
            charge=charge_id,
            amount=amount,
            reason="requested_by_customer",
            metadata=metadata,
            idempotency_key=idempotency_key,
        )
        return RefundResult(id=refund.id, status=refund.status, amount=refund.amount)

    async def reverse_transfer(
        self, *, transfer_id: str, amount: int, idempotency_key: str
    ) -> TransferReversalResult:
        reversal = await self._call(
            "transfer reversal",
            stripe.Transfer.create_reversal,
            transfer_id,
            amount=amount,
            idempotency_key=idempotency_key,
        )
        return TransferReversalResult(id=reversal.id, amount=reversal.amount)

    async def create_connected_account(self, *, email: str | None, country: str = "US") -> ConnectedAccount:
        account = await self._call(
            "account creation", stripe.Account.create, type="express", country=country, email=email
        )
        return ConnectedAccount(id=account.id, email=getattr(account, "email", None))

    async def create_onboarding_link(self, account_id: str, *, refresh_url: str, return_url: str) -> str:
        link = await self._call(
            "account link",
            stripe.AccountLink.create,
            account=account_id,
            refresh_url=refresh_url,
            return_url=return_url,
            type="account_onboarding",
        )
        return link.url

    async def create_login_link(self, account_id: str) -> str:
        link = await self._call("login link", stripe.Account.create_login_link, account_id)
        return link.url

    async def delete_connected_account(self, account_id: str) -> None:
        await self._call("account deletion", stripe.Account.delete, account_id)

    async def retrieve_pending_balance(self, account_id: str) -> AccountBalance:
        balance = await self._call("balance", stripe.Balance.retrieve, stripe_account=account_id)
        pending = getattr(balance, "pending", None) or []
        if not pending:
            return AccountBalance(amount=0, currency="usd")
        return AccountBalance(amount=pending[0].amount, currency=pending[0].currency)


def construct_webhook_event(payload: bytes, signature: str | None, secret: str) -> dict[str, Any]:
    """Verify the Stripe-Signature header against the raw body and parse the event."""
    if not signature or not secret:
        raise ValidationError("Missing webhook signature")
    try:
        event = stripe.Webhook.construct_event(payload, signature, secret)
    except ValueError as exc:
        raise ValidationError("Invalid webhook payload") from exc
    except stripe.SignatureVerificationError as exc:
        raise ValidationError("Invalid webhook signature") from exc
    logger.debug("Verified webhook event %s", event.id)
    return json.loads(payload)
