import itertools
from dataclasses import dataclass, field
from typing import Any

from coursepay.core.exceptions import AppError, NotFoundError
from coursepay.gateway.base import (
    SUCCEEDED,
    AccountBalance,
    ChargeDetails,
    ChargeResult,
    ConnectedAccount,
    PaymentGateway,
    RefundResult,
    TransferReversalResult,
)


@dataclass
class _Payment:
    id: str
    charge_id: str
    transfer_id: str | None
    amount: int
    application_fee: int
    destination: str


@dataclass
class GatewayCall:
    operation: str
    kwargs: dict[str, Any] = field(default_factory=dict)


class MockGateway(PaymentGateway):
    """
    Deterministic in-memory processor for development and tests.

    Set `charge_error` / `refund_error` to make the next call of that kind
    raise. Idempotency keys replay the first result like the real processor.
    """

    def __init__(self, timeout_seconds: float = 10.0, charge_status: str = SUCCEEDED) -> None:
        super().__init__(timeout_seconds)
        self.charge_status = charge_status
        self.charge_error: AppError | None = None
        self.refund_error: AppError | None = None
        self.calls: list[GatewayCall] = []
        self._ids = itertools.count(1)
        self._payments: dict[str, _Payment] = {}
        self._accounts: dict[str, ConnectedAccount] = {}
        self._idempotent: dict[str, Any] = {}

    @property
    def name(self) -> str:
        return "mock"

    def _next_id(self, prefix: str) -> str:
        return f"{prefix}_mock_{next(self._ids)}"

    def operations(self) -> list[str]:
        return [call.operation for call in self.calls]

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
        self.calls.append(GatewayCall("create_charge", {
            "amount": amount,
            "currency": currency,
            "application_fee": application_fee,
            "destination_account": destination_account,
            "metadata": metadata,
        }))
        if self.charge_error is not None:
            error, self.charge_error = self.charge_error, None
            raise error
        if idempotency_key in self._idempotent:
            return self._idempotent[idempotency_key]

        payment = _Payment(
            id=self._next_id("pi"),
            charge_id=self._next_id("ch"),
            transfer_id=self._next_id("tr"),
            amount=amount,
            application_fee=application_fee,
            destination=destination_account,
        )
        self._payments[payment.id] = payment
        result = ChargeResult(
            id=payment.id,
            status=self.charge_status,
            amount=amount,
            currency=currency.lower(),
            latest_charge_id=payment.charge_id,
        )
        self._idempotent[idempotency_key] = result
        return result

    async def retrieve_charge(self, payment_id: str) -> ChargeDetails:
        self.calls.append(GatewayCall("retrieve_charge", {"payment_id": payment_id}))
        payment = self._payments.get(payment_id)
        if payment is None:
            raise NotFoundError("Charge", payment_id)
        return ChargeDetails(charge_id=payment.charge_id, transfer_id=payment.transfer_id)

    async def create_refund(
        self, *, charge_id: str, amount: int, metadata: dict[str, str], idempotency_key: str
    ) -> RefundResult:
        self.calls.append(GatewayCall("create_refund", {"charge_id": charge_id, "amount": amount}))
        if self.refund_error is not None:
            error, self.refund_error = self.refund_error, None
            raise error
        if idempotency_key in self._idempotent:
            return self._idempotent[idempotency_key]
        result = RefundResult(id=self._next_id("re"), status=SUCCEEDED, amount=amount)
        self._idempotent[idempotency_key] = result
        return result

    async def reverse_transfer(
        self, *, transfer_id: str, amount: int, idempotency_key: str
    ) -> TransferReversalResult:
        self.calls.append(GatewayCall("reverse_transfer", {"transfer_id": transfer_id, "amount": amount}))
        if idempotency_key in self._idempotent:
            return self._idempotent[idempotency_key]
        result = TransferReversalResult(id=self._next_id("trr"), amount=amount)
        self._idempotent[idempotency_key] = result
        return result

    async def create_connected_account(self, *, email: str | None, country: str = "US") -> ConnectedAccount:
        self.calls.append(GatewayCall("create_connected_account", {"email": email}))
        account = ConnectedAccount(id=self._next_id("acct"), email=email)
        self._accounts[account.id] = account
        return account

    async def create_onboarding_link(self, account_id: str, *, refresh_url: str, return_url: str) -> str:
        self.calls.append(GatewayCall("create_onboarding_link", {"account_id": account_id}))
        return f"https://connect.mock/onboarding/{account_id}"

    async def create_login_link(self, account_id: str) -> str:
        self.calls.append(GatewayCall("create_login_link", {"account_id": account_id}))
        return f"https://connect.mock/login/{account_id}"

    async def delete_connected_account(self, account_id: str) -> None:
        self.calls.append(GatewayCall("delete_connected_account", {"account_id": account_id}))
        self._accounts.pop(account_id, None)

    async def retrieve_pending_balance(self, account_id: str) -> AccountBalance:
        self.calls.append(GatewayCall("retrieve_pending_balance", {"account_id": account_id}))
        pending = sum(
            p.amount - p.application_fee for p in self._payments.values() if p.destination == account_id
        )
        return AccountBalance(amount=pending, currency="usd")
