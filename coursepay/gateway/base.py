import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Awaitable, TypeVar

from coursepay.core.exceptions import GatewayUnavailableError

T = TypeVar("T")

SUCCEEDED = "succeeded"


@dataclass(frozen=True)
class ChargeResult:
    """Standardized result of a create-and-confirm charge."""
    id: str
    status: str
    amount: int
    currency: str
    latest_charge_id: str | None = None
    raw: dict[str, Any] = field(default_factory=dict)

    @property
    def succeeded(self) -> bool:
        return self.status == SUCCEEDED


@dataclass(frozen=True)
class ChargeDetails:
    charge_id: str
    transfer_id: str | None


@dataclass(frozen=True)
class RefundResult:
    id: str
    status: str
    amount: int


@dataclass(frozen=True)
class TransferReversalResult:
    id: str
    amount: int


@dataclass(frozen=True)
class ConnectedAccount:
    id: str
    email: str | None


@dataclass(frozen=True)
class AccountBalance:
    amount: int
    currency: str


class PaymentGateway(ABC):
    """
    Abstract interface for the payment processor.
    Business logic NEVER sees raw processor objects. Amounts are minor units.
    """

    def __init__(self, timeout_seconds: float = 10.0) -> None:
        self.timeout_seconds = timeout_seconds

    @property
    @abstractmethod
    def name(self) -> str:
        ...

    async def _bounded(self, operation: str, call: Awaitable[T]) -> T:
        # A timeout does not mean the processor did nothing; callers must treat
        # the outcome as unknown.
        try:
            return await asyncio.wait_for(call, timeout=self.timeout_seconds)
        except asyncio.TimeoutError as exc:
            raise GatewayUnavailableError(
                f"Payment gateway timed out during {operation}"
            ) from exc

    @abstractmethod
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
        ...

    @abstractmethod
    async def retrieve_charge(self, payment_id: str) -> ChargeDetails:
        ...

    @abstractmethod
    async def create_refund(
        self, *, charge_id: str, amount: int, metadata: dict[str, str], idempotency_key: str
    ) -> RefundResult:
        ...

    @abstractmethod
    async def reverse_transfer(
        self, *, transfer_id: str, amount: int, idempotency_key: str
    ) -> TransferReversalResult:
        ...

    @abstractmethod
    async def create_connected_account(self, *, email: str | None, country: str = "US") -> ConnectedAccount:
        ...

    @abstractmethod
    async def create_onboarding_link(self, account_id: str, *, refresh_url: str, return_url: str) -> str:
        ...

    @abstractmethod
    async def create_login_link(self, account_id: str) -> str:
        ...

    @abstractmethod
    async def delete_connected_account(self, account_id: str) -> None:
        ...

    @abstractmethod
    async def retrieve_pending_balance(self, account_id: str) -> AccountBalance:
        ...

    async def close(self) -> None:
        """Cleanup resources."""
        pass
