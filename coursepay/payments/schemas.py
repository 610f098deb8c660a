import uuid
from datetime import datetime
from decimal import Decimal
from typing import Literal

from pydantic import AliasChoices, BaseModel, Field

from coursepay.ledger.models import InvoiceStatus, TransactionStatus, TransactionType

Currency = Literal["USD", "EUR", "GBP"]


class PaymentRequest(BaseModel):
    course_id: str = Field(min_length=1, validation_alias=AliasChoices("course_id", "courseId"))
    # Processor minimum charge
    amount: Decimal = Field(ge=Decimal("0.50"), decimal_places=2)
    currency: Currency = "USD"
    source: str = Field(min_length=1)  # payment method id
    educator_id: str = Field(min_length=1, validation_alias=AliasChoices("educator_id", "educatorId"))
    description: str | None = Field(default=None, max_length=500)


class RefundRequest(BaseModel):
    transaction_id: uuid.UUID = Field(validation_alias=AliasChoices("transaction_id", "transactionId"))
    amount: Decimal | None = Field(default=None, gt=0, decimal_places=2)
    reason: str | None = Field(default=None, max_length=500)


class TransactionResponse(BaseModel):
    model_config = {"from_attributes": True}

    id: uuid.UUID
    gateway_charge_id: str | None
    amount: Decimal
    currency: str
    status: TransactionStatus
    type: TransactionType
    platform_commission: Decimal
    educator_earnings: Decimal
    user_id: str
    course_id: str
    educator_id: str
    description: str | None
    metadata_: dict | None = None
    refund_id: uuid.UUID | None = None
    created_at: datetime


class InvoiceResponse(BaseModel):
    model_config = {"from_attributes": True}

    id: uuid.UUID
    invoice_number: str
    transaction_id: uuid.UUID
    subtotal: Decimal
    discount: Decimal
    tax: Decimal
    total: Decimal
    status: InvoiceStatus
    billing_info: dict | None = None
    issue_date: datetime
    paid_at: datetime | None = None
    notes: str | None = None


class PaymentResponse(BaseModel):
    success: bool = True
    message: str = "Payment processed successfully"
    transaction: TransactionResponse
    invoice: InvoiceResponse
    processing_time_ms: int


class RefundDetail(BaseModel):
    original_transaction: TransactionResponse
    refund_transaction: TransactionResponse
    gateway_refund_id: str
    transfer_reversal_id: str | None = None


class RefundResponse(BaseModel):
    success: bool = True
    message: str = "Refund processed successfully"
    refund: RefundDetail


class TransactionWithInvoice(TransactionResponse):
    invoice: InvoiceResponse | None = None


class Pagination(BaseModel):
    total: int
    page: int
    limit: int
    pages: int


class TransactionListResponse(BaseModel):
    success: bool = True
    transactions: list[TransactionWithInvoice]
    pagination: Pagination


class TransactionDetailResponse(TransactionWithInvoice):
    course_title: str | None = None
    user_name: str | None = None
    educator_name: str | None = None


class EarningsResponse(BaseModel):
    success: bool = True
    educator_id: str
    total_earnings: Decimal


class BalanceResponse(BaseModel):
    success: bool = True
    educator_id: str
    pending_balance: Decimal
    currency: str
