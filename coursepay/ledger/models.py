import enum
import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import JSON, DateTime, Enum, ForeignKey, Index, Numeric, String, Text, Uuid, text
from sqlalchemy.orm import Mapped, mapped_column

from coursepay.db.base import Base, TimestampMixin, UpdatedAtMixin, UUIDMixin

MONEY = Numeric(12, 2)


class TransactionStatus(str, enum.Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"
    DISPUTED = "DISPUTED"


class TransactionType(str, enum.Enum):
    PAYMENT = "PAYMENT"
    REFUND = "REFUND"


class InvoiceStatus(str, enum.Enum):
    DRAFT = "DRAFT"
    ISSUED = "ISSUED"
    PAID = "PAID"
    CANCELLED = "CANCELLED"


_COMPLETED_PAYMENT = "type = 'PAYMENT' AND status = 'COMPLETED'"


class Transaction(UUIDMixin, TimestampMixin, UpdatedAtMixin, Base):
    __tablename__ = "transactions"
    __table_args__ = (
        Index("ix_transactions_user_id", "user_id"),
        Index("ix_transactions_educator_created", "educator_id", "created_at"),
        Index("ix_transactions_created_at", "created_at"),
        # One enrollment of record per (user, course); backstop for the
        # application-level duplicate check that runs before the charge.
        Index(
            "uq_transactions_completed_payment",
            "user_id",
            "course_id",
            unique=True,
            postgresql_where=text(_COMPLETED_PAYMENT),
            sqlite_where=text(_COMPLETED_PAYMENT),
        ),
    )

    gateway_charge_id: Mapped[str | None] = mapped_column(String(255), unique=True, nullable=True)
    amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    status: Mapped[TransactionStatus] = mapped_column(
        Enum(TransactionStatus), nullable=False, default=TransactionStatus.PENDING
    )
    type: Mapped[TransactionType] = mapped_column(Enum(TransactionType), nullable=False)
    # Signed: REFUND rows carry the negated share of the original payment
    platform_commission: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0"))
    educator_earnings: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0"))
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    course_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    educator_id: Mapped[str] = mapped_column(String(64), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    metadata_: Mapped[dict | None] = mapped_column("metadata", JSON, nullable=True)
    refund_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("transactions.id"), nullable=True
    )


class Invoice(UUIDMixin, TimestampMixin, UpdatedAtMixin, Base):
    __tablename__ = "invoices"

    invoice_number: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    transaction_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("transactions.id"), unique=True, nullable=False
    )
    subtotal: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    discount: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0"))
    tax: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0"))
    total: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    status: Mapped[InvoiceStatus] = mapped_column(
        Enum(InvoiceStatus), nullable=False, default=InvoiceStatus.DRAFT
    )
    billing_info: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    issue_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    due_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
