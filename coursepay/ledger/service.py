"""
Ledger service for transactions and invoices.

Rules:
- Transactions are never deleted; the only mutation is the status change
  performed by refunds and gateway webhooks.
- Helpers flush but never commit. The orchestrators own the commit so that
  a transaction and its invoice land together or not at all.
"""
import secrets
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from coursepay.core.exceptions import TransactionNotFoundError
from coursepay.ledger.models import (
    Invoice,
    InvoiceStatus,
    Transaction,
    TransactionStatus,
    TransactionType,
)

EARNING_STATUSES = (TransactionStatus.COMPLETED, TransactionStatus.REFUNDED)


async def find_completed_payment(
    db: AsyncSession, user_id: str, course_id: str
) -> uuid.UUID | None:
    """Id of the enrollment-of-record payment for (user, course), if any."""
    result = await db.execute(
        select(Transaction.id).where(
            Transaction.user_id == user_id,
            Transaction.course_id == course_id,
            Transaction.type == TransactionType.PAYMENT,
            Transaction.status == TransactionStatus.COMPLETED,
        )
    )
    return result.scalars().first()


async def find_open_payment(
    db: AsyncSession, user_id: str, course_id: str
) -> tuple[uuid.UUID, TransactionStatus] | None:
    """A COMPLETED or PENDING payment for (user, course); COMPLETED wins when both exist."""
    result = await db.execute(
        select(Transaction.id, Transaction.status)
        .where(
            Transaction.user_id == user_id,
            Transaction.course_id == course_id,
            Transaction.type == TransactionType.PAYMENT,
            Transaction.status.in_((TransactionStatus.COMPLETED, TransactionStatus.PENDING)),
        )
    )
    rows = result.all()
    for row in rows:
        if row.status == TransactionStatus.COMPLETED:
            return row.id, row.status
    return (rows[0].id, rows[0].status) if rows else None


async def get_transaction(db: AsyncSession, transaction_id: uuid.UUID) -> Transaction:
    result = await db.execute(select(Transaction).where(Transaction.id == transaction_id))
    transaction = result.scalar_one_or_none()
    if transaction is None:
        raise TransactionNotFoundError()
    return transaction


async def get_transaction_by_charge(db: AsyncSession, gateway_charge_id: str) -> Transaction | None:
    result = await db.execute(
        select(Transaction).where(Transaction.gateway_charge_id == gateway_charge_id)
    )
    return result.scalar_one_or_none()


async def get_invoice_for_transaction(db: AsyncSession, transaction_id: uuid.UUID) -> Invoice | None:
    result = await db.execute(select(Invoice).where(Invoice.transaction_id == transaction_id))
    return result.scalar_one_or_none()


async def create_transaction(
    db: AsyncSession,
    *,
    amount: Decimal,
    currency: str,
    status: TransactionStatus,
    type: TransactionType,
    user_id: str,
    course_id: str,
    educator_id: str,
    platform_commission: Decimal = Decimal("0"),
    educator_earnings: Decimal = Decimal("0"),
    gateway_charge_id: str | None = None,
    description: str | None = None,
    metadata: dict[str, Any] | None = None,
) -> Transaction:
    transaction = Transaction(
        gateway_charge_id=gateway_charge_id,
        amount=amount,
        currency=currency,
        status=status,
        type=type,
        platform_commission=platform_commission,
        educator_earnings=educator_earnings,
        user_id=user_id,
        course_id=course_id,
        educator_id=educator_id,
        description=description,
        metadata_=metadata,
    )
    db.add(transaction)
    await db.flush()
    return transaction


def generate_invoice_number(now: datetime | None = None) -> str:
    now = now or datetime.now(timezone.utc)
    return f"INV-{now:%Y%m%d}-{secrets.token_hex(4).upper()}"


async def create_invoice(
    db: AsyncSession,
    *,
    transaction: Transaction,
    status: InvoiceStatus,
    billing_info: dict[str, Any] | None = None,
    discount: Decimal = Decimal("0"),
    tax: Decimal = Decimal("0"),
    notes: str | None = None,
) -> Invoice:
    now = datetime.now(timezone.utc)
    subtotal = transaction.amount
    invoice = Invoice(
        invoice_number=generate_invoice_number(now),
        transaction_id=transaction.id,
        subtotal=subtotal,
        discount=discount,
        tax=tax,
        total=subtotal - discount + tax,
        status=status,
        billing_info=billing_info,
        issue_date=now,
        paid_at=now if status == InvoiceStatus.PAID else None,
        notes=notes,
    )
    db.add(invoice)
    await db.flush()
    return invoice


async def mark_refunded(
    db: AsyncSession, transaction_id: uuid.UUID, refund_id: uuid.UUID
) -> bool:
    """
    Conditional status change: only a transaction that is not yet REFUNDED
    is updated. Returns False when another refund got there first.
    """
    result = await db.execute(
        update(Transaction)
        .where(
            Transaction.id == transaction_id,
            Transaction.status != TransactionStatus.REFUNDED,
        )
        .values(
            status=TransactionStatus.REFUNDED,
            refund_id=refund_id,
            updated_at=datetime.now(timezone.utc),
        )
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def update_status(
    db: AsyncSession,
    transaction: Transaction,
    status: TransactionStatus,
    metadata: dict[str, Any] | None = None,
) -> Transaction:
    transaction.status = status
    if metadata:
        transaction.metadata_ = {**(transaction.metadata_ or {}), **metadata}
    await db.flush()
    return transaction


async def cancel_invoice(db: AsyncSession, transaction_id: uuid.UUID, note: str) -> Invoice | None:
    invoice = await get_invoice_for_transaction(db, transaction_id)
    if invoice is None:
        return None
    invoice.status = InvoiceStatus.CANCELLED
    invoice.notes = f"{invoice.notes}\n{note}" if invoice.notes else note
    await db.flush()
    return invoice


async def list_user_transactions(
    db: AsyncSession,
    user_id: str,
    *,
    start: datetime | None = None,
    end: datetime | None = None,
    status: TransactionStatus | None = None,
    page: int = 1,
    limit: int = 10,
) -> tuple[list[tuple[Transaction, Invoice | None]], int]:
    """Newest first, each paired with its invoice. Returns (rows, total count)."""
    conditions = [Transaction.user_id == user_id]
    if start is not None:
        conditions.append(Transaction.created_at >= start)
    if end is not None:
        conditions.append(Transaction.created_at <= end)
    if status is not None:
        conditions.append(Transaction.status == status)

    total = (
        await db.execute(select(func.count()).select_from(Transaction).where(*conditions))
    ).scalar_one()
    result = await db.execute(
        select(Transaction, Invoice)
        .outerjoin(Invoice, Invoice.transaction_id == Transaction.id)
        .where(*conditions)
        .order_by(Transaction.created_at.desc())
        .limit(limit)
        .offset((page - 1) * limit)
    )
    return [(row[0], row[1]) for row in result.all()], int(total)


async def get_total_earnings_for_educator(db: AsyncSession, educator_id: str) -> Decimal:
    """
    Educator earnings over completed and refunded payments plus the negated
    REFUND rows, i.e. what the educator keeps.
    """
    result = await db.execute(
        select(func.coalesce(func.sum(Transaction.educator_earnings), 0)).where(
            Transaction.educator_id == educator_id,
            Transaction.status.in_(EARNING_STATUSES),
        )
    )
    return Decimal(str(result.scalar_one())).quantize(Decimal("0.01"))


async def mark_invoice_paid(db: AsyncSession, invoice: Invoice) -> Invoice:
    invoice.status = InvoiceStatus.PAID
    invoice.paid_at = datetime.now(timezone.utc)
    await db.flush()
    return invoice
