import uuid

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from coursepay.core.exceptions import ForbiddenError, NotFoundError
from coursepay.core.security import AuthUser
from coursepay.ledger.models import Invoice, Transaction


async def list_user_invoices(
    db: AsyncSession, user_id: str, *, page: int = 1, limit: int = 10
) -> tuple[list[tuple[Invoice, Transaction]], int]:
    condition = Transaction.user_id == user_id
    total = (await db.execute(
        select(func.count()).select_from(Invoice).join(Transaction, Invoice.transaction_id == Transaction.id).where(condition)
    )).scalar_one()
    result = await db.execute(
        select(Invoice, Transaction)
        .join(Transaction, Invoice.transaction_id == Transaction.id)
        .where(condition)
        .order_by(Invoice.issue_date.desc())
        .limit(limit)
        .offset((page - 1) * limit)
    )
    return [(row[0], row[1]) for row in result.all()], int(total)


async def get_invoice(db: AsyncSession, invoice_id: uuid.UUID, user: AuthUser) -> tuple[Invoice, Transaction]:
    """The invoice and its transaction. Visible to the buyer, the educator and admins."""
    result = await db.execute(
        select(Invoice, Transaction)
        .join(Transaction, Invoice.transaction_id == Transaction.id)
        .where(Invoice.id == invoice_id)
    )
    row = result.first()
    if row is None:
        raise NotFoundError("Invoice", str(invoice_id))
    invoice, transaction = row
    if not user.is_admin and user.id not in (transaction.user_id, transaction.educator_id):
        raise ForbiddenError("You do not have access to this invoice")
    return invoice, transaction
