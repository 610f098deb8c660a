"""Processor webhook events that move a transaction between statuses."""
import logging
from typing import Any

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from coursepay.audit.service import AuditEvent, log_event
from coursepay.ledger import service as ledger
from coursepay.ledger.models import Transaction, TransactionStatus
from coursepay.payments.service import confirm_pending_payment

logger = logging.getLogger(__name__)

WEBHOOK_ACTOR = "stripe"

DISPUTABLE_STATUSES = (TransactionStatus.COMPLETED, TransactionStatus.PENDING)


async def _confirm(db: AsyncSession, charge_id: str) -> Transaction | None:
    transaction = await ledger.get_transaction_by_charge(db, charge_id)
    if transaction is None or not await confirm_pending_payment(db, transaction):
        return None
    return transaction


async def _payment_succeeded(db: AsyncSession, obj: dict[str, Any]) -> Transaction | None:
    try:
        return await _confirm(db, obj["id"])
    except IntegrityError:
        # A purchase of the same course completed after the duplicate check
        await db.rollback()
        return await _confirm(db, obj["id"])


async def _payment_failed(db: AsyncSession, obj: dict[str, Any]) -> Transaction | None:
    transaction = await ledger.get_transaction_by_charge(db, obj["id"])
    if transaction is None or transaction.status != TransactionStatus.PENDING:
        return None
    error = obj.get("last_payment_error") or {}
    return await ledger.update_status(
        db, transaction, TransactionStatus.FAILED, {"error": error.get("message", "Payment failed")}
    )


async def _dispute_created(db: AsyncSession, obj: dict[str, Any]) -> Transaction | None:
    payment_intent = obj.get("payment_intent")
    if not payment_intent:
        return None
    transaction = await ledger.get_transaction_by_charge(db, payment_intent)
    if transaction is None:
        return None
    dispute = {"disputeId": obj.get("id"), "disputeReason": obj.get("reason")}
    if transaction.status in DISPUTABLE_STATUSES:
        return await ledger.update_status(db, transaction, TransactionStatus.DISPUTED, dispute)
    already_recorded = (transaction.metadata_ or {}).get("disputeId") == dispute["disputeId"]
    if transaction.status == TransactionStatus.REFUNDED and not already_recorded:
        # A refunded payment keeps its terminal status
        return await ledger.update_status(db, transaction, TransactionStatus.REFUNDED, dispute)
    return None


HANDLERS = {
    "payment_intent.succeeded": _payment_succeeded,
    "payment_intent.payment_failed": _payment_failed,
    "charge.dispute.created": _dispute_created,
}


async def handle_event(db: AsyncSession, event: dict[str, Any]) -> bool:
    """Apply a verified event. Returns True when the ledger changed."""
    event_type = event.get("type", "")
    handler = HANDLERS.get(event_type)
    if handler is None:
        logger.info("Ignoring webhook event %s", event_type)
        return False

    obj = (event.get("data") or {}).get("object") or {}
    transaction = await handler(db, obj)
    if transaction is None:
        logger.info("Webhook %s for %s required no change", event_type, obj.get("id"))
        await db.rollback()
        return False

    await log_event(
        db,
        AuditEvent.WEBHOOK_RECEIVED,
        WEBHOOK_ACTOR,
        description=f"{event_type} applied",
        transaction_id=transaction.id,
        metadata={"eventId": event.get("id"), "eventType": event_type, "status": transaction.status.value},
    )
    await db.commit()
    logger.info("Webhook %s moved transaction %s to %s", event_type, transaction.id, transaction.status.value)
    return True
