"""Tests for processor webhook events."""
import logging
from decimal import Decimal

import pytest
import pytest_asyncio
from sqlalchemy import select

from coursepay.audit.models import AuditLog
from coursepay.enrollments.service import get_enrollment
from coursepay.ledger import service as ledger_service
from coursepay.ledger.models import InvoiceStatus, TransactionStatus, TransactionType
from coursepay.ledger.service import create_transaction, get_invoice_for_transaction, get_transaction
from coursepay.payments.schemas import RefundRequest
from coursepay.webhooks.service import handle_event


def _event(event_type: str, obj: dict) -> dict:
    return {"id": "evt_1", "type": event_type, "data": {"object": obj}}


@pytest_asyncio.fixture
async def pending(payment_service, payment_request, gateway, student, educator_account):
    gateway.charge_status = "processing"
    result = await payment_service.process_payment(payment_request(), student)
    return result.transaction


@pytest.mark.asyncio
async def test_succeeded_completes_pending_payment(db, pending):
    changed = await handle_event(db, _event("payment_intent.succeeded", {"id": pending.gateway_charge_id}))

    assert changed is True
    transaction = await get_transaction(db, pending.id)
    assert transaction.status == TransactionStatus.COMPLETED
    invoice = await get_invoice_for_transaction(db, pending.id)
    assert invoice.status == InvoiceStatus.PAID
    assert invoice.paid_at is not None
    assert await get_enrollment(db, "student_1", "course_1") is not None

    audit = (await db.execute(select(AuditLog).where(AuditLog.event_type == "WEBHOOK_RECEIVED"))).scalar_one()
    assert audit.actor_id == "stripe"
    assert audit.metadata_["eventId"] == "evt_1"


@pytest.mark.asyncio
async def test_succeeded_is_idempotent(db, pending):
    event = _event("payment_intent.succeeded", {"id": pending.gateway_charge_id})
    assert await handle_event(db, event) is True
    assert await handle_event(db, event) is False


@pytest.mark.asyncio
async def test_failed_marks_pending_payment_failed(db, pending):
    changed = await handle_event(db, _event("payment_intent.payment_failed", {
        "id": pending.gateway_charge_id,
        "last_payment_error": {"message": "Insufficient funds"},
    }))

    assert changed is True
    transaction = await get_transaction(db, pending.id)
    assert transaction.status == TransactionStatus.FAILED
    assert transaction.metadata_["error"] == "Insufficient funds"
    assert await get_enrollment(db, "student_1", "course_1") is None


@pytest.mark.asyncio
async def test_dispute_marks_payment_disputed(db, payment_service, payment_request, student, educator_account):
    result = await payment_service.process_payment(payment_request(), student)

    changed = await handle_event(db, _event("charge.dispute.created", {
        "id": "dp_1",
        "payment_intent": result.transaction.gateway_charge_id,
        "reason": "fraudulent",
    }))

    assert changed is True
    transaction = await get_transaction(db, result.transaction.id)
    assert transaction.status == TransactionStatus.DISPUTED
    assert transaction.metadata_["disputeId"] == "dp_1"
    assert transaction.metadata_["disputeReason"] == "fraudulent"


@pytest.mark.asyncio
async def test_unknown_events_and_charges_are_ignored(db):
    assert await handle_event(db, _event("customer.created", {"id": "cus_1"})) is False
    assert await handle_event(db, _event("payment_intent.succeeded", {"id": "pi_unknown"})) is False


async def _completed_purchase(db, charge_id: str = "pi_other"):
    transaction = await create_transaction(
        db,
        amount=Decimal("99.00"),
        currency="USD",
        status=TransactionStatus.COMPLETED,
        type=TransactionType.PAYMENT,
        user_id="student_1",
        course_id="course_1",
        educator_id="educator_1",
        platform_commission=Decimal("19.17"),
        educator_earnings=Decimal("76.65"),
        gateway_charge_id=charge_id,
    )
    await db.commit()
    return transaction


@pytest.mark.asyncio
async def test_confirmed_duplicate_charge_is_set_aside(db, pending, caplog):
    completed = await _completed_purchase(db)

    with caplog.at_level(logging.CRITICAL, logger="coursepay.payments.service"):
        changed = await handle_event(db, _event("payment_intent.succeeded", {"id": pending.gateway_charge_id}))

    assert changed is True
    duplicate = await get_transaction(db, pending.id)
    assert duplicate.status == TransactionStatus.FAILED
    assert duplicate.metadata_["duplicateOf"] == str(completed.id)
    assert duplicate.metadata_["requiresRefund"] is True
    assert (await get_invoice_for_transaction(db, pending.id)).status == InvoiceStatus.CANCELLED
    assert (await get_transaction(db, completed.id)).status == TransactionStatus.COMPLETED
    assert any(
        record.levelno == logging.CRITICAL and pending.gateway_charge_id in record.getMessage()
        for record in caplog.records
    )

    audit = (await db.execute(select(AuditLog).where(AuditLog.event_type == "WEBHOOK_RECEIVED"))).scalar_one()
    assert audit.metadata_["status"] == "FAILED"


@pytest.mark.asyncio
async def test_completion_racing_a_purchase_is_set_aside(db, pending, monkeypatch):
    """The unique index catches a purchase that completed after the duplicate lookup."""
    completed = await _completed_purchase(db)
    completed_id, pending_id, charge_id = completed.id, pending.id, pending.gateway_charge_id
    real_lookup = ledger_service.find_completed_payment
    lookups = []

    async def stale_then_real(*args):
        lookups.append(args)
        if len(lookups) == 1:
            return None
        return await real_lookup(*args)

    monkeypatch.setattr(ledger_service, "find_completed_payment", stale_then_real)

    changed = await handle_event(db, _event("payment_intent.succeeded", {"id": charge_id}))

    assert changed is True
    assert len(lookups) == 2
    duplicate = await get_transaction(db, pending_id)
    assert duplicate.status == TransactionStatus.FAILED
    assert duplicate.metadata_["duplicateOf"] == str(completed_id)


@pytest.mark.asyncio
async def test_dispute_on_refunded_payment_keeps_refunded_status(
    db, payment_service, refund_service, payment_request, student, educator_account
):
    result = await payment_service.process_payment(payment_request(), student)
    await refund_service.process_refund(
        RefundRequest(transaction_id=result.transaction.id, amount=None, reason=None), student
    )
    event = _event("charge.dispute.created", {
        "id": "dp_2",
        "payment_intent": result.transaction.gateway_charge_id,
        "reason": "duplicate",
    })

    assert await handle_event(db, event) is True
    transaction = await get_transaction(db, result.transaction.id)
    assert transaction.status == TransactionStatus.REFUNDED
    assert transaction.refund_id is not None
    assert transaction.metadata_["disputeId"] == "dp_2"
    assert transaction.metadata_["disputeReason"] == "duplicate"

    # Redelivery of the same dispute changes nothing
    assert await handle_event(db, event) is False
