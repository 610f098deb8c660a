"""Tests for refunds: prorated reversal of the stored split."""
import asyncio
import uuid
from decimal import Decimal

import pytest
import pytest_asyncio
from sqlalchemy import select

from coursepay.audit.models import AuditLog
from coursepay.core.exceptions import (
    AlreadyRefundedError,
    ForbiddenError,
    GatewayUnavailableError,
    TransactionNotFoundError,
    ValidationError,
)
from coursepay.enrollments.service import get_enrollment
from coursepay.ledger.models import InvoiceStatus, Transaction, TransactionStatus, TransactionType
from coursepay.ledger.service import get_invoice_for_transaction, get_transaction
from coursepay.payments.refunds import RefundService
from coursepay.payments.schemas import RefundRequest


@pytest_asyncio.fixture
async def purchase(payment_service, payment_request, student, educator_account):
    result = await payment_service.process_payment(payment_request(), student)
    return result.transaction


def _refund(transaction_id, amount: str | None = None, reason: str | None = "Changed my mind") -> RefundRequest:
    return RefundRequest(
        transaction_id=transaction_id,
        amount=Decimal(amount) if amount is not None else None,
        reason=reason,
    )


@pytest.mark.asyncio
async def test_full_refund_reverses_the_purchase(db, refund_service, gateway, services, student, purchase):
    outcome = await refund_service.process_refund(_refund(purchase.id), student)

    refund = outcome.refund
    assert refund.type == TransactionType.REFUND
    assert refund.status == TransactionStatus.COMPLETED
    assert refund.amount == Decimal("99.00")
    assert refund.platform_commission == Decimal("-19.17")
    assert refund.educator_earnings == Decimal("-76.65")
    assert refund.user_id == purchase.user_id
    assert refund.metadata_["originalTransactionId"] == str(purchase.id)
    assert refund.metadata_["refundedBy"] == "student_1"

    original = await get_transaction(db, purchase.id)
    assert original.status == TransactionStatus.REFUNDED
    assert original.refund_id == refund.id

    invoice = await get_invoice_for_transaction(db, purchase.id)
    assert invoice.status == InvoiceStatus.CANCELLED
    assert "Refunded on" in invoice.notes
    assert await get_enrollment(db, "student_1", "course_1") is None

    refund_call = next(c for c in gateway.calls if c.operation == "create_refund")
    assert refund_call.kwargs["amount"] == 9900
    reversal = next(c for c in gateway.calls if c.operation == "reverse_transfer")
    assert reversal.kwargs["amount"] == 7665
    assert outcome.transfer_reversal_id is not None

    assert "REMOVE_ENROLLMENT" in services.actions()
    assert "REMOVE" in services.actions()
    earnings_notice = services.payloads("EARNINGS_REFUNDED")[0]
    assert earnings_notice["amount"] == 76.65
    assert earnings_notice["transactionId"] == str(refund.id)
    assert earnings_notice["originalTransactionId"] == str(purchase.id)
    enrollment_notice = services.payloads("REMOVE_ENROLLMENT")[0]
    assert enrollment_notice["transactionId"] == str(refund.id)
    assert enrollment_notice["originalTransactionId"] == str(purchase.id)

    events = list((await db.execute(select(AuditLog.event_type))).scalars())
    assert "REFUND_PROCESSED" in events


@pytest.mark.asyncio
async def test_partial_refund_prorates_split(db, refund_service, gateway, student, purchase):
    outcome = await refund_service.process_refund(_refund(purchase.id, "33.00"), student)

    assert outcome.refund.amount == Decimal("33.00")
    assert outcome.refund.platform_commission == Decimal("-6.39")
    assert outcome.refund.educator_earnings == Decimal("-25.55")
    reversal = next(c for c in gateway.calls if c.operation == "reverse_transfer")
    assert reversal.kwargs["amount"] == 2555

    # Any refund closes the purchase
    assert outcome.original.status == TransactionStatus.REFUNDED
    assert await get_enrollment(db, "student_1", "course_1") is None


@pytest.mark.asyncio
async def test_second_refund_rejected_without_processor_call(db, refund_service, gateway, student, purchase):
    await refund_service.process_refund(_refund(purchase.id), student)

    with pytest.raises(AlreadyRefundedError):
        await refund_service.process_refund(_refund(purchase.id), student)

    assert gateway.operations().count("create_refund") == 1


@pytest.mark.asyncio
async def test_refund_row_cannot_be_refunded(db, refund_service, admin, student, purchase):
    outcome = await refund_service.process_refund(_refund(purchase.id), student)

    with pytest.raises(ValidationError):
        await refund_service.process_refund(_refund(outcome.refund.id), admin)


@pytest.mark.asyncio
async def test_refund_above_original_amount_rejected(db, refund_service, gateway, student, purchase):
    calls_before = len(gateway.calls)

    with pytest.raises(ValidationError):
        await refund_service.process_refund(_refund(purchase.id, "150.00"), student)

    assert len(gateway.calls) == calls_before
    assert (await get_transaction(db, purchase.id)).status == TransactionStatus.COMPLETED


@pytest.mark.asyncio
async def test_only_owner_or_admin_may_refund(db, refund_service, other_student, admin, purchase):
    with pytest.raises(ForbiddenError):
        await refund_service.process_refund(_refund(purchase.id), other_student)

    outcome = await refund_service.process_refund(_refund(purchase.id), admin)
    assert outcome.refund.metadata_["refundedBy"] == "admin_1"


@pytest.mark.asyncio
async def test_unknown_transaction(db, refund_service, admin):
    with pytest.raises(TransactionNotFoundError):
        await refund_service.process_refund(_refund(uuid.uuid4()), admin)


@pytest.mark.asyncio
async def test_pending_payment_cannot_be_refunded(
    db, payment_service, refund_service, payment_request, gateway, student, educator_account
):
    gateway.charge_status = "processing"
    result = await payment_service.process_payment(payment_request(), student)

    with pytest.raises(ValidationError):
        await refund_service.process_refund(_refund(result.transaction.id), student)


@pytest.mark.asyncio
async def test_processor_outage_leaves_ledger_untouched(db, refund_service, gateway, student, purchase):
    gateway.refund_error = GatewayUnavailableError()

    with pytest.raises(GatewayUnavailableError):
        await refund_service.process_refund(_refund(purchase.id), student)

    original = await get_transaction(db, purchase.id)
    assert original.status == TransactionStatus.COMPLETED
    assert await get_enrollment(db, "student_1", "course_1") is not None

    # Retrying once the processor is back succeeds
    outcome = await refund_service.process_refund(_refund(purchase.id), student)
    assert outcome.original.status == TransactionStatus.REFUNDED


@pytest.mark.asyncio
@pytest.mark.parametrize("processor_dedupes", [True, False])
async def test_concurrent_refunds_record_exactly_one(
    refund_service, session_factory, gateway, dispatcher, notifier, cache, commission_config,
    student, purchase, monkeypatch, processor_dedupes,
):
    """
    Both requests pass the precondition before either commits. The later one
    loses either on the duplicate processor refund id or on the conditional
    status update, depending on whether the processor replays the refund.
    """
    purchase_id = purchase.id
    create_refund = gateway.create_refund
    arrived: list[int] = []
    both_at_processor = asyncio.Event()
    first_finished = asyncio.Event()

    async def gated_create_refund(**kwargs):
        position = len(arrived)
        arrived.append(position)
        if position == 1:
            both_at_processor.set()
        await both_at_processor.wait()
        if position == 1:
            await first_finished.wait()
            if not processor_dedupes:
                kwargs["idempotency_key"] += ":replay"
        return await create_refund(**kwargs)

    monkeypatch.setattr(gateway, "create_refund", gated_create_refund)

    async def attempt(service: RefundService):
        try:
            return await service.process_refund(_refund(purchase_id), student)
        finally:
            first_finished.set()

    async with session_factory() as other_db:
        rival = RefundService(other_db, session_factory, gateway, dispatcher, notifier, cache, commission_config)
        results = await asyncio.gather(attempt(refund_service), attempt(rival), return_exceptions=True)

    outcomes = [r for r in results if not isinstance(r, BaseException)]
    errors = [r for r in results if isinstance(r, BaseException)]
    assert len(outcomes) == 1
    assert len(errors) == 1
    assert isinstance(errors[0], AlreadyRefundedError)

    async with session_factory() as check:
        refunds = (
            await check.execute(select(Transaction).where(Transaction.type == TransactionType.REFUND))
        ).scalars().all()
        original = await get_transaction(check, purchase_id)
    assert len(refunds) == 1
    assert refunds[0].id == outcomes[0].refund.id
    assert original.status == TransactionStatus.REFUNDED
    assert original.refund_id == refunds[0].id
    assert gateway.operations().count("create_refund") == 2
