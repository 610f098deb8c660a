"""
Payment orchestration.

A payment attempt moves RECEIVED → VALIDATED → CHARGED → PERSISTED → NOTIFIED.
It ends early in REJECTED (validation), CHARGE_FAILED (processor said no or
was unreachable) or PERSIST_FAILED (charged but the ledger write failed).

Only the persist step is atomic: transaction, invoice and enrollment are
committed together. Everything after the commit goes through the outbound
dispatcher and can never fail the request. The request session is never
holding an open database transaction while the dispatcher runs; side-effect
jobs open their own sessions.
"""
import asyncio
import enum
import logging
import time
import uuid
from dataclasses import dataclass
from functools import partial

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from coursepay.accounts import service as accounts
from coursepay.audit.service import AuditEvent, log_event
from coursepay.commission import service as commission
from coursepay.config import CommissionConfig
from coursepay.core.cache import CacheBackend, invalidate_transaction_caches
from coursepay.core.exceptions import (
    AlreadyEnrolledError,
    AppError,
    EducatorAccountNotFoundError,
    InternalError,
    PaymentPendingError,
)
from coursepay.core.security import AuthUser
from coursepay.enrollments import service as enrollments
from coursepay.gateway.base import PaymentGateway
from coursepay.ledger import service as ledger
from coursepay.ledger.models import (
    Invoice,
    InvoiceStatus,
    Transaction,
    TransactionStatus,
    TransactionType,
)
from coursepay.notifications.client import ServiceNotifier
from coursepay.notifications.dispatcher import OutboundDispatcher
from coursepay.payments.schemas import PaymentRequest

logger = logging.getLogger(__name__)

PAYMENT_METHOD = "card"


class PaymentState(str, enum.Enum):
    RECEIVED = "RECEIVED"
    VALIDATED = "VALIDATED"
    CHARGED = "CHARGED"
    PERSISTED = "PERSISTED"
    NOTIFIED = "NOTIFIED"
    REJECTED = "REJECTED"
    CHARGE_FAILED = "CHARGE_FAILED"
    PERSIST_FAILED = "PERSIST_FAILED"


@dataclass
class PaymentResult:
    transaction: Transaction
    invoice: Invoice
    processing_time_ms: int


def payment_request_id(course_id: str, user_id: str) -> str:
    return f"payment:{course_id}:{user_id}:{int(time.time() * 1000)}"


def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)


class PaymentService:
    def __init__(
        self,
        db: AsyncSession,
        session_factory: async_sessionmaker[AsyncSession],
        gateway: PaymentGateway,
        dispatcher: OutboundDispatcher,
        notifier: ServiceNotifier,
        cache: CacheBackend,
        commission_config: CommissionConfig,
    ) -> None:
        self.db = db
        self.session_factory = session_factory
        self.gateway = gateway
        self.dispatcher = dispatcher
        self.notifier = notifier
        self.cache = cache
        self.commission_config = commission_config

    def _transition(self, state: PaymentState, request_id: str, **context) -> None:
        level = logging.WARNING if state in (PaymentState.REJECTED, PaymentState.CHARGE_FAILED) else logging.INFO
        details = " ".join(f"{k}={v}" for k, v in context.items())
        logger.log(level, "Payment %s -> %s %s", request_id, state.value, details)

    async def process_payment(self, request: PaymentRequest, user: AuthUser) -> PaymentResult:
        started = time.perf_counter()
        request_id = payment_request_id(request.course_id, user.id)
        self._transition(PaymentState.RECEIVED, request_id, user=user.id, course=request.course_id)

        try:
            account = await self._validate(request, user)
        except AppError as exc:
            self._transition(PaymentState.REJECTED, request_id, reason=exc.message)
            raise
        self._transition(PaymentState.VALIDATED, request_id)

        revenue = commission.split(request.amount, request.educator_id, self.commission_config)

        try:
            charge = await self.gateway.create_charge(
                amount=commission.to_minor_units(request.amount),
                currency=request.currency.lower(),
                payment_method=request.source,
                description=request.description or f"Payment for course {request.course_id}",
                metadata={
                    "courseId": request.course_id,
                    "userId": user.id,
                    "educatorId": request.educator_id,
                    "gatewayRequestId": request_id,
                },
                application_fee=commission.to_minor_units(revenue.platform_commission),
                destination_account=account.stripe_account_id,
                idempotency_key=request_id,
            )
        except AppError as exc:
            self._transition(PaymentState.CHARGE_FAILED, request_id, reason=exc.message)
            await self.db.rollback()
            await self.dispatcher.enqueue(
                "record_failed_payment",
                partial(self._record_failed_payment, request, user, request_id, exc.message),
            )
            raise
        self._transition(PaymentState.CHARGED, request_id, charge=charge.id, status=charge.status)

        processing_time = _elapsed_ms(started)
        try:
            transaction, invoice = await self._persist(request, user, revenue, charge, request_id, processing_time)
        except IntegrityError as exc:
            await self.db.rollback()
            self._charged_not_recorded(request_id, charge.id, request, user, exc)
            raise AlreadyEnrolledError() from exc
        except SQLAlchemyError as exc:
            await self.db.rollback()
            self._charged_not_recorded(request_id, charge.id, request, user, exc)
            raise InternalError("Payment was charged but could not be recorded") from exc
        self._transition(PaymentState.PERSISTED, request_id, transaction=transaction.id)

        await self._after_commit(transaction, user)
        self._transition(PaymentState.NOTIFIED, request_id)

        return PaymentResult(
            transaction=transaction, invoice=invoice, processing_time_ms=_elapsed_ms(started)
        )

    async def _validate(self, request: PaymentRequest, user: AuthUser):
        async def existing_payment():
            async with self.session_factory() as session:
                return await ledger.find_open_payment(session, user.id, request.course_id)

        async def payout_account():
            async with self.session_factory() as session:
                return await accounts.get_account(session, request.educator_id)

        existing, account = await asyncio.gather(existing_payment(), payout_account())
        if existing is not None:
            _, status = existing
            if status == TransactionStatus.PENDING:
                raise PaymentPendingError()
            raise AlreadyEnrolledError()
        if account is None:
            raise EducatorAccountNotFoundError()
        return account

    async def _persist(self, request, user, revenue, charge, request_id, processing_time):
        status = TransactionStatus.COMPLETED if charge.succeeded else TransactionStatus.PENDING
        transaction = await ledger.create_transaction(
            self.db,
            amount=request.amount,
            currency=request.currency,
            status=status,
            type=TransactionType.PAYMENT,
            user_id=user.id,
            course_id=request.course_id,
            educator_id=request.educator_id,
            platform_commission=revenue.platform_commission,
            educator_earnings=revenue.educator_earnings,
            gateway_charge_id=charge.id,
            description=request.description,
            metadata={
                "stripePaymentId": charge.id,
                "gatewayRequestId": request_id,
                "paymentMethod": PAYMENT_METHOD,
                "processingTime": processing_time,
                "processorFee": str(revenue.processor_fee),
                "commissionPercentage": str(revenue.commission_percentage),
            },
        )
        invoice = await ledger.create_invoice(
            self.db,
            transaction=transaction,
            status=InvoiceStatus.PAID if charge.succeeded else InvoiceStatus.ISSUED,
            billing_info={"name": user.name, "email": user.email},
            notes=f"Payment for course: {request.description or request.course_id}",
        )
        # A pending charge enrolls when the processor confirms it
        if charge.succeeded:
            await enrollments.enroll(self.db, user.id, request.course_id)
        await self.db.commit()
        return transaction, invoice

    def _charged_not_recorded(self, request_id, charge_id, request, user, exc) -> None:
        self._transition(PaymentState.PERSIST_FAILED, request_id)
        logger.critical(
            "Charged but not recorded: charge=%s request=%s user=%s course=%s amount=%s error=%s",
            charge_id, request_id, user.id, request.course_id, request.amount, exc,
        )

    async def _after_commit(self, transaction: Transaction, user: AuthUser) -> None:
        await self.dispatcher.enqueue("audit_payment", partial(self._audit_payment, transaction))
        await self.dispatcher.enqueue("invalidate_caches", partial(invalidate_transaction_caches, self.cache))
        if transaction.status != TransactionStatus.COMPLETED:
            return
        await self.dispatcher.enqueue("notify_enrollment", partial(self._notify_enrollment, transaction))
        await self.dispatcher.enqueue("notify_educator_earnings", partial(self._notify_educator, transaction))

    async def _audit_payment(self, transaction: Transaction) -> None:
        async with self.session_factory() as session:
            await log_event(
                session,
                AuditEvent.PAYMENT_PROCESSED,
                transaction.user_id,
                description=f"Payment of {transaction.amount} {transaction.currency} for course {transaction.course_id}",
                transaction_id=transaction.id,
                metadata={"status": transaction.status.value, "gatewayChargeId": transaction.gateway_charge_id},
            )
            await session.commit()

    async def _notify_enrollment(self, transaction: Transaction) -> None:
        await asyncio.gather(
            self.notifier.notify_user_service({
                "userId": transaction.user_id,
                "action": "ENROLL_USER",
                "courseId": transaction.course_id,
                "transactionId": str(transaction.id),
            }),
            self.notifier.notify_progress_service({
                "UserId": transaction.user_id,
                "CourseId": transaction.course_id,
                "Action": "ENROLL_USER",
            }),
            self.notifier.notify_course_service({"courseId": transaction.course_id, "action": "ADD"}),
        )

    async def _notify_educator(self, transaction: Transaction) -> None:
        async with self.session_factory() as session:
            total = await ledger.get_total_earnings_for_educator(session, transaction.educator_id)
        await self.notifier.notify_user_service({
            "userId": transaction.educator_id,
            "action": "NEW_EARNINGS",
            "courseId": transaction.course_id,
            "transactionId": str(transaction.id),
            "amount": float(transaction.educator_earnings),
            "totalPendingEarnings": float(total),
        })

    async def _record_failed_payment(
        self, request: PaymentRequest, user: AuthUser, request_id: str, reason: str
    ) -> None:
        async with self.session_factory() as session:
            transaction = await ledger.create_transaction(
                session,
                amount=request.amount,
                currency=request.currency,
                status=TransactionStatus.FAILED,
                type=TransactionType.PAYMENT,
                user_id=user.id,
                course_id=request.course_id,
                educator_id=request.educator_id,
                description=request.description,
                metadata={
                    "error": reason,
                    "gatewayRequestId": request_id,
                    "paymentMethod": PAYMENT_METHOD,
                },
            )
            await log_event(
                session,
                AuditEvent.PAYMENT_FAILED,
                user.id,
                description=f"Payment failed for course {request.course_id}: {reason}",
                transaction_id=transaction.id,
            )
            await session.commit()
        await invalidate_transaction_caches(self.cache)


async def confirm_pending_payment(db: AsyncSession, transaction: Transaction) -> bool:
    """
    Processor confirmed a pending charge: complete it, mark the invoice paid, enroll.

    If the buyer already holds a completed payment for the course, the charge
    is a duplicate and is set aside for a refund instead.
    """
    if transaction.status != TransactionStatus.PENDING:
        return False
    completed_id = await ledger.find_completed_payment(db, transaction.user_id, transaction.course_id)
    if completed_id is not None:
        await set_aside_duplicate_charge(db, transaction, completed_id)
        return True
    await ledger.update_status(db, transaction, TransactionStatus.COMPLETED)
    invoice = await ledger.get_invoice_for_transaction(db, transaction.id)
    if invoice is not None and invoice.status != InvoiceStatus.PAID:
        await ledger.mark_invoice_paid(db, invoice)
    await enrollments.enroll(db, transaction.user_id, transaction.course_id)
    return True


async def set_aside_duplicate_charge(
    db: AsyncSession, transaction: Transaction, completed_id: uuid.UUID
) -> None:
    """Fail a confirmed charge that duplicates an existing enrollment and flag it for a refund."""
    await ledger.update_status(db, transaction, TransactionStatus.FAILED, {
        "error": "Duplicate charge for an existing enrollment",
        "duplicateOf": str(completed_id),
        "requiresRefund": True,
    })
    await ledger.cancel_invoice(db, transaction.id, "Cancelled: duplicate charge")
    logger.critical(
        "Duplicate charge needs a refund: charge=%s transaction=%s duplicate_of=%s user=%s course=%s amount=%s",
        transaction.gateway_charge_id, transaction.id, completed_id,
        transaction.user_id, transaction.course_id, transaction.amount,
    )
