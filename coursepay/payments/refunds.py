"""
Refund orchestration.

The split stored on the original payment is the basis for every refund: the
refunded commission and earnings are the original values scaled by
refund_amount / original_amount, never recomputed.

Two refunds racing on the same payment are resolved by the processor
idempotency key (both get the same gateway refund) and by the conditional
status update in the commit (only one flips the original to REFUNDED).
"""
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from functools import partial

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from coursepay.audit.service import AuditEvent, log_event
from coursepay.commission.service import prorate, to_minor_units
from coursepay.config import CommissionConfig
from coursepay.core.cache import CacheBackend, invalidate_transaction_caches
from coursepay.core.exceptions import (
    AlreadyRefundedError,
    ForbiddenError,
    InternalError,
    ValidationError,
)
from coursepay.core.security import AuthUser
from coursepay.enrollments import service as enrollments
from coursepay.gateway.base import PaymentGateway
from coursepay.ledger import service as ledger
from coursepay.ledger.models import Transaction, TransactionStatus, TransactionType
from coursepay.notifications.client import ServiceNotifier
from coursepay.notifications.dispatcher import OutboundDispatcher
from coursepay.payments.schemas import RefundRequest

logger = logging.getLogger(__name__)


@dataclass
class RefundOutcome:
    original: Transaction
    refund: Transaction
    gateway_refund_id: str
    transfer_reversal_id: str | None = None


def refund_idempotency_key(transaction_id: uuid.UUID) -> str:
    return f"refund:{transaction_id}"


class RefundService:
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

    async def process_refund(self, request: RefundRequest, user: AuthUser) -> RefundOutcome:
        original = await ledger.get_transaction(self.db, request.transaction_id)
        if not user.is_admin and original.user_id != user.id:
            raise ForbiddenError("You can only refund your own payments")
        if original.status == TransactionStatus.REFUNDED:
            raise AlreadyRefundedError()
        if original.type != TransactionType.PAYMENT:
            raise ValidationError("Only payment transactions can be refunded")
        if original.status != TransactionStatus.COMPLETED:
            raise ValidationError(f"Cannot refund a {original.status.value.lower()} payment")
        if not original.gateway_charge_id:
            raise ValidationError("Transaction has no processor charge to refund")

        refund_amount = request.amount if request.amount is not None else original.amount
        if refund_amount <= 0 or refund_amount > original.amount:
            raise ValidationError(
                f"Refund amount must be greater than 0 and at most {original.amount}"
            )

        ratio = Decimal(refund_amount) / Decimal(original.amount)
        quantum = self.commission_config.quantum
        refunded_commission = prorate(original.platform_commission, ratio, quantum)
        refunded_earnings = prorate(original.educator_earnings, ratio, quantum)

        # End the read transaction before talking to the processor
        await self.db.commit()

        charge = await self.gateway.retrieve_charge(original.gateway_charge_id)
        gateway_refund = await self.gateway.create_refund(
            charge_id=charge.charge_id,
            amount=to_minor_units(refund_amount),
            metadata={"transactionId": str(original.id), "reason": request.reason or ""},
            idempotency_key=refund_idempotency_key(original.id),
        )
        reversal_id = None
        if charge.transfer_id and refunded_earnings > 0:
            reversal = await self.gateway.reverse_transfer(
                transfer_id=charge.transfer_id,
                amount=to_minor_units(refunded_earnings),
                idempotency_key=f"reversal:{original.id}",
            )
            reversal_id = reversal.id
        logger.info(
            "Refund %s created at processor for transaction %s (%s of %s)",
            gateway_refund.id, original.id, refund_amount, original.amount,
        )

        try:
            refund = await ledger.create_transaction(
                self.db,
                amount=refund_amount,
                currency=original.currency,
                status=TransactionStatus.COMPLETED,
                type=TransactionType.REFUND,
                user_id=original.user_id,
                course_id=original.course_id,
                educator_id=original.educator_id,
                platform_commission=-refunded_commission,
                educator_earnings=-refunded_earnings,
                gateway_charge_id=gateway_refund.id,
                description=f"Refund for transaction {original.id}",
                metadata={
                    "originalTransactionId": str(original.id),
                    "reason": request.reason or "Customer requested refund",
                    "refundedBy": user.id,
                    "gatewayRefundId": gateway_refund.id,
                    "transferReversalId": reversal_id,
                    "paymentMethod": (original.metadata_ or {}).get("paymentMethod", "card"),
                },
            )
            if not await ledger.mark_refunded(self.db, original.id, refund.id):
                await self.db.rollback()
                raise AlreadyRefundedError()
            today = datetime.now(timezone.utc).date().isoformat()
            await ledger.cancel_invoice(self.db, original.id, f"Refunded on {today}")
            await enrollments.unenroll(self.db, original.user_id, original.course_id)
            await self.db.commit()
        except IntegrityError as exc:
            # A concurrent request already recorded this processor refund
            await self.db.rollback()
            raise AlreadyRefundedError() from exc
        except SQLAlchemyError as exc:
            await self.db.rollback()
            logger.critical(
                "Refunded but not recorded: refund=%s transaction=%s amount=%s error=%s",
                gateway_refund.id, original.id, refund_amount, exc,
            )
            raise InternalError("Refund was issued but could not be recorded") from exc

        await self.db.refresh(original)
        logger.info("Transaction %s refunded by %s (refund %s)", original.id, user.id, refund.id)

        await self._after_commit(original, refund, refunded_earnings, request.reason, user)
        return RefundOutcome(
            original=original,
            refund=refund,
            gateway_refund_id=gateway_refund.id,
            transfer_reversal_id=reversal_id,
        )

    async def _after_commit(
        self,
        original: Transaction,
        refund: Transaction,
        refunded_earnings: Decimal,
        reason: str | None,
        user: AuthUser,
    ) -> None:
        await self.dispatcher.enqueue("audit_refund", partial(self._audit_refund, original, refund, user))
        await self.dispatcher.enqueue("invalidate_caches", partial(invalidate_transaction_caches, self.cache))
        await self.dispatcher.enqueue(
            "notify_enrollment_removed",
            partial(self.notifier.notify_user_service, {
                "userId": original.user_id,
                "action": "REMOVE_ENROLLMENT",
                "courseId": original.course_id,
                "transactionId": str(refund.id),
                "originalTransactionId": str(original.id),
            }),
        )
        await self.dispatcher.enqueue(
            "notify_course_removed",
            partial(self.notifier.notify_course_service, {"courseId": original.course_id, "action": "REMOVE"}),
        )
        await self.dispatcher.enqueue(
            "notify_earnings_refunded",
            partial(self.notifier.notify_user_service, {
                "userId": original.educator_id,
                "action": "EARNINGS_REFUNDED",
                "courseId": original.course_id,
                "transactionId": str(refund.id),
                "originalTransactionId": str(original.id),
                "amount": float(refunded_earnings),
                "reason": reason or "Customer requested refund",
            }),
        )

    async def _audit_refund(self, original: Transaction, refund: Transaction, user: AuthUser) -> None:
        async with self.session_factory() as session:
            await log_event(
                session,
                AuditEvent.REFUND_PROCESSED,
                user.id,
                description=f"Refund of {refund.amount} {refund.currency} for transaction {original.id}",
                transaction_id=refund.id,
                metadata={"originalTransactionId": str(original.id)},
            )
            await session.commit()
