import asyncio
import uuid
from decimal import Decimal
from typing import Annotated

from fastapi import APIRouter, Depends, Query

from coursepay.accounts import service as accounts
from coursepay.core.dependencies import (
    AdminUser,
    Cache,
    Commission,
    CurrentUser,
    DbSession,
    Dispatcher,
    EducatorUser,
    Gateway,
    Notifier,
    SessionFactory,
    TTLs,
)
from coursepay.core.exceptions import ForbiddenError
from coursepay.core.filters import parse_date_range
from coursepay.enrollments import service as enrollments
from coursepay.enrollments.schemas import (
    EnrollmentListResponse,
    EnrollmentResponse,
    EnrollmentStatusResponse,
)
from coursepay.ledger import service as ledger
from coursepay.ledger.models import TransactionStatus
from coursepay.payments.refunds import RefundService
from coursepay.payments.schemas import (
    BalanceResponse,
    EarningsResponse,
    InvoiceResponse,
    Pagination,
    PaymentRequest,
    PaymentResponse,
    RefundDetail,
    RefundRequest,
    RefundResponse,
    TransactionDetailResponse,
    TransactionListResponse,
    TransactionResponse,
    TransactionWithInvoice,
)
from coursepay.payments.service import PaymentService
from coursepay.reports.service import ReportService

router = APIRouter(prefix="/payments", tags=["payments"])


def get_payment_service(
    db: DbSession,
    session_factory: SessionFactory,
    gateway: Gateway,
    dispatcher: Dispatcher,
    notifier: Notifier,
    cache: Cache,
    commission_config: Commission,
) -> PaymentService:
    return PaymentService(db, session_factory, gateway, dispatcher, notifier, cache, commission_config)


def get_refund_service(
    db: DbSession,
    session_factory: SessionFactory,
    gateway: Gateway,
    dispatcher: Dispatcher,
    notifier: Notifier,
    cache: Cache,
    commission_config: Commission,
) -> RefundService:
    return RefundService(db, session_factory, gateway, dispatcher, notifier, cache, commission_config)


def _with_invoice(transaction, invoice) -> TransactionWithInvoice:
    item = TransactionWithInvoice.model_validate(transaction)
    if invoice is not None:
        item.invoice = InvoiceResponse.model_validate(invoice)
    return item


@router.post("", response_model=PaymentResponse, status_code=201)
async def create_payment(
    body: PaymentRequest,
    user: CurrentUser,
    service: Annotated[PaymentService, Depends(get_payment_service)],
) -> PaymentResponse:
    result = await service.process_payment(body, user)
    return PaymentResponse(
        transaction=TransactionResponse.model_validate(result.transaction),
        invoice=InvoiceResponse.model_validate(result.invoice),
        processing_time_ms=result.processing_time_ms,
    )


@router.post("/refund", response_model=RefundResponse)
async def refund_payment(
    body: RefundRequest,
    user: CurrentUser,
    service: Annotated[RefundService, Depends(get_refund_service)],
) -> RefundResponse:
    outcome = await service.process_refund(body, user)
    return RefundResponse(
        refund=RefundDetail(
            original_transaction=TransactionResponse.model_validate(outcome.original),
            refund_transaction=TransactionResponse.model_validate(outcome.refund),
            gateway_refund_id=outcome.gateway_refund_id,
            transfer_reversal_id=outcome.transfer_reversal_id,
        )
    )


@router.get("/user", response_model=TransactionListResponse)
async def user_transactions(
    db: DbSession,
    user: CurrentUser,
    start_date: Annotated[str | None, Query(alias="startDate")] = None,
    end_date: Annotated[str | None, Query(alias="endDate")] = None,
    status: TransactionStatus | None = None,
    page: Annotated[int, Query(ge=1)] = 1,
    limit: Annotated[int, Query(ge=1, le=100)] = 10,
) -> TransactionListResponse:
    date_range = parse_date_range(start_date, end_date)
    rows, total = await ledger.list_user_transactions(
        db, user.id, start=date_range.start, end=date_range.end, status=status, page=page, limit=limit
    )
    return TransactionListResponse(
        transactions=[_with_invoice(t, i) for t, i in rows],
        pagination=Pagination(total=total, page=page, limit=limit, pages=-(-total // limit)),
    )


@router.get("/total-earnings", response_model=EarningsResponse)
async def total_earnings(db: DbSession, user: EducatorUser) -> EarningsResponse:
    total = await ledger.get_total_earnings_for_educator(db, user.id)
    return EarningsResponse(educator_id=user.id, total_earnings=total)


@router.get("/current-balance", response_model=BalanceResponse)
async def current_balance(db: DbSession, user: EducatorUser, gateway: Gateway) -> BalanceResponse:
    account = await accounts.require_account(db, user.id)
    balance = await gateway.retrieve_pending_balance(account.stripe_account_id)
    return BalanceResponse(
        educator_id=user.id,
        pending_balance=Decimal(balance.amount) / 100,
        currency=balance.currency.upper(),
    )


@router.get("/enrollment/{course_id}", response_model=EnrollmentStatusResponse)
async def enrollment_status(course_id: str, db: DbSession, user: CurrentUser) -> EnrollmentStatusResponse:
    enrollment = await enrollments.get_enrollment(db, user.id, course_id)
    enrolled = enrollment is not None
    return EnrollmentStatusResponse(
        enrolled=enrolled,
        course_id=course_id,
        message="User is enrolled in this course" if enrolled else "User is not enrolled in this course",
    )


@router.get("/enrollments", response_model=EnrollmentListResponse)
async def user_enrollments(db: DbSession, user: CurrentUser) -> EnrollmentListResponse:
    items = await enrollments.list_enrollments(db, user.id)
    return EnrollmentListResponse(
        enrollments=[EnrollmentResponse.model_validate(e) for e in items], count=len(items)
    )


@router.get("/report/transactions")
async def transactions_report(
    db: DbSession,
    user: AdminUser,
    cache: Cache,
    ttls: TTLs,
    start_date: Annotated[str | None, Query(alias="startDate")] = None,
    end_date: Annotated[str | None, Query(alias="endDate")] = None,
    status: TransactionStatus | None = None,
    educator_id: Annotated[str | None, Query(alias="educatorId")] = None,
    page: Annotated[int, Query(ge=1)] = 1,
    limit: Annotated[int, Query(ge=1, le=100)] = 20,
) -> dict:
    service = ReportService(db, cache, ttls)
    report = await service.transactions_report(
        parse_date_range(start_date, end_date), status=status, educator_id=educator_id, page=page, limit=limit
    )
    return {"success": True, "report": report}


@router.get("/{transaction_id}", response_model=TransactionDetailResponse)
async def get_transaction(
    transaction_id: uuid.UUID, db: DbSession, user: CurrentUser, notifier: Notifier
) -> TransactionDetailResponse:
    transaction = await ledger.get_transaction(db, transaction_id)
    if not user.is_admin and user.id not in (transaction.user_id, transaction.educator_id):
        raise ForbiddenError("You do not have access to this transaction")
    invoice = await ledger.get_invoice_for_transaction(db, transaction.id)

    course, buyer, educator = await asyncio.gather(
        notifier.fetch_course(transaction.course_id),
        notifier.fetch_user(transaction.user_id),
        notifier.fetch_user(transaction.educator_id),
    )
    detail = TransactionDetailResponse.model_validate(_with_invoice(transaction, invoice).model_dump())
    detail.course_title = (course or {}).get("title")
    detail.user_name = (buyer or {}).get("name")
    detail.educator_name = (educator or {}).get("name")
    return detail
