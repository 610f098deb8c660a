import asyncio
import uuid
from typing import Annotated

from fastapi import APIRouter, Query
from fastapi.responses import Response
from pydantic import BaseModel

from coursepay.core.dependencies import CurrentUser, DbSession
from coursepay.invoices import service
from coursepay.payments.schemas import InvoiceResponse, Pagination, TransactionResponse
from coursepay.reports.pdf import render_invoice

router = APIRouter(prefix="/invoices", tags=["invoices"])


class InvoiceWithTransaction(InvoiceResponse):
    transaction: TransactionResponse


class InvoiceListResponse(BaseModel):
    success: bool = True
    invoices: list[InvoiceWithTransaction]
    pagination: Pagination


class InvoiceDetailResponse(BaseModel):
    success: bool = True
    invoice: InvoiceWithTransaction


def _combine(invoice, transaction) -> InvoiceWithTransaction:
    return InvoiceWithTransaction(
        **InvoiceResponse.model_validate(invoice).model_dump(),
        transaction=TransactionResponse.model_validate(transaction),
    )


@router.get("/user", response_model=InvoiceListResponse)
async def user_invoices(
    db: DbSession,
    user: CurrentUser,
    page: Annotated[int, Query(ge=1)] = 1,
    limit: Annotated[int, Query(ge=1, le=100)] = 10,
) -> InvoiceListResponse:
    rows, total = await service.list_user_invoices(db, user.id, page=page, limit=limit)
    return InvoiceListResponse(
        invoices=[_combine(i, t) for i, t in rows],
        pagination=Pagination(total=total, page=page, limit=limit, pages=-(-total // limit)),
    )


@router.get("/{invoice_id}", response_model=InvoiceDetailResponse)
async def get_invoice(invoice_id: uuid.UUID, db: DbSession, user: CurrentUser) -> InvoiceDetailResponse:
    invoice, transaction = await service.get_invoice(db, invoice_id, user)
    return InvoiceDetailResponse(invoice=_combine(invoice, transaction))


@router.get("/{invoice_id}/pdf")
async def invoice_pdf(invoice_id: uuid.UUID, db: DbSession, user: CurrentUser) -> Response:
    invoice, transaction = await service.get_invoice(db, invoice_id, user)
    content = await asyncio.to_thread(render_invoice, invoice, transaction)
    return Response(
        content=content,
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{invoice.invoice_number}.pdf"'},
    )
