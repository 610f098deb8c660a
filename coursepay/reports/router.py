from datetime import datetime, timezone
from typing import Annotated

from fastapi import APIRouter, Depends, Query
from fastapi.responses import Response

from coursepay.core.dependencies import AdminUser, Cache, CurrentUser, DbSession, TTLs
from coursepay.core.exceptions import ForbiddenError
from coursepay.reports.service import ReportService
from coursepay.statistics.router import Period

router = APIRouter(prefix="/reports", tags=["reports"])


def get_report_service(db: DbSession, cache: Cache, ttls: TTLs) -> ReportService:
    return ReportService(db, cache, ttls)


Service = Annotated[ReportService, Depends(get_report_service)]


@router.get("/financial")
async def financial_report(
    service: Service,
    date_range: Period,
    user: AdminUser,
    educator_id: Annotated[str | None, Query(alias="educatorId")] = None,
) -> dict:
    return {"success": True, "report": await service.financial_report(date_range, educator_id)}


@router.get("/financial/pdf")
async def financial_report_pdf(
    service: Service,
    date_range: Period,
    user: AdminUser,
    educator_id: Annotated[str | None, Query(alias="educatorId")] = None,
) -> Response:
    content = await service.financial_report_pdf(date_range, educator_id)
    filename = f"financial_report_{datetime.now(timezone.utc):%Y-%m-%d}.pdf"
    return Response(
        content=content,
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.get("/educators/{educator_id}/earnings")
async def educator_earnings(
    educator_id: str, service: Service, date_range: Period, user: CurrentUser
) -> dict:
    if not user.is_admin and user.id != educator_id:
        raise ForbiddenError("You can only view your own earnings")
    return {"success": True, "report": await service.educator_earnings_report(educator_id, date_range)}


@router.get("/commission-analysis")
async def commission_analysis(service: Service, date_range: Period, user: AdminUser) -> dict:
    return {"success": True, "report": await service.commission_report(date_range)}
