from typing import Annotated

from fastapi import APIRouter, Depends, Query

from coursepay.core.dependencies import AdminUser, Cache, DbSession, TTLs
from coursepay.core.filters import DateRange, parse_date_range
from coursepay.statistics.service import StatisticsService

router = APIRouter(prefix="/statistics", tags=["statistics"])


def get_statistics_service(db: DbSession, cache: Cache, ttls: TTLs) -> StatisticsService:
    return StatisticsService(db, cache, ttls)


def get_date_range(
    start_date: Annotated[str | None, Query(alias="startDate")] = None,
    end_date: Annotated[str | None, Query(alias="endDate")] = None,
) -> DateRange:
    return parse_date_range(start_date, end_date)


Service = Annotated[StatisticsService, Depends(get_statistics_service)]
Period = Annotated[DateRange, Depends(get_date_range)]


@router.get("/transaction-volumes")
async def transaction_volumes(service: Service, date_range: Period, user: AdminUser) -> dict:
    return {"success": True, "data": await service.transaction_volumes(date_range)}


@router.get("/performance-metrics")
async def performance_metrics(service: Service, date_range: Period, user: AdminUser) -> dict:
    return {"success": True, "data": await service.performance_metrics(date_range)}


@router.get("/financial-analysis")
async def financial_analysis(
    service: Service,
    date_range: Period,
    user: AdminUser,
    group_by: Annotated[str, Query(alias="groupBy")] = "daily",
) -> dict:
    return {"success": True, "data": await service.financial_analysis(date_range, group_by)}


@router.get("/payment-operations")
async def payment_operations(service: Service, date_range: Period, user: AdminUser) -> dict:
    return {"success": True, "data": await service.payment_operations(date_range)}


@router.get("/dashboard")
async def dashboard(service: Service, date_range: Period, user: AdminUser) -> dict:
    return {"success": True, "data": await service.dashboard(date_range)}


@router.get("/educators/{educator_id}/payment-analytics")
async def educator_payment_analytics(
    educator_id: str, service: Service, date_range: Period, user: AdminUser
) -> dict:
    return {"success": True, "data": await service.educator_payment_analytics(educator_id, date_range)}
