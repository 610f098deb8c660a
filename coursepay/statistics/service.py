"""
Admin statistics over the ledger.

Every operation is read-only and cached under `stats:{operation}:{filters}`.
A hit never touches the database; ledger writes clear the whole namespace.
"""
from datetime import datetime, timezone

from sqlalchemy import desc, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from coursepay.config import CacheTTLs
from coursepay.core.cache import STATS_NAMESPACE, CacheBackend, cached, make_cache_key
from coursepay.core.exceptions import ValidationError
from coursepay.core.filters import DateRange
from coursepay.ledger.models import Transaction, TransactionStatus
from coursepay.statistics.queries import (
    COMPLETED_REFUND,
    GROUPINGS,
    IS_PAYMENT,
    IS_REFUND,
    PAYMENT_METHOD,
    PROCESSING_TIME,
    SETTLED_PAYMENT,
    count_when,
    date_conditions,
    money,
    percentage,
    period_label,
    sum_when,
)

IS_FAILED = Transaction.status == TransactionStatus.FAILED


class StatisticsService:
    def __init__(self, db: AsyncSession, cache: CacheBackend, ttls: CacheTTLs) -> None:
        self.db = db
        self.cache = cache
        self.ttls = ttls

    @property
    def dialect(self) -> str:
        return self.db.get_bind().dialect.name

    def _key(self, operation: str, date_range: DateRange, **extra) -> str:
        return make_cache_key(STATS_NAMESPACE, operation, {**date_range.cache_filters(), **extra})

    async def transaction_volumes(self, date_range: DateRange) -> dict:
        async def compute():
            where = date_conditions(date_range)
            totals = (await self.db.execute(
                select(
                    count_when(IS_PAYMENT).label("payment_count"),
                    sum_when(IS_PAYMENT, Transaction.amount).label("payment_volume"),
                    count_when(IS_REFUND).label("refund_count"),
                    sum_when(IS_REFUND, Transaction.amount).label("refund_volume"),
                ).where(*where)
            )).one()
            by_status = (await self.db.execute(
                select(
                    Transaction.status,
                    func.count().label("count"),
                    func.coalesce(func.sum(Transaction.amount), 0).label("volume"),
                )
                .where(IS_PAYMENT, *where)
                .group_by(Transaction.status)
                .order_by(Transaction.status)
            )).all()
            return {
                "total": {
                    "payments": {"count": totals.payment_count, "volume": money(totals.payment_volume)},
                    "refunds": {"count": totals.refund_count, "volume": money(totals.refund_volume)},
                },
                "by_status": [
                    {"status": row.status.value, "count": row.count, "volume": money(row.volume)}
                    for row in by_status
                ],
            }

        key = self._key("transaction_volumes", date_range)
        return await cached(self.cache, key, self.ttls.transaction_volumes, compute)

    async def performance_metrics(self, date_range: DateRange) -> dict:
        async def compute():
            where = date_conditions(date_range)
            total = (await self.db.execute(
                select(func.count()).select_from(Transaction).where(*where)
            )).scalar_one()
            statuses = (await self.db.execute(
                select(Transaction.status, func.count().label("count"))
                .where(*where)
                .group_by(Transaction.status)
                .order_by(Transaction.status)
            )).all()
            avg_time = (await self.db.execute(
                select(func.avg(PROCESSING_TIME)).where(PROCESSING_TIME.is_not(None), *where)
            )).scalar_one()
            methods = (await self.db.execute(
                select(
                    PAYMENT_METHOD.label("payment_method"),
                    func.count().label("total_count"),
                    count_when(IS_FAILED).label("failed_count"),
                )
                .where(*where)
                .group_by("payment_method")
                .order_by("payment_method")
            )).all()
            return {
                "status_breakdown": [
                    {"status": row.status.value, "count": row.count, "percentage": percentage(row.count, total)}
                    for row in statuses
                ],
                "avg_processing_time": round(float(avg_time or 0), 2),
                "error_rates_by_payment_method": [
                    {
                        "payment_method": row.payment_method,
                        "total_count": row.total_count,
                        "failed_count": row.failed_count,
                        "error_rate": percentage(row.failed_count, row.total_count),
                    }
                    for row in methods
                ],
            }

        key = self._key("performance_metrics", date_range)
        return await cached(self.cache, key, self.ttls.performance_metrics, compute)

    async def financial_analysis(self, date_range: DateRange, group_by: str = "daily") -> dict:
        group_by = (group_by or "daily").lower()
        if group_by not in GROUPINGS:
            raise ValidationError(f"groupBy must be one of: {', '.join(GROUPINGS)}")

        async def compute():
            where = date_conditions(date_range)
            revenue = sum_when(SETTLED_PAYMENT, Transaction.amount)
            refunds = sum_when(COMPLETED_REFUND, Transaction.amount)
            periods = (await self.db.execute(
                select(
                    period_label(self.dialect, group_by).label("period"),
                    revenue.label("revenue"),
                    refunds.label("refunds"),
                )
                .where(*where)
                .group_by("period")
                .order_by("period")
            )).all()
            methods = (await self.db.execute(
                select(
                    PAYMENT_METHOD.label("payment_method"),
                    revenue.label("revenue"),
                    count_when(SETTLED_PAYMENT).label("count"),
                )
                .where(*where)
                .group_by("payment_method")
                .order_by(desc("revenue"))
            )).all()
            total_revenue = sum(money(row.revenue) for row in methods)
            return {
                "group_by": group_by,
                "revenue_by_time_period": [
                    {
                        "period": str(row.period),
                        "revenue": money(row.revenue),
                        "refunds": money(row.refunds),
                        "net_revenue": round(money(row.revenue) - money(row.refunds), 2),
                    }
                    for row in periods
                ],
                "revenue_by_payment_method": [
                    {
                        "payment_method": row.payment_method,
                        "revenue": money(row.revenue),
                        "count": row.count,
                        "percentage": percentage(money(row.revenue), total_revenue),
                    }
                    for row in methods
                ],
            }

        key = self._key("financial_analysis", date_range, groupBy=group_by)
        return await cached(self.cache, key, self.ttls.financial_analysis, compute)

    async def payment_operations(self, date_range: DateRange) -> dict:
        async def compute():
            where = date_conditions(date_range)
            refunds = (await self.db.execute(
                select(
                    count_when(COMPLETED_REFUND).label("refund_count"),
                    sum_when(COMPLETED_REFUND, Transaction.amount).label("refund_volume"),
                    count_when(SETTLED_PAYMENT).label("payment_count"),
                ).where(*where)
            )).one()
            methods = (await self.db.execute(
                select(PAYMENT_METHOD.label("payment_method"), func.count().label("count"))
                .where(IS_PAYMENT, *where)
                .group_by("payment_method")
                .order_by(desc("count"))
            )).all()
            payment_total = sum(row.count for row in methods)
            return {
                "refund_metrics": {
                    "count": refunds.refund_count,
                    "volume": money(refunds.refund_volume),
                    "rate": percentage(refunds.refund_count, refunds.payment_count),
                },
                "payment_method_distribution": [
                    {
                        "method": row.payment_method,
                        "count": row.count,
                        "percentage": percentage(row.count, payment_total),
                    }
                    for row in methods
                ],
            }

        key = self._key("payment_operations", date_range)
        return await cached(self.cache, key, self.ttls.payment_operations, compute)

    async def dashboard(self, date_range: DateRange) -> dict:
        async def compute():
            # One session cannot run statements concurrently; the parts run in turn
            volumes = await self.transaction_volumes(date_range)
            performance = await self.performance_metrics(date_range)
            financial = await self.financial_analysis(date_range)
            operations = await self.payment_operations(date_range)
            return {
                "transaction_volumes": volumes,
                "performance_metrics": performance,
                "financial_analysis": financial,
                "payment_operations": operations,
                "generated_at": datetime.now(timezone.utc).isoformat(),
            }

        key = self._key("dashboard", date_range)
        return await cached(self.cache, key, self.ttls.dashboard, compute)

    async def educator_payment_analytics(self, educator_id: str, date_range: DateRange) -> dict:
        async def compute():
            where = date_conditions(date_range, educator_id)
            sold = sum_when(SETTLED_PAYMENT, Transaction.educator_earnings)
            # REFUND rows store earnings negated, so adding them nets the refunds out
            net = sold + sum_when(COMPLETED_REFUND, Transaction.educator_earnings)
            totals = (await self.db.execute(
                select(
                    sold.label("total_earnings"),
                    sum_when(COMPLETED_REFUND, Transaction.educator_earnings).label("refunded"),
                    count_when(SETTLED_PAYMENT).label("total_sales"),
                    count_when(COMPLETED_REFUND).label("refund_count"),
                ).where(*where)
            )).one()
            monthly = (await self.db.execute(
                select(
                    period_label(self.dialect, "monthly").label("month"),
                    net.label("net_earnings"),
                    count_when(SETTLED_PAYMENT).label("sales_count"),
                )
                .where(*where)
                .group_by("month")
                .order_by("month")
            )).all()
            courses = (await self.db.execute(
                select(
                    Transaction.course_id,
                    net.label("net_earnings"),
                    count_when(SETTLED_PAYMENT).label("sales_count"),
                    count_when(COMPLETED_REFUND).label("refund_count"),
                )
                .where(*where)
                .group_by(Transaction.course_id)
                .order_by(desc("net_earnings"))
            )).all()

            total_earnings = money(totals.total_earnings)
            total_refunds = abs(money(totals.refunded))
            return {
                "educator_id": educator_id,
                "earnings": {
                    "total_earnings": total_earnings,
                    "total_refunds": total_refunds,
                    "net_earnings": round(total_earnings - total_refunds, 2),
                    "total_sales": totals.total_sales,
                    "total_refund_count": totals.refund_count,
                    "avg_earnings_per_sale": (
                        round(total_earnings / totals.total_sales, 2) if totals.total_sales else 0.0
                    ),
                    "refund_rate": percentage(totals.refund_count, totals.total_sales),
                },
                "monthly_earnings": [
                    {"month": str(row.month), "net_earnings": money(row.net_earnings), "sales_count": row.sales_count}
                    for row in monthly
                ],
                "course_earnings": [
                    {
                        "course_id": row.course_id,
                        "net_earnings": money(row.net_earnings),
                        "sales_count": row.sales_count,
                        "refund_count": row.refund_count,
                        "refund_rate": percentage(row.refund_count, row.sales_count),
                    }
                    for row in courses
                ],
            }

        key = self._key("educator_analytics", date_range, educatorId=educator_id)
        return await cached(self.cache, key, self.ttls.educator_analytics, compute)
