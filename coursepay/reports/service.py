import asyncio
from datetime import datetime, timezone

from sqlalchemy import desc, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from coursepay.config import CacheTTLs
from coursepay.core.cache import REPORT_NAMESPACE, CacheBackend, cached, make_cache_key
from coursepay.core.filters import DateRange
from coursepay.ledger.models import Invoice, Transaction, TransactionStatus
from coursepay.reports.pdf import render_financial_report
from coursepay.statistics.queries import (
    COMPLETED_REFUND,
    IS_PAYMENT,
    IS_REFUND,
    PAYMENT_METHOD,
    SETTLED_PAYMENT,
    count_when,
    date_conditions,
    money,
    percentage,
    period_label,
    sum_when,
)

DAILY_ROWS = 30
TOP_COURSES = 10


class ReportService:
    """Financial, earnings and commission reports. Cached under `report:*`."""

    def __init__(self, db: AsyncSession, cache: CacheBackend, ttls: CacheTTLs) -> None:
        self.db = db
        self.cache = cache
        self.ttls = ttls

    @property
    def dialect(self) -> str:
        return self.db.get_bind().dialect.name

    def _key(self, operation: str, date_range: DateRange, **extra) -> str:
        return make_cache_key(REPORT_NAMESPACE, operation, {**date_range.cache_filters(), **extra})

    async def financial_report(self, date_range: DateRange, educator_id: str | None = None) -> dict:
        async def compute():
            where = date_conditions(date_range, educator_id)
            revenue = sum_when(SETTLED_PAYMENT, Transaction.amount)
            refunds = sum_when(COMPLETED_REFUND, Transaction.amount)
            commission = sum_when(SETTLED_PAYMENT, Transaction.platform_commission)
            earnings = sum_when(SETTLED_PAYMENT, Transaction.educator_earnings)

            summary = (await self.db.execute(
                select(
                    revenue.label("revenue"),
                    refunds.label("refunds"),
                    commission.label("commission"),
                    earnings.label("earnings"),
                    count_when(IS_PAYMENT).label("transactions"),
                    count_when(IS_REFUND).label("refund_count"),
                    func.count(func.distinct(Transaction.user_id)).label("customers"),
                ).where(*where)
            )).one()
            daily = (await self.db.execute(
                select(
                    period_label(self.dialect, "daily").label("date"),
                    count_when(IS_PAYMENT).label("transactions"),
                    revenue.label("revenue"),
                    refunds.label("refunds"),
                    commission.label("commission"),
                    earnings.label("earnings"),
                )
                .where(*where)
                .group_by("date")
                .order_by(desc("date"))
                .limit(DAILY_ROWS)
            )).all()
            courses = (await self.db.execute(
                select(
                    Transaction.course_id,
                    count_when(IS_PAYMENT).label("sales"),
                    revenue.label("revenue"),
                    refunds.label("refunds"),
                    commission.label("commission"),
                    earnings.label("earnings"),
                )
                .where(*where)
                .group_by(Transaction.course_id)
                .order_by(desc("revenue"))
                .limit(TOP_COURSES)
            )).all()
            methods = (await self.db.execute(
                select(
                    PAYMENT_METHOD.label("payment_method"),
                    func.count().label("count"),
                    revenue.label("volume"),
                )
                .where(IS_PAYMENT, *where)
                .group_by("payment_method")
                .order_by(desc("count"))
            )).all()

            return {
                "metadata": {
                    "generated_at": datetime.now(timezone.utc).isoformat(),
                    "filters": {
                        "start_date": date_range.start.isoformat() if date_range.start else "All time",
                        "end_date": date_range.end.isoformat() if date_range.end else "Current date",
                        "educator_id": educator_id or "All educators",
                    },
                },
                "summary": {
                    "total_revenue": money(summary.revenue),
                    "total_refunds": money(summary.refunds),
                    "net_revenue": round(money(summary.revenue) - money(summary.refunds), 2),
                    "total_commission": money(summary.commission),
                    "total_educator_earnings": money(summary.earnings),
                    "total_transactions": summary.transactions,
                    "total_refund_count": summary.refund_count,
                    "unique_customers": summary.customers,
                },
                "daily_stats": [
                    {
                        "date": str(row.date),
                        "transactions": row.transactions,
                        "revenue": money(row.revenue),
                        "refunds": money(row.refunds),
                        "platform_commission": money(row.commission),
                        "educator_earnings": money(row.earnings),
                    }
                    for row in daily
                ],
                "top_courses": [
                    {
                        "course_id": row.course_id,
                        "sales": row.sales,
                        "revenue": money(row.revenue),
                        "refunds": money(row.refunds),
                        "platform_commission": money(row.commission),
                        "educator_earnings": money(row.earnings),
                    }
                    for row in courses
                ],
                "payment_methods": [
                    {
                        "payment_method": row.payment_method,
                        "count": row.count,
                        "volume": money(row.volume),
                        "percentage": percentage(row.count, summary.transactions),
                    }
                    for row in methods
                ],
            }

        key = self._key("financial", date_range, educatorId=educator_id)
        return await cached(self.cache, key, self.ttls.financial_report, compute)

    async def financial_report_pdf(self, date_range: DateRange, educator_id: str | None = None) -> bytes:
        report = await self.financial_report(date_range, educator_id)
        # reportlab is synchronous and CPU bound
        return await asyncio.to_thread(render_financial_report, report)

    async def educator_earnings_report(self, educator_id: str, date_range: DateRange) -> dict:
        async def compute():
            where = date_conditions(date_range, educator_id)
            row = (await self.db.execute(
                select(
                    sum_when(SETTLED_PAYMENT, Transaction.educator_earnings).label("earnings"),
                    sum_when(COMPLETED_REFUND, Transaction.educator_earnings).label("refunded"),
                    sum_when(SETTLED_PAYMENT, Transaction.amount).label("gross"),
                    count_when(SETTLED_PAYMENT).label("sales"),
                    count_when(COMPLETED_REFUND).label("refund_count"),
                    func.count(func.distinct(Transaction.course_id)).label("courses"),
                ).where(*where)
            )).one()
            total = money(row.earnings)
            refunded = abs(money(row.refunded))
            return {
                "educator_id": educator_id,
                "total_earnings": total,
                "total_refunded_earnings": refunded,
                "net_earnings": round(total - refunded, 2),
                "gross_sales": money(row.gross),
                "total_sales": row.sales,
                "total_refunds": row.refund_count,
                "total_active_courses": row.courses,
                "report_generated": datetime.now(timezone.utc).isoformat(),
                "period": {
                    "from": date_range.start.isoformat() if date_range.start else None,
                    "to": date_range.end.isoformat() if date_range.end else None,
                },
            }

        key = self._key("earnings", date_range, educatorId=educator_id)
        return await cached(self.cache, key, self.ttls.earnings_report, compute)

    async def commission_report(self, date_range: DateRange) -> dict:
        async def compute():
            where = date_conditions(date_range)
            commission = sum_when(SETTLED_PAYMENT, Transaction.platform_commission)
            earnings = sum_when(SETTLED_PAYMENT, Transaction.educator_earnings)
            revenue = sum_when(SETTLED_PAYMENT, Transaction.amount)
            row = (await self.db.execute(
                select(
                    commission.label("commission"),
                    sum_when(COMPLETED_REFUND, Transaction.platform_commission).label("refunded_commission"),
                    earnings.label("earnings"),
                    sum_when(COMPLETED_REFUND, Transaction.educator_earnings).label("refunded_earnings"),
                    revenue.label("revenue"),
                ).where(*where)
            )).one()
            trend = (await self.db.execute(
                select(
                    period_label(self.dialect, "monthly").label("month"),
                    commission.label("commission"),
                    earnings.label("earnings"),
                    revenue.label("revenue"),
                )
                .where(*where)
                .group_by("month")
                .order_by("month")
            )).all()

            total_commission = money(row.commission)
            refunded_commission = abs(money(row.refunded_commission))
            total_earnings = money(row.earnings)
            refunded_earnings = abs(money(row.refunded_earnings))
            return {
                "summary": {
                    "total_commission": total_commission,
                    "refunded_commission": refunded_commission,
                    "net_commission": round(total_commission - refunded_commission, 2),
                    "total_educator_earnings": total_earnings,
                    "refunded_educator_earnings": refunded_earnings,
                    "net_educator_earnings": round(total_earnings - refunded_earnings, 2),
                    "total_amount": money(row.revenue),
                    "average_commission_rate": percentage(total_commission, money(row.revenue)),
                },
                "monthly_trend": [
                    {
                        "month": str(item.month),
                        "platform_commission": money(item.commission),
                        "educator_earnings": money(item.earnings),
                        "total_revenue": money(item.revenue),
                        "platform_share": percentage(money(item.commission), money(item.revenue)),
                        "educator_share": percentage(money(item.earnings), money(item.revenue)),
                    }
                    for item in trend
                ],
            }

        key = self._key("commission", date_range)
        return await cached(self.cache, key, self.ttls.commission_report, compute)

    async def transactions_report(
        self,
        date_range: DateRange,
        *,
        status: TransactionStatus | None = None,
        educator_id: str | None = None,
        page: int = 1,
        limit: int = 20,
    ) -> dict:
        """Paginated admin listing. Not cached: pages change with every write."""
        where = date_conditions(date_range, educator_id)
        if status is not None:
            where.append(Transaction.status == status)

        summary = (await self.db.execute(
            select(
                func.count().label("count"),
                func.coalesce(func.sum(Transaction.amount), 0).label("amount"),
                func.coalesce(func.sum(Transaction.platform_commission), 0).label("commission"),
                func.coalesce(func.sum(Transaction.educator_earnings), 0).label("earnings"),
            ).where(*where)
        )).one()
        rows = (await self.db.execute(
            select(Transaction, Invoice.invoice_number, Invoice.status.label("invoice_status"))
            .outerjoin(Invoice, Invoice.transaction_id == Transaction.id)
            .where(*where)
            .order_by(Transaction.created_at.desc())
            .limit(limit)
            .offset((page - 1) * limit)
        )).all()

        return {
            "summary": {
                "total_transactions": summary.count,
                "total_amount": money(summary.amount),
                "total_commission": money(summary.commission),
                "total_educator_earnings": money(summary.earnings),
            },
            "transactions": [
                {
                    "id": str(t.id),
                    "type": t.type.value,
                    "status": t.status.value,
                    "amount": money(t.amount),
                    "currency": t.currency,
                    "platform_commission": money(t.platform_commission),
                    "educator_earnings": money(t.educator_earnings),
                    "user_id": t.user_id,
                    "course_id": t.course_id,
                    "educator_id": t.educator_id,
                    "invoice_number": invoice_number,
                    "invoice_status": invoice_status.value if invoice_status else None,
                    "created_at": t.created_at.isoformat(),
                }
                for t, invoice_number, invoice_status in rows
            ],
            "pagination": {
                "total": summary.count,
                "page": page,
                "limit": limit,
                "pages": -(-summary.count // limit),
            },
        }
