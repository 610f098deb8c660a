"""Tests for cached statistics and financial reports."""
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio

from coursepay.core.exceptions import ValidationError
from coursepay.core.filters import DateRange
from coursepay.payments.schemas import RefundRequest
from coursepay.reports.service import ReportService
from coursepay.statistics.service import StatisticsService

ALL_TIME = DateRange()


class CountingSession:
    """Wraps an AsyncSession and counts the statements it executes."""

    def __init__(self, session):
        self._session = session
        self.statements = 0

    async def execute(self, *args, **kwargs):
        self.statements += 1
        return await self._session.execute(*args, **kwargs)

    def get_bind(self):
        return self._session.get_bind()


@pytest.fixture
def counting_db(db):
    return CountingSession(db)


@pytest.fixture
def stats(counting_db, cache, ttls):
    return StatisticsService(counting_db, cache, ttls)


@pytest.fixture
def reports(db, cache, ttls):
    return ReportService(db, cache, ttls)


@pytest_asyncio.fixture
async def refunded_purchase(payment_service, refund_service, payment_request, student, educator_account):
    """One course bought and fully refunded, one course bought and kept."""
    kept = await payment_service.process_payment(payment_request(course_id="course_kept"), student)
    refunded = await payment_service.process_payment(payment_request(course_id="course_refunded"), student)
    await refund_service.process_refund(
        RefundRequest(transaction_id=refunded.transaction.id, reason="Not for me"), student
    )
    return kept.transaction, refunded.transaction


@pytest.mark.asyncio
async def test_cache_hit_runs_no_queries(stats, counting_db, cache, refunded_purchase):
    first = await stats.transaction_volumes(ALL_TIME)
    statements = counting_db.statements

    second = await stats.transaction_volumes(ALL_TIME)

    assert second == first
    assert counting_db.statements == statements
    assert cache.sets == 1
    assert "stats:transaction_volumes:default" in cache.store
    assert cache.ttls["stats:transaction_volumes:default"] == 900


@pytest.mark.asyncio
async def test_different_filters_use_different_keys(stats, cache):
    start = datetime(2026, 1, 1, tzinfo=timezone.utc)
    await stats.transaction_volumes(ALL_TIME)
    await stats.transaction_volumes(DateRange(start=start))

    assert len(cache.store) == 2
    assert f"stats:transaction_volumes:startDate={start.isoformat()}" in cache.store


@pytest.mark.asyncio
async def test_ledger_write_invalidates_statistics(
    stats, payment_service, payment_request, student, educator_account
):
    before = await stats.transaction_volumes(ALL_TIME)
    assert before["total"]["payments"]["count"] == 0

    await payment_service.process_payment(payment_request(), student)

    after = await stats.transaction_volumes(ALL_TIME)
    assert after["total"]["payments"] == {"count": 1, "volume": 99.0}


@pytest.mark.asyncio
async def test_transaction_volumes_by_status(stats, refunded_purchase):
    data = await stats.transaction_volumes(ALL_TIME)

    assert data["total"]["payments"] == {"count": 2, "volume": 198.0}
    assert data["total"]["refunds"] == {"count": 1, "volume": 99.0}
    assert {row["status"]: row["count"] for row in data["by_status"]} == {"COMPLETED": 1, "REFUNDED": 1}


@pytest.mark.asyncio
async def test_date_range_excludes_other_periods(stats, refunded_purchase):
    tomorrow = datetime.now(timezone.utc) + timedelta(days=1)
    data = await stats.transaction_volumes(DateRange(start=tomorrow))

    assert data["total"]["payments"]["count"] == 0
    assert data["by_status"] == []


@pytest.mark.asyncio
async def test_performance_metrics(stats, refunded_purchase):
    data = await stats.performance_metrics(ALL_TIME)

    statuses = {row["status"]: row for row in data["status_breakdown"]}
    assert statuses["COMPLETED"]["count"] == 2  # kept payment and the refund row
    assert statuses["REFUNDED"]["count"] == 1
    assert data["avg_processing_time"] >= 0
    assert data["error_rates_by_payment_method"][0]["payment_method"] == "card"
    assert data["error_rates_by_payment_method"][0]["error_rate"] == 0.0


@pytest.mark.asyncio
async def test_financial_analysis_groups_by_month(stats, refunded_purchase):
    data = await stats.financial_analysis(ALL_TIME, "monthly")

    month = datetime.now(timezone.utc).strftime("%Y-%m")
    assert data["group_by"] == "monthly"
    assert data["revenue_by_time_period"] == [
        {"period": month, "revenue": 198.0, "refunds": 99.0, "net_revenue": 99.0}
    ]
    assert data["revenue_by_payment_method"][0]["payment_method"] == "card"
    assert data["revenue_by_payment_method"][0]["percentage"] == 100.0


@pytest.mark.asyncio
async def test_financial_analysis_rejects_unknown_grouping(stats):
    with pytest.raises(ValidationError):
        await stats.financial_analysis(ALL_TIME, "hourly")


@pytest.mark.asyncio
async def test_payment_operations_refund_rate(stats, refunded_purchase):
    data = await stats.payment_operations(ALL_TIME)

    assert data["refund_metrics"] == {"count": 1, "volume": 99.0, "rate": 50.0}
    assert data["payment_method_distribution"] == [{"method": "card", "count": 2, "percentage": 100.0}]


@pytest.mark.asyncio
async def test_dashboard_combines_all_parts(stats, cache, refunded_purchase):
    data = await stats.dashboard(ALL_TIME)

    assert set(data) == {
        "transaction_volumes", "performance_metrics", "financial_analysis", "payment_operations", "generated_at",
    }
    assert "stats:dashboard:default" in cache.store
    assert "stats:payment_operations:default" in cache.store


@pytest.mark.asyncio
async def test_educator_analytics_nets_refunds(stats, refunded_purchase):
    data = await stats.educator_payment_analytics("educator_1", ALL_TIME)

    earnings = data["earnings"]
    assert earnings["total_earnings"] == 153.3
    assert earnings["total_refunds"] == 76.65
    assert earnings["net_earnings"] == 76.65
    assert earnings["total_sales"] == 2
    assert earnings["refund_rate"] == 50.0
    courses = {row["course_id"]: row for row in data["course_earnings"]}
    assert courses["course_kept"]["net_earnings"] == 76.65
    assert courses["course_refunded"]["net_earnings"] == 0.0
    assert data["monthly_earnings"][0]["net_earnings"] == 76.65


@pytest.mark.asyncio
async def test_educator_analytics_for_unknown_educator(stats, refunded_purchase):
    data = await stats.educator_payment_analytics("educator_404", ALL_TIME)

    assert data["earnings"]["total_sales"] == 0
    assert data["earnings"]["avg_earnings_per_sale"] == 0.0
    assert data["course_earnings"] == []


@pytest.mark.asyncio
async def test_financial_report(reports, refunded_purchase):
    report = await reports.financial_report(ALL_TIME)

    assert report["metadata"]["filters"] == {
        "start_date": "All time", "end_date": "Current date", "educator_id": "All educators",
    }
    assert report["summary"] == {
        "total_revenue": 198.0,
        "total_refunds": 99.0,
        "net_revenue": 99.0,
        "total_commission": 38.34,
        "total_educator_earnings": 153.3,
        "total_transactions": 2,
        "total_refund_count": 1,
        "unique_customers": 1,
    }
    assert len(report["daily_stats"]) == 1
    assert {c["course_id"] for c in report["top_courses"]} == {"course_kept", "course_refunded"}


@pytest.mark.asyncio
async def test_financial_report_pdf(reports, refunded_purchase):
    body = await reports.financial_report_pdf(ALL_TIME)
    assert body.startswith(b"%PDF")


@pytest.mark.asyncio
async def test_educator_earnings_report(reports, refunded_purchase):
    report = await reports.educator_earnings_report("educator_1", ALL_TIME)

    assert report["total_earnings"] == 153.3
    assert report["total_refunded_earnings"] == 76.65
    assert report["net_earnings"] == 76.65
    assert report["total_sales"] == 2
    assert report["total_refunds"] == 1
    assert report["total_active_courses"] == 2
    assert report["period"] == {"from": None, "to": None}


@pytest.mark.asyncio
async def test_commission_report(reports, refunded_purchase):
    report = await reports.commission_report(ALL_TIME)

    summary = report["summary"]
    assert summary["total_commission"] == 38.34
    assert summary["refunded_commission"] == 19.17
    assert summary["net_commission"] == 19.17
    assert summary["average_commission_rate"] == 19.36
    assert len(report["monthly_trend"]) == 1


@pytest.mark.asyncio
async def test_transactions_report_paginates(reports, refunded_purchase):
    report = await reports.transactions_report(ALL_TIME, page=1, limit=2)

    assert report["summary"]["total_transactions"] == 3
    assert len(report["transactions"]) == 2
    assert report["pagination"] == {"total": 3, "page": 1, "limit": 2, "pages": 2}
    with_invoice = [t for t in report["transactions"] if t["invoice_number"]]
    assert all(t["invoice_number"].startswith("INV-") for t in with_invoice)
