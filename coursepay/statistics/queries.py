"""
SQL building blocks for ledger aggregations.

Expressions here must render on both PostgreSQL and SQLite. The only
dialect-specific piece is period bucketing, chosen by dialect name.
"""
from decimal import Decimal
from typing import Any

from sqlalchemy import and_, case, func
from sqlalchemy.sql.elements import ColumnElement

from coursepay.core.filters import DateRange
from coursepay.ledger.models import Transaction, TransactionStatus, TransactionType

CENT = Decimal("0.01")

# A refunded payment was still collected; its refund row carries the reversal.
SETTLED_PAYMENT = and_(
    Transaction.type == TransactionType.PAYMENT,
    Transaction.status.in_((TransactionStatus.COMPLETED, TransactionStatus.REFUNDED)),
)
COMPLETED_REFUND = and_(
    Transaction.type == TransactionType.REFUND,
    Transaction.status == TransactionStatus.COMPLETED,
)
IS_PAYMENT = Transaction.type == TransactionType.PAYMENT
IS_REFUND = Transaction.type == TransactionType.REFUND

PAYMENT_METHOD = func.coalesce(Transaction.metadata_["paymentMethod"].as_string(), "unknown")
PROCESSING_TIME = Transaction.metadata_["processingTime"].as_float()

_PG_FORMATS = {"daily": ("day", "YYYY-MM-DD"), "weekly": ("week", "YYYY-MM-DD"), "monthly": ("month", "YYYY-MM")}
GROUPINGS = tuple(_PG_FORMATS)


def sum_when(condition, column) -> ColumnElement:
    return func.coalesce(func.sum(case((condition, column), else_=0)), 0)


def count_when(condition) -> ColumnElement:
    return func.count(case((condition, 1)))


def date_conditions(date_range: DateRange, educator_id: str | None = None) -> list:
    conditions = []
    if date_range.start is not None:
        conditions.append(Transaction.created_at >= date_range.start)
    if date_range.end is not None:
        conditions.append(Transaction.created_at <= date_range.end)
    if educator_id is not None:
        conditions.append(Transaction.educator_id == educator_id)
    return conditions


def period_label(dialect: str, grouping: str) -> ColumnElement:
    """Sortable text label of the period a transaction falls in (weeks start on Monday)."""
    if dialect == "postgresql":
        unit, fmt = _PG_FORMATS[grouping]
        return func.to_char(func.date_trunc(unit, Transaction.created_at), fmt)
    if grouping == "weekly":
        return func.date(Transaction.created_at, "weekday 0", "-6 days")
    if grouping == "monthly":
        return func.strftime("%Y-%m", Transaction.created_at)
    return func.strftime("%Y-%m-%d", Transaction.created_at)


def money(value: Any) -> float:
    if value is None:
        return 0.0
    return float(Decimal(str(value)).quantize(CENT))


def percentage(part: Any, whole: Any) -> float:
    whole = float(whole or 0)
    if whole == 0:
        return 0.0
    return round(float(part or 0) * 100 / whole, 2)
