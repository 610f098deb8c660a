"""Audit log service. Rows are append-only."""
import enum
import uuid
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from coursepay.audit.models import AuditLog


class AuditEvent(str, enum.Enum):
    PAYMENT_PROCESSED = "PAYMENT_PROCESSED"
    PAYMENT_FAILED = "PAYMENT_FAILED"
    REFUND_PROCESSED = "REFUND_PROCESSED"
    STRIPE_ACCOUNT_CREATED = "STRIPE_ACCOUNT_CREATED"
    STRIPE_ACCOUNT_DELETED = "STRIPE_ACCOUNT_DELETED"
    WEBHOOK_RECEIVED = "WEBHOOK_RECEIVED"


async def log_event(
    db: AsyncSession,
    event: AuditEvent,
    actor_id: str,
    *,
    description: str | None = None,
    transaction_id: uuid.UUID | None = None,
    metadata: dict[str, Any] | None = None,
) -> AuditLog:
    entry = AuditLog(
        actor_id=actor_id,
        event_type=event.value,
        transaction_id=transaction_id,
        description=description,
        metadata_=metadata,
    )
    db.add(entry)
    await db.flush()
    return entry
