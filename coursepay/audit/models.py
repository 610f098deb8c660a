import uuid

from sqlalchemy import Index, JSON, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from coursepay.db.base import Base, TimestampMixin, UUIDMixin


class AuditLog(UUIDMixin, TimestampMixin, Base):
    """Immutable audit trail for payment-relevant events."""
    __tablename__ = "audit_logs"
    __table_args__ = (
        Index("ix_audit_actor_id", "actor_id"),
        Index("ix_audit_created_at", "created_at"),
    )

    actor_id: Mapped[str] = mapped_column(String(64), nullable=False)

    # Event type: PAYMENT_PROCESSED, PAYMENT_FAILED, REFUND_PROCESSED,
    #             STRIPE_ACCOUNT_CREATED, STRIPE_ACCOUNT_DELETED, WEBHOOK_RECEIVED
    event_type: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    transaction_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    metadata_: Mapped[dict | None] = mapped_column("metadata", JSON, nullable=True)
