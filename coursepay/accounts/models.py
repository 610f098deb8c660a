from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column

from coursepay.db.base import Base, TimestampMixin, UpdatedAtMixin, UUIDMixin


class StripeAccount(UUIDMixin, TimestampMixin, UpdatedAtMixin, Base):
    """Connected payout account of an educator. Must exist before they can be paid."""
    __tablename__ = "stripe_accounts"

    educator_id: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    stripe_account_id: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
