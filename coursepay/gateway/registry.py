"""Gateway registry: one process-wide gateway selected by configuration."""
from coursepay.config import settings
from coursepay.gateway.base import PaymentGateway
from coursepay.gateway.mock import MockGateway

_gateway: PaymentGateway | None = None


def get_gateway() -> PaymentGateway:
    global _gateway
    if _gateway is None:
        if settings.gateway == "stripe":
            from coursepay.gateway.stripe import StripeGateway
            if not settings.stripe_secret_key:
                raise ValueError("STRIPE_SECRET_KEY is not set. Configure it or use GATEWAY=mock.")
            _gateway = StripeGateway(
                api_key=settings.stripe_secret_key,
                timeout_seconds=settings.gateway_timeout_seconds,
            )
        elif settings.gateway == "mock":
            _gateway = MockGateway(timeout_seconds=settings.gateway_timeout_seconds)
        else:
            raise ValueError(f"Unknown gateway: {settings.gateway}")
    return _gateway


async def close_gateway() -> None:
    global _gateway
    if _gateway is not None:
        await _gateway.close()
    _gateway = None
