from typing import Annotated, AsyncIterator, Callable

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from coursepay.config import CacheTTLs, CommissionConfig, settings
from coursepay.core.cache import CacheBackend
from coursepay.core.exceptions import ForbiddenError, UnauthenticatedError
from coursepay.core.security import AuthUser, Role, authenticate
from coursepay.db.session import async_session_factory
from coursepay.gateway.base import PaymentGateway
from coursepay.gateway.registry import get_gateway
from coursepay.notifications.client import ServiceNotifier
from coursepay.notifications.dispatcher import OutboundDispatcher

security_scheme = HTTPBearer(auto_error=False)


async def get_db() -> AsyncIterator[AsyncSession]:
    async with async_session_factory() as session:
        yield session


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    return async_session_factory


async def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security_scheme)],
) -> AuthUser:
    if credentials is None or not credentials.credentials:
        raise UnauthenticatedError("Authentication token missing")
    return await authenticate(credentials.credentials)


def require_role(*roles: Role) -> Callable:
    """Dependency factory: the caller must hold one of the given roles."""
    allowed = set(roles)

    async def checker(user: Annotated[AuthUser, Depends(get_current_user)]) -> AuthUser:
        if user.role not in allowed:
            raise ForbiddenError("Insufficient permissions")
        return user

    return checker


def get_cache(request: Request) -> CacheBackend:
    return request.app.state.cache


def get_dispatcher(request: Request) -> OutboundDispatcher:
    return request.app.state.dispatcher


def get_notifier(request: Request) -> ServiceNotifier:
    return request.app.state.notifier


def get_payment_gateway() -> PaymentGateway:
    return get_gateway()


def get_commission_config() -> CommissionConfig:
    return settings.commission_config()


def get_cache_ttls() -> CacheTTLs:
    return settings.cache_ttls()


DbSession = Annotated[AsyncSession, Depends(get_db)]
SessionFactory = Annotated[async_sessionmaker[AsyncSession], Depends(get_session_factory)]
CurrentUser = Annotated[AuthUser, Depends(get_current_user)]
AdminUser = Annotated[AuthUser, Depends(require_role(Role.ADMIN))]
EducatorUser = Annotated[AuthUser, Depends(require_role(Role.EDUCATOR))]
Cache = Annotated[CacheBackend, Depends(get_cache)]
Dispatcher = Annotated[OutboundDispatcher, Depends(get_dispatcher)]
Notifier = Annotated[ServiceNotifier, Depends(get_notifier)]
Gateway = Annotated[PaymentGateway, Depends(get_payment_gateway)]
Commission = Annotated[CommissionConfig, Depends(get_commission_config)]
TTLs = Annotated[CacheTTLs, Depends(get_cache_ttls)]
