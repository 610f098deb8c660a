import enum
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

import httpx
from jose import JWTError, jwt

from coursepay.config import settings
from coursepay.core.exceptions import GatewayUnavailableError, UnauthenticatedError

logger = logging.getLogger(__name__)


class Role(str, enum.Enum):
    STUDENT = "Student"
    USER = "User"
    EDUCATOR = "Educator"
    ADMIN = "Admin"

    @classmethod
    def parse(cls, value: str | None) -> "Role":
        # The identity service is not consistent about casing ("ADMIN" vs "Admin")
        for role in cls:
            if value and role.value.lower() == value.lower():
                return role
        return cls.USER


@dataclass(frozen=True)
class AuthUser:
    """Caller identity as asserted by the identity service."""
    id: str
    role: Role
    email: str | None = None
    name: str | None = None

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN

    @property
    def is_educator(self) -> bool:
        return self.role == Role.EDUCATOR


def create_access_token(
    subject: str, role: Role, email: str | None = None, name: str | None = None,
    expires_minutes: int = 60,
) -> str:
    """Issue a local token. Only used in development and tests."""
    expire = datetime.now(timezone.utc) + timedelta(minutes=expires_minutes)
    payload = {"sub": subject, "role": role.value, "email": email, "name": name, "exp": expire}
    return jwt.encode(payload, settings.secret_key, algorithm=settings.algorithm)


def decode_access_token(token: str) -> AuthUser | None:
    """Returns the caller or None if the token is invalid."""
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
    except JWTError:
        return None
    subject = payload.get("sub")
    if not subject:
        return None
    return AuthUser(
        id=str(subject),
        role=Role.parse(payload.get("role")),
        email=payload.get("email"),
        name=payload.get("name"),
    )


async def validate_with_identity_service(token: str) -> AuthUser:
    """Ask the identity service whether the token is valid and who it belongs to."""
    url = f"{settings.identity_service_url.rstrip('/')}/auth/validate"
    try:
        async with httpx.AsyncClient(timeout=settings.notification_timeout_seconds) as client:
            response = await client.post(
                url,
                json={"token": token},
                headers={"X-Service-Key": settings.internal_api_key},
            )
    except httpx.TransportError as exc:
        logger.error("Identity service unreachable: %s", exc)
        raise GatewayUnavailableError("Authentication service unavailable") from exc

    if response.status_code >= 500:
        logger.error("Identity service error %s", response.status_code)
        raise GatewayUnavailableError("Authentication service unavailable")

    data = response.json() if response.content else {}
    if response.status_code != 200 or not data.get("valid"):
        raise UnauthenticatedError("Invalid or expired token")

    user = data.get("user") or {}
    if user.get("id") is None:
        raise UnauthenticatedError("Invalid or expired token")
    return AuthUser(
        id=str(user["id"]),
        role=Role.parse(user.get("role")),
        email=user.get("email"),
        name=user.get("name"),
    )


async def authenticate(token: str) -> AuthUser:
    if settings.identity_service_url:
        return await validate_with_identity_service(token)
    user = decode_access_token(token)
    if user is None:
        raise UnauthenticatedError("Invalid or expired token")
    return user
