import logging
from typing import Any

import httpx

logger = logging.getLogger(__name__)

USER_NOTIFICATIONS_PATH = "/api/v1/ums/notifications"
COURSE_NOTIFICATIONS_PATH = "/api/v1/cms/course/notifications"
PROGRESS_NOTIFICATIONS_PATH = "/api/v1/progress/notifications"


class ServiceNotifier:
    """
    Best-effort HTTP calls to sibling services (users, courses, progress).
    Never raises: failures are logged and reported as False / None.
    """

    def __init__(
        self,
        *,
        user_service_url: str,
        course_service_url: str,
        progress_service_url: str,
        internal_api_key: str,
        timeout_seconds: float = 5.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.user_service_url = user_service_url.rstrip("/")
        self.course_service_url = course_service_url.rstrip("/")
        self.progress_service_url = progress_service_url.rstrip("/")
        self._client = httpx.AsyncClient(
            headers={"X-Service-Auth": internal_api_key},
            timeout=timeout_seconds,
            transport=transport,
        )

    async def _post(self, service: str, base_url: str, path: str, payload: dict[str, Any]) -> bool:
        if not base_url:
            logger.warning("%s URL not set. Notification not sent.", service)
            return False
        try:
            response = await self._client.post(f"{base_url}{path}", json=payload)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            logger.error("Failed to notify %s (%s): %s", service, payload.get("action"), exc)
            return False
        logger.info("%s notified: %s", service, payload.get("action") or payload.get("Action"))
        return True

    async def notify_user_service(self, payload: dict[str, Any]) -> bool:
        return await self._post("user service", self.user_service_url, USER_NOTIFICATIONS_PATH, payload)

    async def notify_course_service(self, payload: dict[str, Any]) -> bool:
        return await self._post("course service", self.course_service_url, COURSE_NOTIFICATIONS_PATH, payload)

    async def notify_progress_service(self, payload: dict[str, Any]) -> bool:
        return await self._post(
            "progress service", self.progress_service_url, PROGRESS_NOTIFICATIONS_PATH, payload
        )

    async def _get(self, service: str, url: str) -> dict[str, Any] | None:
        try:
            response = await self._client.get(url)
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("Lookup against %s failed: %s", service, exc)
            return None
        return data.get("data", data) if isinstance(data, dict) else None

    async def fetch_course(self, course_id: str) -> dict[str, Any] | None:
        if not self.course_service_url:
            return None
        return await self._get("course service", f"{self.course_service_url}/api/v1/cms/course/{course_id}")

    async def fetch_user(self, user_id: str) -> dict[str, Any] | None:
        if not self.user_service_url:
            return None
        return await self._get("user service", f"{self.user_service_url}/api/v1/ums/users/{user_id}")

    async def close(self) -> None:
        await self._client.aclose()
