from __future__ import annotations

import logging
from typing import Any
from urllib.parse import quote

import httpx

from app.config import settings
from app.core.exceptions import UpstreamFailure

logger = logging.getLogger(__name__)


class _BearerApiClient:
    """Single-shot authenticated JSON calls. No retries: a failed call surfaces immediately."""

    def __init__(
        self,
        base_url: str,
        token: str,
        *,
        timeout: float,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._token = token
        self._timeout = timeout
        self._transport = transport

    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self._token}", "Accept": "application/json"}

    async def _request(self, method: str, path: str, *, action: str, **kwargs: Any) -> Any:
        url = f"{self._base_url}{path}"
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.request(method, url, headers=self._headers(), **kwargs)
        except httpx.TimeoutException as exc:
            raise UpstreamFailure(f"Failed to {action}: request timed out after {self._timeout}s") from exc
        except httpx.HTTPError as exc:
            raise UpstreamFailure(f"Failed to {action}: {exc.__class__.__name__}") from exc

        if response.status_code >= 400:
            logger.info("%s %s -> HTTP %s", method, path, response.status_code)
            raise UpstreamFailure(
                f"Failed to {action}: {response.status_code} {response.text}".rstrip(),
                upstream_status=response.status_code,
            )
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise UpstreamFailure(f"Failed to {action}: response was not valid JSON") from exc


class SupabaseAdminClient(_BearerApiClient):
    """GoTrue admin endpoints of one project, authenticated with its service role key."""

    def __init__(
        self,
        project_url: str,
        service_key: str,
        *,
        timeout: float | None = None,
        page_size: int | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        super().__init__(
            project_url,
            service_key,
            timeout=timeout or settings.ADMIN_API_TIMEOUT_SECONDS,
            transport=transport,
        )
        self.project_url = project_url
        self._page_size = page_size or settings.ADMIN_USERS_PAGE_SIZE

    def _headers(self) -> dict[str, str]:
        headers = super()._headers()
        headers["apikey"] = self._token
        return headers

    async def list_users(self) -> list[dict[str, Any]]:
        users: list[dict[str, Any]] = []
        page = 1
        while True:
            payload = await self._request(
                "GET",
                "/auth/v1/admin/users",
                action="list users",
                params={"page": page, "per_page": self._page_size},
            )
            batch = (payload or {}).get("users") or []
            users.extend(batch)
            if len(batch) < self._page_size:
                return users
            page += 1

    async def get_user(self, user_id: str) -> dict[str, Any]:
        payload = await self._request("GET", f"/auth/v1/admin/users/{quote(user_id, safe='')}", action=f"find user {user_id}")
        # older GoTrue versions wrap the object as {"user": {...}}
        if isinstance(payload, dict) and isinstance(payload.get("user"), dict):
            return payload["user"]
        return payload or {}

    async def send_password_recovery(self, email: str, redirect_to: str) -> None:
        await self._request(
            "POST",
            "/auth/v1/recover",
            action=f"send password reset email to {email}",
            params={"redirect_to": redirect_to},
            json={"email": email},
        )


class SupabaseManagementClient(_BearerApiClient):
    """Supabase Management API, authenticated with the server-side personal access token."""

    def __init__(
        self,
        access_token: str,
        *,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        super().__init__(
            base_url or settings.SUPABASE_MANAGEMENT_API_URL,
            access_token,
            timeout=timeout or settings.ADMIN_API_TIMEOUT_SECONDS,
            transport=transport,
        )

    async def list_projects(self) -> list[dict[str, Any]]:
        return await self._request("GET", "/v1/projects", action="fetch projects") or []

    async def get_project(self, project_ref: str) -> dict[str, Any]:
        return await self._request("GET", f"/v1/projects/{quote(project_ref, safe='')}", action="check project status") or {}

    async def update_addons(self, project_ref: str, addons: list[dict[str, Any]]) -> Any:
        return await self._request(
            "PATCH",
            f"/v1/projects/{quote(project_ref, safe='')}/addons",
            action=f"update addons for project {project_ref}",
            json=addons,
        )
