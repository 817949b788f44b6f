"""
Clio API v4 client

Thin async wrapper over the task, calendar and matter endpoints used by
the automations. HTTP errors propagate as httpx.HTTPStatusError so webhook
handlers can fail the delivery and let Clio retry.
"""

import logging
from typing import Any, Optional

import httpx

from ..config import CLIO_ACCESS_TOKEN, CLIO_API_BASE_URL, CLIO_TIMEOUT_SECONDS
from .token_service import ClioTokenService

logger = logging.getLogger(__name__)


class ClioService:
    """Service for interacting with the Clio API"""

    API_PREFIX = "/api/v4"
    MATTER_FIELDS = (
        "id,display_number,etag,status,matter_stage,matter_stage_updated_at,location,"
        "practice_area,originating_attorney,responsible_attorney"
    )
    TASK_FIELDS = "id,name,description,status,completed_at,matter{id,display_number},assignee{id,name},due_at"
    CALENDAR_FIELDS = (
        "id,summary,start_at,end_at,location,created_at,updated_at,matter{id,display_number},"
        "calendar_entry_event_type{id,name}"
    )
    PAGE_LIMIT = 200

    def __init__(
        self,
        token_service: Optional[ClioTokenService] = None,
        base_url: str = CLIO_API_BASE_URL,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.token_service = token_service
        self.base_url = base_url
        self.transport = transport

    def _headers(self) -> dict[str, str]:
        token = self.token_service.get_access_token() if self.token_service else CLIO_ACCESS_TOKEN
        return {"Authorization": f"Bearer {token}", "Content-Type": "application/json"}

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        async with httpx.AsyncClient(
            base_url=self.base_url, timeout=CLIO_TIMEOUT_SECONDS, transport=self.transport
        ) as client:
            response = await client.request(method, path, headers=self._headers(), **kwargs)

            if response.status_code == 401 and self.token_service:
                logger.info("🔐 Received 401 Unauthorized, attempting token refresh...")
                await self.token_service.refresh_access_token()
                logger.info("🔄 Retrying original request with new token...")
                response = await client.request(method, path, headers=self._headers(), **kwargs)

            if response.is_error:
                logger.error(f"❌ Clio {method} {path} failed: {response.status_code} {response.text[:500]}")
            response.raise_for_status()
            return response

    async def _get_data(self, path: str, params: Optional[dict] = None) -> dict[str, Any]:
        response = await self._request("GET", f"{self.API_PREFIX}{path}", params=params)
        return response.json()["data"]

    async def _list(self, path: str, params: dict) -> list[dict[str, Any]]:
        """Follow Clio's paging links and return every record"""
        records = []
        url = f"{self.API_PREFIX}{path}"
        query = {**params, "limit": self.PAGE_LIMIT}
        while url:
            response = await self._request("GET", url, params=query)
            body = response.json()
            records.extend(body.get("data", []))
            url = ((body.get("meta") or {}).get("paging") or {}).get("next")
            query = None  # next links carry their own query string
        return records

    # Matters

    async def get_matter(self, matter_id: int) -> dict[str, Any]:
        return await self._get_data(f"/matters/{matter_id}", {"fields": self.MATTER_FIELDS})

    # Tasks

    async def get_task(self, task_id: int) -> dict[str, Any]:
        return await self._get_data(f"/tasks/{task_id}", {"fields": self.TASK_FIELDS})

    async def get_tasks_by_matter(self, matter_id: int) -> list[dict[str, Any]]:
        return await self._list("/tasks", {"matter_id": matter_id, "fields": self.TASK_FIELDS})

    async def create_task(self, task_data: dict[str, Any]) -> dict[str, Any]:
        response = await self._request(
            "POST", f"{self.API_PREFIX}/tasks", params={"fields": self.TASK_FIELDS}, json={"data": task_data}
        )
        return response.json()["data"]

    async def update_task(self, task_id: int, updates: dict[str, Any]) -> dict[str, Any]:
        """Patch a task - status, due_at or assignee"""
        response = await self._request(
            "PATCH",
            f"{self.API_PREFIX}/tasks/{task_id}",
            params={"fields": self.TASK_FIELDS},
            json={"data": updates},
        )
        return response.json()["data"]

    async def delete_task(self, task_id: int) -> None:
        await self._request("DELETE", f"{self.API_PREFIX}/tasks/{task_id}")

    # Calendar entries

    async def get_calendar_entry(self, calendar_entry_id: int) -> dict[str, Any]:
        return await self._get_data(f"/calendar_entries/{calendar_entry_id}", {"fields": self.CALENDAR_FIELDS})

    async def get_calendar_entries_by_matter(self, matter_id: int) -> list[dict[str, Any]]:
        return await self._list("/calendar_entries", {"matter_id": matter_id, "fields": self.CALENDAR_FIELDS})

    async def create_calendar_entry(self, entry_data: dict[str, Any]) -> dict[str, Any]:
        response = await self._request(
            "POST",
            f"{self.API_PREFIX}/calendar_entries",
            params={"fields": self.CALENDAR_FIELDS},
            json={"data": entry_data},
        )
        return response.json()["data"]

    async def delete_calendar_entry(self, calendar_entry_id: int) -> None:
        await self._request("DELETE", f"{self.API_PREFIX}/calendar_entries/{calendar_entry_id}")


def is_not_found(error: Exception) -> bool:
    return isinstance(error, httpx.HTTPStatusError) and error.response.status_code == 404
