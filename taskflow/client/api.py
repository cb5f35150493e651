"""
Task API Client
===============

Async HTTP client for the task endpoints. Server responses are mapped
onto the client error categories:

    401                         -> AuthorizationError
    404                         -> NotFoundError
    400 / 422                   -> TaskValidationError
    transport, timeout, 5xx     -> TransientNetworkError
"""

import logging
from typing import Any, Optional, Protocol

import httpx

from taskflow.client.errors import (
    AuthorizationError,
    ClientError,
    NotFoundError,
    TaskValidationError,
    TransientNetworkError,
)
from taskflow.client.models import ClientTask, TaskChanges, TaskDraft

logger = logging.getLogger(__name__)


class TaskApi(Protocol):
    """Server operations the workspace and reconciler depend on."""

    async def list(self) -> list[ClientTask]: ...

    async def create(self, draft: TaskDraft) -> ClientTask: ...

    async def update(self, server_id: int, changes: TaskChanges) -> ClientTask: ...

    async def delete(self, server_id: int) -> None: ...


def _error_message(response: httpx.Response) -> tuple[str, Optional[str]]:
    try:
        body = response.json()
    except ValueError:
        return response.text or response.reason_phrase, None
    error = body.get("error") if isinstance(body, dict) else None
    if isinstance(error, dict):
        return error.get("message") or response.reason_phrase, error.get("field")
    return response.reason_phrase, None


class TaskApiClient:
    """``TaskApi`` over HTTP using a bearer session token."""

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.token = token
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=timeout,
            transport=transport,
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "TaskApiClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    def _headers(self) -> dict[str, str]:
        if not self.token:
            return {}
        return {"Authorization": f"Bearer {self.token}"}

    async def _request(self, method: str, path: str, **kwargs) -> Any:
        try:
            response = await self._client.request(
                method, path, headers=self._headers(), **kwargs
            )
        except httpx.TimeoutException as e:
            raise TransientNetworkError(f"Request timed out: {e}") from e
        except httpx.TransportError as e:
            raise TransientNetworkError(f"Network error: {e}") from e

        if response.is_success:
            return response.json()

        message, field = _error_message(response)
        status_code = response.status_code
        if status_code == 401:
            raise AuthorizationError(message, status_code=status_code)
        if status_code == 404:
            raise NotFoundError(message, status_code=status_code)
        if status_code in (400, 422):
            raise TaskValidationError(message, field=field, status_code=status_code)
        if status_code == 429 or status_code >= 500:
            raise TransientNetworkError(message, status_code=status_code)
        raise ClientError(message, status_code=status_code)

    async def list(self) -> list[ClientTask]:
        body = await self._request("GET", "/api/v1/tasks")
        return [ClientTask.from_api(item) for item in body.get("data", [])]

    async def create(self, draft: TaskDraft) -> ClientTask:
        body = await self._request("POST", "/api/v1/tasks", json=draft.to_api_payload())
        return ClientTask.from_api(body["data"])

    async def update(self, server_id: int, changes: TaskChanges) -> ClientTask:
        body = await self._request(
            "PATCH",
            f"/api/v1/tasks/{server_id}",
            json=changes.to_api_payload(),
        )
        return ClientTask.from_api(body["data"])

    async def delete(self, server_id: int) -> None:
        await self._request("DELETE", f"/api/v1/tasks/{server_id}")
