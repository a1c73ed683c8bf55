"""Async HTTP client for the document-search backend."""

from __future__ import annotations

import asyncio
import time
from typing import Any, Optional

import httpx
from loguru import logger

from card_search.config import CardSearchConfig
from card_search.errors import IndexNotFoundError, SearchBackendError, TaskTimeoutError

PENDING_TASK_STATUSES = {"enqueued", "processing"}


def task_uid_of(task: Any) -> Optional[int]:
    """Extract the task id from an enqueued-task response."""
    if not isinstance(task, dict):
        return None
    uid = task.get("taskUid", task.get("uid"))
    return int(uid) if uid is not None else None


class SearchBackendClient:
    """Thin wrapper over the backend's REST API.

    Every mutating call returns the backend's enqueued-task payload; use
    ``wait_for_task`` to block until it settles.
    """

    def __init__(
        self,
        host: str,
        api_key: Optional[str] = None,
        *,
        timeout: float = 10.0,
        task_timeout: float = 60.0,
        poll_interval: float = 0.5,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.host = host.rstrip("/")
        self.task_timeout = task_timeout
        self.poll_interval = poll_interval
        self._api_key = api_key
        self._timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self._client_lock = asyncio.Lock()

    @classmethod
    def from_config(cls, config: CardSearchConfig) -> "SearchBackendClient":
        return cls(
            config.search_host,
            config.search_api_key,
            timeout=config.search_timeout,
            task_timeout=config.task_timeout,
            poll_interval=config.task_poll_interval,
        )

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is not None:
            return self._client

        async with self._client_lock:
            if self._client is not None:
                return self._client

            headers = {"Content-Type": "application/json"}
            if self._api_key:
                headers["Authorization"] = f"Bearer {self._api_key}"
            self._client = httpx.AsyncClient(
                base_url=self.host,
                headers=headers,
                timeout=httpx.Timeout(self._timeout),
                transport=self._transport,
            )
            return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        params: Optional[dict] = None,
    ) -> Any:
        client = await self._get_client()
        try:
            response = await client.request(method, path, json=json, params=params)
        except httpx.HTTPError as e:
            raise SearchBackendError(f"Search backend request {method} {path} failed: {e}") from e

        if response.is_error:
            raise self._error_from_response(response)
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise SearchBackendError(
                f"Search backend returned malformed JSON for {method} {path}",
                status_code=response.status_code,
            ) from e

    @staticmethod
    def _error_from_response(response: httpx.Response) -> SearchBackendError:
        code = None
        message = response.text
        try:
            body = response.json()
        except ValueError:
            body = None
        if isinstance(body, dict):
            code = body.get("code")
            message = body.get("message") or message

        error_type = IndexNotFoundError if code == "index_not_found" else SearchBackendError
        return error_type(
            f"Search backend error {response.status_code}: {message}",
            status_code=response.status_code,
            code=code,
        )

    # --- indexes -------------------------------------------------------------

    async def get_index(self, uid: str) -> dict:
        return await self._request("GET", f"/indexes/{uid}")

    async def create_index(self, uid: str, primary_key: Optional[str] = "id") -> dict:
        payload: dict[str, Any] = {"uid": uid}
        if primary_key:
            payload["primaryKey"] = primary_key
        return await self._request("POST", "/indexes", json=payload)

    async def update_index(self, uid: str, primary_key: str) -> dict:
        return await self._request("PATCH", f"/indexes/{uid}", json={"primaryKey": primary_key})

    async def delete_index(self, uid: str) -> dict:
        return await self._request("DELETE", f"/indexes/{uid}")

    async def get_settings(self, uid: str) -> dict:
        return await self._request("GET", f"/indexes/{uid}/settings") or {}

    async def update_settings(self, uid: str, settings: dict) -> dict:
        return await self._request("PATCH", f"/indexes/{uid}/settings", json=settings)

    async def get_stats(self, uid: str) -> dict:
        return await self._request("GET", f"/indexes/{uid}/stats") or {}

    # --- documents -----------------------------------------------------------

    async def add_documents(
        self, uid: str, documents: list[dict], primary_key: Optional[str] = None
    ) -> dict:
        params = {"primaryKey": primary_key} if primary_key else None
        return await self._request(
            "POST", f"/indexes/{uid}/documents", json=documents, params=params
        )

    async def delete_documents(self, uid: str, ids: list[str]) -> dict:
        return await self._request(
            "POST", f"/indexes/{uid}/documents/delete-batch", json=[str(i) for i in ids]
        )

    async def delete_all_documents(self, uid: str) -> dict:
        return await self._request("DELETE", f"/indexes/{uid}/documents")

    # --- search --------------------------------------------------------------

    async def search(self, uid: str, payload: dict) -> dict:
        return await self._request("POST", f"/indexes/{uid}/search", json=payload) or {}

    async def multi_search(self, payload: dict) -> dict:
        return await self._request("POST", "/multi-search", json=payload) or {}

    # --- tasks ---------------------------------------------------------------

    async def get_task(self, task_uid: int) -> dict:
        return await self._request("GET", f"/tasks/{task_uid}") or {}

    async def wait_for_task(self, task: Any, timeout: Optional[float] = None) -> Optional[dict]:
        """Poll a task until it leaves the pending states.

        Raises:
            TaskTimeoutError: the task is still pending after ``timeout`` seconds
            SearchBackendError: the task finished with status ``failed``
        """
        task_uid = task_uid_of(task)
        if task_uid is None:
            return None

        budget = self.task_timeout if timeout is None else timeout
        started = time.monotonic()
        while True:
            status = await self.get_task(task_uid)
            state = status.get("status")
            if state not in PENDING_TASK_STATUSES:
                break
            if time.monotonic() - started > budget:
                raise TaskTimeoutError(f"Timed out waiting for search backend task {task_uid}")
            await asyncio.sleep(self.poll_interval)

        if state == "failed":
            error = status.get("error") or {}
            raise SearchBackendError(
                f"Search backend task {task_uid} failed: {error.get('message', 'unknown error')}",
                code=error.get("code"),
            )
        logger.debug(f"Search backend task {task_uid} finished with status {state}")
        return status
