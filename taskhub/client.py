"""Async HTTP client for the task management API."""
import logging
from typing import Any, Optional

import httpx

logger = logging.getLogger(__name__)


class APIError(Exception):
    """A non-success response from the API"""

    def __init__(self, status_code: int, message: str, errors: Optional[list[dict]] = None):
        super().__init__(f"{status_code}: {message}")
        self.status_code = status_code
        self.message = message
        self.errors = errors or []


class AuthenticationExpired(APIError):
    """The session could not be refreshed; log in again"""


class TaskHubClient:
    """Client for the /api endpoints.

    Keeps the token pair returned by login or register. A call answered
    with 401 triggers one refresh through ``/auth/refresh`` and one replay
    of the original call.
    """

    def __init__(
        self,
        base_url: str = "http://localhost:8000",
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/") + "/api",
            timeout=httpx.Timeout(timeout),
            transport=transport,
        )
        self.access_token: Optional[str] = None
        self.refresh_token: Optional[str] = None

    async def __aenter__(self) -> "TaskHubClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def close(self) -> None:
        await self._client.aclose()

    def _store_tokens(self, data: dict[str, Any]) -> None:
        self.access_token = data["access_token"]
        self.refresh_token = data["refresh_token"]

    def clear_tokens(self) -> None:
        self.access_token = None
        self.refresh_token = None

    @staticmethod
    def _unwrap(response: httpx.Response) -> Any:
        try:
            body = response.json()
        except ValueError:
            body = {}
        if response.is_success:
            return body.get("data", body)
        raise APIError(
            response.status_code,
            body.get("message") or response.reason_phrase,
            body.get("errors"),
        )

    async def _send(self, method: str, path: str, **kwargs) -> httpx.Response:
        headers = dict(kwargs.pop("headers", None) or {})
        if self.access_token:
            headers["Authorization"] = f"Bearer {self.access_token}"
        return await self._client.request(method, path, headers=headers, **kwargs)

    async def _refresh(self) -> None:
        if not self.refresh_token:
            self.clear_tokens()
            raise AuthenticationExpired(401, "No refresh token available")

        response = await self._client.post("/auth/refresh", json={"refresh_token": self.refresh_token})
        if not response.is_success:
            logger.info("Token refresh rejected with %d", response.status_code)
            self.clear_tokens()
            raise AuthenticationExpired(response.status_code, "Session expired, please log in again")
        self._store_tokens(response.json()["data"])

    async def request(self, method: str, path: str, **kwargs) -> Any:
        response = await self._send(method, path, **kwargs)
        if response.status_code == 401 and self.refresh_token:
            await self._refresh()
            response = await self._send(method, path, **kwargs)
        return self._unwrap(response)

    # Auth

    async def register(self, name: str, email: str, password: str) -> dict[str, Any]:
        data = self._unwrap(
            await self._client.post("/auth/register", json={"name": name, "email": email, "password": password})
        )
        self._store_tokens(data)
        return data["user"]

    async def login(self, email: str, password: str) -> dict[str, Any]:
        data = self._unwrap(await self._client.post("/auth/login", json={"email": email, "password": password}))
        self._store_tokens(data)
        return data["user"]

    async def logout(self) -> None:
        try:
            await self.request("POST", "/auth/logout", json={"refresh_token": self.refresh_token})
        finally:
            self.clear_tokens()

    async def me(self) -> dict[str, Any]:
        return (await self.request("GET", "/auth/me"))["user"]

    # Tasks

    async def list_tasks(self, **params) -> dict[str, Any]:
        params = {key: value for key, value in params.items() if value is not None}
        return await self.request("GET", "/tasks/", params=params)

    async def create_task(self, **fields) -> dict[str, Any]:
        return (await self.request("POST", "/tasks/", json=fields))["task"]

    async def get_task(self, task_id: int) -> dict[str, Any]:
        return (await self.request("GET", f"/tasks/{task_id}"))["task"]

    async def update_task(self, task_id: int, **fields) -> dict[str, Any]:
        return (await self.request("PUT", f"/tasks/{task_id}", json=fields))["task"]

    async def delete_task(self, task_id: int) -> None:
        await self.request("DELETE", f"/tasks/{task_id}")

    async def task_stats(self) -> dict[str, Any]:
        return await self.request("GET", "/tasks/stats")

    async def add_comment(self, task_id: int, text: str) -> dict[str, Any]:
        return (await self.request("POST", f"/tasks/{task_id}/comments", json={"text": text}))["task"]

    async def update_comment(self, task_id: int, comment_id: str, text: str) -> dict[str, Any]:
        path = f"/tasks/{task_id}/comments/{comment_id}"
        return (await self.request("PUT", path, json={"text": text}))["task"]

    async def delete_comment(self, task_id: int, comment_id: str) -> dict[str, Any]:
        return (await self.request("DELETE", f"/tasks/{task_id}/comments/{comment_id}"))["task"]

    async def upload_files(self, task_id: int, files: list[tuple[str, bytes, str]]) -> dict[str, Any]:
        """Upload ``(filename, content, mime_type)`` triples as one batch"""
        multipart = [("documents", item) for item in files]
        return (await self.request("POST", f"/tasks/{task_id}/upload", files=multipart))["task"]

    async def delete_file(self, task_id: int, file_id: str) -> dict[str, Any]:
        return (await self.request("DELETE", f"/tasks/{task_id}/files/{file_id}"))["task"]

    # Users

    async def assignable_users(self) -> list[dict[str, Any]]:
        return (await self.request("GET", "/users/assignable"))["users"]
