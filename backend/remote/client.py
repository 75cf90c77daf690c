"""reMarkable Cloud document-storage client using httpx."""

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import TYPE_CHECKING, Any

import httpx

from backend.exceptions import RemoteApiError

if TYPE_CHECKING:
    from backend.config import Settings

logger = logging.getLogger(__name__)

_DEVICE_REGISTER_PATH = "/token/json/2/device/new"
_USER_TOKEN_PATH = "/token/json/2/user/new"
_DOCS_PATH = "/document-storage/json/2/docs"

_RETRYABLE_STATUS = frozenset({429, 500, 502, 503, 504})


def _error_detail(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return response.text[:200] or response.reason_phrase
    if isinstance(data, dict) and data.get("message"):
        return str(data["message"])
    return response.reason_phrase


class RemarkableClient:
    """Lists documents from reMarkable Cloud on behalf of one registered device.

    Transient failures (transport errors, 429 and 5xx responses) are retried
    with exponential backoff. Authentication failures are raised at once.
    """

    def __init__(
        self,
        device_token: str | None = None,
        *,
        auth_url: str,
        storage_url: str,
        user_agent: str = "reMarkidian/1.0.0",
        device_desc: str = "desktop-linux",
        timeout: float = 45.0,
        max_retries: int = 3,
        backoff_seconds: float = 0.5,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.device_token = device_token
        self.auth_url = auth_url.rstrip("/")
        self.storage_url = storage_url.rstrip("/")
        self.user_agent = user_agent
        self.device_desc = device_desc
        self.timeout = timeout
        self.max_retries = max_retries
        self.backoff_seconds = backoff_seconds
        self._transport = transport

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        device_token: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> RemarkableClient:
        return cls(
            device_token,
            auth_url=settings.remarkable_auth_url,
            storage_url=settings.remarkable_storage_url,
            user_agent=settings.remarkable_user_agent,
            device_desc=settings.remarkable_device_desc,
            timeout=settings.remote_timeout_seconds,
            max_retries=settings.remote_max_retries,
            backoff_seconds=settings.remote_backoff_seconds,
            transport=transport,
        )

    def _http_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=httpx.Timeout(self.timeout),
            headers={"User-Agent": self.user_agent},
            transport=self._transport,
        )

    async def _request(
        self,
        http_client: httpx.AsyncClient,
        method: str,
        url: str,
        action: str,
        **kwargs: Any,
    ) -> httpx.Response:
        attempt = 0
        while True:
            try:
                response = await http_client.request(method, url, **kwargs)
            except httpx.TransportError as exc:
                if attempt >= self.max_retries:
                    msg = f"{action} failed: {exc.__class__.__name__}: {exc}"
                    raise RemoteApiError(msg) from exc
                logger.warning("%s: transport error (%s), retrying", action, exc)
            else:
                if response.status_code < 400:
                    return response
                if response.status_code in (401, 403):
                    msg = f"{action} failed: authentication rejected ({response.status_code})"
                    raise RemoteApiError(msg, status_code=response.status_code)
                if response.status_code not in _RETRYABLE_STATUS or attempt >= self.max_retries:
                    msg = f"{action} failed: {response.status_code} {_error_detail(response)}"
                    raise RemoteApiError(msg, status_code=response.status_code)
                logger.warning("%s: server returned %d, retrying", action, response.status_code)

            await asyncio.sleep(self.backoff_seconds * (2**attempt))
            attempt += 1

    async def register_device(self, code: str) -> str:
        """Exchange a one-time code for a device token and keep it."""
        async with self._http_client() as http_client:
            response = await self._request(
                http_client,
                "POST",
                f"{self.auth_url}{_DEVICE_REGISTER_PATH}",
                "Device registration",
                json={
                    "code": code,
                    "deviceDesc": self.device_desc,
                    "deviceID": str(uuid.uuid4()),
                },
            )
        token = response.text.strip()
        if not token:
            raise RemoteApiError("Device registration failed: empty token")
        self.device_token = token
        logger.info("Device registered with reMarkable Cloud")
        return token

    async def _user_token(self, http_client: httpx.AsyncClient) -> str:
        if not self.device_token:
            raise RemoteApiError("Device not registered")
        response = await self._request(
            http_client,
            "POST",
            f"{self.auth_url}{_USER_TOKEN_PATH}",
            "User token request",
            headers={"Authorization": f"Bearer {self.device_token}"},
        )
        token = response.text.strip()
        if not token:
            raise RemoteApiError("User token request failed: empty token")
        return token

    async def list_documents(self) -> list[dict[str, Any]]:
        """Fetch the flat list of documents and folders."""
        async with self._http_client() as http_client:
            user_token = await self._user_token(http_client)
            response = await self._request(
                http_client,
                "GET",
                f"{self.storage_url}{_DOCS_PATH}",
                "Document listing",
                headers={"Authorization": f"Bearer {user_token}"},
            )
        try:
            documents = response.json()
        except ValueError as exc:
            raise RemoteApiError("Document listing failed: invalid JSON") from exc
        if not isinstance(documents, list):
            raise RemoteApiError("Document listing failed: expected a JSON array")
        logger.info("Retrieved %d documents from reMarkable Cloud", len(documents))
        return documents
