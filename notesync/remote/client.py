"""HTTP client for a PostgREST-style notes collection.

Handles authentication headers, retry with exponential backoff, and
translation of every failure into RemoteError.
"""

import asyncio
import logging
from datetime import datetime
from typing import Any, Callable

import httpx

from ..errors import RemoteError
from ..store.note import Note, format_timestamp
from .adapter import normalize_rows, note_to_row
from .base import RemoteNotes

logger = logging.getLogger(__name__)


class RemoteClient(RemoteNotes):
    """Remote notes collection over HTTP.

    Supports:
    - fetch_active: filtered read by owner, newest first
    - upsert_one: idempotent insert-or-overwrite by id
    - mark_deleted: idempotent soft delete by id

    Server errors, connection failures and timeouts are retried; client
    errors (including 401/403) fail immediately.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        table: str = "notes",
        token_provider: Callable[[], str | None] | None = None,
        max_retries: int = 3,
        timeout: float = 30.0,
    ):
        """Initialize the remote client.

        Args:
            base_url: Backend root URL (e.g., "https://project.example.co").
            api_key: Public API key sent with every request.
            table: Name of the remote collection.
            token_provider: Returns the current user's access token, if any.
            max_retries: Maximum attempts per request.
            timeout: Request timeout in seconds.
        """
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.table = table
        self.max_retries = max(1, max_retries)
        self.timeout = timeout
        self._token_provider = token_provider
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    def _headers(self, prefer: str | None = None) -> dict[str, str]:
        token = self._token_provider() if self._token_provider else None
        headers = {
            "apikey": self.api_key,
            "Authorization": f"Bearer {token or self.api_key}",
            "Content-Type": "application/json",
        }
        if prefer:
            headers["Prefer"] = prefer
        return headers

    @property
    def _path(self) -> str:
        return f"/rest/v1/{self.table}"

    async def _request_with_retry(
        self,
        method: str,
        params: dict[str, str] | None = None,
        json_data: Any = None,
        prefer: str | None = None,
    ) -> tuple[Any, RemoteError | None]:
        """Make HTTP request with exponential backoff retry.

        Returns:
            Tuple of (response_data, error).
        """
        if not self.base_url:
            return None, RemoteError("No remote URL configured")

        client = await self._get_client()
        backoff = 1.0
        last_error: RemoteError | None = None

        for attempt in range(self.max_retries):
            try:
                response = await client.request(
                    method,
                    self._path,
                    params=params,
                    json=json_data,
                    headers=self._headers(prefer),
                )

                if response.status_code < 300:
                    if not response.content:
                        return None, None
                    return response.json(), None

                elif response.status_code >= 500:
                    logger.warning(
                        f"Server error {response.status_code}, "
                        f"attempt {attempt + 1}/{self.max_retries}"
                    )
                    last_error = RemoteError(
                        f"HTTP {response.status_code}: {response.text}",
                        status_code=response.status_code,
                    )
                else:
                    # Client error, don't retry
                    return None, RemoteError(
                        f"HTTP {response.status_code}: {response.text}",
                        status_code=response.status_code,
                    )

            except httpx.ConnectError as e:
                logger.warning(
                    f"Connection failed, attempt {attempt + 1}/{self.max_retries}"
                )
                last_error = RemoteError(f"Connection failed: {e}")
            except httpx.TimeoutException:
                logger.warning(
                    f"Request timeout, attempt {attempt + 1}/{self.max_retries}"
                )
                last_error = RemoteError("Request timed out")
            except (httpx.HTTPError, ValueError) as e:
                logger.error(f"Request error: {e}")
                return None, RemoteError(str(e))

            if attempt < self.max_retries - 1:
                await asyncio.sleep(backoff)
                backoff *= 2

        return None, RemoteError(
            f"Max retries ({self.max_retries}) exceeded: {last_error}",
            status_code=last_error.status_code if last_error else None,
        )

    async def fetch_active(self, owner_id: str) -> list[Note]:
        data, error = await self._request_with_retry(
            "GET",
            params={
                "select": "*",
                "user_id": f"eq.{owner_id}",
                "deleted": "eq.false",
                "order": "updated_at.desc",
            },
        )
        if error:
            raise error

        notes = normalize_rows(data)
        logger.debug(f"Fetched {len(notes)} remote notes for owner {owner_id}")
        return notes

    async def upsert_one(self, note: Note) -> None:
        _, error = await self._request_with_retry(
            "POST",
            params={"on_conflict": "id"},
            json_data=note_to_row(note),
            prefer="resolution=merge-duplicates,return=minimal",
        )
        if error:
            raise error
        logger.debug(f"Upserted remote note {note.id}")

    async def mark_deleted(
        self,
        note_id: str,
        owner_id: str,
        updated_at: datetime | None = None,
    ) -> None:
        payload: dict[str, Any] = {"deleted": True}
        if updated_at is not None:
            payload["updated_at"] = format_timestamp(updated_at)

        # A filter matching zero rows is still a 2xx, so absent rows succeed
        _, error = await self._request_with_retry(
            "PATCH",
            params={"id": f"eq.{note_id}", "user_id": f"eq.{owner_id}"},
            json_data=payload,
            prefer="return=minimal",
        )
        if error:
            raise error
        logger.debug(f"Marked remote note {note_id} deleted")
