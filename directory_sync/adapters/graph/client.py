"""
Paged directory API client.

Authenticated reads against a paged directory API whose pages look like
``{"value": [...], "nextCursor": "..."}`` (``@odata.nextLink`` is accepted
as the cursor key too).

Functions return plain dictionaries. Errors are raised as
ConnectivityError, except for fetch_all_pages and test_connection, which
report failure in their return value.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx
from azure.core.credentials import AccessToken, TokenCredential

from ...errors import ConnectivityError, DirectorySyncError
from ...services.config import SyncSettings
from ._auth import AppTokenProvider


log = logging.getLogger(__name__)

CURSOR_KEYS = ("nextCursor", "@odata.nextLink")
CONNECTION_TEST_PATH = "/v1.0/organization"


@dataclass
class FetchResult:
    """Records gathered by fetch_all_pages and whether pagination finished."""
    records: List[Dict[str, Any]] = field(default_factory=list)
    complete: bool = True
    error: Optional[str] = None
    pages: int = 0


class DirectoryClient:
    """
    Client for the remote directory API.

    Args:
        settings: Sync settings (credentials, base URL, timeout, page delay)
        credential: Optional pre-built TokenCredential
        transport: Optional httpx transport (tests use httpx.MockTransport)
    """

    def __init__(
        self,
        settings: SyncSettings,
        credential: Optional[TokenCredential] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.settings = settings
        self.tokens = AppTokenProvider(settings, credential)
        self._transport = transport
        self._http: Optional[httpx.AsyncClient] = None

    def get_access_token(self) -> AccessToken:
        return self.tokens.get_access_token()

    def _client(self) -> httpx.AsyncClient:
        if self._http is None or self._http.is_closed:
            self._http = httpx.AsyncClient(
                timeout=self.settings.timeout_seconds,
                transport=self._transport,
            )
        return self._http

    def absolute_url(self, path: str) -> str:
        """Resolve a path or relative cursor against the configured base URL."""
        if path.startswith("http://") or path.startswith("https://"):
            return path
        base = self.settings.base_url.rstrip("/")
        if not path.startswith("/"):
            path = "/" + path
        return f"{base}{path}"

    async def fetch_page(self, path: str) -> Dict[str, Any]:
        """
        Perform one authenticated GET and return the decoded body.

        Raises:
            ConfigurationError / AuthError: If no token can be obtained
            ConnectivityError: On timeout, transport error, non-2xx or invalid JSON
        """
        # azure-identity token requests block; keep them off the event loop.
        token = await asyncio.to_thread(self.get_access_token)
        url = self.absolute_url(path)
        headers = {
            "Authorization": f"Bearer {token.token}",
            "Content-Type": "application/json",
        }
        try:
            response = await self._client().get(url, headers=headers)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as e:
            raise ConnectivityError(
                f"Directory API error: {e.response.status_code} for {url}"
            )
        except httpx.RequestError as e:
            raise ConnectivityError(f"Failed to reach directory API at {url}: {e}")
        except ValueError as e:
            raise ConnectivityError(f"Invalid JSON from directory API at {url}: {e}")

    @staticmethod
    def next_cursor(page: Dict[str, Any]) -> Optional[str]:
        for key in CURSOR_KEYS:
            cursor = page.get(key)
            if cursor:
                return cursor
        return None

    async def fetch_all_pages(self, initial_path: str) -> FetchResult:
        """
        Follow continuation cursors until exhausted.

        Pages are fetched sequentially with a fixed delay between them. On
        any page error pagination stops and the records gathered so far are
        returned with ``complete=False``; nothing is raised.
        """
        result = FetchResult()
        next_path: Optional[str] = initial_path

        while next_path:
            try:
                page = await self.fetch_page(next_path)
            except DirectorySyncError as e:
                log.warning("Stopping pagination at %s: %s", next_path, e)
                result.complete = False
                result.error = str(e)
                break

            result.pages += 1
            result.records.extend(page.get("value") or [])

            cursor = self.next_cursor(page)
            next_path = self.absolute_url(cursor) if cursor else None
            if next_path:
                await asyncio.sleep(self.settings.page_delay_ms / 1000)

        return result

    async def test_connection(self) -> bool:
        """Issue one lightweight authenticated call; False on any failure."""
        try:
            await self.fetch_page(CONNECTION_TEST_PATH)
            return True
        except Exception as e:
            log.error("Directory connection test failed: %s", e)
            return False

    async def aclose(self) -> None:
        if self._http is not None:
            await self._http.aclose()
            self._http = None
        self.tokens.close()
