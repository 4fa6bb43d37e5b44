"""HTTP access to the storefront edge function (Supabase Functions)."""
from typing import Any, Optional

import httpx

from gutzo.config import settings
from gutzo.errors import (
    ERROR_CART_UNAVAILABLE,
    ERROR_INVALID_RESPONSE,
    ERROR_NETWORK,
    RemoteCartError,
    TransientRemoteError,
)
from gutzo.logging import get_logger

logger = get_logger(__name__)

# Gateway errors worth retrying
TRANSIENT_STATUS_CODES = {408, 429, 500, 502, 503, 504}


class EdgeFunctionClient:
    """POST-JSON client for `{SUPABASE_URL}/functions/v1/{function}/...`."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: Optional[float] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = (base_url or settings.functions_base_url).rstrip("/")
        self.api_key = api_key if api_key is not None else settings.supabase_anon_key
        self.timeout = timeout or settings.request_timeout
        self._http_client = http_client
        self._owns_client = http_client is None

    async def _get_http_client(self) -> httpx.AsyncClient:
        """Lazily create the shared httpx client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout, connect=5.0),
                limits=httpx.Limits(max_connections=10, max_keepalive_connections=5),
            )
        return self._http_client

    def _headers(self) -> dict:
        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
            headers["apikey"] = self.api_key
        return headers

    async def request(self, endpoint: str, body: dict) -> Any:
        """
        POST `body` to `endpoint` and return the decoded JSON response.

        Raises:
            TransientRemoteError: network failure or retryable status
            RemoteCartError: any other non-2xx status or a non-JSON body
        """
        url = f"{self.base_url}/{endpoint.lstrip('/')}"
        client = await self._get_http_client()
        try:
            resp = await client.post(url, json=body, headers=self._headers())
        except httpx.TransportError as e:
            logger.warning(f"Network error for {endpoint}: {e}")
            raise TransientRemoteError(ERROR_NETWORK) from e

        if resp.status_code >= 400:
            try:
                detail = resp.json().get("error", "")
            except (ValueError, AttributeError):
                detail = resp.text[:200]
            message = f"{ERROR_CART_UNAVAILABLE}: {endpoint} returned {resp.status_code} {detail}".strip()
            logger.error(message)
            if resp.status_code in TRANSIENT_STATUS_CODES:
                raise TransientRemoteError(message, status_code=resp.status_code)
            raise RemoteCartError(message, status_code=resp.status_code)

        try:
            return resp.json()
        except ValueError as e:
            raise RemoteCartError(ERROR_INVALID_RESPONSE, status_code=resp.status_code) from e

    async def aclose(self) -> None:
        if self._http_client is not None and self._owns_client:
            await self._http_client.aclose()
            self._http_client = None
