"""Remote cart store gateway (storefront edge function)."""
import asyncio
from typing import Awaitable, Callable, Iterable, Optional, Tuple

import httpx
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from gutzo.api import EdgeFunctionClient
from gutzo.errors import ERROR_INVALID_RESPONSE, RemoteCartError, TransientRemoteError
from gutzo.identity import format_phone
from gutzo.logging import get_logger, sanitize_id_for_logging

from .models import CartLine

logger = get_logger(__name__)

# Quantity updates: 3 attempts, waits of 1s then 2s between them
UPDATE_MAX_ATTEMPTS = 3
UPDATE_BACKOFF_BASE = 1

Sleep = Callable[[float], Awaitable[None]]


class RemoteCartGateway(EdgeFunctionClient):
    """
    Fetch/replace/upsert/clear of one shopper's cart.

    Every call is idempotent at "current accepted state". Failures raise
    `RemoteCartError` (or `TransientRemoteError` for network trouble); only
    `update_quantity` retries.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: Optional[float] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        phone_prefix: Optional[str] = None,
        sleep: Sleep = asyncio.sleep,
    ):
        super().__init__(base_url=base_url, api_key=api_key, timeout=timeout, http_client=http_client)
        self.phone_prefix = phone_prefix
        self._sleep = sleep

    def _phone(self, identity_key: str) -> str:
        return format_phone(identity_key, self.phone_prefix)

    async def fetch_cart(self, identity_key: str) -> Tuple[CartLine, ...]:
        """Full remote cart; an absent cart comes back empty."""
        data = await self.request("/get-user-cart", {"userPhone": self._phone(identity_key)})
        if not data or not data.get("items"):
            return ()
        if not isinstance(data["items"], list):
            raise RemoteCartError(ERROR_INVALID_RESPONSE)

        lines = []
        for item in data["items"]:
            if not isinstance(item, dict):
                logger.warning(f"Skipping malformed remote cart item: {item!r:.80}")
                continue
            try:
                lines.append(CartLine.from_dict(item))
            except (KeyError, TypeError, ValueError, AttributeError) as e:
                logger.warning(f"Skipping malformed remote cart item: {e}")
        logger.info(
            f"Fetched remote cart for {sanitize_id_for_logging(identity_key)}: {len(lines)} lines"
        )
        return tuple(lines)

    async def replace_cart(self, identity_key: str, lines: Iterable[CartLine]) -> None:
        """Overwrite the remote cart with `lines` (lean payload, product data is re-read server side)."""
        items = [
            {"productId": line.product_id, "vendorId": line.vendor_id, "quantity": line.quantity}
            for line in lines
        ]
        await self.request("/save-user-cart", {"userPhone": self._phone(identity_key), "items": items})
        logger.info(f"Saved {len(items)} cart lines for {sanitize_id_for_logging(identity_key)}")

    async def upsert_line(self, identity_key: str, product_id: str, quantity: int) -> bool:
        """Set one line's quantity (0 deletes). Returns the store's `success` flag."""
        result = await self.request(
            "/update-cart-item",
            {"userPhone": self._phone(identity_key), "productId": product_id, "quantity": max(0, quantity)},
        )
        return bool(result and result.get("success"))

    async def update_quantity(
        self,
        identity_key: str,
        product_id: str,
        quantity: int,
        on_retry: Optional[Callable[[int], None]] = None,
    ) -> bool:
        """
        `upsert_line` with bounded exponential backoff on transient failures.

        `on_retry` is called with the failed attempt number before each wait.
        """

        def before_sleep(retry_state) -> None:
            if on_retry is not None:
                on_retry(retry_state.attempt_number)

        retrying = AsyncRetrying(
            stop=stop_after_attempt(UPDATE_MAX_ATTEMPTS),
            wait=wait_exponential(multiplier=UPDATE_BACKOFF_BASE, min=UPDATE_BACKOFF_BASE),
            retry=retry_if_exception_type(TransientRemoteError),
            sleep=self._sleep,
            before_sleep=before_sleep,
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                if attempt.retry_state.attempt_number > 1:
                    logger.info(
                        f"Retrying cart update for {product_id} "
                        f"(attempt {attempt.retry_state.attempt_number}/{UPDATE_MAX_ATTEMPTS})"
                    )
                return await self.upsert_line(identity_key, product_id, quantity)
        return False

    async def clear_cart(self, identity_key: str) -> None:
        await self.request("/clear-user-cart", {"userPhone": self._phone(identity_key)})
        logger.info(f"Cleared remote cart for {sanitize_id_for_logging(identity_key)}")
