"""Pytest configuration and fixtures"""
import asyncio
import os
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

import pytest

# Set test environment variables
os.environ.setdefault("SUPABASE_URL", "https://test.supabase.co")
os.environ.setdefault("SUPABASE_ANON_KEY", "test_anon_key")
os.environ.setdefault("UPSTASH_REDIS_REST_URL", "https://test.upstash.io")
os.environ.setdefault("UPSTASH_REDIS_REST_TOKEN", "test_token")

from gutzo.cart.models import CartLine, Product, ProductSnapshot, Vendor, VendorSnapshot  # noqa: E402
from gutzo.cart.storage import InMemorySnapshotStore  # noqa: E402
from gutzo.errors import RemoteCartError  # noqa: E402


class FakeRemoteCart:
    """In-memory stand-in for the remote cart store with switchable failures."""

    def __init__(self, carts: Dict[str, Tuple[CartLine, ...]] = None):
        self.carts: Dict[str, Tuple[CartLine, ...]] = dict(carts or {})
        self.fetch_error = None
        self.replace_error = None
        self.upsert_error = None
        self.upsert_result = True
        self.clear_error = None
        # Transient failures update_quantity absorbs before reaching upsert_line
        self.retries_before_success = 0
        # When set, fetch/replace wait on the event before answering
        self.fetch_gate: Optional[asyncio.Event] = None
        self.replace_gate: Optional[asyncio.Event] = None
        self.calls: List[tuple] = []
        self.closed = False

    async def fetch_cart(self, identity_key):
        self.calls.append(("fetch", identity_key))
        if self.fetch_gate is not None:
            await self.fetch_gate.wait()
        if self.fetch_error:
            raise self.fetch_error
        return self.carts.get(identity_key, ())

    async def replace_cart(self, identity_key, lines):
        lines = tuple(lines)
        self.calls.append(("replace", identity_key, lines))
        if self.replace_gate is not None:
            await self.replace_gate.wait()
        if self.replace_error:
            raise self.replace_error
        self.carts[identity_key] = lines

    async def upsert_line(self, identity_key, product_id, quantity):
        self.calls.append(("upsert", identity_key, product_id, quantity))
        if self.upsert_error:
            raise self.upsert_error
        return self.upsert_result

    async def update_quantity(self, identity_key, product_id, quantity, on_retry=None):
        for attempt in range(1, self.retries_before_success + 1):
            if on_retry is not None:
                on_retry(attempt)
        return await self.upsert_line(identity_key, product_id, quantity)

    async def clear_cart(self, identity_key):
        self.calls.append(("clear", identity_key))
        if self.clear_error:
            raise self.clear_error
        self.carts.pop(identity_key, None)

    async def aclose(self):
        self.closed = True

    def calls_of(self, kind: str) -> list:
        return [call for call in self.calls if call[0] == kind]


@pytest.fixture
def vendor():
    """Sample vendor"""
    return Vendor(id="vendor-1", name="Green Bowl Kitchen", image="https://img.test/v1.png")


@pytest.fixture
def make_product():
    """Factory for catalog products"""
    def _make(product_id: str = "product-1", price: float = 100.0, **kwargs) -> Product:
        return Product(
            id=product_id,
            name=kwargs.pop("name", f"Meal {product_id}"),
            price=price,
            vendor_id=kwargs.pop("vendor_id", "vendor-1"),
            category=kwargs.pop("category", "Salads"),
            **kwargs,
        )
    return _make


@pytest.fixture
def make_line():
    """Factory for cart lines"""
    def _make(product_id: str, quantity: int = 1, price="100", vendor_id: str = "vendor-1") -> CartLine:
        return CartLine(
            line_id=f"{product_id}_line",
            product_id=product_id,
            vendor_id=vendor_id,
            quantity=quantity,
            unit_price=Decimal(str(price)),
            product=ProductSnapshot(name=f"Meal {product_id}", category="Salads"),
            vendor=VendorSnapshot(id=vendor_id, name=f"Kitchen {vendor_id}"),
        )
    return _make


@pytest.fixture
def store():
    """Empty in-memory snapshot store"""
    return InMemorySnapshotStore()


@pytest.fixture
def remote():
    """Empty fake remote cart store"""
    return FakeRemoteCart()


@pytest.fixture
def remote_error():
    return RemoteCartError("Cart service unavailable", status_code=500)


@pytest.fixture
def notices():
    """Collected notices; pass `notices.append` as the notifier"""
    return []


@pytest.fixture
def sleep_calls():
    return []


@pytest.fixture
def fake_sleep(sleep_calls):
    """Sleep that records the delay and returns immediately"""
    async def _sleep(delay):
        sleep_calls.append(delay)
    return _sleep
