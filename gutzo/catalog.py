"""Catalog lookups: productId -> current product data."""
from typing import Dict, Iterable

from gutzo.api import EdgeFunctionClient
from gutzo.cart.models import Product
from gutzo.errors import ERROR_INVALID_RESPONSE, RemoteCartError
from gutzo.logging import get_logger

logger = get_logger(__name__)


class CatalogClient(EdgeFunctionClient):
    """Read-only product lookups against the storefront edge function."""

    async def get_products(self, product_ids: Iterable[str]) -> Dict[str, Product]:
        """
        Batch-fetch current product data.

        Products the catalog no longer knows are simply absent from the result.
        """
        ids = list(dict.fromkeys(product_ids))
        if not ids:
            return {}
        data = await self.request("/products/batch", {"productIds": ids})
        raw_products = (data or {}).get("products")
        if not isinstance(raw_products, list):
            raise RemoteCartError(ERROR_INVALID_RESPONSE)

        products = {}
        for raw in raw_products:
            try:
                product = Product(
                    id=raw["id"],
                    name=raw["name"],
                    price=raw["price"],
                    vendor_id=raw.get("vendorId"),
                    image=raw.get("image"),
                    description=raw.get("description"),
                    category=raw.get("category"),
                    is_available=bool(raw.get("available", True)),
                )
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Skipping malformed catalog product: {e}")
                continue
            products[product.id] = product
        return products
