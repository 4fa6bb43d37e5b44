"""Cart package: models, reducer, persistence, gateway, migration and session."""
from .models import CartLine, CartState, MigrationStatus, Product, Vendor
from .session import CartSession, create_cart_session

__all__ = [
    "CartLine",
    "CartState",
    "MigrationStatus",
    "Product",
    "Vendor",
    "CartSession",
    "create_cart_session",
]
