"""Cart models with Decimal-based pricing."""
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional, Tuple

from pydantic import BaseModel

from gutzo.money import multiply, round_money, to_decimal, to_float


class MigrationStatus(str, Enum):
    NONE = "none"
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class Product(BaseModel):
    """Catalog product as the storefront sees it."""
    id: str
    name: str
    price: float
    vendor_id: Optional[str] = None
    image: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    is_available: bool = True

    class Config:
        extra = "ignore"


class Vendor(BaseModel):
    """Vendor (kitchen) selling a product."""
    id: str
    name: str
    image: Optional[str] = None

    class Config:
        extra = "ignore"


@dataclass(frozen=True)
class ProductSnapshot:
    """Product details captured when the line was created."""
    name: str
    image: str = ""
    description: str = ""
    category: str = ""


@dataclass(frozen=True)
class VendorSnapshot:
    id: str
    name: str
    image: str = ""


@dataclass(frozen=True)
class CartLine:
    """Single product entry in the cart."""
    line_id: str
    product_id: str
    vendor_id: str
    quantity: int
    unit_price: Decimal
    product: ProductSnapshot
    vendor: VendorSnapshot

    def __post_init__(self):
        # frozen: normalise through object.__setattr__
        object.__setattr__(self, "unit_price", to_decimal(self.unit_price))
        object.__setattr__(self, "quantity", int(self.quantity))

    @property
    def total_price(self) -> Decimal:
        """Total price for all units."""
        return multiply(self.unit_price, self.quantity)

    def with_quantity(self, quantity: int) -> "CartLine":
        return replace(self, quantity=quantity)

    @classmethod
    def from_catalog(cls, product: Product, vendor: Vendor, quantity: int) -> "CartLine":
        """Build a new line from catalog objects."""
        return cls(
            line_id=new_line_id(product.id),
            product_id=product.id,
            vendor_id=vendor.id,
            quantity=quantity,
            unit_price=to_decimal(product.price),
            product=ProductSnapshot(
                name=product.name,
                image=product.image or "",
                description=product.description or "",
                category=product.category or "",
            ),
            vendor=VendorSnapshot(id=vendor.id, name=vendor.name, image=vendor.image or ""),
        )

    def to_dict(self) -> dict:
        """Convert to the storefront's camelCase cart item."""
        return {
            "id": self.line_id,
            "productId": self.product_id,
            "vendorId": self.vendor_id,
            "name": self.product.name,
            "price": to_float(self.unit_price),
            "quantity": self.quantity,
            "vendor": {
                "id": self.vendor.id,
                "name": self.vendor.name,
                "image": self.vendor.image,
            },
            "product": {
                "image": self.product.image,
                "description": self.product.description,
                "category": self.product.category,
            },
        }

    @classmethod
    def from_dict(cls, data: dict) -> "CartLine":
        """
        Create from a stored snapshot item or a remote cart item.

        Remote items carry `image`, `category` and `vendorName` at the top
        level; stored snapshots nest them under `product` and `vendor`.
        """
        product_data = data.get("product") or {}
        vendor_data = data.get("vendor") or {}
        vendor_id = data["vendorId"]
        product_id = data["productId"]
        quantity = int(data["quantity"])
        if quantity < 1:
            raise ValueError(f"Invalid quantity {quantity} for product {product_id}")
        return cls(
            line_id=data.get("id") or new_line_id(product_id),
            product_id=product_id,
            vendor_id=vendor_id,
            quantity=quantity,
            unit_price=to_decimal(data.get("price")),
            product=ProductSnapshot(
                name=data.get("name") or "",
                image=product_data.get("image") or data.get("image") or "",
                description=product_data.get("description") or "",
                category=product_data.get("category") or data.get("category") or "",
            ),
            vendor=VendorSnapshot(
                id=vendor_data.get("id") or vendor_id,
                name=vendor_data.get("name") or data.get("vendorName") or "Unknown Vendor",
                image=vendor_data.get("image") or "",
            ),
        )


@dataclass(frozen=True)
class OptimisticMutation:
    """In-flight speculative quantity change for one product."""
    mutation_id: int
    product_id: str
    previous_quantity: int
    attempted_quantity: int
    issued_at: datetime
    retry_count: int = 0
    # Line as it was before the mutation, so a rollback can restore a removed line
    previous_line: Optional[CartLine] = None
    previous_index: int = -1


@dataclass(frozen=True)
class CartState:
    """
    Immutable cart snapshot.

    Totals are always derived from `lines`; build states with `build_state`
    instead of setting them directly.
    """
    lines: Tuple[CartLine, ...] = ()
    total_quantity: int = 0
    total_amount: Decimal = Decimal("0")
    pending: Tuple[OptimisticMutation, ...] = field(default=())

    @property
    def is_empty(self) -> bool:
        return not self.lines

    def find(self, product_id: str) -> Optional[CartLine]:
        return next((line for line in self.lines if line.product_id == product_id), None)

    def index_of(self, product_id: str) -> int:
        for index, line in enumerate(self.lines):
            if line.product_id == product_id:
                return index
        return -1

    def quantity_of(self, product_id: str) -> int:
        line = self.find(product_id)
        return line.quantity if line else 0

    def to_dict(self) -> dict:
        """Serialisable snapshot (pending mutations are never persisted)."""
        return {
            "items": [line.to_dict() for line in self.lines],
            "totalItems": self.total_quantity,
            "totalAmount": to_float(round_money(self.total_amount)),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "CartState":
        """Load a snapshot; stored totals are ignored and recomputed."""
        items = data.get("items")
        if items is None:
            return build_state(())
        if not isinstance(items, list):
            raise TypeError("Cart items must be a list")
        return build_state(tuple(CartLine.from_dict(item) for item in items))


def build_state(lines, pending: Tuple[OptimisticMutation, ...] = ()) -> CartState:
    """Create a CartState with totals recomputed from scratch."""
    lines = tuple(lines)
    return CartState(
        lines=lines,
        total_quantity=sum(line.quantity for line in lines),
        total_amount=sum((line.total_price for line in lines), Decimal("0")),
        pending=tuple(pending),
    )


def new_line_id(product_id: str) -> str:
    return f"{product_id}_{int(datetime.now(timezone.utc).timestamp() * 1000)}"


EMPTY_CART = build_state(())
