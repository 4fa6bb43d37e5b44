"""
Tests for cart models and the cart reducer
"""

from decimal import Decimal

import pytest

from gutzo.cart.models import EMPTY_CART, CartLine, CartState, build_state
from gutzo.cart.reducer import (
    AddOrIncrement,
    Clear,
    MergeIncoming,
    RefreshProducts,
    RemoveLine,
    ReplaceAll,
    SetQuantity,
    merge_lines,
    reduce,
)


def assert_totals_consistent(state: CartState):
    assert state.total_quantity == sum(line.quantity for line in state.lines)
    assert state.total_amount == sum((line.unit_price * line.quantity for line in state.lines), Decimal("0"))


class TestCartLine:
    """Tests for CartLine dataclass."""

    def test_from_catalog(self, make_product, vendor):
        line = CartLine.from_catalog(make_product("p1", price=120.5), vendor, 2)

        assert line.product_id == "p1"
        assert line.vendor_id == "vendor-1"
        assert line.unit_price == Decimal("120.5")
        assert line.vendor.name == "Green Bowl Kitchen"
        assert line.total_price == Decimal("241.0")
        assert line.line_id.startswith("p1_")

    def test_from_remote_item(self):
        """Remote items carry image/category/vendorName at the top level."""
        item = {
            "productId": "p9",
            "vendorId": "v9",
            "quantity": 2,
            "name": "Millet Bowl",
            "price": 180,
            "image": "https://img.test/p9.png",
            "category": "Bowls",
            "vendorName": "Millet House",
            "vendor": {"id": "v9", "name": "Millet House", "image": ""},
            "product": {"image": "https://img.test/p9.png", "description": "Warm", "category": "Bowls"},
        }

        line = CartLine.from_dict(item)

        assert line.quantity == 2
        assert line.unit_price == Decimal("180")
        assert line.product.description == "Warm"
        assert line.vendor.name == "Millet House"

    def test_from_dict_rejects_zero_quantity(self):
        with pytest.raises(ValueError):
            CartLine.from_dict({"productId": "p1", "vendorId": "v1", "quantity": 0, "price": 10})


class TestCartState:
    """Tests for CartState serialization."""

    def test_empty_state(self):
        assert EMPTY_CART.is_empty
        assert EMPTY_CART.total_quantity == 0
        assert EMPTY_CART.total_amount == 0

    def test_from_dict_ignores_stored_totals(self, make_line):
        data = build_state([make_line("p1", 2, "50")]).to_dict()
        data["totalItems"] = 99
        data["totalAmount"] = 1

        restored = CartState.from_dict(data)

        assert restored.total_quantity == 2
        assert restored.total_amount == Decimal("100")

    def test_to_dict_uses_storefront_keys(self, make_line):
        data = build_state([make_line("p1", 3, "25")]).to_dict()

        assert data["totalItems"] == 3
        assert data["totalAmount"] == 75.0
        assert data["items"][0]["productId"] == "p1"
        assert data["items"][0]["vendor"]["id"] == "vendor-1"


class TestReducer:
    """Tests for reduce()."""

    def test_same_product_added_three_times_is_one_line(self, make_product, vendor):
        product = make_product("p1", price=10)
        state = EMPTY_CART
        for quantity in (1, 2, 3):
            state = reduce(state, AddOrIncrement(product, vendor, quantity))

        assert len(state.lines) == 1
        assert state.lines[0].quantity == 6
        assert state.total_amount == Decimal("60")

    def test_first_add_order_preserved(self, make_product, vendor):
        state = EMPTY_CART
        for product_id in ("p2", "p1", "p3", "p1"):
            state = reduce(state, AddOrIncrement(make_product(product_id), vendor, 1))

        assert [line.product_id for line in state.lines] == ["p2", "p1", "p3"]

    def test_totals_after_mixed_intents(self, make_product, vendor):
        intents = [
            AddOrIncrement(make_product("p1", price=99.99), vendor, 2),
            AddOrIncrement(make_product("p2", price=15.5), vendor, 1),
            SetQuantity("p2", 4),
            AddOrIncrement(make_product("p3", price=7), vendor, 3),
            RemoveLine("p1"),
            AddOrIncrement(make_product("p1", price=99.99), vendor, 1),
            SetQuantity("missing", 5),
        ]
        state = EMPTY_CART
        for intent in intents:
            state = reduce(state, intent)
            assert_totals_consistent(state)

        assert state.total_quantity == 8
        assert state.total_amount == Decimal("99.99") + Decimal("62.0") + Decimal("21")

    def test_set_quantity_zero_removes_line(self, make_line):
        state = build_state([make_line("p1", 2, "100"), make_line("p2", 1, "50")])

        state = reduce(state, SetQuantity("p1", 0))

        assert [line.product_id for line in state.lines] == ["p2"]
        assert state.total_quantity == 1
        assert state.total_amount == Decimal("50")

    def test_non_positive_add_ignored(self, make_product, vendor):
        state = reduce(EMPTY_CART, AddOrIncrement(make_product("p1"), vendor, 0))
        assert state is EMPTY_CART

    def test_unknown_intent_returns_same_state(self, make_line):
        state = build_state([make_line("p1")])

        assert reduce(state, object()) is state
        assert reduce(state, None) is state

    def test_does_not_mutate_input(self, make_line):
        state = build_state([make_line("p1", 2)])

        reduce(state, SetQuantity("p1", 5))

        assert state.lines[0].quantity == 2

    def test_clear(self, make_line):
        state = reduce(build_state([make_line("p1")]), Clear())
        assert state.is_empty
        assert state.total_amount == 0

    def test_replace_all_collapses_duplicates(self, make_line):
        state = reduce(EMPTY_CART, ReplaceAll((make_line("p1", 1), make_line("p1", 2))))

        assert len(state.lines) == 1
        assert state.total_quantity == 3

    def test_refresh_products_reprices_and_drops_unavailable(self, make_line, make_product):
        state = build_state([make_line("p1", 2, "100"), make_line("p2", 1, "50"), make_line("p3", 1, "10")])
        products = {
            "p1": make_product("p1", price=120, name="Meal p1 v2"),
            "p2": make_product("p2", price=50, is_available=False),
        }

        state = reduce(state, RefreshProducts(products))

        assert [line.product_id for line in state.lines] == ["p1"]
        assert state.lines[0].product.name == "Meal p1 v2"
        assert state.total_amount == Decimal("240")


class TestMerge:
    """Tests for MergeIncoming."""

    def test_merge_sums_and_appends(self, make_line):
        remote = build_state([make_line("p1", 1, "100"), make_line("p2", 1, "50")])

        merged = reduce(remote, MergeIncoming((make_line("p1", 2, "100"),)))

        assert [(line.product_id, line.quantity) for line in merged.lines] == [("p1", 3), ("p2", 1)]
        assert merged.total_amount == Decimal("350")

    def test_merge_is_commutative(self, make_line):
        a = (make_line("p1", 2, "100"), make_line("p3", 1, "30"))
        b = (make_line("p1", 1, "100"), make_line("p2", 4, "50"))

        ab = reduce(build_state(b), MergeIncoming(a))
        ba = reduce(build_state(a), MergeIncoming(b))

        assert {(l.product_id, l.quantity) for l in ab.lines} == {(l.product_id, l.quantity) for l in ba.lines}
        assert ab.total_quantity == ba.total_quantity
        assert ab.total_amount == ba.total_amount

    def test_merge_is_associative(self, make_line):
        a = (make_line("p1", 1, "10"),)
        b = (make_line("p1", 2, "10"), make_line("p2", 1, "5"))
        c = (make_line("p2", 3, "5"), make_line("p3", 1, "1"))

        left = merge_lines(merge_lines(a, b), c)
        right = merge_lines(a, merge_lines(b, c))

        assert [(l.product_id, l.quantity) for l in left] == [(l.product_id, l.quantity) for l in right]

    def test_merge_into_empty_is_verbatim(self, make_line):
        incoming = (make_line("p3", 1, "70"),)

        merged = reduce(EMPTY_CART, MergeIncoming(incoming))

        assert merged.lines == incoming
