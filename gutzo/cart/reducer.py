"""
Cart reducer - pure state transitions.

`reduce(state, intent)` never mutates its input and never raises; intents it
does not recognise return the state unchanged. Totals are recomputed from the
lines on every transition via `build_state`.
"""
from dataclasses import dataclass, replace
from typing import Iterable, Mapping, Optional, Tuple

from gutzo.money import to_decimal

from .models import (
    EMPTY_CART,
    CartLine,
    CartState,
    OptimisticMutation,
    Product,
    ProductSnapshot,
    Vendor,
    build_state,
)


@dataclass(frozen=True)
class AddOrIncrement:
    product: Product
    vendor: Vendor
    quantity: int = 1


@dataclass(frozen=True)
class RemoveLine:
    product_id: str


@dataclass(frozen=True)
class SetQuantity:
    product_id: str
    quantity: int


@dataclass(frozen=True)
class ApplyOptimistic:
    # previous_* fields of the mutation are filled in by the reducer
    mutation: OptimisticMutation
    line: Optional[CartLine] = None


@dataclass(frozen=True)
class ConfirmOptimistic:
    product_id: str
    mutation_id: Optional[int] = None


@dataclass(frozen=True)
class RollbackOptimistic:
    product_id: str
    mutation_id: Optional[int] = None


@dataclass(frozen=True)
class NoteRetry:
    """A transient failure is being retried for an in-flight mutation."""
    product_id: str
    mutation_id: int


@dataclass(frozen=True)
class Clear:
    pass


@dataclass(frozen=True)
class ReplaceAll:
    lines: Tuple[CartLine, ...]


@dataclass(frozen=True)
class MergeIncoming:
    lines: Tuple[CartLine, ...]


@dataclass(frozen=True)
class RefreshProducts:
    """Re-price lines from the catalog; lines whose product is gone or unavailable drop out."""
    products: Mapping[str, Product]


def merge_lines(base: Iterable[CartLine], incoming: Iterable[CartLine]) -> Tuple[CartLine, ...]:
    """
    Fold `incoming` into `base`.

    Same product -> quantities summed (base line keeps its snapshot),
    different product -> appended in incoming order.
    """
    merged = list(base)
    positions = {line.product_id: index for index, line in enumerate(merged)}
    for line in incoming:
        index = positions.get(line.product_id)
        if index is None:
            positions[line.product_id] = len(merged)
            merged.append(line)
        else:
            merged[index] = merged[index].with_quantity(merged[index].quantity + line.quantity)
    return tuple(merged)


def _without(lines: Tuple[CartLine, ...], product_id: str) -> Tuple[CartLine, ...]:
    return tuple(line for line in lines if line.product_id != product_id)


def _set_quantity(lines: Tuple[CartLine, ...], product_id: str, quantity: int) -> Tuple[CartLine, ...]:
    if quantity <= 0:
        return _without(lines, product_id)
    return tuple(
        line.with_quantity(quantity) if line.product_id == product_id else line
        for line in lines
    )


def _add(state: CartState, intent: AddOrIncrement) -> CartState:
    if intent.quantity <= 0:
        return state
    existing = state.find(intent.product.id)
    if existing is None:
        lines = state.lines + (CartLine.from_catalog(intent.product, intent.vendor, intent.quantity),)
    else:
        lines = _set_quantity(state.lines, existing.product_id, existing.quantity + intent.quantity)
    return build_state(lines, state.pending)


def _apply_optimistic(state: CartState, intent: ApplyOptimistic) -> CartState:
    mutation = intent.mutation
    current = state.find(mutation.product_id)
    record = replace(
        mutation,
        previous_quantity=current.quantity if current else 0,
        previous_line=current,
        previous_index=state.index_of(mutation.product_id),
    )
    pending = state.pending + (record,)

    if mutation.attempted_quantity <= 0:
        lines = _without(state.lines, mutation.product_id)
    elif current is not None:
        lines = _set_quantity(state.lines, mutation.product_id, mutation.attempted_quantity)
    elif intent.line is not None:
        lines = state.lines + (intent.line.with_quantity(mutation.attempted_quantity),)
    else:
        lines = state.lines
    return build_state(lines, pending)


def _confirm(state: CartState, intent: ConfirmOptimistic) -> CartState:
    if intent.mutation_id is None:
        pending = tuple(m for m in state.pending if m.product_id != intent.product_id)
    else:
        # A confirmed mutation supersedes every older one for the same product
        pending = tuple(
            m for m in state.pending
            if m.product_id != intent.product_id or m.mutation_id > intent.mutation_id
        )
    if len(pending) == len(state.pending):
        return state
    return replace(state, pending=pending)


def _note_retry(state: CartState, intent: NoteRetry) -> CartState:
    pending = tuple(
        replace(m, retry_count=m.retry_count + 1)
        if m.product_id == intent.product_id and m.mutation_id == intent.mutation_id
        else m
        for m in state.pending
    )
    if pending == state.pending:
        return state
    return replace(state, pending=pending)


def _restore(lines: Tuple[CartLine, ...], record: OptimisticMutation) -> Tuple[CartLine, ...]:
    if record.previous_quantity <= 0 or record.previous_line is None:
        return _without(lines, record.product_id)
    if any(line.product_id == record.product_id for line in lines):
        return _set_quantity(lines, record.product_id, record.previous_quantity)
    restored = list(lines)
    index = record.previous_index if 0 <= record.previous_index <= len(restored) else len(restored)
    restored.insert(index, record.previous_line.with_quantity(record.previous_quantity))
    return tuple(restored)


def _rollback(state: CartState, intent: RollbackOptimistic) -> CartState:
    records = [m for m in state.pending if m.product_id == intent.product_id]
    if intent.mutation_id is None:
        target = records[-1] if records else None
    else:
        target = next((m for m in records if m.mutation_id == intent.mutation_id), None)
    if target is None:
        return state

    newer = next((m for m in records if m.mutation_id > target.mutation_id), None)
    if newer is not None:
        # Stale failure: visible state belongs to the newer mutation. Hand our
        # pre-state to it so its own rollback lands on the last confirmed value.
        successor = replace(
            newer,
            previous_quantity=target.previous_quantity,
            previous_line=target.previous_line,
            previous_index=target.previous_index,
        )
        pending = tuple(
            successor if m.mutation_id == newer.mutation_id else m
            for m in state.pending
            if m.mutation_id != target.mutation_id
        )
        return replace(state, pending=pending)

    pending = tuple(m for m in state.pending if m.mutation_id != target.mutation_id)
    return build_state(_restore(state.lines, target), pending)


def _refresh(state: CartState, intent: RefreshProducts) -> CartState:
    lines = []
    for line in state.lines:
        product = intent.products.get(line.product_id)
        if product is None or not product.is_available:
            continue
        lines.append(replace(
            line,
            unit_price=to_decimal(product.price),
            product=ProductSnapshot(
                name=product.name,
                image=product.image or line.product.image,
                description=product.description or line.product.description,
                category=product.category or line.product.category,
            ),
        ))
    return build_state(lines, state.pending)


def reduce(state: CartState, intent) -> CartState:
    """Apply one intent and return the next state."""
    if isinstance(intent, AddOrIncrement):
        return _add(state, intent)
    if isinstance(intent, RemoveLine):
        return build_state(_without(state.lines, intent.product_id), state.pending)
    if isinstance(intent, SetQuantity):
        return build_state(_set_quantity(state.lines, intent.product_id, intent.quantity), state.pending)
    if isinstance(intent, ApplyOptimistic):
        return _apply_optimistic(state, intent)
    if isinstance(intent, ConfirmOptimistic):
        return _confirm(state, intent)
    if isinstance(intent, RollbackOptimistic):
        return _rollback(state, intent)
    if isinstance(intent, NoteRetry):
        return _note_retry(state, intent)
    if isinstance(intent, Clear):
        return EMPTY_CART
    if isinstance(intent, ReplaceAll):
        return build_state(merge_lines((), intent.lines))
    if isinstance(intent, MergeIncoming):
        return build_state(merge_lines(state.lines, intent.lines), state.pending)
    if isinstance(intent, RefreshProducts):
        return _refresh(state, intent)
    return state
