"""Optimistic mutation tracker."""
import itertools
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Awaitable, Callable, List, Optional

from gutzo.logging import get_logger

from .models import CartLine, CartState, OptimisticMutation
from .reducer import ApplyOptimistic, ConfirmOptimistic, NoteRetry, RollbackOptimistic

logger = get_logger(__name__)

Dispatch = Callable[[object], CartState]


@dataclass(frozen=True)
class MutationHandle:
    """Returned by `apply_optimistic`; identifies one in-flight record."""
    product_id: str
    mutation_id: int


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class OptimisticTracker:
    """
    Issues optimistic mutations and settles them against remote results.

    Records live in `CartState.pending` (ordered by issue); this class hands
    out monotonically increasing mutation ids and routes confirm/rollback
    through the reducer via `dispatch`.
    """

    def __init__(
        self,
        dispatch: Dispatch,
        get_state: Callable[[], CartState],
        clock: Callable[[], datetime] = _utcnow,
    ):
        self._dispatch = dispatch
        self._get_state = get_state
        self._clock = clock
        self._ids = itertools.count(1)

    def apply_optimistic(
        self,
        product_id: str,
        new_quantity: int,
        line: Optional[CartLine] = None,
        retry_count: int = 0,
    ) -> MutationHandle:
        """Show `new_quantity` immediately and start tracking the change."""
        mutation = OptimisticMutation(
            mutation_id=next(self._ids),
            product_id=product_id,
            previous_quantity=0,
            attempted_quantity=new_quantity,
            issued_at=self._clock(),
            retry_count=retry_count,
        )
        self._dispatch(ApplyOptimistic(mutation=mutation, line=line))
        return MutationHandle(product_id=product_id, mutation_id=mutation.mutation_id)

    def confirm(self, product_id: str, handle: Optional[MutationHandle] = None) -> None:
        self._dispatch(ConfirmOptimistic(product_id, handle.mutation_id if handle else None))

    def rollback(self, product_id: str, handle: Optional[MutationHandle] = None) -> None:
        logger.info(f"Rolling back optimistic update for product {product_id}")
        self._dispatch(RollbackOptimistic(product_id, handle.mutation_id if handle else None))

    def record_retry(self, handle: MutationHandle) -> None:
        self._dispatch(NoteRetry(handle.product_id, handle.mutation_id))

    def pending_for(self, product_id: str) -> List[OptimisticMutation]:
        return [m for m in self._get_state().pending if m.product_id == product_id]

    def latest_for(self, product_id: str) -> Optional[OptimisticMutation]:
        records = self.pending_for(product_id)
        return records[-1] if records else None

    async def settle(self, handle: MutationHandle, remote_call: Callable[[], Awaitable[bool]]) -> bool:
        """
        Await `remote_call` and confirm or roll back `handle`.

        Returns True when the remote store accepted the change. Exceptions from
        the call count as failure and are re-raised after the rollback so the
        caller can pick the notice.
        """
        try:
            accepted = await remote_call()
        except Exception:
            self.rollback(handle.product_id, handle)
            raise
        if accepted:
            self.confirm(handle.product_id, handle)
        else:
            self.rollback(handle.product_id, handle)
        return accepted
