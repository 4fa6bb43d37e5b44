"""
Cart session controller.

One `CartSession` is constructed by the application root and handed to every
consumer. It owns the in-memory cart, reacts to identity changes, and keeps
local and remote persistence in step:

- anonymous: every change rewrites the guest snapshot in the local store
- authenticated: changes schedule one debounced full replace on the remote store
"""
import asyncio
from decimal import Decimal
from typing import Awaitable, Callable, Dict, List, Optional, Set, Tuple

from gutzo.config import settings
from gutzo.errors import (
    NOTICE_ADD_FAILED,
    NOTICE_CART_MERGED,
    NOTICE_CART_RESTORED,
    NOTICE_CLEAR_STALE,
    NOTICE_REMOVE_FAILED,
    NOTICE_SYNC_FAILED,
    NOTICE_UPDATE_CONNECTION,
    NOTICE_UPDATE_FAILED,
    CartError,
)
from gutzo.identity import Identity
from gutzo.logging import get_logger, sanitize_id_for_logging
from gutzo.notices import Notice, NoticeLevel, Notifier, log_notifier

from .gateway import RemoteCartGateway
from .migration import CartMigrator, MigrationOutcome, MigrationResult
from .models import EMPTY_CART, CartLine, CartState, MigrationStatus, Product, Vendor
from .reducer import (
    AddOrIncrement,
    Clear,
    RefreshProducts,
    RemoveLine,
    ReplaceAll,
    SetQuantity,
    reduce,
)
from .storage import SnapshotStore
from .tracker import OptimisticTracker

logger = get_logger(__name__)

Listener = Callable[[CartState], None]
Sleep = Callable[[float], Awaitable[None]]


class CartSession:
    """
    Cart engine facade used by the storefront UI.

    Public coroutines never raise: remote and storage failures degrade to the
    last known good local state plus a notice.
    """

    def __init__(
        self,
        gateway: RemoteCartGateway,
        store: SnapshotStore,
        notifier: Notifier = log_notifier,
        catalog=None,
        debounce_seconds: Optional[float] = None,
        sleep: Sleep = asyncio.sleep,
    ):
        self.gateway = gateway
        self.store = store
        self.catalog = catalog
        self.notifier = notifier
        self.debounce_seconds = (
            settings.sync_debounce_seconds if debounce_seconds is None else debounce_seconds
        )
        self._sleep = sleep

        self._state: CartState = EMPTY_CART
        self._identity = Identity.anonymous()
        self.is_loading = False
        self.migration_status = MigrationStatus.NONE

        self.tracker = OptimisticTracker(self._dispatch, lambda: self._state)
        self.migrator = CartMigrator(gateway, store)

        self._listeners: List[Listener] = []
        self._sync_task: Optional[asyncio.Task] = None
        self._pending_sync_key: Optional[str] = None
        self._background: Set[asyncio.Task] = set()
        # Intents dispatched while a migration is in flight
        self._recorded: Optional[List[object]] = None

    # ==================== REACTIVE STATE ====================

    @property
    def state(self) -> CartState:
        return self._state

    @property
    def lines(self) -> Tuple[CartLine, ...]:
        return self._state.lines

    @property
    def total_quantity(self) -> int:
        return self._state.total_quantity

    @property
    def total_amount(self) -> Decimal:
        return self._state.total_amount

    @property
    def identity(self) -> Identity:
        return self._identity

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Call `listener` after every state change. Returns an unsubscribe function."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _emit(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self._state)
            except Exception as e:
                logger.error(f"Cart listener failed: {e}", exc_info=True)

    def _dispatch(self, intent) -> CartState:
        if self._recorded is not None:
            self._recorded.append(intent)
        new_state = reduce(self._state, intent)
        if new_state is not self._state:
            self._state = new_state
            self._emit()
        return new_state

    def _notify(self, level: NoticeLevel, message: str) -> None:
        try:
            self.notifier(Notice(level, message))
        except Exception as e:
            logger.error(f"Notifier failed: {e}")

    def _set_loading(self, value: bool) -> None:
        if self.is_loading != value:
            self.is_loading = value
            self._emit()

    def _set_migration_status(self, status: MigrationStatus) -> None:
        if self.migration_status != status:
            self.migration_status = status
            self._emit()

    @property
    def _remote_key(self) -> Optional[str]:
        """Identity key whose remote cart currently owns this session's state."""
        if not self._identity.is_known:
            return None
        if self.migration_status in (MigrationStatus.PENDING, MigrationStatus.FAILED):
            return None
        return self._identity.identity_key

    # ==================== IDENTITY TRANSITIONS ====================

    async def start(self, identity: Identity) -> None:
        """Initial load on mount."""
        self._identity = identity
        await self._load()

    async def on_identity_change(self, identity: Identity) -> None:
        """Handle a login/logout notification from the identity service."""
        previous = self._identity
        if previous == identity:
            return
        self._identity = identity

        if previous.is_authenticated and not identity.is_authenticated:
            logger.info(f"Logout detected for {sanitize_id_for_logging(previous.identity_key)}")
            await self.flush()
            if not self._state.is_empty:
                await self.clear_guest_cart()
            self._set_migration_status(MigrationStatus.NONE)
            await self._load_guest()
            return

        if identity.is_known:
            if previous.is_known:
                # Switching accounts: finish writes for the old identity first
                await self.flush()
            await self._load_authenticated(identity.identity_key)

    async def force_reload(self) -> None:
        """Re-run the load path for the current identity."""
        logger.info("Forcing cart reload")
        await self._load()

    async def _load(self) -> None:
        if self._identity.is_known:
            await self._load_authenticated(self._identity.identity_key)
        else:
            await self._load_guest()

    async def _load_guest(self) -> None:
        snapshot = await self.store.get_snapshot()
        if snapshot is None:
            logger.info("No guest cart found, keeping current cart")
            return
        logger.info(f"Guest cart loaded: {len(snapshot.lines)} lines")
        self._dispatch(ReplaceAll(snapshot.lines))

    async def _load_authenticated(self, identity_key: str) -> None:
        try:
            guest = await self.store.get_snapshot()
            if await self.migrator.should_migrate(identity_key, guest):
                await self._migrate(identity_key, guest)
            else:
                if self.migration_status is MigrationStatus.FAILED:
                    self._set_migration_status(MigrationStatus.NONE)
                await self._load_remote(identity_key)
        except Exception as e:
            logger.error(f"Authenticated cart load failed, falling back to guest cart: {e}", exc_info=True)
            await self._load_guest()

    async def _migrate(self, identity_key: str, guest: CartState) -> None:
        # Edits made while the merge is in flight are replayed on top of its result
        self._recorded = []
        self._set_migration_status(MigrationStatus.PENDING)
        self._set_loading(True)
        try:
            try:
                result = await self.migrator.migrate(identity_key, guest)
            except Exception as e:
                logger.error(f"Guest cart migration raised: {e}", exc_info=True)
                result = MigrationResult(MigrationOutcome.FAILED, guest)

            recorded, self._recorded = self._recorded, None
            if result.state is None:
                # Already migrated elsewhere; the remote cart is authoritative
                self._set_migration_status(result.status)
                await self._load_remote(identity_key)
            else:
                self._dispatch(ReplaceAll(result.state.lines))
                self._set_migration_status(result.status)
            for intent in recorded:
                self._dispatch(intent)
        finally:
            self._recorded = None
            self._set_loading(False)
            if self.migration_status is MigrationStatus.PENDING:
                self._set_migration_status(MigrationStatus.FAILED)

        if recorded:
            logger.info(f"Replayed {len(recorded)} cart edits made during migration")
            await self._persist()

        if result.outcome is MigrationOutcome.MERGED:
            self._notify(NoticeLevel.SUCCESS, NOTICE_CART_MERGED)
        elif result.outcome is MigrationOutcome.RESTORED:
            self._notify(NoticeLevel.SUCCESS, NOTICE_CART_RESTORED)

    async def _load_remote(self, identity_key: str) -> None:
        self._set_loading(True)
        try:
            lines = await self.gateway.fetch_cart(identity_key)
        except CartError as e:
            logger.warning(f"Remote cart unavailable, starting empty: {e}")
            lines = ()
        finally:
            self._set_loading(False)
        self._dispatch(ReplaceAll(tuple(lines)))

    # ==================== PERSISTENCE ====================

    async def _persist(self) -> None:
        """Write the current state to wherever this session's cart lives."""
        if self._remote_key is not None:
            self._schedule_sync()
            return
        if self.migration_status is MigrationStatus.PENDING:
            return
        try:
            await self.store.set_snapshot(self._state)
        except Exception as e:
            logger.error(f"Failed to save guest cart snapshot: {e}")

    def _schedule_sync(self) -> None:
        self._cancel_timer()
        self._pending_sync_key = self._remote_key
        task = asyncio.create_task(self._debounced_sync())
        self._sync_task = task
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    def _cancel_timer(self) -> None:
        # Only a task still sleeping is cancelled; one already writing runs to completion
        if self._sync_task is not None and self._pending_sync_key is not None:
            self._sync_task.cancel()
        self._sync_task = None
        self._pending_sync_key = None

    async def _debounced_sync(self) -> None:
        await self._sleep(self.debounce_seconds)
        key, self._pending_sync_key = self._pending_sync_key, None
        self._sync_task = None
        if key:
            await self._sync_now(key)

    async def _sync_now(self, identity_key: str) -> None:
        try:
            await self.gateway.replace_cart(identity_key, self._state.lines)
        except Exception as e:
            logger.error(f"Failed to save cart for {sanitize_id_for_logging(identity_key)}: {e}")
            self._notify(NoticeLevel.WARNING, NOTICE_SYNC_FAILED)

    async def flush(self) -> None:
        """Write a pending debounced replace now and wait for in-flight writes."""
        key = self._pending_sync_key
        self._cancel_timer()
        if key:
            await self._sync_now(key)
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)

    async def close(self) -> None:
        """Teardown: pending writes are flushed, then HTTP clients released."""
        await self.flush()
        await self.gateway.aclose()
        if self.catalog is not None:
            await self.catalog.aclose()

    # ==================== MUTATIONS ====================

    async def add_item(self, product: Product, vendor: Vendor, quantity: int = 1) -> None:
        self._dispatch(AddOrIncrement(product, vendor, quantity))
        await self._persist()

    async def add_item_optimistic(self, product: Product, vendor: Vendor, quantity: int = 1) -> bool:
        """
        Add immediately and confirm with the remote store.

        Not retried: on failure the add is rolled back and a notice shown.
        Returns False when the add was rolled back.
        """
        if quantity <= 0:
            return False
        key = self._remote_key
        if key is None:
            # Nothing remote to confirm against
            await self.add_item(product, vendor, quantity)
            return True

        new_quantity = self._state.quantity_of(product.id) + quantity
        handle = self.tracker.apply_optimistic(
            product.id, new_quantity, line=CartLine.from_catalog(product, vendor, new_quantity)
        )

        try:
            accepted = await self.tracker.settle(
                handle, lambda: self.gateway.upsert_line(key, product.id, new_quantity)
            )
        except Exception as e:
            logger.error(f"Add to cart failed for {product.id}: {e}")
            accepted = False
        if not accepted:
            self._notify(NoticeLevel.ERROR, NOTICE_ADD_FAILED)
        await self._persist()
        return accepted

    async def remove_item(self, product_id: str) -> None:
        self._dispatch(RemoveLine(product_id))
        key = self._remote_key
        if key is not None:
            try:
                if not await self.gateway.update_quantity(key, product_id, 0):
                    self._notify(NoticeLevel.ERROR, NOTICE_REMOVE_FAILED)
            except Exception as e:
                logger.error(f"Remove from cart failed for {product_id}: {e}")
                self._notify(NoticeLevel.ERROR, NOTICE_REMOVE_FAILED)
        await self._persist()

    async def update_quantity(self, product_id: str, quantity: int) -> None:
        self._dispatch(SetQuantity(product_id, quantity))
        await self._persist()

    async def update_quantity_optimistic(self, product_id: str, quantity: int) -> bool:
        """
        Show `quantity` now; roll back if the remote store rejects it.

        Transient network failures are retried with backoff before giving up.
        Products not in the cart are ignored; use `add_item_optimistic`.
        """
        if quantity > 0 and not self.is_item_in_cart(product_id):
            return False
        key = self._remote_key
        if key is None:
            await self.update_quantity(product_id, quantity)
            return True

        handle = self.tracker.apply_optimistic(product_id, quantity)
        try:
            accepted = await self.tracker.settle(
                handle,
                lambda: self.gateway.update_quantity(
                    key, product_id, quantity, on_retry=lambda _attempt: self.tracker.record_retry(handle)
                ),
            )
            if not accepted:
                self._notify(NoticeLevel.ERROR, NOTICE_UPDATE_FAILED)
        except Exception as e:
            logger.error(f"Cart update failed for {product_id}: {e}")
            self._notify(NoticeLevel.ERROR, NOTICE_UPDATE_CONNECTION)
            accepted = False
        await self._persist()
        return accepted

    async def clear_cart(self) -> None:
        """Clear locally, then wait for the remote store (authenticated only)."""
        self._dispatch(Clear())
        key = self._remote_key
        if key is None:
            await self.clear_guest_cart()
            return

        self._cancel_timer()
        if self._background:
            # A replace already on the wire must land before the clear
            await asyncio.gather(*self._background, return_exceptions=True)
        try:
            await self.gateway.clear_cart(key)
        except Exception as e:
            # Local clear stands
            logger.error(f"Remote cart clear failed: {e}")
            self._notify(NoticeLevel.WARNING, NOTICE_CLEAR_STALE)

    async def clear_guest_cart(self) -> None:
        """Drop the guest snapshot, migration markers and in-memory cart."""
        try:
            await self.store.delete_snapshot()
            await self.store.clear_migration_markers()
        except Exception as e:
            logger.error(f"Failed to clear guest cart storage: {e}")
        self._dispatch(Clear())

    async def refresh_from_catalog(self) -> None:
        """Re-price lines from the catalog and drop unavailable products."""
        if self.catalog is None or self._state.is_empty:
            return
        try:
            products = await self.catalog.get_products(line.product_id for line in self._state.lines)
        except Exception as e:
            logger.warning(f"Catalog refresh skipped: {e}")
            return
        before = self._state
        self._dispatch(RefreshProducts(products))
        if self._state is not before:
            await self._persist()

    # ==================== QUERIES ====================

    def get_item_quantity(self, product_id: str) -> int:
        return self._state.quantity_of(product_id)

    def is_item_in_cart(self, product_id: str) -> bool:
        return self._state.find(product_id) is not None

    def get_vendor_items(self, vendor_id: str) -> List[CartLine]:
        return [line for line in self._state.lines if line.vendor_id == vendor_id]

    def get_current_vendor(self) -> Optional[Dict[str, str]]:
        """Vendor of the first line, or None for an empty cart."""
        if self._state.is_empty:
            return None
        first = self._state.lines[0]
        return {"id": first.vendor_id, "name": first.vendor.name}

    def has_items_from_different_vendor(self, vendor_id: str) -> bool:
        return any(line.vendor_id != vendor_id for line in self._state.lines)


def create_cart_session(device_id: str, notifier: Notifier = log_notifier) -> CartSession:
    """Wire a session against the configured edge function and Upstash Redis."""
    from gutzo.catalog import CatalogClient
    from .storage import RedisSnapshotStore

    return CartSession(
        gateway=RemoteCartGateway(),
        store=RedisSnapshotStore(device_id),
        notifier=notifier,
        catalog=CatalogClient(),
    )
