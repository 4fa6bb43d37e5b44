"""
Guest cart migration at login.

Runs once per identity key: the guest cart is folded into whatever the remote
store already holds for that identity, written back with a full replace, and
the identity is marked as migrated on this device.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from gutzo.errors import CartError
from gutzo.logging import get_logger, sanitize_id_for_logging

from .gateway import RemoteCartGateway
from .models import CartState, MigrationStatus, build_state
from .reducer import MergeIncoming, ReplaceAll, reduce
from .storage import SnapshotStore

logger = get_logger(__name__)


class MigrationOutcome(str, Enum):
    SKIPPED = "skipped"    # nothing to migrate or already migrated
    RESTORED = "restored"  # remote cart was empty, guest cart taken verbatim
    MERGED = "merged"      # guest lines folded into an existing remote cart
    FAILED = "failed"


@dataclass(frozen=True)
class MigrationResult:
    outcome: MigrationOutcome
    state: Optional[CartState] = None

    @property
    def status(self) -> MigrationStatus:
        if self.outcome is MigrationOutcome.FAILED:
            return MigrationStatus.FAILED
        if self.outcome is MigrationOutcome.SKIPPED:
            return MigrationStatus.NONE
        return MigrationStatus.COMPLETED


def merge_carts(remote: CartState, guest: CartState) -> CartState:
    """Fold guest lines into the remote cart with the reducer's summation rule."""
    if remote.is_empty:
        return build_state(guest.lines)
    return reduce(remote, MergeIncoming(guest.lines))


class CartMigrator:
    """Migration/merge engine."""

    def __init__(self, gateway: RemoteCartGateway, store: SnapshotStore):
        self.gateway = gateway
        self.store = store

    async def should_migrate(self, identity_key: str, guest: Optional[CartState]) -> bool:
        if guest is None or guest.is_empty:
            return False
        return not await self.store.is_migrated(identity_key)

    async def migrate(self, identity_key: str, guest: Optional[CartState]) -> MigrationResult:
        """
        Merge `guest` into the remote cart of `identity_key`.

        Never raises. On failure the guest cart is returned as the state to
        display and no marker is written, so the next login retries.
        """
        masked = sanitize_id_for_logging(identity_key)
        try:
            if not await self.should_migrate(identity_key, guest):
                return MigrationResult(MigrationOutcome.SKIPPED)
        except Exception as e:
            logger.error(f"Could not read migration marker for {masked}: {e}")
            return MigrationResult(MigrationOutcome.FAILED, guest)

        logger.info(f"Starting guest cart migration for {masked} ({len(guest.lines)} lines)")
        try:
            remote = reduce(build_state(()), ReplaceAll(await self.gateway.fetch_cart(identity_key)))
            merged = merge_carts(remote, guest)
            await self.gateway.replace_cart(identity_key, merged.lines)
        except CartError as e:
            logger.warning(f"Guest cart migration failed for {masked}: {e}")
            return MigrationResult(MigrationOutcome.FAILED, guest)
        except Exception as e:
            logger.error(f"Guest cart migration crashed for {masked}: {e}", exc_info=True)
            return MigrationResult(MigrationOutcome.FAILED, guest)

        outcome = MigrationOutcome.RESTORED if remote.is_empty else MigrationOutcome.MERGED
        try:
            await self.store.delete_snapshot()
            await self.store.mark_migrated(identity_key)
        except Exception as e:
            # Remote already holds the merged cart; a repeat would double quantities
            logger.error(f"Migration finished but local bookkeeping failed for {masked}: {e}")

        logger.info(f"Guest cart migration for {masked} finished: {outcome.value}, {len(merged.lines)} lines")
        return MigrationResult(outcome, merged)
