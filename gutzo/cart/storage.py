"""On-device persistence for the guest cart snapshot and migration markers."""
import json
from abc import ABC, abstractmethod
from typing import Dict, Optional

from gutzo.db import TTL, RedisKeys, get_redis
from gutzo.errors import ERROR_SNAPSHOT_CORRUPTED, SnapshotError
from gutzo.logging import get_logger, sanitize_id_for_logging

from .models import CartState

logger = get_logger(__name__)


def parse_snapshot(raw: str) -> CartState:
    """Decode a stored snapshot. Raises SnapshotError on anything unreadable."""
    try:
        return CartState.from_dict(json.loads(raw))
    except (json.JSONDecodeError, KeyError, TypeError, ValueError, AttributeError) as e:
        raise SnapshotError(f"{ERROR_SNAPSHOT_CORRUPTED}: {e}") from e


class SnapshotStore(ABC):
    """
    One serialized CartState per device plus per-identity migration markers.

    Subclasses provide raw string access; parsing and the "corrupt entry is
    dropped" rule live here.
    """

    @abstractmethod
    async def _read(self) -> Optional[str]: ...

    @abstractmethod
    async def _write(self, payload: str) -> None: ...

    @abstractmethod
    async def delete_snapshot(self) -> None: ...

    @abstractmethod
    async def is_migrated(self, identity_key: str) -> bool: ...

    @abstractmethod
    async def mark_migrated(self, identity_key: str) -> None: ...

    @abstractmethod
    async def clear_migration_markers(self) -> None: ...

    async def get_snapshot(self) -> Optional[CartState]:
        """Load the guest snapshot; unreadable or corrupted data counts as none."""
        try:
            raw = await self._read()
        except Exception as e:
            logger.error(f"Failed to read guest cart snapshot: {e}")
            return None
        if not raw:
            return None
        try:
            return parse_snapshot(raw)
        except SnapshotError as e:
            logger.warning(str(e))
            try:
                await self.delete_snapshot()
            except Exception as delete_error:
                logger.error(f"Failed to drop corrupted snapshot: {delete_error}")
            return None

    async def set_snapshot(self, state: CartState) -> None:
        await self._write(json.dumps(state.to_dict()))


class RedisSnapshotStore(SnapshotStore):
    """Snapshot store backed by Upstash Redis, keyed by device."""

    def __init__(self, device_id: str, redis=None):
        self.device_id = device_id
        self._redis = redis  # Lazy initialization

    @property
    def redis(self):
        if self._redis is None:
            self._redis = get_redis()
        return self._redis

    async def _read(self) -> Optional[str]:
        return await self.redis.get(RedisKeys.guest_cart_key(self.device_id))

    async def _write(self, payload: str) -> None:
        await self.redis.set(RedisKeys.guest_cart_key(self.device_id), payload, ex=TTL.GUEST_CART)

    async def delete_snapshot(self) -> None:
        await self.redis.delete(RedisKeys.guest_cart_key(self.device_id))

    async def is_migrated(self, identity_key: str) -> bool:
        key = RedisKeys.migration_key(self.device_id, identity_key)
        return bool(await self.redis.exists(key))

    async def mark_migrated(self, identity_key: str) -> None:
        key = RedisKeys.migration_key(self.device_id, identity_key)
        await self.redis.set(key, "completed", ex=TTL.MIGRATION_MARKER)
        logger.info(f"Cart migration marked complete for {sanitize_id_for_logging(identity_key)}")

    async def clear_migration_markers(self) -> None:
        keys = await self.redis.keys(RedisKeys.migration_pattern(self.device_id))
        if keys:
            await self.redis.delete(*keys)


class InMemorySnapshotStore(SnapshotStore):
    """Process-local store for embedded use and tests."""

    def __init__(self, payload: Optional[str] = None):
        self.payload = payload
        self.markers: Dict[str, str] = {}

    async def _read(self) -> Optional[str]:
        return self.payload

    async def _write(self, payload: str) -> None:
        self.payload = payload

    async def delete_snapshot(self) -> None:
        self.payload = None

    async def is_migrated(self, identity_key: str) -> bool:
        return identity_key in self.markers

    async def mark_migrated(self, identity_key: str) -> None:
        self.markers[identity_key] = "completed"

    async def clear_migration_markers(self) -> None:
        self.markers.clear()
