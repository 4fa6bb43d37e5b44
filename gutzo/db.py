"""
Redis Module - Upstash Redis client for on-device cart persistence.

Keys:
- guest cart snapshot per device
- per-identity "migration completed" markers
"""

from typing import Optional

from upstash_redis.asyncio import Redis as AsyncRedis

from gutzo.config import settings

_redis_client: Optional[AsyncRedis] = None


def get_redis() -> AsyncRedis:
    """
    Get async Upstash Redis client (singleton).

    Uses standard Upstash env var names:
    - UPSTASH_REDIS_REST_URL
    - UPSTASH_REDIS_REST_TOKEN
    """
    global _redis_client

    if _redis_client is None:
        if not settings.redis_url or not settings.redis_token:
            raise ValueError("UPSTASH_REDIS_REST_URL and UPSTASH_REDIS_REST_TOKEN must be set")
        _redis_client = AsyncRedis(url=settings.redis_url, token=settings.redis_token)

    return _redis_client


class RedisKeys:
    """Redis key prefixes for cart data."""

    GUEST_CART = "gutzo_guest_cart:"  # gutzo_guest_cart:{device_id}
    CART_MIGRATED = "gutzo_cart_migrated:"  # gutzo_cart_migrated:{device_id}:{identity_key}

    @staticmethod
    def guest_cart_key(device_id: str) -> str:
        return f"{RedisKeys.GUEST_CART}{device_id}"

    @staticmethod
    def migration_key(device_id: str, identity_key: str) -> str:
        return f"{RedisKeys.CART_MIGRATED}{device_id}:{identity_key}"

    @staticmethod
    def migration_pattern(device_id: str) -> str:
        return f"{RedisKeys.CART_MIGRATED}{device_id}:*"


class TTL:
    """Time-to-live constants for Redis keys (seconds)."""

    GUEST_CART = settings.guest_cart_ttl
    MIGRATION_MARKER = 90 * 86400  # 90 days
