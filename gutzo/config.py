"""
Environment-driven settings for the cart engine.

Values come from the process environment, with a `.env` file in the project
root loaded first when present.
"""
from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

ROOT_DIR = Path(__file__).resolve().parents[1]
load_dotenv(dotenv_path=ROOT_DIR / ".env")


def _get_env(*keys: str, default: str = "") -> str:
    for k in keys:
        v = os.getenv(k)
        if v is not None and str(v).strip() != "":
            return v.strip()
    return default


def _get_float(*keys: str, default: float) -> float:
    v = _get_env(*keys)
    if not v:
        return default
    return float(v)


def _get_int(*keys: str, default: int) -> int:
    v = _get_env(*keys)
    if not v:
        return default
    return int(v)


@dataclass(frozen=True)
class Settings:
    supabase_url: str
    supabase_anon_key: str
    function_name: str
    phone_prefix: str
    sync_debounce_seconds: float
    request_timeout: float
    redis_url: str
    redis_token: str
    guest_cart_ttl: int

    @property
    def functions_base_url(self) -> str:
        """Base URL of the storefront edge function."""
        return f"{self.supabase_url.rstrip('/')}/functions/v1/{self.function_name}"


def load_settings() -> Settings:
    """Read settings from the current environment."""
    return Settings(
        supabase_url=_get_env("SUPABASE_URL", "VITE_SUPABASE_URL"),
        supabase_anon_key=_get_env("SUPABASE_ANON_KEY", "VITE_SUPABASE_ANON_KEY"),
        function_name=_get_env("GUTZO_FUNCTION_NAME", default="gutzo-api"),
        phone_prefix=_get_env("GUTZO_PHONE_PREFIX", default="+91"),
        sync_debounce_seconds=_get_float("CART_SYNC_DEBOUNCE_SECONDS", default=1.0),
        request_timeout=_get_float("CART_REQUEST_TIMEOUT", default=10.0),
        redis_url=_get_env("UPSTASH_REDIS_REST_URL"),
        redis_token=_get_env("UPSTASH_REDIS_REST_TOKEN"),
        guest_cart_ttl=_get_int("GUEST_CART_TTL", default=7 * 86400),
    )


settings = load_settings()
