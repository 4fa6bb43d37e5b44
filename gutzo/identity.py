"""Identity as consumed from the authentication service."""
from typing import Optional

from pydantic import BaseModel

from gutzo.config import settings


class Identity(BaseModel):
    """Who the shopper is right now. The engine reads nothing else."""
    is_authenticated: bool = False
    identity_key: Optional[str] = None

    class Config:
        frozen = True

    @classmethod
    def anonymous(cls) -> "Identity":
        return cls()

    @classmethod
    def authenticated(cls, identity_key: str) -> "Identity":
        return cls(is_authenticated=True, identity_key=identity_key)

    @property
    def is_known(self) -> bool:
        return self.is_authenticated and bool(self.identity_key)


def format_phone(phone: str, prefix: Optional[str] = None) -> str:
    """Prefix the country code when missing (identity keys are phone numbers)."""
    prefix = settings.phone_prefix if prefix is None else prefix
    phone = phone.strip()
    if not prefix or phone.startswith(prefix) or phone.startswith("+"):
        return phone
    return f"{prefix}{phone}"
