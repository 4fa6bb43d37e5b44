"""
Cart errors and user-facing notice texts.

Message constants are kept here so the session controller and tests refer to
the same strings.
"""

# Notices shown to the shopper
NOTICE_CART_MERGED = "Cart merged successfully!"
NOTICE_CART_RESTORED = "Welcome back! Your cart has been restored."
NOTICE_UPDATE_FAILED = "Failed to update cart. Please try again."
NOTICE_UPDATE_CONNECTION = "Cart update failed. Please check your connection."
NOTICE_ADD_FAILED = "Failed to add item. Please check your connection."
NOTICE_REMOVE_FAILED = "Failed to remove item. Please check your connection."
NOTICE_CLEAR_STALE = "Cart cleared locally, but database sync failed"
NOTICE_SYNC_FAILED = "Could not save your cart. Changes will be retried."

# Log/exception messages
ERROR_CART_UNAVAILABLE = "Cart service unavailable"
ERROR_NETWORK = "Network connection failed. Please check your internet connection."
ERROR_INVALID_RESPONSE = "Invalid response from cart service"
ERROR_SNAPSHOT_CORRUPTED = "Stored cart snapshot is corrupted"


class CartError(Exception):
    """Base class for cart engine errors."""


class RemoteCartError(CartError):
    """Remote cart store rejected or failed a request."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class TransientRemoteError(RemoteCartError):
    """Network-level or 5xx failure that may succeed on retry."""


class SnapshotError(CartError):
    """Local snapshot could not be read or parsed."""
