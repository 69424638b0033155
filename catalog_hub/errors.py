# catalog_hub/errors.py
from __future__ import annotations

from typing import Optional


class CatalogHubError(Exception):
    """Base class for errors raised by the catalog hub."""


class RemoteApiError(CatalogHubError):
    """
    A WooCommerce REST call failed for good: a 4xx response, or a network/5xx
    failure that outlived the client's retries.
    """

    def __init__(self, message: str, status: Optional[int] = None, body: Optional[str] = None):
        super().__init__(message)
        self.status = status
        self.body = body

    def __str__(self) -> str:
        base = super().__str__()
        if self.status is not None:
            base = f"{base} (HTTP {self.status})"
        if self.body:
            base = f"{base}: {self.body}"
        return base


class RelocationFailure(CatalogHubError):
    """Image could not be relocated; converted to a None result by the service."""


class ShopNotFound(CatalogHubError):
    def __init__(self, shop_id: str):
        super().__init__(f"Shop not found: {shop_id}")
        self.shop_id = shop_id


class ValidationError(CatalogHubError):
    """Malformed sync request or remote payload."""


class VaultError(CatalogHubError):
    pass


class IntegrityError(VaultError):
    """Authentication tag did not verify (tampered data or wrong key)."""


class FormatError(VaultError):
    """Compact ciphertext is not nonce:tag:ciphertext."""


class VaultConfigError(VaultError):
    """ENCRYPTION_KEY missing or not a 32-byte base64 key."""
