"""Error taxonomy for POS synchronization and ERP propagation.

All errors inherit from SyncError so callers can catch any engine failure.
Connection and unknown-provider errors are fatal for a run; schema,
validation and storage errors are scoped to a record or a batch.
"""

from typing import List, Optional


class SyncError(Exception):
    """Base exception for all synchronization errors."""


class IntegrationConnectionError(SyncError):
    """Raised when a POS provider or the ERP cannot be reached."""

    def __init__(self, message: str, provider: Optional[str] = None, status_code: Optional[int] = None):
        self.provider = provider
        self.status_code = status_code
        super().__init__(message)


class IntegrationAuthError(IntegrationConnectionError):
    """Raised when the remote system rejects our credentials (401/403)."""


class IntegrationTimeoutError(SyncError):
    """Raised when a request exceeds its deadline."""

    def __init__(self, message: str, provider: Optional[str] = None, timeout: Optional[float] = None):
        self.provider = provider
        self.timeout = timeout
        super().__init__(message)


class SchemaError(SyncError):
    """Raised when raw vendor data does not have the expected shape."""

    def __init__(self, message: str, provider: Optional[str] = None):
        self.provider = provider
        super().__init__(message)


class SaleValidationError(SyncError):
    """Raised when normalized sales violate business rules."""

    def __init__(self, errors: List[str], warnings: Optional[List[str]] = None):
        self.errors = list(errors)
        self.warnings = list(warnings or [])
        preview = "; ".join(self.errors[:3])
        if len(self.errors) > 3:
            preview += f" (+{len(self.errors) - 3} more)"
        super().__init__(f"Sales validation failed: {preview}")


class StorageError(SyncError):
    """Raised when the persistence layer fails."""

    def __init__(self, message: str, original: Optional[BaseException] = None):
        self.original = original
        super().__init__(message)


class UnknownProviderError(SyncError):
    """Raised when a provider id is not registered."""

    def __init__(self, provider_id: str, available: Optional[List[str]] = None):
        self.provider_id = provider_id
        self.available = list(available or [])
        super().__init__(
            f"Unknown POS provider: {provider_id}. Available: {', '.join(self.available) or 'none'}"
        )


class InvalidDateRangeError(SyncError):
    """Raised when a requested sync window is malformed or too large."""


class ErpRpcError(SyncError):
    """Raised when the ERP answers a JSON-RPC call with an error envelope."""

    def __init__(self, message: str, model: Optional[str] = None, method: Optional[str] = None):
        self.model = model
        self.method = method
        super().__init__(message)
