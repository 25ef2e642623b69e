# nanochat/core/exceptions.py
from typing import Any, Optional


class SyncError(Exception):
    """Base exception for the sync core"""
    retryable: bool = False
    default_message: str = "Sync error"

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        entity_kind: Optional[str] = None,
        entity_id: Optional[str] = None,
        field: Optional[str] = None,
    ):
        self.message = message or self.default_message
        self.entity_kind = entity_kind
        self.entity_id = entity_id
        self.field = field
        super().__init__(self.message)

    def context(self) -> dict:
        """Diagnostic context for logging and error payloads"""
        return {
            "entity_kind": self.entity_kind,
            "entity_id": self.entity_id,
            "field": self.field,
        }

    def __str__(self) -> str:
        parts = [f"{k}={v}" for k, v in self.context().items() if v is not None]
        if not parts:
            return self.message
        return f"{self.message} ({', '.join(parts)})"


class DecodeError(SyncError):
    """Payload could not be turned into a typed entity"""
    default_message = "Decode failed"


class SchemaViolation(DecodeError):
    """Present field with the wrong type, missing required field, bad enum value"""
    default_message = "Schema violation"


class MalformedTimestamp(DecodeError):
    """Required timestamp string could not be parsed"""
    default_message = "Malformed timestamp"


class NotFound(SyncError):
    """Referenced id is absent remotely or locally"""
    default_message = "Resource not found"


class NetworkError(SyncError):
    """Transport failure; the caller may retry"""
    retryable = True
    default_message = "Network error"


class NetworkTimeout(NetworkError):
    default_message = "Network request timed out"


class NetworkUnavailable(NetworkError):
    default_message = "Network unavailable"


class RemoteAPIError(SyncError):
    """Non-2xx response other than 404"""
    default_message = "Remote API error"

    def __init__(self, status_code: int, message: Optional[str] = None, **kwargs: Any):
        self.status_code = status_code
        super().__init__(message or f"HTTP error: {status_code}", **kwargs)

    @property
    def retryable(self) -> bool:  # type: ignore[override]
        return self.status_code == 429 or self.status_code >= 500


class StoreIOError(SyncError):
    """Local store medium failure"""
    default_message = "Local store failure"


class StaleReconciliation(SyncError):
    """Reconciliation skipped because its fetch was cancelled or superseded"""
    default_message = "Reconciliation is stale"


class InvalidTransition(SyncError):
    """Pending operation asked to leave a terminal state"""
    default_message = "Invalid pending state transition"
