"""Custom exception hierarchy for the recording lifecycle.

All exceptions inherit from LifecycleError, enabling targeted handling
at operation boundaries while preserving specific failure context.
Expected absence (a missing blob, a failed download) is signalled with
None at the store boundary and never raised.
"""


class LifecycleError(Exception):
    """Base exception for all recording lifecycle errors."""

    def __init__(self, message: str, record_id: str | None = None) -> None:
        self.record_id = record_id
        super().__init__(message)

    def __str__(self) -> str:
        if self.record_id:
            return f"[record={self.record_id}] {super().__str__()}"
        return super().__str__()


class ConfigurationError(LifecycleError):
    """Raised when a required setting (location id, credential) is missing."""

    def __init__(
        self,
        message: str,
        record_id: str | None = None,
        setting: str | None = None,
    ) -> None:
        self.setting = setting
        super().__init__(message, record_id)


class StorageError(LifecycleError):
    """Raised when blob or state store operations fail."""

    def __init__(
        self,
        message: str,
        record_id: str | None = None,
        operation: str | None = None,
    ) -> None:
        self.operation = operation
        super().__init__(message, record_id)


class BlobMoveError(LifecycleError):
    """Raised when both the direct move and the copy fallback fail."""

    def __init__(
        self,
        message: str,
        record_id: str | None = None,
        blob_name: str | None = None,
    ) -> None:
        self.blob_name = blob_name
        super().__init__(message, record_id)


class LedgerError(LifecycleError):
    """Raised when the ledger API rejects or cannot serve a request."""

    def __init__(
        self,
        message: str,
        record_id: str | None = None,
        table: str | None = None,
    ) -> None:
        self.table = table
        super().__init__(message, record_id)


class ProviderError(LifecycleError):
    """Raised when the telephony provider API call fails.

    Rate limiting (429) and server errors (5xx) are transient; the
    listing call retries them with backoff.
    """

    def __init__(
        self,
        message: str,
        record_id: str | None = None,
        status_code: int | None = None,
    ) -> None:
        self.status_code = status_code
        super().__init__(message, record_id)

    @property
    def transient(self) -> bool:
        if self.status_code is None:
            return True
        return self.status_code == 429 or self.status_code >= 500


class NotificationError(LifecycleError):
    """Raised when an outbound notification cannot be delivered."""

    def __init__(
        self,
        message: str,
        record_id: str | None = None,
        recipient: str | None = None,
    ) -> None:
        self.recipient = recipient
        super().__init__(message, record_id)


class LeaseUnavailableError(LifecycleError):
    """Raised when another invocation holds an unexpired lease."""

    def __init__(
        self,
        message: str,
        record_id: str | None = None,
        holder: str | None = None,
    ) -> None:
        self.holder = holder
        super().__init__(message, record_id)
