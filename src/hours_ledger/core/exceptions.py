class DomainError(Exception):
    """Base exception for business rule violations."""

    code = "domain-error"


class ValidationError(DomainError):
    """Raised when input data is invalid or violates domain rules.

    Input errors are surfaced verbatim to the caller and never mutate state.
    """

    code = "validation-error"


class DecodeError(ValidationError):
    """Raised when a scanned token cannot be decoded."""

    code = "decode-error"


class InvalidFormat(DecodeError):
    code = "invalid-format"


class ChecksumMismatch(DecodeError):
    code = "checksum-mismatch"


class InvalidRange(ValidationError):
    code = "invalid-range"


class NoChangesDetected(ValidationError):
    code = "no-changes-detected"


class MissingField(ValidationError):
    code = "missing-field"


class NotFound(ValidationError):
    code = "not-found"


class EntryVoided(ValidationError):
    code = "entry-voided"


class AlreadyVoided(ValidationError):
    code = "already-voided"


class ConflictError(DomainError):
    """Raised when a mutation conflicts with the current ledger state.

    The triggering operation is dropped, never retried automatically.
    """

    code = "conflict"


class NegativeDurationError(ConflictError):
    code = "negative-duration"


class OutOfOrderScan(ConflictError):
    code = "out-of-order-scan"


class ConcurrentMutationError(ConflictError):
    code = "concurrent-mutation"


class LedgerIntegrityError(DomainError):
    """Raised when an entity write is not paired with exactly one history record."""

    code = "integrity-error"


class StorageUnavailable(DomainError):
    """Raised when the persistence layer cannot be reached. Reads may be retried."""

    code = "storage-unavailable"
