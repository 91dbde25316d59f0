"""
Error taxonomy for ledger operations.

Every error carries a stable ``ErrorCode`` and the HTTP status the API layer
answers with. Validation and business-rule errors are never retried by the
service; ``StorageUnavailable`` and ``UpstreamDegraded`` are transient and may
be retried by the caller.
"""

from __future__ import annotations

from friendfund.types import ErrorCode


class LedgerError(Exception):
    code: ErrorCode = ErrorCode.INTERNAL
    status_code: int = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidArgument(LedgerError):
    code = ErrorCode.INVALID_ARGUMENT
    status_code = 400


class NotFound(LedgerError):
    code = ErrorCode.NOT_FOUND
    status_code = 404


class CampaignClosed(LedgerError):
    code = ErrorCode.CAMPAIGN_CLOSED
    status_code = 400


class DuplicatePayment(LedgerError):
    code = ErrorCode.DUPLICATE_PAYMENT
    status_code = 400


class Unauthorized(LedgerError):
    code = ErrorCode.UNAUTHORIZED
    status_code = 403


class Unauthenticated(LedgerError):
    code = ErrorCode.UNAUTHENTICATED
    status_code = 401


class AlreadyRepaid(LedgerError):
    code = ErrorCode.ALREADY_REPAID
    status_code = 400


class InvalidOperation(LedgerError):
    code = ErrorCode.INVALID_OPERATION
    status_code = 400


class StorageUnavailable(LedgerError):
    code = ErrorCode.STORAGE_UNAVAILABLE
    status_code = 500


class UpstreamDegraded(LedgerError):
    code = ErrorCode.UPSTREAM_DEGRADED
    status_code = 500


class DuplicateKeyError(Exception):
    """Raised by the document store when a unique index rejects an insert."""

    def __init__(self, collection: str, key: tuple):
        super().__init__(f"Duplicate key {key!r} in {collection}")
        self.collection = collection
        self.key = key
