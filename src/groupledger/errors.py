from __future__ import annotations


class LedgerError(Exception):
    pass


class NotFoundError(LedgerError, LookupError):
    pass


class ValidationFailure(LedgerError, ValueError):
    pass


class UnsettledBalanceError(ValidationFailure):
    pass


class StorageUnavailableError(LedgerError, ConnectionError):
    """Transient storage fault; the caller may retry."""


class SmartSplitDisabledError(LedgerError):
    pass
