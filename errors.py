"""
Error taxonomy for identity reconciliation
Lets callers tell client errors, integrity faults and transient storage
failures apart without inspecting driver exceptions themselves.
"""

import asyncio
from typing import Any, Dict, Optional

from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError


class ReconciliationError(Exception):
    """Base class for all errors raised by the reconciliation core"""

    error_code = "ReconciliationError"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class InvalidInputError(ReconciliationError):
    """Neither email nor phone number was supplied"""

    error_code = "ValidationError"


class ContactNotFoundError(ReconciliationError):
    error_code = "NotFound"


class IntegrityFaultError(ReconciliationError):
    """
    Stored contacts violate the primary/secondary invariants
    (e.g. a cluster without any primary). Never repaired automatically.
    """

    error_code = "IntegrityFault"


class InvalidTransitionError(IntegrityFaultError):
    """A precedence change other than primary -> secondary was attempted"""

    error_code = "InvalidTransition"


class StorageUnavailableError(ReconciliationError):
    """The transaction could not be opened or committed. Safe to retry."""

    error_code = "DatabaseConnectionError"


# SQLSTATE codes PostgreSQL uses when a transaction lost a concurrency race
RETRYABLE_SQLSTATES = {"40001", "40P01"}


def _sqlstate(exc: DBAPIError) -> Optional[str]:
    orig = exc.orig
    return getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)


def is_transient_storage_error(exc: BaseException) -> bool:
    """
    Decide whether a storage exception means "unavailable, try again later"
    rather than a bug or bad data
    """
    # ConnectionError and TimeoutError are OSError subclasses
    if isinstance(exc, (OSError, asyncio.TimeoutError)):
        return True
    if isinstance(exc, DBAPIError):
        if exc.connection_invalidated:
            return True
        if _sqlstate(exc) in RETRYABLE_SQLSTATES:
            return True
        if isinstance(exc, (OperationalError, InterfaceError)):
            return True
        return "database is locked" in str(exc).lower()
    return False
