"""
Allocation Errors — the numbered failure taxonomy of the allocation engine.

Every public operation either returns a value or raises exactly one of these.
A raised error always means the call was rejected with state unchanged; there
is no distinction between recoverable and fatal failures at this layer.

Codes are stable and mirror the numbered error codes callers already use:

    100 Unauthorized          106 AllocationExceeded
    101 InvalidQuantity       107 InsufficientPriority
    102 InsufficientBalance   108 ResourceFrozen / SystemFrozen
    103 ResourceNotFound      109 RequestTimeout
    104 AlreadyInitialized    110 InvalidParameter
    105 InvalidRecipient      111 AlreadyExists
    112 RequestNotFound       113 InvalidStateTransition
    120 JournalIntegrityError
"""

from __future__ import annotations


class AllocationError(Exception):
    """Base class for every rejected allocation-engine operation."""

    code: int = 0

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(code={self.code}, message={self.message!r})"


class Unauthorized(AllocationError):
    """Caller is not the administrator, or the account is restricted."""

    code = 100


class InvalidQuantity(AllocationError):
    code = 101


class InsufficientBalance(AllocationError):
    """Amount exceeds an available supply or an account balance."""

    code = 102


class ResourceNotFound(AllocationError):
    code = 103


class AlreadyInitialized(AllocationError):
    code = 104


class InvalidRecipient(AllocationError):
    code = 105


class AllocationExceeded(AllocationError):
    """Amount is above a per-resource maximum, the global ceiling, or a capacity."""

    code = 106


class InsufficientPriority(AllocationError):
    code = 107


class ResourceFrozen(AllocationError):
    code = 108


class SystemFrozen(ResourceFrozen):
    """The whole system is frozen or in maintenance."""


class RequestTimeout(AllocationError):
    """The request's expiration window has passed."""

    code = 109


class InvalidParameter(AllocationError):
    code = 110


class AlreadyExists(AllocationError):
    code = 111


class RequestNotFound(AllocationError):
    code = 112


class InvalidStateTransition(AllocationError):
    """The request is already in a terminal state."""

    code = 113


class JournalIntegrityError(AllocationError):
    """Raised when the audit journal hash chain cannot be extended or verified."""

    code = 120
