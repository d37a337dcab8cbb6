"""Error types raised by the ledger services."""

from __future__ import annotations


class LedgerError(RuntimeError):
    """Base class for ledger failures that are not caller input errors."""


class PaymentServiceError(LedgerError):
    """Raised when a ledger operation cannot be persisted."""


class LedgerConflictError(LedgerError):
    """Raised when a unit stayed contended after every retry attempt.

    The caller may safely retry the whole operation.
    """

    retryable = True


class DataIntegrityError(LedgerError):
    """Raised when stored ledger data violates an invariant.

    Never retried; the stored records need operator attention.
    """


class PaymentValidationError(ValueError):
    """Raised when a request is rejected before any transaction starts."""


class InsufficientInputError(ValueError):
    """Raised when the planner receives inputs it cannot allocate."""


class InsufficientContextError(ValueError):
    """Raised when a penalty is requested for a date before the bill existed."""


class ReversalBlockedError(ValueError):
    """Raised when a reversal would leave the unit's credit balance negative."""


class UnitNotFoundError(LookupError):
    """Raised when the referenced unit does not exist."""


class PaymentNotFoundError(LookupError):
    """Raised when the referenced payment does not exist."""
