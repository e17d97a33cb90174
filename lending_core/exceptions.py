"""Exception hierarchy for the lending engine."""


class LendingError(Exception):
    """Base exception for all lending engine errors."""


class ValidationError(LendingError, ValueError):
    """Raised before any mutation when an operation's input is invalid."""


class InvalidAmountError(ValidationError):
    """Raised when a payment amount is zero or negative."""


class InvalidRangeError(ValidationError):
    """Raised when an advance batch starts after it ends."""


class EmptyDateRangeError(ValidationError):
    """Raised when no installment due date falls inside an advance range."""


class InvalidLoanTermsError(ValidationError):
    """Raised when loan terms cannot describe a schedule."""


class NonPartialChainCompletionError(ValidationError):
    """Raised when completing a chain whose anchor payment is not Partial."""


class NotFoundError(LendingError):
    """Raised when a referenced record does not exist."""


class LoanNotFoundError(NotFoundError):
    """Raised when a loan id does not exist."""


class PaymentNotFoundError(NotFoundError):
    """Raised when a payment id does not exist."""


class ChainNotFoundError(NotFoundError):
    """Raised when a chain id has no member payments."""


class TransientStorageError(LendingError):
    """Raised for storage failures that may succeed when retried."""


class StorageContentionError(TransientStorageError):
    """Raised when the store is locked by another writer."""


class WriteConflictError(TransientStorageError):
    """Raised when a loan changed between read and write."""
