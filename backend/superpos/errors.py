"""
Error taxonomy for the stock ledger, billing engine and checkout.

Every error is raised synchronously to the caller; the HTTP boundary maps
them to JSON responses. Nothing here is retried automatically.
"""


class PosError(Exception):
    """Base class for core business errors."""
    status_code = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class NotFoundError(PosError):
    """Referenced product, movement or invoice does not exist."""
    status_code = 404


class InsufficientStockError(PosError):
    """An outbound movement or cart quantity exceeds the on-hand balance."""
    status_code = 409


class StockLimitExceededError(PosError):
    """A cart quantity change would exceed the product's stock."""
    status_code = 409


class InsufficientPaymentError(PosError):
    """Cash tendered is below the invoice total."""
    status_code = 400


class InvalidStateError(PosError):
    """Invoice or movement is not in a state that allows the operation."""
    status_code = 409


class LedgerConsistencyError(PosError):
    """Cached stock quantity disagrees with the movement ledger."""
    status_code = 500


class PersistenceError(PosError):
    """Underlying storage write failed; the unit of work was rolled back."""
    status_code = 503
