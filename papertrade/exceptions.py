"""
Typed failures raised by the paper-trading ledger and the storage layer.

Validation failures are raised before any state is touched, so a caller that
catches one can rely on the ledger being exactly as it was before the call.
"""


class PaperTradingError(Exception):
    """Base class for every failure raised by this package"""


class ValidationError(PaperTradingError):
    """Rejected input (negative balance, negative quantity, ...)"""


class InvalidOrderError(ValidationError):
    """Order price or quantity is not a positive number"""


class InsufficientBalanceError(ValidationError):
    def __init__(self, required: float, available: float):
        self.required = required
        self.available = available
        super().__init__(f"Insufficient balance: required {required:,.2f}, available {available:,.2f}")


class InsufficientPositionError(ValidationError):
    def __init__(self, instrument: str, requested: float, held: float):
        self.instrument = instrument
        self.requested = requested
        self.held = held
        super().__init__(f"Insufficient position for {instrument}: requested {requested}, held {held}")


class PositionNotFoundError(ValidationError):
    def __init__(self, instrument: str):
        self.instrument = instrument
        super().__init__(f"No open position for {instrument}")


class StoreVersionError(PaperTradingError):
    """Persisted record carries a schema version this code does not understand"""

    def __init__(self, key: str, found, expected: int):
        self.key = key
        self.found = found
        self.expected = expected
        super().__init__(f"Stored '{key}' has schema version {found!r}, expected {expected}")
