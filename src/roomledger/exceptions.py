"""Custom exceptions for RoomLedger."""


class RoomLedgerError(Exception):
    """Base exception for all RoomLedger errors."""

    pass


class ConfigurationError(RoomLedgerError):
    """Raised when configuration is invalid or missing."""

    pass


class LedgerValidationError(RoomLedgerError):
    """Raised when a record is rejected at the ledger boundary."""

    def __init__(self, errors: list[str] | str):
        self.errors = [errors] if isinstance(errors, str) else list(errors)
        super().__init__("; ".join(self.errors))


class UnknownCurrencyError(LedgerValidationError):
    """Raised when a currency code is not in the supported set."""

    def __init__(self, code: str):
        self.code = code
        super().__init__(f"Unknown currency code: {code!r}")


class DuplicateRecordError(LedgerValidationError):
    """Raised when adding a record whose id already exists."""

    def __init__(self, kind: str, record_id: str):
        self.kind = kind
        self.record_id = record_id
        super().__init__(f"{kind} {record_id!r} already exists")


class RecordNotFoundError(LedgerValidationError):
    """Raised when updating or deleting a record that does not exist."""

    def __init__(self, kind: str, record_id: str):
        self.kind = kind
        self.record_id = record_id
        super().__init__(f"{kind} {record_id!r} not found")


class APIError(RoomLedgerError):
    """Base class for API-related errors."""

    pass


class ExchangeRateAPIError(APIError):
    """Raised when the exchange rate source returns an unusable response."""

    pass


class ConversionDegraded(APIError):
    """Raised when a live rate fetch fails and static rates must be used."""

    pass


class PersistenceError(RoomLedgerError):
    """Raised when the ledger cannot be read from or written to storage."""

    pass
