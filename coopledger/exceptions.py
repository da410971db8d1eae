"""Custom exceptions for the cooperative ledger."""


class CoopLedgerError(Exception):
    """Base exception for all ledger errors."""

    def __init__(self, message: str, details: dict = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self):
        if self.details:
            return f"{self.message} - {self.details}"
        return self.message


class DatabaseError(CoopLedgerError):
    """Raised when a database operation fails."""
    pass


class TransactionError(DatabaseError):
    """Raised when a database transaction fails to complete."""
    pass


class ValidationError(CoopLedgerError):
    """Raised when user input cannot be accepted as entered."""
    pass


class InvalidRateError(ValidationError):
    """Raised when an exchange rate is missing, non-numeric or not positive."""

    def __init__(self, value=None):
        super().__init__("Exchange rate must be a positive number", {'rate': value})
        self.value = value


class InvalidAmountError(ValidationError):
    """Raised when a monetary input is missing or out of range."""

    def __init__(self, field: str, value=None, reason: str = "must be a positive number"):
        super().__init__(f"Amount '{field}' {reason}", {'field': field, 'value': value})
        self.field = field
        self.value = value


class InvalidDateError(ValidationError):
    """Raised when a date or year-month string cannot be parsed."""

    def __init__(self, value=None, expected: str = "YYYY-MM-DD"):
        super().__init__(f"Invalid date '{value}', expected {expected}", {'value': value})
        self.value = value


class InsufficientFundsError(ValidationError):
    """Raised when a deposit does not cover the requested allocations."""

    def __init__(self, shortfall_usd: float, required_usd: float = None, available_usd: float = None):
        details = {'shortfall_usd': round(shortfall_usd, 2)}
        if required_usd is not None:
            details['required_usd'] = round(required_usd, 2)
        if available_usd is not None:
            details['available_usd'] = round(available_usd, 2)

        message = f"Insufficient funds: short by {shortfall_usd:.2f} USD"
        super().__init__(message, details)
        self.shortfall_usd = shortfall_usd
        self.required_usd = required_usd
        self.available_usd = available_usd


class OverpaymentRejectedError(ValidationError):
    """Raised when a certificate payment exceeds the pending balance."""

    def __init__(self, payment_usd: float, pending_usd: float):
        details = {
            'payment_usd': round(payment_usd, 2),
            'pending_usd': round(pending_usd, 2),
        }
        message = f"Certificate payment {payment_usd:.2f} USD exceeds pending balance {pending_usd:.2f} USD"
        super().__init__(message, details)
        self.payment_usd = payment_usd
        self.pending_usd = pending_usd


class ProtectionNotConfiguredError(ValidationError):
    """Raised when protection months are paid for a member without a protection id."""

    def __init__(self, member_id: int = None):
        super().__init__("Member has no social protection id", {'member_id': member_id})


class DuplicateMemberIdError(CoopLedgerError):
    """Raised when registering or renaming to a member id that already exists."""

    def __init__(self, member_id: int):
        super().__init__(f"Member id {member_id} is already in use", {'member_id': member_id})
        self.member_id = member_id


class MemberNotFoundError(CoopLedgerError):
    """Raised when a member cannot be found."""

    def __init__(self, member_id: int = None):
        details = {}
        message = "Member not found"
        if member_id is not None:
            details['member_id'] = member_id
            message = f"Member with ID {member_id} not found"
        super().__init__(message, details)
        self.member_id = member_id


class NoActiveMemberError(CoopLedgerError):
    """Raised when an operation requires a logged-in member."""

    def __init__(self):
        super().__init__("No member is logged in")
