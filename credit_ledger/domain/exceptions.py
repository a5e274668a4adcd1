"""Domain-specific exceptions"""


class DomainException(Exception):
    """Base exception for domain layer"""

    pass


class ValidationError(DomainException):
    """Input is missing or invalid; raised before anything is persisted"""

    pass


class NotFoundError(DomainException):
    """Referenced entity does not exist"""

    pass


class CreditLimitExceeded(DomainException):
    """Requested credit usage exceeds the customer's available credit"""

    def __init__(self, message: str, requested_cents: int = 0, available_cents: int = 0):
        super().__init__(message)
        self.requested_cents = requested_cents
        self.available_cents = available_cents


class InsufficientBalance(DomainException):
    """Reward points or credit memo balance cannot cover the requested amount"""

    pass


class DuplicateInvoice(DomainException):
    """An invoice already exists for the order with conflicting figures"""

    pass


class GatewayError(DomainException):
    """Payment gateway declined the request or is unavailable"""

    pass


class ConcurrencyConflict(DomainException):
    """A concurrent writer won the race for a sequence number or credit line row"""

    pass
