"""
Custom exception classes for the rental lifecycle scheduler.

These exceptions give the sweeps precise error types to catch at the
per-order boundary instead of treating every failure the same way.
"""


class TransientStoreError(Exception):
    """Raised when the order store cannot be read or written (I/O, lost connection)."""

    def __init__(self, message: str = "Error: order store unavailable") -> None:
        self.message = message
        super().__init__(self.message)

    def __str__(self) -> str:  # pragma: no cover
        return self.message


class NotificationDeliveryError(Exception):
    """Raised when a notification sink fails to deliver a message."""

    def __init__(self, message: str = "Error: notification delivery failed") -> None:
        self.message = message
        super().__init__(self.message)

    def __str__(self) -> str:  # pragma: no cover
        return self.message


class ConfigurationError(Exception):
    """Raised when scheduler settings or a late fee policy are invalid."""

    def __init__(self, message: str = "Error: invalid configuration") -> None:
        self.message = message
        super().__init__(self.message)

    def __str__(self) -> str:  # pragma: no cover
        return self.message


class InvalidPolicyError(ConfigurationError):
    """Raised when a late fee policy fails validation."""

    def __init__(self, message: str = "Error: invalid late fee policy") -> None:
        super().__init__(message)


class InvariantViolation(Exception):
    """
    Raised when an order record breaks a data invariant the engine relies on
    (missing end date, negative amount, negative computed fee).
    The sweeps flag such orders for manual review and move on.
    """

    def __init__(self, message: str = "Error: order invariant violated", order_id: str | None = None) -> None:
        self.message = message
        self.order_id = order_id
        super().__init__(self.message)

    def __str__(self) -> str:  # pragma: no cover
        return self.message


class OrderNotFoundError(Exception):
    """Raised when an order ID cannot be found in the store."""

    def __init__(self, message: str = "Error: order not found") -> None:
        self.message = message
        super().__init__(self.message)

    def __str__(self) -> str:  # pragma: no cover
        return self.message


class StatusConflictError(Exception):
    """Raised when a conditional update finds the order in an unexpected status."""

    def __init__(self, message: str = "Error: order status changed concurrently",
                 expected: str | None = None, actual: str | None = None) -> None:
        self.message = message
        self.expected = expected
        self.actual = actual
        super().__init__(self.message)

    def __str__(self) -> str:  # pragma: no cover
        return self.message
