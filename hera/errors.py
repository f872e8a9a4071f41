"""
Exceptions raised by hera
"""


class HeraError(Exception):
    """Base class for hera exceptions."""


class AuthenticationRequired(HeraError):
    """Organization or user context is missing."""


class BatchLimitExceeded(HeraError):
    """A batch holds more operations than the configured limit."""

    def __init__(self, size: int, limit: int):
        self.size = size
        self.limit = limit
        super().__init__(f"Batch size {size} exceeds limit of {limit}")


class TransactionServiceError(HeraError):
    """A failed service response, raised for callers that expect exceptions."""


class GatewayError(HeraError):
    """The gateway could not be reached or returned an unreadable response."""
