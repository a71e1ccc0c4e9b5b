"""
Service-level exceptions.

A permission denial is not an error: checks return False and the route turns
that into a 403. Only malformed input and infrastructure failures are raised.
"""


class ServiceError(Exception):
    """Base class for errors raised by the service layer."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(ServiceError):
    """Input was rejected before any store mutation happened."""


class NotFoundError(ServiceError):
    """A referenced role, organization or type does not exist."""


class StoreUnavailable(ServiceError):
    """A backing store read or write failed at the infrastructure level."""
