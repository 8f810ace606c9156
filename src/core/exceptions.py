class DomainError(Exception):
    """Base class for domain-specific errors."""

    pass


class InvalidRequestError(DomainError):
    """Raised when a request body or its cookies cannot be parsed."""

    pass
