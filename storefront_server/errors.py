"""Exceptions raised by the storefront client and checkout flow."""

from typing import Optional


class StorefrontError(Exception):
    """Base class for storefront failures."""


class StorefrontNetworkError(StorefrontError):
    """No response was received from any channel (network or CORS failure)."""

    def __init__(self, operation: str, detail: Optional[str] = None) -> None:
        self.operation = operation
        self.detail = detail
        message = (
            f"Network error: Unable to {operation}. Check that the storefront proxy is "
            "running and that STOREFRONT_PROXY_URL / STOREFRONT_DOMAIN_NAME are set correctly."
        )
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)


class StorefrontStatusError(StorefrontError):
    """The upstream answered with a non-success HTTP status."""

    def __init__(self, operation: str, status_code: int, body: str = "") -> None:
        self.operation = operation
        self.status_code = status_code
        self.body = body
        super().__init__(f"Failed to {operation}: {status_code} {body}".rstrip())


class ResponseShapeError(StorefrontError):
    """The upstream answered, but the payload was not where it was expected."""

    def __init__(self, operation: str, detail: str = "Unexpected API response format") -> None:
        self.operation = operation
        super().__init__(f"Failed to {operation}: {detail}")


class StorefrontRejectedError(StorefrontError):
    """A 2xx response whose status envelope reports failure."""

    def __init__(self, message: str, status_code: Optional[str] = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class CheckoutError(StorefrontError):
    """A checkout step was attempted without its preconditions."""
