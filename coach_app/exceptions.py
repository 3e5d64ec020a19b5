"""Daily Coach exceptions."""


class CoachError(Exception):
    """Base exception for Daily Coach errors."""
    pass


class AuthenticationError(CoachError):
    """Raised when signing in, signing up or resetting a password fails."""
    pass


class GatewayError(CoachError):
    """Raised when the persistence backend cannot be reached or rejects a write."""

    def __init__(self, message: str, status_code: int | None = None, detail: str | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.detail = detail or message


class CompletionPendingError(GatewayError):
    """Raised when a completion row was stored but the stats update failed."""
    pass
