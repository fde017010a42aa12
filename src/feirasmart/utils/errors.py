"""
Error taxonomy shared by the data layer, the checkout flow and the UI.

Every error carries ``retryable`` so callers can decide between showing the
message as-is and suggesting a retry.
"""


class FeiraError(Exception):
    retryable = False

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message


class ValidationError(FeiraError, ValueError):
    """Malformed or incomplete request."""


class AccessDeniedError(FeiraError):
    """Authenticated, but the role does not allow the operation."""


class NotFoundError(FeiraError, LookupError):
    """The id does not resolve, or the row belongs to someone else."""


class ConflictError(FeiraError):
    """Uniqueness violation or a state change the row cannot take."""


class TransientError(FeiraError):
    """The store was busy, locked or timed out. Safe to retry."""

    retryable = True


class AuthError(FeiraError):
    """Bad credentials, or a token that is invalid, expired or orphaned."""
