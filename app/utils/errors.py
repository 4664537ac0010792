"""Custom exception hierarchy for the vault API."""

from __future__ import annotations


class AppError(Exception):
    """Base application error with a stable machine-readable code."""

    def __init__(self, message: str, code: str, status_code: int = 400) -> None:
        self.message = message
        self.code = code
        self.status_code = status_code
        super().__init__(message)

    def to_dict(self) -> dict[str, str]:
        """Serialize the error in the API standard shape."""
        return {"error": self.message, "code": self.code}


class ValidationError(AppError):
    """Raised for bad input, rejected before any write occurs."""

    def __init__(self, reason: str) -> None:
        super().__init__(message=reason, code="VALIDATION_ERROR", status_code=422)


class InsufficientFundsError(AppError):
    """Raised when a withdrawal exceeds the vault balance."""

    def __init__(self, requested: object, available: object) -> None:
        self.requested = requested
        self.available = available
        super().__init__(
            message=f"Insufficient vault balance: requested {requested}, available {available}",
            code="INSUFFICIENT_FUNDS",
        )


class ConcurrencyConflictError(AppError):
    """Raised when a per-user serialization point is contended."""

    def __init__(self, reason: str = "Another operation is in progress, retry shortly") -> None:
        super().__init__(message=reason, code="CONCURRENCY_CONFLICT", status_code=409)


class ExternalProviderError(AppError):
    """Raised when a broker or payout provider call fails."""

    def __init__(self, provider: str, reason: str, status_code: int = 502) -> None:
        self.provider = provider
        super().__init__(
            message=f"{provider}: {reason}",
            code="EXTERNAL_PROVIDER_ERROR",
            status_code=status_code,
        )


class ProviderTimeoutError(ExternalProviderError):
    """Raised when a provider call exceeds its timeout.

    The remote side may or may not have acted, so callers leave local state
    pending for later reconciliation instead of failing it.
    """

    def __init__(self, provider: str, reason: str = "request timed out") -> None:
        super().__init__(provider, reason, status_code=504)
        self.code = "PROVIDER_TIMEOUT"


class DataIntegrityError(AppError):
    """Raised when the ledger violates an invariant for a user."""

    def __init__(self, user_id: str, reason: str, detail: str = "") -> None:
        self.user_id = user_id
        self.reason = reason
        self.detail = detail
        message = f"Ledger integrity violation ({reason})"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message=message, code="DATA_INTEGRITY_ERROR", status_code=500)


class NotFoundError(AppError):
    """Raised when a requested resource does not exist."""

    def __init__(self, resource: str) -> None:
        super().__init__(message=f"{resource} not found", code="NOT_FOUND", status_code=404)


class ForbiddenError(AppError):
    """Raised when the user lacks permission for the action."""

    def __init__(self, reason: str = "You don't have permission") -> None:
        super().__init__(message=reason, code="FORBIDDEN", status_code=403)


class ConflictError(AppError):
    """Raised on duplicate/conflicting operations."""

    def __init__(self, reason: str, code: str = "CONFLICT") -> None:
        super().__init__(message=reason, code=code, status_code=409)


class UnauthorizedError(AppError):
    """Raised when the caller is not authenticated."""

    def __init__(self, reason: str = "Unauthorized") -> None:
        super().__init__(message=reason, code="UNAUTHORIZED", status_code=401)
