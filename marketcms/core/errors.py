from __future__ import annotations


class MarketCMSError(Exception):
    """Base error for the content API."""

    def __init__(self, message: str = "") -> None:
        super().__init__(message)
        self.message = message


class BadRequestError(MarketCMSError):
    """Malformed input or a failed precondition."""


class PasswordTooShortError(BadRequestError):
    """Plaintext password below the minimum length."""


class UnauthorizedError(MarketCMSError):
    """Missing, invalid or revoked credentials."""


class TokenExpiredError(UnauthorizedError):
    """Bearer token is past its expiry."""


class InvalidTokenError(UnauthorizedError):
    """Bearer token failed signature, issuer or kind checks."""


class ForbiddenError(MarketCMSError):
    """Authenticated principal lacks the required role or permission."""


class NotFoundError(MarketCMSError):
    """Entity is absent or soft-deleted."""


class DuplicateSlugError(MarketCMSError):
    """Slug collides with a live row of the same kind."""


class InvalidTransitionError(MarketCMSError):
    """Workflow action is not allowed from the current status."""

    def __init__(self, message: str, *, current: str, target: str) -> None:
        super().__init__(message)
        self.current = current
        self.target = target


class RateLimitedError(MarketCMSError):
    """Client exceeded the request budget for the current window."""

    def __init__(self, message: str, *, retry_after_s: int, headers: dict[str, str] | None = None) -> None:
        super().__init__(message)
        self.retry_after_s = retry_after_s
        self.headers = dict(headers or {})


class StorageError(MarketCMSError):
    """Persistence failed after the request was accepted."""


class UpstreamError(StorageError):
    """Image CDN request failed or returned an error payload."""


class InternalError(MarketCMSError):
    """Unexpected failure inside the core."""
