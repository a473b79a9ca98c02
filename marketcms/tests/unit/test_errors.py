from __future__ import annotations

import pytest

from marketcms.apps.api.errors import status_for_error
from marketcms.core.errors import (
    BadRequestError,
    DuplicateSlugError,
    ForbiddenError,
    InternalError,
    InvalidTokenError,
    InvalidTransitionError,
    MarketCMSError,
    NotFoundError,
    PasswordTooShortError,
    RateLimitedError,
    StorageError,
    TokenExpiredError,
    UpstreamError,
)


@pytest.mark.parametrize(
    ("error", "status_code"),
    [
        (BadRequestError("bad"), 400),
        (PasswordTooShortError("short"), 400),
        (TokenExpiredError("Token has expired"), 401),
        (InvalidTokenError("Invalid token"), 401),
        (ForbiddenError("no"), 403),
        (NotFoundError("missing"), 404),
        (DuplicateSlugError("taken"), 409),
        (InvalidTransitionError("nope", current="draft", target="published"), 400),
        (RateLimitedError("slow down", retry_after_s=5), 429),
        (UpstreamError("cdn"), 502),
        (StorageError("db"), 500),
        (InternalError("boom"), 500),
        (MarketCMSError("unknown"), 500),
    ],
)
def test_status_mapping(error: MarketCMSError, status_code: int) -> None:
    assert status_for_error(error) == status_code
