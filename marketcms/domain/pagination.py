from __future__ import annotations

import math


DEFAULT_PAGE = 1
DEFAULT_LIMIT = 20
MAX_LIMIT = 100


def normalize_pagination(page: int | None, limit: int | None) -> tuple[int, int]:
    # Out-of-range values are clamped rather than rejected.
    resolved_page = page if page is not None and page >= 1 else DEFAULT_PAGE
    resolved_limit = limit if limit is not None and 1 <= limit <= MAX_LIMIT else DEFAULT_LIMIT
    return resolved_page, resolved_limit


def page_offset(page: int, limit: int) -> int:
    return (page - 1) * limit


def total_pages(total: int, limit: int) -> int:
    if limit <= 0:
        return 0
    return int(math.ceil(total / limit))
