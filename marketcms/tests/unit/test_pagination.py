from __future__ import annotations

from marketcms.domain.pagination import DEFAULT_LIMIT, MAX_LIMIT, normalize_pagination, page_offset, total_pages


def test_defaults_and_clamping() -> None:
    assert normalize_pagination(None, None) == (1, DEFAULT_LIMIT)
    assert normalize_pagination(0, 0) == (1, DEFAULT_LIMIT)
    assert normalize_pagination(-3, MAX_LIMIT + 1) == (1, DEFAULT_LIMIT)
    assert normalize_pagination(4, MAX_LIMIT) == (4, MAX_LIMIT)


def test_offsets_and_page_counts() -> None:
    assert page_offset(1, 20) == 0
    assert page_offset(3, 20) == 40
    assert total_pages(0, 20) == 0
    assert total_pages(41, 20) == 3
    assert total_pages(40, 20) == 2
