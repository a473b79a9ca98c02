from __future__ import annotations

from marketcms.services.slugs import MAX_SLUG_LENGTH, is_valid_slug, slugify


def test_slugify_lowercases_and_hyphenates() -> None:
    assert slugify("Global Oncology Drugs Market 2026") == "global-oncology-drugs-market-2026"
    assert slugify("  Cardio   & Renal: Outlook!  ") == "cardio-renal-outlook"
    assert slugify("--Already--hyphenated--") == "already-hyphenated"


def test_slugify_truncates_without_trailing_hyphen() -> None:
    slug = slugify("a" * (MAX_SLUG_LENGTH - 1) + " b")
    assert len(slug) <= MAX_SLUG_LENGTH
    assert not slug.endswith("-")


def test_slug_validation() -> None:
    assert is_valid_slug("oncology-2026")
    assert not is_valid_slug("Oncology")
    assert not is_valid_slug("double--hyphen")
    assert not is_valid_slug("-leading")
    assert not is_valid_slug("")
