from __future__ import annotations

import re


MAX_SLUG_LENGTH = 250

_WHITESPACE = re.compile(r"\s+")
_UNSAFE = re.compile(r"[^a-z0-9-]")
_REPEATED_HYPHENS = re.compile(r"-{2,}")
_SLUG_PATTERN = re.compile(r"^[a-z0-9]+(?:-[a-z0-9]+)*$")


def slugify(title: str) -> str:
    slug = _WHITESPACE.sub("-", title.strip().lower())
    slug = _UNSAFE.sub("", slug)
    slug = _REPEATED_HYPHENS.sub("-", slug).strip("-")
    return slug[:MAX_SLUG_LENGTH].rstrip("-")


def is_valid_slug(slug: str) -> bool:
    return len(slug) <= MAX_SLUG_LENGTH and bool(_SLUG_PATTERN.match(slug))
