from __future__ import annotations

import argparse
import asyncio

from marketcms.services.cache import get_cache


DEFAULT_PATTERNS = (
    "reports:*",
    "report:*",
    "blogs:*",
    "blog:*",
    "press_releases:*",
    "press_release:*",
    "categories:*",
    "forms:*",
    "dashboard:*",
)


async def clear(patterns: list[str]) -> None:
    # Sessions, CSRF tokens and rate-limit counters are left alone unless named.
    cache = get_cache()
    for pattern in patterns:
        deleted = await cache.delete_pattern(pattern)
        print(f"pattern={pattern} deleted={deleted}")


def main() -> None:
    parser = argparse.ArgumentParser(description="Purge cached API responses")
    parser.add_argument("patterns", nargs="*", help="Glob patterns to purge (defaults to content caches)")
    args = parser.parse_args()
    asyncio.run(clear(args.patterns or list(DEFAULT_PATTERNS)))


if __name__ == "__main__":
    main()
