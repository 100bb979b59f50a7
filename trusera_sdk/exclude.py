from __future__ import annotations

import re
from collections.abc import Iterable


class ExcludeMatcher:
    """Ordered URL patterns whose matches bypass tracking and policy checks."""

    def __init__(self, patterns: Iterable[str] = ()) -> None:
        self._patterns: list[re.Pattern[str]] = [re.compile(pattern) for pattern in patterns]

    def __bool__(self) -> bool:
        return bool(self._patterns)

    @property
    def patterns(self) -> list[str]:
        return [pattern.pattern for pattern in self._patterns]

    def match(self, url: str) -> str | None:
        """Return the source of the first pattern found in ``url``."""
        for pattern in self._patterns:
            if pattern.search(url):
                return pattern.pattern
        return None

    def matches(self, url: str) -> bool:
        return self.match(url) is not None
