"""Provider contract and helpers shared by every evidence provider."""

from __future__ import annotations

import math
import re
from collections.abc import Iterable, Sequence
from functools import lru_cache
from typing import List, Protocol, runtime_checkable

from ..schema import Evidence, ProviderQueryOptions, ProviderType, Signal

TOKENS_PER_CHAR = 0.25


@runtime_checkable
class EvidenceProvider(Protocol):
    """Capability implemented by the diff, lsp and search providers."""

    type: ProviderType
    name: str
    base_weight: float

    async def is_available(self) -> bool:
        ...

    async def query(
        self,
        signals: Sequence[Signal],
        options: ProviderQueryOptions | None = None,
    ) -> List[Evidence]:
        ...


def estimate_tokens(content: str) -> int:
    """Approximate the token count of ``content`` (a quarter token per character)."""
    return math.ceil(len(content) * TOKENS_PER_CHAR)


def normalize_path(path: str) -> str:
    """Slash-normalise and lowercase ``path`` for case-insensitive matching."""
    return path.replace("\\", "/").lower()


@lru_cache(maxsize=256)
def _compile_glob(pattern: str) -> re.Pattern[str]:
    parts = [re.escape(part) for part in pattern.split("*")]
    return re.compile(".*".join(parts))


def matches_pattern(path: str, pattern: str) -> bool:
    """Return ``True`` when ``path`` matches a single include/exclude pattern.

    ``*`` expands to any run of characters and the expanded pattern must match
    the whole path or a trailing run of its segments. Patterns without ``*``
    match as plain substrings anywhere in the normalised path.
    """

    normalized_path = normalize_path(path)
    normalized_pattern = normalize_path(pattern).strip()
    if not normalized_pattern:
        return False
    if "*" not in normalized_pattern:
        return normalized_pattern in normalized_path

    regex = _compile_glob(normalized_pattern)
    if regex.fullmatch(normalized_path):
        return True
    segments = normalized_path.split("/")
    for index in range(1, len(segments)):
        if regex.fullmatch("/".join(segments[index:])):
            return True
    return False


def matches_patterns(path: str, patterns: Iterable[str]) -> bool:
    """Return ``True`` when ``path`` matches any of ``patterns``."""
    return any(matches_pattern(path, pattern) for pattern in patterns)


def passes_filters(path: str, options: ProviderQueryOptions | None) -> bool:
    """Apply the include/exclude filters of ``options`` to ``path``."""
    if options is None:
        return True
    if options.include_patterns and not matches_patterns(path, options.include_patterns):
        return False
    if options.exclude_patterns and matches_patterns(path, options.exclude_patterns):
        return False
    return True


def apply_token_budget(evidence: Sequence[Evidence], max_tokens: int) -> List[Evidence]:
    """Trim ``evidence`` to ``max_tokens`` while preserving order.

    Items are taken in order while the running total stays within the budget;
    an item that does not fit is skipped and later, smaller items may still be
    taken. An oversized first candidate is returned on its own, so a positive
    budget never yields an empty list for non-empty input.
    """

    if max_tokens <= 0:
        return []

    result: List[Evidence] = []
    total = 0
    for item in evidence:
        if total + item.tokens > max_tokens:
            if not result:
                result.append(item)
                break
            continue
        result.append(item)
        total += item.tokens
    return result


def limit_results(
    evidence: Sequence[Evidence],
    options: ProviderQueryOptions | None,
    *,
    default_max_results: int | None = None,
) -> List[Evidence]:
    """Apply ``max_results`` and then ``max_tokens`` from ``options``."""
    limited = list(evidence)
    max_results = options.max_results if options and options.max_results is not None else default_max_results
    if max_results is not None:
        limited = limited[:max_results]
    if options is not None and options.max_tokens is not None:
        limited = apply_token_budget(limited, options.max_tokens)
    return limited


def deduplicate_by_range(evidence: Iterable[Evidence]) -> List[Evidence]:
    """Drop evidence repeating an earlier ``path:start-end`` key."""
    seen: set[str] = set()
    result: List[Evidence] = []
    for item in evidence:
        key = item.range_key
        if key in seen:
            continue
        seen.add(key)
        result.append(item)
    return result


__all__ = [
    "EvidenceProvider",
    "TOKENS_PER_CHAR",
    "apply_token_budget",
    "deduplicate_by_range",
    "estimate_tokens",
    "limit_results",
    "matches_pattern",
    "matches_patterns",
    "normalize_path",
    "passes_filters",
]
