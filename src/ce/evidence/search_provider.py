"""Evidence provider backed by literal code search."""

from __future__ import annotations

import asyncio
import logging
import math
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List

from ..schema import Evidence, EvidenceMetadata, ProviderQueryOptions, ProviderType, Signal, SignalType
from ..tools.search import SearchFacade, SearchMatch, SearchOptions, SearchResult
from .base import estimate_tokens, limit_results, passes_filters

LOGGER = logging.getLogger(__name__)

SEARCH_WEIGHT = 10.0
DEFAULT_MAX_RESULTS_PER_SIGNAL = 10
DEFAULT_CONTEXT_LINES = 3
MIN_SYMBOL_LENGTH = 2
MIN_ERROR_TOKEN_LENGTH = 3


@dataclass(slots=True)
class _MatchRange:
    start_line: int
    end_line: int
    matches: List[SearchMatch] = field(default_factory=list)


class SearchProvider:
    """Evidence provider turning symbol and error-token signals into search hits.

    Symbols are searched as whole words, case-sensitively; error tokens as
    case-insensitive literals. Path signals are left to the diff provider.
    """

    type = ProviderType.SEARCH
    name = "Code Search"
    base_weight = SEARCH_WEIGHT

    def __init__(
        self,
        workspace_root: Path | str,
        facade: SearchFacade,
        *,
        include_patterns: Sequence[str] = (),
        exclude_patterns: Sequence[str] = (),
        max_results_per_signal: int = DEFAULT_MAX_RESULTS_PER_SIGNAL,
        context_lines: int = DEFAULT_CONTEXT_LINES,
    ) -> None:
        self._workspace_root = Path(workspace_root)
        self._facade = facade
        self._include_patterns = tuple(include_patterns)
        self._exclude_patterns = tuple(exclude_patterns)
        self._max_results_per_signal = max_results_per_signal
        self._context_lines = context_lines

    async def is_available(self) -> bool:
        try:
            backends = await asyncio.to_thread(self._facade.available_backends)
        except Exception as error:
            LOGGER.debug("Search backend probe failed: %s", error)
            return False
        return len(backends) > 0

    async def query(
        self,
        signals: Sequence[Signal],
        options: ProviderQueryOptions | None = None,
    ) -> List[Evidence]:
        searchable = _searchable_signals(signals)
        if not searchable:
            return []

        includes = _merge_patterns(self._include_patterns, options.include_patterns if options else ())
        excludes = _merge_patterns(self._exclude_patterns, options.exclude_patterns if options else ())
        context_lines = (
            options.context_lines if options is not None and options.context_lines is not None else self._context_lines
        )
        filters = ProviderQueryOptions(include_patterns=includes, exclude_patterns=excludes)

        by_key: Dict[str, Evidence] = {}
        for signal in searchable:
            is_symbol = signal.type is SignalType.SYMBOL
            request = SearchOptions(
                query=signal.value,
                whole_word=is_symbol,
                case_sensitive=is_symbol,
                globs=includes,
                excludes=excludes,
                context_lines=context_lines,
                max_results=self._max_results_per_signal,
            )
            try:
                result = await asyncio.to_thread(self._facade.search, request)
            except Exception as error:
                LOGGER.warning("Search for %r failed: %s", signal.value, error)
                continue

            for item in self._to_evidence(result, signal, context_lines, filters):
                existing = by_key.get(item.range_key)
                by_key[item.range_key] = item if existing is None else _merge(existing, item)

        ranked = sorted(by_key.values(), key=lambda item: item.base_score, reverse=True)
        return limit_results(ranked, options)

    def _to_evidence(
        self,
        result: SearchResult,
        signal: Signal,
        context_lines: int,
        filters: ProviderQueryOptions,
    ) -> List[Evidence]:
        by_file: Dict[str, List[SearchMatch]] = {}
        for match in result.matches:
            if not passes_filters(match.file, filters):
                continue
            by_file.setdefault(match.file, []).append(match)

        evidence: List[Evidence] = []
        for path, matches in by_file.items():
            for match_range in _merge_ranges(matches, context_lines):
                content = _range_content(match_range)
                match_count = len(match_range.matches)
                evidence.append(
                    Evidence(
                        provider=ProviderType.SEARCH,
                        path=path,
                        range=(match_range.start_line, match_range.end_line),
                        content=content,
                        tokens=estimate_tokens(content),
                        base_score=self.base_weight * math.log2(match_count + 1),
                        matched_signals=(signal,),
                        metadata=EvidenceMetadata(match_count=match_count),
                    )
                )
        return evidence


def _searchable_signals(signals: Sequence[Signal]) -> List[Signal]:
    searchable: List[Signal] = []
    for signal in signals:
        if signal.type is SignalType.SYMBOL and len(signal.value) >= MIN_SYMBOL_LENGTH:
            searchable.append(signal)
        elif signal.type is SignalType.ERROR_TOKEN and len(signal.value) >= MIN_ERROR_TOKEN_LENGTH:
            searchable.append(signal)
    return searchable


def _merge_patterns(base: Sequence[str], extra: Sequence[str]) -> tuple[str, ...]:
    merged = list(base)
    for pattern in extra:
        if pattern not in merged:
            merged.append(pattern)
    return tuple(merged)


def _merge_ranges(matches: Sequence[SearchMatch], context_lines: int) -> List[_MatchRange]:
    ordered = sorted(matches, key=lambda match: match.line)
    ranges: List[_MatchRange] = []
    for match in ordered:
        start = max(1, match.line - context_lines)
        end = match.line + context_lines
        if ranges and start <= ranges[-1].end_line + 1:
            current = ranges[-1]
            current.end_line = max(current.end_line, end)
            current.matches.append(match)
        else:
            ranges.append(_MatchRange(start_line=start, end_line=end, matches=[match]))
    return ranges


def _range_content(match_range: _MatchRange) -> str:
    matches = match_range.matches
    lines: List[str] = list(matches[0].before)
    previous: SearchMatch | None = None
    for match in matches:
        if previous is not None:
            if match.line <= previous.line:
                continue
            # lines between two matches come from the earlier match's trailing context
            lines.extend(previous.after[: match.line - previous.line - 1])
        lines.append(match.content)
        previous = match
    if previous is not None:
        lines.extend(previous.after)
    return "\n".join(lines)


def _merge(existing: Evidence, item: Evidence) -> Evidence:
    merged_signals = list(existing.matched_signals)
    for signal in item.matched_signals:
        if not any(signal.same_fact(known) for known in merged_signals):
            merged_signals.append(signal)
    match_count = (existing.metadata.match_count or 1) + (item.metadata.match_count or 1)
    return existing.model_copy(
        update={
            "base_score": max(existing.base_score, item.base_score),
            "matched_signals": tuple(merged_signals),
            "metadata": existing.metadata.model_copy(update={"match_count": match_count}),
        }
    )


__all__ = ["SEARCH_WEIGHT", "SearchProvider"]
