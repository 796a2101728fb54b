"""Evidence providers and the helpers they share."""

from .base import (
    EvidenceProvider,
    apply_token_budget,
    deduplicate_by_range,
    estimate_tokens,
    limit_results,
    matches_pattern,
    passes_filters,
)
from .diff_provider import DiffProvider
from .lsp_provider import LspHub, LspProvider
from .search_provider import SearchProvider

__all__ = [
    "DiffProvider",
    "EvidenceProvider",
    "LspHub",
    "LspProvider",
    "SearchProvider",
    "apply_token_budget",
    "deduplicate_by_range",
    "estimate_tokens",
    "limit_results",
    "matches_pattern",
    "passes_filters",
]
