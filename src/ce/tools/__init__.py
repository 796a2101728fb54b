"""Backends wrapped by the evidence providers."""

from .search import GitGrepSearch, SearchError, SearchFacade, SearchMatch, SearchOptions, SearchResult
from .symbols import SymbolHub, SymbolRecord
from .vcs import GitError, GitRepository, GitSnapshotService, SnapshotService

__all__ = [
    "GitError",
    "GitGrepSearch",
    "GitRepository",
    "GitSnapshotService",
    "SearchError",
    "SearchFacade",
    "SearchMatch",
    "SearchOptions",
    "SearchResult",
    "SnapshotService",
    "SymbolHub",
    "SymbolRecord",
]
