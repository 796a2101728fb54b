"""Code search backends consumed by the search evidence provider."""

from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Protocol, Sequence

from .vcs import GitError, GitRepository

LOGGER = logging.getLogger(__name__)

__all__ = [
    "GitGrepSearch",
    "SearchError",
    "SearchFacade",
    "SearchMatch",
    "SearchOptions",
    "SearchResult",
]


class SearchError(RuntimeError):
    """Raised when a search backend cannot complete a query."""


@dataclass(slots=True)
class SearchOptions:
    """Literal search request issued for a single signal."""

    query: str
    whole_word: bool = False
    case_sensitive: bool = False
    globs: tuple[str, ...] = ()
    excludes: tuple[str, ...] = ()
    context_lines: int = 0
    max_results: Optional[int] = None


@dataclass(slots=True)
class SearchMatch:
    """Single matching line together with its surrounding context."""

    file: str
    line: int
    content: str
    before: List[str] = field(default_factory=list)
    after: List[str] = field(default_factory=list)


@dataclass(slots=True)
class SearchResult:
    """Matches returned by one backend for one query."""

    matches: List[SearchMatch]
    backend: str
    truncated: bool = False


class SearchFacade(Protocol):
    """Search backend contract used by :class:`SearchProvider`."""

    def available_backends(self) -> List[str]:
        ...

    def search(self, options: SearchOptions) -> SearchResult:
        ...


class GitGrepSearch:
    """Search facade running ``git grep`` over the tracked files of a repository."""

    BACKEND = "git-grep"

    def __init__(self, repo: GitRepository) -> None:
        self._repo = repo

    @classmethod
    def for_path(cls, root: Path | str | None = None) -> "GitGrepSearch":
        return cls(GitRepository.discover(root))

    def available_backends(self) -> List[str]:
        if shutil.which("git") is None:
            return []
        probe = self._repo.git("rev-parse", "--git-dir", check=False)
        return [self.BACKEND] if probe.returncode == 0 else []

    def search(self, options: SearchOptions) -> SearchResult:
        if not options.query:
            return SearchResult(matches=[], backend=self.BACKEND)

        args: List[str] = ["grep", "-n", "-I", "--full-name", "--null", "-F"]
        if options.whole_word:
            args.append("-w")
        if not options.case_sensitive:
            args.append("-i")
        args.extend(["-e", options.query, "--"])
        args.extend(_pathspecs(options.globs, options.excludes))

        try:
            result = self._repo.git(*args, check=False)
        except GitError as error:
            raise SearchError(str(error)) from error
        # git grep exits with 1 when nothing matched
        if result.returncode == 1:
            return SearchResult(matches=[], backend=self.BACKEND)
        if result.returncode != 0:
            message = result.stderr.strip() or "unknown git grep error"
            raise SearchError(f"git grep failed: {message}")

        matches: List[SearchMatch] = []
        truncated = False
        for raw in result.stdout.splitlines():
            parsed = _parse_grep_line(raw)
            if parsed is None:
                continue
            if options.max_results is not None and len(matches) >= options.max_results:
                truncated = True
                break
            matches.append(SearchMatch(file=parsed[0], line=parsed[1], content=parsed[2]))

        if options.context_lines > 0 and matches:
            self._attach_context(matches, options.context_lines)
        LOGGER.debug("git grep %r returned %d match(es)", options.query, len(matches))
        return SearchResult(matches=matches, backend=self.BACKEND, truncated=truncated)

    def _attach_context(self, matches: Sequence[SearchMatch], context_lines: int) -> None:
        cache: Dict[str, Optional[List[str]]] = {}
        for match in matches:
            if match.file not in cache:
                cache[match.file] = _read_lines(self._repo.root / match.file)
            lines = cache[match.file]
            if not lines:
                continue
            index = match.line - 1
            match.before = lines[max(0, index - context_lines) : index]
            match.after = lines[index + 1 : index + 1 + context_lines]


def _pathspecs(globs: Sequence[str], excludes: Sequence[str]) -> List[str]:
    specs: List[str] = []
    for pattern in globs:
        specs.append(pattern if "*" in pattern else f"*{pattern}*")
    for pattern in excludes:
        spec = pattern if "*" in pattern else f"*{pattern}*"
        specs.append(f":(exclude){spec}")
    if excludes and not globs:
        specs.insert(0, ".")
    return specs


def _parse_grep_line(raw: str) -> tuple[str, int, str] | None:
    if "\0" not in raw:
        return None
    path, rest = raw.split("\0", 1)
    if "\0" in rest:
        number, content = rest.split("\0", 1)
    elif ":" in rest:
        number, content = rest.split(":", 1)
    else:
        return None
    try:
        line = int(number)
    except ValueError:
        return None
    return path, line, content


def _read_lines(path: Path) -> List[str] | None:
    try:
        return path.read_text(encoding="utf-8", errors="replace").splitlines()
    except OSError:
        return None
