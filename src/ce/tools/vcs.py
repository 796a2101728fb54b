"""Minimal git helpers
The helpers below provide just enough structure to snapshot the working tree
and describe every change made since that snapshot, which is what the diff
evidence provider consumes.
"""

from __future__ import annotations

from pathlib import Path
from typing import List, Protocol, Sequence

import logging
import subprocess

from ..schema import FileDiff, Patch

LOGGER = logging.getLogger(__name__)


class GitError(RuntimeError):
    """Raised when a git command fails or the repository cannot be used."""


class SnapshotService(Protocol):
    """Versioned-snapshot diff backend consumed by :class:`DiffProvider`."""

    def diff_full(self, snapshot_hash: str) -> List[FileDiff]:
        ...

    def patch(self, snapshot_hash: str) -> Patch:
        ...


class GitRepository:
    """Lightweight wrapper around ``git`` commands."""

    def __init__(self, root: Path | str) -> None:
        self.root = Path(root).resolve()
        if not (self.root / ".git").exists():
            raise GitError(f"Not a git repository: {self.root}")

    @classmethod
    def discover(cls, start: Path | str | None = None) -> "GitRepository":
        """Locate the nearest git repository starting from ``start``."""

        path = Path(start or Path.cwd()).resolve()
        for candidate in (path, *path.parents):
            if (candidate / ".git").exists():
                return cls(candidate)
        raise GitError(f"Unable to locate a git repository from {path}")

    # ------------------------------------------------------------------ git IO
    def _run_git(self, args: Sequence[str], *, check: bool = True) -> subprocess.CompletedProcess[str]:
        command = ["git", *args]
        try:
            process = subprocess.run(
                command,
                cwd=self.root,
                capture_output=True,
                text=False,
                check=False,
            )
        except OSError as error:
            raise GitError(f"Unable to execute git: {error}") from error
        stdout = process.stdout.decode("utf-8", errors="replace") if process.stdout else ""
        stderr = process.stderr.decode("utf-8", errors="replace") if process.stderr else ""
        result = subprocess.CompletedProcess(process.args, process.returncode, stdout, stderr)
        if check and result.returncode != 0:
            message = result.stderr.strip() or result.stdout.strip() or "unknown git error"
            raise GitError(f"git {' '.join(args)} failed: {message}")
        return result

    def git(self, *args: str, check: bool = True) -> subprocess.CompletedProcess[str]:
        """Execute ``git`` with ``args`` relative to the repository root."""

        return self._run_git(list(args), check=check)

    # ------------------------------------------------------------- repo state
    def current_head(self) -> str | None:
        """Return the commit ``HEAD`` points at, or ``None`` for an unborn branch."""

        result = self._run_git(["rev-parse", "--verify", "HEAD"], check=False)
        if result.returncode != 0:
            return None
        head = result.stdout.strip()
        return head or None

    def untracked_files(self) -> List[str]:
        """Return untracked, non-ignored paths relative to the repository root."""

        result = self._run_git(["ls-files", "--others", "--exclude-standard", "-z"], check=True)
        return [entry for entry in result.stdout.split("\0") if entry]

    def show_file(self, revision: str, path: str) -> str | None:
        """Return the content of ``path`` at ``revision`` or ``None`` when absent."""

        result = self._run_git(["show", f"{revision}:{path}"], check=False)
        if result.returncode != 0:
            return None
        return result.stdout

    def read_worktree_file(self, path: str) -> str | None:
        """Return the working-tree content of ``path`` or ``None`` when unreadable."""

        target = self.root / path
        try:
            return target.read_text(encoding="utf-8", errors="replace")
        except OSError:
            return None

    # ----------------------------------------------------------- diff helpers
    def name_status(self, revision: str) -> List[tuple[str, str, str | None]]:
        """Return ``(status, path, old_path)`` entries for changes since ``revision``.

        Renames are detected (``-M``) and reported with their original path.
        """

        result = self._run_git(["diff", "--name-status", "-M", "-z", revision, "--"], check=True)
        tokens = [token for token in result.stdout.split("\0") if token]
        entries: List[tuple[str, str, str | None]] = []
        index = 0
        while index < len(tokens):
            status = tokens[index]
            code = status[:1]
            if code in {"R", "C"}:
                if index + 2 >= len(tokens):
                    break
                old_path, new_path = tokens[index + 1], tokens[index + 2]
                entries.append((code, new_path, old_path))
                index += 3
                continue
            if index + 1 >= len(tokens):
                break
            entries.append((code, tokens[index + 1], None))
            index += 2
        return entries


class GitSnapshotService:
    """Snapshot diff service backed by the git CLI.

    Snapshots are commit-ish references: ``track`` records the working tree via
    ``git stash create`` (which does not touch the stash list) and falls back to
    ``HEAD`` when nothing is pending. ``diff_full`` compares a snapshot with the
    current working tree.
    """

    def __init__(self, repo: GitRepository, *, include_untracked: bool = True) -> None:
        self._repo = repo
        self._include_untracked = include_untracked

    @classmethod
    def for_path(cls, root: Path | str | None = None, **kwargs: bool) -> "GitSnapshotService":
        return cls(GitRepository.discover(root), **kwargs)

    @property
    def repo(self) -> GitRepository:
        return self._repo

    def track(self) -> str:
        """Record the current working tree and return its snapshot hash."""

        created = self._repo.git("stash", "create", check=False)
        snapshot = created.stdout.strip() if created.returncode == 0 else ""
        if snapshot:
            return snapshot
        head = self._repo.current_head()
        if head is None:
            raise GitError("Cannot snapshot a repository without commits.")
        return head

    def patch(self, snapshot_hash: str) -> Patch:
        result = self._repo.git("diff", "--name-only", "-z", snapshot_hash, "--")
        files = tuple(entry for entry in result.stdout.split("\0") if entry)
        return Patch(hash=snapshot_hash, files=files)

    def diff_full(self, snapshot_hash: str) -> List[FileDiff]:
        diffs: List[FileDiff] = []
        seen: set[str] = set()
        for code, path, old_path in self._repo.name_status(snapshot_hash):
            seen.add(path)
            if code == "A":
                diffs.append(
                    FileDiff(path=path, type="added", after_content=self._repo.read_worktree_file(path))
                )
            elif code == "D":
                diffs.append(
                    FileDiff(
                        path=path,
                        type="deleted",
                        before_content=self._repo.show_file(snapshot_hash, path),
                    )
                )
            elif code in {"R", "C"}:
                source = old_path or path
                diffs.append(
                    FileDiff(
                        path=path,
                        old_path=old_path,
                        type="renamed" if code == "R" else "added",
                        before_content=self._repo.show_file(snapshot_hash, source),
                        after_content=self._repo.read_worktree_file(path),
                    )
                )
            else:
                diffs.append(
                    FileDiff(
                        path=path,
                        type="modified",
                        before_content=self._repo.show_file(snapshot_hash, path),
                        after_content=self._repo.read_worktree_file(path),
                    )
                )

        if self._include_untracked:
            for path in self._repo.untracked_files():
                if path in seen:
                    continue
                diffs.append(
                    FileDiff(path=path, type="added", after_content=self._repo.read_worktree_file(path))
                )

        LOGGER.debug("Computed %d file diff(s) against %s", len(diffs), snapshot_hash)
        return diffs


__all__ = ["GitError", "GitRepository", "GitSnapshotService", "SnapshotService"]
