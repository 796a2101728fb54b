"""Evidence provider surfacing recently changed files from a snapshot diff."""

from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import Sequence
from typing import List

from ..schema import (
    ChangeType,
    Evidence,
    EvidenceMetadata,
    FileDiff,
    ProviderQueryOptions,
    ProviderType,
    Signal,
    SignalType,
)
from ..tools.vcs import SnapshotService
from .base import estimate_tokens, limit_results, normalize_path, passes_filters

LOGGER = logging.getLogger(__name__)

DIFF_WEIGHT = 100.0


class DiffProvider:
    """Evidence provider wrapping a versioned-snapshot diff service.

    Recent edits are the most trusted evidence, hence the highest base weight.
    All failures degrade to an empty result; nothing is raised to the caller.
    """

    type = ProviderType.DIFF
    name = "Git Diff"

    def __init__(
        self,
        service: SnapshotService,
        *,
        snapshot_hash: str | None = None,
        base_weight: float = DIFF_WEIGHT,
    ) -> None:
        self._service = service
        self._snapshot_hash = snapshot_hash
        self.base_weight = base_weight

    @property
    def snapshot_hash(self) -> str | None:
        return self._snapshot_hash

    def set_snapshot_hash(self, snapshot_hash: str | None) -> None:
        """Point future queries at ``snapshot_hash``; validity is checked by ``is_available``."""
        self._snapshot_hash = snapshot_hash

    async def is_available(self) -> bool:
        snapshot = self._snapshot_hash
        if not snapshot:
            return False
        try:
            await asyncio.to_thread(self._service.patch, snapshot)
        except Exception as error:
            LOGGER.debug("Diff backend probe failed for %s: %s", snapshot, error)
            return False
        return True

    async def query(
        self,
        signals: Sequence[Signal],
        options: ProviderQueryOptions | None = None,
    ) -> List[Evidence]:
        snapshot = self._snapshot_hash
        if not snapshot:
            return []

        try:
            file_diffs = await asyncio.to_thread(self._service.diff_full, snapshot)
        except Exception as error:
            LOGGER.warning("Failed to load diff against snapshot %s: %s", snapshot, error)
            return []

        evidence: List[Evidence] = []
        for file_diff in file_diffs:
            if not passes_filters(file_diff.path, options):
                continue
            matched = self._match_signals(file_diff, signals)
            if signals and not matched:
                continue
            evidence.append(self._to_evidence(file_diff, matched or tuple(signals)))

        return limit_results(evidence, options)

    # ----------------------------------------------------------------- matching
    def _match_signals(self, file_diff: FileDiff, signals: Sequence[Signal]) -> tuple[Signal, ...]:
        content = _content_for(file_diff)
        matched: List[Signal] = []
        for signal in signals:
            if signal.type is SignalType.PATH:
                hit = _matches_path(file_diff, signal.value)
            elif signal.type is SignalType.STACK_FRAME:
                frame_path = (signal.metadata or {}).get("path") or signal.value
                hit = isinstance(frame_path, str) and _matches_path(file_diff, frame_path)
            elif signal.type is SignalType.SYMBOL:
                hit = _contains_word(content, signal.value)
            elif signal.type is SignalType.ERROR_TOKEN:
                hit = bool(signal.value) and signal.value.lower() in content.lower()
            else:
                hit = False
            if hit:
                matched.append(signal)
        return tuple(matched)

    def _to_evidence(self, file_diff: FileDiff, matched: tuple[Signal, ...]) -> Evidence:
        content = _content_for(file_diff)
        line_count = max(1, len(content.splitlines()))
        if file_diff.type == "added":
            change_type = ChangeType.ADDED
        elif file_diff.type == "deleted":
            change_type = ChangeType.DELETED
        else:
            change_type = ChangeType.MODIFIED
        return Evidence(
            provider=ProviderType.DIFF,
            path=file_diff.path,
            range=(1, line_count),
            content=content,
            tokens=estimate_tokens(content),
            base_score=self.base_weight,
            matched_signals=matched,
            metadata=EvidenceMetadata(change_type=change_type),
        )


def _content_for(file_diff: FileDiff) -> str:
    if file_diff.type == "deleted":
        return file_diff.before_content or ""
    return file_diff.after_content or file_diff.before_content or ""


def _matches_path(file_diff: FileDiff, value: str) -> bool:
    candidates = [file_diff.path]
    if file_diff.old_path:
        candidates.append(file_diff.old_path)
    needle = normalize_path(value).strip()
    if not needle:
        return False
    for candidate in candidates:
        normalized = normalize_path(candidate)
        if normalized == needle or normalized.endswith(f"/{needle}") or needle in normalized:
            return True
    return False


def _contains_word(content: str, word: str) -> bool:
    if not word or not content:
        return False
    pattern = re.compile(rf"(?<![\w$]){re.escape(word)}(?![\w$])")
    return pattern.search(content) is not None


__all__ = ["DIFF_WEIGHT", "DiffProvider"]
