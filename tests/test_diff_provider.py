from __future__ import annotations

from typing import List

import pytest

from ce.evidence.diff_provider import DiffProvider
from ce.schema import ChangeType, FileDiff, Patch, ProviderQueryOptions, Signal, SignalType
from ce.tools.vcs import GitError


class FakeSnapshotService:
    def __init__(self, diffs: List[FileDiff], *, fail: bool = False) -> None:
        self.diffs = diffs
        self.fail = fail
        self.calls: List[str] = []

    def diff_full(self, snapshot_hash: str) -> List[FileDiff]:
        self.calls.append(snapshot_hash)
        if self.fail:
            raise GitError("snapshot vanished")
        return list(self.diffs)

    def patch(self, snapshot_hash: str) -> Patch:
        if self.fail:
            raise GitError("snapshot vanished")
        return Patch(hash=snapshot_hash, files=tuple(diff.path for diff in self.diffs))


AUTH_DIFF = FileDiff(
    path="src/auth.ts",
    type="modified",
    before_content="export function login() {}\n",
    after_content="export function login(user) {\n  throw new TypeError('bad user');\n}\n",
)
README_DIFF = FileDiff(path="README.md", type="modified", after_content="# Project\n")


@pytest.mark.asyncio
async def test_path_signal_selects_matching_file() -> None:
    provider = DiffProvider(FakeSnapshotService([AUTH_DIFF, README_DIFF]), snapshot_hash="abc123")
    signal = Signal(type=SignalType.PATH, value="auth.ts")

    evidence = await provider.query([signal])

    assert len(evidence) == 1
    item = evidence[0]
    assert item.path == "src/auth.ts"
    assert item.range == (1, 3)
    assert item.base_score == 100
    assert item.metadata.change_type is ChangeType.MODIFIED
    assert item.matched_signals == (signal,)
    assert item.tokens == (len(item.content) + 3) // 4


@pytest.mark.asyncio
async def test_symbol_and_error_token_search_content() -> None:
    provider = DiffProvider(FakeSnapshotService([AUTH_DIFF, README_DIFF]), snapshot_hash="abc123")
    signals = [
        Signal(type=SignalType.SYMBOL, value="login"),
        Signal(type=SignalType.ERROR_TOKEN, value="typeerror"),
        Signal(type=SignalType.SYMBOL, value="log"),
    ]

    evidence = await provider.query(signals)

    assert [item.path for item in evidence] == ["src/auth.ts"]
    assert [signal.value for signal in evidence[0].matched_signals] == ["login", "typeerror"]


@pytest.mark.asyncio
async def test_no_signals_includes_every_changed_file() -> None:
    provider = DiffProvider(FakeSnapshotService([AUTH_DIFF, README_DIFF]), snapshot_hash="abc123")

    evidence = await provider.query([])

    assert {item.path for item in evidence} == {"src/auth.ts", "README.md"}
    assert all(item.matched_signals == () for item in evidence)


@pytest.mark.asyncio
async def test_unmatched_signals_yield_nothing() -> None:
    provider = DiffProvider(FakeSnapshotService([AUTH_DIFF]), snapshot_hash="abc123")

    evidence = await provider.query([Signal(type=SignalType.PATH, value="billing.py")])

    assert evidence == []


@pytest.mark.asyncio
async def test_deleted_and_renamed_files() -> None:
    deleted = FileDiff(path="src/legacy.py", type="deleted", before_content="def legacy_helper():\n    pass\n")
    renamed = FileDiff(
        path="src/new_name.py",
        type="renamed",
        old_path="src/old_name.py",
        before_content="x = 1\n",
        after_content="x = 2\n",
    )
    provider = DiffProvider(FakeSnapshotService([deleted, renamed]), snapshot_hash="abc123")

    evidence = await provider.query(
        [
            Signal(type=SignalType.SYMBOL, value="legacy_helper"),
            Signal(type=SignalType.PATH, value="old_name.py"),
        ]
    )

    by_path = {item.path: item for item in evidence}
    assert by_path["src/legacy.py"].metadata.change_type is ChangeType.DELETED
    assert "legacy_helper" in by_path["src/legacy.py"].content
    assert by_path["src/new_name.py"].metadata.change_type is ChangeType.MODIFIED


@pytest.mark.asyncio
async def test_stack_frame_matches_on_frame_path() -> None:
    provider = DiffProvider(FakeSnapshotService([AUTH_DIFF, README_DIFF]), snapshot_hash="abc123")
    frame = Signal(
        type=SignalType.STACK_FRAME,
        value="login",
        source="stack_trace",
        metadata={"path": "src/auth.ts", "line": 1, "depth": 0},
    )

    evidence = await provider.query([frame])

    assert [item.path for item in evidence] == ["src/auth.ts"]


@pytest.mark.asyncio
async def test_filters_and_limits_apply() -> None:
    diffs = [FileDiff(path=f"src/mod{index}.py", type="added", after_content="y" * 40) for index in range(4)]
    diffs.append(FileDiff(path="node_modules/pkg/index.js", type="added", after_content="z"))
    provider = DiffProvider(FakeSnapshotService(diffs), snapshot_hash="abc123")

    limited = await provider.query([], ProviderQueryOptions(max_results=3, exclude_patterns=("node_modules",)))
    budgeted = await provider.query([], ProviderQueryOptions(max_tokens=25, include_patterns=("*.py",)))

    assert [item.path for item in limited] == ["src/mod0.py", "src/mod1.py", "src/mod2.py"]
    assert [item.path for item in budgeted] == ["src/mod0.py", "src/mod1.py"]
    assert all(item.metadata.change_type is ChangeType.ADDED for item in limited)


@pytest.mark.asyncio
async def test_missing_snapshot_is_unavailable_and_empty() -> None:
    service = FakeSnapshotService([AUTH_DIFF])
    provider = DiffProvider(service)

    assert await provider.is_available() is False
    assert await provider.query([Signal(type=SignalType.PATH, value="auth.ts")]) == []
    assert service.calls == []

    provider.set_snapshot_hash("abc123")
    assert provider.snapshot_hash == "abc123"
    assert await provider.is_available() is True


@pytest.mark.asyncio
async def test_backend_failure_degrades_to_empty() -> None:
    provider = DiffProvider(FakeSnapshotService([AUTH_DIFF], fail=True), snapshot_hash="gone")

    assert await provider.is_available() is False
    assert await provider.query([Signal(type=SignalType.PATH, value="auth.ts")]) == []
