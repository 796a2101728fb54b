from __future__ import annotations

import pytest

from ce.evidence.diff_provider import DiffProvider
from ce.schema import ChangeType, Signal, SignalType
from ce.tools.vcs import GitError, GitRepository, GitSnapshotService


def test_track_falls_back_to_head_on_clean_tree(tiny_repo) -> None:
    service = GitSnapshotService.for_path(tiny_repo.root)
    head = tiny_repo.git("rev-parse", "HEAD").strip()

    assert service.track() == head
    assert service.diff_full(head) == []
    assert service.patch(head).files == ()


def test_snapshot_service_exposes_only_structured_diffs(tiny_repo) -> None:
    service = GitSnapshotService.for_path(tiny_repo.root)

    assert callable(service.patch) and callable(service.diff_full)
    assert not hasattr(service, "diff")
    assert not hasattr(service.repo, "diff")


def test_diff_full_reports_each_change_kind(tiny_repo) -> None:
    service = GitSnapshotService.for_path(tiny_repo.root)
    snapshot = service.track()

    tiny_repo.write("src/tiny_app/auth.py", "def login(user: str) -> str:\n    return user\n")
    (tiny_repo.root / "tests" / "test_auth.py").unlink()
    tiny_repo.write("src/tiny_app/billing.py", "def charge() -> None:\n    pass\n")

    diffs = {diff.path: diff for diff in service.diff_full(snapshot)}

    assert diffs["src/tiny_app/auth.py"].type == "modified"
    assert "SessionStore" in (diffs["src/tiny_app/auth.py"].before_content or "")
    assert diffs["src/tiny_app/auth.py"].after_content == "def login(user: str) -> str:\n    return user\n"
    assert diffs["tests/test_auth.py"].type == "deleted"
    assert "test_login_returns_token" in (diffs["tests/test_auth.py"].before_content or "")
    assert diffs["src/tiny_app/billing.py"].type == "added"
    assert "src/tiny_app/auth.py" in service.patch(snapshot).files


def test_stash_snapshot_captures_pending_edits(tiny_repo) -> None:
    tiny_repo.write("src/tiny_app/auth.py", "PENDING = True\n")
    service = GitSnapshotService.for_path(tiny_repo.root)

    snapshot = service.track()
    head = tiny_repo.git("rev-parse", "HEAD").strip()

    assert snapshot != head
    assert service.diff_full(snapshot) == []
    # the stash list is untouched
    assert tiny_repo.git("stash", "list").strip() == ""


def test_renames_keep_the_old_path(tiny_repo) -> None:
    service = GitSnapshotService.for_path(tiny_repo.root)
    snapshot = service.track()
    tiny_repo.git("mv", "src/tiny_app/auth.py", "src/tiny_app/authentication.py")

    diffs = service.diff_full(snapshot)

    renamed = [diff for diff in diffs if diff.type == "renamed"]
    assert len(renamed) == 1
    assert renamed[0].path == "src/tiny_app/authentication.py"
    assert renamed[0].old_path == "src/tiny_app/auth.py"


def test_unknown_snapshot_raises_git_error(tiny_repo) -> None:
    service = GitSnapshotService.for_path(tiny_repo.root)

    with pytest.raises(GitError):
        service.diff_full("0" * 40)


def test_discover_outside_repository_fails(tmp_path) -> None:
    with pytest.raises(GitError):
        GitRepository.discover(tmp_path)


@pytest.mark.asyncio
async def test_diff_provider_over_real_repository(tiny_repo) -> None:
    service = GitSnapshotService.for_path(tiny_repo.root)
    provider = DiffProvider(service, snapshot_hash=service.track())
    tiny_repo.write(
        "src/tiny_app/auth.py",
        (tiny_repo.root / "src" / "tiny_app" / "auth.py").read_text(encoding="utf-8") + "\n# touched\n",
    )

    assert await provider.is_available() is True
    evidence = await provider.query([Signal(type=SignalType.SYMBOL, value="SessionStore")])

    assert [item.path for item in evidence] == ["src/tiny_app/auth.py"]
    assert evidence[0].metadata.change_type is ChangeType.MODIFIED
