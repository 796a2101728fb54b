from __future__ import annotations

import subprocess
import sys
import textwrap
from dataclasses import dataclass
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"

if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))


@dataclass(slots=True)
class TinyRepo:
    """Fixture payload representing the synthetic repository under test."""

    root: Path

    def git(self, *cmd: str) -> str:
        completed = subprocess.run(
            ["git", *cmd],
            cwd=self.root,
            check=True,
            capture_output=True,
            text=True,
        )
        return completed.stdout

    def write(self, relative: str, content: str) -> Path:
        path = self.root / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
        return path

    def commit_all(self, message: str) -> str:
        self.git("add", "--all")
        self.git("commit", "-m", message)
        return self.git("rev-parse", "HEAD").strip()


@pytest.fixture()
def tiny_repo(tmp_path: Path) -> TinyRepo:
    """Create a tiny git repository with a committed Python package."""

    repo = TinyRepo(root=tmp_path / "tiny-repo")
    repo.root.mkdir()
    repo.git("init")
    repo.git("config", "user.email", "agent@example.com")
    repo.git("config", "user.name", "Context Evidence")

    repo.write(
        "src/tiny_app/__init__.py",
        textwrap.dedent(
            """
            \"\"\"Tiny app package used for retrieval tests.\"\"\"

            from .auth import login

            __all__ = ["login"]
            """
        ).lstrip(),
    )
    repo.write(
        "src/tiny_app/auth.py",
        textwrap.dedent(
            """
            from __future__ import annotations


            class SessionStore:
                def __init__(self) -> None:
                    self.sessions = {}

                def open_session(self, user: str) -> str:
                    token = f"token-{user}"
                    self.sessions[token] = user
                    return token


            def login(user: str, password: str) -> str:
                if not password:
                    raise ValueError("password required")
                return SessionStore().open_session(user)
            """
        ).lstrip(),
    )
    repo.write(
        "tests/test_auth.py",
        textwrap.dedent(
            """
            from tiny_app.auth import login


            def test_login_returns_token() -> None:
                assert login("ada", "secret") == "token-ada"
            """
        ).lstrip(),
    )
    repo.commit_all("Initial tiny repo state")
    return repo
