from __future__ import annotations

import shutil
import subprocess
from pathlib import Path

import pytest

from residue.config import get_settings


@pytest.fixture(autouse=True)
def isolated_home(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    for name in (
        "RESIDUE_WORKER_URL",
        "RESIDUE_TOKEN",
        "RESIDUE_LOG_LEVEL",
        "RESIDUE_LOCK_TIMEOUT",
        "RESIDUE_AGENT_COMMAND",
    ):
        monkeypatch.delenv(name, raising=False)
    get_settings.cache_clear()
    yield home
    get_settings.cache_clear()


def git(cwd: Path, *args: str) -> str:
    process = subprocess.run(["git", *args], cwd=str(cwd), capture_output=True, text=True, check=True)
    return process.stdout.strip()


@pytest.fixture
def git_repo(tmp_path: Path) -> Path:
    if shutil.which("git") is None:
        pytest.skip("git executable not available")
    repo = tmp_path / "repo"
    repo.mkdir()
    git(repo, "init", "-q")
    git(repo, "symbolic-ref", "HEAD", "refs/heads/main")
    git(repo, "config", "user.email", "test@test.com")
    git(repo, "config", "user.name", "Test")
    git(repo, "config", "commit.gpgsign", "false")
    git(repo, "remote", "add", "origin", "git@github.com:my-org/my-repo.git")
    (repo / "README.md").write_text("init", encoding="utf-8")
    git(repo, "add", ".")
    git(repo, "commit", "-q", "-m", "initial")
    return repo
