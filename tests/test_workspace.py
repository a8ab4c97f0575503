import shutil
import subprocess
from pathlib import Path

import pytest

from macbox.core.errors import NotFoundError, WorkspaceError
from macbox.core.registry import FileRegistry
from macbox.core.workspace import create_workspace, detect_repo, validate_worktree_name

needs_git = pytest.mark.skipif(shutil.which("git") is None, reason="git not installed")


def _git(*args, cwd):
    subprocess.run(["git", *args], cwd=str(cwd), check=True, capture_output=True)


def make_repo(path):
    path.mkdir(parents=True, exist_ok=True)
    _git("init", "-q", cwd=path)
    _git("-c", "user.email=t@example.com", "-c", "user.name=t", "commit", "-q", "--allow-empty", "-m", "init", cwd=path)
    return path


@needs_git
def test_detect_repo(tmp_path):
    repo = make_repo(tmp_path / "repo")
    (repo / "sub").mkdir()
    info = detect_repo(repo / "sub")
    assert info.root.resolve() == repo.resolve()
    assert info.git_dir.is_absolute()
    assert len(info.repo_id) == 12


@needs_git
def test_detect_repo_outside_git(tmp_path):
    plain = tmp_path / "plain"
    plain.mkdir()
    with pytest.raises(NotFoundError):
        detect_repo(plain)


@needs_git
def test_create_workspace_registers_records(tmp_path):
    repo = make_repo(tmp_path / "repo")
    reg = FileRegistry(tmp_path / "base")
    ws = create_workspace(reg, detect_repo(repo), "ws-swarm-1", name="swarm-1", agent="claude")
    assert ws.id.startswith("ws-") and len(ws.id) == 11
    assert (tmp_path / "base" / "worktrees").is_dir()
    ws_path = Path(ws.worktree_path)
    assert ws_path.is_dir()
    assert (ws_path / ".git").exists()
    loaded = reg.load_workspace(ws.id)
    session = reg.load_session(loaded.session_id)
    assert session.agent == "claude"
    assert session.worktree_path == ws.worktree_path


def test_invalid_worktree_name():
    with pytest.raises(WorkspaceError):
        validate_worktree_name("../escape")
    assert validate_worktree_name("ws-issue-12-1") == "ws-issue-12-1"
