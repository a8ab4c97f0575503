"""
Git repository detection and workspace creation.

A workspace is a git worktree under <base>/worktrees/<repoId>/<name> plus a
session record (how to run in it) and a workspace record (how to find it).
"""

from __future__ import annotations

import logging
import re
import secrets
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from .errors import NotFoundError, WorkspaceError
from .models import SessionRecord, WorkspaceRecord
from .paths import macbox_dir, now_iso, repo_id_for_root, worktrees_dir
from .registry import FileRegistry

logger = logging.getLogger(__name__)

_WORKTREE_NAME = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")


@dataclass(frozen=True)
class RepoInfo:
    root: Path
    git_common_dir: Path
    git_dir: Path

    @property
    def repo_id(self) -> str:
        return repo_id_for_root(self.root)


def _git(args: List[str], cwd: Optional[Path]) -> subprocess.CompletedProcess:
    return subprocess.run(
        ["git", *args],
        cwd=str(cwd) if cwd else None,
        stdin=subprocess.DEVNULL,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        text=True,
    )


def detect_repo(hint: Optional[Path | str] = None) -> RepoInfo:
    """Locate the git repository containing ``hint`` (default: cwd)."""
    cwd = Path(hint) if hint else None
    try:
        res = _git(["rev-parse", "--path-format=absolute", "--show-toplevel", "--git-common-dir", "--git-dir"], cwd)
    except OSError as ex:
        raise NotFoundError(f"git not available: {ex}") from ex
    lines = res.stdout.splitlines()
    if res.returncode != 0 or len(lines) < 3:
        where = cwd or Path.cwd()
        raise NotFoundError(f"not a git repository: {where} ({res.stderr.strip()})")
    root = Path(lines[0])

    def absolute(p: str) -> Path:
        q = Path(p)
        return q if q.is_absolute() else ((cwd or Path.cwd()) / q).resolve()

    return RepoInfo(root=root, git_common_dir=absolute(lines[1]), git_dir=absolute(lines[2]))


def new_workspace_id() -> str:
    return f"ws-{secrets.token_hex(4)}"


def validate_worktree_name(name: str) -> str:
    if not _WORKTREE_NAME.match(name):
        raise WorkspaceError(f"invalid worktree name: {name!r}")
    return name


def create_workspace(
    registry: FileRegistry,
    repo: RepoInfo,
    worktree_name: str,
    name: Optional[str] = None,
    agent: Optional[str] = None,
    branch: Optional[str] = None,
    start_point: str = "HEAD",
) -> WorkspaceRecord:
    """Create (or reuse) the worktree and register session + workspace records."""
    validate_worktree_name(worktree_name)
    wt_path = worktrees_dir(registry.base_dir, repo.root) / worktree_name
    wt_branch = branch or f"macbox/{worktree_name}"

    if not (wt_path / ".git").exists():
        wt_path.parent.mkdir(parents=True, exist_ok=True)
        logger.info(f"creating worktree {wt_path} on branch {wt_branch}")
        try:
            res = _git(["worktree", "add", str(wt_path), "-B", wt_branch, start_point], repo.root)
        except OSError as ex:
            raise WorkspaceError(f"git worktree add failed: {ex}") from ex
        if res.returncode != 0:
            raise WorkspaceError(f"git worktree add failed for {worktree_name}: {res.stderr.strip()}")

    macbox_dir(wt_path).mkdir(parents=True, exist_ok=True)

    now = now_iso()
    repo_id = repo.repo_id
    session = SessionRecord(
        id=f"{repo_id}/{worktree_name}",
        repo_id=repo_id,
        repo_root=str(repo.root),
        worktree_name=worktree_name,
        worktree_path=str(wt_path),
        git_common_dir=str(repo.git_common_dir),
        git_dir=str(repo.git_dir),
        agent=agent,
        created_at=now,
        updated_at=now,
    )
    ws = WorkspaceRecord(
        id=new_workspace_id(),
        repo_id=repo_id,
        session_id=session.id,
        worktree_name=worktree_name,
        worktree_path=str(wt_path),
        name=name,
        created_at=now,
        last_accessed_at=now,
    )
    try:
        registry.save_session(session)
        registry.save_workspace(ws)
    except OSError as ex:
        raise WorkspaceError(f"failed to record workspace {worktree_name}: {ex}") from ex
    logger.info(f"workspace {ws.id} created at {wt_path}")
    return ws
