"""
Filesystem layout for macbox state and per-worktree artifacts.

State (registries) lives under the base directory:
  <base>/workspaces/<projectId>/<workspaceId>.json
  <base>/sessions/<repoId>/<worktreeName>.json
  <base>/worktrees/<repoId>/<worktreeName>/

Per-worktree artifacts live under <worktree>/.macbox/.
"""

from __future__ import annotations

import datetime as _dt
import hashlib
import os
import re
from pathlib import Path

BASE_DIR_ENV = "MACBOX_BASE_DIR"
MACBOX_DIRNAME = ".macbox"


def default_base_dir() -> Path:
    env = os.environ.get(BASE_DIR_ENV)
    if env:
        return Path(env).expanduser()
    return Path.home() / ".local" / "share" / "macbox"


def repo_id_for_root(repo_root: Path | str) -> str:
    return hashlib.sha256(str(repo_root).encode("utf-8")).hexdigest()[:12]


def macbox_dir(worktree_path: Path | str) -> Path:
    return Path(worktree_path) / MACBOX_DIRNAME


def flow_results_dir(worktree_path: Path | str) -> Path:
    return macbox_dir(worktree_path) / "flows"


def worktrees_dir(base_dir: Path, repo_root: Path | str) -> Path:
    return Path(base_dir) / "worktrees" / repo_id_for_root(repo_root)


def workspaces_dir(base_dir: Path) -> Path:
    return Path(base_dir) / "workspaces"


def workspace_file_for(base_dir: Path, project_id: str, workspace_id: str) -> Path:
    return workspaces_dir(base_dir) / project_id / f"{workspace_id}.json"


def session_file_from_id(base_dir: Path, session_id: str) -> Path:
    """Map a session id ("<repoId>/<worktreeName>") to its record file."""
    repo_id, sep, worktree_name = session_id.partition("/")
    if not sep:
        # bare worktree names cannot be resolved without a repo
        return Path(base_dir) / "sessions" / "__unknown__" / f"{session_id}.json"
    return Path(base_dir) / "sessions" / repo_id / f"{worktree_name}.json"


def now_iso() -> str:
    """Current UTC time in ISO-8601 with millisecond precision."""
    return _dt.datetime.now(tz=_dt.timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def now_compact() -> str:
    """Local time as YYYYMMDD-HHMMSS, used in result file names."""
    return _dt.datetime.now().strftime("%Y%m%d-%H%M%S")


_UNSAFE_NAME = re.compile(r"[\s/\\]+")


def safe_file_stem(name: str) -> str:
    return _UNSAFE_NAME.sub("_", name.strip()) or "flow"
