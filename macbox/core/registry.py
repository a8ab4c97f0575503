"""
File-backed workspace and session registries.

Records are JSON files under the base directory (see ``paths``); writes go
through FileManager.save_json_atomic so readers never see partial records.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable, List, Optional

from pydantic import ValidationError

from .errors import NotFoundError
from .models import SessionRecord, WorkspaceRecord
from .paths import session_file_from_id, workspace_file_for, workspaces_dir
from macbox.utils.file_management import FileManager

logger = logging.getLogger(__name__)


class FileRegistry:
    """Workspace/session lookups rooted at ``base_dir``.

    ``project_id`` narrows workspace lookups to one project; without it every
    project directory is searched.
    """

    def __init__(self, base_dir: Path | str, project_id: Optional[str] = None):
        self.base_dir = Path(base_dir)
        self.project_id = project_id

    # ----- workspaces -----

    def _project_dirs(self, project_id: Optional[str]) -> Iterable[Path]:
        root = workspaces_dir(self.base_dir)
        if project_id:
            return [root / project_id]
        if not root.is_dir():
            return []
        return sorted(p for p in root.iterdir() if p.is_dir())

    def load_workspace(self, workspace_id: str) -> WorkspaceRecord:
        for d in self._project_dirs(self.project_id):
            p = d / f"{workspace_id}.json"
            if p.is_file():
                return _read_record(WorkspaceRecord, p, "workspace")
        raise NotFoundError(f"workspace not found: {workspace_id}")

    def save_workspace(self, ws: WorkspaceRecord) -> Path:
        p = workspace_file_for(self.base_dir, ws.repo_id, ws.id)
        return FileManager.save_json_atomic(ws.to_json_dict(), p)

    def list_workspaces(self, project_id: Optional[str] = None) -> List[WorkspaceRecord]:
        """All readable workspace records, most recently accessed first."""
        out: List[WorkspaceRecord] = []
        for d in self._project_dirs(project_id or self.project_id):
            if not d.is_dir():
                continue
            for p in sorted(d.glob("*.json")):
                if p.name.startswith("."):
                    continue
                try:
                    out.append(_read_record(WorkspaceRecord, p, "workspace"))
                except NotFoundError as ex:
                    logger.warning(f"skipping {ex}")
        out.sort(key=lambda w: w.last_accessed_at, reverse=True)
        return out

    # ----- sessions -----

    def load_session(self, session_id: str) -> SessionRecord:
        p = session_file_from_id(self.base_dir, session_id)
        if not p.is_file():
            raise NotFoundError(f"session not found: {session_id}")
        return _read_record(SessionRecord, p, "session")

    def save_session(self, session: SessionRecord) -> Path:
        p = session_file_from_id(self.base_dir, session.id)
        return FileManager.save_json_atomic(session.to_json_dict(), p)


def _read_record(model, path: Path, kind: str):
    try:
        return model.model_validate(FileManager.load_json(path))
    except (OSError, ValueError, ValidationError) as ex:
        raise NotFoundError(f"invalid {kind} file: {path} ({ex})") from ex
