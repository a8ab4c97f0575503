"""
File management utilities: directories and JSON written without partial states.
"""

import json
import os
import tempfile
from pathlib import Path
from typing import Any, Dict
import logging

logger = logging.getLogger(__name__)


def _dump(data: Any) -> str:
    return json.dumps(data, indent=2) + "\n"


class FileManager:
    """Utilities for file and directory management."""

    @staticmethod
    def ensure_directory(path: Path) -> Path:
        """Ensure directory exists, create if necessary."""
        path = Path(path)
        path.mkdir(parents=True, exist_ok=True)
        return path

    @staticmethod
    def _write_temp(data: Any, directory: Path, prefix: str) -> Path:
        fd, tmp = tempfile.mkstemp(prefix=prefix, suffix=".tmp", dir=str(directory))
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(_dump(data))
                f.flush()
                os.fsync(f.fileno())
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise
        return Path(tmp)

    @staticmethod
    def save_json_atomic(data: Dict[str, Any], file_path: Path) -> Path:
        """Write JSON to a temp file next to ``file_path`` and rename it into place."""
        p = Path(file_path)
        FileManager.ensure_directory(p.parent)
        tmp = FileManager._write_temp(data, p.parent, f".{p.name}.")
        tmp.replace(p)
        return p

    @staticmethod
    def create_json_exclusive(data: Dict[str, Any], file_path: Path, max_attempts: int = 1000) -> Path:
        """Publish JSON under ``file_path`` without ever replacing an existing file.

        The content is fully written to a temp file first, then hard-linked to
        the final name (fails if taken). On a clash ``-1``, ``-2``... is
        appended to the stem. Returns the path actually written.
        """
        p = Path(file_path)
        FileManager.ensure_directory(p.parent)
        tmp = FileManager._write_temp(data, p.parent, f".{p.stem}.")
        try:
            for attempt in range(max_attempts):
                target = p if attempt == 0 else p.with_name(f"{p.stem}-{attempt}{p.suffix}")
                try:
                    os.link(tmp, target)
                    return target
                except FileExistsError:
                    continue
            raise FileExistsError(f"no free file name for {p}")
        finally:
            tmp.unlink(missing_ok=True)

    @staticmethod
    def load_json(file_path: Path) -> Dict[str, Any]:
        """Load data from JSON file."""
        with open(file_path, 'r', encoding="utf-8") as f:
            return json.load(f)
