"""
Configuration management for macbox.

Loads ``macbox.json`` (or ``macbox.yaml`` / ``macbox.yml``) from a worktree,
falling back to the repository root, normalizes the raw document and
validates it into a MacboxConfig.
"""

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml
from pydantic import ValidationError

from .errors import ConfigurationError, NotFoundError
from .models import HOOK_NAMES, FlowDefinition, MacboxConfig

logger = logging.getLogger(__name__)

CONFIG_FILENAMES = ("macbox.json", "macbox.yaml", "macbox.yml")


def _normalize_step(raw: Any, index: int, where: str, source: Path) -> Dict[str, Any]:
    if not isinstance(raw, dict):
        raise ConfigurationError(f"{source.name}: {where}[{index}] must be an object")
    step_type = raw.get("type")
    if not isinstance(step_type, str) or not step_type:
        raise ConfigurationError(f"{source.name}: {where}[{index}] missing 'type'")
    step: Dict[str, Any] = {
        "id": raw["id"] if isinstance(raw.get("id"), str) else f"step-{index}",
        "type": step_type,
    }
    if isinstance(raw.get("label"), str):
        step["label"] = raw["label"]
    if isinstance(raw.get("args"), dict):
        step["args"] = raw["args"]
    if isinstance(raw.get("continueOnError"), bool):
        step["continueOnError"] = raw["continueOnError"]
    if raw.get("timeout") is not None:
        step["timeout"] = raw["timeout"]
    return step


def _normalize_steps(raw: Any, where: str, source: Path) -> List[Dict[str, Any]]:
    if not isinstance(raw, list):
        return []
    return [_normalize_step(s, i, where, source) for i, s in enumerate(raw)]


def normalize_config(raw: Any, source: Path) -> Dict[str, Any]:
    """Turn a parsed document into the camelCase shape MacboxConfig accepts."""
    if not isinstance(raw, dict):
        raise ConfigurationError(f"{source.name}: expected an object at root")

    flows: Dict[str, Any] = {}
    raw_flows = raw.get("flows")
    if isinstance(raw_flows, dict):
        for name, flow in raw_flows.items():
            if not isinstance(flow, dict):
                raise ConfigurationError(f"{source.name}: flow '{name}' must be an object")
            steps = _normalize_steps(flow.get("steps"), f"flows.{name}.steps", source)
            if not steps:
                raise ConfigurationError(f"{source.name}: flow '{name}' has no steps")
            entry: Dict[str, Any] = {"steps": steps}
            if isinstance(flow.get("description"), str):
                entry["description"] = flow["description"]
            flows[str(name)] = entry

    doc: Dict[str, Any] = {"flows": flows}

    raw_hooks = raw.get("hooks")
    if isinstance(raw_hooks, dict):
        doc["hooks"] = {
            key: _normalize_steps(raw_hooks[key], f"hooks.{key}", source)
            for key in HOOK_NAMES
            if raw_hooks.get(key)
        }

    raw_defaults = raw.get("defaults")
    if isinstance(raw_defaults, dict):
        defaults: Dict[str, Any] = {}
        if isinstance(raw_defaults.get("agent"), str):
            defaults["agent"] = raw_defaults["agent"]
        if isinstance(raw_defaults.get("profiles"), list):
            defaults["profiles"] = [p for p in raw_defaults["profiles"] if isinstance(p, str)]
        mp = raw_defaults.get("maxParallel")
        if isinstance(mp, int) and not isinstance(mp, bool):
            if mp < 1:
                raise ConfigurationError(f"{source.name}: defaults.maxParallel must be >= 1")
            defaults["maxParallel"] = mp
        doc["defaults"] = defaults

    return doc


class ConfigurationLoader:
    """Locates and loads the macbox config for a worktree."""

    def __init__(self, worktree_path: Union[str, Path], repo_root: Optional[Union[str, Path]] = None):
        self.worktree_path = Path(worktree_path)
        self.repo_root = Path(repo_root) if repo_root is not None else None
        self.config_path: Optional[Path] = None
        self._config: Optional[MacboxConfig] = None

    def candidates(self) -> List[Path]:
        dirs = [self.worktree_path]
        if self.repo_root is not None and self.repo_root.resolve() != self.worktree_path.resolve():
            dirs.append(self.repo_root)
        return [d / name for d in dirs for name in CONFIG_FILENAMES]

    def find(self) -> Optional[Path]:
        for p in self.candidates():
            if p.is_file():
                return p
        return None

    def load(self) -> Optional[MacboxConfig]:
        """Load the first config found; None when there is none."""
        if self._config is not None:
            return self._config
        path = self.find()
        if path is None:
            logger.debug(f"no macbox config under {self.worktree_path}")
            return None

        logger.info(f"Loading configuration from {path}")
        try:
            with open(path, "r", encoding="utf-8") as f:
                raw = yaml.safe_load(f)
        except yaml.YAMLError as ex:
            raise ConfigurationError(f"{path.name}: invalid syntax in {path}: {ex}") from ex

        doc = normalize_config(raw, path)
        try:
            config = MacboxConfig.model_validate(doc)
        except ValidationError as ex:
            raise ConfigurationError(f"{path.name}: invalid configuration in {path}: {ex}") from ex

        self.config_path = path
        self._config = config
        logger.info(f"Configuration loaded: {len(config.flows)} flows")
        return config

    def flow_names(self) -> List[str]:
        config = self.load()
        return sorted(config.flows) if config else []

    def load_flow_definition(self, flow_name: str) -> FlowDefinition:
        config = self.load()
        flows = config.flows if config else {}
        if flow_name not in flows:
            available = ", ".join(sorted(flows)) or "none"
            raise NotFoundError(f"flow not found: {flow_name} (available: {available})")
        return flows[flow_name]
