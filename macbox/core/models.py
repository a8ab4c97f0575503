"""
Pydantic models for flow definitions, results and registry records.

All models serialize with camelCase keys (the on-disk JSON schema) while
Python code uses snake_case attribute names. Models are frozen: results are
created once per run and never mutated.
"""

from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

FLOW_RESULT_SCHEMA = "macbox.flow.result.v1"
SWARM_RESULT_SCHEMA = "macbox.swarm.result.v1"
CONFIG_SCHEMA = "macbox.config.v1"

HOOK_NAMES = ("onWorkspaceCreate", "onWorkspaceRestore", "onFlowComplete")


class _Model(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    def to_json_dict(self) -> Dict[str, Any]:
        """Dump with camelCase keys, dropping unset optionals."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# ----- Flow definitions -----

class StepDefinition(_Model):
    id: str
    type: str
    label: Optional[str] = None
    args: Optional[Dict[str, Any]] = None
    continue_on_error: bool = False
    # seconds; the process is killed and the step reports exit code 124
    timeout: Optional[float] = None

    @field_validator("type")
    @classmethod
    def type_present(cls, v: str) -> str:
        if not v:
            raise ValueError("step type must be a non-empty string")
        return v

    @field_validator("timeout")
    @classmethod
    def timeout_positive(cls, v: Optional[float]) -> Optional[float]:
        if v is not None and v <= 0:
            raise ValueError("timeout must be > 0")
        return v


class FlowDefinition(_Model):
    description: Optional[str] = None
    steps: List[StepDefinition] = Field(default_factory=list)

    @model_validator(mode="after")
    def unique_step_ids(self) -> "FlowDefinition":
        seen = set()
        for s in self.steps:
            if s.id in seen:
                raise ValueError(f"duplicate step id: {s.id}")
            seen.add(s.id)
        return self


class HooksDefinition(_Model):
    on_workspace_create: Optional[List[StepDefinition]] = None
    on_workspace_restore: Optional[List[StepDefinition]] = None
    on_flow_complete: Optional[List[StepDefinition]] = None


class ConfigDefaults(_Model):
    agent: Optional[str] = None
    profiles: Optional[List[str]] = None
    max_parallel: Optional[int] = None


class MacboxConfig(_Model):
    schema_id: Literal["macbox.config.v1"] = Field(default=CONFIG_SCHEMA, alias="schema")
    flows: Dict[str, FlowDefinition] = Field(default_factory=dict)
    hooks: Optional[HooksDefinition] = None
    defaults: Optional[ConfigDefaults] = None


# ----- Results -----

class StepResult(_Model):
    step_id: str
    type: str
    label: Optional[str] = None
    exit_code: int
    stdout: Optional[str] = None
    stderr: Optional[str] = None
    outputs: Dict[str, str] = Field(default_factory=dict)
    error: Optional[str] = None
    started_at: str
    completed_at: str


class FlowResult(_Model):
    schema_id: Literal["macbox.flow.result.v1"] = Field(default=FLOW_RESULT_SCHEMA, alias="schema")
    flow_name: str
    workspace_id: Optional[str] = None
    ok: bool
    steps: List[StepResult] = Field(default_factory=list)
    started_at: str
    completed_at: str


class SwarmWorkspaceResult(_Model):
    workspace_id: str
    flow_result: FlowResult


class SwarmSummary(_Model):
    total: int
    succeeded: int
    failed: int


class SwarmResult(_Model):
    schema_id: Literal["macbox.swarm.result.v1"] = Field(default=SWARM_RESULT_SCHEMA, alias="schema")
    flow_name: str
    results: List[SwarmWorkspaceResult] = Field(default_factory=list)
    summary: SwarmSummary
    started_at: str
    completed_at: str

    @model_validator(mode="after")
    def summary_matches(self) -> "SwarmResult":
        if self.summary.total != len(self.results):
            raise ValueError("summary.total must equal the number of results")
        if self.summary.succeeded + self.summary.failed != self.summary.total:
            raise ValueError("succeeded + failed must equal total")
        return self


# ----- Registry records (only the fields the engine consumes) -----

class WorkspaceRecord(_Model):
    id: str
    repo_id: str
    session_id: str
    worktree_name: str
    worktree_path: str
    name: Optional[str] = None
    created_at: str
    last_accessed_at: str


class SessionRecord(_Model):
    id: str  # "<repoId>/<worktreeName>"
    repo_id: str
    repo_root: str
    worktree_name: str
    worktree_path: str
    git_common_dir: str
    git_dir: str
    agent: Optional[str] = None
    profiles: List[str] = Field(default_factory=list)
    caps: Dict[str, Any] = Field(default_factory=dict)
    debug: bool = False
    created_at: str
    updated_at: str
