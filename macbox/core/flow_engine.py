"""
Flow engine: runs the steps of one flow, in order, in one worktree.

Per step: interpolate args against earlier results -> execute -> record.
  exit 0                        -> next step
  exit != 0, continueOnError    -> flow marked failed, next step
  exit != 0, otherwise          -> flow marked failed, stop (later steps never run)

On completion the FlowResult is written to
<worktree>/.macbox/flows/<flowName>-<YYYYMMDD-HHMMSS>.json. A failed write is
reported through the event sink and does not change the result.
"""

from __future__ import annotations

import logging
from enum import Enum
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

from pydantic import ValidationError

from .errors import WorkingDirectoryError
from .events import EventSink, log_event, logging_sink
from .interpolation import interpolate_step
from .models import FlowDefinition, FlowResult, StepDefinition, StepResult
from .paths import flow_results_dir, now_compact, now_iso, safe_file_stem
from .steps import StepContext, execute_step
from macbox.utils.file_management import FileManager

logger = logging.getLogger(__name__)


class FlowState(Enum):
    READY = "ready"
    RUNNING = "running"
    COMPLETED = "completed"


class FlowEngine:
    """Single-use runner for one flow invocation.

    Public API:
      - FlowEngine(flow_name, flow_def, ctx, workspace_id=None, events=None, results_dir=None)
      - run() -> FlowResult
      - state / current_index / results (progress introspection)
    """

    def __init__(
        self,
        flow_name: str,
        flow_def: FlowDefinition,
        ctx: StepContext,
        *,
        workspace_id: Optional[str] = None,
        events: Optional[EventSink] = None,
        results_dir: Optional[Path] = None,
    ):
        self.flow_name = flow_name
        self.flow_def = flow_def
        self.ctx = ctx
        self.workspace_id = workspace_id
        self._events = events or logging_sink(logger)
        self._results_dir = Path(results_dir) if results_dir else flow_results_dir(ctx.worktree_path)
        self.state = FlowState.READY
        self.current_index: Optional[int] = None
        self.results: List[StepResult] = []
        self.result_path: Optional[Path] = None

    def _log(self, message: str, level: str = "info") -> None:
        self._events(log_event(f"flow/{self.flow_name}: {message}", level, flow=self.flow_name))

    def run(self) -> FlowResult:
        if self.state is not FlowState.READY:
            raise RuntimeError(f"flow/{self.flow_name}: engine already used")
        worktree = Path(self.ctx.worktree_path)
        if not worktree.is_dir():
            raise WorkingDirectoryError(f"working directory not found: {worktree}")

        started_at = now_iso()
        self.state = FlowState.RUNNING
        all_ok = True

        for i, step in enumerate(self.flow_def.steps):
            self.current_index = i
            self._log(f"running step {step.id} ({step.type})")
            resolved = interpolate_step(step, self.results)
            result = execute_step(resolved, self.ctx)
            self.results.append(result)

            if result.exit_code == 0:
                continue
            all_ok = False
            if not step.continue_on_error:
                self._log(f"step {step.id} failed (exit {result.exit_code})", "error")
                if result.error:
                    self._log(f"  error: {result.error}", "error")
                break
            self._log(f"step {step.id} failed (exit {result.exit_code}), continuing", "warning")

        self.state = FlowState.COMPLETED
        flow_result = FlowResult(
            flow_name=self.flow_name,
            workspace_id=self.workspace_id,
            ok=all_ok,
            steps=list(self.results),
            started_at=started_at,
            completed_at=now_iso(),
        )

        try:
            self.result_path = persist_flow_result(self._results_dir, flow_result)
            logger.debug(f"flow/{self.flow_name}: result written to {self.result_path}")
        except OSError as ex:
            self._log(f"failed to persist flow result: {ex}", "error")

        return flow_result


def persist_flow_result(results_dir: Path, result: FlowResult) -> Path:
    """Write ``result`` as <flowName>-<timestamp>.json; never overwrites."""
    target = Path(results_dir) / f"{safe_file_stem(result.flow_name)}-{now_compact()}.json"
    return FileManager.create_json_exclusive(result.to_json_dict(), target)


def run_flow(
    flow_name: str,
    flow_def: FlowDefinition,
    ctx: StepContext,
    *,
    workspace_id: Optional[str] = None,
    events: Optional[EventSink] = None,
    results_dir: Optional[Path] = None,
) -> FlowResult:
    """Run ``flow_def`` in ``ctx.worktree_path``; never raises for step failures."""
    engine = FlowEngine(
        flow_name, flow_def, ctx,
        workspace_id=workspace_id, events=events, results_dir=results_dir,
    )
    return engine.run()


def run_steps(
    name: str,
    steps: Sequence[StepDefinition],
    ctx: StepContext,
    *,
    events: Optional[EventSink] = None,
    results_dir: Optional[Path] = None,
) -> FlowResult:
    """Run an ad-hoc step list (e.g. a lifecycle hook) with flow semantics."""
    return run_flow(name, FlowDefinition(steps=list(steps)), ctx, events=events, results_dir=results_dir)


# ----- reading results back -----

def list_flow_results(worktree_path: Path | str) -> List[Path]:
    """Persisted result files for a worktree, newest first."""
    d = flow_results_dir(worktree_path)
    if not d.is_dir():
        return []
    files = [p for p in d.glob("*.json") if p.is_file() and not p.name.startswith(".")]
    files.sort(key=lambda p: (p.stat().st_mtime, p.name), reverse=True)
    return files


def load_flow_result(path: Path) -> FlowResult:
    return FlowResult.model_validate(FileManager.load_json(path))


def load_flow_results(worktree_path: Path | str, limit: Optional[int] = None) -> List[Tuple[Path, FlowResult]]:
    """Load persisted results, skipping unreadable files."""
    out: List[Tuple[Path, FlowResult]] = []
    for p in list_flow_results(worktree_path):
        if limit is not None and len(out) >= limit:
            break
        try:
            out.append((p, load_flow_result(p)))
        except (OSError, ValueError, ValidationError) as ex:
            logger.warning(f"skipping unreadable flow result {p}: {ex}")
    return out
