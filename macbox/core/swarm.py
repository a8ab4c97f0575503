"""
Swarm: run one flow across many workspaces with a bounded worker pool.

Scheduling:
- min(max_parallel, len(tasks)) worker threads share one claim cursor.
- A worker claims the next unclaimed index, runs it, stores the result at
  that index, and repeats until nothing is left.
- Results therefore come back in submission order, whatever the timing.

Failure policy is fail-fast: an exception inside any task (e.g. a workspace
record that does not exist) stops further claims and is re-raised from the
call; results of the other tasks are discarded.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence, Tuple, TypeVar

from .events import EventSink, log_event, logging_sink, status_event
from .flow_engine import run_flow
from .models import (
    FlowDefinition,
    SessionRecord,
    SwarmResult,
    SwarmSummary,
    SwarmWorkspaceResult,
    WorkspaceRecord,
)
from .paths import now_iso
from .steps import StepContext

logger = logging.getLogger(__name__)

T = TypeVar("T")


class WorkspaceLookup(Protocol):
    def load_workspace(self, workspace_id: str) -> WorkspaceRecord: ...

    def load_session(self, session_id: str) -> SessionRecord: ...


class _ClaimCursor:
    """Hands out task indices 0..n-1, each exactly once."""

    def __init__(self, total: int):
        self._total = total
        self._next = 0
        self._lock = threading.Lock()
        self._closed = False

    def claim(self) -> Optional[int]:
        with self._lock:
            if self._closed or self._next >= self._total:
                return None
            i = self._next
            self._next += 1
            return i

    def close(self) -> None:
        with self._lock:
            self._closed = True


class SwarmWorker(threading.Thread):
    def __init__(self, n: int, tasks: Sequence[Callable[[], T]], results: List[Any],
                 cursor: _ClaimCursor, errors: List[BaseException], errors_lock: threading.Lock):
        super().__init__(name=f"swarm-worker-{n}", daemon=True)
        self.tasks = tasks
        self.results = results
        self.cursor = cursor
        self.errors = errors
        self.errors_lock = errors_lock

    def run(self) -> None:
        while True:
            i = self.cursor.claim()
            if i is None:
                return
            try:
                # each index is written by exactly one worker
                self.results[i] = self.tasks[i]()
            except BaseException as ex:
                with self.errors_lock:
                    self.errors.append(ex)
                self.cursor.close()
                return


def run_with_limit(tasks: Sequence[Callable[[], T]], limit: int) -> List[T]:
    """Run callables on at most ``limit`` threads; results in input order."""
    if not tasks:
        return []
    if limit < 1:
        raise ValueError(f"limit must be >= 1 (got {limit})")
    results: List[Any] = [None] * len(tasks)
    cursor = _ClaimCursor(len(tasks))
    errors: List[BaseException] = []
    errors_lock = threading.Lock()
    workers = [
        SwarmWorker(n, tasks, results, cursor, errors, errors_lock)
        for n in range(min(limit, len(tasks)))
    ]
    for w in workers:
        w.start()
    for w in workers:
        w.join()
    if errors:
        raise errors[0]
    return results


@dataclass(frozen=True)
class SwarmOverrides:
    """Settings applied to every workspace of a swarm run."""
    agent: Optional[str] = None
    profiles: Tuple[str, ...] = ()
    caps: Dict[str, Any] = field(default_factory=dict)
    env: Dict[str, str] = field(default_factory=dict)
    debug: bool = False


def context_for_workspace(ws: WorkspaceRecord, session: SessionRecord,
                          overrides: Optional[SwarmOverrides] = None) -> StepContext:
    ov = overrides or SwarmOverrides()
    return StepContext(
        worktree_path=Path(ws.worktree_path),
        repo_root=Path(session.repo_root),
        git_common_dir=Path(session.git_common_dir),
        git_dir=Path(session.git_dir),
        agent=ov.agent or session.agent,
        profiles=tuple(ov.profiles),
        caps=dict(ov.caps),
        env=dict(ov.env),
        debug=ov.debug,
    )


def summarize(results: Sequence[SwarmWorkspaceResult]) -> SwarmSummary:
    succeeded = sum(1 for r in results if r.flow_result.ok)
    return SwarmSummary(total=len(results), succeeded=succeeded, failed=len(results) - succeeded)


def run_swarm(
    flow_name: str,
    flow_def: FlowDefinition,
    workspace_ids: Sequence[str],
    max_parallel: int,
    registry: WorkspaceLookup,
    overrides: Optional[SwarmOverrides] = None,
    events: Optional[EventSink] = None,
) -> SwarmResult:
    """Run ``flow_def`` in every workspace; lookup failures abort the call."""
    sink = events or logging_sink(logger)
    started_at = now_iso()

    def make_task(ws_id: str) -> Callable[[], SwarmWorkspaceResult]:
        def task() -> SwarmWorkspaceResult:
            sink(log_event(f"swarm: starting flow '{flow_name}' in workspace {ws_id}", workspace=ws_id))
            ws = registry.load_workspace(ws_id)
            session = registry.load_session(ws.session_id)
            flow_result = run_flow(
                flow_name,
                flow_def,
                context_for_workspace(ws, session, overrides),
                workspace_id=ws.id,
                events=sink,
            )
            status = "succeeded" if flow_result.ok else "failed"
            sink(status_event(status, workspace=ws_id, flow=flow_name))
            return SwarmWorkspaceResult(workspace_id=ws_id, flow_result=flow_result)
        return task

    results = run_with_limit([make_task(ws_id) for ws_id in workspace_ids], max_parallel)
    return SwarmResult(
        flow_name=flow_name,
        results=results,
        summary=summarize(results),
        started_at=started_at,
        completed_at=now_iso(),
    )
