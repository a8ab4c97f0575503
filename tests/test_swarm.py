import threading
import time

import pytest

from macbox.core.errors import NotFoundError
from macbox.core.events import EventRecorder
from macbox.core.models import FlowDefinition, SessionRecord, StepDefinition, WorkspaceRecord
from macbox.core.swarm import SwarmOverrides, context_for_workspace, run_swarm, run_with_limit


class FakeRegistry:
    def __init__(self, root, ids):
        self.workspaces = {}
        self.sessions = {}
        for ws_id in ids:
            wt = root / ws_id
            wt.mkdir()
            sid = f"repo/{ws_id}"
            self.workspaces[ws_id] = WorkspaceRecord(
                id=ws_id, repo_id="repo", session_id=sid, worktree_name=ws_id,
                worktree_path=str(wt), created_at="t0", last_accessed_at="t0",
            )
            self.sessions[sid] = SessionRecord(
                id=sid, repo_id="repo", repo_root=str(root), worktree_name=ws_id, worktree_path=str(wt),
                git_common_dir=str(root / ".git"), git_dir=str(root / ".git"), agent="claude",
                created_at="t0", updated_at="t0",
            )

    def load_workspace(self, workspace_id):
        if workspace_id not in self.workspaces:
            raise NotFoundError(f"workspace not found: {workspace_id}")
        return self.workspaces[workspace_id]

    def load_session(self, session_id):
        return self.sessions[session_id]


def _flow(cmd):
    return FlowDefinition(steps=[StepDefinition(id="s", type="steps:shell", args={"cmd": cmd})])


@pytest.mark.parametrize("n,limit", [(0, 3), (1, 1), (5, 1), (5, 2), (5, 5), (3, 10)])
def test_run_with_limit_preserves_order(n, limit):
    def make(i):
        def task():
            time.sleep(0.01 * ((n - i) % 3))
            return i
        return task

    assert run_with_limit([make(i) for i in range(n)], limit) == list(range(n))


def test_run_with_limit_bounds_concurrency():
    lock = threading.Lock()
    active = [0]
    peak = [0]

    def task():
        with lock:
            active[0] += 1
            peak[0] = max(peak[0], active[0])
        time.sleep(0.02)
        with lock:
            active[0] -= 1
        return True

    run_with_limit([task] * 8, 3)
    assert 1 <= peak[0] <= 3


def test_run_with_limit_propagates_errors():
    def boom():
        raise KeyError("boom")

    with pytest.raises(KeyError):
        run_with_limit([lambda: 1, boom, lambda: 3], 2)


def test_run_with_limit_stops_claiming_after_error():
    ran = []

    def boom():
        raise RuntimeError("stop")

    def later(i):
        def task():
            ran.append(i)
        return task

    with pytest.raises(RuntimeError):
        run_with_limit([boom] + [later(i) for i in range(5)], 1)
    assert ran == []


def test_run_with_limit_rejects_zero_limit():
    with pytest.raises(ValueError):
        run_with_limit([lambda: 1], 0)
    assert run_with_limit([], 0) == []


def test_run_swarm_three_workspaces(tmp_path):
    reg = FakeRegistry(tmp_path, ["w1", "w2", "w3"])
    events = EventRecorder()
    result = run_swarm("echo", _flow("echo swarm-test"), ["w1", "w2", "w3"], 2, reg, events=events)
    assert [r.workspace_id for r in result.results] == ["w1", "w2", "w3"]
    assert result.summary.total == 3
    assert result.summary.succeeded == 3
    assert result.summary.failed == 0
    for r in result.results:
        assert r.flow_result.workspace_id == r.workspace_id
        assert r.flow_result.steps[0].outputs["result"] == "swarm-test"
        assert (tmp_path / r.workspace_id / ".macbox" / "flows").is_dir()
    statuses = events.statuses()
    assert sorted(s["workspace"] for s in statuses) == ["w1", "w2", "w3"]
    assert {s["status"] for s in statuses} == {"succeeded"}


def test_run_swarm_counts_failures(tmp_path):
    reg = FakeRegistry(tmp_path, ["w1", "w2"])
    # fail only in w2
    result = run_swarm("f", _flow('test "$(basename "$(pwd -P)")" != w2'), ["w1", "w2"], 2, reg,
                       events=EventRecorder())
    assert [r.flow_result.ok for r in result.results] == [True, False]
    assert result.summary.succeeded == 1
    assert result.summary.failed == 1


def test_run_swarm_lookup_failure_aborts(tmp_path):
    reg = FakeRegistry(tmp_path, ["w1"])
    with pytest.raises(NotFoundError):
        run_swarm("f", _flow("true"), ["w1", "missing"], 2, reg, events=EventRecorder())


def test_run_swarm_empty_list(tmp_path):
    result = run_swarm("f", _flow("true"), [], 3, FakeRegistry(tmp_path, []), events=EventRecorder())
    assert result.results == []
    assert result.summary.total == 0


def test_context_uses_override_agent(tmp_path):
    reg = FakeRegistry(tmp_path, ["w1"])
    ws = reg.load_workspace("w1")
    session = reg.load_session(ws.session_id)
    assert context_for_workspace(ws, session).agent == "claude"
    ctx = context_for_workspace(ws, session, SwarmOverrides(agent="codex", profiles=("p1",), env={"A": "1"}))
    assert ctx.agent == "codex"
    assert ctx.profiles == ("p1",)
    assert ctx.env == {"A": "1"}
    assert str(ctx.worktree_path) == ws.worktree_path
