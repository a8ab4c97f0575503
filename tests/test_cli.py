import json
import shutil
import subprocess

import pytest

from macbox.core.errors import NotFoundError
from macbox.scripts.macbox import main

needs_git = pytest.mark.skipif(shutil.which("git") is None, reason="git not installed")


@pytest.fixture(autouse=True)
def base_dir(tmp_path, monkeypatch):
    base = tmp_path / "base"
    monkeypatch.setenv("MACBOX_BASE_DIR", str(base))
    return base


def _repo_with_config(path, config):
    path.mkdir()
    subprocess.run(["git", "init", "-q", str(path)], check=True)
    (path / "macbox.json").write_text(json.dumps(config))
    return path


@pytest.mark.parametrize("argv", [
    ["flow", "run"],
    ["flow", "show"],
    ["swarm", "run"],
    ["swarm", "run", "--flow", "f"],
    ["swarm", "run", "--flow", "f", "--workspaces", " , "],
    ["swarm", "run", "--flow", "f", "--workspaces", "w1", "--max-parallel", "0"],
    ["swarm", "new"],
    ["swarm", "new", "--count", "0"],
    ["swarm", "new", "--count", "21"],
    ["flow"],
])
def test_usage_errors_exit_2(argv):
    assert main(argv) == 2


def test_no_command_prints_help(capsys):
    assert main([]) == 0
    assert "usage" in capsys.readouterr().out


def test_unknown_workspace_exits_1(capsys):
    assert main(["flow", "run", "f", "--workspace", "ws-missing"]) == 1
    assert "workspace not found" in capsys.readouterr().err


@needs_git
def test_flow_run_json(tmp_path, capsys):
    repo = _repo_with_config(tmp_path / "repo", {
        "flows": {
            "hello": {"steps": [
                {"id": "a", "type": "steps:shell", "args": {"cmd": "echo alpha"}},
                {"id": "b", "type": "steps:shell", "args": {"cmd": "echo ${steps.a.outputs.result}-beta"}},
            ]},
            "broken": {"steps": [{"id": "x", "type": "steps:shell", "args": {"cmd": "exit 42"}}]},
        },
        "hooks": {"onFlowComplete": [{"type": "steps:shell", "args": {"cmd": "touch hook-ran"}}]},
    })
    assert main(["flow", "run", "hello", "--repo", str(repo), "--json"]) == 0
    out = json.loads(capsys.readouterr().out)
    assert out["ok"] is True
    assert out["steps"][1]["outputs"]["result"] == "alpha-beta"
    assert (repo / "hook-ran").exists()

    assert main(["flow", "run", "broken", "--repo", str(repo)]) == 1
    assert "[fail] x" in capsys.readouterr().out

    assert main(["flow", "run", "nope", "--repo", str(repo)]) == 1
    assert "available: broken, hello" in capsys.readouterr().err


@needs_git
def test_flow_list_show_results(tmp_path, capsys):
    repo = _repo_with_config(tmp_path / "repo", {
        "flows": {"hello": {"description": "say hi", "steps": [
            {"id": "a", "type": "steps:shell", "args": {"cmd": "echo hi"}},
        ]}},
    })
    assert main(["flow", "list", "--repo", str(repo), "--json"]) == 0
    assert "hello" in json.loads(capsys.readouterr().out)

    assert main(["flow", "show", "hello", "--repo", str(repo), "--json"]) == 0
    assert json.loads(capsys.readouterr().out)["steps"][0]["id"] == "a"

    assert main(["flow", "run", "hello", "--repo", str(repo), "--json"]) == 0
    capsys.readouterr()
    assert main(["flow", "results", "--repo", str(repo), "--json"]) == 0
    rows = json.loads(capsys.readouterr().out)
    assert len(rows) == 1
    assert rows[0]["result"]["flowName"] == "hello"


def _committed_repo(path, config):
    repo = _repo_with_config(path, config)
    subprocess.run(["git", "add", "-A"], cwd=str(repo), check=True)
    subprocess.run(["git", "-c", "user.email=t@example.com", "-c", "user.name=t",
                    "commit", "-q", "-m", "init"], cwd=str(repo), check=True)
    return repo


SWARM_CONFIG = {
    "flows": {
        "hi": {"steps": [{"id": "a", "type": "steps:shell", "args": {"cmd": "echo hi"}}]},
        "pick": {"steps": [{"id": "a", "type": "steps:shell",
                            "args": {"cmd": 'test "$(basename "$(pwd -P)")" != ws-swarm-2'}}]},
    },
    "hooks": {"onWorkspaceCreate": [{"type": "steps:shell", "args": {"cmd": "touch created-marker"}}]},
}


@needs_git
def test_swarm_new_json_stdout_is_a_single_document(tmp_path, capsys):
    repo = _committed_repo(tmp_path / "repo", SWARM_CONFIG)
    assert main(["swarm", "new", "--count", "2", "--flow", "hi", "--repo", str(repo), "--json"]) == 0
    captured = capsys.readouterr()
    out = json.loads(captured.out)
    assert out["schema"] == "macbox.swarm.result.v1"
    assert out["summary"] == {"total": 2, "succeeded": 2, "failed": 0}
    assert "created 2 workspaces" in captured.err


@needs_git
def test_swarm_new_runs_create_hook_then_flow(tmp_path, capsys):
    repo = _committed_repo(tmp_path / "repo", SWARM_CONFIG)
    base = tmp_path / "other-base"
    argv = ["swarm", "new", "--count", "2", "--flow", "hi", "--repo", str(repo), "--base", str(base), "--json"]
    assert main(argv) == 0
    out = json.loads(capsys.readouterr().out)
    assert len({r["workspaceId"] for r in out["results"]}) == 2
    assert all(r["flowResult"]["steps"][0]["stdout"] == "hi\n" for r in out["results"])
    markers = sorted(p.parent.name for p in (base / "worktrees").rglob("created-marker"))
    assert markers == ["ws-swarm-1", "ws-swarm-2"]


@needs_git
def test_swarm_run_exit_codes(tmp_path, capsys):
    repo = _committed_repo(tmp_path / "repo", SWARM_CONFIG)
    assert main(["swarm", "new", "--count", "2", "--flow", "hi", "--repo", str(repo), "--json"]) == 0
    ids = ",".join(r["workspaceId"] for r in json.loads(capsys.readouterr().out)["results"])

    assert main(["swarm", "run", "--flow", "hi", "--workspaces", ids, "--repo", str(repo), "--json"]) == 0
    out = json.loads(capsys.readouterr().out)
    assert out["summary"]["succeeded"] == 2

    assert main(["swarm", "run", "--flow", "pick", "--workspaces", ids, "--repo", str(repo), "--json"]) == 1
    out = json.loads(capsys.readouterr().out)
    assert out["summary"] == {"total": 2, "succeeded": 1, "failed": 1}


@needs_git
def test_swarm_run_unknown_workspace_raises(tmp_path):
    repo = _committed_repo(tmp_path / "repo", SWARM_CONFIG)
    with pytest.raises(NotFoundError, match="workspace not found: ws-nope"):
        main(["swarm", "run", "--flow", "hi", "--workspaces", "ws-nope", "--repo", str(repo)])


def test_swarm_run_outside_git_exits_1(tmp_path, capsys):
    plain = tmp_path / "plain"
    plain.mkdir()
    assert main(["swarm", "run", "--flow", "hi", "--workspaces", "w1", "--repo", str(plain)]) == 1
    assert capsys.readouterr().err
