"""
Step executors.

Each step type is a handler registered under its type tag
(e.g. "steps:shell"). Handlers never raise for ordinary failures: a non-zero
exit, a missing argument or an unknown type all come back as a StepResult.
Only a vanished working directory propagates (WorkingDirectoryError).

The sandbox layer registers its own handlers (agent runs, skills) through
``register_step``; the built-ins here run plain commands in the worktree.
"""

from __future__ import annotations

import json
import logging
import os
import shlex
import shutil
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Union

from .errors import WorkingDirectoryError
from .models import StepDefinition, StepResult
from .paths import now_iso

logger = logging.getLogger(__name__)

# Same convention as coreutils `timeout`
TIMEOUT_EXIT_CODE = 124


@dataclass(frozen=True)
class StepContext:
    """Where and how steps of one flow run execute."""
    worktree_path: Path
    repo_root: Path
    git_common_dir: Path
    git_dir: Path
    agent: Optional[str] = None
    profiles: Tuple[str, ...] = ()
    caps: Dict[str, Any] = field(default_factory=dict)
    env: Dict[str, str] = field(default_factory=dict)
    debug: bool = False

    @classmethod
    def for_directory(cls, path: Path | str, **kwargs: Any) -> "StepContext":
        """Context for a plain directory (repo root == worktree)."""
        p = Path(path)
        return cls(worktree_path=p, repo_root=p, git_common_dir=p / ".git", git_dir=p / ".git", **kwargs)


@dataclass
class CommandOutput:
    code: int
    stdout: str = ""
    stderr: str = ""


StepHandler = Callable[[StepDefinition, StepContext], StepResult]

_HANDLERS: Dict[str, StepHandler] = {}


def register_step(type_name: str) -> Callable[[StepHandler], StepHandler]:
    """Decorator registering a handler for ``type_name``."""
    def deco(fn: StepHandler) -> StepHandler:
        _HANDLERS[type_name] = fn
        return fn
    return deco


def unregister_step(type_name: str) -> None:
    _HANDLERS.pop(type_name, None)


def get_step_handler(type_name: str) -> Optional[StepHandler]:
    return _HANDLERS.get(type_name)


def registered_step_types() -> List[str]:
    return sorted(_HANDLERS)


# ----- result helpers -----

def wrap_result(
    step: StepDefinition,
    started_at: str,
    out: CommandOutput,
    extra_outputs: Optional[Dict[str, str]] = None,
    error: Optional[str] = None,
) -> StepResult:
    outputs = {"result": (out.stdout or "").strip()}
    if extra_outputs:
        outputs.update(extra_outputs)
    return StepResult(
        step_id=step.id,
        type=step.type,
        label=step.label,
        exit_code=out.code,
        stdout=out.stdout,
        stderr=out.stderr,
        outputs=outputs,
        error=error,
        started_at=started_at,
        completed_at=now_iso(),
    )


def wrap_error(step: StepDefinition, started_at: str, message: str) -> StepResult:
    return StepResult(
        step_id=step.id,
        type=step.type,
        label=step.label,
        exit_code=1,
        error=message,
        started_at=started_at,
        completed_at=now_iso(),
    )


def _decode(data: Union[bytes, str, None]) -> str:
    if data is None:
        return ""
    if isinstance(data, bytes):
        return data.decode("utf-8", errors="replace")
    return data


def run_command(
    cmd: Union[str, Sequence[str]],
    ctx: StepContext,
    *,
    timeout: Optional[float] = None,
) -> CommandOutput:
    """Run ``cmd`` in the worktree and capture its output.

    A string runs through the shell; a list runs directly.
    Raises WorkingDirectoryError if the worktree is gone,
    subprocess.TimeoutExpired on timeout, OSError if the binary is missing.
    """
    cwd = Path(ctx.worktree_path)
    if not cwd.is_dir():
        raise WorkingDirectoryError(f"working directory not found: {cwd}")
    env = os.environ.copy()
    env.update(ctx.env or {})
    shell = isinstance(cmd, str)
    cmd_repr = cmd if shell else " ".join(shlex.quote(x) for x in cmd)
    logger.debug(f"run_command cmd={cmd_repr} cwd={cwd} timeout={timeout}")
    res = subprocess.run(
        cmd if shell else list(cmd),
        shell=shell,
        cwd=str(cwd),
        env=env,
        stdin=subprocess.DEVNULL,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        text=True,
        encoding="utf-8",
        errors="replace",
        timeout=timeout,
    )
    logger.debug(f"run_command done rc={res.returncode}")
    return CommandOutput(res.returncode, res.stdout or "", res.stderr or "")


def run_step_command(
    step: StepDefinition,
    ctx: StepContext,
    cmd: Union[str, Sequence[str]],
    started_at: str,
    outputs_from: Optional[Callable[[CommandOutput], Dict[str, str]]] = None,
) -> StepResult:
    """Run one command for ``step`` and convert every ordinary failure to data."""
    try:
        out = run_command(cmd, ctx, timeout=step.timeout)
    except subprocess.TimeoutExpired as ex:
        out = CommandOutput(TIMEOUT_EXIT_CODE, _decode(ex.stdout), _decode(ex.stderr))
        return wrap_result(step, started_at, out, error=f"step timed out after {step.timeout:g}s")
    except WorkingDirectoryError:
        raise
    except OSError as ex:
        return wrap_error(step, started_at, str(ex))
    extra = outputs_from(out) if outputs_from else None
    return wrap_result(step, started_at, out, extra)


def _arg(step: StepDefinition, key: str) -> Any:
    return (step.args or {}).get(key)


def _required_str(step: StepDefinition, key: str) -> Optional[str]:
    v = _arg(step, key)
    return v if isinstance(v, str) and v else None


def _required_int(step: StepDefinition, key: str) -> Optional[int]:
    v = _arg(step, key)
    # bool is an int subclass; reject it
    if isinstance(v, int) and not isinstance(v, bool):
        return v
    return None


# ----- shell -----

@register_step("steps:shell")
def shell_step(step: StepDefinition, ctx: StepContext) -> StepResult:
    started_at = now_iso()
    cmd = _required_str(step, "cmd")
    if cmd is None:
        return wrap_error(step, started_at, "steps:shell requires args.cmd (string)")
    return run_step_command(step, ctx, cmd, started_at)


# ----- git -----

def _simple_git_step(type_name: str, git_args: List[str]) -> StepHandler:
    def handler(step: StepDefinition, ctx: StepContext) -> StepResult:
        return run_step_command(step, ctx, ["git", *git_args], now_iso())
    handler.__name__ = type_name.replace("steps:", "").replace(".", "_") + "_step"
    return register_step(type_name)(handler)


_simple_git_step("steps:git.status", ["status", "--porcelain"])
_simple_git_step("steps:git.diff", ["diff"])
_simple_git_step("steps:git.fetch", ["fetch"])
_simple_git_step("steps:git.pull", ["pull"])
_simple_git_step("steps:git.conflictList", ["diff", "--name-only", "--diff-filter=U"])


def _branch_git_step(type_name: str, verb: str) -> StepHandler:
    def handler(step: StepDefinition, ctx: StepContext) -> StepResult:
        started_at = now_iso()
        branch = _required_str(step, "branch")
        if branch is None:
            return wrap_error(step, started_at, f"{type_name} requires args.branch (string)")
        return run_step_command(step, ctx, ["git", verb, branch], started_at)
    handler.__name__ = f"git_{verb}_step"
    return register_step(type_name)(handler)


_branch_git_step("steps:git.checkout", "checkout")
_branch_git_step("steps:git.merge", "merge")


@register_step("steps:git.add")
def git_add_step(step: StepDefinition, ctx: StepContext) -> StepResult:
    files = _arg(step, "files")
    if isinstance(files, list) and files and all(isinstance(f, str) for f in files):
        cmd = ["git", "add", "--", *files]
    else:
        cmd = ["git", "add", "-A"]
    return run_step_command(step, ctx, cmd, now_iso())


@register_step("steps:git.commit")
def git_commit_step(step: StepDefinition, ctx: StepContext) -> StepResult:
    started_at = now_iso()
    message = _required_str(step, "message")
    if message is None:
        return wrap_error(step, started_at, "steps:git.commit requires args.message (string)")
    if _arg(step, "all") is True:
        staged = run_step_command(step, ctx, ["git", "add", "-A"], started_at)
        # commit is attempted regardless; it reports nothing-to-commit itself
        if staged.exit_code != 0:
            logger.warning(f"{step.id}: git add -A exited {staged.exit_code}: {(staged.stderr or staged.error or '').strip()}")
    return run_step_command(step, ctx, ["git", "commit", "-m", message], started_at)


# ----- GitHub CLI -----

GH_MISSING = "'gh' CLI not found. Install from https://cli.github.com/"


def parse_json_outputs(stdout: Optional[str], keys: Sequence[str]) -> Dict[str, str]:
    """Pick ``keys`` out of a JSON object on stdout; {} if it does not parse."""
    if not stdout:
        return {}
    try:
        parsed = json.loads(stdout.strip())
    except ValueError:
        return {}
    if not isinstance(parsed, dict):
        return {}
    return {k: str(parsed[k]) for k in keys if parsed.get(k) is not None}


def _gh_step(step: StepDefinition, ctx: StepContext, gh_args: List[str], started_at: str,
             outputs_from: Optional[Callable[[CommandOutput], Dict[str, str]]] = None) -> StepResult:
    if shutil.which("gh", path=(ctx.env or {}).get("PATH") or os.environ.get("PATH")) is None:
        return wrap_error(step, started_at, GH_MISSING)
    return run_step_command(step, ctx, ["gh", *gh_args], started_at, outputs_from)


@register_step("steps:gh.issueGet")
def gh_issue_get_step(step: StepDefinition, ctx: StepContext) -> StepResult:
    started_at = now_iso()
    number = _required_int(step, "number")
    if number is None:
        return wrap_error(step, started_at, "steps:gh.issueGet requires args.number (integer)")
    keys = ["title", "body", "url", "state"]
    return _gh_step(
        step, ctx,
        ["issue", "view", str(number), "--json", "title,body,labels,assignees,state,url"],
        started_at,
        lambda out: parse_json_outputs(out.stdout, keys),
    )


@register_step("steps:gh.prGet")
def gh_pr_get_step(step: StepDefinition, ctx: StepContext) -> StepResult:
    started_at = now_iso()
    number = _required_int(step, "number")
    if number is None:
        return wrap_error(step, started_at, "steps:gh.prGet requires args.number (integer)")
    keys = ["title", "body", "url", "state", "headRefName", "baseRefName"]
    return _gh_step(
        step, ctx,
        ["pr", "view", str(number), "--json", "title,body,labels,assignees,state,url,headRefName,baseRefName"],
        started_at,
        lambda out: parse_json_outputs(out.stdout, keys),
    )


@register_step("steps:gh.prCreate")
def gh_pr_create_step(step: StepDefinition, ctx: StepContext) -> StepResult:
    started_at = now_iso()
    title = _required_str(step, "title")
    if title is None:
        return wrap_error(step, started_at, "steps:gh.prCreate requires args.title (string)")
    gh_args = ["pr", "create", "--title", title]
    for key in ("body", "base", "head"):
        v = _arg(step, key)
        if isinstance(v, str):
            gh_args += [f"--{key}", v]

    def _url(out: CommandOutput) -> Dict[str, str]:
        url = out.stdout.strip()
        return {"url": url} if url else {}

    return _gh_step(step, ctx, gh_args, started_at, _url)


@register_step("steps:gh.prMerge")
def gh_pr_merge_step(step: StepDefinition, ctx: StepContext) -> StepResult:
    started_at = now_iso()
    number = _required_int(step, "number")
    if number is None:
        return wrap_error(step, started_at, "steps:gh.prMerge requires args.number (integer)")
    method = _arg(step, "method")
    method = method if isinstance(method, str) and method else "merge"
    return _gh_step(step, ctx, ["pr", "merge", str(number), f"--{method}"], started_at)


# ----- dispatch -----

def execute_step(step: StepDefinition, ctx: StepContext) -> StepResult:
    """Run ``step`` with the handler registered for its type."""
    handler = _HANDLERS.get(step.type)
    if handler is None:
        now = now_iso()
        return StepResult(
            step_id=step.id,
            type=step.type,
            label=step.label,
            exit_code=1,
            error=f"unknown step type: {step.type}",
            started_at=now,
            completed_at=now,
        )
    return handler(step, ctx)
