#!/usr/bin/env python3
"""
macbox: run declarative flows in workspaces

Commands:
  macbox flow run NAME        # run a flow in the repo or a workspace
  macbox flow list            # flows declared in macbox.json
  macbox flow show NAME       # one flow definition
  macbox flow results         # persisted results of earlier runs
  macbox swarm run            # one flow across many workspaces
  macbox swarm new            # create N workspaces, optionally run a flow
"""
from __future__ import annotations

import argparse
import json
import logging
import sys
from dataclasses import replace
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from rich.console import Console
from rich.table import Table
from rich.text import Text

from macbox.core.configuration import ConfigurationLoader
from macbox.core.errors import ConfigurationError, NotFoundError, WorkspaceError
from macbox.core.flow_engine import load_flow_results, run_flow
from macbox.core.hooks import run_hook
from macbox.core.models import FlowResult, MacboxConfig, SwarmResult
from macbox.core.paths import default_base_dir
from macbox.core.registry import FileRegistry
from macbox.core.steps import StepContext
from macbox.core.swarm import SwarmOverrides, context_for_workspace, run_swarm
from macbox.core.workspace import RepoInfo, create_workspace, detect_repo
from macbox.utils.logging_config import setup_logging

logger = logging.getLogger("macbox")

DEFAULT_MAX_PARALLEL = 3
MAX_SWARM_COUNT = 20


def _console() -> Console:
    return Console(highlight=False)


def _err(msg: str) -> None:
    print(f"macbox: {msg}", file=sys.stderr)


def _base_dir(args: argparse.Namespace) -> Path:
    return Path(args.base).expanduser() if getattr(args, "base", None) else default_base_dir()


def _print_json(data: Dict[str, Any]) -> None:
    print(json.dumps(data, indent=2))


def _step_line(exit_code: int, step_id: str, step_type: str, label: Optional[str]) -> Text:
    tag = ("[ok]", "green") if exit_code == 0 else ("[fail]", "red")
    suffix = f" ({label})" if label else ""
    return Text.assemble("  ", tag, f" {step_id}: {step_type}{suffix}")


def print_flow_result(result: FlowResult, console: Optional[Console] = None) -> None:
    c = console or _console()
    status = Text("OK", style="green") if result.ok else Text("FAILED", style="red bold")
    c.print(Text.assemble(f"\nmacbox flow: {result.flow_name} - ", status))
    c.print(f"  steps: {len(result.steps)}")
    for step in result.steps:
        c.print(_step_line(step.exit_code, step.step_id, step.type, step.label))
        if step.error:
            c.print(Text(f"       error: {step.error}"))


def print_swarm_result(result: SwarmResult, console: Optional[Console] = None) -> None:
    c = console or _console()
    s = result.summary
    c.print(f"\nmacbox swarm: {result.flow_name}")
    c.print(f"  total: {s.total}, succeeded: {s.succeeded}, failed: {s.failed}")
    for r in result.results:
        tag = ("[ok]", "green") if r.flow_result.ok else ("[fail]", "red")
        c.print(Text.assemble("  ", tag, f" {r.workspace_id}: {len(r.flow_result.steps)} steps"))


# ----- target resolution -----

def _resolve_target(args: argparse.Namespace) -> Tuple[StepContext, Optional[str]]:
    """Context for a workspace (--workspace) or the current repository."""
    base = _base_dir(args)
    ws_id = getattr(args, "workspace", None)
    if ws_id:
        registry = FileRegistry(base)
        ws = registry.load_workspace(ws_id)
        session = registry.load_session(ws.session_id)
        ctx = context_for_workspace(ws, session, SwarmOverrides(debug=bool(getattr(args, "debug", False))))
        return ctx, ws.id
    repo = detect_repo(getattr(args, "repo", None))
    return _repo_context(repo, debug=bool(getattr(args, "debug", False))), None


def _repo_context(repo: RepoInfo, debug: bool = False) -> StepContext:
    return StepContext(
        worktree_path=repo.root,
        repo_root=repo.root,
        git_common_dir=repo.git_common_dir,
        git_dir=repo.git_dir,
        debug=debug,
    )


def _apply_defaults(ctx: StepContext, config: Optional[MacboxConfig]) -> StepContext:
    d = config.defaults if config else None
    if d is None:
        return ctx
    return replace(
        ctx,
        agent=ctx.agent or d.agent,
        profiles=tuple(ctx.profiles) or tuple(d.profiles or ()),
    )


def _run_hook_quietly(hook: str, config: Optional[MacboxConfig], ctx: StepContext) -> None:
    hook_result = run_hook(hook, config, ctx)
    if hook_result is not None and not hook_result.ok:
        logger.warning(f"hook {hook} failed in {ctx.worktree_path}")


# ----- flow -----

def cmd_flow_run(args: argparse.Namespace) -> int:
    if not args.name:
        _err("flow run: provide a flow name")
        return 2
    try:
        ctx, workspace_id = _resolve_target(args)
    except NotFoundError as e:
        _err(str(e))
        return 1
    loader = ConfigurationLoader(ctx.worktree_path, ctx.repo_root)
    try:
        config = loader.load()
        flow_def = loader.load_flow_definition(args.name)
    except (ConfigurationError, NotFoundError) as e:
        _err(str(e))
        return 1

    ctx = _apply_defaults(ctx, config)
    result = run_flow(args.name, flow_def, ctx, workspace_id=workspace_id)
    _run_hook_quietly("onFlowComplete", config, ctx)

    if args.json:
        _print_json(result.to_json_dict())
    else:
        print_flow_result(result)
    return 0 if result.ok else 1


def _load_config_for(args: argparse.Namespace) -> Optional[MacboxConfig]:
    ctx, _ = _resolve_target(args)
    return ConfigurationLoader(ctx.worktree_path, ctx.repo_root).load()


def cmd_flow_list(args: argparse.Namespace) -> int:
    try:
        config = _load_config_for(args)
    except (ConfigurationError, NotFoundError) as e:
        _err(str(e))
        return 1
    if config is None or not config.flows:
        print("macbox: no flows defined in macbox.json")
        return 0
    if args.json:
        _print_json({name: f.to_json_dict() for name, f in config.flows.items()})
        return 0
    table = Table(title="Flows")
    table.add_column("NAME")
    table.add_column("STEPS", justify="right")
    table.add_column("DESCRIPTION")
    for name, flow in config.flows.items():
        table.add_row(name, str(len(flow.steps)), flow.description or "")
    _console().print(table)
    return 0


def cmd_flow_show(args: argparse.Namespace) -> int:
    if not args.name:
        _err("flow show: provide a flow name")
        return 2
    try:
        ctx, _ = _resolve_target(args)
        flow = ConfigurationLoader(ctx.worktree_path, ctx.repo_root).load_flow_definition(args.name)
    except (ConfigurationError, NotFoundError) as e:
        _err(str(e))
        return 1
    if args.json:
        _print_json(flow.to_json_dict())
        return 0
    c = _console()
    c.print(f"flow: {args.name}")
    if flow.description:
        c.print(Text(f"  {flow.description}"))
    table = Table()
    table.add_column("#", justify="right")
    table.add_column("ID")
    table.add_column("TYPE")
    table.add_column("LABEL")
    table.add_column("ON ERROR")
    for i, step in enumerate(flow.steps):
        table.add_row(
            str(i), step.id, step.type, step.label or "",
            "continue" if step.continue_on_error else "halt",
        )
    c.print(table)
    return 0


def cmd_flow_results(args: argparse.Namespace) -> int:
    try:
        ctx, _ = _resolve_target(args)
    except NotFoundError as e:
        _err(str(e))
        return 1
    limit = None if args.limit is not None and args.limit <= 0 else args.limit
    rows = load_flow_results(ctx.worktree_path, limit=limit)
    if args.json:
        print(json.dumps([{"file": str(p), "result": r.to_json_dict()} for p, r in rows], indent=2))
        return 0
    if not rows:
        print(f"macbox: no flow results under {ctx.worktree_path}")
        return 0
    table = Table(title="Flow results")
    table.add_column("FILE")
    table.add_column("FLOW")
    table.add_column("STATUS")
    table.add_column("STEPS", justify="right")
    table.add_column("COMPLETED")
    for p, r in rows:
        status = Text("ok", style="green") if r.ok else Text("failed", style="red")
        table.add_row(p.name, r.flow_name, status, str(len(r.steps)), r.completed_at)
    _console().print(table)
    return 0


# ----- swarm -----

def _parse_workspace_list(raw: Optional[str]) -> List[str]:
    if not raw:
        return []
    return [s.strip() for s in raw.split(",") if s.strip()]


def cmd_swarm_run(args: argparse.Namespace) -> int:
    if not args.flow:
        _err("swarm run: --flow <name> required")
        return 2
    if not args.workspaces:
        _err("swarm run: --workspaces <id1,id2,...> required")
        return 2
    workspace_ids = _parse_workspace_list(args.workspaces)
    if not workspace_ids:
        _err("swarm run: no workspace ids provided")
        return 2
    if args.max_parallel is not None and args.max_parallel < 1:
        _err("swarm run: --max-parallel must be >= 1")
        return 2

    try:
        repo = detect_repo(args.repo)
    except NotFoundError as e:
        _err(str(e))
        return 1
    loader = ConfigurationLoader(repo.root)
    try:
        config = loader.load()
        flow_def = loader.load_flow_definition(args.flow)
    except (ConfigurationError, NotFoundError) as e:
        _err(str(e))
        return 1

    result = _swarm(args.flow, flow_def, workspace_ids, args, repo, config)
    if args.json:
        _print_json(result.to_json_dict())
    else:
        print_swarm_result(result)
    return 1 if result.summary.failed > 0 else 0


def _swarm(flow_name, flow_def, workspace_ids, args, repo: RepoInfo, config: Optional[MacboxConfig]) -> SwarmResult:
    defaults = config.defaults if config else None
    max_parallel = args.max_parallel or (defaults.max_parallel if defaults else None) or DEFAULT_MAX_PARALLEL
    overrides = SwarmOverrides(
        agent=getattr(args, "agent", None) or (defaults.agent if defaults else None),
        profiles=tuple((defaults.profiles or ()) if defaults else ()),
        debug=bool(getattr(args, "debug", False)),
    )
    # lookup failures (unknown workspace ids) propagate to the caller
    registry = FileRegistry(_base_dir(args), project_id=repo.repo_id)
    return run_swarm(flow_name, flow_def, workspace_ids, max_parallel, registry, overrides)


def cmd_swarm_new(args: argparse.Namespace) -> int:
    if args.count is None:
        _err("swarm new: --count N required")
        return 2
    if args.count < 1 or args.count > MAX_SWARM_COUNT:
        _err(f"swarm new: --count must be between 1 and {MAX_SWARM_COUNT}")
        return 2
    if args.max_parallel is not None and args.max_parallel < 1:
        _err("swarm new: --max-parallel must be >= 1")
        return 2

    try:
        repo = detect_repo(args.repo)
    except NotFoundError as e:
        _err(str(e))
        return 1
    registry = FileRegistry(_base_dir(args), project_id=repo.repo_id)
    try:
        config = ConfigurationLoader(repo.root).load()
    except ConfigurationError as e:
        _err(str(e))
        return 1

    created = []
    for i in range(1, args.count + 1):
        worktree_name = f"ws-issue-{args.issue}-{i}" if args.issue else f"ws-swarm-{i}"
        try:
            ws = create_workspace(registry, repo, worktree_name, name=f"swarm-{i}", agent=args.agent)
        except WorkspaceError as e:
            _err(f"swarm: failed to create workspace {i}: {e}")
            return 1
        session = registry.load_session(ws.session_id)
        _run_hook_quietly("onWorkspaceCreate", config, context_for_workspace(ws, session))
        created.append(ws)

    # stdout carries only the JSON document under --json
    progress = sys.stderr if args.json else sys.stdout
    print(f"\nmacbox swarm: created {len(created)} workspaces", file=progress)
    for ws in created:
        print(f"  {ws.id}", file=progress)

    if not args.flow:
        return 0
    flows = config.flows if config else {}
    if args.flow not in flows:
        _err(f"flow '{args.flow}' not found, skipping swarm run")
        return 0

    print(f"\nmacbox swarm: running flow '{args.flow}' on {len(created)} workspaces", file=progress)
    result = _swarm(args.flow, flows[args.flow], [ws.id for ws in created], args, repo, config)
    if args.json:
        _print_json(result.to_json_dict())
    else:
        print_swarm_result(result)
    return 1 if result.summary.failed > 0 else 0


def _add_common(p: argparse.ArgumentParser) -> None:
    p.add_argument("--base", help="State directory (default: $MACBOX_BASE_DIR or ~/.local/share/macbox)")
    p.add_argument("--repo", help="Path inside the git repository (default: cwd)")
    p.add_argument("--json", action="store_true", help="Print machine-readable JSON")
    p.add_argument("--debug", action="store_true", help="Pass debug mode to steps")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="macbox", description="Run declarative flows in workspaces")
    parser.add_argument("--log-level", choices=["DEBUG", "INFO", "WARNING", "ERROR"], default="INFO")
    parser.add_argument("--log-file", help="Log file (default: <base>/macbox.log)")
    sub = parser.add_subparsers(dest="cmd")

    p_flow = sub.add_parser("flow", help="Run and inspect flows")
    flow_sub = p_flow.add_subparsers(dest="flow_cmd")

    p_run = flow_sub.add_parser("run", help="Run a flow")
    p_run.add_argument("name", nargs="?")
    p_run.add_argument("--workspace", help="Workspace id (default: current repository)")
    _add_common(p_run)
    p_run.set_defaults(func=cmd_flow_run)

    p_list = flow_sub.add_parser("list", help="List declared flows")
    p_list.add_argument("--workspace")
    _add_common(p_list)
    p_list.set_defaults(func=cmd_flow_list)

    p_show = flow_sub.add_parser("show", help="Show one flow definition")
    p_show.add_argument("name", nargs="?")
    p_show.add_argument("--workspace")
    _add_common(p_show)
    p_show.set_defaults(func=cmd_flow_show)

    p_results = flow_sub.add_parser("results", help="List persisted flow results")
    p_results.add_argument("--workspace")
    p_results.add_argument("--limit", type=int, default=20, help="Max rows (default: 20). 0 to disable")
    _add_common(p_results)
    p_results.set_defaults(func=cmd_flow_results)

    p_swarm = sub.add_parser("swarm", help="Run a flow across many workspaces")
    swarm_sub = p_swarm.add_subparsers(dest="swarm_cmd")

    p_srun = swarm_sub.add_parser("run", help="Run a flow on existing workspaces")
    p_srun.add_argument("--flow")
    p_srun.add_argument("--workspaces", help="Comma-separated workspace ids")
    p_srun.add_argument("--max-parallel", type=int, default=None,
                        help=f"Concurrent workspaces (default: config or {DEFAULT_MAX_PARALLEL})")
    p_srun.add_argument("--agent")
    _add_common(p_srun)
    p_srun.set_defaults(func=cmd_swarm_run)

    p_snew = swarm_sub.add_parser("new", help="Create workspaces, optionally run a flow on them")
    p_snew.add_argument("--count", type=int)
    p_snew.add_argument("--issue")
    p_snew.add_argument("--flow")
    p_snew.add_argument("--agent")
    p_snew.add_argument("--max-parallel", type=int, default=None)
    _add_common(p_snew)
    p_snew.set_defaults(func=cmd_swarm_new)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not hasattr(args, "func"):
        parser.print_help()
        # a group without a subcommand is a usage error
        return 2 if args.cmd else 0
    log_file = Path(args.log_file) if args.log_file else _base_dir(args) / "macbox.log"
    setup_logging(level=args.log_level, log_file=log_file)
    return int(args.func(args))


if __name__ == "__main__":
    sys.exit(main())
