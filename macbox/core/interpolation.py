"""
Step output interpolation.

Rewrites ``${steps.<stepId>.<path>}`` references inside step args using the
results of steps that already ran in the same flow. Supported paths:

  exitCode        decimal exit code
  stdout          raw captured stdout (untrimmed)
  stderr          raw captured stderr
  outputs.<key>   a named output

Anything that cannot be resolved (unknown step, unknown path, missing output
key) becomes the empty string. The resolver never raises and does no I/O.
"""

from __future__ import annotations

import re
from typing import Any, Dict, Mapping, Sequence

from .models import StepDefinition, StepResult

REFERENCE_RE = re.compile(r"\$\{steps\.([^.}]+)\.([^}]+)\}")
_OUTPUTS_PREFIX = "outputs."


def build_result_index(results: Sequence[StepResult]) -> Dict[str, StepResult]:
    # later results win on duplicate ids
    return {r.step_id: r for r in results}


def resolve_reference(step_id: str, path: str, index: Mapping[str, StepResult]) -> str:
    result = index.get(step_id)
    if result is None:
        return ""
    if path == "exitCode":
        return str(result.exit_code)
    if path == "stdout":
        return result.stdout or ""
    if path == "stderr":
        return result.stderr or ""
    if path.startswith(_OUTPUTS_PREFIX):
        return result.outputs.get(path[len(_OUTPUTS_PREFIX):], "")
    return ""


def interpolate_value(value: Any, index: Mapping[str, StepResult]) -> Any:
    if isinstance(value, str):
        if "${" not in value:
            return value
        return REFERENCE_RE.sub(lambda m: resolve_reference(m.group(1), m.group(2), index), value)
    if isinstance(value, (list, tuple)):
        return [interpolate_value(v, index) for v in value]
    if isinstance(value, Mapping):
        return {k: interpolate_value(v, index) for k, v in value.items()}
    return value


def interpolate(value: Any, previous_results: Sequence[StepResult]) -> Any:
    """Return ``value`` with every step reference substituted."""
    return interpolate_value(value, build_result_index(previous_results))


def interpolate_step(step: StepDefinition, previous_results: Sequence[StepResult]) -> StepDefinition:
    if not step.args:
        return step
    return step.model_copy(update={"args": interpolate(step.args, previous_results)})
