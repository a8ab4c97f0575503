"""
Lifecycle hooks declared in macbox config (``hooks.onFlowComplete`` etc.).

A hook is a plain step list run with flow semantics under the name
``hook:<hookName>``.
"""

from __future__ import annotations

import logging
from typing import Optional

from pydantic.alias_generators import to_snake

from .events import EventSink
from .flow_engine import run_steps
from .models import HOOK_NAMES, FlowResult, MacboxConfig
from .steps import StepContext

logger = logging.getLogger(__name__)

_HOOK_FIELDS = {name: to_snake(name) for name in HOOK_NAMES}


def run_hook(
    hook_name: str,
    config: Optional[MacboxConfig],
    ctx: StepContext,
    events: Optional[EventSink] = None,
) -> Optional[FlowResult]:
    if hook_name not in _HOOK_FIELDS:
        raise ValueError(f"unknown hook: {hook_name} (expected one of {', '.join(HOOK_NAMES)})")
    if config is None or config.hooks is None:
        return None
    steps = getattr(config.hooks, _HOOK_FIELDS[hook_name])
    if not steps:
        return None
    logger.info(f"running hook {hook_name} ({len(steps)} steps)")
    return run_steps(f"hook:{hook_name}", steps, ctx, events=events)
