"""
Core modules: flow definitions, step execution, flow engine and swarm orchestration.
"""

from .errors import (
    MacboxError, NotFoundError, WorkingDirectoryError, ConfigurationError, WorkspaceError
)
from .models import (
    StepDefinition, FlowDefinition, HooksDefinition, MacboxConfig,
    StepResult, FlowResult, SwarmWorkspaceResult, SwarmSummary, SwarmResult,
    WorkspaceRecord, SessionRecord,
)
from .events import EventRecorder, log_event, logging_sink, status_event
from .interpolation import interpolate, interpolate_step
from .steps import StepContext, execute_step, register_step
from .flow_engine import FlowEngine, run_flow, run_steps
from .swarm import SwarmOverrides, run_swarm, run_with_limit
from .hooks import HOOK_NAMES, run_hook
from .configuration import ConfigurationLoader
from .registry import FileRegistry

__all__ = [
    "MacboxError",
    "NotFoundError",
    "WorkingDirectoryError",
    "ConfigurationError",
    "WorkspaceError",
    "StepDefinition",
    "FlowDefinition",
    "HooksDefinition",
    "MacboxConfig",
    "StepResult",
    "FlowResult",
    "SwarmWorkspaceResult",
    "SwarmSummary",
    "SwarmResult",
    "WorkspaceRecord",
    "SessionRecord",
    "EventRecorder",
    "log_event",
    "logging_sink",
    "status_event",
    "interpolate",
    "interpolate_step",
    "StepContext",
    "execute_step",
    "register_step",
    "FlowEngine",
    "run_flow",
    "run_steps",
    "SwarmOverrides",
    "run_swarm",
    "run_with_limit",
    "HOOK_NAMES",
    "run_hook",
    "ConfigurationLoader",
    "FileRegistry",
]
