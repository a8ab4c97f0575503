"""
Exception types raised by the flow and swarm engine.

Step-level failures are never raised; they are recorded in StepResult.
The exceptions below cover the fatal paths only (lookups, setup, config).
Each one also derives from the closest builtin so callers that catch
LookupError / FileNotFoundError / ValueError keep working.
"""

from __future__ import annotations


class MacboxError(Exception):
    """Base class for macbox engine errors."""


class NotFoundError(MacboxError, LookupError):
    """A workspace, session, repository or flow definition is missing."""


class WorkingDirectoryError(MacboxError, FileNotFoundError):
    """The working directory of a flow cannot be reached."""


class ConfigurationError(MacboxError, ValueError):
    """macbox.json (or .yaml) is malformed."""


class WorkspaceError(MacboxError, RuntimeError):
    """Creating a workspace (git worktree + records) failed."""
