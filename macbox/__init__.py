"""
macbox: declarative flows over git worktrees, fanned out across workspaces.
"""

__version__ = "0.1.0"
