"""repodash: the sync core behind a live repository dashboard.

This package provides a de-duplicating TTL cache for remote recent lists, the
per-kind resource registry that renders them, content signatures that decide
when the dashboard must be rebuilt, and a coordinator for local git actions.
"""

from . import (
    cache,
    config,
    constants,
    dashboard,
    errors,
    filters,
    git_wrapper,
    local,
    models,
    ops,
    recent_lists,
    resources,
    signatures,
    system,
    views,
)

__all__ = [
    "cache",
    "config",
    "constants",
    "dashboard",
    "errors",
    "filters",
    "git_wrapper",
    "local",
    "models",
    "ops",
    "recent_lists",
    "resources",
    "signatures",
    "system",
    "views",
]
