import os
from pathlib import Path

"""Global constants and configuration path definitions for repodash.

This module defines the filesystem layout (adhering to XDG standards where applicable),
application identifiers, and the default limits used by the cache, the signature
engine and the local git coordinator.
"""

# --- Identity ---
APP_NAME = "repodash"
"""str: The human-readable application name."""

# --- Paths ---
_XDG_STATE = os.environ.get("XDG_STATE_HOME")
_BASE_STATE = Path(_XDG_STATE) if _XDG_STATE else Path.home() / ".local/state"

STATE_DIR = _BASE_STATE / "repodash"
"""Path: The directory for runtime state data (logs)."""

LOG_FILE = STATE_DIR / "repodash.log"
"""Path: The file path for background-mode logs."""

_XDG_CONFIG = os.environ.get("XDG_CONFIG_HOME")
CONFIG_DIR: Path = (
    Path(_XDG_CONFIG) / "repodash" if _XDG_CONFIG else Path.home() / ".config/repodash"
)
"""Path: The directory for user configuration files."""

CONFIG_FILE: Path = CONFIG_DIR / "config.toml"
"""Path: The main configuration file path."""

# --- Recent lists ---
DEFAULT_CACHE_TTL = 90
"""int: Seconds a fetched recent list is considered fresh."""

DEFAULT_LOAD_TIMEOUT = 12
"""int: Seconds before a recent-list fetch is abandoned as timed out."""

DEFAULT_LIST_LIMIT = 20
"""int: Items requested from fetchers and shown per recent list."""

DEFAULT_PREVIEW_LIMIT = 5
"""int: Items shown inline for preview-style lists (commits)."""

ISSUE_LABEL_CHIP_LIMIT = 6
"""int: Maximum number of label chips offered to the issue label filter."""

# --- Signatures ---
DEFAULT_TIME_BUCKET = 60
"""int: Width in seconds of the coarse time bucket in build signatures."""

ACTIVITY_DIGEST_WINDOW = 10
"""int: Number of leading activity events that participate in submenu digests."""

# --- Local git ---
DETACHED_HEAD = "detached"
"""str: Branch marker used when a working copy has a detached HEAD."""

DEFAULT_WORKTREE_FOLDER = ".work"
"""str: Folder (relative to the repository) that holds new worktrees."""

GIT_LOCK_FILES = [
    "MERGE_HEAD",
    "REBASE_HEAD",
    "CHERRY_PICK_HEAD",
    "BISECT_LOG",
    "rebase-merge",
    "rebase-apply",
]
"""
list[str]: Git internal files indicating an
active state (merge/rebase) that blocks local mutations.
"""

# --- Main view ---
MIN_MENU_ITEMS = 3
"""int: A main view with fewer rendered items is always rebuilt on open."""
