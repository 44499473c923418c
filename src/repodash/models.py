"""Data model shared across the cache, signature and local git layers.

Remote summaries are produced by fetchers (external collaborators) and only
read here. Local git types are produced exclusively by ``git_wrapper``.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path

from .constants import DETACHED_HEAD


class ResourceKind(str, Enum):
    """The remote resource kinds mirrored into recent lists."""

    ISSUES = "issues"
    PULL_REQUESTS = "pull_requests"
    RELEASES = "releases"
    CI_RUNS = "ci_runs"
    DISCUSSIONS = "discussions"
    TAGS = "tags"
    BRANCHES = "branches"
    CONTRIBUTORS = "contributors"
    COMMITS = "commits"


# --- Remote summaries ---


@dataclass(frozen=True)
class IssueLabel:
    name: str
    color: str | None = None


@dataclass(frozen=True)
class IssueSummary:
    number: int
    title: str
    author_login: str | None = None
    assignee_logins: tuple[str, ...] = ()
    labels: tuple[IssueLabel, ...] = ()
    comment_count: int = 0
    updated_at: datetime | None = None
    url: str | None = None


@dataclass(frozen=True)
class PullRequestSummary:
    number: int
    title: str
    author_login: str | None = None
    comment_count: int = 0
    review_comment_count: int = 0
    is_draft: bool = False
    updated_at: datetime | None = None
    url: str | None = None


@dataclass(frozen=True)
class ReleaseSummary:
    name: str
    tag: str
    published_at: datetime | None = None
    is_prerelease: bool = False
    url: str | None = None


@dataclass(frozen=True)
class WorkflowRunSummary:
    name: str
    status: str
    conclusion: str | None = None
    branch: str | None = None
    updated_at: datetime | None = None
    url: str | None = None


@dataclass(frozen=True)
class DiscussionSummary:
    title: str
    category: str | None = None
    author_login: str | None = None
    comment_count: int = 0
    updated_at: datetime | None = None
    url: str | None = None


@dataclass(frozen=True)
class TagSummary:
    name: str
    commit_sha: str


@dataclass(frozen=True)
class BranchSummary:
    name: str
    commit_sha: str
    is_protected: bool = False


@dataclass(frozen=True)
class ContributorSummary:
    login: str
    contributions: int = 0


@dataclass(frozen=True)
class CommitSummary:
    sha: str
    message: str
    author: str | None = None
    authored_at: datetime | None = None


# --- Local git ---


class LocalSyncState(str, Enum):
    SYNCED = "synced"
    BEHIND = "behind"
    AHEAD = "ahead"
    DIVERGED = "diverged"
    DIRTY = "dirty"
    UNKNOWN = "unknown"

    @classmethod
    def resolve(
        cls, is_clean: bool, ahead: int | None, behind: int | None
    ) -> "LocalSyncState":
        """Derives the sync state from cleanliness and ahead/behind counts."""
        if not is_clean:
            return cls.DIRTY
        if ahead is None or behind is None:
            return cls.UNKNOWN
        if ahead == 0 and behind == 0:
            return cls.SYNCED
        if behind > 0 and ahead == 0:
            return cls.BEHIND
        if ahead > 0 and behind == 0:
            return cls.AHEAD
        return cls.DIVERGED


@dataclass(frozen=True)
class LocalDirtyCounts:
    added: int = 0
    modified: int = 0
    deleted: int = 0

    @property
    def is_empty(self) -> bool:
        return self.added == 0 and self.modified == 0 and self.deleted == 0

    @property
    def summary(self) -> str:
        """Compact summary, e.g. ``+2 -1 ~3``."""
        parts = []
        if self.added:
            parts.append(f"+{self.added}")
        if self.deleted:
            parts.append(f"-{self.deleted}")
        if self.modified:
            parts.append(f"~{self.modified}")
        return " ".join(parts)


@dataclass(frozen=True)
class LocalRepoStatus:
    """Snapshot of a local working copy.

    Attributes:
        path (Path): Working copy root.
        name (str): Directory name.
        full_name (str | None): ``owner/name`` derived from the origin remote.
        branch (str): Current branch, or ``DETACHED_HEAD``.
        is_clean (bool): Whether ``git status --porcelain`` is empty.
        ahead_count (int | None): Commits ahead of upstream.
        behind_count (int | None): Commits behind upstream.
        sync_state (LocalSyncState): Derived sync state.
        dirty_counts (LocalDirtyCounts | None): Dirty file counts, None when clean.
        dirty_files (tuple[str, ...]): Dirty paths, in porcelain order.
        worktree_name (str | None): Name of the linked worktree, if any.
        upstream_branch (str | None): Upstream ref, e.g. ``origin/main``.
    """

    path: Path
    name: str
    branch: str
    is_clean: bool
    sync_state: LocalSyncState
    full_name: str | None = None
    ahead_count: int | None = None
    behind_count: int | None = None
    dirty_counts: LocalDirtyCounts | None = None
    dirty_files: tuple[str, ...] = ()
    worktree_name: str | None = None
    upstream_branch: str | None = None

    @property
    def display_name(self) -> str:
        return self.full_name or self.name

    @property
    def dirty_summary(self) -> str | None:
        return self.dirty_counts.summary if self.dirty_counts else None

    @property
    def sync_detail(self) -> str:
        if self.sync_state is LocalSyncState.SYNCED:
            return "Up to date"
        if self.sync_state is LocalSyncState.BEHIND:
            return f"Behind {self.behind_count}" if self.behind_count else "Behind"
        if self.sync_state is LocalSyncState.AHEAD:
            return f"Ahead {self.ahead_count}" if self.ahead_count else "Ahead"
        if self.sync_state is LocalSyncState.DIVERGED:
            return "Diverged"
        if self.sync_state is LocalSyncState.DIRTY:
            if self.dirty_counts and not self.dirty_counts.is_empty:
                return f"Dirty ({self.dirty_counts.summary})"
            return "Dirty"
        return "No upstream"

    @property
    def can_auto_sync(self) -> bool:
        return (
            self.is_clean
            and self.sync_state is LocalSyncState.BEHIND
            and (self.ahead_count or 0) == 0
            and self.branch != DETACHED_HEAD
        )


@dataclass(frozen=True)
class LocalBranchDetails:
    name: str
    is_current: bool
    upstream: str | None = None
    ahead_count: int | None = None
    behind_count: int | None = None
    last_commit_date: datetime | None = None
    last_commit_author: str | None = None


@dataclass(frozen=True)
class LocalBranchSnapshot:
    branches: tuple[LocalBranchDetails, ...]
    is_detached_head: bool = False
    detached_commit_date: datetime | None = None
    detached_commit_author: str | None = None


@dataclass(frozen=True)
class LocalWorktree:
    path: Path
    branch: str | None
    is_current: bool
    upstream: str | None = None
    ahead_count: int | None = None
    behind_count: int | None = None
    last_commit_date: datetime | None = None
    last_commit_author: str | None = None
    dirty_counts: LocalDirtyCounts | None = None


@dataclass(frozen=True)
class LocalSyncResult:
    did_fetch: bool
    did_pull: bool
    did_push: bool


# --- Dashboard state ---


class AccountStatus(str, Enum):
    LOGGED_OUT = "logged_out"
    LOGGING_IN = "logging_in"
    LOGGED_IN = "logged_in"


@dataclass(frozen=True)
class AccountState:
    status: AccountStatus = AccountStatus.LOGGED_OUT
    username: str | None = None
    host: str | None = None

    @property
    def signed_in_user(self) -> str | None:
        """The signed-in identity, or None when not logged in."""
        if self.status is AccountStatus.LOGGED_IN:
            return self.username
        return None


class CIStatus(str, Enum):
    PASSING = "passing"
    FAILING = "failing"
    PENDING = "pending"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class ActivityEvent:
    title: str
    actor: str
    date: datetime
    event_type: str | None = None
    url: str | None = None


@dataclass(frozen=True)
class HeatmapRange:
    start: datetime
    end: datetime


@dataclass(frozen=True)
class ContributionState:
    user: str | None = None
    error: str | None = None
    heatmap_count: int = 0


@dataclass
class UserSettings:
    """Display settings that influence what the dashboard renders."""

    show_contribution_header: bool = True
    card_density: str = "comfortable"
    accent_tone: str = "system"
    heatmap_display: str = "inline"
    heatmap_span: str = "12_months"
    display_limit: int = 10
    show_forks: bool = False
    show_archived: bool = False
    menu_sort_key: str = "activity"
    pinned_repositories: list[str] = field(default_factory=list)
    hidden_repositories: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class RepositoryDisplay:
    """A repository as shown on the dashboard, with its dynamic fields."""

    full_name: str
    ci_status: CIStatus = CIStatus.UNKNOWN
    ci_run_count: int | None = None
    issues: int = 0
    pulls: int = 0
    stars: int = 0
    forks: int = 0
    pushed_at: datetime | None = None
    latest_release_tag: str | None = None
    latest_activity_date: datetime | None = None
    activity_events: tuple[ActivityEvent, ...] = ()
    activity_url: str | None = None
    traffic_visitors: int | None = None
    traffic_cloners: int | None = None
    heatmap_count: int = 0
    error: str | None = None
    rate_limited_until: datetime | None = None
    local_status: LocalRepoStatus | None = None
    is_fork: bool = False
    is_archived: bool = False


@dataclass
class DashboardState:
    """Everything the main view is built from."""

    account: AccountState = field(default_factory=AccountState)
    settings: UserSettings = field(default_factory=UserSettings)
    menu_selection: str = "all"
    has_loaded_repositories: bool = False
    rate_limit_reset: datetime | None = None
    last_error: str | None = None
    contribution: ContributionState | None = None
    heatmap_range: HeatmapRange | None = None
    repositories: list[RepositoryDisplay] = field(default_factory=list)
