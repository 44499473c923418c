"""Content signatures that decide when the main view must be rebuilt.

A ``BuildSignature`` captures everything the main view displays. Two equal
signatures mean the existing view can be reused verbatim and only needs an
idempotent layout refresh. Per-repository ``SubmenuSignature`` values do the
same for each repository's submenu.

Digests are SHA-256 hex strings over a canonical JSON encoding, so they are
stable across processes and can be logged.
"""

import hashlib
import json
import logging
import math
from collections.abc import Callable, Hashable, Iterable, Mapping
from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Generic, TypeVar

from .constants import ACTIVITY_DIGEST_WINDOW, APP_NAME, DEFAULT_TIME_BUCKET
from .models import (
    AccountState,
    ActivityEvent,
    ContributionState,
    DashboardState,
    HeatmapRange,
    RepositoryDisplay,
    ResourceKind,
    UserSettings,
)

logger = logging.getLogger(APP_NAME)

S = TypeVar("S")

RECENT_COUNT_KINDS = (
    ResourceKind.RELEASES,
    ResourceKind.DISCUSSIONS,
    ResourceKind.TAGS,
    ResourceKind.BRANCHES,
    ResourceKind.CONTRIBUTORS,
)


def _encode(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (set, frozenset)):
        return sorted(value, key=str)
    return str(value)


def _digest(payload: Any) -> str:
    raw = json.dumps(payload, sort_keys=True, default=_encode, separators=(",", ":"))
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


def _timestamp(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


@dataclass(frozen=True)
class AccountSignature:
    status: str
    username: str | None
    host: str | None

    @classmethod
    def of(cls, account: AccountState) -> "AccountSignature":
        return cls(account.status.value, account.username, account.host)


@dataclass(frozen=True)
class SettingsSignature:
    """The subset of user settings that changes what the main view shows."""

    show_contribution_header: bool
    card_density: str
    accent_tone: str
    heatmap_display: str
    heatmap_span: str
    display_limit: int
    show_forks: bool
    show_archived: bool
    menu_sort_key: str
    pinned_repositories: tuple[str, ...]
    hidden_repositories: tuple[str, ...]

    @classmethod
    def of(cls, settings: UserSettings) -> "SettingsSignature":
        return cls(
            show_contribution_header=settings.show_contribution_header,
            card_density=settings.card_density,
            accent_tone=settings.accent_tone,
            heatmap_display=settings.heatmap_display,
            heatmap_span=settings.heatmap_span,
            display_limit=settings.display_limit,
            show_forks=settings.show_forks,
            show_archived=settings.show_archived,
            menu_sort_key=settings.menu_sort_key,
            pinned_repositories=tuple(settings.pinned_repositories),
            hidden_repositories=tuple(settings.hidden_repositories),
        )


@dataclass(frozen=True)
class ContributionSignature:
    user: str | None
    error: str | None
    heatmap_count: int

    @classmethod
    def of(cls, contribution: ContributionState | None) -> "ContributionSignature | None":
        if contribution is None:
            return None
        return cls(contribution.user, contribution.error, contribution.heatmap_count)


@dataclass(frozen=True)
class RepoSignature:
    """A repository's dynamic fields as shown on its card.

    Activity events enter only through ``latest_activity_date``; the events
    themselves are digested per submenu.
    """

    full_name: str
    ci_status: str
    ci_run_count: int | None
    issues: int
    pulls: int
    stars: int
    forks: int
    pushed_at: str | None
    latest_release_tag: str | None
    latest_activity_date: str | None
    traffic_visitors: int | None
    traffic_cloners: int | None
    heatmap_count: int
    error: str | None
    rate_limited_until: str | None
    local_branch: str | None
    local_sync_state: str | None
    local_dirty: str | None

    @classmethod
    def of(cls, repo: RepositoryDisplay) -> "RepoSignature":
        local = repo.local_status
        return cls(
            full_name=repo.full_name,
            ci_status=repo.ci_status.value,
            ci_run_count=repo.ci_run_count,
            issues=repo.issues,
            pulls=repo.pulls,
            stars=repo.stars,
            forks=repo.forks,
            pushed_at=_timestamp(repo.pushed_at),
            latest_release_tag=repo.latest_release_tag,
            latest_activity_date=_timestamp(repo.latest_activity_date),
            traffic_visitors=repo.traffic_visitors,
            traffic_cloners=repo.traffic_cloners,
            heatmap_count=repo.heatmap_count,
            error=repo.error,
            rate_limited_until=_timestamp(repo.rate_limited_until),
            local_branch=local.branch if local else None,
            local_sync_state=local.sync_state.value if local else None,
            local_dirty=local.dirty_summary if local else None,
        )


def repos_digest(repos: Iterable[RepositoryDisplay]) -> str:
    """Digest of the visible repositories' dynamic fields, in display order."""
    return _digest([asdict(RepoSignature.of(repo)) for repo in repos])


def activity_digest(
    events: Iterable[ActivityEvent], window: int = ACTIVITY_DIGEST_WINDOW
) -> str:
    """Digest of the first ``window`` events. Later events never affect it."""
    leading = []
    for index, event in enumerate(events):
        if index >= window:
            break
        leading.append((event.title, event.actor, _timestamp(event.date), event.event_type or ""))
    return _digest(leading)


@dataclass(frozen=True)
class BuildSignature:
    """Everything the main view is built from. Equal signatures skip a rebuild."""

    account: AccountSignature
    settings: SettingsSignature
    menu_selection: str
    has_loaded_repositories: bool
    rate_limit_reset: str | None
    last_error: str | None
    contribution: ContributionSignature | None
    heatmap_start: str | None
    heatmap_end: str | None
    repos_digest: str
    time_bucket: int

    @property
    def digest(self) -> str:
        return _digest(asdict(self))


def build_signature(
    state: DashboardState, now: float, bucket_seconds: int = DEFAULT_TIME_BUCKET
) -> BuildSignature:
    """Computes the main view signature.

    Pure: the same state and the same time bucket always give an equal
    signature. Missing optional inputs contribute None.

    Args:
        state (DashboardState): The dashboard inputs.
        now (float): The current time in seconds.
        bucket_seconds (int): Width of the time bucket; values below 1 use 1.
    """
    heatmap: HeatmapRange | None = state.heatmap_range
    return BuildSignature(
        account=AccountSignature.of(state.account),
        settings=SettingsSignature.of(state.settings),
        menu_selection=state.menu_selection,
        has_loaded_repositories=state.has_loaded_repositories,
        rate_limit_reset=_timestamp(state.rate_limit_reset),
        last_error=state.last_error,
        contribution=ContributionSignature.of(state.contribution),
        heatmap_start=_timestamp(heatmap.start) if heatmap else None,
        heatmap_end=_timestamp(heatmap.end) if heatmap else None,
        repos_digest=repos_digest(state.repositories),
        time_bucket=_bucket(now, bucket_seconds),
    )


def _bucket(now: float, bucket_seconds: int) -> int:
    if not math.isfinite(now):
        return 0
    return int(now // max(bucket_seconds, 1))


@dataclass(frozen=True)
class RecentCountSignature:
    """Cached recent-list sizes shown as submenu badges (None = never fetched)."""

    releases: int | None = None
    discussions: int | None = None
    tags: int | None = None
    branches: int | None = None
    contributors: int | None = None

    @classmethod
    def of(cls, counts: Mapping[ResourceKind, int | None]) -> "RecentCountSignature":
        return cls(**{kind.value: counts.get(kind) for kind in RECENT_COUNT_KINDS})


@dataclass(frozen=True)
class SubmenuSignature:
    repo: RepoSignature
    activity_digest: str
    activity_url: str | None
    card_density: str
    accent_tone: str
    heatmap_display: str
    heatmap_start: str | None
    heatmap_end: str | None
    recent_counts: RecentCountSignature
    is_pinned: bool
    local_path: str | None


def submenu_signature(
    repo: RepositoryDisplay,
    settings: UserSettings,
    heatmap_range: HeatmapRange | None,
    recent_counts: RecentCountSignature,
    is_pinned: bool,
    activity_window: int = ACTIVITY_DIGEST_WINDOW,
) -> SubmenuSignature:
    return SubmenuSignature(
        repo=RepoSignature.of(repo),
        activity_digest=activity_digest(repo.activity_events, activity_window),
        activity_url=repo.activity_url,
        card_density=settings.card_density,
        accent_tone=settings.accent_tone,
        heatmap_display=settings.heatmap_display,
        heatmap_start=_timestamp(heatmap_range.start) if heatmap_range else None,
        heatmap_end=_timestamp(heatmap_range.end) if heatmap_range else None,
        recent_counts=recent_counts,
        is_pinned=is_pinned,
        local_path=str(repo.local_status.path) if repo.local_status else None,
    )


@dataclass
class SignatureTracker:
    """Remembers the last built signature per view instance."""

    _baselines: dict[Hashable, BuildSignature] = field(default_factory=dict)

    def needs_rebuild(self, menu_id: Hashable, signature: BuildSignature) -> bool:
        return self._baselines.get(menu_id) != signature

    def commit(self, menu_id: Hashable, signature: BuildSignature) -> None:
        """Records ``signature`` as the baseline after a rebuild completed."""
        self._baselines[menu_id] = signature
        logger.debug(f"Signature committed for {menu_id}: {signature.digest[:12]}")

    def invalidate(self, menu_id: Hashable | None = None) -> None:
        """Forgets one baseline, or all of them, forcing the next rebuild."""
        if menu_id is None:
            self._baselines.clear()
        else:
            self._baselines.pop(menu_id, None)


class SubmenuCache(Generic[S]):
    """Built submenus keyed by repository, reused while their signature holds."""

    def __init__(self) -> None:
        self._entries: dict[str, tuple[SubmenuSignature, S]] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def get_or_build(
        self, full_name: str, signature: SubmenuSignature, build: Callable[[], S]
    ) -> S:
        cached = self._entries.get(full_name)
        if cached is not None and cached[0] == signature:
            return cached[1]
        submenu = build()
        self._entries[full_name] = (signature, submenu)
        return submenu

    def retain(self, full_names: Iterable[str]) -> None:
        """Drops submenus of repositories no longer shown."""
        keep = set(full_names)
        for name in [name for name in self._entries if name not in keep]:
            del self._entries[name]

    def clear(self) -> None:
        self._entries.clear()
