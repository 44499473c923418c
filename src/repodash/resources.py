import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

from .cache import TTLCache, split_key
from .config import CacheConfig
from .constants import APP_NAME
from .errors import FetchError, FetchTimeoutError
from .filters import FilterState, filter_issues, filter_pull_requests
from .models import (
    BranchSummary,
    CommitSummary,
    ContributorSummary,
    DiscussionSummary,
    IssueSummary,
    PullRequestSummary,
    ReleaseSummary,
    ResourceKind,
    TagSummary,
    WorkflowRunSummary,
)
from .views import MenuRow, RowKind

logger = logging.getLogger(APP_NAME)

T = TypeVar("T")

Fetcher = Callable[[str, str, int], Awaitable[list[Any]]]
"""async fetch(owner, name, limit) -> list of items for one resource kind."""


@dataclass(frozen=True)
class RenderContext:
    """Inputs that shape how fetched items turn into rows."""

    filters: FilterState
    username: str | None
    list_limit: int
    preview_limit: int


def _short_sha(sha: str) -> str:
    return sha[:7]


def _issue_row(issue: IssueSummary) -> MenuRow:
    labels = ", ".join(label.name for label in issue.labels)
    detail = " · ".join(part for part in (issue.author_login, labels) if part)
    return MenuRow(RowKind.ITEM, f"#{issue.number} {issue.title}", detail or None, payload=issue)


def _filter_issues(items: list[IssueSummary], context: RenderContext) -> list[IssueSummary]:
    return filter_issues(items, context.filters, context.username)


def _pull_request_row(pr: PullRequestSummary) -> MenuRow:
    parts = [pr.author_login or "", "Draft" if pr.is_draft else ""]
    if pr.comment_count:
        parts.append(f"{pr.comment_count} comments")
    if pr.review_comment_count:
        parts.append(f"{pr.review_comment_count} review comments")
    detail = " · ".join(part for part in parts if part)
    return MenuRow(RowKind.ITEM, f"#{pr.number} {pr.title}", detail or None, payload=pr)


def _filter_pull_requests(
    items: list[PullRequestSummary], context: RenderContext
) -> list[PullRequestSummary]:
    return filter_pull_requests(items, context.filters, context.username)


def _release_row(release: ReleaseSummary) -> MenuRow:
    detail = f"{release.tag} · Pre-release" if release.is_prerelease else release.tag
    return MenuRow(RowKind.ITEM, release.name or release.tag, detail, payload=release)


def _run_row(run: WorkflowRunSummary) -> MenuRow:
    state = run.conclusion or run.status
    detail = f"{state} · {run.branch}" if run.branch else state
    return MenuRow(RowKind.ITEM, run.name, detail, payload=run)


def _discussion_row(discussion: DiscussionSummary) -> MenuRow:
    parts = [discussion.category or "", discussion.author_login or ""]
    if discussion.comment_count:
        parts.append(f"{discussion.comment_count} comments")
    detail = " · ".join(part for part in parts if part)
    return MenuRow(RowKind.ITEM, discussion.title, detail or None, payload=discussion)


def _tag_row(tag: TagSummary) -> MenuRow:
    return MenuRow(RowKind.ITEM, tag.name, _short_sha(tag.commit_sha), payload=tag)


def _branch_row(branch: BranchSummary) -> MenuRow:
    detail = _short_sha(branch.commit_sha)
    if branch.is_protected:
        detail = f"{detail} · Protected"
    return MenuRow(RowKind.ITEM, branch.name, detail, payload=branch)


def _contributor_row(contributor: ContributorSummary) -> MenuRow:
    return MenuRow(
        RowKind.ITEM,
        contributor.login,
        f"{contributor.contributions} contributions",
        payload=contributor,
    )


def _commit_row(commit: CommitSummary) -> MenuRow:
    subject = commit.message.splitlines()[0] if commit.message else ""
    detail = " · ".join(part for part in (_short_sha(commit.sha), commit.author) if part)
    return MenuRow(RowKind.ITEM, subject, detail, payload=commit)


@dataclass(frozen=True)
class KindTraits:
    """Static, per-kind presentation and filtering."""

    title: str
    icon: str
    empty_title: str
    to_row: Callable[[Any], MenuRow]
    filter: Callable[[list[Any], RenderContext], list[Any]] | None = None
    no_match_title: str | None = None
    preview: bool = False


KIND_TRAITS: dict[ResourceKind, KindTraits] = {
    ResourceKind.ISSUES: KindTraits(
        "Open Issues",
        "issue-opened",
        "No open issues",
        _issue_row,
        filter=_filter_issues,
        no_match_title="No matching issues",
    ),
    ResourceKind.PULL_REQUESTS: KindTraits(
        "Open Pull Requests",
        "git-pull-request",
        "No open pull requests",
        _pull_request_row,
        filter=_filter_pull_requests,
        no_match_title="No matching pull requests",
    ),
    ResourceKind.RELEASES: KindTraits("Open Releases", "tag", "No releases", _release_row),
    ResourceKind.CI_RUNS: KindTraits("Open Actions", "play", "No runs", _run_row),
    ResourceKind.DISCUSSIONS: KindTraits(
        "Open Discussions", "comment-discussion", "No discussions", _discussion_row
    ),
    ResourceKind.TAGS: KindTraits("Open Tags", "tag", "No tags", _tag_row),
    ResourceKind.BRANCHES: KindTraits(
        "Open Branches", "git-branch", "No branches", _branch_row
    ),
    ResourceKind.CONTRIBUTORS: KindTraits(
        "Open Contributors", "people", "No contributors", _contributor_row
    ),
    ResourceKind.COMMITS: KindTraits(
        "Open Commits", "git-commit", "No commits", _commit_row, preview=True
    ),
}


@dataclass(frozen=True)
class ResourceDescriptor(Generic[T]):
    """Binds one resource kind's cache, fetcher, TTL and presentation.

    Attributes:
        kind (ResourceKind): The resource kind.
        traits (KindTraits): Titles, row factory and filter for the kind.
        cache (TTLCache[T]): The kind's cache.
        fetch (Fetcher): The remote fetcher.
        ttl (float): Freshness window in seconds.
        load_timeout (float): Seconds before ``load`` raises FetchTimeoutError.
        clock (Callable[[], float]): Time source for ``fetched_at``.
    """

    kind: ResourceKind
    traits: KindTraits
    cache: TTLCache[T]
    fetch: Fetcher
    ttl: float
    load_timeout: float
    clock: Callable[[], float] = field(default=time.time)

    @property
    def title(self) -> str:
        return self.traits.title

    @property
    def icon(self) -> str:
        return self.traits.icon

    @property
    def empty_title(self) -> str:
        return self.traits.empty_title

    def cached(self, key: str, now: float, max_age: float | None = None) -> list[T] | None:
        return self.cache.cached(key, now, self.ttl if max_age is None else max_age)

    def stale(self, key: str) -> list[T] | None:
        return self.cache.stale(key)

    def needs_refresh(self, key: str, now: float, max_age: float | None = None) -> bool:
        return self.cache.needs_refresh(key, now, self.ttl if max_age is None else max_age)

    async def load(self, key: str, owner: str, name: str, limit: int) -> list[T]:
        """Fetches ``owner/name`` through the cache's de-duplicated task.

        Concurrent calls for the same key share one fetch. The entry is stored
        only on success, and the in-flight registration is cleared on every
        exit path. Waiters are shielded, so cancelling one caller never cancels
        the shared fetch.

        Raises:
            FetchTimeoutError: If the fetch exceeds ``load_timeout``.
            FetchError: For any other fetch failure.
        """

        async def run() -> list[T]:
            try:
                try:
                    items = await asyncio.wait_for(
                        self.fetch(owner, name, limit), timeout=self.load_timeout
                    )
                except TimeoutError as e:
                    logger.warning(f"Recent list timed out: {self.kind.value} {key}")
                    raise FetchTimeoutError(
                        f"Timed out loading {self.kind.value} for {key}",
                        user_message="Timed out",
                    ) from e
                except Exception as e:
                    logger.warning(
                        f"Recent list failed: {self.kind.value} {key} error={e}"
                    )
                    raise FetchError(
                        f"Failed to load {self.kind.value} for {key}: {e}",
                        user_message="Failed to load",
                    ) from e

                items = list(items)
                self.cache.store(items, key, fetched_at=self.clock())
                return items
            finally:
                self.cache.clear_inflight(key)

        task = self.cache.task(key, run)
        return list(await asyncio.shield(task))

    def render(self, items: list[T], context: RenderContext) -> list[MenuRow]:
        """Filters, truncates and converts items to rows.

        Returns a single message row when nothing is visible: the kind's
        no-match text when a filter removed every item, otherwise its empty text.
        """
        visible = self.traits.filter(items, context) if self.traits.filter else list(items)
        if not visible:
            if items and self.traits.no_match_title:
                return [MenuRow.message(self.traits.no_match_title)]
            return [MenuRow.message(self.traits.empty_title)]

        if self.traits.preview:
            rows = [self.traits.to_row(item) for item in visible[: context.preview_limit]]
            if len(visible) > context.preview_limit:
                rows.append(MenuRow.action(f"More {self.kind.value}…", payload=visible))
            return rows

        return [self.traits.to_row(item) for item in visible[: context.list_limit]]


class ResourceRegistry:
    """Lazily builds one descriptor per resource kind that has a fetcher.

    Attributes:
        config (CacheConfig): TTLs, timeout and list limits.
    """

    def __init__(
        self,
        fetchers: Mapping[ResourceKind, Fetcher],
        config: CacheConfig | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.config = config or CacheConfig()
        self.clock = clock
        self._fetchers = dict(fetchers)
        self._descriptors: dict[ResourceKind, ResourceDescriptor[Any]] = {}

    @property
    def kinds(self) -> list[ResourceKind]:
        return [kind for kind in ResourceKind if kind in self._fetchers]

    @property
    def list_limit(self) -> int:
        return self.config.list_limit

    def ttl(self, kind: ResourceKind) -> float:
        return self.config.ttl_for(kind.value)

    def descriptor(self, kind: ResourceKind) -> ResourceDescriptor[Any] | None:
        if kind in self._descriptors:
            return self._descriptors[kind]
        fetch = self._fetchers.get(kind)
        if fetch is None:
            return None
        descriptor: ResourceDescriptor[Any] = ResourceDescriptor(
            kind=kind,
            traits=KIND_TRAITS[kind],
            cache=TTLCache(kind.value),
            fetch=fetch,
            ttl=self.ttl(kind),
            load_timeout=self.config.load_timeout,
            clock=self.clock,
        )
        self._descriptors[kind] = descriptor
        return descriptor

    def descriptors(self) -> dict[ResourceKind, ResourceDescriptor[Any]]:
        return {kind: d for kind in self.kinds if (d := self.descriptor(kind))}

    async def load(self, kind: ResourceKind, key: str) -> list[Any]:
        """Validates ``key`` and loads it through the kind's descriptor.

        Raises:
            InvalidKeyError: If ``key`` is not ``owner/name``; no fetch is attempted.
            KeyError: If no fetcher is registered for ``kind``.
        """
        owner, name = split_key(key)
        descriptor = self.descriptor(kind)
        if descriptor is None:
            raise KeyError(kind)
        return await descriptor.load(key, owner, name, self.list_limit)

    def cached_count(self, key: str, kind: ResourceKind) -> int | None:
        """Item count of the stored entry, used for submenu badges."""
        descriptor = self._descriptors.get(kind)
        return descriptor.cache.count(key) if descriptor else None

    def render_context(self, filters: FilterState, username: str | None) -> RenderContext:
        return RenderContext(
            filters=filters,
            username=username,
            list_limit=self.config.list_limit,
            preview_limit=self.config.preview_limit,
        )

    def clear(self) -> None:
        for descriptor in self._descriptors.values():
            descriptor.cache.clear()
