import asyncio
import logging
from collections.abc import Coroutine, Hashable, Iterable
from dataclasses import dataclass
from typing import Any

from .cache import split_key
from .constants import APP_NAME
from .errors import FetchError, InvalidKeyError
from .filters import FilterChange, FilterState, issue_label_options
from .models import AccountState, IssueSummary, ResourceKind
from .resources import RenderContext, ResourceRegistry
from .views import MenuRow, RenderSink, ViewEntry, ViewRegistry

logger = logging.getLogger(APP_NAME)


@dataclass(frozen=True)
class RecentListContext:
    """What an open recent-list view shows."""

    kind: ResourceKind
    full_name: str


class RecentListCoordinator:
    """Keeps open recent-list views filled using stale-while-revalidate.

    A refresh renders whatever the cache holds (fresh or stale) at once, then
    fetches in the background when the entry is missing or expired. Errors
    only replace the view's content when there is nothing stale to show.

    Attributes:
        resources (ResourceRegistry): Descriptors and caches per resource kind.
        filters (FilterState): Session filters; changes re-render affected views.
        account (AccountState): Current sign-in state.
        views (ViewRegistry[RecentListContext]): Open views.
    """

    def __init__(
        self,
        resources: ResourceRegistry,
        filters: FilterState | None = None,
        account: AccountState | None = None,
    ):
        self.resources = resources
        self.filters = filters or FilterState()
        self.account = account or AccountState()
        self.views: ViewRegistry[RecentListContext] = ViewRegistry()
        self._tasks: set[asyncio.Task] = set()
        self._unsubscribe = self.filters.subscribe(self.handle_filter_change)

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def open_view(
        self, view_id: Hashable, kind: ResourceKind, full_name: str, sink: RenderSink
    ) -> ViewEntry[RecentListContext]:
        return self.views.register(view_id, RecentListContext(kind, full_name), sink)

    def close_view(self, view_id: Hashable) -> None:
        self.views.close(view_id)

    def close(self) -> None:
        """Closes every view and stops listening to filter changes."""
        self.views.clear()
        self._unsubscribe()

    async def refresh(self, view_id: Hashable) -> None:
        """Renders cached-or-stale rows now, then revalidates if needed."""
        entry = self.views.get(view_id)
        if entry is None:
            return
        kind, key = entry.context.kind, entry.context.full_name
        descriptor = self.resources.descriptor(kind)
        if descriptor is None:
            logger.warning(f"No fetcher registered for {kind.value}; view left empty.")
            return

        username = self.account.signed_in_user
        if not username:
            self.views.render(entry, [MenuRow.message("Sign in to view")])
            return
        try:
            split_key(key)
        except InvalidKeyError as e:
            self.views.render(entry, [MenuRow.message(e.user_message)])
            return

        now = self.resources.clock()
        existing = descriptor.stale(key)
        if existing is not None:
            self.views.render(entry, descriptor.render(existing, self._render_context()))
        else:
            self.views.render(entry, [MenuRow.message("Loading…")])

        if not descriptor.needs_refresh(key, now):
            return

        try:
            items = await self.resources.load(kind, key)
        except FetchError as e:
            if existing is None:
                self.views.render(entry, [MenuRow.message(e.user_message)])
            else:
                logger.debug(f"Keeping stale {kind.value} for {key}: {e}")
            return

        self.views.render(entry, descriptor.render(items, self._render_context()))

    def _render_context(self) -> RenderContext:
        return self.resources.render_context(self.filters, self.account.signed_in_user)

    def handle_filter_change(self, change: FilterChange) -> list[asyncio.Task]:
        """Schedules refreshes for the open views whose kind changed.

        Nothing is cancelled; in-flight fetches keep running.
        """
        self.views.prune()
        return [
            self._spawn(self.refresh(entry.view_id))
            for entry in self.views.live_entries()
            if entry.context.kind in change.kinds
        ]

    def prefetch(self, full_names: Iterable[str]) -> list[asyncio.Task]:
        """Starts background loads for expired entries of the given repositories.

        Does nothing while signed out. Invalid names and kinds already in flight
        are skipped.
        """
        if not self.account.signed_in_user:
            return []

        tasks = []
        now = self.resources.clock()
        for full_name in full_names:
            try:
                split_key(full_name)
            except InvalidKeyError:
                logger.debug(f"Prefetch skipped invalid name {full_name!r}")
                continue
            for kind, descriptor in self.resources.descriptors().items():
                if descriptor.cache.inflight(full_name) is not None:
                    continue
                if descriptor.needs_refresh(full_name, now):
                    tasks.append(self._spawn(self._prefetch_one(kind, full_name)))
        return tasks

    async def _prefetch_one(self, kind: ResourceKind, full_name: str) -> None:
        try:
            await self.resources.load(kind, full_name)
        except FetchError as e:
            logger.debug(f"Prefetch {kind.value} {full_name} failed: {e}")

    def cached_count(self, full_name: str, kind: ResourceKind) -> int | None:
        return self.resources.cached_count(full_name, kind)

    def issue_label_options(self, full_name: str) -> list[str]:
        """Label chips for the issue filter, from whatever issues are cached."""
        descriptor = self.resources.descriptor(ResourceKind.ISSUES)
        items: list[IssueSummary] = (descriptor.stale(full_name) if descriptor else None) or []
        return issue_label_options(items, self.filters.issue_label_selection)
