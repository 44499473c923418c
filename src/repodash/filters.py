import logging
from collections import Counter
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from enum import Enum

from .constants import APP_NAME, ISSUE_LABEL_CHIP_LIMIT
from .models import IssueSummary, PullRequestSummary, ResourceKind

logger = logging.getLogger(APP_NAME)


class Scope(str, Enum):
    ALL = "all"
    MINE = "mine"


class Engagement(str, Enum):
    ALL = "all"
    COMMENTED = "commented"
    REVIEWED = "reviewed"


@dataclass(frozen=True)
class FilterChange:
    """Published when filter state changes.

    Attributes:
        kinds (frozenset[ResourceKind]): The resource kinds whose open views
            must be refreshed.
    """

    kinds: frozenset[ResourceKind]


FilterListener = Callable[[FilterChange], None]


@dataclass
class FilterState:
    """Session-scoped recent-list filters.

    Mutate only through the setter methods so that subscribers receive a
    targeted ``FilterChange``.
    """

    pull_request_scope: Scope = Scope.ALL
    pull_request_engagement: Engagement = Engagement.ALL
    issue_scope: Scope = Scope.ALL
    issue_label_selection: set[str] = field(default_factory=set)
    _listeners: list[FilterListener] = field(default_factory=list, repr=False)

    def subscribe(self, listener: FilterListener) -> Callable[[], None]:
        """Registers a change listener.

        Returns:
            Callable[[], None]: Removes the listener when called.
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _publish(self, *kinds: ResourceKind) -> None:
        change = FilterChange(kinds=frozenset(kinds))
        logger.debug(f"Filter change: {sorted(k.value for k in change.kinds)}")
        for listener in list(self._listeners):
            listener(change)

    def set_pull_request_scope(self, scope: Scope) -> None:
        if scope == self.pull_request_scope:
            return
        self.pull_request_scope = scope
        self._publish(ResourceKind.PULL_REQUESTS)

    def set_pull_request_engagement(self, engagement: Engagement) -> None:
        if engagement == self.pull_request_engagement:
            return
        self.pull_request_engagement = engagement
        self._publish(ResourceKind.PULL_REQUESTS)

    def set_issue_scope(self, scope: Scope) -> None:
        if scope == self.issue_scope:
            return
        self.issue_scope = scope
        self._publish(ResourceKind.ISSUES)

    def toggle_issue_label(self, label: str) -> None:
        """Selects ``label``, or deselects it if selected in any letter case."""
        selected = next(
            (s for s in self.issue_label_selection if s.lower() == label.lower()), None
        )
        if selected is not None:
            self.issue_label_selection.remove(selected)
        else:
            self.issue_label_selection.add(label)
        self._publish(ResourceKind.ISSUES)

    def clear_issue_labels(self) -> None:
        if not self.issue_label_selection:
            return
        self.issue_label_selection.clear()
        self._publish(ResourceKind.ISSUES)


def filter_pull_requests(
    items: Iterable[PullRequestSummary], state: FilterState, username: str | None
) -> list[PullRequestSummary]:
    """Applies pull-request scope and engagement filters.

    Scope ``mine`` without a signed-in identity yields an empty list.
    """
    filtered = list(items)
    if state.pull_request_scope is Scope.MINE:
        if not username:
            return []
        me = username.lower()
        filtered = [
            pr for pr in filtered if pr.author_login and pr.author_login.lower() == me
        ]

    if state.pull_request_engagement is Engagement.COMMENTED:
        filtered = [pr for pr in filtered if pr.comment_count > 0]
    elif state.pull_request_engagement is Engagement.REVIEWED:
        filtered = [pr for pr in filtered if pr.review_comment_count > 0]

    return filtered


def filter_issues(
    items: Iterable[IssueSummary], state: FilterState, username: str | None
) -> list[IssueSummary]:
    """Applies issue scope (author or assignee) and label filters.

    Label matching is case-insensitive; an issue matches if any of its labels
    is selected.
    """
    filtered = list(items)
    if state.issue_scope is Scope.MINE:
        if not username:
            return []
        me = username.lower()
        filtered = [
            issue
            for issue in filtered
            if (issue.author_login and issue.author_login.lower() == me)
            or any(login.lower() == me for login in issue.assignee_logins)
        ]

    if state.issue_label_selection:
        selected = {label.lower() for label in state.issue_label_selection}
        filtered = [
            issue
            for issue in filtered
            if any(label.name.lower() in selected for label in issue.labels)
        ]

    return filtered


def issue_label_options(
    items: Iterable[IssueSummary],
    selection: set[str],
    limit: int = ISSUE_LABEL_CHIP_LIMIT,
) -> list[str]:
    """Returns label names to offer as filter chips.

    The most frequent labels come first (ties broken alphabetically), up to
    ``limit``; selected labels are always included.
    """
    counts: Counter[str] = Counter()
    for issue in items:
        for label in issue.labels:
            counts[label.name] += 1

    ranked = sorted(counts, key=lambda name: (-counts[name], name.lower()))
    options = ranked[:limit]
    for name in sorted(selection, key=str.lower):
        if name not in options:
            options.append(name)
    return options
