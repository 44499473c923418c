"""Tests for filter state and the issue / pull request filters."""

from repodash.filters import (
    Engagement,
    FilterChange,
    FilterState,
    Scope,
    filter_issues,
    filter_pull_requests,
    issue_label_options,
)
from repodash.models import IssueLabel, IssueSummary, PullRequestSummary, ResourceKind


def issue(number: int, author: str | None = None, assignees=(), labels=()) -> IssueSummary:
    return IssueSummary(
        number=number,
        title=f"Issue {number}",
        author_login=author,
        assignee_logins=tuple(assignees),
        labels=tuple(IssueLabel(name) for name in labels),
    )


def test_mine_without_identity_is_empty() -> None:
    """Verifies that scope 'mine' yields nothing when nobody is signed in."""
    state = FilterState(pull_request_scope=Scope.MINE, issue_scope=Scope.MINE)
    prs = [PullRequestSummary(1, "A", author_login="octocat")]

    assert filter_pull_requests(prs, state, None) == []
    assert filter_issues([issue(1, "octocat")], state, "") == []


def test_pull_requests_mine_is_case_insensitive() -> None:
    state = FilterState(pull_request_scope=Scope.MINE)
    prs = [
        PullRequestSummary(1, "Mine", author_login="OctoCat"),
        PullRequestSummary(2, "Theirs", author_login="hubot"),
        PullRequestSummary(3, "Anonymous"),
    ]

    assert [pr.number for pr in filter_pull_requests(prs, state, "octocat")] == [1]


def test_pull_request_engagement() -> None:
    prs = [
        PullRequestSummary(1, "Silent"),
        PullRequestSummary(2, "Discussed", comment_count=2),
        PullRequestSummary(3, "Reviewed", review_comment_count=1),
    ]

    commented = FilterState(pull_request_engagement=Engagement.COMMENTED)
    reviewed = FilterState(pull_request_engagement=Engagement.REVIEWED)

    assert [pr.number for pr in filter_pull_requests(prs, commented, None)] == [2]
    assert [pr.number for pr in filter_pull_requests(prs, reviewed, None)] == [3]
    assert len(filter_pull_requests(prs, FilterState(), None)) == 3


def test_issues_mine_matches_author_or_assignee() -> None:
    state = FilterState(issue_scope=Scope.MINE)
    issues = [
        issue(1, "me"),
        issue(2, "other", assignees=["ME"]),
        issue(3, "other", assignees=["someone"]),
    ]

    assert [i.number for i in filter_issues(issues, state, "me")] == [1, 2]


def test_issue_labels_match_any_case_insensitive() -> None:
    state = FilterState(issue_label_selection={"Bug", "ui"})
    issues = [
        issue(1, labels=["bug"]),
        issue(2, labels=["UI", "docs"]),
        issue(3, labels=["docs"]),
        issue(4),
    ]

    assert [i.number for i in filter_issues(issues, state, None)] == [1, 2]


def test_setters_publish_targeted_changes() -> None:
    """Verifies that each setter names only the kind it affects."""
    state = FilterState()
    changes: list[FilterChange] = []
    state.subscribe(changes.append)

    state.set_pull_request_scope(Scope.MINE)
    state.set_pull_request_engagement(Engagement.REVIEWED)
    state.set_issue_scope(Scope.MINE)
    state.toggle_issue_label("bug")

    assert [c.kinds for c in changes] == [
        frozenset({ResourceKind.PULL_REQUESTS}),
        frozenset({ResourceKind.PULL_REQUESTS}),
        frozenset({ResourceKind.ISSUES}),
        frozenset({ResourceKind.ISSUES}),
    ]


def test_unchanged_values_do_not_publish() -> None:
    state = FilterState()
    changes: list[FilterChange] = []
    state.subscribe(changes.append)

    state.set_issue_scope(Scope.ALL)
    state.set_pull_request_engagement(Engagement.ALL)
    state.clear_issue_labels()

    assert changes == []


def test_toggle_and_clear_labels() -> None:
    state = FilterState()
    state.toggle_issue_label("bug")
    state.toggle_issue_label("docs")
    state.toggle_issue_label("bug")
    assert state.issue_label_selection == {"docs"}

    state.clear_issue_labels()
    assert state.issue_label_selection == set()


def test_toggle_label_ignores_case() -> None:
    """Verifies that toggling "bug" deselects a label selected as "Bug"."""
    state = FilterState()
    state.toggle_issue_label("Bug")
    state.toggle_issue_label("bug")
    assert state.issue_label_selection == set()


def test_unsubscribe_stops_notifications() -> None:
    state = FilterState()
    changes: list[FilterChange] = []
    unsubscribe = state.subscribe(changes.append)

    unsubscribe()
    state.set_issue_scope(Scope.MINE)

    assert changes == []


def test_issue_label_options_rank_and_keep_selection() -> None:
    issues = [
        issue(1, labels=["bug", "ui"]),
        issue(2, labels=["bug"]),
        issue(3, labels=["docs", "ui"]),
        issue(4, labels=["bug"]),
    ]

    assert issue_label_options(issues, set(), limit=2) == ["bug", "ui"]
    assert issue_label_options(issues, {"wontfix"}, limit=2) == ["bug", "ui", "wontfix"]
