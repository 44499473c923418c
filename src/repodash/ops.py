import asyncio
import contextlib
import logging
from collections.abc import Callable, Hashable, Iterator
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, ContextManager, Protocol

from .cache import split_key
from .config import LocalConfig
from .constants import APP_NAME
from .errors import AccessDeniedError, FetchError, FetchTimeoutError, InvalidKeyError, RepodashError
from .filters import FilterState
from .git_wrapper import GitRepo
from .local import LocalRepoIndex
from .models import (
    LocalBranchDetails,
    LocalBranchSnapshot,
    LocalRepoStatus,
    LocalWorktree,
    ResourceKind,
)
from .resources import ResourceRegistry
from .system import ConsolePrompter, SystemStrategy, get_system
from .views import MenuRow, RenderSink, RowKind, ViewRegistry

logger = logging.getLogger(APP_NAME)


class Prompter(Protocol):
    def confirm(self, title: str, message: str) -> bool: ...

    def alert(self, title: str, message: str) -> None: ...


class GitActionState(str, Enum):
    REQUESTED = "requested"
    CONFIRMED = "confirmed"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    DECLINED = "declined"


TERMINAL_STATES = {GitActionState.SUCCEEDED, GitActionState.FAILED, GitActionState.DECLINED}


@dataclass
class GitActionResult:
    """Outcome of one local git action.

    Attributes:
        action (str): Action name, e.g. ``"sync"``.
        path (Path): The working copy acted on.
        state (GitActionState): The final state.
        history (list[GitActionState]): Every state passed through, in order.
        error (str | None): User-facing failure message.
        value (Any): What the git call returned (e.g. a ``LocalSyncResult``).
    """

    action: str
    path: Path
    state: GitActionState = GitActionState.REQUESTED
    history: list[GitActionState] = field(
        default_factory=lambda: [GitActionState.REQUESTED]
    )
    error: str | None = None
    value: Any = None

    def advance(self, state: GitActionState) -> None:
        if self.state in TERMINAL_STATES:
            raise RuntimeError(f"{self.action} already finished as {self.state.value}")
        self.state = state
        self.history.append(state)

    @property
    def succeeded(self) -> bool:
        return self.state is GitActionState.SUCCEEDED


@contextlib.contextmanager
def scoped_access(path: Path, access_root: str | None = None) -> Iterator[Path]:
    """Grants access to ``path`` for the duration of one git call.

    Args:
        path (Path): The working copy.
        access_root (str | None): If set, ``path`` must lie inside it.

    Yields:
        Path: The resolved path.

    Raises:
        AccessDeniedError: If ``path`` is outside ``access_root``.
    """
    resolved = path.expanduser().resolve()
    if access_root:
        root = Path(access_root).expanduser().resolve()
        if not resolved.is_relative_to(root):
            raise AccessDeniedError(
                f"Access denied: {resolved} is outside {root}",
                user_message=f"{resolved} is outside the allowed folder {root}.",
            )
    logger.debug(f"Access granted: {resolved}")
    try:
        yield resolved
    finally:
        logger.debug(f"Access released: {resolved}")


def _counts_detail(ahead: int | None, behind: int | None) -> str | None:
    parts = []
    if ahead:
        parts.append(f"↑{ahead}")
    if behind:
        parts.append(f"↓{behind}")
    return " ".join(parts) or None


def _branch_row(branch: LocalBranchDetails) -> MenuRow:
    parts = [
        branch.upstream or "",
        _counts_detail(branch.ahead_count, branch.behind_count) or "",
        branch.last_commit_author or "",
    ]
    detail = " · ".join(part for part in parts if part)
    return MenuRow(
        RowKind.ITEM, branch.name, detail or None, is_current=branch.is_current, payload=branch
    )


def branch_rows(snapshot: LocalBranchSnapshot, empty_title: str = "No branches") -> list[MenuRow]:
    """Rows for a local branch list. A detached HEAD becomes the current first row."""
    rows = []
    if snapshot.is_detached_head:
        rows.append(
            MenuRow(
                RowKind.ITEM,
                "Detached HEAD",
                snapshot.detached_commit_author,
                is_current=True,
            )
        )
    rows.extend(_branch_row(branch) for branch in snapshot.branches)
    return rows or [MenuRow.message(empty_title)]


def _worktree_row(worktree: LocalWorktree) -> MenuRow:
    parts = [
        worktree.path.name,
        _counts_detail(worktree.ahead_count, worktree.behind_count) or "",
        worktree.dirty_counts.summary if worktree.dirty_counts else "",
    ]
    detail = " · ".join(part for part in parts if part)
    return MenuRow(
        RowKind.ITEM,
        worktree.branch or "Detached HEAD",
        detail or None,
        is_current=worktree.is_current,
        payload=worktree,
    )


def worktree_rows(worktrees: list[LocalWorktree]) -> list[MenuRow]:
    rows = [_worktree_row(worktree) for worktree in worktrees]
    return rows or [MenuRow.message("No worktrees")]


class LocalGitCoordinator:
    """Runs local git actions off the event loop with confirmation and recovery.

    Every action moves through ``REQUESTED -> (CONFIRMED) -> RUNNING`` and ends
    ``SUCCEEDED``, ``FAILED`` or ``DECLINED``. Failures are alerted once and
    never retried. Successes refresh the working copy's local status.

    Attributes:
        local_index (LocalRepoIndex): Receives status refreshes after actions.
        prompter (Prompter): Confirmation and alert surface.
        system (SystemStrategy): Desktop notifications.
        config (LocalConfig): Worktree folder and access root.
        resources (ResourceRegistry | None): Supplies remote branches for the
            combined branch view.
        views (ViewRegistry[Path]): Open branch and worktree views, keyed by
            view id, with the working copy path as context.
    """

    def __init__(
        self,
        local_index: LocalRepoIndex | None = None,
        prompter: Prompter | None = None,
        system: SystemStrategy | None = None,
        config: LocalConfig | None = None,
        resources: ResourceRegistry | None = None,
        repo_factory: Callable[[Path], GitRepo] = GitRepo,
        access_scope: Callable[[Path], ContextManager[Path]] | None = None,
    ):
        self.config = config or LocalConfig()
        self.repo_factory = repo_factory
        self.local_index = (
            local_index if local_index is not None else LocalRepoIndex(repo_factory)
        )
        self.prompter = prompter or ConsolePrompter()
        self.system = system or get_system()
        self.resources = resources
        self.access_scope = access_scope or (
            lambda path: scoped_access(path, self.config.access_root)
        )
        self.views: ViewRegistry[Path] = ViewRegistry()

    # --- Action pipeline ---

    async def _perform(
        self,
        action: str,
        failure_title: str,
        path: Path,
        work: Callable[[GitRepo], Any],
        confirmation: tuple[str, str] | None = None,
    ) -> GitActionResult:
        result = GitActionResult(action=action, path=path)

        if confirmation is not None:
            title, message = confirmation
            if not self.prompter.confirm(title, message):
                logger.info(f"{action.upper()} {path.name}: declined")
                result.advance(GitActionState.DECLINED)
                return result
            result.advance(GitActionState.CONFIRMED)

        def call() -> Any:
            with self.access_scope(path):
                return work(self.repo_factory(path))

        result.advance(GitActionState.RUNNING)
        try:
            result.value = await asyncio.to_thread(call)
        except (RepodashError, ValueError, OSError) as e:
            message = getattr(e, "user_message", None) or str(e)
            logger.error(f"{action.upper()} {path.name} failed: {e}")
            result.error = message
            result.advance(GitActionState.FAILED)
            self.prompter.alert(failure_title, message)
            return result

        result.advance(GitActionState.SUCCEEDED)
        logger.info(f"{action.upper()} {path.name}: done")
        await self.local_index.refresh(path)
        return result

    # --- Actions ---

    async def sync(self, status: LocalRepoStatus) -> GitActionResult:
        """Fetches, pulls (rebase) and pushes as needed, then notifies."""
        result = await self._perform(
            "sync", "Sync failed", status.path, lambda repo: repo.smart_sync()
        )
        if result.succeeded:
            self.system.notify(APP_NAME, f"Synced {status.display_name} ({status.branch})")
        return result

    async def rebase(self, status: LocalRepoStatus) -> GitActionResult:
        return await self._perform(
            "rebase", "Rebase failed", status.path, lambda repo: repo.rebase_onto_upstream()
        )

    async def reset(self, status: LocalRepoStatus) -> GitActionResult:
        """Hard-resets to upstream after confirmation. Declining runs no git command."""
        upstream = status.upstream_branch or "upstream"
        confirmation = (
            f"Hard reset {status.display_name}?",
            f"This will discard uncommitted changes and reset to {upstream}.",
        )
        return await self._perform(
            "reset",
            "Reset failed",
            status.path,
            lambda repo: repo.hard_reset_to_upstream(),
            confirmation=confirmation,
        )

    async def switch_branch(self, path: Path, name: str) -> GitActionResult:
        return await self._perform(
            "switch", "Switch branch failed", path, lambda repo: repo.switch_branch(name)
        )

    async def create_branch(self, path: Path, name: str) -> GitActionResult:
        name = name.strip()
        if not name:
            return self._declined("create_branch", path)
        return await self._perform(
            "create_branch",
            "Create branch failed",
            path,
            lambda repo: repo.create_branch(name),
        )

    async def create_worktree(
        self, path: Path, branch: str, destination: Path | None = None
    ) -> GitActionResult:
        """Adds a worktree on a new branch.

        Args:
            path (Path): The repository to add the worktree to.
            branch (str): The new branch name. Blank names are a no-op.
            destination (Path | None): Worktree location. Defaults to
                ``<path>/<worktree_folder_name>/<branch>``.
        """
        branch = branch.strip()
        if not branch:
            return self._declined("create_worktree", path)
        target = destination or path / self.config.worktree_folder_name / branch

        def work(repo: GitRepo) -> Path:
            target.parent.mkdir(parents=True, exist_ok=True)
            repo.create_worktree(target, branch)
            return target

        return await self._perform("create_worktree", "Create worktree failed", path, work)

    async def switch_worktree(self, path: Path, full_name: str) -> GitActionResult:
        """Makes ``path`` the working copy shown for ``full_name``."""
        result = GitActionResult(action="switch_worktree", path=path)
        try:
            split_key(full_name)
        except InvalidKeyError as e:
            result.error = e.user_message
            result.advance(GitActionState.FAILED)
            self.prompter.alert("Switch worktree failed", e.user_message)
            return result
        if not path.exists():
            result.error = f"Could not find {path}."
            result.advance(GitActionState.FAILED)
            self.prompter.alert("Worktree missing", result.error)
            return result

        result.advance(GitActionState.RUNNING)
        self.local_index.set_preferred_path(full_name, path)
        result.advance(GitActionState.SUCCEEDED)
        await self.local_index.refresh(path)
        return result

    def _declined(self, action: str, path: Path) -> GitActionResult:
        result = GitActionResult(action=action, path=path)
        result.advance(GitActionState.DECLINED)
        logger.debug(f"{action.upper()} {path.name}: empty name, nothing to do")
        return result

    # --- Listings ---

    async def load_branches(self, path: Path) -> LocalBranchSnapshot:
        def call() -> LocalBranchSnapshot:
            with self.access_scope(path):
                return self.repo_factory(path).branch_details()

        return await asyncio.to_thread(call)

    async def load_worktrees(self, path: Path) -> list[LocalWorktree]:
        def call() -> list[LocalWorktree]:
            with self.access_scope(path):
                return self.repo_factory(path).worktrees()

        return await asyncio.to_thread(call)

    def open_view(self, view_id: Hashable, path: Path, sink: RenderSink) -> None:
        self.views.register(view_id, path, sink)

    def close_view(self, view_id: Hashable) -> None:
        self.views.close(view_id)
        self.views.prune()

    async def refresh_branches(self, view_id: Hashable) -> None:
        """Loads local branches into an open branch view."""
        entry = self.views.get(view_id)
        if entry is None:
            return
        try:
            snapshot = await self.load_branches(entry.context)
        except (RepodashError, ValueError, OSError) as e:
            logger.error(f"Branch list failed for {entry.context}: {e}")
            self.views.render(entry, [MenuRow.message("Failed to load branches")])
            self.prompter.alert("Branch list failed", getattr(e, "user_message", str(e)))
            return
        self.views.render(entry, branch_rows(snapshot))

    async def refresh_worktrees(self, view_id: Hashable) -> None:
        """Loads worktrees into an open worktree view."""
        entry = self.views.get(view_id)
        if entry is None:
            return
        try:
            worktrees = await self.load_worktrees(entry.context)
        except (RepodashError, ValueError, OSError) as e:
            logger.error(f"Worktree list failed for {entry.context}: {e}")
            self.views.render(entry, [MenuRow.message("Failed to load worktrees")])
            self.prompter.alert("Worktree list failed", getattr(e, "user_message", str(e)))
            return
        self.views.render(entry, worktree_rows(worktrees))

    async def refresh_combined_branches(
        self, view_id: Hashable, full_name: str, username: str | None
    ) -> None:
        """Renders local branches plus the remote ``branches`` list.

        Local rows appear as soon as git answers. The remote part shows cached
        or stale rows when present; otherwise a status message until the fetch
        resolves. Timeout and failure messages only replace missing data.
        """
        entry = self.views.get(view_id)
        if entry is None:
            return

        try:
            snapshot = await self.load_branches(entry.context)
            local = branch_rows(snapshot, empty_title="No local branches")
        except (RepodashError, ValueError, OSError) as e:
            logger.warning(f"Local branches failed for {entry.context}: {e}")
            local = [MenuRow.message("Failed to load local branches")]
            self.prompter.alert("Branch list failed", getattr(e, "user_message", str(e)))

        descriptor = self.resources.descriptor(ResourceKind.BRANCHES) if self.resources else None

        def compose(remote: list[MenuRow]) -> list[MenuRow]:
            return [*local, MenuRow.separator(), *remote]

        if descriptor is None or not username:
            self.views.render(entry, compose([MenuRow.message("Sign in to load branches")]))
            return
        try:
            split_key(full_name)
        except InvalidKeyError as e:
            self.views.render(entry, compose([MenuRow.message(e.user_message)]))
            return

        context = self.resources.render_context(FilterState(), username)
        now = self.resources.clock()
        existing = descriptor.stale(full_name)
        needs_refresh = descriptor.needs_refresh(full_name, now)

        if existing is not None:
            remote = descriptor.render(existing, context)
        elif needs_refresh:
            remote = [MenuRow.message("Loading…")]
        else:
            remote = []
        self.views.render(entry, compose(remote))
        if not needs_refresh:
            return

        try:
            items = await self.resources.load(ResourceKind.BRANCHES, full_name)
        except FetchTimeoutError:
            if existing is None:
                self.views.render(entry, compose([MenuRow.message("Timed out")]))
            return
        except FetchError:
            if existing is None:
                self.views.render(entry, compose([MenuRow.message("Failed to load")]))
            return
        self.views.render(entry, compose(descriptor.render(items, context)))
