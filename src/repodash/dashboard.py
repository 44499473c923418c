import logging
import sys
import time
from collections.abc import Callable, Hashable
from dataclasses import replace
from logging.handlers import RotatingFileHandler
from typing import Any, Protocol

from .config import Config
from .constants import APP_NAME, LOG_FILE, MIN_MENU_ITEMS, STATE_DIR
from .errors import InvalidKeyError
from .local import LocalRepoIndex
from .models import DashboardState, RepositoryDisplay, ResourceKind
from .recent_lists import RecentListCoordinator
from .signatures import (
    RECENT_COUNT_KINDS,
    RecentCountSignature,
    SignatureTracker,
    SubmenuCache,
    build_signature,
    submenu_signature,
)

logger = logging.getLogger(APP_NAME)


class MenuRenderer(Protocol):
    """Builds the actual main view widgets."""

    def populate(self, repos: list[RepositoryDisplay], submenus: dict[str, Any]) -> None: ...

    def build_submenu(self, repo: RepositoryDisplay, is_pinned: bool) -> Any: ...

    def refresh_layout(self) -> None: ...

    def item_count(self) -> int: ...


class DashboardController:
    """Decides on each open whether the main view must be rebuilt.

    On open, the controller computes the build signature of the visible
    repositories. The view is rebuilt only when the signature changed or the
    rendered view is too small; otherwise only its layout is refreshed. Recent
    lists of the visible repositories are prefetched either way.

    Attributes:
        state (DashboardState): The dashboard inputs, updated by the app.
        renderer (MenuRenderer): Widget construction.
        recent_lists (RecentListCoordinator): Recent-list views and prefetch.
        local_index (LocalRepoIndex): Local status attached to repositories.
        config (Config): Loaded configuration.
    """

    def __init__(
        self,
        state: DashboardState,
        renderer: MenuRenderer,
        recent_lists: RecentListCoordinator,
        local_index: LocalRepoIndex | None = None,
        config: Config | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.state = state
        self.renderer = renderer
        self.recent_lists = recent_lists
        self.local_index = local_index if local_index is not None else LocalRepoIndex()
        self.config = config or Config.load()
        self.clock = clock
        self.tracker = SignatureTracker()
        self.submenus: SubmenuCache[Any] = SubmenuCache()

    def plan(self) -> list[RepositoryDisplay]:
        """The repositories to show, in display order.

        Hidden repositories are dropped, as are forks and archived ones unless
        enabled. Pinned repositories come first in pin order, and the list is
        cut to ``display_limit``. Local status is attached where known.
        """
        settings = self.state.settings
        hidden = {name.lower() for name in settings.hidden_repositories}
        pinned = [name.lower() for name in settings.pinned_repositories]

        candidates = [
            repo
            for repo in self.state.repositories
            if repo.full_name.lower() not in hidden
            and (settings.show_forks or not repo.is_fork)
            and (settings.show_archived or not repo.is_archived)
        ]

        def order(item: tuple[int, RepositoryDisplay]) -> tuple[int, int]:
            index, repo = item
            name = repo.full_name.lower()
            if name in pinned:
                return 0, pinned.index(name)
            return 1, index

        ordered = [repo for _, repo in sorted(enumerate(candidates), key=order)]
        limit = max(settings.display_limit, 0)
        return [self._with_local_status(repo) for repo in ordered[:limit]]

    def _with_local_status(self, repo: RepositoryDisplay) -> RepositoryDisplay:
        try:
            status = self.local_index.status_for_full_name(repo.full_name)
        except InvalidKeyError:
            return repo
        if status is None or status == repo.local_status:
            return repo
        return replace(repo, local_status=status)

    def is_pinned(self, full_name: str) -> bool:
        wanted = full_name.lower()
        return any(name.lower() == wanted for name in self.state.settings.pinned_repositories)

    def recent_counts(self, full_name: str) -> RecentCountSignature:
        counts: dict[ResourceKind, int | None] = {
            kind: self.recent_lists.cached_count(full_name, kind) for kind in RECENT_COUNT_KINDS
        }
        return RecentCountSignature.of(counts)

    def submenu_for(self, repo: RepositoryDisplay) -> Any:
        """Returns the repository's submenu, rebuilt only when its signature changed."""
        is_pinned = self.is_pinned(repo.full_name)
        signature = submenu_signature(
            repo,
            self.state.settings,
            self.state.heatmap_range,
            self.recent_counts(repo.full_name),
            is_pinned,
            activity_window=self.config.signature.activity_window,
        )
        return self.submenus.get_or_build(
            repo.full_name, signature, lambda: self.renderer.build_submenu(repo, is_pinned)
        )

    def menu_will_open(self, menu_id: Hashable = "main") -> bool:
        """Prepares the main view for display.

        Returns:
            bool: True if the view was rebuilt.
        """
        self.recent_lists.views.prune()
        self.recent_lists.account = self.state.account

        repos = self.plan()
        signature = build_signature(
            replace(self.state, repositories=repos),
            self.clock(),
            self.config.signature.time_bucket,
        )

        too_small = self.renderer.item_count() < MIN_MENU_ITEMS
        if too_small:
            self.tracker.invalidate(menu_id)
        rebuild = too_small or self.tracker.needs_rebuild(menu_id, signature)

        if rebuild:
            submenus = {repo.full_name: self.submenu_for(repo) for repo in repos}
            self.submenus.retain(submenus)
            self.renderer.populate(repos, submenus)
            self.tracker.commit(menu_id, signature)
            logger.info(f"Main view rebuilt: {len(repos)} repositories")
        else:
            logger.debug("Main view unchanged; refreshing layout only")

        self.renderer.refresh_layout()
        self.recent_lists.prefetch(repo.full_name for repo in repos)
        return rebuild


def setup_logging(interactive: bool, config: Config | None = None) -> None:
    """Configures the logging subsystem.

    Args:
        interactive (bool): If True, logs to stdout. If False, logs to stderr
                            and to a rotating log file.
        config (Config | None): Supplies the level and max log size.
    """
    config = config or Config.load()
    try:
        logger.setLevel(config.logging.level.upper())
    except ValueError:
        logger.setLevel(logging.INFO)
        logger.warning(f"Unknown log level '{config.logging.level}'. Using INFO.")

    formatter = logging.Formatter(
        "[%(asctime)s] %(levelname)s: %(message)s", "%Y-%m-%d %H:%M:%S"
    )

    stream_handler = logging.StreamHandler(
        sys.stderr if not interactive else sys.stdout
    )
    stream_handler.setFormatter(formatter)
    logger.addHandler(stream_handler)

    if not interactive:
        STATE_DIR.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            LOG_FILE,
            maxBytes=config.logging.max_log_size,
            backupCount=5,
        )
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)
