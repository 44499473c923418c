import asyncio
import logging
from collections.abc import Callable, Iterable
from pathlib import Path

from .cache import split_key
from .constants import APP_NAME
from .git_wrapper import GitRepo
from .models import LocalRepoStatus

logger = logging.getLogger(APP_NAME)


class LocalRepoIndex:
    """Latest local status per working copy, with a preferred path per repository.

    Entries change only through ``refresh`` (run after a completed local git
    action or an explicit rescan), never as a side effect of remote fetches.
    All methods are meant to be called from the event loop; the git work of
    ``refresh`` runs in a worker thread.

    Attributes:
        repo_factory (Callable[[Path], GitRepo]): Builds the git wrapper for a path.
    """

    def __init__(self, repo_factory: Callable[[Path], GitRepo] = GitRepo):
        self.repo_factory = repo_factory
        self._statuses: dict[Path, LocalRepoStatus] = {}
        self._preferred: dict[str, Path] = {}

    def __len__(self) -> int:
        return len(self._statuses)

    def statuses(self) -> list[LocalRepoStatus]:
        return list(self._statuses.values())

    def by_path(self, path: Path) -> LocalRepoStatus | None:
        return self._statuses.get(path)

    def update(self, status: LocalRepoStatus) -> None:
        self._statuses[status.path] = status

    def set_preferred_path(self, full_name: str, path: Path) -> None:
        """Marks ``path`` as the working copy shown for ``full_name``."""
        self._preferred[full_name.lower()] = path

    def preferred_path(self, full_name: str) -> Path | None:
        return self._preferred.get(full_name.lower())

    def status_for_full_name(self, full_name: str) -> LocalRepoStatus | None:
        """Finds the local status for ``owner/name``.

        The preferred path wins when it has a status; otherwise the first
        working copy whose origin matches (case-insensitively) is used.

        Raises:
            InvalidKeyError: If ``full_name`` is not ``owner/name``.
        """
        split_key(full_name)
        preferred = self.preferred_path(full_name)
        if preferred is not None and preferred in self._statuses:
            return self._statuses[preferred]

        wanted = full_name.lower()
        for status in self._statuses.values():
            if status.full_name and status.full_name.lower() == wanted:
                return status
        return None

    async def refresh(self, path: Path) -> LocalRepoStatus | None:
        """Re-reads the local status of ``path`` off the event loop.

        Returns:
            LocalRepoStatus | None: The new status, or None if ``path`` is no
            longer a git working copy (its entry is dropped).
        """

        def snapshot() -> LocalRepoStatus:
            return self.repo_factory(path).local_status()

        try:
            status = await asyncio.to_thread(snapshot)
        except ValueError as e:
            logger.warning(f"Local refresh skipped: {e}")
            self._statuses.pop(path, None)
            return None

        self.update(status)
        logger.debug(f"Local status {status.display_name}: {status.sync_detail}")
        return status

    async def scan(self, paths: Iterable[Path]) -> list[LocalRepoStatus]:
        """Refreshes several working copies concurrently."""
        results = await asyncio.gather(*(self.refresh(path) for path in paths))
        return [status for status in results if status is not None]
