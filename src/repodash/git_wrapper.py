import logging
import subprocess
from datetime import datetime, timezone
from pathlib import Path
from urllib.parse import urlparse

from .constants import APP_NAME, DETACHED_HEAD, GIT_LOCK_FILES
from .errors import (
    DetachedHeadError,
    DirtyWorkingTreeError,
    GitCommandError,
    MissingUpstreamError,
    RepositoryBusyError,
)
from .models import (
    LocalBranchDetails,
    LocalBranchSnapshot,
    LocalDirtyCounts,
    LocalRepoStatus,
    LocalSyncResult,
    LocalSyncState,
    LocalWorktree,
)

logger = logging.getLogger(APP_NAME)

DIRTY_FILE_LIMIT = 10


def parse_remote_full_name(url: str) -> str | None:
    """Extracts ``owner/name`` from an SSH (scp-style) or URL-style remote.

    Args:
        url (str): e.g. ``git@github.com:octocat/Hello-World.git`` or
            ``https://github.com/octocat/Hello-World``.

    Returns:
        str | None: ``owner/name``, or None if the URL cannot be parsed.
    """
    url = url.strip()
    if "://" in url:
        path = urlparse(url).path
    elif ":" in url:
        path = url.split(":", 1)[1]
    else:
        return None

    parts = [p for p in path.split("/") if p]
    if len(parts) < 2:
        return None
    owner, name = parts[-2], parts[-1]
    if name.endswith(".git"):
        name = name[:-4]
    if not owner or not name:
        return None
    return f"{owner}/{name}"


def parse_dirty_counts(output: str) -> LocalDirtyCounts | None:
    """Counts added, modified and deleted paths in ``git status --porcelain`` output.

    Returns:
        LocalDirtyCounts | None: None when the output lists no dirty paths.
    """
    added: set[str] = set()
    modified: set[str] = set()
    deleted: set[str] = set()

    for line in output.splitlines():
        if len(line) < 3:
            continue
        status, path = line[:2], line[3:].strip()
        if " -> " in path:
            path = path.split(" -> ", 1)[1]
        if not path:
            continue

        if status == "??":
            added.add(path)
        elif "D" in status:
            deleted.add(path)
        elif "A" in status:
            added.add(path)
        elif any(flag in status for flag in "MRCTU"):
            modified.add(path)

    if not (added or modified or deleted):
        return None
    return LocalDirtyCounts(added=len(added), modified=len(modified), deleted=len(deleted))


def parse_dirty_files(output: str, limit: int = DIRTY_FILE_LIMIT) -> list[str]:
    """Lists up to ``limit`` dirty paths from porcelain output, in order."""
    files: list[str] = []
    for line in output.splitlines():
        if len(files) >= limit:
            break
        if len(line) < 3:
            continue
        status, path = line[:2], line[3:].strip()
        if " -> " in path:
            path = path.split(" -> ", 1)[1]
        if path and (status == "??" or any(flag in status for flag in "MADRCTU")):
            files.append(path)
    return files


def _parse_ahead_behind(output: str) -> tuple[int | None, int | None]:
    # `rev-list --left-right --count upstream...branch` prints "<behind>\t<ahead>".
    parts = output.split()
    if len(parts) < 2:
        return None, None
    try:
        behind, ahead = int(parts[0]), int(parts[1])
    except ValueError:
        return None, None
    return ahead, behind


class GitRepo:
    """A wrapper around the Git command-line interface for a specific repository.

    Read helpers that only decorate a view (upstream, ahead/behind, last commit)
    return None on failure and log at debug level. Mutations raise.

    Attributes:
        path (Path): The file system path to the repository (or worktree) root.
    """

    def __init__(self, path: Path):
        """Initializes the GitRepo instance.

        Args:
            path (Path): The path to the repository root directory.

        Raises:
            ValueError: If the specified path does not contain a .git entry.
        """
        self.path = path
        if not (self.path / ".git").exists():
            raise ValueError(f"Not a git repository: {self.path}")

    def _run(
        self,
        args: list[str],
        capture: bool = True,
        env: dict | None = None,
        strip: bool = True,
    ) -> str:
        """Executes a Git command within the repository context.

        Args:
            args (list[str]): A list of arguments to pass to the git command.
            capture (bool, optional): Whether to capture and return stdout.
            env (dict | None, optional): Environment variables for the subprocess.
            strip (bool, optional): Whether to strip surrounding whitespace from
                stdout. Porcelain output must keep its leading status columns.

        Returns:
            str: The stdout of the command if capture is True, otherwise "".

        Raises:
            GitCommandError: If git cannot be started or exits non-zero.
        """
        try:
            res = subprocess.run(
                ["git", *args],
                cwd=self.path,
                capture_output=capture,
                text=True,
                check=True,
                env=env,
            )
        except subprocess.CalledProcessError as e:
            raise GitCommandError(args, stdout=e.stdout or "", stderr=e.stderr or "") from e
        except OSError as e:
            raise GitCommandError(args, stderr=f"Could not run git: {e}") from e
        if not capture:
            return ""
        return res.stdout.strip() if strip else res.stdout

    def _try(self, args: list[str]) -> str | None:
        try:
            return self._run(args)
        except GitCommandError as e:
            logger.debug(f"git {' '.join(args)} failed in {self.path}: {e}")
            return None

    # --- Reads ---

    def current_branch(self) -> str:
        """Returns the current branch, ``DETACHED_HEAD``, or "unknown" on error."""
        raw = self._try(["rev-parse", "--abbrev-ref", "HEAD"])
        if raw is None:
            return "unknown"
        return DETACHED_HEAD if raw == "HEAD" else raw

    def status_porcelain(self) -> str | None:
        """Raw ``git status --porcelain`` output, or None if status failed."""
        try:
            return self._run(["status", "--porcelain"], strip=False)
        except GitCommandError as e:
            logger.debug(f"git status failed in {self.path}: {e}")
            return None

    def is_clean(self) -> bool:
        output = self.status_porcelain()
        return output is not None and not output.strip()

    def is_busy(self) -> bool:
        """True if a merge, rebase, cherry-pick or bisect is in progress."""
        git_dir = self.git_dir()
        return any((git_dir / name).exists() for name in GIT_LOCK_FILES)

    def git_dir(self) -> Path:
        """Resolves the git directory, following the ``gitdir:`` file of worktrees."""
        dot_git = self.path / ".git"
        if dot_git.is_dir():
            return dot_git
        try:
            content = dot_git.read_text().strip()
        except OSError:
            return dot_git
        if content.startswith("gitdir:"):
            target = Path(content.split(":", 1)[1].strip())
            return target if target.is_absolute() else (self.path / target).resolve()
        return dot_git

    def worktree_name(self) -> str | None:
        """Name of the linked worktree, or None for a main working copy."""
        dot_git = self.path / ".git"
        if not dot_git.is_file():
            return None
        try:
            content = dot_git.read_text()
        except OSError:
            return None
        marker = "worktrees/"
        if marker not in content:
            return None
        suffix = content.split(marker, 1)[1]
        name = suffix.replace("\r", "\n").split("\n")[0].split("/")[0]
        return name or None

    def upstream_branch(self, branch: str | None = None) -> str | None:
        """The upstream of ``branch`` (or of HEAD), e.g. ``origin/main``."""
        ref = f"{branch}@{{u}}" if branch else "@{u}"
        raw = self._try(["rev-parse", "--abbrev-ref", "--symbolic-full-name", ref])
        return raw or None

    def ahead_behind(
        self, branch: str | None, upstream: str | None
    ) -> tuple[int | None, int | None]:
        """Commits (ahead, behind) of ``branch`` relative to ``upstream``.

        Either one missing gives (None, None).
        """
        if branch is None or upstream is None:
            return None, None
        return self._count_left_right(f"{upstream}...{branch}")

    def head_ahead_behind(self) -> tuple[int | None, int | None]:
        """Commits (ahead, behind) of this checkout's HEAD relative to its upstream."""
        return self._count_left_right("@{u}...HEAD")

    def _count_left_right(self, revisions: str) -> tuple[int | None, int | None]:
        output = self._try(["rev-list", "--left-right", "--count", revisions])
        if output is None:
            return None, None
        return _parse_ahead_behind(output)

    def last_commit_info(self, ref: str) -> tuple[datetime | None, str | None]:
        """Commit time and author name of the tip of ``ref``."""
        output = self._try(["log", "-1", "--format=%ct|%an", ref])
        if not output:
            return None, None
        stamp, _, author = output.partition("|")
        try:
            date = datetime.fromtimestamp(int(stamp), tz=timezone.utc)
        except ValueError:
            return None, None
        return date, author or None

    def remote_full_name(self, remote: str = "origin") -> str | None:
        url = self._try(["remote", "get-url", remote])
        return parse_remote_full_name(url) if url else None

    def branch_details(self) -> LocalBranchSnapshot:
        """Lists local branches with upstream, ahead/behind and last commit.

        Raises:
            GitCommandError: If the branch list cannot be read.
        """
        current = self.current_branch()
        is_detached = current == DETACHED_HEAD
        detached_date, detached_author = (
            self.last_commit_info("HEAD") if is_detached else (None, None)
        )
        raw = self._run(["branch", "--format=%(refname:short)"])
        branches = []
        for name in raw.splitlines():
            name = name.strip()
            if not name:
                continue
            upstream = self.upstream_branch(name)
            ahead, behind = self.ahead_behind(name, upstream)
            date, author = self.last_commit_info(name)
            branches.append(
                LocalBranchDetails(
                    name=name,
                    is_current=name == current,
                    upstream=upstream,
                    ahead_count=ahead,
                    behind_count=behind,
                    last_commit_date=date,
                    last_commit_author=author,
                )
            )
        return LocalBranchSnapshot(
            branches=tuple(branches),
            is_detached_head=is_detached,
            detached_commit_date=detached_date,
            detached_commit_author=detached_author,
        )

    def worktrees(self) -> list[LocalWorktree]:
        """Parses ``git worktree list --porcelain``.

        Raises:
            GitCommandError: If the worktree list cannot be read.
        """
        raw = self._run(["worktree", "list", "--porcelain"])
        own_path = self.path.resolve()
        entries: list[LocalWorktree] = []

        path: Path | None = None
        branch: str | None = None
        detached = False

        def commit_entry() -> None:
            if path is None:
                return
            name = None if detached else branch
            upstream = self.upstream_branch(name) if name else None
            ahead, behind = self.ahead_behind(name, upstream)
            # HEAD and status are read inside the worktree itself.
            checkout = GitRepo(path) if (path / ".git").exists() else None
            dirty = None
            if checkout is not None:
                date, author = checkout.last_commit_info("HEAD")
                output = checkout.status_porcelain()
                dirty = parse_dirty_counts(output) if output else None
            elif name:
                date, author = self.last_commit_info(name)
            else:
                date, author = None, None
            entries.append(
                LocalWorktree(
                    path=path,
                    branch=name,
                    is_current=path.resolve() == own_path,
                    upstream=upstream,
                    ahead_count=ahead,
                    behind_count=behind,
                    last_commit_date=date,
                    last_commit_author=author,
                    dirty_counts=dirty,
                )
            )

        for line in raw.splitlines():
            if line.startswith("worktree "):
                commit_entry()
                path = Path(line[len("worktree ") :])
                branch = None
                detached = False
            elif line.startswith("branch "):
                branch = line[len("branch ") :].removeprefix("refs/heads/")
            elif line == "detached":
                detached = True
        commit_entry()
        return entries

    def local_status(self) -> LocalRepoStatus:
        """Takes a snapshot of the working copy's branch, sync and dirty state."""
        branch = self.current_branch()
        output = self.status_porcelain()
        is_clean = output is not None and not output.strip()
        ahead, behind = self.head_ahead_behind()
        full_name = self.remote_full_name()
        return LocalRepoStatus(
            path=self.path,
            name=full_name.split("/", 1)[1] if full_name else self.path.name,
            full_name=full_name,
            branch=branch,
            is_clean=is_clean,
            ahead_count=ahead,
            behind_count=behind,
            sync_state=LocalSyncState.resolve(is_clean, ahead, behind),
            dirty_counts=parse_dirty_counts(output) if output else None,
            dirty_files=tuple(parse_dirty_files(output)) if output else (),
            worktree_name=self.worktree_name(),
            upstream_branch=self.upstream_branch(),
        )

    # --- Mutations ---

    def fetch_prune(self) -> bool:
        return self._try(["fetch", "--prune"]) is not None

    def smart_sync(self) -> LocalSyncResult:
        """Fetches, rebases onto upstream when behind, and pushes when ahead.

        Raises:
            RepositoryBusyError: If another git operation is in progress.
            DirtyWorkingTreeError: If there are uncommitted changes.
            DetachedHeadError: If HEAD is detached.
            MissingUpstreamError: If the branch has no upstream.
            GitCommandError: If pull or push fails.
        """
        if self.is_busy():
            raise RepositoryBusyError()
        if not self.is_clean():
            raise DirtyWorkingTreeError()
        if self.current_branch() == DETACHED_HEAD:
            raise DetachedHeadError()
        if self.upstream_branch() is None:
            raise MissingUpstreamError()

        did_fetch = self.fetch_prune()
        ahead, behind = self.head_ahead_behind()
        did_pull = False
        if (behind or 0) > 0:
            self._run(["pull", "--rebase", "--autostash"])
            did_pull = True
            ahead, behind = self.head_ahead_behind()

        did_push = False
        if (ahead or 0) > 0:
            self._run(["push"])
            did_push = True

        logger.info(
            f"SYNC {self.path.name}: fetch={did_fetch} pull={did_pull} push={did_push}"
        )
        return LocalSyncResult(did_fetch=did_fetch, did_pull=did_pull, did_push=did_push)

    def rebase_onto_upstream(self) -> None:
        if self.is_busy():
            raise RepositoryBusyError()
        if not self.is_clean():
            raise DirtyWorkingTreeError()
        if self.upstream_branch() is None:
            raise MissingUpstreamError()
        self.fetch_prune()
        self._run(["rebase", "--autostash", "@{u}"])

    def hard_reset_to_upstream(self) -> None:
        if self.is_busy():
            raise RepositoryBusyError()
        if self.upstream_branch() is None:
            raise MissingUpstreamError()
        self.fetch_prune()
        self._run(["reset", "--hard", "@{u}"])

    def switch_branch(self, name: str) -> None:
        self._run(["switch", name])

    def create_branch(self, name: str) -> None:
        self._run(["switch", "-c", name])

    def create_worktree(self, destination: Path, branch: str) -> None:
        self._run(["worktree", "add", str(destination), "-b", branch])
