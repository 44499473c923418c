"""Exception hierarchy shared by the cache, the resource registry and local git."""


class RepodashError(Exception):
    """Base class for all repodash errors.

    Attributes:
        user_message (str): A short, human-readable description suitable for
            alerts and message rows.
    """

    def __init__(self, message: str, user_message: str | None = None):
        super().__init__(message)
        self.user_message = user_message or message


class InvalidKeyError(RepodashError, ValueError):
    """Raised when a cache key is not of the form ``owner/name``."""

    def __init__(self, key: str):
        super().__init__(
            f"Invalid repository key {key!r}: expected 'owner/name'",
            user_message="Invalid repository name",
        )
        self.key = key


class FetchError(RepodashError):
    """Raised when a remote fetch fails for any reason other than a timeout."""


class FetchTimeoutError(FetchError):
    """Raised when a remote fetch does not complete within the load timeout."""


class GitCommandError(RepodashError, RuntimeError):
    """Raised when a git invocation exits with a non-zero status.

    The user-facing message prefers stderr, then stdout, then a generic fallback.
    """

    def __init__(self, args: list[str], stdout: str = "", stderr: str = ""):
        self.args_list = args
        self.stdout = stdout or ""
        self.stderr = stderr or ""
        message = self.stderr.strip() or self.stdout.strip() or "Git command failed."
        super().__init__(f"Git error: {message}", user_message=message)


class LocalGitError(RepodashError):
    """Raised when a local git action's preconditions are not met."""


class DirtyWorkingTreeError(LocalGitError):
    def __init__(self) -> None:
        super().__init__("Working tree has uncommitted changes.")


class MissingUpstreamError(LocalGitError):
    def __init__(self) -> None:
        super().__init__("No upstream branch configured.")


class DetachedHeadError(LocalGitError):
    def __init__(self) -> None:
        super().__init__("Repository is in detached HEAD state.")


class RepositoryBusyError(LocalGitError):
    def __init__(self) -> None:
        super().__init__("Repository has a merge, rebase or other operation in progress.")


class AccessDeniedError(LocalGitError):
    """Raised when a path falls outside the configured access root."""
