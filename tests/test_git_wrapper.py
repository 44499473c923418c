import shutil
import subprocess
from pathlib import Path
from unittest.mock import MagicMock, call

import pytest

from repodash.errors import (
    DetachedHeadError,
    DirtyWorkingTreeError,
    GitCommandError,
    MissingUpstreamError,
    RepositoryBusyError,
)
from repodash.git_wrapper import (
    GitRepo,
    parse_dirty_counts,
    parse_dirty_files,
    parse_remote_full_name,
)
from repodash.models import LocalDirtyCounts, LocalSyncState

PORCELAIN = " M src/a.py\n?? new.txt\nD  gone.txt\nA  added.py\nR  old.py -> renamed.py\n"


@pytest.fixture
def repo(tmp_path: Path) -> GitRepo:
    (tmp_path / ".git").mkdir()
    return GitRepo(tmp_path)


def test_rejects_non_repository(tmp_path: Path) -> None:
    with pytest.raises(ValueError, match="Not a git repository"):
        GitRepo(tmp_path)


def test_run_raises_git_command_error_with_stderr(mocker: MagicMock, repo: GitRepo) -> None:
    """Verifies that a failing git call surfaces stderr as the user message."""
    mocker.patch(
        "subprocess.run",
        side_effect=subprocess.CalledProcessError(
            1, ["git", "push"], output="", stderr="fatal: no remote\n"
        ),
    )

    with pytest.raises(GitCommandError) as exc:
        repo._run(["push"])

    assert exc.value.user_message == "fatal: no remote"
    assert str(exc.value) == "Git error: fatal: no remote"
    assert exc.value.args_list == ["push"]


def test_run_error_falls_back_to_stdout_then_generic(mocker: MagicMock, repo: GitRepo) -> None:
    mocker.patch(
        "subprocess.run",
        side_effect=subprocess.CalledProcessError(1, ["git"], output="conflict\n", stderr=""),
    )
    with pytest.raises(GitCommandError) as exc:
        repo._run(["pull"])
    assert exc.value.user_message == "conflict"

    mocker.patch(
        "subprocess.run", side_effect=subprocess.CalledProcessError(1, ["git"])
    )
    with pytest.raises(GitCommandError) as exc:
        repo._run(["pull"])
    assert exc.value.user_message == "Git command failed."


def test_run_missing_git_binary(mocker: MagicMock, repo: GitRepo) -> None:
    mocker.patch("subprocess.run", side_effect=FileNotFoundError("git"))
    with pytest.raises(GitCommandError, match="Could not run git"):
        repo._run(["status"])


def test_status_porcelain_keeps_leading_columns(mocker: MagicMock, repo: GitRepo) -> None:
    mock_run = mocker.patch("subprocess.run")
    mock_run.return_value = MagicMock(stdout=" M file.py\n")

    assert repo.status_porcelain() == " M file.py\n"
    assert not repo.is_clean()


def test_current_branch_detached_and_unknown(mocker: MagicMock, repo: GitRepo) -> None:
    mock_run = mocker.patch.object(repo, "_run")

    mock_run.return_value = "HEAD"
    assert repo.current_branch() == "detached"

    mock_run.side_effect = GitCommandError(["rev-parse"], stderr="fatal")
    assert repo.current_branch() == "unknown"


def test_ahead_behind_parses_left_right_counts(mocker: MagicMock, repo: GitRepo) -> None:
    """Verifies that rev-list's "<behind> <ahead>" output is returned as (ahead, behind)."""
    mock_run = mocker.patch.object(repo, "_run", return_value="3\t1")

    assert repo.head_ahead_behind() == (1, 3)
    mock_run.assert_called_with(["rev-list", "--left-right", "--count", "@{u}...HEAD"])

    assert repo.ahead_behind("feature", "origin/feature") == (1, 3)
    mock_run.assert_called_with(
        ["rev-list", "--left-right", "--count", "origin/feature...feature"]
    )

    assert repo.ahead_behind("feature", None) == (None, None)
    assert repo.ahead_behind(None, None) == (None, None)


def test_upstream_failure_is_none(mocker: MagicMock, repo: GitRepo, caplog) -> None:
    mocker.patch.object(repo, "_run", side_effect=GitCommandError(["rev-parse"], stderr="no upstream"))
    caplog.set_level("DEBUG", logger="repodash")

    assert repo.upstream_branch("main") is None
    assert "no upstream" in caplog.text


def test_last_commit_info(mocker: MagicMock, repo: GitRepo) -> None:
    mocker.patch.object(repo, "_run", return_value="1714564800|Mona")
    date, author = repo.last_commit_info("main")
    assert author == "Mona"
    assert date is not None and int(date.timestamp()) == 1714564800


@pytest.mark.parametrize(
    "url, expected",
    [
        ("git@github.com:octocat/Hello-World.git", "octocat/Hello-World"),
        ("https://github.com/octocat/Hello-World", "octocat/Hello-World"),
        ("ssh://git@example.com/group/sub/project.git", "sub/project"),
        ("not a remote", None),
        ("https://github.com/solo", None),
    ],
)
def test_parse_remote_full_name(url: str, expected: str | None) -> None:
    assert parse_remote_full_name(url) == expected


def test_parse_dirty_counts_and_files() -> None:
    assert parse_dirty_counts(PORCELAIN) == LocalDirtyCounts(added=2, modified=2, deleted=1)
    assert parse_dirty_counts("") is None
    assert parse_dirty_files(PORCELAIN) == [
        "src/a.py",
        "new.txt",
        "gone.txt",
        "added.py",
        "renamed.py",
    ]
    assert parse_dirty_files(PORCELAIN, limit=2) == ["src/a.py", "new.txt"]


def test_is_busy_detects_rebase(repo: GitRepo) -> None:
    assert not repo.is_busy()
    (repo.path / ".git" / "rebase-merge").mkdir()
    assert repo.is_busy()


def test_worktree_git_dir_and_name(tmp_path: Path) -> None:
    """Verifies that linked worktrees resolve their gitdir file."""
    main_git = tmp_path / "main" / ".git" / "worktrees" / "feature"
    main_git.mkdir(parents=True)
    tree = tmp_path / "feature"
    tree.mkdir()
    (tree / ".git").write_text(f"gitdir: {main_git}\n")

    repo = GitRepo(tree)

    assert repo.git_dir() == main_git
    assert repo.worktree_name() == "feature"
    (main_git / "MERGE_HEAD").write_text("abc")
    assert repo.is_busy()


def test_smart_sync_pulls_then_pushes(mocker: MagicMock, repo: GitRepo) -> None:
    mocker.patch.object(repo, "is_busy", return_value=False)
    mocker.patch.object(repo, "is_clean", return_value=True)
    mocker.patch.object(repo, "current_branch", return_value="main")
    mocker.patch.object(repo, "upstream_branch", return_value="origin/main")
    mocker.patch.object(repo, "fetch_prune", return_value=True)
    mocker.patch.object(repo, "head_ahead_behind", side_effect=[(1, 2), (1, 0)])
    mock_run = mocker.patch.object(repo, "_run", return_value="")

    result = repo.smart_sync()

    assert mock_run.call_args_list == [
        call(["pull", "--rebase", "--autostash"]),
        call(["push"]),
    ]
    assert (result.did_fetch, result.did_pull, result.did_push) == (True, True, True)


def test_smart_sync_up_to_date_runs_nothing(mocker: MagicMock, repo: GitRepo) -> None:
    mocker.patch.object(repo, "is_busy", return_value=False)
    mocker.patch.object(repo, "is_clean", return_value=True)
    mocker.patch.object(repo, "current_branch", return_value="main")
    mocker.patch.object(repo, "upstream_branch", return_value="origin/main")
    mocker.patch.object(repo, "fetch_prune", return_value=False)
    mocker.patch.object(repo, "head_ahead_behind", return_value=(0, 0))
    mock_run = mocker.patch.object(repo, "_run")

    result = repo.smart_sync()

    mock_run.assert_not_called()
    assert not result.did_pull and not result.did_push


@pytest.mark.parametrize(
    "busy, clean, branch, upstream, error",
    [
        (True, True, "main", "origin/main", RepositoryBusyError),
        (False, False, "main", "origin/main", DirtyWorkingTreeError),
        (False, True, "detached", "origin/main", DetachedHeadError),
        (False, True, "main", None, MissingUpstreamError),
    ],
)
def test_smart_sync_preconditions(
    mocker: MagicMock, repo: GitRepo, busy, clean, branch, upstream, error
) -> None:
    mocker.patch.object(repo, "is_busy", return_value=busy)
    mocker.patch.object(repo, "is_clean", return_value=clean)
    mocker.patch.object(repo, "current_branch", return_value=branch)
    mocker.patch.object(repo, "upstream_branch", return_value=upstream)
    mock_run = mocker.patch.object(repo, "_run")

    with pytest.raises(error):
        repo.smart_sync()
    mock_run.assert_not_called()


def test_hard_reset_and_rebase_commands(mocker: MagicMock, repo: GitRepo) -> None:
    mocker.patch.object(repo, "is_busy", return_value=False)
    mocker.patch.object(repo, "is_clean", return_value=True)
    mocker.patch.object(repo, "upstream_branch", return_value="origin/main")
    mocker.patch.object(repo, "fetch_prune", return_value=True)
    mock_run = mocker.patch.object(repo, "_run", return_value="")

    repo.hard_reset_to_upstream()
    mock_run.assert_called_with(["reset", "--hard", "@{u}"])

    repo.rebase_onto_upstream()
    mock_run.assert_called_with(["rebase", "--autostash", "@{u}"])


def test_branch_and_worktree_mutations(mocker: MagicMock, repo: GitRepo) -> None:
    mock_run = mocker.patch.object(repo, "_run", return_value="")

    repo.switch_branch("main")
    mock_run.assert_called_with(["switch", "main"])
    repo.create_branch("feature")
    mock_run.assert_called_with(["switch", "-c", "feature"])
    repo.create_worktree(Path("/tmp/wt"), "feature")
    mock_run.assert_called_with(["worktree", "add", "/tmp/wt", "-b", "feature"])


def test_branch_details(mocker: MagicMock, repo: GitRepo) -> None:
    mocker.patch.object(repo, "current_branch", return_value="main")
    mocker.patch.object(repo, "_run", return_value="main\nfeature\n")
    mocker.patch.object(
        repo, "upstream_branch", side_effect=lambda name=None: f"origin/{name}" if name == "main" else None
    )
    mocker.patch.object(repo, "ahead_behind", return_value=(None, None))
    mocker.patch.object(repo, "last_commit_info", return_value=(None, "Mona"))

    snapshot = repo.branch_details()

    assert not snapshot.is_detached_head
    assert [(b.name, b.is_current, b.upstream) for b in snapshot.branches] == [
        ("main", True, "origin/main"),
        ("feature", False, None),
    ]


def test_worktrees_parses_porcelain(mocker: MagicMock, repo: GitRepo) -> None:
    other = repo.path / ".work" / "feature"
    porcelain = (
        f"worktree {repo.path}\nHEAD abc\nbranch refs/heads/main\n\n"
        f"worktree {other}\nHEAD def\ndetached\n"
    )
    mocker.patch.object(repo, "_run", return_value=porcelain)
    mocker.patch.object(repo, "upstream_branch", return_value=None)
    mocker.patch.object(repo, "ahead_behind", return_value=(None, None))
    mocker.patch.object(GitRepo, "last_commit_info", return_value=(None, None))
    mocker.patch.object(GitRepo, "status_porcelain", return_value="")

    trees = repo.worktrees()

    assert [(t.path, t.branch, t.is_current) for t in trees] == [
        (repo.path, "main", True),
        (other, None, False),
    ]


def _git(cwd: Path, *args: str, author: str = "Bob") -> str:
    return subprocess.run(
        [
            "git",
            "-c", f"user.name={author}",
            "-c", f"user.email={author.lower()}@example.com",
            "-c", "commit.gpgsign=false",
            *args,
        ],
        cwd=cwd,
        check=True,
        capture_output=True,
        text=True,
    ).stdout.strip()


@pytest.mark.skipif(shutil.which("git") is None, reason="git not installed")
def test_worktrees_read_each_checkout(tmp_path: Path) -> None:
    """Verifies that a detached worktree reports its own HEAD and no ahead/behind.

    The main checkout is two commits ahead of origin while the detached
    worktree sits on the first commit, authored by someone else.
    """
    main = tmp_path / "app"
    main.mkdir()
    _git(main, "init", "-q", "-b", "main")
    _git(main, "commit", "-q", "--allow-empty", "-m", "c1", author="Alice")
    first = _git(main, "rev-parse", "HEAD")
    _git(tmp_path, "clone", "-q", "--bare", str(main), "origin.git")
    _git(main, "remote", "add", "origin", str(tmp_path / "origin.git"))
    _git(main, "fetch", "-q", "origin")
    _git(main, "branch", "--set-upstream-to=origin/main", "main")
    _git(main, "commit", "-q", "--allow-empty", "-m", "c2")
    _git(main, "commit", "-q", "--allow-empty", "-m", "c3")
    _git(main, "worktree", "add", "--detach", str(tmp_path / "detached"), first)

    trees = GitRepo(main).worktrees()

    by_path = {tree.path.resolve(): tree for tree in trees}
    own = by_path[main.resolve()]
    detached = by_path[(tmp_path / "detached").resolve()]

    assert own.branch == "main"
    assert own.is_current
    assert (own.ahead_count, own.behind_count) == (2, 0)
    assert own.last_commit_author == "Bob"

    assert detached.branch is None
    assert not detached.is_current
    assert detached.upstream is None
    assert (detached.ahead_count, detached.behind_count) == (None, None)
    assert detached.last_commit_author == "Alice"


def test_local_status_snapshot(mocker: MagicMock, repo: GitRepo) -> None:
    mocker.patch.object(repo, "current_branch", return_value="main")
    mocker.patch.object(repo, "status_porcelain", return_value=" M a.py\n")
    mocker.patch.object(repo, "head_ahead_behind", return_value=(0, 2))
    mocker.patch.object(repo, "remote_full_name", return_value="octocat/Hello-World")
    mocker.patch.object(repo, "upstream_branch", return_value="origin/main")

    status = repo.local_status()

    assert status.full_name == "octocat/Hello-World"
    assert status.name == "Hello-World"
    assert status.sync_state is LocalSyncState.DIRTY
    assert status.dirty_summary == "~1"
    assert status.dirty_files == ("a.py",)
    assert status.upstream_branch == "origin/main"
    assert status.worktree_name is None
