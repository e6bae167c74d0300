"""
Unit tests for deckhand_controller.git_sync.

Git is replaced by FakeCommandRunner; these tests cover argument
construction, output parsing and failure classification.
"""

import asyncio

import pytest

from deckhand_common.errors import (
    CommandLaunchError,
    CommitNotFound,
    GitError,
    InvalidCommitRef,
    InvalidRepository,
)
from deckhand_controller.command_runner import CommandResult
from deckhand_controller.git_sync import (
    GIT_ENV,
    GitSyncController,
    parse_commit_record,
    parse_files_changed,
)

LOCAL = "1111111111111111111111111111111111111111"
REMOTE = "2222222222222222222222222222222222222222"

DIVERGED_STDERR = (
    "hint: Diverging branches can't be fast-forwarded, you need to either:\n"
    "fatal: Not possible to fast-forward, aborting.\n"
)

UNKNOWN_REMOTE_STDERR = (
    "fatal: 'nosuch' does not appear to be a git repository\n"
    "fatal: Could not read from remote repository.\n\n"
    "Please make sure you have the correct access rights\n"
    "and the repository exists.\n"
)


def commit_record(full_hash, subject="Fix bug", body=""):
    return f"{full_hash}\x00{full_hash[:7]}\x00Alice\x00alice@example.com\x001700000000\x00{subject}\x00{body}\n"


@pytest.fixture
def git(fake_runner, tmp_path):
    """Create a GitSyncController backed by the fake runner."""
    return GitSyncController(fake_runner, tmp_path, remote="origin", branch="main", timeout=5)


class TestParsing:
    def test_files_changed(self):
        output = " README.md | 2 +-\n 3 files changed, 10 insertions(+), 2 deletions(-)\n"
        assert parse_files_changed(output) == 3

    def test_single_file_changed(self):
        assert parse_files_changed(" 1 file changed, 1 insertion(+)") == 1

    def test_no_summary(self):
        assert parse_files_changed("Already up to date.") == 0

    def test_commit_record_with_multi_paragraph_body(self):
        body = "First paragraph.\n\nSecond paragraph\nwith two lines.\n\n"
        info = parse_commit_record(commit_record(LOCAL, subject="Add feature", body=body))

        assert info.hash == LOCAL
        assert info.short_hash == LOCAL[:7]
        assert info.author_name == "Alice"
        assert info.author_email == "alice@example.com"
        assert info.timestamp_unix == 1700000000
        assert info.subject == "Add feature"
        assert info.body == "First paragraph.\n\nSecond paragraph\nwith two lines."

    def test_commit_record_without_body(self):
        info = parse_commit_record(commit_record(LOCAL))
        assert info.body == ""

    def test_truncated_record(self):
        with pytest.raises(GitError):
            parse_commit_record(f"{LOCAL}\x00abc\x00Alice")

    def test_bad_timestamp(self):
        raw = f"{LOCAL}\x00abc\x00Alice\x00a@b\x00yesterday\x00Subject\x00"
        with pytest.raises(GitError, match="timestamp"):
            parse_commit_record(raw)


class TestFetch:
    @pytest.mark.asyncio
    async def test_fetch_success(self, git, fake_runner, tmp_path):
        fake_runner.on("fetch", stderr="From example.com:app\n * branch main -> FETCH_HEAD\n")

        result = await git.fetch()

        assert result.success
        assert fake_runner.calls == [["git", "fetch", "origin", "main"]]
        assert fake_runner.kwargs[0]["cwd"] == tmp_path
        assert fake_runner.kwargs[0]["env"] == GIT_ENV
        assert fake_runner.kwargs[0]["timeout"] == 5

    @pytest.mark.asyncio
    async def test_fetch_unreachable(self, git, fake_runner):
        fake_runner.on(
            "fetch",
            returncode=128,
            stderr="fatal: unable to access 'https://example.com/app.git/': "
            "Could not resolve host: example.com\n",
        )

        result = await git.fetch()

        assert not result.success
        assert result.error.kind == "remote_unreachable"
        assert "Could not resolve host" in result.error.output

    @pytest.mark.asyncio
    async def test_fetch_other_failure(self, git, fake_runner):
        fake_runner.on("fetch", returncode=128, stderr="fatal: couldn't find remote ref main\n")

        result = await git.fetch()

        assert result.error.kind == "fetch_failed"

    @pytest.mark.asyncio
    async def test_fetch_unknown_remote_is_not_unreachable(self, git, fake_runner):
        fake_runner.on(
            "fetch",
            returncode=128,
            stderr=UNKNOWN_REMOTE_STDERR,
        )

        result = await git.fetch()

        assert result.error.kind == "fetch_failed"
        assert result.error.retryable

    @pytest.mark.asyncio
    async def test_fetch_launch_failure_is_a_result(self, git, fake_runner):
        fake_runner.on("fetch", exc=CommandLaunchError("Failed to execute git"))

        result = await git.fetch()

        assert not result.success
        assert result.error.kind == "command_launch_failed"


class TestPull:
    @pytest.mark.asyncio
    async def test_already_up_to_date(self, git, fake_runner):
        fake_runner.on("pull", stdout="Already up to date.\n")

        outcome = await git.pull()

        assert outcome.success
        assert outcome.already_up_to_date
        assert outcome.files_changed == 0
        assert fake_runner.calls == [["git", "pull", "--ff-only", "origin", "main"]]

    @pytest.mark.asyncio
    async def test_fast_forward(self, git, fake_runner):
        fake_runner.on(
            "pull",
            stdout=(
                "Updating 1111111..2222222\nFast-forward\n"
                " app.py | 4 ++--\n docker-compose.yml | 2 +-\n"
                " 2 files changed, 3 insertions(+), 3 deletions(-)\n"
            ),
        )

        outcome = await git.pull()

        assert outcome.success
        assert not outcome.already_up_to_date
        assert outcome.files_changed == 2
        assert "Fast-forward" in outcome.raw_output

    @pytest.mark.asyncio
    async def test_diverged_is_rejected(self, git, fake_runner):
        fake_runner.on("pull", returncode=128, stderr=DIVERGED_STDERR)

        outcome = await git.pull()

        assert not outcome.success
        assert outcome.rejected
        assert outcome.error.kind == "pull_rejected_diverged"
        # Nothing else was attempted: no merge, no reset
        assert len(fake_runner.calls) == 1

    @pytest.mark.asyncio
    async def test_diverged_detected_by_ancestry_check(self, git, fake_runner):
        fake_runner.on("pull", returncode=1, stderr="fatal: unexpected wording\n")
        fake_runner.on("merge-base", returncode=1)

        outcome = await git.pull()

        assert outcome.rejected
        assert fake_runner.called(
            "merge-base", "--is-ancestor", "HEAD", "refs/remotes/origin/main"
        )

    @pytest.mark.asyncio
    async def test_other_failure(self, git, fake_runner):
        fake_runner.on("pull", returncode=1, stderr="error: cannot lock ref\n")
        fake_runner.on("merge-base", returncode=0)

        outcome = await git.pull()

        assert not outcome.success
        assert not outcome.rejected
        assert outcome.error.kind == "pull_failed"

    @pytest.mark.asyncio
    async def test_unreachable_remote(self, git, fake_runner):
        fake_runner.on(
            "pull",
            returncode=128,
            stderr=(
                "ssh: connect to host example.com port 22: Connection refused\n"
                "fatal: Could not read from remote repository.\n"
            ),
        )

        outcome = await git.pull()

        assert outcome.error.kind == "remote_unreachable"

    @pytest.mark.asyncio
    async def test_unknown_remote_is_a_pull_failure(self, git, fake_runner):
        fake_runner.on("pull", returncode=1, stderr=UNKNOWN_REMOTE_STDERR)

        outcome = await git.pull()

        assert outcome.error.kind == "pull_failed"
        assert not outcome.rejected
        assert not fake_runner.called("merge-base")

    @pytest.mark.asyncio
    async def test_concurrent_pulls_are_serialized(self, git, fake_runner):
        fake_runner.on("pull", stdout="Already up to date.\n", delay=0.05)
        fake_runner.on("fetch", delay=0.05)

        await asyncio.gather(git.pull(), git.fetch())

        assert [(kind, argv[1]) for kind, argv in fake_runner.events] == [
            ("start", "pull"),
            ("end", "pull"),
            ("start", "fetch"),
            ("end", "fetch"),
        ]

    @pytest.mark.asyncio
    async def test_cancelled_pull_keeps_the_lock_until_git_exits(self, git, fake_runner):
        fake_runner.on("pull", stdout="Already up to date.\n", delay=0.05)

        first = asyncio.ensure_future(git.pull())
        await asyncio.sleep(0.01)
        first.cancel()
        with pytest.raises(asyncio.CancelledError):
            await first

        await git.fetch()

        assert [(kind, argv[1]) for kind, argv in fake_runner.events] == [
            ("start", "pull"),
            ("end", "pull"),
            ("start", "fetch"),
            ("end", "fetch"),
        ]


class TestStatus:
    @pytest.mark.asyncio
    async def test_updates_available(self, git, fake_runner):
        fake_runner.on("rev-parse", "HEAD", stdout=f"{LOCAL}\n")
        fake_runner.on("rev-parse", "refs/remotes/origin/main", stdout=f"{REMOTE}\n")
        fake_runner.on("--abbrev-ref", "HEAD", stdout="main\n")

        snapshot = await git.get_status()

        assert snapshot.local_commit == LOCAL
        assert snapshot.remote_commit == REMOTE
        assert snapshot.current_branch == "main"
        assert snapshot.updates_available
        assert not fake_runner.called("fetch")

    @pytest.mark.asyncio
    async def test_missing_remote_ref_raises(self, git, fake_runner):
        fake_runner.on("rev-parse", "HEAD", stdout=f"{LOCAL}\n")
        fake_runner.on("--abbrev-ref", "HEAD", stdout="main\n")
        fake_runner.on(
            "rev-parse",
            "refs/remotes/origin/main",
            returncode=128,
            stderr="fatal: ambiguous argument 'refs/remotes/origin/main'\n",
        )

        with pytest.raises(GitError):
            await git.get_status()


class TestValidateRepository:
    @pytest.mark.asyncio
    async def test_valid(self, git, fake_runner):
        fake_runner.on("--is-inside-work-tree", stdout="true\n")
        fake_runner.on("get-url", stdout="git@example.com:app.git\n")

        await git.validate_repository()

        assert fake_runner.called("remote", "get-url", "origin")

    @pytest.mark.asyncio
    async def test_missing_path(self, fake_runner, tmp_path):
        git = GitSyncController(fake_runner, tmp_path / "missing")

        with pytest.raises(InvalidRepository, match="does not exist"):
            await git.validate_repository()

    @pytest.mark.asyncio
    async def test_not_a_repository(self, git, fake_runner):
        fake_runner.on(
            "--is-inside-work-tree", returncode=128, stderr="fatal: not a git repository\n"
        )

        with pytest.raises(InvalidRepository, match="Not a git repository"):
            await git.validate_repository()

    @pytest.mark.asyncio
    async def test_missing_remote(self, git, fake_runner):
        fake_runner.on("--is-inside-work-tree", stdout="true\n")
        fake_runner.on("get-url", returncode=2, stderr="error: No such remote 'origin'\n")

        with pytest.raises(InvalidRepository, match="origin"):
            await git.validate_repository()


class TestCommits:
    @pytest.mark.asyncio
    async def test_get_commit_info(self, git, fake_runner):
        fake_runner.on("show", stdout=commit_record(LOCAL, body="Details here.\n"))

        info = await git.get_commit_info("HEAD")

        assert info.hash == LOCAL
        assert info.body == "Details here."
        assert fake_runner.calls[0][-1] == "HEAD^{commit}"
        assert fake_runner.calls[0][2] == "-s"

    @pytest.mark.parametrize(
        "ref", ["main", "--all", "HEAD~1", "abc", "1234; rm -rf /", "", "g" * 40]
    )
    @pytest.mark.asyncio
    async def test_invalid_ref_never_reaches_git(self, git, fake_runner, ref):
        with pytest.raises(InvalidCommitRef):
            await git.get_commit_info(ref)
        assert fake_runner.calls == []

    @pytest.mark.asyncio
    async def test_unknown_commit(self, git, fake_runner):
        fake_runner.on(
            "show",
            returncode=128,
            stderr="fatal: ambiguous argument 'deadbeef': unknown revision or path\n",
        )

        with pytest.raises(CommitNotFound):
            await git.get_commit_info("deadbeef")

    @pytest.mark.asyncio
    async def test_blob_hash_is_not_a_commit(self, git, fake_runner):
        fake_runner.on(
            "show",
            returncode=128,
            stderr=(
                f"error: {LOCAL}^{{commit}}: expected commit type, but the object "
                "dereferences to blob type\n"
                f"fatal: ambiguous argument '{LOCAL}^{{commit}}': unknown revision or path\n"
            ),
        )

        with pytest.raises(CommitNotFound):
            await git.get_commit_info(LOCAL)
        assert fake_runner.calls[0][-1] == f"{LOCAL}^{{commit}}"

    @pytest.mark.asyncio
    async def test_incoming_commits(self, git, fake_runner):
        fake_runner.on("rev-list", stdout=f"{REMOTE}\n{LOCAL}\n")

        def show(argv):
            commit_hash = argv[-1].removesuffix("^{commit}")
            return CommandResult(
                args=argv, returncode=0, stdout=commit_record(commit_hash, subject=commit_hash[:4])
            )

        fake_runner.on("show", handler=show)

        commits = await git.get_incoming_commits(limit=5)

        assert [c.hash for c in commits] == [REMOTE, LOCAL]
        assert fake_runner.called("rev-list", "--max-count=5", "HEAD..refs/remotes/origin/main")

    @pytest.mark.asyncio
    async def test_incoming_limit_is_capped(self, git, fake_runner):
        fake_runner.on("rev-list", stdout="")

        assert await git.get_incoming_commits(limit=5000) == []
        assert fake_runner.called("--max-count=100")
