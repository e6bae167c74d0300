"""
Git synchronization controller.

Tracks a single working copy against one explicitly configured remote
and branch. Pulls are fast-forward only: a diverged history is reported
as a distinct, non-retryable rejection and is never merged.
"""

import asyncio
import logging
import re
from pathlib import Path

from deckhand_common.errors import (
    CommitNotFound,
    DeckhandError,
    FetchFailed,
    GitError,
    InvalidCommitRef,
    InvalidRepository,
    PullFailed,
    PullRejectedDiverged,
    RemoteUnreachable,
)
from deckhand_common.models import CommitInfo, OperationResult, PullOutcome, RepositorySnapshot

from .command_runner import CommandResult, CommandRunner
from .single_flight import ResourceLocks

logger = logging.getLogger(__name__)

# Never prompt for credentials and keep messages parseable
GIT_ENV = {"GIT_TERMINAL_PROMPT": "0", "LC_ALL": "C"}

# NUL cannot occur in commit text, so it is safe as a field delimiter
COMMIT_FORMAT = "%H%x00%h%x00%an%x00%ae%x00%at%x00%s%x00%b"
COMMIT_FIELDS = 7

MAX_INCOMING_COMMITS = 100

_COMMIT_REF = re.compile(r"^(HEAD|[0-9a-fA-F]{4,64})$")
_FILES_CHANGED = re.compile(r"(\d+) files? changed")

_DIVERGED_MARKERS = (
    "not possible to fast-forward",
    "diverging branches",
    "have diverged",
)

_MISCONFIGURED_MARKERS = (
    "does not appear to be a git repository",
    "couldn't find remote ref",
)

_UNREACHABLE_MARKERS = (
    "could not resolve host",
    "unable to access",
    "connection refused",
    "connection timed out",
    "network is unreachable",
    "operation timed out",
    "authentication failed",
    "permission denied (publickey",
)

_MISSING_COMMIT_MARKERS = (
    "unknown revision",
    "bad object",
    "ambiguous argument",
    "expected commit type",
)


def parse_files_changed(output: str) -> int:
    """
    Extract the file count from a git diffstat summary line.

    Args:
        output: stdout of git pull/merge

    Returns:
        Number of files changed, or 0 if no summary line is present
    """
    match = _FILES_CHANGED.search(output)
    return int(match.group(1)) if match else 0


def parse_commit_record(raw: str) -> CommitInfo:
    """
    Parse one NUL-delimited commit record produced with COMMIT_FORMAT.

    Raises:
        GitError: If the record does not have the expected fields
    """
    fields = raw.split("\x00", COMMIT_FIELDS - 1)
    if len(fields) != COMMIT_FIELDS:
        raise GitError(f"Unexpected commit format: {len(fields)} fields", output=raw)

    full_hash, short_hash, author_name, author_email, timestamp, subject, body = fields
    try:
        timestamp_unix = int(timestamp.strip())
    except ValueError as e:
        raise GitError(f"Invalid commit timestamp: {timestamp!r}", output=raw) from e

    return CommitInfo(
        hash=full_hash.strip(),
        short_hash=short_hash.strip(),
        author_name=author_name,
        author_email=author_email,
        timestamp_unix=timestamp_unix,
        subject=subject,
        body=body.strip(),
    )


def _contains_any(text: str, markers: tuple[str, ...]) -> bool:
    lowered = text.lower()
    return any(marker in lowered for marker in markers)


class GitSyncController:
    """
    Fetches, pulls and inspects one repository.

    The controller is stateless: every status query re-reads the refs,
    and nothing about the repository is cached between calls.
    """

    def __init__(
        self,
        runner: CommandRunner,
        repo_path: str | Path,
        remote: str = "origin",
        branch: str = "main",
        timeout: float = 120.0,
        locks: ResourceLocks | None = None,
    ):
        """
        Initialize the git sync controller.

        Args:
            runner: Command runner used for every git invocation
            repo_path: Path to the working copy
            remote: Remote name to track
            branch: Branch name to track
            timeout: Seconds before a git command is killed
            locks: Shared single-flight registry for mutating calls
        """
        self.runner = runner
        self.repo_path = Path(repo_path)
        self.remote = remote
        self.branch = branch
        self.timeout = timeout
        self.locks = locks or ResourceLocks()

    @property
    def remote_ref(self) -> str:
        return f"refs/remotes/{self.remote}/{self.branch}"

    @property
    def resource_key(self) -> str:
        return f"repo:{self.repo_path.resolve()}"

    async def _git(self, *args: str) -> CommandResult:
        return await self.runner.run(
            ["git", *args], cwd=self.repo_path, timeout=self.timeout, env=GIT_ENV
        )

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def fetch(self) -> OperationResult:
        """
        Fetch the configured branch from the configured remote.

        Never touches the working tree and never retries.

        Returns:
            OperationResult; on failure the error kind is remote_unreachable
            or fetch_failed
        """
        logger.info(f"Fetching updates from {self.remote}/{self.branch}")

        return await self.locks.run_exclusive(self.resource_key, self._fetch_locked)

    async def _fetch_locked(self) -> OperationResult:
        try:
            result = await self._git("fetch", self.remote, self.branch)
        except DeckhandError as e:
            logger.error(f"Git fetch could not run: {e}")
            return OperationResult.failure(e.to_error_detail())

        output = (result.stdout + result.stderr).strip()

        if not result.success:
            logger.error(f"Git fetch failed: {result.stderr.strip()}")
            error = self._classify_fetch_failure(result)
            return OperationResult.failure(error.to_error_detail(), output=result.stdout)

        logger.info(f"Successfully fetched from {self.remote}/{self.branch}")
        return OperationResult(success=True, output=output)

    async def pull(self) -> PullOutcome:
        """
        Fast-forward the working copy to the remote branch.

        Returns:
            PullOutcome describing one of: already up to date, fast-forwarded
            with N files changed, or rejected (diverged / other failure)
        """
        logger.info(f"Pulling updates from {self.remote}/{self.branch}")

        return await self.locks.run_exclusive(self.resource_key, self._pull_locked)

    async def _pull_locked(self) -> PullOutcome:
        try:
            result = await self._git("pull", "--ff-only", self.remote, self.branch)
        except DeckhandError as e:
            logger.error(f"Git pull could not run: {e}")
            return PullOutcome(success=False, error=e.to_error_detail())

        if not result.success:
            error = await self._classify_pull_failure(result)
            if isinstance(error, PullRejectedDiverged):
                logger.warning(
                    f"Pull rejected: local history diverged from {self.remote}/{self.branch}"
                )
            else:
                logger.error(f"Git pull failed: {result.stderr.strip()}")
            return PullOutcome(
                success=False,
                raw_output=(result.stdout + result.stderr).strip(),
                error=error.to_error_detail(),
            )

        stdout = result.stdout
        already_up_to_date = "Already up to date" in stdout or "Already up-to-date" in stdout
        files_changed = 0 if already_up_to_date else parse_files_changed(stdout)

        logger.info(f"Pull completed: {files_changed} files changed")
        return PullOutcome(
            success=True,
            already_up_to_date=already_up_to_date,
            files_changed=files_changed,
            raw_output=stdout,
        )

    def _classify_fetch_failure(self, result: CommandResult) -> GitError:
        stderr = result.stderr.strip()
        if _contains_any(stderr, _MISCONFIGURED_MARKERS):
            return FetchFailed(f"Git fetch failed: {stderr}", output=stderr)
        if _contains_any(stderr, _UNREACHABLE_MARKERS):
            return RemoteUnreachable(
                f"Remote '{self.remote}' is unreachable: {stderr}", output=stderr
            )
        return FetchFailed(f"Git fetch failed: {stderr}", output=stderr)

    async def _classify_pull_failure(self, result: CommandResult) -> GitError:
        stderr = result.stderr.strip()
        combined = f"{result.stdout}\n{stderr}"

        if _contains_any(combined, _DIVERGED_MARKERS):
            return PullRejectedDiverged(
                "Local branch has diverged from the remote; manual resolution required",
                output=stderr,
            )

        if _contains_any(stderr, _MISCONFIGURED_MARKERS):
            return PullFailed(f"Git pull failed: {stderr}", output=stderr)

        if _contains_any(stderr, _UNREACHABLE_MARKERS):
            return RemoteUnreachable(
                f"Remote '{self.remote}' is unreachable: {stderr}", output=stderr
            )

        # Fall back to an explicit ancestry check in case git's wording changed
        try:
            ancestry = await self._git(
                "merge-base", "--is-ancestor", "HEAD", self.remote_ref
            )
        except DeckhandError as e:
            logger.warning(f"Ancestry check failed: {e}")
            return PullFailed(f"Git pull failed: {stderr}", output=stderr)

        if ancestry.returncode == 1:
            return PullRejectedDiverged(
                "Local branch has diverged from the remote; manual resolution required",
                output=stderr,
            )

        return PullFailed(f"Git pull failed: {stderr}", output=stderr)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get_status(self) -> RepositorySnapshot:
        """
        Compare local HEAD with the last-fetched remote branch.

        Does not fetch. A stale remote ref yields stale status; callers that
        need freshness must call fetch() first.

        Raises:
            GitError: If any of the refs cannot be resolved
        """
        logger.debug(f"Getting git status for repository at {self.repo_path}")

        local_commit, remote_commit, current_branch = await asyncio.gather(
            self._rev_parse("HEAD"),
            self._rev_parse(self.remote_ref),
            self._rev_parse("--abbrev-ref", "HEAD"),
        )

        snapshot = RepositorySnapshot(
            local_commit=local_commit,
            remote_commit=remote_commit,
            current_branch=current_branch,
        )
        logger.debug(f"Git status: {snapshot}")
        return snapshot

    async def _rev_parse(self, *args: str) -> str:
        result = await self._git("rev-parse", *args)
        if not result.success:
            raise GitError(
                f"Failed to resolve {' '.join(args)}: {result.stderr.strip()}",
                output=result.stderr,
            )
        return result.stdout.strip()

    async def validate_repository(self) -> None:
        """
        Check that the path is a git working copy with the configured remote.

        Called once at startup; any failure is fatal.

        Raises:
            InvalidRepository: If the path, work tree or remote is invalid
        """
        if not self.repo_path.exists():
            raise InvalidRepository(f"Repository path does not exist: {self.repo_path}")
        if not self.repo_path.is_dir():
            raise InvalidRepository(f"Repository path is not a directory: {self.repo_path}")

        result = await self._git("rev-parse", "--is-inside-work-tree")
        if not result.success or result.stdout.strip() != "true":
            raise InvalidRepository(
                f"Not a git repository: {self.repo_path}", output=result.stderr
            )

        result = await self._git("remote", "get-url", self.remote)
        if not result.success:
            raise InvalidRepository(
                f"Remote '{self.remote}' not found in repository", output=result.stderr
            )

        logger.info(f"Repository validation successful: {self.repo_path}")

    async def get_commit_info(self, ref: str) -> CommitInfo:
        """
        Return structured metadata for one commit.

        Args:
            ref: Full or abbreviated hex hash, or "HEAD"

        Raises:
            InvalidCommitRef: If ref is not a hash or HEAD
            CommitNotFound: If git does not know the commit
            GitError: On any other git failure
        """
        if not _COMMIT_REF.match(ref):
            raise InvalidCommitRef(f"Invalid commit reference: {ref!r}")

        # Peel to a commit so blob and tree hashes are rejected rather than printed
        result = await self._git(
            "show", "-s", f"--format={COMMIT_FORMAT}", f"{ref}^{{commit}}"
        )
        if not result.success:
            stderr = result.stderr.strip()
            if _contains_any(stderr, _MISSING_COMMIT_MARKERS):
                raise CommitNotFound(f"Commit not found: {ref}", output=stderr)
            raise GitError(f"Failed to read commit {ref}: {stderr}", output=stderr)

        return parse_commit_record(result.stdout)

    async def get_incoming_commits(self, limit: int = 20) -> list[CommitInfo]:
        """
        List commits on the remote branch that HEAD does not have yet.

        Uses the last-fetched remote ref. Newest first.

        Args:
            limit: Maximum number of commits to return (capped at 100)
        """
        limit = max(1, min(limit, MAX_INCOMING_COMMITS))
        result = await self._git(
            "rev-list", f"--max-count={limit}", f"HEAD..{self.remote_ref}"
        )
        if not result.success:
            raise GitError(
                f"Failed to list incoming commits: {result.stderr.strip()}",
                output=result.stderr,
            )

        commits = []
        for commit_hash in result.stdout.split():
            commits.append(await self.get_commit_info(commit_hash))
        return commits
