"""Thin, allow-listed wrapper around the ``git`` executable.

Every call is an argument list passed to ``subprocess.run`` (never a
shell string) with an explicit timeout. Any user-controlled value
(branch, remote, file path, commit message, author) is checked by
``trilium_sync.validators`` first; an unsafe value raises
``SecurityValidationError`` and no process is started.

Non-zero exits, timeouts and a missing ``git`` binary all surface as
``GitCommandError``.
"""

from __future__ import annotations

import logging
import subprocess
from pathlib import Path

from trilium_sync.validators import (
    validate_author_email,
    validate_author_name,
    validate_branch_name,
    validate_commit_message,
    validate_git_path,
)

from .errors import GitCommandError, SecurityValidationError
from .models import GitCommit, GitStatus

logger = logging.getLogger(__name__)

ALLOWED_SUBCOMMANDS = frozenset(
    {
        "status",
        "branch",
        "checkout",
        "pull",
        "push",
        "add",
        "commit",
        "log",
        "remote",
        "rev-parse",
        "config",
    }
)

STATUS_TIMEOUT = 10
WRITE_TIMEOUT = 15
NETWORK_TIMEOUT = 60

LOG_FORMAT = "%H|%an|%ad|%s"


def require_safe(check: tuple[bool, str], field: str, value: str) -> None:
    """Raise ``SecurityValidationError`` for a failed validator result."""
    valid, message = check
    if not valid:
        raise SecurityValidationError(
            f"Unsafe {field}: {message}", details={"field": field, "value": value}
        )


def parse_porcelain(output: str) -> dict[str, list[str]]:
    """Split ``git status --porcelain`` output into change buckets.

    A non-blank index column marks the path as staged, independently of
    the modified/added/deleted bucket it lands in.
    """
    buckets: dict[str, list[str]] = {
        "modified": [],
        "added": [],
        "deleted": [],
        "untracked": [],
        "staged": [],
    }
    for line in output.splitlines():
        if len(line) < 4:
            continue
        code, path = line[:2], line[3:]
        if " -> " in path:
            path = path.split(" -> ", 1)[1]
        path = path.strip('"')
        if code == "??":
            buckets["untracked"].append(path)
            continue
        if code[0] != " ":
            buckets["staged"].append(path)
        if "M" in code:
            buckets["modified"].append(path)
        elif "A" in code:
            buckets["added"].append(path)
        elif "D" in code:
            buckets["deleted"].append(path)
    return buckets


def parse_log(output: str) -> list[GitCommit]:
    commits = []
    for line in output.splitlines():
        parts = line.split("|", 3)
        if len(parts) == 4:
            commits.append(
                GitCommit(
                    hash=parts[0], author=parts[1], date=parts[2], message=parts[3]
                )
            )
    return commits


class GitRunner:
    """Run git commands inside one working tree.

    Args:
        repository_path: Root of the working tree.
    """

    def __init__(self, repository_path: str | Path) -> None:
        self.repository_path = Path(repository_path)

    def run(self, args: list[str], timeout: int = STATUS_TIMEOUT) -> str:
        """Run ``git <args>`` and return stdout.

        Raises:
            SecurityValidationError: If the subcommand is not allow-listed.
            GitCommandError: On non-zero exit, timeout or missing git.
        """
        if not args or args[0] not in ALLOWED_SUBCOMMANDS:
            raise SecurityValidationError(
                f"git subcommand not allowed: {args[0] if args else ''}",
                details={"command": args},
            )
        command = ["git", *args]
        logger.debug("Running %s in %s", command, self.repository_path)
        try:
            result = subprocess.run(
                command,
                cwd=str(self.repository_path),
                capture_output=True,
                text=True,
                timeout=timeout,
            )
        except subprocess.TimeoutExpired as exc:
            raise GitCommandError(
                f"git {args[0]} timed out after {timeout}s", command
            ) from exc
        except FileNotFoundError as exc:
            raise GitCommandError("git executable not found", command) from exc

        if result.returncode != 0:
            stderr = (result.stderr or "").strip()
            raise GitCommandError(
                f"git {args[0]} failed: {stderr or 'exit ' + str(result.returncode)}",
                command,
                returncode=result.returncode,
                stderr=stderr,
            )
        return result.stdout or ""

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def current_branch(self) -> str:
        return self.run(["branch", "--show-current"]).strip()

    def log(self, max_count: int = 10) -> list[GitCommit]:
        output = self.run(
            [
                "log",
                f"--max-count={max_count}",
                f"--pretty=format:{LOG_FORMAT}",
                "--date=iso",
            ]
        )
        return parse_log(output)

    def remote_url(self, remote: str) -> str | None:
        """URL of ``remote``; ``None`` when it is not configured."""
        require_safe(validate_branch_name(remote), "remote", remote)
        try:
            return self.run(["remote", "get-url", remote]).strip() or None
        except GitCommandError:
            return None

    def status(self, remote: str = "origin") -> GitStatus:
        """Snapshot branch, working tree changes, recent commits and remote."""
        branch = self.current_branch()
        buckets = parse_porcelain(self.run(["status", "--porcelain"]))
        try:
            commits = self.log()
        except GitCommandError as exc:
            # A repository without commits has no log
            logger.debug("git log unavailable: %s", exc)
            commits = []
        return GitStatus(
            branch=branch,
            commits=commits,
            remote_url=self.remote_url(remote),
            **buckets,
        )

    # ------------------------------------------------------------------
    # Branches and remotes
    # ------------------------------------------------------------------

    def branch_exists(self, branch: str) -> bool:
        require_safe(validate_branch_name(branch), "branch", branch)
        return bool(self.run(["branch", "--list", branch]).strip())

    def switch_branch(self, branch: str, remote: str = "origin") -> None:
        """Check out ``branch``: local, then tracking ``remote/branch``, then new."""
        require_safe(validate_branch_name(branch), "branch", branch)
        require_safe(validate_branch_name(remote), "remote", remote)
        if self.branch_exists(branch):
            self.run(["checkout", branch], timeout=WRITE_TIMEOUT)
            return
        try:
            self.run(
                ["checkout", "-b", branch, f"{remote}/{branch}"],
                timeout=WRITE_TIMEOUT,
            )
        except GitCommandError:
            logger.info("No remote branch %s/%s, creating %s", remote, branch, branch)
            self.run(["checkout", "-b", branch], timeout=WRITE_TIMEOUT)

    def pull(self, remote: str, branch: str) -> None:
        require_safe(validate_branch_name(remote), "remote", remote)
        require_safe(validate_branch_name(branch), "branch", branch)
        self.run(["pull", remote, branch], timeout=NETWORK_TIMEOUT)

    def push(self, remote: str, branch: str) -> None:
        require_safe(validate_branch_name(remote), "remote", remote)
        require_safe(validate_branch_name(branch), "branch", branch)
        self.run(["push", remote, branch], timeout=NETWORK_TIMEOUT)

    # ------------------------------------------------------------------
    # Commit
    # ------------------------------------------------------------------

    def validate_commit(
        self,
        paths: list[str],
        message: str,
        author_name: str | None = None,
        author_email: str | None = None,
    ) -> None:
        """Check every value a commit will pass to git.

        Raises:
            SecurityValidationError: On the first unsafe value.
        """
        for path in paths:
            require_safe(validate_git_path(path), "file path", path)
        require_safe(validate_commit_message(message), "commit message", message)
        if author_name:
            require_safe(validate_author_name(author_name), "author name", author_name)
        if author_email:
            require_safe(
                validate_author_email(author_email), "author email", author_email
            )

    def commit(
        self,
        paths: list[str],
        message: str,
        author_name: str | None = None,
        author_email: str | None = None,
    ) -> str:
        """Stage ``paths`` and commit them.

        All values are validated before the first git call.

        Returns:
            The new HEAD commit hash.
        """
        self.validate_commit(paths, message, author_name, author_email)
        for path in paths:
            self.run(["add", "--", path], timeout=WRITE_TIMEOUT)
        if author_name:
            self.run(["config", "user.name", author_name], timeout=WRITE_TIMEOUT)
        if author_email:
            self.run(["config", "user.email", author_email], timeout=WRITE_TIMEOUT)
        self.run(["commit", "-m", message], timeout=WRITE_TIMEOUT)
        return self.rev_parse_head()

    def rev_parse_head(self) -> str:
        return self.run(["rev-parse", "HEAD"], timeout=WRITE_TIMEOUT).strip()
