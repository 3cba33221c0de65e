"""Version-control adapter over the ``git`` binary.

Every operation is a single ``git`` invocation in the repository the helper
was started from. Non-zero exits are translated into ``GitError`` except
where the exit code is the answer (``merge-base --is-ancestor``) or means
"not set" (``config``).
"""

import logging
from typing import List, Optional, Protocol

from git_remote_s3.errors import GitError
from git_remote_s3.utils import CommandResult, format_command, run_command

logger = logging.getLogger(__name__)


class VersionControl(Protocol):
    """Operations the synchronization engine needs from git."""

    async def create_bundle(self, bundle_path: str, ref_name: str) -> None:
        ...

    async def unbundle(self, bundle_path: str, ref_name: str = "") -> None:
        ...

    async def rev_parse(self, rev: str) -> str:
        ...

    async def is_ancestor(self, ancestor: str, descendant: str) -> bool:
        ...

    async def config(self, key: str) -> str:
        ...

    async def config_all(self, key: str) -> Optional[List[str]]:
        ...


class GitCLI:
    """Run git commands in a working directory.

    Usage:
        git = GitCLI(cwd="/path/to/repo")
        sha = await git.rev_parse("refs/heads/main")
    """

    def __init__(
        self,
        cwd: Optional[str] = None,
        timeout: Optional[float] = 300.0,
        executable: str = "git",
        attempts: int = 2,
    ):
        """Initialize the adapter.

        Args:
            cwd: Repository directory, defaults to the process working directory
            timeout: Seconds after which a git command is killed
            executable: Name or path of the git binary
            attempts: How many times a timed out command is started
        """
        self._cwd = cwd
        self._timeout = timeout
        self._executable = executable
        self._attempts = attempts

    async def _run(self, *args: str) -> CommandResult:
        command = (self._executable,) + args
        try:
            return await run_command(
                command, cwd=self._cwd, timeout=self._timeout, attempts=self._attempts
            )
        except FileNotFoundError as e:
            raise GitError(f"git executable not found: {self._executable}") from e
        except TimeoutError as e:
            raise GitError(str(e)) from e

    async def _check(self, *args: str) -> CommandResult:
        result = await self._run(*args)
        if not result.ok:
            logger.error(
                f"{format_command(result.args)} failed "
                f"({result.returncode}): {result.stderr_text()}"
            )
            raise GitError(
                f"git {args[0]} failed: {result.stderr_text() or result.returncode}",
                returncode=result.returncode,
                stderr=result.stderr_text(),
            )
        return result

    async def create_bundle(self, bundle_path: str, ref_name: str) -> None:
        """Write the full history of ``ref_name`` to a bundle file."""
        await self._check("bundle", "create", str(bundle_path), ref_name)

    async def unbundle(self, bundle_path: str, ref_name: str = "") -> None:
        """Store the objects of a bundle in the repository.

        Only the heads matching ``ref_name`` are reported when one is given.
        """
        args = ["bundle", "unbundle", str(bundle_path)]
        if ref_name:
            args.append(ref_name)
        await self._check(*args)

    async def rev_parse(self, rev: str) -> str:
        """Resolve a revision expression to a full commit hash."""
        result = await self._check("rev-parse", "--verify", rev)
        sha = result.stdout_text()
        if not sha:
            raise GitError(f"git rev-parse returned no revision for {rev}")
        return sha

    async def is_ancestor(self, ancestor: str, descendant: str) -> bool:
        """Check whether ``ancestor`` is reachable from ``descendant``.

        Revisions unknown to the local repository are reported as not
        being ancestors.
        """
        result = await self._run("merge-base", "--is-ancestor", ancestor, descendant)
        if result.returncode not in (0, 1):
            logger.debug(
                f"merge-base --is-ancestor {ancestor} {descendant} exited "
                f"{result.returncode}: {result.stderr_text()}"
            )
        return result.ok

    async def config(self, key: str) -> str:
        """Read a single config value, raising GitError if it is not set."""
        result = await self._run("config", "--get", key)
        if not result.ok:
            raise GitError(
                f"git config {key} is not set"
                if result.returncode == 1
                else f"git config failed: {result.stderr_text()}",
                returncode=result.returncode,
                stderr=result.stderr_text(),
            )
        return result.stdout_text()

    async def config_all(self, key: str) -> Optional[List[str]]:
        """Read every value of a multi-valued config key.

        Returns None when the key is not set at all, which is different from
        a key set to an empty string.
        """
        result = await self._run("config", "--get-all", key)
        if result.returncode == 1:
            return None
        if not result.ok:
            raise GitError(
                f"git config failed: {result.stderr_text()}",
                returncode=result.returncode,
                stderr=result.stderr_text(),
            )
        return result.stdout.decode("utf-8", errors="replace").splitlines()
