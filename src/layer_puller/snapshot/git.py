"""Git-backed layer snapshots."""

import asyncio
import logging
from pathlib import Path
from typing import Optional

from ..exceptions import BranchError, CommitError, SnapshotError, SnapshotInitError
from .base import Snapshotter

logger = logging.getLogger(__name__)

DEFAULT_AUTHOR_NAME = "layer-puller"
DEFAULT_AUTHOR_EMAIL = "layer-puller@localhost"


class GitSnapshotter(Snapshotter):
    """Keeps each layer on its own git branch in the destination."""

    def __init__(
        self,
        author_name: str = DEFAULT_AUTHOR_NAME,
        author_email: str = DEFAULT_AUTHOR_EMAIL,
        git: str = "git",
    ) -> None:
        self.author_name = author_name
        self.author_email = author_email
        self.git = git
        self.root: Optional[Path] = None

    async def init_root(self, dest: Path) -> None:
        self.root = Path(dest)
        await self._run(SnapshotInitError, "init", "-q")

    async def branch(self, name: str) -> None:
        await self._run(BranchError, "checkout", "-q", "-b", name)

    async def commit_all(self, message: str) -> None:
        await self._run(CommitError, "add", "-A")
        # The index stat cache misses same-size rewrites with a reused inode
        # and an archive mtime; re-hash every tracked file.
        await self._run(CommitError, "add", "--renormalize", ".")
        await self._run(CommitError, "commit", "-q", "--allow-empty", "-m", message)

    async def _run(self, error: type[SnapshotError], *args: str) -> str:
        """Run a git command in the snapshot root.

        Raises:
            error: If git cannot be started or exits with a non-zero status
        """
        if self.root is None:
            raise error("Snapshot root not initialized")

        cmd = [
            self.git,
            "-c",
            f"user.name={self.author_name}",
            "-c",
            f"user.email={self.author_email}",
            "-c",
            "commit.gpgsign=false",
            *args,
        ]
        logger.debug("Running %s in %s", " ".join(args), self.root)

        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                cwd=self.root,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
            stdout, stderr = await proc.communicate()
        except OSError as e:
            raise error(f"Cannot run git {args[0]}: {e}") from e

        if proc.returncode != 0:
            detail = stderr.decode(errors="replace").strip() or stdout.decode(
                errors="replace"
            ).strip()
            raise error(f"git {args[0]} failed ({proc.returncode}): {detail}")
        return stdout.decode(errors="replace")
