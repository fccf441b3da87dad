"""Snapshot capability used to record applied layers."""

from abc import ABC, abstractmethod
from pathlib import Path


class Snapshotter(ABC):
    """Records destination states, one branch and commit per layer."""

    @abstractmethod
    async def init_root(self, dest: Path) -> None:
        """Prepare the snapshot root at the destination directory."""

    @abstractmethod
    async def branch(self, name: str) -> None:
        """Start a new branch from the current state."""

    @abstractmethod
    async def commit_all(self, message: str) -> None:
        """Stage every change in the destination and commit it."""


class NullSnapshotter(Snapshotter):
    """Snapshotter for flattened pulls; records nothing."""

    async def init_root(self, dest: Path) -> None:
        return None

    async def branch(self, name: str) -> None:
        return None

    async def commit_all(self, message: str) -> None:
        return None
