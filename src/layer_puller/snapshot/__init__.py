"""Version-control snapshots of applied layers."""

from .base import NullSnapshotter, Snapshotter
from .git import GitSnapshotter

__all__ = ["Snapshotter", "NullSnapshotter", "GitSnapshotter"]
