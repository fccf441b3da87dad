"""Layer Puller - Async Python puller that rebuilds image filesystems layer by layer."""

__version__ = "0.1.0"

from .core.hub_client import HubClient
from .core.scheduler import FetchScheduler
from .core.source import ImageSource
from .core.types import (
    CompletedJob,
    FetchResult,
    PullResult,
    RegistryConfig,
    RepositoryData,
)
from .exceptions import (
    ApplyAbortedError,
    ApplyError,
    BatchNotCompleteError,
    BranchError,
    CommitError,
    DestinationError,
    FetchError,
    HistoryResolutionError,
    JobNotFoundError,
    MetadataResolutionError,
    PullError,
    SchedulerError,
    SnapshotError,
    SnapshotInitError,
    TagResolutionError,
)
from .pull import download_image, pull_image, pull_repository
from .snapshot import GitSnapshotter, NullSnapshotter, Snapshotter
from .tar import LayerBlob, apply_layer
from .utils import parse_image_reference

__all__ = [
    # Pull operations
    "pull_image",
    "pull_repository",
    "download_image",
    # Building blocks
    "HubClient",
    "ImageSource",
    "FetchScheduler",
    "Snapshotter",
    "GitSnapshotter",
    "NullSnapshotter",
    "LayerBlob",
    "apply_layer",
    "parse_image_reference",
    # Types
    "RegistryConfig",
    "RepositoryData",
    "FetchResult",
    "CompletedJob",
    "PullResult",
    # Exceptions
    "PullError",
    "MetadataResolutionError",
    "TagResolutionError",
    "HistoryResolutionError",
    "DestinationError",
    "SnapshotError",
    "SnapshotInitError",
    "BranchError",
    "CommitError",
    "FetchError",
    "ApplyError",
    "ApplyAbortedError",
    "SchedulerError",
    "JobNotFoundError",
    "BatchNotCompleteError",
]
