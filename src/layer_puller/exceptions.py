"""Custom exceptions for the layer puller."""

from typing import Optional


class PullError(Exception):
    """Base exception for all pull-related errors.

    Errors raised while a specific layer is being processed carry the
    layer id, its zero-based chain position and the pipeline stage.
    """

    def __init__(
        self,
        message: str,
        *,
        layer_id: Optional[str] = None,
        position: Optional[int] = None,
        stage: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.layer_id = layer_id
        self.position = position
        self.stage = stage


class MetadataResolutionError(PullError):
    """Raised when the repository cannot be located."""

    pass


class TagResolutionError(PullError):
    """Raised when a tag cannot be resolved to a layer id."""

    pass


class HistoryResolutionError(PullError):
    """Raised when no endpoint can produce the layer chain."""

    pass


class DestinationError(PullError):
    """Raised when the destination directory cannot be written."""

    pass


class SnapshotError(PullError):
    """Base exception for version-control snapshot failures."""

    pass


class SnapshotInitError(SnapshotError):
    """Raised when the snapshot root cannot be created."""

    pass


class BranchError(SnapshotError):
    """Raised when a layer branch cannot be created."""

    pass


class CommitError(SnapshotError):
    """Raised when layer changes cannot be committed."""

    pass


class FetchError(PullError):
    """Raised when a layer could not be downloaded from any endpoint."""

    pass


class ApplyError(PullError):
    """Raised when a layer archive cannot be applied to the destination."""

    pass


class ApplyAbortedError(PullError):
    """Raised when the ordered apply loop stops at a failed layer."""

    pass


class SchedulerError(PullError):
    """Raised on misuse of the fetch scheduler."""

    pass


class JobNotFoundError(SchedulerError):
    """Raised when no completed job exists for an id."""

    pass


class BatchNotCompleteError(SchedulerError):
    """Raised when results are read before the batch has drained."""

    pass
