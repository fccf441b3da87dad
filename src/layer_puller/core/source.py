"""Abstract image source consumed by the pull pipeline."""

from abc import ABC, abstractmethod
from typing import Sequence

from .types import FetchResult, RepositoryData


class ImageSource(ABC):
    """Resolves image metadata and yields layer streams.

    Implementations raise the matching ``PullError`` subclass on failure:
    ``MetadataResolutionError``, ``TagResolutionError``,
    ``HistoryResolutionError`` and ``FetchError`` respectively.
    """

    @abstractmethod
    async def get_repository_data(self, name: str) -> RepositoryData:
        """Locate the repository and return its endpoints and tokens."""

    @abstractmethod
    async def get_remote_tags(
        self, endpoints: Sequence[str], name: str, tokens: Sequence[str]
    ) -> dict[str, str]:
        """Return the tag to layer id mapping of a repository."""

    @abstractmethod
    async def get_remote_history(
        self, layer_id: str, endpoint: str, tokens: Sequence[str]
    ) -> list[str]:
        """Return the ancestry of a layer from one endpoint, oldest first."""

    @abstractmethod
    async def get_layer(
        self, layer_id: str, endpoint: str, tokens: Sequence[str]
    ) -> FetchResult:
        """Download one layer from one endpoint."""
