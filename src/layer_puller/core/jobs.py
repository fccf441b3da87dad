"""Fetch jobs executed by the scheduler."""

import logging

from ..exceptions import FetchError, PullError
from .source import ImageSource
from .types import FetchResult, RepositoryData

logger = logging.getLogger(__name__)


class PullingJob:
    """Downloads one layer, failing over across the repository endpoints."""

    def __init__(
        self, source: ImageSource, repo_data: RepositoryData, layer_id: str
    ) -> None:
        self.id = layer_id
        self.source = source
        self.repo_data = repo_data

    def __repr__(self) -> str:
        return f"PullingJob({self.id!r})"

    async def run(self) -> FetchResult:
        """Fetch the layer from the first endpoint that serves it.

        Raises:
            FetchError: If every endpoint failed
        """
        failures = []
        for endpoint in self.repo_data.endpoints:
            try:
                return await self.source.get_layer(
                    self.id, endpoint, self.repo_data.tokens
                )
            except (PullError, OSError) as e:
                logger.debug("Layer %s unavailable from %s: %s", self.id, endpoint, e)
                failures.append(f"{endpoint}: {e}")

        if not failures:
            raise FetchError(
                f"No endpoints to fetch layer {self.id} from",
                layer_id=self.id,
                stage="fetch",
            )
        raise FetchError(
            f"Failed to fetch layer {self.id} from every endpoint ({'; '.join(failures)})",
            layer_id=self.id,
            stage="fetch",
        )
