"""Registry client for v1-style image indexes."""

import asyncio
import json
import logging
from typing import Optional, Sequence

import aiohttp

from ..exceptions import (
    FetchError,
    HistoryResolutionError,
    MetadataResolutionError,
    TagResolutionError,
)
from ..tar.spool import LayerBlob
from ..utils.reference import normalize_repository_name
from .session import create_session, parse_json_response, split_header, token_headers
from .source import ImageSource
from .types import FetchResult, RegistryConfig, RepositoryData

logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024

_TRANSPORT_ERRORS = (aiohttp.ClientError, asyncio.TimeoutError)


class HubClient(ImageSource):
    """Image source backed by an index and its registry endpoints."""

    def __init__(
        self,
        config: Optional[RegistryConfig] = None,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        """Initialize the hub client.

        Args:
            config: Registry configuration (defaults to the public index)
            session: Existing aiohttp session to use instead of creating one
        """
        self.config = config or RegistryConfig()
        self.session = session
        self._owns_session = session is None

    async def __aenter__(self) -> "HubClient":
        """Enter async context manager."""
        if not self.session:
            self.session = await create_session(self.config.timeout)
            self._owns_session = True
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Exit async context manager."""
        await self.close()

    async def close(self) -> None:
        """Close the client session if this client created it."""
        if self._owns_session and self.session and not self.session.closed:
            await self.session.close()

    def endpoint_url(self, endpoint: str) -> str:
        """Turn an advertised endpoint into a v1 API base URL."""
        endpoint = endpoint.rstrip("/")
        if "://" not in endpoint:
            endpoint = f"{self.config.endpoint_scheme}://{endpoint}"
        return f"{endpoint}/v1"

    async def get_repository_data(self, name: str) -> RepositoryData:
        """Ask the index which endpoints serve a repository.

        Raises:
            MetadataResolutionError: If the repository cannot be located
        """
        name = normalize_repository_name(name)
        url = f"{self.config.base_url}/v1/repositories/{name}/images"

        try:
            async with self.session.get(
                url, headers={"X-Docker-Token": "true"}
            ) as resp:
                if resp.status == 404:
                    raise MetadataResolutionError(f"Repository {name} not found")
                resp.raise_for_status()
                tokens = tuple(resp.headers.getall("X-Docker-Token", []))
                endpoints = split_header(resp.headers.getall("X-Docker-Endpoints", []))
        except _TRANSPORT_ERRORS as e:
            raise MetadataResolutionError(
                f"Failed to get repository data for {name}: {e}"
            ) from e

        if not endpoints:
            raise MetadataResolutionError(f"No endpoints advertised for {name}")

        return RepositoryData(
            name=name,
            endpoints=tuple(self.endpoint_url(ep) for ep in endpoints),
            tokens=tokens,
        )

    async def get_remote_tags(
        self, endpoints: Sequence[str], name: str, tokens: Sequence[str]
    ) -> dict[str, str]:
        """Fetch the tag listing from the first endpoint that answers.

        Raises:
            TagResolutionError: If no endpoint returns a tag listing
        """
        name = normalize_repository_name(name)
        failures = []

        for endpoint in endpoints:
            url = f"{endpoint}/repositories/{name}/tags"
            try:
                async with self.session.get(url, headers=token_headers(tokens)) as resp:
                    resp.raise_for_status()
                    data = await parse_json_response(resp)
                return _tags_from_listing(data)
            except (*_TRANSPORT_ERRORS, ValueError) as e:
                logger.debug("Tag listing failed on %s: %s", endpoint, e)
                failures.append(f"{endpoint}: {e}")

        raise TagResolutionError(
            f"Failed to retrieve tag list for {name} ({'; '.join(failures) or 'no endpoints'})"
        )

    async def get_remote_history(
        self, layer_id: str, endpoint: str, tokens: Sequence[str]
    ) -> list[str]:
        """Fetch a layer's ancestry, oldest layer first.

        Raises:
            HistoryResolutionError: If the endpoint cannot produce it
        """
        url = f"{endpoint}/images/{layer_id}/ancestry"
        try:
            async with self.session.get(url, headers=token_headers(tokens)) as resp:
                resp.raise_for_status()
                ancestry = await parse_json_response(resp)
        except (*_TRANSPORT_ERRORS, ValueError) as e:
            raise HistoryResolutionError(
                f"Failed to get history of {layer_id} from {endpoint}: {e}",
                layer_id=layer_id,
            ) from e

        if not isinstance(ancestry, list) or not all(
            isinstance(item, str) for item in ancestry
        ):
            raise HistoryResolutionError(
                f"Malformed ancestry for {layer_id} from {endpoint}",
                layer_id=layer_id,
            )
        # The registry lists the layer itself first, then its parents.
        return list(reversed(ancestry))

    async def get_layer(
        self, layer_id: str, endpoint: str, tokens: Sequence[str]
    ) -> FetchResult:
        """Download a layer's metadata and archive from one endpoint.

        Raises:
            FetchError: If either request fails
        """
        headers = token_headers(tokens)
        base = f"{endpoint}/images/{layer_id}"

        try:
            async with self.session.get(f"{base}/json", headers=headers) as resp:
                resp.raise_for_status()
                metadata = await resp.read()
                size_header = resp.headers.get("X-Docker-Size")

            async with self.session.get(f"{base}/layer", headers=headers) as resp:
                resp.raise_for_status()
                blob = await LayerBlob.spool(
                    resp.content.iter_chunked(CHUNK_SIZE), self.config.work_dir
                )
        except _TRANSPORT_ERRORS as e:
            raise FetchError(
                f"Failed to download layer {layer_id} from {endpoint}: {e}",
                layer_id=layer_id,
                stage="fetch",
            ) from e

        try:
            size = int(size_header) if size_header else blob.size
        except ValueError:
            size = blob.size

        logger.debug("Fetched layer %s (%d bytes) from %s", layer_id, size, endpoint)
        return FetchResult(layer_id=layer_id, stream=blob, metadata=metadata, size=size)


def _tags_from_listing(data) -> dict[str, str]:
    """Accept both the mapping and the list-of-objects tag formats."""
    if isinstance(data, dict):
        return {str(tag): str(layer) for tag, layer in data.items()}
    if isinstance(data, list):
        return {
            str(item["name"]): str(item["layer"])
            for item in data
            if isinstance(item, dict) and "name" in item and "layer" in item
        }
    raise ValueError(f"Unexpected tag listing: {json.dumps(data)[:80]}")
