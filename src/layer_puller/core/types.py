"""Core data types for the layer puller."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import BinaryIO, Optional

DEFAULT_REGISTRY_URL = "https://index.docker.io"
DEFAULT_CONCURRENCY = 7
DEFAULT_TIMEOUT = 30

ENV_PREFIX = "LAYER_PULLER_"

LayerChain = tuple[str, ...]


@dataclass(frozen=True)
class RegistryConfig:
    """Registry connection settings."""

    url: str = DEFAULT_REGISTRY_URL
    timeout: int = DEFAULT_TIMEOUT
    concurrency: int = DEFAULT_CONCURRENCY
    endpoint_scheme: str = "https"
    work_dir: Optional[str] = None

    @property
    def base_url(self) -> str:
        """Index URL without trailing slash."""
        return self.url.rstrip("/")

    @classmethod
    def from_env(cls, **overrides) -> "RegistryConfig":
        """Build a configuration from LAYER_PULLER_* environment variables.

        Keyword arguments take precedence over the environment.
        """
        values = {
            "url": os.getenv(f"{ENV_PREFIX}REGISTRY_URL", DEFAULT_REGISTRY_URL),
            "timeout": int(os.getenv(f"{ENV_PREFIX}TIMEOUT", DEFAULT_TIMEOUT)),
            "concurrency": int(
                os.getenv(f"{ENV_PREFIX}CONCURRENCY", DEFAULT_CONCURRENCY)
            ),
            "work_dir": os.getenv(f"{ENV_PREFIX}WORK_DIR") or None,
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)


@dataclass(frozen=True)
class RepositoryData:
    """Endpoints and tokens that serve one repository."""

    name: str
    endpoints: tuple[str, ...]
    tokens: tuple[str, ...] = ()


@dataclass
class FetchResult:
    """A downloaded layer.

    The stream is single-read; whoever holds the result owns it and must
    close it.
    """

    layer_id: str
    stream: BinaryIO
    metadata: bytes
    size: int


@dataclass
class CompletedJob:
    """Terminal state of one fetch job."""

    layer_id: str
    result: Optional[FetchResult] = None
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.result is not None


@dataclass
class PullResult:
    """Outcome of a successful pull."""

    image_id: str
    chain: LayerChain
    destination: Path
    layered: bool = False
    sizes: dict[str, int] = field(default_factory=dict)
