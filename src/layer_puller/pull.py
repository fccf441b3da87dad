"""Async functional style pull operations."""

import asyncio
import logging
from pathlib import Path
from typing import Optional, Union

import aiofiles
import aiofiles.os

from .core.hub_client import HubClient
from .core.jobs import PullingJob
from .core.scheduler import FetchScheduler
from .core.source import ImageSource
from .core.types import (
    DEFAULT_CONCURRENCY,
    DEFAULT_REGISTRY_URL,
    DEFAULT_TIMEOUT,
    FetchResult,
    LayerChain,
    PullResult,
    RegistryConfig,
    RepositoryData,
)
from .exceptions import (
    ApplyAbortedError,
    ApplyError,
    BranchError,
    CommitError,
    DestinationError,
    HistoryResolutionError,
    PullError,
    TagResolutionError,
)
from .snapshot import GitSnapshotter, NullSnapshotter, Snapshotter
from .tar.applier import apply_layer
from .utils.validator import layer_branch_name, validate_layer_id

logger = logging.getLogger(__name__)

METADATA_FILENAME = "json"
LAYER_SIZE_FILENAME = "layersize"
SNAPSHOT_DIRNAME = ".git"


async def _resolve_chain(
    source: ImageSource, image_id: str, repo_data: RepositoryData
) -> LayerChain:
    """Resolve the layer chain of an image, trying each endpoint in order.

    Args:
        source: Image source
        image_id: Leaf layer id
        repo_data: Repository endpoints and tokens

    Returns:
        Layer ids, root layer first

    Raises:
        HistoryResolutionError: If no endpoint produces a valid chain
    """
    failures = []
    for endpoint in repo_data.endpoints:
        try:
            history = await source.get_remote_history(
                image_id, endpoint, repo_data.tokens
            )
            break
        except PullError as e:
            logger.debug("History unavailable from %s: %s", endpoint, e)
            failures.append(f"{endpoint}: {e}")
    else:
        raise HistoryResolutionError(
            f"Failed to get image history for {image_id} "
            f"({'; '.join(failures) or 'no endpoints'})",
            layer_id=image_id,
        )

    chain = tuple(history)
    if not chain:
        raise HistoryResolutionError(f"Empty history for {image_id}", layer_id=image_id)
    if len(set(chain)) != len(chain):
        raise HistoryResolutionError(
            f"History for {image_id} contains duplicate layers", layer_id=image_id
        )
    invalid = [layer_id for layer_id in chain if not validate_layer_id(layer_id)]
    if invalid:
        raise HistoryResolutionError(
            f"History for {image_id} contains invalid layer ids: {invalid}",
            layer_id=image_id,
        )
    return chain


async def _fetch_all_layers(
    scheduler: FetchScheduler,
    source: ImageSource,
    repo_data: RepositoryData,
    chain: LayerChain,
) -> None:
    """Submit every layer of the chain and wait for the batch to drain."""
    for layer_id in chain:
        await scheduler.enqueue(PullingJob(source, repo_data, layer_id))
    await scheduler.wait()


async def _write_file(path: Path, data: bytes, layer_id: str, position: int) -> None:
    try:
        async with aiofiles.open(path, "wb") as f:
            await f.write(data)
    except OSError as e:
        raise DestinationError(
            f"Failed to write {path.name} for layer {position} ({layer_id}): {e}",
            layer_id=layer_id,
            position=position,
            stage="metadata",
        ) from e


async def _apply_fetched_layer(
    result: FetchResult, dest: Path, layering: bool, position: int
) -> int:
    """Apply a fetched layer, always closing its stream afterwards."""
    loop = asyncio.get_running_loop()
    preserve = (SNAPSHOT_DIRNAME,) if layering else ()
    try:
        return await loop.run_in_executor(
            None, apply_layer, result.stream, dest, preserve
        )
    except ApplyError as e:
        raise ApplyAbortedError(
            f"Failed to apply layer {position} ({result.layer_id}): {e}",
            layer_id=result.layer_id,
            position=position,
            stage="apply",
        ) from e
    finally:
        result.stream.close()


async def _apply_layers(
    scheduler: FetchScheduler,
    chain: LayerChain,
    dest: Path,
    layering: bool,
    snapshotter: Snapshotter,
) -> dict[str, int]:
    """Apply every fetched layer in chain order.

    Returns:
        Layer sizes keyed by layer id
    """
    sizes: dict[str, int] = {}
    position = 0

    for layer_id in chain:
        job = scheduler.completed_job_with_id(layer_id)
        if not job.ok:
            raise ApplyAbortedError(
                f"Layer {position} ({layer_id}) could not be fetched: {job.error}",
                layer_id=layer_id,
                position=position,
                stage="fetch",
            ) from job.error
        result = job.result

        if layering:
            try:
                await snapshotter.branch(layer_branch_name(position, layer_id))
            except BranchError as e:
                result.stream.close()
                raise BranchError(
                    f"Failed to create branch for layer {position} ({layer_id}): {e}",
                    layer_id=layer_id,
                    position=position,
                    stage="branch",
                ) from e

        entries = await _apply_fetched_layer(result, dest, layering, position)

        await _write_file(dest / METADATA_FILENAME, result.metadata, layer_id, position)
        if layering:
            await _write_file(
                dest / LAYER_SIZE_FILENAME,
                str(result.size).encode(),
                layer_id,
                position,
            )
            try:
                await snapshotter.commit_all(f"adding layer {position}")
            except CommitError as e:
                raise CommitError(
                    f"Failed to commit layer {position} ({layer_id}): {e}",
                    layer_id=layer_id,
                    position=position,
                    stage="commit",
                ) from e

        sizes[layer_id] = result.size
        logger.info("Applied layer %d %s (%d entries)", position, layer_id, entries)
        position += 1

    return sizes


async def download_image(
    source: ImageSource,
    image_name: str,
    image_tag: str,
    rootfs_dest: Union[str, Path],
    layering: bool = False,
    *,
    concurrency: int = DEFAULT_CONCURRENCY,
    snapshotter: Optional[Snapshotter] = None,
) -> PullResult:
    """Download an image and materialize its layers at a destination.

    Layers are fetched concurrently but applied strictly in chain order.

    Args:
        source: Image source providing metadata and layer streams
        image_name: Repository name
        image_tag: Tag to pull
        rootfs_dest: Destination directory (created if missing)
        layering: Record every layer as its own branch and commit
        concurrency: Maximum number of simultaneous layer downloads
        snapshotter: Snapshot backend for layered pulls (git by default)

    Returns:
        PullResult describing the applied chain

    Raises:
        PullError: The first fatal error, annotated with layer and stage
    """
    dest = Path(rootfs_dest)

    repo_data = await source.get_repository_data(image_name)

    tags = await source.get_remote_tags(repo_data.endpoints, image_name, repo_data.tokens)
    image_id = tags.get(image_tag)
    if not image_id:
        raise TagResolutionError(f"Tag {image_tag} not found for {image_name}")
    logger.info("Image ID: %s", image_id)

    chain = await _resolve_chain(source, image_id, repo_data)

    try:
        await aiofiles.os.makedirs(dest, mode=0o700, exist_ok=True)
    except OSError as e:
        raise DestinationError(f"Failed to create directory {dest}: {e}") from e

    if layering:
        snapshotter = snapshotter or GitSnapshotter()
        await snapshotter.init_root(dest)
    else:
        snapshotter = NullSnapshotter()

    logger.info("Pulling %d layers", len(chain))
    async with FetchScheduler(concurrency) as scheduler:
        await _fetch_all_layers(scheduler, source, repo_data, chain)
        sizes = await _apply_layers(scheduler, chain, dest, layering, snapshotter)

    return PullResult(
        image_id=image_id,
        chain=chain,
        destination=dest,
        layered=layering,
        sizes=sizes,
    )


async def _pull(
    image_name: str,
    image_tag: str,
    rootfs_dest: Union[str, Path],
    layering: bool,
    registry_url: str,
    concurrency: int,
    timeout: int,
) -> PullResult:
    config = RegistryConfig(url=registry_url, timeout=timeout, concurrency=concurrency)
    async with HubClient(config) as client:
        return await download_image(
            client,
            image_name,
            image_tag,
            rootfs_dest,
            layering,
            concurrency=config.concurrency,
        )


async def pull_image(
    image_name: str,
    image_tag: str,
    rootfs_dest: Union[str, Path],
    registry_url: str = DEFAULT_REGISTRY_URL,
    concurrency: int = DEFAULT_CONCURRENCY,
    timeout: int = DEFAULT_TIMEOUT,
) -> PullResult:
    """이미지를 내려받아 모든 레이어를 하나의 파일시스템으로 병합합니다.

    레이어는 동시에 다운로드되지만 항상 부모 레이어부터 순서대로 적용됩니다.

    Args:
        image_name: 저장소 이름 (예: "busybox", "mycompany/myapp")
        image_tag: 이미지 태그 (예: "latest", "1.36")
        rootfs_dest: 루트 파일시스템을 만들 디렉토리 (없으면 생성됨)
        registry_url: 인덱스 URL (기본값: "https://index.docker.io")
        concurrency: 동시 다운로드 수 (기본값: 7)
        timeout: 연결/읽기 타임아웃 (초, 기본값: 30초)

    Returns:
        PullResult: 이미지 ID, 레이어 체인, 대상 디렉토리

    Raises:
        PullError: 메타데이터 조회, 다운로드 또는 레이어 적용 실패 시

    Examples:
        # busybox 이미지를 ./rootfs 에 풀기
        result = await pull_image("busybox", "latest", "./rootfs")
        print(f"{len(result.chain)}개 레이어 적용 완료")
    """
    return await _pull(
        image_name, image_tag, rootfs_dest, False, registry_url, concurrency, timeout
    )


async def pull_repository(
    image_name: str,
    image_tag: str,
    rootfs_dest: Union[str, Path],
    registry_url: str = DEFAULT_REGISTRY_URL,
    concurrency: int = DEFAULT_CONCURRENCY,
    timeout: int = DEFAULT_TIMEOUT,
) -> PullResult:
    """이미지의 각 레이어를 git 브랜치로 차례로 쌓아 올립니다.

    레이어마다 "layer<순번>_<레이어ID>" 브랜치와 커밋이 하나씩 만들어집니다.

    Args:
        image_name: 저장소 이름 (예: "busybox", "mycompany/myapp")
        image_tag: 이미지 태그 (예: "latest", "1.36")
        rootfs_dest: git 저장소가 될 디렉토리 (없으면 생성됨)
        registry_url: 인덱스 URL (기본값: "https://index.docker.io")
        concurrency: 동시 다운로드 수 (기본값: 7)
        timeout: 연결/읽기 타임아웃 (초, 기본값: 30초)

    Returns:
        PullResult: 이미지 ID, 레이어 체인, 대상 디렉토리

    Raises:
        PullError: 다운로드, 적용, 브랜치 생성 또는 커밋 실패 시

    Examples:
        # 레이어별 히스토리를 가진 저장소 만들기
        await pull_repository("busybox", "latest", "./busybox-layers")
        # git -C ./busybox-layers branch 로 레이어 브랜치 확인
    """
    return await _pull(
        image_name, image_tag, rootfs_dest, True, registry_url, concurrency, timeout
    )
