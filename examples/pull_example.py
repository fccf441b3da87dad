"""Example usage of the async layer puller."""

import asyncio
import logging
import sys

# Add parent directory to path
sys.path.insert(0, "src")

from layer_puller import (
    HubClient,
    PullError,
    RegistryConfig,
    download_image,
    pull_image,
    pull_repository,
)

# Set up logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


async def main():
    """Flatten an image, then rebuild it with one git branch per layer."""
    try:
        logger.info("Pulling busybox into ./rootfs ...")
        result = await pull_image("busybox", "latest", "./rootfs")
        logger.info(f"✓ Applied {len(result.chain)} layers, image {result.image_id}")

        logger.info("Pulling busybox with layer history into ./busybox-layers ...")
        result = await pull_repository("busybox", "latest", "./busybox-layers")
        for layer_id in result.chain:
            logger.info(f"  {layer_id}: {result.sizes.get(layer_id, 0)} bytes")

    except PullError as e:
        logger.error(f"Pull failed at {e.stage} ({e.layer_id}): {e}")


async def shared_client():
    """Reuse one client session for several images."""
    config = RegistryConfig(concurrency=3)

    async with HubClient(config) as client:
        for name in ["busybox", "alpine"]:
            try:
                result = await download_image(
                    client, name, "latest", f"./{name}-rootfs", concurrency=3
                )
                logger.info(f"{name}: {' -> '.join(result.chain)}")
            except PullError as e:
                logger.error(f"{name}: {e}")


if __name__ == "__main__":
    print("=== Pull example ===")
    asyncio.run(main())

    print("\n=== Shared client example ===")
    asyncio.run(shared_client())
