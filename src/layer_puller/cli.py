"""Command line entry point for pulling images."""

import argparse
import asyncio
import logging
import sys
from typing import Optional, Sequence

from .core.hub_client import HubClient
from .core.types import RegistryConfig
from .exceptions import PullError
from .pull import download_image
from .utils.reference import parse_image_reference

logger = logging.getLogger("layer_puller")


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(
        prog="layer-pull",
        description="Rebuild an image's root filesystem from its layers.",
    )
    p.add_argument("image", help="Image to pull (name[:tag])")
    p.add_argument("dest", help="Destination directory for the root filesystem")
    p.add_argument(
        "--layered",
        action="store_true",
        help="Keep every layer as its own git branch and commit",
    )
    p.add_argument(
        "--concurrency", "-j",
        type=int,
        default=None,
        help="Number of parallel layer downloads (default: 7)",
    )
    p.add_argument(
        "--registry",
        dest="registry_url",
        default=None,
        help="Index URL (default: https://index.docker.io)",
    )
    p.add_argument(
        "--timeout",
        type=int,
        default=None,
        help="Connect/read timeout in seconds (default: 30)",
    )
    p.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Show debug logging",
    )
    args = p.parse_args(argv)
    if args.concurrency is not None and args.concurrency < 1:
        p.error("--concurrency must be at least 1")
    return args


async def run(args: argparse.Namespace) -> int:
    config = RegistryConfig.from_env(
        url=args.registry_url, timeout=args.timeout, concurrency=args.concurrency
    )
    name, tag = parse_image_reference(args.image)

    try:
        async with HubClient(config) as client:
            result = await download_image(
                client,
                name,
                tag,
                args.dest,
                args.layered,
                concurrency=config.concurrency,
            )
    except PullError as e:
        logger.error("Pull of %s:%s failed: %s", name, tag, e)
        return 1

    logger.info(
        "Pulled %s:%s (%d layers) into %s", name, tag, len(result.chain), args.dest
    )
    return 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    return asyncio.run(run(args))


if __name__ == "__main__":
    sys.exit(main())
