"""HTTP session helpers."""

import json
from typing import Any, Optional, Sequence

import aiohttp

from .types import DEFAULT_TIMEOUT


async def create_session(timeout: int = DEFAULT_TIMEOUT) -> aiohttp.ClientSession:
    """Create a client session suited to long layer downloads.

    Connect and read timeouts apply per operation; there is no total
    deadline since layer bodies can be large.
    """
    return aiohttp.ClientSession(
        timeout=aiohttp.ClientTimeout(
            total=None, sock_connect=timeout, sock_read=timeout
        ),
    )


def token_headers(tokens: Sequence[str]) -> dict[str, str]:
    """Authorization header for registry tokens, if any."""
    if not tokens:
        return {}
    return {"Authorization": f"Token {','.join(tokens)}"}


def split_header(values: Sequence[str]) -> list[str]:
    """Flatten comma-separated header values."""
    items = []
    for value in values:
        items.extend(item.strip() for item in value.split(",") if item.strip())
    return items


async def parse_json_response(resp: aiohttp.ClientResponse) -> Optional[Any]:
    """Parse a JSON body regardless of the declared content type."""
    text = await resp.text()
    if not text.strip():
        return None
    return json.loads(text)
