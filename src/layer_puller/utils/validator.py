"""Layer id validation and naming helpers."""

import re

# Characters git refuses in ref names, plus the path separator.
INVALID_LAYER_ID = re.compile(r"[\s/\\~^:?*\[\x00-\x1f\x7f]|\.\.|@\{")


def validate_layer_id(layer_id: str) -> bool:
    """Check that a layer id is usable as a URL and branch name component.

    Args:
        layer_id: Layer identifier

    Returns:
        True if the id is non-empty and contains no unsafe sequences
    """
    if not isinstance(layer_id, str) or not layer_id:
        return False
    if layer_id.startswith((".", "-")) or layer_id.endswith((".lock", ".")):
        return False
    return INVALID_LAYER_ID.search(layer_id) is None


def layer_branch_name(position: int, layer_id: str) -> str:
    """Branch name for the layer at a chain position, e.g. ``layer0_abc``."""
    return f"layer{position}_{layer_id}"
