"""Utility functions for the layer puller."""

from .reference import normalize_repository_name, parse_image_reference
from .validator import layer_branch_name, validate_layer_id

__all__ = [
    "parse_image_reference",
    "normalize_repository_name",
    "validate_layer_id",
    "layer_branch_name",
]
