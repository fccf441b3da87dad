"""Layer archive handling."""

from .applier import apply_layer
from .spool import LayerBlob

__all__ = ["apply_layer", "LayerBlob"]
