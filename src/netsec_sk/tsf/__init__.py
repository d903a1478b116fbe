"""TSF archive identity."""
from .identity import Identity, derive_identity, derive_original_name

__all__ = ["Identity", "derive_identity", "derive_original_name"]
