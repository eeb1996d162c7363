"""Built-in detector and matcher variants.

Copyright 2024 Delanoe Pirard / Aedelon. Apache 2.0.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from .disk import DISKDetector
from .loftr import LoFTRMatcher
from .superglue import SuperGlueMatcher
from .superpoint import SuperPointDetector

if TYPE_CHECKING:
    from ..backends.base import BackendFactory
    from ..core.registry import ModelRegistry

# Registry name -> model class
BUILTIN_MODELS = {
    "superpoint": SuperPointDetector,
    "disk": DISKDetector,
    "superglue": SuperGlueMatcher,
    "loftr": LoFTRMatcher,
}


def register_default_models(
    registry: ModelRegistry,
    backend_factory: BackendFactory | None = None,
) -> list[str]:
    """Register one unloaded instance of every built-in variant.

    Args:
        registry: Registry to populate
        backend_factory: Backend factory given to every model
            (``create_backend`` when omitted)

    Returns:
        Names that were registered
    """
    registered = []
    for name, model_cls in BUILTIN_MODELS.items():
        if registry.register_model(name, model_cls(backend_factory=backend_factory)):
            registered.append(name)
    return registered


__all__ = [
    "BUILTIN_MODELS",
    "DISKDetector",
    "LoFTRMatcher",
    "SuperGlueMatcher",
    "SuperPointDetector",
    "register_default_models",
]
