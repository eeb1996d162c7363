"""Feature Runtime - Model lifecycle and post-processing for feature detection and matching.

Manages learned keypoint detectors and matchers behind one registry:
- SuperPoint and DISK detectors
- SuperGlue (feature) and LoFTR (image) matchers

Inference runs on an external backend:
- PyTorch via TorchScript modules
- ONNX Runtime sessions

Installation:
    pip install feature-runtime[onnx]    # ONNX Runtime
    pip install feature-runtime[torch]   # PyTorch
    pip install feature-runtime[all]     # All backends

Usage:
    from feature_runtime import ModelConfig, get_registry, register_default_models

    registry = get_registry()
    register_default_models(registry)
    if registry.load_model("superpoint", ModelConfig(model_path="superpoint.pt")):
        result = registry.get_detector("superpoint").detect("image.jpg")

Copyright 2024 Delanoe Pirard / Aedelon. Apache 2.0.
"""

from __future__ import annotations

__version__ = "0.1.0"
__author__ = "Delanoe Pirard"
__license__ = "Apache-2.0"

# Backend dispatcher
from .backends import (
    BackendError,
    BackendHandle,
    BackendUnavailableError,
    InferenceBackend,
    InferenceError,
    create_backend,
    get_available_backends,
    get_available_devices,
    is_cuda_available,
)
from .backends.synthetic import SyntheticBackend, synthetic_backend_factory

# Core configuration
from .core.config import (
    DetectorConfig,
    DISKConfig,
    LoFTRConfig,
    MatcherConfig,
    MLBackend,
    MLDevice,
    ModelConfig,
    ModelKind,
    ModelType,
    RegistryConfig,
    SuperGlueConfig,
    SuperPointConfig,
)

# Model interface and results
from .core.model_interface import (
    DetectionResult,
    DetectorModel,
    Keypoint,
    MatcherModel,
    MatchResult,
    MLModel,
)
from .core.preprocessing import ArrayImage, ImageSource, load_image
from .core.registry import ModelRegistry, get_registry

# Built-in variants
from .models import (
    DISKDetector,
    LoFTRMatcher,
    SuperGlueMatcher,
    SuperPointDetector,
    register_default_models,
)

__all__ = [
    # Version info
    "__author__",
    "__license__",
    "__version__",
    # Backends
    "BackendError",
    "BackendHandle",
    "BackendUnavailableError",
    "InferenceBackend",
    "InferenceError",
    "SyntheticBackend",
    "create_backend",
    "get_available_backends",
    "get_available_devices",
    "is_cuda_available",
    "synthetic_backend_factory",
    # Config
    "DISKConfig",
    "DetectorConfig",
    "LoFTRConfig",
    "MLBackend",
    "MLDevice",
    "MatcherConfig",
    "ModelConfig",
    "ModelKind",
    "ModelType",
    "RegistryConfig",
    "SuperGlueConfig",
    "SuperPointConfig",
    # Models
    "DISKDetector",
    "DetectionResult",
    "DetectorModel",
    "Keypoint",
    "LoFTRMatcher",
    "MLModel",
    "MatchResult",
    "MatcherModel",
    "SuperGlueMatcher",
    "SuperPointDetector",
    # Images
    "ArrayImage",
    "ImageSource",
    "load_image",
    # Registry
    "ModelRegistry",
    "get_registry",
    "register_default_models",
]
