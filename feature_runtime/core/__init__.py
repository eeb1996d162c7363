"""Feature runtime core module.

Copyright 2024 Delanoe Pirard / Aedelon. Apache 2.0.
"""

from .config import (
    DEFAULT_CACHE_DIR,
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
from .model_interface import (
    DetectionResult,
    DetectorModel,
    Keypoint,
    MatcherModel,
    MatchResult,
    MLModel,
    keypoints_from_xy,
)
from .postprocessing import (
    compute_similarity_matrix,
    filter_keypoints,
    filter_matches_by_score,
    match_ratio,
    mutual_check,
    nms,
    normalize_descriptors,
    ratio_test,
    reciprocal_flags,
    select_top_k,
    valid_match_indices,
)
from .preprocessing import (
    ArrayImage,
    ImageSource,
    as_image_source,
    image_to_tensor,
    load_image,
)
from .registry import ModelRegistry, get_registry

__all__ = [
    # Config
    "DEFAULT_CACHE_DIR",
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
    "DetectionResult",
    "DetectorModel",
    "Keypoint",
    "MLModel",
    "MatchResult",
    "MatcherModel",
    "keypoints_from_xy",
    # Post-processing
    "compute_similarity_matrix",
    "filter_keypoints",
    "filter_matches_by_score",
    "match_ratio",
    "mutual_check",
    "nms",
    "normalize_descriptors",
    "ratio_test",
    "reciprocal_flags",
    "select_top_k",
    "valid_match_indices",
    # Images
    "ArrayImage",
    "ImageSource",
    "as_image_source",
    "image_to_tensor",
    "load_image",
    # Registry
    "ModelRegistry",
    "get_registry",
]
