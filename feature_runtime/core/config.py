"""Configuration for the feature runtime.

Covers the model catalog enums, the per-load model configuration record,
per-variant detector/matcher settings, and registry-level settings.

Copyright 2024 Delanoe Pirard / Aedelon. Apache 2.0.
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path

from pydantic import BaseModel, Field, model_validator

DEFAULT_CACHE_DIR = Path.home() / ".cache" / "feature_runtime"


class ModelKind(str, Enum):
    """Capability family of a model."""

    DETECTOR = "detector"
    MATCHER = "matcher"
    OTHER = "other"


class ModelType(str, Enum):
    """Catalog of model types known to the registry."""

    SUPERPOINT_DETECTOR = "superpoint_detector"
    SUPERGLUE_MATCHER = "superglue_matcher"
    LOFTR_MATCHER = "loftr_matcher"
    DISK_DETECTOR = "disk_detector"
    R2D2_DETECTOR = "r2d2_detector"
    MVSNET_MVS = "mvsnet_mvs"
    NERF_RENDERER = "nerf_renderer"
    INSTANT_NGP = "instant_ngp"

    @property
    def kind(self) -> ModelKind:
        """Capability family for this type."""
        if self.value.endswith("_detector"):
            return ModelKind.DETECTOR
        if self.value.endswith("_matcher"):
            return ModelKind.MATCHER
        return ModelKind.OTHER


class MLBackend(str, Enum):
    """Inference runtime tags."""

    PYTORCH = "pytorch"
    TENSORFLOW = "tensorflow"
    ONNX = "onnx"
    OPENVINO = "openvino"


class MLDevice(str, Enum):
    """Compute device tags."""

    CPU = "cpu"
    CUDA = "cuda"
    OPENCL = "opencl"
    VULKAN = "vulkan"


class ModelConfig(BaseModel):
    """Configuration passed to ``MLModel.load``."""

    model_path: str | None = Field(
        default=None,
        description="Model file location (path or URI)",
    )
    backend: MLBackend = Field(
        default=MLBackend.PYTORCH,
        description="Inference runtime used to execute the model",
    )
    device: MLDevice = Field(
        default=MLDevice.CPU,
        description="Device the backend dispatches to",
    )
    use_fp16: bool = Field(
        default=False,
        description="Run the backend in half precision",
    )
    batch_size: int = Field(
        default=1,
        ge=1,
        description="Backend batch size",
    )
    confidence_threshold: float = Field(
        default=0.5,
        ge=0.0,
        le=1.0,
        description="Generic confidence threshold kept with the model configuration",
    )
    parameters: dict[str, str] = Field(
        default_factory=dict,
        description="Model-specific string overrides (e.g. max_keypoints)",
    )


class DetectorConfig(BaseModel):
    """Settings shared by every point detector."""

    max_keypoints: int = Field(
        default=1024,
        ge=0,
        description="Maximum number of keypoints kept after ranking",
    )
    keypoint_threshold: float = Field(
        default=0.005,
        ge=0.0,
        description="Minimum keypoint confidence",
    )
    remove_borders: bool = Field(
        default=True,
        description="Drop keypoints within border_margin of the image edges",
    )
    border_margin: int = Field(
        default=4,
        ge=0,
        description="Border width in pixels",
    )
    use_nms: bool = Field(
        default=True,
        description="Apply spatial non-maximum suppression",
    )
    nms_radius: float = Field(
        default=4.0,
        description="NMS radius in pixels (<= 0 disables suppression)",
    )
    compute_descriptors: bool = Field(
        default=True,
        description="Return L2-normalized descriptors",
    )
    descriptor_dim: int = Field(
        default=256,
        ge=1,
        description="Descriptor dimension",
    )


class SuperPointConfig(DetectorConfig):
    """SuperPoint detector settings."""

    descriptor_threshold: float = Field(
        default=0.1,
        ge=0.0,
        description="Descriptor confidence threshold of the exported network",
    )


class DISKConfig(DetectorConfig):
    """DISK detector settings."""

    max_keypoints: int = Field(default=2048, ge=0)
    descriptor_dim: int = Field(default=128, ge=1)
    descriptor_threshold: float = Field(default=0.1, ge=0.0)
    soft_threshold: float = Field(
        default=0.1,
        ge=0.0,
        description="Soft scores below this value are zeroed",
    )
    patch_size: int = Field(default=32, ge=1)
    use_rotation_invariance: bool = True
    rotation_threshold: float = 0.1
    use_scale_invariance: bool = True
    scale_threshold: float = 0.1


class MatcherConfig(BaseModel):
    """Settings shared by every pairwise matcher."""

    match_threshold: float = Field(
        default=0.2,
        ge=0.0,
        description="Minimum score of a retained match",
    )
    max_keypoints: int = Field(
        default=1024,
        ge=0,
        description="Maximum number of keypoints considered per image",
    )
    use_mutual_check: bool = Field(
        default=True,
        description="Keep only reciprocal best matches",
    )
    mutual_threshold: float = Field(
        default=0.8,
        ge=0.0,
        description="Minimum score of a reciprocal match",
    )


class SuperGlueConfig(MatcherConfig):
    """SuperGlue matcher settings."""

    use_ratio_test: bool = False
    ratio_threshold: float = Field(default=0.8, gt=0.0, le=1.0)
    sinkhorn_iterations: int = Field(default=20, ge=1)
    sinkhorn_threshold: float = Field(default=1e-4, gt=0.0)
    use_superglue: bool = True
    superglue_threshold: float = Field(default=0.2, ge=0.0)


class LoFTRConfig(MatcherConfig):
    """LoFTR matcher settings."""

    max_keypoints: int = Field(default=2048, ge=0)
    coarse_window_size: int = Field(default=8, ge=1)
    fine_window_size: int = Field(default=2, ge=1)
    coarse_level: int = Field(default=4, ge=1)
    fine_level: int = Field(default=2, ge=1)
    coarse_threshold: float = Field(default=0.2, ge=0.0)
    fine_threshold: float = Field(default=0.1, ge=0.0)
    num_heads: int = Field(default=8, ge=1)
    feature_dim: int = Field(default=256, ge=1)
    use_positional_encoding: bool = True
    temperature: float = Field(default=0.1, gt=0.0)

    @model_validator(mode="after")
    def validate_levels(self) -> LoFTRConfig:
        """Ensure the fine level is not coarser than the coarse level."""
        if self.fine_level > self.coarse_level:
            msg = f"fine_level ({self.fine_level}) must be <= coarse_level ({self.coarse_level})"
            raise ValueError(msg)
        return self


class RegistryConfig(BaseModel):
    """Registry-level settings."""

    cache_dir: Path | None = Field(
        default=DEFAULT_CACHE_DIR,
        description="Directory for cached model files (None disables cache management)",
    )
    download_enabled: bool = Field(
        default=True,
        description="Allow model files to be fetched on demand",
    )
    default_device: MLDevice = Field(
        default=MLDevice.CPU,
        description="Device used when load_model gets no explicit config",
    )

    @classmethod
    def from_yaml(cls, path: str | Path) -> RegistryConfig:
        """Load configuration from YAML file."""
        import yaml

        with open(path) as f:
            data = yaml.safe_load(f) or {}
        return cls.model_validate(data)

    def to_yaml(self, path: str | Path) -> None:
        """Save configuration to YAML file."""
        import yaml

        with open(path, "w") as f:
            yaml.dump(self.model_dump(mode="json"), f, default_flow_style=False)
