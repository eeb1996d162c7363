"""SuperPoint keypoint detector.

Copyright 2024 Delanoe Pirard / Aedelon. Apache 2.0.
"""

from __future__ import annotations

from typing import ClassVar

from pydantic import BaseModel

from ..core.config import ModelType, SuperPointConfig
from ..core.model_interface import DetectorModel


class SuperPointDetector(DetectorModel):
    """Self-supervised interest point detector with 256-d descriptors."""

    MODEL_TYPE: ClassVar[ModelType] = ModelType.SUPERPOINT_DETECTOR
    DISPLAY_NAME: ClassVar[str] = "SuperPoint"
    SETTINGS_CLASS: ClassVar[type[BaseModel]] = SuperPointConfig
    OVERRIDE_KEYS: ClassVar[tuple[str, ...]] = (
        "max_keypoints",
        "keypoint_threshold",
        "nms_radius",
        "border_margin",
    )

    @property
    def config(self) -> SuperPointConfig:
        return self._settings
