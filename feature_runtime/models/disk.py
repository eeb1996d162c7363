"""DISK keypoint detector.

Besides the filtered keypoints, DISK results carry the raw keypoint field
(``dense_keypoints``) and a per-keypoint soft score derived from the raw
descriptor magnitude.

Copyright 2024 Delanoe Pirard / Aedelon. Apache 2.0.
"""

from __future__ import annotations

from dataclasses import replace
from typing import TYPE_CHECKING, ClassVar

import numpy as np
from pydantic import BaseModel

from ..core.config import DISKConfig, ModelType
from ..core.model_interface import DetectionResult, DetectorModel, descriptor_rows

if TYPE_CHECKING:
    from numpy.typing import NDArray


def soft_scores_from_descriptors(
    descriptors: NDArray[np.float32],
    soft_threshold: float,
) -> NDArray[np.float32]:
    """Descriptor norms, zeroed where they fall below ``soft_threshold``.

    Args:
        descriptors: Raw (unnormalized) descriptors [N, D]
        soft_threshold: Minimum norm kept

    Returns:
        Soft scores [N]
    """
    descriptors = np.asarray(descriptors, dtype=np.float32)
    if descriptors.size == 0:
        return np.zeros(len(descriptors), dtype=np.float32)
    norms = np.linalg.norm(descriptors, axis=-1).astype(np.float32)
    norms[norms < soft_threshold] = 0.0
    return norms


class DISKDetector(DetectorModel):
    """Detector trained with policy gradient, 128-d descriptors by default."""

    MODEL_TYPE: ClassVar[ModelType] = ModelType.DISK_DETECTOR
    DISPLAY_NAME: ClassVar[str] = "DISK"
    SETTINGS_CLASS: ClassVar[type[BaseModel]] = DISKConfig
    OVERRIDE_KEYS: ClassVar[tuple[str, ...]] = (
        "max_keypoints",
        "keypoint_threshold",
        "descriptor_dim",
        "nms_radius",
    )

    @property
    def config(self) -> DISKConfig:
        return self._settings

    def _add_extras(
        self,
        result: DetectionResult,
        raw: dict[str, NDArray],
        keep: NDArray[np.int64],
        settings: DISKConfig,
    ) -> DetectionResult:
        xy = np.asarray(raw["keypoints"], dtype=np.float32).reshape(-1, 2)

        soft_scores = None
        if raw.get("descriptors") is not None:
            raw_desc = descriptor_rows(raw["descriptors"], len(xy), settings.descriptor_dim)
            # DISKConfig defaults apply when a plain DetectorConfig is passed per call
            threshold = getattr(settings, "soft_threshold", DISKConfig().soft_threshold)
            soft_scores = soft_scores_from_descriptors(raw_desc[keep], threshold)

        return replace(result, soft_scores=soft_scores, dense_keypoints=xy)
