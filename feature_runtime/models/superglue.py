"""SuperGlue feature matcher.

Matches two detector outputs (keypoints plus descriptors). The backend
returns candidate pairs with assignment scores; reciprocity, the optional
ratio test and the score threshold are applied here.

Copyright 2024 Delanoe Pirard / Aedelon. Apache 2.0.
"""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING, ClassVar

import numpy as np
from pydantic import BaseModel

from ..core.config import ModelType, SuperGlueConfig
from ..core.model_interface import DetectionResult, MatcherModel, MatchResult
from ..core.postprocessing import match_ratio, ratio_test

if TYPE_CHECKING:
    from numpy.typing import ArrayLike, NDArray

    from ..core.config import MatcherConfig

logger = logging.getLogger(__name__)


def _positions(keypoints: ArrayLike) -> NDArray[np.float32]:
    # Accepts [N, 2] positions or [N, 6] keypoints
    keypoints = np.asarray(keypoints, dtype=np.float32)
    if keypoints.size == 0:
        return np.empty((0, 2), dtype=np.float32)
    return np.ascontiguousarray(keypoints.reshape(len(keypoints), -1)[:, :2])


class SuperGlueMatcher(MatcherModel):
    """Graph neural network matcher with Sinkhorn optimal transport."""

    MODEL_TYPE: ClassVar[ModelType] = ModelType.SUPERGLUE_MATCHER
    DISPLAY_NAME: ClassVar[str] = "SuperGlue"
    SETTINGS_CLASS: ClassVar[type[BaseModel]] = SuperGlueConfig
    OVERRIDE_KEYS: ClassVar[tuple[str, ...]] = (
        "max_keypoints",
        "match_threshold",
        "mutual_threshold",
        "sinkhorn_iterations",
    )

    @property
    def config(self) -> SuperGlueConfig:
        return self._settings

    def match(
        self,
        keypoints1: ArrayLike,
        descriptors1: ArrayLike,
        keypoints2: ArrayLike,
        descriptors2: ArrayLike,
        config: SuperGlueConfig | None = None,
    ) -> MatchResult:
        """Match two keypoint sets.

        Only the first ``max_keypoints`` keypoints of each set are sent to
        the backend; detector results are already ranked by score. The
        match ratio is taken over the full first set.

        Args:
            keypoints1: Keypoints of image 1 [N1, 2] or [N1, 6]
            descriptors1: Descriptors of image 1 [N1, D]
            keypoints2: Keypoints of image 2 [N2, 2] or [N2, 6]
            descriptors2: Descriptors of image 2 [N2, D]
            config: Settings for this call (stored settings when omitted)

        Returns:
            Match result, empty if the model is not loaded, an input is
            empty, or inference fails
        """
        settings = config if config is not None else self._settings
        handle = self._acquired_handle()
        if handle is None:
            return MatchResult.empty()

        start = time.perf_counter()
        try:
            kps_1 = _positions(keypoints1)
            kps_2 = _positions(keypoints2)
            desc_1 = np.asarray(descriptors1, dtype=np.float32)
            desc_2 = np.asarray(descriptors2, dtype=np.float32)
            if len(kps_1) != len(desc_1) or len(kps_2) != len(desc_2):
                msg = "keypoints and descriptors must have the same length"
                raise ValueError(msg)

            total_1 = len(kps_1)
            cap = settings.max_keypoints
            kps_1, desc_1 = kps_1[:cap], desc_1[:cap]
            kps_2, desc_2 = kps_2[:cap], desc_2[:cap]
            if len(kps_1) == 0 or len(kps_2) == 0 or desc_1.size == 0 or desc_2.size == 0:
                logger.warning("%s: empty keypoints or descriptors, nothing to match", self.name)
                return MatchResult.empty()

            raw = handle.run(
                {
                    "keypoints0": kps_1,
                    "descriptors0": desc_1.reshape(len(kps_1), -1),
                    "keypoints1": kps_2,
                    "descriptors1": desc_2.reshape(len(kps_2), -1),
                }
            )
            result = self._finalize(raw, len(kps_1), len(kps_2), settings)
        except Exception as e:
            logger.error("Matching failed for %s: %s", self.name, e)
            return MatchResult.empty()

        result.match_ratio = match_ratio(result.num_matches, total_1)
        result.processing_time_ms = (time.perf_counter() - start) * 1000.0
        logger.debug(
            "%s kept %d matches in %.1f ms",
            self.name,
            result.num_matches,
            result.processing_time_ms,
        )
        return result

    def match_detections(
        self,
        detection1: DetectionResult,
        detection2: DetectionResult,
        config: SuperGlueConfig | None = None,
    ) -> MatchResult:
        """Match two detection results that carry descriptors."""
        if detection1.descriptors is None or detection2.descriptors is None:
            logger.warning("%s: detections without descriptors cannot be matched", self.name)
            return MatchResult.empty()
        return self.match(
            detection1.keypoints,
            detection1.descriptors,
            detection2.keypoints,
            detection2.descriptors,
            config,
        )

    def _refine(
        self,
        matches: NDArray[np.int64],
        scores: NDArray[np.float32],
        keep: NDArray[np.int64],
        settings: MatcherConfig,
    ) -> NDArray[np.int64]:
        if not getattr(settings, "use_ratio_test", False):
            return keep
        passed = ratio_test(matches, scores, settings.ratio_threshold)
        return keep[np.isin(keep, passed)]
