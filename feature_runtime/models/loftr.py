"""LoFTR detector-free matcher.

Matches two images directly. The backend returns its own keypoints for
both images along with candidate pairs; each keypoint set is truncated to
``max_keypoints`` and pairs referring to dropped keypoints go with them.

Copyright 2024 Delanoe Pirard / Aedelon. Apache 2.0.
"""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING, ClassVar

import numpy as np
from pydantic import BaseModel

from ..backends.base import InferenceError
from ..core.config import LoFTRConfig, ModelType
from ..core.model_interface import MatcherModel, MatchResult, keypoints_from_xy
from ..core.preprocessing import as_image_source, image_size, image_to_tensor

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from ..core.preprocessing import ImageLike

logger = logging.getLogger(__name__)


class LoFTRMatcher(MatcherModel):
    """Coarse-to-fine transformer matcher working on image pairs."""

    MODEL_TYPE: ClassVar[ModelType] = ModelType.LOFTR_MATCHER
    DISPLAY_NAME: ClassVar[str] = "LoFTR"
    SETTINGS_CLASS: ClassVar[type[BaseModel]] = LoFTRConfig
    OVERRIDE_KEYS: ClassVar[tuple[str, ...]] = (
        "max_keypoints",
        "match_threshold",
        "coarse_threshold",
        "fine_threshold",
    )

    @property
    def config(self) -> LoFTRConfig:
        return self._settings

    def match(
        self,
        image1: ImageLike,
        image2: ImageLike,
        config: LoFTRConfig | None = None,
    ) -> MatchResult:
        """Match two images.

        Args:
            image1: First image (ImageSource, uint8 array, Pillow image or path)
            image2: Second image
            config: Settings for this call (stored settings when omitted)

        Returns:
            Match result with ``keypoints1``/``keypoints2`` filled, empty if
            the model is not loaded, an image cannot be decoded, or
            inference fails
        """
        settings = config if config is not None else self._settings
        handle = self._acquired_handle()
        if handle is None:
            return MatchResult.empty()

        start = time.perf_counter()
        try:
            source_1 = as_image_source(image1)
            source_2 = as_image_source(image2)
            raw = handle.run(
                {
                    "image0": image_to_tensor(source_1),
                    "image0_size": image_size(source_1),
                    "image1": image_to_tensor(source_2),
                    "image1_size": image_size(source_2),
                }
            )
            kps_1, kps_2, raw = self._truncate(raw, settings.max_keypoints)
            result = self._finalize(raw, len(kps_1), len(kps_2), settings)
        except Exception as e:
            logger.error("Matching failed for %s: %s", self.name, e)
            return MatchResult.empty()

        result.keypoints1 = keypoints_from_xy(kps_1)
        result.keypoints2 = keypoints_from_xy(kps_2)
        result.processing_time_ms = (time.perf_counter() - start) * 1000.0
        logger.debug(
            "%s kept %d matches in %.1f ms",
            self.name,
            result.num_matches,
            result.processing_time_ms,
        )
        return result

    def _truncate(
        self,
        raw: dict[str, NDArray],
        max_keypoints: int,
    ) -> tuple[NDArray[np.float32], NDArray[np.float32], dict[str, NDArray]]:
        for key in ("keypoints0", "keypoints1", "matches", "scores"):
            if key not in raw:
                msg = f"Backend output has no '{key}'"
                raise InferenceError(msg)

        all_kps_1 = np.asarray(raw["keypoints0"], dtype=np.float32).reshape(-1, 2)
        all_kps_2 = np.asarray(raw["keypoints1"], dtype=np.float32).reshape(-1, 2)
        kps_1 = all_kps_1[:max_keypoints]
        kps_2 = all_kps_2[:max_keypoints]
        matches = np.asarray(raw["matches"], dtype=np.int64).reshape(-1, 2)
        scores = np.asarray(raw["scores"], dtype=np.float32).reshape(-1)

        # Indices past the original keypoint count are left to the shared range check
        truncated = (matches[:, 0] >= len(kps_1)) & (matches[:, 0] < len(all_kps_1))
        truncated |= (matches[:, 1] >= len(kps_2)) & (matches[:, 1] < len(all_kps_2))
        if len(matches) == len(scores) and truncated.any():
            logger.debug(
                "%s: dropped %d matches beyond max_keypoints", self.name, int(truncated.sum())
            )
            matches = matches[~truncated]
            scores = scores[~truncated]

        return kps_1, kps_2, {"matches": matches, "scores": scores}
