"""Model capability interface and result types.

Every model exposes the same lifecycle (load / unload / identify) and one
kind-specific operation: detectors ``detect`` an image, matchers ``match``
two feature sets or two images. Callers check ``kind`` (or use the typed
registry lookups) before reaching the kind-specific operation.

Copyright 2024 Delanoe Pirard / Aedelon. Apache 2.0.
"""

from __future__ import annotations

import logging
import threading
import time
from abc import ABC
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, ClassVar, NamedTuple

import numpy as np
from pydantic import BaseModel, ValidationError

from ..backends.base import BackendHandle, InferenceError
from .config import (
    DetectorConfig,
    MatcherConfig,
    MLBackend,
    MLDevice,
    ModelConfig,
    ModelKind,
    ModelType,
)
from .postprocessing import (
    filter_keypoints,
    filter_matches_by_score,
    match_ratio,
    mutual_check,
    nms,
    normalize_descriptors,
    reciprocal_flags,
    select_top_k,
    valid_match_indices,
)
from .preprocessing import ImageLike, ImageSource, as_image_source, image_size, image_to_tensor

if TYPE_CHECKING:
    from numpy.typing import ArrayLike, NDArray

    from ..backends.base import BackendFactory, InferenceBackend

logger = logging.getLogger(__name__)


def _create_backend(config: ModelConfig, model_type: ModelType) -> InferenceBackend:
    from ..backends import create_backend

    return create_backend(config, model_type)


class Keypoint(NamedTuple):
    """A detected location with its local affine shape (identity by default)."""

    x: float
    y: float
    a11: float = 1.0
    a12: float = 0.0
    a21: float = 0.0
    a22: float = 1.0


def keypoints_from_xy(xy: ArrayLike) -> NDArray[np.float32]:
    """Build an [N, 6] keypoint array with identity shapes from positions.

    Args:
        xy: Positions [N, 2]

    Returns:
        Keypoints [N, 6] (x, y, a11, a12, a21, a22)
    """
    xy = np.asarray(xy, dtype=np.float32).reshape(-1, 2)
    keypoints = np.zeros((len(xy), 6), dtype=np.float32)
    keypoints[:, :2] = xy
    keypoints[:, 2] = 1.0
    keypoints[:, 5] = 1.0
    return keypoints


def descriptor_rows(descriptors: ArrayLike, count: int, dim: int) -> NDArray[np.float32]:
    """Raw backend descriptors as [count, D].

    ``dim`` is the width used when the backend returns a flat empty array.
    """
    descriptors = np.asarray(descriptors, dtype=np.float32)
    if descriptors.ndim > 1:
        width = descriptors.shape[-1]
    elif count:
        width = -1
    else:
        width = dim
    return descriptors.reshape(count, width)


def _readonly(arr: ArrayLike | None, dtype: Any, width: int | None = None) -> NDArray | None:
    if arr is None:
        return None
    out = np.array(arr, dtype=dtype)
    if width is not None:
        out = out.reshape(-1, width)
    out.setflags(write=False)
    return out


@dataclass
class DetectionResult:
    """Keypoints detected in one image.

    Arrays are read-only and index-aligned: row ``i`` of ``keypoints``,
    ``scores`` and ``descriptors`` describe the same feature.
    """

    keypoints: NDArray[np.float32]  # [N, 6]
    scores: NDArray[np.float32]  # [N]
    descriptors: NDArray[np.float32] | None = None  # [N, D], L2-normalized

    # DISK extras
    soft_scores: NDArray[np.float32] | None = None  # [N]
    dense_keypoints: NDArray[np.float32] | None = None  # [K, 2], before filtering

    processing_time_ms: float = 0.0

    def __post_init__(self) -> None:
        self.keypoints = _readonly(self.keypoints, np.float32, width=6)
        self.scores = _readonly(self.scores, np.float32).reshape(-1)
        if self.descriptors is not None:
            self.descriptors = _readonly(self.descriptors, np.float32)
            if self.descriptors.ndim != 2:
                msg = f"descriptors must be [N, D], got {self.descriptors.shape}"
                raise ValueError(msg)
        self.soft_scores = _readonly(self.soft_scores, np.float32)
        self.dense_keypoints = _readonly(self.dense_keypoints, np.float32, width=2)

        if len(self.scores) != len(self.keypoints):
            msg = f"scores ({len(self.scores)}) do not match keypoints ({len(self.keypoints)})"
            raise ValueError(msg)
        if self.descriptors is not None and len(self.descriptors) != len(self.keypoints):
            msg = f"descriptors ({len(self.descriptors)}) do not match keypoints ({len(self.keypoints)})"
            raise ValueError(msg)

    @classmethod
    def empty(cls) -> DetectionResult:
        """Result with no keypoints and zero processing time."""
        return cls(
            keypoints=np.empty((0, 6), dtype=np.float32),
            scores=np.empty(0, dtype=np.float32),
        )

    @property
    def num_keypoints(self) -> int:
        """Number of keypoints."""
        return len(self.keypoints)

    @property
    def xy(self) -> NDArray[np.float32]:
        """Keypoint positions [N, 2]."""
        return self.keypoints[:, :2]

    def keypoint(self, index: int) -> Keypoint:
        """Keypoint ``index`` as a named tuple."""
        return Keypoint(*(float(v) for v in self.keypoints[index]))

    def __len__(self) -> int:
        return self.num_keypoints


@dataclass
class MatchResult:
    """Correspondences between keypoint set A (first image) and set B.

    ``matches[k] = (i, j)`` pairs keypoint ``i`` of A with keypoint ``j``
    of B. ``mutual[k]`` tells whether the pair was the reciprocal best
    among all raw candidates.
    """

    matches: NDArray[np.int64]  # [M, 2]
    scores: NDArray[np.float32]  # [M]
    mutual: NDArray[np.bool_]  # [M]
    match_ratio: float = 0.0

    # Image-native matchers produce their own keypoints
    keypoints1: NDArray[np.float32] | None = None  # [N1, 6]
    keypoints2: NDArray[np.float32] | None = None  # [N2, 6]

    processing_time_ms: float = 0.0

    def __post_init__(self) -> None:
        self.matches = _readonly(self.matches, np.int64, width=2)
        self.scores = _readonly(self.scores, np.float32).reshape(-1)
        self.mutual = _readonly(self.mutual, np.bool_).reshape(-1)
        self.keypoints1 = _readonly(self.keypoints1, np.float32, width=6)
        self.keypoints2 = _readonly(self.keypoints2, np.float32, width=6)

        if not len(self.matches) == len(self.scores) == len(self.mutual):
            msg = "matches, scores and mutual must have the same length"
            raise ValueError(msg)

    @classmethod
    def empty(cls) -> MatchResult:
        """Result with no matches and zero processing time."""
        return cls(
            matches=np.empty((0, 2), dtype=np.int64),
            scores=np.empty(0, dtype=np.float32),
            mutual=np.empty(0, dtype=bool),
        )

    @property
    def num_matches(self) -> int:
        """Number of matches."""
        return len(self.matches)

    def __len__(self) -> int:
        return self.num_matches


class MLModel(ABC):
    """Common lifecycle of every registered model.

    A model is constructed unloaded. ``load`` parses its configuration,
    applies recognized string overrides and acquires an inference backend
    through the model's backend factory. ``unload`` releases it. Both are
    idempotent and serialized per model.

    Example:
        >>> model = SuperPointDetector()
        >>> config = ModelConfig(model_path="superpoint.pt", parameters={"max_keypoints": "500"})
        >>> if model.load(config):
        ...     result = model.detect("image.jpg")
    """

    MODEL_TYPE: ClassVar[ModelType]
    DISPLAY_NAME: ClassVar[str]
    SETTINGS_CLASS: ClassVar[type[BaseModel]]
    # Keys of ModelConfig.parameters that override settings fields
    OVERRIDE_KEYS: ClassVar[tuple[str, ...]] = ()

    def __init__(
        self,
        settings: BaseModel | None = None,
        backend_factory: BackendFactory | None = None,
    ) -> None:
        """Initialize an unloaded model.

        Args:
            settings: Variant settings (defaults when omitted)
            backend_factory: Creates the inference backend on load
                (``create_backend`` when omitted)
        """
        self._lock = threading.RLock()
        self._settings = settings if settings is not None else self.SETTINGS_CLASS()
        self._backend_factory = backend_factory or _create_backend
        self._handle: BackendHandle | None = None
        self._backend = MLBackend.PYTORCH
        self._device = MLDevice.CPU

    @property
    def name(self) -> str:
        """Human-readable model name."""
        return self.DISPLAY_NAME

    @property
    def model_type(self) -> ModelType:
        """Catalog type of this model."""
        return self.MODEL_TYPE

    @property
    def kind(self) -> ModelKind:
        """Capability family (detector or matcher)."""
        return self.MODEL_TYPE.kind

    @property
    def backend(self) -> MLBackend:
        """Backend tag of the last successful load."""
        return self._backend

    @property
    def device(self) -> MLDevice:
        """Device tag of the last successful load."""
        return self._device

    @property
    def is_loaded(self) -> bool:
        """Whether a backend is held."""
        handle = self._handle
        return handle is not None and handle.is_acquired

    @property
    def config(self) -> BaseModel:
        """Settings used when an operation gets no explicit config."""
        return self._settings

    def set_config(self, settings: BaseModel) -> None:
        """Replace the stored settings.

        Raises:
            TypeError: If ``settings`` is not of this model's settings type.
        """
        if not isinstance(settings, self.SETTINGS_CLASS):
            msg = f"{self.name} expects {self.SETTINGS_CLASS.__name__}, got {type(settings).__name__}"
            raise TypeError(msg)
        with self._lock:
            self._settings = settings

    def _apply_overrides(self, parameters: dict[str, str]) -> BaseModel:
        """Validate recognized overrides on top of the current settings.

        Raises:
            ValidationError: If an override value cannot be coerced.
        """
        data = self._settings.model_dump()
        for key, value in parameters.items():
            if key in self.OVERRIDE_KEYS:
                data[key] = value
            else:
                logger.debug("Ignoring unrecognized parameter %r for %s", key, self.name)
        return type(self._settings).model_validate(data)

    def load(self, config: ModelConfig) -> bool:
        """Acquire the inference backend.

        Args:
            config: Backend, device, model file and string overrides

        Returns:
            True if the model is loaded (including when it already was)
        """
        with self._lock:
            if self.is_loaded:
                logger.warning("%s is already loaded", self.name)
                return True

            try:
                settings = self._apply_overrides(config.parameters)
            except ValidationError as e:
                logger.error("Invalid parameters for %s: %s", self.name, e)
                return False

            handle = BackendHandle(self._backend_factory, config, self.MODEL_TYPE)
            try:
                handle.acquire()
            except Exception as e:
                logger.error("Failed to load %s: %s", self.name, e)
                return False

            self._settings = settings
            self._handle = handle
            self._backend = config.backend
            self._device = config.device
            logger.info(
                "Loaded %s (%s on %s)", self.name, config.backend.value, config.device.value
            )
            return True

    def unload(self) -> None:
        """Release the inference backend. Safe to call when not loaded."""
        with self._lock:
            if self._handle is None:
                return
            self._handle.release()
            self._handle = None
            logger.info("Unloaded %s", self.name)

    def _acquired_handle(self) -> BackendHandle | None:
        handle = self._handle
        if handle is None or not handle.is_acquired:
            logger.error("%s is not loaded", self.name)
            return None
        return handle

    def __enter__(self) -> MLModel:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.unload()

    def __repr__(self) -> str:
        state = "loaded" if self.is_loaded else "unloaded"
        return f"{type(self).__name__}({self.MODEL_TYPE.value}, {state})"


class DetectorModel(MLModel):
    """Model producing keypoints, scores and descriptors from one image.

    Backend outputs: ``keypoints`` [N, 2], ``scores`` [N], ``descriptors``
    [N, D]. They are thresholded, border-filtered, ranked, spatially
    suppressed and normalized here.
    """

    SETTINGS_CLASS: ClassVar[type[BaseModel]] = DetectorConfig

    @property
    def config(self) -> DetectorConfig:
        return self._settings

    def _backend_inputs(self, image: ImageSource, settings: DetectorConfig) -> dict[str, NDArray]:
        return {
            "image": image_to_tensor(image),
            "image_size": image_size(image),
            "descriptor_dim": np.array([settings.descriptor_dim], dtype=np.int64),
        }

    def detect(
        self,
        image: ImageLike,
        config: DetectorConfig | None = None,
    ) -> DetectionResult:
        """Detect keypoints in an image.

        Args:
            image: ImageSource, [H, W, 3] uint8 array, Pillow image or file path
            config: Settings for this call (stored settings when omitted)

        Returns:
            Detection result, empty if the model is not loaded or inference fails
        """
        settings = config if config is not None else self._settings
        handle = self._acquired_handle()
        if handle is None:
            return DetectionResult.empty()

        start = time.perf_counter()
        try:
            source = as_image_source(image)
            raw = handle.run(self._backend_inputs(source, settings))
            result = self._postprocess(raw, source, settings)
        except Exception as e:
            logger.error("Detection failed for %s: %s", self.name, e)
            return DetectionResult.empty()

        result.processing_time_ms = (time.perf_counter() - start) * 1000.0
        logger.debug(
            "%s detected %d keypoints in %.1f ms",
            self.name,
            result.num_keypoints,
            result.processing_time_ms,
        )
        return result

    def _postprocess(
        self,
        raw: dict[str, NDArray],
        image: ImageSource,
        settings: DetectorConfig,
    ) -> DetectionResult:
        if "keypoints" not in raw or "scores" not in raw:
            msg = "Backend output must contain 'keypoints' and 'scores'"
            raise InferenceError(msg)

        xy = np.asarray(raw["keypoints"], dtype=np.float32).reshape(-1, 2)
        scores = np.asarray(raw["scores"], dtype=np.float32).reshape(-1)

        keep = filter_keypoints(
            xy,
            scores,
            settings.keypoint_threshold,
            image_size=(image.width, image.height),
            remove_borders=settings.remove_borders,
            border_margin=settings.border_margin,
        )
        keep = select_top_k(scores, settings.max_keypoints, keep)
        if settings.use_nms:
            keep = nms(xy, scores, settings.nms_radius, keep)

        descriptors = None
        if settings.compute_descriptors:
            if raw.get("descriptors") is None:
                msg = "Backend output has no 'descriptors'"
                raise InferenceError(msg)
            raw_desc = descriptor_rows(raw["descriptors"], len(xy), settings.descriptor_dim)
            descriptors = normalize_descriptors(raw_desc[keep])

        result = DetectionResult(
            keypoints=keypoints_from_xy(xy[keep]),
            scores=scores[keep],
            descriptors=descriptors,
        )
        return self._add_extras(result, raw, keep, settings)

    def _add_extras(
        self,
        result: DetectionResult,
        raw: dict[str, NDArray],
        keep: NDArray[np.int64],
        settings: DetectorConfig,
    ) -> DetectionResult:
        """Hook for variant-specific outputs."""
        return result


class MatcherModel(MLModel):
    """Model producing correspondences between two keypoint sets.

    Raw candidate pairs are range-checked, optionally reduced to reciprocal
    best pairs, and thresholded by score.
    """

    SETTINGS_CLASS: ClassVar[type[BaseModel]] = MatcherConfig

    @property
    def config(self) -> MatcherConfig:
        return self._settings

    def _refine(
        self,
        matches: NDArray[np.int64],
        scores: NDArray[np.float32],
        keep: NDArray[np.int64],
        settings: MatcherConfig,
    ) -> NDArray[np.int64]:
        """Hook for variant-specific filters between the mutual and score filters."""
        return keep

    def _finalize(
        self,
        raw: dict[str, NDArray],
        num_keypoints_1: int,
        num_keypoints_2: int,
        settings: MatcherConfig,
    ) -> MatchResult:
        if "matches" not in raw or "scores" not in raw:
            msg = "Backend output must contain 'matches' and 'scores'"
            raise InferenceError(msg)

        matches = np.asarray(raw["matches"], dtype=np.int64).reshape(-1, 2)
        scores = np.asarray(raw["scores"], dtype=np.float32).reshape(-1)
        if len(matches) != len(scores):
            msg = f"Backend returned {len(matches)} matches but {len(scores)} scores"
            raise InferenceError(msg)

        valid = valid_match_indices(matches, num_keypoints_1, num_keypoints_2)
        if len(valid) < len(matches):
            logger.warning(
                "%s: dropped %d out-of-range matches", self.name, len(matches) - len(valid)
            )
            matches = matches[valid]
            scores = scores[valid]

        mutual = reciprocal_flags(matches, scores)
        if settings.use_mutual_check:
            keep = mutual_check(matches, scores, settings.mutual_threshold)
        else:
            keep = np.arange(len(matches), dtype=np.int64)
        keep = self._refine(matches, scores, keep, settings)
        keep = filter_matches_by_score(scores, settings.match_threshold, keep)

        return MatchResult(
            matches=matches[keep],
            scores=scores[keep],
            mutual=mutual[keep],
            match_ratio=match_ratio(len(keep), num_keypoints_1),
        )
