"""Deterministic numpy backend.

Stands in for a real network when none is installed (tests, demos, CLI
smoke runs). Outputs follow the same named-array contract as real
backends, are seeded from the input content, and carry no learned
meaning.

Copyright 2024 Delanoe Pirard / Aedelon. Apache 2.0.
"""

from __future__ import annotations

import zlib
from typing import TYPE_CHECKING

import numpy as np

from ..core.config import ModelKind, ModelType
from ..core.postprocessing import compute_similarity_matrix
from .base import BackendFactory, BackendUnavailableError, InferenceBackend

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from ..core.config import ModelConfig

# Keypoint density of the detector output: one candidate per this many pixels
PIXELS_PER_KEYPOINT = 256
MAX_RAW_KEYPOINTS = 8192


def _image_from_inputs(inputs: dict[str, NDArray], key: str) -> NDArray[np.float32]:
    width, height = (int(v) for v in np.asarray(inputs[f"{key}_size"]).reshape(-1)[:2])
    tensor = np.asarray(inputs[key], dtype=np.float32)
    return tensor.reshape(height, width, 3)


def _candidate_pairs(sim: NDArray[np.float32]) -> tuple[NDArray[np.int64], NDArray[np.float32]]:
    """Forward and backward nearest neighbors, deduplicated."""
    n0, n1 = sim.shape
    if n0 == 0 or n1 == 0:
        return np.empty((0, 2), dtype=np.int64), np.empty(0, dtype=np.float32)

    forward = np.stack([np.arange(n0), np.argmax(sim, axis=1)], axis=1)
    backward = np.stack([np.argmax(sim, axis=0), np.arange(n1)], axis=1)
    pairs = np.unique(np.concatenate([forward, backward]), axis=0).astype(np.int64)
    scores = ((sim[pairs[:, 0], pairs[:, 1]] + 1.0) / 2.0).astype(np.float32)
    return pairs, scores


def _grid(width: int, height: int, divisions: int) -> NDArray[np.float32]:
    step = max(1, min(width, height) // divisions)
    ys, xs = np.mgrid[step : height - step : step, step : width - step : step]
    return np.stack([xs.ravel(), ys.ravel()], axis=1).astype(np.float32)


class SyntheticBackend(InferenceBackend):
    """Seeded numpy stand-in for detector and matcher networks."""

    def __init__(self, model_type: ModelType, seed: int = 0) -> None:
        if model_type.kind == ModelKind.OTHER:
            msg = f"Synthetic backend does not support {model_type.value}"
            raise BackendUnavailableError(msg)
        self._model_type = model_type
        self._seed = seed
        self._closed = False

    @property
    def name(self) -> str:
        return f"Synthetic ({self._model_type.value})"

    @property
    def closed(self) -> bool:
        return self._closed

    def _rng(self, *arrays: NDArray) -> np.random.Generator:
        crc = 0
        for arr in arrays:
            crc = zlib.crc32(np.ascontiguousarray(arr).tobytes(), crc)
        return np.random.default_rng([self._seed, crc])

    def run(self, inputs: dict[str, NDArray]) -> dict[str, NDArray]:
        if self._closed:
            msg = "Synthetic backend is closed"
            raise BackendUnavailableError(msg)
        if self._model_type == ModelType.SUPERGLUE_MATCHER:
            return self._match_features(inputs)
        if self._model_type == ModelType.LOFTR_MATCHER:
            return self._match_images(inputs)
        return self._detect(inputs)

    def _detect(self, inputs: dict[str, NDArray]) -> dict[str, NDArray]:
        image = _image_from_inputs(inputs, "image")
        height, width = image.shape[:2]
        dim = int(np.asarray(inputs.get("descriptor_dim", 256)).reshape(-1)[0])
        rng = self._rng(image)

        n = min(MAX_RAW_KEYPOINTS, (width * height) // PIXELS_PER_KEYPOINT)
        keypoints = np.stack(
            [rng.uniform(0, width, n), rng.uniform(0, height, n)], axis=1
        ).astype(np.float32)

        # Bias scores toward local contrast so that content matters
        cols = np.clip(keypoints[:, 0].astype(np.int64), 0, width - 1)
        rows = np.clip(keypoints[:, 1].astype(np.int64), 0, height - 1)
        intensity = image[rows, cols].mean(axis=1)
        scores = (0.5 * rng.random(n) + 0.5 * np.abs(intensity - 0.5) * 2.0).astype(np.float32)

        descriptors = rng.normal(size=(n, dim)).astype(np.float32)
        descriptors *= rng.uniform(0.5, 2.0, size=(n, 1)).astype(np.float32)

        return {"keypoints": keypoints, "scores": scores, "descriptors": descriptors}

    def _match_features(self, inputs: dict[str, NDArray]) -> dict[str, NDArray]:
        desc_0 = np.asarray(inputs["descriptors0"], dtype=np.float32)
        desc_1 = np.asarray(inputs["descriptors1"], dtype=np.float32)
        if len(desc_0) == 0 or len(desc_1) == 0:
            return {"matches": np.empty((0, 2), dtype=np.int64), "scores": np.empty(0, dtype=np.float32)}

        pairs, scores = _candidate_pairs(compute_similarity_matrix(desc_0, desc_1))
        return {"matches": pairs, "scores": scores}

    def _match_images(self, inputs: dict[str, NDArray]) -> dict[str, NDArray]:
        image_0 = _image_from_inputs(inputs, "image0")
        image_1 = _image_from_inputs(inputs, "image1")

        features = []
        grids = []
        for image in (image_0, image_1):
            height, width = image.shape[:2]
            grid = _grid(width, height, divisions=32)
            rows = grid[:, 1].astype(np.int64)
            cols = grid[:, 0].astype(np.int64)
            coords = grid / np.array([width, height], dtype=np.float32) - 0.5
            features.append(np.concatenate([image[rows, cols] - 0.5, coords], axis=1))
            grids.append(grid)

        pairs, scores = _candidate_pairs(compute_similarity_matrix(features[0], features[1]))
        return {
            "keypoints0": grids[0],
            "keypoints1": grids[1],
            "matches": pairs,
            "scores": scores,
        }

    def close(self) -> None:
        self._closed = True


def synthetic_backend_factory(seed: int = 0) -> BackendFactory:
    """Backend factory producing SyntheticBackend instances."""

    def factory(config: ModelConfig, model_type: ModelType) -> InferenceBackend:
        return SyntheticBackend(model_type, seed=seed)

    return factory
