"""Pytest configuration and fixtures for feature_runtime tests.

Copyright 2024 Delanoe Pirard / Aedelon. Apache 2.0.
"""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

import numpy as np
import pytest

from feature_runtime.backends.base import InferenceBackend
from feature_runtime.backends.synthetic import synthetic_backend_factory
from feature_runtime.core.config import MLDevice, RegistryConfig
from feature_runtime.core.registry import ModelRegistry

if TYPE_CHECKING:
    from numpy.typing import NDArray


# ==============================================================================
# Skip conditions
# ==============================================================================


def has_torch() -> bool:
    """Check if PyTorch is available."""
    try:
        import torch  # noqa: F401

        return True
    except ImportError:
        return False


def has_onnxruntime() -> bool:
    """Check if ONNX Runtime is available."""
    try:
        import onnxruntime  # noqa: F401

        return True
    except ImportError:
        return False


# Skip markers
skip_no_torch = pytest.mark.skipif(not has_torch(), reason="PyTorch not installed")
skip_no_onnx = pytest.mark.skipif(not has_onnxruntime(), reason="onnxruntime not installed")


# ==============================================================================
# Test backends
# ==============================================================================


class StaticBackend(InferenceBackend):
    """Backend returning fixed outputs and recording its inputs."""

    def __init__(self, outputs: dict[str, NDArray]) -> None:
        self.outputs = outputs
        self.calls: list[dict[str, NDArray]] = []
        self.closed = False

    @property
    def name(self) -> str:
        return "Static"

    def run(self, inputs: dict[str, NDArray]) -> dict[str, NDArray]:
        self.calls.append(inputs)
        return dict(self.outputs)

    def close(self) -> None:
        self.closed = True


class RecordingFactory:
    """Backend factory counting how many backends it created."""

    def __init__(
        self,
        outputs: dict[str, NDArray] | None = None,
        error: Exception | None = None,
    ) -> None:
        self.outputs = outputs or {}
        self.error = error
        self.backends: list[StaticBackend] = []

    @property
    def calls(self) -> int:
        return len(self.backends)

    def __call__(self, config, model_type) -> StaticBackend:
        if self.error is not None:
            raise self.error
        backend = StaticBackend(self.outputs)
        self.backends.append(backend)
        return backend


# ==============================================================================
# Fixtures - Images
# ==============================================================================


@pytest.fixture
def random_rgb_image() -> NDArray[np.uint8]:
    """Generate a random 640x480 RGB image."""
    rng = np.random.default_rng(42)
    return rng.integers(0, 255, (480, 640, 3), dtype=np.uint8)


@pytest.fixture
def random_rgb_image_pair(random_rgb_image) -> tuple[NDArray[np.uint8], NDArray[np.uint8]]:
    """Generate a pair of random RGB images."""
    rng = np.random.default_rng(43)
    img2 = rng.integers(0, 255, (480, 640, 3), dtype=np.uint8)
    return random_rgb_image, img2


@pytest.fixture
def small_rgb_image() -> NDArray[np.uint8]:
    """Generate a small 96x96 RGB image for fast tests."""
    rng = np.random.default_rng(44)
    return rng.integers(0, 255, (96, 96, 3), dtype=np.uint8)


# ==============================================================================
# Fixtures - Features
# ==============================================================================


@pytest.fixture
def matching_features() -> tuple[NDArray, NDArray, NDArray, NDArray]:
    """Keypoint sets of sizes 10 and 8.

    The first 8 descriptors of set A are a permutation of set B; the last
    two are unrelated.
    """
    rng = np.random.default_rng(46)
    D = 64
    desc_2 = rng.normal(size=(8, D)).astype(np.float32)
    perm = np.array([3, 0, 7, 1, 6, 2, 5, 4])
    desc_1 = np.concatenate([desc_2[perm], rng.normal(size=(2, D)).astype(np.float32)])
    kps_1 = rng.uniform(0, 100, size=(10, 2)).astype(np.float32)
    kps_2 = rng.uniform(0, 100, size=(8, 2)).astype(np.float32)
    return kps_1, desc_1, kps_2, desc_2


# ==============================================================================
# Fixtures - Registry
# ==============================================================================


@pytest.fixture
def synthetic_factory():
    """Factory producing deterministic numpy backends."""
    return synthetic_backend_factory(seed=0)


@pytest.fixture
def temp_cache_dir(tmp_path: Path) -> Path:
    """Create a temporary cache directory."""
    cache_dir = tmp_path / "feature_cache"
    cache_dir.mkdir()
    return cache_dir


@pytest.fixture
def registry(temp_cache_dir: Path) -> ModelRegistry:
    """Empty registry on a temporary cache, seeing CPU and CUDA."""
    config = RegistryConfig(cache_dir=temp_cache_dir)
    return ModelRegistry(config, device_probe=lambda: [MLDevice.CPU, MLDevice.CUDA])
