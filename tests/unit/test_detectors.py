"""Unit tests for the SuperPoint and DISK detectors.

Copyright 2024 Delanoe Pirard / Aedelon. Apache 2.0.
"""

from __future__ import annotations

import logging
from pathlib import Path

import numpy as np
import pytest
from numpy.testing import assert_allclose, assert_array_equal
from PIL import Image

from feature_runtime.core.config import DISKConfig, ModelConfig, SuperPointConfig
from feature_runtime.models import DISKDetector, SuperPointDetector
from feature_runtime.models.disk import soft_scores_from_descriptors

from ..conftest import RecordingFactory


@pytest.fixture
def static_outputs():
    """Raw detector output with one keypoint of each rejection kind."""
    return {
        "keypoints": np.array(
            [
                [10.0, 10.0],  # kept
                [11.0, 10.0],  # suppressed by NMS
                [2.0, 2.0],  # on the border
                [40.0, 40.0],  # below threshold
            ],
            dtype=np.float32,
        ),
        "scores": np.array([0.9, 0.8, 0.95, 0.3], dtype=np.float32),
        "descriptors": np.array(
            [[3.0, 4.0, 0.0], [1.0, 0.0, 0.0], [0.0, 1.0, 0.0], [0.0, 0.0, 0.05]],
            dtype=np.float32,
        ),
    }


@pytest.fixture
def small_image() -> np.ndarray:
    return np.full((64, 64, 3), 128, dtype=np.uint8)


# ==============================================================================
# Pipeline Tests
# ==============================================================================


class TestDetectorPipeline:
    """Tests for the shared detector post-processing."""

    def test_filter_pipeline(self, static_outputs, small_image):
        """Threshold, border and NMS are applied to raw backend output."""
        model = SuperPointDetector(backend_factory=RecordingFactory(static_outputs))
        model.load(ModelConfig())

        config = SuperPointConfig(keypoint_threshold=0.5, border_margin=4, nms_radius=4.0)
        result = model.detect(small_image, config)

        assert result.num_keypoints == 1
        assert_array_equal(result.keypoints[0], [10.0, 10.0, 1.0, 0.0, 0.0, 1.0])
        assert_allclose(result.scores, [0.9])
        assert_allclose(result.descriptors, [[0.6, 0.8, 0.0]], atol=1e-6)
        assert result.processing_time_ms > 0.0

    def test_backend_inputs(self, static_outputs, small_image):
        """The backend receives the flattened image, its size and descriptor dim."""
        factory = RecordingFactory(static_outputs)
        model = SuperPointDetector(backend_factory=factory)
        model.load(ModelConfig())

        model.detect(small_image)

        inputs = factory.backends[0].calls[0]
        assert set(inputs) == {"image", "image_size", "descriptor_dim"}
        assert inputs["image"].shape == (64 * 64 * 3,)
        assert_array_equal(inputs["image_size"], [64, 64])
        assert_array_equal(inputs["descriptor_dim"], [256])

    def test_nms_disabled(self, static_outputs, small_image):
        model = SuperPointDetector(backend_factory=RecordingFactory(static_outputs))
        model.load(ModelConfig())

        config = SuperPointConfig(keypoint_threshold=0.5, use_nms=False)
        result = model.detect(small_image, config)

        assert_allclose(result.scores, [0.9, 0.8])

    def test_borders_kept_when_disabled(self, static_outputs, small_image):
        model = SuperPointDetector(backend_factory=RecordingFactory(static_outputs))
        model.load(ModelConfig())

        config = SuperPointConfig(keypoint_threshold=0.5, remove_borders=False)
        result = model.detect(small_image, config)

        assert_allclose(result.scores, [0.95, 0.9])

    def test_without_descriptors(self, static_outputs, small_image):
        model = SuperPointDetector(backend_factory=RecordingFactory(static_outputs))
        model.load(ModelConfig())

        result = model.detect(small_image, SuperPointConfig(compute_descriptors=False))

        assert result.descriptors is None
        assert result.num_keypoints > 0

    def test_missing_descriptors_is_failure(self, static_outputs, small_image):
        outputs = {k: v for k, v in static_outputs.items() if k != "descriptors"}
        model = SuperPointDetector(backend_factory=RecordingFactory(outputs))
        model.load(ModelConfig())

        result = model.detect(small_image)

        assert result.num_keypoints == 0
        assert result.processing_time_ms == 0.0

    @pytest.mark.parametrize(
        ("model_class", "dim"), [(SuperPointDetector, 256), (DISKDetector, 128)]
    )
    @pytest.mark.parametrize(
        "descriptors", [np.empty(0, dtype=np.float32), None], ids=["flat", "shaped"]
    )
    def test_empty_backend_output(self, model_class, dim, descriptors, small_image, caplog):
        """No raw keypoints is a valid empty detection, not a failure."""
        outputs = {
            "keypoints": np.empty((0, 2), dtype=np.float32),
            "scores": np.empty(0, dtype=np.float32),
            "descriptors": descriptors if descriptors is not None else np.empty((0, dim)),
        }
        model = model_class(backend_factory=RecordingFactory(outputs))
        model.load(ModelConfig())

        with caplog.at_level(logging.ERROR):
            result = model.detect(small_image)

        assert result.num_keypoints == 0
        assert result.descriptors.shape == (0, dim)
        assert result.processing_time_ms > 0.0
        assert not [r for r in caplog.records if r.levelno >= logging.ERROR]

    def test_malformed_backend_output(self, small_image):
        """Backend failures produce an empty result, not an exception."""
        model = SuperPointDetector(backend_factory=RecordingFactory({"scores": np.ones(3)}))
        model.load(ModelConfig())

        result = model.detect(small_image)

        assert result.num_keypoints == 0
        assert result.processing_time_ms == 0.0

    def test_undecodable_path(self, tmp_path: Path, static_outputs):
        path = tmp_path / "broken.png"
        path.write_bytes(b"not an image")
        model = SuperPointDetector(backend_factory=RecordingFactory(static_outputs))
        model.load(ModelConfig())

        assert model.detect(path).num_keypoints == 0


# ==============================================================================
# End-to-end Tests
# ==============================================================================


class TestSuperPointEndToEnd:
    """SuperPoint on the deterministic backend."""

    def test_registry_scenario(self, registry, synthetic_factory, random_rgb_image):
        """Detection on a 640x480 image respects count, score and border limits."""
        registry.register_model("d1", SuperPointDetector(backend_factory=synthetic_factory))
        assert not registry.is_model_loaded("d1")

        assert registry.load_model("d1", ModelConfig()) is True

        config = SuperPointConfig(
            max_keypoints=50,
            keypoint_threshold=0.5,
            remove_borders=True,
            border_margin=4,
        )
        result = registry.get_detector("d1").detect(random_rgb_image, config)

        assert 0 < result.num_keypoints <= 50
        assert np.all(result.scores >= 0.5)
        assert np.all((result.xy[:, 0] >= 4) & (result.xy[:, 0] < 636))
        assert np.all((result.xy[:, 1] >= 4) & (result.xy[:, 1] < 476))

    def test_descriptors_normalized(self, synthetic_factory, random_rgb_image):
        model = SuperPointDetector(backend_factory=synthetic_factory)
        model.load(ModelConfig())

        result = model.detect(random_rgb_image)

        assert result.descriptors.shape == (result.num_keypoints, 256)
        assert_allclose(np.linalg.norm(result.descriptors, axis=1), 1.0, atol=1e-5)
        assert_array_equal(result.keypoints[:, 2:], np.tile([1.0, 0.0, 0.0, 1.0], (len(result), 1)))

    def test_scores_descending(self, synthetic_factory, random_rgb_image):
        model = SuperPointDetector(backend_factory=synthetic_factory)
        model.load(ModelConfig())

        result = model.detect(random_rgb_image)

        assert np.all(np.diff(result.scores) <= 0)

    def test_load_overrides_used_by_default(self, synthetic_factory, random_rgb_image):
        model = SuperPointDetector(backend_factory=synthetic_factory)
        model.load(ModelConfig(parameters={"max_keypoints": "10"}))

        result = model.detect(random_rgb_image)

        assert 0 < result.num_keypoints <= 10

    def test_deterministic(self, synthetic_factory, random_rgb_image):
        model = SuperPointDetector(backend_factory=synthetic_factory)
        model.load(ModelConfig())

        first = model.detect(random_rgb_image)
        second = model.detect(random_rgb_image)

        assert_array_equal(first.keypoints, second.keypoints)
        assert_array_equal(first.descriptors, second.descriptors)

    def test_path_input(self, tmp_path: Path, synthetic_factory, random_rgb_image):
        """Detection on a file matches detection on the decoded array."""
        path = tmp_path / "frame.png"
        Image.fromarray(random_rgb_image).save(path)
        model = SuperPointDetector(backend_factory=synthetic_factory)
        model.load(ModelConfig())

        from_path = model.detect(path)
        from_array = model.detect(random_rgb_image)

        assert_array_equal(from_path.keypoints, from_array.keypoints)


# ==============================================================================
# DISK Tests
# ==============================================================================


class TestDISK:
    """DISK-specific outputs."""

    def test_soft_scores(self):
        desc = np.array([[0.03, 0.04], [3.0, 4.0]], dtype=np.float32)
        assert_allclose(soft_scores_from_descriptors(desc, 0.1), [0.0, 5.0])

    def test_soft_scores_empty(self):
        assert soft_scores_from_descriptors(np.empty((0, 8)), 0.1).shape == (0,)

    def test_extras(self, static_outputs, small_image):
        """Soft scores follow the kept keypoints; dense keypoints are the raw field."""
        model = DISKDetector(backend_factory=RecordingFactory(static_outputs))
        model.load(ModelConfig())

        config = DISKConfig(keypoint_threshold=0.0, remove_borders=False, use_nms=False)
        result = model.detect(small_image, config)

        assert result.num_keypoints == 4
        assert_array_equal(result.dense_keypoints, static_outputs["keypoints"])
        # Ranked 0.95, 0.9, 0.8, 0.3; the last descriptor norm is below soft_threshold
        assert_allclose(result.soft_scores, [1.0, 5.0, 1.0, 0.0], atol=1e-6)

    def test_defaults(self, synthetic_factory, random_rgb_image):
        model = DISKDetector(backend_factory=synthetic_factory)
        model.load(ModelConfig())

        result = model.detect(random_rgb_image)

        assert result.descriptors.shape[1] == 128
        assert len(result.soft_scores) == result.num_keypoints
        assert result.dense_keypoints.shape[1] == 2

    def test_descriptor_dim_override(self, synthetic_factory, random_rgb_image):
        model = DISKDetector(backend_factory=synthetic_factory)
        model.load(ModelConfig(parameters={"descriptor_dim": "64"}))

        result = model.detect(random_rgb_image)

        assert result.descriptors.shape[1] == 64
