"""Unit tests for feature_runtime.core.preprocessing.

Copyright 2024 Delanoe Pirard / Aedelon. Apache 2.0.
"""

from __future__ import annotations

from pathlib import Path

import numpy as np
import pytest
from numpy.testing import assert_allclose, assert_array_equal
from PIL import Image

from feature_runtime.core.preprocessing import (
    ArrayImage,
    ImageSource,
    as_image_source,
    image_size,
    image_to_tensor,
    load_image,
)


class CheckerImage:
    """Minimal ImageSource that is not an ArrayImage."""

    width = 3
    height = 2

    def get_pixel(self, x: int, y: int) -> tuple[int, int, int]:
        return (x * 50, y * 100, 255 if (x + y) % 2 else 0)


# ==============================================================================
# ArrayImage Tests
# ==============================================================================


class TestArrayImage:
    """Tests for the array-backed image source."""

    def test_dimensions(self, random_rgb_image):
        image = ArrayImage(random_rgb_image)
        assert image.width == 640
        assert image.height == 480
        assert isinstance(image, ImageSource)

    def test_get_pixel(self):
        pixels = np.zeros((2, 3, 3), dtype=np.uint8)
        pixels[1, 2] = (10, 20, 30)
        assert ArrayImage(pixels).get_pixel(2, 1) == (10, 20, 30)

    def test_grayscale_expanded(self):
        image = ArrayImage(np.full((4, 5), 7, dtype=np.uint8))
        assert image.get_pixel(0, 0) == (7, 7, 7)

    def test_from_pil(self):
        pil = Image.new("RGB", (8, 6), color=(1, 2, 3))
        image = ArrayImage(pil)
        assert (image.width, image.height) == (8, 6)
        assert image.get_pixel(7, 5) == (1, 2, 3)

    def test_pixels_read_only(self, small_rgb_image):
        image = ArrayImage(small_rgb_image)
        with pytest.raises(ValueError):
            image.pixels[0, 0, 0] = 0

    def test_invalid_shape(self):
        with pytest.raises(ValueError, match="H, W, 3"):
            ArrayImage(np.zeros((4, 4, 4), dtype=np.uint8))

    def test_invalid_dtype(self):
        with pytest.raises(ValueError, match="uint8"):
            ArrayImage(np.zeros((4, 4, 3), dtype=np.float32))


class TestLoadImage:
    """Tests for decoding image files."""

    def test_png_roundtrip(self, tmp_path: Path, small_rgb_image):
        path = tmp_path / "image.png"
        Image.fromarray(small_rgb_image).save(path)

        image = load_image(path)

        assert_array_equal(image.pixels, small_rgb_image)

    def test_missing_file(self, tmp_path: Path):
        with pytest.raises(OSError):
            load_image(tmp_path / "missing.png")

    def test_as_image_source(self, tmp_path: Path, small_rgb_image):
        path = tmp_path / "image.png"
        Image.fromarray(small_rgb_image).save(path)

        assert isinstance(as_image_source(str(path)), ArrayImage)
        assert isinstance(as_image_source(small_rgb_image), ArrayImage)
        source = CheckerImage()
        assert as_image_source(source) is source

    def test_as_image_source_rejects_other_types(self):
        with pytest.raises(TypeError):
            as_image_source(42)


# ==============================================================================
# Tensor Layout Tests
# ==============================================================================


class TestImageToTensor:
    """Tests for the backend tensor layout."""

    def test_layout(self):
        """Row-major, three interleaved channels per pixel, in [0, 1]."""
        pixels = np.zeros((2, 3, 3), dtype=np.uint8)
        pixels[0, 1] = (255, 0, 51)

        tensor = image_to_tensor(ArrayImage(pixels))

        assert tensor.dtype == np.float32
        assert tensor.shape == (2 * 3 * 3,)
        assert_allclose(tensor[3:6], [1.0, 0.0, 0.2], atol=1e-6)

    def test_range(self, random_rgb_image):
        tensor = image_to_tensor(ArrayImage(random_rgb_image))
        assert tensor.shape == (640 * 480 * 3,)
        assert tensor.min() >= 0.0
        assert tensor.max() <= 1.0

    def test_generic_source_matches_array_path(self):
        """Any ImageSource yields the same layout as an ArrayImage."""
        source = CheckerImage()
        pixels = np.array(
            [[source.get_pixel(x, y) for x in range(3)] for y in range(2)], dtype=np.uint8
        )

        assert_array_equal(image_to_tensor(source), image_to_tensor(ArrayImage(pixels)))

    def test_image_size(self):
        assert_array_equal(image_size(CheckerImage()), [3, 2])
