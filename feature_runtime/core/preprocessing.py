"""Image sources and the inference tensor layout.

Backends consume a flattened, channel-interleaved RGB buffer: row-major,
three consecutive float32 values per pixel, normalized to [0, 1]. Images
reach the runtime only through the ImageSource capability.

Copyright 2024 Delanoe Pirard / Aedelon. Apache 2.0.
"""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, Protocol, Union, runtime_checkable

import numpy as np
from PIL import Image

if TYPE_CHECKING:
    from numpy.typing import NDArray


@runtime_checkable
class ImageSource(Protocol):
    """Minimal pixel access the runtime needs from a decoded image."""

    @property
    def width(self) -> int: ...

    @property
    def height(self) -> int: ...

    def get_pixel(self, x: int, y: int) -> tuple[int, int, int]:
        """RGB value at column x, row y (0-255)."""
        ...


class ArrayImage:
    """ImageSource backed by an [H, W, 3] uint8 RGB array."""

    def __init__(self, pixels: NDArray[np.uint8] | Image.Image) -> None:
        if isinstance(pixels, Image.Image):
            pixels = np.asarray(pixels.convert("RGB"))
        pixels = np.asarray(pixels)
        if pixels.ndim == 2:
            pixels = np.repeat(pixels[:, :, np.newaxis], 3, axis=2)
        if pixels.ndim != 3 or pixels.shape[2] != 3:
            msg = f"Expected [H, W, 3] array, got {pixels.shape}"
            raise ValueError(msg)
        if pixels.dtype != np.uint8:
            msg = f"Expected uint8 pixels, got {pixels.dtype}"
            raise ValueError(msg)
        self._pixels = np.ascontiguousarray(pixels)
        self._pixels.setflags(write=False)

    @classmethod
    def open(cls, path: str | Path) -> ArrayImage:
        """Decode an image file with Pillow."""
        with Image.open(path) as img:
            return cls(img)

    @property
    def width(self) -> int:
        return self._pixels.shape[1]

    @property
    def height(self) -> int:
        return self._pixels.shape[0]

    @property
    def pixels(self) -> NDArray[np.uint8]:
        """Read-only [H, W, 3] pixel array."""
        return self._pixels

    def get_pixel(self, x: int, y: int) -> tuple[int, int, int]:
        r, g, b = self._pixels[y, x]
        return int(r), int(g), int(b)

    def __repr__(self) -> str:
        return f"ArrayImage(width={self.width}, height={self.height})"


def load_image(path: str | Path) -> ArrayImage:
    """Load an image file as RGB.

    Args:
        path: Image file path

    Returns:
        Decoded image

    Raises:
        OSError: If the file is missing or cannot be decoded.
    """
    return ArrayImage.open(path)


ImageLike = Union[ImageSource, "NDArray[np.uint8]", Image.Image, str, Path]


def as_image_source(image: ImageLike) -> ImageSource:
    """Wrap arrays, Pillow images and file paths as an ImageSource.

    Raises:
        OSError: If a path cannot be decoded.
        ValueError: If an array has the wrong shape or dtype.
    """
    if isinstance(image, (str, Path)):
        return load_image(image)
    if isinstance(image, (np.ndarray, Image.Image)):
        return ArrayImage(image)
    if isinstance(image, ImageSource):
        return image
    msg = f"Unsupported image type: {type(image).__name__}"
    raise TypeError(msg)


def image_to_tensor(image: ImageSource) -> NDArray[np.float32]:
    """Convert an image to the backend tensor layout.

    Args:
        image: Any ImageSource

    Returns:
        Flat float32 array of length width * height * 3 in [0, 1]
    """
    if isinstance(image, ArrayImage):
        pixels = image.pixels
    else:
        pixels = np.empty((image.height, image.width, 3), dtype=np.uint8)
        for y in range(image.height):
            for x in range(image.width):
                pixels[y, x] = image.get_pixel(x, y)

    return (pixels.astype(np.float32) / 255.0).reshape(-1)


def image_size(image: ImageSource) -> NDArray[np.int64]:
    """(width, height) as the int64 array passed alongside image tensors."""
    return np.array([image.width, image.height], dtype=np.int64)
