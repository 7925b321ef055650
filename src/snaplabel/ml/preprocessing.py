"""Image preprocessing: decode whatever the picker hands over and build model input.

Accepted inputs are encoded image bytes, a ``PIL.Image.Image``, or a uint8
numpy array (HxWx3 RGB, HxWx4 RGBA, or HxW grayscale). Decoding applies the
EXIF orientation and converts to RGB; the model tensor is produced by a
center crop to a square, a resize to the model's input size, and per-channel
normalization. Anything Pillow cannot read or convert becomes an
``ImageConversionError``.
"""

from __future__ import annotations

import struct
from io import BytesIO
from typing import TYPE_CHECKING, Union

import numpy as np
from PIL import Image, ImageOps, UnidentifiedImageError
from PIL.Image import DecompressionBombError

from snaplabel.errors import ImageConversionError

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from snaplabel.ml.model_manager import InputSpec

ImageInput = Union[bytes, bytearray, memoryview, Image.Image, np.ndarray]

# What Pillow raises for unreadable, truncated, or corrupt image data.
_PILLOW_ERRORS = (UnidentifiedImageError, OSError, ValueError, SyntaxError, EOFError, struct.error)


class ImagePreprocessor:
    """Converts raw images into the classifier's NCHW float32 input."""

    def __init__(self, input_spec: InputSpec, max_image_pixels: int) -> None:
        self._spec = input_spec
        self._max_image_pixels = max_image_pixels
        self._mean = np.asarray(input_spec.mean, dtype=np.float32).reshape(1, 1, 3)
        self._std = np.asarray(input_spec.std, dtype=np.float32).reshape(1, 1, 3)

    @property
    def input_size(self) -> int:
        return self._spec.size

    def prepare(self, image: ImageInput) -> NDArray[np.float32]:
        """Convert an image to a 1x3xSxS float32 tensor.

        Raises:
            ImageConversionError: If the image cannot be decoded or converted.
        """
        rgb = self.to_pil(image)
        return self.to_tensor(rgb)

    def to_pil(self, image: ImageInput) -> Image.Image:
        """Return an RGB PIL image for any accepted input type."""
        if isinstance(image, (bytes, bytearray, memoryview)):
            return self.decode_image(bytes(image))
        if isinstance(image, Image.Image):
            self._check_size(*image.size)
            return _convert(image)
        if isinstance(image, np.ndarray):
            return self._from_array(image)
        raise ImageConversionError(f"Unsupported image type: {type(image).__name__}")

    def decode_image(self, image_bytes: bytes) -> Image.Image:
        """Decode raw file bytes into an RGB PIL image."""
        if not image_bytes:
            raise ImageConversionError("Image data is empty")
        try:
            with Image.open(BytesIO(image_bytes)) as img:
                self._check_size(*img.size)
                img.load()
                oriented = ImageOps.exif_transpose(img)
                return _to_rgb(oriented)
        except DecompressionBombError as exc:
            raise ImageConversionError("Image dimensions exceed the configured limit") from exc
        except _PILLOW_ERRORS as exc:
            raise ImageConversionError(f"Failed to decode image: {exc}") from exc

    def to_tensor(self, image: Image.Image) -> NDArray[np.float32]:
        """Center-crop to a square, resize, and normalize an RGB image into NCHW layout.

        Cropping happens before resizing, so memory stays bounded by the model
        input size whatever the aspect ratio.
        """
        size = self._spec.size
        cropped = ImageOps.fit(image, (size, size), Image.Resampling.BILINEAR)

        pixels = np.asarray(cropped, dtype=np.float32) / 255.0
        normalized = (pixels - self._mean) / self._std
        return np.ascontiguousarray(normalized.transpose(2, 0, 1)[np.newaxis, ...], dtype=np.float32)

    # -- Internal -----------------------------------------------------------

    def _from_array(self, array: NDArray[np.uint8]) -> Image.Image:
        if array.dtype != np.uint8:
            raise ImageConversionError(f"Unsupported pixel dtype: {array.dtype}")
        # HxW grayscale, HxWx3 RGB, or HxWx4 RGBA
        if not (array.ndim == 2 or (array.ndim == 3 and array.shape[2] in (3, 4))):
            raise ImageConversionError(f"Unsupported image shape: {array.shape}")
        height, width = array.shape[:2]
        self._check_size(width, height)
        try:
            raster = Image.fromarray(np.ascontiguousarray(array))
        except _PILLOW_ERRORS as exc:
            raise ImageConversionError(f"Cannot read pixel array: {exc}") from exc
        return _convert(raster)

    def _check_size(self, width: int, height: int) -> None:
        if width <= 0 or height <= 0:
            raise ImageConversionError("Image has no pixels")
        if width * height > self._max_image_pixels:
            raise ImageConversionError(
                f"Image is {width}x{height}, larger than the {self._max_image_pixels} pixel limit"
            )


def _convert(image: Image.Image) -> Image.Image:
    try:
        return _to_rgb(image)
    except _PILLOW_ERRORS as exc:
        raise ImageConversionError(f"Cannot convert {image.mode} image to RGB: {exc}") from exc


def _to_rgb(image: Image.Image) -> Image.Image:
    if image.mode == "RGB":
        return image.copy()
    if image.mode in ("RGBA", "LA", "P"):
        # Flatten transparency onto white, as a photo viewer would show it.
        rgba = image.convert("RGBA")
        background = Image.new("RGB", rgba.size, (255, 255, 255))
        background.paste(rgba, mask=rgba.getchannel("A"))
        return background
    return image.convert("RGB")
