"""Tests for image decoding and model-input conversion."""

from __future__ import annotations

import io

import numpy as np
import pytest
from conftest import make_image_bytes
from PIL import Image

from snaplabel.errors import ErrorKind, ImageConversionError
from snaplabel.ml.model_manager import InputSpec
from snaplabel.ml.preprocessing import ImagePreprocessor


class TestPrepare:
    def test_tensor_shape_and_dtype(self, preprocessor: ImagePreprocessor) -> None:
        tensor = preprocessor.prepare(make_image_bytes(size=(64, 48)))

        assert tensor.shape == (1, 3, 32, 32)
        assert tensor.dtype == np.float32
        assert tensor.flags["C_CONTIGUOUS"]

    def test_normalization_uses_mean_and_std(self) -> None:
        pre = ImagePreprocessor(InputSpec(size=8, mean=(0.5, 0.5, 0.5), std=(0.5, 0.5, 0.5)), max_image_pixels=10_000)

        tensor = pre.prepare(Image.new("RGB", (16, 16), (255, 0, 255)))

        np.testing.assert_allclose(tensor[0, 0], 1.0, atol=1e-5)
        np.testing.assert_allclose(tensor[0, 1], -1.0, atol=1e-5)
        np.testing.assert_allclose(tensor[0, 2], 1.0, atol=1e-5)

    def test_jpeg_decodes(self, preprocessor: ImagePreprocessor) -> None:
        tensor = preprocessor.prepare(make_image_bytes(size=(40, 90), fmt="JPEG"))
        assert tensor.shape == (1, 3, 32, 32)

    def test_small_image_is_upscaled(self, preprocessor: ImagePreprocessor) -> None:
        tensor = preprocessor.prepare(make_image_bytes(size=(5, 3)))
        assert tensor.shape == (1, 3, 32, 32)

    @pytest.mark.parametrize(
        "array",
        [
            np.zeros((10, 12), dtype=np.uint8),
            np.zeros((10, 12, 3), dtype=np.uint8),
            np.zeros((10, 12, 4), dtype=np.uint8),
        ],
    )
    def test_arrays_are_accepted(self, preprocessor: ImagePreprocessor, array: np.ndarray) -> None:
        assert preprocessor.prepare(array).shape == (1, 3, 32, 32)

    def test_transparency_flattens_to_white(self) -> None:
        pre = ImagePreprocessor(InputSpec(size=4, mean=(0.0, 0.0, 0.0), std=(1.0, 1.0, 1.0)), max_image_pixels=10_000)

        tensor = pre.prepare(Image.new("RGBA", (4, 4), (0, 0, 0, 0)))

        np.testing.assert_allclose(tensor, 1.0, atol=1e-5)

    def test_exif_orientation_is_applied(self, preprocessor: ImagePreprocessor) -> None:
        img = Image.new("RGB", (60, 20), (10, 200, 10))
        exif = Image.Exif()
        exif[0x0112] = 6  # rotate 90 degrees clockwise
        buf = io.BytesIO()
        img.save(buf, format="JPEG", exif=exif.tobytes())

        decoded = preprocessor.decode_image(buf.getvalue())

        assert decoded.size == (20, 60)
        assert decoded.mode == "RGB"


class TestConversionErrors:
    def test_garbage_bytes(self, preprocessor: ImagePreprocessor) -> None:
        with pytest.raises(ImageConversionError) as exc_info:
            preprocessor.prepare(b"\x00\x01not-an-image")
        assert exc_info.value.kind is ErrorKind.CONVERSION_ERROR
        assert exc_info.value.message

    def test_empty_bytes(self, preprocessor: ImagePreprocessor) -> None:
        with pytest.raises(ImageConversionError, match="empty"):
            preprocessor.prepare(b"")

    def test_truncated_png(self, preprocessor: ImagePreprocessor) -> None:
        noise = np.random.default_rng(0).integers(0, 256, size=(64, 64, 3), dtype=np.uint8)
        buf = io.BytesIO()
        Image.fromarray(noise).save(buf, format="PNG")
        data = buf.getvalue()
        with pytest.raises(ImageConversionError):
            preprocessor.prepare(data[: len(data) // 2])

    def test_too_many_pixels(self) -> None:
        pre = ImagePreprocessor(InputSpec(size=8), max_image_pixels=100)
        with pytest.raises(ImageConversionError, match="pixel limit"):
            pre.prepare(make_image_bytes(size=(20, 20)))

    def test_wrong_dtype(self, preprocessor: ImagePreprocessor) -> None:
        with pytest.raises(ImageConversionError, match="dtype"):
            preprocessor.prepare(np.zeros((4, 4, 3), dtype=np.float32))

    def test_wrong_shape(self, preprocessor: ImagePreprocessor) -> None:
        with pytest.raises(ImageConversionError, match="shape"):
            preprocessor.prepare(np.zeros((4, 4, 2), dtype=np.uint8))

    def test_unsupported_type(self, preprocessor: ImagePreprocessor) -> None:
        with pytest.raises(ImageConversionError, match="Unsupported image type"):
            preprocessor.prepare("photo.jpg")  # type: ignore[arg-type]

    def test_corrupted_chunk_type(self, preprocessor: ImagePreprocessor) -> None:
        noise = np.random.default_rng(1).integers(0, 256, size=(256, 256, 3), dtype=np.uint8)
        buf = io.BytesIO()
        Image.fromarray(noise).save(buf, format="PNG")
        data = buf.getvalue()
        second_idat = data.index(b"IDAT", data.index(b"IDAT") + 4)
        corrupted = data[:second_idat] + b"\xbaA\x9f " + data[second_idat + 4 :]

        with pytest.raises(ImageConversionError) as exc_info:
            preprocessor.prepare(corrupted)
        assert exc_info.value.kind is ErrorKind.CONVERSION_ERROR

    def test_unconvertible_mode(self, preprocessor: ImagePreprocessor) -> None:
        with pytest.raises(ImageConversionError, match="La"):
            preprocessor.prepare(Image.new("La", (4, 4)))


class TestAspectRatio:
    def test_long_thin_strip_is_cropped_before_resize(self, preprocessor: ImagePreprocessor) -> None:
        tensor = preprocessor.prepare(Image.new("RGB", (40_000, 2), (0, 128, 255)))

        assert tensor.shape == (1, 3, 32, 32)

    def test_center_crop_keeps_middle_of_wide_image(self) -> None:
        pre = ImagePreprocessor(InputSpec(size=4, mean=(0.0, 0.0, 0.0), std=(1.0, 1.0, 1.0)), max_image_pixels=10_000)
        img = Image.new("RGB", (30, 10), (255, 0, 0))
        img.paste((0, 0, 255), (5, 0, 25, 10))

        tensor = pre.prepare(img)

        np.testing.assert_allclose(tensor[0, 0], 0.0, atol=1e-5)
        np.testing.assert_allclose(tensor[0, 2], 1.0, atol=1e-5)
