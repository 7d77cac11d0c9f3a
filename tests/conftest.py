"""Shared test fixtures."""

import shutil
import sys
import tempfile

import numpy as np
import pytest

from TexLoader.config import LoaderSettings
from TexLoader.core.decoders import BaseDecoder, DecodedImage
from TexLoader.core.formats import ImageFormat, PixelType

LITTLE_ENDIAN = sys.byteorder == "little"


class FakeDecoder(BaseDecoder):
    """In-memory decoder returning a fixed pixel array.

    ``pixels`` is an (H, W[, C]) array already in the decoder's memory order.
    Each row is followed by ``row_padding`` garbage bytes so tests can tell
    when pitch is ignored. Counts decode calls and bitmap releases.
    """

    name = "fake"
    supported_formats = frozenset(ImageFormat)

    def __init__(self, pixels, pixel_type=PixelType.BITMAP, bits_per_pixel=None,
                 row_padding=0, fail_with=None):
        self.pixels = np.ascontiguousarray(pixels)
        self.pixel_type = pixel_type
        if bits_per_pixel is None:
            channels = 1 if self.pixels.ndim == 2 else self.pixels.shape[2]
            bits_per_pixel = 8 * self.pixels.dtype.itemsize * channels
        self.bits_per_pixel = bits_per_pixel
        self.row_padding = row_padding
        self.fail_with = fail_with
        self.decode_calls = 0
        self.release_count = 0

    def _on_release(self):
        self.release_count += 1

    def decode(self, data, image_format):
        self.decode_calls += 1
        if self.fail_with is not None:
            raise self.fail_with
        height, width = self.pixels.shape[:2]
        raw = self.pixels.view(np.uint8).reshape(height, -1)
        row_bytes = raw.shape[1]
        pitch = row_bytes + self.row_padding
        bits = np.full((height, pitch), 0xAB, dtype=np.uint8)
        bits[:, :row_bytes] = raw
        return DecodedImage(
            width, height, self.pixel_type, self.bits_per_pixel,
            bits.reshape(-1), pitch, release_callback=self._on_release,
            source_format=image_format,
        )


def native_bitmap(rgb):
    """Return an RGB(A) uint8 array in the host's native bitmap order."""
    if not LITTLE_ENDIAN:
        return rgb
    if rgb.shape[2] == 4:
        return rgb[:, :, [2, 1, 0, 3]]
    return rgb[:, :, ::-1]


def inline_settings(**overrides):
    """Loader settings that run every job inline on the calling thread."""
    settings = LoaderSettings(max_workers=0)
    for key, value in overrides.items():
        setattr(settings, key, value)
    return settings


@pytest.fixture
def tmp_dir():
    d = tempfile.mkdtemp()
    yield d
    shutil.rmtree(d, ignore_errors=True)


@pytest.fixture
def default_settings():
    return LoaderSettings.default()


@pytest.fixture
def gradient_rgb():
    """A 6x5 RGB gradient with distinct values per channel."""
    h, w = 5, 6
    ys, xs = np.mgrid[0:h, 0:w]
    return np.stack([xs * 40, ys * 50, (xs + ys) * 10], axis=-1).astype(np.uint8)
