"""Tests for the pixel format catalog."""

import unittest

import numpy as np

from TexLoader.core.errors import TextureLoadError, UnsupportedFormatError
from TexLoader.core.formats import (
    ElementKind,
    PixelType,
    TextureFormat,
    layout_for_texture_format,
    resolve_layout,
    source_bytes_per_pixel,
)


class TestResolveLayout(unittest.TestCase):
    def test_catalog_entries(self):
        cases = [
            (PixelType.BITMAP, 24, TextureFormat.RGB24, 3, ElementKind.U8),
            (PixelType.BITMAP, 32, TextureFormat.RGBA32, 4, ElementKind.U8),
            (PixelType.INT16, 16, TextureFormat.R16, 1, ElementKind.U16),
            (PixelType.UINT16, 16, TextureFormat.R16, 1, ElementKind.U16),
            (PixelType.FLOAT, 32, TextureFormat.RFLOAT, 1, ElementKind.F32),
            (PixelType.RGB16, 48, TextureFormat.RGB48, 3, ElementKind.U16),
            (PixelType.RGBA16, 64, TextureFormat.RGBA64, 4, ElementKind.U16),
            (PixelType.RGBF, 96, TextureFormat.RGBAFLOAT, 4, ElementKind.F32),
            (PixelType.RGBAF, 128, TextureFormat.RGBAFLOAT, 4, ElementKind.F32),
        ]
        for pixel_type, bpp, fmt, channels, kind in cases:
            with self.subTest(pixel_type=pixel_type, bpp=bpp):
                layout = resolve_layout(pixel_type, bpp)
                self.assertIs(layout.texture_format, fmt)
                self.assertEqual(layout.channel_count, channels)
                self.assertIs(layout.element_kind, kind)
                self.assertEqual(layout.bytes_per_pixel, channels * kind.size)

    def test_rgbf_widens_to_four_channels(self):
        layout = resolve_layout(PixelType.RGBF, 96)
        self.assertEqual(layout.bytes_per_pixel, 16)
        self.assertEqual(source_bytes_per_pixel(PixelType.RGBF, 96), 12)

    def test_rgb16_is_not_widened(self):
        layout = resolve_layout(PixelType.RGB16, 48)
        self.assertEqual(layout.channel_count, 3)
        self.assertEqual(source_bytes_per_pixel(PixelType.RGB16, 48), 6)

    def test_unsupported_bitmap_depths(self):
        for bpp in (1, 4, 8, 16):
            with self.subTest(bpp=bpp):
                with self.assertRaises(UnsupportedFormatError):
                    resolve_layout(PixelType.BITMAP, bpp)

    def test_unsupported_pixel_types(self):
        for pixel_type in (PixelType.UNKNOWN, PixelType.UINT32, PixelType.INT32,
                           PixelType.DOUBLE):
            with self.subTest(pixel_type=pixel_type):
                with self.assertRaises(UnsupportedFormatError) as ctx:
                    resolve_layout(pixel_type, 32)
                self.assertIn(pixel_type.value, str(ctx.exception))

    def test_unsupported_is_texture_load_error(self):
        with self.assertRaises(TextureLoadError):
            resolve_layout(PixelType.DOUBLE, 64)

    def test_layout_dtype(self):
        self.assertEqual(resolve_layout(PixelType.UINT16, 16).dtype, np.dtype(np.uint16))
        self.assertEqual(resolve_layout(PixelType.FLOAT, 32).dtype, np.dtype(np.float32))


def test_layout_for_texture_format_round_trips_catalog():
    for fmt in TextureFormat:
        layout = layout_for_texture_format(fmt)
        assert layout.texture_format is fmt


def test_source_size_for_bitmap_matches_layout():
    assert source_bytes_per_pixel(PixelType.BITMAP, 24) == 3
    assert source_bytes_per_pixel(PixelType.BITMAP, 32) == 4
