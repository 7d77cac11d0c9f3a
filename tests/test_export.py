"""Tests for PNG level export and DDS assembly."""

import os
import struct
import tempfile
import unittest

import cv2
import numpy as np
from PIL import Image

from TexLoader.core.errors import UnsupportedFormatError
from TexLoader.core.export import build_dds_header, save_mip_levels, supports_dds, write_dds
from TexLoader.core.formats import TextureFormat, layout_for_texture_format
from TexLoader.core.texture import TextureImage


def _texture(fmt, width=8, height=4, mips=3, linear=False, seed=0):
    layout = layout_for_texture_format(fmt)
    texture = TextureImage(width, height, layout, mips, linear=linear)
    rng = np.random.RandomState(seed)
    if layout.dtype == np.float32:
        texture.raw_data.view(np.float32)[:] = rng.rand(texture.raw_data.size // 4)
    else:
        texture.raw_data[:] = rng.randint(0, 256, texture.raw_data.size)
    return texture


class TestSavePng(unittest.TestCase):
    def test_rgba32_levels_round_trip(self):
        texture = _texture(TextureFormat.RGBA32)
        with tempfile.TemporaryDirectory() as tmpdir:
            entries = save_mip_levels(texture, tmpdir, "brick")
            self.assertEqual([e["level"] for e in entries], [0, 1, 2])
            self.assertEqual((entries[2]["width"], entries[2]["height"]), (2, 1))
            with Image.open(entries[1]["path"]) as img:
                self.assertEqual(img.mode, "RGBA")
                np.testing.assert_array_equal(np.asarray(img), texture.level_pixels(1))
            self.assertTrue(entries[0]["path"].endswith("brick_mip0.png"))
            leftovers = [n for n in os.listdir(tmpdir) if ".tmp." in n]
            self.assertEqual(leftovers, [])

    def test_rgb48_written_as_16bit(self):
        texture = _texture(TextureFormat.RGB48, mips=1)
        with tempfile.TemporaryDirectory() as tmpdir:
            path = save_mip_levels(texture, tmpdir, "h")[0]["path"]
            back = cv2.imread(path, cv2.IMREAD_UNCHANGED)
        self.assertEqual(back.dtype, np.uint16)
        np.testing.assert_array_equal(back[:, :, ::-1], texture.level_pixels(0))

    def test_float_clipped_to_16bit(self):
        texture = _texture(TextureFormat.RFLOAT, width=2, height=2, mips=1)
        texture.level_pixels(0)[...] = np.array([[[-1.0], [0.0]], [[0.5], [2.0]]])
        with tempfile.TemporaryDirectory() as tmpdir:
            path = save_mip_levels(texture, tmpdir, "f")[0]["path"]
            back = cv2.imread(path, cv2.IMREAD_UNCHANGED)
        self.assertEqual(back.tolist(), [[0, 0], [32768, 65535]])


class TestDds(unittest.TestCase):
    def test_dx10_header_for_rgba32(self):
        texture = _texture(TextureFormat.RGBA32, width=16, height=8, mips=5)
        head = build_dds_header(texture)
        self.assertEqual(head[:4], b"DDS ")
        self.assertEqual(len(head), 4 + 124 + 20)
        size, flags, height, width, pitch, _, mips = struct.unpack_from("<7I", head, 4)
        self.assertEqual((size, height, width, pitch, mips), (124, 8, 16, 64, 5))
        self.assertTrue(flags & 0x20000)
        self.assertEqual(head[84:88], b"DX10")
        dxgi, dim = struct.unpack_from("<2I", head, 128)
        self.assertEqual((dxgi, dim), (29, 3))

    def test_linear_uses_unorm(self):
        texture = _texture(TextureFormat.RGBA32, linear=True)
        self.assertEqual(struct.unpack_from("<I", build_dds_header(texture), 128)[0], 28)

    def test_float_formats(self):
        for fmt, code in ((TextureFormat.RFLOAT, 41), (TextureFormat.RGBAFLOAT, 2),
                          (TextureFormat.R16, 56), (TextureFormat.RGBA64, 11)):
            with self.subTest(fmt=fmt):
                head = build_dds_header(_texture(fmt))
                self.assertEqual(struct.unpack_from("<I", head, 128)[0], code)

    def test_legacy_header_for_rgb24(self):
        head = build_dds_header(_texture(TextureFormat.RGB24, mips=1))
        self.assertEqual(len(head), 128)
        flags, = struct.unpack_from("<I", head, 8)
        self.assertFalse(flags & 0x20000)
        pf_flags, _, bits, rmask = struct.unpack_from("<4I", head, 80)
        self.assertEqual((pf_flags, bits, rmask), (0x40, 24, 0xFF))

    def test_rgb48_has_no_dds_format(self):
        with self.assertRaises(UnsupportedFormatError):
            build_dds_header(_texture(TextureFormat.RGB48))


def test_write_dds_payload_is_packed_chain(tmp_dir):
    texture = _texture(TextureFormat.RGBA64, width=4, height=4, mips=3)
    path = os.path.join(tmp_dir, "nested", "t.dds")
    write_dds(texture, path)
    with open(path, "rb") as f:
        data = f.read()
    head = build_dds_header(texture)
    assert data[:len(head)] == head
    assert data[len(head):] == texture.raw_data.tobytes()
    assert texture.chain.total_size == (16 + 4 + 1) * 8


def test_supports_dds():
    assert supports_dds(TextureFormat.RGB24)
    assert supports_dds(TextureFormat.RGBA64)
    assert supports_dds(TextureFormat.RFLOAT)
    assert not supports_dds(TextureFormat.RGB48)
