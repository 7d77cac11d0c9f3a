"""Tests for the import session lifecycle."""

import asyncio
import threading
import time
import unittest

import numpy as np
import pytest

from TexLoader.core.errors import (
    DecodeError,
    DimensionTooLargeError,
    InvalidArgumentError,
    UnsupportedFormatError,
)
from TexLoader.core.formats import PixelType, TextureFormat, layout_for_texture_format
from TexLoader.core.jobs import JobScheduler
from TexLoader.core.mipchain import MAX_TEXTURE_DIMENSION
from TexLoader.core.texture import TextureImage
from TexLoader.importer import ImageImportSession, SessionState

from conftest import FakeDecoder, inline_settings, native_bitmap


def _rgb(h, w, seed=0):
    return np.random.RandomState(seed).randint(0, 256, (h, w, 3)).astype(np.uint8)


class TestSessionConstruction(unittest.TestCase):
    def test_empty_input_does_not_decode(self):
        decoder = FakeDecoder(_rgb(2, 2))
        for data in (b"", None):
            with self.subTest(data=data):
                with self.assertRaises(InvalidArgumentError):
                    ImageImportSession(data, inline_settings(), decoder)
        self.assertEqual(decoder.decode_calls, 0)

    def test_invalid_argument_is_value_error(self):
        with self.assertRaises(ValueError):
            ImageImportSession(b"", inline_settings(), FakeDecoder(_rgb(1, 1)))

    def test_oversize_releases_bitmap_once(self):
        decoder = FakeDecoder(np.zeros((MAX_TEXTURE_DIMENSION + 1, 1, 3), dtype=np.uint8))
        with self.assertRaises(DimensionTooLargeError):
            ImageImportSession(b"x", inline_settings(), decoder)
        self.assertEqual(decoder.release_count, 1)

    def test_oversize_width_releases_bitmap_once(self):
        decoder = FakeDecoder(np.zeros((1, MAX_TEXTURE_DIMENSION + 1, 3), dtype=np.uint8))
        with self.assertRaises(DimensionTooLargeError):
            ImageImportSession(b"x", inline_settings(), decoder)
        self.assertEqual(decoder.release_count, 1)

    def test_rows_shorter_than_pixel_type_rejected(self):
        # A FLOAT image claiming 8bpp: each row holds 4 bytes, not 16.
        decoder = FakeDecoder(np.zeros((3, 4), dtype=np.uint8), PixelType.FLOAT, 8)
        with self.assertRaises(UnsupportedFormatError):
            ImageImportSession(b"x", inline_settings(), decoder)
        self.assertEqual(decoder.release_count, 1)

    def test_max_dimension_is_accepted(self):
        decoder = FakeDecoder(np.zeros((1, MAX_TEXTURE_DIMENSION, 3), dtype=np.uint8))
        session = ImageImportSession(b"x", inline_settings(), decoder)
        self.assertEqual(session.width, MAX_TEXTURE_DIMENSION)
        session.close()
        self.assertEqual(decoder.release_count, 1)

    def test_unsupported_type_releases_bitmap(self):
        decoder = FakeDecoder(np.zeros((2, 2), dtype=np.float64), PixelType.DOUBLE, 64)
        with self.assertRaises(UnsupportedFormatError):
            ImageImportSession(b"x", inline_settings(), decoder)
        self.assertEqual(decoder.release_count, 1)

    def test_unsupported_bitmap_depth(self):
        decoder = FakeDecoder(np.zeros((2, 2, 2), dtype=np.uint8), PixelType.BITMAP, 16)
        with self.assertRaises(UnsupportedFormatError):
            ImageImportSession(b"x", inline_settings(), decoder)
        self.assertEqual(decoder.release_count, 1)

    def test_decoder_failure_is_wrapped(self):
        decoder = FakeDecoder(_rgb(1, 1), fail_with=OSError("truncated"))
        with self.assertRaises(DecodeError) as ctx:
            ImageImportSession(b"x", inline_settings(), decoder)
        self.assertIn("truncated", str(ctx.exception))
        self.assertEqual(decoder.release_count, 0)

    def test_decode_error_passes_through(self):
        decoder = FakeDecoder(_rgb(1, 1), fail_with=DecodeError("corrupt"))
        with self.assertRaises(DecodeError):
            ImageImportSession(b"x", inline_settings(), decoder)


class TestSessionImport(unittest.TestCase):
    def test_state_transitions(self):
        decoder = FakeDecoder(native_bitmap(_rgb(4, 4)))
        session = ImageImportSession(b"x", inline_settings(), decoder)
        self.assertIs(session.state, SessionState.CONSTRUCTED)
        session.create_new_texture()
        self.assertIs(session.state, SessionState.COMPLETED)
        session.close()
        self.assertIs(session.state, SessionState.RELEASED)
        session.close()
        self.assertEqual(decoder.release_count, 1)
        with self.assertRaises(RuntimeError):
            session.create_new_texture()

    def test_create_new_texture_fills_chain(self):
        rgb = _rgb(6, 10, seed=3)
        with ImageImportSession(b"x", inline_settings(), FakeDecoder(native_bitmap(rgb), row_padding=2)) as session:
            texture = session.create_new_texture()
        self.assertIs(texture.texture_format, TextureFormat.RGB24)
        self.assertEqual(texture.mip_count, 4)
        self.assertTrue(texture.is_applied)
        np.testing.assert_array_equal(texture.level_pixels(0), rgb)
        self.assertEqual(texture.level_pixels(3).shape, (1, 1, 3))

    def test_no_mipmap_gives_single_level(self):
        settings = inline_settings(generate_mipmap=False)
        with ImageImportSession(b"x", settings, FakeDecoder(native_bitmap(_rgb(8, 8)))) as session:
            self.assertEqual(session.calculate_mipmap_count(), 1)
            texture = session.create_new_texture()
        self.assertEqual(texture.mip_count, 1)

    def test_manual_count_only_for_new_textures(self):
        settings = inline_settings(auto_mipmap_count=False, mipmap_count=3)
        decoder = FakeDecoder(native_bitmap(_rgb(64, 64)))
        with ImageImportSession(b"x", settings, decoder) as session:
            self.assertEqual(session.create_new_texture().mip_count, 3)
        existing = TextureImage(1, 1, layout_for_texture_format(TextureFormat.RGBA32))
        with ImageImportSession(b"x", settings, decoder) as session:
            session.load_into_texture(existing)
        self.assertEqual(existing.mip_count, 7)
        self.assertEqual((existing.width, existing.height), (64, 64))
        self.assertIs(existing.texture_format, TextureFormat.RGB24)

    def test_linear_flag_on_new_texture(self):
        settings = inline_settings(linear=True)
        with ImageImportSession(b"x", settings, FakeDecoder(native_bitmap(_rgb(2, 2)))) as session:
            self.assertTrue(session.create_new_texture().linear)

    def test_mark_non_readable_drops_pixels(self):
        settings = inline_settings(mark_non_readable=True)
        with ImageImportSession(b"x", settings, FakeDecoder(native_bitmap(_rgb(2, 2)))) as session:
            texture = session.create_new_texture()
        self.assertTrue(texture.is_applied)
        self.assertFalse(texture.is_readable)
        with self.assertRaises(RuntimeError):
            texture.raw_data

    def test_texture_size_mismatch_rejected(self):
        with ImageImportSession(b"x", inline_settings(), FakeDecoder(native_bitmap(_rgb(4, 4)))) as session:
            other = TextureImage(2, 2, session.layout, 2)
            with self.assertRaises(ValueError):
                session.schedule_import(other)
            self.assertIs(session.state, SessionState.CONSTRUCTED)

    def test_pooled_and_inline_match(self):
        rgba = np.random.RandomState(9).rand(33, 17, 4).astype(np.float32)
        results = []
        for workers in (0, 4):
            settings = inline_settings(max_workers=workers, mipmap_batch_size=7,
                                       transfer_batch_rows=3)
            decoder = FakeDecoder(rgba, PixelType.RGBAF, 128)
            with ImageImportSession(b"x", settings, decoder) as session:
                results.append(session.create_new_texture().raw_data.copy())
            self.assertEqual(decoder.release_count, 1)
        np.testing.assert_array_equal(results[0], results[1])

    def test_async_matches_sync(self):
        gray = np.random.RandomState(4).randint(0, 65536, (9, 13)).astype(np.uint16)

        def make_session():
            return ImageImportSession(
                b"x", inline_settings(max_workers=2), FakeDecoder(gray, PixelType.UINT16, 16)
            )

        with make_session() as session:
            sync_data = session.create_new_texture().raw_data.copy()

        async def run():
            with make_session() as session:
                texture = await session.create_new_texture_async()
            return texture

        texture = asyncio.run(run())
        self.assertTrue(texture.is_applied)
        np.testing.assert_array_equal(texture.raw_data, sync_data)

    def test_async_load_into_texture(self):
        rgb = _rgb(5, 3, seed=8)
        texture = TextureImage(1, 1, layout_for_texture_format(TextureFormat.R16))

        async def run():
            with ImageImportSession(b"x", inline_settings(), FakeDecoder(native_bitmap(rgb))) as session:
                await session.load_into_texture_async(texture)

        asyncio.run(run())
        self.assertTrue(texture.is_applied)
        np.testing.assert_array_equal(texture.level_pixels(0), rgb)

    def test_mip_dimensions(self):
        with ImageImportSession(b"x", inline_settings(), FakeDecoder(native_bitmap(_rgb(600, 1000)))) as session:
            self.assertEqual(session.calculate_mipmap_count(), 10)
            self.assertEqual(session.mip_dimensions(1), (500, 300))
            self.assertEqual(session.mip_dimensions(9), (1, 1))


def test_close_waits_for_pending_work():
    rgb = np.random.RandomState(1).randint(0, 256, (64, 64, 3)).astype(np.uint8)
    decoder = FakeDecoder(native_bitmap(rgb))
    session = ImageImportSession(b"x", inline_settings(max_workers=2), decoder)
    texture = TextureImage(64, 64, session.layout, session.calculate_mipmap_count())
    job = session.schedule_import(texture)
    session.close()
    assert job.is_completed
    assert job.error is None
    assert decoder.release_count == 1
    assert not texture.is_applied
    np.testing.assert_array_equal(texture.level_pixels(0), rgb)


def test_cancelled_async_import_returns_to_constructed():
    gate = threading.Event()
    scheduler = JobScheduler(1)
    blocker = scheduler.schedule([gate.wait], label="blocker")
    decoder = FakeDecoder(native_bitmap(_rgb(8, 8, seed=12)))
    session = ImageImportSession(b"x", inline_settings(max_workers=1), decoder, scheduler)

    async def run():
        task = asyncio.ensure_future(session.create_new_texture_async())
        deadline = time.monotonic() + 5
        while session.state is not SessionState.IMPORTING:
            assert time.monotonic() < deadline
            await asyncio.sleep(0.01)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    try:
        asyncio.run(run())
        gate.set()
        deadline = time.monotonic() + 5
        while session.state is not SessionState.CONSTRUCTED:
            assert time.monotonic() < deadline
            time.sleep(0.01)
        texture = session.create_new_texture()
        assert texture.is_applied
        assert session.state is SessionState.COMPLETED
    finally:
        gate.set()
        session.close()
        blocker.wait()
        scheduler.shutdown()
    assert decoder.release_count == 1
