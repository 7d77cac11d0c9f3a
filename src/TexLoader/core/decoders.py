"""Decoder adapters producing scanline bitmaps for the import pipeline.

The loader treats decoding as an external collaborator: a decoder turns encoded
bytes into a ``DecodedImage`` that exposes width, height, pixel type, bit depth,
scanline memory, and the pitch between scanlines. Two adapters are provided,
one on top of OpenCV and one on top of Pillow, and ``AutoDecoder`` routes each
format to the adapter that can read it.

Generic 8-bit bitmaps are stored in the host's native bitmap order: BGR(A) on
little-endian hosts, RGB(A) otherwise. Rows are padded to 4-byte alignment, so
the pitch may exceed ``width * bytes_per_pixel``.
"""

import io
import logging
import sys
from typing import Callable, Optional

import numpy as np
import cv2
from PIL import Image, UnidentifiedImageError

from .errors import DecodeError, UnsupportedFormatError
from .formats import ImageFormat, PixelType

# Dimension limits are enforced by the import session after decoding; Pillow's
# own decompression bomb check would reject valid 16K textures first.
Image.MAX_IMAGE_PIXELS = None

logger = logging.getLogger("texture_loader.decoders")

_SCANLINE_ALIGNMENT = 4
_LITTLE_ENDIAN = sys.byteorder == "little"


class DecodedImage:
    """Decoded bitmap whose scanline memory is owned until ``release()``.

    ``release()`` runs the decoder's release callback exactly once; later calls
    are no-ops. Reading scanlines after release raises ``RuntimeError``.
    """

    def __init__(
        self,
        width: int,
        height: int,
        pixel_type: PixelType,
        bits_per_pixel: int,
        bits,
        pitch: int,
        release_callback: Optional[Callable[[], None]] = None,
        source_format: ImageFormat = ImageFormat.UNKNOWN,
    ):
        if width < 1 or height < 1:
            raise DecodeError(f"Decoded image has invalid dimensions {width}x{height}")
        if isinstance(bits, np.ndarray):
            buf = np.ascontiguousarray(bits).reshape(-1).view(np.uint8)
        else:
            buf = np.frombuffer(bits, dtype=np.uint8)
        min_row_bytes = (width * bits_per_pixel + 7) // 8
        if pitch < min_row_bytes:
            raise DecodeError(
                f"Scanline pitch {pitch} smaller than row size {min_row_bytes}"
            )
        required = pitch * (height - 1) + min_row_bytes
        if buf.size < required:
            raise DecodeError(
                f"Scanline buffer too small: {buf.size} bytes < {required} required"
            )
        self.width = int(width)
        self.height = int(height)
        self.pixel_type = pixel_type
        self.bits_per_pixel = int(bits_per_pixel)
        self.pitch = int(pitch)
        self.source_format = source_format
        self._bits = buf
        self._release_callback = release_callback
        self._released = False

    @property
    def is_released(self) -> bool:
        return self._released

    @property
    def nbytes(self) -> int:
        """Size of the scanline buffer in bytes."""
        self._check_alive()
        return self._bits.size

    def check_row_bytes(self, row_bytes: int) -> None:
        """Raise UnsupportedFormatError unless every row holds ``row_bytes`` bytes."""
        required = self.pitch * (self.height - 1) + row_bytes
        if row_bytes > self.pitch or required > self.nbytes:
            raise UnsupportedFormatError(
                f"{self.pixel_type.value} at {self.bits_per_pixel}bpp needs {row_bytes} "
                f"bytes per row; pitch is {self.pitch} and the scanline buffer holds "
                f"{self.nbytes} bytes"
            )

    @property
    def bits(self) -> np.ndarray:
        """Flat read-only view of the scanline memory."""
        self._check_alive()
        view = self._bits.view()
        view.flags.writeable = False
        return view

    def scanline(self, row: int) -> np.ndarray:
        """Return the ``pitch`` bytes of one scanline (fewer for the last row)."""
        self._check_alive()
        if not 0 <= row < self.height:
            raise IndexError(f"scanline {row} out of range [0, {self.height})")
        start = row * self.pitch
        view = self._bits[start:start + self.pitch]
        view.flags.writeable = False
        return view

    def scanlines(self, start: int, stop: int, row_bytes: int) -> np.ndarray:
        """Return rows ``[start, stop)`` as an (n, row_bytes) strided view."""
        self._check_alive()
        if not 0 <= start <= stop <= self.height:
            raise IndexError(f"scanline range [{start}, {stop}) out of bounds")
        if row_bytes > self.pitch:
            raise ValueError(f"row_bytes {row_bytes} exceeds pitch {self.pitch}")
        view = np.lib.stride_tricks.as_strided(
            self._bits[start * self.pitch:],
            shape=(stop - start, row_bytes),
            strides=(self.pitch, 1),
            writeable=False,
        )
        return view

    def release(self) -> None:
        if self._released:
            return
        self._released = True
        self._bits = None
        callback, self._release_callback = self._release_callback, None
        if callback is not None:
            callback()
        logger.debug("Released decoded bitmap %dx%d", self.width, self.height)

    def _check_alive(self) -> None:
        if self._released:
            raise RuntimeError("Decoded bitmap has already been released")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.release()
        return False

    def __repr__(self) -> str:
        state = "released" if self._released else f"pitch={self.pitch}"
        return (
            f"DecodedImage({self.width}x{self.height}, {self.pixel_type.value}, "
            f"{self.bits_per_pixel}bpp, {state})"
        )


def pack_scanlines(
    pixels: np.ndarray,
    pixel_type: PixelType,
    bits_per_pixel: int,
    alignment: int = _SCANLINE_ALIGNMENT,
    source_format: ImageFormat = ImageFormat.UNKNOWN,
) -> DecodedImage:
    """Copy an (H, W[, C]) array into aligned scanline memory."""
    if pixels.ndim not in (2, 3):
        raise DecodeError(f"Expected 2D or 3D pixel array, got shape {pixels.shape}")
    height, width = pixels.shape[:2]
    row_bytes = (width * bits_per_pixel + 7) // 8
    pitch = -(-row_bytes // alignment) * alignment if alignment > 1 else row_bytes
    raw = np.ascontiguousarray(pixels).view(np.uint8).reshape(height, -1)
    if raw.shape[1] != row_bytes:
        raise DecodeError(
            f"Pixel array row size {raw.shape[1]} does not match "
            f"{width}px at {bits_per_pixel}bpp"
        )
    bits = np.zeros((height, pitch), dtype=np.uint8)
    bits[:, :row_bytes] = raw
    return DecodedImage(
        width, height, pixel_type, bits_per_pixel, bits.reshape(-1), pitch,
        source_format=source_format,
    )


def _native_bitmap_order(rgb: np.ndarray) -> np.ndarray:
    """Reorder an RGB(A) uint8 array into the host's native bitmap order."""
    if not _LITTLE_ENDIAN:
        return rgb
    if rgb.shape[2] == 4:
        return rgb[:, :, [2, 1, 0, 3]]
    return rgb[:, :, ::-1]


def detect_format(data: bytes) -> ImageFormat:
    """Identify an encoded image from its leading bytes."""
    head = bytes(data[:16])
    if head.startswith(b"\x89PNG\r\n\x1a\n"):
        return ImageFormat.PNG
    if head.startswith(b"\xff\xd8\xff"):
        return ImageFormat.JPEG
    if head.startswith(b"BM"):
        return ImageFormat.BMP
    if head.startswith((b"GIF87a", b"GIF89a")):
        return ImageFormat.GIF
    if head.startswith((b"II*\x00", b"MM\x00*")):
        return ImageFormat.TIFF
    if head.startswith(b"RIFF") and head[8:12] == b"WEBP":
        return ImageFormat.WEBP
    if head.startswith(b"DDS "):
        return ImageFormat.DDS
    if head.startswith((b"#?RADIANCE", b"#?RGBE")):
        return ImageFormat.HDR
    if head.startswith(b"\x76\x2f\x31\x01"):
        return ImageFormat.EXR
    if head.startswith(b"8BPS"):
        return ImageFormat.PSD
    if head.startswith(b"\x00\x00\x00\x0cjP  \r\n\x87\n"):
        return ImageFormat.JP2
    if head.startswith(b"\xff\x4f\xff\x51"):
        return ImageFormat.J2K
    if head.startswith(b"\x00\x00\x01\x00"):
        return ImageFormat.ICO
    if len(head) >= 3 and head[2:3] in (b"\n", b"\r", b" ", b"\t"):
        if head[:2] in (b"PF", b"Pf"):
            return ImageFormat.PFM
        if head[:2] in (b"P1", b"P4"):
            return ImageFormat.PBM
        if head[:2] in (b"P2", b"P5"):
            return ImageFormat.PGM
        if head[:2] in (b"P3", b"P6"):
            return ImageFormat.PPM
    return ImageFormat.UNKNOWN


class BaseDecoder:
    """Common interface for decoder adapters."""

    name = "base"
    supported_formats = frozenset()

    def supports(self, image_format: ImageFormat) -> bool:
        return image_format in self.supported_formats

    def decode(self, data: bytes, image_format: ImageFormat) -> DecodedImage:
        raise NotImplementedError


class OpenCVDecoder(BaseDecoder):
    """Decode through ``cv2.imdecode`` keeping the native bit depth."""

    name = "opencv"
    supported_formats = frozenset({
        ImageFormat.BMP, ImageFormat.JPEG, ImageFormat.PNG, ImageFormat.TIFF,
        ImageFormat.WEBP, ImageFormat.HDR, ImageFormat.EXR, ImageFormat.PFM,
        ImageFormat.JP2, ImageFormat.J2K, ImageFormat.PBM, ImageFormat.PGM,
        ImageFormat.PPM,
    })

    def decode(self, data: bytes, image_format: ImageFormat) -> DecodedImage:
        buf = np.frombuffer(data, dtype=np.uint8)
        try:
            arr = cv2.imdecode(buf, cv2.IMREAD_UNCHANGED)
        except cv2.error as exc:
            raise DecodeError(f"OpenCV failed to decode {image_format.value} data: {exc}") from exc
        if arr is None:
            raise DecodeError(f"OpenCV could not decode {image_format.value} data")

        channels = 1 if arr.ndim == 2 else arr.shape[2]
        logger.debug(
            "cv2 decoded %s: shape=%s dtype=%s", image_format.value, arr.shape, arr.dtype
        )
        if arr.dtype == np.uint8:
            if channels == 1:
                arr = cv2.cvtColor(arr, cv2.COLOR_GRAY2BGR)
            elif channels == 2:
                arr = cv2.cvtColor(np.ascontiguousarray(arr[:, :, 0]), cv2.COLOR_GRAY2BGR)
            if not _LITTLE_ENDIAN:
                arr = arr[:, :, [2, 1, 0, 3]] if arr.shape[2] == 4 else arr[:, :, ::-1]
            bpp = 8 * arr.shape[2]
            return pack_scanlines(arr, PixelType.BITMAP, bpp, source_format=image_format)

        if arr.dtype == np.uint16:
            if channels == 1:
                return pack_scanlines(arr, PixelType.UINT16, 16, source_format=image_format)
            if channels == 3:
                rgb = cv2.cvtColor(arr, cv2.COLOR_BGR2RGB)
                return pack_scanlines(rgb, PixelType.RGB16, 48, source_format=image_format)
            if channels == 4:
                rgba = cv2.cvtColor(arr, cv2.COLOR_BGRA2RGBA)
                return pack_scanlines(rgba, PixelType.RGBA16, 64, source_format=image_format)

        if arr.dtype == np.int16 and channels == 1:
            return pack_scanlines(arr, PixelType.INT16, 16, source_format=image_format)

        if arr.dtype == np.float32:
            if channels == 1:
                return pack_scanlines(arr, PixelType.FLOAT, 32, source_format=image_format)
            if channels == 3:
                rgb = cv2.cvtColor(arr, cv2.COLOR_BGR2RGB)
                return pack_scanlines(rgb, PixelType.RGBF, 96, source_format=image_format)
            if channels == 4:
                rgba = cv2.cvtColor(arr, cv2.COLOR_BGRA2RGBA)
                return pack_scanlines(rgba, PixelType.RGBAF, 128, source_format=image_format)

        if arr.dtype == np.float64 and channels == 1:
            return pack_scanlines(arr, PixelType.DOUBLE, 64, source_format=image_format)
        if arr.dtype == np.int32 and channels == 1:
            return pack_scanlines(arr, PixelType.INT32, 32, source_format=image_format)

        raise UnsupportedFormatError(
            f"Decoded {image_format.value} pixel data not supported: "
            f"dtype={arr.dtype}, channels={channels}"
        )


_PILLOW_FORMAT_NAMES = {
    ImageFormat.GIF: "GIF",
    ImageFormat.TARGA: "TGA",
    ImageFormat.DDS: "DDS",
    ImageFormat.ICO: "ICO",
    ImageFormat.PSD: "PSD",
    ImageFormat.BMP: "BMP",
    ImageFormat.JPEG: "JPEG",
    ImageFormat.PNG: "PNG",
    ImageFormat.TIFF: "TIFF",
    ImageFormat.WEBP: "WEBP",
    ImageFormat.PPM: "PPM",
    ImageFormat.PGM: "PPM",
    ImageFormat.PBM: "PPM",
}


def _infer_integer_mode_bit_depth(img: Image.Image) -> int:
    """Infer bit depth for Pillow mode ``I`` images from metadata."""
    bits_info = img.info.get("bits")
    if isinstance(bits_info, int) and bits_info > 0:
        return bits_info
    tag_v2 = getattr(img, "tag_v2", None)
    if tag_v2 is not None:
        bits_tag = tag_v2.get(258)
        if isinstance(bits_tag, tuple) and bits_tag:
            bits_tag = bits_tag[0]
        if isinstance(bits_tag, int) and bits_tag > 0:
            return bits_tag
    # PNG opens 16-bit grayscale as mode I without a bits entry.
    if img.format == "PNG":
        return 16
    return 32


class PillowDecoder(BaseDecoder):
    """Decode through Pillow for formats OpenCV does not read."""

    name = "pillow"
    supported_formats = frozenset(_PILLOW_FORMAT_NAMES)

    def decode(self, data: bytes, image_format: ImageFormat) -> DecodedImage:
        formats = None
        if image_format in _PILLOW_FORMAT_NAMES:
            formats = [_PILLOW_FORMAT_NAMES[image_format]]
        try:
            with Image.open(io.BytesIO(data), formats=formats) as img:
                img.load()
                return self._from_pillow(img, image_format)
        except (UnidentifiedImageError, OSError, SyntaxError) as exc:
            raise DecodeError(
                f"Pillow could not decode {image_format.value} data: {exc}"
            ) from exc

    def _from_pillow(self, img: Image.Image, image_format: ImageFormat) -> DecodedImage:
        mode = img.mode
        logger.debug("Pillow decoded %s: mode=%s size=%s", image_format.value, mode, img.size)

        if mode in ("I;16", "I;16L", "I;16B", "I;16N"):
            arr = np.asarray(img).astype(np.uint16)
            return pack_scanlines(arr, PixelType.UINT16, 16, source_format=image_format)

        if mode == "I":
            arr = np.asarray(img)
            if _infer_integer_mode_bit_depth(img) <= 16:
                return pack_scanlines(
                    arr.astype(np.uint16), PixelType.UINT16, 16, source_format=image_format
                )
            return pack_scanlines(
                arr.astype(np.int32), PixelType.INT32, 32, source_format=image_format
            )

        if mode == "F":
            arr = np.asarray(img, dtype=np.float32)
            return pack_scanlines(arr, PixelType.FLOAT, 32, source_format=image_format)

        if mode == "RGBA":
            arr = np.asarray(img, dtype=np.uint8)
            return pack_scanlines(
                _native_bitmap_order(arr), PixelType.BITMAP, 32, source_format=image_format
            )
        if mode == "RGB":
            arr = np.asarray(img, dtype=np.uint8)
            return pack_scanlines(
                _native_bitmap_order(arr), PixelType.BITMAP, 24, source_format=image_format
            )

        has_alpha = mode in ("LA", "PA", "RGBa", "La") or (
            mode == "P" and "transparency" in img.info
        )
        target = "RGBA" if has_alpha else "RGB"
        logger.debug("Converting Pillow mode %s -> %s", mode, target)
        with img.convert(target) as converted:
            arr = np.asarray(converted, dtype=np.uint8)
        return pack_scanlines(
            _native_bitmap_order(arr), PixelType.BITMAP, 8 * arr.shape[2],
            source_format=image_format,
        )


class AutoDecoder(BaseDecoder):
    """Detect the format (unless hinted) and route to a capable adapter."""

    name = "auto"

    def __init__(self, decoders=None):
        self.decoders = list(decoders) if decoders is not None else [
            OpenCVDecoder(), PillowDecoder(),
        ]
        self.supported_formats = frozenset().union(
            *(d.supported_formats for d in self.decoders)
        )

    def decoder_for_format(self, image_format: ImageFormat) -> BaseDecoder:
        for decoder in self.decoders:
            if decoder.supports(image_format):
                return decoder
        raise DecodeError(f"No decoder available for format {image_format.value}")

    def decode(self, data: bytes, image_format: ImageFormat = ImageFormat.UNKNOWN) -> DecodedImage:
        if image_format is ImageFormat.UNKNOWN:
            image_format = detect_format(data)
        if image_format is ImageFormat.UNKNOWN:
            raise DecodeError(
                "Cannot automatically determine the image format. "
                "Consider explicitly specifying the image format."
            )
        decoder = self.decoder_for_format(image_format)
        logger.debug("Decoding %d bytes as %s with %s", len(data), image_format.value, decoder.name)
        return decoder.decode(data, image_format)
