"""Pixel format catalog.

Maps a decoded pixel type and bit depth to the layout of the texture that
receives it. Everything downstream (buffer sizing, row transfer, mip filtering)
reads channel counts and element widths from the ``OutputLayout`` returned here.
"""

import logging
from dataclasses import dataclass
from enum import Enum

import numpy as np

from .errors import UnsupportedFormatError

logger = logging.getLogger("texture_loader.formats")


class ImageFormat(Enum):
    """Encoded image container formats understood by the decoders."""

    UNKNOWN = "unknown"
    BMP = "bmp"
    ICO = "ico"
    JPEG = "jpeg"
    PBM = "pbm"
    PGM = "pgm"
    PPM = "ppm"
    PNG = "png"
    TARGA = "targa"
    TIFF = "tiff"
    PSD = "psd"
    DDS = "dds"
    GIF = "gif"
    HDR = "hdr"
    EXR = "exr"
    J2K = "j2k"
    JP2 = "jp2"
    PFM = "pfm"
    WEBP = "webp"


class PixelType(Enum):
    """Enumerate decoder pixel type tags."""

    UNKNOWN = "unknown"
    BITMAP = "bitmap"
    UINT16 = "uint16"
    INT16 = "int16"
    UINT32 = "uint32"
    INT32 = "int32"
    FLOAT = "float"
    DOUBLE = "double"
    RGB16 = "rgb16"
    RGBA16 = "rgba16"
    RGBF = "rgbf"
    RGBAF = "rgbaf"


class ElementKind(Enum):
    """Numeric kind of a single channel element."""

    U8 = "u8"
    U16 = "u16"
    F32 = "f32"

    @property
    def size(self) -> int:
        return _ELEMENT_SIZES[self]

    @property
    def dtype(self) -> np.dtype:
        return _ELEMENT_DTYPES[self]


_ELEMENT_SIZES = {ElementKind.U8: 1, ElementKind.U16: 2, ElementKind.F32: 4}
_ELEMENT_DTYPES = {
    ElementKind.U8: np.dtype(np.uint8),
    ElementKind.U16: np.dtype(np.uint16),
    ElementKind.F32: np.dtype(np.float32),
}


class TextureFormat(Enum):
    """Uncompressed GPU texture formats produced by the loader."""

    RGB24 = "rgb24"
    RGBA32 = "rgba32"
    R16 = "r16"
    RGB48 = "rgb48"
    RGBA64 = "rgba64"
    RFLOAT = "rfloat"
    RGBAFLOAT = "rgbafloat"


@dataclass(frozen=True)
class OutputLayout:
    """Per-pixel layout of a destination texture."""

    texture_format: TextureFormat
    channel_count: int
    element_kind: ElementKind

    @property
    def element_size(self) -> int:
        return self.element_kind.size

    @property
    def bytes_per_pixel(self) -> int:
        return self.channel_count * self.element_kind.size

    @property
    def dtype(self) -> np.dtype:
        return self.element_kind.dtype


_BITMAP_LAYOUTS = {
    24: OutputLayout(TextureFormat.RGB24, 3, ElementKind.U8),
    32: OutputLayout(TextureFormat.RGBA32, 4, ElementKind.U8),
}

# Non-bitmap types map independently of the reported depth.
_TYPED_LAYOUTS = {
    PixelType.INT16: OutputLayout(TextureFormat.R16, 1, ElementKind.U16),
    PixelType.UINT16: OutputLayout(TextureFormat.R16, 1, ElementKind.U16),
    PixelType.FLOAT: OutputLayout(TextureFormat.RFLOAT, 1, ElementKind.F32),
    PixelType.RGB16: OutputLayout(TextureFormat.RGB48, 3, ElementKind.U16),
    PixelType.RGBA16: OutputLayout(TextureFormat.RGBA64, 4, ElementKind.U16),
    # RGBF is widened to four channels; alpha is filled with 1.0 on transfer.
    PixelType.RGBF: OutputLayout(TextureFormat.RGBAFLOAT, 4, ElementKind.F32),
    PixelType.RGBAF: OutputLayout(TextureFormat.RGBAFLOAT, 4, ElementKind.F32),
}

_LAYOUTS_BY_FORMAT = {
    layout.texture_format: layout
    for layout in list(_BITMAP_LAYOUTS.values()) + list(_TYPED_LAYOUTS.values())
}

# Bytes per pixel in the decoder's scanline memory.
_SOURCE_PIXEL_SIZES = {
    PixelType.INT16: 2,
    PixelType.UINT16: 2,
    PixelType.FLOAT: 4,
    PixelType.RGB16: 6,
    PixelType.RGBA16: 8,
    PixelType.RGBF: 12,
    PixelType.RGBAF: 16,
}


def resolve_layout(pixel_type: PixelType, bits_per_pixel: int) -> OutputLayout:
    """Return the output layout for a decoded pixel type and bit depth.

    Raises UnsupportedFormatError for any combination not in the catalog.
    """
    if pixel_type is PixelType.BITMAP:
        layout = _BITMAP_LAYOUTS.get(bits_per_pixel)
        if layout is None:
            raise UnsupportedFormatError(
                f"Bitmap bit depth not supported: {bits_per_pixel}"
            )
        return layout

    layout = _TYPED_LAYOUTS.get(pixel_type)
    if layout is None:
        raise UnsupportedFormatError(
            f"Image type not supported: {getattr(pixel_type, 'value', pixel_type)} "
            f"({bits_per_pixel} bpp)"
        )
    logger.debug(
        "Resolved %s/%dbpp to %s", pixel_type.value, bits_per_pixel,
        layout.texture_format.value,
    )
    return layout


def layout_for_texture_format(texture_format: TextureFormat) -> OutputLayout:
    """Return the layout backing a texture format."""
    return _LAYOUTS_BY_FORMAT[texture_format]


def source_bytes_per_pixel(pixel_type: PixelType, bits_per_pixel: int) -> int:
    """Return the size of one source pixel in the decoder's scanline memory."""
    if pixel_type is PixelType.BITMAP:
        # Resolve first so unsupported depths fail the same way.
        return resolve_layout(pixel_type, bits_per_pixel).bytes_per_pixel
    size = _SOURCE_PIXEL_SIZES.get(pixel_type)
    if size is None:
        raise UnsupportedFormatError(
            f"Image type not supported: {pixel_type.value} ({bits_per_pixel} bpp)"
        )
    return size
