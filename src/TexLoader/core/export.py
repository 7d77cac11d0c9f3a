"""Write imported textures to disk: per-level PNGs and uncompressed DDS."""

import logging
import os
import struct
import threading
from pathlib import Path
from typing import List

import numpy as np
import cv2
from PIL import Image

from .errors import UnsupportedFormatError
from .formats import ElementKind, TextureFormat
from .texture import TextureImage

logger = logging.getLogger("texture_loader.export")

DDSD_CAPS = 0x1
DDSD_HEIGHT = 0x2
DDSD_WIDTH = 0x4
DDSD_PITCH = 0x8
DDSD_PIXELFORMAT = 0x1000
DDSD_MIPMAPCOUNT = 0x20000
DDPF_FOURCC = 0x4
DDPF_RGB = 0x40
DDSCAPS_COMPLEX = 0x8
DDSCAPS_TEXTURE = 0x1000
DDSCAPS_MIPMAP = 0x400000
D3D10_RESOURCE_DIMENSION_TEXTURE2D = 3

# (linear, sRGB) DXGI codes per texture format.
_DXGI_FORMATS = {
    TextureFormat.RGBA32: (28, 29),      # R8G8B8A8_UNORM(_SRGB)
    TextureFormat.R16: (56, 56),         # R16_UNORM
    TextureFormat.RGBA64: (11, 11),      # R16G16B16A16_UNORM
    TextureFormat.RFLOAT: (41, 41),      # R32_FLOAT
    TextureFormat.RGBAFLOAT: (2, 2),     # R32G32B32A32_FLOAT
}


def _tmp_path_for(path: str) -> str:
    ext = Path(path).suffix
    return f"{path}.tmp.{os.getpid()}.{threading.get_ident()}{ext}"


def _atomic_write(path: str, writer) -> None:
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    tmp_path = _tmp_path_for(path)
    try:
        writer(tmp_path)
        os.replace(tmp_path, path)
    finally:
        if os.path.exists(tmp_path):
            try:
                os.remove(tmp_path)
            except OSError:
                pass


def _to_uint16(pixels: np.ndarray) -> np.ndarray:
    if pixels.dtype == np.uint16:
        return pixels
    # Float levels are stored as 16-bit PNG in [0, 1].
    return np.round(np.clip(pixels, 0.0, 1.0) * 65535.0).astype(np.uint16)


def save_level_png(texture: TextureImage, level: int, path: str) -> None:
    """Save one mip level as PNG (8-bit via Pillow, 16-bit via OpenCV)."""
    pixels = texture.level_pixels(level)
    channels = pixels.shape[2]

    if texture.layout.element_kind is ElementKind.U8:
        def _write(tmp):
            with Image.fromarray(np.ascontiguousarray(pixels)) as img:
                img.save(tmp, format="PNG")
    else:
        arr16 = _to_uint16(pixels)
        if channels == 1:
            png_data = arr16[:, :, 0]
        elif channels == 4:
            png_data = arr16[:, :, [2, 1, 0, 3]]  # RGBA -> BGRA
        else:
            png_data = arr16[:, :, ::-1]  # RGB -> BGR

        def _write(tmp):
            if not cv2.imwrite(tmp, np.ascontiguousarray(png_data)):
                raise IOError(f"cv2.imwrite failed for 16-bit PNG: {path}")

    _atomic_write(path, _write)
    logger.debug("Saved mip %d: %s", level, path)


def save_mip_levels(texture: TextureImage, out_dir: str, stem: str) -> List[dict]:
    """Save every level as ``{stem}_mip{n}.png`` and return their descriptors."""
    results = []
    for info in texture.chain:
        path = os.path.join(out_dir, f"{stem}_mip{info.level}.png")
        save_level_png(texture, info.level, path)
        results.append({
            "level": info.level, "width": info.width,
            "height": info.height, "path": path,
        })
    return results


def supports_dds(texture_format: TextureFormat) -> bool:
    """Return True if ``write_dds`` can store this format uncompressed."""
    return texture_format is TextureFormat.RGB24 or texture_format in _DXGI_FORMATS


def build_dds_header(texture: TextureImage) -> bytes:
    """Build the DDS magic, header and (when needed) DX10 header."""
    fmt = texture.texture_format
    layout = texture.layout
    mip_count = texture.mip_count

    header = bytearray(124)
    flags = DDSD_CAPS | DDSD_HEIGHT | DDSD_WIDTH | DDSD_PIXELFORMAT | DDSD_PITCH
    caps = DDSCAPS_TEXTURE
    if mip_count > 1:
        flags |= DDSD_MIPMAPCOUNT
        caps |= DDSCAPS_COMPLEX | DDSCAPS_MIPMAP

    struct.pack_into("<I", header, 0, 124)
    struct.pack_into("<I", header, 4, flags)
    struct.pack_into("<I", header, 8, texture.height)
    struct.pack_into("<I", header, 12, texture.width)
    struct.pack_into("<I", header, 16, texture.width * layout.bytes_per_pixel)
    struct.pack_into("<I", header, 24, mip_count)
    struct.pack_into("<I", header, 72, 32)
    struct.pack_into("<I", header, 104, caps)

    dx10 = b""
    if fmt is TextureFormat.RGB24:
        # Legacy uncompressed RGB: bytes R, G, B in memory.
        struct.pack_into("<I", header, 76, DDPF_RGB)
        struct.pack_into("<5I", header, 84, 24, 0x000000FF, 0x0000FF00, 0x00FF0000, 0)
    elif fmt in _DXGI_FORMATS:
        linear_code, srgb_code = _DXGI_FORMATS[fmt]
        dxgi = linear_code if texture.linear else srgb_code
        struct.pack_into("<I", header, 76, DDPF_FOURCC)
        header[80:84] = b"DX10"
        dx10 = struct.pack("<5I", dxgi, D3D10_RESOURCE_DIMENSION_TEXTURE2D, 0, 1, 0)
    else:
        raise UnsupportedFormatError(f"No DDS pixel format for {fmt.value}")

    return b"DDS " + bytes(header) + dx10


def write_dds(texture: TextureImage, path: str) -> None:
    """Write the packed mip chain as an uncompressed DDS file."""
    head = build_dds_header(texture)
    payload = texture.raw_data

    def _write(tmp):
        with open(tmp, "wb") as f:
            f.write(head)
            f.write(payload.tobytes())

    _atomic_write(path, _write)
    logger.debug(
        "Wrote DDS %s (%s, %d levels, %d bytes)",
        path, texture.texture_format.value, texture.mip_count, len(head) + payload.size,
    )
