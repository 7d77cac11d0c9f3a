"""Core utilities -- re-exports all public symbols for convenience."""

from .errors import (
    TextureLoadError,
    DecodeError,
    UnsupportedFormatError,
    DimensionTooLargeError,
    InvalidArgumentError,
)
from .formats import (
    ImageFormat,
    PixelType,
    ElementKind,
    TextureFormat,
    OutputLayout,
    resolve_layout,
    layout_for_texture_format,
    source_bytes_per_pixel,
)
from .mipchain import (
    MAX_TEXTURE_DIMENSION,
    MAX_MIPMAP_COUNT,
    MipChain,
    MipLevel,
    calculate_mipmap_count,
    full_mipmap_count,
    mip_dimensions,
)
from .decoders import (
    DecodedImage,
    BaseDecoder,
    OpenCVDecoder,
    PillowDecoder,
    AutoDecoder,
    detect_format,
    pack_scanlines,
)
from .texture import TextureImage
from .jobs import JobHandle, JobScheduler, get_default_scheduler, shutdown_default_scheduler
from .logging import setup_logging

__all__ = [
    "TextureLoadError", "DecodeError", "UnsupportedFormatError",
    "DimensionTooLargeError", "InvalidArgumentError",
    "ImageFormat", "PixelType", "ElementKind", "TextureFormat", "OutputLayout",
    "resolve_layout", "layout_for_texture_format", "source_bytes_per_pixel",
    "MAX_TEXTURE_DIMENSION", "MAX_MIPMAP_COUNT", "MipChain", "MipLevel",
    "calculate_mipmap_count", "full_mipmap_count", "mip_dimensions",
    "DecodedImage", "BaseDecoder", "OpenCVDecoder", "PillowDecoder", "AutoDecoder",
    "detect_format", "pack_scanlines",
    "TextureImage",
    "JobHandle", "JobScheduler", "get_default_scheduler", "shutdown_default_scheduler",
    "setup_logging",
]
