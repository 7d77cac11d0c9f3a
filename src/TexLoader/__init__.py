"""Provide package metadata and the public loading API for `TexLoader`."""

import logging as _logging

from .config import LoaderConfig, LoaderSettings
from .core.errors import (
    TextureLoadError,
    DecodeError,
    UnsupportedFormatError,
    DimensionTooLargeError,
    InvalidArgumentError,
)
from .core.formats import ImageFormat, TextureFormat
from .core.texture import TextureImage
from .importer import ImageImportSession, SessionState
from .loader import (
    LoadDiagnostic,
    load_image,
    load_image_async,
    create_from_image,
    create_from_image_async,
)

__version__ = "1.0.0"
_logging.getLogger("texture_loader").addHandler(_logging.NullHandler())

__all__ = [
    "__version__",
    "LoaderConfig", "LoaderSettings",
    "TextureLoadError", "DecodeError", "UnsupportedFormatError",
    "DimensionTooLargeError", "InvalidArgumentError",
    "ImageFormat", "TextureFormat", "TextureImage",
    "ImageImportSession", "SessionState",
    "LoadDiagnostic", "load_image", "load_image_async",
    "create_from_image", "create_from_image_async",
]
