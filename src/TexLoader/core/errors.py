"""Exception taxonomy for texture loading."""


class TextureLoadError(RuntimeError):
    """Base class for all texture import failures."""


class DecodeError(TextureLoadError):
    """Input bytes are malformed or their format cannot be determined."""


class UnsupportedFormatError(TextureLoadError):
    """Decoded pixel type/bit depth has no output layout."""


class DimensionTooLargeError(TextureLoadError):
    """Decoded width or height exceeds the maximum texture dimension."""


class InvalidArgumentError(TextureLoadError, ValueError):
    """Input data is empty or otherwise unusable before decoding."""
