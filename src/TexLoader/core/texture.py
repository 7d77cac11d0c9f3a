"""CPU-side texture image that receives imported pixel data."""

import logging
from typing import Optional

import numpy as np

from .formats import OutputLayout
from .mipchain import MipChain, MipLevel

logger = logging.getLogger("texture_loader.texture")


class TextureImage:
    """Texture with a tightly packed mip chain in one byte buffer.

    Stands in for a GPU texture object: the loader writes into ``raw_data`` /
    ``level_data()`` and the caller invokes ``apply()`` once all writes are
    complete.
    """

    def __init__(self, width: int, height: int, layout: OutputLayout,
                 mip_count: int = 1, linear: bool = False):
        self.linear = bool(linear)
        self._allocate(width, height, layout, mip_count)

    def _allocate(self, width: int, height: int, layout: OutputLayout, mip_count: int):
        self.width = int(width)
        self.height = int(height)
        self.layout = layout
        self.chain = MipChain(self.width, self.height, mip_count, layout.bytes_per_pixel)
        self._data: Optional[np.ndarray] = np.zeros(self.chain.total_size, dtype=np.uint8)
        self._applied = False
        self._readable = True
        logger.debug(
            "Allocated %s texture %dx%d with %d mip levels (%d bytes)",
            layout.texture_format.value, self.width, self.height,
            self.chain.mip_count, self.chain.total_size,
        )

    def reinitialize(self, width: int, height: int, layout: OutputLayout,
                     mip_count: int = 1) -> None:
        """Resize and reformat the texture, discarding existing contents."""
        self._allocate(width, height, layout, mip_count)

    @property
    def texture_format(self):
        return self.layout.texture_format

    @property
    def mip_count(self) -> int:
        return self.chain.mip_count

    @property
    def is_applied(self) -> bool:
        return self._applied

    @property
    def is_readable(self) -> bool:
        return self._readable

    @property
    def raw_data(self) -> np.ndarray:
        """Whole mip chain as a flat uint8 array."""
        if self._data is None:
            raise RuntimeError("Texture is not readable; pixel data was released on apply()")
        return self._data

    def level(self, level: int) -> MipLevel:
        return self.chain[level]

    def level_data(self, level: int) -> np.ndarray:
        """Flat uint8 view over one mip level."""
        info = self.chain[level]
        return self.raw_data[info.offset:info.offset + info.size]

    def level_pixels(self, level: int) -> np.ndarray:
        """Typed (H, W, C) view over one mip level."""
        info = self.chain[level]
        return self.level_data(level).view(self.layout.dtype).reshape(
            info.height, info.width, self.layout.channel_count
        )

    def apply(self, mark_non_readable: bool = False) -> None:
        """Finalize pixel data; optionally drop the CPU copy afterwards."""
        self._applied = True
        if mark_non_readable:
            self._data = None
            self._readable = False
        logger.debug(
            "Applied texture %dx%d (%s, readable=%s)",
            self.width, self.height, self.layout.texture_format.value, self._readable,
        )

    def __repr__(self) -> str:
        return (
            f"TextureImage({self.width}x{self.height}, {self.layout.texture_format.value}, "
            f"mips={self.mip_count}, linear={self.linear})"
        )
