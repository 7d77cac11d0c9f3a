"""Copy decoded scanlines into level 0 of a texture buffer.

Each unit of work handles a band of rows and touches only the level-0 byte
range. The decoder's pitch is honored on the source side; the destination is
tightly packed at ``width * bytes_per_pixel`` per row.
"""

import logging
import sys
from enum import Enum
from typing import List

import numpy as np

from ..core.decoders import DecodedImage
from ..core.errors import UnsupportedFormatError
from ..core.formats import OutputLayout, PixelType, source_bytes_per_pixel
from ..core.jobs import Unit

logger = logging.getLogger("texture_loader.transfer")

_LITTLE_ENDIAN = sys.byteorder == "little"
_FLOAT_ONE_BYTES = np.frombuffer(np.float32(1.0).tobytes(), dtype=np.uint8)


class TransferKind(Enum):
    """How a source row maps onto a destination row."""

    COPY = "copy"
    SWAP_RED_BLUE = "swap_red_blue"
    EXPAND_ALPHA = "expand_alpha"


_COPY_TYPES = {
    PixelType.UINT16, PixelType.INT16, PixelType.FLOAT,
    PixelType.RGB16, PixelType.RGBA16, PixelType.RGBAF,
}


def select_transfer_kind(pixel_type: PixelType, bits_per_pixel: int) -> TransferKind:
    """Pick the row transfer for a source pixel type."""
    if pixel_type is PixelType.BITMAP and bits_per_pixel in (24, 32):
        # Native bitmaps are BGR(A) in memory on little-endian hosts.
        return TransferKind.SWAP_RED_BLUE if _LITTLE_ENDIAN else TransferKind.COPY
    if pixel_type is PixelType.RGBF:
        return TransferKind.EXPAND_ALPHA
    if pixel_type in _COPY_TYPES:
        return TransferKind.COPY
    raise UnsupportedFormatError(
        f"No row transfer for {pixel_type.value} ({bits_per_pixel} bpp)"
    )


class RowTransferStage:
    """Fill level 0 of ``destination`` from a decoded bitmap."""

    def __init__(self, image: DecodedImage, layout: OutputLayout,
                 destination: np.ndarray, batch_rows: int = 16):
        self.image = image
        self.layout = layout
        self.kind = select_transfer_kind(image.pixel_type, image.bits_per_pixel)
        self.width = image.width
        self.height = image.height
        self.src_pixel_size = source_bytes_per_pixel(image.pixel_type, image.bits_per_pixel)
        self.src_row_bytes = self.width * self.src_pixel_size
        self.dst_row_bytes = self.width * layout.bytes_per_pixel
        self.batch_rows = max(1, int(batch_rows))

        expected = self.dst_row_bytes * self.height
        if destination.dtype != np.uint8 or destination.size < expected:
            raise ValueError(
                f"Level-0 destination must be >= {expected} uint8 bytes, "
                f"got {destination.size} {destination.dtype}"
            )
        image.check_row_bytes(self.src_row_bytes)
        self._rows = destination[:expected].reshape(self.height, self.dst_row_bytes)

    def transfer_rows(self, start: int, stop: int) -> None:
        """Transfer scanlines ``[start, stop)``."""
        src = self.image.scanlines(start, stop, self.src_row_bytes)
        dst = self._rows[start:stop]
        n = stop - start

        if self.kind is TransferKind.COPY:
            dst[:] = src
        elif self.kind is TransferKind.SWAP_RED_BLUE:
            channels = self.layout.channel_count
            src_px = src.reshape(n, self.width, channels)
            dst_px = dst.reshape(n, self.width, channels)
            dst_px[:, :, 0] = src_px[:, :, 2]
            dst_px[:, :, 1] = src_px[:, :, 1]
            dst_px[:, :, 2] = src_px[:, :, 0]
            if channels == 4:
                dst_px[:, :, 3] = src_px[:, :, 3]
        else:
            # Three source floats per pixel, a fourth destination float fixed at 1.0.
            src_px = src.reshape(n, self.width, self.src_pixel_size)
            dst_px = dst.reshape(n, self.width, self.layout.bytes_per_pixel)
            dst_px[:, :, :self.src_pixel_size] = src_px
            dst_px[:, :, self.src_pixel_size:] = _FLOAT_ONE_BYTES

    def units(self) -> List[Unit]:
        units = []
        for start in range(0, self.height, self.batch_rows):
            stop = min(start + self.batch_rows, self.height)
            units.append(lambda a=start, b=stop: self.transfer_rows(a, b))
        logger.debug(
            "Row transfer %s: %d rows in %d units", self.kind.value, self.height, len(units)
        )
        return units

    def run(self) -> None:
        """Transfer every row on the calling thread."""
        self.transfer_rows(0, self.height)
