"""2x2 box filtering from one packed mip level into the next.

Each channel is filtered independently through a strided view over the
interleaved level buffer. Samples past the right or bottom edge of an odd-sized
input clamp to the last row/column.

Integer kinds sum the four samples in a 32-bit accumulator and shift right by
two, which truncates toward zero. Floats are summed and scaled by 0.25 with no
rounding. The two behave differently on purpose (see DESIGN.md).
"""

import logging
from typing import Callable, Dict, List, Tuple

import numpy as np

from ..core.formats import ElementKind, OutputLayout
from ..core.jobs import Unit

logger = logging.getLogger("texture_loader.mipmap")

BoxKernel = Callable[[np.ndarray, np.ndarray, np.ndarray, np.ndarray], np.ndarray]


def _box_integer(dtype) -> BoxKernel:
    def kernel(s00, s10, s01, s11):
        total = s00.astype(np.uint32)
        total += s10
        total += s01
        total += s11
        return (total >> 2).astype(dtype)
    return kernel


def _box_float(s00, s10, s01, s11):
    return (s00 + s10 + s01 + s11) * np.float32(0.25)


BOX_KERNELS: Dict[ElementKind, BoxKernel] = {
    ElementKind.U8: _box_integer(np.uint8),
    ElementKind.U16: _box_integer(np.uint16),
    ElementKind.F32: _box_float,
}


def _channel_planes(level: np.ndarray, layout: OutputLayout, pixel_count: int) -> List[np.ndarray]:
    pixels = level[:pixel_count * layout.bytes_per_pixel].view(layout.dtype)
    pixels = pixels.reshape(pixel_count, layout.channel_count)
    return [pixels[:, c] for c in range(layout.channel_count)]


class MipmapFilterStage:
    """Box-filter level ``k-1`` (``source``) into level ``k`` (``target``)."""

    def __init__(self, source: np.ndarray, source_size: Tuple[int, int],
                 target: np.ndarray, target_size: Tuple[int, int],
                 layout: OutputLayout, batch_size: int = 1024, level: int = 0):
        self.layout = layout
        self.level = level
        self.in_w, self.in_h = (int(v) for v in source_size)
        self.out_w, self.out_h = (int(v) for v in target_size)
        self.batch_size = max(1, int(batch_size))
        self.kernel = BOX_KERNELS[layout.element_kind]
        self.output_count = self.out_w * self.out_h
        self._inputs = _channel_planes(source, layout, self.in_w * self.in_h)
        self._outputs = _channel_planes(target, layout, self.output_count)

    def filter_range(self, channel: int, start: int, stop: int) -> None:
        """Compute output pixels ``[start, stop)`` of one channel."""
        plane = self._inputs[channel]
        idx = np.arange(start, stop, dtype=np.int64)
        ox = idx % self.out_w
        oy = idx // self.out_w

        x0 = np.minimum(2 * ox, self.in_w - 1)
        x1 = np.minimum(2 * ox + 1, self.in_w - 1)
        row0 = np.minimum(2 * oy, self.in_h - 1) * self.in_w
        row1 = np.minimum(2 * oy + 1, self.in_h - 1) * self.in_w

        self._outputs[channel][start:stop] = self.kernel(
            plane[row0 + x0], plane[row0 + x1], plane[row1 + x0], plane[row1 + x1]
        )

    def units(self) -> List[Unit]:
        units = []
        for channel in range(self.layout.channel_count):
            for start in range(0, self.output_count, self.batch_size):
                stop = min(start + self.batch_size, self.output_count)
                units.append(
                    lambda c=channel, a=start, b=stop: self.filter_range(c, a, b)
                )
        logger.debug(
            "Mip level %d: %dx%d -> %dx%d, %d units",
            self.level, self.in_w, self.in_h, self.out_w, self.out_h, len(units),
        )
        return units

    def run(self) -> None:
        for channel in range(self.layout.channel_count):
            self.filter_range(channel, 0, self.output_count)


def build_mipmap_stages(texture, batch_size: int = 1024) -> List[MipmapFilterStage]:
    """Return one filter stage per level 1..N-1 of a texture's chain."""
    stages = []
    for level in range(1, texture.mip_count):
        prev = texture.level(level - 1)
        cur = texture.level(level)
        stages.append(MipmapFilterStage(
            texture.level_data(level - 1), (prev.width, prev.height),
            texture.level_data(level), (cur.width, cur.height),
            texture.layout, batch_size=batch_size, level=level,
        ))
    return stages
