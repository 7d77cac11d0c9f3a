"""Mip chain geometry: level counts, dimensions, and packed byte offsets."""

from dataclasses import dataclass
from typing import List, Tuple

# Largest texture the loader accepts on either axis, and the matching chain length.
MAX_TEXTURE_DIMENSION = 16384
MAX_MIPMAP_COUNT = 15


def full_mipmap_count(width: int, height: int) -> int:
    """Return floor(log2(max(width, height))) + 1 clamped to [2, MAX_MIPMAP_COUNT]."""
    max_dim = max(int(width), int(height), 1)
    # bit_length avoids float log2 rounding at exact powers of two.
    count = max_dim.bit_length()
    return min(max(count, 2), MAX_MIPMAP_COUNT)


def calculate_mipmap_count(
    width: int,
    height: int,
    generate_mipmap: bool = True,
    auto_mipmap_count: bool = True,
    mipmap_count: int = 0,
    force_auto: bool = False,
) -> int:
    """Resolve how many levels to generate for an image.

    Without mipmaps the chain is a single level. Manual counts are clamped to
    [2, auto count].
    """
    if not generate_mipmap:
        return 1
    count = full_mipmap_count(width, height)
    if not auto_mipmap_count and not force_auto:
        count = min(max(int(mipmap_count), 2), count)
    return count


def mip_dimensions(width: int, height: int, level: int) -> Tuple[int, int]:
    """Return (width, height) of a mip level."""
    if level < 0:
        raise ValueError(f"mip level must be >= 0, got {level}")
    if level == 0:
        return int(width), int(height)
    return max(1, int(width) >> level), max(1, int(height) >> level)


@dataclass(frozen=True)
class MipLevel:
    """One packed level inside a mip chain buffer."""

    level: int
    width: int
    height: int
    offset: int
    size: int

    @property
    def pixel_count(self) -> int:
        return self.width * self.height


class MipChain:
    """Tightly packed mip chain layout, level 0 first."""

    def __init__(self, width: int, height: int, mip_count: int, bytes_per_pixel: int):
        if width < 1 or height < 1:
            raise ValueError(f"Invalid base dimensions {width}x{height}")
        if mip_count < 1:
            raise ValueError(f"mip_count must be >= 1, got {mip_count}")
        self.width = int(width)
        self.height = int(height)
        self.mip_count = int(mip_count)
        self.bytes_per_pixel = int(bytes_per_pixel)

        levels: List[MipLevel] = []
        offset = 0
        for level in range(self.mip_count):
            w, h = mip_dimensions(self.width, self.height, level)
            size = w * h * self.bytes_per_pixel
            levels.append(MipLevel(level, w, h, offset, size))
            offset += size
        self.levels = levels
        self.total_size = offset

    def __len__(self) -> int:
        return self.mip_count

    def __getitem__(self, level: int) -> MipLevel:
        return self.levels[level]

    def __iter__(self):
        return iter(self.levels)

    def __repr__(self) -> str:
        return (
            f"MipChain({self.width}x{self.height}, levels={self.mip_count}, "
            f"bpp={self.bytes_per_pixel}, bytes={self.total_size})"
        )
