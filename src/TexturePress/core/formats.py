"""Pixel format tags and per-format metadata.

``DataFormat`` values for GPU formats equal their DXGI_FORMAT codes so the DDS
container can map them directly. Device-native mobile formats have no DXGI
code and use values above ``0x10000``.
"""

from dataclasses import dataclass
from enum import Enum, IntEnum
from typing import Dict, Optional

import numpy as np


class DataFormat(IntEnum):
    """Pixel formats the converter can hold in a texture image."""

    R32G32B32A32_FLOAT = 2
    R16G16B16A16_FLOAT = 10
    R16G16B16A16_UNORM = 11
    R8G8B8A8_UNORM = 28
    R8_UNORM = 61
    A8_UNORM = 65
    BC1_UNORM = 71
    BC2_UNORM = 74
    BC3_UNORM = 77
    B5G6R5_UNORM = 85
    B8G8R8A8_UNORM = 87
    B8G8R8X8_UNORM = 88
    B4G4R4A4_UNORM = 115
    PVRTCI_4BPP_RGB = 0x10002
    PVRTCI_4BPP_RGBA = 0x10003
    ETC1 = 0x10006


class SurfaceFormat(Enum):
    """Engine-facing surface formats used for the already-converted check."""

    COLOR = "color"
    BGR565 = "bgr565"
    BGRA4444 = "bgra4444"
    DXT1 = "dxt1"
    DXT3 = "dxt3"
    DXT5 = "dxt5"
    ALPHA8 = "alpha8"
    RGBA64 = "rgba64"
    HALF_VECTOR4 = "halfvector4"
    VECTOR4 = "vector4"
    PVRTC_RGB4 = "pvrtc_rgb4"
    PVRTC_RGBA4 = "pvrtc_rgba4"
    ETC1 = "etc1"


@dataclass(frozen=True)
class FormatInfo:
    """Storage layout of one pixel format."""

    # Numpy element type of the stored payload.
    dtype: type
    # Channels per texel in the payload (0 for opaque block payloads).
    channels: int
    bits_per_pixel: int
    has_alpha: bool
    block_bytes: int = 0
    # True when the payload can be decoded to float32 RGBA.
    decodable: bool = True

    @property
    def is_block_compressed(self) -> bool:
        return self.block_bytes > 0

    @property
    def is_packed16(self) -> bool:
        return self.dtype is np.uint16 and self.channels == 1 and self.bits_per_pixel == 16


FORMAT_INFO: Dict[DataFormat, FormatInfo] = {
    DataFormat.R32G32B32A32_FLOAT: FormatInfo(np.float32, 4, 128, True),
    DataFormat.R16G16B16A16_FLOAT: FormatInfo(np.float16, 4, 64, True),
    DataFormat.R16G16B16A16_UNORM: FormatInfo(np.uint16, 4, 64, True),
    DataFormat.R8G8B8A8_UNORM: FormatInfo(np.uint8, 4, 32, True),
    DataFormat.B8G8R8A8_UNORM: FormatInfo(np.uint8, 4, 32, True),
    DataFormat.B8G8R8X8_UNORM: FormatInfo(np.uint8, 4, 32, False),
    DataFormat.R8_UNORM: FormatInfo(np.uint8, 1, 8, False),
    DataFormat.A8_UNORM: FormatInfo(np.uint8, 1, 8, True),
    DataFormat.B5G6R5_UNORM: FormatInfo(np.uint16, 1, 16, False),
    DataFormat.B4G4R4A4_UNORM: FormatInfo(np.uint16, 1, 16, True),
    DataFormat.BC1_UNORM: FormatInfo(np.uint8, 0, 4, True, block_bytes=8),
    DataFormat.BC2_UNORM: FormatInfo(np.uint8, 0, 8, True, block_bytes=16),
    DataFormat.BC3_UNORM: FormatInfo(np.uint8, 0, 8, True, block_bytes=16),
    DataFormat.PVRTCI_4BPP_RGB: FormatInfo(np.uint8, 0, 4, False, decodable=False),
    DataFormat.PVRTCI_4BPP_RGBA: FormatInfo(np.uint8, 0, 4, True, decodable=False),
    DataFormat.ETC1: FormatInfo(np.uint8, 0, 4, False, decodable=False),
}

_SURFACE_FORMATS: Dict[DataFormat, SurfaceFormat] = {
    DataFormat.R8G8B8A8_UNORM: SurfaceFormat.COLOR,
    DataFormat.B5G6R5_UNORM: SurfaceFormat.BGR565,
    DataFormat.B4G4R4A4_UNORM: SurfaceFormat.BGRA4444,
    DataFormat.BC1_UNORM: SurfaceFormat.DXT1,
    DataFormat.BC2_UNORM: SurfaceFormat.DXT3,
    DataFormat.BC3_UNORM: SurfaceFormat.DXT5,
    DataFormat.A8_UNORM: SurfaceFormat.ALPHA8,
    DataFormat.R16G16B16A16_UNORM: SurfaceFormat.RGBA64,
    DataFormat.R16G16B16A16_FLOAT: SurfaceFormat.HALF_VECTOR4,
    DataFormat.R32G32B32A32_FLOAT: SurfaceFormat.VECTOR4,
    DataFormat.PVRTCI_4BPP_RGB: SurfaceFormat.PVRTC_RGB4,
    DataFormat.PVRTCI_4BPP_RGBA: SurfaceFormat.PVRTC_RGBA4,
    DataFormat.ETC1: SurfaceFormat.ETC1,
}

DXT_SURFACE_FORMATS = frozenset({SurfaceFormat.DXT1, SurfaceFormat.DXT3, SurfaceFormat.DXT5})

DEVICE_NATIVE_FORMATS = frozenset({
    DataFormat.PVRTCI_4BPP_RGB, DataFormat.PVRTCI_4BPP_RGBA, DataFormat.ETC1,
})


def format_info(fmt: DataFormat) -> FormatInfo:
    return FORMAT_INFO[DataFormat(fmt)]


def try_get_surface_format(fmt: DataFormat) -> Optional[SurfaceFormat]:
    """Return the surface format for ``fmt`` or None when it has no equivalent."""
    return _SURFACE_FORMATS.get(DataFormat(fmt))


def is_dxt(surface_format: Optional[SurfaceFormat]) -> bool:
    return surface_format in DXT_SURFACE_FORMATS


def is_block_compressed(fmt: DataFormat) -> bool:
    return format_info(fmt).is_block_compressed


def block_count(width: int, height: int) -> tuple:
    """Return ``(blocks_x, blocks_y)`` for 4x4 block formats."""
    return max((width + 3) // 4, 1), max((height + 3) // 4, 1)


def image_nbytes(fmt: DataFormat, width: int, height: int) -> int:
    """Return the payload size in bytes of one ``width`` x ``height`` image."""
    fmt = DataFormat(fmt)
    info = format_info(fmt)
    if info.is_block_compressed:
        bx, by = block_count(width, height)
        return bx * by * info.block_bytes
    if fmt in (DataFormat.PVRTCI_4BPP_RGB, DataFormat.PVRTCI_4BPP_RGBA):
        # PVRTC pads each dimension to at least 8 texels.
        return max(width, 8) * max(height, 8) * 4 // 8
    if fmt == DataFormat.ETC1:
        bx, by = block_count(width, height)
        return bx * by * 8
    return width * height * info.bits_per_pixel // 8


def row_pitch(fmt: DataFormat, width: int) -> int:
    """Return the DDS pitch (bytes per row, or per block row for BCn)."""
    info = format_info(fmt)
    if info.is_block_compressed:
        bx, _ = block_count(width, 1)
        return bx * info.block_bytes
    return (width * info.bits_per_pixel + 7) // 8
