"""Pixel-format conversion between stored payloads and float32 RGBA.

Every decodable format round-trips through an ``(H, W, 4)`` float32 array.
UNORM formats are clamped to [0, 1] and rounded to nearest on encode.
"""

import logging

import numpy as np

from . import bcn
from .formats import DataFormat, format_info
from ..errors import UnsupportedFormat

logger = logging.getLogger("texture_pipeline.convert")

_BC_FORMATS = (DataFormat.BC1_UNORM, DataFormat.BC2_UNORM, DataFormat.BC3_UNORM)


def can_decode(fmt: DataFormat) -> bool:
    """Return True when ``fmt`` payloads can be decoded to float32 RGBA."""
    return format_info(fmt).decodable


def _unorm_to_float(arr: np.ndarray, max_value: float) -> np.ndarray:
    return arr.astype(np.float32) / np.float32(max_value)


def _float_to_unorm(arr: np.ndarray, max_value: int, dtype) -> np.ndarray:
    arr = np.nan_to_num(arr, nan=0.0)
    return np.rint(np.clip(arr, 0.0, 1.0) * max_value).astype(dtype)


def to_float(data: np.ndarray, fmt: DataFormat, width: int, height: int) -> np.ndarray:
    """Decode one image payload into an (H, W, 4) float32 RGBA array."""
    fmt = DataFormat(fmt)
    if not can_decode(fmt):
        raise UnsupportedFormat(f"Pixel format {fmt.name} cannot be decoded.")

    if fmt == DataFormat.R32G32B32A32_FLOAT:
        return np.array(data, dtype=np.float32, copy=True)
    if fmt == DataFormat.R16G16B16A16_FLOAT:
        return data.astype(np.float32)
    if fmt == DataFormat.R16G16B16A16_UNORM:
        return _unorm_to_float(data, 65535.0)
    if fmt == DataFormat.R8G8B8A8_UNORM:
        return _unorm_to_float(data, 255.0)
    if fmt in (DataFormat.B8G8R8A8_UNORM, DataFormat.B8G8R8X8_UNORM):
        out = _unorm_to_float(data[..., [2, 1, 0, 3]], 255.0)
        if fmt == DataFormat.B8G8R8X8_UNORM:
            out[..., 3] = 1.0
        return out
    if fmt == DataFormat.R8_UNORM:
        out = np.zeros((height, width, 4), dtype=np.float32)
        out[..., 0] = _unorm_to_float(data[..., 0], 255.0)
        out[..., 3] = 1.0
        return out
    if fmt == DataFormat.A8_UNORM:
        out = np.zeros((height, width, 4), dtype=np.float32)
        out[..., 3] = _unorm_to_float(data[..., 0], 255.0)
        return out
    if fmt == DataFormat.B5G6R5_UNORM:
        packed = data.astype(np.uint32)
        out = np.empty((height, width, 4), dtype=np.float32)
        out[..., 0] = ((packed >> 11) & 0x1F) / np.float32(31.0)
        out[..., 1] = ((packed >> 5) & 0x3F) / np.float32(63.0)
        out[..., 2] = (packed & 0x1F) / np.float32(31.0)
        out[..., 3] = 1.0
        return out
    if fmt == DataFormat.B4G4R4A4_UNORM:
        packed = data.astype(np.uint32)
        out = np.empty((height, width, 4), dtype=np.float32)
        out[..., 0] = ((packed >> 8) & 0xF) / np.float32(15.0)
        out[..., 1] = ((packed >> 4) & 0xF) / np.float32(15.0)
        out[..., 2] = (packed & 0xF) / np.float32(15.0)
        out[..., 3] = ((packed >> 12) & 0xF) / np.float32(15.0)
        return out
    if fmt in _BC_FORMATS:
        return _unorm_to_float(bcn.decode(data, fmt, width, height), 255.0)

    raise UnsupportedFormat(f"No decoder registered for {fmt.name}.")


def from_float(rgba: np.ndarray, fmt: DataFormat) -> np.ndarray:
    """Encode an (H, W, 4) float32 RGBA array into a payload of ``fmt``."""
    fmt = DataFormat(fmt)
    rgba = np.asarray(rgba, dtype=np.float32)
    height, width = rgba.shape[:2]

    if fmt == DataFormat.R32G32B32A32_FLOAT:
        return np.array(rgba, dtype=np.float32, copy=True)
    if fmt == DataFormat.R16G16B16A16_FLOAT:
        return rgba.astype(np.float16)
    if fmt == DataFormat.R16G16B16A16_UNORM:
        return _float_to_unorm(rgba, 65535, np.uint16)
    if fmt == DataFormat.R8G8B8A8_UNORM:
        return _float_to_unorm(rgba, 255, np.uint8)
    if fmt == DataFormat.B8G8R8A8_UNORM:
        return _float_to_unorm(rgba[..., [2, 1, 0, 3]], 255, np.uint8)
    if fmt == DataFormat.B8G8R8X8_UNORM:
        out = _float_to_unorm(rgba[..., [2, 1, 0, 3]], 255, np.uint8)
        out[..., 3] = 255
        return out
    if fmt == DataFormat.R8_UNORM:
        return _float_to_unorm(rgba[..., :1], 255, np.uint8)
    if fmt == DataFormat.A8_UNORM:
        return _float_to_unorm(rgba[..., 3:4], 255, np.uint8)
    if fmt == DataFormat.B5G6R5_UNORM:
        r = _float_to_unorm(rgba[..., 0], 31, np.uint16)
        g = _float_to_unorm(rgba[..., 1], 63, np.uint16)
        b = _float_to_unorm(rgba[..., 2], 31, np.uint16)
        return ((r << 11) | (g << 5) | b).astype(np.uint16)
    if fmt == DataFormat.B4G4R4A4_UNORM:
        r = _float_to_unorm(rgba[..., 0], 15, np.uint16)
        g = _float_to_unorm(rgba[..., 1], 15, np.uint16)
        b = _float_to_unorm(rgba[..., 2], 15, np.uint16)
        a = _float_to_unorm(rgba[..., 3], 15, np.uint16)
        return ((a << 12) | (r << 8) | (g << 4) | b).astype(np.uint16)
    if fmt in _BC_FORMATS:
        return bcn.encode(_float_to_unorm(rgba, 255, np.uint8), fmt)

    logger.debug("Refusing direct conversion of %dx%d image to %s", width, height, fmt.name)
    raise UnsupportedFormat(
        f"Conversion to {fmt.name} is not supported; it requires an external encoder."
    )


def convert(data: np.ndarray, src: DataFormat, dst: DataFormat, width: int, height: int) -> np.ndarray:
    """Convert a payload between two formats (identity when they match)."""
    if DataFormat(src) == DataFormat(dst):
        return data
    return from_float(to_float(data, src, width, height), dst)
