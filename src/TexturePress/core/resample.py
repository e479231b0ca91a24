"""Separable image resampling with explicit filters and address modes.

Each axis is resampled with a sparse ``(dst, src)`` weight matrix built from a
filter kernel, so border handling (clamp/repeat/mirror) is exact for every
filter. Exact 2:1 box reductions take a cv2 fast path.
"""

import logging
from enum import Enum
from functools import lru_cache

import cv2
import numpy as np
from scipy import sparse
from scipy.special import i0

logger = logging.getLogger("texture_pipeline.resample")

# Below this filtered alpha, alpha-weighted color is undefined and the
# plain filtered color is used instead.
_MIN_ALPHA = 1e-6


class ResizeFilter(Enum):
    """Reconstruction filters for resizing and mipmap generation."""

    POINT = "point"
    BOX = "box"
    LINEAR = "linear"
    CUBIC = "cubic"
    KAISER = "kaiser"


class AddressMode(Enum):
    """How samples outside the image are fetched."""

    CLAMP = "clamp"
    REPEAT = "repeat"
    MIRROR = "mirror"


_KAISER_WIDTH = 3.0
_KAISER_ALPHA = 4.0


def _kaiser(x: np.ndarray) -> np.ndarray:
    t = x / _KAISER_WIDTH
    inside = np.abs(t) < 1.0
    window = i0(_KAISER_ALPHA * np.sqrt(np.clip(1.0 - t * t, 0.0, 1.0))) / i0(_KAISER_ALPHA)
    return np.where(inside, np.sinc(x) * window, 0.0)


def _cubic(x: np.ndarray) -> np.ndarray:
    # Mitchell-Netravali with B = C = 1/3.
    b = c = 1.0 / 3.0
    ax = np.abs(x)
    near = ((12 - 9 * b - 6 * c) * ax ** 3 + (-18 + 12 * b + 6 * c) * ax ** 2 + (6 - 2 * b)) / 6.0
    far = ((-b - 6 * c) * ax ** 3 + (6 * b + 30 * c) * ax ** 2
           + (-12 * b - 48 * c) * ax + (8 * b + 24 * c)) / 6.0
    return np.where(ax < 1.0, near, np.where(ax < 2.0, far, 0.0))


_KERNELS = {
    ResizeFilter.BOX: (0.5, lambda x: ((x >= -0.5) & (x < 0.5)).astype(np.float64)),
    ResizeFilter.LINEAR: (1.0, lambda x: np.clip(1.0 - np.abs(x), 0.0, None)),
    ResizeFilter.CUBIC: (2.0, _cubic),
    ResizeFilter.KAISER: (_KAISER_WIDTH, _kaiser),
}


def _address(indices: np.ndarray, size: int, mode: AddressMode) -> np.ndarray:
    if mode == AddressMode.REPEAT:
        return np.mod(indices, size)
    if mode == AddressMode.MIRROR:
        period = 2 * size
        m = np.mod(indices, period)
        return np.where(m < size, m, period - 1 - m)
    return np.clip(indices, 0, size - 1)


@lru_cache(maxsize=256)
def _weights(src: int, dst: int, filt: ResizeFilter, mode: AddressMode) -> sparse.csr_matrix:
    """Return the sparse (dst, src) weight matrix for one axis."""
    scale = src / dst
    centers = (np.arange(dst) + 0.5) * scale - 0.5

    if filt == ResizeFilter.POINT:
        cols = _address(np.floor(centers + 0.5).astype(np.int64), src, mode)
        return sparse.csr_matrix(
            (np.ones(dst, dtype=np.float32), (np.arange(dst), cols)), shape=(dst, src)
        )

    support, kernel = _KERNELS[filt]
    stretch = max(scale, 1.0)
    radius = support * stretch
    first = np.floor(centers - radius).astype(np.int64)
    ntaps = int(np.ceil(2 * radius)) + 2
    taps = first[:, None] + np.arange(ntaps)[None, :]
    vals = kernel((taps - centers[:, None]) / stretch).ravel()
    rows = np.repeat(np.arange(dst), ntaps)
    cols = _address(taps, src, mode).ravel()

    sums = np.bincount(rows, weights=vals, minlength=dst)
    empty = np.abs(sums) < 1e-12
    if np.any(empty):
        # Degenerate rows (e.g. box upsampling exactly between taps) use nearest.
        empty_rows = np.flatnonzero(empty)
        nearest = _address(np.floor(centers[empty] + 0.5).astype(np.int64), src, mode)
        rows = np.concatenate([rows, empty_rows])
        cols = np.concatenate([cols, nearest])
        vals = np.concatenate([vals, np.ones(empty_rows.size)])
        sums = np.bincount(rows, weights=vals, minlength=dst)
    vals = (vals / sums[rows]).astype(np.float32)
    return sparse.csr_matrix((vals, (rows, cols)), shape=(dst, src))


def _apply_axis(arr: np.ndarray, weights: sparse.csr_matrix, axis: int) -> np.ndarray:
    moved = np.moveaxis(arr, axis, 0)
    rest = moved.shape[1:]
    out = weights @ moved.reshape(moved.shape[0], -1)
    return np.moveaxis(np.asarray(out, dtype=np.float32).reshape((weights.shape[0],) + rest), 0, axis)


def _is_exact_half(src: int, dst: int) -> bool:
    return src == dst * 2


def _filter(arr: np.ndarray, shape: tuple, filt: ResizeFilter, mode: AddressMode) -> np.ndarray:
    """Resample the leading spatial axes of ``arr`` (depth?, height, width, channels)."""
    spatial = arr.ndim - 1
    if (spatial == 2 and filt == ResizeFilter.BOX
            and _is_exact_half(arr.shape[0], shape[0])
            and _is_exact_half(arr.shape[1], shape[1])):
        # Exact 2:1 box never samples outside the image, so address mode is moot.
        return cv2.resize(
            np.ascontiguousarray(arr, dtype=np.float32),
            (shape[1], shape[0]),
            interpolation=cv2.INTER_AREA,
        ).reshape(shape + arr.shape[-1:])

    out = arr.astype(np.float32, copy=False)
    for axis in range(spatial):
        src = out.shape[axis]
        dst = shape[axis]
        if src == dst:
            continue
        out = _apply_axis(out, _weights(src, dst, filt, mode), axis)
    return out.astype(np.float32, copy=False)


def resize(
    rgba: np.ndarray,
    shape: tuple,
    filt: ResizeFilter = ResizeFilter.KAISER,
    alpha_transparency: bool = False,
    address_mode: AddressMode = AddressMode.CLAMP,
) -> np.ndarray:
    """Resample a float32 RGBA array to ``shape``.

    Args:
        rgba: ``(H, W, 4)`` or ``(D, H, W, 4)`` float32 array.
        shape: target spatial shape, ``(h, w)`` or ``(d, h, w)``.
        filt: reconstruction filter.
        alpha_transparency: weight color by alpha so transparent texels do
            not bleed into their neighbours (for straight, non-premultiplied alpha).
        address_mode: border addressing.
    """
    shape = tuple(int(s) for s in shape)
    if rgba.ndim - 1 != len(shape):
        raise ValueError(f"Shape {shape} does not match array with shape {rgba.shape}")
    if any(s < 1 for s in shape):
        raise ValueError(f"Invalid target size {shape}")
    if tuple(rgba.shape[:-1]) == shape:
        return np.array(rgba, dtype=np.float32, copy=True)

    logger.debug(
        "Resampling %s -> %s (filter=%s, address=%s, alpha_transparency=%s)",
        rgba.shape[:-1], shape, filt.value, address_mode.value, alpha_transparency,
    )
    if not alpha_transparency:
        return _filter(rgba, shape, filt, address_mode)

    alpha = rgba[..., 3:4]
    weighted = np.concatenate([rgba[..., :3] * alpha, alpha], axis=-1)
    filtered = _filter(weighted, shape, filt, address_mode)
    plain = _filter(rgba[..., :3], shape, filt, address_mode)
    out_alpha = filtered[..., 3:4]
    safe = out_alpha > _MIN_ALPHA
    color = np.where(safe, filtered[..., :3] / np.where(safe, out_alpha, 1.0), plain)
    return np.concatenate([color, out_alpha], axis=-1).astype(np.float32)
