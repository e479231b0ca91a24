"""BC1/BC2/BC3 (DXT1/DXT3/DXT5) block codec implemented with numpy.

Blocks are processed in bulk: every helper works on arrays shaped
``(num_blocks, 16, ...)``. Payloads are uint8 arrays shaped
``(blocks_y, blocks_x, block_bytes)``.
"""

import logging

import numpy as np

from .formats import DataFormat, block_count

logger = logging.getLogger("texture_pipeline.bcn")

_BLOCK_BYTES = {
    DataFormat.BC1_UNORM: 8,
    DataFormat.BC2_UNORM: 16,
    DataFormat.BC3_UNORM: 16,
}

_SHIFT2 = (np.arange(16, dtype=np.uint32) * 2)
_SHIFT3 = (np.arange(16, dtype=np.uint64) * 3)
_SHIFT4 = (np.arange(16, dtype=np.uint64) * 4)


# ---------------------------------------------------------------------------
# Block layout helpers
# ---------------------------------------------------------------------------

def _to_blocks(rgba: np.ndarray) -> tuple:
    """Split an (H, W, 4) uint8 image into (N, 16, 4) blocks, padding by edge replication."""
    h, w = rgba.shape[:2]
    bx, by = block_count(w, h)
    pad_h = by * 4 - h
    pad_w = bx * 4 - w
    if pad_h or pad_w:
        rgba = np.pad(rgba, ((0, pad_h), (0, pad_w), (0, 0)), mode="edge")
    blocks = rgba.reshape(by, 4, bx, 4, 4).transpose(0, 2, 1, 3, 4)
    return blocks.reshape(by * bx, 16, 4), bx, by


def _from_blocks(texels: np.ndarray, bx: int, by: int, width: int, height: int) -> np.ndarray:
    """Inverse of :func:`_to_blocks`; crops the padding."""
    channels = texels.shape[-1]
    img = texels.reshape(by, bx, 4, 4, channels).transpose(0, 2, 1, 3, 4)
    img = img.reshape(by * 4, bx * 4, channels)
    return np.ascontiguousarray(img[:height, :width])


def _unpack_565(packed: np.ndarray) -> np.ndarray:
    packed = packed.astype(np.int32)
    r = (packed >> 11) & 0x1F
    g = (packed >> 5) & 0x3F
    b = packed & 0x1F
    r = (r << 3) | (r >> 2)
    g = (g << 2) | (g >> 4)
    b = (b << 3) | (b >> 2)
    return np.stack([r, g, b], axis=-1)


def _pack_565(rgb: np.ndarray) -> np.ndarray:
    rgb = np.clip(rgb, 0.0, 255.0)
    r = np.rint(rgb[..., 0] * 31.0 / 255.0).astype(np.uint32)
    g = np.rint(rgb[..., 1] * 63.0 / 255.0).astype(np.uint32)
    b = np.rint(rgb[..., 2] * 31.0 / 255.0).astype(np.uint32)
    return ((r << 11) | (g << 5) | b).astype(np.uint16)


def _color_palette(c0: np.ndarray, c1: np.ndarray, four_color: np.ndarray) -> np.ndarray:
    """Build (N, 4, 4) RGBA palettes the way a BC1 decoder does."""
    e0 = _unpack_565(c0)
    e1 = _unpack_565(c1)
    n = e0.shape[0]
    palette = np.zeros((n, 4, 4), dtype=np.int32)
    palette[:, 0, :3] = e0
    palette[:, 1, :3] = e1
    mode4 = four_color[:, None]
    palette[:, 2, :3] = np.where(mode4, (2 * e0 + e1) // 3, (e0 + e1) // 2)
    palette[:, 3, :3] = np.where(mode4, (e0 + 2 * e1) // 3, 0)
    palette[:, :3, 3] = 255
    palette[:, 3, 3] = np.where(four_color, 255, 0)
    return palette


def _alpha_palette(a0: np.ndarray, a1: np.ndarray) -> np.ndarray:
    """Build (N, 8) BC3 alpha palettes."""
    a0 = a0.astype(np.int32)
    a1 = a1.astype(np.int32)
    eight = a0 > a1
    palette = np.zeros((a0.shape[0], 8), dtype=np.int32)
    palette[:, 0] = a0
    palette[:, 1] = a1
    for i in range(1, 7):
        palette[:, i + 1] = np.where(eight, ((7 - i) * a0 + i * a1) // 7, 0)
    for i in range(1, 5):
        palette[:, i + 1] = np.where(eight, palette[:, i + 1], ((5 - i) * a0 + i * a1) // 5)
    palette[:, 6] = np.where(eight, palette[:, 6], 0)
    palette[:, 7] = np.where(eight, palette[:, 7], 255)
    return palette


# ---------------------------------------------------------------------------
# Encoding
# ---------------------------------------------------------------------------

def _principal_axis(centered: np.ndarray, mask: np.ndarray) -> np.ndarray:
    """Approximate the dominant axis of each block's color cloud by power iteration."""
    weighted = centered * mask[..., None]
    cov = np.einsum("nki,nkj->nij", weighted, centered)
    axis = np.ones((centered.shape[0], 3), dtype=np.float32)
    for _ in range(8):
        axis = np.einsum("nij,nj->ni", cov, axis)
        norm = np.linalg.norm(axis, axis=-1, keepdims=True)
        axis = np.where(norm > 1e-12, axis / np.maximum(norm, 1e-12), 0.0)
    degenerate = np.linalg.norm(axis, axis=-1) < 0.5
    axis[degenerate] = 1.0 / np.sqrt(3.0)
    return axis


def _encode_color_blocks(blocks: np.ndarray, punch_through: bool) -> np.ndarray:
    """Encode the color part of (N, 16, 4) uint8 blocks into (N, 8) uint8."""
    n = blocks.shape[0]
    rgb = blocks[..., :3].astype(np.float32)
    if punch_through:
        transparent = blocks[..., 3] < 128
    else:
        transparent = np.zeros((n, 16), dtype=bool)
    opaque = ~transparent
    has_transparent = transparent.any(axis=1)
    # Fully transparent blocks still need endpoints; fit them on all texels.
    fit_mask = np.where(opaque.any(axis=1)[:, None], opaque, True).astype(np.float32)

    count = fit_mask.sum(axis=1, keepdims=True)
    mean = (rgb * fit_mask[..., None]).sum(axis=1) / count
    centered = rgb - mean[:, None, :]
    axis = _principal_axis(centered, fit_mask)
    proj = np.einsum("nki,ni->nk", centered, axis)
    lo = np.where(fit_mask > 0, proj, np.inf).min(axis=1)
    hi = np.where(fit_mask > 0, proj, -np.inf).max(axis=1)
    end_hi = mean + axis * hi[:, None]
    end_lo = mean + axis * lo[:, None]

    c0 = _pack_565(end_hi)
    c1 = _pack_565(end_lo)
    # Four-color mode requires c0 > c1, three-color (punch-through) c0 <= c1.
    swap = np.where(has_transparent, c0 > c1, c0 < c1)
    c0, c1 = np.where(swap, c1, c0), np.where(swap, c0, c1)
    four_color = c0 > c1

    palette = _color_palette(c0, c1, four_color)[..., :3].astype(np.float32)
    diff = rgb[:, :, None, :] - palette[:, None, :, :]
    dist = np.einsum("nkpc,nkpc->nkp", diff, diff)
    # Index 3 is transparent black outside four-color mode.
    dist[..., 3] = np.where(four_color[:, None], dist[..., 3], np.inf)
    indices = np.argmin(dist, axis=-1).astype(np.uint32)
    indices = np.where(transparent, 3, indices).astype(np.uint32)
    packed_indices = np.bitwise_or.reduce(indices << _SHIFT2, axis=1).astype(np.uint32)

    out = np.empty((n, 8), dtype=np.uint8)
    out[:, 0:2] = c0.astype("<u2").view(np.uint8).reshape(n, 2)
    out[:, 2:4] = c1.astype("<u2").view(np.uint8).reshape(n, 2)
    out[:, 4:8] = packed_indices.astype("<u4").view(np.uint8).reshape(n, 4)
    return out


def _encode_bc3_alpha(alpha: np.ndarray) -> np.ndarray:
    """Encode (N, 16) uint8 alpha into (N, 8) BC3 alpha blocks."""
    n = alpha.shape[0]
    a0 = alpha.max(axis=1)
    a1 = alpha.min(axis=1)
    palette = _alpha_palette(a0, a1)
    dist = np.abs(alpha.astype(np.int32)[:, :, None] - palette[:, None, :])
    indices = np.argmin(dist, axis=-1).astype(np.uint64)
    bits = np.bitwise_or.reduce(indices << _SHIFT3, axis=1).astype(np.uint64)

    out = np.empty((n, 8), dtype=np.uint8)
    out[:, 0] = a0
    out[:, 1] = a1
    out[:, 2:8] = bits.astype("<u8").view(np.uint8).reshape(n, 8)[:, :6]
    return out


def _encode_bc2_alpha(alpha: np.ndarray) -> np.ndarray:
    """Encode (N, 16) uint8 alpha into (N, 8) explicit 4-bit alpha blocks."""
    n = alpha.shape[0]
    a4 = np.rint(alpha.astype(np.float32) * 15.0 / 255.0).astype(np.uint64)
    bits = np.bitwise_or.reduce(a4 << _SHIFT4, axis=1).astype(np.uint64)
    return bits.astype("<u8").view(np.uint8).reshape(n, 8)


def encode(rgba: np.ndarray, fmt: DataFormat) -> np.ndarray:
    """Compress an (H, W, 4) uint8 RGBA image into a BCn payload."""
    fmt = DataFormat(fmt)
    if fmt not in _BLOCK_BYTES:
        raise ValueError(f"{fmt.name} is not a BCn format")
    rgba = np.ascontiguousarray(rgba, dtype=np.uint8)
    blocks, bx, by = _to_blocks(rgba)
    if fmt == DataFormat.BC1_UNORM:
        payload = _encode_color_blocks(blocks, punch_through=True)
    else:
        color = _encode_color_blocks(blocks, punch_through=False)
        if fmt == DataFormat.BC2_UNORM:
            alpha = _encode_bc2_alpha(blocks[..., 3])
        else:
            alpha = _encode_bc3_alpha(blocks[..., 3])
        payload = np.concatenate([alpha, color], axis=1)
    logger.debug("Encoded %dx%d image as %s (%d blocks)", rgba.shape[1], rgba.shape[0], fmt.name, bx * by)
    return payload.reshape(by, bx, _BLOCK_BYTES[fmt])


# ---------------------------------------------------------------------------
# Decoding
# ---------------------------------------------------------------------------

def _decode_color_blocks(color: np.ndarray, always_four_color: bool) -> np.ndarray:
    n = color.shape[0]
    c0 = color[:, 0:2].copy().view("<u2").reshape(n)
    c1 = color[:, 2:4].copy().view("<u2").reshape(n)
    bits = color[:, 4:8].copy().view("<u4").reshape(n).astype(np.uint32)
    four_color = np.ones(n, dtype=bool) if always_four_color else c0 > c1
    palette = _color_palette(c0, c1, four_color)
    indices = ((bits[:, None] >> _SHIFT2) & 0x3).astype(np.intp)
    return palette[np.arange(n)[:, None], indices]


def decode(payload: np.ndarray, fmt: DataFormat, width: int, height: int) -> np.ndarray:
    """Decompress a BCn payload into an (H, W, 4) uint8 RGBA image."""
    fmt = DataFormat(fmt)
    if fmt not in _BLOCK_BYTES:
        raise ValueError(f"{fmt.name} is not a BCn format")
    bx, by = block_count(width, height)
    block_bytes = _BLOCK_BYTES[fmt]
    blocks = np.asarray(payload, dtype=np.uint8).reshape(-1)[:bx * by * block_bytes]
    blocks = blocks.reshape(bx * by, block_bytes)
    n = blocks.shape[0]

    if fmt == DataFormat.BC1_UNORM:
        texels = _decode_color_blocks(blocks, always_four_color=False)
    else:
        texels = _decode_color_blocks(blocks[:, 8:16], always_four_color=True)
        if fmt == DataFormat.BC2_UNORM:
            bits = blocks[:, 0:8].copy().view("<u8").reshape(n)
            a4 = ((bits[:, None] >> _SHIFT4) & 0xF).astype(np.int32)
            texels[..., 3] = a4 * 17
        else:
            palette = _alpha_palette(blocks[:, 0], blocks[:, 1])
            raw = np.zeros((n, 8), dtype=np.uint8)
            raw[:, :6] = blocks[:, 2:8]
            bits = raw.view("<u8").reshape(n)
            indices = ((bits[:, None] >> _SHIFT3) & 0x7).astype(np.intp)
            texels[..., 3] = palette[np.arange(n)[:, None], indices]

    return _from_blocks(texels.astype(np.uint8), bx, by, width, height)
