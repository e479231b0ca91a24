"""DDS container reader and writer.

Supports the legacy header (FourCC DXT1-5, D3DFMT float/16-bit codes, RGB
bit masks, luminance and alpha-only layouts) and the DX10 extension header,
for 1D/2D textures, texture arrays, cube maps and volume textures with mip
chains.
"""

import logging
import struct
from typing import Optional, Tuple

import numpy as np

from .formats import (
    DEVICE_NATIVE_FORMATS, DataFormat, block_count, format_info, image_nbytes, row_pitch,
)
from .paths import write_bytes_atomic
from .texture import CUBE_FACES, Image, Texture, TextureDescription, TextureDimension
from ..errors import UnsupportedFormat

logger = logging.getLogger("texture_pipeline.dds")

DDS_MAGIC = b"DDS "
_HEADER = struct.Struct("<7I44x8I5I")
_DX10_HEADER = struct.Struct("<5I")
_PIXELFORMAT_SIZE = 32

DDSD_CAPS = 0x1
DDSD_HEIGHT = 0x2
DDSD_WIDTH = 0x4
DDSD_PITCH = 0x8
DDSD_PIXELFORMAT = 0x1000
DDSD_MIPMAPCOUNT = 0x20000
DDSD_LINEARSIZE = 0x80000
DDSD_DEPTH = 0x800000

DDPF_ALPHAPIXELS = 0x1
DDPF_ALPHA = 0x2
DDPF_FOURCC = 0x4
DDPF_RGB = 0x40
DDPF_LUMINANCE = 0x20000

DDSCAPS_COMPLEX = 0x8
DDSCAPS_TEXTURE = 0x1000
DDSCAPS_MIPMAP = 0x400000
DDSCAPS2_CUBEMAP = 0x200
DDSCAPS2_CUBEMAP_ALLFACES = 0xFC00
DDSCAPS2_VOLUME = 0x200000

_DIMENSION_1D = 2
_DIMENSION_2D = 3
_DIMENSION_3D = 4
_MISC_TEXTURECUBE = 0x4

# D3DFMT codes stored directly in the FourCC field.
_D3DFMT_A16B16G16R16 = 36
_D3DFMT_A16B16G16R16F = 113
_D3DFMT_A32B32G32R32F = 116

_FOURCC_FORMATS = {
    b"DXT1": DataFormat.BC1_UNORM,
    b"DXT2": DataFormat.BC2_UNORM,
    b"DXT3": DataFormat.BC2_UNORM,
    b"DXT4": DataFormat.BC3_UNORM,
    b"DXT5": DataFormat.BC3_UNORM,
    struct.pack("<I", _D3DFMT_A16B16G16R16): DataFormat.R16G16B16A16_UNORM,
    struct.pack("<I", _D3DFMT_A16B16G16R16F): DataFormat.R16G16B16A16_FLOAT,
    struct.pack("<I", _D3DFMT_A32B32G32R32F): DataFormat.R32G32B32A32_FLOAT,
}

# (bit count, R, G, B, A masks) -> format. Layouts with no DataFormat of their
# own are decoded to R8G8B8A8 on load.
_MASK_FORMATS = {
    (32, 0x000000FF, 0x0000FF00, 0x00FF0000, 0xFF000000): DataFormat.R8G8B8A8_UNORM,
    (32, 0x00FF0000, 0x0000FF00, 0x000000FF, 0xFF000000): DataFormat.B8G8R8A8_UNORM,
    (32, 0x00FF0000, 0x0000FF00, 0x000000FF, 0): DataFormat.B8G8R8X8_UNORM,
    (16, 0xF800, 0x07E0, 0x001F, 0): DataFormat.B5G6R5_UNORM,
    (16, 0x0F00, 0x00F0, 0x000F, 0xF000): DataFormat.B4G4R4A4_UNORM,
}
_X8B8G8R8 = (32, 0x000000FF, 0x0000FF00, 0x00FF0000, 0)
_B8G8R8 = (24, 0x00FF0000, 0x0000FF00, 0x000000FF, 0)

# Legacy pixel format entries used when writing: (flags, fourcc, bits, r, g, b, a).
_LEGACY_WRITE = {
    DataFormat.BC1_UNORM: (DDPF_FOURCC, b"DXT1", 0, 0, 0, 0, 0),
    DataFormat.BC2_UNORM: (DDPF_FOURCC, b"DXT3", 0, 0, 0, 0, 0),
    DataFormat.BC3_UNORM: (DDPF_FOURCC, b"DXT5", 0, 0, 0, 0, 0),
    DataFormat.R16G16B16A16_UNORM: (DDPF_FOURCC, struct.pack("<I", _D3DFMT_A16B16G16R16), 0, 0, 0, 0, 0),
    DataFormat.R16G16B16A16_FLOAT: (DDPF_FOURCC, struct.pack("<I", _D3DFMT_A16B16G16R16F), 0, 0, 0, 0, 0),
    DataFormat.R32G32B32A32_FLOAT: (DDPF_FOURCC, struct.pack("<I", _D3DFMT_A32B32G32R32F), 0, 0, 0, 0, 0),
    DataFormat.R8G8B8A8_UNORM: (DDPF_RGB | DDPF_ALPHAPIXELS, b"\0\0\0\0", 32,
                                0x000000FF, 0x0000FF00, 0x00FF0000, 0xFF000000),
    DataFormat.B8G8R8A8_UNORM: (DDPF_RGB | DDPF_ALPHAPIXELS, b"\0\0\0\0", 32,
                                0x00FF0000, 0x0000FF00, 0x000000FF, 0xFF000000),
    DataFormat.B8G8R8X8_UNORM: (DDPF_RGB, b"\0\0\0\0", 32, 0x00FF0000, 0x0000FF00, 0x000000FF, 0),
    DataFormat.B5G6R5_UNORM: (DDPF_RGB, b"\0\0\0\0", 16, 0xF800, 0x07E0, 0x001F, 0),
    DataFormat.B4G4R4A4_UNORM: (DDPF_RGB | DDPF_ALPHAPIXELS, b"\0\0\0\0", 16,
                                0x0F00, 0x00F0, 0x000F, 0xF000),
    DataFormat.A8_UNORM: (DDPF_ALPHA, b"\0\0\0\0", 8, 0, 0, 0, 0xFF),
}


class _Layout:
    """Parsed header information needed to slice the payload."""

    def __init__(self, description: TextureDescription, stored: DataFormat, load_as: str = ""):
        self.description = description
        # Format of the bytes on disk; ``description.format`` is the loaded format.
        self.stored = stored
        # Special expansion on load: "", "bgr24", "xbgr32", "luminance", "red".
        self.load_as = load_as


def _parse_legacy_format(pf_flags, fourcc, bits, masks, expand_luminance, force_rgb):
    """Return ``(stored_format, loaded_format, load_as)`` for a legacy pixel format."""
    if pf_flags & DDPF_FOURCC:
        fmt = _FOURCC_FORMATS.get(fourcc)
        if fmt is None:
            raise UnsupportedFormat(f"Unsupported DDS FourCC {fourcc!r}")
        return fmt, fmt, ""

    if pf_flags & DDPF_LUMINANCE and bits == 8:
        if expand_luminance:
            return DataFormat.R8_UNORM, DataFormat.R8G8B8A8_UNORM, "luminance"
        return DataFormat.R8_UNORM, DataFormat.R8_UNORM, ""

    if pf_flags & DDPF_ALPHA and bits == 8:
        return DataFormat.A8_UNORM, DataFormat.A8_UNORM, ""

    if pf_flags & DDPF_RGB:
        alpha_mask = masks[3] if pf_flags & DDPF_ALPHAPIXELS else 0
        key = (bits, masks[0], masks[1], masks[2], alpha_mask)
        if key == _B8G8R8:
            return DataFormat.B8G8R8X8_UNORM, DataFormat.R8G8B8A8_UNORM, "bgr24"
        if key == _X8B8G8R8:
            return DataFormat.R8G8B8A8_UNORM, DataFormat.R8G8B8A8_UNORM, "xbgr32"
        fmt = _MASK_FORMATS.get(key)
        if fmt is not None:
            if force_rgb and fmt in (DataFormat.B8G8R8A8_UNORM, DataFormat.B8G8R8X8_UNORM):
                return fmt, DataFormat.R8G8B8A8_UNORM, ""
            return fmt, fmt, ""

    raise UnsupportedFormat(
        f"Unsupported DDS pixel layout (flags=0x{pf_flags:X}, bits={bits}, "
        f"masks={[hex(m) for m in masks]})"
    )


def _parse_header(raw: bytes, expand_luminance: bool, force_rgb: bool) -> Tuple[_Layout, int]:
    if len(raw) < 4 + _HEADER.size or raw[:4] != DDS_MAGIC:
        raise UnsupportedFormat("Not a DDS file (bad magic or truncated header)")
    fields = _HEADER.unpack_from(raw, 4)
    (size, _flags, height, width, _pitch, depth, mip_count,
     pf_size, pf_flags, fourcc_int, bits, r_mask, g_mask, b_mask, a_mask,
     _caps, caps2, _caps3, _caps4, _reserved) = fields
    if size != 124:
        logger.debug("DDS header declares size %d, expected 124", size)
    fourcc = struct.pack("<I", fourcc_int)
    mip_count = max(mip_count, 1)
    offset = 4 + _HEADER.size

    if pf_flags & DDPF_FOURCC and fourcc == b"DX10":
        if len(raw) < offset + _DX10_HEADER.size:
            raise UnsupportedFormat("DDS DX10 header missing or truncated")
        dxgi, resource_dim, misc, array_size, _misc2 = _DX10_HEADER.unpack_from(raw, offset)
        offset += _DX10_HEADER.size
        try:
            stored = DataFormat(dxgi)
        except ValueError:
            raise UnsupportedFormat(f"Unsupported DXGI format {dxgi}") from None
        if stored in DEVICE_NATIVE_FORMATS:
            raise UnsupportedFormat(f"Unsupported DXGI format {dxgi}")
        array_size = max(array_size, 1)
        if resource_dim == _DIMENSION_3D:
            dimension = TextureDimension.TEXTURE3D
            array_size = 1
        elif resource_dim == _DIMENSION_1D:
            dimension, height, depth = TextureDimension.TEXTURE1D, 1, 1
        elif resource_dim == _DIMENSION_2D:
            if misc & _MISC_TEXTURECUBE:
                dimension = TextureDimension.TEXTURE_CUBE
                array_size *= CUBE_FACES
            else:
                dimension = TextureDimension.TEXTURE2D
            depth = 1
        else:
            raise UnsupportedFormat(f"Unsupported DDS resource dimension {resource_dim}")
        loaded, load_as = stored, ""
        if force_rgb and stored in (DataFormat.B8G8R8A8_UNORM, DataFormat.B8G8R8X8_UNORM):
            loaded = DataFormat.R8G8B8A8_UNORM
        elif expand_luminance and stored == DataFormat.R8_UNORM:
            loaded, load_as = DataFormat.R8G8B8A8_UNORM, "red"
    else:
        stored, loaded, load_as = _parse_legacy_format(
            pf_flags, fourcc, bits, (r_mask, g_mask, b_mask, a_mask),
            expand_luminance, force_rgb,
        )
        if pf_size != _PIXELFORMAT_SIZE:
            logger.debug("DDS pixel format declares size %d, expected 32", pf_size)
        array_size = 1
        if caps2 & DDSCAPS2_CUBEMAP:
            if caps2 & DDSCAPS2_CUBEMAP_ALLFACES != DDSCAPS2_CUBEMAP_ALLFACES:
                raise UnsupportedFormat("Partial cube maps are not supported")
            dimension = TextureDimension.TEXTURE_CUBE
            array_size = CUBE_FACES
            depth = 1
        elif caps2 & DDSCAPS2_VOLUME and depth > 1:
            dimension = TextureDimension.TEXTURE3D
        else:
            dimension = TextureDimension.TEXTURE2D
            depth = 1

    description = TextureDescription(
        dimension, int(width), int(max(height, 1)), loaded,
        depth=int(max(depth, 1)), mip_levels=int(mip_count), array_size=int(array_size),
    )
    return _Layout(description, stored, load_as), offset


def _stored_nbytes(stored: DataFormat, load_as: str, width: int, height: int) -> int:
    if load_as == "bgr24":
        return width * height * 3
    return image_nbytes(stored, width, height)


def _read_image(buf: bytes, layout: _Layout, width: int, height: int) -> np.ndarray:
    stored = layout.stored
    info = format_info(stored)
    if layout.load_as == "bgr24":
        bgr = np.frombuffer(buf, dtype=np.uint8).reshape(height, width, 3)
        out = np.full((height, width, 4), 255, dtype=np.uint8)
        out[..., :3] = bgr[..., ::-1]
        return out

    dtype = np.dtype(info.dtype).newbyteorder("<")
    if info.is_block_compressed:
        bx, by = block_count(width, height)
        data = np.frombuffer(buf, dtype=np.uint8).reshape(by, bx, info.block_bytes)
    elif info.is_packed16:
        data = np.frombuffer(buf, dtype=dtype).reshape(height, width)
    else:
        data = np.frombuffer(buf, dtype=dtype).reshape(height, width, info.channels)
    data = data.astype(np.dtype(info.dtype), copy=True)

    if layout.load_as == "xbgr32":
        data[..., 3] = 255
    elif layout.load_as in ("luminance", "red"):
        out = np.empty((height, width, 4), dtype=np.uint8)
        if layout.load_as == "luminance":
            out[..., :3] = data
        else:
            out[..., 0] = data[..., 0]
            out[..., 1:3] = 0
        out[..., 3] = 255
        return out
    elif stored != layout.description.format:
        # Forced B8G8R8(A|X)8 -> R8G8B8A8.
        data = data[..., [2, 1, 0, 3]]
        if stored == DataFormat.B8G8R8X8_UNORM:
            data[..., 3] = 255
        data = np.ascontiguousarray(data)
    return data


def decode_dds(raw: bytes, force_rgb: bool = True, expand_luminance: bool = True,
               identity: Optional[str] = None) -> Texture:
    """Parse DDS bytes into a texture.

    Args:
        force_rgb: load BGR(A/X) layouts as R8G8B8A8.
        expand_luminance: load single-channel luminance/red data as gray R8G8B8A8.
    """
    layout, offset = _parse_header(raw, expand_luminance, force_rgb)
    desc = layout.description
    images = []
    sizes = []
    if desc.is_volume:
        for mip in range(desc.mip_levels):
            w, h, d = desc.level_shape(mip)
            sizes.extend([(w, h)] * d)
    else:
        for _ in range(desc.array_size):
            for mip in range(desc.mip_levels):
                w, h, _ = desc.level_shape(mip)
                sizes.append((w, h))

    for w, h in sizes:
        nbytes = _stored_nbytes(layout.stored, layout.load_as, w, h)
        chunk = raw[offset:offset + nbytes]
        if len(chunk) < nbytes:
            raise UnsupportedFormat(
                f"DDS payload truncated: expected {nbytes} bytes for a {w}x{h} image, "
                f"found {len(chunk)}"
            )
        images.append(Image(w, h, desc.format, _read_image(chunk, layout, w, h)))
        offset += nbytes

    if offset < len(raw):
        logger.debug("Ignoring %d trailing bytes in DDS payload", len(raw) - offset)
    logger.debug("Loaded DDS %s: %s %dx%dx%d, %d mips, format %s", identity or "<bytes>",
                 desc.dimension.value, desc.width, desc.height, desc.depth,
                 desc.mip_levels, desc.format.name)
    return Texture(desc, tuple(images), identity)


def load_dds(path: str, force_rgb: bool = True, expand_luminance: bool = True) -> Texture:
    with open(path, "rb") as f:
        raw = f.read()
    return decode_dds(raw, force_rgb, expand_luminance, identity=path)


def _needs_dx10(texture: Texture) -> bool:
    desc = texture.description
    if desc.format not in _LEGACY_WRITE:
        return True
    if desc.dimension == TextureDimension.TEXTURE1D:
        return True
    if desc.is_cube:
        return desc.array_size != CUBE_FACES
    return desc.array_size != 1


def encode_dds(texture: Texture) -> bytes:
    """Serialize a texture to DDS bytes."""
    desc = texture.description
    fmt = DataFormat(desc.format)
    if fmt in DEVICE_NATIVE_FORMATS:
        raise UnsupportedFormat(f"{fmt.name} cannot be stored in a DDS container")
    info = format_info(fmt)
    use_dx10 = _needs_dx10(texture)

    flags = DDSD_CAPS | DDSD_HEIGHT | DDSD_WIDTH | DDSD_PIXELFORMAT
    if info.is_block_compressed:
        flags |= DDSD_LINEARSIZE
        pitch = image_nbytes(fmt, desc.width, desc.height)
    else:
        flags |= DDSD_PITCH
        pitch = row_pitch(fmt, desc.width)
    caps = DDSCAPS_TEXTURE
    caps2 = 0
    if desc.mip_levels > 1:
        flags |= DDSD_MIPMAPCOUNT
        caps |= DDSCAPS_COMPLEX | DDSCAPS_MIPMAP
    if desc.is_cube:
        caps |= DDSCAPS_COMPLEX
        caps2 |= DDSCAPS2_CUBEMAP | DDSCAPS2_CUBEMAP_ALLFACES
    depth = 0
    if desc.is_volume:
        flags |= DDSD_DEPTH
        caps |= DDSCAPS_COMPLEX
        caps2 |= DDSCAPS2_VOLUME
        depth = desc.depth

    if use_dx10:
        pf = (DDPF_FOURCC, b"DX10", 0, 0, 0, 0, 0)
    else:
        pf = _LEGACY_WRITE[fmt]
    pf_flags, fourcc, bits, r_mask, g_mask, b_mask, a_mask = pf

    parts = [DDS_MAGIC, _HEADER.pack(
        124, flags, desc.height, desc.width, pitch, depth, desc.mip_levels,
        _PIXELFORMAT_SIZE, pf_flags, struct.unpack("<I", fourcc)[0], bits,
        r_mask, g_mask, b_mask, a_mask,
        caps, caps2, 0, 0, 0,
    )]
    if use_dx10:
        if desc.is_volume:
            resource_dim, misc, array_size = _DIMENSION_3D, 0, 1
        elif desc.dimension == TextureDimension.TEXTURE1D:
            resource_dim, misc, array_size = _DIMENSION_1D, 0, desc.array_size
        elif desc.is_cube:
            resource_dim, misc, array_size = _DIMENSION_2D, _MISC_TEXTURECUBE, desc.array_size // CUBE_FACES
        else:
            resource_dim, misc, array_size = _DIMENSION_2D, 0, desc.array_size
        parts.append(_DX10_HEADER.pack(int(fmt), resource_dim, misc, array_size, 0))

    little = np.dtype(info.dtype).newbyteorder("<")
    for image in texture.images:
        parts.append(np.ascontiguousarray(image.data, dtype=little).tobytes())
    return b"".join(parts)


def save_dds(texture: Texture, path: str) -> None:
    """Write ``texture`` to ``path`` atomically."""
    write_bytes_atomic(path, encode_dds(texture))
