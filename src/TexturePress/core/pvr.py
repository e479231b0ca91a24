"""PVR v3 container reader and writer.

Device-native formats (PVRTC, ETC1) have no DDS representation, so they are
stored in PVR v3 files. The external encoder also emits PVR v3, which is
read back here. Only non-premultiplied, linear-colour-space files with no
metadata are written; metadata is skipped on read.
"""

import logging
import struct
from typing import Optional

import numpy as np

from .formats import DataFormat, format_info, image_nbytes
from .paths import write_bytes_atomic
from .texture import CUBE_FACES, Image, Texture, TextureDescription, TextureDimension
from ..errors import UnsupportedFormat

logger = logging.getLogger("texture_pipeline.pvr")

PVR3_VERSION = 0x03525650
# PVR v3 stored with the other endianness.
_PVR3_VERSION_SWAPPED = 0x50565203
_HEADER = struct.Struct("<IIQIIIIIIIII")

_CHANNEL_UNSIGNED_BYTE_NORM = 0
_CHANNEL_FLOAT = 12
_FLAG_PREMULTIPLIED = 0x2


def _uncompressed_id(channels: bytes, bits) -> int:
    names = channels.ljust(4, b"\0")
    sizes = bytes(list(bits) + [0] * (4 - len(bits)))
    return struct.unpack("<Q", names + sizes)[0]


_COMPRESSED_IDS = {
    DataFormat.PVRTCI_4BPP_RGB: 2,
    DataFormat.PVRTCI_4BPP_RGBA: 3,
    DataFormat.ETC1: 6,
}
_UNCOMPRESSED_IDS = {
    DataFormat.R8G8B8A8_UNORM: (_uncompressed_id(b"rgba", (8, 8, 8, 8)), _CHANNEL_UNSIGNED_BYTE_NORM),
    DataFormat.B8G8R8A8_UNORM: (_uncompressed_id(b"bgra", (8, 8, 8, 8)), _CHANNEL_UNSIGNED_BYTE_NORM),
    DataFormat.R32G32B32A32_FLOAT: (_uncompressed_id(b"rgba", (32, 32, 32, 32)), _CHANNEL_FLOAT),
}
_FORMAT_BY_ID = {value: fmt for fmt, value in _COMPRESSED_IDS.items()}
_FORMAT_BY_ID.update({value[0]: fmt for fmt, value in _UNCOMPRESSED_IDS.items()})


def _pixel_format_id(fmt: DataFormat):
    if fmt in _COMPRESSED_IDS:
        return _COMPRESSED_IDS[fmt], _CHANNEL_UNSIGNED_BYTE_NORM
    if fmt in _UNCOMPRESSED_IDS:
        return _UNCOMPRESSED_IDS[fmt]
    raise UnsupportedFormat(f"{DataFormat(fmt).name} cannot be stored in a PVR container")


def _surface_order(desc: TextureDescription):
    """Yield ``(mip, item, slice)`` in PVR order: mip, surface, face, depth."""
    faces = CUBE_FACES if desc.is_cube else 1
    surfaces = desc.array_size // faces
    for mip in range(desc.mip_levels):
        depth = desc.level_shape(mip)[2]
        for surface in range(surfaces):
            for face in range(faces):
                for depth_slice in range(depth):
                    yield mip, surface * faces + face, depth_slice


def encode_pvr(texture: Texture) -> bytes:
    desc = texture.description
    fmt = DataFormat(desc.format)
    pixel_format, channel_type = _pixel_format_id(fmt)
    faces = CUBE_FACES if desc.is_cube else 1
    parts = [_HEADER.pack(
        PVR3_VERSION, 0, pixel_format, 0, channel_type,
        desc.height, desc.width, desc.depth if desc.is_volume else 1,
        desc.array_size // faces, faces, desc.mip_levels, 0,
    )]
    info = format_info(fmt)
    little = np.dtype(info.dtype).newbyteorder("<")
    for mip, item, depth_slice in _surface_order(desc):
        image = texture.get_image(mip, item, depth_slice)
        parts.append(np.ascontiguousarray(image.data, dtype=little).tobytes())
    return b"".join(parts)


def save_pvr(texture: Texture, path: str) -> None:
    """Write ``texture`` to ``path`` atomically."""
    write_bytes_atomic(path, encode_pvr(texture))


def decode_pvr(raw: bytes, identity: Optional[str] = None) -> Texture:
    if len(raw) < _HEADER.size:
        raise UnsupportedFormat("Not a PVR file (truncated header)")
    (version, flags, pixel_format, _colour_space, _channel_type, height, width, depth,
     surfaces, faces, mip_count, metadata_size) = _HEADER.unpack_from(raw, 0)
    if version == _PVR3_VERSION_SWAPPED:
        raise UnsupportedFormat("Big-endian PVR files are not supported")
    if version != PVR3_VERSION:
        raise UnsupportedFormat("Not a PVR v3 file (bad version tag)")
    fmt = _FORMAT_BY_ID.get(pixel_format)
    if fmt is None:
        raise UnsupportedFormat(f"Unsupported PVR pixel format 0x{pixel_format:016X}")
    if flags & _FLAG_PREMULTIPLIED:
        logger.debug("PVR %s is flagged premultiplied", identity or "<bytes>")
    if faces not in (1, CUBE_FACES):
        raise UnsupportedFormat(f"Unsupported PVR face count {faces}")

    depth = max(depth, 1)
    if depth > 1:
        dimension = TextureDimension.TEXTURE3D
    elif faces == CUBE_FACES:
        dimension = TextureDimension.TEXTURE_CUBE
    else:
        dimension = TextureDimension.TEXTURE2D
    desc = TextureDescription(
        dimension, int(width), int(max(height, 1)), fmt, depth=int(depth),
        mip_levels=int(max(mip_count, 1)),
        array_size=1 if depth > 1 else int(max(surfaces, 1) * faces),
    )

    info = format_info(fmt)
    little = np.dtype(info.dtype).newbyteorder("<")
    offset = _HEADER.size + metadata_size
    placed = {}
    for mip, item, depth_slice in _surface_order(desc):
        w, h, _ = desc.level_shape(mip)
        nbytes = image_nbytes(fmt, w, h)
        chunk = raw[offset:offset + nbytes]
        if len(chunk) < nbytes:
            raise UnsupportedFormat(
                f"PVR payload truncated: expected {nbytes} bytes for a {w}x{h} image"
            )
        data = np.frombuffer(chunk, dtype=little)
        if info.decodable:
            data = data.reshape(h, w, info.channels)
        placed[(mip, item, depth_slice)] = Image(w, h, fmt, data.astype(np.dtype(info.dtype)))
        offset += nbytes

    if desc.is_volume:
        order = [(mip, 0, s) for mip in range(desc.mip_levels)
                 for s in range(desc.level_shape(mip)[2])]
    else:
        order = [(mip, item, 0) for item in range(desc.array_size)
                 for mip in range(desc.mip_levels)]
    return Texture(desc, tuple(placed[key] for key in order), identity)


def load_pvr(path: str) -> Texture:
    with open(path, "rb") as f:
        raw = f.read()
    return decode_pvr(raw, identity=path)
