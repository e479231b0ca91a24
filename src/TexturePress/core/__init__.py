"""Core utilities -- re-exports all public symbols for convenience."""

from .formats import (
    DataFormat, SurfaceFormat, FormatInfo, format_info, try_get_surface_format,
    is_dxt, is_block_compressed, image_nbytes,
)
from .texture import (
    Image, Texture, TextureDescription, TextureDimension, max_mip_levels,
)
from .resample import AddressMode, ResizeFilter, resize
from .convert import can_decode, convert, from_float, to_float
from .dds import decode_dds, encode_dds, load_dds, save_dds
from .pvr import decode_pvr, encode_pvr, load_pvr, save_pvr
from .io import container_extension, load_texture, save_texture
from .paths import get_output_path, write_bytes_atomic
from .logging import setup_logging

__all__ = [
    "DataFormat", "SurfaceFormat", "FormatInfo", "format_info", "try_get_surface_format",
    "is_dxt", "is_block_compressed", "image_nbytes",
    "Image", "Texture", "TextureDescription", "TextureDimension", "max_mip_levels",
    "AddressMode", "ResizeFilter", "resize",
    "can_decode", "convert", "from_float", "to_float",
    "decode_dds", "encode_dds", "load_dds", "save_dds",
    "decode_pvr", "encode_pvr", "load_pvr", "save_pvr",
    "container_extension", "load_texture", "save_texture",
    "get_output_path", "write_bytes_atomic",
    "setup_logging",
]
