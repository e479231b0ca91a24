"""Texture I/O dispatch: container decode/encode keyed on file extension."""

import logging
from pathlib import Path

import numpy as np
from PIL import Image, UnidentifiedImageError

from .dds import load_dds, save_dds
from .formats import DEVICE_NATIVE_FORMATS, DataFormat
from .pvr import load_pvr, save_pvr
from .texture import Texture
from ..errors import UnsupportedFormat

# Pixel-count validation happens in load_texture() after reading the header.
Image.MAX_IMAGE_PIXELS = None

logger = logging.getLogger("texture_pipeline.io")

DDS_EXTENSION = ".dds"
PVR_EXTENSION = ".pvr"


def container_extension(fmt: DataFormat, default: str = DDS_EXTENSION) -> str:
    """Return the extension of the container able to hold ``fmt``."""
    if DataFormat(fmt) in DEVICE_NATIVE_FORMATS:
        return PVR_EXTENSION
    return default


def _load_with_pillow(path: str, max_pixels: int) -> Texture:
    ext = Path(path).suffix.lower()
    try:
        with Image.open(path) as img:
            # Memory guard
            if max_pixels > 0 and img.width * img.height > max_pixels:
                raise ValueError(
                    f"Image too large: {img.width}x{img.height} = {img.width * img.height:,} "
                    f"pixels (max {max_pixels:,})."
                )

            # 16-bit integer modes keep their precision.
            if img.mode in ("I;16", "I;16B", "I;16L", "I;16N"):
                logger.debug("Loading %s as 16-bit integer mode %s", path, img.mode)
                gray = np.asarray(img).astype(np.uint16)
                rgba = np.empty(gray.shape + (4,), dtype=np.uint16)
                rgba[..., :3] = gray[..., None]
                rgba[..., 3] = 65535
                return Texture.from_array(rgba, DataFormat.R16G16B16A16_UNORM, identity=path)

            if img.mode == "F":
                logger.debug("Loading %s as float mode", path)
                gray = np.asarray(img, dtype=np.float32)
                rgba = np.ones(gray.shape + (4,), dtype=np.float32)
                rgba[..., :3] = gray[..., None]
                return Texture.from_array(rgba, DataFormat.R32G32B32A32_FLOAT, identity=path)

            if img.mode != "RGBA":
                logger.debug("Converting image '%s' from %s->RGBA", path, img.mode)
                with img.convert("RGBA") as converted:
                    rgba = np.array(converted, dtype=np.uint8)
            else:
                rgba = np.array(img, dtype=np.uint8)
    except UnidentifiedImageError as e:
        raise UnsupportedFormat(f"Unrecognized image format: {path} ({ext})") from e

    logger.debug("Loaded %s as %dx%d R8G8B8A8", path, rgba.shape[1], rgba.shape[0])
    return Texture.from_array(rgba, DataFormat.R8G8B8A8_UNORM, identity=path)


def load_texture(path: str, max_pixels: int = 0) -> Texture:
    """Decode ``path`` into a texture.

    DDS files keep their layout (BGR layouts are loaded as RGBA, luminance is
    expanded to gray RGBA). PVR files keep their payloads. Anything Pillow
    reads (TGA, PNG, ...) becomes a single-level R8G8B8A8 2D texture.

    Raises:
        UnsupportedFormat: unknown container or pixel layout.
        OSError: the file cannot be read.
    """
    ext = Path(path).suffix.lower()
    if ext == DDS_EXTENSION:
        return load_dds(path, force_rgb=True, expand_luminance=True)
    if ext == PVR_EXTENSION:
        return load_pvr(path)
    return _load_with_pillow(path, max_pixels)


def save_texture(texture: Texture, path: str) -> None:
    """Encode ``texture`` into the container named by ``path``'s extension."""
    ext = Path(path).suffix.lower()
    if ext == DDS_EXTENSION:
        save_dds(texture, path)
    elif ext == PVR_EXTENSION:
        save_pvr(texture, path)
    else:
        raise UnsupportedFormat(f"Cannot write textures to '{ext}' files; use .dds or .pvr")
    logger.debug("Saved %s (%s, %d mips)", path, texture.format.name, texture.mip_levels)
