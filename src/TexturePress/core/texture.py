"""Immutable in-memory texture: a description plus an ordered tuple of images.

Images are stored in DDS order. For 1D/2D/cube textures the order is
item-major (array slice or cube face) then mip; for volume textures it is
mip-major then depth slice. Every transform returns a new ``Texture``.
"""

import logging
from dataclasses import dataclass, replace
from enum import Enum
from typing import List, Optional, Sequence, Tuple

import numpy as np

from . import convert
from .formats import DataFormat, format_info, image_nbytes
from .resample import AddressMode, ResizeFilter, resize as resample
from ..errors import InvalidArgument

logger = logging.getLogger("texture_pipeline.texture")

CUBE_FACES = 6


class TextureDimension(Enum):
    TEXTURE1D = "1d"
    TEXTURE2D = "2d"
    TEXTURE3D = "3d"
    TEXTURE_CUBE = "cube"


def mip_size(size: int, mip: int) -> int:
    return max(int(size) >> mip, 1)


def max_mip_levels(width: int, height: int, depth: int = 1) -> int:
    """Number of levels in a full chain down to 1x1x1."""
    largest = max(int(width), int(height), int(depth), 1)
    return largest.bit_length()


@dataclass(frozen=True)
class TextureDescription:
    """Shape and format of a texture."""

    dimension: TextureDimension
    width: int
    height: int
    format: DataFormat
    depth: int = 1
    mip_levels: int = 1
    # Array slices; 6 for a single cube map.
    array_size: int = 1

    @property
    def is_volume(self) -> bool:
        return self.dimension == TextureDimension.TEXTURE3D

    @property
    def is_cube(self) -> bool:
        return self.dimension == TextureDimension.TEXTURE_CUBE

    def level_shape(self, mip: int) -> Tuple[int, int, int]:
        """Return ``(width, height, depth)`` of mip level ``mip``."""
        depth = mip_size(self.depth, mip) if self.is_volume else 1
        return mip_size(self.width, mip), mip_size(self.height, mip), depth

    def image_count(self) -> int:
        if self.is_volume:
            return sum(self.level_shape(mip)[2] for mip in range(self.mip_levels))
        return self.array_size * self.mip_levels


@dataclass(frozen=True, eq=False)
class Image:
    """One 2D surface (a mip of one face, or one slice of a volume mip)."""

    width: int
    height: int
    format: DataFormat
    data: np.ndarray

    @property
    def nbytes(self) -> int:
        return image_nbytes(self.format, self.width, self.height)


def _validate(description: TextureDescription, images: Sequence[Image]) -> None:
    if description.width < 1 or description.height < 1 or description.depth < 1:
        raise InvalidArgument(
            f"Invalid texture size {description.width}x{description.height}x{description.depth}"
        )
    if description.mip_levels < 1:
        raise InvalidArgument(f"Invalid mip level count {description.mip_levels}")
    if description.mip_levels > max_mip_levels(
        description.width, description.height, description.depth if description.is_volume else 1
    ):
        raise InvalidArgument(
            f"{description.mip_levels} mip levels exceed the full chain of a "
            f"{description.width}x{description.height} texture"
        )
    if description.is_cube and description.array_size % CUBE_FACES:
        raise InvalidArgument("Cube textures need a multiple of 6 faces")
    expected = description.image_count()
    if len(images) != expected:
        raise InvalidArgument(f"Texture expects {expected} images, got {len(images)}")
    for image, (w, h) in zip(images, _image_sizes(description)):
        if (image.width, image.height) != (w, h):
            raise InvalidArgument(
                f"Image is {image.width}x{image.height}, expected {w}x{h}"
            )
        if image.format != description.format:
            raise InvalidArgument(
                f"Image format {DataFormat(image.format).name} differs from texture "
                f"format {DataFormat(description.format).name}"
            )


def _image_sizes(description: TextureDescription):
    if description.is_volume:
        for mip in range(description.mip_levels):
            w, h, d = description.level_shape(mip)
            for _ in range(d):
                yield w, h
    else:
        for _ in range(description.array_size):
            for mip in range(description.mip_levels):
                w, h, _ = description.level_shape(mip)
                yield w, h


@dataclass(frozen=True, eq=False)
class Texture:
    """A texture value. ``identity`` names the asset (usually its source path)."""

    description: TextureDescription
    images: Tuple[Image, ...]
    identity: Optional[str] = None

    def __post_init__(self):
        object.__setattr__(self, "images", tuple(self.images))
        _validate(self.description, self.images)

    @classmethod
    def from_array(cls, data: np.ndarray, fmt: DataFormat = DataFormat.R8G8B8A8_UNORM,
                   identity: Optional[str] = None) -> "Texture":
        """Wrap a single 2D payload (e.g. ``(H, W, 4)`` uint8) as a texture."""
        info = format_info(fmt)
        if info.is_block_compressed or info.is_packed16:
            raise InvalidArgument("from_array() needs an uncompressed texel array")
        data = np.asarray(data, dtype=info.dtype)
        if data.ndim == 2:
            data = data[..., None]
        height, width = data.shape[:2]
        description = TextureDescription(TextureDimension.TEXTURE2D, width, height, DataFormat(fmt))
        return cls(description, (Image(width, height, DataFormat(fmt), data),), identity)

    @classmethod
    def from_float_levels(cls, description: TextureDescription,
                          levels: Sequence[Sequence[np.ndarray]],
                          fmt: DataFormat = DataFormat.R32G32B32A32_FLOAT,
                          identity: Optional[str] = None) -> "Texture":
        """Build a texture from float32 RGBA levels.

        ``levels[item][mip]`` is ``(H, W, 4)`` for 1D/2D/cube textures and
        ``(D, H, W, 4)`` for volumes (which have a single item). The
        description's format and mip count are taken from ``fmt`` and the
        number of levels supplied.
        """
        mip_levels = len(levels[0])
        description = replace(description, format=DataFormat(fmt), mip_levels=mip_levels)
        images: List[Image] = []
        if description.is_volume:
            for volume in levels[0]:
                for depth_slice in volume:
                    images.append(_encode_image(depth_slice, fmt))
        else:
            for item in levels:
                for level in item:
                    images.append(_encode_image(level, fmt))
        return cls(description, tuple(images), identity)

    @property
    def width(self) -> int:
        return self.description.width

    @property
    def height(self) -> int:
        return self.description.height

    @property
    def depth(self) -> int:
        return self.description.depth

    @property
    def mip_levels(self) -> int:
        return self.description.mip_levels

    @property
    def format(self) -> DataFormat:
        return self.description.format

    @property
    def dimension(self) -> TextureDimension:
        return self.description.dimension

    def get_image_index(self, mip: int, item: int = 0, slice_index: int = 0) -> int:
        desc = self.description
        if not 0 <= mip < desc.mip_levels:
            raise IndexError(f"Mip level {mip} out of range")
        if desc.is_volume:
            index = 0
            for level in range(mip):
                index += desc.level_shape(level)[2]
            if not 0 <= slice_index < desc.level_shape(mip)[2]:
                raise IndexError(f"Depth slice {slice_index} out of range")
            return index + slice_index
        if not 0 <= item < desc.array_size:
            raise IndexError(f"Item {item} out of range")
        return item * desc.mip_levels + mip

    def get_image(self, mip: int, item: int = 0, slice_index: int = 0) -> Image:
        return self.images[self.get_image_index(mip, item, slice_index)]

    def float_levels(self) -> List[List[np.ndarray]]:
        """Decode every image into float32 RGBA, grouped as ``[item][mip]``."""
        desc = self.description
        if desc.is_volume:
            mips = []
            for mip in range(desc.mip_levels):
                _, _, depth = desc.level_shape(mip)
                slices = [
                    _decode_image(self.get_image(mip, 0, s)) for s in range(depth)
                ]
                mips.append(np.stack(slices, axis=0))
            return [mips]
        return [
            [_decode_image(self.get_image(mip, item)) for mip in range(desc.mip_levels)]
            for item in range(desc.array_size)
        ]

    def convert_to(self, fmt: DataFormat) -> "Texture":
        """Return the texture with every image converted to ``fmt``."""
        fmt = DataFormat(fmt)
        if fmt == self.format:
            return self
        logger.debug("Converting %s from %s to %s", self.identity or "texture",
                     self.format.name, fmt.name)
        images = tuple(
            Image(img.width, img.height, fmt,
                  convert.convert(img.data, self.format, fmt, img.width, img.height))
            for img in self.images
        )
        return Texture(replace(self.description, format=fmt), images, self.identity)

    def resize(self, width: int, height: int, depth: Optional[int] = None,
               filt: ResizeFilter = ResizeFilter.KAISER, alpha_transparency: bool = False,
               address_mode: AddressMode = AddressMode.CLAMP) -> "Texture":
        """Resample to a new base size, keeping the format.

        Each existing mip level is resized from the matching source level; the
        mip count is clamped to the full chain of the new size.
        """
        desc = self.description
        if depth is None or not desc.is_volume:
            depth = desc.depth
        if width < 1 or height < 1 or depth < 1:
            raise InvalidArgument(f"Invalid resize target {width}x{height}x{depth}")
        if (width, height, depth) == (desc.width, desc.height, desc.depth):
            return self

        target = replace(desc, width=int(width), height=int(height), depth=int(depth))
        mip_levels = min(desc.mip_levels, max_mip_levels(width, height, depth if desc.is_volume else 1))
        levels = []
        for item in self.float_levels():
            resized = []
            for mip in range(mip_levels):
                w, h, d = target.level_shape(mip)
                shape = (d, h, w) if desc.is_volume else (h, w)
                resized.append(resample(item[mip], shape, filt, alpha_transparency, address_mode))
            levels.append(resized)
        return Texture.from_float_levels(target, levels, self.format, self.identity)

    def generate_mipmaps(self, filt: ResizeFilter = ResizeFilter.BOX,
                         alpha_transparency: bool = False,
                         address_mode: AddressMode = AddressMode.REPEAT) -> "Texture":
        """Return the texture with a full mip chain built from level 0.

        Each level is filtered from the previous one.
        """
        desc = self.description
        count = max_mip_levels(desc.width, desc.height, desc.depth if desc.is_volume else 1)
        levels = []
        for item in self.float_levels():
            chain = [item[0]]
            for mip in range(1, count):
                w, h, d = desc.level_shape(mip)
                shape = (d, h, w) if desc.is_volume else (h, w)
                chain.append(resample(chain[-1], shape, filt, alpha_transparency, address_mode))
            levels.append(chain)
        logger.debug("Generated %d mip levels for %s", count, self.identity or "texture")
        return Texture.from_float_levels(desc, levels, self.format, self.identity)


def _decode_image(image: Image) -> np.ndarray:
    return convert.to_float(image.data, image.format, image.width, image.height)


def _encode_image(rgba: np.ndarray, fmt: DataFormat) -> Image:
    height, width = rgba.shape[:2]
    return Image(width, height, DataFormat(fmt), convert.from_float(rgba, fmt))
