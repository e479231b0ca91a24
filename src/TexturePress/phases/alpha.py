"""Alpha-channel processing: classification, colour keying, premultiplication
and alpha-to-coverage scaling for mipmapped cut-out textures.
"""

import logging
from dataclasses import dataclass
from typing import Sequence

import numpy as np

from ..core.formats import DataFormat
from ..core.texture import Image, Texture
from ..errors import InvalidArgument, UnsupportedFormat

logger = logging.getLogger("texture_pipeline.alpha")

# Binary search steps when matching alpha-test coverage.
_COVERAGE_SEARCH_STEPS = 10
_COVERAGE_MAX_SCALE = 4.0


@dataclass(frozen=True)
class AlphaInfo:
    """How a texture uses its alpha channel."""

    # True when any texel is not fully opaque.
    has_alpha: bool = False
    # True when any texel's alpha lies strictly between 0 and 1.
    has_fractional_alpha: bool = False


# Format -> (alpha extractor, value meaning fully opaque).
_ALPHA_READERS = {
    DataFormat.R8G8B8A8_UNORM: (lambda d: d[..., 3], 255),
    DataFormat.B8G8R8A8_UNORM: (lambda d: d[..., 3], 255),
    DataFormat.A8_UNORM: (lambda d: d[..., 0], 255),
    DataFormat.R16G16B16A16_UNORM: (lambda d: d[..., 3], 65535),
    DataFormat.R32G32B32A32_FLOAT: (lambda d: d[..., 3], 1.0),
}


def has_alpha(texture: Texture) -> AlphaInfo:
    """Classify the alpha channel of every image in ``texture``.

    Raises:
        UnsupportedFormat: the format's alpha cannot be read directly; callers
            convert to R32G32B32A32_FLOAT and retry.
    """
    reader = _ALPHA_READERS.get(texture.format)
    if reader is None:
        raise UnsupportedFormat(
            f"Alpha classification does not support {DataFormat(texture.format).name}."
        )
    extract, opaque = reader
    any_alpha = False
    any_fractional = False
    for image in texture.images:
        alpha = extract(image.data)
        if not any_alpha and np.any(alpha != opaque):
            any_alpha = True
        if np.any((alpha > 0) & (alpha < opaque)):
            any_fractional = True
            any_alpha = True
            break
    info = AlphaInfo(any_alpha, any_fractional)
    logger.debug("Alpha classification for %s: %s", texture.identity or "texture", info)
    return info


def apply_color_key(texture: Texture, color: Sequence[int]) -> Texture:
    """Replace texels exactly matching ``color`` (RGBA8) with transparent black."""
    if texture.format != DataFormat.R8G8B8A8_UNORM:
        raise InvalidArgument(
            f"Color keying requires R8G8B8A8_UNORM, got {DataFormat(texture.format).name}."
        )
    key = np.asarray(tuple(color), dtype=np.uint8)
    images = []
    replaced = 0
    for image in texture.images:
        data = image.data.copy()
        mask = np.all(data == key, axis=-1)
        data[mask] = 0
        replaced += int(mask.sum())
        images.append(Image(image.width, image.height, image.format, data))
    logger.debug("Color key %s replaced %d texels in %s", tuple(key.tolist()), replaced,
                 texture.identity or "texture")
    return Texture(texture.description, tuple(images), texture.identity)


def premultiply_alpha(texture: Texture) -> Texture:
    """Multiply RGB by alpha in every image."""
    levels = texture.float_levels()
    for item in levels:
        for level in item:
            level[..., :3] *= level[..., 3:4]
    return Texture.from_float_levels(texture.description, levels, texture.format, texture.identity)


def alpha_coverage(alpha: np.ndarray, reference_alpha: float, scale: float = 1.0) -> float:
    """Return the fraction of texels whose scaled alpha passes ``> reference_alpha``."""
    if alpha.size == 0:
        return 0.0
    return float(np.count_nonzero(alpha * np.float32(scale) > reference_alpha)) / alpha.size


def _find_coverage_scale(alpha: np.ndarray, reference_alpha: float, target: float) -> float:
    lo, hi = 0.0, _COVERAGE_MAX_SCALE
    scale = 1.0
    for _ in range(_COVERAGE_SEARCH_STEPS):
        coverage = alpha_coverage(alpha, reference_alpha, scale)
        if coverage < target:
            lo = scale
        elif coverage > target:
            hi = scale
        else:
            break
        scale = (lo + hi) / 2.0
    return scale


def scale_alpha_to_coverage(texture: Texture, reference_alpha: float,
                            premultiplied_alpha: bool = False) -> Texture:
    """Rescale the alpha of mip levels 1+ so their alpha-test coverage
    matches level 0.

    Coverage is the fraction of texels with ``alpha > reference_alpha``. When
    ``premultiplied_alpha`` is True the colour channels are scaled along with
    alpha.
    """
    if not 0.0 <= reference_alpha <= 1.0:
        raise InvalidArgument(f"Reference alpha must be in [0, 1], got {reference_alpha}.")
    if texture.mip_levels <= 1:
        return texture

    levels = texture.float_levels()
    for item in levels:
        target = alpha_coverage(item[0][..., 3], reference_alpha)
        for mip in range(1, len(item)):
            level = item[mip]
            scale = _find_coverage_scale(level[..., 3], reference_alpha, target)
            logger.debug("Mip %d alpha coverage scale %.4f (target %.4f)", mip, scale, target)
            level[..., 3] = np.clip(level[..., 3] * scale, 0.0, 1.0)
            if premultiplied_alpha:
                level[..., :3] *= np.float32(scale)
    return Texture.from_float_levels(texture.description, levels, texture.format, texture.identity)
