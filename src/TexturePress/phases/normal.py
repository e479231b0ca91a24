"""Normal-map processing: unpack to signed directions, renormalize, and repack
into the DXT5nm layout (X in alpha, Y in green).
"""

import logging

import numpy as np

from ..core.mathutil import EPSILON, try_normalize
from ..core.texture import Texture

logger = logging.getLogger("texture_pipeline.normal")


def unpack_normals(texture: Texture) -> Texture:
    """Map XYZ from the [0, 1] storage range to [-1, 1]. Alpha is untouched."""
    levels = texture.float_levels()
    for item in levels:
        for level in item:
            level[..., :3] = level[..., :3] * 2.0 - 1.0
    return Texture.from_float_levels(texture.description, levels, texture.format, texture.identity)


def process_normals(texture: Texture, invert_y: bool = False,
                    epsilon: float = EPSILON) -> Texture:
    """Renormalize unpacked normals and repack them as DXT5nm.

    Output texels are ``(1, y, 1, x)`` with x and y back in [0, 1]. Texels
    whose vector is numerically zero become the flat normal ``(0, 0, 1)``.
    """
    levels = texture.float_levels()
    degenerate = 0
    for item in levels:
        for level in item:
            normals, ok = try_normalize(level[..., :3], epsilon)
            flat = ~ok
            if np.any(flat):
                degenerate += int(flat.sum())
                normals[flat] = (0.0, 0.0, 1.0)
            x = normals[..., 0]
            y = -normals[..., 1] if invert_y else normals[..., 1]
            level[..., 0] = 1.0
            level[..., 1] = y * 0.5 + 0.5
            level[..., 2] = 1.0
            level[..., 3] = x * 0.5 + 0.5
    if degenerate:
        logger.debug("Replaced %d zero-length normals with (0, 0, 1) in %s",
                     degenerate, texture.identity or "texture")
    return Texture.from_float_levels(texture.description, levels, texture.format, texture.identity)
