"""Gamma <-> linear transfer for colour textures.

The power-law transfer applies to RGB only; alpha is never touched. Negative
samples (resampling overshoot) are clamped to zero before the power.
"""

import logging

import numpy as np

from ..core.texture import Texture
from ..errors import InvalidArgument

logger = logging.getLogger("texture_pipeline.gamma")


def _apply_power(texture: Texture, exponent: float) -> Texture:
    levels = texture.float_levels()
    for item in levels:
        for level in item:
            rgb = level[..., :3]
            np.power(np.maximum(rgb, 0.0), np.float32(exponent), out=rgb)
    return Texture.from_float_levels(texture.description, levels, texture.format, texture.identity)


def gamma_to_linear(texture: Texture, gamma: float) -> Texture:
    """Return ``texture`` with RGB mapped to linear space: ``c ** gamma``."""
    if not gamma > 0:
        raise InvalidArgument(f"Gamma must be greater than 0, got {gamma}.")
    if gamma == 1.0:
        return texture
    logger.debug("Gamma -> linear (gamma=%.3f) for %s", gamma, texture.identity or "texture")
    return _apply_power(texture, gamma)


def linear_to_gamma(texture: Texture, gamma: float) -> Texture:
    """Return ``texture`` with RGB mapped to gamma space: ``c ** (1 / gamma)``."""
    if not gamma > 0:
        raise InvalidArgument(f"Gamma must be greater than 0, got {gamma}.")
    if gamma == 1.0:
        return texture
    logger.debug("Linear -> gamma (gamma=%.3f) for %s", gamma, texture.identity or "texture")
    return _apply_power(texture, 1.0 / gamma)
