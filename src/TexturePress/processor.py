"""Run the texture processing pipeline for one texture.

`TextureProcessor.process` decides which transforms a texture needs and
applies them in a fixed order: colour key, alpha classification, float
promotion, linearization (or normal unpacking), resizing, mipmap generation,
alpha/gamma post-processing (or normal repacking) and the final platform
format conversion.
"""

import dataclasses
import logging
from typing import Optional

from .config import ConverterConfig, Options, TextureFormat
from .core.convert import can_decode
from .core.formats import DataFormat, SurfaceFormat, is_dxt, try_get_surface_format
from .core.mathutil import is_power_of_two, round_to_multiple_of_four, round_up_to_power_of_two
from .core.resample import AddressMode, ResizeFilter
from .core.texture import Texture
from .errors import InvalidArgument, ProcessingFailed, UnsupportedFormat
from .phases.alpha import (
    AlphaInfo, apply_color_key, has_alpha, premultiply_alpha, scale_alpha_to_coverage,
)
from .phases.compress import CompressionSelector, get_selector
from .phases.gamma import gamma_to_linear, linear_to_gamma
from .phases.normal import process_normals, unpack_normals

logger = logging.getLogger("texture_pipeline.processor")

WORKING_FORMAT = DataFormat.R32G32B32A32_FLOAT


class TextureProcessor:
    """Convert decoded textures into GPU-ready textures."""

    def __init__(self, config: Optional[ConverterConfig] = None,
                 selector: Optional[CompressionSelector] = None):
        self.config = config or ConverterConfig()
        self.selector = selector or get_selector(self.config.platform, self.config.compression)

    @staticmethod
    def can_skip(texture: Texture, options: Options) -> bool:
        """Return True when ``texture`` already matches ``options``.

        The optional steps must all be no-ops: no colour key, no mipmaps to
        build (disabled, 1x1, or already mipmapped), no premultiply, no
        power-of-two resize needed and no coverage scaling. Then NO_CHANGE
        always skips, COLOR skips for R8G8B8A8 sources and DXT skips for
        BC1/BC2/BC3 sources.
        """
        width, height = texture.width, texture.height
        if not (not options.color_key_enabled
                and (not options.generate_mipmaps
                     or (width == 1 and height == 1)
                     or texture.mip_levels > 1)
                and not options.premultiply_alpha
                and (not options.resize_to_power_of_two
                     or (is_power_of_two(width) and is_power_of_two(height)))
                and not options.scale_alpha_to_coverage):
            return False

        if options.format == TextureFormat.NO_CHANGE:
            return True
        surface_format = try_get_surface_format(texture.format)
        if surface_format is None:
            return False
        return ((options.format == TextureFormat.COLOR and surface_format == SurfaceFormat.COLOR)
                or (options.format == TextureFormat.DXT and is_dxt(surface_format)))

    def process(self, texture: Texture, options: Options) -> Texture:
        """Return ``texture`` converted according to ``options``.

        Raises:
            InvalidArgument: missing texture/options or invalid options.
            UnsupportedFormat: the source payload cannot be decoded and the
                early-out does not apply.
            ProcessingFailed: any step of the pipeline failed.
        """
        if texture is None:
            raise InvalidArgument("texture must not be None.")
        if options is None:
            raise InvalidArgument("options must not be None.")
        options.validate()

        identity = texture.identity
        try:
            skip = self.can_skip(texture, options)
        except Exception as exc:
            raise ProcessingFailed(str(exc), identity, exc) from exc
        if skip:
            logger.info("%s already matches the requested output; no processing required.",
                        identity or "Texture")
            return texture

        # Device-native payloads can only pass through the early-out.
        if not can_decode(texture.format):
            raise UnsupportedFormat(
                f"Surface format {DataFormat(texture.format).name} is not supported."
            )

        try:
            result = self._run(texture, dataclasses.replace(options))
        except Exception as exc:
            raise ProcessingFailed(str(exc), identity, exc) from exc

        logger.info("Processed %s: %dx%d, %d mip levels, %s", identity or "texture",
                    result.width, result.height, result.mip_levels, result.format.name)
        return result

    def _run(self, texture: Texture, options: Options) -> Texture:
        target = options.format
        source_format = texture.format

        if options.color_key_enabled:
            logger.debug("Applying color key %s", tuple(options.color_key_color))
            texture = apply_color_key(texture.convert_to(DataFormat.R8G8B8A8_UNORM),
                                      options.color_key_color)

        is_normal_map = target.is_normal_map
        if is_normal_map:
            options.input_gamma = 1.0
            options.output_gamma = 1.0
            options.premultiply_alpha = False

        alpha_info = AlphaInfo()
        if not is_normal_map and (options.generate_mipmaps or options.resize_to_power_of_two
                                  or options.premultiply_alpha or target == TextureFormat.DXT):
            try:
                alpha_info = has_alpha(texture)
            except UnsupportedFormat:
                logger.debug("Alpha classification needs float data; promoting %s",
                             DataFormat(texture.format).name)
                texture = texture.convert_to(WORKING_FORMAT)
                alpha_info = has_alpha(texture)

        texture = texture.convert_to(WORKING_FORMAT)

        if not is_normal_map:
            texture = gamma_to_linear(texture, options.input_gamma)
        else:
            logger.debug("Unpacking normals")
            texture = unpack_normals(texture)

        alpha_transparency = alpha_info.has_alpha and options.premultiply_alpha

        if options.resize_to_power_of_two:
            width = round_up_to_power_of_two(texture.width)
            height = round_up_to_power_of_two(texture.height)
            if (width, height) != (texture.width, texture.height):
                logger.debug("Resizing %dx%d -> %dx%d (power of two)",
                             texture.width, texture.height, width, height)
                texture = texture.resize(width, height, texture.depth, ResizeFilter.KAISER,
                                         alpha_transparency, AddressMode.CLAMP)

        if target == TextureFormat.DXT or is_normal_map:
            width = round_to_multiple_of_four(texture.width)
            height = round_to_multiple_of_four(texture.height)
            if (width, height) != (texture.width, texture.height):
                logger.debug("Resizing %dx%d -> %dx%d (multiple of four)",
                             texture.width, texture.height, width, height)
                texture = texture.resize(width, height, texture.depth, ResizeFilter.KAISER,
                                         alpha_transparency, AddressMode.CLAMP)

        if options.generate_mipmaps and texture.mip_levels <= 1:
            texture = texture.generate_mipmaps(ResizeFilter.BOX, alpha_transparency,
                                               AddressMode.REPEAT)

        if not is_normal_map:
            if options.scale_alpha_to_coverage:
                logger.debug("Scaling alpha to coverage (reference %.3f)", options.reference_alpha)
                texture = scale_alpha_to_coverage(texture, options.reference_alpha,
                                                  premultiplied_alpha=False)
            texture = linear_to_gamma(texture, options.output_gamma)
            if alpha_info.has_alpha and options.premultiply_alpha:
                logger.debug("Premultiplying alpha")
                texture = premultiply_alpha(texture)
        else:
            texture = process_normals(texture, target == TextureFormat.NORMAL_INVERT_Y)

        if target == TextureFormat.NO_CHANGE:
            return texture.convert_to(source_format)

        texture, decision = self.selector.compress(texture, target, alpha_info)
        if decision.fallback:
            logger.debug("Fell back to %s: %s", decision.format.name, decision.reason)
        return texture


def process_texture(texture: Texture, options: Options,
                    config: Optional[ConverterConfig] = None) -> Texture:
    """Convenience wrapper: ``TextureProcessor(config).process(texture, options)``."""
    return TextureProcessor(config).process(texture, options)
