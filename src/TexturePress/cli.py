"""Command-line interface for the texture converter."""

import argparse
import logging
import os
import sys
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import List, Optional, Tuple

from tqdm import tqdm

from . import __version__
from .config import ConverterConfig, Options, TargetPlatform, TextureFormat, options_summary
from .core import container_extension, get_output_path, load_texture, save_texture, setup_logging
from .errors import InvalidArgument, TexturePressError
from .processor import TextureProcessor

logger = logging.getLogger("texture_pipeline")


def _format_arg(text: str) -> TextureFormat:
    try:
        return TextureFormat.parse(text)
    except InvalidArgument as exc:
        raise argparse.ArgumentTypeError(str(exc)) from None


def _platform_arg(text: str) -> TargetPlatform:
    try:
        return TargetPlatform.parse(text)
    except InvalidArgument as exc:
        raise argparse.ArgumentTypeError(str(exc)) from None


def _color_arg(text: str) -> tuple:
    parts = [p.strip() for p in text.split(",")]
    if len(parts) not in (3, 4):
        raise argparse.ArgumentTypeError(
            f"Color must be R,G,B or R,G,B,A, got '{text}'"
        )
    try:
        values = [int(p) for p in parts]
    except ValueError:
        raise argparse.ArgumentTypeError(f"Color components must be integers, got '{text}'") from None
    if any(not 0 <= v <= 255 for v in values):
        raise argparse.ArgumentTypeError(f"Color components must be in [0, 255], got '{text}'")
    if len(values) == 3:
        values.append(255)
    return tuple(values)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="TexturePress",
        description=f"TexturePress {__version__}: convert DDS/TGA textures into GPU-ready DDS.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  TexturePress diffuse.tga
  TexturePress grass.dds --format dxt -s --referenceAlpha 0.5
  TexturePress bump.tga --format normalInvertY -o out/
  TexturePress *.tga --platform ios --workers 4
  TexturePress --generate-config -c converter.yaml
        """
    )
    parser.add_argument("inputs", nargs="*", metavar="input", help="Input texture file(s)")
    parser.add_argument("-n", "-noMipmaps", "--no-mipmaps", "--noMipmaps", dest="no_mipmaps",
                        action="store_true", help="Prevents the generation of the mipmaps.")
    parser.add_argument("--input-gamma", "--inputGamma", dest="input_gamma", type=float,
                        help="Gamma of the input texture. Default 2.2.")
    parser.add_argument("--output-gamma", "--outputGamma", dest="output_gamma", type=float,
                        help="Gamma of the output texture. Default 2.2.")
    parser.add_argument("-a", "-noPremultiplyAlpha", "--no-premultiply-alpha",
                        "--noPremultiplyAlpha", dest="no_premultiply_alpha", action="store_true",
                        help="Prevents the premultiply of the alpha.")
    parser.add_argument("-r", "--resize-to-power-of-two", "--resizeToPowerOfTwo",
                        dest="resize_to_power_of_two", action="store_true",
                        help="Resize to the next largest power of two.")
    parser.add_argument("--format", type=_format_arg, metavar="{noChange,color,dxt,normal,normalInvertY}",
                        help="Output format. Default 'color'.")
    parser.add_argument("--reference-alpha", "--referenceAlpha", dest="reference_alpha",
                        type=float, help="Reference alpha used in the alpha test. Default 0.9.")
    parser.add_argument("-s", "--scale-alpha-to-coverage", "--scaleAlphaToCoverage",
                        dest="scale_alpha_to_coverage", action="store_true",
                        help="Scale the alpha of lower mip levels to keep alpha-test coverage.")
    parser.add_argument("-k", "--color-key", dest="color_key", action="store_true",
                        help="Replace texels of the color key color with transparent black.")
    parser.add_argument("--color-key-color", dest="color_key_color", type=_color_arg,
                        metavar="R,G,B[,A]", help="Color key color. Default 255,0,255,255.")
    parser.add_argument("--platform", type=_platform_arg,
                        help="Target platform: " + ", ".join(p.value for p in TargetPlatform))
    parser.add_argument("-o", "--output", help="Output file (single input) or directory")
    parser.add_argument("-c", "--config", help="Path to config YAML")
    parser.add_argument("--generate-config", action="store_true",
                        help="Generate a default config YAML")
    parser.add_argument("--workers", type=int, help="Max parallel conversions")
    parser.add_argument("--log-level",
                        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"])
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def _apply_option_overrides(options: Options, args) -> None:
    if args.no_mipmaps:
        options.generate_mipmaps = False
    if args.input_gamma is not None:
        options.input_gamma = args.input_gamma
    if args.output_gamma is not None:
        options.output_gamma = args.output_gamma
    if args.no_premultiply_alpha:
        options.premultiply_alpha = False
    if args.resize_to_power_of_two:
        options.resize_to_power_of_two = True
    if args.format is not None:
        options.format = args.format
    if args.reference_alpha is not None:
        options.reference_alpha = args.reference_alpha
    if args.scale_alpha_to_coverage:
        options.scale_alpha_to_coverage = True
    if args.color_key:
        options.color_key_enabled = True
    if args.color_key_color is not None:
        options.color_key_color = args.color_key_color


def convert_file(input_path: str, options: Options, processor: TextureProcessor,
                 config: ConverterConfig, output: Optional[str] = None) -> str:
    """Load, process and save one texture. Returns the written path.

    Nothing is written unless processing succeeds.
    """
    texture = load_texture(input_path, max_pixels=config.max_image_pixels)
    result = processor.process(texture, options)
    ext = container_extension(result.format, config.output_extension)
    output_path = get_output_path(input_path, output, ext)
    save_texture(result, output_path)
    logger.info("Wrote %s", output_path)
    return output_path


def _find_output_collisions(inputs: List[str], output: Optional[str],
                            config: ConverterConfig) -> List[Tuple[str, str, str]]:
    """Return ``(first, second, output_path)`` for inputs sharing an output.

    Paths are compared without their extension, since device-native results
    switch container.
    """
    seen = {}
    collisions = []
    for path in inputs:
        out = get_output_path(path, output, config.output_extension)
        key = os.path.normcase(os.path.abspath(os.path.splitext(out)[0]))
        if key in seen:
            collisions.append((seen[key], path, out))
        else:
            seen[key] = path
    return collisions


def _convert_all(inputs: List[str], options: Options, config: ConverterConfig,
                 output: Optional[str]) -> int:
    """Convert every input; return the number of failures."""
    processor = TextureProcessor(config)
    failures = 0

    def _report(path, exc):
        logger.error("Failed to convert %s: %s", path, exc)
        print(f"Error: {exc}", file=sys.stderr)

    if len(inputs) == 1:
        try:
            convert_file(inputs[0], options, processor, config, output)
        except (TexturePressError, OSError, ValueError) as exc:
            _report(inputs[0], exc)
            failures += 1
        return failures

    workers = max(1, min(config.max_workers, len(inputs)))
    with ThreadPoolExecutor(max_workers=workers) as executor:
        futures = {
            executor.submit(convert_file, path, options, processor, config, output): path
            for path in inputs
        }
        with tqdm(total=len(futures), desc="Converting") as pbar:
            for future in as_completed(futures):
                path = futures[future]
                try:
                    future.result()
                except (TexturePressError, OSError, ValueError) as exc:
                    _report(path, exc)
                    failures += 1
                pbar.update(1)
    return failures


def main(argv: Optional[List[str]] = None):
    """Parse CLI arguments and convert the given textures."""
    argv = sys.argv[1:] if argv is None else list(argv)
    parser = build_parser()
    if not argv:
        parser.print_help()
        return

    args = parser.parse_args(argv)

    if args.generate_config:
        dest = args.config or "texturepress.yaml"
        if os.path.isdir(dest):
            dest = os.path.join(dest, "texturepress.yaml")
        ConverterConfig().to_yaml(dest)
        print(f"Generated default {dest}")
        return

    # Ensure early validation warnings from from_yaml() are visible on stderr
    # before logging is fully configured.
    logging.basicConfig(level=logging.WARNING, format="%(levelname)s: %(message)s")

    if args.config:
        if not os.path.exists(args.config):
            print(f"Error: Config file not found: {args.config}", file=sys.stderr)
            sys.exit(1)
        try:
            config = ConverterConfig.from_yaml(args.config)
        except ValueError as e:
            print(f"Error: Invalid config: {e}", file=sys.stderr)
            sys.exit(1)
    else:
        config = ConverterConfig()

    # CLI overrides
    if args.platform is not None:
        config.platform = args.platform
    if args.workers is not None:
        config.max_workers = args.workers
    if args.log_level:
        config.log_level = args.log_level
    _apply_option_overrides(config.options, args)

    if not args.inputs:
        parser.error("Input file is not specified")

    try:
        config.validate()
    except InvalidArgument as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    setup_logging(config.log_level, config.log_file or None)

    missing = [path for path in args.inputs if not os.path.isfile(path)]
    if missing:
        for path in missing:
            print(f"Error: Unable to find file '{path}'", file=sys.stderr)
        sys.exit(1)
    if len(args.inputs) > 1 and args.output and not (
            os.path.isdir(args.output) or args.output.endswith(("/", "\\"))):
        print("Error: --output must be a directory when converting several inputs",
              file=sys.stderr)
        sys.exit(1)
    collisions = _find_output_collisions(args.inputs, args.output, config)
    if collisions:
        for first, second, out in collisions:
            print(f"Error: '{first}' and '{second}' would both be written to '{out}'",
                  file=sys.stderr)
        sys.exit(1)

    logger.info("Options:\n%s", options_summary(config.options))
    failures = _convert_all(args.inputs, config.options, config, args.output)
    if failures:
        logger.error("%d of %d texture(s) failed", failures, len(args.inputs))
        sys.exit(1)


if __name__ == "__main__":
    main()
