"""Define typed configuration models for the converter.

`Options` holds the per-run pipeline parameters; `ConverterConfig` wraps them
with the ambient settings (logging, target platform, external encoder) and
handles YAML load/save and validation.
"""

import os
import logging
import yaml
from dataclasses import dataclass, field
from typing import Tuple
from enum import Enum

from .errors import InvalidArgument

logger = logging.getLogger("texture_pipeline.config")


class TextureFormat(Enum):
    """Enumerate the requested output representations."""

    NO_CHANGE = "nochange"
    COLOR = "color"
    DXT = "dxt"
    NORMAL = "normal"
    NORMAL_INVERT_Y = "normalinverty"

    @classmethod
    def parse(cls, value) -> "TextureFormat":
        """Parse a format name case-insensitively (``"normalInvertY"`` works)."""
        if isinstance(value, cls):
            return value
        key = str(value).strip().lower().replace("_", "").replace("-", "")
        for member in cls:
            if member.value == key:
                return member
        raise InvalidArgument(
            f"Unknown texture format '{value}'. Expected one of: "
            "noChange, color, dxt, normal, normalInvertY."
        )

    @property
    def is_normal_map(self) -> bool:
        return self in (TextureFormat.NORMAL, TextureFormat.NORMAL_INVERT_Y)


class TargetPlatform(Enum):
    """Enumerate deployment targets with their own compression policy."""

    GENERIC = "generic"
    WINDOWS = "windows"
    DESKTOP_GL = "desktopgl"
    MACOSX = "macosx"
    NATIVE_CLIENT = "nativeclient"
    XBOX360 = "xbox360"
    IOS = "ios"
    ANDROID = "android"

    @classmethod
    def parse(cls, value) -> "TargetPlatform":
        if isinstance(value, cls):
            return value
        key = str(value).strip().lower().replace("_", "").replace("-", "")
        for member in cls:
            if member.value == key:
                return member
        raise InvalidArgument(
            f"Unknown platform '{value}'. Expected one of: "
            + ", ".join(m.value for m in cls) + "."
        )


@dataclass
class Options:
    """Per-run texture processing options."""

    format: TextureFormat = TextureFormat.COLOR
    input_gamma: float = 2.2
    output_gamma: float = 2.2
    generate_mipmaps: bool = True
    premultiply_alpha: bool = True
    resize_to_power_of_two: bool = False
    scale_alpha_to_coverage: bool = False
    reference_alpha: float = 0.9
    color_key_enabled: bool = False
    color_key_color: Tuple[int, int, int, int] = (255, 0, 255, 255)

    def validate(self):
        """Raise InvalidArgument listing every invalid field."""
        errors = []
        if not isinstance(self.format, TextureFormat):
            errors.append(f"format must be a TextureFormat, got {self.format!r}")
        if not self.input_gamma > 0:
            errors.append(f"input_gamma must be > 0, got {self.input_gamma}")
        if not self.output_gamma > 0:
            errors.append(f"output_gamma must be > 0, got {self.output_gamma}")
        if not 0.0 <= self.reference_alpha <= 1.0:
            errors.append(f"reference_alpha must be in [0, 1], got {self.reference_alpha}")
        color = tuple(self.color_key_color)
        if len(color) != 4:
            errors.append(f"color_key_color must have 4 components, got {len(color)}")
        elif any(not 0 <= int(c) <= 255 for c in color):
            errors.append(f"color_key_color components must be in [0, 255], got {color}")
        if errors:
            raise InvalidArgument(
                "Invalid options:\n" + "\n".join(f"  - {e}" for e in errors)
            )


@dataclass
class CompressionConfig:
    """Store settings for the external device-native encoder (PVRTexToolCLI)."""

    tool_path: str = ""
    tool_timeout_seconds: int = 120
    max_attempts: int = 2


_SUPPORTED_CONFIG_VERSION = 1
_VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


@dataclass
class ConverterConfig:
    """Top-level converter configuration."""

    config_version: int = 1
    log_level: str = "INFO"
    log_file: str = ""
    platform: TargetPlatform = TargetPlatform.GENERIC
    output_extension: str = ".dds"
    max_workers: int = 1
    max_image_pixels: int = 67108864  # 8192x8192

    options: Options = field(default_factory=Options)
    compression: CompressionConfig = field(default_factory=CompressionConfig)

    @classmethod
    def from_yaml(cls, path: str) -> "ConverterConfig":
        """Load configuration from YAML or return defaults."""
        if not os.path.exists(path):
            logger.info("Config file '%s' not found. Using defaults.", path)
            config = cls()
            config.validate()
            return config
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as exc:
            raise ValueError(
                f"Failed to parse YAML config '{path}': {exc}"
            ) from exc
        if not isinstance(data, dict):
            raise ValueError(
                f"Config file '{path}' must contain a YAML mapping, "
                f"got {type(data).__name__}"
            )
        yaml_version = data.get("config_version", 1)
        if isinstance(yaml_version, int) and yaml_version > _SUPPORTED_CONFIG_VERSION:
            logger.warning(
                "Config file '%s' has config_version=%d, but this build only "
                "supports up to version %d. Some settings may be ignored.",
                path, yaml_version, _SUPPORTED_CONFIG_VERSION,
            )
        config = cls()
        _merge_dict_to_dataclass(config, data)
        try:
            config.validate()
        except ValueError as exc:
            raise InvalidArgument(f"{path}: {exc}") from exc
        return config

    def to_dict(self) -> dict:
        """Return a YAML-safe dict (enums as their values, tuples as lists)."""
        import dataclasses
        return _plain(dataclasses.asdict(self))

    def to_yaml(self, path: str):
        """Write configuration to a YAML file atomically."""
        import threading as _th
        data = self.to_dict()
        os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
        ext = os.path.splitext(path)[1]
        tmp_path = f"{path}.tmp.{os.getpid()}.{_th.get_ident()}{ext}"
        try:
            with open(tmp_path, "w", encoding="utf-8") as f:
                yaml.safe_dump(data, f, default_flow_style=False, sort_keys=False)
            os.replace(tmp_path, path)
        finally:
            if os.path.exists(tmp_path):
                try:
                    os.remove(tmp_path)
                except OSError:
                    pass

    def validate(self):
        """Validate configuration values. Raises InvalidArgument on invalid config."""
        errors = []

        if str(self.log_level).upper() not in _VALID_LOG_LEVELS:
            errors.append(
                f"log_level must be one of {sorted(_VALID_LOG_LEVELS)}, "
                f"got '{self.log_level}'"
            )
        if not isinstance(self.platform, TargetPlatform):
            errors.append(f"platform must be a TargetPlatform, got {self.platform!r}")
        if self.output_extension.lower() not in (".dds", ".pvr"):
            errors.append(
                f"output_extension must be '.dds' or '.pvr', got '{self.output_extension}'"
            )
        if self.max_workers < 1:
            errors.append("max_workers must be >= 1")
        if self.max_workers > 128:
            errors.append("max_workers must be <= 128")
        if self.max_image_pixels < 0:
            errors.append("max_image_pixels must be >= 0 (0 = unlimited)")

        if self.compression.tool_timeout_seconds < 1:
            errors.append("compression.tool_timeout_seconds must be >= 1")
        if self.compression.max_attempts < 1:
            errors.append("compression.max_attempts must be >= 1")
        if self.compression.tool_path and not os.path.isfile(self.compression.tool_path):
            logger.warning(
                "compression.tool_path '%s' does not exist; device-native "
                "formats will fail to encode.", self.compression.tool_path,
            )

        try:
            self.options.validate()
        except InvalidArgument as exc:
            errors.append(str(exc).replace("Invalid options:\n", "options:\n"))

        if errors:
            raise InvalidArgument(
                "Configuration validation failed:\n" +
                "\n".join(f"  - {e}" for e in errors)
            )


def _plain(value):
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {k: _plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    return value


def _coerce(field_val, value, full_key: str):
    """Coerce YAML scalars/lists into enum and tuple fields.

    Returns ``(ok, value)``; ``ok`` is False when the value must be ignored.
    """
    if isinstance(field_val, Enum):
        try:
            return True, type(field_val).parse(value)
        except InvalidArgument as exc:
            logger.warning("Config key '%s': %s Using default value.", full_key, exc)
            return False, None
    if isinstance(field_val, tuple):
        if (isinstance(value, (list, tuple)) and len(value) == len(field_val)
                and all(isinstance(v, int) for v in value)):
            return True, tuple(value)
        logger.warning(
            "Config type mismatch for '%s': expected %d integers, got %r. "
            "Using default value.", full_key, len(field_val), value,
        )
        return False, None
    return True, value


def _merge_dict_to_dataclass(obj, data: dict, _path: str = ""):
    import dataclasses
    for key, value in data.items():
        full_key = f"{_path}{key}"
        if not hasattr(obj, key):
            logger.warning("Unknown config key ignored: '%s'", full_key)
            continue
        field_val = getattr(obj, key)
        if dataclasses.is_dataclass(field_val) and isinstance(value, dict):
            _merge_dict_to_dataclass(field_val, value, f"{full_key}.")
            continue
        # null only overrides fields whose default is None.
        if value is None and field_val is not None:
            logger.warning(
                "Config key '%s' is null but field default is %s. Using default value.",
                full_key, type(field_val).__name__,
            )
            continue
        if isinstance(field_val, (Enum, tuple)):
            ok, value = _coerce(field_val, value, full_key)
            if ok:
                setattr(obj, key, value)
            continue
        expected_type = type(field_val)
        # int and float are interchangeable; integral floats may fill int fields.
        if (field_val is not None
                and not isinstance(value, expected_type)
                and not (expected_type is float and isinstance(value, int))
                and not (expected_type is int
                         and isinstance(value, float)
                         and value == int(value))):
            logger.warning(
                "Config type mismatch for '%s': expected %s, got %s (%r). "
                "Using default value.",
                full_key, expected_type.__name__, type(value).__name__, value,
            )
            continue
        # bool is an int subclass; keep booleans out of numeric fields.
        if expected_type in (int, float) and isinstance(value, bool):
            logger.warning(
                "Config type mismatch for '%s': expected %s, got bool. Using default value.",
                full_key, expected_type.__name__,
            )
            continue
        # e.g. "max_workers: 4.0"
        if expected_type is int and isinstance(value, float):
            value = int(value)
        elif expected_type is float and isinstance(value, int):
            value = float(value)
        setattr(obj, key, value)


def options_summary(options: Options) -> str:
    """Return a human-readable multi-line description of ``options``."""
    return "\n".join([
        f"  Format:                   {options.format.value}",
        f"  Input gamma:              {options.input_gamma}",
        f"  Output gamma:             {options.output_gamma}",
        f"  Generate mipmaps:         {options.generate_mipmaps}",
        f"  Premultiply alpha:        {options.premultiply_alpha}",
        f"  Resize to power of two:   {options.resize_to_power_of_two}",
        f"  Scale alpha to coverage:  {options.scale_alpha_to_coverage}",
        f"  Reference alpha:          {options.reference_alpha}",
        f"  Color key:                "
        + (str(tuple(options.color_key_color)) if options.color_key_enabled else "disabled"),
    ])


