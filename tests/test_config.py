"""Tests for config validation, YAML round-trips and type safety."""

import logging
import os
import tempfile
import unittest

from TexturePress.config import (
    ConverterConfig, Options, TargetPlatform, TextureFormat, _merge_dict_to_dataclass,
    options_summary,
)
from TexturePress.errors import InvalidArgument


class TestEnums(unittest.TestCase):
    def test_texture_format_parse_is_case_insensitive(self):
        self.assertEqual(TextureFormat.parse("normalInvertY"), TextureFormat.NORMAL_INVERT_Y)
        self.assertEqual(TextureFormat.parse("NoChange"), TextureFormat.NO_CHANGE)
        self.assertEqual(TextureFormat.parse("DXT"), TextureFormat.DXT)
        self.assertEqual(TextureFormat.parse(TextureFormat.COLOR), TextureFormat.COLOR)

    def test_texture_format_parse_rejects_unknown(self):
        with self.assertRaises(InvalidArgument):
            TextureFormat.parse("bc7")

    def test_normal_map_flag(self):
        self.assertTrue(TextureFormat.NORMAL.is_normal_map)
        self.assertTrue(TextureFormat.NORMAL_INVERT_Y.is_normal_map)
        self.assertFalse(TextureFormat.DXT.is_normal_map)

    def test_platform_parse(self):
        self.assertEqual(TargetPlatform.parse("iOS"), TargetPlatform.IOS)
        self.assertEqual(TargetPlatform.parse("desktop_gl"), TargetPlatform.DESKTOP_GL)
        with self.assertRaises(InvalidArgument):
            TargetPlatform.parse("dreamcast")


class TestOptionsValidation(unittest.TestCase):
    def test_defaults(self):
        options = Options()
        self.assertEqual(options.format, TextureFormat.COLOR)
        self.assertEqual(options.input_gamma, 2.2)
        self.assertEqual(options.output_gamma, 2.2)
        self.assertTrue(options.generate_mipmaps)
        self.assertTrue(options.premultiply_alpha)
        self.assertFalse(options.resize_to_power_of_two)
        self.assertFalse(options.scale_alpha_to_coverage)
        self.assertAlmostEqual(options.reference_alpha, 0.9)
        self.assertFalse(options.color_key_enabled)
        self.assertEqual(options.color_key_color, (255, 0, 255, 255))
        options.validate()

    def test_invalid_values_are_all_reported(self):
        options = Options(input_gamma=0.0, reference_alpha=1.5)
        with self.assertRaises(InvalidArgument) as ctx:
            options.validate()
        self.assertIn("input_gamma", str(ctx.exception))
        self.assertIn("reference_alpha", str(ctx.exception))

    def test_invalid_color_key(self):
        with self.assertRaises(InvalidArgument):
            Options(color_key_color=(255, 0, 300, 255)).validate()
        with self.assertRaises(InvalidArgument):
            Options(color_key_color=(255, 0, 255)).validate()

    def test_summary_mentions_format(self):
        text = options_summary(Options(format=TextureFormat.DXT))
        self.assertIn("dxt", text)
        self.assertIn("disabled", text)


class TestConfigValidation(unittest.TestCase):
    def test_default_config_valid(self):
        ConverterConfig().validate()

    def test_invalid_workers(self):
        config = ConverterConfig()
        config.max_workers = 0
        with self.assertRaises(ValueError):
            config.validate()

    def test_invalid_log_level(self):
        config = ConverterConfig()
        config.log_level = "VERBOSE"
        with self.assertRaises(ValueError) as ctx:
            config.validate()
        self.assertIn("log_level", str(ctx.exception))

    def test_invalid_output_extension(self):
        config = ConverterConfig()
        config.output_extension = ".ktx"
        with self.assertRaises(InvalidArgument):
            config.validate()

    def test_options_errors_are_included(self):
        config = ConverterConfig()
        config.options.output_gamma = -1.0
        with self.assertRaises(InvalidArgument) as ctx:
            config.validate()
        self.assertIn("output_gamma", str(ctx.exception))


class TestConfigYaml(unittest.TestCase):
    def test_yaml_roundtrip(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = os.path.join(tmpdir, "converter.yaml")
            config = ConverterConfig()
            config.platform = TargetPlatform.ANDROID
            config.options.format = TextureFormat.NORMAL_INVERT_Y
            config.options.color_key_color = (1, 2, 3, 4)
            config.to_yaml(path)
            loaded = ConverterConfig.from_yaml(path)
            self.assertEqual(loaded.platform, TargetPlatform.ANDROID)
            self.assertEqual(loaded.options.format, TextureFormat.NORMAL_INVERT_Y)
            self.assertEqual(loaded.options.color_key_color, (1, 2, 3, 4))
            self.assertEqual(loaded.max_workers, config.max_workers)
            self.assertEqual(os.listdir(tmpdir), ["converter.yaml"])

    def test_missing_file_gives_defaults(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            config = ConverterConfig.from_yaml(os.path.join(tmpdir, "nope.yaml"))
        self.assertEqual(config.platform, TargetPlatform.GENERIC)

    def test_non_mapping_rejected(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = os.path.join(tmpdir, "bad.yaml")
            with open(path, "w", encoding="utf-8") as f:
                f.write("- just\n- a list\n")
            with self.assertRaises(ValueError):
                ConverterConfig.from_yaml(path)

    def test_invalid_values_rejected_on_load(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = os.path.join(tmpdir, "bad.yaml")
            with open(path, "w", encoding="utf-8") as f:
                f.write("options:\n  reference_alpha: 3.0\n")
            with self.assertRaises(InvalidArgument) as ctx:
                ConverterConfig.from_yaml(path)
            self.assertIn(path, str(ctx.exception))


class TestConfigTypeSafety(unittest.TestCase):
    def test_type_mismatch_rejected(self):
        config = ConverterConfig()
        with self.assertLogs("texture_pipeline.config", level="WARNING") as cm:
            _merge_dict_to_dataclass(config, {"max_workers": "four"})
        self.assertTrue(any("type mismatch" in msg for msg in cm.output), cm.output)
        self.assertEqual(config.max_workers, 1)

    def test_int_to_float_promotion_allowed(self):
        config = ConverterConfig()
        _merge_dict_to_dataclass(config.options, {"input_gamma": 1})
        self.assertEqual(config.options.input_gamma, 1.0)
        self.assertIsInstance(config.options.input_gamma, float)

    def test_bool_rejected_for_numeric_field(self):
        config = ConverterConfig()
        with self.assertLogs("texture_pipeline.config", level="WARNING"):
            _merge_dict_to_dataclass(config, {"max_workers": True})
        self.assertEqual(config.max_workers, 1)

    def test_unknown_key_warns(self):
        config = ConverterConfig()
        with self.assertLogs("texture_pipeline.config", level="WARNING") as cm:
            _merge_dict_to_dataclass(config, {"options": {"sharpen": True}})
        self.assertTrue(any("options.sharpen" in msg for msg in cm.output), cm.output)

    def test_enum_from_string(self):
        config = ConverterConfig()
        _merge_dict_to_dataclass(config, {"platform": "iOS", "options": {"format": "dxt"}})
        self.assertEqual(config.platform, TargetPlatform.IOS)
        self.assertEqual(config.options.format, TextureFormat.DXT)

    def test_bad_enum_keeps_default(self):
        config = ConverterConfig()
        with self.assertLogs("texture_pipeline.config", level="WARNING"):
            _merge_dict_to_dataclass(config.options, {"format": "bc7"})
        self.assertEqual(config.options.format, TextureFormat.COLOR)

    def test_null_keeps_default(self):
        config = ConverterConfig()
        with self.assertLogs("texture_pipeline.config", level="WARNING"):
            _merge_dict_to_dataclass(config, {"log_level": None})
        self.assertEqual(config.log_level, "INFO")


class TestSetupLogging(unittest.TestCase):
    def test_invalid_level_defaults_to_info(self):
        from TexturePress.core import setup_logging
        setup_logging("INVALID_LEVEL")
        effective = logging.getLogger("texture_pipeline").getEffectiveLevel()
        self.assertEqual(effective, logging.INFO)


if __name__ == "__main__":
    unittest.main(verbosity=2)
