"""Tests for CLI argument handling."""

import contextlib
import io
import os
import tempfile
import unittest
from unittest import mock

import numpy as np
from PIL import Image as PILImage

from TexturePress import cli
from TexturePress.config import ConverterConfig, TextureFormat
from TexturePress.core import DataFormat, load_texture
from TexturePress.errors import ProcessingFailed


def _write_tga(path, width=8, height=8, alpha=255):
    rgba = np.full((height, width, 4), 120, dtype=np.uint8)
    rgba[..., 3] = alpha
    PILImage.fromarray(rgba, "RGBA").save(path)
    return path


class _CliTestCase(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.tmpdir = self._tmp.name
        patcher = mock.patch("TexturePress.cli.setup_logging")
        patcher.start()
        self.addCleanup(patcher.stop)

    def tearDown(self):
        self._tmp.cleanup()

    def run_cli(self, *argv):
        """Run ``cli.main`` and return ``(exit_code, stdout, stderr)``."""
        out, err = io.StringIO(), io.StringIO()
        code = 0
        with contextlib.redirect_stdout(out), contextlib.redirect_stderr(err):
            try:
                cli.main(list(argv))
            except SystemExit as exc:
                code = exc.code
        return code, out.getvalue(), err.getvalue()


class TestHelp(_CliTestCase):
    def test_no_arguments_prints_help(self):
        code, out, _ = self.run_cli()
        self.assertEqual(code, 0)
        self.assertIn("usage:", out)
        self.assertIn("--noMipmaps", out)

    def test_help_flag(self):
        code, out, _ = self.run_cli("--help")
        self.assertEqual(code, 0)
        self.assertIn("--scaleAlphaToCoverage", out)

    def test_flags_without_input_fail(self):
        code, _, err = self.run_cli("--noMipmaps")
        self.assertEqual(code, 2)
        self.assertIn("Input file is not specified", err)


class TestArgumentValidation(_CliTestCase):
    def test_invalid_format_fails_fast(self):
        path = _write_tga(os.path.join(self.tmpdir, "a.tga"))
        with mock.patch("TexturePress.cli.TextureProcessor") as processor_cls:
            code, _, err = self.run_cli(path, "--format", "bc7")
        self.assertEqual(code, 2)
        self.assertIn("Unknown texture format", err)
        processor_cls.assert_not_called()

    def test_invalid_float_fails_fast(self):
        path = _write_tga(os.path.join(self.tmpdir, "a.tga"))
        code, _, _ = self.run_cli(path, "--inputGamma", "bright")
        self.assertEqual(code, 2)

    def test_out_of_range_option_rejected(self):
        path = _write_tga(os.path.join(self.tmpdir, "a.tga"))
        code, _, err = self.run_cli(path, "--referenceAlpha", "1.5")
        self.assertEqual(code, 1)
        self.assertIn("reference_alpha", err)
        self.assertFalse(os.path.exists(os.path.join(self.tmpdir, "a.dds")))

    def test_missing_input(self):
        code, _, err = self.run_cli(os.path.join(self.tmpdir, "missing.tga"))
        self.assertEqual(code, 1)
        self.assertIn("Unable to find file", err)

    def test_color_key_color_parsing(self):
        self.assertEqual(cli._color_arg("1,2,3"), (1, 2, 3, 255))
        self.assertEqual(cli._color_arg("1, 2, 3, 4"), (1, 2, 3, 4))
        for bad in ("1,2", "a,b,c", "1,2,300"):
            with self.assertRaises(Exception):
                cli._color_arg(bad)


class TestConversion(_CliTestCase):
    def test_writes_dds_next_to_input(self):
        path = _write_tga(os.path.join(self.tmpdir, "crate.tga"))
        code, _, _ = self.run_cli(path)
        self.assertEqual(code, 0)
        out = load_texture(os.path.join(self.tmpdir, "crate.dds"))
        self.assertEqual(out.format, DataFormat.R8G8B8A8_UNORM)
        self.assertEqual(out.mip_levels, 4)

    def test_legacy_flags(self):
        path = _write_tga(os.path.join(self.tmpdir, "crate.tga"), width=6, height=6)
        code, _, _ = self.run_cli(path, "-noMipmaps", "--format", "dxt", "--resizeToPowerOfTwo")
        self.assertEqual(code, 0)
        out = load_texture(os.path.join(self.tmpdir, "crate.dds"))
        self.assertEqual(out.format, DataFormat.BC1_UNORM)
        self.assertEqual((out.width, out.height, out.mip_levels), (8, 8, 1))

    def test_short_flags(self):
        path = _write_tga(os.path.join(self.tmpdir, "leaf.tga"), alpha=128)
        code, _, _ = self.run_cli(path, "-n", "-a", "-s", "--format", "DXT")
        self.assertEqual(code, 0)
        out = load_texture(os.path.join(self.tmpdir, "leaf.dds"))
        self.assertEqual(out.format, DataFormat.BC3_UNORM)

    def test_output_directory_and_multiple_inputs(self):
        first = _write_tga(os.path.join(self.tmpdir, "one.tga"))
        second = _write_tga(os.path.join(self.tmpdir, "two.tga"))
        out_dir = os.path.join(self.tmpdir, "out") + os.sep
        code, _, _ = self.run_cli(first, second, "-o", out_dir, "--workers", "2", "-n")
        self.assertEqual(code, 0)
        self.assertEqual(sorted(os.listdir(out_dir)), ["one.dds", "two.dds"])

    def test_file_output_with_multiple_inputs_rejected(self):
        first = _write_tga(os.path.join(self.tmpdir, "one.tga"))
        second = _write_tga(os.path.join(self.tmpdir, "two.tga"))
        code, _, err = self.run_cli(first, second, "-o", os.path.join(self.tmpdir, "x.dds"))
        self.assertEqual(code, 1)
        self.assertIn("directory", err)

    def test_inputs_sharing_an_output_path_rejected(self):
        tga = _write_tga(os.path.join(self.tmpdir, "rock.tga"))
        png = os.path.join(self.tmpdir, "rock.png")
        PILImage.new("RGBA", (8, 8)).save(png)
        out_dir = os.path.join(self.tmpdir, "out") + os.sep
        with mock.patch("TexturePress.cli.TextureProcessor") as processor_cls:
            code, _, err = self.run_cli(tga, png, "-o", out_dir, "-n", "-a")
            self.assertEqual(code, 1)
            self.assertIn("rock.dds", err)
            self.assertFalse(os.path.exists(out_dir))

            code, _, err = self.run_cli(tga, png)
            self.assertEqual(code, 1)
            self.assertIn("Error:", err)
            processor_cls.assert_not_called()
        self.assertFalse(os.path.exists(os.path.join(self.tmpdir, "rock.dds")))

    def test_failure_exits_non_zero_without_output(self):
        path = _write_tga(os.path.join(self.tmpdir, "crate.tga"))
        with mock.patch("TexturePress.cli.TextureProcessor") as processor_cls:
            processor_cls.return_value.process.side_effect = ProcessingFailed(
                "boom", identity=path)
            code, _, err = self.run_cli(path)
        self.assertEqual(code, 1)
        self.assertIn("boom", err)
        self.assertFalse(os.path.exists(os.path.join(self.tmpdir, "crate.dds")))


class TestConfigFile(_CliTestCase):
    def test_generate_config(self):
        dest = os.path.join(self.tmpdir, "converter.yaml")
        code, out, _ = self.run_cli("--generate-config", "-c", dest)
        self.assertEqual(code, 0)
        self.assertTrue(os.path.isfile(dest))
        self.assertIn("Generated default", out)
        ConverterConfig.from_yaml(dest).validate()

    def test_cli_overrides_yaml(self):
        dest = os.path.join(self.tmpdir, "converter.yaml")
        config = ConverterConfig()
        config.options.format = TextureFormat.DXT
        config.options.generate_mipmaps = False
        config.to_yaml(dest)
        path = _write_tga(os.path.join(self.tmpdir, "crate.tga"))

        code, _, _ = self.run_cli(path, "-c", dest)
        self.assertEqual(code, 0)
        self.assertEqual(load_texture(os.path.join(self.tmpdir, "crate.dds")).format,
                         DataFormat.BC1_UNORM)

        code, _, _ = self.run_cli(path, "-c", dest, "--format", "color")
        self.assertEqual(code, 0)
        out = load_texture(os.path.join(self.tmpdir, "crate.dds"))
        self.assertEqual(out.format, DataFormat.R8G8B8A8_UNORM)
        self.assertEqual(out.mip_levels, 1)

    def test_missing_config_file(self):
        path = _write_tga(os.path.join(self.tmpdir, "crate.tga"))
        code, _, err = self.run_cli(path, "-c", os.path.join(self.tmpdir, "nope.yaml"))
        self.assertEqual(code, 1)
        self.assertIn("Config file not found", err)


if __name__ == "__main__":
    unittest.main(verbosity=2)
