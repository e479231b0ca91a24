"""Tests for per-platform format selection and the external encoder wrapper."""

import subprocess
import unittest
from unittest import mock

import numpy as np

from TexturePress.config import CompressionConfig, TargetPlatform, TextureFormat
from TexturePress.core import DataFormat, Texture, TextureDescription, TextureDimension
from TexturePress.core.pvr import encode_pvr
from TexturePress.errors import EncoderError, InvalidArgument, PlatformConstraintViolation
from TexturePress.phases.alpha import AlphaInfo
from TexturePress.phases.compress import (
    CompressionSelector, DxtSelector, Etc1Selector, ExternalEncoder, FormatDecision, PvrtcSelector,
    check_pvrtc_constraints, get_selector, select_format,
)

OPAQUE = AlphaInfo(False, False)
BINARY = AlphaInfo(True, False)
FRACTIONAL = AlphaInfo(True, True)


def _desc(width, height, dimension=TextureDimension.TEXTURE2D, depth=1):
    return TextureDescription(dimension, width, height, DataFormat.R32G32B32A32_FLOAT, depth=depth)


class TestSelectorRegistry(unittest.TestCase):
    def test_platform_families(self):
        for platform in (TargetPlatform.GENERIC, TargetPlatform.WINDOWS,
                         TargetPlatform.DESKTOP_GL, TargetPlatform.MACOSX,
                         TargetPlatform.NATIVE_CLIENT, TargetPlatform.XBOX360):
            self.assertIsInstance(get_selector(platform), DxtSelector)
        self.assertIsInstance(get_selector("ios"), PvrtcSelector)
        self.assertIsInstance(get_selector(TargetPlatform.ANDROID), Etc1Selector)

    def test_unknown_platform(self):
        with self.assertRaises(InvalidArgument):
            get_selector("ps2")

    def test_selector_must_implement_compressed_policy(self):
        class Incomplete(CompressionSelector):
            name = "incomplete"

        with self.assertRaises(TypeError):
            Incomplete()


class TestDxtSelection(unittest.TestCase):
    def test_color_is_rgba8(self):
        self.assertEqual(select_format(TextureFormat.COLOR, FRACTIONAL).format,
                         DataFormat.R8G8B8A8_UNORM)

    def test_dxt_alpha_classes(self):
        self.assertEqual(select_format(TextureFormat.DXT, OPAQUE).format, DataFormat.BC1_UNORM)
        self.assertEqual(select_format(TextureFormat.DXT, BINARY).format, DataFormat.BC1_UNORM)
        self.assertEqual(select_format(TextureFormat.DXT, FRACTIONAL).format, DataFormat.BC3_UNORM)

    def test_normal_maps_use_bc3(self):
        for target in (TextureFormat.NORMAL, TextureFormat.NORMAL_INVERT_Y):
            self.assertEqual(select_format(target, OPAQUE).format, DataFormat.BC3_UNORM)

    def test_volume_dxt_falls_back_to_color(self):
        decision = select_format(TextureFormat.DXT, OPAQUE,
                                 description=_desc(8, 8, TextureDimension.TEXTURE3D, depth=4))
        self.assertEqual(decision.format, DataFormat.R8G8B8A8_UNORM)
        self.assertTrue(decision.fallback)

    def test_no_change_has_no_policy(self):
        with self.assertRaises(InvalidArgument):
            select_format(TextureFormat.NO_CHANGE, OPAQUE)


class TestPvrtcSelection(unittest.TestCase):
    def test_constraints(self):
        check_pvrtc_constraints(_desc(8, 8))
        with self.assertRaisesRegex(PlatformConstraintViolation, "power of two"):
            check_pvrtc_constraints(_desc(12, 12))
        with self.assertRaisesRegex(PlatformConstraintViolation, "square"):
            check_pvrtc_constraints(_desc(16, 8))
        with self.assertRaisesRegex(PlatformConstraintViolation, "at least 8"):
            check_pvrtc_constraints(_desc(4, 4))

    def test_alpha_picks_rgba(self):
        decision = select_format(TextureFormat.DXT, BINARY, TargetPlatform.IOS, _desc(16, 16))
        self.assertEqual(decision.format, DataFormat.PVRTCI_4BPP_RGBA)
        decision = select_format(TextureFormat.DXT, OPAQUE, TargetPlatform.IOS, _desc(16, 16))
        self.assertEqual(decision.format, DataFormat.PVRTCI_4BPP_RGB)

    def test_violation_falls_back_to_color_with_warning(self):
        with self.assertLogs("texture_pipeline.compress", level="WARNING") as cm:
            decision = select_format(TextureFormat.DXT, OPAQUE, TargetPlatform.IOS, _desc(16, 8))
        self.assertEqual(decision.format, DataFormat.R8G8B8A8_UNORM)
        self.assertTrue(decision.fallback)
        self.assertTrue(any("Using Color format instead" in msg for msg in cm.output))


class TestEtc1Selection(unittest.TestCase):
    def test_opaque_is_etc1(self):
        decision = select_format(TextureFormat.DXT, OPAQUE, TargetPlatform.ANDROID)
        self.assertEqual(decision.format, DataFormat.ETC1)

    def test_alpha_is_4444(self):
        decision = select_format(TextureFormat.DXT, BINARY, TargetPlatform.ANDROID)
        self.assertEqual(decision.format, DataFormat.B4G4R4A4_UNORM)

    def test_normal_map_is_4444(self):
        decision = select_format(TextureFormat.NORMAL, OPAQUE, TargetPlatform.ANDROID)
        self.assertEqual(decision.format, DataFormat.B4G4R4A4_UNORM)


class TestCompress(unittest.TestCase):
    def test_bc_encode_in_process(self):
        tex = Texture.from_array(np.full((8, 8, 4), 0.5, np.float32), DataFormat.R32G32B32A32_FLOAT)
        out, decision = get_selector().compress(tex, TextureFormat.DXT, OPAQUE)
        self.assertEqual(decision, FormatDecision(DataFormat.BC1_UNORM,
                                                  reason="opaque or binary alpha"))
        self.assertEqual(out.format, DataFormat.BC1_UNORM)

    def test_device_native_uses_encoder(self):
        encoder = mock.Mock(spec=ExternalEncoder)
        tex = Texture.from_array(np.ones((8, 8, 4), np.float32), DataFormat.R32G32B32A32_FLOAT)
        encoder.encode.return_value = tex
        selector = Etc1Selector(encoder=encoder)
        out, decision = selector.compress(tex, TextureFormat.DXT, OPAQUE)
        encoder.encode.assert_called_once_with(tex, DataFormat.ETC1)
        self.assertIs(out, tex)
        self.assertEqual(decision.format, DataFormat.ETC1)


def _etc1_texture(width=8, height=8):
    from TexturePress.core import Image
    desc = TextureDescription(TextureDimension.TEXTURE2D, width, height, DataFormat.ETC1)
    payload = np.zeros(width * height // 2, dtype=np.uint8)
    return Texture(desc, (Image(width, height, DataFormat.ETC1, payload),))


class TestExternalEncoder(unittest.TestCase):
    def _source(self):
        return Texture.from_array(np.full((8, 8, 4), 0.5, np.float32),
                                  DataFormat.R32G32B32A32_FLOAT, identity="rock.tga")

    def test_missing_tool_raises(self):
        with mock.patch("shutil.which", return_value=None):
            encoder = ExternalEncoder(CompressionConfig())
            with self.assertRaises(EncoderError):
                encoder.encode(self._source(), DataFormat.ETC1)

    def test_rejects_non_native_format(self):
        with self.assertRaises(InvalidArgument):
            ExternalEncoder().encode(self._source(), DataFormat.BC1_UNORM)

    def test_runs_tool_and_reads_output(self):
        produced = encode_pvr(_etc1_texture())

        def _fake_run(cmd, **kwargs):
            self.assertIn("-f", cmd)
            self.assertEqual(cmd[cmd.index("-f") + 1], "ETC1")
            with open(cmd[cmd.index("-o") + 1], "wb") as f:
                f.write(produced)
            return subprocess.CompletedProcess(cmd, 0, stdout="ok", stderr="")

        encoder = ExternalEncoder(CompressionConfig(tool_path="/opt/PVRTexToolCLI"))
        with mock.patch("subprocess.run", side_effect=_fake_run) as run_mock:
            out = encoder.encode(self._source(), DataFormat.ETC1)
        run_mock.assert_called_once()
        self.assertEqual(out.format, DataFormat.ETC1)
        self.assertEqual(out.identity, "rock.tga")

    def test_wrong_output_format_rejected(self):
        produced = encode_pvr(_etc1_texture())

        def _fake_run(cmd, **kwargs):
            with open(cmd[cmd.index("-o") + 1], "wb") as f:
                f.write(produced)
            return subprocess.CompletedProcess(cmd, 0, stdout="", stderr="")

        encoder = ExternalEncoder(CompressionConfig(tool_path="/opt/PVRTexToolCLI"))
        with mock.patch("subprocess.run", side_effect=_fake_run):
            with self.assertRaises(EncoderError):
                encoder.encode(self._source(), DataFormat.PVRTCI_4BPP_RGB)

    def test_transient_failure_is_retried(self):
        fail = subprocess.CompletedProcess([], 1, stdout="", stderr="sharing violation")
        ok = subprocess.CompletedProcess([], 0, stdout="", stderr="")
        encoder = ExternalEncoder(CompressionConfig(tool_path="tool", max_attempts=2))
        with mock.patch("subprocess.run", side_effect=[fail, ok]) as run_mock, \
                mock.patch("time.sleep"):
            encoder._run_tool(["tool"], "rock.tga")
        self.assertEqual(run_mock.call_count, 2)

    def test_hard_failure_raises(self):
        fail = subprocess.CompletedProcess([], 3, stdout="", stderr="bad input")
        encoder = ExternalEncoder(CompressionConfig(tool_path="tool", max_attempts=3))
        with mock.patch("subprocess.run", return_value=fail) as run_mock:
            with self.assertRaisesRegex(EncoderError, "exit code 3"):
                encoder._run_tool(["tool"], "rock.tga")
        self.assertEqual(run_mock.call_count, 1)

    def test_timeout_raises_after_attempts(self):
        encoder = ExternalEncoder(CompressionConfig(tool_path="tool", max_attempts=2))
        with mock.patch("subprocess.run",
                        side_effect=subprocess.TimeoutExpired("tool", 1)) as run_mock, \
                mock.patch("time.sleep"):
            with self.assertRaisesRegex(EncoderError, "timed out"):
                encoder._run_tool(["tool"], "rock.tga")
        self.assertEqual(run_mock.call_count, 2)


if __name__ == "__main__":
    unittest.main(verbosity=2)
