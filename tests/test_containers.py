"""Tests for the DDS and PVR container codecs."""

import os
import struct
import tempfile
import unittest

import numpy as np

from TexturePress.core import (
    DataFormat, Image, Texture, TextureDescription, TextureDimension,
)
from TexturePress.core.dds import (
    DDPF_ALPHAPIXELS, DDPF_FOURCC, DDPF_LUMINANCE, DDPF_RGB, DDS_MAGIC, decode_dds,
    encode_dds, load_dds, save_dds,
)
from TexturePress.core.pvr import PVR3_VERSION, decode_pvr, encode_pvr, load_pvr, save_pvr
from TexturePress.errors import UnsupportedFormat


def _legacy_dds(width, height, pf_flags, fourcc=b"\0\0\0\0", bits=0, masks=(0, 0, 0, 0),
                mip_count=1, caps2=0, depth=0):
    header = struct.pack(
        "<7I44x8I5I", 124, 0x1007, height, width, 0, depth, mip_count,
        32, pf_flags, struct.unpack("<I", fourcc)[0], bits, *masks,
        0x1000, caps2, 0, 0, 0,
    )
    return DDS_MAGIC + header


def _gradient(width, height):
    data = np.zeros((height, width, 4), dtype=np.uint8)
    data[..., 0] = np.arange(width, dtype=np.uint8)[None, :] * 10
    data[..., 1] = np.arange(height, dtype=np.uint8)[:, None] * 20
    data[..., 2] = 77
    data[..., 3] = 200
    return data


class TestDdsRead(unittest.TestCase):
    def test_bgra_forced_to_rgba(self):
        raw = _legacy_dds(1, 1, DDPF_RGB | DDPF_ALPHAPIXELS, bits=32,
                          masks=(0x00FF0000, 0x0000FF00, 0x000000FF, 0xFF000000))
        tex = decode_dds(raw + bytes([10, 20, 30, 40]))
        self.assertEqual(tex.format, DataFormat.R8G8B8A8_UNORM)
        np.testing.assert_array_equal(tex.images[0].data[0, 0], [30, 20, 10, 40])

    def test_bgra_kept_without_force(self):
        raw = _legacy_dds(1, 1, DDPF_RGB | DDPF_ALPHAPIXELS, bits=32,
                          masks=(0x00FF0000, 0x0000FF00, 0x000000FF, 0xFF000000))
        tex = decode_dds(raw + bytes([10, 20, 30, 40]), force_rgb=False)
        self.assertEqual(tex.format, DataFormat.B8G8R8A8_UNORM)

    def test_bgr24_expanded(self):
        raw = _legacy_dds(2, 1, DDPF_RGB, bits=24, masks=(0x00FF0000, 0x0000FF00, 0x000000FF, 0))
        tex = decode_dds(raw + bytes([1, 2, 3, 4, 5, 6]))
        np.testing.assert_array_equal(tex.images[0].data[0], [[3, 2, 1, 255], [6, 5, 4, 255]])

    def test_luminance_expanded_to_gray(self):
        raw = _legacy_dds(2, 1, DDPF_LUMINANCE, bits=8, masks=(0xFF, 0, 0, 0))
        tex = decode_dds(raw + bytes([9, 200]))
        self.assertEqual(tex.format, DataFormat.R8G8B8A8_UNORM)
        np.testing.assert_array_equal(tex.images[0].data[0, 1], [200, 200, 200, 255])

    def test_luminance_kept_as_r8(self):
        raw = _legacy_dds(2, 1, DDPF_LUMINANCE, bits=8, masks=(0xFF, 0, 0, 0))
        tex = decode_dds(raw + bytes([9, 200]), expand_luminance=False)
        self.assertEqual(tex.format, DataFormat.R8_UNORM)

    def test_dxt1_with_mips(self):
        raw = _legacy_dds(4, 4, DDPF_FOURCC, fourcc=b"DXT1", mip_count=3)
        payload = bytes(8 * 3)
        tex = decode_dds(raw + payload)
        self.assertEqual(tex.format, DataFormat.BC1_UNORM)
        self.assertEqual(tex.mip_levels, 3)
        self.assertEqual(tex.images[2].data.shape, (1, 1, 8))

    def test_truncated_payload(self):
        raw = _legacy_dds(4, 4, DDPF_FOURCC, fourcc=b"DXT5")
        with self.assertRaises(UnsupportedFormat):
            decode_dds(raw + bytes(8))

    def test_bad_magic(self):
        with self.assertRaises(UnsupportedFormat):
            decode_dds(b"PNG " + bytes(200))

    def test_unknown_fourcc(self):
        raw = _legacy_dds(4, 4, DDPF_FOURCC, fourcc=b"ATI2")
        with self.assertRaises(UnsupportedFormat):
            decode_dds(raw + bytes(16))


class TestDdsRoundTrip(unittest.TestCase):
    def _assert_same(self, a, b):
        self.assertEqual(a.description, b.description)
        for x, y in zip(a.images, b.images):
            np.testing.assert_array_equal(x.data, y.data)

    def test_rgba8_with_mips(self):
        tex = Texture.from_array(_gradient(8, 4)).generate_mipmaps()
        self._assert_same(decode_dds(encode_dds(tex)), tex)

    def test_bc3(self):
        tex = Texture.from_array(_gradient(8, 8)).convert_to(DataFormat.BC3_UNORM)
        self._assert_same(decode_dds(encode_dds(tex)), tex)

    def test_packed_4444(self):
        tex = Texture.from_array(_gradient(4, 4)).convert_to(DataFormat.B4G4R4A4_UNORM)
        self._assert_same(decode_dds(encode_dds(tex)), tex)

    def test_float_cube(self):
        desc = TextureDescription(TextureDimension.TEXTURE_CUBE, 2, 2,
                                  DataFormat.R32G32B32A32_FLOAT, array_size=6)
        levels = [[np.full((2, 2, 4), face / 6.0, np.float32)] for face in range(6)]
        tex = Texture.from_float_levels(desc, levels)
        self._assert_same(decode_dds(encode_dds(tex)), tex)

    def test_volume(self):
        desc = TextureDescription(TextureDimension.TEXTURE3D, 4, 4,
                                  DataFormat.R8G8B8A8_UNORM, depth=2)
        volume = np.random.rand(2, 4, 4, 4).astype(np.float32)
        tex = Texture.from_float_levels(desc, [[volume]], DataFormat.R8G8B8A8_UNORM)
        tex = tex.generate_mipmaps()
        self._assert_same(decode_dds(encode_dds(tex)), tex)

    def test_texture_array_uses_dx10(self):
        desc = TextureDescription(TextureDimension.TEXTURE2D, 2, 2,
                                  DataFormat.R8G8B8A8_UNORM, array_size=3)
        levels = [[np.full((2, 2, 4), i / 3.0, np.float32)] for i in range(3)]
        tex = Texture.from_float_levels(desc, levels, DataFormat.R8G8B8A8_UNORM)
        raw = encode_dds(tex)
        self.assertEqual(raw[84:88], b"DX10")
        self._assert_same(decode_dds(raw), tex)

    def test_device_native_rejected(self):
        desc = TextureDescription(TextureDimension.TEXTURE2D, 8, 8, DataFormat.ETC1)
        tex = Texture(desc, (Image(8, 8, DataFormat.ETC1, np.zeros(32, np.uint8)),))
        with self.assertRaises(UnsupportedFormat):
            encode_dds(tex)

    def test_save_and_load(self):
        tex = Texture.from_array(_gradient(4, 4))
        with tempfile.TemporaryDirectory() as tmpdir:
            path = os.path.join(tmpdir, "sub", "out.dds")
            save_dds(tex, path)
            self.assertEqual(os.listdir(os.path.dirname(path)), ["out.dds"])
            loaded = load_dds(path)
        self.assertEqual(loaded.identity, path)
        np.testing.assert_array_equal(loaded.images[0].data, tex.images[0].data)


class TestPvr(unittest.TestCase):
    def test_header_version(self):
        raw = encode_pvr(Texture.from_array(_gradient(2, 2)))
        self.assertEqual(struct.unpack_from("<I", raw, 0)[0], PVR3_VERSION)

    def test_rgba8_round_trip_with_mips(self):
        tex = Texture.from_array(_gradient(8, 8)).generate_mipmaps()
        back = decode_pvr(encode_pvr(tex))
        self.assertEqual(back.description, tex.description)
        for a, b in zip(back.images, tex.images):
            np.testing.assert_array_equal(a.data, b.data)

    def test_cube_order_is_restored(self):
        desc = TextureDescription(TextureDimension.TEXTURE_CUBE, 2, 2,
                                  DataFormat.R8G8B8A8_UNORM, array_size=6)
        levels = [[np.full((2, 2, 4), face / 6.0, np.float32),
                   np.full((1, 1, 4), face / 6.0, np.float32)] for face in range(6)]
        tex = Texture.from_float_levels(desc, levels, DataFormat.R8G8B8A8_UNORM)
        back = decode_pvr(encode_pvr(tex))
        self.assertTrue(back.description.is_cube)
        np.testing.assert_array_equal(back.get_image(1, item=4).data,
                                      tex.get_image(1, item=4).data)

    def test_device_native_payload_kept(self):
        desc = TextureDescription(TextureDimension.TEXTURE2D, 8, 8,
                                  DataFormat.PVRTCI_4BPP_RGBA)
        payload = np.arange(32, dtype=np.uint8)
        tex = Texture(desc, (Image(8, 8, DataFormat.PVRTCI_4BPP_RGBA, payload),))
        with tempfile.TemporaryDirectory() as tmpdir:
            path = os.path.join(tmpdir, "out.pvr")
            save_pvr(tex, path)
            back = load_pvr(path)
        self.assertEqual(back.format, DataFormat.PVRTCI_4BPP_RGBA)
        np.testing.assert_array_equal(back.images[0].data, payload)

    def test_unsupported_format(self):
        tex = Texture.from_array(_gradient(4, 4)).convert_to(DataFormat.BC1_UNORM)
        with self.assertRaises(UnsupportedFormat):
            encode_pvr(tex)

    def test_bad_version(self):
        with self.assertRaises(UnsupportedFormat):
            decode_pvr(bytes(64))


if __name__ == "__main__":
    unittest.main(verbosity=2)
