"""Shared test fixtures."""

import shutil
import tempfile

import numpy as np
import pytest

from TexturePress.config import ConverterConfig, Options
from TexturePress.core import DataFormat, Texture


@pytest.fixture
def tmp_dir():
    d = tempfile.mkdtemp()
    yield d
    shutil.rmtree(d, ignore_errors=True)


@pytest.fixture
def default_config():
    return ConverterConfig()


@pytest.fixture
def default_options():
    return Options()


@pytest.fixture
def rgba8_texture():
    """Factory for random R8G8B8A8 textures with a constant alpha."""
    def _make(width=16, height=16, alpha=255, seed=0, identity=None):
        rng = np.random.default_rng(seed)
        data = rng.integers(0, 256, size=(height, width, 4), dtype=np.uint8)
        data[..., 3] = alpha
        return Texture.from_array(data, DataFormat.R8G8B8A8_UNORM, identity=identity)
    return _make
