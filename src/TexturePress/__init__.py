"""Provide package metadata for `TexturePress`."""

import logging as _logging

__version__ = "1.0.0"
_logger = _logging.getLogger("texture_pipeline")

__all__ = ["__version__"]
