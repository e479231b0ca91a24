"""Output path helpers and atomic file writes."""

import logging
import os
import threading
from pathlib import Path
from typing import Optional

logger = logging.getLogger("texture_pipeline.paths")


def get_output_path(input_path: str, output: Optional[str] = None, ext: str = ".dds") -> str:
    """Return where the converted asset for ``input_path`` is written.

    Without ``output`` the input's extension is replaced in place. An existing
    directory (or a path ending in a separator) receives ``<stem><ext>``;
    anything else is used as the output file name verbatim.
    """
    if not ext.startswith("."):
        ext = "." + ext
    source = Path(input_path)
    if not output:
        return str(source.with_suffix(ext))
    if os.path.isdir(output) or output.endswith(("/", "\\")):
        return os.path.join(output, source.stem + ext)
    return output


def write_bytes_atomic(path: str, payload: bytes) -> None:
    """Write ``payload`` to a temp file, then ``os.replace`` it into place."""
    parent_dir = os.path.dirname(path) or "."
    os.makedirs(parent_dir, exist_ok=True)
    tmp_path = f"{path}.tmp.{os.getpid()}.{threading.get_ident()}"
    try:
        with open(tmp_path, "wb") as f:
            f.write(payload)
        os.replace(tmp_path, path)
        logger.debug("Saved: %s (%d bytes)", path, len(payload))
    finally:
        # Clean up temp file on any error
        if os.path.exists(tmp_path):
            try:
                os.remove(tmp_path)
            except OSError:
                pass
