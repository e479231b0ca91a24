"""Select and produce the final GPU format per deployment platform.

Each platform family has a selector. Desktop-class targets use BC1/BC3,
iOS uses PVRTC (with strict size limits and a colour fallback) and Android
uses ETC1 for opaque textures and 4444 for textures with alpha. PVRTC and
ETC1 payloads are produced by an external encoder (PVRTexToolCLI).
"""

import logging
import os
import shutil
import signal
import subprocess
import sys
import tempfile
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, Optional, Tuple, Type

from ..config import CompressionConfig, TargetPlatform, TextureFormat
from ..core.formats import DEVICE_NATIVE_FORMATS, DataFormat
from ..core.mathutil import is_power_of_two
from ..core.pvr import decode_pvr, encode_pvr
from ..core.texture import Texture, TextureDescription, TextureDimension
from ..errors import EncoderError, InvalidArgument, PlatformConstraintViolation
from .alpha import AlphaInfo

logger = logging.getLogger("texture_pipeline.compress")

PVRTEXTOOL_NAME = "PVRTexToolCLI"
PVRTC_MIN_SIZE = 8

# Known Windows NTSTATUS crash codes (as signed int32)
_CRASH_CODES_WIN = {
    -1073741819: "ACCESS_VIOLATION (0xC0000005)",
    -1073741795: "ILLEGAL_INSTRUCTION (0xC000001D)",
    -1073740791: "STACK_BUFFER_OVERRUN (0xC0000409)",
    -1073741571: "STACK_OVERFLOW (0xC00000FD)",
    -1073741515: "DLL_NOT_FOUND (0xC0000135)",
}

# PVRTexToolCLI ``-f`` names for the device-native formats.
_TOOL_FORMATS = {
    DataFormat.PVRTCI_4BPP_RGB: ("PVRTC1_4_RGB", "pvrtcbest"),
    DataFormat.PVRTCI_4BPP_RGBA: ("PVRTC1_4", "pvrtcbest"),
    DataFormat.ETC1: ("ETC1", "etcslow"),
}


@dataclass(frozen=True)
class FormatDecision:
    """The output format chosen for a texture."""

    format: DataFormat
    # True when the preferred compressed format was rejected.
    fallback: bool = False
    reason: str = ""


def _is_crash_code(returncode: int) -> Optional[str]:
    """Return a human-readable crash description, or None if not a crash."""
    if sys.platform == "win32":
        desc = _CRASH_CODES_WIN.get(returncode)
        if desc:
            return desc
        if returncode < 0:
            return f"NTSTATUS 0x{returncode & 0xFFFFFFFF:08X}"
        return None
    # Unix: negative returncode means killed by signal
    if returncode < 0:
        sig_num = -returncode
        try:
            return f"{signal.Signals(sig_num).name} (signal {sig_num})"
        except ValueError:
            return f"signal {sig_num}"
    return None


def _forward_output(text: str, stream_name: str, level: int, max_lines: int = 40) -> None:
    """Log subprocess output line-by-line at the given level."""
    if not text or not text.strip():
        return
    lines = text.splitlines()
    if len(lines) > max_lines:
        logger.log(level, "[%s] ... %d earlier %s lines omitted",
                   PVRTEXTOOL_NAME, len(lines) - max_lines, stream_name)
        lines = lines[-max_lines:]
    for line in lines:
        logger.log(level, "[%s] %s: %s", PVRTEXTOOL_NAME, stream_name, line[:500])


def _is_transient_tool_failure(text: str, returncode: int) -> bool:
    """Return True when the failure likely came from temporary I/O contention."""
    msg = (text or "").lower()
    transient_markers = (
        "sharing violation",
        "being used by another process",
        "temporarily unavailable",
        "resource busy",
        "timed out",
    )
    if any(marker in msg for marker in transient_markers):
        return True
    return returncode in (1, 2) and ("lock" in msg or "busy" in msg)


class ExternalEncoder:
    """Encode PVRTC and ETC1 payloads by running PVRTexToolCLI."""

    def __init__(self, config: Optional[CompressionConfig] = None):
        self.config = config or CompressionConfig()
        self._tool_path: Optional[str] = None
        self._tool_resolved = False

    def resolve_tool(self) -> Optional[str]:
        """Resolve and cache the encoder path (config first, then PATH)."""
        if self._tool_resolved:
            return self._tool_path
        self._tool_resolved = True
        tool_path = self.config.tool_path or shutil.which(PVRTEXTOOL_NAME)
        if not tool_path:
            logger.warning(
                "%s not found. Set compression.tool_path in config or install it on PATH.",
                PVRTEXTOOL_NAME,
            )
        self._tool_path = tool_path
        return tool_path

    def _run_tool(self, cmd: list, source_info: str) -> subprocess.CompletedProcess:
        """Run the encoder with retries on transient failures.

        Raises:
            EncoderError: the tool is missing, times out, crashes or fails.
        """
        logger.debug("Running %s: %s", PVRTEXTOOL_NAME, " ".join(cmd))
        timeout = max(1, int(self.config.tool_timeout_seconds))
        max_attempts = max(1, int(self.config.max_attempts))
        for attempt in range(1, max_attempts + 1):
            try:
                proc = subprocess.run(
                    cmd, capture_output=True, timeout=timeout, text=True,
                    encoding="utf-8", errors="replace",
                )
            except FileNotFoundError as exc:
                raise EncoderError(f"{PVRTEXTOOL_NAME} not found: {cmd[0]}") from exc
            except PermissionError as exc:
                raise EncoderError(f"{PVRTEXTOOL_NAME} is not executable: {cmd[0]}") from exc
            except subprocess.TimeoutExpired as exc:
                if attempt < max_attempts:
                    delay = 0.3 * attempt
                    logger.warning(
                        "%s timed out for %s, attempt %d/%d in %.1fs",
                        PVRTEXTOOL_NAME, source_info, attempt + 1, max_attempts, delay,
                    )
                    time.sleep(delay)
                    continue
                raise EncoderError(
                    f"{PVRTEXTOOL_NAME} timed out after {timeout}s for {source_info}"
                ) from exc

            if proc.returncode == 0:
                _forward_output(proc.stdout, "stdout", logging.DEBUG)
                return proc

            _forward_output(proc.stdout, "stdout", logging.ERROR)
            _forward_output(proc.stderr, "stderr", logging.ERROR)
            crash = _is_crash_code(proc.returncode)
            merged_output = f"{proc.stdout or ''}\n{proc.stderr or ''}"
            if (attempt < max_attempts and not crash
                    and _is_transient_tool_failure(merged_output, proc.returncode)):
                delay = 0.3 * attempt
                logger.warning(
                    "%s retrying after transient failure (%s), attempt %d/%d in %.1fs",
                    PVRTEXTOOL_NAME, source_info, attempt + 1, max_attempts, delay,
                )
                time.sleep(delay)
                continue
            if crash:
                raise EncoderError(
                    f"{PVRTEXTOOL_NAME} crashed processing {source_info}: {crash} "
                    f"(exit code {proc.returncode})"
                )
            raise EncoderError(
                f"{PVRTEXTOOL_NAME} failed for {source_info} with exit code {proc.returncode}"
            )
        raise EncoderError(f"{PVRTEXTOOL_NAME} failed for {source_info}")

    def encode(self, texture: Texture, fmt: DataFormat) -> Texture:
        """Return ``texture`` encoded to the device-native format ``fmt``."""
        fmt = DataFormat(fmt)
        if fmt not in _TOOL_FORMATS:
            raise InvalidArgument(f"{fmt.name} is not produced by the external encoder.")
        tool = self.resolve_tool()
        if not tool:
            raise EncoderError(f"Cannot encode {fmt.name}: {PVRTEXTOOL_NAME} is unavailable.")

        tool_format, quality = _TOOL_FORMATS[fmt]
        source_info = texture.identity or "texture"
        with tempfile.TemporaryDirectory(prefix="texturepress_") as temp_dir:
            src = os.path.join(temp_dir, "input.pvr")
            dst = os.path.join(temp_dir, "output.pvr")
            with open(src, "wb") as f:
                f.write(encode_pvr(texture.convert_to(DataFormat.R8G8B8A8_UNORM)))
            self._run_tool(
                [tool, "-i", src, "-o", dst, "-f", tool_format, "-q", quality],
                source_info,
            )
            try:
                with open(dst, "rb") as f:
                    raw = f.read()
            except OSError as exc:
                raise EncoderError(f"{PVRTEXTOOL_NAME} produced no output for {source_info}") from exc

        encoded = decode_pvr(raw, identity=texture.identity)
        if encoded.format != fmt:
            raise EncoderError(
                f"{PVRTEXTOOL_NAME} wrote {encoded.format.name}, expected {fmt.name}"
            )
        if (encoded.width, encoded.height, encoded.mip_levels) != (
                texture.width, texture.height, texture.mip_levels):
            raise EncoderError(
                f"{PVRTEXTOOL_NAME} changed the texture shape for {source_info}"
            )
        logger.debug("Encoded %s as %s", source_info, fmt.name)
        return encoded


class CompressionSelector(ABC):
    """Base selector: the policy shared by every platform."""

    name = "base"
    platforms: Tuple[TargetPlatform, ...] = ()

    def __init__(self, config: Optional[CompressionConfig] = None,
                 encoder: Optional[ExternalEncoder] = None):
        self.config = config or CompressionConfig()
        self.encoder = encoder or ExternalEncoder(self.config)

    def select_format(self, target: TextureFormat, alpha_info: AlphaInfo,
                      description: TextureDescription) -> FormatDecision:
        """Choose the output format for ``target``."""
        if target == TextureFormat.COLOR:
            return FormatDecision(DataFormat.R8G8B8A8_UNORM, reason="color")
        if target == TextureFormat.DXT:
            if description.dimension == TextureDimension.TEXTURE3D:
                return FormatDecision(
                    DataFormat.R8G8B8A8_UNORM, fallback=True,
                    reason="volume textures are not block-compressed",
                )
            return self._select_compressed(alpha_info, description)
        if target.is_normal_map:
            # Normal maps carry X in alpha.
            return self._select_compressed(AlphaInfo(True, True), description)
        raise InvalidArgument(f"No output format policy for target '{target.value}'.")

    @abstractmethod
    def _select_compressed(self, alpha_info: AlphaInfo,
                           description: TextureDescription) -> FormatDecision:
        """Pick the platform's compressed format for DXT and normal-map targets."""

    def encode(self, texture: Texture, decision: FormatDecision) -> Texture:
        """Convert ``texture`` to the decided format."""
        if decision.format in DEVICE_NATIVE_FORMATS:
            return self.encoder.encode(texture, decision.format)
        return texture.convert_to(decision.format)

    def compress(self, texture: Texture, target: TextureFormat,
                 alpha_info: AlphaInfo) -> Tuple[Texture, FormatDecision]:
        decision = self.select_format(target, alpha_info, texture.description)
        logger.debug("%s selector chose %s for %s (%s)", self.name, decision.format.name,
                     texture.identity or "texture", decision.reason)
        return self.encode(texture, decision), decision


class DxtSelector(CompressionSelector):
    """BC1 for opaque or 1-bit alpha, BC3 for interpolated alpha."""

    name = "dxt"
    platforms = (
        TargetPlatform.GENERIC, TargetPlatform.WINDOWS, TargetPlatform.DESKTOP_GL,
        TargetPlatform.MACOSX, TargetPlatform.NATIVE_CLIENT, TargetPlatform.XBOX360,
    )

    def _select_compressed(self, alpha_info, description):
        if alpha_info.has_fractional_alpha:
            return FormatDecision(DataFormat.BC3_UNORM, reason="fractional alpha")
        return FormatDecision(DataFormat.BC1_UNORM, reason="opaque or binary alpha")


def check_pvrtc_constraints(description: TextureDescription) -> None:
    """Raise PlatformConstraintViolation unless the size is PVRTC-compatible."""
    width, height = description.width, description.height
    if not is_power_of_two(width) or not is_power_of_two(height):
        raise PlatformConstraintViolation(
            "PVRTC texture compression failed. Texture width and height need to be a power of two."
        )
    if width != height:
        raise PlatformConstraintViolation(
            "PVRTC texture compression failed. Texture must be square."
        )
    if width < PVRTC_MIN_SIZE:
        raise PlatformConstraintViolation(
            "PVRTC texture compression failed. Texture width and height must be at least 8."
        )


class PvrtcSelector(CompressionSelector):
    """PVRTC 4bpp for square power-of-two textures, colour otherwise."""

    name = "pvrtc"
    platforms = (TargetPlatform.IOS,)

    def _select_compressed(self, alpha_info, description):
        try:
            check_pvrtc_constraints(description)
        except PlatformConstraintViolation as exc:
            logger.warning("%s Using Color format instead.", exc)
            return FormatDecision(DataFormat.R8G8B8A8_UNORM, fallback=True, reason=str(exc))
        if alpha_info.has_alpha:
            return FormatDecision(DataFormat.PVRTCI_4BPP_RGBA, reason="alpha")
        return FormatDecision(DataFormat.PVRTCI_4BPP_RGB, reason="opaque")


class Etc1Selector(CompressionSelector):
    """ETC1 for opaque textures; 4444 when alpha is needed (ETC1 has none)."""

    name = "etc1"
    platforms = (TargetPlatform.ANDROID,)

    def _select_compressed(self, alpha_info, description):
        if alpha_info.has_alpha:
            return FormatDecision(DataFormat.B4G4R4A4_UNORM, reason="ETC1 has no alpha")
        return FormatDecision(DataFormat.ETC1, reason="opaque")


_SELECTORS: Dict[TargetPlatform, Type[CompressionSelector]] = {
    platform: cls
    for cls in (DxtSelector, PvrtcSelector, Etc1Selector)
    for platform in cls.platforms
}


def get_selector(platform=TargetPlatform.GENERIC,
                 config: Optional[CompressionConfig] = None) -> CompressionSelector:
    """Return the selector for ``platform`` (a TargetPlatform or its name)."""
    platform = TargetPlatform.parse(platform)
    return _SELECTORS[platform](config)


def select_format(target: TextureFormat, alpha_info: AlphaInfo,
                  platform=TargetPlatform.GENERIC,
                  description: Optional[TextureDescription] = None) -> FormatDecision:
    """Choose the output format for ``target`` on ``platform``.

    Without a description the texture is assumed to be a 2D texture large
    enough for every platform's constraints.
    """
    if description is None:
        description = TextureDescription(
            TextureDimension.TEXTURE2D, 256, 256, DataFormat.R32G32B32A32_FLOAT,
        )
    return get_selector(platform).select_format(target, alpha_info, description)
