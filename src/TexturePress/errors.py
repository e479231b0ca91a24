"""Exception taxonomy shared by the converter, its phases and the CLI."""

from typing import Optional


class TexturePressError(Exception):
    """Base class for all converter errors."""


class InvalidArgument(TexturePressError, ValueError):
    """Raised for malformed option values or out-of-range arguments."""


class UnsupportedFormat(TexturePressError):
    """Raised when a pixel layout or target combination has no conversion path."""


class PlatformConstraintViolation(TexturePressError):
    """Raised when a platform-specific compression precondition is not met."""


class ProcessingFailed(TexturePressError, RuntimeError):
    """Raised when the ordered transform sequence aborts for an asset.

    Carries the asset identity (usually the source path) and the original
    exception so callers can report both.
    """

    def __init__(self, message: str, identity: Optional[str] = None,
                 cause: Optional[BaseException] = None):
        self.identity = identity
        self.cause = cause
        if identity:
            message = f"{identity}: {message}"
        super().__init__(message)


class EncoderError(TexturePressError, RuntimeError):
    """Raised when the external block encoder is missing or fails."""
