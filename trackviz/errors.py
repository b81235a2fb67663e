from __future__ import annotations


class TrackvizError(Exception):
    """Base error for trackviz."""


class InvalidConfigError(TrackvizError, ValueError):
    """Raised when a render config or envelope is rejected before any work starts."""


class DecodeError(TrackvizError, RuntimeError):
    """Raised when externally supplied audio cannot be decoded."""


class CodecError(TrackvizError, RuntimeError):
    """Raised when the perceptual codec fails mid-stream."""


class PatternError(TrackvizError, ValueError):
    """Raised when a pattern file cannot be read, parsed or validated."""
