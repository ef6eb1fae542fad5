"""Exceptions raised by the longscribe pipeline."""


class LongscribeError(Exception):
    """Base class for all pipeline errors."""


class ConfigurationError(LongscribeError):
    """Raised when settings are missing or invalid."""


class ProbeError(LongscribeError):
    """Raised when the duration of an audio file cannot be determined."""


class SplitError(LongscribeError):
    """Raised when an audio file cannot be split into acceptable chunks."""


class ChunkPlanningError(SplitError):
    """Raised when the split plan would produce a non-positive chunk span."""


class ChunkSizeError(SplitError):
    """Raised when no chunk length above the floor fits the size limit."""


class SliceError(SplitError):
    """Raised when the slicing primitive fails to produce a chunk file."""
