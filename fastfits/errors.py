"""Exception types raised while decoding FITS files."""

from __future__ import annotations


class FitsError(Exception):
    """Base class for every decode failure."""


class FileError(FitsError, OSError):
    """The file cannot be opened or ends before a block is complete."""


class FormatError(FitsError, ValueError):
    """Malformed header (missing END card, bad mandatory keyword)."""


class UnsupportedFormatError(FitsError, ValueError):
    """Image layout this reader does not handle."""


class NotFoundError(FitsError, LookupError):
    """No HDU in the file carries image data."""


class ReconstructionError(FitsError, RuntimeError):
    """Demosaicing produced an unexpected number of samples."""
