"""fastfits: FITS decoding, Bayer demosaicing and display stretching."""

import logging

from fastfits.config import DecodeSettings, DemosaicMode
from fastfits.errors import (
    FileError,
    FitsError,
    FormatError,
    NotFoundError,
    ReconstructionError,
    UnsupportedFormatError,
)
from fastfits.io import DecodedImage, load_fits, load_fits_from_bytes
from fastfits.render import ViewRequest, to_rgba
from fastfits.stretch import StretchMode

logging.getLogger(__name__).addHandler(logging.NullHandler())

__version__ = "0.1.0"

__all__ = [
    "DecodeSettings",
    "DecodedImage",
    "DemosaicMode",
    "FileError",
    "FitsError",
    "FormatError",
    "NotFoundError",
    "ReconstructionError",
    "StretchMode",
    "UnsupportedFormatError",
    "ViewRequest",
    "load_fits",
    "load_fits_from_bytes",
    "to_rgba",
]
