"""FITS image decoding: locate the image HDU, read samples, detect Bayer data."""

from __future__ import annotations

import io as pyio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, BinaryIO, Iterable, Mapping, Optional, Union

import numpy as np
import pandas as pd

from fastfits.config import DecodeSettings
from fastfits.debayer import BAYER_PATTERNS, U16_MAX, demosaic
from fastfits.errors import FileError, FormatError, NotFoundError, UnsupportedFormatError
from fastfits.header import HduInfo, iter_hdus, open_fits

logger = logging.getLogger(__name__)

HeaderFields = Union[Mapping[str, str], Iterable[tuple[str, str]]]

# Stored sample types by BITPIX; FITS data is big-endian.
BITPIX_DTYPES = {
    8: np.dtype(">u1"),
    16: np.dtype(">i2"),
    32: np.dtype(">i4"),
    64: np.dtype(">i8"),
    -32: np.dtype(">f4"),
    -64: np.dtype(">f8"),
}

COLOR_INSTRUMENT_TOKENS = ("COLOR", "COLOUR", "OSC")


@dataclass(frozen=True)
class DecodedImage:
    """Planar float32 samples plus header metadata of one FITS image.

    Plane ``c`` occupies ``samples[c * width * height:(c + 1) * width * height]``.
    """

    width: int
    height: int
    channel_count: int
    samples: np.ndarray
    header_fields: tuple[tuple[str, str], ...]
    full_scale: float
    bayer_pattern: Optional[str] = None
    source: str = ""
    hdu_index: int = 0

    def __post_init__(self) -> None:
        if self.width <= 0 or self.height <= 0:
            raise ValueError(f"Invalid image size {self.width}x{self.height}")
        if self.channel_count <= 0:
            raise ValueError("channel_count must be positive")
        expected = self.width * self.height * self.channel_count
        if self.samples.ndim != 1 or self.samples.size != expected:
            raise ValueError(f"Expected {expected} flat samples, got shape {self.samples.shape}")
        if self.samples.dtype != np.float32:
            raise ValueError(f"Samples must be float32, got {self.samples.dtype}")
        self.samples.flags.writeable = False

    @property
    def is_bayer(self) -> bool:
        return self.bayer_pattern is not None

    @property
    def plane_size(self) -> int:
        return self.width * self.height

    @property
    def planes(self) -> np.ndarray:
        """Read-only (channels, height, width) view of the samples."""
        return self.samples.reshape(self.channel_count, self.height, self.width)

    def plane(self, channel: int) -> np.ndarray:
        """Read-only (height, width) view of one plane."""
        if not 0 <= channel < self.channel_count:
            raise IndexError(f"Channel {channel} out of range 0..{self.channel_count - 1}")
        return self.planes[channel]

    def header_value(self, key: str) -> Optional[str]:
        wanted = key.upper()
        for k, v in self.header_fields:
            if k == wanted:
                return v
        return None


def _fields_dict(fields: HeaderFields) -> dict[str, str]:
    items = fields.items() if isinstance(fields, Mapping) else fields
    return {str(k).upper(): str(v) for k, v in items}


def _to_float(value: Any) -> Optional[float]:
    if value is None:
        return None
    token = str(value).strip().upper().replace("D", "E")
    try:
        return float(token)
    except ValueError:
        return None


def _to_int(value: Any) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(str(value).strip())
    except ValueError:
        return None


def full_scale_for_bitpix(bitpix: int) -> float:
    """Nominal maximum sample value for a storage bit depth; 0 means float data."""
    if bitpix == 8:
        return 255.0
    # 32-bit integer files in this domain are usually 16-bit data widened.
    if bitpix in (16, 32):
        return U16_MAX
    return 0.0


def detect_bayer_pattern(fields: HeaderFields, plane_count: int = 1) -> Optional[str]:
    """Return the CFA pattern of a single-plane mosaic, or None for mono data.

    BAYERPAT wins over COLORTYP; a colour instrument name without an
    explicit pattern is assumed to be RGGB. Unknown instruments are never
    treated as mosaics.
    """
    if plane_count != 1:
        return None
    header = _fields_dict(fields)
    for key in ("BAYERPAT", "COLORTYP"):
        token = header.get(key, "").strip().upper()
        if token in BAYER_PATTERNS:
            return token
    instrument = header.get("INSTRUME", "").strip().upper()
    if any(tag in instrument for tag in COLOR_INSTRUMENT_TOKENS):
        return "RGGB"
    return None


def _find_image_hdu(stream: BinaryIO, source: str) -> HduInfo:
    for hdu in iter_hdus(stream):
        if hdu.is_image and hdu.has_data:
            return hdu
    raise NotFoundError(f"{source}: no image data unit")


def _image_shape(hdu: HduInfo) -> tuple[int, int, int]:
    if len(hdu.axes) == 2:
        width, height = hdu.axes
        return width, height, 1
    if len(hdu.axes) == 3:
        width, height, planes = hdu.axes
        return width, height, planes
    raise UnsupportedFormatError(f"Unsupported FITS image NAXIS={len(hdu.axes)}")


def read_stored_samples(stream: BinaryIO, hdu: HduInfo) -> np.ndarray:
    """Read the raw stored samples of an image HDU in native byte order."""
    if hdu.bitpix is None:
        raise FormatError(f"HDU {hdu.index}: missing BITPIX")
    dtype = BITPIX_DTYPES.get(hdu.bitpix)
    if dtype is None:
        raise UnsupportedFormatError(f"HDU {hdu.index}: unsupported BITPIX={hdu.bitpix}")
    count = int(np.prod(hdu.axes, dtype=np.int64))
    nbytes = count * dtype.itemsize
    stream.seek(hdu.data_offset)
    payload = stream.read(nbytes)
    if len(payload) < nbytes:
        raise FileError(f"HDU {hdu.index}: truncated data ({len(payload)} of {nbytes} bytes)")
    return np.frombuffer(payload, dtype=dtype, count=count).astype(dtype.newbyteorder("="))


def physical_values(stored: np.ndarray, header: Mapping[str, str]) -> np.ndarray:
    """Apply ``BSCALE``/``BZERO`` and map integer ``BLANK`` samples to NaN."""
    bscale = _to_float(header.get("BSCALE"))
    bzero = _to_float(header.get("BZERO"))
    bscale = 1.0 if bscale is None else bscale
    bzero = 0.0 if bzero is None else bzero

    if bscale == 1.0 and bzero == 0.0:
        values = stored.astype(np.float32)
    else:
        values = (stored.astype(np.float64) * bscale + bzero).astype(np.float32)

    if stored.dtype.kind in "iu":
        blank = _to_int(header.get("BLANK"))
        if blank is not None:
            values[stored == blank] = np.nan
    return values


def _to_uint16(values: np.ndarray) -> np.ndarray:
    clean = np.nan_to_num(values.astype(np.float64), nan=0.0, posinf=U16_MAX, neginf=0.0)
    return np.clip(np.rint(clean), 0.0, U16_MAX).astype(np.uint16)


def _decode_stream(stream: BinaryIO, source: str, settings: DecodeSettings) -> DecodedImage:
    hdu = _find_image_hdu(stream, source)
    width, height, planes = _image_shape(hdu)
    fields = hdu.fields()
    header = _fields_dict(fields)
    logger.debug("%s: image HDU %d, %dx%dx%d, BITPIX=%s", source, hdu.index, width, height, planes, hdu.bitpix)

    pattern = detect_bayer_pattern(header, planes)
    stored = read_stored_samples(stream, hdu)
    values = physical_values(stored, header)

    if pattern is not None:
        mosaic = _to_uint16(values).reshape(height, width)
        rgb = demosaic(mosaic, pattern, settings.demosaic_mode)
        samples = rgb.reshape(-1)
        channels = 3
        full_scale = U16_MAX
    else:
        samples = values
        channels = planes
        full_scale = full_scale_for_bitpix(hdu.bitpix)

    image = DecodedImage(
        width=width,
        height=height,
        channel_count=channels,
        samples=samples,
        header_fields=tuple(fields),
        full_scale=full_scale,
        bayer_pattern=pattern,
        source=source,
        hdu_index=hdu.index,
    )
    logger.info(
        "Decoded %s: %dx%d, %d channel(s)%s",
        Path(source).name or source,
        width,
        height,
        channels,
        f", debayered {pattern} ({settings.demosaic_mode.value})" if pattern else "",
    )
    return image


def load_fits(path: str | Path, settings: Optional[DecodeSettings] = None) -> DecodedImage:
    """Decode the first image-bearing HDU of a FITS file."""
    settings = settings or DecodeSettings()
    path_obj = Path(path)
    with open_fits(path_obj) as stream:
        try:
            return _decode_stream(stream, str(path_obj), settings)
        except FileError:
            raise
        except OSError as exc:
            raise FileError(f"reading {path_obj}: {exc}") from exc


def load_fits_from_bytes(
    payload: bytes,
    name: str = "<bytes>",
    settings: Optional[DecodeSettings] = None,
) -> DecodedImage:
    """Decode FITS bytes, e.g. an already decompressed ``.fits.gz`` payload."""
    return _decode_stream(pyio.BytesIO(payload), name, settings or DecodeSettings())


def header_table(image: DecodedImage) -> pd.DataFrame:
    """Header key/value pairs as a DataFrame for display."""
    return pd.DataFrame(list(image.header_fields), columns=["key", "value"])
