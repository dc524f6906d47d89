"""Display stretch curves: linear ramp and histogram/MTF autostretch.

Every curve is a fixed-size lookup table built once per plane; mapping a
pixel through it is an affine index computation plus a table read.

The autostretch follows the Siril/PixInsight convention: clip the extreme
0.02% tails, measure the background as the median of the remaining
samples, and pick the midtone transfer parameter that puts that
background at 10% of the display range.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import Union

import numpy as np

logger = logging.getLogger(__name__)

LUT_SIZE = 4096
HISTOGRAM_BINS = 4096
LOW_PERCENTILE = 0.0002
HIGH_PERCENTILE = 0.9998
TARGET_BACKGROUND = 0.10
MID_GRAY = 128

_BACKGROUND_EPS = 1e-6
_DENOM_EPS = 1e-9

ArrayOrFloat = Union[float, np.ndarray]


class StretchMode(Enum):
    LINEAR = "linear"
    AUTOSTRETCH = "autostretch"


@dataclass(frozen=True)
class StretchCurve:
    """Lookup table over the value range ``[data_min, data_max]`` of one plane."""

    lut: np.ndarray
    data_min: float
    data_max: float

    @property
    def scale(self) -> float:
        """Precomputed factor mapping ``value - data_min`` to a LUT position."""
        if self.data_max == self.data_min:
            return 0.0
        return (LUT_SIZE - 1) / (self.data_max - self.data_min)

    def indices(self, plane: np.ndarray) -> np.ndarray:
        """LUT index of every sample; NaN and -inf map to 0, +inf to the top."""
        pos = (np.asarray(plane, dtype=np.float32) - np.float32(self.data_min)) * np.float32(
            self.scale
        ) + np.float32(0.5)
        pos = np.nan_to_num(pos, nan=0.0, posinf=LUT_SIZE - 1, neginf=0.0)
        return np.clip(pos, 0, LUT_SIZE - 1).astype(np.intp)

    def apply(self, plane: np.ndarray) -> np.ndarray:
        return self.lut[self.indices(plane)]


def _round_u8(values: np.ndarray) -> np.ndarray:
    # Half-away-from-zero rounding for non-negative values.
    return np.clip(np.floor(values + 0.5), 0, 255).astype(np.uint8)


def flat_lut(level: int = MID_GRAY) -> np.ndarray:
    return np.full(LUT_SIZE, level, dtype=np.uint8)


def data_min_max(plane: np.ndarray) -> tuple[float, float]:
    """Min and max of the finite samples; ``(0, 1)`` if there are none."""
    arr = np.asarray(plane)
    finite = arr[np.isfinite(arr)]
    if finite.size == 0:
        return 0.0, 1.0
    return float(finite.min()), float(finite.max())


def mtf(x: ArrayOrFloat, m: float) -> ArrayOrFloat:
    """Midtone transfer function ``(m-1)x / ((2m-1)x - m)``.

    Maps 0 to 0, ``m`` to 0.5 and 1 to 1. Works on scalars and arrays.
    """
    arr = np.asarray(x, dtype=np.float64)
    if m <= 0.0:
        inner = np.zeros_like(arr)
    elif m >= 1.0:
        inner = np.ones_like(arr)
    else:
        num = (m - 1.0) * arr
        den = (2.0 * m - 1.0) * arr - m
        with np.errstate(divide="ignore", invalid="ignore"):
            inner = np.where(np.abs(den) < _DENOM_EPS, 0.5, num / den)
        inner = np.clip(inner, 0.0, 1.0)
    out = np.where(arr <= 0.0, 0.0, np.where(arr >= 1.0, 1.0, inner))
    if out.ndim == 0:
        return float(out)
    return out


def midtone_for_background(x_bg: float, target: float = TARGET_BACKGROUND) -> float:
    """Midtone parameter ``m`` such that ``mtf(x_bg, m) == target``."""
    denom = 2.0 * x_bg * target - target - x_bg
    if abs(denom) <= _DENOM_EPS:
        return target
    return float(np.clip(x_bg * (target - 1.0) / denom, 0.0, 1.0))


def _histogram(plane: np.ndarray, lo: float, hi: float) -> tuple[np.ndarray, int]:
    arr = np.asarray(plane, dtype=np.float32).ravel()
    finite = arr[np.isfinite(arr)]
    if finite.size == 0:
        return np.zeros(HISTOGRAM_BINS, dtype=np.int64), 0
    norm = np.clip((finite - np.float32(lo)) / np.float32(hi - lo), 0.0, 1.0)
    bins = np.minimum((norm * (HISTOGRAM_BINS - 1)).astype(np.intp), HISTOGRAM_BINS - 1)
    return np.bincount(bins, minlength=HISTOGRAM_BINS), int(finite.size)


def percentile_norm(plane: np.ndarray, lo: float, hi: float, fraction: float) -> float:
    """Histogram estimate of the ``fraction`` quantile as a position in ``[lo, hi]``.

    The result is 0.0 at ``lo`` and 1.0 at ``hi``.
    """
    if hi - lo == 0:
        return 1.0
    hist, count = _histogram(plane, lo, hi)
    if count == 0:
        return 1.0
    target = min(math.ceil(count * fraction), count)
    cdf = np.cumsum(hist)
    return int(np.searchsorted(cdf, target)) / (HISTOGRAM_BINS - 1)


def median_mad_hist(plane: np.ndarray, lo: float, hi: float) -> tuple[float, float]:
    """Histogram median and MAD of the samples, as fractions of ``[lo, hi]``.

    Avoids sorting the full plane.
    """
    if hi - lo == 0:
        return 0.5, 0.0
    hist, count = _histogram(plane, lo, hi)
    if count == 0:
        return 0.5, 0.0

    half = (count + 1) // 2
    median = int(np.searchsorted(np.cumsum(hist), half)) / (HISTOGRAM_BINS - 1)

    arr = np.asarray(plane, dtype=np.float32).ravel()
    finite = arr[np.isfinite(arr)]
    norm = np.clip((finite - np.float32(lo)) / np.float32(hi - lo), 0.0, 1.0)
    max_dev = max(median, 1.0 - median, 1e-9)
    dev_bins = (np.abs(norm - np.float32(median)) / max_dev * (HISTOGRAM_BINS - 1)).astype(np.intp)
    dev_hist = np.bincount(np.minimum(dev_bins, HISTOGRAM_BINS - 1), minlength=HISTOGRAM_BINS)
    mad_bin = int(np.searchsorted(np.cumsum(dev_hist), half))
    return median, mad_bin / (HISTOGRAM_BINS - 1) * max_dev


def linear_lut() -> np.ndarray:
    """Identity ramp from 0 to 255 across the LUT."""
    ramp = np.arange(LUT_SIZE, dtype=np.float64) / (LUT_SIZE - 1) * 255.0
    return _round_u8(ramp)


def autostretch_lut(
    plane: np.ndarray,
    data_min: float,
    data_max: float,
    full_scale: float,
) -> np.ndarray:
    """MTF autostretch LUT over ``[data_min, data_max]``.

    ``full_scale`` is the bit-depth ceiling used to normalise samples; 0
    means float data, in which case the plane's own maximum is used.
    Degenerate planes get a flat mid-gray table.
    """
    span = data_max - data_min
    if span == 0:
        return flat_lut()

    bd = full_scale if full_scale > 0 else data_max
    if bd <= 0:
        return flat_lut()

    lo = percentile_norm(plane, 0.0, bd, LOW_PERCENTILE)
    hi = percentile_norm(plane, 0.0, bd, HIGH_PERCENTILE)
    if hi <= lo:
        return flat_lut()

    eff_min = lo * bd
    eff_max = hi * bd
    median_frac, mad_frac = median_mad_hist(plane, eff_min, eff_max)
    x_bg = float(np.clip(lo + median_frac * (hi - lo), _BACKGROUND_EPS, 1.0 - _BACKGROUND_EPS))
    m = midtone_for_background(x_bg)
    logger.debug(
        "autostretch: lo=%.5f hi=%.5f median=%.5f mad=%.5f bg=%.5f m=%.5f",
        lo,
        hi,
        median_frac,
        mad_frac,
        x_bg,
        m,
    )

    values = data_min + np.arange(LUT_SIZE, dtype=np.float64) / (LUT_SIZE - 1) * span
    x = np.clip(values / bd, 0.0, 1.0)
    lut = _round_u8(np.asarray(mtf(x, m)) * 255.0)
    lut[x <= lo] = 0
    lut[x >= hi] = 255
    return lut


def compute_curve(
    plane: np.ndarray,
    mode: StretchMode,
    full_scale: float = 0.0,
) -> StretchCurve:
    """Build the stretch curve of one plane."""
    data_min, data_max = data_min_max(plane)
    if mode is StretchMode.AUTOSTRETCH:
        lut = autostretch_lut(plane, data_min, data_max, full_scale)
    else:
        lut = linear_lut()
    return StretchCurve(lut=lut, data_min=data_min, data_max=data_max)
