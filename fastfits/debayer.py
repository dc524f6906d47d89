"""Demosaicing of single-plane Bayer (CFA) mosaics to planar RGB."""

from __future__ import annotations

import logging

import numpy as np
from scipy import ndimage

from fastfits.config import DemosaicMode
from fastfits.errors import ReconstructionError

logger = logging.getLogger(__name__)

BAYER_PATTERNS = ("RGGB", "BGGR", "GRBG", "GBRG")

U16_MAX = 65535.0

# Interpolation weight at half a lattice step and at one and a half steps.
_HALF_STEP_WEIGHTS = {
    DemosaicMode.BILINEAR: (0.5, 0.0),
    # Keys cubic convolution, a = -0.5.
    DemosaicMode.CUBIC: (0.5625, -0.0625),
}


def _trim(kernel: np.ndarray) -> np.ndarray:
    while kernel.shape[0] > 1 and not kernel[0].any() and not kernel[:, 0].any():
        kernel = kernel[1:-1, 1:-1]
    return kernel


def red_blue_kernel(mode: DemosaicMode) -> np.ndarray:
    """Kernel filling a channel sampled on every other row and column."""
    near, far = _HALF_STEP_WEIGHTS[mode]
    taps = np.array([far, 0.0, near, 1.0, near, 0.0, far])
    return _trim(np.outer(taps, taps))


def green_kernel(mode: DemosaicMode) -> np.ndarray:
    """Kernel filling the quincunx green lattice.

    The separable 1-D weights are applied along the two diagonal axes of
    the green lattice, where every missing site sits half a step from its
    neighbours.
    """
    near, far = _HALF_STEP_WEIGHTS[mode]
    weight = {0.5: near, 1.5: far}
    kernel = np.zeros((7, 7))
    kernel[3, 3] = 1.0
    for s in (-1.5, -0.5, 0.5, 1.5):
        for t in (-1.5, -0.5, 0.5, 1.5):
            dx = int(round(s + t))
            dy = int(round(s - t))
            kernel[3 + dy, 3 + dx] += weight[abs(s)] * weight[abs(t)]
    return _trim(kernel)


def normalize_pattern(pattern: str) -> str:
    token = str(pattern or "").upper().strip()
    if token not in BAYER_PATTERNS:
        raise ValueError(f"Unknown Bayer pattern: {pattern!r}")
    return token


def cfa_masks(pattern: str, height: int, width: int) -> np.ndarray:
    """Boolean (3, H, W) masks marking the R, G and B sites of the mosaic."""
    tile = np.array(list(normalize_pattern(pattern))).reshape(2, 2)
    rows = np.arange(height)[:, None] % 2
    cols = np.arange(width)[None, :] % 2
    colors = tile[rows, cols]
    return np.stack([colors == c for c in "RGB"])


def demosaic(
    mosaic: np.ndarray,
    pattern: str = "RGGB",
    mode: DemosaicMode = DemosaicMode.BILINEAR,
) -> np.ndarray:
    """Reconstruct planar float32 RGB (3, H, W) in [0, 65535] from a 16-bit mosaic.

    Missing samples are interpolated from same-colour neighbours; measured
    samples are kept unchanged. Borders are handled by mirroring the mosaic
    about its edge pixels, which keeps the 2x2 CFA phase intact.
    """
    raw = np.asarray(mosaic)
    if raw.ndim != 2:
        raise ValueError(f"Expected a 2D mosaic, got shape {raw.shape}")
    height, width = raw.shape
    if height < 2 or width < 2:
        raise ReconstructionError(f"Mosaic {width}x{height} is smaller than one 2x2 CFA tile")

    mode = DemosaicMode.parse(mode)
    masks = cfa_masks(pattern, height, width)
    plane = raw.astype(np.float64)
    kernels = (red_blue_kernel(mode), green_kernel(mode), red_blue_kernel(mode))

    rgb = np.empty((3, height, width), dtype=np.float32)
    for c, kernel in enumerate(kernels):
        sparse = np.where(masks[c], plane, 0.0)
        estimate = ndimage.convolve(sparse, kernel, mode="mirror")
        if estimate.shape != (height, width):
            raise ReconstructionError(
                f"Demosaic produced a {estimate.shape} plane, expected {(height, width)}"
            )
        estimate = np.where(masks[c], plane, estimate)
        rgb[c] = np.clip(estimate, 0.0, U16_MAX)

    logger.debug("Demosaiced %dx%d %s mosaic (%s)", width, height, pattern, mode.value)
    return rgb
