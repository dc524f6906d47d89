"""Turn a decoded image into an RGBA display buffer."""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, replace
from typing import Optional, Sequence

import numpy as np

from fastfits.io import DecodedImage
from fastfits.stretch import StretchCurve, StretchMode, compute_curve

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ViewRequest:
    """Stretch mode plus channel selection; ``channel=None`` is the composite view."""

    stretch: StretchMode = StretchMode.AUTOSTRETCH
    channel: Optional[int] = None

    @property
    def is_composite(self) -> bool:
        return self.channel is None

    @classmethod
    def default_for(cls, image: DecodedImage, stretch: StretchMode = StretchMode.AUTOSTRETCH) -> "ViewRequest":
        """Composite for colour images, first plane otherwise."""
        return cls(stretch=stretch, channel=None if image.channel_count >= 3 else 0)

    def with_stretch_toggled(self) -> "ViewRequest":
        if self.stretch is StretchMode.AUTOSTRETCH:
            return replace(self, stretch=StretchMode.LINEAR)
        return replace(self, stretch=StretchMode.AUTOSTRETCH)


def select_planes(image: DecodedImage, request: ViewRequest) -> list[np.ndarray]:
    """Planes shown for a request: three for a composite RGB view, else one."""
    if image.channel_count == 1:
        return [image.plane(0)]
    if request.channel is not None:
        channel = min(max(int(request.channel), 0), image.channel_count - 1)
        return [image.plane(channel)]
    if image.channel_count == 3:
        return [image.plane(c) for c in range(3)]
    # No composite for other plane counts.
    return [image.plane(0)]


def compute_curves(
    planes: Sequence[np.ndarray],
    mode: StretchMode,
    full_scale: float,
) -> list[StretchCurve]:
    """One curve per plane; autostretch of several planes runs one worker per plane."""
    if mode is StretchMode.AUTOSTRETCH and len(planes) > 1:
        with ThreadPoolExecutor(max_workers=len(planes), thread_name_prefix="fastfits-stretch") as pool:
            futures = [pool.submit(compute_curve, plane, mode, full_scale) for plane in planes]
            return [f.result() for f in futures]
    return [compute_curve(plane, mode, full_scale) for plane in planes]


def build_curves(image: DecodedImage, request: ViewRequest) -> list[StretchCurve]:
    return compute_curves(select_planes(image, request), request.stretch, image.full_scale)


def composite(planes: Sequence[np.ndarray], curves: Sequence[StretchCurve]) -> np.ndarray:
    """Map planes through their curves into a (H, W, 4) RGBA uint8 array.

    A single plane is written as gray to R, G and B. Alpha is always 255.
    """
    if len(planes) not in (1, 3) or len(curves) != len(planes):
        raise ValueError(f"Need 1 or 3 planes with matching curves, got {len(planes)}/{len(curves)}")
    height, width = planes[0].shape
    rgba = np.full((height, width, 4), 255, dtype=np.uint8)
    if len(planes) == 1:
        gray = curves[0].apply(planes[0])
        rgba[..., 0] = gray
        rgba[..., 1] = gray
        rgba[..., 2] = gray
    else:
        for c in range(3):
            rgba[..., c] = curves[c].apply(planes[c])
    return rgba


def to_rgba(image: DecodedImage, request: Optional[ViewRequest] = None) -> np.ndarray:
    """Render ``image`` for ``request`` as a tightly packed (H, W, 4) uint8 array.

    ``to_rgba(...).tobytes()`` is the row-major, top-left origin byte buffer.
    """
    request = request or ViewRequest.default_for(image)
    planes = select_planes(image, request)
    curves = compute_curves(planes, request.stretch, image.full_scale)
    logger.debug(
        "Rendering %dx%d, %d plane(s), stretch=%s",
        image.width,
        image.height,
        len(planes),
        request.stretch.value,
    )
    return composite(planes, curves)
