"""Decode settings."""

from __future__ import annotations

from dataclasses import dataclass, fields
from enum import Enum
from typing import Any, Mapping


class DemosaicMode(Enum):
    """Reconstruction used for Bayer mosaics."""

    BILINEAR = "bilinear"
    CUBIC = "cubic"

    @classmethod
    def parse(cls, value: "str | DemosaicMode") -> "DemosaicMode":
        if isinstance(value, cls):
            return value
        token = str(value).strip().lower()
        for mode in cls:
            if mode.value == token:
                return mode
        raise ValueError(f"Unknown demosaic mode: {value!r} (expected bilinear or cubic)")


@dataclass(frozen=True)
class DecodeSettings:
    """User-configurable decode settings."""

    demosaic_mode: DemosaicMode = DemosaicMode.BILINEAR

    @classmethod
    def from_mapping(cls, values: Mapping[str, Any]) -> "DecodeSettings":
        """Build settings from a plain dict such as a saved preferences file."""
        known = {f.name for f in fields(cls)}
        kwargs = {k: v for k, v in values.items() if k in known}
        if "demosaic_mode" in kwargs:
            kwargs["demosaic_mode"] = DemosaicMode.parse(kwargs["demosaic_mode"])
        return cls(**kwargs)
