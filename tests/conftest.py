"""
Pytest configuration and fixtures
"""
import numpy as np
import pytest
from astropy.io import fits

from fastfits.header import CARD_SIZE, padded_size


class FitsBuilder:
    """Hand-assembled FITS bytes, for layouts a FITS writer refuses to produce"""

    @staticmethod
    def card(key, value=None, comment=None):
        if value is None:
            text = key
        elif isinstance(value, bool):
            text = f"{key:<8}= {'T' if value else 'F':>20}"
        elif isinstance(value, str):
            escaped = value.replace("'", "''")
            text = f"{key:<8}= '{escaped:<8}'"
        else:
            text = f"{key:<8}= {value:>20}"
        if comment:
            text += f" / {comment}"
        return text.ljust(CARD_SIZE)[:CARD_SIZE]

    @classmethod
    def header(cls, cards, end=True):
        text = "".join(c.ljust(CARD_SIZE)[:CARD_SIZE] for c in cards)
        if end:
            text += "END".ljust(CARD_SIZE)
        raw = text.encode("ascii")
        return raw + b" " * (padded_size(len(raw)) - len(raw))

    @staticmethod
    def data(array, pad=True):
        raw = np.ascontiguousarray(array).astype(array.dtype.newbyteorder(">")).tobytes()
        if pad:
            raw += b"\0" * (padded_size(len(raw)) - len(raw))
        return raw

    @classmethod
    def image(cls, array, bitpix, extra=(), primary=True):
        """Header plus data for one image HDU; ``array`` is (planes, rows, cols) or (rows, cols)."""
        first = cls.card("SIMPLE", True) if primary else cls.card("XTENSION", "IMAGE")
        axes = list(reversed(array.shape))
        cards = [first, cls.card("BITPIX", bitpix), cls.card("NAXIS", len(axes))]
        cards += [cls.card(f"NAXIS{i + 1}", n) for i, n in enumerate(axes)]
        if not primary:
            cards += [cls.card("PCOUNT", 0), cls.card("GCOUNT", 1)]
        cards += list(extra)
        return cls.header(cards) + cls.data(array)


@pytest.fixture
def fits_builder():
    return FitsBuilder


@pytest.fixture
def write_fits(tmp_path):
    """Write arrays to a FITS file with astropy and return its path"""

    def _write(data=None, name="image.fits", header=None, extensions=()):
        hdr = fits.Header()
        for key, value in (header or {}).items():
            hdr[key] = value
        hdus = [fits.PrimaryHDU(data=data, header=hdr)]
        for ext_data in extensions:
            hdus.append(fits.ImageHDU(data=ext_data))
        path = tmp_path / name
        fits.HDUList(hdus).writeto(path)
        return path

    return _write


@pytest.fixture
def write_bytes(tmp_path):
    def _write(payload, name="raw.fits"):
        path = tmp_path / name
        path.write_bytes(payload)
        return path

    return _write


@pytest.fixture
def rgb_mosaic():
    """Factory for a uniform-per-colour 16-bit mosaic"""
    from fastfits.debayer import cfa_masks

    def _make(pattern="RGGB", height=8, width=10, values=(1000, 2000, 3000)):
        masks = cfa_masks(pattern, height, width)
        mosaic = np.zeros((height, width), dtype=np.uint16)
        for c in range(3):
            mosaic[masks[c]] = values[c]
        return mosaic

    return _make


@pytest.fixture
def sky_plane():
    """Seeded sky background with a sprinkle of bright stars"""

    def _make(background=1000.0, noise=20.0, shape=(100, 100), stars=50, seed=0):
        rng = np.random.default_rng(seed)
        plane = rng.normal(background, noise, size=shape).astype(np.float32)
        idx = rng.choice(plane.size, size=stars, replace=False)
        plane.ravel()[idx] = 30000.0
        return np.clip(plane, 0, 65535)

    return _make

