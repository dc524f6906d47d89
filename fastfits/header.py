"""Raw FITS header parsing and HDU walking.

A FITS file is a sequence of Header/Data Units. Each header is a run of
80-byte ASCII cards packed into 2880-byte blocks and terminated by an
``END`` card; the data segment that follows is padded to a whole number
of blocks. Everything here works on the raw bytes so that every card is
visible, not only the ones an image library chooses to expose.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import BinaryIO, Iterator, Optional

from fastfits.errors import FileError, FormatError, NotFoundError

logger = logging.getLogger(__name__)

BLOCK_SIZE = 2880
CARD_SIZE = 80
KEY_SIZE = 8

# Cards that carry no key/value pair.
COMMENTARY_KEYS = frozenset({"COMMENT", "HISTORY", "END", "CONTINUE"})

_END_KEY = b"END".ljust(KEY_SIZE)


@dataclass(frozen=True)
class HduInfo:
    """Location and structural keywords of one Header/Data Unit."""

    index: int
    header_offset: int
    data_offset: int
    data_size: int
    bitpix: Optional[int]
    axes: tuple[int, ...]
    extension: Optional[str]
    cards: bytes = field(repr=False)

    @property
    def padded_data_size(self) -> int:
        return padded_size(self.data_size)

    @property
    def next_offset(self) -> int:
        return self.data_offset + self.padded_data_size

    @property
    def is_image(self) -> bool:
        """Primary HDU or IMAGE extension (tables are skipped)."""
        return self.extension is None or self.extension.upper() == "IMAGE"

    @property
    def has_data(self) -> bool:
        """True when every axis is non-empty."""
        return bool(self.axes) and all(n > 0 for n in self.axes)

    def fields(self) -> list[tuple[str, str]]:
        return parse_header_fields(self.cards)


def padded_size(nbytes: int) -> int:
    """Round a byte count up to the next 2880-byte boundary."""
    remainder = nbytes % BLOCK_SIZE
    if remainder == 0:
        return nbytes
    return nbytes + BLOCK_SIZE - remainder


def strip_card_comment(text: str) -> str:
    """Remove a trailing ``/ comment`` from a value field, honouring quotes."""
    s = text.strip()
    if s.startswith("'"):
        i = 1
        while i < len(s):
            if s[i] == "'":
                if i + 1 < len(s) and s[i + 1] == "'":
                    i += 2
                    continue
                return s[: i + 1]
            i += 1
        # Unterminated string: keep as-is.
        return s
    sep = s.find(" / ")
    if sep >= 0:
        return s[:sep].rstrip()
    return s


def _unquote(value: str) -> str:
    if len(value) >= 2 and value.startswith("'") and value.endswith("'"):
        return value[1:-1].replace("''", "'").strip()
    return value


def _card_text(record: bytes) -> Optional[str]:
    try:
        return record.decode("ascii").rstrip()
    except UnicodeDecodeError:
        logger.debug("Skipping non-ASCII header card %r", record[:KEY_SIZE])
        return None


def parse_card(card: str) -> Optional[tuple[str, str]]:
    """Parse one card into ``(key, value)``; None for commentary cards."""
    card = card.rstrip()
    if len(card) < KEY_SIZE:
        return None
    key = card[:KEY_SIZE].strip()
    if not key or key in COMMENTARY_KEYS:
        return None
    if card[KEY_SIZE : KEY_SIZE + 2] in ("= ", "="):
        value = _unquote(strip_card_comment(card[KEY_SIZE + 2 :]).strip())
    else:
        value = card[KEY_SIZE:].strip()
    return key, value


def parse_header_fields(raw: bytes) -> list[tuple[str, str]]:
    """Return every key/value pair of a raw header, sorted by key."""
    pairs: list[tuple[str, str]] = []
    for start in range(0, len(raw) - CARD_SIZE + 1, CARD_SIZE):
        text = _card_text(raw[start : start + CARD_SIZE])
        if text is None:
            continue
        parsed = parse_card(text)
        if parsed is not None:
            pairs.append(parsed)
        if text[:KEY_SIZE].strip() == "END":
            break
    pairs.sort(key=lambda kv: kv[0])
    return pairs


def find_header_int(raw: bytes, key: str) -> Optional[int]:
    """Integer value of ``key`` in raw header bytes, or None."""
    prefix = key.upper().ljust(KEY_SIZE).encode("ascii")
    for start in range(0, len(raw) - CARD_SIZE + 1, CARD_SIZE):
        record = raw[start : start + CARD_SIZE]
        if not record.startswith(prefix):
            continue
        text = _card_text(record)
        if text is None or text[KEY_SIZE : KEY_SIZE + 2] != "= ":
            continue
        value = strip_card_comment(text[KEY_SIZE + 2 :])
        try:
            return int(value)
        except ValueError:
            return None
    return None


def _find_header_string(raw: bytes, key: str) -> Optional[str]:
    prefix = key.upper().ljust(KEY_SIZE).encode("ascii")
    for start in range(0, len(raw) - CARD_SIZE + 1, CARD_SIZE):
        record = raw[start : start + CARD_SIZE]
        if record.startswith(prefix):
            text = _card_text(record)
            if text is None:
                return None
            parsed = parse_card(text)
            return parsed[1] if parsed else None
    return None


def _is_end_card(record: bytes) -> bool:
    return record[:KEY_SIZE] == _END_KEY or record.rstrip() == b"END"


def _read_header(stream: BinaryIO, index: int) -> Optional[bytes]:
    """Read header blocks up to and including the one holding END.

    Returns None on a clean end of file before the first block.
    """
    blocks: list[bytes] = []
    while True:
        block = stream.read(BLOCK_SIZE)
        if not block:
            if not blocks:
                return None
            raise FormatError(f"HDU {index}: header has no END card before end of file")
        if len(block) < BLOCK_SIZE:
            raise FileError(
                f"HDU {index}: truncated header block ({len(block)} of {BLOCK_SIZE} bytes)"
            )
        blocks.append(block)
        for start in range(0, BLOCK_SIZE, CARD_SIZE):
            if _is_end_card(block[start : start + CARD_SIZE]):
                return b"".join(blocks)


def _data_size(bitpix: Optional[int], axes: tuple[int, ...], raw: bytes) -> int:
    if not axes:
        return 0
    npix = 1
    for n in axes:
        npix *= max(n, 0)
    pcount = find_header_int(raw, "PCOUNT") or 0
    gcount = find_header_int(raw, "GCOUNT")
    if gcount is None:
        gcount = 1
    bits = abs(bitpix if bitpix is not None else 8) * gcount * (pcount + npix)
    return (bits + 7) // 8


def iter_hdus(stream: BinaryIO) -> Iterator[HduInfo]:
    """Walk the HDUs of a FITS stream from its first byte.

    The data segment of every HDU is skipped by seeking, so only header
    blocks are read.
    """
    offset = 0
    index = 0
    while True:
        stream.seek(offset)
        raw = _read_header(stream, index)
        if raw is None:
            return
        bitpix = find_header_int(raw, "BITPIX")
        naxis = find_header_int(raw, "NAXIS") or 0
        axes = tuple(find_header_int(raw, f"NAXIS{i}") or 0 for i in range(1, naxis + 1))
        extension = _find_header_string(raw, "XTENSION") if index > 0 else None
        hdu = HduInfo(
            index=index,
            header_offset=offset,
            data_offset=offset + len(raw),
            data_size=_data_size(bitpix, axes, raw),
            bitpix=bitpix,
            axes=axes,
            extension=extension,
            cards=raw,
        )
        logger.debug(
            "HDU %d at offset %d: BITPIX=%s axes=%s xtension=%s data=%d bytes",
            index,
            offset,
            bitpix,
            axes,
            extension,
            hdu.data_size,
        )
        yield hdu
        offset = hdu.next_offset
        index += 1


def open_fits(path: str | Path) -> BinaryIO:
    """Open a FITS file for binary reading, mapping OS errors to FileError."""
    path_obj = Path(path)
    try:
        return open(path_obj, "rb")
    except OSError as exc:
        raise FileError(f"cannot open {path_obj}: {exc}") from exc


def read_headers(path: str | Path, hdu_index: int) -> list[tuple[str, str]]:
    """Return the sorted key/value pairs of HDU ``hdu_index`` in ``path``."""
    with open_fits(path) as stream:
        try:
            for hdu in iter_hdus(stream):
                if hdu.index == hdu_index:
                    return hdu.fields()
        except FileError:
            raise
        except OSError as exc:
            raise FileError(f"reading {path}: {exc}") from exc
    raise NotFoundError(f"{path}: no HDU with index {hdu_index}")
