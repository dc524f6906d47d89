"""Background decoding where a newer request supersedes older ones.

Only the result of the most recent request is ever handed back; decodes
that finish after being superseded are dropped.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

from fastfits.config import DecodeSettings
from fastfits.errors import FitsError
from fastfits.io import DecodedImage, load_fits

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LoadResult:
    """Outcome of one decode request."""

    path: Path
    generation: int
    image: Optional[DecodedImage] = None
    error: Optional[FitsError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class ImageLoader:
    """Decode FITS files on a worker pool, keeping only the latest request."""

    def __init__(
        self,
        settings: Optional[DecodeSettings] = None,
        on_result: Optional[Callable[[LoadResult], None]] = None,
        max_workers: int = 2,
    ):
        self.settings = settings or DecodeSettings()
        self._on_result = on_result
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="fastfits-load")
        self._lock = threading.Lock()
        self._generation = 0
        self._latest: Optional[LoadResult] = None

    @property
    def generation(self) -> int:
        with self._lock:
            return self._generation

    def request(self, path: str | Path) -> "Future[LoadResult]":
        """Start decoding ``path``; any in-flight request becomes stale."""
        with self._lock:
            self._generation += 1
            generation = self._generation
            self._latest = None
        return self._executor.submit(self._decode, Path(path), generation, self.settings)

    def cancel(self) -> None:
        """Drop whatever is in flight without starting a new decode."""
        with self._lock:
            self._generation += 1
            self._latest = None

    def take_result(self) -> Optional[LoadResult]:
        """Return and clear the current result, if one has arrived."""
        with self._lock:
            result, self._latest = self._latest, None
            return result

    def _decode(self, path: Path, generation: int, settings: DecodeSettings) -> LoadResult:
        try:
            result = LoadResult(path=path, generation=generation, image=load_fits(path, settings))
        except FitsError as exc:
            logger.error("Failed to decode %s: %s", path, exc)
            result = LoadResult(path=path, generation=generation, error=exc)
        self._deliver(result)
        return result

    def _deliver(self, result: LoadResult) -> None:
        with self._lock:
            if result.generation != self._generation:
                logger.warning("Discarding superseded decode of %s", result.path.name)
                return
            self._latest = result
        if self._on_result is not None:
            self._on_result(result)

    def close(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)

    def __enter__(self) -> "ImageLoader":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()
