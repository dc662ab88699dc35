"""
Asset precompression.

Walks an unpacked bundle and writes a compressed side-car next to every
eligible file (``app.js`` -> ``app.js.zst``, ``app.js.gz``) so the file server
can serve precompressed content without compressing on the fly.
"""
from __future__ import annotations

import gzip
import logging
import os
import shutil
import stat
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

import zstandard as zstd

from .models import DEFAULT_ALGORITHMS, Algorithm, Statistics

logger = logging.getLogger(__name__)

DEFAULT_MIN_SIZE = 1400

__all__ = ["Compressor", "DEFAULT_MIN_SIZE", "sidecar_path"]


class Compressor:
    """
    Produces precompressed side-cars and aggregate size statistics.

    Any read or write failure aborts the whole pass with the ``OSError``;
    side-cars already written during that pass are left in place.
    """

    def __init__(self, algorithms: Optional[Sequence[Algorithm]] = None, *,
                 min_size: int = DEFAULT_MIN_SIZE,
                 zstd_level: int = 19,
                 gzip_level: int = 9):
        self._algorithms = list(DEFAULT_ALGORITHMS if algorithms is None else algorithms)
        self.min_size = min_size
        self.zstd_level = zstd_level
        self.gzip_level = gzip_level

    @property
    def algorithms(self) -> List[Algorithm]:
        """Configured algorithms in serving preference order."""
        return list(self._algorithms)

    def compress(self, directory: Path | str, extensions: Iterable[str]) -> Statistics:
        """
        Precompress eligible files below ``directory``.

        A file is eligible when it is at least ``min_size`` bytes and its
        extension (case-insensitive) is in ``extensions``. A side-car that
        would not be smaller than its original is discarded, and the original
        size is counted for that algorithm instead. The same accounting
        applies when a file already exists at the side-car path: it belongs to
        the uploaded tree and is never overwritten or removed.

        Args:
            directory: Root of the unpacked bundle
            extensions: Eligible file extensions, without the leading dot

        Returns:
            Statistics over all regular files in the tree

        Raises:
            OSError: If reading a file or writing a side-car fails
        """
        eligible = {ext.lstrip(".").lower() for ext in extensions}
        total_size = 0
        total_compressible = 0
        total_compressed: Dict[Algorithm, int] = {algorithm: 0 for algorithm in self._algorithms}

        # Snapshot the tree first so side-cars written below are never revisited
        for path, size in list(_iter_files(Path(directory))):
            total_size += size

            if size < self.min_size or not _matches_extension(path, eligible):
                continue

            total_compressible += size

            for algorithm in self._algorithms:
                total_compressed[algorithm] += self._apply(algorithm, path, size)

        by_name = {algorithm.value: n for algorithm, n in total_compressed.items()}
        logger.debug(f"Compressed {directory}: size={total_size} compressible={total_compressible} compressed={by_name}")

        return Statistics(
            size=total_size,
            compressible=total_compressible,
            compressed=total_compressed,
        )

    def _apply(self, algorithm: Algorithm, path: Path, size: int) -> int:
        """Write the side-car for ``path`` and return the bytes it accounts for."""
        destination = sidecar_path(path, algorithm)

        # Uploaded content already occupies the side-car name; it is served as-is
        if os.path.lexists(destination):
            logger.debug(f"Keeping existing {destination}; not compressing {path.name} with {algorithm.value}")
            return size

        with open(path, "rb") as source, open(destination, "wb") as out:
            if algorithm is Algorithm.ZSTD:
                compressor = zstd.ZstdCompressor(level=self.zstd_level, write_content_size=True)
                compressor.copy_stream(source, out, size=size)
            elif algorithm is Algorithm.GZIP:
                # mtime=0 and an empty name keep the output deterministic
                with gzip.GzipFile(filename="", mode="wb", fileobj=out,
                                   compresslevel=self.gzip_level, mtime=0) as encoder:
                    shutil.copyfileobj(source, encoder)
            else:
                raise ValueError(f"Unsupported algorithm: {algorithm}")
            written = out.tell()

        if written >= size:
            destination.unlink()
            return size
        return written


def sidecar_path(path: Path, algorithm: Algorithm) -> Path:
    """Side-car location for ``path``: the original name plus the algorithm suffix."""
    return path.with_name(f"{path.name}.{algorithm.extension}")


def _matches_extension(path: Path, eligible: set) -> bool:
    suffix = path.suffix
    return bool(suffix) and suffix[1:].lower() in eligible


def _raise(error: OSError) -> None:
    raise error


def _iter_files(root: Path) -> Iterator[Tuple[Path, int]]:
    """Yield (path, size) for every regular file below ``root``; symlinks are not followed."""
    for dirpath, _dirnames, filenames in os.walk(root, onerror=_raise):
        for name in sorted(filenames):
            path = Path(dirpath) / name
            info = os.lstat(path)
            if stat.S_ISREG(info.st_mode):
                yield path, info.st_size
