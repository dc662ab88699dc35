"""
Deterministic bundle packing.

Creates byte-identical upload archives from identical input trees by
normalizing paths, tar headers, and entry order. The bundle configuration is
written first as the root ``launch.config`` member, followed by the build
directory's contents. Enforces USTAR format for cross-platform compatibility.
"""
from __future__ import annotations

import io
import json
import os
import tarfile
import tempfile
import unicodedata
from pathlib import Path, PurePosixPath
from typing import Iterator, Tuple

from .models import CONFIG_MEMBER, BundleConfig

# Never shipped from the build root
EXCLUDED_NAMES = {".git", "launch.json", CONFIG_MEMBER}

__all__ = ["pack_bundle", "normalize_relpath"]


def pack_bundle(src_dir: Path | str, config: BundleConfig) -> tempfile.SpooledTemporaryFile:
    """
    Pack ``src_dir`` into an in-memory (spilling to disk) archive.

    Identical trees give byte-identical archives. Paths are normalized to
    forward slashes and NFC, and entries are written sorted by name as USTAR
    members with canonical headers (uid=0, gid=0, mtime=0).

    Returns:
        File object positioned at the start of the archive; the caller closes it

    Raises:
        ValueError: If src_dir doesn't exist or contains unsafe paths
        OSError: If reading the tree fails
    """
    src_path = _source_dir(src_dir)
    spool = tempfile.SpooledTemporaryFile(max_size=16 * 1024 * 1024)
    try:
        _write_tar(spool, src_path, config)
        spool.seek(0)
    except BaseException:
        spool.close()
        raise
    return spool


def _source_dir(src_dir: Path | str) -> Path:
    src_path = Path(src_dir).resolve()
    if not src_path.is_dir():
        raise ValueError(f"Source directory does not exist: {src_dir}")
    return src_path


def _write_tar(fileobj, src_path: Path, config: BundleConfig) -> None:
    with tarfile.open(fileobj=fileobj, mode="w", format=tarfile.USTAR_FORMAT) as tar:
        _add_config(tar, config)
        _add_entries(tar, src_path)


def _add_config(tar: tarfile.TarFile, config: BundleConfig) -> None:
    payload = json.dumps(config.model_dump(mode="json"), sort_keys=True, indent=2).encode("utf-8")
    tarinfo = tarfile.TarInfo(CONFIG_MEMBER)
    tarinfo.size = len(payload)
    tarinfo.mode = 0o644
    _apply_canonical_headers(tarinfo)
    tar.addfile(tarinfo, io.BytesIO(payload))


def _add_entries(tar: tarfile.TarFile, src_path: Path) -> None:
    """Add directory entries to tar archive in deterministic order."""
    for entry_path, arcname in _iter_entries_sorted(src_path):
        # Ensure directory names end with "/" for canonical tars
        arc = arcname + ("/" if entry_path.is_dir() and not entry_path.is_symlink() else "")
        tarinfo = tar.gettarinfo(str(entry_path), arcname=arc)
        _apply_canonical_headers(tarinfo)

        if tarinfo.isreg():
            with open(entry_path, "rb") as entry_file:
                tar.addfile(tarinfo, entry_file)
        elif tarinfo.isdir() or tarinfo.issym():
            tar.addfile(tarinfo)
        # Sockets, fifos and devices are not part of a static site


def _iter_entries_sorted(src_dir: Path) -> Iterator[Tuple[Path, str]]:
    """
    Iterate entries in deterministic order.

    Yields (filesystem_path, archive_name) pairs sorted by archive name, so
    directories precede their contents. Top-level ``EXCLUDED_NAMES`` are
    skipped.
    """
    entries = []

    for root, dirs, files in os.walk(src_dir):
        root_path = Path(root)
        rel_root = root_path.relative_to(src_dir)

        if rel_root == Path("."):
            dirs[:] = [d for d in dirs if d not in EXCLUDED_NAMES]
            files = [f for f in files if f not in EXCLUDED_NAMES]
        else:
            entries.append((root_path, normalize_relpath(str(rel_root))))

        for file_name in files:
            file_path = root_path / file_name
            entries.append((file_path, normalize_relpath(str(file_path.relative_to(src_dir)))))

        # Symlinked directories are archived as links, never followed
        for dir_name in dirs:
            dir_path = root_path / dir_name
            if dir_path.is_symlink():
                entries.append((dir_path, normalize_relpath(str(dir_path.relative_to(src_dir)))))
        dirs[:] = [d for d in dirs if not (root_path / d).is_symlink()]

    entries.sort(key=lambda x: x[1])
    yield from entries


def normalize_relpath(path: str) -> str:
    """
    Normalize relative path for archive creation.

    Converts backslashes to forward slashes and applies NFC normalization.

    Raises:
        ValueError: If path contains unsafe sequences after normalization
    """
    normalized = unicodedata.normalize("NFC", path.replace("\\", "/"))
    if normalized.startswith("./"):
        normalized = normalized[2:]

    rel = PurePosixPath(normalized)
    if not normalized or normalized == "." or rel.is_absolute() or ".." in rel.parts:
        raise ValueError(f"unsafe archive path: {path}")
    if "\x00" in normalized:
        raise ValueError(f"archive path contains NUL byte: {path}")

    return normalized


def _apply_canonical_headers(tarinfo: tarfile.TarInfo) -> None:
    """
    Apply canonical tar headers for deterministic output.

    Sets consistent ownership, timestamps, and permissions while
    preserving essential file type information.
    """
    tarinfo.uid = 0
    tarinfo.gid = 0
    tarinfo.uname = ""
    tarinfo.gname = ""
    tarinfo.mtime = 0

    if tarinfo.isdir():
        tarinfo.mode = 0o755
    elif tarinfo.isreg():
        # Preserve execute bit for regular files
        tarinfo.mode = 0o755 if tarinfo.mode & 0o100 else 0o644
