"""
Filesystem archive store.

Keeps one ``<ULID>.launch`` tar file per bundle in a single directory. The
directory is the durable source of truth: on startup every archive found here
is redeployed.
"""
from __future__ import annotations

import gzip
import json
import logging
import lzma
import os
import tarfile
import tempfile
import zlib
from pathlib import Path, PurePosixPath
from typing import List

from pydantic import ValidationError
from ulid import ULID

from ..errors import BundleNotFoundError, MalformedBundleError
from ..models import CONFIG_MEMBER, BundleConfig, parse_bundle_id
from ..path_safety import is_within, safe_relpath
from .base import ByteStream

logger = logging.getLogger(__name__)

ARCHIVE_SUFFIX = ".launch"
CHUNK_SIZE = 1024 * 1024  # 1 MiB

# Extraction filters exist on interpreters with PEP 706; member names are
# validated before extraction, the filter adds permission sanitizing.
_EXTRACT_KWARGS = {"filter": "data"} if hasattr(tarfile, "data_filter") else {}

# Decoder failures surfacing while reading a compressed or truncated container
ARCHIVE_ERRORS = (tarfile.TarError, EOFError, zlib.error, lzma.LZMAError, gzip.BadGzipFile)

__all__ = ["FileArchiveStore", "ARCHIVE_SUFFIX"]


def _is_root_member(name: str) -> bool:
    return PurePosixPath(name) == PurePosixPath(".")


def _is_config_member(name: str) -> bool:
    try:
        return safe_relpath(name) == CONFIG_MEMBER
    except ValueError:
        return False


class FileArchiveStore:
    """
    Archive store backed by a local directory.

    Writes are atomic (temp file + fsync + rename), so a failed upload never
    clobbers a previously stored archive.
    """

    def __init__(self, root: Path | str):
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)

    def path(self, bundle_id: ULID) -> Path:
        """Archive path for ``bundle_id``."""
        return self.root / f"{bundle_id}{ARCHIVE_SUFFIX}"

    def add(self, bundle_id: ULID, data: ByteStream) -> None:
        target = self.path(bundle_id)
        fd, temp_path = tempfile.mkstemp(prefix=f".{bundle_id}.", suffix=".tmp", dir=self.root)
        temp_path = Path(temp_path)

        try:
            with os.fdopen(fd, "wb") as out:
                if hasattr(data, "read"):
                    while True:
                        chunk = data.read(CHUNK_SIZE)
                        if not chunk:
                            break
                        out.write(chunk)
                else:
                    for chunk in data:
                        out.write(chunk)

                out.flush()
                os.fsync(out.fileno())

            os.replace(temp_path, target)
        except BaseException:
            try:
                temp_path.unlink()
            except FileNotFoundError:
                pass
            raise

        self._sync_dir()
        logger.debug(f"Stored archive {target} ({target.stat().st_size} bytes)")

    def remove(self, bundle_id: ULID) -> None:
        try:
            self.path(bundle_id).unlink()
        except FileNotFoundError:
            return
        self._sync_dir()
        logger.debug(f"Removed archive for {bundle_id}")

    def enumerate(self) -> List[ULID]:
        bundles = []

        for entry in self.root.iterdir():
            if not entry.is_file() or entry.suffix.lower() != ARCHIVE_SUFFIX:
                continue
            try:
                bundles.append(parse_bundle_id(entry.stem))
            except ValueError:
                logger.warning(f"Skipping unknown file in archive store: {entry}")

        return sorted(bundles)

    def metadata(self, bundle_id: ULID) -> BundleConfig:
        with self._open(bundle_id) as tar:
            try:
                for member in tar:
                    if not member.isfile() or not _is_config_member(member.name):
                        continue

                    raw = tar.extractfile(member).read()
                    try:
                        return BundleConfig.model_validate(json.loads(raw))
                    except (json.JSONDecodeError, UnicodeDecodeError) as e:
                        raise MalformedBundleError(f"{CONFIG_MEMBER} is not valid JSON: {e}") from e
                    except ValidationError as e:
                        raise MalformedBundleError(f"invalid {CONFIG_MEMBER}: {e}") from e
            except ARCHIVE_ERRORS as e:
                raise MalformedBundleError(f"corrupt archive for {bundle_id}: {e}") from e

        raise BundleNotFoundError(f"no {CONFIG_MEMBER} found in archive {bundle_id}")

    def unpack(self, bundle_id: ULID, destination: Path) -> None:
        destination = Path(destination)
        destination.mkdir(parents=True, exist_ok=True)

        with self._open(bundle_id) as tar:
            try:
                for member in tar:
                    if _is_root_member(member.name):
                        continue
                    try:
                        name = safe_relpath(member.name)
                    except ValueError as e:
                        raise MalformedBundleError(f"archive {bundle_id}: {e}") from e

                    if name == CONFIG_MEMBER:
                        continue
                    if member.isdev() or member.isfifo():
                        logger.debug(f"Skipping special member {name} in {bundle_id}")
                        continue
                    if member.issym() or member.islnk():
                        self._check_link(bundle_id, member, name, destination)

                    member.name = name
                    self._replace_existing(destination / name, member)
                    try:
                        tar.extract(member, destination, **_EXTRACT_KWARGS)
                    except KeyError as e:
                        # Hard link to a member the archive does not contain
                        raise MalformedBundleError(f"archive {bundle_id}: {name}: {e}") from e
            except ARCHIVE_ERRORS as e:
                raise MalformedBundleError(f"corrupt archive for {bundle_id}: {e}") from e

    def _open(self, bundle_id: ULID) -> tarfile.TarFile:
        path = self.path(bundle_id)
        try:
            return tarfile.open(path, mode="r:*")
        except FileNotFoundError as e:
            raise BundleNotFoundError(f"no archive stored for {bundle_id}") from e
        except ARCHIVE_ERRORS as e:
            raise MalformedBundleError(f"corrupt archive for {bundle_id}: {e}") from e

    @staticmethod
    def _check_link(bundle_id: ULID, member: tarfile.TarInfo, name: str, destination: Path) -> None:
        if member.issym():
            target = os.path.join(destination, os.path.dirname(name), member.linkname)
        else:
            target = os.path.join(destination, member.linkname)
        if os.path.isabs(member.linkname) or not is_within(str(destination), target):
            raise MalformedBundleError(
                f"archive {bundle_id}: link {name} points outside the bundle ({member.linkname})"
            )

    @staticmethod
    def _replace_existing(path: Path, member: tarfile.TarInfo) -> None:
        # Overwrite semantics: a file may replace a stale file or link of the same name
        if member.isdir():
            return
        if path.is_symlink() or path.is_file():
            path.unlink()

    def _sync_dir(self) -> None:
        fd = os.open(self.root, os.O_RDONLY)
        try:
            os.fsync(fd)
        finally:
            os.close(fd)

