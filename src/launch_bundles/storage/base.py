"""
Storage interfaces for Launch.

These protocols define the boundary between the bundle manager and archive
storage implementations, enabling clean dependency injection and testing.
"""
from __future__ import annotations

from pathlib import Path
from typing import BinaryIO, Iterable, List, Protocol, Union, runtime_checkable

from ulid import ULID

from ..models import BundleConfig

ByteStream = Union[BinaryIO, Iterable[bytes]]

__all__ = ["ArchiveStore", "ByteStream"]


@runtime_checkable
class ArchiveStore(Protocol):
    """Protocol for durable bundle archive storage, one archive per identifier."""

    def add(self, bundle_id: ULID, data: ByteStream) -> None:
        """
        Persist an archive, replacing any archive stored under ``bundle_id``.

        The data is durable once this returns.

        Raises:
            OSError: For I/O errors
        """
        ...

    def remove(self, bundle_id: ULID) -> None:
        """
        Delete the archive for ``bundle_id``; a missing archive is not an error.

        Raises:
            OSError: For I/O errors other than a missing file
        """
        ...

    def enumerate(self) -> List[ULID]:
        """Identifiers of all stored archives."""
        ...

    def metadata(self, bundle_id: ULID) -> BundleConfig:
        """
        Read the BundleConfig embedded in the archive.

        Raises:
            BundleNotFoundError: If the archive or its config member is missing
            MalformedBundleError: If the archive or config cannot be parsed
        """
        ...

    def unpack(self, bundle_id: ULID, destination: Path) -> None:
        """
        Extract the archive into ``destination``, creating it if needed.

        Raises:
            BundleNotFoundError: If the archive is missing
            MalformedBundleError: If the archive is corrupt or unsafe
            OSError: For I/O errors while writing files
        """
        ...
