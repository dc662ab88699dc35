"""Archive storage for uploaded bundles."""
from .base import ArchiveStore, ByteStream
from .filesystem import ARCHIVE_SUFFIX, FileArchiveStore

__all__ = ["ArchiveStore", "ByteStream", "FileArchiveStore", "ARCHIVE_SUFFIX"]
