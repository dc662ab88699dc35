"""Builders for bundle archives used across tests."""
from __future__ import annotations

import io
import json
import tarfile
from typing import Any, Dict, Mapping, Optional

from launch_bundles.models import CONFIG_MEMBER

# Repetitive enough to shrink under both zstd and gzip
COMPRESSIBLE_TEXT = ("<p>launch bundle content line</p>\n" * 200).encode()


def bundle_config(domain: str = "a.example", name: str = "site", **extra: Any) -> Dict[str, Any]:
    config = {"name": name, "domain": domain, "compress": ["html", "js", "css"]}
    config.update(extra)
    return config


def make_archive(files: Optional[Mapping[str, bytes]] = None,
                 config: Optional[Mapping[str, Any]] = None,
                 *, raw_config: Optional[bytes] = None,
                 prefix: str = "./") -> bytes:
    """
    Build an uncompressed bundle archive.

    ``config`` is serialized to the root config member (omitted when both
    ``config`` and ``raw_config`` are None). Member names get ``prefix``.
    """
    files = {"index.html": COMPRESSIBLE_TEXT} if files is None else files
    buffer = io.BytesIO()

    with tarfile.open(fileobj=buffer, mode="w") as tar:
        root = tarfile.TarInfo(".")
        root.type = tarfile.DIRTYPE
        root.mode = 0o755
        tar.addfile(root)

        payload = raw_config
        if payload is None and config is not None:
            payload = json.dumps(dict(config)).encode()
        if payload is not None:
            _add_file(tar, f"{prefix}{CONFIG_MEMBER}", payload)

        for name, data in files.items():
            _add_file(tar, f"{prefix}{name}", data)

    return buffer.getvalue()


def add_member(archive: bytes, info: tarfile.TarInfo, data: bytes = b"") -> bytes:
    """Return ``archive`` with one extra member appended."""
    source = io.BytesIO(archive)
    buffer = io.BytesIO()
    with tarfile.open(fileobj=source, mode="r") as src, tarfile.open(fileobj=buffer, mode="w") as dst:
        for member in src:
            dst.addfile(member, src.extractfile(member) if member.isfile() else None)
        if info.isfile():
            info.size = len(data)
            dst.addfile(info, io.BytesIO(data))
        else:
            dst.addfile(info)
    return buffer.getvalue()


def _add_file(tar: tarfile.TarFile, name: str, data: bytes) -> None:
    info = tarfile.TarInfo(name)
    info.size = len(data)
    info.mode = 0o644
    tar.addfile(info, io.BytesIO(data))
