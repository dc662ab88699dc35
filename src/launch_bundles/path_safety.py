"""
Path safety utilities for bundle archives.

This module provides shared validation for archive member names so that
unpacking an uploaded bundle can never write outside its extraction directory.
"""
from __future__ import annotations

import os
from pathlib import PurePosixPath


def safe_relpath(path: str) -> str:
    """
    Validate and normalize an archive member name to prevent traversal attacks.

    This function enforces the following safety rules:
    - Leading "./" components are dropped (client archives are rooted at ".")
    - No empty strings or "." after normalization
    - No absolute paths (starting with '/')
    - No parent directory references ('..' components)
    - No backslashes or NUL bytes

    Args:
        path: Member name as stored in the archive

    Returns:
        Normalized relative path safe for use

    Raises:
        ValueError: If path violates safety rules

    Examples:
        >>> safe_relpath("./assets/app.js")
        'assets/app.js'

        >>> safe_relpath("../etc/passwd")
        ValueError: unsafe path: ../etc/passwd
    """
    if "\\" in path or "\x00" in path:
        raise ValueError(f"unsafe path: {path}")
    rel = PurePosixPath(path)
    if rel.is_absolute() or ".." in rel.parts:
        raise ValueError(f"unsafe path: {path}")
    s = str(rel)
    while s.startswith("./"):
        s = s[2:]
    if not s or s == ".":
        raise ValueError(f"unsafe path: {path}")
    return s


def is_within(root: str, target: str) -> bool:
    """Return True if ``target`` resolves to ``root`` or a path below it."""
    root_real = os.path.realpath(root)
    target_real = os.path.realpath(target)
    return os.path.commonpath([root_real, target_real]) == root_real
