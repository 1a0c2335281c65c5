"""
Root-relative keys.

A key is the part of a file's absolute path below its root, always starting
with "/" and using "/" as separator, e.g. "/photos/2021/a.jpg". Keys are the
identity used to pair files across the two sides of a reconciliation.
"""
import os
from pathlib import Path, PurePosixPath


def relative_key(root: Path, path: Path) -> str:
    """
    Returns the key of `path` relative to `root`.

    The root prefix is removed by length, so a directory further down that
    happens to share the root's name is kept intact.
    """
    root_str = str(root).rstrip(os.sep) or os.sep
    path_str = str(path)

    if root_str == os.sep:
        prefix_len = 0
    elif path_str.startswith(root_str) and path_str[len(root_str):len(root_str) + 1] == os.sep:
        prefix_len = len(root_str)
    else:
        raise ValueError(f"{path} is not below {root}")

    remainder = path_str[prefix_len:]
    if len(remainder) <= 1:
        raise ValueError(f"{path} is the root itself, not a descendant")

    if os.sep != "/":
        remainder = remainder.replace(os.sep, "/")
    return remainder


def key_to_path(root: Path, key: str) -> Path:
    """Inverse of relative_key: resolves a key below `root`."""
    parts = PurePosixPath(key.lstrip("/")).parts
    return Path(root).joinpath(*parts)
