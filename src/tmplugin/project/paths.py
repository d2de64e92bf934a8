"""
Project paths.

A project path is an absolute, slash-separated path rooted at the
project root directory ("/" is the root itself). It is independent of
where the project lives on the host filesystem.
"""

from __future__ import annotations

import os as _os
import pathlib as _pathlib
import posixpath as _posixpath


def new_path(path: str) -> str:
    """
    Normalize a project path.

    Args:
        path: Slash-separated path; a leading "/" is added if missing.

    Returns:
        Cleaned project path ("/" for the root).
    """
    if not path.startswith("/"):
        path = "/" + path
    return _posixpath.normpath(path).replace("//", "/")


def prj_abs_path(root_dir: str | _os.PathLike[str], abs_path: str | _os.PathLike[str]) -> str:
    """
    Convert a host path under the root directory into a project path.

    Args:
        root_dir: Host path of the project root.
        abs_path: Host path inside the root.

    Returns:
        Project path of abs_path.
    """
    rel = _os.path.relpath(_os.path.normpath(abs_path), _os.path.normpath(root_dir))
    if rel == ".":
        return "/"
    return new_path(_pathlib.PurePath(rel).as_posix())


def host_path(root_dir: str | _os.PathLike[str], path: str) -> _pathlib.Path:
    """Host path of a project path."""
    return _pathlib.Path(root_dir).joinpath(*new_path(path).split("/")[1:])


def is_within(root_dir: str | _os.PathLike[str], path: str | _os.PathLike[str]) -> bool:
    """Whether a host path is the root directory or lies beneath it."""
    root = _os.path.normpath(root_dir)
    candidate = _os.path.normpath(path)
    return candidate == root or candidate.startswith(root + _os.sep)


def to_project_path(root_dir: str | _os.PathLike[str], path: str) -> str:
    """
    Interpret a path given by a plugin as a project path.

    "" and "/" are the root. A host path under root_dir is converted;
    any other path starting with "/" is already a project path; a
    relative path is taken relative to the project root.
    """
    if path in ("", "/"):
        return "/"
    if root_dir and _os.path.isabs(path) and is_within(root_dir, path):
        return prj_abs_path(root_dir, path)
    if path.startswith("/"):
        return new_path(path)
    return new_path("/" + _pathlib.PurePath(path).as_posix())
