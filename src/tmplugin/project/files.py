"""
File writes performed on behalf of plugins.
"""

from __future__ import annotations

import os as _os
import pathlib as _pathlib

import tmplugin.constants as constants


def write_file(path: str | _os.PathLike[str], content: bytes, mode: int = 0) -> _pathlib.Path:
    """
    Write a file, creating parent directories.

    Args:
        path: Target path.
        content: File content.
        mode: Permission bits for a newly created file (0 means 0644).
            An existing file keeps its mode.

    Returns:
        The written path.
    """
    target = _pathlib.Path(path)
    target.parent.mkdir(mode=constants.DEFAULT_DIR_MODE, parents=True, exist_ok=True)
    fd = _os.open(target, _os.O_WRONLY | _os.O_CREAT | _os.O_TRUNC, mode or constants.DEFAULT_FILE_MODE)
    with _os.fdopen(fd, "wb") as f:
        f.write(content)
    return target
