"""
Consumption of plugin output streams (ExecuteCommand, Generate).
"""

from __future__ import annotations

import logging as _logging
import os as _os
import pathlib as _pathlib
import typing as _typing

import tmplugin.project.files as files
import tmplugin.project.paths as paths
import tmplugin.rpc.messages as messages

_logger = _logging.getLogger(__name__)


class OutputError(Exception):
    """A plugin output event could not be applied."""

    pass


def write_file_event(
    base_dir: str | _os.PathLike[str],
    file: messages.FileWrite,
    *,
    confine_to: str | _os.PathLike[str] | None = None,
) -> _pathlib.Path | None:
    """
    Apply a file-write event.

    Args:
        base_dir: Directory relative paths are resolved against.
        file: The event payload. An empty path is ignored.
        confine_to: When set, the target must lie within this directory.

    Returns:
        The written path, or None when the event was ignored.

    Raises:
        OutputError: If the target escapes confine_to.
    """
    if not file.path:
        return None

    target = _pathlib.Path(file.path)
    if not target.is_absolute():
        target = _pathlib.Path(base_dir) / target
    target = _pathlib.Path(_os.path.normpath(target))

    if confine_to is not None and not paths.is_within(confine_to, target):
        raise OutputError(f"plugin attempted to write outside {confine_to}: {file.path}")

    files.write_file(target, file.content, file.mode)
    _logger.debug("Wrote %s (%d bytes)", target, len(file.content))
    return target


def consume_output(
    events: _typing.Iterable[_typing.Any],
    *,
    stdout: _typing.BinaryIO,
    stderr: _typing.BinaryIO,
    base_dir: str | _os.PathLike[str],
    confine_to: str | _os.PathLike[str] | None = None,
) -> int:
    """
    Drain an output stream to its end.

    Stdout/stderr chunks are copied to the given streams, file writes
    are applied and the last exit code event wins.

    Returns:
        The plugin's exit code (0 if none was sent).

    Raises:
        RPCError: If the stream fails.
        OutputError: If a file write escapes confine_to.
    """
    exit_code = 0
    for event in events:
        if isinstance(event, messages.StdoutChunk):
            if event.data:
                stdout.write(event.data)
                stdout.flush()
        elif isinstance(event, messages.StderrChunk):
            if event.data:
                stderr.write(event.data)
                stderr.flush()
        elif isinstance(event, messages.FileWriteEvent):
            write_file_event(base_dir, event.file, confine_to=confine_to)
        elif isinstance(event, messages.ExitCode):
            exit_code = event.code
    return exit_code
