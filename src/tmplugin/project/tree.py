"""
Minimal configuration tree of a project.

The tree has one node per directory under the project root. A node is
a stack when one of its configuration files (*.tm, *.tm.hcl) declares
a top-level ``stack`` block. Only what the plugin host service needs is
modelled here: stack metadata, lookup by project path, and a slot for
plugin-provided external data.
"""

from __future__ import annotations

import dataclasses as _dataclasses
import logging as _logging
import os as _os
import pathlib as _pathlib
import re as _re
import typing as _typing

import tmplugin.project.paths as paths

_logger = _logging.getLogger(__name__)

CONFIG_SUFFIXES = (".tm", ".tm.hcl")

_STACK_BLOCK = _re.compile(r"^\s*stack\s*\{", _re.MULTILINE)
_STRING_ATTR = r'^\s*{name}\s*=\s*"((?:[^"\\]|\\.)*)"'


@_dataclasses.dataclass
class Stack:
    """Stack metadata attached to a configuration node."""

    name: str = ""
    description: str = ""
    tags: list[str] = _dataclasses.field(default_factory=list)
    after: list[str] = _dataclasses.field(default_factory=list)
    before: list[str] = _dataclasses.field(default_factory=list)
    wants: list[str] = _dataclasses.field(default_factory=list)
    wanted_by: list[str] = _dataclasses.field(default_factory=list)
    watch: list[str] = _dataclasses.field(default_factory=list)


@_dataclasses.dataclass
class ConfigTree:
    """One directory of the project."""

    dir: str
    """Project path of the directory."""

    host_dir: _pathlib.Path
    """Host path of the directory."""

    stack: Stack | None = None
    """Stack metadata, None when the directory is not a stack."""

    external: _typing.Any = None
    """Data contributed by plugins (set by the configuration parser or config patches)."""

    children: dict[str, ConfigTree] = _dataclasses.field(default_factory=dict)

    def is_stack(self) -> bool:
        return self.stack is not None

    def walk(self) -> _typing.Iterator[ConfigTree]:
        """Yield this node and all descendants in path order."""
        yield self
        for name in sorted(self.children):
            yield from self.children[name].walk()


class ConfigRoot:
    """Root of a loaded configuration tree."""

    def __init__(self, host_dir: str | _os.PathLike[str], tree: ConfigTree | None = None) -> None:
        self._host_dir = _pathlib.Path(host_dir)
        self.tree = tree or ConfigTree(dir="/", host_dir=self._host_dir)

    def host_dir(self) -> str:
        """Host path of the project root."""
        return str(self._host_dir)

    def lookup(self, path: str) -> ConfigTree | None:
        """
        Find the node of a project path.

        Args:
            path: Project path ("/" for the root).

        Returns:
            The node, or None when no such directory was loaded.
        """
        node = self.tree
        for part in paths.new_path(path).split("/")[1:]:
            if not part:
                continue
            child = node.children.get(part)
            if child is None:
                return None
            node = child
        return node

    def add_dir(self, path: str) -> ConfigTree:
        """Get or create the node of a project path, creating parents as needed."""
        node = self.tree
        for part in paths.new_path(path).split("/")[1:]:
            if not part:
                continue
            child = node.children.get(part)
            if child is None:
                child = ConfigTree(
                    dir=paths.new_path(f"{node.dir}/{part}"),
                    host_dir=node.host_dir / part,
                )
                node.children[part] = child
            node = child
        return node

    def stacks(self) -> list[ConfigTree]:
        return [node for node in self.tree.walk() if node.is_stack()]


def _is_config_file(name: str) -> bool:
    return name.endswith(CONFIG_SUFFIXES)


def _string_attr(text: str, name: str) -> str:
    match = _re.search(_STRING_ATTR.format(name=name), text, _re.MULTILINE)
    return match.group(1) if match else ""


def _load_stack(directory: _pathlib.Path, filenames: list[str]) -> Stack | None:
    for filename in sorted(filenames):
        if not _is_config_file(filename):
            continue
        text = (directory / filename).read_text(encoding="utf-8")
        match = _STACK_BLOCK.search(text)
        if match is None:
            continue
        body = text[match.end() :]
        return Stack(
            name=_string_attr(body, "name") or directory.name,
            description=_string_attr(body, "description"),
        )
    return None


def load_root(root_dir: str | _os.PathLike[str]) -> ConfigRoot:
    """
    Load the configuration tree of a project.

    Hidden directories (names starting with ".") are skipped.

    Args:
        root_dir: Host path of the project root.

    Returns:
        Loaded configuration root.

    Raises:
        NotADirectoryError: If root_dir is not a directory.
    """
    root_path = _pathlib.Path(root_dir).resolve()
    if not root_path.is_dir():
        raise NotADirectoryError(f"project root is not a directory: {root_path}")

    root = ConfigRoot(root_path)
    for dirpath, dirnames, filenames in _os.walk(root_path):
        dirnames[:] = sorted(d for d in dirnames if not d.startswith("."))
        directory = _pathlib.Path(dirpath)
        node = root.add_dir(paths.prj_abs_path(root_path, directory))
        node.stack = _load_stack(directory, filenames)

    _logger.debug("Loaded project %s (%d stacks)", root_path, len(root.stacks()))
    return root
