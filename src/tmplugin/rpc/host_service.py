"""
Host service: sandboxed filesystem and configuration access for plugins.

Plugins never touch the project directly. They call back into the host
through this service, which confines file operations to the project
root and exposes the configuration tree and stack metadata.

Path rules:
- an empty path is rejected (INVALID_ARGUMENT)
- an absolute path must be the root or lie beneath it (PERMISSION_DENIED)
- a relative path is joined with the root (INVALID_ARGUMENT if unknown)

Configuration calls answer UNAVAILABLE until a root has been loaded.
"""

from __future__ import annotations

import concurrent.futures as _futures
import contextlib as _contextlib
import dataclasses as _dataclasses
import fnmatch as _fnmatch
import logging as _logging
import os as _os
import pathlib as _pathlib
import threading as _threading
import typing as _typing

import grpc as _grpc

import tmplugin.constants as constants
import tmplugin.project.files as files
import tmplugin.project.paths as paths
import tmplugin.project.tree as tree
import tmplugin.rpc.errors as errors
import tmplugin.rpc.messages as messages
import tmplugin.rpc.services as services

_logger = _logging.getLogger(__name__)


class _RWLock:
    """Many readers or one writer."""

    def __init__(self) -> None:
        self._cond = _threading.Condition()
        self._readers = 0
        self._writer = False

    @_contextlib.contextmanager
    def read(self) -> _typing.Iterator[None]:
        with self._cond:
            while self._writer:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @_contextlib.contextmanager
    def write(self) -> _typing.Iterator[None]:
        with self._cond:
            while self._writer or self._readers:
                self._cond.wait()
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


def stack_metadata(node: tree.ConfigTree | None) -> messages.StackMetadata:
    """Copy a node's stack metadata into a wire message (empty when not a stack)."""
    if node is None or node.stack is None:
        return messages.StackMetadata()
    st = node.stack
    return messages.StackMetadata(
        name=st.name,
        description=st.description,
        tags=list(st.tags),
        after=list(st.after),
        before=list(st.before),
        wants=list(st.wants),
        wanted_by=list(st.wanted_by),
        watch=list(st.watch),
    )


_LIST_FIELDS = ("tags", "after", "before", "wants", "wanted_by", "watch")


def apply_stack_metadata(
    stack: tree.Stack | None, meta: messages.StackMetadata | None, merge: bool
) -> None:
    """
    Apply metadata to a stack.

    Without merge every field is replaced. With merge, empty scalars
    are filled, empty lists are replaced and non-empty lists are
    extended (duplicates kept, order preserved).
    """
    if stack is None or meta is None:
        return

    if not merge or not stack.name:
        stack.name = meta.name
    if not merge or not stack.description:
        stack.description = meta.description

    for field in _LIST_FIELDS:
        current: list[str] = getattr(stack, field)
        incoming: list[str] = getattr(meta, field)
        if not merge or not current:
            setattr(stack, field, list(incoming))
        elif incoming:
            current.extend(incoming)


def _walk(root: _pathlib.Path) -> _typing.Iterator[tuple[_pathlib.Path, bool]]:
    """
    Depth-first walk in lexical order, starting with root itself.

    Symlinks are reported as non-directories and never followed.
    """
    is_dir = not root.is_symlink() and root.is_dir()
    yield root, is_dir
    if not is_dir:
        return
    for entry in sorted(root.iterdir(), key=lambda p: p.name):
        yield from _walk(entry)


class HostService(services.HostServiceBase):
    """
    Host-side implementation of the HostService contract.

    Methods raise RPCError, so they can be called in-process as well as
    served over gRPC.
    """

    def __init__(
        self,
        root: tree.ConfigRoot | None,
        user_terramate_dir: str | _os.PathLike[str],
    ) -> None:
        self._lock = _RWLock()
        self._root = root
        self._root_dir = root.host_dir() if root is not None else ""
        self._user_terramate_dir = str(user_terramate_dir)

    def set_root(self, root: tree.ConfigRoot | None) -> None:
        """Install (or clear) the loaded configuration after the service started."""
        with self._lock.write():
            self._root = root
            self._root_dir = root.host_dir() if root is not None else ""

    # -------------------------------------------------------------------------
    # Path helpers (callers hold the read lock)
    # -------------------------------------------------------------------------

    def _resolve_path(self, path: str) -> _pathlib.Path:
        if not path:
            raise errors.invalid_argument("path is required")
        if _os.path.isabs(path):
            if self._root_dir and not paths.is_within(self._root_dir, path):
                raise errors.permission_denied("path outside root directory")
            return _pathlib.Path(_os.path.normpath(path))
        if not self._root_dir:
            raise errors.invalid_argument("root directory is unknown")
        return _pathlib.Path(self._root_dir, path)

    def _lookup(self, path: str, what: str) -> tree.ConfigTree:
        with self._lock.read():
            if self._root is None:
                raise errors.unavailable("configuration is not loaded")
            node = self._root.lookup(paths.to_project_path(self._root_dir, path))
        if node is None:
            raise errors.not_found(f"{what} path not found")
        return node

    # -------------------------------------------------------------------------
    # Service methods
    # -------------------------------------------------------------------------

    def get_root_dir(self, request: messages.Empty) -> messages.StringValue:
        with self._lock.read():
            return messages.StringValue(value=self._root_dir)

    def get_user_terramate_dir(self, request: messages.Empty) -> messages.StringValue:
        return messages.StringValue(value=self._user_terramate_dir)

    def read_file(self, request: messages.ReadFileRequest) -> messages.ReadFileResponse:
        with self._lock.read():
            path = self._resolve_path(request.path)
        try:
            content = path.read_bytes()
        except FileNotFoundError:
            raise errors.not_found(f"file not found: {request.path}") from None
        return messages.ReadFileResponse(content=content)

    def write_file(self, request: messages.WriteFileRequest) -> messages.Empty:
        with self._lock.read():
            path = self._resolve_path(request.path)
        files.write_file(path, request.content, request.mode)
        _logger.debug("Plugin wrote %s (%d bytes)", path, len(request.content))
        return messages.Empty()

    def walk_dir(self, request: messages.WalkDirRequest) -> _typing.Iterator[messages.DirEntry]:
        with self._lock.read():
            root = self._resolve_path(request.root)
        if not root.exists():
            raise errors.not_found(f"directory not found: {request.root}")
        return self._walk_entries(root, request.pattern.strip())

    def _walk_entries(
        self, root: _pathlib.Path, pattern: str
    ) -> _typing.Iterator[messages.DirEntry]:
        for path, is_dir in _walk(root):
            if pattern and not _fnmatch.fnmatchcase(path.name, pattern):
                continue
            rel = _pathlib.PurePath(_os.path.relpath(path, root)).as_posix()
            yield messages.DirEntry(path=rel, is_dir=is_dir)

    def get_config_tree(self, request: messages.GetConfigTreeRequest) -> messages.ConfigTreeNode:
        node = self._lookup(request.path, "configuration")
        return messages.ConfigTreeNode(
            dir=node.dir,
            is_stack=node.is_stack(),
            stack=stack_metadata(node),
        )

    def get_stack_metadata(self, request: messages.GetStackRequest) -> messages.StackMetadata:
        node = self._lookup(request.path, "stack")
        return stack_metadata(node)

    def set_stack_metadata(self, request: messages.SetStackRequest) -> messages.Empty:
        node = self._lookup(request.path, "stack")
        with self._lock.write():
            if node.stack is None:
                node.stack = tree.Stack()
            apply_stack_metadata(node.stack, request.metadata, request.merge)
        return messages.Empty()


# =============================================================================
# Serving and dialing
# =============================================================================


@_dataclasses.dataclass
class RunningHostService:
    """A host service listening on a local TCP port."""

    address: str
    service: HostService
    server: _grpc.Server

    def stop(self, grace: float | None = None) -> None:
        self.server.stop(grace).wait()
        _logger.debug("Host service at %s stopped", self.address)


def start_host_service(
    root: tree.ConfigRoot | None,
    user_terramate_dir: str | _os.PathLike[str],
    *,
    max_workers: int = 4,
) -> RunningHostService:
    """
    Serve a HostService on 127.0.0.1 (ephemeral port).

    Args:
        root: Loaded configuration, or None until it becomes available.
        user_terramate_dir: User terramate directory reported to plugins.
        max_workers: Size of the server thread pool.

    Returns:
        The running service; call stop() when done.
    """
    service = HostService(root, user_terramate_dir)
    server = _grpc.server(_futures.ThreadPoolExecutor(max_workers=max_workers))
    server.add_generic_rpc_handlers((services.generic_handler(services.HOST_SERVICE, service),))
    port = server.add_insecure_port("127.0.0.1:0")
    server.start()
    address = f"127.0.0.1:{port}"
    _logger.debug("Host service listening on %s", address)
    return RunningHostService(address=address, service=service, server=server)


@_contextlib.contextmanager
def serving(
    root: tree.ConfigRoot | None,
    user_terramate_dir: str | _os.PathLike[str],
) -> _typing.Iterator[RunningHostService]:
    """Serve a HostService for the duration of a with block."""
    running = start_host_service(root, user_terramate_dir)
    try:
        yield running
    finally:
        running.stop()


def host_env(running: RunningHostService | None) -> dict[str, str]:
    """Environment entries advertising a running host service to a plugin."""
    if running is None:
        return {}
    return {constants.HOST_ADDR_ENV: running.address}


def dial_host_service(address: str, *, timeout: float | None = None) -> services.HostServiceClient:
    """Open a client connection to a host service."""
    channel = _grpc.insecure_channel(address)
    return services.HostServiceClient(channel, timeout=timeout)


def host_client_from_env(
    environ: _typing.Mapping[str, str] | None = None,
) -> services.HostServiceClient | None:
    """
    Connect to the host service advertised in TM_PLUGIN_HOST_ADDR.

    Returns:
        A client, or None when the host did not start a host service.
    """
    if environ is None:
        environ = _os.environ
    address = environ.get(constants.HOST_ADDR_ENV, "")
    if not address:
        return None
    return dial_host_service(address)
