"""
tmplugin - gRPC plugin protocol for the Terramate stack orchestrator

Lets third-party binaries extend the configuration parser with custom
block types, add CLI sub-commands, hook into lifecycle events and
override code generation, while the host keeps control of filesystem
and configuration access.
"""

import importlib.metadata as _metadata

# Version is defined in pyproject.toml - read it and parse into tuple (primary representation)
_raw_version = _metadata.version("tmplugin")
__version_info__: tuple[int, int, int] = tuple(int(x) for x in _raw_version.split(".")[:3])  # type: ignore[assignment]
__version__: str = ".".join(str(x) for x in __version_info__)
__author__ = "tmplugin Contributors"

from tmplugin.config import Settings  # noqa: E402
from tmplugin.plugins import InstalledPlugin, Manifest, discover_installed  # noqa: E402

__all__ = [
    "__version__",
    "__version_info__",
    "InstalledPlugin",
    "Manifest",
    "Settings",
    "discover_installed",
]
