"""
Plugin manifest parsing.

Each installed plugin lives in its own directory under the user plugin
directory and is described by a manifest.json file written at install
time. The manifest declares the plugin identity, the protocol it
speaks and the binaries it ships (paths relative to the plugin
directory).
"""

from __future__ import annotations

import enum as _enum
import json as _json
import pathlib as _pathlib
import typing as _typing

import pydantic as _pydantic
import yaml as _yaml

import tmplugin.constants as constants


class ManifestError(ValueError):
    """Raised when a manifest file is unreadable or does not match the schema."""

    pass


class Protocol(str, _enum.Enum):
    """Protocol a plugin binary speaks."""

    GRPC = "grpc"
    """Typed multi-service RPC protocol (this package)."""

    LEGACY = "legacy"
    """Plain executable invoked as a sub-command."""


class PluginType(str, _enum.Enum):
    """Distribution type of a plugin."""

    GRPC = "grpc"
    BINARY = "binary"


class BinaryKind(str, _enum.Enum):
    """Role of a binary shipped by a plugin."""

    CLI = "cli"
    """Binary the host spawns for RPC sessions."""

    LS = "ls"
    """Language server binary."""


class Binary(_pydantic.BaseModel):
    """A binary shipped by a plugin."""

    model_config = _pydantic.ConfigDict(extra="ignore")

    path: str = _pydantic.Field(
        default="",
        description="Path relative to the plugin directory",
    )
    checksum: str = ""
    signature: str = ""
    public_key: str = ""


class Manifest(_pydantic.BaseModel):
    """
    Plugin manifest parsed from manifest.json.

    Required fields:
    - name: Plugin identifier
    - version: Version string ("local" for plugins installed from a directory)

    Unknown keys are ignored so manifests written by newer installers
    remain readable.
    """

    model_config = _pydantic.ConfigDict(extra="ignore", use_enum_values=False)

    name: str = _pydantic.Field(..., min_length=1, description="Plugin name")

    version: str = _pydantic.Field(..., min_length=1, description="Plugin version")

    type: PluginType | None = _pydantic.Field(
        default=None,
        description="Distribution type",
    )

    protocol: Protocol | None = _pydantic.Field(
        default=None,
        description="Protocol the CLI binary speaks",
    )

    compatible_with: str = _pydantic.Field(
        default="",
        description="Host version constraint",
    )

    binaries: dict[BinaryKind, Binary] = _pydantic.Field(
        default_factory=dict,
        description="Binaries keyed by kind",
    )

    registry: str = _pydantic.Field(
        default="",
        description="Registry the plugin was installed from",
    )

    metadata: dict[str, _typing.Any] = _pydantic.Field(
        default_factory=dict,
        description="Free-form metadata (legacy installs record protocol here)",
    )

    def is_grpc(self) -> bool:
        """
        Whether the plugin speaks the RPC protocol.

        Either signal is sufficient: the declared protocol, or the legacy
        metadata key ``protocol`` set to "grpc" or "rpc".
        """
        if self.protocol == Protocol.GRPC:
            return True
        legacy = self.metadata.get("protocol")
        return isinstance(legacy, str) and legacy in ("grpc", "rpc")

    def cli_binary(self) -> Binary | None:
        """The CLI binary entry, or None if not declared."""
        return self.binaries.get(BinaryKind.CLI)


def plugins_root(user_dir: _pathlib.Path) -> _pathlib.Path:
    """Get the directory holding one subdirectory per installed plugin."""
    return user_dir / constants.PLUGINS_DIR_NAME


def plugin_dir(user_dir: _pathlib.Path, name: str) -> _pathlib.Path:
    """Get the installation directory for the named plugin."""
    return plugins_root(user_dir) / name


def load_manifest(path: _pathlib.Path) -> Manifest:
    """
    Load a plugin manifest.

    The file is read with a YAML safe loader, which accepts the JSON
    written by installers as well as hand-written YAML.

    Args:
        path: Path to the manifest file.

    Returns:
        Parsed Manifest.

    Raises:
        FileNotFoundError: If file doesn't exist.
        ManifestError: If the file is unreadable or doesn't match the schema.
    """
    if not path.exists():
        raise FileNotFoundError(f"Plugin manifest not found: {path}")

    try:
        content = path.read_text(encoding="utf-8")
        data = _yaml.safe_load(content)
        if data is None:
            raise ManifestError(f"Empty manifest file: {path}")
        if not isinstance(data, dict):
            raise ManifestError(f"Manifest must be a mapping: {path}")
        return Manifest.model_validate(data)
    except OSError as e:
        raise ManifestError(f"Cannot read manifest {path}: {e}") from e
    except _yaml.YAMLError as e:
        raise ManifestError(f"Invalid manifest syntax in {path}: {e}") from e
    except _pydantic.ValidationError as e:
        raise ManifestError(f"Invalid plugin manifest in {path}: {e}") from e


def save_manifest(directory: _pathlib.Path, manifest: Manifest) -> _pathlib.Path:
    """
    Write a manifest into a plugin directory.

    Args:
        directory: Plugin directory (created if missing).
        manifest: Manifest to write.

    Returns:
        Path of the written manifest file.
    """
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / constants.MANIFEST_FILE
    data = manifest.model_dump(mode="json", exclude_none=True)
    path.write_text(_json.dumps(data, indent=2) + "\n", encoding="utf-8")
    return path


def list_manifests(user_dir: _pathlib.Path) -> list[tuple[_pathlib.Path, Manifest]]:
    """
    List all installed plugin manifests.

    Args:
        user_dir: User terramate directory.

    Returns:
        (plugin directory, manifest) pairs sorted by directory name.
        Empty when the plugins directory does not exist.

    Raises:
        ManifestError: If any manifest is unreadable or invalid.
    """
    root = plugins_root(user_dir)
    if not root.is_dir():
        return []

    result: list[tuple[_pathlib.Path, Manifest]] = []
    for entry in sorted(root.iterdir()):
        if not entry.is_dir():
            continue
        manifest_path = entry / constants.MANIFEST_FILE
        if not manifest_path.exists():
            continue
        result.append((entry, load_manifest(manifest_path)))
    return result
