"""
Handshake shared by host and plugin.

The host launches a plugin with the magic cookie in its environment.
Once its server is listening, the plugin writes one line to stdout:

    CORE|APP|NETWORK|ADDRESS|PROTOCOL

e.g. ``1|1|tcp|127.0.0.1:53211|grpc``. The host reads that line to
learn where to connect. Both sides must agree on the same
HandshakeConfig or the plugin refuses to serve.
"""

from __future__ import annotations

import dataclasses as _dataclasses
import os as _os
import typing as _typing

import tmplugin.constants as constants
import tmplugin.rpc.errors as errors


@_dataclasses.dataclass(frozen=True)
class HandshakeConfig:
    """Shared secret and protocol version agreed by host and plugin."""

    protocol_version: int
    """Application protocol version."""

    magic_cookie_key: str
    """Environment variable carrying the cookie."""

    magic_cookie_value: str
    """Expected cookie value."""


HANDSHAKE = HandshakeConfig(
    protocol_version=1,
    magic_cookie_key="TM_PLUGIN_MAGIC_COOKIE",
    magic_cookie_value="terramate",
)
"""The single handshake value used by both sides."""

NETWORK = "tcp"
PROTOCOL = "grpc"


@_dataclasses.dataclass(frozen=True)
class HandshakeInfo:
    """Parsed handshake line."""

    core_version: int
    app_version: int
    network: str
    address: str
    protocol: str


def is_plugin_env(environ: _typing.Mapping[str, str] | None = None) -> bool:
    """
    Whether the current process was launched by a host.

    Args:
        environ: Environment to inspect (defaults to os.environ).
    """
    if environ is None:
        environ = _os.environ
    return environ.get(HANDSHAKE.magic_cookie_key) == HANDSHAKE.magic_cookie_value


def cookie_env() -> dict[str, str]:
    """Environment entries the host injects into every plugin."""
    return {HANDSHAKE.magic_cookie_key: HANDSHAKE.magic_cookie_value}


def format_handshake_line(address: str) -> str:
    """Build the line a plugin prints once it is listening (no newline)."""
    return "|".join(
        [
            str(constants.CORE_PROTOCOL_VERSION),
            str(HANDSHAKE.protocol_version),
            NETWORK,
            address,
            PROTOCOL,
        ]
    )


def parse_handshake_line(line: str) -> HandshakeInfo:
    """
    Parse and validate a handshake line.

    Args:
        line: Line read from plugin stdout.

    Returns:
        Parsed handshake.

    Raises:
        HandshakeError: If the line is malformed or advertises an
            unsupported version, network or protocol.
    """
    parts = line.strip().split("|")
    if len(parts) != 5:
        raise errors.HandshakeError(f"malformed handshake line: {line.strip()!r}")

    try:
        core_version = int(parts[0])
        app_version = int(parts[1])
    except ValueError:
        raise errors.HandshakeError(f"malformed handshake line: {line.strip()!r}") from None

    info = HandshakeInfo(
        core_version=core_version,
        app_version=app_version,
        network=parts[2],
        address=parts[3],
        protocol=parts[4],
    )

    if info.core_version != constants.CORE_PROTOCOL_VERSION:
        raise errors.HandshakeError(
            f"unsupported core protocol version {info.core_version} "
            f"(expected {constants.CORE_PROTOCOL_VERSION})"
        )
    if info.app_version != HANDSHAKE.protocol_version:
        raise errors.HandshakeError(
            f"plugin protocol version {info.app_version} does not match "
            f"host version {HANDSHAKE.protocol_version}"
        )
    if info.network != NETWORK:
        raise errors.HandshakeError(f"unsupported network {info.network!r}")
    if not info.address:
        raise errors.HandshakeError("handshake line has an empty address")
    if info.protocol != PROTOCOL:
        raise errors.HandshakeError(f"unsupported protocol {info.protocol!r}")

    return info
