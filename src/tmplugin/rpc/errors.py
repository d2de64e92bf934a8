"""
Errors raised across the plugin RPC boundary.

RPCError carries a gRPC status code and is the only error type that
crosses the wire: server adapters turn it into an aborted call and
client stubs turn failed calls back into it.
"""

from __future__ import annotations

import grpc as _grpc


class RPCError(Exception):
    """An RPC failed with a status code."""

    def __init__(self, code: _grpc.StatusCode, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message

    def __str__(self) -> str:
        return f"{self.code.name.lower()}: {self.message}"

    @classmethod
    def from_grpc(cls, error: _grpc.RpcError) -> RPCError:
        """Convert a failed gRPC call into an RPCError."""
        code = _grpc.StatusCode.UNKNOWN
        details = str(error)
        if isinstance(error, _grpc.Call):
            code = error.code() or _grpc.StatusCode.UNKNOWN
            details = error.details() or details
        return cls(code, details)


def invalid_argument(message: str) -> RPCError:
    return RPCError(_grpc.StatusCode.INVALID_ARGUMENT, message)


def permission_denied(message: str) -> RPCError:
    return RPCError(_grpc.StatusCode.PERMISSION_DENIED, message)


def not_found(message: str) -> RPCError:
    return RPCError(_grpc.StatusCode.NOT_FOUND, message)


def unavailable(message: str) -> RPCError:
    return RPCError(_grpc.StatusCode.UNAVAILABLE, message)


def unimplemented(message: str) -> RPCError:
    return RPCError(_grpc.StatusCode.UNIMPLEMENTED, message)


class PluginStartError(Exception):
    """Raised when a plugin subprocess cannot be started and connected."""

    pass


class HandshakeError(PluginStartError):
    """Raised when the plugin handshake fails (cookie, version, early exit, timeout)."""

    pass


class DispenseError(PluginStartError):
    """Raised when a plugin does not serve the expected service bundle."""

    pass
