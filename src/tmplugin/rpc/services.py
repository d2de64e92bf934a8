"""
Service contracts of the plugin protocol.

Each service is described once by a ServiceSpec. The same descriptor
drives both sides of the wire:

- generic_handler() registers an implementation on a grpc.Server
- the *Client classes build typed call wrappers on a grpc.Channel

Implementations subclass the *Base classes and override the methods
they support; anything left alone answers UNIMPLEMENTED.

Services:
- PluginService:    identity, capabilities, shutdown (plugin side)
- CommandService:   custom CLI verbs with streamed output (plugin side)
- HCLSchemaService: custom block shapes and block processing (plugin side)
- LifecycleService: post-init hooks (plugin side)
- GenerateService:  code generation override (plugin side)
- HostService:      sandboxed filesystem/config access (host side)
- Broker:           dispenses the named service bundle (plugin side)
"""

from __future__ import annotations

import dataclasses as _dataclasses
import logging as _logging
import typing as _typing

import grpc as _grpc

import tmplugin.constants as constants
import tmplugin.rpc.errors as errors
import tmplugin.rpc.messages as messages

_logger = _logging.getLogger(__name__)


@_dataclasses.dataclass(frozen=True)
class MethodSpec:
    """One RPC method: wire name, implementation attribute and codecs."""

    name: str
    attr: str
    request_codec: messages.Codec
    response_codec: messages.Codec
    streaming: bool = False


@_dataclasses.dataclass(frozen=True)
class ServiceSpec:
    """A named group of methods."""

    name: str
    methods: tuple[MethodSpec, ...]

    def path(self, method: MethodSpec) -> str:
        """Full gRPC method path."""
        return f"/{self.name}/{method.name}"

    def method(self, name: str) -> MethodSpec:
        for method in self.methods:
            if method.name == name:
                return method
        raise KeyError(name)


def _method(
    name: str,
    attr: str,
    request: _typing.Any,
    response: _typing.Any,
    *,
    streaming: bool = False,
) -> MethodSpec:
    return MethodSpec(
        name=name,
        attr=attr,
        request_codec=messages.Codec(request),
        response_codec=messages.Codec(response),
        streaming=streaming,
    )


def _service(name: str, *methods: MethodSpec) -> ServiceSpec:
    return ServiceSpec(name=f"{constants.SERVICE_PREFIX}.{name}", methods=methods)


BROKER = _service(
    "Broker",
    _method("Dispense", "dispense", messages.DispenseRequest, messages.DispenseResponse),
)

PLUGIN_SERVICE = _service(
    "PluginService",
    _method("GetPluginInfo", "get_plugin_info", messages.Empty, messages.PluginInfo),
    _method("GetCapabilities", "get_capabilities", messages.Empty, messages.Capabilities),
    _method("Shutdown", "shutdown", messages.Empty, messages.Empty),
)

COMMAND_SERVICE = _service(
    "CommandService",
    _method("GetCommands", "get_commands", messages.Empty, messages.CommandList),
    _method(
        "ExecuteCommand",
        "execute_command",
        messages.CommandRequest,
        messages.CommandOutput,
        streaming=True,
    ),
)

HCL_SCHEMA_SERVICE = _service(
    "HCLSchemaService",
    _method("GetHCLSchema", "get_hcl_schema", messages.Empty, messages.HCLSchemaList),
    _method(
        "ProcessParsedBlocks",
        "process_parsed_blocks",
        messages.ParsedBlocksRequest,
        messages.ParsedBlocksResponse,
    ),
)

LIFECYCLE_SERVICE = _service(
    "LifecycleService",
    _method("PostInit", "post_init", messages.PostInitRequest, messages.PostInitResponse),
)

GENERATE_SERVICE = _service(
    "GenerateService",
    _method(
        "Generate",
        "generate",
        messages.GenerateRequest,
        messages.GenerateOutput,
        streaming=True,
    ),
)

HOST_SERVICE = _service(
    "HostService",
    _method("GetRootDir", "get_root_dir", messages.Empty, messages.StringValue),
    _method(
        "GetUserTerramateDir", "get_user_terramate_dir", messages.Empty, messages.StringValue
    ),
    _method("ReadFile", "read_file", messages.ReadFileRequest, messages.ReadFileResponse),
    _method("WriteFile", "write_file", messages.WriteFileRequest, messages.Empty),
    _method("WalkDir", "walk_dir", messages.WalkDirRequest, messages.DirEntry, streaming=True),
    _method(
        "GetConfigTree", "get_config_tree", messages.GetConfigTreeRequest, messages.ConfigTreeNode
    ),
    _method(
        "GetStackMetadata", "get_stack_metadata", messages.GetStackRequest, messages.StackMetadata
    ),
    _method("SetStackMetadata", "set_stack_metadata", messages.SetStackRequest, messages.Empty),
)

PLUGIN_SERVICES: tuple[ServiceSpec, ...] = (
    PLUGIN_SERVICE,
    COMMAND_SERVICE,
    HCL_SCHEMA_SERVICE,
    LIFECYCLE_SERVICE,
    GENERATE_SERVICE,
)
"""Services a plugin may serve, in registration order."""


# =============================================================================
# Implementation base classes
# =============================================================================


def _unimplemented(spec: ServiceSpec, method: str) -> errors.RPCError:
    return errors.unimplemented(f"method {method} not implemented by {spec.name}")


class PluginServiceBase:
    SPEC: _typing.ClassVar[ServiceSpec] = PLUGIN_SERVICE

    def get_plugin_info(self, request: messages.Empty) -> messages.PluginInfo:
        raise _unimplemented(self.SPEC, "GetPluginInfo")

    def get_capabilities(self, request: messages.Empty) -> messages.Capabilities:
        raise _unimplemented(self.SPEC, "GetCapabilities")

    def shutdown(self, request: messages.Empty) -> messages.Empty:
        return messages.Empty()


class CommandServiceBase:
    SPEC: _typing.ClassVar[ServiceSpec] = COMMAND_SERVICE

    def get_commands(self, request: messages.Empty) -> messages.CommandList:
        raise _unimplemented(self.SPEC, "GetCommands")

    def execute_command(
        self, request: messages.CommandRequest
    ) -> _typing.Iterator[messages.StdoutChunk | messages.StderrChunk | messages.FileWriteEvent | messages.ExitCode]:
        """
        Run a command, yielding output events.

        Must end with exactly one ExitCode event. An unknown command
        must raise instead of exiting with code 0.
        """
        raise _unimplemented(self.SPEC, "ExecuteCommand")


class HCLSchemaServiceBase:
    SPEC: _typing.ClassVar[ServiceSpec] = HCL_SCHEMA_SERVICE

    def get_hcl_schema(self, request: messages.Empty) -> messages.HCLSchemaList:
        raise _unimplemented(self.SPEC, "GetHCLSchema")

    def process_parsed_blocks(
        self, request: messages.ParsedBlocksRequest
    ) -> messages.ParsedBlocksResponse:
        raise _unimplemented(self.SPEC, "ProcessParsedBlocks")


class LifecycleServiceBase:
    SPEC: _typing.ClassVar[ServiceSpec] = LIFECYCLE_SERVICE

    def post_init(self, request: messages.PostInitRequest) -> messages.PostInitResponse:
        raise _unimplemented(self.SPEC, "PostInit")


class GenerateServiceBase:
    SPEC: _typing.ClassVar[ServiceSpec] = GENERATE_SERVICE

    def generate(
        self, request: messages.GenerateRequest
    ) -> _typing.Iterator[messages.StdoutChunk | messages.StderrChunk | messages.FileWriteEvent | messages.ExitCode]:
        raise _unimplemented(self.SPEC, "Generate")


class HostServiceBase:
    SPEC: _typing.ClassVar[ServiceSpec] = HOST_SERVICE

    def get_root_dir(self, request: messages.Empty) -> messages.StringValue:
        raise _unimplemented(self.SPEC, "GetRootDir")

    def get_user_terramate_dir(self, request: messages.Empty) -> messages.StringValue:
        raise _unimplemented(self.SPEC, "GetUserTerramateDir")

    def read_file(self, request: messages.ReadFileRequest) -> messages.ReadFileResponse:
        raise _unimplemented(self.SPEC, "ReadFile")

    def write_file(self, request: messages.WriteFileRequest) -> messages.Empty:
        raise _unimplemented(self.SPEC, "WriteFile")

    def walk_dir(self, request: messages.WalkDirRequest) -> _typing.Iterator[messages.DirEntry]:
        raise _unimplemented(self.SPEC, "WalkDir")

    def get_config_tree(self, request: messages.GetConfigTreeRequest) -> messages.ConfigTreeNode:
        raise _unimplemented(self.SPEC, "GetConfigTree")

    def get_stack_metadata(self, request: messages.GetStackRequest) -> messages.StackMetadata:
        raise _unimplemented(self.SPEC, "GetStackMetadata")

    def set_stack_metadata(self, request: messages.SetStackRequest) -> messages.Empty:
        raise _unimplemented(self.SPEC, "SetStackMetadata")


# =============================================================================
# Server side
# =============================================================================


def _abort(context: _grpc.ServicerContext, method: MethodSpec, error: Exception) -> _typing.NoReturn:
    if isinstance(error, errors.RPCError):
        context.abort(error.code, error.message)
    _logger.debug("%s failed: %s", method.name, error, exc_info=True)
    context.abort(_grpc.StatusCode.UNKNOWN, str(error) or type(error).__name__)
    raise AssertionError("unreachable")


def _unary_behavior(
    method: MethodSpec, fn: _typing.Callable[[_typing.Any], _typing.Any]
) -> _typing.Callable[[_typing.Any, _grpc.ServicerContext], _typing.Any]:
    def behavior(request: _typing.Any, context: _grpc.ServicerContext) -> _typing.Any:
        try:
            return fn(request)
        except Exception as e:
            _abort(context, method, e)

    return behavior


def _stream_behavior(
    method: MethodSpec, fn: _typing.Callable[[_typing.Any], _typing.Iterable[_typing.Any]]
) -> _typing.Callable[[_typing.Any, _grpc.ServicerContext], _typing.Iterator[_typing.Any]]:
    def behavior(
        request: _typing.Any, context: _grpc.ServicerContext
    ) -> _typing.Iterator[_typing.Any]:
        try:
            yield from fn(request)
        except Exception as e:
            _abort(context, method, e)

    return behavior


def generic_handler(spec: ServiceSpec, impl: object) -> _grpc.GenericRpcHandler:
    """
    Build a gRPC handler serving an implementation of a service.

    RPCError raised by the implementation aborts the call with its
    status code; any other exception aborts with UNKNOWN.

    Args:
        spec: Service descriptor.
        impl: Object providing one method per MethodSpec.attr.

    Returns:
        Handler to pass to grpc.Server.add_generic_rpc_handlers().
    """
    handlers: dict[str, _grpc.RpcMethodHandler] = {}
    for method in spec.methods:
        fn = getattr(impl, method.attr)
        if method.streaming:
            handlers[method.name] = _grpc.unary_stream_rpc_method_handler(
                _stream_behavior(method, fn),
                request_deserializer=method.request_codec.decode,
                response_serializer=method.response_codec.encode,
            )
        else:
            handlers[method.name] = _grpc.unary_unary_rpc_method_handler(
                _unary_behavior(method, fn),
                request_deserializer=method.request_codec.decode,
                response_serializer=method.response_codec.encode,
            )
    return _grpc.method_handlers_generic_handler(spec.name, handlers)


# =============================================================================
# Client side
# =============================================================================


class _Stub:
    """Typed call wrappers for one service on a channel."""

    SPEC: _typing.ClassVar[ServiceSpec]

    def __init__(self, channel: _grpc.Channel, *, timeout: float | None = None) -> None:
        """
        Args:
            channel: Open gRPC channel.
            timeout: Default deadline (seconds) for unary calls.
        """
        self._timeout = timeout
        self._unary: dict[str, _typing.Any] = {}
        self._streams: dict[str, _typing.Any] = {}
        for method in self.SPEC.methods:
            if method.streaming:
                self._streams[method.name] = channel.unary_stream(
                    self.SPEC.path(method),
                    request_serializer=method.request_codec.encode,
                    response_deserializer=method.response_codec.decode,
                )
            else:
                self._unary[method.name] = channel.unary_unary(
                    self.SPEC.path(method),
                    request_serializer=method.request_codec.encode,
                    response_deserializer=method.response_codec.decode,
                )

    def _call(self, name: str, request: _typing.Any, timeout: float | None = None) -> _typing.Any:
        try:
            return self._unary[name](request, timeout=timeout or self._timeout)
        except _grpc.RpcError as e:
            raise errors.RPCError.from_grpc(e) from e

    def _stream(
        self, name: str, request: _typing.Any, timeout: float | None = None
    ) -> _typing.Iterator[_typing.Any]:
        call = self._streams[name](request, timeout=timeout)
        try:
            yield from call
        except _grpc.RpcError as e:
            raise errors.RPCError.from_grpc(e) from e
        finally:
            call.cancel()


class BrokerClient(_Stub):
    SPEC = BROKER

    def dispense(self, name: str) -> messages.DispenseResponse:
        return self._call("Dispense", messages.DispenseRequest(name=name))  # type: ignore[no-any-return]


class PluginServiceClient(_Stub):
    SPEC = PLUGIN_SERVICE

    def get_plugin_info(self) -> messages.PluginInfo:
        return self._call("GetPluginInfo", messages.Empty())  # type: ignore[no-any-return]

    def get_capabilities(self) -> messages.Capabilities:
        return self._call("GetCapabilities", messages.Empty())  # type: ignore[no-any-return]

    def shutdown(self, timeout: float | None = None) -> None:
        self._call("Shutdown", messages.Empty(), timeout=timeout)


class CommandServiceClient(_Stub):
    SPEC = COMMAND_SERVICE

    def get_commands(self) -> messages.CommandList:
        return self._call("GetCommands", messages.Empty())  # type: ignore[no-any-return]

    def execute_command(
        self, request: messages.CommandRequest, timeout: float | None = None
    ) -> _typing.Iterator[_typing.Any]:
        return self._stream("ExecuteCommand", request, timeout=timeout)


class HCLSchemaServiceClient(_Stub):
    SPEC = HCL_SCHEMA_SERVICE

    def get_hcl_schema(self) -> messages.HCLSchemaList:
        return self._call("GetHCLSchema", messages.Empty())  # type: ignore[no-any-return]

    def process_parsed_blocks(
        self, request: messages.ParsedBlocksRequest
    ) -> messages.ParsedBlocksResponse:
        return self._call("ProcessParsedBlocks", request)  # type: ignore[no-any-return]


class LifecycleServiceClient(_Stub):
    SPEC = LIFECYCLE_SERVICE

    def post_init(
        self, request: messages.PostInitRequest, timeout: float | None = None
    ) -> messages.PostInitResponse:
        return self._call("PostInit", request, timeout=timeout)  # type: ignore[no-any-return]


class GenerateServiceClient(_Stub):
    SPEC = GENERATE_SERVICE

    def generate(
        self, request: messages.GenerateRequest, timeout: float | None = None
    ) -> _typing.Iterator[_typing.Any]:
        return self._stream("Generate", request, timeout=timeout)


class HostServiceClient(_Stub):
    """Client a plugin uses to call back into the host."""

    SPEC = HOST_SERVICE

    def __init__(self, channel: _grpc.Channel, *, timeout: float | None = None) -> None:
        super().__init__(channel, timeout=timeout)
        self._channel = channel

    def close(self) -> None:
        """Close the underlying channel."""
        self._channel.close()

    def __enter__(self) -> HostServiceClient:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def get_root_dir(self) -> str:
        return self._call("GetRootDir", messages.Empty()).value  # type: ignore[no-any-return]

    def get_user_terramate_dir(self) -> str:
        return self._call("GetUserTerramateDir", messages.Empty()).value  # type: ignore[no-any-return]

    def read_file(self, path: str) -> bytes:
        return self._call("ReadFile", messages.ReadFileRequest(path=path)).content  # type: ignore[no-any-return]

    def write_file(self, path: str, content: bytes, mode: int = 0) -> None:
        self._call("WriteFile", messages.WriteFileRequest(path=path, content=content, mode=mode))

    def walk_dir(
        self, root: str, pattern: str = "", timeout: float | None = None
    ) -> _typing.Iterator[messages.DirEntry]:
        return self._stream(
            "WalkDir", messages.WalkDirRequest(root=root, pattern=pattern), timeout=timeout
        )

    def get_config_tree(self, path: str) -> messages.ConfigTreeNode:
        return self._call("GetConfigTree", messages.GetConfigTreeRequest(path=path))  # type: ignore[no-any-return]

    def get_stack_metadata(self, path: str) -> messages.StackMetadata:
        return self._call("GetStackMetadata", messages.GetStackRequest(path=path))  # type: ignore[no-any-return]

    def set_stack_metadata(
        self, path: str, metadata: messages.StackMetadata | None, *, merge: bool = False
    ) -> None:
        self._call(
            "SetStackMetadata",
            messages.SetStackRequest(path=path, metadata=metadata, merge=merge),
        )


@_dataclasses.dataclass(frozen=True)
class PluginClient:
    """Typed clients for every service a plugin may serve."""

    plugin: PluginServiceClient
    command: CommandServiceClient
    hcl_schema: HCLSchemaServiceClient
    lifecycle: LifecycleServiceClient
    generate: GenerateServiceClient

    @classmethod
    def from_channel(cls, channel: _grpc.Channel, *, timeout: float | None = None) -> PluginClient:
        return cls(
            plugin=PluginServiceClient(channel, timeout=timeout),
            command=CommandServiceClient(channel, timeout=timeout),
            hcl_schema=HCLSchemaServiceClient(channel, timeout=timeout),
            lifecycle=LifecycleServiceClient(channel, timeout=timeout),
            generate=GenerateServiceClient(channel, timeout=timeout),
        )
