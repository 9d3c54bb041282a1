"""Declarative RPC services: server registration and typed clients."""

from __future__ import annotations

import functools
from collections.abc import Coroutine, Iterable, Mapping
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any

from .client import Client
from .codec import DecodeError, EncodeError, Message, decode, encode
from .errors import RpcDecodeError, RpcEncodeError, UnimplementedError
from .server import Handler, HandlerFactory, ServerBuilder

__all__ = ["Method", "ServiceClient", "ServiceSpec"]


@dataclass(frozen=True)
class Method:
    """One RPC method: its name and its request and reply message types."""

    name: str
    input_type: type[Message]
    output_type: type[Message]


class ServiceSpec:
    """A named service and its methods."""

    def __init__(self, name: str, methods: Iterable[Method]) -> None:
        by_name: dict[str, Method] = {}
        for method in methods:
            if method.name in by_name:
                raise ValueError(f"method {method.name} is declared twice in {name}")
            by_name[method.name] = method
        if not by_name:
            raise ValueError("empty service is not allowed")
        self.name = name
        self._methods = by_name

    @property
    def methods(self) -> Mapping[str, Method]:
        return MappingProxyType(self._methods)

    def add_service(self, svc: Any, builder: ServerBuilder) -> None:
        """Register ``svc``, which has an async method per declared method."""
        missing = [name for name in self._methods if not callable(getattr(svc, name, None))]
        if missing:
            raise TypeError(f"{type(svc).__name__} lacks {', '.join(missing)} of {self.name}")
        builder.add_service(self.name, _ServiceFactory(self, svc))

    def client(self, client: Client) -> ServiceClient:
        """Return a client that calls this service over ``client``."""
        return ServiceClient(self, client)


class _ServiceFactory(HandlerFactory):
    def __init__(self, spec: ServiceSpec, svc: Any) -> None:
        self._spec = spec
        self._svc = svc

    def handler(self, name: str) -> Handler:
        method = self._spec.methods.get(name)
        service_name = self._spec.name
        if method is None:

            async def unknown(req: bytes) -> bytes:
                raise UnimplementedError(f"unknown {name} in {service_name}")

            return unknown

        implementation = getattr(self._svc, name)

        async def handle(req: bytes) -> bytes:
            try:
                request = decode(method.input_type, req)
            except DecodeError as err:
                raise RpcDecodeError(err) from err
            reply = await implementation(request)
            try:
                return encode(reply)
            except EncodeError as err:
                raise RpcEncodeError(err) from err

        return handle


class ServiceClient:
    """Calls the methods of one service; each method is also an attribute."""

    def __init__(self, spec: ServiceSpec, client: Client) -> None:
        self._spec = spec
        self._client = client

    async def call(self, method_name: str, args: Message) -> Message:
        """Call ``method_name`` with ``args`` and return the decoded reply."""
        method = self._spec.methods.get(method_name)
        if method is None:
            raise ValueError(f"{self._spec.name} has no method {method_name}")
        if not isinstance(args, method.input_type):
            raise TypeError(
                f"{self._spec.name}.{method_name} takes {method.input_type.__name__}, "
                f"not {type(args).__name__}"
            )
        return await self._client.call(f"{self._spec.name}.{method_name}", args, method.output_type)

    def spawn(self, coro: Coroutine[Any, Any, Any]) -> Any:
        """Run ``coro`` on the underlying client's worker."""
        return self._client.worker(coro)

    def __getattr__(self, name: str) -> Any:
        spec = self.__dict__.get("_spec")
        if spec is None or name not in spec.methods:
            raise AttributeError(name)
        return functools.partial(self.call, name)