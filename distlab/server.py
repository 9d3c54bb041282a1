"""RPC servers: named collections of services dispatched by method name."""

from __future__ import annotations

import abc
import itertools
import threading
from collections.abc import Awaitable, Callable, Mapping
from types import MappingProxyType

from .errors import OtherError, UnimplementedError

__all__ = ["Handler", "HandlerFactory", "Server", "ServerBuilder"]

Handler = Callable[[bytes], Awaitable[bytes]]
"""An encoded request in, an awaitable encoded reply out."""

_ids = itertools.count()
_ids_lock = threading.Lock()


def _next_id() -> int:
    with _ids_lock:
        return next(_ids)


class HandlerFactory(abc.ABC):
    """Produces the handler for a method of one service."""

    @abc.abstractmethod
    def handler(self, name: str) -> Handler:
        """Return the handler for the method called ``name``."""


class ServerBuilder:
    """Collects services under a server name before the server is built."""

    def __init__(self, name: str) -> None:
        self.name = name
        self._services: dict[str, HandlerFactory] = {}

    @property
    def services(self) -> Mapping[str, HandlerFactory]:
        """The registered services, by name."""
        return MappingProxyType(self._services)

    def add_service(self, service_name: str, factory: HandlerFactory) -> None:
        """Register ``factory`` under ``service_name``; names must be unique."""
        if service_name in self._services:
            raise OtherError(f"{service_name} has already registered")
        self._services[service_name] = factory

    def build(self) -> Server:
        """Create a server with a fresh identity holding the registered services."""
        return Server(self.name, dict(self._services), _next_id())


class Server:
    """A named set of services that dispatches requests by ``service.method``."""

    def __init__(self, name: str, services: Mapping[str, HandlerFactory], server_id: int) -> None:
        self._name = name
        self._services = dict(services)
        self._id = server_id
        self._count = 0
        self._lock = threading.Lock()

    @property
    def name(self) -> str:
        return self._name

    @property
    def id(self) -> int:
        return self._id

    @property
    def count(self) -> int:
        """How many requests have been dispatched to this server."""
        with self._lock:
            return self._count

    async def dispatch(self, fq_name: str, req: bytes) -> bytes:
        """Run the handler for ``fq_name`` on ``req`` and return its encoded reply."""
        with self._lock:
            self._count += 1
        service_name, dot, rest = fq_name.partition(".")
        if not dot:
            raise UnimplementedError(f"unknown {fq_name}")
        method_name = rest.split(".", 1)[0]
        factory = self._services.get(service_name)
        if factory is None:
            raise UnimplementedError(f"unknown {fq_name}")
        handle = factory.handler(method_name)
        return await handle(bytes(req))

    def __repr__(self) -> str:
        return f"Server(name={self._name!r}, id={self._id})"