import pytest

from distlab.errors import OtherError, UnimplementedError
from distlab.server import HandlerFactory, Server, ServerBuilder


class _EchoFactory(HandlerFactory):
    def __init__(self):
        self.requested = []

    def handler(self, name):
        self.requested.append(name)

        async def handle(req):
            return name.encode() + b":" + req

        return handle


def _server(name="test"):
    builder = ServerBuilder(name)
    factory = _EchoFactory()
    builder.add_service("svc", factory)
    return builder.build(), factory


def test_add_service_rejects_duplicate_name():
    builder = ServerBuilder("test")
    builder.add_service("junk", _EchoFactory())
    prev_len = len(builder.services)
    with pytest.raises(OtherError) as exc:
        builder.add_service("junk", _EchoFactory())
    assert exc.value == OtherError("junk has already registered")
    assert len(builder.services) == prev_len


def test_build_gives_name_and_increasing_ids():
    builder = ServerBuilder("alpha")
    first = builder.build()
    second = builder.build()
    assert first.name == "alpha"
    assert second.id > first.id


def test_handler_factory_is_abstract():
    with pytest.raises(TypeError):
        HandlerFactory()


@pytest.mark.asyncio
async def test_dispatch_routes_to_method():
    server, factory = _server()
    assert await server.dispatch("svc.method", b"x") == b"method:x"
    assert factory.requested == ["method"]


@pytest.mark.asyncio
async def test_dispatch_ignores_extra_segments():
    server, _ = _server()
    assert await server.dispatch("svc.m.extra", b"") == b"m:"


@pytest.mark.asyncio
async def test_dispatch_unknown_service():
    server, _ = _server()
    with pytest.raises(UnimplementedError) as exc:
        await server.dispatch("other.m", b"")
    assert exc.value == UnimplementedError("unknown other.m")


@pytest.mark.asyncio
async def test_dispatch_without_method():
    server, _ = _server()
    with pytest.raises(UnimplementedError) as exc:
        await server.dispatch("svc", b"")
    assert exc.value == UnimplementedError("unknown svc")


@pytest.mark.asyncio
async def test_count_includes_failed_dispatches():
    server, _ = _server()
    assert server.count == 0
    await server.dispatch("svc.a", b"")
    await server.dispatch("svc.b", b"")
    with pytest.raises(UnimplementedError):
        await server.dispatch("nope.c", b"")
    assert server.count == 3


def test_repr_names_server():
    server = Server("named", {}, 7)
    assert repr(server) == "Server(name='named', id=7)"