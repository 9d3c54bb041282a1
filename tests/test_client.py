import asyncio
import gc
from dataclasses import dataclass

import pytest

from distlab.client import Client, Rpc, RpcHooks
from distlab.codec import DecodeError, FieldKind, Message, encode, proto_field
from distlab.errors import (
    CanceledError,
    OtherError,
    RpcDecodeError,
    RpcEncodeError,
    StoppedError,
)


@dataclass
class JunkArgs(Message):
    x: int = proto_field(1, FieldKind.INT64)


@dataclass
class JunkReply(Message):
    x: str = proto_field(1, FieldKind.STRING)


class _Inbox:
    def __init__(self, accept=True):
        self.queue = asyncio.Queue()
        self.accept = accept

    def __call__(self, rpc):
        if not self.accept:
            return False
        self.queue.put_nowait(rpc)
        return True


@pytest.mark.asyncio
async def test_call_receives_reply():
    inbox = _Inbox()
    client = Client("test_client", inbox)
    task = asyncio.create_task(client.call("junk.handler4", JunkArgs(x=777), JunkReply))
    rpc = await inbox.queue.get()
    reply = JunkReply(x="boom!!!")
    sender = rpc.take_resp_sender()
    assert sender.send(encode(reply))
    assert rpc.client_name == "test_client"
    assert rpc.fq_name == "junk.handler4"
    assert rpc.req == encode(JunkArgs(x=777))
    assert len(rpc.req) > 0
    assert await task == reply


@pytest.mark.asyncio
async def test_cancelled_sender_gives_canceled_error():
    inbox = _Inbox()
    client = Client("test_client", inbox)
    task = asyncio.create_task(client.call("junk.handler4", JunkArgs(x=777), JunkReply))
    rpc = await inbox.queue.get()
    sender = rpc.take_resp_sender()
    sender.cancel()
    with pytest.raises(CanceledError) as exc:
        await task
    assert exc.value == CanceledError()
    assert sender.send(b"") is False


@pytest.mark.asyncio
async def test_dropped_request_gives_canceled_error():
    inbox = _Inbox()
    client = Client("test_client", inbox)
    task = asyncio.create_task(client.call("junk.handler4", JunkArgs(x=1), JunkReply))
    rpc = await inbox.queue.get()
    del rpc
    gc.collect()
    with pytest.raises(CanceledError) as exc:
        await task
    assert exc.value == CanceledError()
    assert str(exc.value) == "Recv(Canceled)"


@pytest.mark.asyncio
async def test_stopped_when_nobody_receives():
    client = Client("test_client", _Inbox(accept=False))
    with pytest.raises(StoppedError) as exc:
        await client.call("junk.handler4", JunkArgs(), JunkReply)
    assert exc.value == StoppedError()


@pytest.mark.asyncio
async def test_error_reply_is_raised():
    inbox = _Inbox()
    client = Client("c", inbox)
    task = asyncio.create_task(client.call("junk.handler2", JunkArgs(x=3), JunkReply))
    rpc = await inbox.queue.get()
    assert rpc.take_resp_sender().fail(OtherError("boom"))
    with pytest.raises(OtherError) as exc:
        await task
    assert exc.value == OtherError("boom")


@pytest.mark.asyncio
async def test_bad_reply_bytes_raise_decode_error():
    inbox = _Inbox()
    client = Client("c", inbox)
    task = asyncio.create_task(client.call("junk.handler2", JunkArgs(x=3), JunkReply))
    rpc = await inbox.queue.get()
    assert rpc.take_resp_sender().send(b"\xff")
    with pytest.raises(RpcDecodeError) as exc:
        await task
    assert isinstance(exc.value.error, DecodeError)
    assert exc.value.__cause__ is exc.value.error


@pytest.mark.asyncio
async def test_unencodable_request_is_not_sent():
    inbox = _Inbox()
    client = Client("c", inbox)
    with pytest.raises(RpcEncodeError):
        await client.call("junk.handler2", JunkArgs(x=1 << 70), JunkReply)
    assert inbox.queue.empty()


@pytest.mark.asyncio
async def test_take_resp_sender_only_once():
    inbox = _Inbox()
    client = Client("c", inbox)
    task = asyncio.create_task(client.call("junk.handler2", JunkArgs(), JunkReply))
    rpc = await inbox.queue.get()
    sender = rpc.take_resp_sender()
    assert rpc.take_resp_sender() is None
    sender.send(encode(JunkReply(x="done")))
    assert await task == JunkReply(x="done")


@pytest.mark.asyncio
async def test_hooks_follow_client_settings():
    inbox = _Inbox()
    client = Client("c", inbox)
    hooks = RpcHooks()
    task = asyncio.create_task(client.call("junk.handler2", JunkArgs(), JunkReply))
    rpc = await inbox.queue.get()
    assert rpc.hooks is None
    client.set_hooks(hooks)
    assert rpc.hooks is hooks
    client.clear_hooks()
    assert rpc.hooks is None
    rpc.take_resp_sender().send(b"")
    assert await task == JunkReply()


def test_default_hooks_pass_through():
    hooks = RpcHooks()
    assert hooks.after_dispatch("junk.handler2", b"data") == b"data"
    with pytest.raises(OtherError) as exc:
        hooks.after_dispatch("junk.handler2", OtherError("failed"))
    assert exc.value == OtherError("failed")


def test_overridden_hooks_can_reject():
    class Rejecting(RpcHooks):
        def before_dispatch(self, fq_name, req):
            raise OtherError("reqhook")

        def after_dispatch(self, fq_name, resp):
            raise OtherError("resphook")

    hooks = Rejecting()
    with pytest.raises(OtherError) as before:
        hooks.before_dispatch("junk.handler2", b"")
    with pytest.raises(OtherError) as after:
        hooks.after_dispatch("junk.handler2", b"")
    assert before.value == OtherError("reqhook")
    assert after.value == OtherError("resphook")


def test_rpc_repr_names_client_and_method():
    rpc = Rpc("client-1", "junk.handler2", b"", None)
    assert repr(rpc) == "Rpc(client_name='client-1', fq_name='junk.handler2')"