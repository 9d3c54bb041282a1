"""The client end of an RPC connection and the requests it sends."""

from __future__ import annotations

import asyncio
import contextlib
import threading
from collections.abc import Callable, Coroutine
from dataclasses import dataclass, field
from typing import Any, TypeVar

from .codec import DecodeError, EncodeError, Message, decode, encode
from .errors import CanceledError, RpcDecodeError, RpcEncodeError, RpcError, StoppedError

__all__ = ["Client", "Rpc", "RpcHooks"]

_R = TypeVar("_R", bound=Message)

_background: set[asyncio.Task] = set()


def _spawn(coro: Coroutine[Any, Any, Any]) -> asyncio.Task:
    task = asyncio.get_running_loop().create_task(coro)
    _background.add(task)
    task.add_done_callback(_background.discard)
    return task


def _set_result(future: asyncio.Future, value: bytes) -> None:
    if not future.done():
        future.set_result(value)


def _set_exception(future: asyncio.Future, error: BaseException) -> None:
    if not future.done():
        future.set_exception(error)


class _ReplySender:
    """One-shot reply channel; dropping it unused cancels the call."""

    def __init__(self, future: asyncio.Future) -> None:
        self._future = future
        self._used = False

    def send(self, data: bytes) -> bool:
        """Deliver an encoded reply; False if the caller no longer waits."""
        return self._deliver(_set_result, bytes(data))

    def fail(self, error: RpcError) -> bool:
        """Deliver an error; False if the caller no longer waits."""
        return self._deliver(_set_exception, error)

    def cancel(self) -> None:
        """Give up on replying; the caller sees a CanceledError."""
        self._deliver(_set_exception, CanceledError())

    def _discard(self) -> None:
        self._used = True

    def _deliver(self, action: Callable[[asyncio.Future, Any], None], value: Any) -> bool:
        if self._used:
            return False
        self._used = True
        future = self._future
        if future.done():
            return False
        loop = future.get_loop()
        if loop.is_closed():
            return False
        loop.call_soon_threadsafe(action, future, value)
        return True

    def __del__(self) -> None:
        if not self._used:
            with contextlib.suppress(RuntimeError):
                self.cancel()


class _HookCell:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._hooks: RpcHooks | None = None

    def get(self) -> RpcHooks | None:
        with self._lock:
            return self._hooks

    def set(self, hooks: RpcHooks | None) -> None:
        with self._lock:
            self._hooks = hooks


@dataclass(eq=False, repr=False)
class Rpc:
    """A request on its way from a client to the network."""

    client_name: str
    fq_name: str
    req: bytes | None
    resp: _ReplySender | None
    hook_cell: _HookCell = field(default_factory=_HookCell)

    def take_resp_sender(self) -> _ReplySender | None:
        """Take the reply channel out of the request, leaving None behind."""
        sender, self.resp = self.resp, None
        return sender

    @property
    def hooks(self) -> RpcHooks | None:
        """The hooks the sending client has installed right now."""
        return self.hook_cell.get()

    def __repr__(self) -> str:
        return f"Rpc(client_name={self.client_name!r}, fq_name={self.fq_name!r})"


class RpcHooks:
    """Interceptors run around dispatch; the defaults pass everything through."""

    def before_dispatch(self, fq_name: str, req: bytes) -> None:
        """Raise an RpcError to reject the request before it is dispatched."""

    def after_dispatch(self, fq_name: str, resp: bytes | RpcError) -> bytes:
        """Return the reply to deliver, or raise an RpcError instead."""
        if isinstance(resp, RpcError):
            raise resp
        return resp


class Client:
    """A named end-point that sends encoded requests through ``sender``.

    ``sender`` takes an :class:`Rpc` and returns False when nothing receives
    requests any more. ``worker`` runs spawned coroutines; by default they run
    as tasks on the current event loop.
    """

    def __init__(
        self,
        name: str,
        sender: Callable[[Rpc], bool],
        worker: Callable[[Coroutine[Any, Any, Any]], Any] | None = None,
    ) -> None:
        self.name = name
        self._sender = sender
        self._hooks = _HookCell()
        self.worker = worker if worker is not None else _spawn

    async def call(self, fq_name: str, req: Message, response_type: type[_R]) -> _R:
        """Send ``req`` to ``fq_name`` and return the decoded reply."""
        try:
            buf = encode(req)
        except EncodeError as err:
            raise RpcEncodeError(err) from err
        future = asyncio.get_running_loop().create_future()
        reply_sender = _ReplySender(future)
        rpc = Rpc(self.name, fq_name, buf, reply_sender, self._hooks)
        del reply_sender
        if not self._sender(rpc):
            taken = rpc.take_resp_sender()
            if taken is not None:
                taken._discard()
            raise StoppedError()
        del rpc
        data = await future
        try:
            return decode(response_type, data)
        except DecodeError as err:
            raise RpcDecodeError(err) from err

    def set_hooks(self, hooks: RpcHooks) -> None:
        """Install ``hooks`` for this client's requests, in flight ones included."""
        self._hooks.set(hooks)

    def clear_hooks(self) -> None:
        """Remove any installed hooks."""
        self._hooks.set(None)