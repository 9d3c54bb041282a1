"""A simulated network that carries RPCs between clients and servers."""

from __future__ import annotations

import asyncio
import concurrent.futures
import logging
import random
import threading
from collections import deque
from collections.abc import Coroutine
from dataclasses import dataclass
from typing import Any

from .client import Client, Rpc
from .errors import OtherError, RpcError, RpcTimeoutError, StoppedError
from .server import Server

__all__ = ["Network"]

logger = logging.getLogger(__name__)

_SERVER_POLL_INTERVAL = 0.1


def _cancel_rpc(rpc: Rpc) -> None:
    sender = rpc.take_resp_sender()
    if sender is not None:
        sender.cancel()


class _RpcChannel:
    """An unbounded, thread-safe queue of requests with an async receiving end."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._items: deque[Rpc] = deque()
        self._waiters: deque[asyncio.Future] = deque()
        self._closed = False

    @property
    def closed(self) -> bool:
        with self._lock:
            return self._closed

    def send(self, rpc: Rpc) -> bool:
        """Queue ``rpc``; False once the receiving end is closed."""
        with self._lock:
            if self._closed:
                return False
            while self._waiters:
                if self._wake(self._waiters.popleft(), rpc):
                    return True
            self._items.append(rpc)
            return True

    async def receive(self) -> Rpc | None:
        """Wait for the next request; None once the channel is closed."""
        loop = asyncio.get_running_loop()
        with self._lock:
            if self._items:
                return self._items.popleft()
            if self._closed:
                return None
            waiter = loop.create_future()
            self._waiters.append(waiter)
        return await waiter

    def close(self) -> None:
        """Stop accepting requests and cancel the ones still queued."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            items = list(self._items)
            self._items.clear()
            waiters = list(self._waiters)
            self._waiters.clear()
        for waiter in waiters:
            self._wake(waiter, None)
        for rpc in items:
            _cancel_rpc(rpc)

    def _wake(self, waiter: asyncio.Future, value: Rpc | None) -> bool:
        if waiter.done():
            return False
        loop = waiter.get_loop()
        if loop.is_closed():
            return False
        try:
            loop.call_soon_threadsafe(self._resolve, waiter, value)
        except RuntimeError:
            return False
        return True

    def _resolve(self, waiter: asyncio.Future, value: Rpc | None) -> None:
        if not waiter.done():
            waiter.set_result(value)
        elif value is not None and not self.send(value):
            _cancel_rpc(value)

    def __aiter__(self) -> _RpcChannel:
        return self

    async def __anext__(self) -> Rpc:
        rpc = await self.receive()
        if rpc is None:
            raise StopAsyncIteration
        return rpc


@dataclass(frozen=True)
class _EndInfo:
    enabled: bool
    reliable: bool
    long_reordering: bool
    server: Server | None


class Network:
    """Routes requests from named clients to named servers.

    Connections can be enabled and disabled, and the network can be made
    unreliable (dropped and delayed requests and replies) or made to reorder
    replies. Requests are served on a background event loop of its own.
    """

    def __init__(self, *, seed: int | None = None) -> None:
        self._lock = threading.Lock()
        self._enabled: dict[str, bool] = {}
        self._servers: dict[str, Server | None] = {}
        self._connections: dict[str, str | None] = {}
        self._reliable = True
        self._long_delays = False
        self._long_reordering = False
        self._count = 0
        self._rng = random.Random(seed)
        self._channel = _RpcChannel()
        self._loop: asyncio.AbstractEventLoop | None = None
        self._thread: threading.Thread | None = None
        self._started = False
        self._stopped = False

    @classmethod
    def create(cls) -> tuple[Network, _RpcChannel]:
        """Return an unstarted network together with its incoming requests."""
        network = cls()
        return network, network._channel

    # Lifecycle -------------------------------------------------------------

    def start(self) -> None:
        """Begin serving incoming requests on the background loop."""
        loop = self._ensure_loop()
        with self._lock:
            if self._started:
                raise RuntimeError("network is already started")
            self._started = True
        asyncio.run_coroutine_threadsafe(self._poll(), loop)

    def stop(self) -> None:
        """Refuse new requests, fail those in flight and end the background loop."""
        self._channel.close()
        with self._lock:
            self._stopped = True
            loop, thread = self._loop, self._thread
            self._loop = self._thread = None
        if loop is None or thread is None:
            return
        if threading.current_thread() is thread:
            raise RuntimeError("the network cannot be stopped from its own loop")
        asyncio.run_coroutine_threadsafe(self._shutdown(), loop).result()
        loop.call_soon_threadsafe(loop.stop)
        thread.join()

    def __enter__(self) -> Network:
        self.start()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.stop()

    def _ensure_loop(self) -> asyncio.AbstractEventLoop:
        with self._lock:
            if self._stopped:
                raise RuntimeError("network is stopped")
            if self._loop is not None:
                return self._loop
            loop = asyncio.new_event_loop()
            ready = threading.Event()
            thread = threading.Thread(
                target=self._run_loop, args=(loop, ready), name="distlab-network", daemon=True
            )
            self._loop, self._thread = loop, thread
        thread.start()
        ready.wait()
        return loop

    @staticmethod
    def _run_loop(loop: asyncio.AbstractEventLoop, ready: threading.Event) -> None:
        asyncio.set_event_loop(loop)
        loop.call_soon(ready.set)
        try:
            loop.run_forever()
        finally:
            loop.run_until_complete(loop.shutdown_asyncgens())
            loop.close()

    @staticmethod
    async def _shutdown() -> None:
        current = asyncio.current_task()
        pending = [task for task in asyncio.all_tasks() if task is not current]
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)

    # Topology --------------------------------------------------------------

    def add_server(self, server: Server) -> None:
        """Make ``server`` reachable under its name, replacing any previous one."""
        with self._lock:
            self._servers[server.name] = server

    def delete_server(self, name: str) -> None:
        """Kill the server called ``name``; its pending requests fail."""
        with self._lock:
            if name in self._servers:
                self._servers[name] = None

    def create_client(self, name: str) -> Client:
        """Create a disabled, unconnected client end-point called ``name``."""
        with self._lock:
            self._enabled[name] = False
            self._connections[name] = None
        return Client(name, self._channel.send, worker=self.spawn)

    def connect(self, client_name: str, server_name: str) -> None:
        """Connect a client to a server."""
        with self._lock:
            self._connections[client_name] = server_name

    def enable(self, client_name: str, enabled: bool) -> None:
        """Enable or disable a client."""
        logger.debug("client %s is %s", client_name, "enabled" if enabled else "disabled")
        with self._lock:
            self._enabled[client_name] = enabled

    def set_reliable(self, yes: bool) -> None:
        with self._lock:
            self._reliable = yes

    def set_long_reordering(self, yes: bool) -> None:
        """Sometimes delay replies a long time."""
        with self._lock:
            self._long_reordering = yes

    def set_long_delays(self, yes: bool) -> None:
        """Pause a long time on sends over a disabled connection."""
        with self._lock:
            self._long_delays = yes

    def count(self, server_name: str) -> int:
        """How many requests the server called ``server_name`` has received."""
        with self._lock:
            server = self._servers.get(server_name)
        if server is None:
            raise KeyError(f"no server named {server_name}")
        return server.count

    def total_count(self) -> int:
        """How many requests the network has carried."""
        with self._lock:
            return self._count

    def spawn(self, coro: Coroutine[Any, Any, Any]) -> concurrent.futures.Future:
        """Run ``coro`` on the network's loop."""
        try:
            loop = self._ensure_loop()
        except RuntimeError:
            coro.close()
            raise
        return asyncio.run_coroutine_threadsafe(coro, loop)

    # Serving ---------------------------------------------------------------

    async def _poll(self) -> None:
        tasks: set[asyncio.Task] = set()
        async for rpc in self._channel:
            sender = rpc.take_resp_sender()
            if sender is None:
                continue
            task = asyncio.create_task(self._serve(rpc, sender))
            tasks.add(task)
            task.add_done_callback(tasks.discard)

    async def _serve(self, rpc: Rpc, sender: Any) -> None:
        try:
            reply = await self._process_rpc(rpc)
        except asyncio.CancelledError:
            sender.fail(StoppedError())
            raise
        except RpcError as err:
            delivered = sender.fail(err)
        except Exception as err:
            logger.exception("%r failed", rpc)
            delivered = sender.fail(OtherError(repr(err)))
        else:
            delivered = sender.send(reply)
        if not delivered:
            logger.error("fail to send resp for %r", rpc)

    def _end_info(self, client_name: str) -> _EndInfo:
        with self._lock:
            server = None
            server_name = self._connections.get(client_name)
            if server_name is not None:
                server = self._servers.get(server_name)
            return _EndInfo(
                enabled=self._enabled.get(client_name, False),
                reliable=self._reliable,
                long_reordering=self._long_reordering,
                server=server,
            )

    def _is_server_dead(self, client_name: str, server_name: str, server_id: int) -> bool:
        with self._lock:
            if not self._enabled.get(client_name, False):
                return True
            server = self._servers.get(server_name)
            return server is None or server.id != server_id

    async def _process_rpc(self, rpc: Rpc) -> bytes:
        with self._lock:
            self._count += 1
            long_delays = self._long_delays
        info = self._end_info(rpc.client_name)
        logger.debug("%r process with %r", rpc, info)
        rng = self._rng

        if info.enabled and info.server is not None:
            short_delay = None if info.reliable else rng.randrange(27)
            if not info.reliable and rng.randrange(1000) < 100:
                # Drop the request, as if it had timed out.
                await asyncio.sleep(short_delay / 1000)
                raise RpcTimeoutError()
            drop_reply = not info.reliable and rng.randrange(1000) < 100
            reordering = None
            if info.long_reordering and rng.randrange(900) < 600:
                upper_bound = 1 + rng.randrange(2000)
                reordering = 200 + rng.randrange(upper_bound)
            return await self._dispatch(short_delay, drop_reply, reordering, rpc, info.server)

        # Simulate no reply and an eventual timeout. Long delays let tests
        # check that callers do not send synchronously; short ones let them
        # try each server in fairly rapid succession.
        ms = rng.randrange(7000) if long_delays else rng.randrange(100)
        logger.debug("%r delay %dms then timeout", rpc, ms)
        await asyncio.sleep(ms / 1000)
        raise RpcTimeoutError()

    async def _dispatch(
        self,
        delay: int | None,
        drop_reply: bool,
        reordering: int | None,
        rpc: Rpc,
        server: Server,
    ) -> bytes:
        if delay is not None:
            await asyncio.sleep(delay / 1000)

        fq_name = rpc.fq_name
        req = rpc.req if rpc.req is not None else b""
        rpc.req = None
        hooks = rpc.hooks
        if hooks is not None:
            hooks.before_dispatch(fq_name, req)

        # A killed server must not reply, so the handler runs alongside a
        # watch that notices when the server goes away.
        resp = await self._dispatch_unless_dead(rpc.client_name, server, fq_name, req)

        hooks = rpc.hooks
        if hooks is not None:
            reply = hooks.after_dispatch(fq_name, resp)
        elif isinstance(resp, RpcError):
            raise resp
        else:
            reply = resp

        if self._is_server_dead(rpc.client_name, server.name, server.id):
            raise StoppedError()
        if drop_reply:
            raise RpcTimeoutError()
        if reordering is not None:
            logger.debug("%r next long reordering %dms", rpc, reordering)
            await asyncio.sleep(reordering / 1000)
        return reply

    async def _dispatch_unless_dead(
        self, client_name: str, server: Server, fq_name: str, req: bytes
    ) -> bytes | RpcError:
        work = asyncio.ensure_future(server.dispatch(fq_name, req))
        watch = asyncio.ensure_future(self._server_dead(client_name, server.name, server.id))
        try:
            await asyncio.wait({work, watch}, return_when=asyncio.FIRST_COMPLETED)
            finished = work.done()
        finally:
            for task in (work, watch):
                if not task.done():
                    task.cancel()
        if not finished:
            return StoppedError()
        try:
            return work.result()
        except RpcError as err:
            return err

    async def _server_dead(self, client_name: str, server_name: str, server_id: int) -> None:
        while True:
            await asyncio.sleep(_SERVER_POLL_INTERVAL)
            if self._is_server_dead(client_name, server_name, server_id):
                logger.debug("%r is dead", server_name)
                return