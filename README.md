# distlab

Building blocks for experimenting with distributed systems in pure Python,
with no dependencies beyond the standard library.

- **Message codec** (`distlab.codec`): dataclass messages encoded in the
  protocol-buffer wire format.
- **Simulated RPC** (`distlab.server`, `distlab.client`, `distlab.service`,
  `distlab.network`): an in-process RPC framework on `asyncio` whose network
  can disable clients, drop and delay requests and replies, reorder replies
  and kill servers.
- **Linearizability checking** (`distlab.model`, `distlab.models`,
  `distlab.checker`, `distlab.bitset`): check concurrent histories against a
  sequential model; a key-value model is included.

## Installation

```
pip install .
```

## Messages

Declare a message as a dataclass deriving from `Message`, with each field made
by `proto_field(tag, kind, repeated=False, enum=None)`:

```python
from dataclasses import dataclass

from distlab.codec import FieldKind, Message, decode, encode, proto_field


@dataclass
class Point(Message):
    x: int = proto_field(1, FieldKind.INT64)
    label: str = proto_field(2, FieldKind.STRING)
    tags: list = proto_field(3, FieldKind.BYTES, repeated=True)


data = encode(Point(x=3, label="a"))      # or Point(...).encode()
assert decode(Point, data) == Point(x=3, label="a")  # or Point.decode(data)
```

`FieldKind` covers `INT32`, `INT64`, `UINT32`, `UINT64`, `BOOL`, `ENUM`,
`STRING` and `BYTES`. Fields holding their default value are left out of the
encoding, repeated integer fields are written packed, and unknown fields are
skipped when decoding. Bad values raise `EncodeError`; malformed bytes raise
`DecodeError`, whose `path` names the message and field where decoding failed.

`distlab.fixture` holds a small example message, `Msg`, with an enum field of
type `MsgType` (`type_enum()` / `set_type()`).

## RPC

A service is a `ServiceSpec` made of `Method(name, input_type, output_type)`
entries. An implementation is any object with an async method per declared
method.

```python
import asyncio

from distlab.echo import ECHO, Echo, EchoService
from distlab.network import Network
from distlab.server import ServerBuilder

with Network() as network:                    # starts and stops the network
    builder = ServerBuilder("echo_server")
    ECHO.add_service(EchoService(), builder)
    network.add_server(builder.build())

    client = ECHO.client(network.create_client("client"))
    network.enable("client", True)
    network.connect("client", "echo_server")
    print(asyncio.run(client.ping(Echo(x=777))))   # Echo(x=777)
```

`distlab.echo.run_echo(value)` does exactly this for one value.

- `ServiceSpec.add_service(svc, builder)` registers an implementation;
  `ServerBuilder.add_service` refuses a service name registered twice.
- `ServiceSpec.client(client)` returns a `ServiceClient`; call methods with
  `call(method_name, args)` or as attributes (`client.ping(args)`), and run
  coroutines on the network with `spawn(coro)`.
- `Client.call(fq_name, req, response_type)` is the untyped form, addressing
  `"<service>.<method>"`.
- `Client.set_hooks(hooks)` / `clear_hooks()` install an `RpcHooks` object whose
  `before_dispatch` and `after_dispatch` can reject requests or replace replies.

`Network` controls the simulation:

- `start()`, `stop()`, or use it as a context manager; `Network(seed=...)`
  seeds its random choices. `Network.create()` returns an unstarted network
  together with its channel of incoming `Rpc` requests.
- `create_client(name)` (clients start disabled and unconnected),
  `enable(client_name, enabled)`, `connect(client_name, server_name)`
- `add_server(server)`, `delete_server(name)` (pending calls fail with
  `StoppedError`)
- `set_reliable(yes)`, `set_long_delays(yes)`, `set_long_reordering(yes)`
- `count(server_name)`, `total_count()`, `spawn(coro)`

Failures are raised as subclasses of `distlab.errors.RpcError`:
`UnimplementedError`, `RpcEncodeError`, `RpcDecodeError`, `CanceledError`,
`RpcTimeoutError`, `StoppedError` and `OtherError`. Errors of the same kind
with the same details compare equal.

## Linearizability checking

```python
from distlab.checker import check_operations
from distlab.model import Operation
from distlab.models import KvInput, KvModel, KvOutput, Op

history = [
    Operation(KvInput(Op.PUT, "x", "1"), 0, KvOutput(""), 10),
    Operation(KvInput(Op.GET, "x"), 20, KvOutput("1"), 30),
]
assert check_operations(KvModel(), history)
```

Write your own model by subclassing `Model` and implementing `init()` and
`step(state, input_value, output)`; override `partition`, `partition_event`
and `equal` where useful. `check_events(model, history)` takes `Event`s
(`EventKind.CALL` / `EventKind.RETURN` sharing an `id`) instead of timed
operations; `parse_kv_log(lines)` reads key-value operation logs into such
events. Both checkers take a `timeout` in seconds or as a `timedelta`; zero or
`None` means no limit, and a check that runs out of time returns what it has
found so far, which may be a false positive.

## Command line

```
distlab-echo --value 42
```

starts a network with an echo server, sends one request and prints the reply
(the value defaults to 777).

## What it does not do

Everything runs in one process: the network is a simulation and never opens
sockets, and nothing is persisted. Messages support only the scalar field
kinds listed above; nested messages, maps and floating-point fields are not
available.

## Development

```
pip install -e .[test]
pytest
```