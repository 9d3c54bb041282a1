"""A minimal echo service run over a simulated network."""

from __future__ import annotations

import argparse
import asyncio
from collections.abc import Sequence
from dataclasses import dataclass

from .codec import FieldKind, Message, proto_field
from .network import Network
from .server import ServerBuilder
from .service import Method, ServiceSpec

__all__ = ["ECHO", "Echo", "EchoService", "main", "run_echo"]


@dataclass
class Echo(Message):
    """A message carrying one integer."""

    x: int = proto_field(1, FieldKind.INT64)


ECHO = ServiceSpec("echo", [Method("ping", Echo, Echo)])


class EchoService:
    """Replies with whatever it is sent."""

    async def ping(self, message: Echo) -> Echo:
        return message


def run_echo(value: int) -> Echo:
    """Send ``value`` to an echo server over a fresh network and return the reply."""
    server_name = "echo_server"
    client_name = "client"
    with Network() as network:
        builder = ServerBuilder(server_name)
        ECHO.add_service(EchoService(), builder)
        network.add_server(builder.build())

        client = ECHO.client(network.create_client(client_name))
        network.enable(client_name, True)
        network.connect(client_name, server_name)
        return asyncio.run(client.ping(Echo(x=value)))


def main(argv: Sequence[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Ping an echo server over a simulated network.")
    parser.add_argument("--value", type=int, default=777, help="the number to send")
    args = parser.parse_args(argv)
    print(run_echo(args.value))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())