"""Errors an RPC can end with."""

from __future__ import annotations

from .codec import DecodeError, EncodeError

__all__ = [
    "CanceledError",
    "OtherError",
    "RpcDecodeError",
    "RpcEncodeError",
    "RpcError",
    "RpcTimeoutError",
    "StoppedError",
    "UnimplementedError",
]


def _quoted(text: str) -> str:
    escaped = text.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


class RpcError(Exception):
    """Base class of every RPC failure; equal when kind and details match."""

    variant = "Error"

    def _detail(self) -> str | None:
        return None

    def __str__(self) -> str:
        detail = self._detail()
        return self.variant if detail is None else f"{self.variant}({detail})"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, RpcError):
            return NotImplemented
        return type(self) is type(other) and self.args == other.args

    def __hash__(self) -> int:
        return hash((type(self), self.args))


class UnimplementedError(RpcError):
    """The requested service or method does not exist."""

    variant = "Unimplemented"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def _detail(self) -> str:
        return _quoted(self.message)


class RpcEncodeError(RpcError):
    """A request or reply could not be encoded."""

    variant = "Encode"

    def __init__(self, error: EncodeError) -> None:
        super().__init__(error)
        self.error = error
        self.__cause__ = error

    def _detail(self) -> str:
        return str(self.error)


class RpcDecodeError(RpcError):
    """A request or reply could not be decoded."""

    variant = "Decode"

    def __init__(self, error: DecodeError) -> None:
        super().__init__(error)
        self.error = error
        self.__cause__ = error

    def _detail(self) -> str:
        return str(self.error)


class CanceledError(RpcError):
    """The reply channel was dropped before a reply was sent."""

    variant = "Recv"

    def _detail(self) -> str:
        return "Canceled"


class RpcTimeoutError(RpcError):
    """The call got no reply, as if it had timed out."""

    variant = "Timeout"


class StoppedError(RpcError):
    """The network or server is gone."""

    variant = "Stopped"


class OtherError(RpcError):
    """Any other failure, described by a message."""

    variant = "Other"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def _detail(self) -> str:
        return _quoted(self.message)