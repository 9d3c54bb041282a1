"""A key-value store model and a reader for its operation logs."""

from __future__ import annotations

import enum
import re
from collections.abc import Iterable, Sequence
from dataclasses import dataclass

from .model import Event, EventKind, Model, Operation

__all__ = ["KvInput", "KvModel", "KvOutput", "Op", "parse_kv_log"]


class Op(enum.Enum):
    """A key-value operation."""

    GET = "get"
    PUT = "put"
    APPEND = "append"


@dataclass(frozen=True)
class KvInput:
    """The request of a key-value operation."""

    op: Op
    key: str
    value: str = ""


@dataclass(frozen=True)
class KvOutput:
    """The reply of a key-value operation."""

    value: str = ""


class KvModel(Model[str, KvInput, KvOutput]):
    """A store whose state is the value of a single key; histories split by key."""

    def partition(self, history: Sequence[Operation[KvInput, KvOutput]]) -> list[list[Operation[KvInput, KvOutput]]]:
        by_key: dict[str, list[Operation[KvInput, KvOutput]]] = {}
        for op in history:
            by_key.setdefault(op.input.key, []).append(op)
        return list(by_key.values())

    def partition_event(self, history: Sequence[Event[KvInput, KvOutput]]) -> list[list[Event[KvInput, KvOutput]]]:
        by_key: dict[str, list[Event[KvInput, KvOutput]]] = {}
        keys: dict[int, str] = {}
        for event in history:
            if event.kind is EventKind.CALL:
                if not isinstance(event.value, KvInput):
                    raise TypeError(f"call event {event.id} does not carry a KvInput")
                key = event.value.key
                keys[event.id] = key
            else:
                try:
                    key = keys[event.id]
                except KeyError:
                    raise ValueError(f"return event {event.id} has no matching call") from None
            by_key.setdefault(key, []).append(event)
        return list(by_key.values())

    def init(self) -> str:
        return ""

    def step(self, state: str, input_value: KvInput, output: KvOutput) -> tuple[bool, str]:
        if input_value.op is Op.GET:
            return output.value == state, state
        if input_value.op is Op.PUT:
            return True, input_value.value
        return True, state + input_value.value


_INVOKE_GET = re.compile(r'\{:process (\d+), :type :invoke, :f :get, :key "(.*)", :value nil\}')
_INVOKE_PUT = re.compile(r'\{:process (\d+), :type :invoke, :f :put, :key "(.*)", :value "(.*)"\}')
_INVOKE_APPEND = re.compile(r'\{:process (\d+), :type :invoke, :f :append, :key "(.*)", :value "(.*)"\}')
_RETURN_GET = re.compile(r'\{:process (\d+), :type :ok, :f :get, :key ".*", :value "(.*)"\}')
_RETURN_PUT = re.compile(r'\{:process (\d+), :type :ok, :f :put, :key ".*", :value ".*"\}')
_RETURN_APPEND = re.compile(r'\{:process (\d+), :type :ok, :f :append, :key ".*", :value ".*"\}')

_INVOKES = ((_INVOKE_GET, Op.GET), (_INVOKE_PUT, Op.PUT), (_INVOKE_APPEND, Op.APPEND))
_RETURNS = ((_RETURN_GET, True), (_RETURN_PUT, False), (_RETURN_APPEND, False))


def parse_kv_log(lines: Iterable[str]) -> list[Event[KvInput, KvOutput]]:
    """Read a key-value operation log into call and return events.

    Operations still pending at the end of the log get a return with an
    empty value.
    """
    events: list[Event[KvInput, KvOutput]] = []
    pending: dict[int, int] = {}
    next_id = 0

    for raw in lines:
        line = raw.rstrip("\r\n")
        event = None
        for pattern, op in _INVOKES:
            match = pattern.search(line)
            if match:
                value = "" if op is Op.GET else match.group(3)
                event = Event(EventKind.CALL, KvInput(op, match.group(2), value), next_id)
                pending[int(match.group(1))] = next_id
                next_id += 1
                break
        else:
            for pattern, carries_value in _RETURNS:
                match = pattern.search(line)
                if match:
                    process = int(match.group(1))
                    try:
                        match_id = pending.pop(process)
                    except KeyError:
                        raise ValueError(f"process {process} returns without an invocation") from None
                    value = match.group(2) if carries_value else ""
                    event = Event(EventKind.RETURN, KvOutput(value), match_id)
                    break
        if event is None:
            raise ValueError(f"unrecognised log line: {line!r}")
        events.append(event)

    events.extend(Event(EventKind.RETURN, KvOutput(""), match_id) for match_id in pending.values())
    return events