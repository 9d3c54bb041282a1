"""Histories of operations and the models that judge them."""

from __future__ import annotations

import abc
import enum
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

__all__ = ["Event", "EventKind", "Model", "Operation"]

I = TypeVar("I")
O = TypeVar("O")
S = TypeVar("S")


@dataclass(frozen=True)
class Operation(Generic[I, O]):
    """A completed operation with its invocation and response times."""

    input: I
    call: int
    output: O
    finish: int


class EventKind(enum.Enum):
    """Whether an event is the invocation or the return of an operation."""

    CALL = "call"
    RETURN = "return"


@dataclass(frozen=True)
class Event(Generic[I, O]):
    """One half of an operation: its input when called, its output when returned.

    The call and return of one operation share an ``id``.
    """

    kind: EventKind
    value: Any
    id: int


class Model(abc.ABC, Generic[S, I, O]):
    """A sequential specification that histories are checked against."""

    def partition(self, history: Sequence[Operation[I, O]]) -> list[list[Operation[I, O]]]:
        """Split a history so it is linearizable iff every part is; by default, not at all."""
        return [list(history)]

    def partition_event(self, history: Sequence[Event[I, O]]) -> list[list[Event[I, O]]]:
        """Split an event history like :meth:`partition`; by default, not at all."""
        return [list(history)]

    @abc.abstractmethod
    def init(self) -> S:
        """Return the initial state of the system."""

    @abc.abstractmethod
    def step(self, state: S, input_value: I, output: O) -> tuple[bool, S]:
        """Return whether the step is possible from ``state``, and the new state.

        ``state`` must not be changed.
        """

    def equal(self, state1: S, state2: S) -> bool:
        """Return whether two states are the same."""
        return state1 == state2