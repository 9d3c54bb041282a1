"""Linearizability checking of operation and event histories against a model."""

from __future__ import annotations

import datetime
import queue
import threading
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from typing import Any

from .bitset import Bitset
from .model import Event, EventKind, Model, Operation

__all__ = ["check_events", "check_operations"]

_SENTINEL_ID = -1


class _Node:
    """An entry of the doubly linked history; call entries point at their return."""

    __slots__ = ("value", "matched", "id", "next", "prev")

    def __init__(self, value: Any, matched: _Node | None, node_id: int) -> None:
        self.value = value
        self.matched = matched
        self.id = node_id
        self.next: _Node | None = None
        self.prev: _Node | None = None


@dataclass(frozen=True)
class _Entry:
    is_call: bool
    value: Any
    id: int
    time: int


def _make_entries(history: Sequence[Operation[Any, Any]]) -> list[_Entry]:
    entries: list[_Entry] = []
    for op_id, op in enumerate(history):
        entries.append(_Entry(True, op.input, op_id, op.call))
        entries.append(_Entry(False, op.output, op_id, op.finish))
    return sorted(entries, key=lambda entry: entry.time)


def _renumber(events: Iterable[Event[Any, Any]]) -> list[Event[Any, Any]]:
    numbers: dict[int, int] = {}
    renumbered = []
    for event in events:
        new_id = numbers.setdefault(event.id, len(numbers))
        renumbered.append(Event(event.kind, event.value, new_id))
    return renumbered


def _convert_entries(events: Iterable[Event[Any, Any]]) -> list[_Entry]:
    return [_Entry(event.kind is EventKind.CALL, event.value, event.id, -1) for event in events]


def _build_list(entries: Sequence[_Entry]) -> tuple[_Node, int]:
    """Link the entries behind a sentinel head; return the head and entry count."""
    returns: dict[int, _Node] = {}
    head = _Node(None, None, _SENTINEL_ID)
    first: _Node | None = None
    for entry in reversed(entries):
        if entry.is_call:
            node = _Node(entry.value, returns.get(entry.id), entry.id)
        else:
            node = _Node(entry.value, None, entry.id)
            returns[entry.id] = node
        if first is not None:
            first.prev = node
            node.next = first
        first = node
    if first is not None:
        first.prev = head
        head.next = first
    return head, len(entries)


def _lift(entry: _Node) -> None:
    entry.prev.next = entry.next
    entry.next.prev = entry.prev
    matched = entry.matched
    matched.prev.next = matched.next
    if matched.next is not None:
        matched.next.prev = matched.prev


def _unlift(entry: _Node) -> None:
    matched = entry.matched
    matched.prev.next = matched
    if matched.next is not None:
        matched.next.prev = matched
    entry.prev.next = entry
    entry.next.prev = entry


def _check_single(model: Model[Any, Any, Any], entries: Sequence[_Entry], kill: threading.Event) -> bool:
    head, length = _build_list(entries)
    linearized = Bitset(length // 2)
    cache: dict[Bitset, list[Any]] = {}
    calls: list[tuple[_Node, Any]] = []
    state = model.init()

    entry = head.next
    while head.next is not None:
        if kill.is_set():
            return False
        matched = entry.matched
        if matched is not None:
            ok, new_state = model.step(state, entry.value, matched.value)
            if not ok:
                entry = entry.next
                continue
            new_linearized = linearized.copy()
            new_linearized.set(entry.id)
            seen = cache.setdefault(new_linearized, [])
            if any(model.equal(new_state, known) for known in seen):
                entry = entry.next
                continue
            seen.append(new_state)
            calls.append((entry, state))
            state = new_state
            linearized.set(entry.id)
            _lift(entry)
            entry = head.next
        else:
            if not calls:
                return False
            entry, state = calls.pop()
            linearized.clear(entry.id)
            _unlift(entry)
            entry = entry.next
    return True


def _seconds(timeout: float | datetime.timedelta | None) -> float | None:
    if timeout is None:
        return None
    if isinstance(timeout, datetime.timedelta):
        timeout = timeout.total_seconds()
    if timeout < 0:
        raise ValueError("timeout cannot be negative")
    return timeout or None


def _run(
    model: Model[Any, Any, Any],
    partitions: Sequence[Any],
    to_entries: Callable[[Any], list[_Entry]],
    timeout: float | datetime.timedelta | None,
) -> bool:
    limit = _seconds(timeout)
    results: queue.Queue[tuple[bool, BaseException | None]] = queue.Queue()
    kill = threading.Event()

    def work(subhistory: Any) -> None:
        try:
            results.put((_check_single(model, to_entries(subhistory), kill), None))
        except BaseException as err:  # handed to the waiting thread
            results.put((False, err))

    threads = [
        threading.Thread(target=work, args=(subhistory,), daemon=True) for subhistory in partitions
    ]
    for thread in threads:
        thread.start()

    ok = True
    failure: BaseException | None = None
    remaining = len(threads)
    try:
        while remaining:
            try:
                result, error = results.get(timeout=limit)
            except queue.Empty:
                break
            if error is not None:
                failure = error
                break
            ok = ok and result
            if not ok:
                break
            remaining -= 1
    finally:
        kill.set()
        for thread in threads:
            thread.join()
    if failure is not None:
        raise failure
    return ok


def check_operations(
    model: Model[Any, Any, Any],
    history: Sequence[Operation[Any, Any]],
    timeout: float | datetime.timedelta | None = 0,
) -> bool:
    """Return whether a history of timed operations is linearizable.

    A timeout of zero or None means no limit. If a partition takes longer
    than ``timeout`` to report, checking stops and the answer so far is
    returned, so a false positive is possible.
    """
    return _run(model, model.partition(history), _make_entries, timeout)


def check_events(
    model: Model[Any, Any, Any],
    history: Sequence[Event[Any, Any]],
    timeout: float | datetime.timedelta | None = 0,
) -> bool:
    """Return whether a history of call and return events is linearizable.

    The timeout behaves as for :func:`check_operations`.
    """
    return _run(
        model,
        model.partition_event(history),
        lambda events: _convert_entries(_renumber(events)),
        timeout,
    )