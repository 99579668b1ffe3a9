"""Sink wrapper that hides a reconnection's replay from the wrapped sink."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from .model import Op, OpDelete, OpSet, OpSync, Ref, SetKind, Sink
from .xxhash64 import xxh64


@dataclass
class _Memory:
    set: SetKind
    hash: int


class FilterResetSink:
    """Forwards only real changes, even across resets.

    After a reset the wrapped sink is not reset: unchanged values are
    filtered, and values missing from the replay are deleted at the next sync.
    """

    def __init__(self, sink: Sink) -> None:
        self.sink = sink
        self._filtering = False
        self._memory: dict[str, _Memory] = {}
        self._seen: Optional[set[str]] = None

    def setup(self) -> None:
        self.sink.setup()

    def wait_request(self) -> str:
        return self.sink.wait_request()

    def reset(self) -> None:
        self._filtering = True
        self._seen = set()

    def send(self, op: Op) -> None:
        if isinstance(op, OpSet):
            path = op.ref.path
            if self._filtering and self._seen is not None:
                self._seen.add(path)
            digest = xxh64(op.data)
            known = self._memory.get(path)
            if known is not None and known.hash == digest:
                return
            self._memory[path] = _Memory(op.ref.set, digest)
            self.sink.send(op)

        elif isinstance(op, OpDelete):
            if op.ref.path in self._memory:
                del self._memory[op.ref.path]
                self.sink.send(op)

        elif isinstance(op, OpSync):
            if self._filtering:
                seen = self._seen or set()
                stale = [
                    (path, mem) for path, mem in self._memory.items() if path not in seen
                ]
                for path, mem in stale:
                    self.sink.send(OpDelete(Ref(mem.set, path)))
                for path, _ in stale:
                    del self._memory[path]
                self._filtering = False
                self._seen = None
            self.sink.send(op)

        else:
            self.sink.send(op)