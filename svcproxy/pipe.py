"""Feed one stream of service endpoints to several callbacks."""

from __future__ import annotations

import enum
import queue
import threading
from typing import Any, Callable, Iterable, Iterator, Optional

from .fullstate import ServiceEndpoints

Stage = Callable[[Iterable[ServiceEndpoints]], None]

_CLOSE = object()


class Strategy(enum.Enum):
    """How the stages of a pipe are run."""

    # Stages run one after the other on a buffered copy of the stream.
    SEQUENCE = 0
    # Stages run concurrently and their streams end together.
    PARALLEL = 1
    # Stages run concurrently, but each stream ends only once the previous stage finished.
    PARALLEL_SEND_SEQUENCE_CLOSE = 2


def _drain(items: "queue.Queue[Any]") -> Iterator[ServiceEndpoints]:
    while True:
        item = items.get()
        if item is _CLOSE:
            return
        yield item


class _StageThread(threading.Thread):
    def __init__(self, stage: Stage) -> None:
        super().__init__(daemon=True)
        self.items: "queue.Queue[Any]" = queue.Queue()
        self.error: Optional[BaseException] = None
        self._stage = stage

    def run(self) -> None:
        try:
            self._stage(_drain(self.items))
        except BaseException as exc:  # re-raised in the caller's thread
            self.error = exc

    def close(self) -> None:
        self.items.put(_CLOSE)


class Pipe:
    """Runs several stages on the same stream according to a strategy."""

    def __init__(self, strategy: Strategy, *stages: Stage) -> None:
        self.strategy = Strategy(strategy)
        self.stages = list(stages)

    def callback(self, items: Iterable[ServiceEndpoints]) -> None:
        if self.strategy is Strategy.SEQUENCE:
            buffer = list(items)
            for stage in self.stages:
                stage(iter(buffer))
            return

        threads = [_StageThread(stage) for stage in self.stages]
        for thread in threads:
            thread.start()

        try:
            for item in items:
                for thread in threads:
                    thread.items.put(item)
        finally:
            if self.strategy is Strategy.PARALLEL:
                for thread in threads:
                    thread.close()
                for thread in threads:
                    thread.join()
            else:
                for thread in threads:
                    thread.close()
                    thread.join()

        for thread in threads:
            if thread.error is not None:
                raise thread.error