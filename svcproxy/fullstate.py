"""Sink that keeps the whole state and hands it out, grouped by service, on each sync."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Iterable, Iterator, Optional, Union

from .model import (
    Config,
    Endpoint,
    Op,
    OpDelete,
    OpSet,
    OpSync,
    Service,
    SetKind,
)

_SLASH = ord("/")


@dataclass
class ServiceEndpoints:
    """A service together with its endpoints."""

    service: Service
    endpoints: list[Endpoint] = field(default_factory=list)


Callback = Callable[[Iterable[ServiceEndpoints]], None]


def path_sort_key(path: str) -> tuple[int, ...]:
    """Sort key ordering paths so that '/' sorts before every other character.

    This keeps a service ("ns/name") directly followed by its endpoints
    ("ns/name/key"), before any service whose name extends it ("ns/name-udp").
    """
    return tuple(0 if byte == _SLASH else byte + 1 for byte in path.encode("utf-8"))


def path_less(p1: str, p2: str) -> bool:
    """Path-separator aware ordering of two paths."""
    return path_sort_key(p1) < path_sort_key(p2)


def array_callback(callback: Callable[[list[ServiceEndpoints]], None]) -> Callback:
    """Wrap a callback taking the whole list into a streaming callback."""

    def collect(items: Iterable[ServiceEndpoints]) -> None:
        callback(list(items))

    return collect


def _group(
    entries: list[tuple[str, Union[Service, Endpoint]]],
) -> Iterator[ServiceEndpoints]:
    current: Optional[ServiceEndpoints] = None
    for path, value in entries:
        if isinstance(value, Service):
            if current is not None:
                yield current
            current = ServiceEndpoints(value)
        else:
            if current is None:
                raise ValueError(f"endpoint {path!r} has no service")
            current.endpoints.append(value)
    if current is not None:
        yield current


class FullStateSink:
    """Stores every object received and calls back with the full state on sync."""

    def __init__(
        self, config: Optional[Config] = None, callback: Optional[Callback] = None
    ) -> None:
        self.config = config
        self.callback = callback
        self._data: dict[str, Union[Service, Endpoint]] = {}

    def __len__(self) -> int:
        return len(self._data)

    def setup(self) -> None:
        """Nothing to prepare."""

    def wait_request(self) -> str:
        if self.config is None:
            raise RuntimeError("no configuration set")
        return self.config.wait_request()

    def reset(self) -> None:
        self._data.clear()

    def send(self, op: Op) -> None:
        if isinstance(op, OpSet):
            if op.ref.set is SetKind.SERVICES:
                self._data[op.ref.path] = Service.from_bytes(op.data)
            elif op.ref.set is SetKind.ENDPOINTS:
                self._data[op.ref.path] = Endpoint.from_bytes(op.data)
        elif isinstance(op, OpDelete):
            self._data.pop(op.ref.path, None)
        elif isinstance(op, OpSync):
            if self.callback is None:
                raise RuntimeError("no callback set")
            entries = sorted(self._data.items(), key=lambda kv: path_sort_key(kv[0]))
            self.callback(_group(entries))