"""Sink that decodes operations into calls on a backend."""

from __future__ import annotations

from typing import Any

from .model import Endpoint, Op, OpDelete, OpSet, OpSync, Service, SetKind


def _split(path: str, parts: int) -> list[str]:
    pieces = path.split("/")
    if len(pieces) < parts:
        raise ValueError(f"malformed path {path!r}: expected {parts} parts")
    return pieces


class DecoderSink:
    """Decodes the operation stream for a backend.

    The backend provides ``setup``, ``wait_request``, ``reset``, ``sync``,
    ``set_service``, ``delete_service``, ``set_endpoint`` and
    ``delete_endpoint``.
    """

    def __init__(self, backend: Any) -> None:
        self.backend = backend

    def setup(self) -> None:
        self.backend.setup()

    def wait_request(self) -> str:
        return self.backend.wait_request()

    def reset(self) -> None:
        self.backend.reset()

    def send(self, op: Op) -> None:
        if isinstance(op, OpSet):
            if op.ref.set is SetKind.SERVICES:
                self.backend.set_service(Service.from_bytes(op.data))
            elif op.ref.set is SetKind.ENDPOINTS:
                endpoint = Endpoint.from_bytes(op.data)
                namespace, service, key = _split(op.ref.path, 3)[:3]
                self.backend.set_endpoint(namespace, service, key, endpoint)

        elif isinstance(op, OpDelete):
            if op.ref.set is SetKind.SERVICES:
                namespace, name = _split(op.ref.path, 2)[:2]
                self.backend.delete_service(namespace, name)
            elif op.ref.set is SetKind.ENDPOINTS:
                namespace, service, key = _split(op.ref.path, 3)[:3]
                self.backend.delete_endpoint(namespace, service, key)

        elif isinstance(op, OpSync):
            self.backend.sync()