import pytest

from svcproxy.decoder import DecoderSink
from svcproxy.model import (
    Endpoint,
    IPSet,
    OpDelete,
    OpSet,
    OpSync,
    PortMapping,
    Protocol,
    Ref,
    Service,
    SetKind,
)


class RecordingBackend:
    def __init__(self):
        self.calls = []

    def setup(self):
        self.calls.append(("setup",))

    def wait_request(self):
        self.calls.append(("wait_request",))
        return "localhost"

    def reset(self):
        self.calls.append(("reset",))

    def sync(self):
        self.calls.append(("sync",))

    def set_service(self, service):
        self.calls.append(("set_service", service))

    def delete_service(self, namespace, name):
        self.calls.append(("delete_service", namespace, name))

    def set_endpoint(self, namespace, service_name, key, endpoint):
        self.calls.append(("set_endpoint", namespace, service_name, key, endpoint))

    def delete_endpoint(self, namespace, service_name, key):
        self.calls.append(("delete_endpoint", namespace, service_name, key))


@pytest.fixture
def backend():
    return RecordingBackend()


def test_lifecycle_delegates(backend):
    sink = DecoderSink(backend)
    sink.setup()
    sink.reset()
    assert sink.wait_request() == "localhost"
    sink.send(OpSync())
    assert backend.calls == [("setup",), ("reset",), ("wait_request",), ("sync",)]


def test_set_service_is_decoded(backend):
    svc = Service(
        namespace="ns",
        name="web",
        ports=[PortMapping(name="http", protocol=Protocol.TCP, port=80)],
    )
    DecoderSink(backend).send(OpSet(Ref(SetKind.SERVICES, "ns/web"), svc.to_bytes()))
    assert backend.calls == [("set_service", svc)]


def test_set_endpoint_is_decoded_with_path_parts(backend):
    ep = Endpoint(ips=IPSet(v4=["10.0.0.1"]), local=True)
    DecoderSink(backend).send(OpSet(Ref(SetKind.ENDPOINTS, "ns/web/k1"), ep.to_bytes()))
    assert backend.calls == [("set_endpoint", "ns", "web", "k1", ep)]


def test_deletes_are_dispatched(backend):
    sink = DecoderSink(backend)
    sink.send(OpDelete(Ref(SetKind.SERVICES, "ns/web")))
    sink.send(OpDelete(Ref(SetKind.ENDPOINTS, "ns/web/k1")))
    assert backend.calls == [
        ("delete_service", "ns", "web"),
        ("delete_endpoint", "ns", "web", "k1"),
    ]


def test_invalid_bytes_raise(backend):
    with pytest.raises(ValueError):
        DecoderSink(backend).send(OpSet(Ref(SetKind.SERVICES, "ns/web"), b"\x00garbage"))
    assert backend.calls == []


def test_malformed_endpoint_path_raises(backend):
    with pytest.raises(ValueError):
        DecoderSink(backend).send(OpDelete(Ref(SetKind.ENDPOINTS, "ns/web")))
    assert backend.calls == []