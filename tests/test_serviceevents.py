import pytest

from svcproxy.model import ClientIPAffinity, IPSet, PortMapping, Protocol, Service, ServiceIPs
from svcproxy.serviceevents import (
    IPKind,
    ServicesListener,
    SessionAffinity,
    TrafficPolicyKind,
    diff_sequences,
    get_session_affinity,
    same_port,
    wrap,
)

CLUSTER = IPKind.CLUSTER_IP


class Recorder:
    def __init__(self):
        self.events = []

    def add_port(self, svc, port):
        self.events.append(("add_port", svc.name, port.port))

    def delete_port(self, svc, port):
        self.events.append(("delete_port", svc.name, port.port))

    def add_ip(self, svc, ip, kind):
        self.events.append(("add_ip", svc.name, ip, kind))

    def delete_ip(self, svc, ip, kind):
        self.events.append(("delete_ip", svc.name, ip, kind))

    def add_ip_port(self, svc, ip, kind, port):
        self.events.append(("add_ip_port", svc.name, ip, kind, port.port))

    def delete_ip_port(self, svc, ip, kind, port):
        self.events.append(("delete_ip_port", svc.name, ip, kind, port.port))

    def enable_session_affinity(self, svc, affinity):
        self.events.append(("enable_affinity", svc.name, affinity.client_ip.timeout_seconds))

    def disable_session_affinity(self, svc):
        self.events.append(("disable_affinity", svc.name))

    def take(self):
        events, self.events = self.events, []
        return events


class PolicyRecorder:
    def __init__(self):
        self.events = []

    def enable_traffic_policy(self, svc, kind):
        self.events.append(("enable", None if svc is None else svc.name, kind))

    def disable_traffic_policy(self, svc, kind):
        self.events.append(("disable", None if svc is None else svc.name, kind))


class KindNameRecorder:
    def __init__(self):
        self.names = []

    def add_ip(self, svc, ip, kind):
        self.names.append(str(kind))

    def delete_ip(self, svc, ip, kind):
        self.names.append(str(kind))

    def enable_traffic_policy(self, svc, kind):
        self.names.append(str(kind))

    def disable_traffic_policy(self, svc, kind):
        self.names.append(str(kind))


def tcp(*ports):
    return [PortMapping(protocol=Protocol.TCP, port=p) for p in ports]


def svc(name, ports, cluster_ip=None, **kwargs):
    ips = ServiceIPs(cluster_ips=IPSet().add(cluster_ip)) if cluster_ip else ServiceIPs()
    return Service(namespace="ns", name=name, ips=ips, ports=tcp(*ports), **kwargs)


@pytest.fixture
def listener_and_recorder():
    rec = Recorder()
    sl = ServicesListener()
    sl.ports_listener = rec
    sl.ips_listener = rec
    sl.ip_ports_listener = rec
    sl.session_affinity_listener = rec
    return sl, rec


def test_example_sequence(listener_and_recorder):
    sl, rec = listener_and_recorder

    sl.set_service(svc("svc-1", [80]))
    assert rec.take() == [("add_port", "svc-1", 80)]

    sl.set_service(svc("svc-1", [80, 81]))
    assert rec.take() == [("add_port", "svc-1", 81)]

    sl.set_service(svc("svc-1", [80, 82]))
    assert rec.take() == [("delete_port", "svc-1", 81), ("add_port", "svc-1", 82)]

    sl.set_service(svc("svc-1", [80, 82], "10.1.1.1"))
    assert rec.take() == [
        ("add_ip", "svc-1", "10.1.1.1", CLUSTER),
        ("add_ip_port", "svc-1", "10.1.1.1", CLUSTER, 80),
        ("add_ip_port", "svc-1", "10.1.1.1", CLUSTER, 82),
    ]

    sl.set_service(svc("svc-1", [80, 82], "10.1.1.1", external_traffic_to_local=True))
    sl.set_service(svc("svc-1", [80, 82], "10.1.1.1"))
    sl.set_service(svc("svc-1", [80, 82], "10.1.1.1", internal_traffic_to_local=True))
    sl.set_service(svc("svc-1", [80, 82], "10.1.1.1"))
    assert rec.take() == []

    sl.set_service(
        svc("svc-session-affinity-1", [80, 82], "10.1.1.1", client_ip=ClientIPAffinity(10))
    )
    assert rec.take() == [
        ("add_port", "svc-session-affinity-1", 80),
        ("add_port", "svc-session-affinity-1", 82),
        ("add_ip", "svc-session-affinity-1", "10.1.1.1", CLUSTER),
        ("add_ip_port", "svc-session-affinity-1", "10.1.1.1", CLUSTER, 80),
        ("add_ip_port", "svc-session-affinity-1", "10.1.1.1", CLUSTER, 82),
        ("enable_affinity", "svc-session-affinity-1", 10),
    ]

    sl.set_service(svc("svc-session-affinity-1", [80, 82], "10.1.1.1"))
    assert rec.take() == [("disable_affinity", "svc-session-affinity-1")]

    sl.delete_service("ns", "svc-1")
    assert rec.take() == [
        ("delete_port", "svc-1", 80),
        ("delete_port", "svc-1", 82),
        ("delete_ip_port", "svc-1", "10.1.1.1", CLUSTER, 80),
        ("delete_ip_port", "svc-1", "10.1.1.1", CLUSTER, 82),
        ("delete_ip", "svc-1", "10.1.1.1", CLUSTER),
    ]


def test_delete_unknown_service_emits_nothing(listener_and_recorder):
    sl, rec = listener_and_recorder
    sl.delete_service("ns", "missing")
    assert rec.take() == []


def test_traffic_policy_events():
    rec = PolicyRecorder()
    sl = ServicesListener()
    sl.traffic_policy_listener = rec

    sl.set_service(svc("a", [80], external_traffic_to_local=True))
    sl.set_service(svc("a", [80]))
    sl.set_service(svc("a", [80], internal_traffic_to_local=True))
    sl.delete_service("ns", "a")

    assert rec.events == [
        ("enable", "a", TrafficPolicyKind.EXTERNAL),
        ("disable", "a", TrafficPolicyKind.EXTERNAL),
        ("enable", "a", TrafficPolicyKind.INTERNAL),
        ("disable", None, TrafficPolicyKind.INTERNAL),
    ]


def test_kind_names():
    rec = KindNameRecorder()
    sl = ServicesListener()
    sl.ips_listener = rec
    sl.traffic_policy_listener = rec

    sl.set_service(svc("a", [80], "10.1.1.1", internal_traffic_to_local=True))
    sl.delete_service("ns", "a")

    assert rec.names == ["ClusterIP", "TrafficPolicyInternal", "ClusterIP"] or rec.names == [
        "ClusterIP",
        "TrafficPolicyInternal",
        "TrafficPolicyInternal",
        "ClusterIP",
    ]
    assert "ClusterIP" in rec.names
    assert "TrafficPolicyInternal" in rec.names


def test_diff_sequences_order():
    calls = []
    diff_sequences(
        [1, 2, 3],
        [2, 3, 4],
        lambda a, b: a == b,
        added=lambda c: calls.append(("added", c)),
        deleted=lambda p: calls.append(("deleted", p)),
        updated=lambda p, c: calls.append(("updated", p, c)),
    )
    assert calls == [("deleted", 1), ("updated", 2, 2), ("updated", 3, 3), ("added", 4)]


def test_same_port_ignores_name_and_target():
    a = PortMapping(name="a", protocol=Protocol.TCP, port=80, target_port=1)
    b = PortMapping(name="b", protocol=Protocol.TCP, port=80, target_port=2)
    c = PortMapping(protocol=Protocol.UDP, port=80)
    assert same_port(a, b)
    assert not same_port(a, c)


def test_get_session_affinity():
    affinity = ClientIPAffinity(30)
    assert get_session_affinity(Service(client_ip=affinity)) == SessionAffinity(affinity)
    assert get_session_affinity(None).client_ip is None


class Backend:
    def __init__(self):
        self.calls = []

    def sync(self):
        self.calls.append("sync")

    def setup(self):
        self.calls.append("setup")

    def reset(self):
        self.calls.append("reset")

    def wait_request(self):
        self.calls.append("wait_request")
        return "localhost"

    def set_service(self, service):
        self.calls.append("set_service")

    def delete_service(self, namespace, name):
        self.calls.append("delete_service")

    def set_endpoint(self, namespace, service_name, key, endpoint):
        self.calls.append("set_endpoint")

    def delete_endpoint(self, namespace, service_name, key):
        self.calls.append("delete_endpoint")


class PortsBackend(Backend):
    def add_port(self, svc, port):
        self.calls.append(("add_port", port.port))

    def delete_port(self, svc, port):
        self.calls.append(("delete_port", port.port))


def test_wrap_delegates_plain_calls():
    backend = Backend()
    w = wrap(backend)
    w.setup()
    w.reset()
    w.sync()
    assert w.wait_request() == "localhost"
    assert backend.calls == ["setup", "reset", "sync", "wait_request"]


def test_wrap_feeds_implemented_listeners_in_order():
    backend = PortsBackend()
    w = wrap(backend)
    assert w.listener.ports_listener is backend
    assert w.listener.ips_listener is None

    w.set_service(svc("s", [80]))
    w.delete_service("ns", "s")
    assert backend.calls == [
        "set_service",
        ("add_port", 80),
        ("delete_port", 80),
        "delete_service",
    ]