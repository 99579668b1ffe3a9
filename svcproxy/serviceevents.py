"""Turn service updates into detailed port, IP, policy and affinity events."""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Any, Callable, Optional, Sequence, TypeVar
from typing import Protocol as _Interface

from .model import ClientIPAffinity, Endpoint, PortMapping, Service

P = TypeVar("P")
C = TypeVar("C")

_MISSING = object()


class IPKind(enum.Enum):
    """Kind of IP given to an IPs listener or an IP-ports listener."""

    CLUSTER_IP = 0
    EXTERNAL_IP = 1
    LOAD_BALANCER_IP = 2

    def __str__(self) -> str:
        return {
            IPKind.CLUSTER_IP: "ClusterIP",
            IPKind.EXTERNAL_IP: "ExternalIP",
            IPKind.LOAD_BALANCER_IP: "LoadBalancerIP",
        }[self]


class TrafficPolicyKind(enum.Enum):
    """Kind of traffic policy given to a traffic policy listener."""

    INTERNAL = 0
    EXTERNAL = 1

    def __str__(self) -> str:
        return {
            TrafficPolicyKind.INTERNAL: "TrafficPolicyInternal",
            TrafficPolicyKind.EXTERNAL: "TrafficPolicyExternal",
        }[self]


@dataclass(frozen=True)
class SessionAffinity:
    """Session affinity assigned to a service."""

    client_ip: Optional[ClientIPAffinity] = None


class PortsListener(_Interface):
    def add_port(self, svc: Service, port: PortMapping) -> None: ...

    def delete_port(self, svc: Service, port: PortMapping) -> None: ...


class IPsListener(_Interface):
    def add_ip(self, svc: Service, ip: str, ip_kind: IPKind) -> None: ...

    def delete_ip(self, svc: Service, ip: str, ip_kind: IPKind) -> None: ...


class IPPortsListener(_Interface):
    def add_ip_port(
        self, svc: Service, ip: str, ip_kind: IPKind, port: PortMapping
    ) -> None: ...

    def delete_ip_port(
        self, svc: Service, ip: str, ip_kind: IPKind, port: PortMapping
    ) -> None: ...


class TrafficPolicyListener(_Interface):
    def enable_traffic_policy(
        self, svc: Optional[Service], policy_kind: TrafficPolicyKind
    ) -> None: ...

    def disable_traffic_policy(
        self, svc: Optional[Service], policy_kind: TrafficPolicyKind
    ) -> None: ...


class SessionAffinityListener(_Interface):
    def enable_session_affinity(
        self, svc: Service, session_affinity: SessionAffinity
    ) -> None: ...

    def disable_session_affinity(self, svc: Service) -> None: ...


def diff_sequences(
    prev: Sequence[P],
    curr: Sequence[C],
    same_key: Callable[[P, C], bool],
    added: Callable[[C], None],
    deleted: Callable[[P], None],
    updated: Optional[Callable[[P, C], None]] = None,
) -> None:
    """Report updated and deleted previous values, then added current values."""
    for p in prev:
        match = next((c for c in curr if same_key(p, c)), _MISSING)
        if match is _MISSING:
            deleted(p)
        elif updated is not None:
            updated(p, match)

    for c in curr:
        if not any(same_key(p, c) for p in prev):
            added(c)


def same_port(p1: PortMapping, p2: PortMapping) -> bool:
    return p1.protocol == p2.protocol and p1.port == p2.port


def get_session_affinity(service: Optional[Service]) -> SessionAffinity:
    if service is None:
        return SessionAffinity()
    return SessionAffinity(client_ip=service.client_ip)


def _ips_of(svc: Optional[Service], kind: IPKind) -> list[str]:
    if svc is None or svc.ips is None:
        return []
    ipset = {
        IPKind.CLUSTER_IP: svc.ips.cluster_ips,
        IPKind.EXTERNAL_IP: svc.ips.external_ips,
        IPKind.LOAD_BALANCER_IP: svc.ips.load_balancer_ips,
    }[kind]
    return [] if ipset is None else ipset.all()


def _ports_of(svc: Optional[Service]) -> list[PortMapping]:
    return [] if svc is None else list(svc.ports)


class ServicesListener:
    """Analyzes updates of the service set and emits detailed events.

    Each analysis runs only when its listener is set. Event order is:
    add/delete port, add IP, add/delete IP-port, traffic policy,
    session affinity, and finally delete IP.
    """

    def __init__(self) -> None:
        self.ports_listener: Optional[PortsListener] = None
        self.ips_listener: Optional[IPsListener] = None
        self.ip_ports_listener: Optional[IPPortsListener] = None
        self.traffic_policy_listener: Optional[TrafficPolicyListener] = None
        self.session_affinity_listener: Optional[SessionAffinityListener] = None
        self._services: dict[str, Service] = {}

    def set_service(self, svc: Service) -> None:
        """A service was added or updated."""
        key = f"{svc.namespace}/{svc.name}"
        prev = self._services.get(key)
        self._services[key] = svc
        self._diff(prev, svc)

    def delete_service(self, namespace: str, name: str) -> None:
        """A service was deleted; unknown services are ignored."""
        svc = self._services.pop(f"{namespace}/{name}", None)
        if svc is not None:
            self._diff(svc, None)

    def _diff(self, prev: Optional[Service], curr: Optional[Service]) -> None:
        prev_ports = _ports_of(prev)
        curr_ports = _ports_of(curr)

        ports_listener = self.ports_listener
        if ports_listener is not None:
            diff_sequences(
                prev_ports,
                curr_ports,
                same_port,
                added=lambda port: ports_listener.add_port(curr, port),
                deleted=lambda port: ports_listener.delete_port(prev, port),
            )

        deferred: list[Callable[[], None]] = []

        ips_listener = self.ips_listener
        if ips_listener is not None:
            for kind in IPKind:
                diff_sequences(
                    _ips_of(prev, kind),
                    _ips_of(curr, kind),
                    lambda a, b: a == b,
                    added=lambda ip, kind=kind: ips_listener.add_ip(curr, ip, kind),
                    deleted=lambda ip, kind=kind: deferred.append(
                        lambda: ips_listener.delete_ip(prev, ip, kind)
                    ),
                )

        ip_ports_listener = self.ip_ports_listener
        if ip_ports_listener is not None:
            for kind in IPKind:
                prevs = [(ip, p) for ip in _ips_of(prev, kind) for p in prev_ports]
                currs = [(ip, p) for ip in _ips_of(curr, kind) for p in curr_ports]
                diff_sequences(
                    prevs,
                    currs,
                    lambda a, b: a[0] == b[0] and same_port(a[1], b[1]),
                    added=lambda pair, kind=kind: ip_ports_listener.add_ip_port(
                        curr, pair[0], kind, pair[1]
                    ),
                    deleted=lambda pair, kind=kind: ip_ports_listener.delete_ip_port(
                        prev, pair[0], kind, pair[1]
                    ),
                )

        if self.traffic_policy_listener is not None:
            self._check_traffic_policy(prev, curr, TrafficPolicyKind.INTERNAL)
            self._check_traffic_policy(prev, curr, TrafficPolicyKind.EXTERNAL)

        affinity_listener = self.session_affinity_listener
        if affinity_listener is not None:
            prev_aff = get_session_affinity(prev)
            curr_aff = get_session_affinity(curr)
            if prev_aff.client_ip is None and curr_aff.client_ip is not None:
                affinity_listener.enable_session_affinity(curr, curr_aff)
            if prev_aff.client_ip is not None and curr_aff.client_ip is None:
                affinity_listener.disable_session_affinity(prev)

        for call in deferred:
            call()

    def _check_traffic_policy(
        self,
        prev: Optional[Service],
        curr: Optional[Service],
        kind: TrafficPolicyKind,
    ) -> None:
        def policy(svc: Optional[Service]) -> bool:
            if svc is None:
                return False
            if kind is TrafficPolicyKind.INTERNAL:
                return svc.internal_traffic_to_local
            return svc.external_traffic_to_local

        listener = self.traffic_policy_listener
        before, after = policy(prev), policy(curr)
        if not before and after:
            listener.enable_traffic_policy(curr, kind)
        if before and not after:
            listener.disable_traffic_policy(curr, kind)


def _implements(obj: Any, *methods: str) -> bool:
    return all(callable(getattr(obj, name, None)) for name in methods)


class Wrapper:
    """Decoder backend that also feeds a ServicesListener.

    Every attribute not defined here is taken from the wrapped backend.
    """

    def __init__(self, backend: Any, listener: ServicesListener) -> None:
        self.backend = backend
        self.listener = listener

    def __getattr__(self, name: str) -> Any:
        backend = self.__dict__.get("backend")
        if backend is None:
            raise AttributeError(name)
        return getattr(backend, name)

    def set_service(self, service: Service) -> None:
        self.backend.set_service(service)
        self.listener.set_service(service)

    def delete_service(self, namespace: str, name: str) -> None:
        self.listener.delete_service(namespace, name)
        self.backend.delete_service(namespace, name)

    def set_endpoint(
        self, namespace: str, service_name: str, key: str, endpoint: Endpoint
    ) -> None:
        self.backend.set_endpoint(namespace, service_name, key, endpoint)

    def delete_endpoint(self, namespace: str, service_name: str, key: str) -> None:
        self.backend.delete_endpoint(namespace, service_name, key)


def wrap(backend: Any) -> Wrapper:
    """Wrap a decoder backend so it receives the detailed events it implements."""
    listener = ServicesListener()
    if _implements(backend, "add_port", "delete_port"):
        listener.ports_listener = backend
    if _implements(backend, "add_ip", "delete_ip"):
        listener.ips_listener = backend
    if _implements(backend, "add_ip_port", "delete_ip_port"):
        listener.ip_ports_listener = backend
    if _implements(backend, "enable_session_affinity", "disable_session_affinity"):
        listener.session_affinity_listener = backend
    if _implements(backend, "enable_traffic_policy", "disable_traffic_policy"):
        listener.traffic_policy_listener = backend
    return Wrapper(backend, listener)