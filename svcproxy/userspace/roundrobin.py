"""Round-robin load balancing of service ports over their endpoints."""

from __future__ import annotations

import logging
import random
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Optional, Protocol as _Interface, Union

from ..model import ClientIPAffinity, Endpoint, Service

log = logging.getLogger(__name__)

# Session affinity timeout used when none is given (3 hours).
DEFAULT_CLIENT_IP_SERVICE_AFFINITY_SECONDS = 10800

SourceAddress = Union[str, tuple, None]


@dataclass(frozen=True)
class ServicePortName:
    """A namespace, a service name and a port name."""

    namespace: str
    name: str
    port: str = ""

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}:{self.port}"


@dataclass(frozen=True)
class ServicePortPortalName:
    """A service port together with the IP it is served on."""

    namespace: str
    name: str
    port: str = ""
    portal_ip_name: str = ""

    def service_port_name(self) -> ServicePortName:
        return ServicePortName(self.namespace, self.name, self.port)

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}:{self.port}:{self.portal_ip_name}"


class MissingServiceEntryError(LookupError):
    """The service port is not known to the load balancer."""

    def __init__(self, svc_port: Optional[ServicePortName] = None) -> None:
        super().__init__(f"missing service entry: {svc_port}")
        self.svc_port = svc_port


class MissingEndpointsError(LookupError):
    """The service port has no endpoint."""

    def __init__(self, svc_port: Optional[ServicePortName] = None) -> None:
        super().__init__(f"missing endpoints: {svc_port}")
        self.svc_port = svc_port


class EndpointsHandler(_Interface):
    def on_endpoints_add(self, endpoint: Endpoint, service: Service) -> None: ...

    def on_endpoints_delete(self, endpoint: Endpoint, service: Service) -> None: ...

    def on_endpoints_synced(self) -> None: ...


class LoadBalancer(EndpointsHandler, _Interface):
    """Distributes incoming requests over service endpoints."""

    def next_endpoint(
        self,
        svc_port: ServicePortName,
        src_addr: SourceAddress,
        session_affinity_reset: bool,
    ) -> str: ...

    def new_service(
        self,
        svc_port: ServicePortName,
        affinity_client_ip: Optional[ClientIPAffinity],
        ttl_seconds: int,
    ) -> None: ...

    def delete_service(self, svc_port: ServicePortName) -> None: ...

    def cleanup_stale_sticky_sessions(self, svc_port: ServicePortName) -> None: ...


def join_host_port(host: str, port: int) -> str:
    """Join a host and a port, bracketing IPv6 hosts."""
    if ":" in host:
        return f"[{host}]:{port}"
    return f"{host}:{port}"


def split_host_port(address: str) -> tuple[str, str]:
    """Split "host:port" or "[host]:port"; raise ValueError if malformed."""
    if address.startswith("["):
        end = address.find("]")
        if end < 0:
            raise ValueError(f"missing ']' in address {address!r}")
        rest = address[end + 1:]
        if not rest.startswith(":"):
            raise ValueError(f"missing port in address {address!r}")
        return address[1:end], rest[1:]
    host, sep, port = address.rpartition(":")
    if not sep:
        raise ValueError(f"missing port in address {address!r}")
    if ":" in host:
        raise ValueError(f"too many colons in address {address!r}")
    return host, port


def _client_ip(src_addr: SourceAddress) -> str:
    if isinstance(src_addr, tuple) and src_addr:
        return str(src_addr[0])
    if isinstance(src_addr, str):
        try:
            host, _ = split_host_port(src_addr)
        except ValueError as exc:
            raise ValueError(f"malformed source address {src_addr!r}: {exc}") from exc
        return host
    raise ValueError(f"malformed source address {src_addr!r}")


def is_valid_endpoint(host: str, port: int) -> bool:
    """Whether the host / port pair makes a valid endpoint."""
    return host != "" and port > 0


def build_ports_to_endpoints_map(
    endpoint: Endpoint, service: Service
) -> dict[str, list[str]]:
    """Map each port name of ``service`` to the "ip:port" targets of ``endpoint``."""
    ports_to_endpoints: dict[str, list[str]] = {}
    v4 = endpoint.ips.v4 if endpoint.ips is not None else []
    for ip in v4:
        for port in service.ports:
            if is_valid_endpoint(ip, port.port):
                ports_to_endpoints.setdefault(port.name, []).append(
                    join_host_port(ip, port.target_port)
                )
    return ports_to_endpoints


@dataclass
class _AffinityState:
    client_ip: str = ""
    endpoint: str = ""
    last_used: float = 0.0


@dataclass
class _AffinityPolicy:
    affinity_client_ip: bool
    ttl_seconds: int
    affinity_map: dict[str, _AffinityState] = field(default_factory=dict)


@dataclass
class _BalancerState:
    affinity: _AffinityPolicy
    endpoints: list[str] = field(default_factory=list)
    index: int = 0


class LoadBalancerRR:
    """Round-robin load balancer with optional client-IP session affinity."""

    def __init__(
        self,
        clock: Callable[[], float] = time.monotonic,
        rng: Optional[random.Random] = None,
    ) -> None:
        self._clock = clock
        self._rng = rng or random.Random()
        self._lock = threading.Lock()
        self._services: dict[ServicePortName, _BalancerState] = {}

    def new_service(
        self,
        svc_port: ServicePortName,
        affinity_client_ip: Optional[ClientIPAffinity],
        ttl_seconds: int,
    ) -> None:
        log.debug("LoadBalancerRR NewService %s", svc_port)
        with self._lock:
            self._new_service(svc_port, affinity_client_ip, ttl_seconds)

    def _new_service(
        self,
        svc_port: ServicePortName,
        affinity_client_ip: Optional[ClientIPAffinity],
        ttl_seconds: int,
    ) -> _BalancerState:
        if ttl_seconds == 0:
            ttl_seconds = DEFAULT_CLIENT_IP_SERVICE_AFFINITY_SECONDS

        state = self._services.get(svc_port)
        if state is None:
            state = _BalancerState(
                affinity=_AffinityPolicy(affinity_client_ip is not None, ttl_seconds)
            )
            self._services[svc_port] = state
            log.debug("LoadBalancerRR service %s did not exist, created", svc_port)
        elif affinity_client_ip is not None:
            state.affinity.affinity_client_ip = True
        return state

    def delete_service(self, svc_port: ServicePortName) -> None:
        log.debug("LoadBalancerRR DeleteService %s", svc_port)
        with self._lock:
            self._services.pop(svc_port, None)

    def next_endpoint(
        self,
        svc_port: ServicePortName,
        src_addr: SourceAddress,
        session_affinity_reset: bool,
    ) -> str:
        """Return the endpoint for a request from ``src_addr`` to ``svc_port``."""
        with self._lock:
            state = self._services.get(svc_port)
            if state is None:
                raise MissingServiceEntryError(svc_port)
            if not state.endpoints:
                raise MissingEndpointsError(svc_port)

            affinity = state.affinity
            ip = ""
            if affinity.affinity_client_ip:
                ip = _client_ip(src_addr)
                if not session_affinity_reset:
                    sticky = affinity.affinity_map.get(ip)
                    now = self._clock()
                    if sticky is not None and int(now - sticky.last_used) < affinity.ttl_seconds:
                        sticky.last_used = now
                        return sticky.endpoint

            endpoint = state.endpoints[state.index]
            state.index = (state.index + 1) % len(state.endpoints)

            if affinity.affinity_client_ip:
                record = affinity.affinity_map.setdefault(ip, _AffinityState())
                record.last_used = self._clock()
                record.endpoint = endpoint
                record.client_ip = ip

            return endpoint

    def _update_affinity_map(
        self, svc_port: ServicePortName, new_endpoints: list[str]
    ) -> None:
        state = self._services.get(svc_port)
        if state is None:
            return
        counts = {endpoint: 1 for endpoint in new_endpoints}
        for existing in state.endpoints:
            counts[existing] = counts.get(existing, 0) + 1
        for endpoint, count in counts.items():
            if count == 1:
                log.debug("delete endpoint %s for service %s", endpoint, svc_port)
                affinity_map = state.affinity.affinity_map
                for record in list(affinity_map.values()):
                    if record.endpoint == endpoint:
                        affinity_map.pop(record.client_ip, None)

    def _set_endpoints(
        self, svc_port: ServicePortName, service: Service, endpoints: list[str]
    ) -> None:
        self._update_affinity_map(svc_port, endpoints)
        state = self._new_service(svc_port, service.client_ip, 0)
        state.endpoints = self._rng.sample(endpoints, len(endpoints))
        state.index = 0

    def on_endpoints_add(self, endpoint: Endpoint, service: Service) -> None:
        ports_to_endpoints = build_ports_to_endpoints_map(endpoint, service)
        with self._lock:
            for port_name, added in ports_to_endpoints.items():
                svc_port = ServicePortName(service.namespace, service.name, port_name)
                state = self._services.get(svc_port)
                new_endpoints = list(added)
                if state is not None:
                    new_endpoints += state.endpoints
                log.debug("setting endpoints for %s: %s", svc_port, new_endpoints)
                self._set_endpoints(svc_port, service, new_endpoints)

    def on_endpoints_delete(self, endpoint: Endpoint, service: Service) -> None:
        ports_to_endpoints = build_ports_to_endpoints_map(endpoint, service)
        with self._lock:
            for port_name, removed in ports_to_endpoints.items():
                svc_port = ServicePortName(service.namespace, service.name, port_name)
                state = self._services.get(svc_port)
                if state is None:
                    continue
                new_endpoints = [ep for ep in state.endpoints if ep not in removed]
                log.debug("removing endpoints of %s", svc_port)
                self._set_endpoints(svc_port, service, new_endpoints)

    def on_endpoints_synced(self) -> None:
        """Nothing to do once endpoints are synced."""

    def cleanup_stale_sticky_sessions(self, svc_port: ServicePortName) -> None:
        with self._lock:
            state = self._services.get(svc_port)
            if state is None:
                return
            now = self._clock()
            affinity = state.affinity
            for ip, record in list(affinity.affinity_map.items()):
                if int(now - record.last_used) >= affinity.ttl_seconds:
                    log.debug("removing client %s from affinity map of %s", ip, svc_port)
                    del affinity.affinity_map[ip]

    def endpoints_of(self, svc_port: ServicePortName) -> list[str]:
        """The current endpoints of ``svc_port``, in round-robin order."""
        with self._lock:
            state = self._services.get(svc_port)
            if state is None:
                raise MissingServiceEntryError(svc_port)
            return list(state.endpoints)