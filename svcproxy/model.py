"""Data types exchanged between the proxy server and local sinks."""

from __future__ import annotations

import enum
import json
import socket
from dataclasses import dataclass, field
from typing import Any, Optional, Union
from typing import Protocol as _Interface
from typing import runtime_checkable


class Protocol(enum.Enum):
    """Transport protocol of a service port."""

    UNKNOWN = "UnknownProtocol"
    TCP = "TCP"
    UDP = "UDP"
    SCTP = "SCTP"

    def __str__(self) -> str:
        return self.value


class SetKind(enum.Enum):
    """Which set of objects a reference points into."""

    SERVICES = "ServicesSet"
    ENDPOINTS = "EndpointsSet"

    def __str__(self) -> str:
        return self.value


@dataclass
class IPSet:
    """IP addresses split by family."""

    v4: list[str] = field(default_factory=list)
    v6: list[str] = field(default_factory=list)

    def add(self, *args: str) -> IPSet:
        """Add addresses, sorting them into their family; duplicates are ignored."""
        for ip in args:
            target = self.v6 if ":" in ip else self.v4
            if ip not in target:
                target.append(ip)
        return self

    def add_set(self, other: Optional[IPSet]) -> IPSet:
        """Add every address of ``other`` (which may be None)."""
        if other is not None:
            self.add(*other.v4, *other.v6)
        return self

    def all(self) -> list[str]:
        """All addresses, IPv4 first."""
        return [*self.v4, *self.v6]

    def first(self) -> Optional[str]:
        """The first address, or None when the set is empty."""
        return next(iter(self.all()), None)

    def is_empty(self) -> bool:
        return not self.v4 and not self.v6

    def _to_dict(self) -> dict[str, Any]:
        return {"v4": list(self.v4), "v6": list(self.v6)}

    @classmethod
    def _from_dict(cls, raw: Optional[dict[str, Any]]) -> Optional[IPSet]:
        if raw is None:
            return None
        return cls(v4=list(raw.get("v4", [])), v6=list(raw.get("v6", [])))


def _ipset_dict(ipset: Optional[IPSet]) -> Optional[dict[str, Any]]:
    return None if ipset is None else ipset._to_dict()


@dataclass
class ServiceIPs:
    """The addresses a service is reachable on."""

    cluster_ips: Optional[IPSet] = None
    external_ips: Optional[IPSet] = None
    load_balancer_ips: Optional[IPSet] = None

    def all(self) -> IPSet:
        """Cluster, external and load-balancer addresses together."""
        return (
            IPSet()
            .add_set(self.cluster_ips)
            .add_set(self.external_ips)
            .add_set(self.load_balancer_ips)
        )

    def all_ingress(self) -> IPSet:
        """External and load-balancer addresses together."""
        return IPSet().add_set(self.external_ips).add_set(self.load_balancer_ips)


@dataclass
class PortMapping:
    name: str = ""
    protocol: Protocol = Protocol.UNKNOWN
    port: int = 0
    node_port: int = 0
    target_port: int = 0


@dataclass
class ClientIPAffinity:
    timeout_seconds: int = 0


def _load_object(data: bytes) -> dict[str, Any]:
    try:
        raw = json.loads(bytes(data))
    except ValueError as exc:
        raise ValueError(f"invalid encoded object: {exc}") from exc
    if not isinstance(raw, dict):
        raise ValueError("invalid encoded object: not a mapping")
    return raw


def _dump_object(raw: dict[str, Any]) -> bytes:
    return json.dumps(raw, sort_keys=True, separators=(",", ":")).encode("utf-8")


@dataclass
class Service:
    namespace: str = ""
    name: str = ""
    type: str = ""
    ips: Optional[ServiceIPs] = field(default_factory=ServiceIPs)
    ports: list[PortMapping] = field(default_factory=list)
    client_ip: Optional[ClientIPAffinity] = None
    internal_traffic_to_local: bool = False
    external_traffic_to_local: bool = False

    def namespaced_name(self) -> str:
        return f"{self.namespace}/{self.name}"

    def to_bytes(self) -> bytes:
        ips = None
        if self.ips is not None:
            ips = {
                "cluster_ips": _ipset_dict(self.ips.cluster_ips),
                "external_ips": _ipset_dict(self.ips.external_ips),
                "load_balancer_ips": _ipset_dict(self.ips.load_balancer_ips),
            }
        return _dump_object(
            {
                "namespace": self.namespace,
                "name": self.name,
                "type": self.type,
                "ips": ips,
                "ports": [
                    {
                        "name": p.name,
                        "protocol": p.protocol.value,
                        "port": p.port,
                        "node_port": p.node_port,
                        "target_port": p.target_port,
                    }
                    for p in self.ports
                ],
                "client_ip": (
                    None
                    if self.client_ip is None
                    else {"timeout_seconds": self.client_ip.timeout_seconds}
                ),
                "internal_traffic_to_local": self.internal_traffic_to_local,
                "external_traffic_to_local": self.external_traffic_to_local,
            }
        )

    @classmethod
    def from_bytes(cls, data: bytes) -> Service:
        raw = _load_object(data)
        raw_ips = raw.get("ips")
        ips = None
        if raw_ips is not None:
            ips = ServiceIPs(
                cluster_ips=IPSet._from_dict(raw_ips.get("cluster_ips")),
                external_ips=IPSet._from_dict(raw_ips.get("external_ips")),
                load_balancer_ips=IPSet._from_dict(raw_ips.get("load_balancer_ips")),
            )
        raw_affinity = raw.get("client_ip")
        return cls(
            namespace=raw.get("namespace", ""),
            name=raw.get("name", ""),
            type=raw.get("type", ""),
            ips=ips,
            ports=[
                PortMapping(
                    name=p.get("name", ""),
                    protocol=Protocol(p.get("protocol", Protocol.UNKNOWN.value)),
                    port=int(p.get("port", 0)),
                    node_port=int(p.get("node_port", 0)),
                    target_port=int(p.get("target_port", 0)),
                )
                for p in raw.get("ports", [])
            ],
            client_ip=(
                None
                if raw_affinity is None
                else ClientIPAffinity(int(raw_affinity.get("timeout_seconds", 0)))
            ),
            internal_traffic_to_local=bool(raw.get("internal_traffic_to_local", False)),
            external_traffic_to_local=bool(raw.get("external_traffic_to_local", False)),
        )


@dataclass
class Endpoint:
    ips: IPSet = field(default_factory=IPSet)
    local: bool = False
    endpoint_port_map: dict[str, int] = field(default_factory=dict)

    def to_bytes(self) -> bytes:
        return _dump_object(
            {
                "ips": self.ips._to_dict(),
                "local": self.local,
                "endpoint_port_map": dict(self.endpoint_port_map),
            }
        )

    @classmethod
    def from_bytes(cls, data: bytes) -> Endpoint:
        raw = _load_object(data)
        return cls(
            ips=IPSet._from_dict(raw.get("ips")) or IPSet(),
            local=bool(raw.get("local", False)),
            endpoint_port_map={
                str(k): int(v) for k, v in raw.get("endpoint_port_map", {}).items()
            },
        )


@dataclass(frozen=True)
class Ref:
    set: SetKind
    path: str


@dataclass(frozen=True)
class OpSet:
    """Set (add or update) the encoded object at ``ref``."""

    ref: Ref
    data: bytes


@dataclass(frozen=True)
class OpDelete:
    """Delete the object at ``ref``."""

    ref: Ref


@dataclass(frozen=True)
class OpSync:
    """The state sent so far is a complete, consistent revision."""


Op = Union[OpSet, OpDelete, OpSync]


@dataclass
class Config:
    """Common sink configuration."""

    node_name: str = field(default_factory=socket.gethostname)

    def wait_request(self) -> str:
        """Return the node name to request from the server."""
        return self.node_name


@runtime_checkable
class Sink(_Interface):
    """Receiver of the operation stream."""

    def setup(self) -> None:
        """Called once, when the job starts."""

    def wait_request(self) -> str:
        """Wait for the next diff request and return the requested node name.

        Raising cancels the job.
        """

    def reset(self) -> None:
        """Forget the state (the client is reconnecting)."""

    def send(self, op: Op) -> None:
        """Handle one operation."""