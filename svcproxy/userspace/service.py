"""Operational view of a service and its endpoints for userspace proxying."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from ..model import Endpoint, Service


@dataclass
class ServiceEndpoint:
    """An endpoint of a service, keyed as received."""

    key: str
    target_ip: str
    internal_ep: Endpoint


@dataclass
class ProxyService:
    """A service and the endpoints known for it."""

    name: str
    internal_svc: Optional[Service] = None
    endpoints: list[ServiceEndpoint] = field(default_factory=list)

    def add_endpoint(self, key: str, endpoint: Endpoint) -> None:
        """Record ``endpoint`` under ``key``; endpoints without IPs are ignored."""
        if endpoint.ips is None or endpoint.ips.is_empty():
            return
        self.endpoints.append(ServiceEndpoint(key, endpoint.ips.first(), endpoint))

    def get_endpoint(self, key: str) -> Optional[ServiceEndpoint]:
        """The first endpoint recorded under ``key``, or None."""
        return next((ep for ep in self.endpoints if ep.key == key), None)

    def delete_endpoint(self, key: str) -> None:
        """Forget every endpoint recorded under ``key``."""
        self.endpoints = [ep for ep in self.endpoints if ep.key != key]