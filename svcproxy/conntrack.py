"""Clear stale conntrack entries of flows that disappeared."""

from __future__ import annotations

import ipaddress
import logging
import shutil
import subprocess
from dataclasses import dataclass
from typing import Callable, Iterable, Iterator, Optional

from .diffstore2 import new_any_store
from .fullstate import ServiceEndpoints
from .model import Protocol

log = logging.getLogger(__name__)

# Message printed by conntrack when no matching connection was found.
NO_CONNECTION_TO_DELETE = "0 flow entries have been deleted"

Runner = Callable[[list[str]], str]


@dataclass(frozen=True)
class Flow:
    """A DNAT flow from a service address to an endpoint."""

    protocol: Protocol
    dnat_ip: str
    endpoint_ip: str
    port: int
    target_port: int

    def key(self) -> str:
        return (
            f"{self.protocol}/{self.dnat_ip},{self.port}"
            f">{self.endpoint_ip},{self.target_port}"
        )


def is_clear_conntrack_needed(protocol: Protocol) -> bool:
    """Whether stale connections of ``protocol`` need a conntrack cleanup."""
    return protocol in (Protocol.UDP, Protocol.SCTP)


def _is_ipv6(text: str) -> bool:
    try:
        return ipaddress.ip_address(text).version == 6
    except ValueError:
        return False


def conntrack_parameters(flow: Flow) -> list[str]:
    """Arguments of the conntrack command deleting the entries of ``flow``."""
    params = [
        "-D",
        "--orig-dst", flow.dnat_ip,
        "--dst-nat", flow.endpoint_ip,
        "-p", str(flow.protocol).lower(),
        "--sport", str(flow.port),
        "--dport", str(flow.target_port),
    ]
    if _is_ipv6(flow.dnat_ip):
        params += ["-f", "ipv6"]
    return params


def _run_conntrack(params: list[str]) -> str:
    path = shutil.which("conntrack")
    if path is None:
        raise FileNotFoundError("conntrack not found in PATH")
    result = subprocess.run(
        [path, *params],
        stdout=subprocess.PIPE,
        stderr=subprocess.STDOUT,
        text=True,
        check=False,
    )
    if result.returncode != 0:
        raise subprocess.CalledProcessError(
            result.returncode, [path, *params], output=result.stdout
        )
    return result.stdout


def cleanup_flow_entries(flow: Flow, runner: Optional[Runner] = None) -> bool:
    """Delete the conntrack entries of ``flow``; return whether it succeeded.

    ``runner`` receives the conntrack arguments and returns its output;
    it defaults to running the conntrack program.
    """
    if not is_clear_conntrack_needed(flow.protocol):
        return False

    params = conntrack_parameters(flow)
    run = runner or _run_conntrack
    log.debug("clearing conntrack entries %s", params)
    try:
        output = run(params)
    except subprocess.CalledProcessError as exc:
        log.error("conntrack command returned: %r, error message: %s", exc.output, exc)
        return False
    except OSError as exc:
        log.error("error running conntrack: %s", exc)
        return False
    log.debug("conntrack entries deleted %s", output)
    return True


def _flows_of(seps: ServiceEndpoints) -> Iterator[Flow]:
    svc = seps.service
    svc_ips = svc.ips.all().all() if svc.ips is not None else []
    for svc_ip in svc_ips:
        for port in svc.ports:
            for ep in seps.endpoints:
                target = ep.endpoint_port_map.get(port.name, port.target_port)
                for ep_ip in ep.ips.all():
                    yield Flow(
                        protocol=port.protocol,
                        dnat_ip=svc_ip,
                        endpoint_ip=ep_ip,
                        port=port.port,
                        target_port=target,
                    )


class Conntrack:
    """Full-state callback cleaning conntrack entries of removed flows."""

    def __init__(self, runner: Optional[Runner] = None) -> None:
        self._runner = runner
        self._flows = new_any_store(lambda a, b: False)

    def callback(self, items: Iterable[ServiceEndpoints]) -> None:
        try:
            for seps in items:
                for flow in _flows_of(seps):
                    self._flows.get(flow.key()).set(flow)
            self._flows.done()
            for item in self._flows.deleted():
                cleanup_flow_entries(item.value.get(), self._runner)
        finally:
            self._flows.reset()