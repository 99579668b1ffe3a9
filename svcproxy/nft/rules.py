"""Rule fragments shared by the nftables renderer."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Protocol as _Interface

from ..diffstore2 import BufferLeaf, Item
from ..model import PortMapping, Protocol

log = logging.getLogger(__name__)

# nft fragment matching a packet going to a local address
M_DADDR_LOCAL = "fib daddr type local "

_PROTOCOL_MATCHES = {
    Protocol.TCP: "tcp dport",
    Protocol.UDP: "udp dport",
    Protocol.SCTP: "sctp dport",
}


class Writer(_Interface):
    """Anything rule text can be written to."""

    def write(self, text: str) -> int: ...


def protocol_match(protocol: Protocol) -> str:
    """The nft destination-port match of ``protocol``, or "" if unknown."""
    match = _PROTOCOL_MATCHES.get(protocol)
    if match is None:
        log.error("unknown protocol: %s", protocol)
        return ""
    return match


@dataclass
class DnatRule:
    """DNAT (or reject) rules of one service for one protocol."""

    namespace: str
    name: str
    protocol: Protocol
    ports: list[PortMapping] = field(default_factory=list)
    endpoint_ips: list[str] = field(default_factory=list)

    def write_to(
        self,
        out: Writer,
        node_ports: bool,
        endpoints_map: str,
        endpoints_offset: int,
    ) -> None:
        """Write one rule line per matching port to ``out``."""
        match = protocol_match(self.protocol)
        if not match:
            return

        for port in (p for p in self.ports if p.protocol == self.protocol):
            src_port = port.node_port if node_ports else port.port
            if src_port == 0:
                continue

            parts = ["  "]
            if node_ports:
                parts.append(M_DADDR_LOCAL)
            parts.append(f"{match} {src_port}")

            if not self.endpoint_ips:
                parts.append(" counter reject\n")
                out.write("".join(parts))
                continue

            if len(self.endpoint_ips) == 1:
                parts.append(f" counter dnat to {self.endpoint_ips[0]}")
            else:
                parts.append(
                    f" counter dnat to numgen random mod {len(self.endpoint_ips)}"
                    f" offset {endpoints_offset} map @{endpoints_map}"
                )

            if src_port != port.target_port:
                parts.append(f":{port.target_port}")

            parts.append("\n")
            out.write("".join(parts))


def vmap_add(item: Item[str, BufferLeaf], match: str, kv: str) -> None:
    """Add ``kv`` to the verdict map held by ``item``, opening it if needed.

    The closing brace is written when the store runs its deferred work.
    """
    leaf = item.value
    if len(leaf) == 0:
        leaf.write(f"  {match} vmap {{ ")
        item.defer(lambda chain: chain.write("}\n"))
    else:
        leaf.write(", ")
    leaf.write(kv)


def nft_key(x: int, hash_bug: bool) -> int:
    """The map key to write to nft for the expected key ``x``.

    Some nft versions byte-swap numgen map keys; ``hash_bug`` compensates.
    """
    if hash_bug:
        return (
            ((x & 0xFF) << 24)
            | (((x >> 8) & 0xFF) << 16)
            | (((x >> 16) & 0xFF) << 8)
        )
    return x