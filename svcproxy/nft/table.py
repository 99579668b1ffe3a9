"""An nftables table made of change-tracked chains, maps and sets."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from ..diffstore2 import BufferLeaf, Store, new_buffer_store
from ..model import IPSet


@dataclass(frozen=True)
class KindStore:
    """A store together with the nft kind of object it holds."""

    kind: str
    store: Store[str, BufferLeaf]


class NfTable:
    """One nftables table of a given family."""

    def __init__(self, family: str, name: str) -> None:
        self.family = family
        self.name = name
        self.chains: Store[str, BufferLeaf] = new_buffer_store()
        self.maps: Store[str, BufferLeaf] = new_buffer_store()
        self.sets: Store[str, BufferLeaf] = new_buffer_store()

    def ips_from_set(self, ipset: Optional[IPSet]) -> list[str]:
        """The addresses of ``ipset`` that belong to this table's family."""
        if ipset is None:
            return []
        if self.family == "ip":
            return ipset.v4
        if self.family == "ip6":
            return ipset.v6
        return []

    def reset(self) -> None:
        self.chains.reset()
        self.maps.reset()
        self.sets.reset()

    def run_deferred(self) -> None:
        self.chains.run_deferred()
        self.maps.run_deferred()
        self.sets.run_deferred()

    def done(self) -> None:
        self.chains.done()
        self.maps.done()
        self.sets.done()

    def kind_stores(self) -> list[KindStore]:
        """Stores in the order they must be rendered."""
        return [
            KindStore("map", self.maps),
            KindStore("set", self.sets),
            KindStore("chain", self.chains),
        ]

    def changed(self) -> bool:
        """Whether any chain or map was created or updated in this pass."""
        return self.chains.has_changes() or self.maps.has_changes()