"""Byte-keyed store tracking changed and deleted entries between resets."""

from __future__ import annotations

import enum
import json
from dataclasses import dataclass
from typing import Any, Union

from .xxhash64 import xxh64

DEFAULT_SEPARATOR = "|"

KeyLike = Union[bytes, bytearray, str]


class ItemState(enum.IntEnum):
    DELETED = 0
    CHANGED = 1
    UNCHANGED = 2


@dataclass(frozen=True)
class KV:
    key: bytes
    value: Any

    def __lt__(self, other: KV) -> bool:
        return self.key < other.key

    def __str__(self) -> str:
        return f"{{{self.key.decode('utf-8', 'replace')} => {self.value}}}"


@dataclass
class _Entry:
    hash: int
    value: Any
    state: ItemState


def _as_key(key: KeyLike) -> bytes:
    return key.encode("utf-8") if isinstance(key, str) else bytes(key)


class DiffStore:
    """Tracks changes by key, with prefix queries."""

    def __init__(self) -> None:
        self._entries: dict[bytes, _Entry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def _sorted(self, reverse: bool = False):
        for key in sorted(self._entries, reverse=reverse):
            yield key, self._entries[key]

    def reset(self, state: ItemState) -> None:
        """Mark every entry with ``state``, dropping those already deleted."""
        for key, entry in list(self._entries.items()):
            if entry.state == ItemState.DELETED:
                del self._entries[key]
            else:
                entry.state = state

    def set(self, key: KeyLike, hash_value: int, value: Any) -> None:
        """Insert or update an entry; an unchanged hash keeps it unchanged."""
        key = _as_key(key)
        entry = self._entries.get(key)
        if entry is None:
            self._entries[key] = _Entry(hash_value, value, ItemState.CHANGED)
            return
        if entry.hash == hash_value:
            if entry.state == ItemState.DELETED:
                entry.value = value
                entry.state = ItemState.UNCHANGED
            return
        entry.hash = hash_value
        entry.value = value
        entry.state = ItemState.CHANGED

    def set_json(self, key: KeyLike, value: Any) -> None:
        """Set with the hash of the JSON representation of ``value``."""
        try:
            encoded = json.dumps(value, separators=(",", ":"))
        except (TypeError, ValueError) as exc:
            raise ValueError(f"failed to JSON marshal value: {exc}") from exc
        self.set(key, xxh64(encoded.encode("utf-8")), value)

    def delete(self, key: KeyLike) -> None:
        """Mark an entry deleted; raises KeyError if it does not exist."""
        self._entries[_as_key(key)].state = ItemState.DELETED

    def delete_by_prefix(self, prefix: KeyLike) -> None:
        prefix = _as_key(prefix)
        for key, entry in self._entries.items():
            if key.startswith(prefix):
                entry.state = ItemState.DELETED

    def updated(self) -> list[KV]:
        """Entries changed since the last reset, by ascending key."""
        return [
            KV(key, entry.value)
            for key, entry in self._sorted()
            if entry.state == ItemState.CHANGED
        ]

    def deleted(self) -> list[KV]:
        """Entries deleted since the last reset, by descending key."""
        return [
            KV(key, entry.value)
            for key, entry in self._sorted(reverse=True)
            if entry.state == ItemState.DELETED
        ]

    def get_by_prefix(self, prefix: KeyLike) -> list[KV]:
        """Live entries whose key starts with ``prefix``, by ascending key."""
        prefix = _as_key(prefix)
        return [
            KV(key, entry.value)
            for key, entry in self._sorted()
            if key.startswith(prefix) and entry.state != ItemState.DELETED
        ]