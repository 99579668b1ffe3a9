"""Keyed stores of leaves that compute what changed between two fill passes."""

from __future__ import annotations

import dataclasses
import io
import json
from dataclasses import dataclass, field
from typing import Any, Callable, Generic, Hashable, Iterator, Optional, TypeVar

from .xxhash64 import xxh64

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")
T = TypeVar("T")


class AnyLeaf(Generic[T]):
    """Leaf holding any value; its hash moves on whenever the value changes."""

    def __init__(self, equal: Callable[[Any, Any], bool]) -> None:
        self._equal = equal
        self._value: Optional[T] = None
        self._hash = 1
        self._dirty = False

    @property
    def dirty(self) -> bool:
        """Whether the value changed since the last reset."""
        return self._dirty

    def reset(self) -> None:
        """Start a new pass; the value is kept, only the pass flag is cleared."""
        self._dirty = False

    def hash(self) -> int:
        return self._hash

    def get(self) -> Optional[T]:
        return self._value

    def set(self, value: T) -> None:
        if not self._equal(self._value, value):
            self._hash += 1
            self._dirty = True
        self._value = value

    def __str__(self) -> str:
        return f"{{{self._value}}}"


class BufferLeaf:
    """Text buffer leaf hashed on its content."""

    def __init__(self) -> None:
        self._buffer = io.StringIO()

    def write(self, text: str) -> int:
        return self._buffer.write(text)

    def writeln(self) -> None:
        self._buffer.write("\n")

    def getvalue(self) -> str:
        return self._buffer.getvalue()

    def reset(self) -> None:
        self._buffer = io.StringIO()

    def hash(self) -> int:
        return xxh64(self.getvalue().encode("utf-8"))

    def __len__(self) -> int:
        return len(self.getvalue())

    def __str__(self) -> str:
        return self.getvalue()


def _json_default(value: Any) -> Any:
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return dataclasses.asdict(value)
    raise TypeError(f"value of type {type(value).__name__} is not JSON serializable")


def _to_json(value: Any) -> str:
    return json.dumps(value, separators=(",", ":"), default=_json_default)


class JSONLeaf(Generic[T]):
    """Leaf holding a value hashed through its JSON representation."""

    def __init__(self) -> None:
        self._value: Optional[T] = None

    def get(self) -> Optional[T]:
        return self._value

    def set(self, value: T) -> None:
        self._value = value

    def reset(self) -> None:
        self._value = None

    def hash(self) -> int:
        return xxh64(_to_json(self._value).encode("utf-8"))

    def __str__(self) -> str:
        return _to_json(self._value)


@dataclass(eq=False)
class Item(Generic[K, V]):
    """One entry of a store, with its change-tracking state."""

    key: K
    value: V
    touched: bool = False
    previous_hash: int = 0
    current_hash: int = 0
    _deferred: list[Callable[[V], None]] = field(default_factory=list, repr=False)

    def changed(self) -> bool:
        return self.created() or self.updated()

    def created(self) -> bool:
        return self.touched and self.previous_hash == 0

    def updated(self) -> bool:
        return self.touched and self.previous_hash != self.current_hash

    def deleted(self) -> bool:
        return not self.touched and self.previous_hash != 0

    def defer(self, func: Callable[[V], None]) -> None:
        """Queue ``func`` to run on the value when the store runs deferred work."""
        self._deferred.append(func)

    def run_deferred(self) -> None:
        for func in self._deferred:
            func(self.value)
        self._deferred.clear()


def _go_quote(text: str) -> str:
    return json.dumps(text, ensure_ascii=False)


class Store(Generic[K, V]):
    """Ordered store that tracks created, updated and deleted entries per pass.

    A pass is: ``reset``, fill through ``get``/``get_item``, ``done``,
    then read ``changed``/``deleted``.
    """

    def __init__(self, new_value: Callable[[], V]) -> None:
        self._data: dict[K, Item[K, V]] = {}
        self._new_value = new_value
        self._done = False

    def _items(self) -> Iterator[Item[K, V]]:
        for key in sorted(self._data):
            yield self._data[key]

    def _require_done(self) -> None:
        if not self._done:
            raise RuntimeError("done() not called")

    def __contains__(self, key: object) -> bool:
        return key in self._data

    def __len__(self) -> int:
        return len(self._data)

    def get_item(self, key: K) -> Item[K, V]:
        item = self._data.get(key)
        if item is None:
            item = Item(key, self._new_value())
            self._data[key] = item
        item.touched = True
        return item

    def get(self, key: K) -> V:
        return self.get_item(key).value

    def run_deferred(self) -> None:
        for item in self._items():
            if item.touched:
                item.run_deferred()

    def done(self) -> None:
        """End the filling pass, computing the hash of every touched entry."""
        for item in self._items():
            if item.touched:
                item.current_hash = item.value.hash()
        self._done = True

    def list(self) -> list[Item[K, V]]:
        return [item for item in self._items() if item.touched]

    def deleted(self) -> list[Item[K, V]]:
        self._require_done()
        return [item for item in self._items() if item.deleted()]

    def changed(self) -> list[Item[K, V]]:
        """Every entry that was created or updated."""
        self._require_done()
        return [item for item in self._items() if item.changed()]

    def has_changes(self) -> bool:
        self._require_done()
        return any(item.changed() for item in self._items())

    def reset(self) -> None:
        """Start a new pass; entries absent for two passes are dropped."""
        for key, item in list(self._data.items()):
            if item.previous_hash == 0 and not item.touched:
                del self._data[key]
                continue
            item.previous_hash = item.current_hash
            item.current_hash = 0
            item.touched = False
            item.value.reset()
        self._done = False

    def format_diff(self) -> str:
        """Human-readable listing of this pass's changes."""
        lines = ["-----"]
        for item in self.changed():
            state = "C" if item.created() else "U"
            lines.append(f"{state} {item.key} => {_go_quote(str(item.value))}")
        lines.extend(f"D {item.key}" for item in self.deleted())
        if len(lines) == 1:
            lines.append("<same>")
        return "\n".join(lines) + "\n"


def new_any_store(equal: Callable[[Any, Any], bool]) -> Store[Any, AnyLeaf[Any]]:
    return Store(lambda: AnyLeaf(equal))


def new_buffer_store() -> Store[Any, BufferLeaf]:
    return Store(BufferLeaf)


def new_json_store() -> Store[Any, JSONLeaf[Any]]:
    return Store(JSONLeaf)