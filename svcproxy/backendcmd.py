"""Registry of backend commands."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable

_registry: list["UseCmd"] = []


@dataclass(frozen=True)
class UseCmd:
    """A backend command name and the factory of its backend.

    The backend made by ``new`` provides ``add_arguments(parser)`` and ``sink()``.
    """

    use: str
    new: Callable[[], Any]


def register(use: str, factory: Callable[[], Any]) -> None:
    """Register a backend under the command name ``use``."""
    _registry.append(UseCmd(use=use, new=factory))


def registered() -> list[UseCmd]:
    """Every registered backend, in registration order."""
    return list(_registry)