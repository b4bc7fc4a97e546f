"""
Case-insensitive containers for service-plan ids and product names.

Equality is defined once here (``str.casefold``) so that the index builder,
query engine and classifier all agree on what "the same id" means.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator, MutableMapping, MutableSet
from typing import Any, Optional


def ci_key(value: str) -> str:
    """Canonical comparison key for a case-insensitive string."""
    return value.casefold()


class CaseInsensitiveSet(MutableSet):
    """A set of strings compared case-insensitively; keeps first-seen casing."""

    def __init__(self, values: Optional[Iterable[str]] = None):
        self._items: dict[str, str] = {}
        for v in values or ():
            self.add(v)

    def __contains__(self, value: object) -> bool:
        return isinstance(value, str) and ci_key(value) in self._items

    def __iter__(self) -> Iterator[str]:
        return iter(self._items.values())

    def __len__(self) -> int:
        return len(self._items)

    def add(self, value: str) -> None:
        self._items.setdefault(ci_key(value), value)

    def discard(self, value: str) -> None:
        self._items.pop(ci_key(value), None)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, CaseInsensitiveSet):
            return self._items.keys() == other._items.keys()
        if isinstance(other, (set, frozenset)):
            return self._items.keys() == {ci_key(v) for v in other}
        return NotImplemented

    __hash__ = None  # mutable

    def __repr__(self) -> str:
        return f"CaseInsensitiveSet({sorted(self._items.values())!r})"


class CaseInsensitiveDict(MutableMapping):
    """A str-keyed mapping whose key lookups ignore case."""

    def __init__(self, data: Optional[Iterable[tuple[str, Any]]] = None):
        self._store: dict[str, tuple[str, Any]] = {}
        for k, v in data or ():
            self[k] = v

    def __getitem__(self, key: str) -> Any:
        return self._store[ci_key(key)][1]

    def __setitem__(self, key: str, value: Any) -> None:
        existing = self._store.get(ci_key(key))
        original = existing[0] if existing else key
        self._store[ci_key(key)] = (original, value)

    def __delitem__(self, key: str) -> None:
        del self._store[ci_key(key)]

    def __iter__(self) -> Iterator[str]:
        return (original for original, _ in self._store.values())

    def __len__(self) -> int:
        return len(self._store)

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and ci_key(key) in self._store

    def __repr__(self) -> str:
        return f"CaseInsensitiveDict({dict(self.items())!r})"
