"""Key orderings used to sort and shorten keys."""

from __future__ import annotations

from abc import ABC, abstractmethod

__all__ = ["Comparer", "BytesComparer", "DEFAULT_COMPARER"]


class Comparer(ABC):
    """A total ordering over byte-string keys."""

    @abstractmethod
    def name(self) -> str:
        """Return the comparer's name.

        The on-disk format stores this name; opening a database with a
        comparer of a different name is an error. Names starting with
        ``leveldb.`` are reserved.
        """

    @abstractmethod
    def compare(self, a: bytes, b: bytes) -> int:
        """Return -1, 0 or +1 as ``a`` is less than, equal to or greater than ``b``.

        Keys compare equal only when their contents are equal, and the empty
        key is less than any non-empty key.
        """

    @abstractmethod
    def separator(self, a: bytes, b: bytes) -> bytes | None:
        """Return a short key ``x`` with ``a <= x < b``, or None if ``x`` would equal ``a``."""

    @abstractmethod
    def successor(self, b: bytes) -> bytes | None:
        """Return a short key ``x`` with ``x >= b``, or None if ``x`` would equal ``b``."""


class BytesComparer(Comparer):
    """Orders keys by plain lexicographic byte comparison."""

    def name(self) -> str:
        return "leveldb.BytewiseComparator"

    def compare(self, a: bytes, b: bytes) -> int:
        a, b = bytes(a), bytes(b)
        return (a > b) - (a < b)

    def separator(self, a: bytes, b: bytes) -> bytes | None:
        a, b = bytes(a), bytes(b)
        limit = min(len(a), len(b))
        i = next((pos for pos in range(limit) if a[pos] != b[pos]), limit)
        if i >= limit:
            # One key is a prefix of the other: no shortening.
            return None
        c = a[i]
        if c < 0xFF and c + 1 < b[i]:
            return a[:i] + bytes([c + 1])
        return None

    def successor(self, b: bytes) -> bytes | None:
        b = bytes(b)
        for i, c in enumerate(b):
            if c != 0xFF:
                return b[:i] + bytes([c + 1])
        return None


DEFAULT_COMPARER = BytesComparer()