"""Least-recently-used caching policy for the cache map."""

from __future__ import annotations

import threading
from collections import OrderedDict
from dataclasses import dataclass
from typing import Optional

from levelkit.cache import Cacher, Handle, Node

__all__ = ["LRU", "new_lru"]


@dataclass(eq=False)
class _Entry:
    node: Node
    handle: Optional[Handle]
    ban: bool = False


class LRU(Cacher):
    """Keeps the most recently promoted nodes alive up to a total size."""

    def __init__(self, capacity: int) -> None:
        self._lock = threading.Lock()
        self._capacity = capacity
        self._used = 0
        # Least recent first, most recent last.
        self._recent: "OrderedDict[Node, _Entry]" = OrderedDict()

    def _shrink(self) -> list[_Entry]:
        """Drop least recent entries until within capacity; lock must be held."""
        evicted: list[_Entry] = []
        while self._used > self._capacity:
            if not self._recent:
                raise RuntimeError("BUG: invalid LRU used or capacity counter")
            node, entry = self._recent.popitem(last=False)
            node.cache_data = None
            self._used -= node.size()
            evicted.append(entry)
        return evicted

    @staticmethod
    def _release(entries: list[_Entry]) -> None:
        for entry in entries:
            if entry.handle is not None:
                entry.handle.release()

    def capacity(self) -> int:
        """Return the capacity."""
        with self._lock:
            return self._capacity

    def set_capacity(self, capacity: int) -> None:
        """Set the capacity, evicting least recent nodes that no longer fit."""
        with self._lock:
            self._capacity = capacity
            evicted = self._shrink()
        self._release(evicted)

    def used(self) -> int:
        """Return the total size of the nodes currently held."""
        with self._lock:
            return self._used

    def promote(self, node: Node) -> None:
        """Mark ``node`` as most recently used, holding it if it fits."""
        evicted: list[_Entry] = []
        with self._lock:
            entry = node.cache_data
            if entry is None:
                if node.size() <= self._capacity:
                    entry = _Entry(node, node.get_handle())
                    self._recent[node] = entry
                    node.cache_data = entry
                    self._used += node.size()
                    evicted = self._shrink()
            elif not entry.ban:
                self._recent.move_to_end(node)
        self._release(evicted)

    def ban(self, node: Node) -> None:
        """Drop ``node`` and keep it from ever being promoted again."""
        released: Optional[Handle] = None
        with self._lock:
            entry = node.cache_data
            if entry is None:
                node.cache_data = _Entry(node, None, ban=True)
            elif not entry.ban:
                del self._recent[node]
                entry.ban = True
                self._used -= node.size()
                released, entry.handle = entry.handle, None
        if released is not None:
            released.release()

    def evict(self, node: Node) -> None:
        """Drop ``node`` if it is held and not banned."""
        with self._lock:
            entry = node.cache_data
            if entry is None or entry.ban:
                return
            del self._recent[node]
            self._used -= node.size()
            node.cache_data = None
        if entry.handle is not None:
            entry.handle.release()


def new_lru(capacity: int) -> LRU:
    """Return a new LRU policy with the given capacity."""
    return LRU(capacity)