"""A reference-counted cache map keyed by namespace and key."""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from bisect import bisect_left
from dataclasses import dataclass
from typing import Any, Callable, Optional, Tuple

__all__ = [
    "Cacher",
    "CacheStats",
    "Node",
    "Handle",
    "Cache",
    "NamespaceGetter",
    "murmur32",
]

_INITIAL_SIZE = 1 << 4
_OVERFLOW_THRESHOLD = 1 << 5
_OVERFLOW_GROW_THRESHOLD = 1 << 7

_MASK32 = 0xFFFFFFFF
_MASK64 = 0xFFFFFFFFFFFFFFFF
_HASH_SEED = 0xF00

SetFunc = Callable[[], Tuple[int, Any]]


def murmur32(ns: int, key: int, seed: int) -> int:
    """Hash a 64-bit namespace and a 64-bit key into 32 bits."""
    m = 0x5BD1E995
    ns &= _MASK64
    key &= _MASK64

    def mix(k: int) -> int:
        k = (k * m) & _MASK32
        k ^= k >> 24
        return (k * m) & _MASK32

    parts = (
        mix(ns >> 32),
        mix(ns & _MASK32),
        mix(key >> 32),
        mix(key & _MASK32),
    )
    h = seed & _MASK32
    for k in parts:
        h = (h * m) & _MASK32
        h ^= k
    h ^= h >> 13
    h = (h * m) & _MASK32
    h ^= h >> 15
    return h


def _release_value(value: Any) -> None:
    release = getattr(value, "release", None)
    if callable(release):
        release()


def _node_order(node: "Node") -> tuple[int, int]:
    return node._ns, node._key


def _search(nodes: list["Node"], ns: int, key: int) -> int:
    return bisect_left(nodes, (ns, key), key=_node_order)


class Cacher(ABC):
    """Caching policy attached to a Cache. Implementations must be thread safe."""

    @abstractmethod
    def capacity(self) -> int:
        """Return the cache capacity."""

    @abstractmethod
    def set_capacity(self, capacity: int) -> None:
        """Set the cache capacity."""

    @abstractmethod
    def promote(self, node: "Node") -> None:
        """Promote the node."""

    @abstractmethod
    def ban(self, node: "Node") -> None:
        """Evict the node and prevent any later promotion of it."""

    @abstractmethod
    def evict(self, node: "Node") -> None:
        """Evict the node."""


@dataclass(frozen=True)
class CacheStats:
    """Counters describing a cache map."""

    buckets: int
    nodes: int
    size: int
    grow_count: int
    shrink_count: int
    hit_count: int
    miss_count: int
    set_count: int
    del_count: int


class Node:
    """A cache node. ``cache_data`` is free for the cacher's use."""

    def __init__(self, cache: "Cache", hash_: int, ns: int, key: int) -> None:
        self._cache = cache
        self._hash = hash_
        self._ns = ns
        self._key = key
        self._lock = threading.Lock()
        self._size = 0
        self._value: Any = None
        self._ref = 1
        self._del_funcs: list[Callable[[], None]] = []
        self.cache_data: Any = None

    def ns(self) -> int:
        """Return the node's namespace."""
        return self._ns

    def key(self) -> int:
        """Return the node's key."""
        return self._key

    def size(self) -> int:
        """Return the node's size."""
        return self._size

    def value(self) -> Any:
        """Return the node's value."""
        return self._value

    def ref(self) -> int:
        """Return the node's reference count."""
        with self._cache._lock:
            return self._ref

    def get_handle(self) -> "Handle":
        """Return a new handle to this node; the node must be referenced."""
        with self._cache._lock:
            self._ref += 1
            if self._ref <= 1:
                self._ref -= 1
                raise RuntimeError("BUG: Node.get_handle on zero ref")
        return Handle(self)

    def _call_finalizer(self) -> None:
        value, self._value = self._value, None
        if value is not None:
            _release_value(value)
        del_funcs, self._del_funcs = self._del_funcs, []
        for func in del_funcs:
            func()

    def _unref_internal(self, update_stat: bool) -> None:
        cache = self._cache
        with cache._lock:
            self._ref -= 1
            zero = self._ref == 0
        if zero:
            cache._delete(self)
            if update_stat:
                with cache._lock:
                    cache._stat_del += 1

    def _unref_external(self) -> None:
        cache = self._cache
        with cache._lock:
            self._ref -= 1
            zero = self._ref == 0
            closed = cache._closed
        if not zero:
            return
        if closed:
            self._call_finalizer()
        else:
            cache._delete(self)
            with cache._lock:
                cache._stat_del += 1


class Handle:
    """A reference to a cache node; release it after use."""

    def __init__(self, node: Node) -> None:
        self._node: Optional[Node] = node
        self._lock = threading.Lock()

    def value(self) -> Any:
        """Return the node's value, or None once released."""
        node = self._node
        return node._value if node is not None else None

    def release(self) -> None:
        """Release the handle. Calling it more than once is harmless."""
        with self._lock:
            node, self._node = self._node, None
        if node is not None:
            node._unref_external()


class Cache:
    """A map of reference-counted nodes, optionally managed by a Cacher."""

    def __init__(self, cacher: Optional[Cacher] = None) -> None:
        self._cacher = cacher
        self._lock = threading.RLock()
        self._closed = False
        self._buckets: list[list[Node]] = [[] for _ in range(_INITIAL_SIZE)]
        self._mask = _INITIAL_SIZE - 1
        self._grow_threshold = _INITIAL_SIZE * _OVERFLOW_THRESHOLD
        self._shrink_threshold = 0
        self._overflow = 0

        self._stat_nodes = 0
        self._stat_size = 0
        self._stat_grow = 0
        self._stat_shrink = 0
        self._stat_hit = 0
        self._stat_miss = 0
        self._stat_set = 0
        self._stat_del = 0

    # Table internals; all of these expect self._lock to be held.

    def _resize(self, new_len: int) -> None:
        mask = new_len - 1
        buckets: list[list[Node]] = [[] for _ in range(new_len)]
        for bucket in self._buckets:
            for node in bucket:
                buckets[node._hash & mask].append(node)
        for bucket in buckets:
            bucket.sort(key=_node_order)
        self._buckets = buckets
        self._mask = mask
        self._grow_threshold = new_len * _OVERFLOW_THRESHOLD
        self._shrink_threshold = new_len >> 1
        self._overflow = 0

    def _lookup(self, hash_: int, ns: int, key: int, create: bool) -> tuple[Optional[Node], bool]:
        bucket = self._buckets[hash_ & self._mask]
        i = _search(bucket, ns, key)
        if i < len(bucket):
            node = bucket[i]
            if node._ns == ns and node._key == key:
                node._ref += 1
                return node, False
        if not create:
            return None, False

        node = Node(self, hash_, ns, key)
        bucket.insert(i, node)
        self._stat_nodes += 1
        grow = self._stat_nodes >= self._grow_threshold
        if len(bucket) > _OVERFLOW_THRESHOLD:
            self._overflow += 1
            grow = grow or self._overflow >= _OVERFLOW_GROW_THRESHOLD
        if grow:
            self._resize(len(self._buckets) << 1)
            self._stat_grow += 1
        return node, True

    def _delete(self, node: Node) -> bool:
        with self._lock:
            bucket = self._buckets[node._hash & self._mask]
            i = _search(bucket, node._ns, node._key)
            if i >= len(bucket):
                return False
            found = bucket[i]
            if found._ns != node._ns or found._key != node._key or found._ref != 0:
                return False

            value, found._value = found._value, None
            if value is not None:
                _release_value(value)
            del bucket[i]
            bucket_len = len(bucket)

            self._stat_size -= found._size
            self._stat_nodes -= 1
            if bucket_len >= _OVERFLOW_THRESHOLD:
                self._overflow -= 1
            if (
                self._stat_nodes < self._shrink_threshold
                and len(self._buckets) > _INITIAL_SIZE
            ):
                self._resize(len(self._buckets) >> 1)
                self._stat_shrink += 1
            del_funcs = list(found._del_funcs)

        for func in del_funcs:
            func()
        return True

    def _all_nodes(self) -> list[Node]:
        with self._lock:
            return [node for bucket in self._buckets for node in bucket]

    # Public interface.

    def get_stats(self) -> CacheStats:
        """Return a snapshot of the cache counters."""
        with self._lock:
            return CacheStats(
                buckets=len(self._buckets),
                nodes=self._stat_nodes,
                size=self._stat_size,
                grow_count=self._stat_grow,
                shrink_count=self._stat_shrink,
                hit_count=self._stat_hit,
                miss_count=self._stat_miss,
                set_count=self._stat_set,
                del_count=self._stat_del,
            )

    def nodes(self) -> int:
        """Return the number of nodes in the map."""
        with self._lock:
            return self._stat_nodes

    def size(self) -> int:
        """Return the sum of the node sizes in the map."""
        with self._lock:
            return self._stat_size

    def capacity(self) -> int:
        """Return the cacher's capacity, or 0 without a cacher."""
        if self._cacher is None:
            return 0
        return self._cacher.capacity()

    def set_capacity(self, capacity: int) -> None:
        """Set the cacher's capacity; does nothing without a cacher."""
        if self._cacher is not None:
            self._cacher.set_capacity(capacity)

    def get(self, ns: int, key: int, set_func: Optional[SetFunc] = None) -> Optional[Handle]:
        """Return a handle to the node for ``ns``/``key``.

        If the node is missing and ``set_func`` is given, it is created with
        the ``(size, value)`` that ``set_func`` returns. Returns None if the
        node is missing and cannot be created, or if the cache is closed.
        """
        if self._closed:
            return None
        hash_ = murmur32(ns, key, _HASH_SEED)
        with self._lock:
            if self._closed:
                return None
            node, created = self._lookup(hash_, ns, key, set_func is not None)
            if created or node is None:
                self._stat_miss += 1
            else:
                self._stat_hit += 1
        if node is None:
            return None

        failed = False
        with node._lock:
            if node._value is None:
                if set_func is None:
                    failed = True
                else:
                    size, value = set_func()
                    if value is None:
                        node._size = 0
                        failed = True
                    else:
                        node._size, node._value = size, value
                        with self._lock:
                            self._stat_set += 1
                            self._stat_size += size
        if failed:
            node._unref_internal(False)
            return None

        if self._cacher is not None:
            self._cacher.promote(node)
        return Handle(node)

    def delete(self, ns: int, key: int, del_func: Optional[Callable[[], None]] = None) -> bool:
        """Remove and ban the node for ``ns``/``key``.

        ``del_func`` runs once the node is released, or at once if no such
        node exists. Returns whether the node existed.
        """
        if self._closed:
            return False
        hash_ = murmur32(ns, key, _HASH_SEED)
        with self._lock:
            node, _ = self._lookup(hash_, ns, key, False)
        if node is not None:
            if del_func is not None:
                with node._lock:
                    node._del_funcs.append(del_func)
            if self._cacher is not None:
                self._cacher.ban(node)
            node._unref_internal(True)
            return True
        if del_func is not None:
            del_func()
        return False

    def evict(self, ns: int, key: int) -> bool:
        """Evict the node for ``ns``/``key`` from the cacher; return whether it existed."""
        if self._closed:
            return False
        hash_ = murmur32(ns, key, _HASH_SEED)
        with self._lock:
            node, _ = self._lookup(hash_, ns, key, False)
        if node is None:
            return False
        if self._cacher is not None:
            self._cacher.evict(node)
        node._unref_internal(True)
        return True

    def evict_ns(self, ns: int) -> None:
        """Evict every node of namespace ``ns`` from the cacher."""
        if self._closed or self._cacher is None:
            return
        for node in [n for n in self._all_nodes() if n._ns == ns]:
            self._cacher.evict(node)

    def evict_all(self) -> None:
        """Evict every node from the cacher."""
        if self._closed or self._cacher is None:
            return
        for node in self._all_nodes():
            self._cacher.evict(node)

    def close(self, force: bool = False) -> None:
        """Close the map; later operations do nothing.

        Every node is evicted from the cacher. With ``force`` every node is
        finalized at once, even if it is still referenced.
        """
        with self._lock:
            if self._closed:
                return
            self._closed = True
            nodes = [node for bucket in self._buckets for node in bucket]
            if force:
                for node in nodes:
                    node._ref = 0
        for node in nodes:
            if self._cacher is not None:
                self._cacher.evict(node)
            if force:
                node._call_finalizer()


@dataclass
class NamespaceGetter:
    """Binds a cache to a single namespace."""

    cache: Cache
    ns: int

    def get(self, key: int, set_func: Optional[SetFunc] = None) -> Optional[Handle]:
        """Same as ``cache.get(ns, key, set_func)``."""
        return self.cache.get(self.ns, key, set_func)