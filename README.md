# levelkit

This package provides core pieces of a LevelDB-style key/value storage engine, written in pure Python with no third-party dependencies:

- `levelkit.comparer` defines the `Comparer` abstract base class. It also provides `BytesComparer` and a shared `DEFAULT_COMPARER` instance. `BytesComparer` orders keys bytewise and can compute short separator and successor keys.
- `levelkit.batch` provides `Batch`, a write batch. A batch records put and delete operations in the LevelDB batch record encoding. The module also has helpers for decoding records and for the 12-byte batch header.
- `levelkit.cache` provides `Cache`, a reference-counted node map keyed by `(namespace, key)`. It hands out `Handle` objects and can be paired with a `Cacher` eviction policy.
- `levelkit.lru` provides `LRU`, a least-recently-used `Cacher` that is bounded by total node size.

## Installation

```
pip install .
```

To run the tests:

```
pip install ".[test]"
pytest
```

## Comparers

```python
from levelkit.comparer import BytesComparer

cmp = BytesComparer()
cmp.name()                         # "leveldb.BytewiseComparator"
cmp.compare(b"abc", b"abd")        # -1
cmp.separator(b"abc1", b"abe")     # b"abd"
cmp.successor(b"abc")              # b"b"
```

- `separator(a, b)` returns a key `x` with `a <= x < b`. It returns `None` when no shorter key can be found, for example when one key is a prefix of the other.
- `successor(b)` returns `None` when every byte of `b` is `0xff`.

To define a custom ordering, subclass `Comparer` and implement these four methods:

- `name`
- `compare`
- `separator`
- `successor`

## Write batches

```python
from levelkit.batch import Batch, decode_batch, decode_batch_header, encode_batch_header

batch = Batch()
batch.put(b"apple", b"red")
batch.delete(b"pear")
assert len(batch) == 2
assert batch.internal_len() == (5 + 3 + 8) + (4 + 8)

data = batch.dump()
copy = Batch()
copy.load(data)                    # raises BatchCorruptedError on malformed data

for key_type, key, value in decode_batch(data):
    print(key_type.name, key, value)   # value is None for deletions


class Printer:
    def put(self, key, value):
        print("put", key, value)

    def delete(self, key):
        print("delete", key)


copy.replay(Printer())

header = encode_batch_header(42, len(batch))
assert decode_batch_header(header) == (42, 2)
```

### Other `Batch` methods

- `replay_internal(fn)` calls `fn(i, key_type, key, value)` for each record.
- `append(other)` adds the records of another batch to the end of this one.
- `reset()` empties the batch.

### Module helpers

- `KeyType` is an enum with two members, `DEL` and `VAL`.
- `batches_len(batches)` counts the records across several batches.
- `write_batches_with_header(writer, batches, seq)` writes a header and then the records of every batch to a binary writer.
- `BatchCorruptedError` is a subclass of `ValueError`.

### Construction helpers

The module also has `make_batch(n)` and `make_batch_with_config(BatchConfig(...))`. These helpers create an empty `Batch`. Only the `grow_limit` setting is kept, and only as an attribute. `make_batch` ignores `n`, and `initial_capacity` has no effect, because `bytearray` manages the buffer.

## Cache with LRU eviction

```python
from levelkit.cache import Cache, NamespaceGetter
from levelkit.lru import new_lru

cache = Cache(new_lru(10))

handle = cache.get(0, 1, lambda: (1, "value"))
print(handle.value())        # "value"
handle.release()

hit = cache.get(0, 1, None)  # None if the node is not in the map
if hit is not None:
    hit.release()

cache.delete(0, 1, lambda: print("node gone"))
print(cache.get_stats())
cache.close(True)
```

### Creating and looking up nodes

- `set_func` returns a `(size, value)` pair.
- If `set_func` returns the value `None`, no node is kept and `get` returns `None`.
- When a node is finally dropped, its value's `release()` method is called, if it has one.

### Removing nodes

- `delete(ns, key, del_func)` bans the node from the cacher and returns whether the node existed. `del_func` runs once the node is gone. If no such node exists, `del_func` runs immediately.
- `evict(ns, key)`, `evict_ns(ns)` and `evict_all()` drop nodes from the cacher.

### Closing the cache

`close(force)` makes all later operations do nothing. With `force=True`, every node is finalized at once, even if handles to it are still held.

### Other helpers

- `nodes()`, `size()`, `capacity()` and `set_capacity()` report on the map and adjust it.
- `NamespaceGetter(cache, ns).get(key, set_func)` binds lookups to one namespace.
- `murmur32(ns, key, seed)` is the 32-bit hash the map uses.

### LRU policy

The LRU keeps a handle on each promoted node, as long as the node's size fits within the capacity. It drops the least recently promoted nodes when their total size exceeds the capacity. `LRU.used()` reports the total size currently held.

## What this package does not do

This package is not a database. It has none of the following:

- no on-disk storage
- no journal or table files
- no memtable
- no compaction
- no way to open a database, and no command-line tool

It provides only the comparer, write-batch and cache components described above.