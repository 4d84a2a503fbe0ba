"""Write batches: an encoded sequence of put and delete records."""

from __future__ import annotations

import enum
import struct
from dataclasses import dataclass
from typing import BinaryIO, Callable, Iterable, Iterator, NamedTuple, Protocol

__all__ = [
    "KeyType",
    "BatchCorruptedError",
    "BatchReplay",
    "BatchConfig",
    "Batch",
    "BATCH_HEADER_LEN",
    "BATCH_GROW_LIMIT",
    "make_batch",
    "make_batch_with_config",
    "decode_batch",
    "encode_batch_header",
    "decode_batch_header",
    "batches_len",
    "write_batches_with_header",
]

BATCH_HEADER_LEN = 8 + 4
BATCH_GROW_LIMIT = 3000

_HEADER = struct.Struct("<QI")
_MAX_VARINT_LEN64 = 10


class KeyType(enum.IntEnum):
    """Kind of a batch record."""

    DEL = 0
    VAL = 1


class BatchCorruptedError(ValueError):
    """Raised when encoded batch data cannot be decoded."""

    def __init__(self, reason: str) -> None:
        super().__init__(f"leveldb: batch corrupted: {reason}")
        self.reason = reason


class BatchReplay(Protocol):
    """Receiver of replayed batch operations."""

    def put(self, key: bytes, value: bytes) -> None:
        """Receive a put of ``key`` to ``value``."""

    def delete(self, key: bytes) -> None:
        """Receive a deletion of ``key``."""


@dataclass
class BatchConfig:
    """Options for a new batch.

    ``initial_capacity`` is the number of bytes to reserve up front and
    ``grow_limit`` the entry count after which growth slows down; zero means
    the defaults (no reservation, ``BATCH_GROW_LIMIT``).
    """

    initial_capacity: int = 0
    grow_limit: int = 0


class _Index(NamedTuple):
    key_type: KeyType
    key_pos: int
    key_len: int
    value_pos: int
    value_len: int

    def key(self, data: bytes | bytearray) -> bytes:
        return bytes(data[self.key_pos : self.key_pos + self.key_len])

    def value(self, data: bytes | bytearray) -> bytes | None:
        if self.key_type is not KeyType.VAL:
            return None
        return bytes(data[self.value_pos : self.value_pos + self.value_len])

    def shifted(self, offset: int) -> "_Index":
        return self._replace(key_pos=self.key_pos + offset, value_pos=self.value_pos + offset)


def _put_uvarint(out: bytearray, x: int) -> None:
    while x >= 0x80:
        out.append((x & 0x7F) | 0x80)
        x >>= 7
    out.append(x)


def _read_uvarint(data: bytes | bytearray, pos: int) -> tuple[int, int]:
    """Decode a varint at ``pos``; the count is 0 if truncated, negative on overflow."""
    x = 0
    shift = 0
    for i, b in enumerate(data[pos : pos + _MAX_VARINT_LEN64 + 1]):
        if i == _MAX_VARINT_LEN64:
            return 0, -(i + 1)
        if b < 0x80:
            if i == _MAX_VARINT_LEN64 - 1 and b > 1:
                return 0, -(i + 1)
            return x | (b << shift), i + 1
        x |= (b & 0x7F) << shift
        shift += 7
    return 0, 0


def _decode_indices(data: bytes | bytearray) -> Iterator[_Index]:
    pos = 0
    size = len(data)
    while pos < size:
        raw_type = data[pos]
        if raw_type > KeyType.VAL:
            raise BatchCorruptedError(f"bad record: invalid type {raw_type:#x}")
        key_type = KeyType(raw_type)
        pos += 1

        key_len, n = _read_uvarint(data, pos)
        pos += n
        if n <= 0 or pos + key_len > size:
            raise BatchCorruptedError("bad record: invalid key length")
        key_pos = pos
        pos += key_len

        value_pos = value_len = 0
        if key_type is KeyType.VAL:
            value_len, n = _read_uvarint(data, pos)
            pos += n
            if n <= 0 or pos + value_len > size:
                raise BatchCorruptedError("bad record: invalid value length")
            value_pos = pos
            pos += value_len

        yield _Index(key_type, key_pos, key_len, value_pos, value_len)


def decode_batch(data: bytes) -> Iterator[tuple[KeyType, bytes, bytes | None]]:
    """Yield ``(key_type, key, value)`` for each record of encoded batch data.

    The value is None for deletions. Raises BatchCorruptedError on bad data.
    """
    for index in _decode_indices(data):
        yield index.key_type, index.key(data), index.value(data)


class Batch:
    """An ordered collection of put and delete operations."""

    def __init__(self, *, grow_limit: int = 0) -> None:
        self._data = bytearray()
        self._index: list[_Index] = []
        self._internal_len = 0
        # Growth tuning hint; buffer growth is left to bytearray.
        self.grow_limit = grow_limit if grow_limit > 0 else BATCH_GROW_LIMIT

    def _append_record(self, key_type: KeyType, key: bytes, value: bytes | None) -> None:
        key = bytes(key)
        self._data.append(key_type)
        _put_uvarint(self._data, len(key))
        key_pos = len(self._data)
        self._data += key
        value_pos = value_len = 0
        if key_type is KeyType.VAL:
            value = bytes(value or b"")
            _put_uvarint(self._data, len(value))
            value_pos = len(self._data)
            value_len = len(value)
            self._data += value
        index = _Index(key_type, key_pos, len(key), value_pos, value_len)
        self._index.append(index)
        self._internal_len += index.key_len + index.value_len + 8

    def put(self, key: bytes, value: bytes) -> None:
        """Append a put of ``key`` to ``value``."""
        self._append_record(KeyType.VAL, key, value)

    def delete(self, key: bytes) -> None:
        """Append a deletion of ``key``."""
        self._append_record(KeyType.DEL, key, None)

    def dump(self) -> bytes:
        """Return the encoded records; ``load`` accepts the result."""
        return bytes(self._data)

    def load(self, data: bytes) -> None:
        """Replace the batch contents with encoded records."""
        self._decode(data, -1)

    def _decode(self, data: bytes, expected_len: int) -> None:
        data = bytearray(data)
        index = list(_decode_indices(data))
        if expected_len >= 0 and len(index) != expected_len:
            raise BatchCorruptedError(
                f"invalid records length: {expected_len} vs {len(index)}"
            )
        self._data = data
        self._index = index
        self._internal_len = sum(i.key_len + i.value_len + 8 for i in index)

    def replay(self, replay: BatchReplay) -> None:
        """Send every operation, in order, to ``replay``."""
        for index in self._index:
            if index.key_type is KeyType.VAL:
                replay.put(index.key(self._data), index.value(self._data))
            else:
                replay.delete(index.key(self._data))

    def replay_internal(
        self, fn: Callable[[int, KeyType, bytes, bytes | None], None]
    ) -> None:
        """Call ``fn(i, key_type, key, value)`` for every record; value is None for deletes."""
        for i, index in enumerate(self._index):
            fn(i, index.key_type, index.key(self._data), index.value(self._data))

    def append(self, other: "Batch") -> None:
        """Append all records of ``other`` to this batch."""
        offset = len(self._data)
        self._data += other._data
        self._index.extend(index.shifted(offset) for index in other._index)
        self._internal_len += other._internal_len

    def reset(self) -> None:
        """Remove all records."""
        self._data.clear()
        self._index.clear()
        self._internal_len = 0

    def __len__(self) -> int:
        return len(self._index)

    def internal_len(self) -> int:
        """Sum of key and value lengths plus 8 bytes per record."""
        return self._internal_len


def make_batch(n: int) -> Batch:
    """Return an empty batch sized for about ``n`` bytes."""
    return Batch()


def make_batch_with_config(config: BatchConfig | None) -> Batch:
    """Return an empty batch configured by ``config``."""
    if config is None:
        return Batch()
    return Batch(grow_limit=config.grow_limit)


def encode_batch_header(seq: int, batch_len: int) -> bytes:
    """Encode a sequence number and record count as a 12-byte header."""
    return _HEADER.pack(seq, batch_len & 0xFFFFFFFF)


def decode_batch_header(data: bytes) -> tuple[int, int]:
    """Decode a header into ``(seq, batch_len)``."""
    if len(data) < BATCH_HEADER_LEN:
        raise BatchCorruptedError("too short")
    return _HEADER.unpack_from(data)


def batches_len(batches: Iterable[Batch]) -> int:
    """Total number of records in ``batches``."""
    return sum(len(batch) for batch in batches)


def write_batches_with_header(writer: BinaryIO, batches: list[Batch], seq: int) -> None:
    """Write a header followed by the records of every batch."""
    writer.write(encode_batch_header(seq, batches_len(batches)))
    for batch in batches:
        writer.write(batch.dump())