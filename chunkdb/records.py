from __future__ import annotations

import struct
import sys
from dataclasses import dataclass
from typing import BinaryIO

from .constants import CHUNK_HEADER_MAGIC, HashFlags, StorageFlags
from .errors import BadChunkMagic, ChunkBoundsError, ReadFailure, TruncatedRead
from .guid import ChunkId


# Container header (fixed 24 bytes)
# struct: <I I I Q i
#  - magic u32
#  - version u32
#  - header_size u32
#  - data_size u64
#  - chunk_count i32
_DB_HDR_STRUCT = struct.Struct("<IIIQi")

# Location entry (28 bytes): guid[4 x u32], byte_start u64, byte_size i32
_LOCATION_STRUCT = struct.Struct("<IIIIQi")

# Chunk header (fixed 62 bytes)
# struct: <I I I I 16s Q B 20s B
#  - magic u32
#  - version u32
#  - header_size u32
#  - data_size_compressed u32
#  - guid[16]
#  - rolling_hash u64
#  - stored_as u8
#  - sha_hash[20]
#  - hash_type u8
_CHUNK_HDR_STRUCT = struct.Struct("<IIII16sQB20sB")

DB_HEADER_SIZE = _DB_HDR_STRUCT.size
LOCATION_SIZE = _LOCATION_STRUCT.size
CHUNK_HEADER_SIZE = _CHUNK_HDR_STRUCT.size


@dataclass(frozen=True)
class ChunkLocation:
    chunk_id: ChunkId
    byte_start: int
    byte_size: int


@dataclass(frozen=True)
class ChunkHeader:
    magic: int
    version: int
    header_size: int
    data_size_compressed: int
    chunk_id: ChunkId
    rolling_hash: int
    stored_as: StorageFlags
    sha_hash: bytes
    hash_type: HashFlags

    @property
    def extent(self) -> int:
        """Bytes covered by this record on disk (fixed header plus payload)."""
        return CHUNK_HEADER_SIZE + self.data_size_compressed


def read_exact(f: BinaryIO, n: int, *, what: str = "data") -> bytes:
    try:
        offset = f.tell()
        b = f.read(n)
    except OSError as exc:
        raise ReadFailure(f"I/O error reading {what}: {exc}")
    if len(b) != n:
        raise TruncatedRead(f"Unexpected EOF reading {what}: wanted {n} bytes, got {len(b)}", offset=offset)
    return b


def read_location(f: BinaryIO) -> ChunkLocation:
    a, b, c, d, byte_start, byte_size = _LOCATION_STRUCT.unpack(read_exact(f, LOCATION_SIZE, what="chunk location"))
    return ChunkLocation(chunk_id=ChunkId(a, b, c, d), byte_start=byte_start, byte_size=byte_size)


def read_chunk_header(f: BinaryIO) -> ChunkHeader:
    try:
        offset = f.tell()
    except OSError as exc:
        raise ReadFailure(f"I/O error locating chunk header: {exc}")
    fixed = read_exact(f, CHUNK_HEADER_SIZE, what="chunk header")
    magic, version, header_size, size_c, guid, rolling, stored_as, sha, hash_type = _CHUNK_HDR_STRUCT.unpack(fixed)
    if magic != CHUNK_HEADER_MAGIC:
        raise BadChunkMagic(f"Bad chunk magic 0x{magic:08X}", offset=offset)
    return ChunkHeader(
        magic=magic,
        version=version,
        header_size=header_size,
        data_size_compressed=size_c,
        chunk_id=ChunkId.unpack(guid),
        rolling_hash=rolling,
        stored_as=StorageFlags(stored_as),
        sha_hash=sha,
        hash_type=HashFlags(hash_type),
    )


def read_chunk_header_at(f: BinaryIO, offset: int) -> ChunkHeader:
    # Offsets come from an untrusted index; seek() only takes a signed 64-bit value
    if offset < 0 or offset > sys.maxsize:
        raise ChunkBoundsError(f"Chunk offset {offset} is not addressable", offset=offset)
    try:
        f.seek(offset)
    except OSError as exc:
        raise ReadFailure(f"I/O error seeking to chunk header: {exc}", offset=offset)
    return read_chunk_header(f)

