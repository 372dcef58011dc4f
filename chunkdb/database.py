from __future__ import annotations

import struct
from dataclasses import dataclass
from typing import BinaryIO, Optional, Tuple

from .constants import CHUNKDB_HEADER_MAGIC, DEFAULT_MAX_CHUNKS
from .errors import BadContainerMagic, ChunkCountError
from .records import (
    DB_HEADER_SIZE,
    LOCATION_SIZE,
    ChunkLocation,
    read_exact,
    read_location,
)


_MAGIC_STRUCT = struct.Struct("<I")
_DB_FIELDS_STRUCT = struct.Struct("<IIQi")


@dataclass(frozen=True)
class ContainerHeader:
    magic: int
    version: int
    header_size: int
    data_size: int
    chunk_count: int
    locations: Tuple[ChunkLocation, ...]


def parse_container(
    f: BinaryIO,
    *,
    max_chunks: int = DEFAULT_MAX_CHUNKS,
    file_size: Optional[int] = None,
) -> ContainerHeader:
    """
    Parses the container header and its chunk location index.

    The header is read from the start of the stream:
    1.  Magic (must be 0xB1FE3AA3), version, header size, data size and
        chunk count, all little-endian.
    2.  `chunk_count` location entries, read back to back.

    The chunk count is checked against `max_chunks` and, when `file_size` is
    given, against the space left in the file before anything is allocated.
    The stream position afterwards is unspecified; seek before reading chunks.

    Raises:
        BadContainerMagic: the leading 4 bytes are not the container magic.
        ChunkCountError: the declared chunk count is negative or implausible.
        TruncatedRead: the stream ended inside the header or index.
    """
    f.seek(0)
    (magic,) = _MAGIC_STRUCT.unpack(read_exact(f, _MAGIC_STRUCT.size, what="container magic"))
    if magic != CHUNKDB_HEADER_MAGIC:
        raise BadContainerMagic(f"Bad container magic 0x{magic:08X}", offset=0)
    raw = read_exact(f, DB_HEADER_SIZE - _MAGIC_STRUCT.size, what="container header")
    version, header_size, data_size, chunk_count = _DB_FIELDS_STRUCT.unpack(raw)
    if chunk_count < 0:
        raise ChunkCountError(f"Negative chunk count: {chunk_count}", offset=DB_HEADER_SIZE - 4)
    if chunk_count > max_chunks:
        raise ChunkCountError(f"Chunk count {chunk_count} exceeds limit {max_chunks}", offset=DB_HEADER_SIZE - 4)
    if file_size is not None and DB_HEADER_SIZE + chunk_count * LOCATION_SIZE > file_size:
        raise ChunkCountError(
            f"Chunk count {chunk_count} does not fit in a {file_size}-byte file", offset=DB_HEADER_SIZE - 4
        )
    locations = tuple(read_location(f) for _ in range(chunk_count))
    return ContainerHeader(
        magic=magic,
        version=version,
        header_size=header_size,
        data_size=data_size,
        chunk_count=chunk_count,
        locations=locations,
    )
