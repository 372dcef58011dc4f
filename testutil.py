from __future__ import annotations

import struct
import zlib
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence

from chunkdb.constants import CHUNK_HEADER_MAGIC, CHUNKDB_HEADER_MAGIC, HashFlags, StorageFlags
from chunkdb.guid import ChunkId
from chunkdb.hashutil import sha1_20


_DB_HDR = struct.Struct("<IIIQi")
_LOC = struct.Struct("<IIIIQi")
_CHUNK_HDR = struct.Struct("<IIII16sQB20sB")


def raw_deflate(data: bytes, level: int = 6) -> bytes:
    c = zlib.compressobj(level, zlib.DEFLATED, -zlib.MAX_WBITS)
    return c.compress(data) + c.flush()


@dataclass
class FakeChunk:
    chunk_id: ChunkId
    data: bytes
    stored_as: int = StorageFlags.NONE
    payload: Optional[bytes] = None
    magic: int = CHUNK_HEADER_MAGIC
    hash_type: int = HashFlags.SHA1
    sha_hash: Optional[bytes] = None
    index_id: Optional[ChunkId] = None
    index_size: Optional[int] = None

    def stored_payload(self) -> bytes:
        if self.payload is not None:
            return self.payload
        if self.stored_as & StorageFlags.COMPRESSED:
            return raw_deflate(self.data)
        return self.data

    def record(self) -> bytes:
        payload = self.stored_payload()
        sha = self.sha_hash if self.sha_hash is not None else sha1_20(self.data)
        hdr = _CHUNK_HDR.pack(
            self.magic,
            3,
            _CHUNK_HDR.size,
            len(payload),
            self.chunk_id.pack(),
            0,
            int(self.stored_as),
            sha,
            int(self.hash_type),
        )
        return hdr + payload


def build_container(chunks: Sequence[FakeChunk], *, magic: int = CHUNKDB_HEADER_MAGIC, gap: int = 0) -> bytes:
    """Lay out a container: header, index, then each chunk record.

    `gap` inserts filler bytes between the index and the first record so
    readers cannot rely on the payload following the index directly.
    """
    records = [c.record() for c in chunks]
    index_size = _DB_HDR.size + _LOC.size * len(chunks)
    offset = index_size + gap
    locs: List[bytes] = []
    for c, rec in zip(chunks, records):
        cid = c.index_id or c.chunk_id
        size = c.index_size if c.index_size is not None else len(rec)
        locs.append(_LOC.pack(cid.a, cid.b, cid.c, cid.d, offset, size))
        offset += len(rec)
    body = b"".join(records)
    header = _DB_HDR.pack(magic, 1, index_size, len(body), len(chunks))
    return header + b"".join(locs) + b"\xEE" * gap + body


def write_container(path: Path, chunks: Sequence[FakeChunk], **kw) -> Path:
    path.write_bytes(build_container(chunks, **kw))
    return path