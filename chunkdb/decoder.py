from __future__ import annotations

from dataclasses import dataclass, field
from typing import BinaryIO, List, Optional

from .codec import Codec
from .constants import HashFlags
from .errors import ChunkBoundsError, ChunkDBError, HashMismatch
from .guid import ChunkId
from .hashutil import sha1_20
from .records import CHUNK_HEADER_SIZE, ChunkHeader, read_chunk_header_at, read_exact


@dataclass
class DecodedChunk:
    header: ChunkHeader
    data: bytes
    anomalies: List[str] = field(default_factory=list)

    @property
    def chunk_id(self) -> ChunkId:
        return self.header.chunk_id


def read_chunk_at(
    f: BinaryIO,
    byte_start: int,
    *,
    file_size: Optional[int] = None,
    expected_id: Optional[ChunkId] = None,
    expected_size: Optional[int] = None,
    verify: bool = False,
) -> DecodedChunk:
    """Read and decode the chunk record whose header starts at `byte_start`.

    Args:
        f: Seekable binary stream over the whole container.
        byte_start: Absolute offset of the chunk header.
        file_size: Container size; enables bounds checks before reading.
        expected_id: Id from the index. A different id in the chunk header is
            reported as an anomaly, not an error.
        expected_size: Record size from the index (header plus payload);
            a mismatch is reported as an anomaly.
        verify: Check the decoded bytes against the stored SHA1 when the
            header's hash type includes it.

    Raises:
        ChunkDBError subclasses, annotated with the offset and, when known,
        the chunk id.
    """
    header: Optional[ChunkHeader] = None
    try:
        if file_size is not None and byte_start + CHUNK_HEADER_SIZE > file_size:
            raise ChunkBoundsError(f"Chunk header out of range for a {file_size}-byte file")
        header = read_chunk_header_at(f, byte_start)
        if file_size is not None and byte_start + header.extent > file_size:
            raise ChunkBoundsError(
                f"Chunk payload of {header.data_size_compressed} bytes extends past end of file"
            )
        payload = read_exact(f, header.data_size_compressed, what="chunk payload")
        data = Codec(header.stored_as).decompress(payload)
        if verify and header.hash_type & HashFlags.SHA1 and sha1_20(data) != header.sha_hash:
            raise HashMismatch("Chunk SHA1 mismatch; data corrupted")
    except ChunkDBError as exc:
        # Errors report the record start, not the offset of the failing field
        exc.offset = byte_start
        if exc.chunk_id is None:
            exc.chunk_id = expected_id if expected_id is not None else (header.chunk_id if header else None)
        raise

    anomalies: List[str] = []
    if header.header_size != CHUNK_HEADER_SIZE:
        anomalies.append(f"declared header size {header.header_size} differs from {CHUNK_HEADER_SIZE}")
    if expected_id is not None and header.chunk_id != expected_id:
        anomalies.append(f"chunk header id {header.chunk_id} differs from index id {expected_id}")
    if expected_size is not None and expected_size != header.extent:
        anomalies.append(f"index size {expected_size} differs from record size {header.extent}")
    return DecodedChunk(header=header, data=data, anomalies=anomalies)


def decode_chunk_at(f: BinaryIO, byte_start: int) -> bytes:
    return read_chunk_at(f, byte_start).data
