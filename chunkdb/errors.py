from __future__ import annotations

from typing import Optional


class ChunkDBError(Exception):
    """Base class for chunkdb errors.

    Carries enough context (container path, byte offset, chunk id) for a
    caller to attribute the failure to a specific file and chunk.
    """

    def __init__(
        self,
        message: str,
        *,
        path: Optional[str] = None,
        offset: Optional[int] = None,
        chunk_id=None,
    ):
        super().__init__(message)
        self.message = message
        self.path = path
        self.offset = offset
        self.chunk_id = chunk_id

    def __str__(self) -> str:
        parts = [self.message]
        if self.chunk_id is not None:
            parts.append(f"chunk={self.chunk_id}")
        if self.offset is not None:
            parts.append(f"offset={self.offset}")
        if self.path is not None:
            parts.append(f"file={self.path}")
        if len(parts) == 1:
            return self.message
        return f"{parts[0]} ({', '.join(parts[1:])})"


# Structural/format errors
class FormatError(ChunkDBError):
    pass


class BadContainerMagic(FormatError):
    pass


class BadChunkMagic(FormatError):
    pass


class TruncatedRead(FormatError):
    pass


class ChunkCountError(FormatError):
    pass


class ChunkBoundsError(FormatError):
    pass


# Underlying stream I/O
class ReadFailure(ChunkDBError):
    pass


# Payload decoding
class DecompressionFailure(ChunkDBError):
    pass


class UnsupportedEncryptedChunk(ChunkDBError):
    pass


class UnsupportedStorageFlags(ChunkDBError):
    pass


class HashMismatch(ChunkDBError):
    pass


# Output
class WriteFailure(ChunkDBError):
    pass
