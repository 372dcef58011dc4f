from __future__ import annotations

from enum import IntFlag


# Magic numbers (little-endian u32 on disk)
CHUNKDB_HEADER_MAGIC = 0xB1FE3AA3
CHUNK_HEADER_MAGIC = 0xB1FE3AA2

CHUNKDB_EXTENSION = ".chunkdb"


class StorageFlags(IntFlag):
    NONE = 0
    COMPRESSED = 1 << 0
    ENCRYPTED = 1 << 1


class HashFlags(IntFlag):
    NONE = 0
    ROLLING_POLY64 = 1 << 0
    SHA1 = 1 << 1


KNOWN_STORAGE_FLAGS = StorageFlags.COMPRESSED | StorageFlags.ENCRYPTED

# The format puts no bound on the location count; refuse anything beyond this.
DEFAULT_MAX_CHUNKS = 1_000_000

# Ceiling on one chunk's inflated size; real chunks are about 1 MiB.
DEFAULT_MAX_CHUNK_SIZE = 256 * 1024 * 1024
