"""
chunkdb — read-only extraction of chunks from .chunkdb containers.

A .chunkdb container bundles many content-addressed chunks of a patch payload
behind a small index of chunk locations. This package provides:

- Container parsing: magic check, header fields, bounds-checked location index.
- Chunk decoding: per-offset header validation and payload reconstruction
  (stored or deflate-compressed), decoded lazily one chunk at a time.
- Optional SHA1 verification of decoded chunks (via PyCryptodomex).
- Batch extraction with per-chunk error collection and atomic output writes.
- A CLI (`chunkdb extract|list|info|verify`).

Encrypted chunks are recognized and rejected; containers are never written.
"""

__version__ = "0.1"

__all__ = [
    "constants",
    "errors",
    "guid",
    "records",
    "database",
    "decoder",
    "reader",
    "extract",
]

# Programmatic API: chunkdb.database.parse_container, chunkdb.decoder.decode_chunk_at,
# chunkdb.reader.ChunkDBReader and chunkdb.extract.extract_all.
