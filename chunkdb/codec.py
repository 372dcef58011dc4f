from __future__ import annotations

import zlib

from .constants import DEFAULT_MAX_CHUNK_SIZE, KNOWN_STORAGE_FLAGS, StorageFlags
from .errors import DecompressionFailure, UnsupportedEncryptedChunk, UnsupportedStorageFlags


def _has_zlib_header(data: bytes) -> bool:
    # RFC 1950: CM=8 (deflate), CINFO<=7, and (CMF*256 + FLG) divisible by 31
    if len(data) < 2:
        return False
    cmf, flg = data[0], data[1]
    return (cmf & 0x0F) == 8 and (cmf >> 4) <= 7 and ((cmf << 8) | flg) % 31 == 0


def _inflate(data: bytes, wbits: int, max_size: int) -> bytes:
    d = zlib.decompressobj(wbits)
    out = bytearray()
    pending = data
    while True:
        # max_length=0 would mean unbounded, so always ask for at least one byte
        out += d.decompress(pending, max_size + 1 - len(out))
        if len(out) > max_size:
            raise DecompressionFailure(f"inflated chunk exceeds {max_size} bytes")
        pending = d.unconsumed_tail
        if not pending or d.eof:
            break
    out += d.flush()
    if len(out) > max_size:
        raise DecompressionFailure(f"inflated chunk exceeds {max_size} bytes")
    if not d.eof:
        raise zlib.error("incomplete or truncated deflate stream")
    return bytes(out)


def inflate(data: bytes, max_size: int = DEFAULT_MAX_CHUNK_SIZE) -> bytes:
    """Inflate a chunk payload, refusing output larger than `max_size`.

    Producers emit zlib-wrapped streams; headerless raw deflate is accepted too.
    A payload that merely looks like it has a zlib header is retried as raw deflate.
    """
    try:
        if _has_zlib_header(data):
            try:
                return _inflate(data, zlib.MAX_WBITS, max_size)
            except zlib.error:
                return _inflate(data, -zlib.MAX_WBITS, max_size)
        return _inflate(data, -zlib.MAX_WBITS, max_size)
    except zlib.error as e:
        raise DecompressionFailure(f"deflate decompression failed: {e}")


class Codec:
    def __init__(self, stored_as: StorageFlags, max_size: int = DEFAULT_MAX_CHUNK_SIZE):
        self.stored_as = StorageFlags(stored_as)
        self.max_size = max_size

    def decompress(self, data: bytes) -> bytes:
        if self.stored_as == StorageFlags.NONE:
            return data
        # Encrypted takes precedence: never hand ciphertext to inflate
        if self.stored_as & StorageFlags.ENCRYPTED:
            raise UnsupportedEncryptedChunk("Encrypted chunks are not supported")
        if int(self.stored_as) & ~int(KNOWN_STORAGE_FLAGS):
            raise UnsupportedStorageFlags(f"unsupported storage flags: 0x{int(self.stored_as):02X}")
        return inflate(data, self.max_size)
