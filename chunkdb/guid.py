from __future__ import annotations

import struct
from dataclasses import dataclass


_GUID_STRUCT = struct.Struct("<IIII")


@dataclass(frozen=True)
class ChunkId:
    """128-bit chunk identifier stored as four little-endian u32 words."""

    a: int
    b: int
    c: int
    d: int

    def __post_init__(self):
        for word in (self.a, self.b, self.c, self.d):
            if not 0 <= word <= 0xFFFFFFFF:
                raise ValueError(f"ChunkId word out of range: {word!r}")

    @classmethod
    def unpack(cls, raw: bytes) -> "ChunkId":
        return cls(*_GUID_STRUCT.unpack(raw))

    def pack(self) -> bytes:
        return _GUID_STRUCT.pack(self.a, self.b, self.c, self.d)

    def hex(self) -> str:
        return f"{self.a:08X}{self.b:08X}{self.c:08X}{self.d:08X}"

    def __str__(self) -> str:
        return self.hex()


def chunk_filename(chunk_id: ChunkId) -> str:
    """Output file name for a decoded chunk: its 32-char uppercase hex id."""
    return chunk_id.hex()
