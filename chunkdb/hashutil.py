from __future__ import annotations

from Cryptodome.Hash import SHA1


def sha1_20(data: bytes) -> bytes:
    return SHA1.new(data).digest()
