from __future__ import annotations

import os
from typing import BinaryIO, List, Optional, Tuple

from .constants import DEFAULT_MAX_CHUNKS
from .database import ContainerHeader, parse_container
from .decoder import DecodedChunk, read_chunk_at
from .errors import ChunkDBError
from .records import ChunkLocation


class ChunkDBReader:
    def __init__(self, path: str, *, max_chunks: int = DEFAULT_MAX_CHUNKS):
        self.path = path
        self.max_chunks = max_chunks
        self.f: Optional[BinaryIO] = None
        self.header: Optional[ContainerHeader] = None
        self.file_size: int = 0

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def open(self):
        if self.f is not None:
            return
        self.f = open(self.path, "rb")
        try:
            self.file_size = os.fstat(self.f.fileno()).st_size
            self.header = parse_container(self.f, max_chunks=self.max_chunks, file_size=self.file_size)
        except ChunkDBError as exc:
            self.close()
            exc.path = self.path
            raise
        except OSError:
            self.close()
            raise

    def close(self):
        if self.f is not None:
            self.f.close()
            self.f = None

    @property
    def info(self) -> ContainerHeader:
        if self.header is None:
            raise RuntimeError("Container not open")
        return self.header

    def list(self) -> List[ChunkLocation]:
        return list(self.info.locations)

    def read(self, location: ChunkLocation, *, verify: bool = False) -> DecodedChunk:
        if self.f is None:
            raise RuntimeError("Container not open")
        try:
            return read_chunk_at(
                self.f,
                location.byte_start,
                file_size=self.file_size,
                expected_id=location.chunk_id,
                expected_size=location.byte_size,
                verify=verify,
            )
        except ChunkDBError as exc:
            exc.path = self.path
            raise

    def verify(self) -> Tuple[bool, List[ChunkDBError]]:
        """
        Decodes every indexed chunk and checks it against its stored SHA1.

        Chunks whose hash type does not include SHA1 are only checked for
        structural soundness. A failing chunk does not stop the scan.

        Returns:
            (ok, failures) where failures holds one error per bad chunk.
        """
        failures: List[ChunkDBError] = []
        for loc in self.list():
            try:
                self.read(loc, verify=True)
            except ChunkDBError as exc:
                failures.append(exc)
        return not failures, failures
