from __future__ import annotations

import concurrent.futures as _fut
import os
import tempfile
import threading
from dataclasses import dataclass, field
from typing import Callable, Iterable, List, Optional, Union

from .constants import DEFAULT_MAX_CHUNKS
from .errors import ChunkDBError, WriteFailure
from .guid import ChunkId, chunk_filename
from .reader import ChunkDBReader


ProgressSink = Callable[[str], None]
CancelCheck = Callable[[], bool]

EXISTS_POLICIES = ("overwrite", "skip", "fail")


@dataclass
class ChunkFailure:
    chunk_id: ChunkId
    byte_start: int
    error: ChunkDBError


@dataclass
class ContainerReport:
    path: str
    chunk_count: int = 0
    written: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    failures: List[ChunkFailure] = field(default_factory=list)
    anomalies: List[str] = field(default_factory=list)
    error: Optional[Union[ChunkDBError, OSError]] = None
    cancelled: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None and not self.failures


@dataclass
class ExtractReport:
    containers: List[ContainerReport] = field(default_factory=list)

    @property
    def written(self) -> int:
        return sum(len(c.written) for c in self.containers)

    @property
    def skipped(self) -> int:
        return sum(len(c.skipped) for c in self.containers)

    @property
    def failed(self) -> int:
        return sum(len(c.failures) + (1 if c.error is not None else 0) for c in self.containers)

    @property
    def ok(self) -> bool:
        return all(c.ok for c in self.containers)


def write_chunk_file(outdir: str, name: str, data: bytes) -> str:
    """Atomically write `data` to `outdir/name`.

    The bytes go to a temporary file in `outdir` that is renamed over the
    destination, so a failed write never leaves a partial output behind.
    """
    dst = os.path.join(outdir, name)
    tmp_path = None
    try:
        with tempfile.NamedTemporaryFile("wb", dir=outdir, prefix=f".{name}.", suffix=".part", delete=False) as tf:
            tmp_path = tf.name
            tf.write(data)
        os.replace(tmp_path, dst)
        tmp_path = None
    except OSError as exc:
        raise WriteFailure(f"Failed to write {dst}: {exc}")
    finally:
        if tmp_path is not None:
            try:
                os.remove(tmp_path)
            except FileNotFoundError:
                pass
    return dst


def extract_container(
    path: str,
    outdir: str,
    *,
    progress: Optional[ProgressSink] = None,
    per_chunk_progress: bool = False,
    cancel: Optional[CancelCheck] = None,
    verify: bool = False,
    exists: str = "overwrite",
    max_chunks: int = DEFAULT_MAX_CHUNKS,
) -> ContainerReport:
    """Extract every chunk of one container into `outdir`.

    Args:
        path: Container file path.
        outdir: Destination directory (created if missing).
        progress: Called with the container file name, then with each chunk
            name when `per_chunk_progress` is set.
        cancel: Polled between chunks; returning True stops the extraction.
        verify: Check decoded chunks against their stored SHA1.
        exists: What to do when an output name already exists:
            overwrite, skip, or fail (records a WriteFailure for that chunk).

    Container-level problems end up in `report.error`; chunk-level ones in
    `report.failures`. Neither is raised.
    """
    if exists not in EXISTS_POLICIES:
        raise ValueError(f"exists must be one of {EXISTS_POLICIES}, got {exists!r}")
    report = ContainerReport(path=path)
    if progress is not None:
        progress(os.path.basename(path))
    try:
        os.makedirs(outdir, exist_ok=True)
    except OSError as exc:
        report.error = WriteFailure(f"Cannot create output directory {outdir}: {exc}", path=path)
        return report
    try:
        with ChunkDBReader(path, max_chunks=max_chunks) as r:
            locations = r.list()
            report.chunk_count = len(locations)
            for loc in locations:
                if cancel is not None and cancel():
                    report.cancelled = True
                    break
                try:
                    decoded = r.read(loc, verify=verify)
                    name = chunk_filename(decoded.chunk_id)
                    if per_chunk_progress and progress is not None:
                        progress(name)
                    for note in decoded.anomalies:
                        report.anomalies.append(f"{name}: {note}")
                    if os.path.lexists(os.path.join(outdir, name)):
                        if exists == "skip":
                            report.skipped.append(name)
                            continue
                        if exists == "fail":
                            raise WriteFailure("Destination exists", path=path, chunk_id=decoded.chunk_id)
                    write_chunk_file(outdir, name, decoded.data)
                    report.written.append(name)
                except ChunkDBError as exc:
                    if exc.path is None:
                        exc.path = path
                    if exc.chunk_id is None:
                        exc.chunk_id = loc.chunk_id
                    if exc.offset is None:
                        exc.offset = loc.byte_start
                    report.failures.append(ChunkFailure(chunk_id=loc.chunk_id, byte_start=loc.byte_start, error=exc))
    except (ChunkDBError, OSError) as exc:
        report.error = exc
    return report


def extract_all(
    paths: Iterable[str],
    outdir: str,
    *,
    jobs: int = 1,
    progress: Optional[ProgressSink] = None,
    per_chunk_progress: bool = False,
    cancel: Optional[CancelCheck] = None,
    verify: bool = False,
    exists: str = "overwrite",
    max_chunks: int = DEFAULT_MAX_CHUNKS,
) -> ExtractReport:
    """Extract many containers into one directory.

    Containers are independent; with jobs > 1 they run on a thread pool, each
    with its own file handle, and calls into `progress` are serialized.
    Reports come back in input order.
    """
    paths = list(paths)
    sink = progress
    if progress is not None and jobs > 1:
        lock = threading.Lock()

        def sink(label: str) -> None:
            with lock:
                progress(label)

    def _runner(p: str) -> ContainerReport:
        return extract_container(
            p,
            outdir,
            progress=sink,
            per_chunk_progress=per_chunk_progress,
            cancel=cancel,
            verify=verify,
            exists=exists,
            max_chunks=max_chunks,
        )

    report = ExtractReport()
    if jobs <= 1:
        for p in paths:
            if cancel is not None and cancel():
                break
            report.containers.append(_runner(p))
        return report
    with _fut.ThreadPoolExecutor(max_workers=int(jobs)) as ex:
        for r in ex.map(_runner, paths):
            report.containers.append(r)
    return report
