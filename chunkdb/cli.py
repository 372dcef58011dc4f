from __future__ import annotations

import os
import sys
import time
import argparse
import json as _json

from typing import List, Iterable, Dict, Any, Optional

from chunkdb.constants import CHUNKDB_EXTENSION
from chunkdb.errors import ChunkDBError
from chunkdb.extract import ContainerReport, EXISTS_POLICIES, extract_all
from chunkdb.guid import chunk_filename
from chunkdb.reader import ChunkDBReader


def _iter_containers(paths: Iterable[str], recursive: bool) -> Iterable[str]:
    """Yield .chunkdb file paths from a list of paths and/or directories.

    Directory listings are sorted so extraction order is reproducible.

    Args:
        paths: Paths to scan (files or directories).
        recursive: When True, traverse directories recursively.
    """
    for p in paths:
        if os.path.isdir(p):
            if recursive:
                for root, dirs, files in os.walk(p):
                    dirs.sort()
                    for fn in sorted(files):
                        if fn.lower().endswith(CHUNKDB_EXTENSION):
                            yield os.path.join(root, fn)
            else:
                try:
                    entries = sorted(os.listdir(p))
                except OSError as exc:
                    print(f"Warning: cannot list {p}: {exc}", file=sys.stderr)
                    continue
                for fn in entries:
                    if fn.lower().endswith(CHUNKDB_EXTENSION):
                        yield os.path.join(p, fn)
        else:
            if p.lower().endswith(CHUNKDB_EXTENSION):
                yield p


def _report_to_dict(rep: ContainerReport) -> Dict[str, Any]:
    return {
        "path": rep.path,
        "status": "ok" if rep.ok else ("error" if rep.error is not None else "partial"),
        "chunks": rep.chunk_count,
        "written": len(rep.written),
        "skipped": len(rep.skipped),
        "failed": [
            {"chunk": str(f.chunk_id), "offset": f.byte_start, "error": type(f.error).__name__, "message": str(f.error)}
            for f in rep.failures
        ],
        "anomalies": list(rep.anomalies),
        **({"error": str(rep.error)} if rep.error is not None else {}),
        **({"cancelled": True} if rep.cancelled else {}),
    }


def cmd_extract(
    sources: List[str],
    *,
    outdir: str = ".",
    recursive: bool = False,
    jobs: int = 1,
    verify: bool = False,
    exists: str = "overwrite",
    as_json: bool = False,
    quiet: bool = False,
) -> bool:
    """Extract every chunk from the given containers into one directory.

    Args:
        sources: Container paths and/or directories holding .chunkdb files.
        outdir: Destination directory for chunk files.
        recursive: Recurse into directories when True.
        jobs: Containers extracted in parallel.
        verify: Check each chunk's SHA1 when the container records one.
        exists: Policy for existing outputs: overwrite, skip or fail.
        as_json: When True, print a JSON result summary.

    Returns:
        True when every container and chunk extracted cleanly.

    Raises:
        RuntimeError: If no containers matching the input paths were found.
    """
    paths = list(_iter_containers(sources, recursive))
    if not paths:
        raise RuntimeError("No .chunkdb files found")

    def _progress(label: str) -> None:
        if not quiet and not as_json:
            print(f" extracting: {label}", flush=True)

    t0 = time.time()
    report = extract_all(paths, outdir, jobs=max(1, int(jobs)), progress=_progress, verify=verify, exists=exists)
    dt = max(0.000001, time.time() - t0)

    if as_json:
        print(
            _json.dumps(
                {
                    "results": [_report_to_dict(c) for c in report.containers],
                    "written": report.written,
                    "skipped": report.skipped,
                    "failed": report.failed,
                }
            )
        )
        return report.ok

    for rep in report.containers:
        for note in rep.anomalies:
            print(f"Warning: {rep.path}: {note}", file=sys.stderr)
        if rep.error is not None:
            print(f"Error: {rep.error}", file=sys.stderr)
        for failure in rep.failures:
            print(f"Error: {failure.error}", file=sys.stderr)
        if rep.cancelled:
            print(f"Warning: {rep.path}: extraction cancelled", file=sys.stderr)
    print(
        f"Done: {len(report.containers)} containers in {dt:.1f}s; "
        f"written={report.written} skipped={report.skipped} failed={report.failed}"
    )
    return report.ok


def cmd_list(container: str) -> bool:
    """List the chunk index of a container.

    Prints one line per entry: chunk name, byte offset, declared size.
    """
    with ChunkDBReader(container) as r:
        for loc in r.list():
            print(f"{chunk_filename(loc.chunk_id)}\t{loc.byte_start}\t{loc.byte_size}")
    return True


def cmd_info(container: str) -> bool:
    with ChunkDBReader(container) as r:
        h = r.info
        print(f"Container: {container}")
        print(f"  Version: {h.version}")
        print(f"  Header size: {h.header_size}")
        print(f"  Data size: {h.data_size}")
        print(f"  Chunks: {h.chunk_count}")
        print(f"  File size: {r.file_size}")
    return True


def cmd_verify(container: str) -> bool:
    """Decode every chunk of a container and check stored SHA1 hashes.

    Prints:
        "OK" on success, "FAIL" followed by the failing chunks otherwise.
    """
    with ChunkDBReader(container) as r:
        ok, failures = r.verify()
    for exc in failures:
        print(f"  {exc}", file=sys.stderr)
    print("OK" if ok else "FAIL")
    return ok


def main(argv: Optional[List[str]] = None):
    ap = argparse.ArgumentParser(
        prog="chunkdb",
        description="Extract chunks from .chunkdb containers",
    )
    sub = ap.add_subparsers(dest="cmd", required=True)

    ap_extract = sub.add_parser("extract", help="Extract chunks to a directory")
    ap_extract.add_argument("sources", nargs="+", help="Container files and/or directories")
    ap_extract.add_argument("--outdir", default=".", help="Output directory")
    ap_extract.add_argument("--recursive", "-r", action="store_true", help="Recurse into directories")
    ap_extract.add_argument("--jobs", "-j", type=int, default=1, help="Containers extracted in parallel (default 1)")
    ap_extract.add_argument("--verify", action="store_true", help="Check chunk SHA1 hashes where present")
    ap_extract.add_argument(
        "--exists",
        choices=list(EXISTS_POLICIES),
        default="overwrite",
        help="What to do if an output file exists: overwrite, skip, or fail (count as a failed chunk). Default: overwrite",
    )
    ap_extract.add_argument("--json", action="store_true", help="Emit JSON result summary")
    ap_extract.add_argument("--quiet", help="limit outputs to summaries only", action="store_true")

    ap_list = sub.add_parser("list", help="List chunk index")
    ap_list.add_argument("container", help="Container path")

    ap_info = sub.add_parser("info", help="Show container header")
    ap_info.add_argument("container", help="Container path")

    ap_verify = sub.add_parser("verify", help="Decode all chunks and check SHA1 hashes")
    ap_verify.add_argument("container", help="Container path")

    args = ap.parse_args(argv)
    try:
        if args.cmd == "extract":
            success = cmd_extract(
                args.sources,
                outdir=args.outdir,
                recursive=args.recursive,
                jobs=args.jobs,
                verify=args.verify,
                exists=args.exists,
                as_json=args.json,
                quiet=args.quiet,
            )
            sys.exit(0 if success else 1)
        elif args.cmd == "list":
            cmd_list(args.container)
        elif args.cmd == "info":
            cmd_info(args.container)
        elif args.cmd == "verify":
            sys.exit(0 if cmd_verify(args.container) else 1)
        else:
            raise RuntimeError("Unknown command")
    except FileNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(2)
    except RuntimeError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(2)
    except (ChunkDBError, OSError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(2)


if __name__ == "__main__":
    main()
