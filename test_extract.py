from __future__ import annotations

import builtins
import errno
import os
import tempfile
import unittest
from pathlib import Path
from unittest import mock

from chunkdb.constants import StorageFlags
from chunkdb.errors import (
    BadChunkMagic,
    BadContainerMagic,
    ChunkBoundsError,
    HashMismatch,
    ReadFailure,
    UnsupportedEncryptedChunk,
    WriteFailure,
)
from chunkdb.extract import extract_all, extract_container, write_chunk_file
from chunkdb.guid import ChunkId
from chunkdb.reader import ChunkDBReader
from chunkdb.records import DB_HEADER_SIZE, LOCATION_SIZE

from testutil import FakeChunk, build_container, write_container


ID_RAW = ChunkId(0x11111111, 0x22222222, 0x33333333, 0x44444444)
ID_DEFLATE = ChunkId(0xA, 0xB, 0xC, 0xD)
ID_THIRD = ChunkId(0xCAFEBABE, 0, 1, 2)


def _two_chunk_container(path: Path) -> Path:
    return write_container(
        path,
        [
            FakeChunk(ID_RAW, bytes(range(16))),
            FakeChunk(ID_DEFLATE, b"\x00", stored_as=StorageFlags.COMPRESSED, payload=b"\x63\x00\x00"),
        ],
    )


class _FlakyFile:
    """File wrapper whose first read at `bad_offset` fails with EIO."""

    def __init__(self, f, bad_offset: int):
        self._f = f
        self._bad_offset = bad_offset
        self.failed = False

    def read(self, *args):
        if not self.failed and self._f.tell() == self._bad_offset:
            self.failed = True
            raise OSError(errno.EIO, "Input/output error")
        return self._f.read(*args)

    def __getattr__(self, name):
        return getattr(self._f, name)


def _leftovers(outdir: Path):
    return [p.name for p in outdir.iterdir() if p.name.endswith(".part")]


class ExtractTests(unittest.TestCase):
    def run_with_tmpdir(self, func):
        with tempfile.TemporaryDirectory() as tmp:
            func(Path(tmp))

    def test_end_to_end_two_chunks(self):
        def scenario(tmp_path: Path):
            src = _two_chunk_container(tmp_path / "pak.chunkdb")
            outdir = tmp_path / "out"
            labels = []
            report = extract_container(str(src), str(outdir), progress=labels.append)
            self.assertTrue(report.ok)
            self.assertEqual(report.chunk_count, 2)
            self.assertEqual(labels, ["pak.chunkdb"])
            self.assertEqual(sorted(os.listdir(outdir)), sorted([ID_RAW.hex(), ID_DEFLATE.hex()]))
            self.assertEqual((outdir / "11111111222222223333333344444444").read_bytes(), bytes(range(16)))
            self.assertEqual((outdir / "0000000A0000000B0000000C0000000D").read_bytes(), b"\x00")
            self.assertEqual(report.written, [ID_RAW.hex(), ID_DEFLATE.hex()])

        self.run_with_tmpdir(scenario)

    def test_bad_chunk_magic_does_not_abort_siblings(self):
        def scenario(tmp_path: Path):
            src = write_container(
                tmp_path / "mixed.chunkdb",
                [
                    FakeChunk(ID_RAW, b"broken", magic=0x12345678),
                    FakeChunk(ID_DEFLATE, b"fine " * 30, stored_as=StorageFlags.COMPRESSED),
                ],
            )
            outdir = tmp_path / "out"
            report = extract_container(str(src), str(outdir))
            self.assertFalse(report.ok)
            self.assertIsNone(report.error)
            self.assertEqual(len(report.failures), 1)
            failure = report.failures[0]
            self.assertIsInstance(failure.error, BadChunkMagic)
            self.assertEqual(failure.chunk_id, ID_RAW)
            self.assertEqual(failure.error.chunk_id, ID_RAW)
            self.assertEqual(failure.error.path, str(src))
            self.assertEqual(failure.error.offset, failure.byte_start)
            self.assertEqual(os.listdir(outdir), [ID_DEFLATE.hex()])
            self.assertEqual((outdir / ID_DEFLATE.hex()).read_bytes(), b"fine " * 30)

        self.run_with_tmpdir(scenario)

    def test_encrypted_chunk_writes_nothing(self):
        def scenario(tmp_path: Path):
            src = write_container(
                tmp_path / "enc.chunkdb",
                [
                    FakeChunk(ID_RAW, b"secret", stored_as=StorageFlags.ENCRYPTED, payload=b"\x9a\x10\x44\x00"),
                    FakeChunk(ID_THIRD, b"plain"),
                ],
            )
            outdir = tmp_path / "out"
            report = extract_container(str(src), str(outdir))
            self.assertEqual(len(report.failures), 1)
            self.assertIsInstance(report.failures[0].error, UnsupportedEncryptedChunk)
            self.assertFalse((outdir / ID_RAW.hex()).exists())
            self.assertEqual(report.written, [ID_THIRD.hex()])
            self.assertEqual(_leftovers(outdir), [])

        self.run_with_tmpdir(scenario)

    def test_bad_container_is_skipped(self):
        def scenario(tmp_path: Path):
            bad = write_container(tmp_path / "a_bad.chunkdb", [FakeChunk(ID_RAW, b"x")], magic=0)
            good = _two_chunk_container(tmp_path / "b_good.chunkdb")
            outdir = tmp_path / "out"
            report = extract_all([str(bad), str(good)], str(outdir))
            self.assertEqual([c.path for c in report.containers], [str(bad), str(good)])
            self.assertIsInstance(report.containers[0].error, BadContainerMagic)
            self.assertEqual(report.containers[0].error.path, str(bad))
            self.assertTrue(report.containers[1].ok)
            self.assertEqual(report.written, 2)
            self.assertEqual(report.failed, 1)
            self.assertFalse(report.ok)

        self.run_with_tmpdir(scenario)

    def test_missing_container_reported(self):
        def scenario(tmp_path: Path):
            report = extract_container(str(tmp_path / "nope.chunkdb"), str(tmp_path / "out"))
            self.assertIsInstance(report.error, FileNotFoundError)

        self.run_with_tmpdir(scenario)

    def test_out_of_range_location(self):
        def scenario(tmp_path: Path):
            blob = bytearray(build_container([FakeChunk(ID_RAW, b"abc"), FakeChunk(ID_THIRD, b"def")]))
            # point the first location far past the end of the file
            loc_off = 24 + 16
            blob[loc_off : loc_off + 8] = (10 ** 9).to_bytes(8, "little")
            src = tmp_path / "oob.chunkdb"
            src.write_bytes(bytes(blob))
            report = extract_container(str(src), str(tmp_path / "out"))
            self.assertIsInstance(report.failures[0].error, ChunkBoundsError)
            self.assertEqual(report.written, [ID_THIRD.hex()])

        self.run_with_tmpdir(scenario)

    def test_per_chunk_progress_and_cancel(self):
        def scenario(tmp_path: Path):
            src = write_container(
                tmp_path / "c.chunkdb",
                [FakeChunk(ID_RAW, b"1"), FakeChunk(ID_DEFLATE, b"2"), FakeChunk(ID_THIRD, b"3")],
            )
            labels = []
            report = extract_container(
                str(src),
                str(tmp_path / "out"),
                progress=labels.append,
                per_chunk_progress=True,
                cancel=lambda: len(labels) >= 2,
            )
            self.assertTrue(report.cancelled)
            self.assertEqual(labels, ["c.chunkdb", ID_RAW.hex()])
            self.assertEqual(report.written, [ID_RAW.hex()])

        self.run_with_tmpdir(scenario)

    def test_exists_policies(self):
        def scenario(tmp_path: Path):
            src = _two_chunk_container(tmp_path / "p.chunkdb")
            outdir = tmp_path / "out"
            outdir.mkdir()
            existing = outdir / ID_RAW.hex()
            existing.write_bytes(b"old")

            skipped = extract_container(str(src), str(outdir), exists="skip")
            self.assertEqual(skipped.skipped, [ID_RAW.hex()])
            self.assertEqual(existing.read_bytes(), b"old")

            failed = extract_container(str(src), str(outdir), exists="fail")
            self.assertEqual(len(failed.failures), 2)
            self.assertTrue(all(isinstance(f.error, WriteFailure) for f in failed.failures))

            replaced = extract_container(str(src), str(outdir), exists="overwrite")
            self.assertTrue(replaced.ok)
            self.assertEqual(existing.read_bytes(), bytes(range(16)))

            with self.assertRaises(ValueError):
                extract_container(str(src), str(outdir), exists="rename")

        self.run_with_tmpdir(scenario)

    def test_write_failure_is_per_chunk(self):
        def scenario(tmp_path: Path):
            src = _two_chunk_container(tmp_path / "w.chunkdb")
            outdir = tmp_path / "out"
            outdir.mkdir()
            # a directory squatting on the output name makes the rename fail
            (outdir / ID_RAW.hex()).mkdir()
            (outdir / ID_RAW.hex() / "keep").write_bytes(b"k")
            report = extract_container(str(src), str(outdir))
            self.assertEqual(len(report.failures), 1)
            self.assertIsInstance(report.failures[0].error, WriteFailure)
            self.assertEqual(report.written, [ID_DEFLATE.hex()])
            self.assertEqual((outdir / ID_RAW.hex() / "keep").read_bytes(), b"k")
            self.assertEqual(_leftovers(outdir), [])

        self.run_with_tmpdir(scenario)

    def test_read_error_is_per_chunk(self):
        def scenario(tmp_path: Path):
            src = _two_chunk_container(tmp_path / "io.chunkdb")
            outdir = tmp_path / "out"
            first_chunk = DB_HEADER_SIZE + 2 * LOCATION_SIZE
            real_open = builtins.open

            def open_flaky(path, mode="r", *args, **kwargs):
                return _FlakyFile(real_open(path, mode, *args, **kwargs), first_chunk)

            with mock.patch("chunkdb.reader.open", create=True, side_effect=open_flaky):
                report = extract_container(str(src), str(outdir))
            self.assertIsNone(report.error)
            self.assertEqual(len(report.failures), 1)
            self.assertEqual(report.failures[0].chunk_id, ID_RAW)
            self.assertIsInstance(report.failures[0].error, ReadFailure)
            self.assertEqual(report.written, [ID_DEFLATE.hex()])
            self.assertEqual((outdir / ID_DEFLATE.hex()).read_bytes(), b"\x00")

        self.run_with_tmpdir(scenario)

    def test_unusable_outdir(self):
        def scenario(tmp_path: Path):
            src = _two_chunk_container(tmp_path / "x.chunkdb")
            blocker = tmp_path / "blocker"
            blocker.write_bytes(b"")
            report = extract_container(str(src), str(blocker))
            self.assertIsInstance(report.error, WriteFailure)

        self.run_with_tmpdir(scenario)

    def test_write_chunk_file_replaces_atomically(self):
        def scenario(tmp_path: Path):
            dst = write_chunk_file(str(tmp_path), "NAME", b"first")
            write_chunk_file(str(tmp_path), "NAME", b"second")
            self.assertEqual(Path(dst).read_bytes(), b"second")
            self.assertEqual(os.listdir(tmp_path), ["NAME"])

        self.run_with_tmpdir(scenario)

    def test_parallel_containers(self):
        def scenario(tmp_path: Path):
            paths = []
            expected = {}
            for i in range(4):
                cid = ChunkId(i, i + 1, i + 2, i + 3)
                data = os.urandom(1024) + bytes([i]) * 512
                expected[cid.hex()] = data
                paths.append(str(write_container(tmp_path / f"{i}.chunkdb", [FakeChunk(cid, data, stored_as=StorageFlags.COMPRESSED)])))
            outdir = tmp_path / "out"
            labels = []
            report = extract_all(paths, str(outdir), jobs=3, progress=labels.append)
            self.assertTrue(report.ok)
            self.assertEqual([c.path for c in report.containers], paths)
            self.assertEqual(sorted(labels), sorted(os.path.basename(p) for p in paths))
            for name, data in expected.items():
                self.assertEqual((outdir / name).read_bytes(), data)

        self.run_with_tmpdir(scenario)

    def test_verify_flags_corrupted_chunk(self):
        def scenario(tmp_path: Path):
            src = write_container(
                tmp_path / "v.chunkdb",
                [FakeChunk(ID_RAW, b"good"), FakeChunk(ID_THIRD, b"bad", sha_hash=b"\x01" * 20)],
            )
            with ChunkDBReader(str(src)) as r:
                ok, failures = r.verify()
            self.assertFalse(ok)
            self.assertEqual(len(failures), 1)
            self.assertIsInstance(failures[0], HashMismatch)
            self.assertEqual(failures[0].chunk_id, ID_THIRD)

            report = extract_container(str(src), str(tmp_path / "out"), verify=True)
            self.assertEqual(report.written, [ID_RAW.hex()])
            unchecked = extract_container(str(src), str(tmp_path / "out2"))
            self.assertTrue(unchecked.ok)

        self.run_with_tmpdir(scenario)

    def test_anomalies_collected(self):
        def scenario(tmp_path: Path):
            src = write_container(tmp_path / "an.chunkdb", [FakeChunk(ID_RAW, b"abc", index_id=ID_THIRD)])
            outdir = tmp_path / "out"
            report = extract_container(str(src), str(outdir))
            self.assertTrue(report.ok)
            self.assertEqual(len(report.anomalies), 1)
            self.assertTrue(report.anomalies[0].startswith(ID_RAW.hex()))
            # output is named by the id the chunk header carries
            self.assertEqual(os.listdir(outdir), [ID_RAW.hex()])

        self.run_with_tmpdir(scenario)


class ReaderTests(unittest.TestCase):
    def test_reader_lists_and_reads(self):
        with tempfile.TemporaryDirectory() as tmp:
            src = _two_chunk_container(Path(tmp) / "r.chunkdb")
            with ChunkDBReader(str(src)) as r:
                locs = r.list()
                self.assertEqual([l.chunk_id for l in locs], [ID_RAW, ID_DEFLATE])
                self.assertEqual(r.read(locs[1]).data, b"\x00")
                self.assertEqual(r.info.chunk_count, 2)
            self.assertIsNone(r.f)
            with self.assertRaises(RuntimeError):
                r.read(locs[0])

    def test_reader_closes_on_parse_failure(self):
        with tempfile.TemporaryDirectory() as tmp:
            src = write_container(Path(tmp) / "bad.chunkdb", [], magic=1)
            r = ChunkDBReader(str(src))
            with self.assertRaises(BadContainerMagic) as ctx:
                r.open()
            self.assertIsNone(r.f)
            self.assertEqual(ctx.exception.path, str(src))


if __name__ == "__main__":
    unittest.main()
