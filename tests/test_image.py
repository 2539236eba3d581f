import unittest
from pathlib import Path
from tempfile import TemporaryDirectory

from support import KEY, SECTOR, build_image, write_image

from decryptstation.storage.image import decrypt_image, read_regions
from decryptstation.utils.dataModels import Region, RegionKind
from decryptstation.utils.errors import (
    ConsistencyError,
    FormatError,
    ImageIOError,
    KeyFormatError,
    OperationCancelledError,
)
from decryptstation.utils.helper import CancellationToken


class DecryptionEngineTests(unittest.TestCase):
    def setUp(self) -> None:
        self.tmpdir = TemporaryDirectory()
        self.tmp_path = Path(self.tmpdir.name)
        self.src = self.tmp_path / "game.iso"
        self.dst = self.tmp_path / "game.iso.dec"

    def tearDown(self) -> None:
        self.tmpdir.cleanup()

    def test_two_region_image_round_trip(self) -> None:
        enc, plain = write_image(self.src)
        self.assertNotEqual(enc, plain)
        for workers in (1, 4):
            for chunk in (16, 4096):
                with self.subTest(workers=workers, chunk=chunk):
                    stats = decrypt_image(self.src, self.dst, KEY, workers=workers, chunk_sectors=chunk)
                    self.assertEqual(self.dst.read_bytes(), plain)
                    self.assertEqual(stats.total_sectors, 200)
                    self.assertEqual(stats.walked_sectors, 200)
                    self.assertEqual(stats.decrypted_sectors, 50)
                    self.assertEqual(stats.regions, 3)

    def test_plain_regions_copied_verbatim(self) -> None:
        enc, _ = write_image(self.src)
        decrypt_image(self.src, self.dst, KEY, workers=2, chunk_sectors=7)
        out = self.dst.read_bytes()
        self.assertEqual(out[:100 * SECTOR], enc[:100 * SECTOR])
        self.assertEqual(out[150 * SECTOR:], enc[150 * SECTOR:])

    def test_zero_sectors_pass_through(self) -> None:
        _, plain = write_image(self.src, zero_sectors={50, 110, 111, 149, 160})
        stats = decrypt_image(self.src, self.dst, KEY, workers=3, chunk_sectors=8)
        out = self.dst.read_bytes()
        self.assertEqual(out, plain)
        for s in (50, 110, 111, 149, 160):
            self.assertEqual(out[s * SECTOR:(s + 1) * SECTOR], bytes(SECTOR))
        self.assertEqual(stats.decrypted_sectors, 47)

    def test_explicit_regions_match_header(self) -> None:
        _, plain = write_image(self.src)
        regions = read_regions(self.src)
        self.assertEqual([r.kind for r in regions], [RegionKind.PLAIN, RegionKind.ENCRYPTED, RegionKind.PLAIN])
        decrypt_image(self.src, self.dst, KEY, regions=regions, workers=1)
        self.assertEqual(self.dst.read_bytes(), plain)

    def test_progress_after_every_chunk(self) -> None:
        write_image(self.src)
        seen = []
        decrypt_image(self.src, self.dst, KEY, progress=seen.append, workers=1, chunk_sectors=16)
        # 100 -> 7 chunks, 50 -> 4, 50 -> 4
        self.assertEqual(len(seen), 15)
        self.assertEqual(seen, sorted(seen))
        self.assertEqual(seen[-1], 1.0)
        self.assertAlmostEqual(seen[0], 16 / 200)

    def test_cancel_before_start(self) -> None:
        write_image(self.src)
        token = CancellationToken()
        token.cancel()
        seen = []
        with self.assertRaises(OperationCancelledError):
            decrypt_image(self.src, self.dst, KEY, progress=seen.append, cancel=token)
        self.assertEqual(seen, [])
        self.assertFalse(self.dst.exists())

    def test_cancel_mid_run_removes_output(self) -> None:
        write_image(self.src)
        token = CancellationToken()
        seen = []

        def on_progress(fraction: float) -> None:
            seen.append(fraction)
            if fraction >= 0.5:
                token.cancel()

        with self.assertRaises(OperationCancelledError):
            decrypt_image(self.src, self.dst, KEY, progress=on_progress, cancel=token, chunk_sectors=25)
        self.assertEqual(seen, [0.125, 0.25, 0.375, 0.5])
        self.assertFalse(self.dst.exists())

    def test_cursor_mismatch_is_fatal(self) -> None:
        write_image(self.src)
        regions = [
            Region(0, 100, RegionKind.PLAIN),
            Region(101, 150, RegionKind.ENCRYPTED),
            Region(150, 200, RegionKind.PLAIN),
        ]
        with self.assertRaises(ConsistencyError) as ctx:
            decrypt_image(self.src, self.dst, KEY, regions=regions, workers=1)
        self.assertEqual((ctx.exception.region_index, ctx.exception.expected, ctx.exception.actual), (1, 100, 101))
        self.assertFalse(self.dst.exists())

    def test_short_read_is_fatal(self) -> None:
        ranges = [(0, 100), (100, 150), (150, 300)]
        write_image(self.src, ranges=ranges, total_sectors=200)
        with self.assertRaises(ImageIOError) as ctx:
            decrypt_image(self.src, self.dst, KEY, workers=1, chunk_sectors=64)
        err = ctx.exception
        self.assertEqual(err.requested, 64 * SECTOR)
        self.assertEqual(err.obtained, 50 * SECTOR)
        self.assertEqual(err.offset, 150 * SECTOR)
        self.assertFalse(self.dst.exists())

    def test_table_shorter_than_image_logs_discrepancy(self) -> None:
        ranges = [(0, 100), (100, 150), (150, 180)]
        _, plain = write_image(self.src, ranges=ranges, total_sectors=200)
        with self.assertLogs("decryptstation.storage.image", level="WARNING") as logs:
            stats = decrypt_image(self.src, self.dst, KEY, workers=2)
        self.assertIn("covers 180 sectors but image has 200", "\n".join(logs.output))
        self.assertEqual(stats.walked_sectors, 180)
        out = self.dst.read_bytes()
        self.assertEqual(len(out), 200 * SECTOR)
        self.assertEqual(out[:180 * SECTOR], plain[:180 * SECTOR])

    def test_partial_sector_image_rejected(self) -> None:
        enc, _ = build_image()
        self.src.write_bytes(enc + b"\x01")
        with self.assertRaises(FormatError):
            decrypt_image(self.src, self.dst, KEY)
        self.assertFalse(self.dst.exists())

    def test_bad_key_rejected_before_io(self) -> None:
        with self.assertRaises(KeyFormatError):
            decrypt_image(self.tmp_path / "missing.iso", self.dst, KEY[:15])
        self.assertFalse(self.dst.exists())

    def test_missing_source(self) -> None:
        with self.assertRaises(ImageIOError):
            decrypt_image(self.tmp_path / "missing.iso", self.dst, KEY)

    def test_destination_same_as_source_rejected(self) -> None:
        enc, _ = write_image(self.src)
        alias = self.tmp_path / "." / "game.iso"
        with self.assertRaises(ImageIOError):
            decrypt_image(self.src, alias, KEY)
        self.assertEqual(self.src.read_bytes(), enc)


if __name__ == "__main__":
    unittest.main()
