import logging
import os

from concurrent.futures import ThreadPoolExecutor
from contextlib import nullcontext
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, List, Optional

from decryptstation.crypto.sector import decrypt_sectors
from decryptstation.storage.regions import parse_regions
from decryptstation.utils.dataModels import CHUNK_SECTORS, HEADER_SIZE, KEY_SIZE, SECTOR_SIZE, Region
from decryptstation.utils.errors import ConsistencyError, FormatError, ImageIOError, KeyFormatError
from decryptstation.utils.helper import (
    CancellationToken,
    ProgressCallback,
    check_cancelled,
    default_worker_count,
)

logger = logging.getLogger(__name__)


@dataclass
class DecryptStats:
    total_sectors: int
    walked_sectors: int
    decrypted_sectors: int
    regions: int


def read_header(source: Path) -> bytes:
    try:
        with Path(source).open("rb") as f:
            return f.read(HEADER_SIZE)
    except OSError as e:
        raise ImageIOError(f"Failed to read header of {source}: {e}", offset=0, requested=HEADER_SIZE, cause=e) from e


def read_regions(source: Path) -> List[Region]:
    return parse_regions(read_header(source))


def _read_fully(f: BinaryIO, view: memoryview, offset: int) -> None:
    requested = len(view)
    got = 0
    while got < requested:
        n = f.readinto(view[got:])
        if not n:
            raise ImageIOError(
                f"Failed to read from image: requested {requested} bytes at offset {offset}, "
                f"only read {got}/{requested}",
                offset=offset,
                requested=requested,
                obtained=got,
            )
        got += n


def _decrypt_chunk(pool: Optional[ThreadPoolExecutor], workers: int, buf: bytearray,
                   sector_count: int, base_sector: int, key: bytes) -> int:
    if pool is None or sector_count < 2:
        return decrypt_sectors(buf, 0, sector_count, base_sector, key)

    # contiguous, disjoint slot ranges; one per worker
    per_worker = -(-sector_count // workers)
    futures = [
        pool.submit(decrypt_sectors, buf, first, min(per_worker, sector_count - first), base_sector, key)
        for first in range(0, sector_count, per_worker)
    ]
    return sum(fut.result() for fut in futures)


def _discard(path: Path) -> None:
    try:
        path.unlink()
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning("could not remove partial output %s: %s", path, e)


def decrypt_image(
    source: Path,
    destination: Path,
    key: bytes,
    regions: Optional[List[Region]] = None,
    progress: Optional[ProgressCallback] = None,
    cancel: Optional[CancellationToken] = None,
    workers: Optional[int] = None,
    chunk_sectors: int = CHUNK_SECTORS,
) -> DecryptStats:
    """Write the decrypted copy of ``source`` to ``destination``.

    Walks the region table in order: plain regions are copied verbatim,
    encrypted ones are decrypted sector by sector on a thread pool. I/O stays
    sequential on the calling thread and one chunk buffer is reused throughout.
    ``progress`` receives sectors walked / image sectors after every chunk.
    On failure or cancellation the partial destination is removed.
    """
    source = Path(source)
    destination = Path(destination)
    if len(key) != KEY_SIZE:
        raise KeyFormatError(f"Key must be {KEY_SIZE} bytes (got {len(key)})")
    if chunk_sectors <= 0:
        raise ValueError("chunk_sectors must be positive")

    try:
        file_size = source.stat().st_size
    except OSError as e:
        raise ImageIOError(f"Cannot open {source}: {e}", cause=e) from e
    if destination.exists() and os.path.samefile(source, destination):
        raise ImageIOError(f"Refusing to decrypt {source} onto itself")
    if file_size % SECTOR_SIZE != 0:
        raise FormatError(f"File size {file_size} is not a multiple of sector size ({SECTOR_SIZE})")
    image_sectors = file_size // SECTOR_SIZE

    if regions is None:
        regions = read_regions(source)
    workers = workers or default_worker_count()

    logger.info("decrypting %s: %d bytes (%d sectors), %d regions, %d workers",
                source.name, file_size, image_sectors, len(regions), workers)

    try:
        stats = _walk_regions(source, destination, key, regions, image_sectors,
                              progress, cancel, workers, chunk_sectors)
    except BaseException as e:
        _discard(destination)
        if isinstance(e, OSError) and not isinstance(e, ImageIOError):
            raise ImageIOError(f"I/O failure while decrypting {source.name}: {e}", cause=e) from e
        raise

    if stats.walked_sectors != image_sectors:
        logger.warning("%s: region table covers %d sectors but image has %d",
                       source.name, stats.walked_sectors, image_sectors)
    logger.info("decryption finished: %d sectors decrypted", stats.decrypted_sectors)
    return stats


def _walk_regions(source: Path, destination: Path, key: bytes, regions: List[Region], image_sectors: int,
                  progress: Optional[ProgressCallback], cancel: Optional[CancellationToken],
                  workers: int, chunk_sectors: int) -> DecryptStats:
    buf = bytearray(chunk_sectors * SECTOR_SIZE)
    view = memoryview(buf)
    cursor = 0
    decrypted = 0
    pool_ctx = ThreadPoolExecutor(max_workers=workers) if workers > 1 else nullcontext()

    with source.open("rb") as src, destination.open("wb") as dst, pool_ctx as pool:
        dst.truncate(image_sectors * SECTOR_SIZE)
        for index, region in enumerate(regions):
            if region.start != cursor:
                raise ConsistencyError(index, expected=cursor, actual=region.start)
            if region.end < region.start:
                raise FormatError(f"region {index} ends at sector {region.end} before its start {region.start}")
            logger.debug("region %d: [%d, %d) %s", index, region.start, region.end, region.kind.value)

            remaining = region.sector_count
            while remaining:
                check_cancelled(cancel)
                n = min(chunk_sectors, remaining)
                chunk = view[:n * SECTOR_SIZE]
                _read_fully(src, chunk, cursor * SECTOR_SIZE)
                if region.encrypted:
                    decrypted += _decrypt_chunk(pool, workers, buf, n, cursor, key)
                dst.write(chunk)

                cursor += n
                remaining -= n
                if progress is not None and image_sectors:
                    progress(min(1.0, cursor / image_sectors))

    return DecryptStats(
        total_sectors=image_sectors,
        walked_sectors=cursor,
        decrypted_sectors=decrypted,
        regions=len(regions),
    )
